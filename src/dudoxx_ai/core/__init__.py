"""核心基础设施：错误类型、错误分类、重试与通用工具函数。"""
