"""共享工具函数（id 生成、JSON 序列化、时钟）。"""
from __future__ import annotations

import json
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Optional, Set

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def now_ms() -> int:
    """返回当前 epoch 毫秒数。"""
    return int(time.time() * 1000)


def now_rfc3339() -> str:
    """返回当前 UTC 时间的 RFC3339 字符串（以 Z 结尾）。"""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def random_suffix(length: int = 9) -> str:
    """返回 base36 随机后缀（小写字母 + 数字）。"""
    return "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(length))


def generate_tool_call_id(tool_name: Optional[str] = None, *, taken: Optional[Set[str]] = None) -> str:
    """
    为缺失 id 的 tool call 生成修复 id。

    形状：`call_<epoch_ms>_<9 位 base36>[_<tool_name 前 8 位>]`

    参数：
    - tool_name：可选；已知时追加前 8 个字符（便于排障）
    - taken：可选；同一响应/stream 内已发出的 id 集合。生成结果保证不在其中，并会写入该集合。
    """

    name_part = f"_{tool_name[:8]}" if isinstance(tool_name, str) and tool_name else ""
    while True:
        call_id = f"call_{now_ms()}_{random_suffix()}{name_part}"
        if taken is None:
            return call_id
        if call_id not in taken:
            taken.add(call_id)
            return call_id


def generate_execution_id(tool_name: str) -> str:
    """生成 tool 执行 id（进程内全局唯一）：`<tool_name>_<epoch_ms>_<base36>`。"""
    return f"{tool_name}_{now_ms()}_{random_suffix()}"


def json_dumps_compact(value: Any) -> str:
    """
    紧凑 JSON 序列化（与 JS `JSON.stringify` 的默认输出形态一致）。

    说明：
    - 不转义非 ASCII；分隔符不带空格；相同输入产出字节级相同输出。
    """
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def is_valid_json(text: str) -> bool:
    """判断字符串是否为可解析的 JSON。"""
    try:
        json.loads(text)
    except (TypeError, ValueError):
        return False
    return True
