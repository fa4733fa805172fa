"""
配置加载器（YAML + pydantic）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者），最底层是包内 `assets/default.yaml`；
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）；
- 本模块不读取环境变量（环境变量映射见 `dudoxx_ai.bootstrap`）。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Literal, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from dudoxx_ai.config.defaults import load_default_config_dict


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(overlay_value, Mapping)
        ):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class DudoxxLlmConfig(BaseModel):
    """LLM 连接配置（最小集合）。"""

    model_config = ConfigDict(extra="forbid")

    class Retry(BaseModel):
        """
        传输层重试/退避策略。

        说明：
        - 只对可重试分类（rate_limit/timeout/server/network）生效；
        - base/cap/jitter 只影响“无 Retry-After 头”时的指数退避计算。
        """

        model_config = ConfigDict(extra="forbid")

        max_retries: int = Field(default=3, ge=0)
        base_delay_sec: float = Field(default=0.5, ge=0.0)
        cap_delay_sec: float = Field(default=8.0, ge=0.0)
        jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0)

    base_url: Optional[str] = None
    api_key_env: str = "DUDOXX_API_KEY"
    timeout_sec: float = Field(default=60, gt=0)
    retry: Retry = Field(default_factory=Retry)
    headers: Dict[str, str] = Field(default_factory=dict)


class DudoxxModelsConfig(BaseModel):
    """模型选择（chat / reasoning / embedding）。"""

    model_config = ConfigDict(extra="forbid")

    chat: Optional[str] = None
    reasoning: Optional[str] = None
    embedding: Optional[str] = None


class DudoxxEmbeddingConfig(BaseModel):
    """Embedding 调用参数。"""

    model_config = ConfigDict(extra="forbid")

    max_embeddings_per_call: int = Field(default=32, ge=1)
    supports_parallel_calls: bool = True
    encoding_format: Literal["float", "base64"] = "float"
    dimensions: Optional[int] = Field(default=None, ge=1)


class ToolExecutionConfig(BaseModel):
    """
    Tool 执行监控配置。

    字段：
    - timeout_ms：单次 attempt 的超时
    - max_retries：首次之后的额外尝试次数（3 表示最多 4 次 attempt）
    - retry_delay_ms / max_retry_delay_ms：指数退避基数与上限
    - jitter：是否叠加随机抖动
    - enable_metrics：是否记录 args/result 并写入历史
    - history_capacity：已完成记录的环形缓冲容量（超出后淘汰最旧的）
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout_ms: int = Field(default=30_000, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1_000, ge=0)
    max_retry_delay_ms: int = Field(default=30_000, ge=0)
    jitter: bool = False
    enable_metrics: bool = True
    history_capacity: int = Field(default=1_000, ge=1)


class DudoxxConfig(BaseModel):
    """Provider 总配置（校验后的最终形态）。"""

    model_config = ConfigDict(extra="forbid")

    llm: DudoxxLlmConfig = Field(default_factory=DudoxxLlmConfig)
    models: DudoxxModelsConfig = Field(default_factory=DudoxxModelsConfig)
    embedding: DudoxxEmbeddingConfig = Field(default_factory=DudoxxEmbeddingConfig)
    tool_execution: ToolExecutionConfig = Field(default_factory=ToolExecutionConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"配置文件不存在：{path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件根节点必须为 mapping(dict)：{path}")
    return data


def load_config_dicts(config_dicts: Iterable[Mapping[str, Any]], *, include_defaults: bool = True) -> DudoxxConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `DudoxxConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    - include_defaults：是否以内置 default.yaml 作为最底层
    """

    merged: Dict[str, Any] = load_default_config_dict() if include_defaults else {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return DudoxxConfig.model_validate(merged)


def load_config(config_paths: Iterable[Path]) -> DudoxxConfig:
    """
    加载并合并多个配置文件，返回校验后的 `DudoxxConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: list[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
