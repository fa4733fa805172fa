"""
Bootstrap（环境变量 / `.env` / YAML overlay -> 校验后的 DudoxxConfig）。

设计目标：
- 库核心无隐式 I/O：`create_dudoxx` 只读取传入的 env 映射（缺省 `os.environ`），不会自动读 `.env`；
- 本模块提供可选入口：发现并解析 `.env`（不修改 `os.environ`）、发现 overlay、把 env 映射到配置；
- 没有任何硬编码的 base URL / API key 兜底：缺失即启动期配置错误（MissingRequiredEnvVarError）。
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from dudoxx_ai.config.loader import DudoxxConfig, load_config_dicts
from dudoxx_ai.core.errors import MissingRequiredEnvVarError

ENV_FILE_VAR = "DUDOXX_ENV_FILE"
CONFIG_PATHS_VAR = "DUDOXX_CONFIG_PATHS"
API_KEY_VAR = "DUDOXX_API_KEY"
BASE_URL_VAR = "DUDOXX_BASE_URL"
MODEL_NAME_VAR = "DUDOXX_MODEL_NAME"
REASONING_MODEL_NAME_VAR = "DUDOXX_REASONING_MODEL_NAME"
EMBEDDING_MODEL_NAME_VAR = "DUDOXX_EMBEDDING_MODEL_NAME"

REQUIRED_ENV_VARS = (
    API_KEY_VAR,
    BASE_URL_VAR,
    MODEL_NAME_VAR,
    REASONING_MODEL_NAME_VAR,
    EMBEDDING_MODEL_NAME_VAR,
)

ENV_HINT = (
    "Please set them in your .env file:\n"
    f"  {API_KEY_VAR}=your_api_key\n"
    f"  {BASE_URL_VAR}=https://<your-endpoint>/v1\n"
    f"  {MODEL_NAME_VAR}=dudoxx\n"
    f"  {REASONING_MODEL_NAME_VAR}=dudoxx-reasoning\n"
    f"  {EMBEDDING_MODEL_NAME_VAR}=embedder"
)


def _get_env_nonempty(key: str, *, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """读取 env 并返回非空白字符串（否则视为未设置）。"""

    v = (os.environ if env is None else env).get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _split_paths(raw: str) -> List[str]:
    """将逗号/分号分隔的路径串切分为片段列表（去空白、去空项、保序）。"""

    parts: List[str] = []
    for chunk in raw.replace(";", ",").split(","):
        s = chunk.strip()
        if s:
            parts.append(s)
    return parts


def _parse_env_text(text: str) -> Dict[str, str]:
    """
    解析 `.env` 风格文本为键值字典。

    支持的最小语法：
    - 忽略空行与 `#` 注释行
    - 可选前缀 `export `
    - `KEY=VALUE`，并去掉 VALUE 两侧成对的单/双引号
    """

    out: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        k, v = line.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            continue
        if len(v) >= 2 and ((v[0] == v[-1] == '"') or (v[0] == v[-1] == "'")):
            v = v[1:-1]
        out[k] = v
    return out


def load_dotenv_if_present(
    *, workspace_root: Path, override: bool = False, env: Optional[Mapping[str, str]] = None
) -> Tuple[Optional[Path], Dict[str, str]]:
    """
    发现并解析 `.env`（不修改 `os.environ`）。

    发现顺序：
    1) `DUDOXX_ENV_FILE`（相对路径相对 workspace_root；指向的文件不存在时报错）
    2) `<workspace_root>/.env`

    参数：
    - override：False 时跳过 env 中已存在的键
    - env：用于判断“已存在”的映射（缺省 os.environ）

    返回：
    - (env_file_path_or_none, 应注入的键值)
    """

    base_env = os.environ if env is None else env
    ws = Path(workspace_root).resolve()
    explicit = _get_env_nonempty(ENV_FILE_VAR, env=base_env)
    if explicit:
        env_path = Path(explicit).expanduser()
        if not env_path.is_absolute():
            env_path = (ws / env_path).resolve()
        if not env_path.exists():
            raise ValueError(f"env file not found: {env_path}")
    else:
        env_path = (ws / ".env").resolve()
        if not env_path.exists():
            return None, {}

    data = _parse_env_text(env_path.read_text(encoding="utf-8"))
    if not override:
        data = {k: v for k, v in data.items() if k not in base_env}
    return env_path, data


def build_env(*, workspace_root: Path, env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """返回 `env（缺省 os.environ） + .env` 的合并映射（已存在的键优先）。"""

    merged: Dict[str, str] = dict(os.environ if env is None else env)
    _, dotenv_vars = load_dotenv_if_present(workspace_root=workspace_root, env=merged)
    merged.update(dotenv_vars)
    return merged


def discover_overlay_paths(*, workspace_root: Path, env: Optional[Mapping[str, str]] = None) -> List[Path]:
    """
    overlay 路径发现（顺序稳定、按 canonical path 去重）：
    1) `<workspace_root>/config/dudoxx.yaml`（若存在）
    2) `DUDOXX_CONFIG_PATHS`（逗号/分号分隔；相对路径相对 workspace_root）
    """

    ws = Path(workspace_root).resolve()
    overlays: List[Path] = []
    default_overlay = (ws / "config" / "dudoxx.yaml").resolve()
    if default_overlay.exists():
        overlays.append(default_overlay)

    for p in _split_paths(_get_env_nonempty(CONFIG_PATHS_VAR, env=env) or ""):
        pp = Path(p).expanduser()
        overlays.append(pp.resolve() if pp.is_absolute() else (ws / pp).resolve())

    seen: set[Path] = set()
    uniq: List[Path] = []
    for p in overlays:
        if p in seen:
            continue
        seen.add(p)
        uniq.append(p)
    return uniq


def _load_yaml_mapping(path: Path) -> Dict[str, Any]:
    """读取 overlay YAML（根节点必须是 mapping）。"""

    if not path.exists():
        raise ValueError(f"overlay config not found: {path}")
    obj = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(obj, dict):
        raise ValueError(f"overlay config root must be a mapping(dict): {path}")
    return obj


def _env_overlay(env: Mapping[str, str]) -> Dict[str, Any]:
    """把 DUDOXX_* 环境变量映射为配置 overlay（只包含已设置的键）。"""

    llm: Dict[str, Any] = {}
    models: Dict[str, Any] = {}
    base_url = _get_env_nonempty(BASE_URL_VAR, env=env)
    if base_url:
        llm["base_url"] = base_url
    for var, key in (
        (MODEL_NAME_VAR, "chat"),
        (REASONING_MODEL_NAME_VAR, "reasoning"),
        (EMBEDDING_MODEL_NAME_VAR, "embedding"),
    ):
        v = _get_env_nonempty(var, env=env)
        if v:
            models[key] = v

    out: Dict[str, Any] = {}
    if llm:
        out["llm"] = llm
    if models:
        out["models"] = models
    return out


def config_from_env(
    env: Optional[Mapping[str, str]] = None,
    *,
    workspace_root: Optional[Path] = None,
    config_paths: Optional[List[Path]] = None,
) -> DudoxxConfig:
    """
    合并 `default.yaml` -> overlays -> 环境变量，返回校验后的配置（优先级依次升高）。

    参数：
    - env：环境映射（缺省 os.environ；不会读取 `.env`，需要时先用 `build_env`）
    - workspace_root：可选；提供时按 `discover_overlay_paths` 发现 overlay
    - config_paths：可选；显式 overlay 列表（优先于自动发现）
    """

    effective_env: Mapping[str, str] = os.environ if env is None else env
    if config_paths is not None:
        paths = [Path(p) for p in config_paths]
    elif workspace_root is not None:
        paths = discover_overlay_paths(workspace_root=workspace_root, env=effective_env)
    else:
        paths = [Path(p).expanduser() for p in _split_paths(_get_env_nonempty(CONFIG_PATHS_VAR, env=effective_env) or "")]

    dicts: List[Dict[str, Any]] = [_load_yaml_mapping(p) for p in paths]
    dicts.append(_env_overlay(effective_env))
    return load_config_dicts(dicts)


def _require(var: str, example: str, env: Optional[Mapping[str, str]]) -> str:
    """读取必需变量；缺失时抛 MissingRequiredEnvVarError（带示例）。"""

    v = _get_env_nonempty(var, env=env)
    if v is None:
        raise MissingRequiredEnvVarError(
            missing_env_vars=[var],
            hint=f"{var} environment variable is required. Please set it in your .env file (e.g., {var}={example})",
        )
    return v


def get_required_chat_model(env_var_name: str = MODEL_NAME_VAR, *, env: Optional[Mapping[str, str]] = None) -> str:
    """读取必需的 chat 模型名。"""

    return _require(env_var_name, "dudoxx", env)


def get_required_reasoning_model(
    env_var_name: str = REASONING_MODEL_NAME_VAR, *, env: Optional[Mapping[str, str]] = None
) -> str:
    """读取必需的 reasoning 模型名。"""

    return _require(env_var_name, "dudoxx-reasoning", env)


def get_required_embedding_model(
    env_var_name: str = EMBEDDING_MODEL_NAME_VAR, *, env: Optional[Mapping[str, str]] = None
) -> str:
    """读取必需的 embedding 模型名。"""

    return _require(env_var_name, "embedder", env)


def get_required_base_url(env_var_name: str = BASE_URL_VAR, *, env: Optional[Mapping[str, str]] = None) -> str:
    """读取必需的 API base URL。"""

    return _require(env_var_name, "https://<your-endpoint>/v1", env)


def validate_environment(env: Optional[Mapping[str, str]] = None) -> None:
    """
    校验所有必需环境变量。

    异常：
    - MissingRequiredEnvVarError：列出全部缺失变量（不包含任何变量值）
    """

    missing = [v for v in REQUIRED_ENV_VARS if _get_env_nonempty(v, env=env) is None]
    if missing:
        raise MissingRequiredEnvVarError(missing_env_vars=missing, hint=ENV_HINT)
