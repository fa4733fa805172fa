"""内置默认配置（`assets/default.yaml`）的读取入口。"""

from __future__ import annotations

from importlib import resources
from typing import Any, Dict

import yaml


def load_default_config_dict() -> Dict[str, Any]:
    """
    读取包内 `assets/default.yaml` 并返回 dict（每次返回新对象，可安全修改）。

    异常：
    - ValueError：根节点不是 mapping
    """

    text = resources.files("dudoxx_ai").joinpath("assets/default.yaml").read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("embedded default.yaml root must be a mapping(dict)")
    return data
