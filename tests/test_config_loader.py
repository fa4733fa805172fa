from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from dudoxx_ai.config.defaults import load_default_config_dict
from dudoxx_ai.config.loader import load_config, load_config_dicts


def test_embedded_defaults() -> None:
    cfg = load_config_dicts([])

    assert cfg.llm.base_url is None
    assert cfg.llm.api_key_env == "DUDOXX_API_KEY"
    assert cfg.llm.retry.max_retries == 3
    assert cfg.embedding.max_embeddings_per_call == 32
    assert cfg.embedding.encoding_format == "float"
    assert cfg.tool_execution.timeout_ms == 30_000
    assert cfg.tool_execution.max_retries == 3
    assert cfg.tool_execution.retry_delay_ms == 1_000
    assert cfg.tool_execution.max_retry_delay_ms == 30_000
    assert cfg.tool_execution.enable_metrics is True


def test_default_dict_is_a_fresh_copy() -> None:
    a = load_default_config_dict()
    a["llm"]["timeout_sec"] = 1
    assert load_default_config_dict()["llm"]["timeout_sec"] == 60


def test_load_config_default_plus_overlay(tmp_path: Path) -> None:
    overlay_path = tmp_path / "overlay.yaml"
    overlay_path.write_text(
        "\n".join(
            [
                "llm:",
                '  base_url: "https://api.example.test/v1"',
                "  retry:",
                "    max_retries: 1",
                "models:",
                '  chat: "dudoxx"',
                "tool_execution:",
                "  timeout_ms: 500",
                "",
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_config([overlay_path])

    assert cfg.llm.base_url == "https://api.example.test/v1"
    assert cfg.llm.retry.max_retries == 1
    assert cfg.llm.retry.base_delay_sec == 0.5
    assert cfg.models.chat == "dudoxx"
    assert cfg.models.embedding is None
    assert cfg.tool_execution.timeout_ms == 500
    assert cfg.tool_execution.max_retries == 3


def test_later_overlays_win(tmp_path: Path) -> None:
    a = tmp_path / "a.yaml"
    b = tmp_path / "b.yaml"
    a.write_text("models:\n  chat: first\n  reasoning: r1\n", encoding="utf-8")
    b.write_text("models:\n  chat: second\n", encoding="utf-8")

    cfg = load_config([a, b])
    assert cfg.models.chat == "second"
    assert cfg.models.reasoning == "r1"


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"llm": {"base_urll": "typo"}}])


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"tool_execution": {"timeout_ms": 0}}])
    with pytest.raises(ValidationError):
        load_config_dicts([{"embedding": {"encoding_format": "int8"}}])


def test_missing_and_non_mapping_files(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config([tmp_path / "nope.yaml"])

    bad = tmp_path / "list.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config([bad])

    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_config([empty]).llm.timeout_sec == 60
