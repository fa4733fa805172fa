from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List

import httpx
import pytest

from dudoxx_ai.config.loader import DudoxxEmbeddingConfig, DudoxxLlmConfig
from dudoxx_ai.core.errors import ResponseValidationError, TooManyEmbeddingValuesForCallError
from dudoxx_ai.llm.embedding_model import DudoxxEmbeddingModel, EmbeddingModelConfig, EmbeddingSettings


def _model(handler: Any, settings: EmbeddingSettings) -> DudoxxEmbeddingModel:
    cfg = EmbeddingModelConfig(
        provider="dudoxx.embedding",
        base_url="https://api.example.test/v1/",
        headers={"Authorization": "Bearer sk-test"},
        llm=DudoxxLlmConfig(retry=DudoxxLlmConfig.Retry(max_retries=0)),
        transport=httpx.MockTransport(handler),
    )
    return DudoxxEmbeddingModel("embedder", settings, cfg)


def test_do_embed_request_and_result() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "object": "list",
                "data": [{"embedding": [0.1, 0.2], "index": 0}, {"embedding": [0.3, 0.4], "index": 1}],
                "usage": {"prompt_tokens": 6, "total_tokens": 6},
            },
        )

    model = _model(handler, EmbeddingSettings(dimensions=2, dudoxx_params={"truncate": "END"}))
    result = asyncio.run(model.do_embed(["hello", "world"], headers={"X-Trace": "t1"}))

    assert result.embeddings == [[0.1, 0.2], [0.3, 0.4]]
    assert result.usage_tokens == 6

    req = seen[0]
    assert str(req.url) == "https://api.example.test/v1/embeddings"
    assert req.headers["x-trace"] == "t1"
    body: Dict[str, Any] = json.loads(req.content)
    assert body == {
        "model": "embedder",
        "input": ["hello", "world"],
        "encoding_format": "float",
        "dimensions": 2,
        "truncate": "END",
    }


def test_too_many_values_rejected_before_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    model = _model(handler, EmbeddingSettings(max_embeddings_per_call=2))

    with pytest.raises(TooManyEmbeddingValuesForCallError) as ei:
        asyncio.run(model.do_embed(["a", "b", "c"]))
    assert ei.value.max_embeddings_per_call == 2
    assert len(ei.value.values) == 3


def test_invalid_embedding_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"embedding": "nope"}]})

    with pytest.raises(ResponseValidationError):
        asyncio.run(_model(handler, EmbeddingSettings()).do_embed(["a"]))


def test_settings_from_config_with_overrides() -> None:
    cfg = DudoxxEmbeddingConfig(max_embeddings_per_call=8, encoding_format="base64")
    settings = EmbeddingSettings.from_config(cfg, dimensions=256, max_embeddings_per_call=None)

    assert settings.max_embeddings_per_call == 8
    assert settings.encoding_format == "base64"
    assert settings.dimensions == 256
    assert settings.supports_parallel_calls is True
