import asyncio

import aiohttp
import pytest

from neon_pr import llm_async
from neon_pr.config import Settings
from neon_pr.llm_async import (
    AsyncLLMClient,
    LLMClientConfig,
    LLMRequestError,
    extract_text,
)


def test_extract_text_shapes():
    assert extract_text({"output_text": " hi "}) == "hi"
    assert (
        extract_text({"output": [{"content": [{"type": "output_text", "text": "a"}]}]})
        == "a"
    )
    assert extract_text({"response": "b"}) == "b"
    assert extract_text({"choices": [{"message": {"content": "c"}}]}) == "c"
    assert extract_text({"unexpected": 1}) is None
    assert extract_text(None) is None


def _client(**kw):
    cfg = LLMClientConfig(api_key="k", retry_delay=0.0, **kw)
    return AsyncLLMClient(cfg)


@pytest.mark.asyncio
async def test_query_retries_once_on_rate_limit(monkeypatch):
    client = _client(max_retries=1)
    calls = []

    async def fake_request(body):
        calls.append(body)
        if len(calls) == 1:
            raise LLMRequestError(429, retry_after=None)
        return "ok"

    monkeypatch.setattr(client, "_make_request", fake_request)
    assert await client.query("p", system="s") == "ok"
    assert len(calls) == 2
    assert calls[0]["instructions"] == "s"


@pytest.mark.asyncio
async def test_query_gives_up_after_retries(monkeypatch):
    client = _client(max_retries=1)
    calls = []

    async def always_busy(body):
        calls.append(body)
        raise LLMRequestError(503)

    monkeypatch.setattr(client, "_make_request", always_busy)
    assert await client.query("p") is None
    assert len(calls) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc", [asyncio.TimeoutError(), aiohttp.ClientConnectionError("down"), ValueError("bad")]
)
async def test_query_swallows_transport_failures(monkeypatch, exc):
    client = _client(max_retries=3)
    calls = []

    async def fail(body):
        calls.append(body)
        raise exc

    monkeypatch.setattr(client, "_make_request", fail)
    assert await client.query("p") is None
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retry_after_header_is_clamped(monkeypatch):
    client = _client(max_retries=1)
    slept = []

    async def fake_sleep(s):
        slept.append(s)

    attempts = {"n": 0}

    async def fake_request(body):
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise LLMRequestError(429, retry_after=60.0)
        return "ok"

    monkeypatch.setattr(llm_async.asyncio, "sleep", fake_sleep)
    monkeypatch.setattr(client, "_make_request", fake_request)
    assert await client.query("p") == "ok"
    assert slept == [5.0]


def test_headers_include_bearer_token():
    assert _client()._headers()["Authorization"] == "Bearer k"
    assert "Authorization" not in AsyncLLMClient(LLMClientConfig())._headers()


def test_config_from_settings_allows_one_retry_at_most():
    assert LLMClientConfig.from_settings(Settings(llm_max_retries=5)).max_retries == 1
    cfg = LLMClientConfig.from_settings(Settings(llm_max_retries=-2))
    assert cfg.max_retries == 0
