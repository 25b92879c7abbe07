"""
Async client for the remote reasoning service.

- Connection pooling (aiohttp) for HTTP connection reuse
- Concurrent request limiting (asyncio.Semaphore)
- Bounded total timeout per call
- One retry with linear backoff on 429/5xx, then give up

``query()`` never raises: every failure is logged and reported as ``None``
so the enrichment gateway can degrade to a PASS.

Environment Variables:
    LLM_ENDPOINT_URL: Responses-style endpoint (default: https://api.openai.com/v1/responses)
    LLM_API_KEY: Bearer token (OPENAI_API_KEY accepted)
    LLM_MODEL_NAME: Model name (default: gpt-5)
    LLM_TIMEOUT_SECS: Request timeout in seconds (default: 20.0)
    LLM_MAX_RETRIES: Retries after the first attempt (default: 1)
    LLM_RETRY_DELAY: Base retry delay in seconds (default: 2.0)

Usage:
    async with AsyncLLMClient() as client:
        text = await client.query(prompt, system=instructions)
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from .config import Settings, get_settings
from .logging_utils import get_logger

_logger = get_logger("llm_async")

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class LLMRequestError(Exception):
    """Retryable upstream failure (rate limit or server error)."""

    def __init__(self, status: int, retry_after: Optional[float] = None):
        super().__init__(f"llm upstream status={status}")
        self.status = status
        self.retry_after = retry_after


@dataclass
class LLMClientConfig:
    """Configuration for async LLM client."""

    endpoint_url: str = "https://api.openai.com/v1/responses"
    api_key: str = ""
    model_name: str = "gpt-5"
    timeout_secs: float = 20.0
    max_concurrent: int = 4
    max_retries: int = 1
    retry_delay: float = 2.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "LLMClientConfig":
        s = settings or get_settings()
        return cls(
            endpoint_url=s.llm_endpoint_url,
            api_key=s.llm_api_key,
            model_name=s.llm_model_name,
            timeout_secs=float(s.llm_timeout_secs),
            max_concurrent=max(1, int(s.concurrency)),
            # one retry at most per external call
            max_retries=min(1, max(0, int(s.llm_max_retries))),
            retry_delay=max(0.0, float(s.llm_retry_delay)),
        )


def extract_text(payload: Any) -> Optional[str]:
    """Pull the model's text out of a Responses / Chat Completions / plain body."""
    if isinstance(payload, str):
        return payload.strip() or None
    if not isinstance(payload, dict):
        return None
    text = payload.get("output_text")
    if isinstance(text, str) and text.strip():
        return text.strip()
    for block in payload.get("output") or ():
        if not isinstance(block, dict):
            continue
        for part in block.get("content") or ():
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                if part["text"].strip():
                    return part["text"].strip()
    if isinstance(payload.get("response"), str):
        return payload["response"].strip() or None
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        msg = choices[0].get("message") if isinstance(choices[0], dict) else None
        if isinstance(msg, dict) and isinstance(msg.get("content"), str):
            return msg["content"].strip() or None
    return None


def _retry_after(headers: Any) -> Optional[float]:
    for key in ("Retry-After", "X-RateLimit-Reset-After"):
        raw = headers.get(key) if headers is not None else None
        if raw is None:
            continue
        try:
            return float(raw)
        except (TypeError, ValueError):
            continue
    return None


class AsyncLLMClient:
    """
    Pooled aiohttp client for the reasoning service.

    Use as an async context manager; the session lives for the whole run.
    """

    def __init__(self, config: Optional[LLMClientConfig] = None):
        self.config = config or LLMClientConfig.from_settings()
        self.session: Optional[aiohttp.ClientSession] = None
        self.semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent))

    async def __aenter__(self) -> "AsyncLLMClient":
        connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=30,
            ttl_dns_cache=300,
            keepalive_timeout=60,
        )
        self.session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.config.timeout_secs),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()
            self.session = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _body(self, prompt: str, system: Optional[str]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": self.config.model_name, "input": prompt}
        if system:
            body["instructions"] = system
        return body

    async def query(self, prompt: str, *, system: Optional[str] = None) -> Optional[str]:
        """
        Send one prompt and return the model's text, or None on any failure.

        Retries ``max_retries`` times on 429/5xx.  Timeouts and transport
        errors are not retried.
        """
        attempts = 1 + self.config.max_retries
        body = self._body(prompt, system)
        async with self.semaphore:
            for attempt in range(attempts):
                try:
                    return await self._make_request(body)
                except LLMRequestError as e:
                    _logger.warning(
                        "llm_retryable_status status=%d attempt=%d/%d",
                        e.status,
                        attempt + 1,
                        attempts,
                    )
                    if attempt < attempts - 1:
                        delay = self.config.retry_delay * (attempt + 1)
                        if e.retry_after is not None:
                            delay = min(max(e.retry_after, 0.5), 5.0)
                        await asyncio.sleep(delay)
                        continue
                    return None
                except asyncio.TimeoutError:
                    _logger.warning("llm_timeout attempt=%d/%d", attempt + 1, attempts)
                    return None
                except (aiohttp.ClientError, ValueError) as e:
                    _logger.warning("llm_query_error err=%s", str(e))
                    return None
        return None

    async def _make_request(self, body: Dict[str, Any]) -> Optional[str]:
        if not self.session:
            raise RuntimeError("Session not initialized - use async with")

        async with self.session.post(
            self.config.endpoint_url, json=body, headers=self._headers()
        ) as resp:
            if resp.status in RETRYABLE_STATUSES:
                raise LLMRequestError(resp.status, _retry_after(resp.headers))
            if resp.status != 200:
                _logger.warning("llm_bad_status status=%d", resp.status)
                return None
            raw = await resp.text()

        try:
            payload = json.loads(raw)
        except ValueError:
            return raw.strip() or None
        return extract_text(payload)
