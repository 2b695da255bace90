# Traitguard
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Traitguard.
#
# Traitguard is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
Traitguard -- Ollama Chat Generator (v1.2.0)

Non-streaming chat completions against a local Ollama server.

Transient failures (timeouts, connection errors, HTTP 429/5xx) are retried
with exponential backoff. Everything else, including an empty reply, raises
GenerationError straight away.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import httpx

from traitguard.errors import GenerationError
from traitguard.validation.interfaces import ChatOptions

logger = logging.getLogger("traitguard.llm.ollama")

# ── Retry configuration ──────────────────────────────────────────────────

API_MAX_RETRIES = 3
API_RETRY_DELAY_SECONDS = 2

OLLAMA_BASE_URL = "http://localhost:11434"
OLLAMA_TIMEOUT = 300

_RETRYABLE_STATUS = (429, 500, 502, 503)


async def retry_api_call(
    func: Callable[[], Awaitable[str]],
    max_retries: int = API_MAX_RETRIES,
    delay_seconds: float = API_RETRY_DELAY_SECONDS,
    component: str = "ollama",
) -> str:
    """Retry an async API call with exponential backoff. Raises GenerationError."""
    last_error: Exception | None = None

    attempts_made = 0
    for attempt in range(max_retries):
        attempts_made = attempt + 1
        try:
            return await func()
        except httpx.HTTPStatusError as e:
            last_error = e
            status = e.response.status_code

            if status in (401, 403):
                logger.error("[%s] Auth error %d (not retrying)", component, status)
                raise GenerationError(f"Generator rejected credentials (HTTP {status})") from e

            if status == 404:
                logger.error("[%s] Resource not found: %s", component, str(e)[:200])
                raise GenerationError(
                    "Ollama model not found. Pull it first with: ollama pull <model-name>"
                ) from e

            if status in _RETRYABLE_STATUS and attempt < max_retries - 1:
                wait_time = delay_seconds * (2**attempt)
                logger.warning(
                    "[%s] Retrying in %.1fs (HTTP %d, attempt %d/%d)",
                    component,
                    wait_time,
                    status,
                    attempts_made,
                    max_retries,
                )
                await asyncio.sleep(wait_time)
                continue

            logger.error(
                "[%s] HTTP %d after %d attempt(s): %s",
                component,
                status,
                attempts_made,
                str(e)[:200],
            )
            break

        except (httpx.TimeoutException, httpx.TransportError) as e:
            last_error = e
            if attempt >= max_retries - 1:
                logger.error(
                    "[%s] API call failed after %d attempt(s): %s",
                    component,
                    attempts_made,
                    str(e)[:200],
                )
                break

            wait_time = delay_seconds * (2**attempt)
            logger.warning(
                "[%s] Retrying in %.1fs (attempt %d/%d): %s",
                component,
                wait_time,
                attempts_made,
                max_retries,
                str(e)[:100],
            )
            await asyncio.sleep(wait_time)

    raise GenerationError(
        f"Generator error after {attempts_made} attempt(s): {last_error}"
    ) from last_error


class OllamaChatGenerator:
    """
    TextGenerator backed by Ollama's /api/chat endpoint.

    Usage:
        generator = OllamaChatGenerator(model="llama3.1")
        text = await generator.generate(messages, ChatOptions(temperature=0.6))
    """

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        model: str = "llama3.1",
        timeout: float = OLLAMA_TIMEOUT,
        max_retries: int = API_MAX_RETRIES,
        retry_delay_seconds: float = API_RETRY_DELAY_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self._transport = transport

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout if timeout is not None else self.timeout,
            transport=self._transport,
        )

    async def generate(self, messages: list[dict[str, str]], options: ChatOptions) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {
                "num_predict": options.max_tokens,
                "temperature": options.temperature,
                "stop": list(options.stop_sequences),
            },
        }

        async def _do() -> str:
            async with self._client() as client:
                resp = await client.post(f"{self.base_url}/api/chat", json=payload)
                resp.raise_for_status()
                return (resp.json().get("message") or {}).get("content") or ""

        started = time.monotonic()
        content = await retry_api_call(
            _do,
            max_retries=self.max_retries,
            delay_seconds=self.retry_delay_seconds,
        )
        logger.debug(
            "Ollama %s replied in %d ms (%d chars)",
            self.model,
            int((time.monotonic() - started) * 1000),
            len(content),
        )

        if not content.strip():
            raise GenerationError("No response generated from LLM")
        return content

    async def ping(self) -> bool:
        """Is the Ollama server reachable?"""
        try:
            async with self._client(timeout=5) as client:
                resp = await client.get(f"{self.base_url}/api/tags")
                return resp.status_code == 200
        except httpx.HTTPError as e:
            logger.debug("Ollama ping failed: %s", e)
            return False
