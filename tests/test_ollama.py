# Traitguard
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Traitguard.
#
# Traitguard is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Tests for the Ollama chat generator, driven through httpx.MockTransport."""

import json

import httpx
import pytest

from traitguard.errors import GenerationError
from traitguard.llm.ollama import OllamaChatGenerator
from traitguard.validation.interfaces import ChatOptions

MESSAGES = [{"role": "system", "content": "You are Emily."}, {"role": "user", "content": "Hi"}]


def _generator(handler, **kwargs):
    return OllamaChatGenerator(
        base_url="http://ollama.test",
        model="llama3.1",
        retry_delay_seconds=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestGenerate:
    @pytest.mark.asyncio
    async def test_posts_chat_payload(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"message": {"role": "assistant", "content": "Hello!"}})

        text = await _generator(handler).generate(
            MESSAGES, ChatOptions(temperature=0.6, max_tokens=200, stop_sequences=["User:"])
        )

        assert text == "Hello!"
        request = seen[0]
        assert request.url.path == "/api/chat"
        body = json.loads(request.content)
        assert body["model"] == "llama3.1"
        assert body["stream"] is False
        assert body["messages"] == MESSAGES
        assert body["options"] == {"num_predict": 200, "temperature": 0.6, "stop": ["User:"]}

    @pytest.mark.asyncio
    async def test_retries_transient_server_errors(self):
        statuses = [503, 502, 200]

        def handler(request):
            status = statuses.pop(0)
            if status != 200:
                return httpx.Response(status, json={"error": "busy"})
            return httpx.Response(200, json={"message": {"content": "Back."}})

        assert await _generator(handler).generate(MESSAGES, ChatOptions()) == "Back."
        assert statuses == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"error": "boom"})

        with pytest.raises(GenerationError):
            await _generator(handler, max_retries=2).generate(MESSAGES, ChatOptions())
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_missing_model_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"error": "model not found"})

        with pytest.raises(GenerationError, match="not found"):
            await _generator(handler).generate(MESSAGES, ChatOptions())
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_connection_errors_retried_then_raised(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GenerationError):
            await _generator(handler, max_retries=3).generate(MESSAGES, ChatOptions())
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_empty_content_is_an_error(self):
        def handler(request):
            return httpx.Response(200, json={"message": {"content": "   "}})

        with pytest.raises(GenerationError, match="No response"):
            await _generator(handler).generate(MESSAGES, ChatOptions())


class TestPing:
    @pytest.mark.asyncio
    async def test_reachable(self):
        def handler(request):
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": []})

        assert await _generator(handler).ping() is True

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        assert await _generator(handler).ping() is False
