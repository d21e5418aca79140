"""Tests for the JSON chat client (Claude SDK calls are patched)."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

import ai_client
from ai_client import (
    MAX_PROMPT_CHARS,
    AIClientError,
    AITimeoutError,
    chat_json,
    enforce_prompt_size,
    extract_first_json_object,
    parse_json_safely,
)


class TestJsonExtraction:
    def test_plain_json(self):
        assert parse_json_safely('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert parse_json_safely('```json\n{"a": {"b": 2}}\n```') == {"a": {"b": 2}}

    def test_json_with_prose(self):
        text = 'Here is the summary: {"overall_progress": "ok"} Let me know!'
        assert extract_first_json_object(text) == '{"overall_progress": "ok"}'

    def test_no_json(self):
        with pytest.raises(AIClientError, match="did not include JSON"):
            parse_json_safely("no braces here")

    def test_incomplete_json(self):
        with pytest.raises(AIClientError, match="incomplete"):
            parse_json_safely('{"a": {"b": 1}')

    def test_empty(self):
        with pytest.raises(AIClientError, match="empty"):
            parse_json_safely("   ")


class TestPromptSize:
    def test_system_consumes_budget_first(self):
        system, user = enforce_prompt_size("s" * (MAX_PROMPT_CHARS - 10), "u" * 100)
        assert len(system) + len(user) == MAX_PROMPT_CHARS
        assert len(user) == 10

    def test_oversized_system(self):
        system, user = enforce_prompt_size("s" * (MAX_PROMPT_CHARS + 5), "hello")
        assert len(system) == MAX_PROMPT_CHARS
        assert user == ""


class TestChatJson:
    async def test_parses_model_text(self):
        with patch("ai_client._query_claude", new_callable=AsyncMock) as mock:
            mock.return_value = '```json\n{"overall_progress": "Shipped"}\n```'
            result = await chat_json("prompt", system="sys", model="haiku")
        assert result == {"overall_progress": "Shipped"}
        system_prompt, user_prompt, model = mock.call_args.args
        assert system_prompt.startswith(ai_client.JSON_ONLY_INSTRUCTION)
        assert "sys" in system_prompt
        assert (user_prompt, model) == ("prompt", "haiku")

    async def test_timeout(self):
        async def slow(*args):
            await asyncio.sleep(1)
            return "{}"

        with patch("ai_client._query_claude", side_effect=slow):
            with pytest.raises(AITimeoutError):
                await chat_json("prompt", model="sonnet", timeout=0.01)

    async def test_sdk_failure_wrapped(self):
        with patch("ai_client._query_claude", new_callable=AsyncMock) as mock:
            mock.side_effect = RuntimeError("CLI not found")
            with pytest.raises(AIClientError, match="CLI not found"):
                await chat_json("prompt", model="sonnet")

    async def test_empty_response(self):
        with patch("ai_client._query_claude", new_callable=AsyncMock, return_value=""):
            with pytest.raises(AIClientError, match="did not contain text"):
                await chat_json("prompt", model="sonnet")

    async def test_response_too_large(self):
        payload = '{"a": "' + "x" * ai_client.MAX_RESPONSE_CHARS + '"}'
        with patch("ai_client._query_claude", new_callable=AsyncMock, return_value=payload):
            with pytest.raises(AIClientError, match="too large"):
                await chat_json("prompt", model="sonnet")
