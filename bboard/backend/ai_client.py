"""JSON-mode chat calls to Claude via the Claude Agent SDK."""

import os
os.environ.pop("CLAUDECODE", None)  # Allow nested Claude SDK calls

import asyncio
import json
import logging
import re

from claude_agent_sdk import (
    ClaudeSDKClient,
    ClaudeAgentOptions,
    AssistantMessage,
    ResultMessage,
    TextBlock,
)

from config import settings

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 20000
MAX_RESPONSE_CHARS = 50000
RESPONSE_SNIPPET_LENGTH = 200
JSON_ONLY_INSTRUCTION = "Return ONLY valid JSON. No markdown."


class AIClientError(Exception):
    """The model call failed or returned something that is not JSON."""


class AITimeoutError(AIClientError):
    pass


def enforce_prompt_size(system: str | None, user: str) -> tuple[str | None, str]:
    """Truncate system first, then give the user prompt whatever budget remains."""
    safe_system = system[:MAX_PROMPT_CHARS] if system else system
    remaining = MAX_PROMPT_CHARS - len(safe_system or "")
    return safe_system, (user or "")[:max(remaining, 0)]


def extract_first_json_object(text: str) -> str:
    """Return the first balanced {...} block in text (or text itself if it is valid JSON)."""
    trimmed = text.strip()
    try:
        json.loads(trimmed)
        return trimmed
    except json.JSONDecodeError:
        pass

    fenced = re.search(r"```(?:json)?\s*(.*?)\s*```", trimmed, re.DOTALL)
    if fenced:
        trimmed = fenced.group(1)

    first_brace = trimmed.find("{")
    if first_brace == -1:
        raise AIClientError("AI response did not include JSON content")

    depth = 0
    for i in range(first_brace, len(trimmed)):
        char = trimmed[i]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        if depth == 0:
            return trimmed[first_brace:i + 1]

    raise AIClientError("AI response contained incomplete JSON")


def parse_json_safely(raw_content: str):
    trimmed = raw_content.strip()
    if not trimmed:
        raise AIClientError("AI response was empty")

    content = extract_first_json_object(trimmed)
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        snippet = content[:RESPONSE_SNIPPET_LENGTH]
        raise AIClientError(f"Failed to parse AI response as JSON. Received: {snippet}")


async def _query_claude(system_prompt: str, user_prompt: str, model: str) -> str:
    """Single-turn, tool-less query; returns concatenated text blocks."""
    options = ClaudeAgentOptions(
        system_prompt=system_prompt,
        model=model,
        mcp_servers={},
        allowed_tools=[],
        permission_mode="bypassPermissions",
        max_turns=1,
    )

    result_text = []
    client = ClaudeSDKClient(options=options)
    await client.connect()
    try:
        await client.query(user_prompt)
        async for message in client.receive_response():
            if isinstance(message, AssistantMessage):
                for block in message.content:
                    if isinstance(block, TextBlock):
                        result_text.append(block.text)
            elif isinstance(message, ResultMessage):
                if message.is_error:
                    raise AIClientError(f"Model {model} returned an error: {message.result}")
    finally:
        await client.disconnect()

    return "".join(result_text)


async def chat_json(
    user: str,
    system: str | None = None,
    model: str | None = None,
    temperature: float | None = None,
    timeout: float | None = None,
):
    """Ask the model for a JSON object and return it parsed.

    ``temperature`` is accepted for call-site compatibility; the agent SDK
    uses the model's default sampling.
    """
    safe_system, safe_user = enforce_prompt_size(system, user)

    model_to_use = model or settings.AI_MODEL_DEFAULT
    if not model_to_use:
        raise AIClientError("No AI model configured")

    system_prompt = "\n\n".join(part for part in (JSON_ONLY_INSTRUCTION, safe_system) if part)
    request_timeout = timeout or settings.AI_REQUEST_TIMEOUT_SECONDS

    try:
        content = await asyncio.wait_for(
            _query_claude(system_prompt, safe_user, model_to_use),
            timeout=request_timeout,
        )
    except asyncio.TimeoutError:
        raise AITimeoutError("AI request timed out")
    except AIClientError:
        raise
    except Exception as e:
        raise AIClientError(f"AI request failed: {e}") from e

    if not content:
        raise AIClientError("AI response did not contain text content")
    if len(content) > MAX_RESPONSE_CHARS:
        raise AIClientError("AI response too large to parse")

    return parse_json_safely(content)
