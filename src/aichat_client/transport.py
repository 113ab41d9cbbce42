"""Streaming transport to an OpenAI-compatible provider (NanoGPT).

Turns a ``chat/completions`` SSE stream into the event dicts consumed by the
reconciliation engine, executing tool calls between steps.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import httpx

from .config import (
    MAX_OUTPUT_TOKENS,
    MAX_TOOL_STEPS,
    PLACEHOLDER_API_KEY,
    get_nanogpt_api_key,
    get_nanogpt_base_url,
)
from .core import Message, generate_id
from .errors import (
    AuthenticationError,
    MalformedStreamError,
    MissingCredentialError,
    RateLimitError,
    StreamTimeoutError,
    TransportError,
)
from .search import TOOL_NAME as SEARCH_TOOL_NAME
from .search import run_search_tool, tool_schema

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[Any], Awaitable[Any]]


class ChatTransport(ABC):
    """Source of stream events for one exchange."""

    def validate_credentials(self) -> None:
        """Raise :class:`MissingCredentialError` if the transport cannot authenticate."""

    @abstractmethod
    def stream(self, messages: list[Message], model_id: str) -> AsyncIterator[dict]:
        """Yield stream events answering ``messages`` with ``model_id``."""
        ...


class NanoGPTTransport(ChatTransport):
    """Chat completions over NanoGPT's OpenAI-compatible API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        tools: dict[str, tuple[dict, ToolExecutor]] | None = None,
        max_steps: int = MAX_TOOL_STEPS,
        max_output_tokens: int = MAX_OUTPUT_TOKENS,
    ):
        self.api_key = api_key if api_key is not None else get_nanogpt_api_key()
        self.base_url = (base_url or get_nanogpt_base_url()).rstrip("/")
        self._client = client
        self.tools = tools if tools is not None else {SEARCH_TOOL_NAME: (tool_schema(), run_search_tool)}
        self.max_steps = max_steps
        self.max_output_tokens = max_output_tokens

    def validate_credentials(self) -> None:
        if not self.api_key:
            raise MissingCredentialError()
        if self.api_key == PLACEHOLDER_API_KEY:
            raise MissingCredentialError(
                "Please replace the placeholder NANOGPT_API_KEY with your actual API key."
            )

    async def stream(self, messages: list[Message], model_id: str) -> AsyncIterator[dict]:
        self.validate_credentials()

        message_id = generate_id()
        conversation = to_provider_messages(messages)
        yield {"type": "start", "messageId": message_id}

        for step in range(self.max_steps):
            tool_calls: list[dict] = []
            step_text = []

            async for chunk in self._completion_chunks(conversation, model_id):
                for choice in chunk.get("choices") or []:
                    if not isinstance(choice, dict):
                        continue
                    delta = choice.get("delta") or {}

                    reasoning = delta.get("reasoning") or delta.get("reasoning_content")
                    if isinstance(reasoning, str) and reasoning:
                        yield {"type": "reasoning-delta", "messageId": message_id, "delta": reasoning}

                    content = delta.get("content")
                    if isinstance(content, str) and content:
                        step_text.append(content)
                        yield {"type": "text-delta", "messageId": message_id, "delta": content}

                    for event in _merge_tool_calls(tool_calls, delta.get("tool_calls")):
                        event["messageId"] = message_id
                        yield event

            if not tool_calls:
                break

            logger.debug("Step %d requested %d tool call(s)", step + 1, len(tool_calls))
            conversation.append({
                "role": "assistant",
                "content": "".join(step_text) or None,
                "tool_calls": [
                    {
                        "id": call["id"],
                        "type": "function",
                        "function": {"name": call["name"], "arguments": call["arguments"]},
                    }
                    for call in tool_calls
                ],
            })

            for call in tool_calls:
                args = _parse_arguments(call["arguments"])
                yield {
                    "type": "tool-input-available",
                    "messageId": message_id,
                    "toolCallId": call["id"],
                    "toolName": call["name"],
                    "input": args,
                }
                output = await self._execute_tool(call["name"], args)
                yield {
                    "type": "tool-result",
                    "messageId": message_id,
                    "toolCallId": call["id"],
                    "toolName": call["name"],
                    "output": output,
                    "isError": isinstance(output, dict) and isinstance(output.get("error"), str),
                }
                conversation.append({
                    "role": "tool",
                    "tool_call_id": call["id"],
                    "content": json.dumps(output, ensure_ascii=False, default=str),
                })

        yield {"type": "finish", "messageId": message_id}

    # ── Private helpers ──────────────────────────────────────────────

    async def _completion_chunks(self, conversation: list[dict], model_id: str) -> AsyncIterator[dict]:
        """POST one streaming completion and yield its decoded SSE chunks."""
        payload = {
            "model": model_id,
            "messages": conversation,
            "max_tokens": self.max_output_tokens,
            "stream": True,
        }
        if self.tools:
            payload["tools"] = [schema for schema, _ in self.tools.values()]
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "text/event-stream",
        }

        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))
        try:
            async with client.stream(
                "POST", f"{self.base_url}/chat/completions", json=payload, headers=headers
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")[:500]
                    raise _error_for_status(response.status_code, body)

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == "[DONE]":
                        return
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError as e:
                        raise MalformedStreamError(f"Undecodable stream chunk: {data[:200]}") from e
                    if not isinstance(chunk, dict):
                        raise MalformedStreamError(f"Unexpected stream chunk: {data[:200]}")
                    if chunk.get("error"):
                        raise TransportError(_error_text(chunk["error"]))
                    yield chunk
        except httpx.HTTPError as e:
            raise TransportError(f"Model provider request failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

    async def _execute_tool(self, name: str, args: dict) -> Any:
        """Run a tool; failures come back as ``{"error": ...}`` data."""
        entry = self.tools.get(name)
        if entry is None:
            return {"error": f"Unknown tool: {name}"}
        _, executor = entry
        try:
            return await executor(args)
        except Exception as e:
            logger.exception("Tool %s failed", name)
            return {"error": f"{type(e).__name__}: {e}"}


def to_provider_messages(messages: list[Message]) -> list[dict]:
    """Convert canonical messages to chat-completions ``messages``."""
    return [
        {"role": m.role, "content": m.content}
        for m in messages
        if m.content
    ]


async def iterate_with_deadline(events: AsyncIterator[dict], timeout: float) -> AsyncIterator[dict]:
    """Re-yield ``events``, raising :class:`StreamTimeoutError` past ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    iterator = events.__aiter__()
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise StreamTimeoutError(f"Exchange exceeded {timeout:g}s")
        try:
            event = await asyncio.wait_for(iterator.__anext__(), remaining)
        except StopAsyncIteration:
            return
        except asyncio.TimeoutError as e:
            raise StreamTimeoutError(f"Exchange exceeded {timeout:g}s") from e
        yield event


def _merge_tool_calls(accumulator: list[dict], deltas: Any) -> list[dict]:
    """Fold streamed tool-call fragments into ``accumulator``; return new events."""
    events = []
    for delta in deltas or []:
        if not isinstance(delta, dict):
            continue

        index = delta.get("index")
        if not isinstance(index, int) or index < 0:
            index = len(accumulator)
        function = delta.get("function") or {}

        while len(accumulator) <= index:
            accumulator.append({"id": None, "name": "", "arguments": ""})
        entry = accumulator[index]

        if entry["id"] is None:
            delta_id = delta.get("id")
            entry["id"] = delta_id if isinstance(delta_id, str) and delta_id else generate_id()
            entry["name"] = function.get("name") or ""
            start = {"type": "tool-input-start", "toolCallId": entry["id"]}
            if entry["name"]:
                start["toolName"] = entry["name"]
            events.append(start)
        elif function.get("name") and not entry["name"]:
            entry["name"] = function["name"]

        fragment = function.get("arguments")
        if isinstance(fragment, str) and fragment:
            entry["arguments"] += fragment
            events.append({
                "type": "tool-input-delta",
                "toolCallId": entry["id"],
                "inputTextDelta": fragment,
            })
    return events


def _parse_arguments(raw: str) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Tool arguments are not valid JSON: %s", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _error_for_status(status: int, body: str) -> TransportError:
    if status == 401:
        return AuthenticationError()
    if status == 429:
        return RateLimitError()
    return TransportError(f"Model provider returned HTTP {status}: {body}")


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)
