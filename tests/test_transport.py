"""Tests for the NanoGPT streaming transport."""

import asyncio
import json

import httpx
import pytest

from aichat_client.core import Message
from aichat_client.errors import (
    AuthenticationError,
    MalformedStreamError,
    MissingCredentialError,
    RateLimitError,
    StreamTimeoutError,
    TransportError,
)
from aichat_client.stream import StreamReconciliationEngine
from aichat_client.transport import NanoGPTTransport, iterate_with_deadline, to_provider_messages

BASE_URL = "https://nano.test/api/v1"


def sse(*chunks):
    lines = [f"data: {json.dumps(c)}\n\n" for c in chunks]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def delta(**fields):
    return {"choices": [{"index": 0, "delta": fields}]}


async def lookup(args):
    return {"answer": args["city"].upper()}


def make_transport(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    tools = kwargs.pop("tools", {})
    return NanoGPTTransport(api_key="nano-key", base_url=BASE_URL, client=client, tools=tools, **kwargs)


async def collect(transport, messages=None, model_id="vendor/large"):
    messages = messages or [Message(id="u1", role="user", content="Hi")]
    return [event async for event in transport.stream(messages, model_id)]


@pytest.mark.asyncio
async def test_text_and_reasoning_events():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["url"] = str(request.url)
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, content=sse(
            delta(reasoning="Thinking"),
            delta(content="Hello"),
            delta(content=" world"),
        ))

    events = await collect(make_transport(handler))

    assert seen["auth"] == "Bearer nano-key"
    assert seen["url"] == f"{BASE_URL}/chat/completions"
    assert seen["payload"]["model"] == "vendor/large"
    assert seen["payload"]["stream"] is True
    assert seen["payload"]["max_tokens"] == 2000
    assert seen["payload"]["messages"] == [{"role": "user", "content": "Hi"}]
    assert "tools" not in seen["payload"]

    types = [e["type"] for e in events]
    assert types == ["start", "reasoning-delta", "text-delta", "text-delta", "finish"]
    assert len({e["messageId"] for e in events}) == 1


@pytest.mark.asyncio
async def test_tool_loop_folds_into_one_message():
    requests = []
    schema = {"type": "function", "function": {"name": "lookup", "parameters": {}}}

    def handler(request):
        requests.append(json.loads(request.content))
        if len(requests) == 1:
            return httpx.Response(200, content=sse(
                delta(content="Checking. "),
                delta(tool_calls=[{"index": 0, "id": "call-1", "function": {"name": "lookup", "arguments": '{"ci'}}]),
                delta(tool_calls=[{"index": 0, "function": {"arguments": 'ty": "porto"}'}}]),
            ))
        return httpx.Response(200, content=sse(delta(content="It is PORTO.")))

    transport = make_transport(handler, tools={"lookup": (schema, lookup)})
    engine = StreamReconciliationEngine()
    engine.begin_exchange(Message(id="u1", role="user", content="Where?"))
    async for event in transport.stream(engine.snapshot(), "vendor/large"):
        engine.apply(event)
    engine.finish()

    assert len(requests) == 2
    assert requests[0]["tools"] == [schema]
    follow_up = requests[1]["messages"]
    assert follow_up[1]["tool_calls"][0]["function"] == {"name": "lookup", "arguments": '{"city": "porto"}'}
    assert follow_up[2] == {"role": "tool", "tool_call_id": "call-1", "content": '{"answer": "PORTO"}'}

    assistant = engine.snapshot()[-1]
    assert assistant.content == "Checking. It is PORTO."
    assert len(assistant.tool_invocations) == 1
    invocation = assistant.tool_invocations[0]
    assert invocation.id == "call-1"
    assert invocation.tool_name == "lookup"
    assert invocation.state == "result"
    assert invocation.args == {"city": "porto"}
    assert invocation.result == {"answer": "PORTO"}
    assert invocation.is_error is False


@pytest.mark.asyncio
async def test_tool_loop_stops_after_max_steps():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=sse(
            delta(tool_calls=[{"index": 0, "id": f"call-{len(calls)}", "function": {"name": "missing", "arguments": "{}"}}]),
        ))

    events = await collect(make_transport(handler, max_steps=2))

    assert len(calls) == 2
    results = [e for e in events if e["type"] == "tool-result"]
    assert [r["output"] for r in results] == [{"error": "Unknown tool: missing"}] * 2
    assert all(r["isError"] for r in results)
    assert events[-1]["type"] == "finish"


@pytest.mark.asyncio
async def test_failing_tool_becomes_error_result():
    schema = {"type": "function", "function": {"name": "lookup", "parameters": {}}}
    requests = []

    def handler(request):
        requests.append(request)
        if len(requests) == 1:
            return httpx.Response(200, content=sse(
                delta(tool_calls=[{"index": 0, "id": "c1", "function": {"name": "lookup", "arguments": "{}"}}]),
            ))
        return httpx.Response(200, content=sse(delta(content="Sorry.")))

    events = await collect(make_transport(handler, tools={"lookup": (schema, lookup)}))

    result = next(e for e in events if e["type"] == "tool-result")
    assert result["isError"] is True
    assert result["output"]["error"].startswith("KeyError")


class TestFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (401, AuthenticationError),
        (429, RateLimitError),
        (500, TransportError),
    ])
    async def test_status_mapping(self, status, error):
        transport = make_transport(lambda request: httpx.Response(status, text="nope"))
        with pytest.raises(error) as excinfo:
            await collect(transport)
        assert excinfo.value.status_code == (status if status != 500 else 502)

    @pytest.mark.asyncio
    async def test_malformed_chunk(self):
        body = b"data: {not json\n\n"
        transport = make_transport(lambda request: httpx.Response(200, content=body))
        with pytest.raises(MalformedStreamError):
            await collect(transport)

    @pytest.mark.asyncio
    async def test_error_chunk(self):
        body = sse({"error": {"message": "model overloaded"}})
        transport = make_transport(lambda request: httpx.Response(200, content=body))
        with pytest.raises(TransportError, match="model overloaded"):
            await collect(transport)

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        with pytest.raises(TransportError):
            await collect(make_transport(handler))

    @pytest.mark.parametrize("key", ["", "your_nanogpt_api_key_here"])
    def test_missing_credential(self, key):
        transport = NanoGPTTransport(api_key=key, base_url=BASE_URL)
        with pytest.raises(MissingCredentialError) as excinfo:
            transport.validate_credentials()
        assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_iterate_with_deadline_times_out():
    async def slow():
        yield {"type": "start"}
        await asyncio.sleep(10)
        yield {"type": "finish"}

    seen = []
    with pytest.raises(StreamTimeoutError):
        async for event in iterate_with_deadline(slow(), 0.05):
            seen.append(event)
    assert seen == [{"type": "start"}]


def test_to_provider_messages_skips_empty():
    messages = [
        Message(id="1", role="system", content="Be brief."),
        Message(id="2", role="user", content="Hi"),
        Message(id="3", role="assistant", content=""),
    ]
    assert to_provider_messages(messages) == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hi"},
    ]
