import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import types

from codex_gateway.providers.base import ChatMessage, ChatRequest, ChatStream, ContentPart, ToolDeclaration
from codex_gateway.providers.vertex_provider import (
    EmptyPart,
    FunctionCallPart,
    TextPart,
    VertexAIProvider,
    parse_chunk,
)
from codex_gateway.tests.utils.streams import (
    collect,
    iterate,
    vertex_chunk,
    vertex_function_call,
    vertex_text,
)

WEATHER_TOOL = {
    "type": "function",
    "function": {
        "name": "get_weather",
        "description": "Get the weather for a location",
        "parameters": {
            "type": "object",
            "properties": {
                "location": {"type": "string", "description": "The location to get weather for"},
            },
            "required": ["location"],
        },
    },
}


def make_client(chunks=None, response=None, stream_error=None):
    client = MagicMock()
    client.aio.models.generate_content_stream = AsyncMock(
        return_value=iterate(chunks or [], error=stream_error)
    )
    client.aio.models.generate_content = AsyncMock(return_value=response)
    return client


def make_provider(client) -> VertexAIProvider:
    return VertexAIProvider("test-project", "test-location", client=client)


def call_kwargs(client, method="generate_content_stream"):
    return getattr(client.aio.models, method).call_args.kwargs


@pytest.mark.asyncio
async def test_streaming_text_reproduces_full_response():
    client = make_client([
        vertex_text("Hello, "),
        vertex_text("this is a "),
        vertex_text("test response", finish_reason="STOP"),
    ])
    provider = make_provider(client)

    stream = await provider.create(ChatRequest(
        model="gemini-1.5-pro",
        messages=[ChatMessage(role="user", content="Hello")],
        stream=True,
    ))
    assert isinstance(stream, ChatStream)
    chunks = await collect(stream)

    assert "".join(c.choices[0].delta.content for c in chunks) == "Hello, this is a test response"
    assert [c.choices[0].finish_reason for c in chunks] == [None, None, "STOP"]
    for chunk in chunks:
        assert len(chunk.choices) == 1
        assert chunk.model == "gemini-1.5-pro"
        assert chunk.object == "chat.completion.chunk"
        assert chunk.id.startswith("chatcmpl-")
        assert chunk.choices[0].delta.role == "assistant"
        assert chunk.choices[0].delta.tool_calls is None


@pytest.mark.asyncio
async def test_system_message_goes_to_system_instruction():
    client = make_client([vertex_text("ok", finish_reason="STOP")])
    provider = make_provider(client)

    await collect(await provider.generate_stream(ChatRequest(
        model="gemini-1.5-pro",
        messages=[
            ChatMessage(role="system", content="You are a helpful assistant"),
            ChatMessage(role="user", content="Hello"),
            ChatMessage(role="assistant", content="Hi there"),
            ChatMessage(role="user", content="Bye"),
        ],
        stream=True,
    )))

    kwargs = call_kwargs(client)
    config = kwargs["config"]
    assert config.system_instruction.parts[0].text == "You are a helpful assistant"
    assert config.max_output_tokens == 2048
    assert config.tools is None
    assert [c.role for c in kwargs["contents"]] == ["user", "model", "user"]
    assert [c.parts[0].text for c in kwargs["contents"]] == ["Hello", "Hi there", "Bye"]


@pytest.mark.asyncio
async def test_multipart_content_is_flattened_without_images():
    client = make_client([vertex_text("ok")])
    provider = make_provider(client)

    await collect(await provider.generate_stream(ChatRequest(
        model="gemini-1.5-pro",
        messages=[ChatMessage(role="user", content=[
            ContentPart(type="text", text="Describe"),
            ContentPart(type="image_url", image_url={"url": "data:image/png;base64,AAAA"}),
            ContentPart(type="text", text="this picture"),
        ])],
        stream=True,
    )))

    contents = call_kwargs(client)["contents"]
    assert len(contents) == 1
    assert len(contents[0].parts) == 1
    assert contents[0].parts[0].text == "Describe this picture"


@pytest.mark.asyncio
async def test_tools_are_translated_to_function_declarations():
    client = make_client([vertex_text("ok")])
    provider = make_provider(client)

    await collect(await provider.generate_stream(ChatRequest(
        model="gemini-1.5-pro",
        messages=[ChatMessage(role="user", content="What's the weather in London?")],
        stream=True,
        tools=[
            ToolDeclaration.model_validate(WEATHER_TOOL),
            ToolDeclaration.model_validate({"type": "retrieval", "function": {"name": "ignored"}}),
        ],
    )))

    config = call_kwargs(client)["config"]
    declarations = config.tools[0].function_declarations
    assert [d.name for d in declarations] == ["get_weather"]
    assert declarations[0].description == "Get the weather for a location"
    assert declarations[0].parameters_json_schema == WEATHER_TOOL["function"]["parameters"]


@pytest.mark.asyncio
async def test_only_non_function_tools_means_no_tools():
    client = make_client([vertex_text("ok")])
    provider = make_provider(client)

    await collect(await provider.generate_stream(ChatRequest(
        model="gemini-1.5-pro",
        messages=[ChatMessage(role="user", content="hi")],
        stream=True,
        tools=[ToolDeclaration.model_validate({"type": "retrieval", "function": {"name": "x"}})],
    )))

    assert call_kwargs(client)["config"].tools is None


@pytest.mark.asyncio
async def test_function_call_becomes_tool_call_delta():
    client = make_client([vertex_function_call("get_weather", {"location": "London"}, finish_reason="STOP")])
    provider = make_provider(client)

    chunks = await collect(await provider.generate_stream(ChatRequest(
        model="gemini-1.5-pro",
        messages=[ChatMessage(role="user", content="What's the weather in London?")],
        stream=True,
        tools=[ToolDeclaration.model_validate(WEATHER_TOOL)],
    )))

    assert len(chunks) == 1
    delta = chunks[0].choices[0].delta
    assert delta.content is None
    assert len(delta.tool_calls) == 1
    call = delta.tool_calls[0]
    assert call.id.startswith("call-")
    assert call.type == "function"
    assert call.function.name == "get_weather"
    assert json.loads(call.function.arguments) == {"location": "London"}
    assert chunks[0].choices[0].finish_reason == "STOP"


@pytest.mark.asyncio
async def test_function_call_takes_precedence_over_text_in_same_chunk():
    client = make_client([
        vertex_chunk(
            types.Part(text="Let me check."),
            types.Part(function_call=types.FunctionCall(name="LS", args={})),
        )
    ])
    provider = make_provider(client)

    chunks = await collect(await provider.generate_stream(ChatRequest(
        model="gemini-1.5-pro", messages=[ChatMessage(role="user", content="ls")], stream=True,
    )))

    delta = chunks[0].choices[0].delta
    assert delta.content is None
    assert delta.tool_calls[0].function.name == "LS"
    assert delta.tool_calls[0].function.arguments == "{}"


@pytest.mark.asyncio
async def test_each_function_call_gets_a_fresh_id():
    client = make_client([
        vertex_function_call("Read", {"file_path": "a.py"}),
        vertex_function_call("Read", {"file_path": "b.py"}),
    ])
    provider = make_provider(client)

    chunks = await collect(await provider.generate_stream(ChatRequest(
        model="gemini-1.5-pro", messages=[ChatMessage(role="user", content="read")], stream=True,
    )))

    ids = [c.choices[0].delta.tool_calls[0].id for c in chunks]
    assert len(set(ids)) == 2


@pytest.mark.asyncio
async def test_non_streaming_returns_raw_response():
    raw = vertex_text("Hello, this is a test response", finish_reason="STOP")
    client = make_client(response=raw)
    provider = make_provider(client)

    result = await provider.create(ChatRequest(
        model="vertex:gemini-1.5-pro",
        messages=[ChatMessage(role="user", content="Hello")],
        stream=False,
    ))

    assert result is raw
    assert call_kwargs(client, "generate_content")["model"] == "gemini-1.5-pro"


@pytest.mark.asyncio
async def test_request_failure_propagates():
    client = make_client()
    client.aio.models.generate_content_stream.side_effect = RuntimeError("permission denied")
    provider = make_provider(client)

    with pytest.raises(RuntimeError, match="permission denied"):
        await provider.generate_stream(ChatRequest(
            model="gemini-1.5-pro", messages=[ChatMessage(role="user", content="hi")], stream=True,
        ))


@pytest.mark.asyncio
async def test_mid_stream_failure_reaches_consumer():
    client = make_client([vertex_text("partial")], stream_error=RuntimeError("stream broke"))
    provider = make_provider(client)
    stream = await provider.generate_stream(ChatRequest(
        model="gemini-1.5-pro", messages=[ChatMessage(role="user", content="hi")], stream=True,
    ))

    received = []
    with pytest.raises(RuntimeError, match="stream broke"):
        async for chunk in stream:
            received.append(chunk.choices[0].delta.content)

    assert received == ["partial"]
    assert await collect(stream) == []


@pytest.mark.asyncio
async def test_abort_stops_delivery():
    client = make_client([vertex_text(str(i)) for i in range(5)])
    provider = make_provider(client)
    stream = await provider.generate_stream(ChatRequest(
        model="gemini-1.5-pro", messages=[ChatMessage(role="user", content="count")], stream=True,
    ))

    first = await stream.__anext__()
    stream.abort()

    assert first.choices[0].delta.content == "0"
    assert await collect(stream) == []


def test_parse_chunk_handles_missing_fields():
    assert parse_chunk(SimpleNamespace()) == (EmptyPart(), None)
    assert parse_chunk(SimpleNamespace(candidates=[])) == (EmptyPart(), None)
    assert parse_chunk(SimpleNamespace(candidates=[SimpleNamespace(content=None)])) == (EmptyPart(), None)


def test_parse_chunk_variants():
    assert parse_chunk(vertex_text("hi", finish_reason="STOP")) == (TextPart("hi"), "STOP")
    assert parse_chunk(vertex_function_call("Grep", {"pattern": "x"})) == (
        FunctionCallPart(name="Grep", args={"pattern": "x"}),
        None,
    )


@pytest.mark.asyncio
async def test_only_leading_prefix_is_stripped():
    client = make_client([vertex_text("ok")])
    provider = make_provider(client)

    await collect(await provider.generate_stream(ChatRequest(
        model="vertex:tuned-vertex:v2", messages=[ChatMessage(role="user", content="hi")], stream=True,
    )))

    assert call_kwargs(client)["model"] == "tuned-vertex:v2"
