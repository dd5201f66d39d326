"""Tests for backend conversations, partial JSON parsing and OpenAI error mapping."""

import json

import httpx
import openai
import pytest

from colloquy.backend.base import BackendConversation, estimate_tokens
from colloquy.backend.openai_backend import (
    OpenAIBackend,
    parse_partial_json,
    translate_error,
)
from colloquy.backend.schemas import (
    CHAT_RESPONSE,
    CONVERSATION_TURN,
    FRIENDLY_ERROR,
    SESSION_TITLE,
)
from colloquy.chat.errors import GenerationError, GenerationErrorKind

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _response(status: int) -> httpx.Response:
    return httpx.Response(status, request=_REQUEST)


# ─── BackendConversation ──────────────────────────────────────


@pytest.mark.asyncio
async def test_conversation_sends_instructions_history_and_prompt(backend):
    backend.queue_response(None, "Hi!")
    conversation = backend.create_conversation(
        instructions="Be kind.",
        history=[{"role": "user", "content": "earlier"}],
    )
    assert await conversation.respond("Hello") == "Hi!"

    _, _, messages = backend.calls[0]
    assert messages[0] == {"role": "system", "content": "Be kind."}
    assert messages[1] == {"role": "user", "content": "earlier"}
    assert messages[-1] == {"role": "user", "content": "Hello"}


@pytest.mark.asyncio
async def test_conversation_records_turns_on_success(backend):
    backend.queue_stream(CHAT_RESPONSE.name, [{"content": "Hel"}, {"content": "Hello"}])
    conversation = backend.create_conversation()
    async for _ in conversation.stream("Hi", schema=CHAT_RESPONSE):
        pass
    assert conversation.transcript == [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
    ]


@pytest.mark.asyncio
async def test_conversation_accumulates_text_deltas(backend):
    backend.queue_stream(None, ["Hel", "lo", "!"])
    conversation = backend.create_conversation()
    chunks = [c async for c in conversation.stream("Hi")]
    assert chunks == ["Hel", "lo", "!"]
    assert conversation.transcript[-1] == {"role": "assistant", "content": "Hello!"}


@pytest.mark.asyncio
async def test_conversation_failure_leaves_transcript_untouched(backend):
    backend.queue_response(None, GenerationError(GenerationErrorKind.RATE_LIMITED))
    conversation = backend.create_conversation()
    with pytest.raises(GenerationError):
        await conversation.respond("Hi")
    assert conversation.transcript == []


@pytest.mark.asyncio
async def test_conversation_raises_context_overflow_over_budget(backend):
    conversation = BackendConversation(
        backend,
        history=[{"role": "user", "content": "x" * 400}],
        max_context_tokens=50,
    )
    with pytest.raises(GenerationError) as exc_info:
        await conversation.respond("Hi")
    assert exc_info.value.kind is GenerationErrorKind.CONTEXT_WINDOW_EXCEEDED
    assert backend.calls == []


def test_create_conversation_fails_when_backend_not_ready(backend):
    backend.create_error = GenerationError(
        GenerationErrorKind.SESSION_INITIALIZATION_FAILED
    )
    with pytest.raises(GenerationError):
        backend.create_conversation()


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


# ─── Schemas ──────────────────────────────────────────────────


def test_schemas_are_strict_objects():
    for schema in (CHAT_RESPONSE, CONVERSATION_TURN, SESSION_TITLE, FRIENDLY_ERROR):
        body = schema.schema
        assert body["type"] == "object"
        assert body["additionalProperties"] is False
        assert set(body["required"]) == set(body["properties"])


def test_conversation_turn_nests_response():
    props = CONVERSATION_TURN.schema["properties"]
    assert set(props["response"]["properties"]) == {"content", "tone", "confidence"}
    assert "intent" in props["analysis"]["properties"]


# ─── Partial JSON ─────────────────────────────────────────────


def test_partial_json_complete_document():
    assert parse_partial_json('{"content": "hi"}') == {"content": "hi"}


def test_partial_json_closes_open_string():
    assert parse_partial_json('{"content": "Hel') == {"content": "Hel"}


def test_partial_json_closes_nested_objects():
    text = '{"analysis": {"intent": "question"}, "response": {"content": "The ans'
    assert parse_partial_json(text) == {
        "analysis": {"intent": "question"},
        "response": {"content": "The ans"},
    }


def test_partial_json_drops_incomplete_member():
    assert parse_partial_json('{"content": "Hello", "confid') == {"content": "Hello"}
    assert parse_partial_json('{"content": "Hello", "confidence": 0.') == {
        "content": "Hello"
    }


def test_partial_json_nothing_usable_yet():
    assert parse_partial_json("") is None
    assert parse_partial_json('{"cont') is None


# ─── OpenAI adapter ───────────────────────────────────────────


def test_translate_rate_limit():
    error = translate_error(
        openai.RateLimitError("slow down", response=_response(429), body=None)
    )
    assert error.kind is GenerationErrorKind.RATE_LIMITED


def test_translate_context_length():
    exc = openai.BadRequestError(
        "too long",
        response=_response(400),
        body={"code": "context_length_exceeded", "message": "too long"},
    )
    assert translate_error(exc).kind is GenerationErrorKind.CONTEXT_WINDOW_EXCEEDED


def test_translate_content_filter():
    exc = openai.BadRequestError(
        "blocked", response=_response(400), body={"code": "content_filter"}
    )
    assert translate_error(exc).kind is GenerationErrorKind.GUARDRAIL_VIOLATION


def test_translate_unsupported_response_format():
    exc = openai.BadRequestError(
        "Invalid parameter: 'response_format' of type 'json_schema' is not supported",
        response=_response(400),
        body=None,
    )
    assert translate_error(exc).kind is GenerationErrorKind.UNSUPPORTED_GUIDE


def test_translate_connection_error():
    exc = openai.APIConnectionError(request=_REQUEST)
    assert translate_error(exc).kind is GenerationErrorKind.ASSETS_UNAVAILABLE


def test_translate_json_and_unknown():
    decode = json.JSONDecodeError("Expecting value", "{", 1)
    assert translate_error(decode).kind is GenerationErrorKind.DECODING_FAILURE
    assert translate_error(RuntimeError("boom")).kind is GenerationErrorKind.OTHER


def test_translate_passes_generation_errors_through():
    original = GenerationError(GenerationErrorKind.GUARDRAIL_VIOLATION)
    assert translate_error(original) is original


def test_openai_backend_not_started_cannot_open_conversation():
    with pytest.raises(GenerationError) as exc_info:
        OpenAIBackend().create_conversation()
    assert exc_info.value.kind is GenerationErrorKind.SESSION_INITIALIZATION_FAILED
