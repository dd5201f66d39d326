"""
OpenAI Generation Backend — chat completions with JSON-schema output.

Structured requests use `response_format={"type": "json_schema", ...}` in
strict mode. While streaming, the raw JSON text is repaired into a partial
snapshot after every chunk so callers can show content as it arrives.
Supports OpenAI-compatible APIs (e.g., OpenRouter) via base_url.

Every SDK failure is translated into a GenerationError before it leaves
this module.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator

import openai
from openai import AsyncOpenAI

from colloquy.backend.base import GenerationBackend, GenerationOptions
from colloquy.backend.schemas import ResponseSchema
from colloquy.chat.errors import GenerationError, GenerationErrorKind
from colloquy.core.config import config
from colloquy.core.metrics import metrics

logger = logging.getLogger(__name__)


def _get_model_name() -> str:
    """Model name, prefixed with the provider when talking to OpenRouter."""
    model = config.llm.model
    base_url = config.llm.base_url.lower() if config.llm.base_url else ""
    if "openrouter" in base_url and "/" not in model:
        model = f"{config.llm.provider}/{model}"
        logger.debug(f"OpenRouter model prefixed: {model}")
    return model


def _response_format(schema: ResponseSchema) -> dict:
    return {
        "type": "json_schema",
        "json_schema": {
            "name": schema.name,
            "description": schema.description,
            "schema": schema.schema,
            "strict": True,
        },
    }


def translate_error(exc: Exception) -> GenerationError:
    """Map an openai SDK exception onto the generation error taxonomy."""
    if isinstance(exc, GenerationError):
        return exc
    message = str(exc)
    lowered = message.lower()

    if isinstance(exc, openai.RateLimitError):
        return GenerationError(GenerationErrorKind.RATE_LIMITED, message)
    if isinstance(exc, openai.BadRequestError):
        code = getattr(exc, "code", None) or ""
        if code == "context_length_exceeded" or "maximum context length" in lowered:
            return GenerationError(GenerationErrorKind.CONTEXT_WINDOW_EXCEEDED, message)
        if code == "content_filter" or "content management policy" in lowered:
            return GenerationError(GenerationErrorKind.GUARDRAIL_VIOLATION, message)
        if "response_format" in lowered or "json_schema" in lowered:
            return GenerationError(GenerationErrorKind.UNSUPPORTED_GUIDE, message)
        if "unsupported language" in lowered or "locale" in lowered:
            return GenerationError(
                GenerationErrorKind.UNSUPPORTED_LANGUAGE_OR_LOCALE, message
            )
        return GenerationError(GenerationErrorKind.OTHER, message)
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return GenerationError(GenerationErrorKind.SESSION_INITIALIZATION_FAILED, message)
    if isinstance(
        exc,
        (
            openai.APIConnectionError,
            openai.InternalServerError,
            openai.NotFoundError,
        ),
    ):
        # APITimeoutError is a subclass of APIConnectionError
        return GenerationError(GenerationErrorKind.ASSETS_UNAVAILABLE, message)
    if isinstance(exc, json.JSONDecodeError):
        return GenerationError(GenerationErrorKind.DECODING_FAILURE, message)
    return GenerationError(GenerationErrorKind.OTHER, message)


def parse_partial_json(text: str) -> Any:
    """
    Parse a possibly truncated JSON document.

    Closes an open string and any open objects/arrays. If the tail is an
    incomplete key or value, falls back to the last complete member. Returns
    None when nothing usable has arrived yet.
    """
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    stack: list[str] = []
    safe_points: list[tuple[int, list[str]]] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]":
            if stack:
                stack.pop()
        elif ch == ",":
            safe_points.append((i, list(stack)))

    candidate = text
    if in_string:
        if escaped:
            candidate = candidate[:-1]
        candidate += '"'
    candidate = candidate.rstrip().rstrip(",:").rstrip()
    attempts = [candidate + "".join(reversed(stack))]
    for index, open_stack in reversed(safe_points):
        attempts.append(text[:index] + "".join(reversed(open_stack)))

    for attempt in attempts:
        try:
            return json.loads(attempt)
        except json.JSONDecodeError:
            continue
    return None


class OpenAIBackend(GenerationBackend):
    def __init__(self) -> None:
        self.client: AsyncOpenAI | None = None

    async def start(self) -> None:
        if self.client:
            return  # Already started

        client_kwargs: dict[str, Any] = {"timeout": config.llm.timeout}
        if config.llm.api_key:
            client_kwargs["api_key"] = config.llm.api_key
        if config.llm.base_url:
            client_kwargs["base_url"] = config.llm.base_url
            logger.info(f"Using custom base_url: {config.llm.base_url}")

        try:
            self.client = AsyncOpenAI(**client_kwargs)
        except openai.OpenAIError as e:
            raise GenerationError(
                GenerationErrorKind.SESSION_INITIALIZATION_FAILED, str(e)
            ) from e
        logger.info(f"OpenAI backend ready (model={_get_model_name()})")

    async def stop(self) -> None:
        if self.client:
            await self.client.close()
        self.client = None

    def check_ready(self) -> None:
        if not self.client:
            raise GenerationError(
                GenerationErrorKind.SESSION_INITIALIZATION_FAILED,
                "OpenAI backend not started",
            )

    def _request(
        self,
        messages: list[dict[str, str]],
        schema: ResponseSchema | None,
        options: GenerationOptions | None,
    ) -> dict[str, Any]:
        options = options or GenerationOptions()
        kwargs: dict[str, Any] = {
            "model": _get_model_name(),
            "messages": messages,
            "max_tokens": options.max_response_tokens,
            "temperature": options.temperature,
        }
        if schema is not None:
            kwargs["response_format"] = _response_format(schema)
        return kwargs

    async def respond(
        self,
        messages: list[dict[str, str]],
        schema: ResponseSchema | None = None,
        options: GenerationOptions | None = None,
    ) -> Any:
        self.check_ready()
        metrics.inc("backend.requests", labels={"mode": "respond"})
        try:
            completion = await self.client.chat.completions.create(
                **self._request(messages, schema, options)
            )
            choice = completion.choices[0]
            if choice.finish_reason == "content_filter" or getattr(
                choice.message, "refusal", None
            ):
                raise GenerationError(
                    GenerationErrorKind.GUARDRAIL_VIOLATION,
                    getattr(choice.message, "refusal", None) or "content filtered",
                )
            text = choice.message.content or ""
            if schema is None:
                return text
            return json.loads(text)
        except Exception as e:
            error = translate_error(e)
            metrics.inc("backend.errors", labels={"kind": error.kind.value})
            raise error from e

    async def stream(
        self,
        messages: list[dict[str, str]],
        schema: ResponseSchema | None = None,
        options: GenerationOptions | None = None,
    ) -> AsyncGenerator[Any, None]:
        """
        Text deltas without a schema; cumulative dict snapshots with one.

        The final snapshot is parsed strictly, so a truncated document raises
        DECODING_FAILURE rather than silently returning partial data.
        """
        self.check_ready()
        metrics.inc("backend.requests", labels={"mode": "stream"})
        try:
            stream = await self.client.chat.completions.create(
                **self._request(messages, schema, options), stream=True
            )
            buffer = ""
            last_snapshot: Any = None
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason == "content_filter":
                    raise GenerationError(
                        GenerationErrorKind.GUARDRAIL_VIOLATION, "content filtered"
                    )
                delta = choice.delta.content if choice.delta else None
                if not delta:
                    continue
                if schema is None:
                    yield delta
                    continue
                buffer += delta
                snapshot = parse_partial_json(buffer)
                if snapshot is not None and snapshot != last_snapshot:
                    last_snapshot = snapshot
                    yield snapshot

            if schema is not None:
                final = json.loads(buffer)
                if final != last_snapshot:
                    yield final
        except Exception as e:
            error = translate_error(e)
            metrics.inc("backend.errors", labels={"kind": error.kind.value})
            raise error from e

    async def health_check(self) -> dict:
        return {
            "provider": "openai",
            "model": _get_model_name(),
            "status": "ready" if self.client else "not_started",
        }
