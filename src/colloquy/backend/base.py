"""
Backend base classes — the two external boundaries the orchestrator consumes.

GenerationBackend: stateless text/structured generation (respond + stream).
TranscriptionSource: incremental speech-to-text with a permission step.

BackendConversation layers persona instructions and a running transcript on
top of a GenerationBackend. Strategies only ever talk to a conversation,
never to the backend directly; discarding the conversation is how the
orchestrator forces a fresh backend session.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterator, Callable

from colloquy.backend.schemas import ResponseSchema
from colloquy.chat.errors import GenerationError, GenerationErrorKind

logger = logging.getLogger(__name__)

# Caller-supplied raw PCM audio, one iterator per recording
AudioFactory = Callable[[], AsyncIterator[bytes]]

# Rough chars-per-token estimate for budget checks
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class GenerationOptions:
    temperature: float = 0.7
    max_response_tokens: int = 1200


class GenerationBackend(ABC):
    """
    Language-generation provider interface.

    `respond` returns a dict matching `schema`, or plain text when no schema
    is given. `stream` yields cumulative dict snapshots for a schema, or text
    deltas without one. Both raise GenerationError and nothing else.
    """

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    @abstractmethod
    async def respond(
        self,
        messages: list[dict[str, str]],
        schema: ResponseSchema | None = None,
        options: GenerationOptions | None = None,
    ) -> Any:
        ...

    @abstractmethod
    async def stream(
        self,
        messages: list[dict[str, str]],
        schema: ResponseSchema | None = None,
        options: GenerationOptions | None = None,
    ) -> AsyncGenerator[Any, None]:
        yield  # type: ignore

    def check_ready(self) -> None:
        """Raise SESSION_INITIALIZATION_FAILED when no session can be opened."""
        return None

    def create_conversation(
        self,
        instructions: str = "",
        history: list[dict[str, str]] | None = None,
        max_context_tokens: int = 8000,
    ) -> BackendConversation:
        self.check_ready()
        return BackendConversation(
            self,
            instructions=instructions,
            history=history,
            max_context_tokens=max_context_tokens,
        )

    async def health_check(self) -> dict:
        return {"provider": self.__class__.__name__, "status": "unknown"}


class BackendConversation:
    """
    One backend session: persona instructions plus the turns so far.

    A turn is only recorded once the backend call finishes; a failed call
    leaves the transcript untouched.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        instructions: str = "",
        history: list[dict[str, str]] | None = None,
        max_context_tokens: int = 8000,
    ) -> None:
        self.backend = backend
        self.instructions = instructions
        self.max_context_tokens = max_context_tokens
        self._transcript: list[dict[str, str]] = list(history or [])

    @property
    def transcript(self) -> list[dict[str, str]]:
        return list(self._transcript)

    async def respond(
        self,
        prompt: str,
        schema: ResponseSchema | None = None,
        options: GenerationOptions | None = None,
    ) -> Any:
        messages = self._build_messages(prompt)
        result = await self.backend.respond(messages, schema=schema, options=options)
        self._record(prompt, result)
        return result

    async def stream(
        self,
        prompt: str,
        schema: ResponseSchema | None = None,
        options: GenerationOptions | None = None,
    ) -> AsyncGenerator[Any, None]:
        messages = self._build_messages(prompt)
        text = ""
        last: Any = None
        async for item in self.backend.stream(messages, schema=schema, options=options):
            if schema is None:
                text += item
            else:
                last = item
            yield item
        self._record(prompt, text if schema is None else last)

    # ─── Internals ────────────────────────────────────────────────

    def _build_messages(self, prompt: str) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if self.instructions:
            messages.append({"role": "system", "content": self.instructions})
        messages.extend(self._transcript)
        messages.append({"role": "user", "content": prompt})

        total = estimate_tokens("".join(m["content"] for m in messages))
        if total > self.max_context_tokens:
            raise GenerationError(
                GenerationErrorKind.CONTEXT_WINDOW_EXCEEDED,
                f"~{total} tokens exceeds budget of {self.max_context_tokens}",
            )
        return messages

    def _record(self, prompt: str, result: Any) -> None:
        if result is None:
            return
        self._transcript.append({"role": "user", "content": prompt})
        self._transcript.append(
            {"role": "assistant", "content": _reply_text(result)}
        )


def _reply_text(result: Any) -> str:
    """Best-effort reply text for the transcript from a text or schema result."""
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        response = result.get("response")
        if isinstance(response, dict) and response.get("content"):
            return str(response["content"])
        for key in ("content", "message", "title"):
            if result.get(key):
                return str(result[key])
    return str(result)


class TranscriptionSource(ABC):
    """
    Speech-to-text source for one recording at a time.

    open() acquires the audio/recognition resources, transcripts() yields
    the full transcript so far each time recognition improves, close()
    releases everything and must be safe to call repeatedly.
    """

    @abstractmethod
    async def request_permissions(self) -> bool:
        ...

    @abstractmethod
    async def open(self) -> None:
        ...

    @abstractmethod
    def transcripts(self) -> AsyncIterator[str]:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @property
    def is_open(self) -> bool:
        return False
