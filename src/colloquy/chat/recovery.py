"""
Error Recovery — turn generation failures into something the user can read.

Context overflow is repaired locally: keep the tail of the conversation,
add a notice, and tell the orchestrator to open a fresh backend session.
Every other failure becomes an assistant message. We first ask the backend
(on a brand-new conversation, so the failing history is not replayed) for
a warm explanation in the persona's voice; if that fails too, a static
per-kind message is used.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from colloquy.backend.base import GenerationBackend, GenerationOptions
from colloquy.backend.schemas import FRIENDLY_ERROR
from colloquy.chat.errors import GenerationError, GenerationErrorKind
from colloquy.chat.models import Message, MessageMetadata
from colloquy.chat.personas import Persona
from colloquy.core.config import config
from colloquy.core.metrics import metrics

logger = logging.getLogger(__name__)

CONTEXT_RESET_NOTICE = (
    "Our conversation got too long for me to keep track of, so I've trimmed "
    "the earlier messages. Let's keep going from here."
)

FRIENDLY_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.5

FRIENDLY_OPTIONS = GenerationOptions(temperature=0.5, max_response_tokens=300)

FRIENDLY_PROMPT = """Something went wrong while answering the user's last message.
Problem: {description}
Details: {detail}

Explain this to the user in a warm, conversational way, in your own voice.
Do not mention error codes or technical internals. If there is something
they could try instead, include it as the suggestion."""

FALLBACK_MESSAGES = {
    GenerationErrorKind.CONTEXT_WINDOW_EXCEEDED: (
        "Our conversation has gotten quite long. Could we start fresh or "
        "shorten the message a little?"
    ),
    GenerationErrorKind.ASSETS_UNAVAILABLE: (
        "I'm having trouble reaching my language model right now. "
        "Please try again in a few moments."
    ),
    GenerationErrorKind.DECODING_FAILURE: (
        "I got a bit tangled up putting that answer together. "
        "Could you try rephrasing it?"
    ),
    GenerationErrorKind.GUARDRAIL_VIOLATION: (
        "I can't help with that kind of content, but I'm happy to help with "
        "something else. Maybe try asking in a different way?"
    ),
    GenerationErrorKind.UNSUPPORTED_GUIDE: (
        "That request is a little too complex for me to format. "
        "Could you try asking in a simpler way?"
    ),
    GenerationErrorKind.UNSUPPORTED_LANGUAGE_OR_LOCALE: (
        "I'm not able to work in that language yet. "
        "Could we try a language I support?"
    ),
    GenerationErrorKind.RATE_LIMITED: (
        "I'm getting a lot of requests right now. "
        "Give me a moment and send that again?"
    ),
    GenerationErrorKind.SESSION_INITIALIZATION_FAILED: (
        "I couldn't get myself set up to answer. "
        "Please check the connection settings and try again."
    ),
    GenerationErrorKind.OTHER: (
        "Something unexpected happened on my end. Please try again."
    ),
}


@dataclass(frozen=True)
class Recovery:
    """What the orchestrator should do after a failed turn.

    `messages` replaces the session's message list when set. `reply` is
    appended after it when set. `reset_conversation` discards the backend
    conversation so the next turn starts a fresh one.
    """

    reply: Message | None = None
    messages: tuple[Message, ...] | None = None
    reset_conversation: bool = False


class ErrorRecovery:
    def __init__(
        self,
        backend: GenerationBackend,
        keep_messages: int | None = None,
    ) -> None:
        self._backend = backend
        self._keep = (
            keep_messages
            if keep_messages is not None
            else config.chat.context_keep_messages
        )

    async def recover(
        self,
        error: GenerationError,
        messages: tuple[Message, ...] | list[Message],
        persona: Persona,
    ) -> Recovery:
        metrics.inc("errors.recovered", labels={"kind": error.kind.value})

        if error.is_context_overflow:
            kept = tuple(messages)[-self._keep:] if self._keep > 0 else ()
            logger.info(
                f"Context overflow: keeping last {len(kept)} of {len(messages)} messages",
                extra={"error_kind": error.kind.value},
            )
            return Recovery(
                messages=kept + (Message.notice(CONTEXT_RESET_NOTICE),),
                reset_conversation=True,
            )

        return Recovery(reply=await self.friendly_message(error, persona))

    async def friendly_message(
        self, error: GenerationError, persona: Persona
    ) -> Message:
        try:
            conversation = self._backend.create_conversation(
                instructions=persona.system_prompt
            )
            result = await conversation.respond(
                FRIENDLY_PROMPT.format(
                    description=error.kind.description,
                    detail=error.detail or "none",
                ),
                schema=FRIENDLY_ERROR,
                options=FRIENDLY_OPTIONS,
            )
            text = str(result.get("message") or "").strip()
            if not text:
                raise GenerationError(GenerationErrorKind.OTHER, "empty friendly message")
            suggestion = str(result.get("suggestion") or "").strip()
            if suggestion:
                text = f"{text}\n\n{suggestion}"
            return Message.assistant(
                text, metadata=MessageMetadata(confidence=FRIENDLY_CONFIDENCE)
            )
        except Exception as e:
            logger.warning(f"Friendly error generation failed, using fallback: {e}")
            metrics.inc("errors.friendly_fallback")
            return self.fallback_message(error.kind)

    @staticmethod
    def fallback_message(kind: GenerationErrorKind) -> Message:
        return Message.assistant(
            FALLBACK_MESSAGES.get(kind, FALLBACK_MESSAGES[GenerationErrorKind.OTHER]),
            metadata=MessageMetadata(confidence=FALLBACK_CONFIDENCE),
        )
