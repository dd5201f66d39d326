"""
Error taxonomy — the typed failures that cross component boundaries.

GenerationError carries one of a closed set of kinds. Backends and
strategies translate whatever they catch into this taxonomy before control
returns to the coordinator; nothing above the strategy layer ever sees an
SDK exception.
"""

from __future__ import annotations

from enum import Enum


class GenerationErrorKind(str, Enum):
    CONTEXT_WINDOW_EXCEEDED = "context_window_exceeded"
    ASSETS_UNAVAILABLE = "assets_unavailable"
    DECODING_FAILURE = "decoding_failure"
    GUARDRAIL_VIOLATION = "guardrail_violation"
    UNSUPPORTED_GUIDE = "unsupported_guide"
    UNSUPPORTED_LANGUAGE_OR_LOCALE = "unsupported_language_or_locale"
    RATE_LIMITED = "rate_limited"
    SESSION_INITIALIZATION_FAILED = "session_initialization_failed"
    OTHER = "other"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @property
    def recovery_suggestion(self) -> str:
        return _SUGGESTIONS[self]


_DESCRIPTIONS = {
    GenerationErrorKind.CONTEXT_WINDOW_EXCEEDED: "Context window size exceeded",
    GenerationErrorKind.ASSETS_UNAVAILABLE: "Required model assets are unavailable",
    GenerationErrorKind.DECODING_FAILURE: "Failed to process the response format",
    GenerationErrorKind.GUARDRAIL_VIOLATION: "Content detected likely to be unsafe",
    GenerationErrorKind.UNSUPPORTED_GUIDE: "Unsupported response format requested",
    GenerationErrorKind.UNSUPPORTED_LANGUAGE_OR_LOCALE: (
        "Language or locale not supported"
    ),
    GenerationErrorKind.RATE_LIMITED: "Too many requests",
    GenerationErrorKind.SESSION_INITIALIZATION_FAILED: (
        "Could not start a generation session"
    ),
    GenerationErrorKind.OTHER: "An unknown error occurred",
}

_SUGGESTIONS = {
    GenerationErrorKind.CONTEXT_WINDOW_EXCEEDED: (
        "Try starting a new conversation or shortening your message."
    ),
    GenerationErrorKind.ASSETS_UNAVAILABLE: (
        "Please try again in a few moments. The model may be temporarily unavailable."
    ),
    GenerationErrorKind.DECODING_FAILURE: (
        "Please try rephrasing your request or start a new conversation."
    ),
    GenerationErrorKind.GUARDRAIL_VIOLATION: (
        "Please rephrase your request to avoid potentially harmful content."
    ),
    GenerationErrorKind.UNSUPPORTED_GUIDE: (
        "Try simplifying your request or asking in a different way."
    ),
    GenerationErrorKind.UNSUPPORTED_LANGUAGE_OR_LOCALE: (
        "Please try using a supported language or locale."
    ),
    GenerationErrorKind.RATE_LIMITED: (
        "Please wait a moment before sending another message."
    ),
    GenerationErrorKind.SESSION_INITIALIZATION_FAILED: (
        "Check the backend configuration and try again."
    ),
    GenerationErrorKind.OTHER: "Please try again later.",
}


class GenerationError(Exception):
    """A generation backend failure, tagged with its kind."""

    def __init__(self, kind: GenerationErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        message = f"{kind.description}: {detail}" if detail else kind.description
        super().__init__(message)

    @property
    def is_context_overflow(self) -> bool:
        return self.kind is GenerationErrorKind.CONTEXT_WINDOW_EXCEEDED


class PersistenceError(Exception):
    """A session store read or write failed."""


class PermissionDenied(Exception):
    """Microphone or speech-recognition permission was not granted."""


class RecognitionError(Exception):
    """The transcription source failed mid-recording."""
