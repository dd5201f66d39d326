"""
Colloquy Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
User-facing chat preferences (persona, streaming, ...) are NOT here: they
live in the persisted Settings record. This module only covers deployment
knobs and the tuning constants of the orchestrator.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

DEFAULT_STRUCTURED_KEYWORDS = ("analyze", "compare", "explain", "summarize")


def _csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class LLMConfig:
    """Generation backend settings."""

    provider: str = "openai"
    api_key: str = ""
    base_url: str = ""
    model: str = "gpt-4o-mini"
    timeout: float = 60.0
    max_history_turns: int = 20

    @classmethod
    def from_env(cls) -> LLMConfig:
        return cls(
            provider=os.getenv("COLLOQUY_LLM_PROVIDER", "openai"),
            api_key=os.getenv("OPENAI_API_KEY", ""),
            base_url=os.getenv("COLLOQUY_LLM_BASE_URL", ""),
            model=os.getenv("COLLOQUY_LLM_MODEL", "gpt-4o-mini"),
            timeout=float(os.getenv("COLLOQUY_LLM_TIMEOUT", "60.0")),
            max_history_turns=int(os.getenv("COLLOQUY_LLM_MAX_HISTORY_TURNS", "20")),
        )


@dataclass(frozen=True)
class STTConfig:
    """Speech-to-text (transcription source) settings."""

    provider: str = "deepgram"
    api_key: str = ""
    model: str = "nova-3"
    language: str = "en"
    sample_rate: int = 16000
    encoding: str = "linear16"
    endpointing_ms: int = 300

    @classmethod
    def from_env(cls) -> STTConfig:
        return cls(
            provider=os.getenv("COLLOQUY_STT_PROVIDER", "deepgram"),
            api_key=os.getenv("DEEPGRAM_API_KEY", ""),
            model=os.getenv("COLLOQUY_STT_MODEL", "nova-3"),
            language=os.getenv("COLLOQUY_STT_LANGUAGE", "en"),
            sample_rate=int(os.getenv("COLLOQUY_STT_SAMPLE_RATE", "16000")),
            encoding=os.getenv("COLLOQUY_STT_ENCODING", "linear16"),
            endpointing_ms=int(os.getenv("COLLOQUY_STT_ENDPOINTING_MS", "300")),
        )


@dataclass(frozen=True)
class StoreConfig:
    """Session store settings."""

    db_path: str = "colloquy_sessions.db"
    recent_limit: int = 100

    @classmethod
    def from_env(cls) -> StoreConfig:
        return cls(
            db_path=os.getenv("COLLOQUY_DB_PATH", "colloquy_sessions.db"),
            recent_limit=int(os.getenv("COLLOQUY_RECENT_LIMIT", "100")),
        )


@dataclass(frozen=True)
class ChatConfig:
    """Orchestrator tuning constants.

    The keyword list and the streaming threshold drive strategy selection.
    They are heuristics carried over as-is; override them via env vars
    rather than in code.
    """

    structured_keywords: tuple[str, ...] = DEFAULT_STRUCTURED_KEYWORDS
    streaming_threshold: int = 50
    voice_timeout: float = 30.0
    context_keep_messages: int = 5
    title_min_confidence: float = 0.5
    title_max_length: int = 50

    @classmethod
    def from_env(cls) -> ChatConfig:
        keywords = os.getenv("COLLOQUY_STRUCTURED_KEYWORDS", "")
        return cls(
            structured_keywords=_csv(keywords) or DEFAULT_STRUCTURED_KEYWORDS,
            streaming_threshold=int(os.getenv("COLLOQUY_STREAMING_THRESHOLD", "50")),
            voice_timeout=float(os.getenv("COLLOQUY_VOICE_TIMEOUT", "30.0")),
            context_keep_messages=int(os.getenv("COLLOQUY_CONTEXT_KEEP", "5")),
            title_min_confidence=float(
                os.getenv("COLLOQUY_TITLE_MIN_CONFIDENCE", "0.5")
            ),
            title_max_length=int(os.getenv("COLLOQUY_TITLE_MAX_LENGTH", "50")),
        )


@dataclass(frozen=True)
class ColloquyConfig:
    """Root configuration."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    stt: STTConfig = field(default_factory=STTConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)

    @classmethod
    def from_env(cls) -> ColloquyConfig:
        return cls(
            llm=LLMConfig.from_env(),
            stt=STTConfig.from_env(),
            store=StoreConfig.from_env(),
            chat=ChatConfig.from_env(),
        )


# Singleton: import this wherever you need config
config = ColloquyConfig.from_env()
