"""
Backend Registry — factory functions to get the right backend by config.

Add a new backend? Just add an elif. No plugin systems, no metaclasses.
"""

from __future__ import annotations

import colloquy.core.config as config_module
from colloquy.backend.base import (
    AudioFactory,
    GenerationBackend,
    TranscriptionSource,
)


def get_generation_backend() -> GenerationBackend:
    provider = config_module.config.llm.provider.lower()
    if provider in ("openai", "openrouter"):
        from colloquy.backend.openai_backend import OpenAIBackend

        return OpenAIBackend()
    raise ValueError(f"Unknown LLM provider: {provider}")


def get_transcription_source(audio: AudioFactory) -> TranscriptionSource:
    provider = config_module.config.stt.provider.lower()
    if provider == "deepgram":
        from colloquy.backend.deepgram_transcription import (
            DeepgramTranscriptionSource,
        )

        return DeepgramTranscriptionSource(audio)
    raise ValueError(f"Unknown STT provider: {provider}")
