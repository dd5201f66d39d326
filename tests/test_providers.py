"""Tests for backend interfaces, the registry and the Deepgram source."""

from dataclasses import replace
from types import SimpleNamespace

import pytest
from deepgram.extensions.types.sockets import ListenV1ResultsEvent

import colloquy.backend.deepgram_transcription as deepgram_module
import colloquy.backend.openai_backend as openai_module
import colloquy.core.config as config_module
from colloquy.backend.base import GenerationBackend, TranscriptionSource
from colloquy.backend.deepgram_transcription import DeepgramTranscriptionSource
from colloquy.backend.openai_backend import _get_model_name
from colloquy.backend.registry import get_generation_backend, get_transcription_source
from colloquy.chat.errors import RecognitionError


async def _no_audio():
    return
    yield


def _results(transcript: str, is_final: bool) -> ListenV1ResultsEvent:
    alternative = SimpleNamespace(transcript=transcript)
    return ListenV1ResultsEvent.model_construct(
        channel=SimpleNamespace(alternatives=[alternative]),
        is_final=is_final,
    )


def test_generation_backend_is_abstract():
    with pytest.raises(TypeError):
        GenerationBackend()  # type: ignore


def test_transcription_source_is_abstract():
    with pytest.raises(TypeError):
        TranscriptionSource()  # type: ignore


def test_registry_returns_openai():
    assert get_generation_backend().__class__.__name__ == "OpenAIBackend"


def test_registry_returns_deepgram():
    source = get_transcription_source(_no_audio)
    assert source.__class__.__name__ == "DeepgramTranscriptionSource"


def test_registry_rejects_unknown_provider(monkeypatch):
    cfg = config_module.config
    monkeypatch.setattr(
        config_module, "config", replace(cfg, llm=replace(cfg.llm, provider="nope"))
    )
    with pytest.raises(ValueError):
        get_generation_backend()


def test_openrouter_model_name_is_prefixed(monkeypatch):
    cfg = config_module.config
    monkeypatch.setattr(
        openai_module,
        "config",
        replace(
            cfg,
            llm=replace(
                cfg.llm,
                provider="openai",
                model="gpt-4o-mini",
                base_url="https://openrouter.ai/api/v1",
            ),
        ),
    )
    assert _get_model_name() == "openai/gpt-4o-mini"


def test_plain_openai_model_name_is_untouched(monkeypatch):
    cfg = config_module.config
    monkeypatch.setattr(
        openai_module,
        "config",
        replace(cfg, llm=replace(cfg.llm, model="gpt-4o", base_url="")),
    )
    assert _get_model_name() == "gpt-4o"


# ─── Deepgram ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_permission_requires_api_key(monkeypatch):
    cfg = config_module.config
    monkeypatch.setattr(
        deepgram_module, "config", replace(cfg, stt=replace(cfg.stt, api_key=""))
    )
    assert await DeepgramTranscriptionSource(_no_audio).request_permissions() is False

    monkeypatch.setattr(
        deepgram_module, "config", replace(cfg, stt=replace(cfg.stt, api_key="dg-key"))
    )
    assert await DeepgramTranscriptionSource(_no_audio).request_permissions() is True


@pytest.mark.asyncio
async def test_transcript_accumulates_finals_and_interim():
    source = DeepgramTranscriptionSource(_no_audio)
    source._on_message(_results("hello", is_final=False))
    source._on_message(_results("hello there", is_final=True))
    source._on_message(_results("how are", is_final=False))
    source._on_message(_results("", is_final=False))
    await source.close()

    assert [t async for t in source.transcripts()] == [
        "hello",
        "hello there",
        "hello there how are",
    ]


@pytest.mark.asyncio
async def test_socket_error_surfaces_as_recognition_error():
    source = DeepgramTranscriptionSource(_no_audio)
    source._on_error("socket reset")
    with pytest.raises(RecognitionError):
        async for _ in source.transcripts():
            pass


@pytest.mark.asyncio
async def test_close_is_idempotent():
    source = DeepgramTranscriptionSource(_no_audio)
    await source.close()
    await source.close()
    assert not source.is_open
