"""Tests for VoiceRecorder — start/stop, timeout, permission and failure paths."""

import asyncio

import pytest

from colloquy.chat.errors import PermissionDenied, RecognitionError
from colloquy.core.metrics import metrics
from colloquy.voice.recorder import VoiceRecorder


async def _until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_start_stop_returns_transcript(source):
    recorder = VoiceRecorder(source, timeout=5)
    updates = []
    await recorder.start()
    recorder.subscribe(updates.append)
    assert recorder.is_recording
    assert not recorder.resources_released

    source.emit("hello")
    source.emit("hello world")
    await _until(lambda: recorder.transcript == "hello world")

    assert await recorder.stop() == "hello world"
    assert updates == ["hello", "hello world"]
    assert not recorder.is_recording
    assert recorder.resources_released
    assert source.closed == 1


@pytest.mark.asyncio
async def test_stop_when_idle_returns_empty(source):
    recorder = VoiceRecorder(source, timeout=5)
    assert await recorder.stop() == ""


@pytest.mark.asyncio
async def test_second_start_is_ignored(source):
    recorder = VoiceRecorder(source, timeout=5)
    await recorder.start()
    await recorder.start()
    assert source.opened == 1
    await recorder.stop()


@pytest.mark.asyncio
async def test_permission_denied(source):
    source.granted = False
    recorder = VoiceRecorder(source, timeout=5)
    with pytest.raises(PermissionDenied):
        await recorder.start()
    assert not recorder.is_recording
    assert recorder.resources_released
    assert source.opened == 0
    assert metrics.count("voice.permission_denied") == 1


@pytest.mark.asyncio
async def test_open_failure_releases_resources(source):
    async def broken_open():
        raise RecognitionError("no audio device")

    source.open = broken_open
    recorder = VoiceRecorder(source, timeout=5)
    with pytest.raises(RecognitionError):
        await recorder.start()
    assert recorder.resources_released
    assert source.closed == 1


@pytest.mark.asyncio
async def test_timeout_stops_and_cleans_up(source):
    stopped = []
    recorder = VoiceRecorder(source, timeout=0.05)
    recorder.on_stopped = stopped.append
    await recorder.start()
    source.emit("half a sentence")

    await _until(lambda: stopped)

    assert stopped == ["timeout"]
    assert not recorder.is_recording
    assert recorder.resources_released
    assert source.closed == 1
    # What was heard survives the stop
    assert recorder.transcript == "half a sentence"
    assert metrics.count("voice.timeouts") == 1


@pytest.mark.asyncio
async def test_recognition_error_stops_recording(source):
    stopped = []
    recorder = VoiceRecorder(source, timeout=5)
    recorder.on_stopped = stopped.append
    await recorder.start()
    source.fail(RecognitionError("stream dropped"))

    await _until(lambda: stopped)

    assert stopped == ["error"]
    assert recorder.resources_released
    assert source.closed == 1
    assert metrics.count("errors.recognition") == 1


@pytest.mark.asyncio
async def test_subscribers_are_dropped_after_stop(source):
    recorder = VoiceRecorder(source, timeout=5)
    updates = []
    await recorder.start()
    recorder.subscribe(updates.append)
    await recorder.stop()

    await recorder.start()
    source.emit("new recording")
    await _until(lambda: recorder.transcript == "new recording")
    assert updates == []
    await recorder.stop()


@pytest.mark.asyncio
async def test_unsubscribe(source):
    recorder = VoiceRecorder(source, timeout=5)
    updates = []
    await recorder.start()
    unsubscribe = recorder.subscribe(updates.append)
    unsubscribe()
    source.emit("ignored")
    await _until(lambda: recorder.transcript == "ignored")
    assert updates == []
    await recorder.stop()
