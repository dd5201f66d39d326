"""
VoiceRecorder — one recording at a time on top of a TranscriptionSource.

Lifecycle:
  start()  → permission check → source.open() → consumer + watchdog tasks
  stop()   → cancel tasks → source.close() → drop subscribers → transcript

The watchdog hard-stops a recording after `timeout` seconds. A recognition
failure in the consumer tears down the same way. Both report through
`on_stopped(reason)` with "timeout" or "error"; an explicit stop() does not.
Cleanup runs on every exit path, and `resources_released` says so.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from colloquy.backend.base import TranscriptionSource
from colloquy.chat.errors import PermissionDenied
from colloquy.core.config import config
from colloquy.core.metrics import metrics

logger = logging.getLogger(__name__)

TranscriptCallback = Callable[[str], None]


class VoiceRecorder:
    def __init__(
        self,
        source: TranscriptionSource,
        timeout: float | None = None,
    ) -> None:
        self._source = source
        self.timeout = timeout if timeout is not None else config.chat.voice_timeout

        # State
        self.is_recording = False
        self.transcript = ""
        self.resources_released = True
        self._starting = False
        self._subscribers: list[TranscriptCallback] = []
        self._consumer_task: asyncio.Task | None = None
        self._watchdog_task: asyncio.Task | None = None

        # Callback (set by the orchestrator)
        self.on_stopped: Callable[[str], None] | None = None

    def subscribe(self, callback: TranscriptCallback) -> Callable[[], None]:
        """Receive every transcript update of the current recording."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ─── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self.is_recording or self._starting:
            logger.warning("Recording already in progress, ignoring start")
            return

        self._starting = True
        try:
            if not await self._source.request_permissions():
                metrics.inc("voice.permission_denied")
                raise PermissionDenied(
                    "Microphone or speech recognition permission not granted"
                )

            self.transcript = ""
            self.resources_released = False
            try:
                await self._source.open()
            except Exception:
                await self._release()
                raise

            self.is_recording = True
            self._consumer_task = asyncio.create_task(
                self._consume(), name="voice-consumer"
            )
            self._watchdog_task = asyncio.create_task(
                self._watchdog(), name="voice-watchdog"
            )
            metrics.inc("voice.sessions")
            logger.info("Recording started (timeout=%.1fs)", self.timeout)
        finally:
            self._starting = False

    async def stop(self) -> str:
        """Stop recording and return the final transcript ("" if not recording)."""
        transcript = self.transcript if self.is_recording else ""
        await self._release()
        if transcript:
            logger.info("Recording stopped (%d chars)", len(transcript))
        return transcript

    # ─── Background Tasks ────────────────────────────────────────

    async def _consume(self) -> None:
        try:
            async for text in self._source.transcripts():
                self.transcript = text
                for callback in list(self._subscribers):
                    callback(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Transcription failed: %s", e, exc_info=True)
            metrics.inc("errors.recognition")
            await self._finish("error")

    async def _watchdog(self) -> None:
        await asyncio.sleep(self.timeout)
        logger.info("Recording timed out after %.1fs", self.timeout)
        metrics.inc("voice.timeouts")
        await self._finish("timeout")

    async def _finish(self, reason: str) -> None:
        if not self.is_recording:
            return
        await self._release()
        if self.on_stopped:
            self.on_stopped(reason)

    async def _release(self) -> None:
        """Cancel tasks, close the source, drop subscribers. Idempotent."""
        self.is_recording = False
        current = asyncio.current_task()
        for task in (self._watchdog_task, self._consumer_task):
            if task and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except (asyncio.CancelledError, Exception):
                    pass
        self._watchdog_task = None
        self._consumer_task = None

        try:
            await self._source.close()
        except Exception as e:
            logger.warning("Transcription source close failed: %s", e)
        finally:
            self._subscribers.clear()
            self.resources_released = True
