"""
Deepgram Transcription Source — live speech-to-text over the v5 SDK.

Audio capture is not our concern: the caller hands in a factory returning an
async iterator of raw PCM chunks (linear16 by default). We pump those chunks
to a Deepgram live socket and republish the transcript as it improves.
Each yielded string is the whole transcript so far: finalized segments plus
the current interim hypothesis.

Uses connection.on(EventType.MESSAGE, handler) + start_listening(), the same
event-based shape as the SDK examples.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from deepgram import AsyncDeepgramClient
from deepgram.core.events import EventType
from deepgram.extensions.types.sockets import (
    ListenV1ControlMessage,
    ListenV1ResultsEvent,
)

from colloquy.backend.base import AudioFactory, TranscriptionSource
from colloquy.chat.errors import RecognitionError
from colloquy.core.config import config
from colloquy.core.metrics import metrics

logger = logging.getLogger(__name__)


_CLOSED = object()


class DeepgramTranscriptionSource(TranscriptionSource):
    def __init__(self, audio: AudioFactory):
        self._audio = audio
        self.client: AsyncDeepgramClient | None = None
        self._socket = None
        self._socket_ctx = None
        self._listen_task: asyncio.Task | None = None
        self._pump_task: asyncio.Task | None = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._final_text = ""
        self._interim_text = ""
        self._open = False
        self._chunks_sent = 0

    @property
    def is_open(self) -> bool:
        return self._open

    async def request_permissions(self) -> bool:
        """Granted when Deepgram credentials are configured."""
        granted = bool(config.stt.api_key)
        if not granted:
            logger.warning("DEEPGRAM_API_KEY not set; transcription unavailable")
        return granted

    async def open(self) -> None:
        cfg = config.stt
        if self._open:
            return
        self._queue = asyncio.Queue()
        self._final_text = ""
        self._interim_text = ""
        self._chunks_sent = 0

        try:
            if self.client is None:
                self.client = AsyncDeepgramClient(api_key=cfg.api_key)
            self._socket_ctx = self.client.listen.v1.connect(
                model=cfg.model,
                language=cfg.language,
                channels="1",
                smart_format="true",
                interim_results="true",
                endpointing=str(cfg.endpointing_ms),
                encoding=cfg.encoding,
                sample_rate=str(cfg.sample_rate),
            )
            self._socket = await self._socket_ctx.__aenter__()
        except Exception as e:
            logger.error("Deepgram connect failed: %s", e, exc_info=True)
            await self.close()
            raise RecognitionError(f"Deepgram connect failed: {e}") from e

        self._socket.on(EventType.MESSAGE, self._on_message)
        self._socket.on(EventType.ERROR, self._on_error)
        self._socket.on(EventType.CLOSE, self._on_close)

        self._listen_task = asyncio.create_task(
            self._socket.start_listening(), name="deepgram-listen"
        )
        self._pump_task = asyncio.create_task(self._pump_audio(), name="deepgram-pump")
        self._open = True
        metrics.inc("provider.stt.connections")
        logger.info("Deepgram live connection opened")

    async def transcripts(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        """Tear down tasks and the socket. Safe to call more than once."""
        was_open = self._open
        self._open = False

        for task in (self._pump_task, self._listen_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except (asyncio.CancelledError, Exception):
                    pass
        self._pump_task = None
        self._listen_task = None

        if self._socket:
            try:
                await self._socket.send_control(
                    ListenV1ControlMessage(type="CloseStream")
                )
            except Exception:
                pass
        if self._socket_ctx:
            try:
                await self._socket_ctx.__aexit__(None, None, None)
            except Exception:
                pass
        self._socket = None
        self._socket_ctx = None

        self._queue.put_nowait(_CLOSED)
        if was_open:
            logger.info(
                "Deepgram live connection closed (%d chunks sent)", self._chunks_sent
            )

    # ─── Audio Pump ──────────────────────────────────────────────

    async def _pump_audio(self) -> None:
        try:
            async for chunk in self._audio():
                if not self._socket:
                    break
                await self._socket.send_media(chunk)
                self._chunks_sent += 1
                if self._chunks_sent % 500 == 0:
                    logger.debug("Deepgram audio chunks sent: %d", self._chunks_sent)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Audio pump failed: %s", e, exc_info=True)
            self._queue.put_nowait(RecognitionError(f"audio input failed: {e}"))

    # ─── V5 Event Callbacks ──────────────────────────────────────

    def _on_message(self, message) -> None:
        if not isinstance(message, ListenV1ResultsEvent):
            logger.debug("Deepgram event: %s", type(message).__name__)
            return
        channel = message.channel
        if not channel or not channel.alternatives:
            return
        transcript = (channel.alternatives[0].transcript or "").strip()
        if not transcript:
            return

        if message.is_final:
            self._final_text = (
                f"{self._final_text} {transcript}" if self._final_text else transcript
            )
            self._interim_text = ""
        else:
            self._interim_text = transcript

        current = " ".join(t for t in (self._final_text, self._interim_text) if t)
        self._queue.put_nowait(current)

    def _on_error(self, error) -> None:
        logger.error("Deepgram WS error: %s", error)
        metrics.inc("errors.recognition")
        self._queue.put_nowait(RecognitionError(str(error)))

    def _on_close(self, _) -> None:
        logger.info("Deepgram WS closed")
        self._queue.put_nowait(_CLOSED)
