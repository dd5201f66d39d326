"""
ChatOrchestrator — owns the current session and the chat state machine.

States: Idle → Thinking → (Streaming) → Idle, Idle ⇄ VoiceListening,
and Error(reason) for failures before a turn can start. Exactly one state
is active; submissions outside Idle/Error are ignored.

Everything that mutates the current Session runs here, on the event loop.
Collaborators (coordinator, persistence, titles, voice) hand results back
through return values and callbacks and never touch the session directly.

Per turn:
  1. append the user message (first turn: fallback title)
  2. coordinator.generate_turn → assistant message
     or ErrorRecovery → friendly message / truncated history + notice
  3. persist (when auto-save is on), back to Idle
  4. first user turn with a fallback title → schedule a title task
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Callable

from colloquy.backend.base import BackendConversation, GenerationBackend
from colloquy.chat.coordinator import ResponseCoordinator
from colloquy.chat.errors import (
    GenerationError,
    PermissionDenied,
    PersistenceError,
    RecognitionError,
)
from colloquy.chat.models import (
    DEFAULT_TITLE,
    IDLE,
    STREAMING,
    THINKING,
    VOICE_LISTENING,
    ChatState,
    ChatStateKind,
    GenerationContext,
    Message,
    Session,
    Settings,
)
from colloquy.chat.personas import Persona
from colloquy.chat.recovery import ErrorRecovery
from colloquy.chat.titles import TitleGenerator, fallback_title, has_fallback_title
from colloquy.core.config import config
from colloquy.core.logging import TurnTimer
from colloquy.core.metrics import metrics
from colloquy.session.persistence import EXPORT_VERSION, PersistenceManager
from colloquy.voice.recorder import VoiceRecorder

logger = logging.getLogger(__name__)

StateListener = Callable[[ChatState], None]
TextListener = Callable[[str], None]


class ChatOrchestrator:
    def __init__(
        self,
        backend: GenerationBackend,
        persistence: PersistenceManager,
        coordinator: ResponseCoordinator | None = None,
        recovery: ErrorRecovery | None = None,
        titles: TitleGenerator | None = None,
        recorder: VoiceRecorder | None = None,
        max_history_turns: int | None = None,
    ) -> None:
        self.backend = backend
        self.persistence = persistence
        self.coordinator = coordinator or ResponseCoordinator()
        self.recovery = recovery or ErrorRecovery(backend)
        self.titles = titles or TitleGenerator(backend)
        self.recorder = recorder
        self.max_history_turns = max_history_turns or config.llm.max_history_turns

        # State
        self.state: ChatState = IDLE
        self.session = Session()
        self.settings = Settings()
        self.last_error: str | None = None
        self.partial_content = ""
        self.transcript_draft = ""
        self._conversation: BackendConversation | None = None

        # Listeners (set by the UI)
        self._state_listeners: list[StateListener] = []
        self._partial_listeners: list[TextListener] = []
        self._transcript_listeners: list[TextListener] = []

        if self.recorder is not None:
            self.recorder.on_stopped = self._on_voice_stopped

    # ─── Listeners ───────────────────────────────────────────────

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        return _register(self._state_listeners, listener)

    def on_partial(self, listener: TextListener) -> Callable[[], None]:
        return _register(self._partial_listeners, listener)

    def on_transcript(self, listener: TextListener) -> Callable[[], None]:
        return _register(self._transcript_listeners, listener)

    def _set_state(self, state: ChatState) -> None:
        if state == self.state:
            return
        previous, self.state = self.state, state
        logger.debug(
            f"State {previous} -> {state}",
            extra={"session_id": self.session.id, "state": str(state)},
        )
        for listener in list(self._state_listeners):
            listener(state)

    # ─── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        """Open storage and the backend, then resume the most recent session."""
        try:
            await self.persistence.start()
            self.settings = await self.persistence.load_settings()
            recent = await self.persistence.list()
        except PersistenceError as e:
            recent = []
            self.last_error = str(e)
            metrics.inc("errors.persistence")
            logger.error(f"Cannot open session storage: {e}")
            self._set_state(ChatState.error("Session storage is unavailable"))

        if recent:
            self.session = recent[0]
        else:
            self.session = Session(persona=self.settings.selected_persona)

        try:
            await self.backend.start()
        except GenerationError as e:
            self._fail(e)
        logger.info(
            f"Orchestrator started ({len(recent)} stored sessions)",
            extra={"session_id": self.session.id},
        )

    async def shutdown(self) -> None:
        await self.titles.cancel_all()
        if self.recorder is not None and self.recorder.is_recording:
            await self.recorder.stop()
            self._set_state(IDLE)
        if self.session.messages:
            await self._persist()
        await self.backend.stop()
        await self.persistence.stop()
        logger.info("Orchestrator stopped")

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.session.messages

    # ─── Turns ───────────────────────────────────────────────────

    async def submit(self, text: str) -> Message | None:
        """Run one turn. Returns the message shown to the user, or None if ignored."""
        text = text.strip()
        if not text:
            return None
        if self.state.kind not in (ChatStateKind.IDLE, ChatStateKind.ERROR):
            logger.debug(f"Submit ignored while {self.state}")
            metrics.inc("chat.submits_ignored")
            return None

        if self._conversation is None:
            try:
                self._conversation = self._create_conversation()
            except GenerationError as e:
                self._fail(e)
                return None

        timer = TurnTimer()
        first_turn = not self.session.user_messages
        self.session = self.session.append(Message.user(text))
        if first_turn and self.session.title == DEFAULT_TITLE:
            self.session = self.session.with_title(fallback_title(text))

        self.last_error = None
        self.partial_content = ""
        self.transcript_draft = ""
        self._set_state(THINKING)

        context = GenerationContext(
            input=text,
            persona=self.session.persona,
            message_count=self.session.message_count,
            settings=self.settings,
        )
        try:
            reply = await self.coordinator.generate_turn(
                text, context, self._conversation, on_partial=self._handle_partial
            )
            self.session = self.session.append(reply)
        except GenerationError as e:
            reply = await self._recover(e)
        timer.mark("generate")
        self.partial_content = ""

        if self.settings.auto_save_conversations:
            await self._persist()
        timer.mark("persist")
        self._set_state(IDLE)

        if first_turn and has_fallback_title(self.session):
            self.titles.schedule(self.session, self._apply_title)

        logger.info(
            f"Turn done: {timer.summary()}",
            extra={
                "session_id": self.session.id,
                "duration_ms": timer.total() * 1000,
            },
        )
        return reply

    def _handle_partial(self, content: str) -> None:
        self.partial_content = content
        if self.state == THINKING:
            self._set_state(STREAMING)
        for listener in list(self._partial_listeners):
            listener(content)

    async def _recover(self, error: GenerationError) -> Message:
        recovery = await self.recovery.recover(
            error, self.session.messages, self.session.persona
        )
        if recovery.messages is not None:
            self.session = self.session.with_messages(recovery.messages)
        if recovery.reset_conversation:
            self._conversation = None
        if recovery.reply is not None:
            self.session = self.session.append(recovery.reply)
        return self.session.messages[-1]

    def _create_conversation(self) -> BackendConversation:
        history = [
            {"role": m.role, "content": m.content}
            for m in self.session.messages[-self.max_history_turns:]
            if not m.is_system
        ]
        return self.backend.create_conversation(
            instructions=self.session.persona.system_prompt,
            history=history,
            max_context_tokens=self.settings.max_context_length,
        )

    def _fail(self, error: GenerationError) -> None:
        self.last_error = str(error)
        metrics.inc(f"errors.{error.kind.value}")
        logger.error(
            f"Cannot start a turn: {error}",
            extra={"session_id": self.session.id, "error_kind": error.kind.value},
        )
        self._set_state(ChatState.error(error.kind.description))

    def dismiss_error(self) -> None:
        self.last_error = None
        if self.state.kind is ChatStateKind.ERROR:
            self._set_state(IDLE)

    # ─── Persistence ─────────────────────────────────────────────

    async def _persist(self) -> bool:
        session_id = self.session.id
        while True:
            try:
                saved = await self.persistence.save(self.session)
            except PersistenceError as e:
                self.last_error = str(e)
                return False
            if saved is not None:
                break
            # Another save of this session is in flight: let it land, then
            # write the latest copy over it.
            await self.persistence.wait_saved(session_id)
            if self.session.id != session_id:
                # Replaced meanwhile; whoever replaced it saved or deleted it.
                return True
        if saved.id == self.session.id:
            self.session = self.session.with_last_modified(saved.last_modified)
        return True

    async def _apply_title(self, session_id: str, title: str) -> None:
        if session_id == self.session.id:
            self.session = self.session.with_title(title)
            if self.settings.auto_save_conversations:
                await self._persist()
            return
        try:
            stored = await self.persistence.load(session_id)
            await self.persistence.save(stored.with_title(title))
        except PersistenceError as e:
            logger.warning(f"Could not store title: {e}", extra={"session_id": session_id})

    def regenerate_title(self):
        """Schedule a fresh title for the current session. Returns the task."""
        if not self.session.user_messages:
            return None
        return self.titles.schedule(self.session, self._apply_title)

    # ─── Voice ───────────────────────────────────────────────────

    async def start_voice(self) -> bool:
        if self.recorder is None or not self.settings.voice_enabled:
            logger.warning("Voice input is not available")
            return False
        if self.state.kind is not ChatStateKind.IDLE:
            logger.debug(f"Voice start ignored while {self.state}")
            return False

        self.transcript_draft = ""
        try:
            await self.recorder.start()
        except (PermissionDenied, RecognitionError) as e:
            self.last_error = str(e)
            logger.warning(f"Voice start failed: {e}")
            return False
        if not self.recorder.is_recording:
            return False

        self.recorder.subscribe(self._handle_transcript)
        self._set_state(VOICE_LISTENING)
        return True

    async def stop_voice(self) -> Message | None:
        """Stop recording and submit the transcript if there is one."""
        if self.recorder is None or self.state.kind is not ChatStateKind.VOICE_LISTENING:
            return None
        transcript = await self.recorder.stop()
        self.transcript_draft = ""
        self._set_state(IDLE)
        if not transcript.strip():
            return None
        return await self.submit(transcript)

    def _handle_transcript(self, text: str) -> None:
        self.transcript_draft = text
        for listener in list(self._transcript_listeners):
            listener(text)

    def _on_voice_stopped(self, reason: str) -> None:
        # Timeout or recognition failure: keep what was heard as a draft.
        self.transcript_draft = self.recorder.transcript if self.recorder else ""
        if reason == "error":
            self.last_error = "Speech recognition failed"
        if self.state.kind is ChatStateKind.VOICE_LISTENING:
            self._set_state(IDLE)

    # ─── Persona & Settings ──────────────────────────────────────

    async def switch_persona(self, persona: Persona) -> None:
        await self.update_settings(replace(self.settings, selected_persona=persona))

    async def update_settings(self, settings: Settings) -> None:
        previous = self.settings
        self.settings = settings
        try:
            await self.persistence.save_settings(settings)
        except PersistenceError as e:
            self.last_error = str(e)

        if previous.selected_persona != settings.selected_persona:
            self.session = self.session.with_persona(settings.selected_persona)
            self._conversation = None
            logger.info(f"Persona switched to {settings.selected_persona.display_name}")
        elif previous.max_context_length != settings.max_context_length:
            self._conversation = None

    # ─── Sessions ────────────────────────────────────────────────

    async def new_session(self) -> Session:
        if self.state.is_generating:
            logger.warning("Cannot start a new session while a reply is in progress")
            return self.session
        if self.session.messages:
            await self._persist()
        self.session = Session(persona=self.settings.selected_persona)
        self._conversation = None
        return self.session

    async def switch_session(self, session_id: str) -> Session | None:
        if session_id == self.session.id:
            return self.session
        if self.state.is_generating:
            logger.warning("Cannot switch sessions while a reply is in progress")
            return None
        if self.session.messages:
            await self._persist()
        try:
            session = await self.persistence.load(session_id)
        except PersistenceError as e:
            self.last_error = str(e)
            return None

        if not session.messages:
            session = session.with_messages([Message.assistant(session.persona.greeting)])
        self.session = session
        self._conversation = None
        return session

    async def delete_session(self, session_id: str) -> bool:
        if session_id == self.session.id and self.state.is_generating:
            logger.warning("Cannot delete the current session while a reply is in progress")
            return False
        self.titles.cancel(session_id)
        await self.persistence.wait_saved(session_id)
        try:
            await self.persistence.delete(session_id)
        except PersistenceError as e:
            self.last_error = str(e)
            return False
        if session_id == self.session.id:
            self.session = Session(persona=self.settings.selected_persona)
            self._conversation = None
        return True

    async def delete_message(self, message_id: str) -> bool:
        remaining = [m for m in self.session.messages if m.id != message_id]
        if len(remaining) == self.session.message_count:
            return False
        if not remaining:
            remaining = [Message.assistant(self.session.persona.greeting)]
        self.session = self.session.with_messages(remaining)
        self._conversation = None
        if self.settings.auto_save_conversations:
            await self._persist()
        return True

    async def toggle_reaction(self, message_id: str, reaction: str) -> bool:
        found = False
        messages = []
        for m in self.session.messages:
            if m.id == message_id:
                m = m.toggle_reaction(reaction)
                found = True
            messages.append(m)
        if not found:
            return False
        self.session = self.session.with_messages(messages)
        if self.settings.auto_save_conversations:
            await self._persist()
        return True

    async def clear_all_data(self) -> None:
        if self.state.is_generating:
            logger.warning("Cannot clear data while a reply is in progress")
            return
        await self.titles.cancel_all()
        try:
            await self.persistence.clear_all()
        except PersistenceError as e:
            self.last_error = str(e)
            return
        self.settings = Settings()
        self.session = Session()
        self._conversation = None
        logger.info("All data cleared")

    # ─── Export / Import ─────────────────────────────────────────

    async def export_session(self, session_id: str | None = None) -> str | None:
        if session_id is None or session_id == self.session.id:
            return json.dumps(
                {"version": EXPORT_VERSION, "session": self.session.to_dict()},
                indent=2,
            )
        try:
            return await self.persistence.export_session(session_id)
        except PersistenceError as e:
            self.last_error = str(e)
            return None

    async def import_session(self, data: str) -> Session | None:
        try:
            return await self.persistence.import_session(data)
        except PersistenceError as e:
            self.last_error = str(e)
            return None

    async def export_all(self) -> str | None:
        if self.session.messages:
            await self._persist()
        try:
            return await self.persistence.export_bundle()
        except PersistenceError as e:
            self.last_error = str(e)
            return None

    async def import_all(self, data: str) -> bool:
        if self.state.is_generating:
            logger.warning("Cannot import while a reply is in progress")
            return False
        await self.titles.cancel_all()
        try:
            settings, _ = await self.persistence.import_bundle(data)
        except PersistenceError as e:
            self.last_error = str(e)
            return False
        self.settings = settings
        recent = self.persistence.recent
        self.session = recent[0] if recent else Session(persona=settings.selected_persona)
        self._conversation = None
        return True


def _register(listeners: list, listener) -> Callable[[], None]:
    listeners.append(listener)

    def unsubscribe() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return unsubscribe
