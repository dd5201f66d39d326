"""
Title Generation — background AI titles with a keyword fallback.

Each session gets at most one title task in flight. Scheduling a new one
cancels its predecessor, and a finished task commits its title only if its
generation number is still the latest for that session, so a slow
cancelled task can never overwrite a newer result.

The keyword fallback is deterministic: drop stop words and very short
words from the first user message, keep up to four, capitalize them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from colloquy.backend.base import GenerationBackend, GenerationOptions
from colloquy.backend.schemas import SESSION_TITLE
from colloquy.chat.models import DEFAULT_TITLE, Message, Session
from colloquy.core.config import config
from colloquy.core.metrics import metrics
from colloquy.strategies.base import coerce_confidence

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    [
        "i", "me", "my", "am", "is", "are", "was", "were", "be", "been",
        "being", "have", "has", "had", "do", "does", "did", "will", "would",
        "could", "should", "may", "might", "can", "the", "a", "an", "and",
        "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    ]
)

FALLBACK_MAX_WORDS = 4
FALLBACK_MAX_LENGTH = 40
RAW_FALLBACK_LENGTH = 30

TITLE_OPTIONS = GenerationOptions(temperature=0.3, max_response_tokens=100)

TITLE_INSTRUCTIONS = (
    "You name conversations. Reply with a short title and how confident "
    "you are that it captures the topic."
)

TITLE_PROMPT = """Based on this conversation, generate a concise, descriptive title that captures the main topic or theme:

{conversation}

Requirements:
- 3-6 words maximum
- Descriptive and specific to the conversation content
- Avoid generic words like "conversation", "chat", "discussion"
- Focus on the main subject matter or theme

Examples: "Travel Planning", "Recipe Help", "Career Advice", "Math Homework".
"""

TitleCallback = Callable[[str, str], Awaitable[None]]


def fallback_title(content: str) -> str:
    content = content.strip()
    if not content:
        return DEFAULT_TITLE

    words = [w.strip(".,!?;:\"'()[]") for w in content.split()]
    significant = [
        w for w in words if len(w) > 2 and w.lower() not in STOP_WORDS
    ][:FALLBACK_MAX_WORDS]

    if significant:
        title = " ".join(w[:1].upper() + w[1:] for w in significant)
        if len(title) > FALLBACK_MAX_LENGTH:
            return title[: FALLBACK_MAX_LENGTH - 3] + "..."
        return title

    if len(content) <= RAW_FALLBACK_LENGTH:
        return content
    return content[:RAW_FALLBACK_LENGTH] + "..."


def session_fallback_title(messages: Sequence[Message]) -> str:
    first_user = next((m for m in messages if m.is_user), None)
    return fallback_title(first_user.content) if first_user else DEFAULT_TITLE


def has_fallback_title(session: Session) -> bool:
    """True while the title has not been replaced by a generated one."""
    return session.title in (DEFAULT_TITLE, session_fallback_title(session.messages))


def title_context(messages: Sequence[Message]) -> str:
    """First three user and first three AI messages, in timestamp order."""
    users = [m for m in messages if m.is_user][:3]
    replies = [m for m in messages if not m.is_user and not m.is_system][:3]
    lines = []
    for m in sorted(users + replies, key=lambda m: m.timestamp):
        sender = "User" if m.is_user else "AI"
        lines.append(f"{sender}: {m.content}")
    return "\n".join(lines)


class TitleGenerator:
    def __init__(
        self,
        backend: GenerationBackend,
        min_confidence: float | None = None,
        max_length: int | None = None,
    ) -> None:
        self._backend = backend
        self.min_confidence = (
            min_confidence
            if min_confidence is not None
            else config.chat.title_min_confidence
        )
        self.max_length = max_length or config.chat.title_max_length
        self._tasks: dict[str, asyncio.Task] = {}
        self._generations: dict[str, int] = {}

    async def generate(self, messages: Sequence[Message]) -> str:
        """AI title for the messages, or the keyword fallback."""
        if not any(m.is_user for m in messages):
            return DEFAULT_TITLE

        try:
            conversation = self._backend.create_conversation(
                instructions=TITLE_INSTRUCTIONS
            )
            result = await conversation.respond(
                TITLE_PROMPT.format(conversation=title_context(messages)),
                schema=SESSION_TITLE,
                options=TITLE_OPTIONS,
            )
            title = str(result.get("title") or "").strip().strip('"')
            confidence = coerce_confidence(result.get("confidence")) or 0.0
            logger.debug(f"Generated title '{title}' (confidence {confidence:.2f})")

            if title and confidence >= self.min_confidence:
                metrics.inc("titles.generated")
                if len(title) > self.max_length:
                    return title[: self.max_length - 3] + "..."
                return title
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Title generation failed, using fallback: {e}")

        metrics.inc("titles.fallback")
        return session_fallback_title(messages)

    # ─── Background Tasks ─────────────────────────────────────────

    def schedule(self, session: Session, on_title: TitleCallback) -> asyncio.Task:
        """Start a title task for the session, cancelling any earlier one."""
        self.cancel(session.id)
        generation = self._generations.get(session.id, 0) + 1
        self._generations[session.id] = generation

        task = asyncio.create_task(
            self._run(session, generation, on_title), name=f"title-{session.id}"
        )
        self._tasks[session.id] = task

        def _forget(done: asyncio.Task, session_id: str = session.id) -> None:
            if self._tasks.get(session_id) is done:
                del self._tasks[session_id]

        task.add_done_callback(_forget)
        metrics.inc("titles.scheduled")
        return task

    def is_current(self, session_id: str, generation: int) -> bool:
        return self._generations.get(session_id) == generation

    def cancel(self, session_id: str) -> None:
        task = self._tasks.pop(session_id, None)
        if task and not task.done():
            task.cancel()
            metrics.inc("titles.cancelled")

    async def cancel_all(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    async def _run(
        self, session: Session, generation: int, on_title: TitleCallback
    ) -> None:
        title = await self.generate(session.messages)
        if not self.is_current(session.id, generation):
            logger.debug(
                "Discarding stale title", extra={"session_id": session.id}
            )
            metrics.inc("titles.stale")
            return
        try:
            await on_title(session.id, title)
        except Exception as e:
            logger.error(
                f"Failed to apply title: {e}",
                extra={"session_id": session.id},
                exc_info=True,
            )
