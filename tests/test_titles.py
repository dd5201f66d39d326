"""Tests for title generation: keyword fallback, AI titles, task supersession."""

import asyncio

import pytest

from colloquy.backend.schemas import SESSION_TITLE
from colloquy.chat.models import DEFAULT_TITLE, Message, Session
from colloquy.chat.titles import (
    TitleGenerator,
    fallback_title,
    has_fallback_title,
    title_context,
)


def _session(first: str = "I want to plan a trip to Japan next spring") -> Session:
    return Session(messages=(Message.user(first), Message.assistant("Sounds fun!")))


# ─── Fallback ─────────────────────────────────────────────────


def test_fallback_keeps_significant_words():
    assert fallback_title("I want to plan a trip to Japan next spring") == (
        "Want Plan Trip Japan"
    )


def test_fallback_single_word():
    assert fallback_title("Hello") == "Hello"


def test_fallback_strips_punctuation():
    assert fallback_title("Recipes, please!") == "Recipes Please"


def test_fallback_truncates_long_titles():
    title = "Supercalifragilistic Extraordinarily Magnificent Wonderful"
    assert fallback_title(title.lower()) == title[:37] + "..."


def test_fallback_without_significant_words_uses_content():
    assert fallback_title("is it ok") == "is it ok"
    assert fallback_title("is it " * 10) == ("is it " * 10).strip()[:30] + "..."


def test_fallback_empty():
    assert fallback_title("   ") == DEFAULT_TITLE


def test_has_fallback_title():
    session = _session()
    assert has_fallback_title(session)
    assert has_fallback_title(session.with_title("Want Plan Trip Japan"))
    assert not has_fallback_title(session.with_title("Japan Spring Itinerary"))


def test_title_context_uses_first_three_of_each():
    messages = []
    for i in range(5):
        messages.append(Message(content=f"q{i}", is_user=True, timestamp=i * 2.0))
        messages.append(Message(content=f"a{i}", is_user=False, timestamp=i * 2.0 + 1))
    context = title_context(messages)
    assert context.splitlines() == [
        "User: q0", "AI: a0", "User: q1", "AI: a1", "User: q2", "AI: a2",
    ]


# ─── Generation ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_generate_accepts_confident_title(backend):
    backend.queue_response(SESSION_TITLE.name, {"title": "Japan Travel", "confidence": 0.8})
    assert await TitleGenerator(backend).generate(_session().messages) == "Japan Travel"


@pytest.mark.asyncio
async def test_generate_rejects_low_confidence(backend):
    backend.queue_response(SESSION_TITLE.name, {"title": "Stuff", "confidence": 0.2})
    title = await TitleGenerator(backend).generate(_session().messages)
    assert title == "Want Plan Trip Japan"


@pytest.mark.asyncio
async def test_generate_truncates_long_titles(backend):
    long_title = "A Remarkably Long And Detailed Title About Japanese Spring Travel"
    backend.queue_response(SESSION_TITLE.name, {"title": long_title, "confidence": 0.9})
    title = await TitleGenerator(backend, max_length=50).generate(_session().messages)
    assert title == long_title[:47] + "..."
    assert len(title) == 50


@pytest.mark.asyncio
async def test_generate_falls_back_on_backend_error(backend):
    title = await TitleGenerator(backend).generate(_session().messages)
    assert title == "Want Plan Trip Japan"


@pytest.mark.asyncio
async def test_generate_without_user_messages(backend):
    messages = (Message.assistant("Hi there"),)
    assert await TitleGenerator(backend).generate(messages) == DEFAULT_TITLE
    assert backend.calls == []


# ─── Scheduling ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_only_latest_scheduled_title_is_applied(backend):
    gate = asyncio.Event()
    backend.gates[SESSION_TITLE.name] = gate
    backend.queue_response(SESSION_TITLE.name, {"title": "Second Title", "confidence": 0.9})
    applied = []

    async def on_title(session_id, title):
        applied.append((session_id, title))

    generator = TitleGenerator(backend)
    session = _session()
    first = generator.schedule(session, on_title)
    await asyncio.sleep(0)
    second = generator.schedule(session, on_title)

    gate.set()
    await second
    await asyncio.gather(first, return_exceptions=True)

    assert first.cancelled()
    assert applied == [(session.id, "Second Title")]
    assert generator.pending == 0


@pytest.mark.asyncio
async def test_generation_counter_marks_older_tasks_stale(backend):
    async def on_title(session_id, title):
        pass

    generator = TitleGenerator(backend)
    session = _session()
    generator.schedule(session, on_title)
    generator.schedule(session, on_title)
    assert not generator.is_current(session.id, 1)
    assert generator.is_current(session.id, 2)
    await generator.cancel_all()


@pytest.mark.asyncio
async def test_sessions_are_tracked_independently(backend):
    applied = []

    async def on_title(session_id, title):
        applied.append(session_id)

    generator = TitleGenerator(backend)
    a, b = _session("Baking sourdough bread"), _session("Fixing bicycle brakes")
    await asyncio.gather(generator.schedule(a, on_title), generator.schedule(b, on_title))
    assert sorted(applied) == sorted([a.id, b.id])
