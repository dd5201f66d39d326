"""
Response strategies — how one user turn is turned into an assistant message.

Three variants share one contract: `generate(input, conversation, context,
on_partial)` returns a finished assistant Message or raises GenerationError.
Incremental strategies push cumulative content through `on_partial` while
the backend is still producing it; Complete never does.

Strategy selection is a pure function of the GenerationContext:
  1. any structured-intent keyword in the input  → STRUCTURED
  2. streaming enabled and input longer than N   → STREAMING
  3. otherwise                                   → COMPLETE
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from colloquy.backend.base import BackendConversation, GenerationOptions
from colloquy.chat.errors import GenerationError, GenerationErrorKind
from colloquy.chat.models import GenerationContext, Message, MessageMetadata
from colloquy.core.config import config
from colloquy.core.metrics import metrics

logger = logging.getLogger(__name__)

PartialCallback = Callable[[str], None]


class StrategyType(str, Enum):
    COMPLETE = "complete"
    STREAMING = "streaming"
    STRUCTURED = "structured"

    @property
    def incremental(self) -> bool:
        return self is not StrategyType.COMPLETE


def recommend_strategy(
    context: GenerationContext,
    keywords: tuple[str, ...] | None = None,
    threshold: int | None = None,
) -> StrategyType:
    if keywords is None:
        keywords = config.chat.structured_keywords
    if threshold is None:
        threshold = config.chat.streaming_threshold

    lowered = context.input.lower()
    if any(keyword in lowered for keyword in keywords):
        return StrategyType.STRUCTURED
    if context.settings.streaming_enabled and len(context.input) > threshold:
        return StrategyType.STREAMING
    return StrategyType.COMPLETE


@dataclass(frozen=True)
class StrategyResult:
    content: str
    confidence: float | None = None
    token_count: int | None = None


def coerce_confidence(value: Any) -> float | None:
    """Backend-reported confidence as a float in [0, 1], or None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0.0, min(1.0, float(value)))


class ResponseStrategy(ABC):
    """Base for the three strategies. Subclasses implement `_run`."""

    strategy_type: StrategyType
    options = GenerationOptions()

    def __init__(self) -> None:
        self.is_processing = False
        self.partial_content = ""

    @property
    def incremental(self) -> bool:
        return self.strategy_type.incremental

    async def generate(
        self,
        input: str,
        conversation: BackendConversation,
        context: GenerationContext,
        on_partial: PartialCallback | None = None,
    ) -> Message:
        self.partial_content = ""
        self.is_processing = True
        started = time.monotonic()
        metrics.inc("strategy.calls", labels={"type": self.strategy_type.value})
        try:
            result = await self._run(input, conversation, context, on_partial)
        except GenerationError as e:
            metrics.inc("strategy.errors", labels={"kind": e.kind.value})
            raise
        except json.JSONDecodeError as e:
            metrics.inc("strategy.errors", labels={"kind": "decoding_failure"})
            raise GenerationError(GenerationErrorKind.DECODING_FAILURE, str(e)) from e
        except Exception as e:
            logger.error(
                f"{self.strategy_type.value} strategy failed: {e}", exc_info=True
            )
            metrics.inc("strategy.errors", labels={"kind": "other"})
            raise GenerationError(GenerationErrorKind.OTHER, str(e)) from e
        finally:
            self.is_processing = False

        if not result.content.strip():
            raise GenerationError(GenerationErrorKind.OTHER, "empty response")

        return Message.assistant(
            result.content,
            metadata=MessageMetadata(
                processing_time=time.monotonic() - started,
                token_count=result.token_count,
                confidence=result.confidence,
            ),
        )

    @abstractmethod
    async def _run(
        self,
        input: str,
        conversation: BackendConversation,
        context: GenerationContext,
        on_partial: PartialCallback | None,
    ) -> StrategyResult:
        ...

    def _publish(self, content: str, on_partial: PartialCallback | None) -> None:
        """Record and forward cumulative content, skipping no-op updates."""
        if not content or content == self.partial_content:
            return
        self.partial_content = content
        if on_partial is not None:
            on_partial(content)


def create_strategy(strategy_type: StrategyType) -> ResponseStrategy:
    if strategy_type is StrategyType.COMPLETE:
        from colloquy.strategies.complete import CompleteStrategy

        return CompleteStrategy()
    if strategy_type is StrategyType.STREAMING:
        from colloquy.strategies.streaming import StreamingStrategy

        return StreamingStrategy()
    if strategy_type is StrategyType.STRUCTURED:
        from colloquy.strategies.structured import StructuredStrategy

        return StructuredStrategy()
    raise ValueError(f"Unknown strategy type: {strategy_type}")
