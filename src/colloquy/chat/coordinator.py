"""
Response Generation Coordinator — picks a strategy and finalizes the reply.

One strategy instance per type is created lazily and reused across turns.
The coordinator never touches the session: persistence and title scheduling
are the orchestrator's job once generate_turn returns.
"""

from __future__ import annotations

import logging
import math
import time

from colloquy.backend.base import CHARS_PER_TOKEN, BackendConversation
from colloquy.chat.errors import GenerationError
from colloquy.chat.models import GenerationContext, Message, MessageMetadata
from colloquy.core.metrics import metrics
from colloquy.strategies.base import (
    PartialCallback,
    ResponseStrategy,
    StrategyType,
    create_strategy,
    recommend_strategy,
)

logger = logging.getLogger(__name__)


class ResponseCoordinator:
    def __init__(
        self,
        keywords: tuple[str, ...] | None = None,
        streaming_threshold: int | None = None,
    ) -> None:
        self._keywords = keywords
        self._threshold = streaming_threshold
        self._strategies: dict[StrategyType, ResponseStrategy] = {}
        self.last_strategy: StrategyType | None = None

    def select_strategy(self, context: GenerationContext) -> StrategyType:
        return recommend_strategy(context, self._keywords, self._threshold)

    def strategy(self, strategy_type: StrategyType) -> ResponseStrategy:
        if strategy_type not in self._strategies:
            self._strategies[strategy_type] = create_strategy(strategy_type)
        return self._strategies[strategy_type]

    @property
    def is_processing(self) -> bool:
        return any(s.is_processing for s in self._strategies.values())

    async def generate_turn(
        self,
        input: str,
        context: GenerationContext,
        conversation: BackendConversation,
        on_partial: PartialCallback | None = None,
    ) -> Message:
        strategy_type = self.select_strategy(context)
        strategy = self.strategy(strategy_type)
        self.last_strategy = strategy_type
        labels = {"strategy": strategy_type.value}
        started = time.monotonic()

        try:
            message = await strategy.generate(input, conversation, context, on_partial)
        except GenerationError as e:
            metrics.inc("chat.turns", labels={**labels, "outcome": "error"})
            metrics.inc(f"errors.{e.kind.value}")
            logger.warning(
                f"Turn failed ({strategy_type.value}): {e}",
                extra={"strategy": strategy_type.value, "error_kind": e.kind.value},
            )
            raise

        elapsed = time.monotonic() - started
        message = self._finalize(message, elapsed)
        metrics.inc("chat.turns", labels={**labels, "outcome": "ok"})
        metrics.observe("chat.turn_ms", elapsed * 1000, labels=labels)
        logger.info(
            f"Turn complete ({strategy_type.value}, {elapsed * 1000:.0f}ms)",
            extra={"strategy": strategy_type.value, "duration_ms": elapsed * 1000},
        )
        return message

    def _finalize(self, message: Message, elapsed: float) -> Message:
        metadata = message.metadata or MessageMetadata()
        token_count = metadata.token_count
        if token_count is None:
            token_count = math.ceil(len(message.content) / CHARS_PER_TOKEN)
        return message.with_metadata(
            MessageMetadata(
                processing_time=elapsed,
                token_count=token_count,
                confidence=metadata.confidence,
            )
        )
