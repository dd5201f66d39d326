"""
Structured strategy — analyse the message and answer in one generation.

The backend fills a ConversationTurn: an analysis block (intent, sentiment,
expected length, whether tools would help), the response itself and a
token estimate. Only response.content reaches the user; the analysis of the
most recent turn is kept on the strategy as `last_analysis`.
"""

from __future__ import annotations

from typing import Any

from colloquy.backend.base import BackendConversation, GenerationOptions
from colloquy.backend.schemas import CONVERSATION_TURN
from colloquy.chat.models import GenerationContext
from colloquy.strategies.base import (
    PartialCallback,
    ResponseStrategy,
    StrategyResult,
    StrategyType,
    coerce_confidence,
)


class StructuredStrategy(ResponseStrategy):
    strategy_type = StrategyType.STRUCTURED
    options = GenerationOptions(temperature=0.2, max_response_tokens=1000)

    def __init__(self) -> None:
        super().__init__()
        self.last_analysis: dict[str, Any] | None = None

    async def _run(
        self,
        input: str,
        conversation: BackendConversation,
        context: GenerationContext,
        on_partial: PartialCallback | None,
    ) -> StrategyResult:
        final: dict[str, Any] = {}
        async for snapshot in conversation.stream(
            input, schema=CONVERSATION_TURN, options=self.options
        ):
            if not isinstance(snapshot, dict):
                continue
            final = snapshot
            response = snapshot.get("response") or {}
            self._publish(str(response.get("content") or ""), on_partial)

        response = final.get("response") or {}
        analysis = final.get("analysis")
        if isinstance(analysis, dict):
            self.last_analysis = analysis

        estimated = (final.get("metadata") or {}).get("estimated_tokens")
        return StrategyResult(
            content=str(response.get("content") or ""),
            confidence=coerce_confidence(response.get("confidence")),
            token_count=estimated if isinstance(estimated, int) and estimated > 0 else None,
        )
