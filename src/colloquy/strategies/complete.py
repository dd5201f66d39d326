"""Complete strategy — wait for the whole structured reply, then show it."""

from __future__ import annotations

from colloquy.backend.base import BackendConversation, GenerationOptions
from colloquy.backend.schemas import CHAT_RESPONSE
from colloquy.chat.errors import GenerationError, GenerationErrorKind
from colloquy.chat.models import GenerationContext
from colloquy.strategies.base import (
    PartialCallback,
    ResponseStrategy,
    StrategyResult,
    StrategyType,
    coerce_confidence,
)


class CompleteStrategy(ResponseStrategy):
    strategy_type = StrategyType.COMPLETE
    options = GenerationOptions(temperature=0.7, max_response_tokens=1200)

    async def _run(
        self,
        input: str,
        conversation: BackendConversation,
        context: GenerationContext,
        on_partial: PartialCallback | None,
    ) -> StrategyResult:
        # The reply is still streamed from the backend, but only the final
        # snapshot is surfaced.
        final = None
        async for snapshot in conversation.stream(
            input, schema=CHAT_RESPONSE, options=self.options
        ):
            final = snapshot
            if isinstance(snapshot, dict):
                self.partial_content = str(snapshot.get("content") or "")

        if not isinstance(final, dict):
            raise GenerationError(
                GenerationErrorKind.DECODING_FAILURE, "no structured reply received"
            )
        return StrategyResult(
            content=str(final.get("content") or ""),
            confidence=coerce_confidence(final.get("confidence")),
        )
