"""
Streaming strategy — show the reply as it is generated.

With a persona, the backend streams ChatResponse snapshots and the content
field is forwarded after each one. The base model (persona NONE) has no
instructions to anchor a schema, so it streams plain text deltas that are
accumulated here.
"""

from __future__ import annotations

from colloquy.backend.base import (
    BackendConversation,
    GenerationOptions,
    estimate_tokens,
)
from colloquy.backend.schemas import CHAT_RESPONSE
from colloquy.chat.models import GenerationContext
from colloquy.chat.personas import Persona
from colloquy.strategies.base import (
    PartialCallback,
    ResponseStrategy,
    StrategyResult,
    StrategyType,
    coerce_confidence,
)


class StreamingStrategy(ResponseStrategy):
    strategy_type = StrategyType.STREAMING
    options = GenerationOptions(temperature=0.7, max_response_tokens=1200)

    async def _run(
        self,
        input: str,
        conversation: BackendConversation,
        context: GenerationContext,
        on_partial: PartialCallback | None,
    ) -> StrategyResult:
        if context.persona is Persona.NONE:
            return await self._run_text(input, conversation, on_partial)

        content = ""
        confidence = None
        async for snapshot in conversation.stream(
            input, schema=CHAT_RESPONSE, options=self.options
        ):
            if not isinstance(snapshot, dict):
                continue
            content = str(snapshot.get("content") or "")
            confidence = coerce_confidence(snapshot.get("confidence"))
            self._publish(content, on_partial)

        return StrategyResult(
            content=content,
            confidence=confidence,
            token_count=estimate_tokens(content),
        )

    async def _run_text(
        self,
        input: str,
        conversation: BackendConversation,
        on_partial: PartialCallback | None,
    ) -> StrategyResult:
        accumulated = ""
        async for delta in conversation.stream(input, options=self.options):
            accumulated += delta
            self._publish(accumulated, on_partial)
        return StrategyResult(
            content=accumulated, token_count=estimate_tokens(accumulated)
        )
