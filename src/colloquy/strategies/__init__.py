from colloquy.strategies.base import (
    ResponseStrategy,
    StrategyType,
    create_strategy,
    recommend_strategy,
)

__all__ = [
    "ResponseStrategy",
    "StrategyType",
    "create_strategy",
    "recommend_strategy",
]
