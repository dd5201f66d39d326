"""
Colloquy — conversational session orchestrator.

Manages a chat session's lifecycle, dispatches user turns to a generation
backend through interchangeable response strategies, persists sessions under
concurrent background writes, and turns backend failures into in-chat
messages.
"""

__version__ = "0.1.0"
