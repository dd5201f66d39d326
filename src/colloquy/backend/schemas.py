"""
Response schemas — the structured shapes we ask the backend to generate.

Each schema is plain JSON Schema in the strict subset OpenAI accepts
(every property required, no additional properties; optional values are
expressed as nullable). Streaming backends yield partial dict snapshots of
these shapes, so consumers must treat every field as possibly missing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ResponseSchema:
    name: str
    description: str
    schema: dict[str, Any] = field(default_factory=dict)


def _obj(properties: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


_CHAT_RESPONSE_PROPS = {
    "content": {
        "type": "string",
        "description": "The main response content to the user's message",
    },
    "tone": {"type": "string", "description": "Emotional tone of the response"},
    "confidence": {
        "type": "number",
        "description": "Confidence level in the response accuracy, 0.0 to 1.0",
    },
}

CHAT_RESPONSE = ResponseSchema(
    name="chat_response",
    description="A conversational reply",
    schema=_obj(_CHAT_RESPONSE_PROPS),
)

CONVERSATION_TURN = ResponseSchema(
    name="conversation_turn",
    description="Analysis of the user's message together with the reply",
    schema=_obj(
        {
            "analysis": _obj(
                {
                    "intent": {
                        "type": "string",
                        "description": (
                            "Intent category: question, request, conversation, "
                            "command or greeting"
                        ),
                    },
                    "sentiment": {
                        "type": "string",
                        "description": "positive, neutral or negative",
                    },
                    "response_length": {
                        "type": "string",
                        "description": "brief, detailed or comprehensive",
                    },
                    "requires_tools": {"type": "boolean"},
                }
            ),
            "response": _obj(_CHAT_RESPONSE_PROPS),
            "metadata": _obj(
                {
                    "estimated_tokens": {
                        "type": "integer",
                        "description": "Estimated token count of the response",
                    }
                }
            ),
        }
    ),
)

SESSION_TITLE = ResponseSchema(
    name="session_title",
    description="A title for a conversation",
    schema=_obj(
        {
            "title": {
                "type": "string",
                "description": (
                    "A concise, descriptive title capturing the main topic "
                    "(3-6 words max)"
                ),
            },
            "confidence": {
                "type": "number",
                "description": "Confidence in the title's relevance, 0.0 to 1.0",
            },
        }
    ),
)

FRIENDLY_ERROR = ResponseSchema(
    name="friendly_error_message",
    description="A user-facing explanation of a failure",
    schema=_obj(
        {
            "message": {
                "type": "string",
                "description": (
                    "A warm, conversational message explaining why the request "
                    "can't be fulfilled, spoken directly to the user"
                ),
            },
            "suggestion": {
                "type": ["string", "null"],
                "description": "What the user could try instead, if anything",
            },
            "tone": {
                "type": "string",
                "description": "apologetic, helpful, encouraging or informative",
            },
        }
    ),
)
