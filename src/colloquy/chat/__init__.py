"""Chat: personas, models, strategies coordination and the session orchestrator."""
