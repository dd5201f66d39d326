"""Generation and transcription backends."""
