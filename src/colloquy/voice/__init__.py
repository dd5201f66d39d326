"""Voice input: recording lifecycle over a transcription source."""
