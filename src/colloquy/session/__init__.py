"""Session storage and persistence."""
