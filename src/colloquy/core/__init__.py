"""Ambient plumbing: configuration, logging and metrics."""
