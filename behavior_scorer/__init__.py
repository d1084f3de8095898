"""Deterministic behavior scoring for AI agent session transcripts."""

__version__ = "0.1.0"
