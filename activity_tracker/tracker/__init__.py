"""Local state, persistence and the timer/session lifecycle."""

__version__ = "1.0.0"
