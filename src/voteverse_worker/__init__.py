"""Background worker for AI-generated votes and daily AI-authored posts."""

__version__ = "0.1.0"
