"""Reverse proxy that spreads Gemini API calls across a pool of keys."""

__version__ = "0.1.0"
