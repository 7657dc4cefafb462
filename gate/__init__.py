"""Telegram login gate for a single HTTP backend."""

__version__ = "0.1.0"
