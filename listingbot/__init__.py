"""Telegram property listing bot."""

__version__ = "0.1.0"
