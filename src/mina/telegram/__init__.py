"""Telegram integration for Mina."""

from .bot import TelegramBot, TelegramResponder

__all__ = ["TelegramBot", "TelegramResponder"]
