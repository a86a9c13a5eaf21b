"""Mina: conversational-AI core for chat platforms."""

__version__ = "0.1.0"
