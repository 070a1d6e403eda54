"""
RevoltBot - Voice assistant for Revolt Motors

A WebSocket relay server in front of a hosted language model, and a voice
client that listens, relays questions, and speaks the answers back in the
selected Indian language.
"""

__version__ = "1.0.0"
__author__ = "RevoltBot Team"

from .cli import main

__all__ = ["main"]
