"""
HTTP API for the Emmie chat service.
"""

from .routes import admin, agents, chat, chats, feedback, health, media, messages

__all__ = [
    "admin",
    "agents",
    "chat",
    "chats",
    "feedback",
    "health",
    "media",
    "messages",
]
