"""
API routes module initialization.
"""
from . import admin, agents, chat, chats, feedback, health, media, messages

__all__ = ["admin", "agents", "chat", "chats", "feedback", "health", "media", "messages"]
