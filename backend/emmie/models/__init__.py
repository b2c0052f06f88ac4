"""
Database models package.
Exports all SQLAlchemy models for the application.

Version: 1.0.0
"""

from .user import User
from .chat import Chat
from .message import Message, MessageFeedback
from .agent import ChatAgent, AgentTool
from .tool import ToolDefinition, ToolExecutionLog

__all__ = [
    'User',
    'Chat',
    'Message',
    'MessageFeedback',
    'ChatAgent',
    'AgentTool',
    'ToolDefinition',
    'ToolExecutionLog',
]
