"""
Service layer.

Version: 1.0.0
"""
from .agent_admin import AgentAdminService
from .chat_session import ChatSessionService
from .title_generator import TitleGenerator
from .tool_admin import ToolAdminService
from .user_service import get_or_create_user

__all__ = [
    'AgentAdminService',
    'ChatSessionService',
    'TitleGenerator',
    'ToolAdminService',
    'get_or_create_user',
]
