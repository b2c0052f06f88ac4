"""
Validation schemas for function tool arguments.
"""
from .tool_requests import (
    ChatHistorySearchRequest,
    SupportTicketRequest,
    SystemInfoRequest,
    ToolRequest,
    sanitize_content,
)

__all__ = [
    'ChatHistorySearchRequest',
    'SupportTicketRequest',
    'SystemInfoRequest',
    'ToolRequest',
    'sanitize_content',
]
