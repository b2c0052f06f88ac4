"""
Function tool registry and the built-in function tools.

Tool definitions live in the database; this registry maps a definition's
name to the code that runs when the model calls it. A definition without a
registered implementation is still offered to the model, and calling it
yields a failed tool result.

Version: 1.0.0
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import or_

from ..models.chat import Chat
from ..models.message import Message
from ..schemas.tool_requests import (
    ChatHistorySearchRequest,
    SupportTicketRequest,
    SystemInfoRequest,
)
from ..utils.markdown import extract_summary
from .base_tool import BaseTool, ToolContext, ToolErrorCode, ToolResult

logger = logging.getLogger(__name__)


def java_string_hash(value: str) -> int:
    """32-bit rolling string hash (h = 31 * h + c)."""
    h = 0
    for char in value:
        h = (31 * h + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def make_ticket_id(user_name: str, issue_summary: str) -> str:
    """Stable ``EMT-NNNN`` id for a user and issue."""
    return f"EMT-{abs(java_string_hash(user_name + issue_summary)) % 10000:04d}"


# ===========================
# Built-in tools
# ===========================

class SupportTicketTool(BaseTool):
    """Files an IT support ticket for the current user."""

    request_model = SupportTicketRequest

    def __init__(self):
        super().__init__(
            name="submit_it_support_ticket",
            description="Submit an IT support ticket with user details and issue information"
        )

    async def execute(self, context: ToolContext, **kwargs) -> ToolResult:
        ticket_id = make_ticket_id(kwargs["user_name"], kwargs["issue_summary"])

        ticket = {
            "ticket_id": ticket_id,
            "user_name": kwargs["user_name"],
            "issue_summary": kwargs["issue_summary"],
            "details": kwargs["details"],
            "priority": kwargs["priority"],
            "request_type": kwargs["request_type"],
            "status": "submitted",
            "created_at": datetime.utcnow().isoformat(),
            "submitted_by_agent": context.agent_id,
            "chat_id": context.chat_id,
        }

        logger.info(
            f"IT support ticket {ticket_id} submitted ({ticket['priority']})",
            extra={"chat_id": context.chat_id, "user_id": context.user_id}
        )

        return ToolResult.success_result(
            data={
                "success": True,
                "ticket_id": ticket_id,
                "message": (
                    f"Support ticket {ticket_id} has been submitted to IT. "
                    f"You will receive updates via email."
                ),
                "ticket_data": ticket,
            }
        )


class SystemInfoTool(BaseTool):
    """Reports what the server knows about the current session."""

    request_model = SystemInfoRequest

    def __init__(self):
        super().__init__(
            name="get_system_info",
            description="Retrieve session information useful when troubleshooting"
        )

    async def execute(self, context: ToolContext, **kwargs) -> ToolResult:
        info = {
            "timestamp": datetime.utcnow().isoformat(),
            "user": context.user_name or "Unknown",
            "department": context.user_department or "Unknown",
            "session_info": {
                "chat_id": context.chat_id,
                "agent_id": context.agent_id,
                "user_id": context.user_id,
            },
        }

        if kwargs.get("detailed"):
            info["detailed_info"] = {
                "email": context.user_email,
                "organisation": context.org_id,
            }

        return ToolResult.success_result(
            data={
                "success": True,
                "system_info": info,
                "message": (
                    "Detailed system information collected"
                    if kwargs.get("detailed")
                    else "Basic system information collected"
                ),
            }
        )


class ChatHistorySearchTool(BaseTool):
    """Keyword search over the current user's earlier chats."""

    request_model = ChatHistorySearchRequest

    def __init__(self):
        super().__init__(
            name="search_chat_history",
            description="Search the user's previous conversations for messages containing the given keywords"
        )

    async def execute(self, context: ToolContext, **kwargs) -> ToolResult:
        if context.db is None:
            return ToolResult.error_result(
                error="Chat history is not available",
                error_code=ToolErrorCode.EXECUTION_ERROR
            )

        terms = [term for term in kwargs["query"].split() if len(term) > 1] or [kwargs["query"]]

        query = (
            context.db.query(Message, Chat)
            .join(Chat, Chat.id == Message.chat_id)
            .filter(
                Chat.org_id == context.org_id,
                Chat.created_by == context.user_id,
                Message.role.in_(("user", "assistant")),
                or_(*[Message.content_md.ilike(f"%{term}%") for term in terms])
            )
        )
        if kwargs.get("chat_id"):
            query = query.filter(Chat.id == kwargs["chat_id"])

        rows = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(kwargs["limit"]).all()

        results = [
            {
                "chat_id": chat.id,
                "chat_title": chat.title or "New Chat",
                "message_id": message.id,
                "role": message.role,
                "snippet": extract_summary(message.content_md or "", max_length=300),
                "created_at": message.created_at.isoformat() if message.created_at else None,
            }
            for message, chat in rows
        ]

        return ToolResult.success_result(
            data={
                "success": True,
                "query": kwargs["query"],
                "results": results,
                "total_results": len(results),
                "message": (
                    f"Found {len(results)} matching message(s)"
                    if results
                    else "No previous messages matched the query."
                ),
            }
        )


# ===========================
# Registry
# ===========================

class FunctionToolRegistry:
    """Name to implementation map for function tools."""

    def __init__(self):
        self._tools: Dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._tools:
            logger.warning(f"Overwriting registered function tool: {tool.name}")
        self._tools[tool.name] = tool
        logger.debug(f"Registered function tool: {tool.name}")

    def unregister(self, name: str) -> None:
        if self._tools.pop(name, None) is not None:
            logger.info(f"Unregistered function tool: {name}")

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> List[str]:
        return sorted(self._tools)

    def tools(self) -> List[BaseTool]:
        return [self._tools[name] for name in self.names()]

    def openai_definitions(self) -> List[dict]:
        return [tool.get_openai_schema() for tool in self.tools()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return self.has(name)


def create_default_registry() -> FunctionToolRegistry:
    """Registry holding every built-in function tool."""
    registry = FunctionToolRegistry()
    for tool in (SupportTicketTool(), SystemInfoTool(), ChatHistorySearchTool()):
        registry.register(tool)
    return registry


_registry: Optional[FunctionToolRegistry] = None


def get_function_tool_registry() -> FunctionToolRegistry:
    """Process-wide registry, created on first use."""
    global _registry
    if _registry is None:
        _registry = create_default_registry()
        logger.info(f"✓ Function tool registry ready: {', '.join(_registry.names())}")
    return _registry


__all__ = [
    'FunctionToolRegistry',
    'SupportTicketTool',
    'SystemInfoTool',
    'ChatHistorySearchTool',
    'create_default_registry',
    'get_function_tool_registry',
    'make_ticket_id',
    'java_string_hash',
]
