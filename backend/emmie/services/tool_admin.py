"""
Tool definitions and their assignment to agents.

Version: 1.0.0
"""
import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, settings as default_settings
from ..errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from ..models.agent import AgentTool, ChatAgent
from ..models.tool import ToolDefinition
from ..tools.registry import FunctionToolRegistry

logger = logging.getLogger(__name__)

TOOL_TYPES = ("function", "code_interpreter", "file_search")

REQUIRED_TOOL_FIELDS = ("name", "display_name", "category", "tool_type")

UPDATABLE_TOOL_FIELDS = (
    "display_name",
    "description",
    "category",
    "function_schema",
    "default_config",
    "is_active",
)

# Hosted tools seeded for every organisation
SYSTEM_HOSTED_TOOLS = (
    {
        "name": "code_interpreter",
        "display_name": "Code Interpreter",
        "description": "Runs Python code in a sandbox to analyse data and files",
        "category": "analysis",
        "tool_type": "code_interpreter",
    },
    {
        "name": "file_search",
        "display_name": "File Search",
        "description": "Searches uploaded documents",
        "category": "knowledge",
        "tool_type": "file_search",
    },
)


def normalize_tool_name(name: str) -> str:
    """Lowercase with whitespace runs replaced by underscores."""
    return re.sub(r'\s+', '_', name.strip().lower())


class ToolAdminService:
    """Tool catalogue and agent assignments for the organisation."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings

    # ===========================
    # Tool definitions
    # ===========================

    def _tools(self):
        return self.db.query(ToolDefinition).filter(ToolDefinition.org_id == self.settings.org_id)

    def list_tools(
        self,
        category: Optional[str] = None,
        tool_type: Optional[str] = None,
        include_inactive: bool = False
    ) -> List[ToolDefinition]:
        """Tools ordered by category, then display name."""
        query = self._tools()
        if category:
            query = query.filter(ToolDefinition.category == category)
        if tool_type:
            query = query.filter(ToolDefinition.tool_type == tool_type)
        if not include_inactive:
            query = query.filter(ToolDefinition.is_active.is_(True))
        return query.order_by(ToolDefinition.category.asc(), ToolDefinition.display_name.asc()).all()

    def get_tool(self, tool_id: str, active_only: bool = False) -> ToolDefinition:
        query = self._tools().filter(ToolDefinition.id == tool_id)
        if active_only:
            query = query.filter(ToolDefinition.is_active.is_(True))
        tool = query.first()
        if tool is None:
            raise NotFoundError("Tool not found or inactive" if active_only else "Tool not found")
        return tool

    def create_tool(self, payload: Dict[str, Any], user_id: Optional[str] = None) -> ToolDefinition:
        """
        Create a custom tool definition.

        Raises:
            ValidationError: Missing fields, unknown tool type, or a function
                tool without a schema
            ConflictError: A tool with the normalised name exists
        """
        missing = [name for name in REQUIRED_TOOL_FIELDS if not payload.get(name)]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(REQUIRED_TOOL_FIELDS)}",
                field=missing[0]
            )

        tool_type = payload["tool_type"]
        if tool_type not in TOOL_TYPES:
            raise ValidationError(
                f"Invalid tool_type. Must be one of: {', '.join(TOOL_TYPES)}",
                field="tool_type"
            )

        function_schema = payload.get("function_schema")
        if tool_type == "function" and not function_schema:
            raise ValidationError("function_schema is required for function tools", field="function_schema")

        name = normalize_tool_name(payload["name"])
        if self.db.query(ToolDefinition).filter(ToolDefinition.name == name).first() is not None:
            raise ConflictError("Tool with this name already exists")

        tool = ToolDefinition(
            org_id=self.settings.org_id,
            name=name,
            display_name=payload["display_name"],
            description=payload.get("description"),
            category=payload["category"],
            tool_type=tool_type,
            function_schema=function_schema,
            default_config=payload.get("default_config") or {},
            is_system=False,
            is_active=payload.get("is_active", True) is not False,
            created_by=user_id,
        )
        self._commit(tool)
        logger.info(f"✓ Tool created: {tool.name} ({tool.tool_type})")
        return tool

    def update_tool(self, tool_id: str, payload: Dict[str, Any]) -> ToolDefinition:
        """
        Raises:
            NotFoundError: Unknown tool
            PermissionDeniedError: System tools are read-only
        """
        tool = self.get_tool(tool_id)
        if tool.is_system:
            raise PermissionDeniedError("Cannot modify system tools")

        changes = {
            name: payload[name]
            for name in UPDATABLE_TOOL_FIELDS
            if name in payload and payload[name] is not None
        }

        if tool.tool_type == "function" and not changes.get("function_schema", tool.function_schema):
            raise ValidationError("function_schema is required for function tools", field="function_schema")

        for name, value in changes.items():
            setattr(tool, name, value)

        self._commit(tool)
        logger.info(f"Tool updated: {tool.name}")
        return tool

    def delete_tool(self, tool_id: str) -> str:
        """
        Delete a custom tool and its assignments.

        Returns:
            Confirmation message

        Raises:
            NotFoundError: Unknown tool
            PermissionDeniedError: System tools cannot be deleted
        """
        tool = self.get_tool(tool_id)
        if tool.is_system:
            raise PermissionDeniedError("Cannot delete system tools")

        name = tool.name
        try:
            self.db.query(AgentTool).filter(AgentTool.tool_id == tool.id).delete(synchronize_session=False)
            self.db.delete(tool)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Tool delete failed: {e}", exc_info=True)
            raise StorageError(e)

        logger.info(f"Tool deleted: {name}")
        return f"Tool '{name}' deleted successfully"

    # ===========================
    # Agent assignments
    # ===========================

    def _get_agent(self, agent_id: str) -> ChatAgent:
        agent = (
            self.db.query(ChatAgent)
            .filter(ChatAgent.id == agent_id, ChatAgent.org_id == self.settings.org_id)
            .first()
        )
        if agent is None:
            raise NotFoundError("Agent not found")
        return agent

    def list_agent_tools(self, agent_id: str) -> List[AgentTool]:
        """Assignments of one agent, ordered by tool display name."""
        self._get_agent(agent_id)
        return (
            self.db.query(AgentTool)
            .join(ToolDefinition, AgentTool.tool_id == ToolDefinition.id)
            .filter(AgentTool.agent_id == agent_id)
            .order_by(ToolDefinition.display_name.asc())
            .all()
        )

    def get_enabled_tools_for_agent(self, agent_id: str) -> List[ToolDefinition]:
        """Active tool definitions enabled for the agent."""
        return (
            self.db.query(ToolDefinition)
            .join(AgentTool, AgentTool.tool_id == ToolDefinition.id)
            .filter(
                AgentTool.agent_id == agent_id,
                AgentTool.is_enabled.is_(True),
                ToolDefinition.is_active.is_(True),
            )
            .order_by(ToolDefinition.name.asc())
            .all()
        )

    def assign_tool(
        self,
        agent_id: str,
        tool_id: str,
        is_enabled: bool = True,
        config: Optional[Dict[str, Any]] = None
    ) -> AgentTool:
        """
        Assign a tool to an agent, updating the existing assignment if any.

        Raises:
            NotFoundError: Unknown agent, or the tool is missing or inactive
        """
        self._get_agent(agent_id)
        self.get_tool(tool_id, active_only=True)

        assignment = (
            self.db.query(AgentTool)
            .filter(AgentTool.agent_id == agent_id, AgentTool.tool_id == tool_id)
            .first()
        )
        if assignment is None:
            assignment = AgentTool(agent_id=agent_id, tool_id=tool_id)

        assignment.is_enabled = bool(is_enabled)
        assignment.config = config or {}

        self._commit(assignment)
        logger.info(f"Tool {tool_id} assigned to agent {agent_id} (enabled={assignment.is_enabled})")
        return assignment

    def update_assignment(
        self,
        assignment_id: str,
        is_enabled: Optional[bool] = None,
        config: Optional[Dict[str, Any]] = None
    ) -> AgentTool:
        assignment = self.db.query(AgentTool).filter(AgentTool.id == assignment_id).first()
        if assignment is None:
            raise NotFoundError("Assignment not found")

        if is_enabled is not None:
            assignment.is_enabled = bool(is_enabled)
        if config is not None:
            assignment.config = config

        self._commit(assignment)
        return assignment

    def unassign_tool(
        self,
        assignment_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        tool_id: Optional[str] = None
    ) -> None:
        """
        Remove an assignment by id, or by agent and tool.

        Raises:
            ValidationError: Neither form of identification given
            NotFoundError: No such assignment
        """
        query = self.db.query(AgentTool)
        if assignment_id:
            query = query.filter(AgentTool.id == assignment_id)
        elif agent_id and tool_id:
            query = query.filter(AgentTool.agent_id == agent_id, AgentTool.tool_id == tool_id)
        else:
            raise ValidationError("Either assignment_id or both agent_id and tool_id are required")

        assignment = query.first()
        if assignment is None:
            raise NotFoundError("Assignment not found")

        agent_id, tool_id = assignment.agent_id, assignment.tool_id
        try:
            self.db.delete(assignment)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(e)

        logger.info(f"Tool {tool_id} unassigned from agent {agent_id}")

    def bulk_assign(self, agent_id: str, tool_ids: List[str]) -> List[AgentTool]:
        """
        Replace the agent's assignments with exactly ``tool_ids``, all enabled.

        Raises:
            NotFoundError: Unknown agent
            ValidationError: Some tool is missing or inactive; nothing changes
        """
        self._get_agent(agent_id)
        tool_ids = list(dict.fromkeys(tool_ids or []))

        if tool_ids:
            found = (
                self._tools()
                .filter(ToolDefinition.id.in_(tool_ids), ToolDefinition.is_active.is_(True))
                .count()
            )
            if found != len(tool_ids):
                raise ValidationError("One or more tools not found or inactive", field="tool_ids")

        try:
            self.db.query(AgentTool).filter(AgentTool.agent_id == agent_id).delete(synchronize_session=False)
            assignments = [AgentTool(agent_id=agent_id, tool_id=tool_id, is_enabled=True, config={}) for tool_id in tool_ids]
            self.db.add_all(assignments)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Bulk assignment failed: {e}", exc_info=True)
            raise StorageError(e)

        logger.info(f"✓ Agent {agent_id} now has {len(assignments)} tools")
        return assignments

    # ===========================
    # Startup seeding
    # ===========================

    def ensure_system_tools(self, registry: Optional[FunctionToolRegistry] = None) -> int:
        """
        Insert system tool definitions that do not exist yet.

        Covers the hosted tools and every function tool in ``registry``.

        Returns:
            Number of definitions created
        """
        definitions = [dict(spec) for spec in SYSTEM_HOSTED_TOOLS]
        for tool in (registry.tools() if registry is not None else []):
            definitions.append({
                "name": tool.name,
                "display_name": tool.name.replace("_", " ").title(),
                "description": tool.description,
                "category": "system",
                "tool_type": "function",
                "function_schema": tool.get_function_schema(),
            })

        existing = {
            name for (name,) in self.db.query(ToolDefinition.name)
            .filter(ToolDefinition.name.in_([d["name"] for d in definitions]))
            .all()
        }

        created = 0
        for definition in definitions:
            if definition["name"] in existing:
                continue
            self.db.add(ToolDefinition(org_id=self.settings.org_id, is_system=True, is_active=True, **definition))
            created += 1

        if created:
            try:
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"System tool seeding failed: {e}", exc_info=True)
                raise StorageError(e)
            logger.info(f"✓ Seeded {created} system tools")

        return created

    def _commit(self, row: Any) -> None:
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Integrity error saving {type(row).__name__}: {e}")
            raise ConflictError("Record conflicts with an existing one")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Save failed for {type(row).__name__}: {e}", exc_info=True)
            raise StorageError(e)


__all__ = ['ToolAdminService', 'normalize_tool_name', 'TOOL_TYPES', 'SYSTEM_HOSTED_TOOLS']
