"""
Agent administration.
Agents are validated when they are saved, so a misconfigured agent is
rejected here rather than failing a user's chat turn later.

Version: 1.0.0
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..agents.routing import RoutingMode, validate_agent_routing
from ..config import Settings, settings as default_settings
from ..errors import NotFoundError, StorageError, ValidationError
from ..models.agent import ChatAgent

logger = logging.getLogger(__name__)

REQUIRED_AGENT_FIELDS = ("name", "department", "system_prompt")

EDITABLE_AGENT_FIELDS = (
    "name",
    "department",
    "description",
    "system_prompt",
    "background_instructions",
    "color",
    "icon",
    "is_active",
    "agent_mode",
    "openai_assistant_id",
    "allowed_tools",
)


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def validate_agent_fields(data: Dict[str, Any]) -> None:
    """
    Check a complete agent record.

    Raises:
        ValidationError: A required field is missing or empty
        ConfigurationError: The routing configuration is unusable
    """
    missing = [name for name in REQUIRED_AGENT_FIELDS if not _clean(data.get(name))]
    if missing:
        raise ValidationError(
            "Name, department, and system prompt are required",
            field=missing[0]
        )

    allowed_tools = data.get("allowed_tools")
    if allowed_tools is not None and (
        not isinstance(allowed_tools, list) or not all(isinstance(name, str) for name in allowed_tools)
    ):
        raise ValidationError("allowed_tools must be a list of tool names", field="allowed_tools")

    validate_agent_routing(data.get("agent_mode"), data.get("openai_assistant_id"))


class AgentAdminService:
    """CRUD over chat agents within the organisation."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings

    def _query(self):
        return self.db.query(ChatAgent).filter(ChatAgent.org_id == self.settings.org_id)

    def list_agents(self, include_inactive: bool = False) -> List[ChatAgent]:
        """Agents ordered by department, then name."""
        query = self._query()
        if not include_inactive:
            query = query.filter(ChatAgent.is_active.is_(True))
        return query.order_by(ChatAgent.department.asc(), ChatAgent.name.asc()).all()

    def get_agent(self, agent_id: str, active_only: bool = False) -> ChatAgent:
        """
        Raises:
            NotFoundError: No such agent in the organisation (or inactive when active_only)
        """
        query = self._query().filter(ChatAgent.id == agent_id)
        if active_only:
            query = query.filter(ChatAgent.is_active.is_(True))
        agent = query.first()
        if agent is None:
            raise NotFoundError("Agent not found")
        return agent

    def create_agent(self, payload: Dict[str, Any], user_id: Optional[str] = None) -> ChatAgent:
        """
        Create an agent.

        Args:
            payload: Agent fields (snake_case)
            user_id: Creating admin

        Raises:
            ValidationError: Required fields missing
            ConfigurationError: Assistant mode without a valid assistant id
            StorageError: Insert failed
        """
        data = {name: _clean(payload.get(name)) for name in EDITABLE_AGENT_FIELDS if name in payload}
        data.setdefault("agent_mode", RoutingMode.EMMIE.value)
        data["agent_mode"] = data["agent_mode"] or RoutingMode.EMMIE.value

        validate_agent_fields(data)

        agent = ChatAgent(org_id=self.settings.org_id, created_by=user_id)
        for name, value in data.items():
            if value is not None:
                setattr(agent, name, value)

        self._commit(agent)
        logger.info(f"✓ Agent created: {agent.name} ({agent.id})", extra={"user_id": user_id})
        return agent

    def update_agent(self, agent_id: str, payload: Dict[str, Any]) -> ChatAgent:
        """
        Update the given fields; the merged record is validated as a whole.

        Raises:
            NotFoundError: Unknown agent
            ValidationError: Required fields missing after the merge
            ConfigurationError: Routing configuration unusable after the merge
        """
        agent = self.get_agent(agent_id)

        updates = {name: _clean(payload[name]) for name in EDITABLE_AGENT_FIELDS if name in payload}
        merged = {name: getattr(agent, name) for name in EDITABLE_AGENT_FIELDS}
        merged.update(updates)
        merged["agent_mode"] = merged.get("agent_mode") or RoutingMode.EMMIE.value

        validate_agent_fields(merged)

        for name, value in updates.items():
            if name in ("color", "icon", "is_active") and value is None:
                continue
            setattr(agent, name, value)
        agent.agent_mode = merged["agent_mode"]

        self._commit(agent)
        logger.info(f"Agent updated: {agent.id}")
        return agent

    def delete_agent(self, agent_id: str) -> ChatAgent:
        """
        Deactivate an agent; rows are never removed.

        Raises:
            ValidationError: The agent is one of the default system agents
            NotFoundError: Unknown agent
        """
        if agent_id in self.settings.protected_agent_ids:
            raise ValidationError("Cannot delete default system agents", field="agent_id")

        agent = self.get_agent(agent_id)
        agent.is_active = False
        self._commit(agent)
        logger.info(f"Agent deactivated: {agent.name} ({agent.id})")
        return agent

    def bulk_set_active(self, agent_ids: List[str], is_active: bool) -> Dict[str, Any]:
        """
        Activate or deactivate several agents; each id succeeds or fails on its own.

        Returns:
            {"updated": [...], "errors": [...], "success": n, "failed": n}
        """
        updated = []
        errors = []

        for agent_id in agent_ids:
            if not agent_id:
                errors.append({"agentId": agent_id, "error": "Agent ID is required"})
                continue
            try:
                agent = self.get_agent(agent_id)
                agent.is_active = bool(is_active)
                self._commit(agent)
                updated.append({"id": agent.id, "name": agent.name, "is_active": agent.is_active})
            except (NotFoundError, StorageError) as e:
                errors.append({"agentId": agent_id, "error": e.message})

        logger.info(f"Bulk agent update: {len(updated)} updated, {len(errors)} failed")
        return {
            "message": f"Updated {len(updated)} agents successfully",
            "updated": updated,
            "errors": errors,
            "success": len(updated),
            "failed": len(errors),
        }

    def _commit(self, agent: ChatAgent) -> None:
        try:
            self.db.add(agent)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Agent save failed: {e}", exc_info=True)
            raise StorageError(e)


__all__ = ['AgentAdminService', 'validate_agent_fields', 'REQUIRED_AGENT_FIELDS']
