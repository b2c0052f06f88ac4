"""
Agent configuration models.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from ..database import Base


class ChatAgent(Base):
    """
    Configured persona and routing mode a user converses with.
    """
    __tablename__ = "chat_agents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    department = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    system_prompt = Column(Text, nullable=False)
    background_instructions = Column(Text, nullable=True)

    color = Column(String(20), nullable=False, default="#6366f1")
    icon = Column(String(50), nullable=False, default="bot")
    is_active = Column(Boolean, nullable=False, default=True)

    agent_mode = Column(String(30), nullable=False, default="emmie")  # emmie, openai_assistant
    openai_assistant_id = Column(String(100), nullable=True)
    allowed_tools = Column(JSON, nullable=True)  # built-in tool allowlist, None means defaults

    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tool_assignments = relationship(
        "AgentTool",
        back_populates="agent",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "department": self.department,
            "description": self.description,
            "system_prompt": self.system_prompt,
            "background_instructions": self.background_instructions,
            "color": self.color,
            "icon": self.icon,
            "is_active": self.is_active,
            "agent_mode": self.agent_mode,
            "openai_assistant_id": self.openai_assistant_id,
            "allowed_tools": self.allowed_tools,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ChatAgent(id={self.id}, name={self.name!r}, mode={self.agent_mode})>"


class AgentTool(Base):
    """
    Assignment of a tool definition to an agent.
    """
    __tablename__ = "agent_tools"
    __table_args__ = (UniqueConstraint("agent_id", "tool_id", name="uq_agent_tools_agent_tool"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_id = Column(String(36), ForeignKey("chat_agents.id", ondelete="CASCADE"), nullable=False, index=True)
    tool_id = Column(String(36), ForeignKey("tool_definitions.id", ondelete="CASCADE"), nullable=False, index=True)

    is_enabled = Column(Boolean, nullable=False, default=True)
    config = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    agent = relationship("ChatAgent", back_populates="tool_assignments")
    tool = relationship("ToolDefinition")

    def to_dict(self):
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "tool_id": self.tool_id,
            "is_enabled": self.is_enabled,
            "config": self.config or {},
            "tool": self.tool.to_dict() if self.tool is not None else None,
        }

    def __repr__(self):
        return f"<AgentTool(agent={self.agent_id}, tool={self.tool_id}, enabled={self.is_enabled})>"
