"""
Tool definition and execution log models.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from datetime import datetime
import uuid

from ..database import Base


class ToolDefinition(Base):
    """
    Callable capability that can be assigned to agents.
    """
    __tablename__ = "tool_definitions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), nullable=False, index=True)

    name = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=False, default="general")
    tool_type = Column(String(30), nullable=False, default="function")  # function, code_interpreter, file_search

    function_schema = Column(JSON, nullable=True)
    default_config = Column(JSON, default=dict)
    is_system = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_openai_tool(self):
        """Responses API tool declaration for this definition."""
        if self.tool_type == "function":
            schema = dict(self.function_schema or {})
            return {
                "type": "function",
                "name": schema.get("name") or self.name,
                "description": schema.get("description") or self.description or "",
                "parameters": schema.get("parameters") or {"type": "object", "properties": {}},
            }
        return {"type": self.tool_type}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "category": self.category,
            "tool_type": self.tool_type,
            "function_schema": self.function_schema,
            "default_config": self.default_config or {},
            "is_system": self.is_system,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ToolDefinition(name={self.name}, type={self.tool_type})>"


class ToolExecutionLog(Base):
    """
    One function tool execution.
    """
    __tablename__ = "tool_execution_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(36), ForeignKey("chat_agents.id", ondelete="CASCADE"), nullable=False, index=True)
    tool_id = Column(String(36), ForeignKey("tool_definitions.id", ondelete="SET NULL"), nullable=True)
    tool_name = Column(String(100), nullable=False)
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = Column(String(36), nullable=True)

    execution_time_ms = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False)  # success, error, timeout
    input_data = Column(JSON, nullable=True)
    output_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ToolExecutionLog(tool={self.tool_name}, status={self.status})>"
