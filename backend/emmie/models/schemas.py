"""
Pydantic schemas for request/response validation.
Request bodies accept camelCase keys (as sent by the web client) or snake_case.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict, Any, Literal
from datetime import datetime
from enum import Enum


class MessageRole(str, Enum):
    """Message role enumeration."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"
    ERROR = "error"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    MIXED = "mixed"


class StopReason(str, Enum):
    """Why an assistant turn ended."""
    COMPLETE = "complete"
    CONTEXT_LENGTH = "context_length"
    CANCELLED = "cancelled"
    ERROR = "error"


class RequestModel(BaseModel):
    """Base for request bodies."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===========================
# Chat Schemas
# ===========================

class CreateChatRequest(RequestModel):
    """Request to create (or pass through) a chat."""
    chat_id: Optional[str] = None
    project_id: Optional[str] = None
    agent_id: Optional[str] = None
    mode: Optional[str] = Field(None, max_length=20)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "agentId": "10000000-0000-0000-0000-000000000001",
                "mode": "hybrid"
            }
        }
    )


class ChatSummary(BaseModel):
    """Chat listing entry."""
    id: str
    title: str
    agent_id: Optional[str] = None
    project_id: Optional[str] = None
    mode: str
    message_count: int = 0
    created_at: datetime
    updated_at: datetime


class LlmOverrideRequest(RequestModel):
    """Per-chat model override chosen by the user."""
    model: Optional[str] = Field(None, max_length=100)
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)

    @field_validator('model')
    @classmethod
    def validate_model(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None


# ===========================
# Message Schemas
# ===========================

class GeneratedImagePayload(RequestModel):
    """Stored generated image reference."""
    url: str
    storage_path: str
    format: str = "png"


class SaveMessageRequest(RequestModel):
    """Request to persist one side of a chat turn."""
    chat_id: str = Field(..., min_length=1)
    role: Literal["user", "assistant"]
    content: str = Field("", max_length=100000)
    model: Optional[str] = None
    has_images: bool = False
    image_urls: List[str] = Field(default_factory=list)
    images: List[GeneratedImagePayload] = Field(default_factory=list)
    tool_calls: Optional[List[Dict[str, Any]]] = None
    stop_reason: Optional[StopReason] = None

    @model_validator(mode='after')
    def validate_content(self):
        """User messages need text or images."""
        if self.role == "user" and not self.content.strip() and not (self.has_images and self.image_urls):
            raise ValueError("Message content cannot be empty")
        return self


class FeedbackRequest(RequestModel):
    """Like/dislike feedback against a message."""
    message_id: int
    feedback_type: Literal["like", "dislike"]
    feedback_details: Optional[str] = Field(None, max_length=5000)
    predefined_feedback: Optional[str] = Field(None, max_length=100)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "messageId": 42,
                "feedbackType": "dislike",
                "feedbackDetails": "The answer cited the wrong policy",
                "predefinedFeedback": "inaccurate"
            }
        }
    )


class ChatTurnMessage(BaseModel):
    """Prior turn sent by the client."""
    role: Literal["user", "assistant", "system", "tool"]
    content: Optional[str] = None
    content_md: Optional[str] = None

    @property
    def text(self) -> str:
        return self.content_md if self.content_md is not None else (self.content or "")


class ChatTurnRequest(RequestModel):
    """Streamed chat turn request."""
    chat_id: Optional[str] = None
    project_id: Optional[str] = None
    agent_id: Optional[str] = None
    mode: Optional[Literal["prompt", "tools", "hybrid"]] = None
    image_urls: List[str] = Field(default_factory=list)
    messages: List[ChatTurnMessage] = Field(..., min_length=1)
    document_context: Optional[str] = None

    @property
    def user_content(self) -> str:
        """Text of the last message, the one being answered."""
        return self.messages[-1].text.strip()

    @model_validator(mode='after')
    def validate_last_message(self):
        if not self.user_content:
            raise ValueError("Message content cannot be empty")
        return self


# ===========================
# Admin Schemas
# ===========================

class AgentPayload(RequestModel):
    """
    Agent create/update body.
    Required fields are checked by the admin service so that partial updates
    share the same model.
    """
    name: Optional[str] = None
    department: Optional[str] = None
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    background_instructions: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None
    agent_mode: Optional[str] = None
    openai_assistant_id: Optional[str] = None
    allowed_tools: Optional[List[str]] = None


class BulkActiveRequest(RequestModel):
    agent_ids: List[str] = Field(..., min_length=1)
    is_active: bool


class ToolPayload(RequestModel):
    """Tool create/update body."""
    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tool_type: Optional[str] = None
    function_schema: Optional[Dict[str, Any]] = None
    default_config: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class AssignToolRequest(RequestModel):
    agent_id: str
    tool_id: str
    is_enabled: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)


class BulkAssignRequest(RequestModel):
    agent_id: str
    tool_ids: List[str] = Field(default_factory=list)


# ===========================
# Health Schemas
# ===========================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
    services: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-01T00:00:00",
                "version": "1.0.0",
                "services": {"database": "healthy"}
            }
        }
    )


__all__ = [
    'MessageRole',
    'MessageType',
    'StopReason',
    'CreateChatRequest',
    'ChatSummary',
    'LlmOverrideRequest',
    'GeneratedImagePayload',
    'SaveMessageRequest',
    'FeedbackRequest',
    'ChatTurnMessage',
    'ChatTurnRequest',
    'AgentPayload',
    'BulkActiveRequest',
    'ToolPayload',
    'AssignToolRequest',
    'BulkAssignRequest',
    'HealthResponse',
]
