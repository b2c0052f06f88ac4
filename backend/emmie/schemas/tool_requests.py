"""
Argument validation for built-in function tools.
The model produces tool arguments, so they are validated before a tool runs.

Version: 1.0.0
"""
import re
import logging
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

MAX_SUMMARY_LENGTH = 500
MAX_DETAILS_LENGTH = 10000
MAX_QUERY_LENGTH = 500


def sanitize_content(content: str, max_length: int) -> str:
    """
    Strip control characters and collapse runs of whitespace.

    Raises:
        ValueError: If nothing is left or the text is too long
    """
    content = content.replace('\x00', '')
    content = ''.join(char for char in content if char.isprintable() or char in '\n\t')
    content = re.sub(r'[ \t]+', ' ', content)
    content = re.sub(r'\n{3,}', '\n\n', content).strip()

    if not content:
        raise ValueError("value is empty after sanitization")
    if len(content) > max_length:
        raise ValueError(f"value exceeds maximum length: {len(content)} > {max_length}")
    return content


class ToolRequest(BaseModel):
    """Base for tool argument models."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='ignore')


class SupportTicketRequest(ToolRequest):
    """Arguments of ``submit_it_support_ticket``."""
    user_name: str = Field(..., min_length=1, max_length=255)
    issue_summary: str = Field(..., min_length=1)
    details: str = Field(..., min_length=1)
    priority: Literal["low", "medium", "high"] = "medium"
    request_type: Literal[
        "hardware_attention",
        "access_granting",
        "license_issuance",
        "general_support",
    ] = "general_support"

    @field_validator('issue_summary')
    @classmethod
    def validate_summary(cls, v: str) -> str:
        return sanitize_content(v, MAX_SUMMARY_LENGTH)

    @field_validator('details')
    @classmethod
    def validate_details(cls, v: str) -> str:
        return sanitize_content(v, MAX_DETAILS_LENGTH)


class SystemInfoRequest(ToolRequest):
    """Arguments of ``get_system_info``."""
    detailed: bool = False


class ChatHistorySearchRequest(ToolRequest):
    """Arguments of ``search_chat_history``."""
    query: str = Field(..., min_length=1)
    limit: int = Field(5, ge=1, le=20)
    chat_id: Optional[str] = None

    @field_validator('query')
    @classmethod
    def validate_query(cls, v: str) -> str:
        return sanitize_content(v, MAX_QUERY_LENGTH)
