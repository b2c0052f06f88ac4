"""
Tool execution and routing policy settings.
Defines the built-in tool allowances and resilience parameters used when
the model calls tools mid-conversation.

Version: 1.0.0
"""
from typing import Any, Dict, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json
import logging

logger = logging.getLogger(__name__)

BUILT_IN_TOOL_TYPES = (
    "web_search_preview",
    "code_interpreter",
    "image_generation",
    "file_search",
)


class ToolSettings(BaseSettings):
    """
    Tool policy configuration.
    Each concern can be tuned independently through TOOL_* environment variables.
    """

    model_config = SettingsConfigDict(env_prefix="TOOL_", extra="ignore")

    # ===========================
    # Allowances
    # ===========================

    default_allowed_tools: List[str] = Field(
        default_factory=lambda: [
            "search_chat_history",
            "web_search_preview",
            "code_interpreter",
            "image_generation",
        ],
        description="Tools offered to agents that do not declare their own list"
    )

    strict_effort_policy: bool = Field(
        default=False,
        description="Reject incompatible effort/tool combinations instead of bumping effort"
    )

    # ===========================
    # Execution
    # ===========================

    execution_timeout: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Per function tool execution timeout in seconds"
    )

    retry_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Attempts for transient function tool failures"
    )

    retry_wait_min: float = Field(default=0.5, ge=0, description="Minimum backoff in seconds")
    retry_wait_max: float = Field(default=4.0, ge=0, description="Maximum backoff in seconds")

    circuit_breaker_fail_max: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before a tool's circuit opens"
    )

    circuit_breaker_timeout: int = Field(
        default=60,
        ge=1,
        description="Seconds an open circuit waits before a trial call"
    )

    log_executions: bool = Field(
        default=True,
        description="Persist every function tool execution to tool_execution_logs"
    )

    # ===========================
    # Validators
    # ===========================

    @field_validator('default_allowed_tools', mode='before')
    @classmethod
    def parse_allowed_tools(cls, v):
        """Parse the allowed tool list from JSON or comma-separated text."""
        if v is None:
            return list(BUILT_IN_TOOL_TYPES)

        if isinstance(v, str):
            if v.startswith('['):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [name.strip() for name in v.split(',') if name.strip()]

        return v

    # ===========================
    # Helper Methods
    # ===========================

    def get_retry_config(self) -> Dict[str, Any]:
        """Keyword arguments for the tool call retry configuration."""
        return {
            "max_attempts": self.retry_attempts,
            "wait_min": self.retry_wait_min,
            "wait_max": self.retry_wait_max,
        }

    def get_circuit_breaker_config(self) -> Dict[str, Any]:
        """Keyword arguments for the tool call circuit breaker configuration."""
        return {
            "fail_max": self.circuit_breaker_fail_max,
            "timeout": self.circuit_breaker_timeout,
        }


# Create global instance
tool_settings = ToolSettings()

__all__ = ['ToolSettings', 'tool_settings', 'BUILT_IN_TOOL_TYPES']
