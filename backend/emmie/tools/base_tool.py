"""
Base class for function tools the model can call during a chat turn.

Version: 1.0.0
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type
import logging
import time

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


# ===========================
# Enums
# ===========================

class ToolStatus(str, Enum):
    """Tool execution status."""
    SUCCESS = "success"
    ERROR = "error"


class ToolErrorCode(str, Enum):
    """Error categories recorded with failed tool results."""
    VALIDATION_ERROR = "validation_error"
    EXECUTION_ERROR = "execution_error"
    TIMEOUT_ERROR = "timeout_error"
    NOT_FOUND_ERROR = "not_found_error"
    CIRCUIT_BREAKER_ERROR = "circuit_breaker_error"


# ===========================
# Result and context
# ===========================

@dataclass
class ToolResult:
    """
    Outcome of one tool execution.

    Attributes:
        success: Whether the tool did its job
        data: Tool-specific payload returned to the model
        metadata: Timing and bookkeeping, not shown to the model
        error: Error message when success is False
        status: SUCCESS or ERROR
        error_code: Error category when success is False
    """
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    status: ToolStatus = ToolStatus.SUCCESS
    error_code: Optional[ToolErrorCode] = None

    def __post_init__(self):
        if not self.success and self.status == ToolStatus.SUCCESS:
            self.status = ToolStatus.ERROR

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": self.success,
            "data": self.data,
            "metadata": self.metadata,
            "error": self.error,
            "status": self.status.value,
        }
        if self.error_code:
            result["error_code"] = self.error_code.value
        return result

    @classmethod
    def success_result(
        cls,
        data: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None
    ) -> 'ToolResult':
        return cls(success=True, data=data, metadata=metadata or {}, status=ToolStatus.SUCCESS)

    @classmethod
    def error_result(
        cls,
        error: str,
        metadata: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        error_code: Optional[ToolErrorCode] = None
    ) -> 'ToolResult':
        return cls(
            success=False,
            error=error,
            data=data or {},
            metadata=metadata or {},
            status=ToolStatus.ERROR,
            error_code=error_code
        )


@dataclass
class ToolContext:
    """
    Who and where a tool call happens.

    ``db`` is the request's SQLAlchemy session; tools that read chat data
    must scope their queries to ``org_id``.
    """
    org_id: str
    agent_id: Optional[str] = None
    chat_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_department: Optional[str] = None
    db: Any = None


# ===========================
# BaseTool
# ===========================

class BaseTool(ABC):
    """
    Abstract base for function tools.

    Subclasses implement ``execute`` and describe their arguments either
    with a pydantic ``request_model`` or by overriding
    ``_get_parameters_schema``.

    Example:
        class EchoTool(BaseTool):
            request_model = EchoRequest

            def __init__(self):
                super().__init__(name="echo", description="Repeat the input")

            async def execute(self, context, **kwargs) -> ToolResult:
                return ToolResult.success_result(data={"echo": kwargs["text"]})
    """

    request_model: Optional[Type[BaseModel]] = None

    def __init__(self, name: str, description: str, version: str = "1.0.0"):
        self.name = name
        self.description = description
        self.version = version
        logger.debug(f"Tool '{name}' created (version {version})")

    @abstractmethod
    async def execute(self, context: ToolContext, **kwargs) -> ToolResult:
        """
        Run the tool with validated arguments.

        Args:
            context: Chat, user and database the call runs against
            **kwargs: Tool arguments

        Returns:
            ToolResult with execution outcome
        """

    async def __call__(self, context: ToolContext, **kwargs) -> ToolResult:
        """Validate arguments, then execute; always returns a ToolResult."""
        start_time = time.time()

        validation = self.validate_params(**kwargs)
        if isinstance(validation, ToolResult):
            return validation

        result = await self.execute(context, **validation)

        if not isinstance(result, ToolResult):
            result = ToolResult.success_result(
                data=result if isinstance(result, dict) else {"result": result},
                metadata={"tool": self.name}
            )

        result.metadata.setdefault("tool", self.name)
        result.metadata["duration_ms"] = round((time.time() - start_time) * 1000, 2)
        logger.debug(f"Tool '{self.name}' execution completed: {result.status.value}")
        return result

    def validate_params(self, **kwargs):
        """
        Check arguments against ``request_model``.

        Returns:
            Validated argument dict, or an error ToolResult
        """
        if self.request_model is None:
            return kwargs

        try:
            validated = self.request_model(**kwargs)
        except ValidationError as e:
            return ToolResult.error_result(
                error=f"Parameter validation failed: {e}",
                metadata={"tool": self.name, "validation_errors": e.errors(include_url=False)},
                error_code=ToolErrorCode.VALIDATION_ERROR
            )
        return validated.model_dump()

    # ===========================
    # OpenAI schema
    # ===========================

    def get_openai_schema(self) -> Dict[str, Any]:
        """
        Function declaration in Responses API format.

        Returns:
            {"type": "function", "name", "description", "parameters"}
        """
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self._get_parameters_schema(),
        }

    def get_function_schema(self) -> Dict[str, Any]:
        """Schema stored in ``tool_definitions.function_schema``."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self._get_parameters_schema(),
        }

    def _get_parameters_schema(self) -> Dict[str, Any]:
        if self.request_model is not None:
            schema = self.request_model.model_json_schema()
            schema.pop("title", None)
            for prop in schema.get("properties", {}).values():
                prop.pop("title", None)
            return schema

        return {
            "type": "object",
            "properties": {},
            "required": self._get_required_parameters(),
        }

    def _get_required_parameters(self) -> List[str]:
        return []

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name!r}, version={self.version})>"


__all__ = [
    'ToolStatus',
    'ToolErrorCode',
    'ToolResult',
    'ToolContext',
    'BaseTool',
]
