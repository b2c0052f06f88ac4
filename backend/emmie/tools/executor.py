"""
Function tool execution during a streamed response.

The model streams a function call as an output item followed by argument
fragments. ``ToolExecutor`` tracks those fragments per item, then runs the
finished call against the function tool registry and records the outcome.
A failed call becomes a failed result for the model, never an exception.

Version: 1.0.0
"""
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..config.tool_settings import tool_settings
from ..models.tool import ToolDefinition, ToolExecutionLog
from ..utils.payloads import get_field
from ..utils.telemetry import track_tool_usage
from .base_tool import ToolContext, ToolErrorCode
from .registry import FunctionToolRegistry, get_function_tool_registry
from .tool_call_wrapper import call_tool

logger = logging.getLogger(__name__)

FUNCTION_CALL_ITEM_TYPES = ("function_call", "tool_call")


@dataclass
class StreamedToolCall:
    """Function call as assembled from the stream."""
    id: str
    call_id: str
    name: str
    arguments: str = ""


@dataclass
class ExecutedToolCall(StreamedToolCall):
    """Function call with its outcome; ``result`` is the text sent back to the model."""
    status: str = "completed"
    result: str = ""
    duration_ms: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_function_output(self) -> Dict[str, Any]:
        """Responses API input item carrying the result back to the model."""
        return {
            "type": "function_call_output",
            "call_id": self.call_id,
            "output": self.result,
        }

    def to_event(self) -> Dict[str, Any]:
        return {
            "type": "function_result",
            "call_id": self.call_id,
            "name": self.name,
            "result": self.result,
            "status": self.status,
        }


def parse_arguments(arguments: Optional[str]) -> Dict[str, Any]:
    """JSON arguments as a dict; unparseable text comes back as ``{"raw": text}``."""
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except (TypeError, ValueError):
        return {"raw": arguments}
    return parsed if isinstance(parsed, dict) else {"raw": arguments}


def is_function_call_item(item: Any) -> bool:
    return get_field(item, "type") in FUNCTION_CALL_ITEM_TYPES


class ToolExecutor:
    """
    Tracks streamed function calls and executes them.

    One executor serves one chat turn; its pending map is never shared
    between requests.
    """

    def __init__(
        self,
        context: ToolContext,
        registry: Optional[FunctionToolRegistry] = None,
        log_executions: Optional[bool] = None
    ):
        self.context = context
        self.registry = registry or get_function_tool_registry()
        self.log_executions = tool_settings.log_executions if log_executions is None else log_executions
        self._pending: Dict[str, StreamedToolCall] = {}

    # ===========================
    # Stream tracking
    # ===========================

    def start(self, item: Any) -> None:
        """Begin tracking a function call output item."""
        item_id = get_field(item, "id")
        self._pending[item_id] = StreamedToolCall(
            id=item_id,
            call_id=get_field(item, "call_id", item_id),
            name=get_field(item, "name", ""),
            arguments="",
        )

    def delta(self, event: Any) -> None:
        """Append an argument fragment; fragments for unknown items are ignored."""
        item_id = get_field(event, "item_id") or get_field(event, "id")
        pending = self._pending.get(item_id)
        if pending is None:
            return

        fragment = get_field(event, "delta")
        if isinstance(fragment, str):
            pending.arguments += fragment
        elif fragment:
            pending.arguments += json.dumps(fragment)

    def finish(self, item: Any) -> StreamedToolCall:
        """
        Stop tracking a call and return it.

        Final arguments on the item win over the accumulated fragments.

        Raises:
            KeyError: The item was never started
        """
        item_id = get_field(item, "id")
        pending = self._pending.pop(item_id, None)
        if pending is None:
            raise KeyError(f"Tool call {item_id} not tracked")

        final_args = get_field(item, "arguments")
        if final_args is not None and not isinstance(final_args, str):
            final_args = json.dumps(final_args)

        return StreamedToolCall(
            id=pending.id,
            call_id=get_field(item, "call_id", pending.call_id),
            name=get_field(item, "name", pending.name),
            arguments=final_args if final_args else pending.arguments,
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ===========================
    # Execution
    # ===========================

    async def execute(self, call: StreamedToolCall) -> ExecutedToolCall:
        """
        Run a finished call.

        Returns:
            ExecutedToolCall with status ``completed`` or ``failed``
        """
        start_time = time.time()
        arguments = parse_arguments(call.arguments)
        tool = self.registry.get(call.name)
        error_message = None
        output = None

        logger.info(
            f"Executing function tool {call.name}",
            extra={"tool_name": call.name, "chat_id": self.context.chat_id}
        )

        if tool is None:
            status = "failed"
            result = f'Function "{call.name}" not implemented.'
            error_message = result
            logger.error(
                f"Function tool not registered: {call.name}",
                extra={"tool_name": call.name, "available_tools": self.registry.names()}
            )
        else:
            try:
                tool_result = await call_tool(tool, self.context, arguments)
            except Exception as e:
                logger.error(f"Function tool {call.name} raised: {e}", exc_info=True)
                tool_result = None
                status = "failed"
                error_message = str(e) or "Unknown error"
                result = f"Error executing {call.name}: {error_message}"

            if tool_result is not None:
                if tool_result.success:
                    status = "completed"
                    output = tool_result.data
                    result = json.dumps(tool_result.data, default=str)
                else:
                    status = "failed"
                    error_message = tool_result.error or "Tool execution failed"
                    if tool_result.error_code == ToolErrorCode.EXECUTION_ERROR:
                        result = f"Error executing {call.name}: {error_message}"
                    else:
                        result = error_message

        duration_ms = int((time.time() - start_time) * 1000)
        track_tool_usage(call.name, status)

        if status == "completed":
            logger.info(f"✓ Function tool {call.name} completed in {duration_ms}ms")
        else:
            logger.warning(f"Function tool {call.name} failed: {error_message}")

        self._log_execution(call.name, arguments, status, output, error_message, duration_ms)

        return ExecutedToolCall(
            id=call.id,
            call_id=call.call_id,
            name=call.name,
            arguments=call.arguments,
            status=status,
            result=result,
            duration_ms=duration_ms,
        )

    def _log_execution(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        status: str,
        output: Optional[Dict[str, Any]],
        error_message: Optional[str],
        duration_ms: int
    ) -> None:
        """Write a tool_execution_logs row; logging failures never fail the call."""
        db = self.context.db
        if not self.log_executions or db is None or not self.context.agent_id:
            return

        try:
            definition = (
                db.query(ToolDefinition)
                .filter(ToolDefinition.name == tool_name, ToolDefinition.org_id == self.context.org_id)
                .first()
            )
            db.add(ToolExecutionLog(
                agent_id=self.context.agent_id,
                tool_id=definition.id if definition is not None else None,
                tool_name=tool_name,
                chat_id=self.context.chat_id,
                user_id=self.context.user_id,
                execution_time_ms=duration_ms,
                status="success" if status == "completed" else "error",
                input_data=arguments,
                output_data=output,
                error_message=error_message,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Failed to log execution of {tool_name}: {e}")


__all__ = [
    'ToolExecutor',
    'StreamedToolCall',
    'ExecutedToolCall',
    'parse_arguments',
    'is_function_call_item',
    'FUNCTION_CALL_ITEM_TYPES',
]
