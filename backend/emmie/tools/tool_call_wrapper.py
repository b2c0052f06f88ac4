"""
Tool call wrapper with retry logic, circuit breakers, and structured logging.
Every function tool execution goes through ``call_tool`` so that a slow or
failing tool can never abort a chat turn.

Version: 1.0.0
"""
import asyncio
import logging
import time
import functools
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Callable, Coroutine, Dict, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from aiobreaker import CircuitBreaker, CircuitBreakerError

from ..config.tool_settings import tool_settings
from .base_tool import BaseTool, ToolContext, ToolErrorCode, ToolResult

logger = logging.getLogger(__name__)


class ToolCallError(Exception):
    """Base exception for tool call errors."""


class ToolTimeoutError(ToolCallError):
    """Tool execution timeout error."""


# ===========================
# Circuit Breaker Configuration
# ===========================

class CircuitBreakerConfig:
    """Configuration for circuit breakers."""

    def __init__(self, fail_max: int = 5, timeout: int = 60, name: Optional[str] = None):
        """
        Args:
            fail_max: Consecutive failures before the circuit opens
            timeout: Seconds before an open circuit allows a trial call
            name: Circuit breaker name
        """
        self.fail_max = fail_max
        self.timeout = timeout
        self.name = name or "default"

    @classmethod
    def from_settings(cls, name: Optional[str] = None) -> 'CircuitBreakerConfig':
        return cls(name=name, **tool_settings.get_circuit_breaker_config())


# Global circuit breakers per tool
_circuit_breakers: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    tool_name: str,
    config: Optional[CircuitBreakerConfig] = None
) -> CircuitBreaker:
    """
    Get or create the async circuit breaker for a tool.

    Args:
        tool_name: Tool identifier
        config: Circuit breaker configuration, settings-based by default

    Returns:
        Circuit breaker shared by all calls of the tool
    """
    if tool_name not in _circuit_breakers:
        if config is None:
            config = CircuitBreakerConfig.from_settings(name=tool_name)

        _circuit_breakers[tool_name] = CircuitBreaker(
            fail_max=config.fail_max,
            timeout_duration=timedelta(seconds=config.timeout),
            name=config.name
        )

        logger.info(
            f"Created circuit breaker for '{tool_name}': "
            f"fail_max={config.fail_max}, timeout={config.timeout}s"
        )

    return _circuit_breakers[tool_name]


def reset_circuit_breaker(tool_name: str) -> None:
    """Drop a tool's breaker; the next call starts with a closed circuit."""
    if _circuit_breakers.pop(tool_name, None) is not None:
        logger.info(f"Reset circuit breaker for '{tool_name}'")


def reset_all_circuit_breakers() -> None:
    for tool_name in list(_circuit_breakers.keys()):
        reset_circuit_breaker(tool_name)


# ===========================
# Retry Configuration
# ===========================

class RetryConfig:
    """Configuration for retry logic."""

    def __init__(
        self,
        max_attempts: int = 2,
        wait_multiplier: float = 1.0,
        wait_min: float = 0.5,
        wait_max: float = 4.0,
        retry_exceptions: tuple = (ToolTimeoutError, ConnectionError)
    ):
        """
        Args:
            max_attempts: Total attempts including the first
            wait_multiplier: Exponential backoff multiplier
            wait_min: Minimum wait between attempts (seconds)
            wait_max: Maximum wait between attempts (seconds)
            retry_exceptions: Exception types worth another attempt
        """
        self.max_attempts = max_attempts
        self.wait_multiplier = wait_multiplier
        self.wait_min = wait_min
        self.wait_max = wait_max
        self.retry_exceptions = retry_exceptions

    @classmethod
    def from_settings(cls) -> 'RetryConfig':
        return cls(**tool_settings.get_retry_config())

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.wait_multiplier,
                min=self.wait_min,
                max=self.wait_max
            ),
            retry=retry_if_exception_type(self.retry_exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )


# ===========================
# Tool Call Context
# ===========================

@asynccontextmanager
async def tool_call_context(
    tool_name: str,
    operation: str = "execute",
    chat_id: Optional[str] = None,
    user_id: Optional[str] = None,
    **metadata
):
    """
    Log start, completion and failure of a tool call.

    Yields:
        Mutable dict; keys set on it are added to the completion log record
    """
    start_time = time.time()
    log_context = {
        "tool_name": tool_name,
        "operation": operation,
        "chat_id": chat_id,
        "user_id": user_id,
        **metadata
    }
    attributes: Dict[str, Any] = {}

    logger.info(f"Tool call started: {tool_name}.{operation}", extra=log_context)

    try:
        yield attributes
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Tool call failed: {tool_name}.{operation} "
            f"(duration: {duration:.3f}s, error: {e})",
            extra={
                **log_context,
                "duration_seconds": duration,
                "status": "error",
                "error_type": type(e).__name__,
            },
            exc_info=True
        )
        raise

    duration = time.time() - start_time
    logger.info(
        f"Tool call completed: {tool_name}.{operation} (duration: {duration:.3f}s)",
        extra={**log_context, **attributes, "duration_seconds": duration, "status": "success"}
    )


# ===========================
# Tool Call Wrapper Decorator
# ===========================

def with_tool_call_wrapper(
    tool_name: str,
    operation: Optional[str] = None,
    retry_config: Optional[RetryConfig] = None,
    circuit_breaker_config: Optional[CircuitBreakerConfig] = None,
    timeout: Optional[float] = None
):
    """
    Wrap an async tool coroutine with timeout, retry and circuit breaker.

    Exceptions never escape: they come back as an error ToolResult.

    Example:
        @with_tool_call_wrapper('search_chat_history', timeout=10.0)
        async def search(context, **kwargs):
            return await tool(context, **kwargs)
    """
    def decorator(func: Callable[..., Coroutine[Any, Any, ToolResult]]):
        op_name = operation or func.__name__

        @functools.wraps(func)
        async def wrapper(context: ToolContext, **kwargs) -> ToolResult:
            circuit_breaker = get_circuit_breaker(tool_name, circuit_breaker_config)
            retry = retry_config or RetryConfig.from_settings()

            async def execute_with_timeout():
                if not timeout:
                    return await func(context, **kwargs)
                try:
                    return await asyncio.wait_for(func(context, **kwargs), timeout=timeout)
                except asyncio.TimeoutError:
                    raise ToolTimeoutError(
                        f"Tool '{tool_name}' operation '{op_name}' timed out after {timeout}s"
                    )

            async def execute_with_retry():
                async for attempt in retry.retrying():
                    with attempt:
                        return await execute_with_timeout()

            try:
                async with tool_call_context(
                    tool_name,
                    op_name,
                    chat_id=context.chat_id,
                    user_id=context.user_id
                ) as attributes:
                    result = await circuit_breaker.call_async(execute_with_retry)
                    attributes["tool_success"] = getattr(result, "success", True)
                    return result

            except CircuitBreakerError as e:
                logger.warning(
                    f"Circuit breaker open for '{tool_name}': {e}",
                    extra={"tool_name": tool_name, "operation": op_name}
                )
                return ToolResult.error_result(
                    error=f"Service temporarily unavailable: {tool_name}",
                    metadata={"tool": tool_name, "circuit_breaker_open": True},
                    error_code=ToolErrorCode.CIRCUIT_BREAKER_ERROR
                )

            except ToolTimeoutError as e:
                return ToolResult.error_result(
                    error=str(e),
                    metadata={"tool": tool_name, "operation": op_name},
                    error_code=ToolErrorCode.TIMEOUT_ERROR
                )

            except Exception as e:
                return ToolResult.error_result(
                    error=str(e),
                    metadata={
                        "tool": tool_name,
                        "operation": op_name,
                        "error_type": type(e).__name__
                    },
                    error_code=ToolErrorCode.EXECUTION_ERROR
                )

        return wrapper

    return decorator


async def call_tool(
    tool: BaseTool,
    context: ToolContext,
    arguments: Dict[str, Any],
    retry_config: Optional[RetryConfig] = None,
    timeout: Optional[float] = None
) -> ToolResult:
    """
    Execute a tool through the wrapper.

    Args:
        tool: Tool instance
        context: Call context
        arguments: Parsed tool arguments
        retry_config: Retry configuration, settings-based by default
        timeout: Execution timeout, ``tool_settings.execution_timeout`` by default

    Returns:
        ToolResult from the tool, or an error ToolResult
    """
    wrapped = with_tool_call_wrapper(
        tool_name=tool.name,
        operation="execute",
        retry_config=retry_config,
        timeout=timeout if timeout is not None else tool_settings.execution_timeout
    )(tool.__call__)

    return await wrapped(context, **arguments)


__all__ = [
    'tool_call_context',
    'with_tool_call_wrapper',
    'call_tool',
    'RetryConfig',
    'CircuitBreakerConfig',
    'get_circuit_breaker',
    'reset_circuit_breaker',
    'reset_all_circuit_breakers',
    'ToolCallError',
    'ToolTimeoutError',
]
