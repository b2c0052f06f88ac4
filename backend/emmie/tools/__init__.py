"""
Function tools the model can call during a chat turn.
"""
from .base_tool import BaseTool, ToolContext, ToolResult, ToolStatus
from .executor import ExecutedToolCall, StreamedToolCall, ToolExecutor
from .registry import FunctionToolRegistry, get_function_tool_registry

__all__ = [
    'BaseTool',
    'ToolContext',
    'ToolResult',
    'ToolStatus',
    'ToolExecutor',
    'StreamedToolCall',
    'ExecutedToolCall',
    'FunctionToolRegistry',
    'get_function_tool_registry',
]
