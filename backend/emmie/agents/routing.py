"""
Backend, model tier, reasoning effort and tool selection for a chat turn.

An agent with an assistant id is served by the Assistants API; every other
agent goes through the Emmie pipeline, where the prompt itself decides the
model tier and the built-in tools offered to the model.

Version: 1.0.0
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..config import Settings, settings as default_settings
from ..config.tool_settings import tool_settings
from ..errors import ConfigurationError, ValidationError
from ..utils.payloads import get_field
from ..utils.telemetry import track_routing_decision

logger = logging.getLogger(__name__)


class RoutingMode(str, Enum):
    EMMIE = "emmie"
    OPENAI_ASSISTANT = "openai_assistant"


AGENT_MODES = tuple(mode.value for mode in RoutingMode)

EFFORT_LEVELS = ("minimal", "low", "medium", "high")

# Built-in tools each reasoning effort may be combined with
EFFORT_TOOL_COMPATIBILITY = {
    "minimal": frozenset(),
    "low": frozenset({"web_search", "image_generation", "file_search", "code_interpreter"}),
    "medium": frozenset({"web_search", "image_generation", "file_search", "code_interpreter"}),
    "high": frozenset({"web_search", "image_generation", "file_search", "code_interpreter"}),
}

_TOOL_ALIASES = {
    "web_search_preview": "web_search",
    "web_search": "web_search",
    "search": "web_search",
    "image_generation": "image_generation",
    "image": "image_generation",
    "file_search": "file_search",
    "files": "file_search",
    "code_interpreter": "code_interpreter",
    "code": "code_interpreter",
}

ASSISTANT_ID_RE = re.compile(r'^asst_[A-Za-z0-9]{6,}$')

COMPLEX_TASK_RE = re.compile(r'\b(code|debug|analy[sz]e|architecture|integration)\b', re.IGNORECASE)
CODE_TASK_RE = re.compile(r'\b(function|bug|script|stack trace|error)\b', re.IGNORECASE)
IMAGE_REQUEST_RE = re.compile(
    r'\b(generate|create|make|draw|illustrate|image|picture|photo|diagram)\b',
    re.IGNORECASE
)
CODE_TOOL_RE = re.compile(r'\b(code|debug|script|error|function|bug)\b', re.IGNORECASE)

SHORT_MESSAGE_LENGTH = 200
LONG_MESSAGE_LENGTH = 2000


@dataclass
class RouteDecision:
    """Everything a runner needs to serve one turn."""
    mode: RoutingMode
    model: Optional[str] = None
    reasoning_effort: Optional[str] = None
    tools: List[Dict[str, Any]] = field(default_factory=list)
    assistant_id: Optional[str] = None
    temperature: Optional[float] = None
    coerced: bool = False

    @property
    def is_assistant(self) -> bool:
        return self.mode == RoutingMode.OPENAI_ASSISTANT

    @property
    def tool_types(self) -> List[str]:
        return [tool_label(tool) for tool in self.tools]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "model": self.model,
            "reasoning_effort": self.reasoning_effort,
            "tools": self.tool_types,
            "assistant_id": self.assistant_id,
            "coerced": self.coerced,
        }


def tool_label(tool: Dict[str, Any]) -> str:
    """``function:<name>`` for function tools, the tool type otherwise."""
    if tool.get("type") == "function":
        return f"function:{tool.get('name') or get_field(tool.get('function'), 'name', '')}"
    return tool.get("type", "")


# ===========================
# Backend selection
# ===========================

def is_valid_assistant_id(assistant_id: Optional[str]) -> bool:
    return bool(assistant_id) and bool(ASSISTANT_ID_RE.match(assistant_id.strip()))


def validate_agent_routing(agent_mode: Optional[str], assistant_id: Optional[str]) -> None:
    """
    Reject agent configurations that cannot be routed.

    Raises:
        ConfigurationError: Unknown mode, assistant mode without an id, or a
            malformed assistant id
    """
    mode = agent_mode or RoutingMode.EMMIE.value
    if mode not in AGENT_MODES:
        raise ConfigurationError(
            f"agent_mode must be one of: {', '.join(AGENT_MODES)}",
            details={"field": "agent_mode"}
        )

    assistant_id = (assistant_id or "").strip()

    if mode == RoutingMode.OPENAI_ASSISTANT.value and not assistant_id:
        raise ConfigurationError(
            "OpenAI Assistant ID is required when agent_mode is openai_assistant",
            details={"field": "openai_assistant_id"}
        )

    if assistant_id and not is_valid_assistant_id(assistant_id):
        raise ConfigurationError(
            "OpenAI Assistant ID must look like 'asst_...'",
            details={"field": "openai_assistant_id"}
        )


def select_backend(agent: Any) -> RoutingMode:
    """
    Assistant mode when the agent carries an assistant id, Emmie otherwise.

    The assistant id wins over any model the user picked.

    Raises:
        ConfigurationError: The agent is misconfigured; never downgraded to Emmie
    """
    if agent is None:
        return RoutingMode.EMMIE

    agent_mode = get_field(agent, "agent_mode", RoutingMode.EMMIE.value)
    assistant_id = (get_field(agent, "openai_assistant_id") or "").strip()

    validate_agent_routing(agent_mode, assistant_id)

    if assistant_id:
        return RoutingMode.OPENAI_ASSISTANT
    return RoutingMode.EMMIE


# ===========================
# Emmie mode policy
# ===========================

def _has_tool(tools: Iterable[Dict[str, Any]], tool_type: str) -> bool:
    return any(tool.get("type") == tool_type for tool in tools)


def select_model_and_reasoning(
    user_content: str,
    has_images: bool = False,
    tools: Sequence[Dict[str, Any]] = (),
    settings: Optional[Settings] = None
) -> Dict[str, str]:
    """
    Pick the model tier and reasoning effort from the prompt.

    Returns:
        {"model": ..., "reasoning_effort": ...}
    """
    settings = settings or default_settings
    content = user_content or ""
    length = len(content)
    is_complex = bool(COMPLEX_TASK_RE.search(content))
    is_code = bool(CODE_TASK_RE.search(content))

    if has_images:
        model = settings.model_advanced if (is_complex or is_code) else settings.model_balanced
    elif is_complex or is_code or length > LONG_MESSAGE_LENGTH:
        model = settings.model_advanced
    elif length < SHORT_MESSAGE_LENGTH:
        model = settings.model_fast
    else:
        model = settings.model_balanced

    if is_complex:
        effort = "high" if length > LONG_MESSAGE_LENGTH else "medium"
    elif is_code:
        effort = "medium"
    elif length < SHORT_MESSAGE_LENGTH:
        effort = "minimal"
    else:
        effort = "low"

    if _has_tool(tools, "web_search_preview") and effort == "minimal":
        effort = "low"
    if _has_tool(tools, "code_interpreter") and effort == "low":
        effort = "medium"
    if _has_tool(tools, "image_generation") and effort == "minimal":
        effort = "low"

    return {"model": model, "reasoning_effort": effort}


def normalize_tool_name(tool_name: str) -> Optional[str]:
    return _TOOL_ALIASES.get((tool_name or "").lower())


def coerce_effort_and_tools(
    requested_effort: Optional[str],
    requested_tools: Sequence[str],
    model: Optional[str] = None,
    strict: bool = False
) -> Dict[str, Any]:
    """
    Make a reasoning effort and built-in tool set compatible.

    Args:
        requested_effort: Effort from the prompt policy, "low" when None
        requested_tools: Built-in tool types the turn wants
        model: Target model, for logging
        strict: Raise instead of raising the effort

    Returns:
        {"effort": ..., "tools": [...], "coerced": bool}

    Raises:
        ValidationError: strict and some tools are blocked at this effort
    """
    effort = requested_effort or "low"
    if effort not in EFFORT_TOOL_COMPATIBILITY:
        raise ValidationError(
            f"reasoning effort must be one of: {', '.join(EFFORT_LEVELS)}",
            field="reasoning_effort"
        )

    if not requested_tools:
        return {"effort": effort, "tools": [], "coerced": False}

    allowed = EFFORT_TOOL_COMPATIBILITY[effort]
    blocked = [tool for tool in requested_tools if normalize_tool_name(tool) not in allowed]

    if not blocked:
        return {"effort": effort, "tools": list(requested_tools), "coerced": False}

    if strict:
        raise ValidationError(
            f"Requested tools [{', '.join(blocked)}] are not allowed with "
            f"reasoning.effort='{effort}'. Use 'low' (or higher) effort or remove those tools.",
            field="tools"
        )

    logger.debug(f"Reasoning effort raised from {effort} to low for {model}: {blocked}")
    return {"effort": "low", "tools": list(requested_tools), "coerced": True}


def _function_declaration(tool: Any) -> Optional[Dict[str, Any]]:
    if hasattr(tool, "to_openai_tool"):
        return tool.to_openai_tool()
    if hasattr(tool, "get_openai_schema"):
        return tool.get_openai_schema()
    if isinstance(tool, dict):
        return tool
    return None


def build_tool_list(
    agent_allowed_tools: Optional[Iterable[str]],
    user_content: str,
    function_tools: Optional[Iterable[Any]] = None
) -> List[Dict[str, Any]]:
    """
    Tools offered to the model for this prompt.

    Image-looking prompts get image generation instead of web search; code
    prompts also get the code interpreter. Function tools are appended
    after the built-ins, once per name.

    Args:
        agent_allowed_tools: Agent allowlist, the configured defaults when None
        user_content: Prompt text
        function_tools: ToolDefinition, BaseTool or declaration dicts
    """
    allowed = set(
        agent_allowed_tools if agent_allowed_tools is not None else tool_settings.default_allowed_tools
    )
    content = user_content or ""
    tools: List[Dict[str, Any]] = []

    is_image_request = bool(IMAGE_REQUEST_RE.search(content))

    if is_image_request and "image_generation" in allowed:
        tools.append({"type": "image_generation"})

    if not is_image_request and "web_search_preview" in allowed:
        tools.append({"type": "web_search_preview"})

    if CODE_TOOL_RE.search(content) and "code_interpreter" in allowed:
        tools.append({"type": "code_interpreter"})

    seen = set()
    for tool in function_tools or []:
        declaration = _function_declaration(tool)
        if not declaration or declaration.get("type") != "function":
            continue
        name = declaration.get("name")
        if name in seen:
            continue
        seen.add(name)
        tools.append(declaration)

    logger.debug(f"Tools built: {[tool_label(tool) for tool in tools]}")
    return tools


# ===========================
# Route resolution
# ===========================

def resolve_route(
    agent: Any,
    user_content: str,
    has_images: bool = False,
    allowed_tools: Optional[Iterable[str]] = None,
    function_tools: Optional[Iterable[Any]] = None,
    llm_override: Optional[Dict[str, Any]] = None,
    mode: Optional[str] = None,
    settings: Optional[Settings] = None,
    strict: Optional[bool] = None
) -> RouteDecision:
    """
    Decide how one chat turn is served.

    Args:
        agent: The chat's agent (None routes to Emmie with defaults)
        user_content: Prompt text
        has_images: Whether the user attached images
        allowed_tools: Built-in tool allowlist, the agent's own when None
        function_tools: Function tools enabled for the agent
        llm_override: Chat-level {"model", "temperature"}, Emmie mode only
        mode: Chat mode; "prompt" offers no tools
        settings: Application settings
        strict: Effort policy strictness, ``tool_settings`` when None

    Raises:
        ConfigurationError: Assistant-mode agent without a usable assistant id
        ValidationError: Strict effort policy rejected the tool set
    """
    settings = settings or default_settings
    backend = select_backend(agent)

    if backend == RoutingMode.OPENAI_ASSISTANT:
        assistant_id = get_field(agent, "openai_assistant_id").strip()
        track_routing_decision(backend.value, "assistant")
        logger.info(f"Routing to assistant {assistant_id}")
        return RouteDecision(mode=backend, assistant_id=assistant_id)

    if allowed_tools is None:
        allowed_tools = get_field(agent, "allowed_tools")

    if mode == "prompt":
        tools: List[Dict[str, Any]] = []
    else:
        tools = build_tool_list(allowed_tools, user_content, function_tools)

    selection = select_model_and_reasoning(user_content, has_images, tools, settings)
    built_in = [tool["type"] for tool in tools if tool.get("type") != "function"]
    policy = coerce_effort_and_tools(
        selection["reasoning_effort"],
        built_in,
        model=selection["model"],
        strict=tool_settings.strict_effort_policy if strict is None else strict
    )

    model = selection["model"]
    temperature = None
    if llm_override:
        model = llm_override.get("model") or model
        temperature = llm_override.get("temperature")

    decision = RouteDecision(
        mode=backend,
        model=model,
        reasoning_effort=policy["effort"],
        tools=tools,
        temperature=temperature,
        coerced=policy["coerced"],
    )

    track_routing_decision(backend.value, model)
    logger.info(
        f"Routing to {model} (effort={decision.reasoning_effort}, tools={decision.tool_types})"
    )
    return decision


__all__ = [
    'RoutingMode',
    'RouteDecision',
    'AGENT_MODES',
    'is_valid_assistant_id',
    'validate_agent_routing',
    'select_backend',
    'select_model_and_reasoning',
    'coerce_effort_and_tools',
    'normalize_tool_name',
    'build_tool_list',
    'resolve_route',
    'tool_label',
]
