"""
Agents package: turn routing and provider runners.

``ChatAgent`` lives in ``emmie.agents.chat_agent`` and is imported from there,
since it depends on the service layer that itself uses the routing rules.
"""

from .routing import (
    AGENT_MODES,
    RouteDecision,
    RoutingMode,
    resolve_route,
    select_backend,
    validate_agent_routing,
)

__all__ = [
    'AGENT_MODES',
    'RouteDecision',
    'RoutingMode',
    'resolve_route',
    'select_backend',
    'validate_agent_routing',
]
