"""
Administration API routes: agents, tools and agent tool assignments.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Any, Dict, Optional
import logging

from sqlalchemy.orm import Session

from ...database import get_db
from ...errors import EmmieError
from ...models.schemas import (
    AgentPayload,
    AssignToolRequest,
    BulkActiveRequest,
    BulkAssignRequest,
    ToolPayload,
)
from ...models.user import User
from ...services.agent_admin import AgentAdminService
from ...services.tool_admin import ToolAdminService
from ..dependencies import raise_http_error, require_admin

logger = logging.getLogger(__name__)

router = APIRouter()


def _internal_error(action: str, error: Exception) -> HTTPException:
    logger.error(f"Failed to {action}: {error}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Failed to {action}")


# ===========================
# Agents
# ===========================

@router.get("/agents")
async def list_agents(
    include_inactive: bool = Query(False, alias="includeInactive"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        agents = AgentAdminService(db).list_agents(include_inactive=include_inactive)
        return {"agents": [agent.to_dict() for agent in agents]}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("list agents", e)


@router.get("/agents/{agent_id}")
async def get_agent(
    agent_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        return {"agent": AgentAdminService(db).get_agent(agent_id).to_dict()}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("load agent", e)


@router.post("/agents", status_code=201)
async def create_agent(
    payload: AgentPayload,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Create an agent.

    Missing name, department or system prompt is a 400; an assistant-mode
    agent without a valid assistant id is rejected here as well.
    """
    try:
        agent = AgentAdminService(db).create_agent(payload.model_dump(exclude_unset=True), user_id=admin.id)
        return {"agent": agent.to_dict()}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("create agent", e)


@router.put("/agents/{agent_id}")
async def update_agent(
    agent_id: str,
    payload: AgentPayload,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        agent = AgentAdminService(db).update_agent(agent_id, payload.model_dump(exclude_unset=True))
        return {"agent": agent.to_dict()}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("update agent", e)


@router.patch("/agents")
async def bulk_set_agents_active(
    request: BulkActiveRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Activate or deactivate several agents at once."""
    try:
        return AgentAdminService(db).bulk_set_active(request.agent_ids, request.is_active)
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("update agents", e)


@router.delete("/agents/{agent_id}")
async def delete_agent(
    agent_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        agent = AgentAdminService(db).delete_agent(agent_id)
        return {"message": "Agent deactivated successfully", "agent": agent.to_dict()}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("delete agent", e)


# ===========================
# Tools
# ===========================

@router.get("/tools")
async def list_tools(
    category: Optional[str] = None,
    tool_type: Optional[str] = None,
    include_inactive: bool = Query(False, alias="includeInactive"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        tools = ToolAdminService(db).list_tools(
            category=category,
            tool_type=tool_type,
            include_inactive=include_inactive,
        )
        return {"tools": [tool.to_dict() for tool in tools]}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("list tools", e)


@router.post("/tools", status_code=201)
async def create_tool(
    payload: ToolPayload,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        tool = ToolAdminService(db).create_tool(payload.model_dump(exclude_unset=True), user_id=admin.id)
        return {"tool": tool.to_dict()}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("create tool", e)


@router.put("/tools/{tool_id}")
async def update_tool(
    tool_id: str,
    payload: ToolPayload,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        tool = ToolAdminService(db).update_tool(tool_id, payload.model_dump(exclude_unset=True))
        return {"tool": tool.to_dict()}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("update tool", e)


@router.delete("/tools/{tool_id}")
async def delete_tool(
    tool_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        return {"message": ToolAdminService(db).delete_tool(tool_id)}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("delete tool", e)


# ===========================
# Agent tool assignments
# ===========================

@router.get("/agent-tools")
async def list_agent_tools(
    agent_id: Optional[str] = Query(None, alias="agentId"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if not agent_id:
        raise HTTPException(status_code=400, detail="agentId is required")
    try:
        assignments = ToolAdminService(db).list_agent_tools(agent_id)
        return {"assignments": [assignment.to_dict() for assignment in assignments]}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("fetch agent tools", e)


@router.post("/agent-tools", status_code=201)
async def assign_tool(
    request: AssignToolRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        assignment = ToolAdminService(db).assign_tool(
            request.agent_id,
            request.tool_id,
            is_enabled=request.is_enabled,
            config=request.config,
        )
        return {"message": "Tool assigned successfully", "assignment": assignment.to_dict()}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("assign tool", e)


@router.put("/agent-tools/{assignment_id}")
async def update_agent_tool(
    assignment_id: str,
    body: Dict[str, Any],
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        assignment = ToolAdminService(db).update_assignment(
            assignment_id,
            is_enabled=body.get("is_enabled", body.get("isEnabled")),
            config=body.get("config"),
        )
        return {"assignment": assignment.to_dict()}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("update agent tool", e)


@router.delete("/agent-tools")
async def unassign_tool(
    assignment_id: Optional[str] = None,
    agent_id: Optional[str] = None,
    tool_id: Optional[str] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        ToolAdminService(db).unassign_tool(assignment_id=assignment_id, agent_id=agent_id, tool_id=tool_id)
        return {"message": "Tool unassigned successfully"}
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("unassign tool", e)


@router.post("/agent-tools/bulk")
async def bulk_assign_tools(
    request: BulkAssignRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Replace every assignment of an agent with the given tools."""
    try:
        assignments = ToolAdminService(db).bulk_assign(request.agent_id, request.tool_ids)
        return {
            "message": f"Updated {len(assignments)} tool assignments",
            "assignments": [assignment.to_dict() for assignment in assignments],
        }
    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        raise _internal_error("update tool assignments", e)
