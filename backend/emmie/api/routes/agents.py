"""
Agent listing for chat users.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Any, Dict
import logging

from sqlalchemy.orm import Session

from ...database import get_db
from ...errors import EmmieError
from ...models.user import User
from ...services.agent_admin import AgentAdminService
from ..dependencies import get_current_user, raise_http_error

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def list_agents(
    include_inactive: bool = Query(False, alias="includeInactive"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Agents users can chat with, grouped by department."""
    try:
        agents = AgentAdminService(db).list_agents(include_inactive=include_inactive)
        return {"agents": [agent.to_dict() for agent in agents]}

    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to list agents: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list agents")
