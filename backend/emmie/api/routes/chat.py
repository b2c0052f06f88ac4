"""
Streamed chat turn API route.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from typing import Any, AsyncGenerator, Dict
import json
import logging

from sqlalchemy.orm import Session

from ...agents.chat_agent import ChatAgent, TurnContext
from ...database import get_db
from ...errors import EmmieError
from ...models.schemas import ChatTurnRequest
from ...models.user import User
from ..dependencies import get_current_user, raise_http_error

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: Dict[str, Any]) -> str:
    """One Server-Sent Events frame."""
    return f"data: {json.dumps(event, default=str)}\n\n"


async def event_stream(
    agent: ChatAgent,
    turn: TurnContext,
    request: Request
) -> AsyncGenerator[str, None]:
    async for event in agent.stream_turn(turn, is_disconnected=request.is_disconnected):
        yield format_sse(event)


@router.post("")
async def chat(
    body: ChatTurnRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Run a chat turn and stream it as Server-Sent Events.

    Errors found before streaming starts (unknown chat or agent, agent
    misconfiguration, storage failures) are returned as JSON errors; later
    failures arrive as an ``error`` event.
    """
    try:
        agent = ChatAgent(db)
        turn = agent.prepare_turn(body, user)

    except EmmieError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to start chat turn: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to generate response")

    return StreamingResponse(
        event_stream(agent, turn, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
