"""
Message persistence API route.
"""
from fastapi import APIRouter, Depends, HTTPException
from typing import Any, Dict
import logging

from sqlalchemy.orm import Session

from ...database import get_db
from ...errors import EmmieError
from ...models.schemas import SaveMessageRequest
from ...models.user import User
from ...services.chat_session import ChatSessionService
from ..dependencies import get_current_user, raise_http_error

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=201)
async def save_message(
    request: SaveMessageRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Persist one side of a chat turn.

    Args:
        request: Role, content and, for assistant turns, model, images and tool calls

    Returns:
        Stored message
    """
    try:
        sessions = ChatSessionService(db)
        sessions.get_chat(request.chat_id, user.id)

        if request.role == "user":
            message = sessions.save_user_message(
                request.chat_id,
                request.content,
                has_images=request.has_images,
                image_urls=request.image_urls,
            )
        else:
            message = sessions.save_assistant_message(
                request.chat_id,
                request.content,
                request.model,
                images=[image.model_dump() for image in request.images],
                tool_calls=request.tool_calls,
                stop_reason=request.stop_reason.value if request.stop_reason else None,
            )

        return {"message": message.to_dict()}

    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to save message: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to save message")
