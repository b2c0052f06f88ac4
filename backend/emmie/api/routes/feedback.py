"""
Message feedback API route.
"""
from fastapi import APIRouter, Depends, HTTPException
from typing import Any, Dict
import logging

from sqlalchemy.orm import Session

from ...database import get_db
from ...errors import EmmieError
from ...models.schemas import FeedbackRequest
from ...models.user import User
from ...services.chat_session import ChatSessionService
from ..dependencies import get_current_user, raise_http_error

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=201)
async def submit_feedback(
    request: FeedbackRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Record a like or dislike against a message."""
    try:
        feedback = ChatSessionService(db).record_feedback(
            request.message_id,
            user.id,
            request.feedback_type,
            feedback_details=request.feedback_details,
            predefined_feedback=request.predefined_feedback,
        )
        return {"success": True, "feedback": feedback}

    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to record feedback: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to record feedback")
