"""
Chat management API routes.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Any, Dict, Optional
import logging

from sqlalchemy.orm import Session

from ...chat.message_chain import message_chain_from_rows
from ...database import get_db
from ...errors import EmmieError
from ...models.schemas import CreateChatRequest, LlmOverrideRequest
from ...models.user import User
from ...services.chat_session import ChatSessionService
from ...services.title_generator import TitleGenerator
from ..dependencies import get_current_user, raise_http_error

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=201)
async def create_chat(
    request: CreateChatRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Create a chat, or pass an existing chat id through.

    Returns:
        {"chatId": ...}
    """
    try:
        sessions = ChatSessionService(db)
        if request.chat_id:
            sessions.get_chat(request.chat_id, user.id)

        chat_id = sessions.create_or_get_chat(
            user_id=user.id,
            chat_id=request.chat_id,
            project_id=request.project_id,
            agent_id=request.agent_id,
            mode=request.mode,
        )
        return {"chatId": chat_id}

    except EmmieError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to create chat: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create chat")


@router.get("")
async def list_chats(
    project_id: Optional[str] = Query(None, alias="projectId"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """List the user's chats, most recently updated first."""
    try:
        chats = ChatSessionService(db).list_chats(user.id, project_id=project_id)
        for chat in chats:
            chat["created_at"] = chat["created_at"].isoformat() if chat["created_at"] else None
            chat["updated_at"] = chat["updated_at"].isoformat() if chat["updated_at"] else None
        return {"chats": chats}

    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to list chats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list chats")


@router.get("/{chat_id}/messages")
async def get_chat_messages(
    chat_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Active conversation path of a chat.

    Returns:
        {"chatId", "messages": [...], "totalMessages": raw row count}
    """
    try:
        sessions = ChatSessionService(db)
        chat = sessions.get_chat(chat_id, user.id)
        rows = sessions.get_chat_messages(chat_id)
        chain = message_chain_from_rows(rows)

        return {
            "chatId": chat.id,
            "title": chat.title,
            "messages": [message.to_dict() for message in chain],
            "totalMessages": len(rows),
        }

    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to load messages for chat {chat_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load messages")


@router.delete("/{chat_id}/messages/latest")
async def delete_latest_message(
    chat_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Remove the newest message; the chat goes too when it empties."""
    try:
        return ChatSessionService(db).delete_latest_message(chat_id, user.id)

    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to delete latest message of chat {chat_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete message")


@router.post("/{chat_id}/generate-title")
async def generate_title(
    chat_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Generate (or return the existing) chat title."""
    try:
        title = await TitleGenerator(db).generate_title(chat_id, user.id)
        return {"title": title}

    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Title generation failed for chat {chat_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to generate title")


@router.put("/{chat_id}/llm")
async def update_llm_override(
    chat_id: str,
    request: LlmOverrideRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Set the chat's model override; an empty body clears it."""
    try:
        override = request.model_dump(exclude_none=True)
        chat = ChatSessionService(db).update_llm_override(chat_id, user.id, override)
        return {"chatId": chat.id, "llmOverride": chat.llm_override}

    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to update LLM override for chat {chat_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update chat")


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        ChatSessionService(db).delete_chat(chat_id, user.id)
        return {"success": True, "chatId": chat_id}

    except EmmieError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to delete chat {chat_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete chat")
