"""
Chat session service.
Owns the lifecycle of chats and their messages against the database.

Version: 1.0.0
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, settings as default_settings
from ..errors import (
    ChatCreationError,
    MessageSaveError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from ..models.chat import Chat
from ..models.message import Message, MessageFeedback
from ..utils.telemetry import metrics_collector

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODE = "normal"
DISPLAY_UNTITLED = "New Chat"
FEEDBACK_TYPES = ("like", "dislike")


def derive_assistant_message_type(content: str, images: List[Any]) -> str:
    """mixed when text and images, image when images only, text otherwise."""
    has_text = bool(content and content.strip())
    if images and has_text:
        return "mixed"
    if images:
        return "image"
    return "text"


def _image_field(image: Any, *names: str) -> Any:
    for name in names:
        value = image.get(name) if isinstance(image, dict) else getattr(image, name, None)
        if value is not None:
            return value
    return None


class ChatSessionService:
    """
    Chat and message persistence.

    Every chat created here is scoped to the configured organisation.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings

    # ===========================
    # Chats
    # ===========================

    def create_or_get_chat(
        self,
        user_id: str,
        chat_id: Optional[str] = None,
        project_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        mode: Optional[str] = None
    ) -> str:
        """
        Return the given chat id, or create a chat and return its id.

        Args:
            user_id: Creating user
            chat_id: Existing chat id (returned unchanged)
            project_id: Optional project scope
            agent_id: Agent the chat talks to
            mode: Chat mode, "normal" when omitted

        Returns:
            Chat id

        Raises:
            ChatCreationError: If the insert fails
        """
        if chat_id:
            return chat_id

        chat = Chat(
            org_id=self.settings.org_id,
            project_id=project_id,
            agent_id=agent_id,
            title=None,
            mode=mode or DEFAULT_CHAT_MODE,
            created_by=user_id,
        )

        try:
            self.db.add(chat)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Chat creation failed for user {user_id}: {e}", exc_info=True)
            raise ChatCreationError(e)

        logger.info(
            f"Chat created: {chat.id}",
            extra={"chat_id": chat.id, "user_id": user_id, "agent_id": agent_id}
        )
        return chat.id

    def get_chat(self, chat_id: str, user_id: Optional[str] = None) -> Chat:
        """
        Fetch a chat in this organisation.

        Raises:
            NotFoundError: Chat does not exist in the organisation
            PermissionDeniedError: user_id given and the chat belongs to someone else
        """
        chat = (
            self.db.query(Chat)
            .filter(Chat.id == chat_id, Chat.org_id == self.settings.org_id)
            .first()
        )
        if chat is None:
            raise NotFoundError("Chat not found")

        if user_id is not None and chat.created_by != user_id:
            raise PermissionDeniedError("Forbidden")

        return chat

    def list_chats(self, user_id: str, project_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List a user's chats, most recently updated first.

        Untitled chats are shown as "New Chat"; the stored title stays NULL.
        """
        counts = (
            self.db.query(Message.chat_id, func.count(Message.id).label("message_count"))
            .group_by(Message.chat_id)
            .subquery()
        )

        query = (
            self.db.query(Chat, func.coalesce(counts.c.message_count, 0))
            .outerjoin(counts, counts.c.chat_id == Chat.id)
            .filter(Chat.org_id == self.settings.org_id, Chat.created_by == user_id)
        )
        if project_id:
            query = query.filter(Chat.project_id == project_id)

        rows = query.order_by(Chat.updated_at.desc()).all()

        return [
            {
                "id": chat.id,
                "title": chat.title or DISPLAY_UNTITLED,
                "agent_id": chat.agent_id,
                "project_id": chat.project_id,
                "mode": chat.mode,
                "message_count": int(message_count),
                "created_at": chat.created_at,
                "updated_at": chat.updated_at,
            }
            for chat, message_count in rows
        ]

    def delete_chat(self, chat_id: str, user_id: str) -> None:
        """Delete a chat and its messages."""
        chat = self.get_chat(chat_id, user_id)
        try:
            self.db.delete(chat)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(e)
        logger.info(f"Chat deleted: {chat_id}", extra={"chat_id": chat_id, "user_id": user_id})

    def _touch(self, chat_id: str) -> None:
        self.db.query(Chat).filter(Chat.id == chat_id).update(
            {Chat.updated_at: datetime.utcnow()},
            synchronize_session=False
        )

    # ===========================
    # Messages
    # ===========================

    def save_user_message(
        self,
        chat_id: str,
        content_markdown: str,
        has_images: bool = False,
        image_urls: Optional[List[str]] = None
    ) -> Message:
        """
        Persist a user message.

        Raises:
            MessageSaveError: If the insert fails
        """
        attachments = None
        if has_images:
            attachments = [
                {"type": "image", "url": url, "alt": "User uploaded image"}
                for url in (image_urls or [])
            ]

        message = Message(
            chat_id=chat_id,
            role="user",
            content_md=content_markdown,
            model="user",
            message_type="mixed" if has_images else "text",
            attachments=attachments,
        )

        try:
            self.db.add(message)
            self._touch(chat_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"User message save failed for chat {chat_id}: {e}", exc_info=True)
            raise MessageSaveError(e, role="user")

        metrics_collector.record_message("user", message.message_type)
        logger.debug(f"User message {message.id} saved to chat {chat_id}")
        return message

    def save_assistant_message(
        self,
        chat_id: str,
        content: str,
        model: Optional[str],
        images: Optional[List[Any]] = None,
        tool_calls: Optional[List[Dict[str, Any]]] = None,
        stop_reason: Optional[str] = None
    ) -> Message:
        """
        Persist an assistant message.

        Args:
            chat_id: Target chat
            content: Markdown text (may be empty for image-only answers)
            model: Model that produced the answer
            images: Generated images (objects or dicts with url, storage path, format)
            tool_calls: Executed tool calls, stored verbatim
            stop_reason: Why the turn ended

        Raises:
            MessageSaveError: If the insert fails
        """
        images = images or []

        message = Message(
            chat_id=chat_id,
            role="assistant",
            content_md=content or "",
            model=model,
            message_type=derive_assistant_message_type(content, images),
            stop_reason=stop_reason,
        )

        if tool_calls:
            message.tool_calls = tool_calls

        if images:
            message.attachments = [
                {
                    "type": "image",
                    "url": _image_field(image, "url"),
                    "storagePath": _image_field(image, "storage_path", "storagePath"),
                    "format": _image_field(image, "format"),
                }
                for image in images
            ]

        try:
            self.db.add(message)
            self._touch(chat_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Assistant message save failed for chat {chat_id}: {e}", exc_info=True)
            raise MessageSaveError(e, role="assistant")

        metrics_collector.record_message("assistant", message.message_type)
        logger.debug(f"Assistant message {message.id} saved to chat {chat_id}")
        return message

    def save_error_message(self, chat_id: str, error_message: str, model: Optional[str] = None) -> Message:
        """Record a failed turn in place as a message with role ``error``."""
        message = Message(
            chat_id=chat_id,
            role="error",
            content_md=error_message,
            model=model,
            message_type="text",
            stop_reason="error",
        )

        try:
            self.db.add(message)
            self._touch(chat_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise MessageSaveError(e, role="assistant")

        metrics_collector.record_message("error", "text")
        return message

    def get_chat_messages(self, chat_id: str, limit: Optional[int] = None) -> List[Message]:
        """Messages of a chat, oldest first."""
        query = (
            self.db.query(Message)
            .filter(Message.chat_id == chat_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def count_messages(self, chat_id: str) -> int:
        return self.db.query(func.count(Message.id)).filter(Message.chat_id == chat_id).scalar() or 0

    def delete_latest_message(self, chat_id: str, user_id: str) -> Dict[str, Any]:
        """
        Remove the newest message of a chat.

        The chat itself is deleted once it has no messages left.

        Returns:
            {"removedMessageId": id or None, "chatDeleted": bool}
        """
        chat = self.get_chat(chat_id, user_id)

        latest = (
            self.db.query(Message)
            .filter(Message.chat_id == chat_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .first()
        )

        try:
            if latest is None:
                self.db.delete(chat)
                self.db.commit()
                return {"removedMessageId": None, "chatDeleted": True}

            removed_id = latest.id
            self.db.delete(latest)
            self.db.flush()

            chat_deleted = False
            if self.count_messages(chat_id) == 0:
                self.db.delete(chat)
                chat_deleted = True

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete latest message of chat {chat_id}: {e}", exc_info=True)
            raise StorageError(e)

        logger.info(
            f"Removed message {removed_id} from chat {chat_id} (chat deleted: {chat_deleted})",
            extra={"chat_id": chat_id, "user_id": user_id}
        )
        return {"removedMessageId": removed_id, "chatDeleted": chat_deleted}

    # ===========================
    # Chat attributes
    # ===========================

    def needs_title(self, chat: Chat) -> bool:
        """A chat needs a title when it has none and holds at least two messages."""
        return chat.title is None and self.count_messages(chat.id) >= 2

    def set_title(self, chat: Chat, title: str) -> None:
        try:
            chat.title = title
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(e)

    def get_thread_id(self, chat_id: str) -> Optional[str]:
        chat = self.db.query(Chat).filter(Chat.id == chat_id).first()
        return chat.openai_thread_id if chat is not None else None

    def set_thread_id(self, chat_id: str, thread_id: str) -> None:
        """Remember the assistant thread so later turns reuse it."""
        try:
            updated = (
                self.db.query(Chat)
                .filter(Chat.id == chat_id)
                .update({Chat.openai_thread_id: thread_id}, synchronize_session="fetch")
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(e)

        if not updated:
            raise NotFoundError("Chat not found")
        logger.info(f"Assistant thread {thread_id} stored for chat {chat_id}")

    def update_llm_override(
        self,
        chat_id: str,
        user_id: str,
        llm_override: Optional[Dict[str, Any]]
    ) -> Chat:
        """Set or clear the per-chat model override."""
        chat = self.get_chat(chat_id, user_id)
        try:
            chat.llm_override = llm_override or None
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(e)
        return chat

    # ===========================
    # Feedback
    # ===========================

    def record_feedback(
        self,
        message_id: int,
        user_id: str,
        feedback_type: str,
        feedback_details: Optional[str] = None,
        predefined_feedback: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Store a like/dislike against a message.

        Raises:
            ValidationError: Unknown feedback type
            NotFoundError: Message does not exist in this organisation
        """
        if feedback_type not in FEEDBACK_TYPES:
            raise ValidationError(
                f"feedbackType must be one of {', '.join(FEEDBACK_TYPES)}",
                field="feedbackType"
            )

        message = (
            self.db.query(Message)
            .join(Chat, Chat.id == Message.chat_id)
            .filter(Message.id == message_id, Chat.org_id == self.settings.org_id)
            .first()
        )
        if message is None:
            raise NotFoundError("Message not found")

        feedback = MessageFeedback(
            message_id=message_id,
            user_id=user_id,
            feedback_type=feedback_type,
            feedback_details=feedback_details or None,
            predefined_feedback=predefined_feedback or None,
        )

        try:
            self.db.add(feedback)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(e)

        logger.info(
            f"Feedback '{feedback_type}' recorded for message {message_id}",
            extra={"user_id": user_id}
        )
        return {
            "id": feedback.id,
            "messageId": message_id,
            "feedbackType": feedback_type,
            "feedbackDetails": feedback.feedback_details,
            "predefinedFeedback": feedback.predefined_feedback,
        }
