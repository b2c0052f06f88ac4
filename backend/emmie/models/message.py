"""
Message models for storing conversation turns and user feedback.
"""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship
from datetime import datetime

from ..database import Base


class Message(Base):
    """
    Chat message model.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)

    role = Column(String(20), nullable=False)  # user, assistant, system, tool, error
    content_md = Column(Text, nullable=False, default="")
    model = Column(String(100), nullable=True)
    message_type = Column(String(20), nullable=False, default="text")  # text, image, mixed

    attachments = Column(JSON, default=list)
    tool_calls = Column(JSON, nullable=True)
    stop_reason = Column(String(30), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    chat = relationship("Chat", back_populates="messages")

    def to_dict(self):
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "role": self.role,
            "content_md": self.content_md,
            "model": self.model,
            "message_type": self.message_type,
            "attachments": self.attachments or [],
            "tool_calls": self.tool_calls,
            "stop_reason": self.stop_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Message(id={self.id}, chat={self.chat_id}, role={self.role})>"


class MessageFeedback(Base):
    """
    Like/dislike recorded against a message.
    """
    __tablename__ = "message_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)

    feedback_type = Column(String(10), nullable=False)  # like, dislike
    feedback_details = Column(Text, nullable=True)
    predefined_feedback = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<MessageFeedback(message={self.message_id}, type={self.feedback_type})>"
