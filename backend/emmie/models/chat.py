"""
Chat model for storing conversations.
"""
from sqlalchemy import Column, DateTime, ForeignKey, JSON, String
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from ..database import Base


class Chat(Base):
    """
    One persisted conversation.

    The title stays NULL until the title generator fills it in.
    """
    __tablename__ = "chats"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), nullable=False, index=True)
    project_id = Column(String(36), nullable=True, index=True)
    agent_id = Column(String(36), ForeignKey("chat_agents.id", ondelete="SET NULL"), nullable=True)
    mode = Column(String(20), nullable=False, default="normal")
    created_by = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    title = Column(String(255), nullable=True)
    openai_thread_id = Column(String(100), nullable=True)  # Assistants API thread
    llm_override = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    messages = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.id"
    )

    def __repr__(self):
        return f"<Chat(id={self.id}, agent={self.agent_id}, title={self.title!r})>"
