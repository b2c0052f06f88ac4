"""
User model.
"""
from sqlalchemy import Column, DateTime, String
from datetime import datetime

from ..database import Base


class User(Base):
    """
    Application user, created on first authenticated request.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    name = Column(String(255), nullable=True)
    department = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"
