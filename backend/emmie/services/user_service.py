"""
User lookup for authenticated requests.
"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import StorageError
from ..models.user import User

logger = logging.getLogger(__name__)


def get_or_create_user(
    db: Session,
    user_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None
) -> User:
    """
    Return the user row, creating it on first sight.

    Raises:
        StorageError: If the insert fails for a reason other than a concurrent insert
    """
    user = db.query(User).filter(User.id == user_id).first()
    if user is not None:
        return user

    user = User(id=user_id, email=email, name=name)
    try:
        db.add(user)
        db.commit()
    except IntegrityError:
        # Created by a concurrent request
        db.rollback()
        return db.query(User).filter(User.id == user_id).one()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"User creation failed: {e}", exc_info=True)
        raise StorageError(e)

    logger.info(f"User created: {user_id}")
    return user


__all__ = ['get_or_create_user']
