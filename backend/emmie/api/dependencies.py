"""
Shared route dependencies.
"""
import logging
from typing import NoReturn, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..errors import EmmieError
from ..models.user import User
from ..services.user_service import get_or_create_user

logger = logging.getLogger(__name__)


def get_current_user_id(request: Request) -> str:
    """
    Authenticated user id from the identity header set by the auth proxy.

    Raises:
        HTTPException: 401 when the header is missing
    """
    user_id = (request.headers.get(settings.user_id_header) or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


def get_current_user(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> User:
    """Current user row, created on first sight."""
    email: Optional[str] = request.headers.get("X-User-Email")
    name: Optional[str] = request.headers.get("X-User-Name")
    try:
        return get_or_create_user(db, user_id, email=email, name=name)
    except EmmieError as e:
        raise_http_error(e)


def require_admin(user: User = Depends(get_current_user)) -> User:
    """
    Current user, when allowed on the admin API.

    Raises:
        HTTPException: 403 when an admin allowlist is configured and excludes the user
    """
    if settings.admin_user_ids and user.id not in settings.admin_user_ids:
        logger.warning(f"Admin access denied for user {user.id}")
        raise HTTPException(status_code=403, detail="Administrator access required")
    return user


def raise_http_error(error: EmmieError) -> NoReturn:
    """Re-raise a domain error as the HTTP error carrying its status."""
    if error.status_code >= 500:
        logger.error(f"{type(error).__name__}: {error.message}")
    else:
        logger.info(f"{type(error).__name__}: {error.message}")
    raise HTTPException(status_code=error.status_code, detail=error.to_dict())


__all__ = ['get_current_user_id', 'get_current_user', 'require_admin', 'raise_http_error']
