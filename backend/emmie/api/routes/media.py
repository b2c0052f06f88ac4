"""
Signed media download route.
"""
from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import FileResponse
import logging

from ...errors import ValidationError
from ...media.uploader import LocalMediaStorage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{path:path}")
async def get_media(
    path: str,
    expires: str = Query(...),
    signature: str = Query(...)
):
    """
    Serve a stored file when its signed URL is valid and unexpired.
    """
    storage = LocalMediaStorage.from_settings()

    if not storage.verify_signature(path, expires, signature):
        logger.warning(f"Rejected media request for {path}")
        raise HTTPException(status_code=403, detail="Invalid or expired signature")

    try:
        file_path = storage.resolve_path(path)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid media path")

    if not file_path.is_file():
        raise HTTPException(status_code=404, detail="Media not found")

    return FileResponse(file_path)
