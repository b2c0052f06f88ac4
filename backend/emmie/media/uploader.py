"""
Generated image storage.

Image bytes produced by the image generation tool are written to media
storage and exposed through a time-limited signed URL, so the assistant's
markdown can embed them directly.

Version: 1.0.0
"""
import base64
import binascii
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union
from urllib.parse import quote, urlencode

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from ..config import Settings, settings as default_settings
from ..errors import StorageError, UpstreamProviderError, ValidationError

logger = logging.getLogger(__name__)

IMAGE_FOLDER = "generated-images"
IMAGE_ALT_TEXT = "Generated image"

_FORMATS_BY_MIME = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/webp": "webp",
}

_EXTENSIONS = {
    "png": "png",
    "jpeg": "jpg",
    "webp": "webp",
}

_CONTENT_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}


@dataclass
class GeneratedImage:
    """Stored image reference handed back to the chat turn."""
    url: str
    storage_path: str
    format: str
    markdown: str

    def to_dict(self):
        return {
            "url": self.url,
            "storagePath": self.storage_path,
            "format": self.format,
            "markdown": self.markdown,
        }


def image_format_from_mime(mime_type: Optional[str]) -> str:
    """png, jpeg or webp; anything unrecognised is treated as png."""
    if not mime_type:
        return "png"
    return _FORMATS_BY_MIME.get(mime_type.split(";")[0].strip().lower(), "png")


def image_markdown(url: str) -> str:
    return f"![{IMAGE_ALT_TEXT}]({url})"


def _strip_data_prefix(value: str) -> str:
    if value.startswith("data:") and "," in value:
        return value.split(",", 1)[1]
    return value


def extract_base64_image(result: Any) -> Optional[str]:
    """
    Pull base64 image data out of an image generation result.

    The provider has returned the payload as a bare string, a list of
    strings, or a dict carrying ``b64_json``, ``image_base64``, ``result``
    or ``data[0].b64_json``.

    Returns:
        Base64 string without any ``data:`` prefix, or None
    """
    if result is None:
        return None

    if isinstance(result, str):
        value = _strip_data_prefix(result.strip())
        return value or None

    if isinstance(result, (list, tuple)):
        for item in result:
            found = extract_base64_image(item)
            if found:
                return found
        return None

    if isinstance(result, dict):
        for key in ("b64_json", "image_base64", "result"):
            if result.get(key):
                return extract_base64_image(result[key])
        data = result.get("data")
        if data:
            return extract_base64_image(data)
        return None

    # SDK objects expose the same fields as attributes
    for attr in ("b64_json", "result"):
        value = getattr(result, attr, None)
        if value:
            return extract_base64_image(value)

    return None


def decode_image(image: Union[str, bytes]) -> bytes:
    """
    Image bytes from raw bytes or a (possibly data-URL) base64 string.

    Raises:
        UpstreamProviderError: The payload is not valid base64
    """
    if isinstance(image, (bytes, bytearray)):
        return bytes(image)

    try:
        return base64.b64decode(_strip_data_prefix(image.strip()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise UpstreamProviderError(f"Image payload is not valid base64: {e}")


# ===========================
# Storage backends
# ===========================

class MediaStorage:
    """Object storage used for generated media."""

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    def signed_url(self, path: str, expires_in: int) -> str:
        raise NotImplementedError


class LocalMediaStorage(MediaStorage):
    """
    Filesystem-backed media storage.

    Files live under ``root``; URLs point at ``base_url`` and carry an
    ``expires`` timestamp and an HMAC-SHA256 ``signature`` over path and
    expiry, checked by ``verify_signature`` before a file is served.
    """

    def __init__(
        self,
        root: Union[str, Path],
        base_url: str,
        signing_key: Union[str, bytes],
        clock: Callable[[], float] = time.time
    ):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.signing_key = signing_key.encode("utf-8") if isinstance(signing_key, str) else signing_key
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "LocalMediaStorage":
        settings = settings or default_settings
        return cls(
            root=settings.media_root,
            base_url=settings.media_base_url,
            signing_key=settings.media_signing_key.get_secret_value()
        )

    def resolve_path(self, path: str) -> Path:
        """
        Absolute file path for a storage path.

        Raises:
            ValidationError: The path escapes the storage root
        """
        root = self.root.resolve()
        target = (root / path).resolve()
        if target != root and root not in target.parents:
            raise ValidationError("Invalid media path", field="path")
        return target

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        target = self.resolve_path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.error(f"Media upload failed for {path}: {e}", exc_info=True)
            raise StorageError(e)

        logger.debug(f"Stored {len(data)} bytes at {path} ({content_type})")

    def _sign(self, path: str, expires: int) -> hmac.HMAC:
        mac = hmac.HMAC(self.signing_key, hashes.SHA256())
        mac.update(f"{path}:{expires}".encode("utf-8"))
        return mac

    def signed_url(self, path: str, expires_in: int) -> str:
        expires = int(self.clock()) + int(expires_in)
        signature = self._sign(path, expires).finalize().hex()
        query = urlencode({"expires": expires, "signature": signature})
        return f"{self.base_url}/{quote(path)}?{query}"

    def verify_signature(self, path: str, expires: Union[int, str], signature: str) -> bool:
        """True when the signature matches and has not expired."""
        try:
            expires = int(expires)
            expected = bytes.fromhex(signature)
        except (TypeError, ValueError):
            return False

        if expires < int(self.clock()):
            return False

        try:
            self._sign(path, expires).verify(expected)
        except InvalidSignature:
            return False
        return True


# ===========================
# Uploader
# ===========================

class MediaUploader:
    """Stores generated images and returns embeddable references."""

    def __init__(self, storage: Optional[MediaStorage] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.storage = storage or LocalMediaStorage.from_settings(self.settings)

    def save(self, image: Union[str, bytes], mime_type: Optional[str] = "image/png") -> GeneratedImage:
        """
        Store one generated image.

        Args:
            image: Raw bytes or base64 data (a ``data:`` URL is accepted)
            mime_type: Provider-reported type, png when unknown

        Returns:
            GeneratedImage with a URL signed for the configured TTL

        Raises:
            UpstreamProviderError: Payload is empty or not base64
            StorageError: Upload or signing failed
        """
        data = decode_image(image)
        if not data:
            raise UpstreamProviderError("Image payload is empty")

        image_format = image_format_from_mime(mime_type)
        storage_path = f"{IMAGE_FOLDER}/ai-{uuid.uuid4()}.{_EXTENSIONS[image_format]}"

        self.storage.upload(storage_path, data, _CONTENT_TYPES[image_format])

        try:
            url = self.storage.signed_url(storage_path, self.settings.signed_url_ttl_seconds)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Signing failed for {storage_path}: {e}", exc_info=True)
            raise StorageError(e)

        logger.info(f"✓ Generated image stored: {storage_path}")
        return GeneratedImage(
            url=url,
            storage_path=storage_path,
            format=image_format,
            markdown=image_markdown(url),
        )


__all__ = [
    'GeneratedImage',
    'MediaStorage',
    'LocalMediaStorage',
    'MediaUploader',
    'extract_base64_image',
    'image_format_from_mime',
    'image_markdown',
    'decode_image',
]
