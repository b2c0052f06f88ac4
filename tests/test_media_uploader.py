"""
Tests for generated image storage and signed media URLs.
"""
import base64
import pytest
from urllib.parse import parse_qs, urlparse

from emmie.errors import StorageError, UpstreamProviderError, ValidationError
from emmie.media.uploader import (
    LocalMediaStorage,
    MediaStorage,
    MediaUploader,
    decode_image,
    extract_base64_image,
    image_format_from_mime,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


def _query(url):
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


# ===========================
# Payload Tests
# ===========================

@pytest.mark.unit
@pytest.mark.parametrize("mime,expected", [
    ("image/png", "png"),
    ("image/jpeg", "jpeg"),
    ("image/jpg", "jpeg"),
    ("image/webp", "webp"),
    ("IMAGE/WEBP; charset=binary", "webp"),
    ("image/gif", "png"),
    (None, "png"),
])
def test_image_format_from_mime(mime, expected):
    assert image_format_from_mime(mime) == expected


@pytest.mark.unit
@pytest.mark.parametrize("payload", [
    PNG_B64,
    f"data:image/png;base64,{PNG_B64}",
    [None, PNG_B64],
    {"b64_json": PNG_B64},
    {"image_base64": PNG_B64},
    {"result": PNG_B64},
    {"data": [{"b64_json": PNG_B64}]},
])
def test_extract_base64_image_shapes(payload):
    assert extract_base64_image(payload) == PNG_B64


@pytest.mark.unit
def test_extract_base64_image_from_sdk_object():
    class Item:
        b64_json = None
        result = PNG_B64

    assert extract_base64_image(Item()) == PNG_B64


@pytest.mark.unit
@pytest.mark.parametrize("payload", [None, "", [], {}, {"data": []}])
def test_extract_base64_image_nothing(payload):
    assert extract_base64_image(payload) is None


@pytest.mark.unit
def test_decode_image():
    assert decode_image(PNG_B64) == PNG_BYTES
    assert decode_image(f"data:image/png;base64,{PNG_B64}") == PNG_BYTES
    assert decode_image(PNG_BYTES) == PNG_BYTES

    with pytest.raises(UpstreamProviderError):
        decode_image("not base64!!")


# ===========================
# Storage Tests
# ===========================

@pytest.mark.unit
def test_signed_url_verifies_until_expiry(media_storage):
    url = media_storage.signed_url("generated-images/a.png", 60)
    query = _query(url)

    assert url.startswith("/media/generated-images/a.png?")
    assert query["expires"] == str(1_700_000_060)
    assert media_storage.verify_signature("generated-images/a.png", query["expires"], query["signature"])
    assert not media_storage.verify_signature("generated-images/b.png", query["expires"], query["signature"])
    assert not media_storage.verify_signature("generated-images/a.png", query["expires"], "00" * 32)
    assert not media_storage.verify_signature("generated-images/a.png", query["expires"], "zz")

    later = LocalMediaStorage(media_storage.root, "/media", "test-signing-key", clock=lambda: 1_700_000_061)
    assert not later.verify_signature("generated-images/a.png", query["expires"], query["signature"])


@pytest.mark.unit
def test_signatures_depend_on_key(media_storage):
    query = _query(media_storage.signed_url("a.png", 60))
    other = LocalMediaStorage(media_storage.root, "/media", "another-key", clock=media_storage.clock)

    assert not other.verify_signature("a.png", query["expires"], query["signature"])


@pytest.mark.unit
def test_paths_cannot_escape_root(media_storage):
    with pytest.raises(ValidationError):
        media_storage.resolve_path("../secrets.txt")


# ===========================
# Uploader Tests
# ===========================

@pytest.mark.unit
def test_save_writes_file_and_returns_markdown(uploader, media_storage):
    image = uploader.save(PNG_B64, "image/png")

    assert image.storage_path.startswith("generated-images/ai-")
    assert image.storage_path.endswith(".png")
    assert image.format == "png"
    assert image.markdown == f"![Generated image]({image.url})"
    assert media_storage.resolve_path(image.storage_path).read_bytes() == PNG_BYTES
    assert image.to_dict()["storagePath"] == image.storage_path


@pytest.mark.unit
def test_jpeg_uses_jpg_extension(uploader):
    image = uploader.save(PNG_B64, "image/jpeg")

    assert image.format == "jpeg"
    assert image.storage_path.endswith(".jpg")


@pytest.mark.unit
def test_empty_payload_is_rejected(uploader):
    with pytest.raises(UpstreamProviderError):
        uploader.save("", "image/png")


@pytest.mark.unit
def test_signing_failure_is_a_storage_error(test_settings):
    class UnsignableStorage(MediaStorage):
        def upload(self, path, data, content_type):
            pass

        def signed_url(self, path, expires_in):
            raise RuntimeError("signer offline")

    uploader = MediaUploader(storage=UnsignableStorage(), settings=test_settings)

    with pytest.raises(StorageError) as exc_info:
        uploader.save(PNG_B64)

    assert "signer offline" in exc_info.value.message
