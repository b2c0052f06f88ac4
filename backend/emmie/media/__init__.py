"""
Media storage for generated images.
"""
from .uploader import (
    GeneratedImage,
    LocalMediaStorage,
    MediaStorage,
    MediaUploader,
    extract_base64_image,
)

__all__ = [
    'GeneratedImage',
    'LocalMediaStorage',
    'MediaStorage',
    'MediaUploader',
    'extract_base64_image',
]
