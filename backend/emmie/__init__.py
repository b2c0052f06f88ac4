"""
Emmie chat application backend.
"""

__version__ = "1.0.0"
__author__ = "Emmie Platform Team"

# Application metadata
APP_NAME = "Emmie"
APP_DESCRIPTION = "Internal chat with configurable AI agents, tools and persisted conversations"

from .config import settings, get_settings

__all__ = [
    "settings",
    "get_settings",
    "APP_NAME",
    "APP_DESCRIPTION",
    "__version__",
]
