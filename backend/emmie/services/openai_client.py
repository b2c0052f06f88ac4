"""
Shared OpenAI client factory.
"""
import logging
from typing import Optional

import httpx
import openai
from openai import AsyncOpenAI

from ..config import Settings, settings as default_settings
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

# Failures worth a second attempt
TRANSIENT_OPENAI_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)

_client: Optional[AsyncOpenAI] = None


def get_openai_client(settings: Optional[Settings] = None) -> AsyncOpenAI:
    """
    Get the process-wide async OpenAI client, creating it on first use.

    Raises:
        ConfigurationError: If no API key is configured
    """
    global _client

    if _client is not None:
        return _client

    settings = settings or default_settings
    api_key = settings.get_openai_api_key()
    if not api_key:
        raise ConfigurationError("OpenAI API key is not configured")

    _client = AsyncOpenAI(
        api_key=api_key,
        base_url=settings.openai_base_url,
        timeout=httpx.Timeout(settings.openai_timeout, connect=10.0),
        max_retries=0
    )
    logger.info("✓ OpenAI client created")
    return _client


async def close_openai_client() -> None:
    """Close the shared client at shutdown."""
    global _client

    if _client is not None:
        await _client.close()
        _client = None
        logger.info("✓ OpenAI client closed")
