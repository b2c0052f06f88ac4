"""
Chat title generation.

A chat is titled once it holds a user and an assistant message and its title
is still NULL. Generation is a cheap model call retried once on transient
provider failures; on final failure the title stays NULL so a later call can
try again.
"""
import logging
import re
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import Settings, settings as default_settings
from ..errors import EmmieError, UpstreamProviderError, ValidationError
from ..models.message import Message
from ..utils.telemetry import track_title_generation
from .chat_session import ChatSessionService
from .openai_client import TRANSIENT_OPENAI_ERRORS, get_openai_client

logger = logging.getLogger(__name__)

TITLE_INSTRUCTION = "You are a title generator. Return a short, descriptive chat title (max 6 words)."
MAX_TITLE_WORDS = 6
MAX_TRANSCRIPT_CHARS = 500

_PREFIX_RE = re.compile(r'^\s*(chat\s+)?title\s*:\s*', re.IGNORECASE)


def clean_title(raw: Optional[str]) -> Optional[str]:
    """
    Normalise model output into a stored title.

    Returns:
        Title of at most six words, or None when nothing usable remains
    """
    if not raw:
        return None

    title = raw.strip().splitlines()[0] if raw.strip() else ""
    title = _PREFIX_RE.sub("", title)
    title = title.strip().strip('"\'`*#').strip()
    title = title.rstrip(".!?;:,").strip()

    words = title.split()
    if not words:
        return None

    return " ".join(words[:MAX_TITLE_WORDS])[:255]


def condense_transcript(messages: List[Message]) -> List[dict]:
    """Provider input items for the title call, each turn truncated."""
    items = [{"role": "system", "content": TITLE_INSTRUCTION}]
    for message in messages:
        role = message.role if message.role in ("user", "assistant") else "assistant"
        items.append({"role": role, "content": (message.content_md or "")[:MAX_TRANSCRIPT_CHARS]})
    return items


class TitleGenerator:
    """Generates and stores chat titles."""

    def __init__(
        self,
        db: Session,
        client: Optional[Any] = None,
        settings: Optional[Settings] = None,
        retry_wait: float = 0.5
    ):
        self.db = db
        self.settings = settings or default_settings
        self.sessions = ChatSessionService(db, self.settings)
        self._client = client
        self.retry_wait = retry_wait

    @property
    def client(self):
        if self._client is None:
            self._client = get_openai_client(self.settings)
        return self._client

    async def generate_title(self, chat_id: str, user_id: str) -> str:
        """
        Generate a title for a chat owned by ``user_id``.

        Returns:
            The stored title (unchanged if the chat already had one)

        Raises:
            NotFoundError: Chat not in this organisation
            PermissionDeniedError: Chat belongs to another user
            ValidationError: Fewer than two messages
            UpstreamProviderError: Provider failed twice or returned nothing
        """
        chat = self.sessions.get_chat(chat_id, user_id)

        if chat.title and chat.title.strip():
            return chat.title

        messages = self.sessions.get_chat_messages(chat_id, limit=self.settings.title_max_messages)
        if len(messages) < 2:
            raise ValidationError("Not enough messages to generate title")

        try:
            raw_title = await self._request_title(messages)
        except TRANSIENT_OPENAI_ERRORS as e:
            track_title_generation("error")
            logger.error(f"Title generation failed for chat {chat_id}: {e}", extra={"chat_id": chat_id})
            raise UpstreamProviderError("Failed to generate title")
        except EmmieError:
            raise
        except Exception as e:
            track_title_generation("error")
            logger.error(f"Title generation error for chat {chat_id}: {e}", exc_info=True)
            raise UpstreamProviderError("Failed to generate title")

        title = clean_title(raw_title)
        if title is None:
            track_title_generation("empty")
            logger.warning(f"Title model returned no usable title for chat {chat_id}")
            raise UpstreamProviderError("Failed to generate title")

        self.sessions.set_title(chat, title)
        track_title_generation("success")
        logger.info(f"✓ Title generated for chat {chat_id}: {title!r}", extra={"chat_id": chat_id})
        return title

    async def maybe_generate_title(self, chat_id: str, user_id: str) -> Optional[str]:
        """
        Title a chat if it needs one, swallowing failures.

        Used at the end of a chat turn, where a failed title must never fail
        the turn.
        """
        try:
            chat = self.sessions.get_chat(chat_id, user_id)
            if not self.sessions.needs_title(chat):
                return chat.title
            return await self.generate_title(chat_id, user_id)
        except EmmieError as e:
            logger.warning(f"Title not generated for chat {chat_id}: {e.message}")
            return None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Title not generated for chat {chat_id}: {e}", extra={"chat_id": chat_id})
            return None

    async def _request_title(self, messages: List[Message]) -> str:
        """Call the provider, retrying once on transient failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(2),
            wait=wait_exponential(multiplier=self.retry_wait, max=4),
            retry=retry_if_exception_type(TRANSIENT_OPENAI_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        ):
            with attempt:
                response = await self.client.responses.create(
                    model=self.settings.title_model,
                    input=condense_transcript(messages)
                )
                return getattr(response, "output_text", "") or ""
        return ""
