"""
Message chain construction.

Persisted messages are stored flat. This module wires them into a map of
nodes that reference each other by id (parent, children, latest child) and
derives the single "latest" path that the client renders top to bottom.

The map is rebuilt for every request and is never shared between requests.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# Parent id of the first message in a chat
ROOT_PARENT_ID = -3

MessageMap = Dict[int, "ChatMessage"]


@dataclass
class ChatMessage:
    """
    One node of a chat's message tree.

    Attributes:
        message_id: Integer id, unique within the chat
        role: user, assistant, system, tool or error
        content: Message text (markdown)
        timestamp: Creation time
        parent_message_id: Parent id, ROOT_PARENT_ID or None for the root
        children_message_ids: Child ids in the order they were attached
        latest_child_message_id: Child on the active branch, or None
    """
    message_id: int
    role: str
    content: str = ""
    timestamp: Optional[datetime] = None
    parent_message_id: Optional[int] = None
    children_message_ids: List[int] = field(default_factory=list)
    latest_child_message_id: Optional[int] = None
    citations: Optional[Dict[str, Any]] = None
    documents: Optional[List[Dict[str, Any]]] = None
    files: Optional[List[Dict[str, Any]]] = None
    tool_call: Optional[Any] = None
    stop_reason: Optional[str] = None
    overridden_model: Optional[str] = None
    model: Optional[str] = None
    message_type: Optional[str] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    db_id: Optional[Any] = None

    @property
    def is_root(self) -> bool:
        return self.parent_message_id is None or self.parent_message_id == ROOT_PARENT_ID

    def to_dict(self) -> Dict[str, Any]:
        """Client representation (camelCase keys)."""
        return {
            "messageId": self.message_id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "parentMessageId": self.parent_message_id,
            "childrenMessageIds": list(self.children_message_ids),
            "latestChildMessageId": self.latest_child_message_id,
            "citations": self.citations,
            "documents": self.documents,
            "files": self.files,
            "toolCall": self.tool_call,
            "stopReason": self.stop_reason,
            "overriddenModel": self.overridden_model,
            "model": self.model,
            "messageType": self.message_type,
            "attachments": self.attachments,
        }


# ===========================
# Row normalisation
# ===========================

def _to_datetime(value: Any) -> Optional[datetime]:
    """Coerce a row timestamp (datetime, ISO string or epoch number) to a datetime."""
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return value

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)

    raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")


def _sort_key(value: Optional[datetime]) -> float:
    if value is None:
        return float("-inf")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _row_get(row: Any, key: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(key)
    return getattr(row, key, None)


def _first(row: Any, *keys: str) -> Any:
    """First non-empty value among the given keys."""
    for key in keys:
        value = _row_get(row, key)
        if value is not None and value != "":
            return value
    return None


def _row_timestamp(row: Any) -> Optional[datetime]:
    return _to_datetime(_first(row, "timestamp", "created_at"))


# ===========================
# Chain building
# ===========================

def process_raw_chat_history(rows: Iterable[Any]) -> MessageMap:
    """
    Build a wired message map from persisted rows.

    Rows are sorted by ``timestamp`` (falling back to ``created_at``) and
    linked as a single linear chain: each message's parent is the message
    before it, the first message's parent is ROOT_PARENT_ID. Every parent's
    latest child ends up as its most recently attached child. Messages keep
    their integer ids unless some row lacks one (or ids repeat), in which
    case all messages are numbered by position.

    Args:
        rows: Dicts or ORM objects with id/messageId, role, content/content_md
            and timestamp/created_at

    Returns:
        Map of message id to ChatMessage, in chronological order
    """
    indexed = [(row, _row_timestamp(row)) for row in rows]
    if not indexed:
        return {}

    indexed.sort(key=lambda pair: _sort_key(pair[1]))

    # Stored ids are kept only when every row has a distinct integer id
    raw_ids = [_first(row, "message_id", "messageId", "id") for row, _ in indexed]
    use_stored_ids = (
        all(isinstance(raw_id, int) and not isinstance(raw_id, bool) for raw_id in raw_ids)
        and len(set(raw_ids)) == len(raw_ids)
    )

    message_map: MessageMap = {}
    previous_id: Optional[int] = None

    for position, ((row, timestamp), raw_id) in enumerate(zip(indexed, raw_ids), start=1):
        message_id = raw_id if use_stored_ids else position

        message = ChatMessage(
            message_id=message_id,
            role=_first(row, "role") or "user",
            content=_first(row, "content", "content_md") or "",
            timestamp=timestamp,
            parent_message_id=ROOT_PARENT_ID if previous_id is None else previous_id,
            citations=_first(row, "citations"),
            documents=_first(row, "documents"),
            files=_first(row, "files"),
            tool_call=_first(row, "tool_call", "toolCall", "tool_calls"),
            stop_reason=_first(row, "stop_reason", "stopReason"),
            overridden_model=_first(row, "overridden_model", "overriddenModel"),
            model=_first(row, "model"),
            message_type=_first(row, "message_type"),
            attachments=list(_first(row, "attachments") or []),
            db_id=_first(row, "id"),
        )
        message_map[message_id] = message
        previous_id = message_id

    for message in message_map.values():
        if message.is_root:
            continue
        parent = message_map.get(message.parent_message_id)
        if parent is None:
            continue
        if message.message_id not in parent.children_message_ids:
            parent.children_message_ids.append(message.message_id)
        parent.latest_child_message_id = message.message_id

    return message_map


def build_latest_message_chain(message_map: MessageMap) -> List[ChatMessage]:
    """
    Follow latest-child pointers from the root.

    System messages are walked through but left out of the result.

    Args:
        message_map: Wired message map

    Returns:
        Active conversation path, oldest first
    """
    if not message_map:
        return []

    root = next((m for m in message_map.values() if m.is_root), None)
    if root is None:
        return []

    chain: List[ChatMessage] = []
    current: Optional[ChatMessage] = root

    while current is not None:
        if current.role != "system":
            chain.append(current)

        if current.latest_child_message_id is None:
            break
        current = message_map.get(current.latest_child_message_id)

    return chain


def message_chain_from_rows(rows: Iterable[Any]) -> List[ChatMessage]:
    """Rows straight to the rendered chain."""
    return build_latest_message_chain(process_raw_chat_history(rows))


# ===========================
# Mutation
# ===========================

def update_parent_children(
    message: ChatMessage,
    message_map: MessageMap,
    add_to_parent: bool = True
) -> None:
    """
    Attach a message to its parent and make it the parent's latest child.

    Calling this repeatedly for the same message never duplicates the child id.
    Nothing happens for root messages or when the parent is not in the map.
    """
    if message.is_root:
        return

    parent = message_map.get(message.parent_message_id)
    if parent is None:
        logger.debug(
            f"Parent {message.parent_message_id} of message {message.message_id} not in map"
        )
        return

    if not add_to_parent:
        return

    if message.message_id not in parent.children_message_ids:
        parent.children_message_ids.append(message.message_id)
    parent.latest_child_message_id = message.message_id


def insert_message(message: ChatMessage, message_map: MessageMap) -> None:
    """Add a new node (for example a regenerated answer) and wire it to its parent."""
    message_map[message.message_id] = message
    update_parent_children(message, message_map)


def remove_message(message_id: int, message_map: MessageMap) -> None:
    """
    Delete a message and repair its parent.

    If the removed message was the parent's latest child, the latest child
    becomes the last remaining child, or None when no children are left.
    """
    message = message_map.get(message_id)
    if message is None:
        return

    if not message.is_root:
        parent = message_map.get(message.parent_message_id)
        if parent is not None:
            parent.children_message_ids = [
                child_id for child_id in parent.children_message_ids
                if child_id != message_id
            ]
            if parent.latest_child_message_id == message_id:
                parent.latest_child_message_id = (
                    parent.children_message_ids[-1] if parent.children_message_ids else None
                )

    del message_map[message_id]


# ===========================
# Queries over a linear history
# ===========================

def get_human_and_ai_message_from_message_number(
    message_history: List[ChatMessage],
    message_number: int
) -> Tuple[Optional[ChatMessage], Optional[ChatMessage]]:
    """
    Find an assistant message and the message right before it.

    Returns:
        (human_message, ai_message); (None, None) if the id is not in the history
    """
    for index, message in enumerate(message_history):
        if message.message_id == message_number:
            human = message_history[index - 1] if index > 0 else None
            return human, message
    return None, None


def get_last_successful_message_id(messages: List[ChatMessage]) -> Optional[int]:
    """Id of the last message whose role is not ``error``."""
    for message in reversed(messages):
        if message.role != "error":
            return message.message_id
    return None


def get_cited_documents_from_message(
    message: ChatMessage
) -> Optional[List[Tuple[str, Dict[str, Any]]]]:
    """
    Resolve a message's citations against its attached documents.

    Citations map a citation key to a list of document ids; documents are
    matched on ``document_id``.

    Returns:
        Ordered (key, document) pairs, or None when nothing resolves
    """
    if not message.citations or not message.documents:
        return None

    cited: List[Tuple[str, Dict[str, Any]]] = []
    for key, doc_ids in message.citations.items():
        if not isinstance(doc_ids, list):
            continue
        for doc_id in doc_ids:
            document = next(
                (d for d in message.documents if d.get("document_id") == doc_id),
                None
            )
            if document is not None:
                cited.append((key, document))

    return cited or None
