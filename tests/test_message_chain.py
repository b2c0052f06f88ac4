"""
Tests for message chain construction and mutation.
"""
import pytest
from datetime import datetime, timedelta, timezone

from emmie.chat.message_chain import (
    ROOT_PARENT_ID,
    ChatMessage,
    build_latest_message_chain,
    get_cited_documents_from_message,
    get_human_and_ai_message_from_message_number,
    get_last_successful_message_id,
    insert_message,
    message_chain_from_rows,
    process_raw_chat_history,
    remove_message,
    update_parent_children,
)

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


def _row(message_id, role, content, minutes):
    return {
        "id": message_id,
        "role": role,
        "content_md": content,
        "created_at": BASE_TIME + timedelta(minutes=minutes),
    }


# ===========================
# Chain Building Tests
# ===========================

@pytest.mark.unit
def test_empty_history_builds_empty_chain():
    assert process_raw_chat_history([]) == {}
    assert build_latest_message_chain({}) == []


@pytest.mark.unit
def test_rows_are_sorted_and_linked_linearly():
    rows = [
        _row(3, "user", "And a scanner?", 2),
        _row(1, "user", "Printer is offline", 0),
        _row(2, "assistant", "Restart the spooler", 1),
    ]

    message_map = process_raw_chat_history(rows)

    assert list(message_map) == [1, 2, 3]
    assert message_map[1].parent_message_id == ROOT_PARENT_ID
    assert message_map[2].parent_message_id == 1
    assert message_map[3].parent_message_id == 2
    assert message_map[1].children_message_ids == [2]
    assert message_map[1].latest_child_message_id == 2
    assert message_map[3].latest_child_message_id is None


@pytest.mark.unit
def test_chain_follows_latest_children_from_root():
    rows = [_row(i, "user" if i % 2 else "assistant", f"m{i}", i) for i in range(1, 5)]

    chain = message_chain_from_rows(rows)

    assert [m.message_id for m in chain] == [1, 2, 3, 4]
    assert chain[0].content == "m1"


@pytest.mark.unit
def test_system_messages_are_skipped_but_walked_through():
    rows = [
        _row(1, "system", "You are helpful", 0),
        _row(2, "user", "Hi", 1),
        _row(3, "assistant", "Hello", 2),
    ]

    chain = message_chain_from_rows(rows)

    assert [m.role for m in chain] == ["user", "assistant"]


@pytest.mark.unit
def test_timestamps_accept_iso_strings_and_epochs():
    rows = [
        {"messageId": 1, "role": "user", "content": "first", "timestamp": "2024-05-01T12:00:00Z"},
        {"messageId": 2, "role": "assistant", "content": "second", "timestamp": 1714564860},
    ]

    chain = message_chain_from_rows(rows)

    assert [m.content for m in chain] == ["first", "second"]
    assert chain[0].timestamp.tzinfo is not None


@pytest.mark.unit
def test_missing_timestamps_sort_first():
    rows = [
        _row(2, "assistant", "later", 5),
        {"id": 1, "role": "user", "content_md": "undated"},
    ]

    chain = message_chain_from_rows(rows)

    assert [m.content for m in chain] == ["undated", "later"]


@pytest.mark.unit
def test_rows_without_integer_ids_are_numbered_by_position():
    rows = [
        {"id": "a", "role": "user", "content_md": "one", "created_at": BASE_TIME},
        {"id": "b", "role": "assistant", "content_md": "two", "created_at": BASE_TIME + timedelta(seconds=1)},
    ]

    message_map = process_raw_chat_history(rows)

    assert list(message_map) == [1, 2]
    assert message_map[1].db_id == "a"


@pytest.mark.unit
def test_mixed_ids_never_collide():
    rows = [
        {"id": "draft", "role": "user", "content_md": "one", "created_at": BASE_TIME},
        {"id": 1, "role": "assistant", "content_md": "two", "created_at": BASE_TIME + timedelta(seconds=1)},
        {"id": 7, "role": "user", "content_md": "three", "created_at": BASE_TIME + timedelta(seconds=2)},
    ]

    message_map = process_raw_chat_history(rows)

    assert list(message_map) == [1, 2, 3]
    assert [m.content for m in message_map.values()] == ["one", "two", "three"]
    assert [m.db_id for m in message_map.values()] == ["draft", 1, 7]
    assert message_map[3].parent_message_id == 2


@pytest.mark.unit
def test_orm_style_rows_are_read_by_attribute():
    class Row:
        def __init__(self, id, role, content_md, created_at):
            self.id = id
            self.role = role
            self.content_md = content_md
            self.created_at = created_at
            self.attachments = [{"type": "image", "url": "/media/x.png"}]
            self.tool_calls = None
            self.stop_reason = "complete"
            self.model = "gpt-5-mini"
            self.message_type = "mixed"

    chain = message_chain_from_rows([Row(7, "assistant", "Here it is", BASE_TIME)])

    assert chain[0].message_id == 7
    assert chain[0].attachments[0]["url"] == "/media/x.png"
    assert chain[0].to_dict()["stopReason"] == "complete"


@pytest.mark.unit
def test_chat_message_to_dict_uses_camel_case():
    message = ChatMessage(message_id=1, role="user", content="Hi", timestamp=BASE_TIME, parent_message_id=ROOT_PARENT_ID)

    data = message.to_dict()

    assert data["messageId"] == 1
    assert data["parentMessageId"] == ROOT_PARENT_ID
    assert data["timestamp"] == BASE_TIME.isoformat()
    assert data["childrenMessageIds"] == []


# ===========================
# Mutation Tests
# ===========================

@pytest.mark.unit
def test_update_parent_children_is_idempotent():
    message_map = process_raw_chat_history([_row(1, "user", "Q", 0), _row(2, "assistant", "A", 1)])

    update_parent_children(message_map[2], message_map)
    update_parent_children(message_map[2], message_map)

    assert message_map[1].children_message_ids == [2]


@pytest.mark.unit
def test_update_parent_children_ignores_missing_parent():
    message_map = {}
    orphan = ChatMessage(message_id=5, role="assistant", parent_message_id=4)

    update_parent_children(orphan, message_map)

    assert message_map == {}


@pytest.mark.unit
def test_inserted_regeneration_becomes_active_branch():
    message_map = process_raw_chat_history([_row(1, "user", "Q", 0), _row(2, "assistant", "A", 1)])

    insert_message(ChatMessage(message_id=3, role="assistant", content="A2", parent_message_id=1), message_map)

    assert message_map[1].children_message_ids == [2, 3]
    assert [m.content for m in build_latest_message_chain(message_map)] == ["Q", "A2"]


@pytest.mark.unit
def test_removing_latest_child_falls_back_to_previous_sibling():
    message_map = process_raw_chat_history([_row(1, "user", "Q", 0), _row(2, "assistant", "A", 1)])
    insert_message(ChatMessage(message_id=3, role="assistant", content="A2", parent_message_id=1), message_map)

    remove_message(3, message_map)

    assert message_map[1].children_message_ids == [2]
    assert message_map[1].latest_child_message_id == 2

    remove_message(2, message_map)

    assert message_map[1].children_message_ids == []
    assert message_map[1].latest_child_message_id is None


@pytest.mark.unit
def test_remove_unknown_message_is_a_no_op():
    message_map = process_raw_chat_history([_row(1, "user", "Q", 0)])

    remove_message(42, message_map)

    assert list(message_map) == [1]


# ===========================
# Query Tests
# ===========================

@pytest.mark.unit
def test_human_and_ai_message_lookup():
    chain = message_chain_from_rows([_row(1, "user", "Q", 0), _row(2, "assistant", "A", 1)])

    human, ai = get_human_and_ai_message_from_message_number(chain, 2)
    assert human.content == "Q"
    assert ai.content == "A"

    assert get_human_and_ai_message_from_message_number(chain, 99) == (None, None)

    human, ai = get_human_and_ai_message_from_message_number(chain, 1)
    assert human is None
    assert ai.message_id == 1


@pytest.mark.unit
def test_last_successful_message_skips_errors():
    chain = message_chain_from_rows([
        _row(1, "user", "Q", 0),
        _row(2, "assistant", "A", 1),
        _row(3, "error", "Provider failed", 2),
    ])

    assert get_last_successful_message_id(chain) == 2
    assert get_last_successful_message_id([]) is None


@pytest.mark.unit
def test_cited_documents_resolve_in_order():
    message = ChatMessage(
        message_id=1,
        role="assistant",
        citations={"[1]": ["doc-a"], "[2]": ["doc-missing", "doc-b"]},
        documents=[{"document_id": "doc-a", "title": "VPN"}, {"document_id": "doc-b", "title": "Email"}],
    )

    cited = get_cited_documents_from_message(message)

    assert [(key, doc["title"]) for key, doc in cited] == [("[1]", "VPN"), ("[2]", "Email")]


@pytest.mark.unit
def test_cited_documents_none_without_matches():
    message = ChatMessage(
        message_id=1,
        role="assistant",
        citations={"[1]": ["doc-x"]},
        documents=[{"document_id": "doc-a"}],
    )

    assert get_cited_documents_from_message(message) is None
    assert get_cited_documents_from_message(ChatMessage(message_id=2, role="assistant")) is None
