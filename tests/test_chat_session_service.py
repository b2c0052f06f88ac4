"""
Tests for chat and message persistence.
"""
import pytest
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from emmie.errors import (
    ChatCreationError,
    MessageSaveError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from emmie.models import Chat, Message, MessageFeedback
from emmie.services.chat_session import ChatSessionService, derive_assistant_message_type
from emmie.media.uploader import GeneratedImage


@pytest.fixture
def sessions(db_session, test_settings):
    return ChatSessionService(db_session, test_settings)


@pytest.fixture
def chat_id(sessions, user, agent):
    return sessions.create_or_get_chat(user_id=user.id, agent_id=agent.id)


# ===========================
# Chat Tests
# ===========================

@pytest.mark.unit
def test_create_chat_scopes_to_organisation(sessions, db_session, user, agent, test_settings):
    chat_id = sessions.create_or_get_chat(user_id=user.id, agent_id=agent.id, project_id="proj-1")

    chat = db_session.query(Chat).filter(Chat.id == chat_id).one()
    assert chat.org_id == test_settings.org_id
    assert chat.title is None
    assert chat.mode == "normal"
    assert chat.created_by == user.id
    assert chat.project_id == "proj-1"


@pytest.mark.unit
def test_existing_chat_id_is_returned_unchanged(sessions, db_session):
    assert sessions.create_or_get_chat(user_id="anyone", chat_id="chat-123") == "chat-123"
    assert db_session.query(Chat).count() == 0


@pytest.mark.unit
def test_chat_creation_failure_raises_chat_creation_error(test_settings):
    db = MagicMock()
    db.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))

    with pytest.raises(ChatCreationError) as exc_info:
        ChatSessionService(db, test_settings).create_or_get_chat(user_id="user-1")

    assert exc_info.value.message.startswith("Chat creation failed:")
    assert exc_info.value.status_code == 500
    db.rollback.assert_called_once()


@pytest.mark.unit
def test_get_chat_checks_existence_and_owner(sessions, chat_id, other_user):
    assert sessions.get_chat(chat_id).id == chat_id

    with pytest.raises(NotFoundError):
        sessions.get_chat("missing")

    with pytest.raises(PermissionDeniedError):
        sessions.get_chat(chat_id, other_user.id)


@pytest.mark.unit
def test_list_chats_shows_untitled_as_new_chat(sessions, chat_id, user, other_user):
    sessions.save_user_message(chat_id, "Printer is offline")
    sessions.create_or_get_chat(user_id=other_user.id)

    chats = sessions.list_chats(user.id)

    assert len(chats) == 1
    assert chats[0]["id"] == chat_id
    assert chats[0]["title"] == "New Chat"
    assert chats[0]["message_count"] == 1
    assert sessions.get_chat(chat_id).title is None


@pytest.mark.unit
def test_list_chats_filters_by_project(sessions, user):
    sessions.create_or_get_chat(user_id=user.id, project_id="proj-1")
    sessions.create_or_get_chat(user_id=user.id)

    assert len(sessions.list_chats(user.id)) == 2
    assert len(sessions.list_chats(user.id, project_id="proj-1")) == 1


@pytest.mark.unit
def test_delete_chat_removes_messages(sessions, db_session, chat_id, user):
    sessions.save_user_message(chat_id, "Hello")

    sessions.delete_chat(chat_id, user.id)

    assert db_session.query(Chat).count() == 0
    assert db_session.query(Message).count() == 0


# ===========================
# Message Tests
# ===========================

@pytest.mark.unit
def test_save_user_message(sessions, chat_id):
    message = sessions.save_user_message(chat_id, "Printer is offline")

    assert message.id is not None
    assert message.role == "user"
    assert message.model == "user"
    assert message.message_type == "text"
    assert message.attachments is None


@pytest.mark.unit
def test_save_user_message_with_images(sessions, chat_id):
    message = sessions.save_user_message(
        chat_id,
        "What is this error?",
        has_images=True,
        image_urls=["https://cdn.example.com/a.png", "https://cdn.example.com/b.png"],
    )

    assert message.message_type == "mixed"
    assert message.attachments == [
        {"type": "image", "url": "https://cdn.example.com/a.png", "alt": "User uploaded image"},
        {"type": "image", "url": "https://cdn.example.com/b.png", "alt": "User uploaded image"},
    ]


@pytest.mark.unit
def test_save_user_message_failure(test_settings):
    db = MagicMock()
    db.commit.side_effect = OperationalError("INSERT", {}, Exception("locked"))

    with pytest.raises(MessageSaveError) as exc_info:
        ChatSessionService(db, test_settings).save_user_message("chat-1", "Hi")

    assert exc_info.value.message.startswith("User message save failed:")


@pytest.mark.unit
def test_save_assistant_message_with_images_and_tool_calls(sessions, chat_id):
    image = GeneratedImage(
        url="/media/generated-images/ai-1.png?expires=1&signature=ab",
        storage_path="generated-images/ai-1.png",
        format="png",
        markdown="![Generated image](/media/generated-images/ai-1.png)",
    )
    tool_calls = [{"id": "fc_1", "call_id": "call_1", "name": "get_system_info", "status": "completed"}]

    message = sessions.save_assistant_message(
        chat_id,
        "Here is the diagram",
        "gpt-5-mini",
        images=[image],
        tool_calls=tool_calls,
        stop_reason="complete",
    )

    assert message.message_type == "mixed"
    assert message.tool_calls == tool_calls
    assert message.attachments == [{
        "type": "image",
        "url": image.url,
        "storagePath": "generated-images/ai-1.png",
        "format": "png",
    }]
    assert message.stop_reason == "complete"


@pytest.mark.unit
def test_save_assistant_message_failure(test_settings):
    db = MagicMock()
    db.commit.side_effect = OperationalError("INSERT", {}, Exception("locked"))

    with pytest.raises(MessageSaveError) as exc_info:
        ChatSessionService(db, test_settings).save_assistant_message("chat-1", "Hi", "gpt-5")

    assert exc_info.value.message.startswith("Assistant message save failed:")


@pytest.mark.unit
@pytest.mark.parametrize("content,images,expected", [
    ("Some text", [], "text"),
    ("", [{"url": "u"}], "image"),
    ("   ", [{"url": "u"}], "image"),
    ("Caption", [{"url": "u"}], "mixed"),
    ("", [], "text"),
])
def test_assistant_message_type(content, images, expected):
    assert derive_assistant_message_type(content, images) == expected


@pytest.mark.unit
def test_error_message_is_recorded_in_place(sessions, chat_id):
    sessions.save_user_message(chat_id, "Hi")

    message = sessions.save_error_message(chat_id, "Provider unavailable", model="gpt-5")

    assert message.role == "error"
    assert message.stop_reason == "error"
    assert [m.role for m in sessions.get_chat_messages(chat_id)] == ["user", "error"]


@pytest.mark.unit
def test_get_chat_messages_oldest_first_with_limit(sessions, chat_id):
    for text in ("one", "two", "three"):
        sessions.save_user_message(chat_id, text)

    assert [m.content_md for m in sessions.get_chat_messages(chat_id)] == ["one", "two", "three"]
    assert [m.content_md for m in sessions.get_chat_messages(chat_id, limit=2)] == ["one", "two"]


@pytest.mark.unit
def test_delete_latest_message_keeps_chat_until_empty(sessions, db_session, chat_id, user):
    sessions.save_user_message(chat_id, "Q")
    answer = sessions.save_assistant_message(chat_id, "A", "gpt-5-mini")

    result = sessions.delete_latest_message(chat_id, user.id)
    assert result == {"removedMessageId": answer.id, "chatDeleted": False}

    result = sessions.delete_latest_message(chat_id, user.id)
    assert result["chatDeleted"] is True
    assert db_session.query(Chat).count() == 0


@pytest.mark.unit
def test_delete_latest_message_on_empty_chat_deletes_it(sessions, db_session, chat_id, user):
    result = sessions.delete_latest_message(chat_id, user.id)

    assert result == {"removedMessageId": None, "chatDeleted": True}
    assert db_session.query(Chat).count() == 0


@pytest.mark.unit
def test_delete_latest_message_requires_owner(sessions, chat_id, other_user):
    with pytest.raises(PermissionDeniedError):
        sessions.delete_latest_message(chat_id, other_user.id)


# ===========================
# Attribute Tests
# ===========================

@pytest.mark.unit
def test_needs_title_after_two_messages(sessions, chat_id):
    chat = sessions.get_chat(chat_id)
    assert sessions.needs_title(chat) is False

    sessions.save_user_message(chat_id, "Q")
    sessions.save_assistant_message(chat_id, "A", "gpt-5-mini")
    assert sessions.needs_title(chat) is True

    sessions.set_title(chat, "Printer Help")
    assert sessions.needs_title(chat) is False


@pytest.mark.unit
def test_thread_id_round_trip(sessions, chat_id):
    assert sessions.get_thread_id(chat_id) is None

    sessions.set_thread_id(chat_id, "thread_abc")

    assert sessions.get_thread_id(chat_id) == "thread_abc"


@pytest.mark.unit
def test_set_thread_id_unknown_chat(sessions):
    with pytest.raises(NotFoundError):
        sessions.set_thread_id("missing", "thread_abc")


@pytest.mark.unit
def test_llm_override_set_and_clear(sessions, chat_id, user):
    chat = sessions.update_llm_override(chat_id, user.id, {"model": "gpt-5", "temperature": 0.2})
    assert chat.llm_override == {"model": "gpt-5", "temperature": 0.2}

    chat = sessions.update_llm_override(chat_id, user.id, {})
    assert chat.llm_override is None


# ===========================
# Feedback Tests
# ===========================

@pytest.mark.unit
def test_record_feedback(sessions, db_session, chat_id, user):
    answer = sessions.save_assistant_message(chat_id, "A", "gpt-5-mini")

    feedback = sessions.record_feedback(answer.id, user.id, "dislike", feedback_details="Wrong policy")

    assert feedback["messageId"] == answer.id
    assert feedback["feedbackType"] == "dislike"
    assert db_session.query(MessageFeedback).count() == 1


@pytest.mark.unit
def test_record_feedback_validation(sessions, user):
    with pytest.raises(ValidationError) as exc_info:
        sessions.record_feedback(1, user.id, "love")
    assert exc_info.value.details["field"] == "feedbackType"

    with pytest.raises(NotFoundError):
        sessions.record_feedback(999, user.id, "like")
