"""
Tests for markdown previews and prompt composition helpers.
"""
import pytest
from types import SimpleNamespace

from emmie.chat.prompting import (
    DEFAULT_SYSTEM_PROMPT,
    build_responses_input,
    compose_system_prompt,
    get_mode_instructions,
)
from emmie.utils.markdown import extract_summary, strip_markdown
from emmie.utils.payloads import get_field, get_path


# ===========================
# Markdown Tests
# ===========================

@pytest.mark.unit
@pytest.mark.parametrize("markdown,expected", [
    ("# Heading\nBody", "Heading\nBody"),
    ("Use **bold** and _italic_ text", "Use bold and italic text"),
    ("See [the docs](https://example.com)", "See the docs"),
    ("![Generated image](/media/a.png)", "Generated image"),
    ("Run `ipconfig` now", "Run ipconfig now"),
    ("- one\n- two", "one\ntwo"),
    ("1. first\n2. second", "first\nsecond"),
    ("> quoted", "quoted"),
    ("Before\n```python\nprint('x')\n```\nAfter", "Before\n\nAfter"),
    ("snake_case_name stays", "snake_case_name stays"),
    ("", ""),
])
def test_strip_markdown(markdown, expected):
    assert strip_markdown(markdown) == expected


@pytest.mark.unit
def test_short_summary_is_unchanged():
    assert extract_summary("**Restart** the router.") == "Restart the router."


@pytest.mark.unit
def test_summary_keeps_whole_sentences():
    text = "First sentence here. Second sentence is a bit longer. Third one never fits."

    assert extract_summary(text, max_length=55) == "First sentence here. Second sentence is a bit longer."


@pytest.mark.unit
def test_summary_cuts_single_long_sentence():
    summary = extract_summary("word " * 100, max_length=20)

    assert summary.endswith("...")
    assert len(summary) <= 23


# ===========================
# Payload Access Tests
# ===========================

@pytest.mark.unit
def test_get_field_reads_dicts_and_objects():
    assert get_field({"a": 1}, "a") == 1
    assert get_field(SimpleNamespace(a=2), "a") == 2
    assert get_field({"a": None}, "a", "fallback") == "fallback"
    assert get_field(None, "a", 3) == 3


@pytest.mark.unit
def test_get_path_indexes_sequences():
    event = {"item": {"media": [{"mime_type": "image/webp"}]}}

    assert get_path(event, "item", "media", 0, "mime_type") == "image/webp"
    assert get_path(event, "item", "media", 3, "mime_type", default="image/png") == "image/png"
    assert get_path(event, "missing", "x") is None


# ===========================
# Prompt Composition Tests
# ===========================

@pytest.mark.unit
def test_default_prompt_without_agent():
    prompt = compose_system_prompt()

    assert prompt.startswith(DEFAULT_SYSTEM_PROMPT)
    assert "# MODE: HYBRID" in prompt
    assert "# Guidelines" in prompt


@pytest.mark.unit
def test_agent_prompt_includes_persona_background_and_user():
    agent = SimpleNamespace(
        name="IT Support",
        department="IT",
        system_prompt="Help staff resolve IT problems.",
        background_instructions="The office uses Windows laptops.",
    )
    user = SimpleNamespace(name="Ada", email="ada@example.com", department=None)

    prompt = compose_system_prompt(agent, user, mode="tools", project_context="Laptop refresh")

    assert prompt.startswith("You are IT Support, an AI assistant specializing in IT. Help staff")
    assert "# MODE: TOOLS" in prompt
    assert "Background Context: The office uses Windows laptops." in prompt
    assert "User Information:\nName: Ada\nEmail: ada@example.com" in prompt
    assert "Department:" not in prompt
    assert "Project Context: Laptop refresh" in prompt


@pytest.mark.unit
def test_unknown_mode_falls_back_to_hybrid():
    assert get_mode_instructions("chaos") == get_mode_instructions("hybrid")
    assert "PROMPT-ONLY" in get_mode_instructions("prompt")


@pytest.mark.unit
def test_responses_input_attaches_images_to_new_message():
    history = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": ""},
        {"role": "tool", "content": "ignored"},
        {"role": "assistant", "content": "Hello"},
    ]

    items = build_responses_input(history, "What is this?", ["https://cdn.example.com/a.png"])

    assert items[:2] == [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}]
    assert items[2] == {
        "role": "user",
        "content": [
            {"type": "input_text", "text": "What is this?"},
            {"type": "input_image", "image_url": "https://cdn.example.com/a.png"},
        ],
    }


@pytest.mark.unit
def test_responses_input_plain_text():
    assert build_responses_input([], "Hello") == [{"role": "user", "content": "Hello"}]
