"""
System prompt composition and provider input building.
"""
from typing import Any, Dict, List, Optional

MODE_PROMPT = "prompt"
MODE_TOOLS = "tools"
MODE_HYBRID = "hybrid"

_MODE_INSTRUCTIONS = {
    MODE_PROMPT: (
        "\n\n# MODE: PROMPT-ONLY\n"
        "Do not call tools. Answer from your own knowledge and the context provided."
    ),
    MODE_TOOLS: (
        "\n\n# MODE: TOOLS\n"
        "Prefer tools for actions and data lookup. After a tool call, explain "
        "what the result means for the user."
    ),
    MODE_HYBRID: (
        "\n\n# MODE: HYBRID\n"
        "Answer general questions from your own knowledge and call tools when you "
        "need current data, need to act, or need to search documentation."
    ),
}

_GUIDELINES = (
    "\n\n# Guidelines\n"
    "- Give clear, step-by-step guidance for technical issues\n"
    "- Format answers with headings, lists and code blocks where they help\n"
    "- Refer to uploaded images and earlier turns when relevant\n"
    "- Warn about risky operations and suggest safer alternatives\n"
    "- Say briefly why you are calling a tool before you call it"
)

DEFAULT_SYSTEM_PROMPT = (
    "You are Emmie, the organisation's internal AI assistant. You help staff with "
    "IT support, technical guidance and general questions."
)


def get_mode_instructions(mode: Optional[str]) -> str:
    """Instructions appended for an agent mode; unknown modes get hybrid."""
    return _MODE_INSTRUCTIONS.get(mode or MODE_HYBRID, _MODE_INSTRUCTIONS[MODE_HYBRID])


def compose_system_prompt(
    agent: Optional[Any] = None,
    user: Optional[Any] = None,
    mode: Optional[str] = None,
    project_context: Optional[str] = None
) -> str:
    """
    Build the system instruction for a chat turn.

    Args:
        agent: ChatAgent (or any object with the same attributes), None for default
        user: User with optional name/email/department
        mode: prompt, tools or hybrid
        project_context: Extra context for project chats

    Returns:
        System prompt text
    """
    if agent is None:
        prompt = DEFAULT_SYSTEM_PROMPT
    else:
        prompt = agent.system_prompt or ""
        if agent.name:
            prompt = (
                f"You are {agent.name}, an AI assistant specializing in "
                f"{agent.department}. {prompt}"
            )

    prompt += get_mode_instructions(mode)

    background = getattr(agent, "background_instructions", None) if agent is not None else None
    if background:
        prompt += f"\n\nBackground Context: {background}"

    if user is not None:
        user_info = []
        for label, attr in (("Name", "name"), ("Email", "email"), ("Department", "department")):
            value = getattr(user, attr, None)
            if value:
                user_info.append(f"{label}: {value}")
        if user_info:
            prompt += "\n\nUser Information:\n" + "\n".join(user_info)

    if project_context:
        prompt += f"\n\nProject Context: {project_context}"

    return prompt + _GUIDELINES


def build_responses_input(
    conversation_history: List[Dict[str, str]],
    user_message: str,
    image_urls: Optional[List[str]] = None
) -> List[Dict[str, Any]]:
    """
    Build Responses API input items.

    Prior turns become plain role/content items; the new user message carries
    any attached images as input_image parts.
    """
    items: List[Dict[str, Any]] = [
        {"role": turn["role"], "content": turn["content"]}
        for turn in conversation_history
        if turn.get("content") and turn.get("role") in ("user", "assistant", "system")
    ]

    if image_urls:
        content: List[Dict[str, Any]] = [{"type": "input_text", "text": user_message}]
        content.extend({"type": "input_image", "image_url": url} for url in image_urls)
        items.append({"role": "user", "content": content})
    else:
        items.append({"role": "user", "content": user_message})

    return items
