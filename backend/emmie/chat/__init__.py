"""
Chat message model helpers: chain building and prompt composition.
"""

from .message_chain import (
    ROOT_PARENT_ID,
    ChatMessage,
    process_raw_chat_history,
    build_latest_message_chain,
    message_chain_from_rows,
    update_parent_children,
    insert_message,
    remove_message,
    get_human_and_ai_message_from_message_number,
    get_last_successful_message_id,
    get_cited_documents_from_message,
)
from .prompting import compose_system_prompt, build_responses_input

__all__ = [
    'ROOT_PARENT_ID',
    'ChatMessage',
    'process_raw_chat_history',
    'build_latest_message_chain',
    'message_chain_from_rows',
    'update_parent_children',
    'insert_message',
    'remove_message',
    'get_human_and_ai_message_from_message_number',
    'get_last_successful_message_id',
    'get_cited_documents_from_message',
    'compose_system_prompt',
    'build_responses_input',
]
