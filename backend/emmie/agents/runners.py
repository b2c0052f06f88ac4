"""
Provider stream runners.

``ResponsesStreamRunner`` consumes one Responses API stream per step and
``AssistantRunner`` drives an Assistants API thread run. Both turn provider
events into the event dicts streamed to the client and collect what the
turn needs to persist.

Version: 1.0.0
"""
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import openai

from ..errors import ConfigurationError, EmmieError, UpstreamProviderError
from ..media.uploader import GeneratedImage, MediaUploader, extract_base64_image
from ..tools.executor import (
    ExecutedToolCall,
    StreamedToolCall,
    ToolExecutor,
    is_function_call_item,
)
from ..utils.payloads import get_field, get_path

logger = logging.getLogger(__name__)


@dataclass
class StreamStepResult:
    """What one provider stream produced."""
    text: str = ""
    response_id: Optional[str] = None
    tool_calls: List[StreamedToolCall] = field(default_factory=list)
    executed_calls: List[ExecutedToolCall] = field(default_factory=list)
    images: List[GeneratedImage] = field(default_factory=list)
    incomplete_reason: Optional[str] = None


def _image_event(image: GeneratedImage) -> Dict[str, Any]:
    return {
        "type": "image",
        "url": image.url,
        "storagePath": image.storage_path,
        "format": image.format,
    }


def _failure_message(payload: Any, default: str) -> str:
    return (
        get_path(payload, "error", "message")
        or get_path(payload, "last_error", "message")
        or get_field(payload, "message")
        or default
    )


# ===========================
# Responses API
# ===========================

class ResponsesStreamRunner:
    """
    Streams one Responses API call at a time.

    Function calls are only collected here; the caller executes them and
    starts the next step with ``previous_response_id``.
    """

    def __init__(
        self,
        client: Any,
        model: str,
        instructions: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        reasoning_effort: Optional[str] = None,
        temperature: Optional[float] = None,
        uploader: Optional[MediaUploader] = None,
        executor: Optional[ToolExecutor] = None
    ):
        self.client = client
        self.model = model
        self.instructions = instructions
        self.tools = tools or []
        self.reasoning_effort = reasoning_effort
        self.temperature = temperature
        self.uploader = uploader or MediaUploader()
        self.executor = executor

    def build_request(
        self,
        input_items: Union[str, List[Dict[str, Any]]],
        previous_response_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Keyword arguments for ``client.responses.create``."""
        request: Dict[str, Any] = {
            "model": self.model,
            "input": input_items,
            "stream": True,
            "store": True,
        }

        if self.instructions:
            request["instructions"] = self.instructions

        # Reasoning cannot be combined with the image generation tool
        includes_image_generation = any(tool.get("type") == "image_generation" for tool in self.tools)
        if self.reasoning_effort and not includes_image_generation:
            request["reasoning"] = {"effort": self.reasoning_effort}

        if self.tools:
            request["tools"] = self.tools

        if self.temperature is not None:
            request["temperature"] = self.temperature

        if previous_response_id:
            request["previous_response_id"] = previous_response_id

        return request

    def _store_image(self, b64_data: Any, mime_type: Optional[str], step: StreamStepResult) -> Dict[str, Any]:
        """Save one image into the step; failures become an error event."""
        try:
            stored = self.uploader.save(b64_data, mime_type or "image/png")
        except EmmieError as e:
            logger.error(f"Image storage error: {e.message}")
            return {"type": "error", "error": e.message or "Failed to store generated image"}

        step.images.append(stored)
        step.text += f"\n\n{stored.markdown}\n"
        return _image_event(stored)

    async def stream_step(
        self,
        input_items: Union[str, List[Dict[str, Any]]],
        step: StreamStepResult,
        previous_response_id: Optional[str] = None
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Run one streamed call, filling ``step`` and yielding client events.

        Raises:
            UpstreamProviderError: The provider reported a failed response
        """
        step.response_id = previous_response_id
        stream = await self.client.responses.create(**self.build_request(input_items, previous_response_id))

        image_chunks: Dict[int, str] = {}

        async for event in stream:
            kind = get_field(event, "type")

            if kind == "response.created":
                step.response_id = get_path(event, "response", "id", default=step.response_id)
                yield {"type": "response_created", "id": step.response_id}

            elif kind == "response.output_text.delta":
                delta = get_field(event, "delta")
                if delta:
                    step.text += delta
                    yield {"type": "delta", "delta": delta, "content": delta}

            elif kind in ("response.image_generation_call.partial_image", "image_generation.partial_image"):
                b64_data = get_field(event, "partial_image_b64") or get_field(event, "b64_json")
                if b64_data:
                    yield {
                        "type": "partial_image",
                        "b64_json": b64_data,
                        "partial_image_index": get_field(event, "partial_image_index", 0),
                    }

            elif kind == "image_generation.completed":
                b64_data = get_field(event, "b64_json")
                if b64_data:
                    mime_type = f"image/{get_field(event, 'output_format', 'png')}"
                    yield self._store_image(b64_data, mime_type, step)

            elif kind == "response.output_image.delta":
                index = get_field(event, "index", 0)
                image_chunks[index] = image_chunks.get(index, "") + (get_field(event, "delta") or "")
                yield {
                    "type": "partial_image",
                    "b64_json": get_field(event, "delta"),
                    "partial_image_index": index,
                }

            elif kind == "response.output_image.completed":
                b64_data = image_chunks.pop(get_field(event, "index", 0), None)
                if b64_data:
                    mime_type = get_path(event, "media", "mime_type", default="image/png")
                    yield self._store_image(b64_data, mime_type, step)

            elif kind == "response.output_item.added":
                item = get_field(event, "item")
                if is_function_call_item(item) and self.executor is not None:
                    self.executor.start(item)

            elif kind in ("response.function_call_arguments.delta", "response.tool_call.delta"):
                if self.executor is not None:
                    self.executor.delta(event)

            elif kind == "response.output_item.done":
                item = get_field(event, "item")
                item_type = get_field(item, "type")

                if is_function_call_item(item) and self.executor is not None:
                    step.tool_calls.append(self.executor.finish(item))

                elif item_type == "image_generation_call":
                    b64_data = extract_base64_image(get_field(item, "result"))
                    if b64_data:
                        mime_type = get_path(item, "media", 0, "mime_type")
                        if mime_type is None and get_field(item, "output_format"):
                            mime_type = f"image/{get_field(item, 'output_format')}"
                        yield self._store_image(b64_data, mime_type, step)

            elif kind == "response.completed":
                step.response_id = get_path(event, "response", "id", default=step.response_id)

            elif kind == "response.incomplete":
                step.response_id = get_path(event, "response", "id", default=step.response_id)
                step.incomplete_reason = get_path(
                    event, "response", "incomplete_details", "reason", default="incomplete"
                )
                logger.warning(f"Response incomplete: {step.incomplete_reason}")

            elif kind == "response.failed":
                raise UpstreamProviderError(
                    _failure_message(get_field(event, "response"), "Response failed")
                )

            elif kind == "error":
                raise UpstreamProviderError(_failure_message(event, "Response stream error"))

            else:
                logger.debug(f"Unhandled stream event: {kind}")


# ===========================
# Assistants API
# ===========================

class AssistantRunner:
    """
    Runs a hosted assistant on the chat's thread.

    The thread is created on the chat's first assistant turn and its id
    stored on the chat, so later turns continue the same thread.
    """

    def __init__(
        self,
        client: Any,
        assistant_id: str,
        sessions: Any,
        executor: Optional[ToolExecutor] = None,
        max_tool_rounds: int = 5
    ):
        self.client = client
        self.assistant_id = assistant_id
        self.sessions = sessions
        self.executor = executor
        self.max_tool_rounds = max_tool_rounds

    async def ensure_thread(self, chat_id: str) -> str:
        thread_id = self.sessions.get_thread_id(chat_id)
        if thread_id:
            return thread_id

        thread = await self.client.beta.threads.create()
        self.sessions.set_thread_id(chat_id, thread.id)
        logger.info(f"✓ Assistant thread created for chat {chat_id}", extra={"chat_id": chat_id})
        return thread.id

    @staticmethod
    def build_message_content(user_content: str, image_urls: Optional[List[str]] = None):
        if not image_urls:
            return user_content
        content: List[Dict[str, Any]] = [{"type": "text", "text": user_content}]
        content.extend({"type": "image_url", "image_url": {"url": url}} for url in image_urls)
        return content

    async def stream(
        self,
        chat_id: str,
        user_content: str,
        step: StreamStepResult,
        image_urls: Optional[List[str]] = None
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Post the user message and stream the run, answering function calls.

        Raises:
            UpstreamProviderError: Run failed, was cancelled or expired
            ConfigurationError: The assistant id is unknown upstream
        """
        thread_id = await self.ensure_thread(chat_id)
        yield {"type": "thread", "thread_id": thread_id}

        await self.client.beta.threads.messages.create(
            thread_id=thread_id,
            role="user",
            content=self.build_message_content(user_content, image_urls)
        )

        try:
            stream = await self.client.beta.threads.runs.create(
                thread_id=thread_id,
                assistant_id=self.assistant_id,
                stream=True
            )
        except openai.NotFoundError as e:
            logger.error(f"Assistant {self.assistant_id} not found upstream: {e}")
            raise ConfigurationError(
                f"OpenAI assistant {self.assistant_id} not found",
                details={"assistant_id": self.assistant_id}
            )

        rounds = 0
        while stream is not None:
            run_id = None
            pending: List[StreamedToolCall] = []

            async for event in stream:
                kind = get_field(event, "event")
                data = get_field(event, "data")

                if kind == "thread.run.created":
                    step.response_id = get_field(data, "id")

                elif kind == "thread.message.delta":
                    for part in get_path(data, "delta", "content", default=[]):
                        text = get_path(part, "text", "value")
                        if text:
                            step.text += text
                            yield {"type": "delta", "delta": text, "content": text}

                elif kind == "thread.run.requires_action":
                    run_id = get_field(data, "id")
                    for tool_call in get_path(
                        data, "required_action", "submit_tool_outputs", "tool_calls", default=[]
                    ):
                        pending.append(StreamedToolCall(
                            id=get_field(tool_call, "id"),
                            call_id=get_field(tool_call, "id"),
                            name=get_path(tool_call, "function", "name", default=""),
                            arguments=get_path(tool_call, "function", "arguments", default=""),
                        ))

                elif kind == "thread.run.incomplete":
                    step.incomplete_reason = get_path(data, "incomplete_details", "reason", default="incomplete")

                elif kind in ("thread.run.failed", "thread.run.cancelled", "thread.run.expired"):
                    raise UpstreamProviderError(
                        _failure_message(data, f"Assistant run {kind.rsplit('.', 1)[-1]}")
                    )

                elif kind == "error":
                    raise UpstreamProviderError(_failure_message(data, "Assistant stream error"))

            stream = None
            if pending and run_id:
                if self.executor is None or rounds >= self.max_tool_rounds:
                    logger.warning(
                        f"Tool round limit reached on thread {thread_id}, cancelling run {run_id}",
                        extra={"chat_id": chat_id, "pending": [call.name for call in pending]}
                    )
                    await self.client.beta.threads.runs.cancel(thread_id=thread_id, run_id=run_id)
                    return
                rounds += 1

                outputs = []
                for call in pending:
                    executed = await self.executor.execute(call)
                    step.executed_calls.append(executed)
                    yield executed.to_event()
                    outputs.append({"tool_call_id": executed.call_id, "output": executed.result})

                stream = await self.client.beta.threads.runs.submit_tool_outputs(
                    thread_id=thread_id,
                    run_id=run_id,
                    tool_outputs=outputs,
                    stream=True
                )


__all__ = [
    'StreamStepResult',
    'ResponsesStreamRunner',
    'AssistantRunner',
]
