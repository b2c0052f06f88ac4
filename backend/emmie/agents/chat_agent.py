"""
Chat turn orchestration.

A turn is prepared first (chat, agent, route and the saved user message) so
that request errors surface as plain JSON responses. Only then is the
provider streamed, with every outcome, including a client disconnect or an
upstream failure, persisted on the chat.

Version: 1.0.0
"""
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Union

import openai
from sqlalchemy.orm import Session

from ..chat.prompting import build_responses_input, compose_system_prompt
from ..config import Settings, settings as default_settings
from ..errors import EmmieError
from ..media.uploader import MediaUploader
from ..models.agent import ChatAgent as AgentRecord
from ..models.schemas import ChatTurnRequest, StopReason
from ..models.user import User
from ..services.agent_admin import AgentAdminService
from ..services.chat_session import ChatSessionService
from ..services.openai_client import get_openai_client
from ..services.title_generator import TitleGenerator
from ..services.tool_admin import ToolAdminService
from ..tools.base_tool import ToolContext
from ..tools.executor import ToolExecutor
from ..tools.registry import FunctionToolRegistry, get_function_tool_registry
from ..utils.telemetry import track_turn_duration
from .routing import RouteDecision, resolve_route
from .runners import AssistantRunner, ResponsesStreamRunner, StreamStepResult

logger = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Union[bool, Awaitable[bool]]]


@dataclass
class TurnContext:
    """Everything resolved before the provider is called."""
    chat_id: str
    chat_created: bool
    user: User
    agent: Optional[AgentRecord]
    route: RouteDecision
    user_content: str
    provider_message: str
    image_urls: List[str] = field(default_factory=list)
    instructions: str = ""
    input_items: List[Dict[str, Any]] = field(default_factory=list)
    user_message_id: Optional[int] = None
    started_at: float = field(default_factory=time.time)

    @property
    def model_label(self) -> str:
        """Model recorded on the assistant message."""
        if self.route.is_assistant:
            return f"assistant:{self.route.assistant_id}"
        return self.route.model or ""


class ChatAgent:
    """
    Serves chat turns for one request.

    Args:
        db: Request database session
        client: AsyncOpenAI client, the shared one when None
        settings: Application settings
        uploader: Generated image uploader
        registry: Function tool registry
    """

    def __init__(
        self,
        db: Session,
        client: Optional[Any] = None,
        settings: Optional[Settings] = None,
        uploader: Optional[MediaUploader] = None,
        registry: Optional[FunctionToolRegistry] = None
    ):
        self.db = db
        self.settings = settings or default_settings
        self._client = client
        self.uploader = uploader or MediaUploader(settings=self.settings)
        self.registry = registry or get_function_tool_registry()

        self.sessions = ChatSessionService(db, self.settings)
        self.agents = AgentAdminService(db, self.settings)
        self.tool_admin = ToolAdminService(db, self.settings)

    @property
    def client(self):
        if self._client is None:
            self._client = get_openai_client(self.settings)
        return self._client

    # ===========================
    # Turn preparation
    # ===========================

    def _function_tools(self, agent: Optional[AgentRecord]) -> List[Any]:
        """Enabled function definitions plus registry tools the agent allows by name."""
        if agent is None:
            return []

        tools: List[Any] = [
            tool for tool in self.tool_admin.get_enabled_tools_for_agent(agent.id)
            if tool.tool_type == "function"
        ]
        for name in agent.allowed_tools or []:
            tool = self.registry.get(name)
            if tool is not None:
                tools.append(tool)
        return tools

    def prepare_turn(self, request: ChatTurnRequest, user: User) -> TurnContext:
        """
        Resolve chat, agent and route, then persist the user message.

        Raises:
            NotFoundError: Unknown chat, or the agent is missing or inactive
            PermissionDeniedError: The chat belongs to another user
            ConfigurationError: The agent cannot be routed
            ValidationError: Strict effort policy rejected the tool set
            StorageError: Chat or user message could not be saved
        """
        user_content = request.user_content
        image_urls = list(request.image_urls or [])
        has_images = bool(image_urls)

        chat = None
        if request.chat_id:
            chat = self.sessions.get_chat(request.chat_id, user.id)

        agent_id = request.agent_id or (chat.agent_id if chat is not None else None)
        agent = self.agents.get_agent(agent_id, active_only=True) if agent_id else None

        route = resolve_route(
            agent,
            user_content,
            has_images=has_images,
            function_tools=self._function_tools(agent),
            llm_override=chat.llm_override if chat is not None else None,
            mode=request.mode,
            settings=self.settings,
        )

        chat_created = chat is None
        if chat is None:
            chat_id = self.sessions.create_or_get_chat(
                user_id=user.id,
                project_id=request.project_id,
                agent_id=agent_id,
                mode=request.mode,
            )
        else:
            chat_id = chat.id

        user_message = self.sessions.save_user_message(
            chat_id,
            user_content,
            has_images=has_images,
            image_urls=image_urls,
        )

        # Document text goes to the provider only; the stored message stays as typed
        provider_message = user_content
        if request.document_context:
            provider_message = f"{user_content}\n\n{request.document_context}"

        history = [
            {"role": message.role, "content": message.text}
            for message in request.messages[:-1]
        ]

        turn = TurnContext(
            chat_id=chat_id,
            chat_created=chat_created,
            user=user,
            agent=agent,
            route=route,
            user_content=user_content,
            provider_message=provider_message,
            image_urls=image_urls,
            instructions=compose_system_prompt(agent, user, request.mode),
            input_items=build_responses_input(history, provider_message, image_urls),
            user_message_id=user_message.id,
        )

        logger.info(
            f"Chat turn prepared for chat {chat_id}",
            extra={"chat_id": chat_id, "user_id": user.id, "route": route.to_dict()}
        )
        return turn

    # ===========================
    # Streaming
    # ===========================

    def _tool_context(self, turn: TurnContext) -> ToolContext:
        return ToolContext(
            org_id=self.settings.org_id,
            agent_id=turn.agent.id if turn.agent is not None else None,
            chat_id=turn.chat_id,
            user_id=turn.user.id,
            user_name=turn.user.name,
            user_email=turn.user.email,
            user_department=turn.user.department,
            db=self.db,
        )

    async def _run_responses(
        self,
        turn: TurnContext,
        output: StreamStepResult
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """Responses API steps, feeding function results back until none are requested."""
        executor = ToolExecutor(self._tool_context(turn), self.registry)
        runner = ResponsesStreamRunner(
            client=self.client,
            model=turn.route.model,
            instructions=turn.instructions,
            tools=turn.route.tools,
            reasoning_effort=turn.route.reasoning_effort,
            temperature=turn.route.temperature,
            uploader=self.uploader,
            executor=executor,
        )

        input_items: List[Dict[str, Any]] = turn.input_items
        previous_response_id = None
        rounds = 0

        while True:
            output.tool_calls = []
            async for event in runner.stream_step(input_items, output, previous_response_id):
                yield event

            if not output.tool_calls or output.incomplete_reason:
                return

            if rounds >= self.settings.max_tool_rounds:
                logger.warning(
                    f"Tool round limit reached for chat {turn.chat_id}",
                    extra={"chat_id": turn.chat_id, "pending": [call.name for call in output.tool_calls]}
                )
                return
            rounds += 1

            input_items = []
            for call in output.tool_calls:
                executed = await executor.execute(call)
                output.executed_calls.append(executed)
                input_items.append(executed.to_function_output())
                yield executed.to_event()

            previous_response_id = output.response_id

    def _run_assistant(
        self,
        turn: TurnContext,
        output: StreamStepResult
    ) -> AsyncGenerator[Dict[str, Any], None]:
        runner = AssistantRunner(
            client=self.client,
            assistant_id=turn.route.assistant_id,
            sessions=self.sessions,
            executor=ToolExecutor(self._tool_context(turn), self.registry),
            max_tool_rounds=self.settings.max_tool_rounds,
        )
        return runner.stream(turn.chat_id, turn.provider_message, output, turn.image_urls)

    @staticmethod
    async def _is_disconnected(check: Optional[DisconnectCheck]) -> bool:
        if check is None:
            return False
        result = check()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    def _persist_partial(self, turn: TurnContext, output: StreamStepResult, stop_reason: str):
        """Save whatever was produced; nothing is saved for an empty answer."""
        if not output.text.strip() and not output.images:
            return None
        try:
            return self.sessions.save_assistant_message(
                turn.chat_id,
                output.text,
                turn.model_label,
                images=output.images,
                tool_calls=[call.to_dict() for call in output.executed_calls] or None,
                stop_reason=stop_reason,
            )
        except EmmieError as e:
            logger.error(f"Partial response not saved for chat {turn.chat_id}: {e.message}")
            return None

    async def stream_turn(
        self,
        turn: TurnContext,
        is_disconnected: Optional[DisconnectCheck] = None
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """
        Stream a prepared turn as event dicts.

        Events: ``start``, ``chat_created``, ``delta``, ``partial_image``,
        ``image``, ``function_result``, then ``done`` or ``error``.

        Args:
            turn: Result of ``prepare_turn``
            is_disconnected: Returns True once the client has gone away
        """
        output = StreamStepResult()
        stop_reason = StopReason.COMPLETE.value
        mode = turn.route.mode.value

        yield {
            "type": "start",
            "chat_id": turn.chat_id,
            "mode": mode,
            "model": turn.model_label,
            "user_message_id": turn.user_message_id,
        }
        if turn.chat_created:
            yield {"type": "chat_created", "chat_id": turn.chat_id}

        if turn.route.is_assistant:
            events = self._run_assistant(turn, output)
        else:
            events = self._run_responses(turn, output)

        try:
            async for event in events:
                yield event
                if await self._is_disconnected(is_disconnected):
                    stop_reason = StopReason.CANCELLED.value
                    logger.info(f"Client disconnected from chat {turn.chat_id}")
                    break
        except (asyncio.CancelledError, GeneratorExit):
            self._persist_partial(turn, output, StopReason.CANCELLED.value)
            track_turn_duration(time.time() - turn.started_at, mode, StopReason.CANCELLED.value)
            raise
        except (EmmieError, openai.OpenAIError) as e:
            message = e.message if isinstance(e, EmmieError) else str(e)
            error_event = {"type": "error", "error": message or "Failed to generate response", "chat_id": turn.chat_id}
            if isinstance(e, EmmieError):
                error_event["code"] = e.error_code.value
            logger.error(
                f"Upstream failure in chat {turn.chat_id}: {message}",
                extra={"chat_id": turn.chat_id, "model": turn.model_label}
            )
            self._persist_partial(turn, output, StopReason.ERROR.value)
            try:
                self.sessions.save_error_message(turn.chat_id, message, turn.model_label)
            except EmmieError as save_error:
                logger.error(f"Error message not saved for chat {turn.chat_id}: {save_error.message}")
            track_turn_duration(time.time() - turn.started_at, mode, StopReason.ERROR.value)
            yield error_event
            return
        finally:
            await events.aclose()

        if stop_reason == StopReason.CANCELLED.value:
            self._persist_partial(turn, output, stop_reason)
            track_turn_duration(time.time() - turn.started_at, mode, stop_reason)
            return

        if output.incomplete_reason:
            stop_reason = StopReason.CONTEXT_LENGTH.value

        try:
            message = self.sessions.save_assistant_message(
                turn.chat_id,
                output.text,
                turn.model_label,
                images=output.images,
                tool_calls=[call.to_dict() for call in output.executed_calls] or None,
                stop_reason=stop_reason,
            )
        except EmmieError as e:
            track_turn_duration(time.time() - turn.started_at, mode, StopReason.ERROR.value)
            yield {"type": "error", "error": e.message, "chat_id": turn.chat_id}
            return

        titles = TitleGenerator(self.db, client=self._client, settings=self.settings)
        title = await titles.maybe_generate_title(turn.chat_id, turn.user.id)

        duration = time.time() - turn.started_at
        track_turn_duration(duration, mode, stop_reason)
        logger.info(
            f"✓ Chat turn complete for chat {turn.chat_id} in {duration:.2f}s",
            extra={
                "chat_id": turn.chat_id,
                "stop_reason": stop_reason,
                "tool_calls": len(output.executed_calls),
                "images": len(output.images),
            }
        )

        yield {
            "type": "done",
            "done": True,
            "chat_id": turn.chat_id,
            "message_id": message.id,
            "response_id": output.response_id,
            "stop_reason": stop_reason,
            "model": turn.model_label,
            "images": [image.to_dict() for image in output.images],
            "title": title,
        }


__all__ = ['ChatAgent', 'TurnContext']
