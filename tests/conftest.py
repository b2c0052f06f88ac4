"""
Pytest configuration and shared fixtures for testing.
Provides the test database, seeded users and agents, media storage and a
scripted OpenAI client.
"""
import pytest
import os
import tempfile
from types import SimpleNamespace
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set testing environment before importing the app
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENVIRONMENT"] = "testing"
os.environ["ENABLE_TELEMETRY"] = "false"
os.environ["OPENAI_API_KEY"] = "sk-test"
os.environ["MEDIA_ROOT"] = tempfile.mkdtemp(prefix="emmie-media-")
os.environ["MEDIA_SIGNING_KEY"] = "test-signing-key"

from emmie.config import DEFAULT_ORG_ID, Settings
from emmie.database import Base
from emmie.media.uploader import LocalMediaStorage, MediaUploader
from emmie.models import ChatAgent, ToolDefinition, User
from emmie.tools.tool_call_wrapper import reset_all_circuit_breakers

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
ASSISTANT_ID = "asst_abc123XYZ"


# ===========================
# Settings Fixtures
# ===========================

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for one test, with media stored under tmp_path."""
    return Settings(
        environment="testing",
        database_url="sqlite:///:memory:",
        enable_telemetry=False,
        openai_api_key="sk-test",
        media_root=str(tmp_path / "media"),
        media_signing_key="test-signing-key",
        max_tool_rounds=3,
    )


# ===========================
# Database Fixtures
# ===========================

def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def test_db_engine():
    """
    Create in-memory SQLite engine for testing.
    Scope: function (every test starts from empty tables).
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False  # Set to True for SQL debugging
    )
    event.listen(engine, "connect", _enable_foreign_keys)

    import emmie.models  # noqa: F401
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(test_db_engine) -> Generator[Session, None, None]:
    """Session configured like the application's."""
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine,
        expire_on_commit=False
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db_session: Session) -> User:
    user = User(id=USER_ID, email="ada@example.com", name="Ada Lovelace", department="Engineering")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def other_user(db_session: Session) -> User:
    user = User(id=OTHER_USER_ID, email="grace@example.com", name="Grace Hopper")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def agent(db_session: Session) -> ChatAgent:
    """Emmie-mode agent with the common built-in tools allowed."""
    agent = ChatAgent(
        org_id=DEFAULT_ORG_ID,
        name="IT Support",
        department="IT",
        description="Helps with laptops, printers and accounts",
        system_prompt="Help staff resolve IT problems.",
        background_instructions="The office uses Windows laptops.",
        agent_mode="emmie",
        allowed_tools=["web_search_preview", "image_generation", "code_interpreter"],
    )
    db_session.add(agent)
    db_session.commit()
    return agent


@pytest.fixture
def assistant_agent(db_session: Session) -> ChatAgent:
    """Agent served by a hosted assistant."""
    agent = ChatAgent(
        org_id=DEFAULT_ORG_ID,
        name="HR Helper",
        department="HR",
        system_prompt="Answer HR policy questions.",
        agent_mode="openai_assistant",
        openai_assistant_id=ASSISTANT_ID,
    )
    db_session.add(agent)
    db_session.commit()
    return agent


@pytest.fixture
def function_tool(db_session: Session) -> ToolDefinition:
    tool = ToolDefinition(
        org_id=DEFAULT_ORG_ID,
        name="get_system_info",
        display_name="System Info",
        description="Session details for troubleshooting",
        category="system",
        tool_type="function",
        function_schema={
            "name": "get_system_info",
            "description": "Session details for troubleshooting",
            "parameters": {"type": "object", "properties": {"detailed": {"type": "boolean"}}},
        },
        is_system=True,
    )
    db_session.add(tool)
    db_session.commit()
    return tool


@pytest.fixture(autouse=True)
def reset_breakers():
    """Circuit breakers are process-wide; start every test closed."""
    reset_all_circuit_breakers()
    yield
    reset_all_circuit_breakers()


# ===========================
# Media Fixtures
# ===========================

@pytest.fixture
def media_storage(tmp_path) -> LocalMediaStorage:
    return LocalMediaStorage(tmp_path / "media", "/media", "test-signing-key", clock=lambda: 1_700_000_000)


@pytest.fixture
def uploader(media_storage: LocalMediaStorage, test_settings: Settings) -> MediaUploader:
    return MediaUploader(storage=media_storage, settings=test_settings)


# ===========================
# OpenAI Fakes
# ===========================

class FakeStream:
    """Async iterator over scripted stream events."""

    def __init__(self, events: List[Any]):
        self.events = events

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self.events:
            if isinstance(event, Exception):
                raise event
            yield event


class FakeResponses:
    """
    ``client.responses`` stand-in.

    Streaming calls consume ``streams`` in order; non-streaming calls are
    title requests and answer with ``title_text``.
    """

    def __init__(self, streams: Optional[List[Any]] = None, title_text: Any = "Printer Troubleshooting"):
        self.streams = list(streams or [])
        self.title_text = title_text
        self.calls: List[Dict[str, Any]] = []
        self.title_calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs):
        if kwargs.get("stream"):
            self.calls.append(kwargs)
            events = self.streams.pop(0)
            if isinstance(events, Exception):
                raise events
            return FakeStream(events)

        self.title_calls.append(kwargs)
        if isinstance(self.title_text, Exception):
            raise self.title_text
        return SimpleNamespace(output_text=self.title_text)


class FakeThreads:
    """``client.beta.threads`` stand-in for assistant runs."""

    def __init__(self, runs: Optional[List[List[Any]]] = None, thread_id: str = "thread_1"):
        self.thread_id = thread_id
        self.run_streams = list(runs or [])
        self.created = 0
        self.posted: List[Dict[str, Any]] = []
        self.submitted: List[Dict[str, Any]] = []
        self.cancelled: List[Dict[str, Any]] = []
        self.messages = SimpleNamespace(create=self._post_message)
        self.runs = SimpleNamespace(
            create=self._create_run,
            submit_tool_outputs=self._submit,
            cancel=self._cancel,
        )

    async def create(self):
        self.created += 1
        return SimpleNamespace(id=self.thread_id)

    async def _post_message(self, **kwargs):
        self.posted.append(kwargs)
        return SimpleNamespace(id="msg_1")

    async def _create_run(self, **kwargs):
        events = self.run_streams.pop(0)
        if isinstance(events, Exception):
            raise events
        return FakeStream(events)

    async def _submit(self, **kwargs):
        self.submitted.append(kwargs)
        return FakeStream(self.run_streams.pop(0))

    async def _cancel(self, **kwargs):
        self.cancelled.append(kwargs)
        return SimpleNamespace(id=kwargs.get("run_id"), status="cancelling")


class FakeOpenAIClient:
    def __init__(
        self,
        streams: Optional[List[Any]] = None,
        title_text: Any = "Printer Troubleshooting",
        runs: Optional[List[List[Any]]] = None
    ):
        self.responses = FakeResponses(streams, title_text)
        self.beta = SimpleNamespace(threads=FakeThreads(runs))


def text_stream(*deltas: str, response_id: str = "resp_1") -> List[Dict[str, Any]]:
    """Events of a plain streamed text answer."""
    events: List[Dict[str, Any]] = [{"type": "response.created", "response": {"id": response_id}}]
    events.extend({"type": "response.output_text.delta", "delta": delta} for delta in deltas)
    events.append({"type": "response.completed", "response": {"id": response_id}})
    return events


def function_call_stream(
    name: str,
    arguments: str,
    call_id: str = "call_1",
    response_id: str = "resp_1"
) -> List[Dict[str, Any]]:
    """Events of a step that ends in one function call, arguments split in two fragments."""
    middle = len(arguments) // 2
    item = {"type": "function_call", "id": "fc_1", "call_id": call_id, "name": name}
    return [
        {"type": "response.created", "response": {"id": response_id}},
        {"type": "response.output_item.added", "item": item},
        {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "delta": arguments[:middle]},
        {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "delta": arguments[middle:]},
        {"type": "response.output_item.done", "item": dict(item, arguments=arguments)},
        {"type": "response.completed", "response": {"id": response_id}},
    ]


@pytest.fixture
def fake_openai():
    """Factory for scripted clients."""
    return FakeOpenAIClient


# ===========================
# API Fixtures
# ===========================

@pytest.fixture
def api_client(db_session: Session, monkeypatch):
    """
    TestClient bound to the test session.

    The lifespan is not run; tables come from ``test_db_engine``.
    """
    from fastapi.testclient import TestClient
    from emmie.database import get_db
    from emmie.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    client = TestClient(app)
    client.headers.update({"X-User-ID": USER_ID})

    yield client

    app.dependency_overrides.clear()
