"""Shared test fixtures and configuration."""
import os
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "test-sid")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "+1234567890")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from unmute.main import app
from unmute.core.config import Settings
from unmute.core.dependencies import (
    get_audio_store,
    get_broadcaster,
    get_call_store,
    get_session_manager,
)
from unmute.db.database import get_db
from unmute.db.models import Base
from unmute.services.audio.store import EphemeralAudioStore
from unmute.services.call_session.manager import CallSessionManager
from unmute.services.call_session.store import CallSessionStore
from unmute.services.language.completion import SUMMARY_PROMPT, CompletionService
from unmute.services.persistence.users import UserService
from unmute.services.realtime.broadcaster import EventBroadcaster
from unmute.services.speech.stt import SpeechToTextService
from unmute.services.speech.tts import TextToSpeechService


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_CALL_SID = "CA00000000000000000000000000000001"
FAKE_MP3 = b"ID3\x04\x00fake-mp3-audio"
FAKE_WAV = b"RIFF\x24\x00\x00\x00WAVEfmt fake-wav-audio"


class RecordingBroadcaster(EventBroadcaster):
    """Broadcaster that also keeps every published event."""

    def __init__(self):
        super().__init__()
        self.events = []

    async def publish(self, event, payload):
        self.events.append((event, payload))
        await super().publish(event, payload)

    def named(self, event):
        return [payload for name, payload in self.events if name == event]


def completion_response(content):
    """Shape of an OpenAI chat completion."""
    return Mock(choices=[Mock(message=Mock(content=content))])


async def fake_chat_completion(model, messages, **kwargs):
    """Summaries get a fixed text; formatting capitalizes and punctuates."""
    if messages[0]["content"] == SUMMARY_PROMPT:
        return completion_response("The caller and user said hello.")
    text = messages[-1]["content"]
    if text.startswith('Format this raw transcription: "'):
        text = text[len('Format this raw transcription: "'):-1]
    text = text.strip()
    text = text[:1].upper() + text[1:]
    if not text.endswith((".", "?", "!")):
        text += "."
    return completion_response(text)


@pytest.fixture
def test_settings():
    """Override settings for testing."""
    return Settings(
        openai_api_key="test-key",
        twilio_account_sid="test-sid",
        twilio_auth_token="test-token",
        twilio_phone_number="+1234567890",
        database_url=TEST_DATABASE_URL,
        base_url=None,
    )


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def test_session_factory(test_db_engine):
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    """Create test database session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
async def test_user(test_db):
    """A registered user."""
    return await UserService(test_db).create_user(
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        password="correct-horse",
    )


@pytest.fixture
def mock_openai():
    """Mock OpenAI API client."""
    mock_client = Mock()
    mock_client.audio.speech.create = AsyncMock(return_value=Mock(content=FAKE_MP3))
    mock_client.audio.transcriptions.create = AsyncMock(return_value=Mock(text="hello from the far end"))
    mock_client.chat.completions.create = AsyncMock(side_effect=fake_chat_completion)
    return mock_client


@pytest.fixture
def mock_telephony():
    """Mock Twilio adapter with a live, in-progress call."""
    telephony = Mock()
    telephony.available = True
    telephony.place_call = AsyncMock(return_value=TEST_CALL_SID)
    telephony.update_instructions = AsyncMock()
    telephony.terminate = AsyncMock()
    telephony.set_muted = AsyncMock()
    telephony.fetch_call_status = AsyncMock(return_value="in-progress")
    telephony.download_recording = AsyncMock(return_value=FAKE_WAV)
    telephony.download_latest_recording = AsyncMock(return_value=(FAKE_MP3, "audio/mpeg"))
    return telephony


@pytest.fixture
def call_store():
    return CallSessionStore(retention_seconds=600)


@pytest.fixture
def audio_store(tmp_path):
    return EphemeralAudioStore(str(tmp_path / "audio"), ttl_seconds=60, unserved_ttl_seconds=600)


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def session_manager(call_store, mock_telephony, mock_openai, audio_store, broadcaster, test_session_factory):
    """Call session manager wired to fakes and the test database."""
    return CallSessionManager(
        store=call_store,
        telephony=mock_telephony,
        tts_service=TextToSpeechService(client=mock_openai),
        stt_service=SpeechToTextService(client=mock_openai),
        completion_service=CompletionService(client=mock_openai),
        audio_store=audio_store,
        broadcaster=broadcaster,
        session_factory=test_session_factory,
    )


@pytest.fixture
def override_get_db(test_session_factory):
    """Override get_db dependency with test database."""
    async def _override_get_db():
        async with test_session_factory() as session:
            yield session
    return _override_get_db


@pytest.fixture
def test_client(
    override_get_db,
    session_manager,
    call_store,
    audio_store,
    broadcaster,
    test_settings,
    monkeypatch,
):
    """Create FastAPI test client with overrides."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_manager] = lambda: session_manager
    app.dependency_overrides[get_call_store] = lambda: call_store
    app.dependency_overrides[get_audio_store] = lambda: audio_store
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster

    # Override settings in modules that use it
    monkeypatch.setattr("unmute.core.dependencies.settings", test_settings)

    client = TestClient(app)

    yield client

    # Clear overrides
    app.dependency_overrides.clear()


@pytest.fixture
def authenticated_client(test_client):
    """Create test client with valid session cookie."""
    response = test_client.post(
        "/api/auth/signup",
        json={
            "firstName": "Grace",
            "lastName": "Hopper",
            "email": "grace@example.com",
            "password": "cobol-rules",
        },
    )
    assert response.status_code == 201

    response = test_client.post(
        "/api/auth/login",
        json={"email": "grace@example.com", "password": "cobol-rules"},
    )
    assert response.status_code == 200

    # Session cookie is automatically stored in test_client
    return test_client


@pytest.fixture(autouse=True)
def clean_auth_sessions():
    """Clean up authentication sessions before and after tests."""
    from unmute.api import auth
    auth._sessions.clear()
    yield
    auth._sessions.clear()
