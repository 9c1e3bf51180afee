"""
Shared fixtures: an in-memory motor database per test, recording/failing
realtime buses, and the repositories and services wired on top of them.
"""
import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.repositories.user_repository import UserRepository
from chatcore.services.conversation_service import ConversationService
from chatcore.services.message_service import MessageService
from chatcore.services.read_state import ReadStateTracker


class RecordingBus:
    """Captures publishes instead of sending them."""

    enabled = True

    def __init__(self) -> None:
        self.events = []

    async def publish(self, room, event, payload) -> None:
        self.events.append((room, event, payload))

    def named(self, event):
        return [(room, payload) for room, name, payload in self.events if name == event]


class FailingBus:

    enabled = True

    async def publish(self, room, event, payload) -> None:
        raise ConnectionError("realtime transport unavailable")


def new_user_id() -> str:
    return str(ObjectId())


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    return client[f"chatcore_test_{ObjectId()}"]


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def alice():
    return new_user_id()


@pytest.fixture
def bob():
    return new_user_id()


@pytest.fixture
def carol():
    return new_user_id()


@pytest.fixture
def dave():
    return new_user_id()


@pytest.fixture
def conversation_repo(db):
    return ConversationRepository(db)


@pytest.fixture
def message_repo(db):
    return MessageRepository(db)


@pytest.fixture
def read_state(db):
    return ReadStateTracker(db)


@pytest.fixture
def conversation_service(db, bus, conversation_repo, read_state, message_repo):
    return ConversationService(
        conversation_repo,
        read_state,
        bus,
        message_repo=message_repo,
        user_repo=UserRepository(db),
    )


@pytest.fixture
def message_service(bus, conversation_repo, read_state, message_repo):
    return MessageService(message_repo, conversation_repo, read_state, bus)


@pytest.fixture
async def group(conversation_service, alice, bob, carol):
    """Group "Team" of alice, bob and carol with alice as sole admin."""
    return await conversation_service.create_conversation(alice, "GROUP", [bob, carol], name="Team")
