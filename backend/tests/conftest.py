"""
Common test fixtures for the messaging engine.

MongoDB is replaced with mongomock-motor, the realtime bus with the
in-process bus, and object storage with an in-memory store that can be told
to reject uploads.
"""
import pytest
from mongomock_motor import AsyncMongoMockClient
from pymongo.errors import AutoReconnect

from kiram_chat.core.exceptions import UploadFailed
from kiram_chat.repositories.conversation_repository import ConversationRepository
from kiram_chat.repositories.message_repository import MessageRepository
from kiram_chat.services.attachment_service import AttachmentService
from kiram_chat.services.chat_service import ChatService
from kiram_chat.utils.realtime_bus import LocalBus


class InMemoryStorage:

    def __init__(self):
        self.objects = {}
        self.fail = False

    async def put(self, path, data, content_type=None):
        if self.fail:
            raise UploadFailed(f"Storage rejected {path}")
        self.objects[path] = (data, content_type)

    async def get_download_url(self, path):
        return f"https://storage.test/{path}"


class UnavailableCollection:
    """Collection stand-in whose every call fails like a dropped MongoDB connection."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise AutoReconnect("connection reset")
        return fail


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    return AsyncMongoMockClient()["kiram_chat_test"]


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def message_repo(db, bus):
    return MessageRepository(db, bus)


@pytest.fixture
def conversation_repo(db, bus):
    return ConversationRepository(db, bus)


@pytest.fixture
def service(message_repo, conversation_repo, bus, storage):
    return ChatService(message_repo, conversation_repo, bus, AttachmentService(storage))
