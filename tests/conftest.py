"""
Shared fixtures: an in-memory store, a recording dispatcher and an HTTP
client bound to a fresh application.
"""

from typing import List, Tuple

import httpx
import pytest

from movecar.clients.kv_store import InMemoryKeyValueStore
from movecar.clients.repositories import DatabaseManager, get_db
from movecar.main import create_app
from movecar.middleware import request_metrics
from movecar.models.internal_models import (
    BarkConfig,
    Owner,
    PushMessage,
    PushResult,
    TelegramConfig,
)
from movecar.services.auth_service import AuthService, get_auth_service
from movecar.services.owner_service import OwnerService, get_owner_service
from movecar.services.request_service import RequestLifecycleService, get_request_service

BASE_URL = "https://movecar.example"


class RecordingDispatcher:
    """Dispatcher double that records messages instead of calling providers."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: List[Tuple[Owner, PushMessage]] = []

    async def send(self, owner: Owner, message: PushMessage) -> PushResult:
        self.sent.append((owner, message))
        if self.succeed:
            return PushResult(success=True, channel=owner.push_channel)
        return PushResult(success=False, channel=owner.push_channel, error="provider rejected")

    async def send_test(self, owner: Owner) -> PushResult:
        return await self.send(owner, PushMessage(title="🚗 Push test", body="test"))


@pytest.fixture
def store():
    """Fresh in-memory keyed store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def db_manager(store):
    return DatabaseManager(store=store)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def auth_service(db_manager):
    return AuthService(db_manager=db_manager)


@pytest.fixture
def owner_service(db_manager, dispatcher):
    return OwnerService(db_manager=db_manager, dispatcher=dispatcher)


@pytest.fixture
def request_service(db_manager, dispatcher):
    return RequestLifecycleService(db_manager=db_manager, dispatcher=dispatcher)


@pytest.fixture
def bark_owner():
    """An unlinked Owner on the Bark channel."""
    return Owner(
        id="abc123",
        name="Alice",
        car_plate="A12345",
        push=BarkConfig(key="devicekey"),
        admin_token="T" * 32,
    )


@pytest.fixture
def telegram_owner():
    return Owner(
        id="tg0001",
        name="Bob",
        push=TelegramConfig(bot_token="123:abc", chat_id="42"),
        admin_token="S" * 32,
    )


@pytest.fixture
def app(db_manager, auth_service, owner_service, request_service):
    """Application wired to the test store and recording dispatcher."""
    application = create_app()
    application.dependency_overrides[get_db] = lambda: db_manager
    application.dependency_overrides[get_auth_service] = lambda: auth_service
    application.dependency_overrides[get_owner_service] = lambda: owner_service
    application.dependency_overrides[get_request_service] = lambda: request_service
    request_metrics.reset()
    return application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as http_client:
        yield http_client
