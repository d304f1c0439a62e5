"""Shared pytest fixtures for ytangent tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from ytangent.conversations.router import get_chat_service
from ytangent.conversations.service import ChatService
from ytangent.db.connection import Database
from ytangent.events.projector import StateProjector
from ytangent.events.store import EventStore
from ytangent.main import app
from ytangent.providers.registry import clear_providers, register_provider
from tests.fixtures import FakeProvider


@pytest.fixture
async def db():
    """A fresh in-memory database with the schema applied."""
    database = await Database.connect(":memory:")
    yield database
    await database.close()


@pytest.fixture
async def event_store(db):
    return EventStore(db)


@pytest.fixture
async def projector(db):
    return StateProjector(db)


@pytest.fixture
async def chat_service(db):
    return ChatService(db, default_model="fake-model")


@pytest.fixture
async def fake_provider():
    """A FakeProvider registered as 'fake' for the duration of the test."""
    provider = FakeProvider()
    clear_providers()
    register_provider(provider)
    yield provider
    clear_providers()


@pytest.fixture
async def client(chat_service, fake_provider):
    """HTTP client for the app, wired to the in-memory service and FakeProvider."""
    app.dependency_overrides[get_chat_service] = lambda: chat_service
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
