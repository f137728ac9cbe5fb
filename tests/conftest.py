import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.store import TransactionStore

ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"


@pytest.fixture
def settings():
    return Settings(
        integration_key="test-integration-key",
        encryption_key=ENCRYPTION_KEY,
        result_url="http://localhost:3000/payment-result",
        return_url="http://localhost:3000/thank-you",
        api_url="https://gateway.test/api/payments-engine",
    )


@pytest.fixture
def store():
    return TransactionStore()


@pytest.fixture
def mock_gateway():
    return AsyncMock()


@pytest.fixture
def client(settings, store, mock_gateway):
    app = create_app(settings=settings, store=store, gateway=mock_gateway)
    with TestClient(app) as client:
        yield client
