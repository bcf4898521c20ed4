import os
import pytest
from unittest.mock import MagicMock

from webhook_config import WebhookConfig


@pytest.fixture(scope="function", autouse=True)
def mock_env_vars():
    """Credenciales falsas para que ningún test llegue a una cuenta real de AWS."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-central-1"


@pytest.fixture
def config():
    return WebhookConfig(database_id="telemetry", collection_id="nrf-messages")


@pytest.fixture
def fake_store():
    """Almacén en memoria: create devuelve el registro con su id."""
    store = MagicMock()

    def _create(database_id, collection_id, document_id, record):
        document = dict(record)
        document["id"] = document_id
        return document

    store.create.side_effect = _create
    return store


@pytest.fixture
def envelope():
    return {
        "teamId": "team-1",
        "deviceId": "d1",
        "tenantId": "tenant-1",
        "topic": "prod/team-1/m/d/d1/d2c",
        "receivedAt": "2024-01-15T10:30:01.000Z",
        "message": {
            "appId": "TEMP",
            "messageType": "DATA",
            "data": 23.5,
            "ts": 1705315800000,
        },
    }
