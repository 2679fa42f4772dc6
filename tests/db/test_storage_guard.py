from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.core.exceptions import NotFoundError, StorageError, register_exception_handlers
from app.db.guard import storage_operation


class FakeService:
    def __init__(self, error):
        self.db = MagicMock()
        self.error = error

    @storage_operation("fake_operation")
    def run(self):
        raise self.error


def test_database_error_becomes_retryable_storage_error():
    service = FakeService(OperationalError("SELECT 1", {}, Exception("statement timeout")))

    with pytest.raises(StorageError) as exc_info:
        service.run()

    assert exc_info.value.status_code == 503
    assert exc_info.value.retryable is True
    assert exc_info.value.details == {"operation": "fake_operation"}
    service.db.rollback.assert_called_once()


def test_application_errors_roll_back_and_propagate():
    service = FakeService(NotFoundError("Message not found", resource="message"))

    with pytest.raises(NotFoundError):
        service.run()

    service.db.rollback.assert_called_once()


def test_storage_error_response_has_retry_after():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    def boom():
        raise StorageError(operation="list_messages")

    response = TestClient(app).get("/boom")

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "1"
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "STORAGE_UNAVAILABLE"
