"""
Error Handling Tests
"""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import IntegrityError, OperationalError

from flagkeeper.core.error_handler import (
    BadRequestError,
    FlagConflictError,
    FlagNotFoundError,
    InternalError,
    register_exception_handlers,
    translate_store_error,
)
from flagkeeper.main import create_application


class PgError(Exception):
    def __init__(self, sqlstate: str):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def integrity_error(orig: Exception) -> IntegrityError:
    return IntegrityError("INSERT INTO feature_flags ...", {}, orig)


@pytest.mark.parametrize(
    "orig,expected_type,expected_kind",
    [
        (PgError("23505"), FlagConflictError, "conflict"),
        (PgError("23503"), BadRequestError, "bad_request"),
        (PgError("23502"), BadRequestError, "bad_request"),
        (PgError("23514"), BadRequestError, "bad_request"),
        (Exception("UNIQUE constraint failed: feature_flags.key"), FlagConflictError, "conflict"),
        (Exception("NOT NULL constraint failed: feature_flags.name"), BadRequestError, "bad_request"),
        (Exception("CHECK constraint failed: rollout_percentage_range"), BadRequestError, "bad_request"),
        (Exception("something else entirely"), BadRequestError, "bad_request"),
    ],
)
def test_translate_integrity_errors(orig, expected_type, expected_kind):
    error = translate_store_error(integrity_error(orig), "Failed to create flag")
    assert isinstance(error, expected_type)
    assert error.kind == expected_kind


def test_translate_other_store_errors_to_internal():
    error = translate_store_error(OperationalError("SELECT 1", {}, Exception("gone")), "Failed to load flag")
    assert isinstance(error, InternalError)
    assert error.message == "Failed to load flag"
    assert error.status_code == 500


def test_translate_timeout():
    error = translate_store_error(TimeoutError(), "Failed to update flag 'x'")
    assert isinstance(error, InternalError)
    assert error.message == "Failed to update flag 'x': transaction timed out"


def test_translate_passes_service_errors_through():
    original = FlagNotFoundError("Flag 'x' not found")
    assert translate_store_error(original, "ignored") is original


@pytest.fixture
def error_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/missing")
    async def missing():
        raise FlagNotFoundError("Flag 'missing' not found")

    @app.get("/invalid")
    async def invalid():
        raise BadRequestError("Invalid FlagCreate payload", extra={"details": [{"loc": ["key"], "msg": "bad", "type": "value_error"}]})

    @app.get("/conflict")
    async def conflict():
        raise FlagConflictError()

    @app.get("/broken")
    async def broken():
        raise InternalError("Failed to list flags")

    return app


@pytest.mark.parametrize(
    "path,status_code,code",
    [
        ("/missing", 404, "not_found"),
        ("/invalid", 400, "bad_request"),
        ("/conflict", 409, "conflict"),
        ("/broken", 500, "internal"),
    ],
)
async def test_error_responses(error_app: FastAPI, path: str, status_code: int, code: str):
    async with AsyncClient(transport=ASGITransport(app=error_app), base_url="http://test") as client:
        response = await client.get(path)

    assert response.status_code == status_code
    body = response.json()
    assert body["error"]["code"] == code
    assert body["error"]["message"]


async def test_error_response_carries_details(error_app: FastAPI):
    async with AsyncClient(transport=ASGITransport(app=error_app), base_url="http://test") as client:
        response = await client.get("/invalid")

    assert response.json() == {
        "error": {
            "code": "bad_request",
            "message": "Invalid FlagCreate payload",
            "details": [{"loc": ["key"], "msg": "bad", "type": "value_error"}],
        }
    }


async def test_application_echoes_correlation_id(monkeypatch):
    # Keep pytest's log capture in place
    monkeypatch.setattr("flagkeeper.main.setup_logging", lambda: None)
    app = create_application()

    @app.get("/ping")
    async def ping():
        raise FlagNotFoundError()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/ping", headers={"X-Correlation-ID": "req-123"})
        generated = await client.get("/ping")

    assert response.status_code == 404
    assert response.headers["X-Correlation-ID"] == "req-123"
    assert generated.headers["X-Correlation-ID"]
