"""Tests for global exception handlers."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ratekeeper.core.errors import AppError, ConfigurationAppError
from ratekeeper.core.exception_handlers import general_exception_handler, setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/config-error")
    async def config_error():
        raise ConfigurationAppError(
            code="invalid_interval",
            message="Unknown interval 'fortnight'",
            details={"field": "interval", "value": "fortnight"},
        )

    @app.get("/app-error")
    async def app_error():
        raise AppError(code="bad_identifier", message="Identifier is not valid")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


@pytest.mark.parametrize(
    ("path", "status_code", "code"),
    [
        ("/config-error", 500, "invalid_interval"),
        ("/app-error", 400, "bad_identifier"),
    ],
)
def test_app_errors_map_to_status_codes(client: TestClient, path: str, status_code: int, code: str):
    response = client.get(path)

    assert response.status_code == status_code
    error = response.json()["error"]
    assert error["code"] == code
    assert "request_id" in error


def test_details_are_included_when_present(client: TestClient):
    error = client.get("/config-error").json()["error"]

    assert error["details"] == {"field": "interval", "value": "fortnight"}


def test_details_are_omitted_when_absent(client: TestClient):
    assert "details" not in client.get("/store-error").json()["error"]


def test_unexpected_errors_do_not_leak_internals(client: TestClient):
    response = client.get("/boom")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "internal_server_error"
    assert "secret internals" not in response.text


def test_general_handler_called_directly():
    request = MagicMock()
    request.url.path = "/v1/limits/me"
    request.method = "GET"

    response = asyncio.run(general_exception_handler(request, ValueError("x")))

    assert response.status_code == 500
    body = json.loads(response.body)
    assert body["error"]["message"] == "An unexpected error occurred. Please try again later."
