"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from ratekeeper.core.logging import (
    REDACTED,
    JsonFormatter,
    LogScrubber,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    hash_identifier,
    set_request_id,
)


@pytest.fixture
def capture():
    """Return (logger, stream) wired with the production filters/formatter."""

    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers.clear()
    clear_request_id()


def test_redacts_api_keys_and_hashes_caller_identity(capture):
    logger, stream = capture

    logger.info(
        "rate_limit.allowed",
        extra={
            "api_key": "sk-secret-123",
            "identifier": "203.0.113.7",
            "x-forwarded-for": "203.0.113.7, 10.0.0.1",
            "identifier_hash": "ab12cd34ef56ab78",
        },
    )

    output = stream.getvalue()
    record = json.loads(output)

    assert "sk-secret-123" not in output
    assert "203.0.113.7" not in output
    assert record["api_key"] == REDACTED
    assert record["identifier"] == hash_identifier("203.0.113.7")
    assert record["x-forwarded-for"] == hash_identifier("203.0.113.7, 10.0.0.1")
    assert record["identifier_hash"] == "ab12cd34ef56ab78"


def test_hashed_identifier_matches_middleware_hash(capture):
    logger, stream = capture

    logger.warning(
        "rate_limit.exceeded",
        extra={"identifier": "key-a", "identifier_hash": hash_identifier("key-a")},
    )

    record = json.loads(stream.getvalue())

    # Filter and formatter both run; the value must be hashed exactly once
    assert record["identifier"] == record["identifier_hash"]


def test_safe_fields_pass_through(capture):
    logger, stream = capture

    logger.info(
        "rate_limit.exceeded",
        extra={
            "path": "/v1/limits/me",
            "limit": 100,
            "retry_after_s": 36,
        },
    )

    record = json.loads(stream.getvalue())

    assert record["message"] == "rate_limit.exceeded"
    assert record["level"] == "info"
    assert record["path"] == "/v1/limits/me"
    assert record["limit"] == 100
    assert "[REDACTED]" not in stream.getvalue()


def test_redacts_nested_headers(capture):
    logger, stream = capture

    logger.info(
        "request.headers",
        extra={
            "headers": {
                "X-API-Key": "secret-key",
                "user-agent": "pytest",
            },
        },
    )

    output = stream.getvalue()

    assert "secret-key" not in output
    assert "[REDACTED]" in output
    assert "pytest" in output


def test_request_id_is_attached_from_context(capture):
    logger, stream = capture
    set_request_id("req-42")

    logger.info("with_context")

    assert json.loads(stream.getvalue())["request_id"] == "req-42"


def test_formatter_scrubs_without_filter():
    formatter = JsonFormatter()
    record = logging.LogRecord("ratekeeper", logging.INFO, __file__, 1, "msg", (), None)
    record.identifier = "10.0.0.9"
    record.authorization = "Bearer abc"

    payload = json.loads(formatter.format(record))

    assert payload["identifier"] == hash_identifier("10.0.0.9")
    assert payload["authorization"] == REDACTED


def test_scrubber_handles_nested_sequences():
    scrubber = LogScrubber()

    scrubbed = scrubber.scrub(
        "requests",
        [{"client_ip": "10.0.0.1", "path": "/v1/limits/me"}],
    )

    assert scrubbed == [{"client_ip": hash_identifier("10.0.0.1"), "path": "/v1/limits/me"}]


def test_exception_info_is_included(capture):
    logger, stream = capture

    try:
        raise RuntimeError("store exploded")
    except RuntimeError:
        logger.exception("rate_limit.unexpected")

    assert "store exploded" in json.loads(stream.getvalue())["exc_info"]
