"""HTTP middleware for request correlation and admission control.

``request_id_middleware``:
- Accepts incoming X-Request-ID header or generates a UUID
- Stores request_id in contextvars for log correlation
- Adds the id and the request duration to the response headers

``admission_middleware``:
- Consumes one token for the caller's identifier before the route runs
- Rejects with 429 ``{"error": "Rate limit exceeded"}`` when the bucket is empty
- Persists the remaining count for admitted requests

Usage:
    app.middleware("http")(admission_middleware)
    app.middleware("http")(request_id_middleware)  # outermost
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from ratekeeper.core.config import settings
from ratekeeper.core.logging import clear_request_id, hash_identifier, set_request_id
from ratekeeper.core.rate_limit import derive_identifier, get_rate_limit_manager

logger = logging.getLogger(__name__)

RATE_LIMIT_EXCEEDED_BODY = {"error": "Rate limit exceeded"}


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation id to the request context and the response.

    If the client provides the configured request id header (X-Request-ID by
    default), that value is used; otherwise a UUID4 is generated.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with X-Request-ID and
            X-Request-Duration-ms headers.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


async def admission_middleware(request: Request, call_next) -> Response:
    """Admit or reject the request based on the caller's token bucket.

    Exempt paths and a disabled limiter pass straight through. Store
    failures never surface here; the in-memory decision stands.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: 429 JSON response when rejected, otherwise the downstream
            response (with X-RateLimit-* headers when enabled).
    """

    cfg = settings.rate_limit
    if not cfg.enabled or request.url.path in cfg.exempt_path_set:
        return await call_next(request)

    manager = get_rate_limit_manager()
    identifier = derive_identifier(request)
    log_fields = {
        "identifier_hash": hash_identifier(identifier),
        "path": request.url.path,
        "limit": manager.config.tokens_per_interval,
    }

    if await manager.is_rate_limited(identifier):
        state = await manager.get_status(identifier)
        retry_after = state.retry_after_seconds or 1
        logger.warning(
            "rate_limit.exceeded",
            extra={**log_fields, "retry_after_s": retry_after},
        )

        headers: dict[str, str] = {}
        if cfg.include_headers:
            headers["Retry-After"] = str(retry_after)
            headers["X-RateLimit-Limit"] = str(state.limit)
            headers["X-RateLimit-Remaining"] = str(state.remaining)

        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=RATE_LIMIT_EXCEEDED_BODY,
            headers=headers or None,
        )

    remaining = await manager.save_state(identifier)
    if remaining is None:
        remaining = (await manager.get_status(identifier)).remaining
    logger.info(
        "rate_limit.allowed",
        extra={**log_fields, "remaining": remaining},
    )

    response = await call_next(request)
    if cfg.include_headers:
        response.headers["X-RateLimit-Limit"] = str(manager.config.tokens_per_interval)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
    return response
