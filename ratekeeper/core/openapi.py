"""OpenAPI customization utilities.

Enriches the generated schema with:
- Tags metadata
- A documented 429 response on every operation subject to admission control
- The optional ``X-API-Key`` header used as the rate limit identifier
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from ratekeeper.core.config import settings


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation with rate limit documentation."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyIdentifier",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": (
                    "Optional. Requests are rate limited per API key, falling back "
                    "to the first X-Forwarded-For hop, then a shared anonymous bucket."
                ),
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Rate Limits",
                "description": "Inspect the caller's token bucket.",
            },
            {
                "name": "Health",
                "description": "Liveness checks (never rate limited).",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        exempt = settings.rate_limit.exempt_path_set
        for path, methods in schema.get("paths", {}).items():
            if path in exempt:
                continue
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                method_obj.setdefault("security", [{"ApiKeyIdentifier": []}, {}])
                method_obj.setdefault("responses", {}).setdefault(
                    "429",
                    {
                        "description": "Rate limit exceeded",
                        "content": {
                            "application/json": {
                                "example": {"error": "Rate limit exceeded"},
                            }
                        },
                    },
                )

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
