"""Shared request validation helpers for routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from taskman_service.core.exceptions import ServiceError

if TYPE_CHECKING:
    from fastapi import Request

USER_ID_HEADER = "X-User-Id"


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def optional_user_id(request: Request) -> str | None:
    """Read the caller identity supplied by the auth layer, if any."""
    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    return user_id or None


def require_user_id(request: Request) -> str:
    """Read the caller identity, raising UNAUTHORIZED when absent."""
    user_id = optional_user_id(request)
    if user_id is None:
        raise ServiceError(
            "UNAUTHORIZED",
            f"Missing {USER_ID_HEADER} header",
            401,
            {},
        )
    return user_id


def parse_int_query(request: Request, name: str, default: int | None = None) -> int | None:
    """Parse an optional integer query parameter."""
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be an integer", 400, {}) from exc


def extract_string(data: dict[str, Any], field_name: str) -> str:
    """Extract a required non-empty string field from a parsed JSON body."""
    value = data.get(field_name)
    if value is None:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Missing required field: {field_name}",
            400,
            {},
        )
    if not isinstance(value, str) or not value:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Field '{field_name}' must be a non-empty string",
            400,
            {},
        )
    return value
