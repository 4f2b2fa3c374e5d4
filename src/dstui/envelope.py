"""Decoding of the WebAPI response envelope: {success, data | error: {code, reason}}."""

import json
from typing import Any

from .errors import RATE_LIMITED_STATUSES, ApiError, ApiErrorKind
from .transport import RawResponse


def decode_envelope(raw: RawResponse) -> Any:
    """Return the envelope's ``data`` or raise the ApiError it carries.

    Unknown envelope fields are ignored. Anything that does not look like an
    envelope is MALFORMED rather than an exception from json or a KeyError.
    """
    if raw.status in RATE_LIMITED_STATUSES:
        raise ApiError(ApiErrorKind.RATE_LIMITED, f"Server is throttling requests (HTTP {raw.status})")
    if raw.status >= 500:
        raise ApiError(ApiErrorKind.SERVER_ERROR, f"Server error (HTTP {raw.status})")

    try:
        payload = json.loads(raw.body)
    except (json.JSONDecodeError, TypeError):
        raise ApiError.malformed(f"body is not JSON (HTTP {raw.status})")

    if not isinstance(payload, dict):
        raise ApiError.malformed("envelope is not an object")
    success = payload.get("success")
    if not isinstance(success, bool):
        raise ApiError.malformed("envelope has no boolean 'success'")

    if success:
        return payload.get("data")

    error = payload.get("error")
    if not isinstance(error, dict):
        raise ApiError(ApiErrorKind.SERVER_ERROR, "Request failed without an error code")
    code = error.get("code")
    if isinstance(code, bool) or not isinstance(code, int):
        raise ApiError.malformed("error code is not a number")
    reason = error.get("reason")
    raise ApiError.from_code(code, reason if isinstance(reason, str) and reason else None)
