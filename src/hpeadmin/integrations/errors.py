"""Exceptions raised by the GreenLake / COM integrations, plus error decoding.

GreenLake error bodies come in a few shapes (public API envelopes with
`errorCode`/`message`/`errorDetails`, older UI endpoints with snake_case
keys, or plain text). `extract_error_details` returns whatever can be
recovered so the use-case layer can put it on a Failed status record.
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from typing import Any


class GreenLakeError(Exception):
    """Base class for all client-side errors."""


class SessionError(GreenLakeError):
    """No usable session (missing credentials, no token)."""


class InvalidRegionError(SessionError):
    def __init__(self, region: str, valid_regions: list[str]) -> None:
        self.region = region
        self.valid_regions = list(valid_regions)
        super().__init__(
            f"Region '{region}' is not available. Valid regions: {', '.join(self.valid_regions) or '(none)'}"
        )


class PollingTimeoutError(GreenLakeError):
    pass


class GreenLakeHTTPError(GreenLakeError, RuntimeError):
    def __init__(self, status_code: int, text: str, *, method: str = "", url: str = "") -> None:
        self.status_code = status_code
        self.text = text
        self.method = method
        self.url = url
        super().__init__(f"HTTP {status_code}: {text}")


@dataclass(frozen=True, slots=True)
class ErrorDetails:
    message: str
    status_code: int | None = None
    error_code: str | None = None
    workspace_id: str | None = None
    workspace_name: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


_WORKSPACE_ID_KEYS = {"workspaceid", "workspace_id", "platformcustomerid", "platform_customer_id"}
_WORKSPACE_NAME_KEYS = {"workspacename", "workspace_name", "companyname", "company_name"}

_WORKSPACE_NAME_RE = re.compile(r"workspace\s*(?:name)?\s*[:=]?\s*['\"](?P<name>[^'\"]+)['\"]", re.IGNORECASE)
_WORKSPACE_ID_RE = re.compile(
    r"(?:workspace|customer)\s*(?:id)?\s*[:=(]?\s*['\"]?(?P<id>[0-9a-f]{32})", re.IGNORECASE
)
_ERROR_CODE_RE = re.compile(r"\b(?P<code>HPE_GL_[A-Z0-9_]+|[A-Z]{2,}_[A-Z0-9_]{3,})\b")


def _find_key(obj: Any, wanted: set[str]) -> str | None:
    """Depth-first search for the first scalar value whose key matches `wanted`."""

    if isinstance(obj, dict):
        for k, v in obj.items():
            if str(k).lower() in wanted and isinstance(v, (str, int)) and str(v):
                return str(v)
        for v in obj.values():
            found = _find_key(v, wanted)
            if found is not None:
                return found
    elif isinstance(obj, list):
        for v in obj:
            found = _find_key(v, wanted)
            if found is not None:
                return found
    return None


def extract_error_details(err: Exception | str) -> ErrorDetails:
    """Decode an HTTP error into an `ErrorDetails`.

    Structured fields win; when the body is not JSON (or lacks the fields)
    the message text is scanned with regexes.
    """

    status_code = getattr(err, "status_code", None)
    text = err.text if isinstance(err, GreenLakeHTTPError) else str(err)

    payload: Any = None
    try:
        payload = json.loads(text) if text else None
    except ValueError:
        payload = None

    message = text
    error_code: str | None = None
    workspace_id: str | None = None
    workspace_name: str | None = None

    if isinstance(payload, dict):
        message = str(
            payload.get("message")
            or payload.get("error_description")
            or payload.get("detail")
            or payload.get("error")
            or text
        )
        raw_code = payload.get("errorCode") or payload.get("error_code") or payload.get("code")
        error_code = str(raw_code) if raw_code else None
        workspace_id = _find_key(payload, _WORKSPACE_ID_KEYS)
        workspace_name = _find_key(payload, _WORKSPACE_NAME_KEYS)

    if workspace_name is None:
        m = _WORKSPACE_NAME_RE.search(message)
        if m:
            workspace_name = m.group("name")
    if workspace_id is None:
        m = _WORKSPACE_ID_RE.search(message)
        if m:
            workspace_id = m.group("id")
    if error_code is None:
        m = _ERROR_CODE_RE.search(message)
        if m:
            error_code = m.group("code")

    return ErrorDetails(
        message=message,
        status_code=status_code,
        error_code=error_code,
        workspace_id=workspace_id,
        workspace_name=workspace_name,
    )
