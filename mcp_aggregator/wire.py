# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
Line-delimited JSON-RPC codec.

One envelope per line, used identically for the proxy's own stdio and for
every backend's stdio. Envelopes are immutable; only fields that were
actually present are written back out, so an explicit ``null`` id or result
survives a decode/encode cycle.
"""

import json
import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from .exceptions import MalformedMessage

JSONRPC_VERSION = "2.0"

RequestId = str | int | float

Direction = Literal["request", "response"]


class ErrorObject(BaseModel):
    """JSON-RPC error object.

    Members beyond ``code``, ``message`` and ``data`` are kept so that backend
    errors are relayed unchanged.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    code: int
    message: str
    data: Any = None


class Envelope(BaseModel):
    """A single JSON-RPC message: a request, a notification or a response."""

    model_config = ConfigDict(frozen=True)

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId | None = None
    method: str | None = None
    params: Any = None
    result: Any = None
    error: ErrorObject | None = None

    @property
    def has_id(self) -> bool:
        return "id" in self.model_fields_set

    @property
    def is_request(self) -> bool:
        return self.method is not None

    @property
    def is_notification(self) -> bool:
        return self.is_request and not self.has_id

    @property
    def has_result(self) -> bool:
        return "result" in self.model_fields_set

    @property
    def has_error(self) -> bool:
        return "error" in self.model_fields_set and self.error is not None

    @property
    def is_response(self) -> bool:
        return not self.is_request and (self.has_result or self.has_error)

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude_unset=True)
        return {"jsonrpc": self.jsonrpc, **data}

    def with_id(self, request_id: RequestId | None) -> "Envelope":
        """Return a copy of this envelope carrying ``request_id``."""
        data = self.to_dict()
        data["id"] = request_id
        return Envelope.model_validate(data)


def new_request_id() -> str:
    """Fresh id for a proxy-originated request."""
    return str(uuid.uuid4())


def make_request(
    method: str,
    params: Any = None,
    request_id: RequestId | None = None,
) -> Envelope:
    fields: dict[str, Any] = {
        "id": request_id if request_id is not None else new_request_id(),
        "method": method,
    }
    if params is not None:
        fields["params"] = params
    return Envelope(**fields)


def make_notification(method: str, params: Any = None) -> Envelope:
    fields: dict[str, Any] = {"method": method}
    if params is not None:
        fields["params"] = params
    return Envelope(**fields)


def make_result(request_id: RequestId | None, result: Any) -> Envelope:
    return Envelope(id=request_id, result=result)


def make_error(
    request_id: RequestId | None,
    code: int,
    message: str,
    data: Any = None,
) -> Envelope:
    error_fields: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error_fields["data"] = data
    return Envelope(id=request_id, error=ErrorObject(**error_fields))


def encode(envelope: Envelope) -> str:
    """Serialize an envelope to a single line (without the terminator).

    Non-ASCII characters are escaped so that no line or paragraph separator
    can appear inside a frame.
    """
    return json.dumps(envelope.to_dict(), separators=(",", ":"))


def decode(line: str, expect: Direction | None = None) -> Envelope:
    """
    Parse one line into an envelope.

    Args:
        line: Raw text line, with or without its terminator.
        expect: "request" to require ``method``, "response" to require
            ``result`` or ``error``; None accepts either.

    Raises:
        MalformedMessage: If the line is not JSON, not an object, or does not
            have the shape required for ``expect``. ``request_id`` is filled in
            whenever the id could still be read.
    """
    text = line.strip()
    if not text:
        raise MalformedMessage("Empty message", line=line)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedMessage(f"Invalid JSON: {e.msg}", line=line) from e

    if not isinstance(data, dict):
        raise MalformedMessage("Message must be a JSON object", line=line)

    request_id = data.get("id")
    if isinstance(request_id, bool) or not isinstance(request_id, (str, int, float)):
        request_id = None

    try:
        envelope = Envelope.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "message"
        raise MalformedMessage(
            f"Invalid message: {location}: {first['msg']}",
            line=line,
            request_id=request_id,
        ) from e

    if envelope.has_result and envelope.has_error:
        raise MalformedMessage(
            "'result' and 'error' are mutually exclusive", line=line, request_id=request_id
        )
    if envelope.is_request and (envelope.has_result or envelope.has_error):
        raise MalformedMessage(
            "A request cannot carry 'result' or 'error'", line=line, request_id=request_id
        )

    if expect == "request" and not envelope.is_request:
        raise MalformedMessage("Missing 'method'", line=line, request_id=request_id)
    if expect == "response" and not envelope.is_response:
        raise MalformedMessage(
            "Missing 'result' or 'error'", line=line, request_id=request_id
        )
    if expect is None and not (envelope.is_request or envelope.is_response):
        raise MalformedMessage(
            "Message has neither 'method' nor 'result'/'error'",
            line=line,
            request_id=request_id,
        )

    return envelope
