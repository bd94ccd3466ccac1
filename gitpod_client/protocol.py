"""JSON-RPC 2.0 message codec and error taxonomy."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, Union

JSONRPC_VERSION = "2.0"

CANCEL_REQUEST_METHOD = "$/cancelRequest"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
REQUEST_CANCELLED = -32800

NOT_AUTHENTICATED = 401
PERMISSION_DENIED = 403
NOT_FOUND = 404

Params = Union[List[Any], Dict[str, Any], None]
RequestId = Union[int, str]


class ResponseError(Exception):
    """An error returned by the remote peer, or raised locally in its place."""

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, *, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.data = data

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code}, message={self.message!r})"


class ParseError(ResponseError):
    code = PARSE_ERROR


class InvalidRequestError(ResponseError):
    code = INVALID_REQUEST


class MethodNotFoundError(ResponseError):
    code = METHOD_NOT_FOUND


class InvalidParamsError(ResponseError):
    code = INVALID_PARAMS


class InternalError(ResponseError):
    code = INTERNAL_ERROR


class RequestCancelledError(ResponseError):
    code = REQUEST_CANCELLED


class NotAuthenticatedError(ResponseError):
    code = NOT_AUTHENTICATED


class PermissionDeniedError(ResponseError):
    code = PERMISSION_DENIED


class NotFoundError(ResponseError):
    code = NOT_FOUND


class InvalidResultError(ResponseError):
    """Raised when a successful response carries a result of the wrong shape."""

    code = INTERNAL_ERROR


class InvalidResponseError(InvalidRequestError):
    """Raised for a malformed message that has no method and so must be a reply."""


class TransportError(ConnectionError):
    """Raised when a message cannot be delivered to the remote peer."""


class ConnectionClosedError(TransportError):
    """Raised for requests still in flight when the connection ends."""


_ERRORS_BY_CODE: Dict[int, Type[ResponseError]] = {
    cls.code: cls
    for cls in (
        ParseError,
        InvalidRequestError,
        MethodNotFoundError,
        InvalidParamsError,
        InternalError,
        RequestCancelledError,
        NotAuthenticatedError,
        PermissionDeniedError,
        NotFoundError,
    )
}


def _extract_error_message(payload: object, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return default


def error_from_payload(payload: object) -> ResponseError:
    """Build the most specific :class:`ResponseError` for a wire error object."""

    if not isinstance(payload, dict):
        return InternalError(_extract_error_message(payload, "Malformed error response"))

    raw_code = payload.get("code")
    try:
        code = int(raw_code)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        code = INTERNAL_ERROR
    message = _extract_error_message(payload, f"Request failed with code {code}")
    error_cls = _ERRORS_BY_CODE.get(code, ResponseError)
    return error_cls(message, code=code, data=payload.get("data"))


@dataclass
class Request:
    id: RequestId
    method: str
    params: Params = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            payload["params"] = self.params
        return payload


@dataclass
class Notification:
    method: str
    params: Params = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            payload["params"] = self.params
        return payload


@dataclass
class Response:
    id: Optional[RequestId]
    result: Any = None
    error: Optional[ResponseError] = field(default=None)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.to_payload()
        else:
            payload["result"] = self.result
        return payload


Message = Union[Request, Notification, Response]


def encode_message(message: Message) -> str:
    """Serialize a message to JSON text."""

    return json.dumps(message.to_payload(), separators=(",", ":"))


def _valid_id(value: object) -> bool:
    return isinstance(value, (int, str)) and not isinstance(value, bool)


def decode_message(text: str | bytes) -> Message:
    """Parse JSON text into a :class:`Request`, :class:`Notification` or :class:`Response`.

    Raises :class:`ParseError` for invalid JSON and :class:`InvalidRequestError`
    for JSON that is not a JSON-RPC 2.0 message, narrowed to
    :class:`InvalidResponseError` when the payload has no method. When the
    offending payload carried a usable id it is attached as ``data["id"]``.
    """

    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Invalid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise InvalidRequestError("JSON-RPC message must be an object")

    raw_id = payload.get("id")
    error_data = {"id": raw_id} if _valid_id(raw_id) else None
    invalid = InvalidRequestError if payload.get("method") is not None else InvalidResponseError

    if payload.get("jsonrpc") != JSONRPC_VERSION:
        raise invalid("Unsupported JSON-RPC version", data=error_data)

    method = payload.get("method")
    if method is not None:
        if not isinstance(method, str) or not method:
            raise InvalidRequestError("Method must be a non-empty string", data=error_data)
        params = payload.get("params")
        if params is not None and not isinstance(params, (list, dict)):
            raise InvalidRequestError("Params must be an array or an object", data=error_data)
        if "id" not in payload:
            return Notification(method=method, params=params)
        if not _valid_id(raw_id):
            raise InvalidRequestError("Request id must be a string or an integer")
        return Request(id=raw_id, method=method, params=params)

    if "id" not in payload:
        raise InvalidResponseError("Message is neither a request nor a response")
    if raw_id is not None and not _valid_id(raw_id):
        raise InvalidResponseError("Response id must be a string, an integer or null")
    if "error" in payload:
        return Response(id=raw_id, error=error_from_payload(payload["error"]))
    if "result" not in payload:
        raise InvalidResponseError("Response must carry a result or an error", data=error_data)
    return Response(id=raw_id, result=payload["result"])


__all__ = [
    "CANCEL_REQUEST_METHOD",
    "ConnectionClosedError",
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "InternalError",
    "InvalidParamsError",
    "InvalidRequestError",
    "InvalidResponseError",
    "InvalidResultError",
    "JSONRPC_VERSION",
    "METHOD_NOT_FOUND",
    "Message",
    "MethodNotFoundError",
    "NOT_AUTHENTICATED",
    "NOT_FOUND",
    "NotAuthenticatedError",
    "NotFoundError",
    "Notification",
    "PARSE_ERROR",
    "PERMISSION_DENIED",
    "Params",
    "ParseError",
    "PermissionDeniedError",
    "REQUEST_CANCELLED",
    "Request",
    "RequestCancelledError",
    "RequestId",
    "Response",
    "ResponseError",
    "TransportError",
    "decode_message",
    "encode_message",
    "error_from_payload",
]
