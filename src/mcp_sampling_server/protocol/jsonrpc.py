"""
JSON-RPC 2.0 message helpers.

Messages travel as plain dicts; these helpers classify, validate and build them.
"""

from typing import Any, Union

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# Implementation-defined server errors
SESSION_ERROR = -32000
CONNECTION_CLOSED = -32001

RequestId = Union[str, int]
JSONRPCMessage = dict[str, Any]


class JSONRPCError(Exception):
    """An error that maps onto a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_response(self, request_id: RequestId | None) -> JSONRPCMessage:
        return make_error(request_id, self.code, self.message, self.data)


def is_request(message: JSONRPCMessage) -> bool:
    return "method" in message and "id" in message


def is_notification(message: JSONRPCMessage) -> bool:
    return "method" in message and "id" not in message


def is_response(message: JSONRPCMessage) -> bool:
    return "method" not in message and "id" in message and ("result" in message or "error" in message)


def is_initialize_request(message: Any) -> bool:
    return isinstance(message, dict) and is_request(message) and message.get("method") == "initialize"


def validate_message(message: Any) -> JSONRPCMessage:
    """Check the JSON-RPC envelope of an incoming message."""
    if not isinstance(message, dict):
        raise JSONRPCError(INVALID_REQUEST, "Invalid Request: message must be an object")
    if message.get("jsonrpc") != JSONRPC_VERSION:
        raise JSONRPCError(INVALID_REQUEST, "Invalid Request: jsonrpc must be '2.0'")
    if "id" in message and not isinstance(message["id"], (str, int)):
        raise JSONRPCError(INVALID_REQUEST, "Invalid Request: id must be a string or integer")
    if "method" in message:
        if not isinstance(message["method"], str):
            raise JSONRPCError(INVALID_REQUEST, "Invalid Request: method must be a string")
    elif not is_response(message):
        raise JSONRPCError(INVALID_REQUEST, "Invalid Request: not a request, notification or response")
    return message


def make_request(request_id: RequestId, method: str, params: dict[str, Any] | None = None) -> JSONRPCMessage:
    message: JSONRPCMessage = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def make_notification(method: str, params: dict[str, Any] | None = None) -> JSONRPCMessage:
    message: JSONRPCMessage = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    return message


def make_response(request_id: RequestId, result: dict[str, Any]) -> JSONRPCMessage:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def make_error(
    request_id: RequestId | None,
    code: int,
    message: str,
    data: Any = None,
) -> JSONRPCMessage:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "error": error, "id": request_id}


def first_request_id(messages: list[Any]) -> RequestId | None:
    """Id to echo in an HTTP-level error body."""
    for message in messages:
        if isinstance(message, dict) and isinstance(message.get("id"), (str, int)):
            return message["id"]
    return None
