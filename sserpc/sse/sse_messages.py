"""
JSON-RPC 2.0 message schema.

Validation produces one of four explicit message types. Anything that does
not match exactly one of them is rejected; nothing is coerced.
"""

import json
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    StrictFloat,
    StrictInt,
    StrictStr,
    Tag,
    TypeAdapter,
    ValidationError,
)

from .sse_base import InvalidMessageError, MessageParseError


JSONRPC_VERSION = "2.0"

RequestId = Union[StrictStr, StrictInt, StrictFloat]
Params = Union[Dict[str, Any], List[Any]]


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ClassVar[str]

    jsonrpc: Literal["2.0"]


class JSONRPCRequest(_Envelope):
    """A request that expects a response."""

    kind: ClassVar[str] = "request"

    id: RequestId
    method: StrictStr
    params: Optional[Params] = None


class JSONRPCNotification(_Envelope):
    """A request that does not expect a response."""

    kind: ClassVar[str] = "notification"

    method: StrictStr
    params: Optional[Params] = None


class JSONRPCResponse(_Envelope):
    """A successful response to a request."""

    kind: ClassVar[str] = "response"

    id: RequestId
    result: Any


class ErrorObject(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    code: StrictInt
    message: StrictStr
    data: Any = None


class JSONRPCErrorResponse(_Envelope):
    """A response that reports a failed request."""

    kind: ClassVar[str] = "error"

    id: RequestId
    error: ErrorObject


def _message_kind(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        if "method" in value:
            return "request" if "id" in value else "notification"
        if "error" in value:
            return "error"
        if "result" in value:
            return "response"
        return None
    return getattr(value, "kind", None)


JSONRPCMessage = Annotated[
    Union[
        Annotated[JSONRPCRequest, Tag("request")],
        Annotated[JSONRPCNotification, Tag("notification")],
        Annotated[JSONRPCResponse, Tag("response")],
        Annotated[JSONRPCErrorResponse, Tag("error")],
    ],
    Discriminator(_message_kind),
]

_message_adapter = TypeAdapter(JSONRPCMessage)

MessageLike = Union[
    JSONRPCRequest, JSONRPCNotification, JSONRPCResponse, JSONRPCErrorResponse, Dict[str, Any]
]


def parse_message(raw: Any) -> JSONRPCMessage:
    """
    Validate a parsed JSON value as a JSON-RPC message.

    Args:
        raw: Decoded JSON value

    Returns:
        The matching message model

    Raises:
        InvalidMessageError: If the value is not exactly one valid message shape
    """
    try:
        return _message_adapter.validate_python(raw)
    except ValidationError as e:
        raise InvalidMessageError(f"Invalid JSON-RPC message: {e}", data=e.errors()) from e


def parse_message_json(text: Union[str, bytes]) -> JSONRPCMessage:
    """
    Decode JSON text and validate it as a JSON-RPC message.

    Raises:
        MessageParseError: If the text is not valid JSON
        InvalidMessageError: If the value is not a valid message
    """
    try:
        raw = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageParseError(f"Parse error: {e}") from e
    return parse_message(raw)


def dump_message(message: MessageLike) -> Dict[str, Any]:
    """Return the wire form of a message, leaving out fields never set."""
    if isinstance(message, dict):
        message = parse_message(message)
    return message.model_dump(mode="json", exclude_unset=True)


def serialize_message(message: MessageLike) -> str:
    """Serialize a message to compact JSON text."""
    return json.dumps(dump_message(message), ensure_ascii=False, separators=(",", ":"))


# Export symbols
__all__ = [
    "JSONRPC_VERSION",
    "RequestId",
    "JSONRPCRequest",
    "JSONRPCNotification",
    "JSONRPCResponse",
    "JSONRPCErrorResponse",
    "ErrorObject",
    "JSONRPCMessage",
    "MessageLike",
    "parse_message",
    "parse_message_json",
    "dump_message",
    "serialize_message",
]
