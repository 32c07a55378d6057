"""Query notification messages and their wire decoding.

A notification arrives as a single row received from a service broker queue.
The row's ``message_body`` holds a UTF-16 XML ``QueryNotification`` envelope
whose ``source``/``info`` attributes describe what happened, and whose
``Message`` element carries the JSON payload the watcher attached when it
subscribed.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ValidationError

from querynotify.errors import DecodeError, ProtocolError

QN_NAMESPACE = "http://schemas.microsoft.com/SQL/Notifications/QueryNotification"
MESSAGE_BODY_FIELD = "message_body"

_UTF16_LE_BOM = b"\xff\xfe"

ET.register_namespace("qn", QN_NAMESPACE)


class NotificationSource(StrEnum):
    """What caused the backend to fire a notification."""

    DATA = "data"
    TIMEOUT = "timeout"
    STATEMENT = "statement"
    OBJECT = "object"
    DATABASE = "database"
    SYSTEM = "system"
    ENVIRONMENT = "environment"
    EXECUTION = "execution"
    OWNER = "owner"


class NotificationReason(StrEnum):
    """The ``info`` attribute of a notification."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    MERGE = "merge"
    DROP = "drop"
    ALTER = "alter"
    TRUNCATE = "truncate"
    RESTART = "restart"
    ERROR = "error"
    QUERY = "query"
    INVALID = "invalid"
    OPTIONS = "options"
    ISOLATION = "isolation"
    EXPIRED = "expired"
    RESOURCE = "resource"
    PREVIOUS_INVALID = "previous_invalid"
    TEMPLATE = "template"
    SET_OPTIONS = "set_options"
    NONE = "none"


DATA_CHANGE_REASONS = frozenset(
    {NotificationReason.INSERT, NotificationReason.UPDATE, NotificationReason.DELETE}
)


class NotificationMessage(BaseModel):
    """JSON payload attached to every subscription of a watch session."""

    subscription: str
    id: str


@dataclass(frozen=True)
class Notification:
    """A decoded query notification.

    ``source`` and ``reason`` are enum members when the value is known,
    otherwise the raw attribute string.
    """

    source: NotificationSource | str
    reason: NotificationReason | str
    subscription_name: str
    correlation_id: str


def decode_notification(rows: Sequence[Mapping[str, Any]]) -> Notification | None:
    """Decode the result of a RECEIVE statement.

    Returns None when the queue had nothing to deliver.

    Raises:
        ProtocolError: More than one row, or a row without a message body.
        DecodeError: The message body is not a valid notification.
    """
    if len(rows) > 1:
        msg = f"Expected at most one queue row, got {len(rows)}"
        raise ProtocolError(msg)
    if not rows:
        return None

    body = rows[0].get(MESSAGE_BODY_FIELD)
    if not body:
        msg = "Result does not contain a message body"
        raise ProtocolError(msg)

    root = _parse_envelope(_body_text(body))
    message = _parse_message(root)
    return Notification(
        source=_coerce(NotificationSource, root.get("source", "")),
        reason=_coerce(NotificationReason, root.get("info", "")),
        subscription_name=message.subscription,
        correlation_id=message.id,
    )


def encode_message_body(
    source: NotificationSource | str,
    reason: NotificationReason | str,
    message: str,
) -> bytes:
    """Build a message body the way the backend delivers one."""
    root = ET.Element(
        f"{{{QN_NAMESPACE}}}QueryNotification",
        {"type": "change", "source": str(source), "info": str(reason)},
    )
    ET.SubElement(root, f"{{{QN_NAMESPACE}}}Message").text = message
    text = ET.tostring(root, encoding="unicode")
    return _UTF16_LE_BOM + text.encode("utf-16-le")


def _body_text(body: Any) -> str:
    """Turn a hex string or raw bytes into the envelope text."""
    if isinstance(body, str):
        try:
            raw = bytes.fromhex(body)
        except ValueError as e:
            msg = "Message body is not valid hex"
            raise DecodeError(msg) from e
    elif isinstance(body, bytes | bytearray | memoryview):
        raw = bytes(body)
    else:
        msg = f"Unsupported message body type: {type(body).__name__}"
        raise DecodeError(msg)

    raw = raw.removeprefix(_UTF16_LE_BOM)
    try:
        return raw.decode("utf-16-le")
    except UnicodeDecodeError as e:
        msg = "Message body is not UTF-16 text"
        raise DecodeError(msg) from e


def _parse_envelope(text: str) -> ET.Element:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        msg = f"Malformed notification envelope: {e}"
        raise DecodeError(msg) from e

    if _local_name(root.tag) != "QueryNotification":
        msg = f"Unexpected envelope element: {root.tag}"
        raise DecodeError(msg)
    return root


def _parse_message(root: ET.Element) -> NotificationMessage:
    element = next(
        (child for child in root if _local_name(child.tag) == "Message"), None
    )
    if element is None or not element.text:
        msg = "Notification envelope has no Message payload"
        raise DecodeError(msg)

    try:
        return NotificationMessage.model_validate_json(element.text)
    except ValidationError as e:
        msg = f"Invalid notification payload: {element.text!r}"
        raise DecodeError(msg) from e


def _local_name(tag: str) -> str:
    return tag.rpartition("}")[2]


def _coerce(enum_type: type[StrEnum], value: str) -> Any:
    try:
        return enum_type(value)
    except ValueError:
        return value
