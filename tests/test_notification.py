"""Tests for notification decoding."""

import pytest

from querynotify import (
    DecodeError,
    NotificationReason,
    NotificationSource,
    ProtocolError,
    decode_notification,
)
from querynotify.notification import (
    MESSAGE_BODY_FIELD,
    QN_NAMESPACE,
    encode_message_body,
)

PAYLOAD = '{"subscription": "orders", "id": "session-1"}'


def utf16_row(text: str) -> dict[str, str]:
    return {MESSAGE_BODY_FIELD: (b"\xff\xfe" + text.encode("utf-16-le")).hex()}


def envelope(message: str, source: str = "data", info: str = "insert") -> str:
    return (
        f'<qn:QueryNotification xmlns:qn="{QN_NAMESPACE}" id="0" type="change" '
        f'source="{source}" info="{info}" database_id="5" sid="0x01">'
        f"<qn:Message>{message}</qn:Message>"
        "</qn:QueryNotification>"
    )


class TestDecodeNotification:
    def test_no_rows_means_empty_queue(self) -> None:
        assert decode_notification([]) is None

    def test_decodes_backend_envelope(self) -> None:
        notification = decode_notification([utf16_row(envelope(PAYLOAD))])

        assert notification is not None
        assert notification.source == NotificationSource.DATA
        assert notification.reason == NotificationReason.INSERT
        assert notification.subscription_name == "orders"
        assert notification.correlation_id == "session-1"

    def test_accepts_raw_bytes_body(self) -> None:
        body = encode_message_body("timeout", "none", PAYLOAD)

        notification = decode_notification([{MESSAGE_BODY_FIELD: body}])

        assert notification is not None
        assert notification.source is NotificationSource.TIMEOUT
        assert notification.reason is NotificationReason.NONE

    def test_accepts_body_without_bom(self) -> None:
        row = {MESSAGE_BODY_FIELD: envelope(PAYLOAD).encode("utf-16-le")}

        notification = decode_notification([row])

        assert notification is not None
        assert notification.subscription_name == "orders"

    def test_unknown_values_kept_as_strings(self) -> None:
        row = utf16_row(envelope(PAYLOAD, source="mystery", info="whatever"))

        notification = decode_notification([row])

        assert notification is not None
        assert notification.source == "mystery"
        assert notification.reason == "whatever"
        assert not isinstance(notification.source, NotificationSource)


class TestDecodeProtocolErrors:
    def test_multiple_rows_rejected(self) -> None:
        row = utf16_row(envelope(PAYLOAD))

        with pytest.raises(ProtocolError, match="at most one"):
            decode_notification([row, row])

    def test_missing_message_body(self) -> None:
        with pytest.raises(ProtocolError, match="message body"):
            decode_notification([{"conversation_handle": "abc"}])

    def test_empty_message_body(self) -> None:
        with pytest.raises(ProtocolError, match="message body"):
            decode_notification([{MESSAGE_BODY_FIELD: ""}])


class TestDecodeErrors:
    def test_invalid_hex(self) -> None:
        with pytest.raises(DecodeError, match="hex"):
            decode_notification([{MESSAGE_BODY_FIELD: "not-hex"}])

    def test_malformed_xml(self) -> None:
        with pytest.raises(DecodeError, match="Malformed"):
            decode_notification([utf16_row("<qn:QueryNotification")])

    def test_wrong_root_element(self) -> None:
        with pytest.raises(DecodeError, match="Unexpected envelope"):
            decode_notification([utf16_row("<Other/>")])

    def test_missing_message_element(self) -> None:
        text = f'<qn:QueryNotification xmlns:qn="{QN_NAMESPACE}" source="data"/>'

        with pytest.raises(DecodeError, match="no Message"):
            decode_notification([utf16_row(text)])

    def test_invalid_json_payload(self) -> None:
        with pytest.raises(DecodeError, match="Invalid notification payload"):
            decode_notification([utf16_row(envelope("{not json"))])

    def test_payload_missing_fields(self) -> None:
        with pytest.raises(DecodeError) as exc_info:
            decode_notification([utf16_row(envelope('{"subscription": "orders"}'))])

        assert exc_info.value.__cause__ is not None

    def test_unsupported_body_type(self) -> None:
        with pytest.raises(DecodeError, match="Unsupported"):
            decode_notification([{MESSAGE_BODY_FIELD: 42}])
