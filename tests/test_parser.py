"""Tests for espwatch.parser."""

from __future__ import annotations

import pytest

from espwatch.parser import MessageParser

from tests.conftest import SAMPLE_RECEIVED, _build_plain_email


@pytest.fixture
def parser() -> MessageParser:
    return MessageParser()


class TestMessageParser:
    def test_parse_plain_email(self, parser: MessageParser, plain_eml_bytes: bytes):
        result = parser.parse(plain_eml_bytes)
        assert result.message_id == "<test-001@mail.sendgrid.net>"
        assert result.subject == "EMAIL_ANALYSIS_TEST"
        assert result.from_field is not None
        assert result.from_field.text == "Alerts <alerts@mail.sendgrid.net>"
        assert result.from_field.addresses == ["alerts@mail.sendgrid.net"]

    def test_header_names_are_lower_cased(self, parser: MessageParser, plain_eml_bytes: bytes):
        result = parser.parse(plain_eml_bytes)
        assert "subject" in result.headers
        assert "from" in result.headers
        assert "Subject" not in result.headers

    def test_received_kept_in_server_order(self, parser: MessageParser, plain_eml_bytes: bytes):
        received = parser.parse(plain_eml_bytes).headers["received"]
        assert isinstance(received, list)
        assert len(received) == len(SAMPLE_RECEIVED)
        assert received[0].startswith("by mx.google.com")
        assert received[-1].startswith("from [10.0.0.5]")

    def test_single_received_is_still_a_list(self, parser: MessageParser):
        raw = _build_plain_email(received=["from a.example by b.example; x"])
        assert parser.parse(raw).headers["received"] == ["from a.example by b.example; x"]

    def test_no_received_headers(self, parser: MessageParser):
        raw = _build_plain_email(received=[])
        assert "received" not in parser.parse(raw).headers

    def test_single_valued_headers_are_strings(self, parser: MessageParser, plain_eml_bytes: bytes):
        headers = parser.parse(plain_eml_bytes).headers
        assert headers["subject"] == "EMAIL_ANALYSIS_TEST"
        assert headers["to"] == "watcher@test.com"

    def test_repeated_header_becomes_list(self, parser: MessageParser):
        raw = (
            b"Message-ID: <r@example.com>\r\n"
            b"X-Tag: one\r\n"
            b"X-Tag: two\r\n"
            b"\r\n"
            b"body\r\n"
        )
        assert parser.parse(raw).headers["x-tag"] == ["one", "two"]


class TestMessageParserEdgeCases:
    def test_no_message_id(self, parser: MessageParser):
        raw = _build_plain_email(message_id=None)
        assert parser.parse(raw).message_id == ""

    def test_no_from(self, parser: MessageParser):
        raw = _build_plain_email(from_addr="")
        result = parser.parse(raw)
        assert result.from_field is None

    def test_from_without_address(self, parser: MessageParser):
        raw = _build_plain_email(from_addr="Undisclosed recipients:;")
        result = parser.parse(raw)
        assert result.from_field is not None
        assert result.from_field.addresses == []

    def test_missing_subject(self, parser: MessageParser):
        raw = b"Message-ID: <s@example.com>\r\nFrom: a@b.com\r\n\r\nbody\r\n"
        assert parser.parse(raw).subject == ""

    def test_empty_bytes_rejected(self, parser: MessageParser):
        with pytest.raises(ValueError):
            parser.parse(b"")

    def test_whitespace_only_rejected(self, parser: MessageParser):
        with pytest.raises(ValueError):
            parser.parse(b"  \r\n\r\n")
