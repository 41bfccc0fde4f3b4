"""Header-only parser: raw RFC 822 bytes -> ParsedMessage.

Uses ``email.parser.BytesHeaderParser`` which parses *only* the headers
without walking the MIME body.  Bodies and attachments are never analysed.
"""

from __future__ import annotations

import email.parser
import email.policy
from dataclasses import dataclass, field

from .models import HeaderValue

# Trace headers are repeated by nature; keep them as lists even when a
# message carries a single hop.
_ALWAYS_MULTI = frozenset({"received"})


@dataclass
class FromField:
    """Structured From header: display text plus the parsed addresses."""

    text: str
    addresses: list[str] = field(default_factory=list)


@dataclass
class ParsedMessage:
    """Structured representation of a message's transport headers."""

    message_id: str
    subject: str
    from_field: FromField | None
    headers: dict[str, HeaderValue]


class MessageParser:
    """Stateless parser: raw RFC 822 bytes -> ParsedMessage."""

    def __init__(self) -> None:
        self._parser = email.parser.BytesHeaderParser(policy=email.policy.default)

    def parse(self, raw_bytes: bytes) -> ParsedMessage:
        if not raw_bytes or not raw_bytes.strip():
            raise ValueError("empty message")

        msg = self._parser.parsebytes(raw_bytes)
        if not msg.keys():
            raise ValueError("no headers found")

        return ParsedMessage(
            message_id=str(msg.get("Message-ID", "")).strip(),
            subject=str(msg.get("Subject", "")),
            from_field=self._parse_from(msg),
            headers=self._collect_headers(msg),
        )

    def _parse_from(self, msg: email.message.EmailMessage) -> FromField | None:
        header = msg.get("From")
        if header is None:
            return None
        addresses = [
            addr.addr_spec
            for addr in getattr(header, "addresses", ())
            if addr.addr_spec and addr.addr_spec != "<>"
        ]
        return FromField(text=str(header), addresses=addresses)

    def _collect_headers(self, msg: email.message.EmailMessage) -> dict[str, HeaderValue]:
        """Group headers by lower-cased name, preserving their order."""
        grouped: dict[str, list[str]] = {}
        for name, value in msg.items():
            grouped.setdefault(name.lower(), []).append(str(value))

        return {
            name: values if len(values) > 1 or name in _ALWAYS_MULTI else values[0]
            for name, values in grouped.items()
        }
