"""Header analysis: receiving-chain reconstruction and sender-domain
classification.

Both functions are pure; they only look at already-parsed header data so
they can be re-run over stored ``rawHeaders`` if the rules change.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from .models import EspAnalysis
from .parser import FromField

UNKNOWN_ESP = "unknown"

_FROM_HOST = re.compile(r"from\s+([^\s;]+)", re.IGNORECASE)
_BY_HOST = re.compile(r"by\s+([^\s;]+)", re.IGNORECASE)
_DOMAIN = re.compile(r"@([a-zA-Z0-9.-]+)")


def extract_receiving_chain(headers: Mapping[str, Any]) -> list[str]:
    """Return relay hostnames from the ``received`` headers, oldest hop first.

    Servers prepend ``Received`` headers, so the list is newest-first; it is
    walked in reverse.  For each hop the host after ``from`` wins over the
    host after ``by``.  Square brackets (address literals) are stripped and
    a host is only kept the first time it is seen.
    """
    received = headers.get("received")
    if not isinstance(received, list):
        return []

    chain: list[str] = []
    for entry in reversed(received):
        host = _hop_host(str(entry))
        if host and host not in chain:
            chain.append(host)
    return chain


def _hop_host(entry: str) -> str | None:
    match = _FROM_HOST.search(entry) or _BY_HOST.search(entry)
    if match is None:
        return None
    return match.group(1).replace("[", "").replace("]", "") or None


def detect_esp(from_field: FromField | str | None) -> EspAnalysis:
    """Classify the sending provider by the domain of the first From address.

    This is a heuristic on the sending domain, not a lookup against known
    provider brands.
    """
    address = _first_address(from_field)
    match = _DOMAIN.search(address)
    if match:
        return EspAnalysis(type=match.group(1), details=address)
    return EspAnalysis(type=UNKNOWN_ESP, details=address)


def _first_address(from_field: FromField | str | None) -> str:
    if from_field is None:
        return ""
    if isinstance(from_field, str):
        return from_field.strip()
    return from_field.addresses[0] if from_field.addresses else ""
