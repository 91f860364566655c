# auditorium/domain/seat_codec.py

"""
Persisted encoding of seat collections.

Seat sets are written as a JSON array string. Older rows were sometimes
written as a comma-separated string, so reads accept both.
"""

import json
import logging
from typing import Any, Iterable

logger = logging.getLogger(__name__)


def normalize_seat_numbers(seats: Iterable[Any]) -> list[str]:
    """Strip, drop empty tokens and de-duplicate, keeping first occurrence order."""
    seen: set[str] = set()
    result: list[str] = []
    for seat in seats:
        if seat is None:
            continue
        token = str(seat).strip().strip('"').strip("'").strip()
        if not token or token in seen:
            continue
        seen.add(token)
        result.append(token)
    return result


def encode_seats(seats: Iterable[Any]) -> str:
    return json.dumps(normalize_seat_numbers(seats))


def encode_seats_legacy(seats: Iterable[Any]) -> str:
    """Comma-separated form found in older records. Never used for writes."""
    return ",".join(normalize_seat_numbers(seats))


def _split_commas(raw: str) -> list[str]:
    return normalize_seat_numbers(raw.strip().lstrip("[").rstrip("]").split(","))


def decode_seats(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set, frozenset)):
        return normalize_seat_numbers(raw)

    text = str(raw).strip()
    if not text:
        return []

    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Malformed seat array %r, falling back to comma parsing.", text)
            return _split_commas(text)
        if isinstance(parsed, list):
            return normalize_seat_numbers(parsed)
        return normalize_seat_numbers([parsed])

    return _split_commas(text)
