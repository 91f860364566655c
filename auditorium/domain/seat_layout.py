# auditorium/domain/seat_layout.py

"""
Static seat map of the auditorium.

A seat identifier is ``{section prefix}{row label}{seat number}``, e.g.
``FA3`` (Front, row A, seat 3), ``RN12`` (Back, row N, seat 12) or
``PR112`` (Plastic, row R1, seat 12). The prefix table below is the only
place that maps sections to prefixes; every parser in the project goes
through :func:`parse_seat_id`.
"""

import json
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

SECTION_PREFIXES: dict[str, str] = {
    "Front": "F",
    "Back": "R",
    "Balcony": "B",
    "Plastic": "P",
}


@dataclass(frozen=True)
class Row:
    label: str
    seats: tuple[int, ...]

    @classmethod
    def span(
        cls,
        label: str,
        first: int,
        last: int,
        excluded: Iterable[int] = (),
    ) -> "Row":
        gaps = set(excluded)
        return cls(label, tuple(n for n in range(first, last + 1) if n not in gaps))

    def has_seat(self, number: int) -> bool:
        return number in self.seats


@dataclass(frozen=True)
class Section:
    name: str
    prefix: str
    rows: tuple[Row, ...]

    def find_row(self, label: str) -> Row | None:
        for row in self.rows:
            if row.label == label:
                return row
        return None


@dataclass(frozen=True)
class SeatRef:
    prefix: str
    row: str
    number: int

    @property
    def seat_id(self) -> str:
        return f"{self.prefix}{self.row}{self.number}"


@dataclass(frozen=True)
class SeatLayout:
    sections: tuple[Section, ...]

    def section_for_prefix(self, prefix: str) -> Section | None:
        for section in self.sections:
            if section.prefix == prefix:
                return section
        return None

    def to_data(self) -> list[dict[str, Any]]:
        return [
            {
                "section": section.name,
                "prefix": section.prefix,
                "rows": [
                    {"row": row.label, "seats": list(row.seats)}
                    for row in section.rows
                ],
            }
            for section in self.sections
        ]

    def to_json(self) -> str:
        return json.dumps(self.to_data())

    @classmethod
    def from_data(cls, data: list[dict[str, Any]]) -> "SeatLayout":
        """
        Build a layout from its JSON form.

        Rows are either ``{"row", "seats": [...]}`` or
        ``{"row", "first", "last", "excluded"}``. Sections without an
        explicit ``prefix`` take it from SECTION_PREFIXES.
        """
        sections = []
        for entry in data:
            name = entry["section"]
            prefix = entry.get("prefix") or SECTION_PREFIXES.get(name)
            if not prefix:
                raise ValueError(f"No seat prefix known for section {name!r}")

            rows = []
            for row_entry in entry.get("rows", []):
                label = str(row_entry["row"])
                if "seats" in row_entry:
                    numbers = sorted({int(n) for n in row_entry["seats"]})
                    excluded = set(row_entry.get("excluded", []))
                    rows.append(Row(label, tuple(n for n in numbers if n not in excluded)))
                else:
                    rows.append(
                        Row.span(
                            label,
                            int(row_entry["first"]),
                            int(row_entry["last"]),
                            row_entry.get("excluded", []),
                        )
                    )
            sections.append(Section(name, prefix, tuple(rows)))

        prefixes = [section.prefix for section in sections]
        if len(prefixes) != len(set(prefixes)):
            raise ValueError("Seat layout declares the same prefix twice")
        return cls(tuple(sections))

    @classmethod
    def from_json(cls, raw: str) -> "SeatLayout":
        return cls.from_data(json.loads(raw))


DEFAULT_LAYOUT = SeatLayout(
    (
        Section(
            "Balcony",
            "B",
            tuple(Row.span(label, 1, 9, excluded=[8]) for label in ("P", "O")),
        ),
        Section(
            "Back",
            "R",
            (Row.span("N", 1, 16, excluded=range(5, 9)),)  # server room
            + tuple(Row.span(label, 1, 16) for label in ("M", "L", "K", "J", "I", "H", "G")),
        ),
        Section(
            "Front",
            "F",
            tuple(Row.span(label, 1, 18) for label in ("F", "E", "D", "C", "B", "A")),
        ),
        Section(
            "Plastic",
            "P",
            tuple(Row.span(label, 1, 18) for label in ("R1", "R2", "R3")),
        ),
    )
)


def _parse_number(raw: str) -> int | None:
    if not raw.isdigit() or raw.startswith("0"):
        return None
    return int(raw)


def parse_seat_id(seat_id: str, layout: SeatLayout = DEFAULT_LAYOUT) -> SeatRef | None:
    """
    Split a seat identifier into prefix, row and number.

    The row is resolved against the section's declared rows, longest
    label first, so ``PR112`` reads as row ``R1`` seat 12. Returns None
    when the token does not name a row of this layout; the number is not
    checked against the row.
    """
    if not isinstance(seat_id, str) or len(seat_id) < 3:
        return None

    section = layout.section_for_prefix(seat_id[0])
    if section is None:
        return None

    rest = seat_id[1:]
    for row in sorted(section.rows, key=lambda r: len(r.label), reverse=True):
        if not rest.startswith(row.label):
            continue
        number = _parse_number(rest[len(row.label):])
        if number is not None:
            return SeatRef(section.prefix, row.label, number)
    return None


def is_valid_seat(layout: SeatLayout, seat_id: str) -> bool:
    ref = parse_seat_id(seat_id, layout)
    if ref is None:
        return False
    row = layout.section_for_prefix(ref.prefix).find_row(ref.row)
    return row.has_seat(ref.number)


def total_seats(layout: SeatLayout) -> int:
    return sum(len(row.seats) for section in layout.sections for row in section.rows)


def row_of(seat_id: str, layout: SeatLayout = DEFAULT_LAYOUT) -> str | None:
    ref = parse_seat_id(seat_id, layout)
    return ref.row if ref else None


_SWAPPED_PREFIXES = {"F": "R", "R": "F"}


def repair_swapped_prefix(seat_id: str, layout: SeatLayout = DEFAULT_LAYOUT) -> str:
    """
    Undo the old Front/Back prefix swap (``FG3`` -> ``RG3``, ``RA5`` -> ``FA5``).

    Only rewrites tokens that are invalid as written and valid with the
    other prefix; anything else is returned unchanged.
    """
    if not isinstance(seat_id, str) or is_valid_seat(layout, seat_id):
        return seat_id
    swapped = _SWAPPED_PREFIXES.get(seat_id[:1])
    if swapped and is_valid_seat(layout, swapped + seat_id[1:]):
        return swapped + seat_id[1:]
    return seat_id


def iter_seat_ids(layout: SeatLayout) -> Iterator[tuple[Section, Row, str]]:
    for section in layout.sections:
        for row in section.rows:
            for number in row.seats:
                yield section, row, f"{section.prefix}{row.label}{number}"
