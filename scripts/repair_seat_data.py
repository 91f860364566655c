"""
Normalize persisted seat data.

Rewrites every show's blocked seats and every reservation's seat set to the
canonical JSON encoding, repairing the historical Front/Back prefix swap on
the way. Safe to run repeatedly.
"""

import argparse
import logging

from sqlalchemy import select

from auditorium.domain.seat_codec import decode_seats, encode_seats
from auditorium.domain.seat_layout import DEFAULT_LAYOUT, SeatLayout, repair_swapped_prefix
from auditorium.infrastructure.db.models import Reservation, Show
from auditorium.infrastructure.db.session import SessionLocal

logger = logging.getLogger(__name__)


def repair_seat_field(raw: str | None, layout: SeatLayout) -> str:
    return encode_seats(repair_swapped_prefix(seat, layout) for seat in decode_seats(raw))


def repair(db, dry_run: bool = False) -> int:
    changed = 0

    for show in db.execute(select(Show)).scalars().all():
        try:
            layout = SeatLayout.from_json(show.seat_layout) if show.seat_layout else DEFAULT_LAYOUT
        except (ValueError, KeyError) as exc:
            logger.error("Skipping show %s: unreadable seat layout (%s)", show.id, exc)
            continue

        repaired = repair_seat_field(show.blocked_seats, layout)
        if repaired != show.blocked_seats:
            logger.info("Show %s blocked seats: %r -> %r", show.id, show.blocked_seats, repaired)
            show.blocked_seats = repaired
            changed += 1

        reservations = db.execute(
            select(Reservation).where(Reservation.show_id == show.id)
        ).scalars().all()
        for reservation in reservations:
            repaired = repair_seat_field(reservation.seat_numbers, layout)
            if repaired != reservation.seat_numbers:
                logger.info(
                    "Reservation %s seats: %r -> %r",
                    reservation.id,
                    reservation.seat_numbers,
                    repaired,
                )
                reservation.seat_numbers = repaired
                changed += 1

    if dry_run:
        db.rollback()
    else:
        db.commit()
    return changed


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="report changes without saving")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    db = SessionLocal()
    try:
        changed = repair(db, dry_run=args.dry_run)
        print(f"Seat data repair complete: {changed} record(s) {'would change' if args.dry_run else 'updated'}.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
