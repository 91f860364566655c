import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from auditorium import config
from auditorium.api.schemas.schemas import (
    ErrorDetail,
    ReservationRequest,
    ReservationResponse,
    ReservationUpdateRequest,
    SeatMapResponse,
    SeatResponse,
    SeatRowResponse,
    SeatSectionResponse,
)
from auditorium.application.reservation_service import ReservationArbiter
from auditorium.application.seat_map_service import SeatMap, SeatMapService
from auditorium.domain.entities import ReservationRecord, UserSnapshot
from auditorium.domain.exceptions import ErrorKind, NotFoundError, ReservationError
from auditorium.infrastructure.db.session import SessionLocal
from auditorium.infrastructure.repositories.reservation_repository import ReservationLedger
from auditorium.infrastructure.repositories.user_repository import UserRepository


router = APIRouter()
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parents[2] / "templates"))
logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    ErrorKind.INVALID_SEAT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SEAT_LIMIT_EXCEEDED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CUTOFF_PASSED: status.HTTP_409_CONFLICT,
    ErrorKind.SEAT_BLOCKED: status.HTTP_409_CONFLICT,
    ErrorKind.DUPLICATE_RESERVATION: status.HTTP_409_CONFLICT,
    ErrorKind.SEAT_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.CATEGORY_NOT_ALLOWED: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_AUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorKind.ACCOUNT_DISABLED: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.RETRYABLE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_arbiter() -> ReservationArbiter:
    return ReservationArbiter(SessionLocal)


def _load_user(user_id: int | None) -> UserSnapshot | None:
    # Own short session: the arbiter must not find a request transaction still open.
    if user_id is None:
        return None
    with SessionLocal() as db:
        return UserRepository(db).get_snapshot(user_id)


def get_current_user(x_user_id: int | None = Header(default=None)) -> UserSnapshot:
    """The auth layer in front of this service sets X-User-Id."""
    user = _load_user(x_user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user


def get_optional_user(x_user_id: int | None = Header(default=None)) -> UserSnapshot | None:
    return _load_user(x_user_id)


def _http_error(exc: ReservationError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST),
        detail=ErrorDetail(message=exc.message, code=exc.kind.value, seats=exc.seats).model_dump(),
    )


def _reservation_response(record: ReservationRecord) -> ReservationResponse:
    return ReservationResponse(
        id=record.id,
        show_id=record.show_id,
        user_id=record.user_id,
        seat_numbers=list(record.seat_numbers),
        created_at=record.created_at,
    )


def _seat_map_response(seat_map: SeatMap) -> SeatMapResponse:
    show = seat_map.show
    return SeatMapResponse(
        show_id=show.id,
        title=show.title,
        date=show.date,
        booking_closes_at=show.cutoff(config.BOOKING_CUTOFF_MINUTES),
        total_seats=seat_map.total,
        available_seats=seat_map.available,
        reserved_seats=seat_map.reserved,
        blocked_seats=seat_map.blocked,
        sections=[
            SeatSectionResponse(
                section=section.name,
                prefix=section.prefix,
                rows=[
                    SeatRowResponse(
                        row=row.label,
                        seats=[
                            SeatResponse(
                                seat_id=cell.seat_id,
                                number=cell.number,
                                status=cell.status.value,
                                exclusive=cell.exclusive,
                            )
                            for cell in row.seats
                        ],
                    )
                    for row in section.rows
                ],
            )
            for section in seat_map.sections
        ],
    )


@router.get("/health")
def health():
    return {"message": "Auditorium reservation engine is running"}


@router.get("/shows/{show_id}/seats", response_model=SeatMapResponse)
def get_seat_map(
    show_id: int,
    viewer: UserSnapshot | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    try:
        seat_map = SeatMapService(db).seat_map(show_id, viewer.id if viewer else None)
    except NotFoundError as exc:
        raise _http_error(exc) from exc
    return _seat_map_response(seat_map)


@router.get("/shows/{show_id}/page", response_class=HTMLResponse)
def seat_map_page(
    show_id: int,
    request: Request,
    viewer: UserSnapshot | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    try:
        seat_map = SeatMapService(db).seat_map(show_id, viewer.id if viewer else None)
    except NotFoundError as exc:
        raise _http_error(exc) from exc
    return templates.TemplateResponse(
        request,
        "seat_map.html",
        {
            "seat_map": seat_map,
            "booking_closes_at": seat_map.show.cutoff(config.BOOKING_CUTOFF_MINUTES),
        },
    )


@router.post(
    "/reservations",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_reservation(
    request: ReservationRequest,
    user: UserSnapshot = Depends(get_current_user),
    arbiter: ReservationArbiter = Depends(get_arbiter),
):
    outcome = arbiter.reserve(
        show_id=request.show_id,
        user_id=user.id,
        seat_numbers=request.seat_numbers,
    )
    if not outcome.committed:
        raise _http_error(outcome.error)
    return _reservation_response(outcome.reservation)


@router.get("/reservations", response_model=list[ReservationResponse])
def list_all_reservations(
    user: UserSnapshot = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return [
        _reservation_response(record)
        for record in ReservationLedger(db).all_reservations()
    ]


@router.get("/reservations/show/{show_id}", response_model=list[ReservationResponse])
def list_show_reservations(show_id: int, db: Session = Depends(get_db)):
    return [
        _reservation_response(record)
        for record in ReservationLedger(db).reservations_for_show(show_id)
    ]


@router.get("/reservations/user", response_model=list[ReservationResponse])
def list_my_reservations(
    user: UserSnapshot = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [
        _reservation_response(record)
        for record in ReservationLedger(db).reservations_for_user(user.id)
    ]


@router.get("/reservations/user/{user_id}", response_model=list[ReservationResponse])
def list_user_reservations(
    user_id: int,
    user: UserSnapshot = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if user.id != user_id and not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return [
        _reservation_response(record)
        for record in ReservationLedger(db).reservations_for_user(user_id)
    ]


@router.patch("/reservations/{reservation_id}", response_model=ReservationResponse)
def update_reservation(
    reservation_id: int,
    request: ReservationUpdateRequest,
    user: UserSnapshot = Depends(get_current_user),
    arbiter: ReservationArbiter = Depends(get_arbiter),
):
    outcome = arbiter.modify(
        reservation_id=reservation_id,
        seat_numbers=request.seat_numbers,
        requesting_is_admin=user.is_admin,
    )
    if not outcome.committed:
        raise _http_error(outcome.error)
    return _reservation_response(outcome.reservation)


@router.delete("/reservations/{reservation_id}", response_model=ReservationResponse)
def cancel_reservation(
    reservation_id: int,
    user: UserSnapshot = Depends(get_current_user),
    arbiter: ReservationArbiter = Depends(get_arbiter),
):
    try:
        record = arbiter.cancel(
            reservation_id=reservation_id,
            requesting_user_id=user.id,
            requesting_is_admin=user.is_admin,
        )
    except ReservationError as exc:
        raise _http_error(exc) from exc
    return _reservation_response(record)
