from datetime import datetime

from pydantic import BaseModel, Field


class ReservationRequest(BaseModel):
    show_id: int
    seat_numbers: list[str] = Field(min_length=1)


class ReservationUpdateRequest(BaseModel):
    seat_numbers: list[str] = Field(min_length=1)


class ReservationResponse(BaseModel):
    id: int
    show_id: int
    user_id: int
    seat_numbers: list[str]
    created_at: datetime | None = None


class ErrorDetail(BaseModel):
    message: str
    code: str
    seats: list[str] = []


class SeatResponse(BaseModel):
    seat_id: str
    number: int
    status: str
    exclusive: bool


class SeatRowResponse(BaseModel):
    row: str
    seats: list[SeatResponse]


class SeatSectionResponse(BaseModel):
    section: str
    prefix: str
    rows: list[SeatRowResponse]


class SeatMapResponse(BaseModel):
    show_id: int
    title: str
    date: datetime
    booking_closes_at: datetime
    total_seats: int
    available_seats: int
    reserved_seats: int
    blocked_seats: int
    sections: list[SeatSectionResponse]
