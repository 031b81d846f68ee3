from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from src.domain.payment_status import PaymentStatus
from src.domain.state_machine import BookingStatus


class BookingRequest(BaseModel):
    trip_id: str
    booker_user_id: str
    seats_count: int = Field(gt=0)
    total_amount: Decimal = Field(default=Decimal("0"), ge=0)
    passenger_user_ids: list[str] | None = None
    segment_ids: list[str] | None = None


class BookingUpdateRequest(BaseModel):
    booking_status: BookingStatus | None = None
    total_amount: Decimal | None = Field(default=None, ge=0)
    seats_count: int | None = Field(default=None, gt=0)


class TripInfoResponse(BaseModel):
    trip_id: str
    start_time: datetime
    end_time: datetime | None = None
    price_per_seat: Decimal
    available_seats: int
    status: str


class BookingPassengerResponse(BaseModel):
    booking_passenger_id: str
    passenger_user_id: str
    passenger_user_name: str
    seat_number: int | None = None
    check_in_status: bool


class BookingSegmentResponse(BaseModel):
    booking_segment_id: str
    segment_id: str


class BookingResponse(BaseModel):
    booking_id: str
    trip_id: str
    booker_user_id: str
    booker_user_name: str
    booking_date: datetime
    booking_status: str
    payment_status: str
    total_amount: Decimal
    seats_count: int
    trip: TripInfoResponse | None = None
    passengers: list[BookingPassengerResponse] = []
    segments: list[BookingSegmentResponse] = []


class PagedBookingResponse(BaseModel):
    items: list[BookingResponse]
    total_count: int
    page_number: int
    page_size: int


class BookingStatsResponse(BaseModel):
    total_bookings: int
    upcoming_bookings: int
    completed_bookings: int


class TripAvailabilityResponse(BaseModel):
    trip_id: str
    available_seats: int
    status: str


class CreatePaymentRequest(BaseModel):
    booking_id: str
    payment_method_id: str | None = None


class ConfirmPaymentRequest(BaseModel):
    payment_method_id: str


class PaymentResponse(BaseModel):
    payment_id: str
    booking_id: str | None = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    provider_intent_id: str | None = None
    created_at: datetime
    paid_at: datetime | None = None
    last_error: str | None = None


class CreatePaymentResponse(PaymentResponse):
    client_secret: str
    key_id: str | None = None
