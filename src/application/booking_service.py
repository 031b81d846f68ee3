from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
import logging

from sqlalchemy.orm import Session

from src.config import Settings, get_settings
from src.domain.exceptions import NotFoundError, ValidationError
from src.domain.fare import compute_fare, round_money
from src.domain.state_machine import (
    BookingPaymentStatus,
    BookingStateMachine,
    BookingStatus,
)
from src.infrastructure.db.models import Booking
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.seat_repository import SeatRepository
from src.infrastructure.repositories.segment_repository import SegmentRepository
from src.infrastructure.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


@dataclass
class BookingPatch:
    """
    Partial update; None means leave the field alone.
    Payment state is owned by PaymentService and cannot be patched.
    """

    booking_status: BookingStatus | None = None
    total_amount: Decimal | None = None
    seats_count: int | None = None


@dataclass(frozen=True)
class BookingStats:
    total_bookings: int
    upcoming_bookings: int
    completed_bookings: int


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BookingService:
    """Application service coordinating the booking lifecycle and its seat side effects."""

    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()
        self.booking_repository = BookingRepository(db)
        self.seat_repository = SeatRepository(db)
        self.segment_repository = SegmentRepository(db)
        self.user_repository = UserRepository(db)

    # -------------------- QUERY --------------------

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_with_details(booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        return booking

    def list_bookings(self) -> list[Booking]:
        return self.booking_repository.list_with_details()

    def list_bookings_for_user(self, user_id: str) -> list[Booking]:
        return self.booking_repository.list_by_user(user_id)

    def list_bookings_for_trip(self, trip_id: str) -> list[Booking]:
        return self.booking_repository.list_by_trip(trip_id)

    def list_bookings_paged(
        self,
        search: str | None,
        page_number: int,
        page_size: int,
    ) -> tuple[list[Booking], int]:
        if page_number < 1 or page_size < 1:
            raise ValidationError("page", "Page number and page size must be at least 1.")
        return self.booking_repository.list_paged(search, page_number, page_size)

    def booking_stats_for_user(self, user_id: str, now: datetime | None = None) -> BookingStats:
        now = now or datetime.now(timezone.utc)
        active = [
            booking
            for booking in self.booking_repository.list_by_user(user_id)
            if booking.trip is not None and booking.booking_status != BookingStatus.CANCELLED
        ]
        upcoming = sum(1 for booking in active if _as_utc(booking.trip.start_time) > now)
        return BookingStats(
            total_bookings=len(active),
            upcoming_bookings=upcoming,
            completed_bookings=len(active) - upcoming,
        )

    # -------------------- CREATE --------------------

    def create_booking(
        self,
        trip_id: str,
        booker_user_id: str,
        seats_count: int,
        segment_ids: list[str] | None = None,
        passenger_user_ids: list[str] | None = None,
        total_amount: Decimal = Decimal("0"),
    ) -> Booking:
        trip = self.seat_repository.get_trip(trip_id)
        if not trip:
            raise NotFoundError("Trip", trip_id)

        if not self.user_repository.get_by_id(booker_user_id):
            raise NotFoundError("User", booker_user_id)

        if seats_count < 1:
            raise ValidationError("seats_count", "SeatsCount must be at least 1.")

        passenger_ids = list(dict.fromkeys(passenger_user_ids or []))
        if booker_user_id not in passenger_ids:
            passenger_ids.append(booker_user_id)

        known_users = self.user_repository.existing_ids(passenger_ids)
        valid_passenger_ids = [pid for pid in passenger_ids if pid in known_users]
        self._check_unresolved("passenger_user_ids", passenger_ids, valid_passenger_ids)

        if seats_count < len(valid_passenger_ids):
            raise ValidationError(
                "seats_count",
                "SeatsCount cannot be less than number of registered passengers.",
            )

        requested_segments = list(dict.fromkeys(segment_ids or []))
        segments = self.segment_repository.list_by_ids(requested_segments)
        self._check_unresolved(
            "segment_ids",
            requested_segments,
            [segment.id for segment in segments],
        )

        if segments:
            fare = compute_fare(segments, seats_count, self.settings.fare_rate_per_km)
        else:
            fare = round_money(Decimal(total_amount))
            if fare < 0:
                raise ValidationError("total_amount", "TotalAmount cannot be negative.")

        self.seat_repository.reserve(trip_id, seats_count)

        booking = Booking(
            trip_id=trip_id,
            booker_user_id=booker_user_id,
            seats_count=seats_count,
            total_amount=fare,
            booking_status=BookingStatus.PENDING,
            payment_status=BookingPaymentStatus.PENDING,
        )
        self.booking_repository.add(booking)

        for pid in valid_passenger_ids:
            self.booking_repository.add_passenger(booking, pid)
        for segment in segments:
            self.booking_repository.add_segment(booking, segment.id)

        self.db.flush()
        logger.info(
            "Booking %s created on trip %s for %s seat(s), total %s",
            booking.id,
            trip_id,
            seats_count,
            fare,
        )
        return booking

    # -------------------- UPDATE --------------------

    def update_booking(self, booking_id: str, patch: BookingPatch) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)

        if patch.total_amount is not None and patch.total_amount < 0:
            raise ValidationError("total_amount", "TotalAmount cannot be negative.")

        if patch.seats_count is not None:
            if patch.seats_count < 1:
                raise ValidationError("seats_count", "SeatsCount must be at least 1.")
            if booking.booking_status == BookingStatus.CANCELLED:
                raise ValidationError("seats_count", "Cannot change seats on a cancelled booking.")

        status_change = (
            patch.booking_status is not None
            and patch.booking_status != booking.booking_status
        )
        if status_change:
            BookingStateMachine.validate_transition(booking.booking_status, patch.booking_status)
            if patch.booking_status == BookingStatus.CONFIRMED:
                raise ValidationError(
                    "booking_status",
                    "A booking is confirmed only by a successful payment.",
                )

        if patch.seats_count is not None:
            delta = patch.seats_count - booking.seats_count
            if delta:
                self.seat_repository.adjust(booking.trip_id, -delta)
            booking.seats_count = patch.seats_count

        if patch.total_amount is not None:
            booking.total_amount = round_money(patch.total_amount)

        # Cancelled is the only status a patch can reach.
        if status_change:
            self._cancel(booking)

        self.db.flush()
        return booking

    # -------------------- CANCEL / DELETE --------------------

    def cancel_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)

        if booking.booking_status == BookingStatus.CANCELLED:
            logger.info("Booking %s already cancelled; seats not credited again.", booking_id)
            return booking

        BookingStateMachine.validate_transition(booking.booking_status, BookingStatus.CANCELLED)
        self._cancel(booking)
        self.db.flush()
        return booking

    def delete_booking(self, booking_id: str) -> None:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)

        # Cancelled bookings already gave their seats back.
        if booking.booking_status != BookingStatus.CANCELLED:
            self.seat_repository.release(booking.trip_id, booking.seats_count)

        self.booking_repository.delete(booking)
        self.db.flush()
        logger.info("Booking %s deleted", booking_id)

    # -------------------- HELPERS --------------------

    def _cancel(self, booking: Booking) -> None:
        booking.booking_status = BookingStatus.CANCELLED
        self.seat_repository.release(booking.trip_id, booking.seats_count)
        logger.info(
            "Booking %s cancelled, %s seat(s) returned to trip %s",
            booking.id,
            booking.seats_count,
            booking.trip_id,
        )

    def _check_unresolved(self, field: str, requested: list[str], resolved: list[str]) -> None:
        missing = [item for item in requested if item not in set(resolved)]
        if not missing:
            return
        if self.settings.strict_booking_references:
            raise ValidationError(field, f"Unknown ids: {', '.join(missing)}")
        logger.warning("Skipping unknown %s on booking request: %s", field, missing)
