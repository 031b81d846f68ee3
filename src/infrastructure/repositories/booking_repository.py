# src/infrastructure/repositories/booking_repository.py

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import Select, String, cast, func, or_, select

from src.infrastructure.db.models import (
    Booking,
    BookingPassenger,
    BookingSegment,
    Trip,
    User,
)


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_with_details(self, booking_id: str) -> Booking | None:
        stmt = self._with_details().where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        return booking

    def delete(self, booking: Booking) -> None:
        self.db.delete(booking)

    def add_passenger(self, booking: Booking, passenger_user_id: str) -> BookingPassenger:
        passenger = BookingPassenger(passenger_user_id=passenger_user_id)
        booking.passengers.append(passenger)
        return passenger

    def add_segment(self, booking: Booking, segment_id: str) -> BookingSegment:
        booking_segment = BookingSegment(segment_id=segment_id)
        booking.segments.append(booking_segment)
        return booking_segment

    def list_with_details(self) -> list[Booking]:
        stmt = self._with_details().order_by(Booking.booking_date)
        return list(self.db.execute(stmt).scalars().all())

    def list_by_user(self, user_id: str) -> list[Booking]:
        stmt = (
            self._with_details()
            .where(Booking.booker_user_id == user_id)
            .order_by(Booking.booking_date)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_by_trip(self, trip_id: str) -> list[Booking]:
        stmt = (
            self._with_details()
            .where(Booking.trip_id == trip_id)
            .order_by(Booking.booking_date)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_paged(
        self,
        search: str | None,
        page_number: int,
        page_size: int,
    ) -> tuple[list[Booking], int]:
        stmt = self._with_details()
        count_stmt = select(func.count()).select_from(Booking)

        if search:
            pattern = f"%{search.lower()}%"
            matching_users = select(User.id).where(func.lower(User.user_name).like(pattern))
            matching_trips = select(Trip.id).where(func.lower(cast(Trip.status, String)).like(pattern))
            criteria = or_(
                Booking.booker_user_id.in_(matching_users),
                Booking.trip_id.in_(matching_trips),
            )
            stmt = stmt.where(criteria)
            count_stmt = count_stmt.where(criteria)

        total = self.db.execute(count_stmt).scalar_one()
        stmt = (
            stmt.order_by(Booking.booking_date)
            .offset((page_number - 1) * page_size)
            .limit(page_size)
        )
        return list(self.db.execute(stmt).scalars().all()), total

    @staticmethod
    def _with_details() -> Select:
        return select(Booking).options(
            selectinload(Booking.trip),
            selectinload(Booking.booker),
            selectinload(Booking.passengers).selectinload(BookingPassenger.passenger),
            selectinload(Booking.segments),
            selectinload(Booking.payments),
        )
