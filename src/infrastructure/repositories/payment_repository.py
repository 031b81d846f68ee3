# src/infrastructure/repositories/payment_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.domain.payment_status import PaymentStatus
from src.infrastructure.db.models import Booking, BookingPassenger, Payment


class PaymentRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, payment_id: str) -> Payment | None:
        return self.db.get(Payment, payment_id)

    def lock_payment(self, payment_id: str) -> Payment | None:
        """
        SELECT ... FOR UPDATE
        Serializes a sweep refresh against a request-driven refresh or confirm.
        """
        stmt = (
            select(Payment)
            .where(Payment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, payment: Payment) -> Payment:
        self.db.add(payment)
        return payment

    def list_pending_older_than(self, cutoff: datetime) -> list[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.status == PaymentStatus.PENDING)
            .where(Payment.created_at <= cutoff)
            .order_by(Payment.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_by_booking(self, booking_id: str) -> list[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.booking_id == booking_id)
            .order_by(Payment.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_by_passenger(self, user_id: str) -> list[Payment]:
        """Payments on bookings the user made or travels on."""
        passenger_bookings = select(BookingPassenger.booking_id).where(
            BookingPassenger.passenger_user_id == user_id
        )
        stmt = (
            select(Payment)
            .join(Booking, Booking.id == Payment.booking_id)
            .where(
                (Booking.booker_user_id == user_id)
                | (Booking.id.in_(passenger_bookings))
            )
            .order_by(Payment.created_at)
        )
        return list(self.db.execute(stmt).scalars().unique().all())
