# src/infrastructure/db/models.py

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    Enum,
    Numeric,
    CheckConstraint,
    ForeignKey,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.payment_status import PaymentStatus
from src.domain.state_machine import (
    BookingPaymentStatus,
    BookingStatus,
    TripStatus,
)


def _uuid() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class Route(Base):
    __tablename__ = "routes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    start_location: Mapped[str] = mapped_column(String(150), nullable=False)
    end_location: Mapped[str] = mapped_column(String(150), nullable=False)

    segments: Mapped[list["RouteSegment"]] = relationship(
        back_populates="route",
        order_by="RouteSegment.segment_order",
    )


class RouteSegment(Base):
    __tablename__ = "route_segments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    route_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("routes.id", ondelete="CASCADE"),
        nullable=False,
    )
    segment_order: Mapped[int] = mapped_column(Integer, nullable=False)
    start_point: Mapped[str] = mapped_column(String(100), nullable=False)
    end_point: Mapped[str] = mapped_column(String(100), nullable=False)
    distance_km: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    estimated_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    route: Mapped[Route] = relationship(back_populates="segments")


class Trip(Base):
    """
    Scheduled vehicle run.
    available_seats is written only through SeatRepository.
    """

    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    route_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("routes.id"),
        nullable=False,
    )
    driver_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=True,
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    price_per_seat: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    available_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TripStatus] = mapped_column(
        Enum(TripStatus, name="trip_status"),
        nullable=False,
        default=TripStatus.SCHEDULED,
    )
    notes: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    route: Mapped[Route] = relationship()

    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="ck_trip_available_seats_nonnegative"),
        CheckConstraint("price_per_seat >= 0", name="ck_trip_price_nonnegative"),
    )


class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    DB stores current state safely.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    trip_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("trips.id"),
        nullable=False,
        index=True,
    )
    booker_user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    booking_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    booking_status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    payment_status: Mapped[BookingPaymentStatus] = mapped_column(
        Enum(BookingPaymentStatus, name="booking_payment_status"),
        nullable=False,
        default=BookingPaymentStatus.PENDING,
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    seats_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    trip: Mapped[Trip] = relationship()
    booker: Mapped[User] = relationship()
    passengers: Mapped[list["BookingPassenger"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
    )
    segments: Mapped[list["BookingSegment"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
    )
    # No delete cascade: payments outlive their booking as audit trail.
    payments: Mapped[list["Payment"]] = relationship(back_populates="booking")

    __table_args__ = (
        CheckConstraint("seats_count > 0", name="ck_booking_seats_count_positive"),
        CheckConstraint("total_amount >= 0", name="ck_booking_total_nonnegative"),
    )


class BookingPassenger(Base):
    __tablename__ = "booking_passengers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    passenger_user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    seat_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    check_in_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    booking: Mapped[Booking] = relationship(back_populates="passengers")
    passenger: Mapped[User] = relationship()


class BookingSegment(Base):
    __tablename__ = "booking_segments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    segment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("route_segments.id"),
        nullable=False,
    )

    booking: Mapped[Booking] = relationship(back_populates="segments")
    segment: Mapped[RouteSegment] = relationship()


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="INR")
    provider_intent_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(String(255), nullable=True)

    booking: Mapped[Booking | None] = relationship(back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )
