# src/infrastructure/repositories/seat_repository.py

import logging

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from src.infrastructure.db.models import Trip
from src.domain.exceptions import CapacityError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class SeatRepository:
    """
    Seat inventory guard for trips.

    Every mutation locks the trip row and deducts through a guarded
    UPDATE, so two writers can never both spend the same seats.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_trip(self, trip_id: str) -> Trip | None:
        return self.db.get(Trip, trip_id)

    def lock_trip(self, trip_id: str) -> Trip | None:
        """
        SELECT ... FOR UPDATE
        Prevents race conditions.
        """

        stmt = (
            select(Trip)
            .where(Trip.id == trip_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

        return self.db.execute(stmt).scalar_one_or_none()

    def reserve(self, trip_id: str, seats: int) -> Trip:
        if seats < 1:
            raise ValidationError("seats_count", "Seats to reserve must be at least 1.")

        trip = self.lock_trip(trip_id)
        if not trip:
            raise NotFoundError("Trip", trip_id)

        stmt = (
            update(Trip)
            .where(Trip.id == trip_id)
            .where(Trip.available_seats >= seats)
            .values(available_seats=Trip.available_seats - seats)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount == 0:
            raise CapacityError(trip_id=trip_id, requested=seats)

        return self._reload(trip_id)

    def release(self, trip_id: str, seats: int) -> Trip | None:
        if seats < 0:
            raise ValidationError("seats_count", "Seats to release cannot be negative.")

        trip = self.lock_trip(trip_id)
        if not trip:
            logger.warning("Trip %s not found while releasing %s seat(s).", trip_id, seats)
            return None

        if seats == 0:
            return trip

        stmt = (
            update(Trip)
            .where(Trip.id == trip_id)
            .values(available_seats=Trip.available_seats + seats)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        return self._reload(trip_id)

    def adjust(self, trip_id: str, delta: int) -> Trip | None:
        """Positive delta credits seats back, negative delta reserves more."""
        if delta < 0:
            return self.reserve(trip_id, -delta)
        return self.release(trip_id, delta)

    def _reload(self, trip_id: str) -> Trip:
        return self.db.get(Trip, trip_id, populate_existing=True)
