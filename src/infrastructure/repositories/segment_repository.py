# src/infrastructure/repositories/segment_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import BookingSegment, RouteSegment


class SegmentRepository:

    def __init__(self, db: Session):
        self.db = db

    def list_by_ids(self, segment_ids: list[str]) -> list[RouteSegment]:
        if not segment_ids:
            return []
        stmt = select(RouteSegment).where(RouteSegment.id.in_(segment_ids))
        found = {segment.id: segment for segment in self.db.execute(stmt).scalars().all()}
        # Preserve caller order.
        return [found[segment_id] for segment_id in segment_ids if segment_id in found]

    def list_for_booking(self, booking_id: str) -> list[RouteSegment]:
        """Current segment rows for a booking, re-read so distance edits are seen."""
        stmt = (
            select(RouteSegment)
            .join(BookingSegment, BookingSegment.segment_id == RouteSegment.id)
            .where(BookingSegment.booking_id == booking_id)
            .execution_options(populate_existing=True)
        )
        return list(self.db.execute(stmt).scalars().all())
