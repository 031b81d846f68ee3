# src/domain/fare.py

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Protocol

from src.domain.exceptions import InvalidFareError

CENTS = Decimal("0.01")


class DistanceBearing(Protocol):
    distance_km: Decimal | None


def round_money(amount: Decimal) -> Decimal:
    """Rounds to 2 places, halves away from zero."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_fare(
    segments: Iterable[DistanceBearing],
    seats: int,
    rate_per_km: Decimal,
) -> Decimal:
    """
    Fare = sum(segment distance) * rate_per_km * seats, rounded to cents.

    A segment with no distance counts as zero km. With no segments at all the
    fare is 0.00 and callers keep whatever amount they already store.
    """
    segments = list(segments)
    if not segments:
        return Decimal("0.00")

    if seats < 1:
        raise InvalidFareError("Seats must be at least 1 to compute a fare.")

    rate = Decimal(rate_per_km)
    if rate <= 0:
        raise InvalidFareError("Configured rate per km must be greater than 0.")

    total_distance = sum(
        (Decimal(segment.distance_km) for segment in segments if segment.distance_km is not None),
        Decimal("0"),
    )
    if total_distance <= 0:
        raise InvalidFareError("Booked segments have no distance to charge for.")

    return round_money(total_distance * rate * seats)


def compute_platform_fee(total_amount: Decimal, fee_percent: Decimal) -> Decimal:
    return round_money(Decimal(total_amount) * Decimal(fee_percent))


def to_minor_units(amount: Decimal) -> int:
    return int(round_money(amount) * 100)
