# src/domain/payment_status.py

from enum import Enum
from typing import Dict


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELED = "Canceled"


# Processor vocabulary -> local taxonomy. Razorpay reports "paid" on orders
# and "captured" / "failed" on payments; the intent-style names are accepted
# as well so every adapter shares one table.
_PROCESSOR_STATUS_MAP: Dict[str, PaymentStatus] = {
    "succeeded": PaymentStatus.SUCCEEDED,
    "paid": PaymentStatus.SUCCEEDED,
    "captured": PaymentStatus.SUCCEEDED,
    "requires_payment_method": PaymentStatus.FAILED,
    "failed": PaymentStatus.FAILED,
    "canceled": PaymentStatus.CANCELED,
    "cancelled": PaymentStatus.CANCELED,
}


def map_processor_status(raw_status: str | None) -> PaymentStatus:
    """
    Maps a processor-native status string to PaymentStatus.
    Anything unknown is still in flight and maps to PENDING.
    """
    if not raw_status:
        return PaymentStatus.PENDING
    return _PROCESSOR_STATUS_MAP.get(raw_status.strip().lower(), PaymentStatus.PENDING)
