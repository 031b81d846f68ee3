from datetime import datetime, timezone
import logging

from sqlalchemy.orm import Session

from src.config import Settings, get_settings
from src.domain.exceptions import GatewayError, NotFoundError, ValidationError
from src.domain.fare import compute_fare, compute_platform_fee, to_minor_units
from src.domain.payment_status import PaymentStatus, map_processor_status
from src.domain.state_machine import (
    BookingPaymentStatus,
    BookingStateMachine,
    BookingStatus,
)
from src.infrastructure.db.models import Booking, Payment
from src.infrastructure.gateways.razorpay_gateway import PaymentGateway
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.payment_repository import PaymentRepository
from src.infrastructure.repositories.segment_repository import SegmentRepository

logger = logging.getLogger(__name__)

_LAST_ERROR_MAX_LENGTH = 255


class PaymentService:
    """
    Keeps local Payment rows in step with the payment processor.

    Only the platform fee is charged through the processor; the rest of
    the fare is settled in cash with the driver.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        settings: Settings | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.booking_repository = BookingRepository(db)
        self.payment_repository = PaymentRepository(db)
        self.segment_repository = SegmentRepository(db)

    # -------------------- QUERY --------------------

    def get_payment(self, payment_id: str) -> Payment:
        payment = self.payment_repository.get_by_id(payment_id)
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    def list_payments_for_booking(self, booking_id: str) -> list[Payment]:
        return self.payment_repository.list_by_booking(booking_id)

    def list_payments_for_passenger(self, user_id: str) -> list[Payment]:
        return self.payment_repository.list_by_passenger(user_id)

    # -------------------- INTENT --------------------

    def create_payment_intent(self, booking_id: str) -> tuple[Payment, str]:
        """
        Recomputes the fare, charges the platform fee share of it and
        records a Pending payment. Returns the payment and the client secret.
        """
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)

        if booking.payment_status == BookingPaymentStatus.PAID:
            raise ValidationError("booking_id", "Booking is already paid.")
        if booking.booking_status == BookingStatus.CANCELLED:
            raise ValidationError("booking_id", "Cannot pay for a cancelled booking.")

        self._settle_open_payments(booking)

        # Segment distances may have changed since booking.
        segments = self.segment_repository.list_for_booking(booking.id)
        if segments:
            booking.total_amount = compute_fare(
                segments,
                booking.seats_count,
                self.settings.fare_rate_per_km,
            )

        total_fare = booking.total_amount
        if total_fare is None or total_fare <= 0:
            raise ValidationError("total_amount", "Booking total amount must be greater than 0.")

        platform_fee = compute_platform_fee(total_fare, self.settings.platform_fee_percent)
        if platform_fee <= 0:
            raise ValidationError("amount", "Calculated platform fee must be greater than 0.")

        intent = self.gateway.create_intent(
            to_minor_units(platform_fee),
            self.settings.currency,
            {
                "booking_id": booking.id,
                "total_fare": f"{total_fare:.2f}",
                "platform_fee": f"{platform_fee:.2f}",
            },
        )

        payment = Payment(
            booking_id=booking.id,
            amount=platform_fee,
            currency=self.settings.currency,
            provider_intent_id=intent.intent_id,
            status=PaymentStatus.PENDING,
            created_at=datetime.now(timezone.utc),
        )
        self.payment_repository.add(payment)
        self.db.flush()

        logger.info(
            "Payment %s created for booking %s: fee %s %s (fare %s, intent %s)",
            payment.id,
            booking.id,
            platform_fee,
            self.settings.currency,
            total_fare,
            intent.intent_id,
        )
        return payment, intent.client_secret

    def create_and_confirm(
        self,
        booking_id: str,
        payment_method_id: str | None = None,
    ) -> tuple[Payment, str]:
        payment, client_secret = self.create_payment_intent(booking_id)
        if payment_method_id:
            payment = self.confirm_payment(payment.id, payment_method_id)
        return payment, client_secret

    # -------------------- RECONCILE --------------------

    def refresh_status(self, payment_id: str) -> Payment:
        """
        Pulls the authoritative status from the processor.
        A gateway failure is recorded on the payment and re-raised.
        """
        payment = self._lock(payment_id)

        try:
            raw_status = self.gateway.get_status(payment.provider_intent_id)
        except GatewayError as exc:
            payment.last_error = str(exc)[:_LAST_ERROR_MAX_LENGTH]
            # Must outlive the caller's rollback on the re-raise below.
            self.db.commit()
            raise

        self._apply_processor_status(payment, raw_status)
        self.db.flush()
        return payment

    def confirm_payment(self, payment_id: str, payment_method_id: str) -> Payment:
        """
        Confirms with the processor. A gateway failure does not raise:
        it resolves to a Failed payment carrying the error.
        """
        payment = self._lock(payment_id)

        try:
            raw_status = self.gateway.confirm(payment.provider_intent_id, payment_method_id)
        except GatewayError as exc:
            payment.last_error = str(exc)[:_LAST_ERROR_MAX_LENGTH]
            if payment.status != PaymentStatus.SUCCEEDED:
                payment.status = PaymentStatus.FAILED
            logger.warning("Confirming payment %s failed: %s", payment.id, exc)
            self.db.flush()
            return payment

        self._apply_processor_status(payment, raw_status)
        self.db.flush()
        return payment

    # -------------------- HELPERS --------------------

    def _settle_open_payments(self, booking: Booking) -> None:
        """Refreshes Pending payments; a booking holds at most one open intent."""
        open_payments = [
            payment
            for payment in self.payment_repository.list_by_booking(booking.id)
            if payment.status == PaymentStatus.PENDING
        ]
        for payment in open_payments:
            self.refresh_status(payment.id)
        if open_payments:
            # Must outlive the caller's rollback on the raises below.
            self.db.commit()

        if booking.payment_status == BookingPaymentStatus.PAID:
            raise ValidationError("booking_id", "Booking is already paid.")
        if any(payment.status == PaymentStatus.PENDING for payment in open_payments):
            raise ValidationError(
                "booking_id",
                "A payment for this booking is still pending; confirm or settle it first.",
            )

    def _lock(self, payment_id: str) -> Payment:
        payment = self.payment_repository.lock_payment(payment_id)
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    def _apply_processor_status(self, payment: Payment, raw_status: str) -> None:
        new_status = map_processor_status(raw_status)
        if new_status != payment.status:
            logger.info(
                "Payment %s status %s -> %s (processor said %r)",
                payment.id,
                payment.status.value,
                new_status.value,
                raw_status,
            )
        payment.status = new_status

        if new_status == PaymentStatus.SUCCEEDED and payment.paid_at is None:
            payment.paid_at = datetime.now(timezone.utc)
            if payment.booking is not None:
                self._mark_booking_paid(payment.booking)

    def _mark_booking_paid(self, booking: Booking) -> None:
        if booking.payment_status == BookingPaymentStatus.PAID:
            return

        booking.payment_status = BookingPaymentStatus.PAID
        if BookingStateMachine.can_transition(booking.booking_status, BookingStatus.CONFIRMED):
            booking.booking_status = BookingStatus.CONFIRMED
        else:
            logger.warning(
                "Booking %s is %s; payment recorded without confirming it.",
                booking.id,
                booking.booking_status.value,
            )

        for passenger in booking.passengers:
            passenger.check_in_status = True

        logger.info("Booking %s confirmed and paid", booking.id)
