from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import threading

from sqlalchemy.orm import sessionmaker

from src.application.payment_service import PaymentService
from src.config import Settings, get_settings
from src.infrastructure.db.session import SessionLocal, get_db_session
from src.infrastructure.gateways.razorpay_gateway import PaymentGateway
from src.infrastructure.repositories.payment_repository import PaymentRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    checked: int
    refreshed: int
    failed: int


class ReconciliationSweep:
    """
    Background thread that re-queries the processor for payments stuck
    in Pending, going through the same refresh path as a user request.
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        settings: Settings | None = None,
        session_factory: sessionmaker = SessionLocal,
    ):
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.interval_seconds = self.settings.sweep_interval_seconds
        self.grace = timedelta(seconds=self.settings.sweep_grace_seconds)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="payment-reconciliation-sweep",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        logger.info(
            "Payment reconciliation sweep started (every %.0fs, grace %s).",
            self.interval_seconds,
            self.grace,
        )
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Error while processing pending payments.")

            self._stop_event.wait(self.interval_seconds)

        logger.info("Payment reconciliation sweep is stopping.")

    def run_once(self, now: datetime | None = None) -> SweepResult:
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.grace

        with get_db_session(self.session_factory) as db:
            pending_ids = [
                payment.id
                for payment in PaymentRepository(db).list_pending_older_than(cutoff)
            ]

        if not pending_ids:
            logger.debug("No pending payments to process.")
            return SweepResult(checked=0, refreshed=0, failed=0)

        logger.info("Processing %s pending payment(s).", len(pending_ids))

        refreshed = 0
        failed = 0
        for payment_id in pending_ids:
            if self._stop_event.is_set():
                break

            try:
                with get_db_session(self.session_factory) as db:
                    payment = PaymentService(db, self.gateway, self.settings).refresh_status(payment_id)
                    logger.info(
                        "Refreshed payment %s (intent %s): %s",
                        payment.id,
                        payment.provider_intent_id,
                        payment.status.value,
                    )
                refreshed += 1
            except Exception:
                failed += 1
                logger.exception("Error refreshing payment %s from processor.", payment_id)

        return SweepResult(checked=len(pending_ids), refreshed=refreshed, failed=failed)
