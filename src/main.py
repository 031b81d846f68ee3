import logging
import time

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from src.api.routes.routes import router
from src.application.reconciliation_sweep import ReconciliationSweep
from src.config import Settings, get_settings
from src.infrastructure.db.session import engine
from src.infrastructure.db.models import Base
from src.infrastructure.gateways.razorpay_gateway import RazorpayGateway

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Transit Booking Engine")

app.include_router(router)
logger = logging.getLogger(__name__)

_sweep: ReconciliationSweep | None = None


def wait_for_database(db_engine: Engine, settings: Settings, sleep=time.sleep) -> int:
    """Blocks until the database answers, returning the attempt that succeeded."""
    attempts = max(settings.db_connect_max_retries, 1)
    for attempt in range(1, attempts + 1):
        try:
            with db_engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database reachable after %s attempt(s).", attempt)
            return attempt
        except OperationalError:
            if attempt == attempts:
                logger.exception("Database still unreachable after %s attempts.", attempts)
                raise
            logger.warning(
                "Database not ready (attempt %s/%s), retrying in %.1fs.",
                attempt,
                attempts,
                settings.db_connect_retry_delay,
            )
            sleep(settings.db_connect_retry_delay)


def _start_sweep(settings: Settings) -> None:
    global _sweep

    if not settings.sweep_enabled:
        logger.info("Payment reconciliation sweep disabled.")
        return
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        logger.warning("Razorpay keys not configured; payment reconciliation sweep not started.")
        return

    gateway = RazorpayGateway(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        timeout_seconds=settings.gateway_timeout_seconds,
    )
    _sweep = ReconciliationSweep(gateway, settings)
    _sweep.start()


@app.on_event("startup")
def on_startup() -> None:
    settings = get_settings()
    wait_for_database(engine, settings)
    Base.metadata.create_all(bind=engine)
    _start_sweep(settings)


@app.on_event("shutdown")
def on_shutdown() -> None:
    if _sweep is not None:
        _sweep.stop()
