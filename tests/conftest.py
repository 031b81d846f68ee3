import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PAYMENT_SWEEP_ENABLED", "false")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from src.config import Settings
from src.domain.exceptions import GatewayError
from src.infrastructure.db.models import Base, Route, RouteSegment, Trip, User
from src.infrastructure.db.session import build_engine
from src.infrastructure.gateways.razorpay_gateway import PaymentIntent


class FakeGateway:
    """Scripted stand-in for the payment processor."""

    def __init__(self):
        self.statuses: dict[str, str] = {}
        self.confirm_results: dict[str, str] = {}
        self.failing: set[str] = set()
        self.created: list[dict] = []
        self.status_calls: list[str] = []
        self.confirm_calls: list[tuple[str, str]] = []
        self._counter = 0

    def create_intent(self, amount_minor, currency, metadata):
        if "create" in self.failing:
            raise GatewayError("Razorpay order.create failed: Read timed out")
        self._counter += 1
        intent_id = f"order_test_{self._counter}"
        self.created.append(
            {
                "intent_id": intent_id,
                "amount_minor": amount_minor,
                "currency": currency,
                "metadata": metadata,
            }
        )
        self.statuses.setdefault(intent_id, "created")
        return PaymentIntent(intent_id=intent_id, client_secret=f"{intent_id}_secret")

    def get_status(self, intent_id):
        self.status_calls.append(intent_id)
        if intent_id in self.failing:
            raise GatewayError(f"Razorpay order.fetch failed for {intent_id}: Read timed out")
        return self.statuses.get(intent_id, "created")

    def confirm(self, intent_id, payment_method_id):
        self.confirm_calls.append((intent_id, payment_method_id))
        if intent_id in self.failing:
            raise GatewayError("Razorpay payment.fetch failed: Your payment has been declined")
        result = self.confirm_results.get(intent_id, "captured")
        if result == "captured":
            self.statuses[intent_id] = "paid"
        return result


@pytest.fixture
def settings():
    return Settings(
        platform_fee_percent=Decimal("0.05"),
        fare_rate_per_km=Decimal("1.5"),
        currency="INR",
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret="rzp_test_secret",
        gateway_timeout_seconds=2.0,
        sweep_enabled=False,
        sweep_interval_seconds=0.05,
        sweep_grace_seconds=60,
        _env_file=None,
    )


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'transit.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_user(db):
    def _make(user_name: str = "passenger") -> User:
        user = User(user_name=user_name)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_trip(db):
    def _make(
        available_seats: int = 4,
        distances=(Decimal("80.00"), Decimal("40.00")),
        start_time: datetime | None = None,
    ) -> SimpleNamespace:
        driver = User(user_name="driver")
        route = Route(start_location="Cairo", end_location="Alexandria")
        db.add_all([driver, route])
        db.flush()

        segments = [
            RouteSegment(
                route_id=route.id,
                segment_order=order,
                start_point=f"Stop {order}",
                end_point=f"Stop {order + 1}",
                distance_km=distance,
            )
            for order, distance in enumerate(distances, start=1)
        ]
        trip = Trip(
            route_id=route.id,
            driver_id=driver.id,
            start_time=start_time or datetime.now(timezone.utc) + timedelta(days=1),
            price_per_seat=Decimal("100.00"),
            available_seats=available_seats,
        )
        db.add_all([*segments, trip])
        db.commit()
        return SimpleNamespace(
            trip=trip,
            trip_id=trip.id,
            segments=segments,
            segment_ids=[segment.id for segment in segments],
        )

    return _make


@pytest.fixture
def client(session_factory, gateway, settings):
    from src.main import app
    from src.api.routes.routes import get_app_settings, get_db, get_gateway

    def _get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_app_settings] = lambda: settings

    yield TestClient(app)

    app.dependency_overrides.clear()
