from decimal import Decimal

import pytest
from sqlalchemy import func, select

from src.application.booking_service import BookingService
from src.application.payment_service import PaymentService
from src.domain.exceptions import GatewayError, NotFoundError, ValidationError
from src.domain.payment_status import PaymentStatus
from src.domain.state_machine import BookingPaymentStatus, BookingStatus
from src.infrastructure.db.models import Booking, Payment, RouteSegment


@pytest.fixture
def service(db, gateway, settings):
    return PaymentService(db, gateway, settings)


@pytest.fixture
def booking(db, settings, make_trip, make_user):
    """Two seats over 80 km + 40 km at 1.5 per km: fare 360.00."""
    seeded = make_trip(available_seats=4)
    booker = make_user("mona")
    created = BookingService(db, settings).create_booking(
        trip_id=seeded.trip_id,
        booker_user_id=booker.id,
        seats_count=2,
        segment_ids=seeded.segment_ids,
    )
    db.commit()
    return created


def _payment_count(db):
    return db.execute(select(func.count()).select_from(Payment)).scalar_one()


def test_intent_charges_platform_fee(service, gateway, booking):
    payment, client_secret = service.create_payment_intent(booking.id)

    assert payment.amount == Decimal("18.00")
    assert payment.currency == "INR"
    assert payment.status == PaymentStatus.PENDING
    assert payment.provider_intent_id == "order_test_1"
    assert client_secret == "order_test_1_secret"
    assert gateway.created == [
        {
            "intent_id": "order_test_1",
            "amount_minor": 1800,
            "currency": "INR",
            "metadata": {
                "booking_id": booking.id,
                "total_fare": "360.00",
                "platform_fee": "18.00",
            },
        }
    ]


def test_intent_recomputes_fare_from_current_segments(db, service, gateway, booking):
    first_segment = db.execute(
        select(RouteSegment).where(RouteSegment.segment_order == 1)
    ).scalar_one()
    first_segment.distance_km = Decimal("100.00")
    db.commit()

    payment, _ = service.create_payment_intent(booking.id)

    # (100 + 40) km * 1.5 * 2 seats = 420.00
    assert booking.total_amount == Decimal("420.00")
    assert payment.amount == Decimal("21.00")
    assert gateway.created[0]["amount_minor"] == 2100


def test_zero_total_is_rejected_before_the_processor(db, settings, service, gateway, make_trip, make_user):
    seeded = make_trip()
    booker = make_user()
    free_ride = BookingService(db, settings).create_booking(seeded.trip_id, booker.id, 1)

    with pytest.raises(ValidationError):
        service.create_payment_intent(free_ride.id)

    assert gateway.created == []
    assert _payment_count(db) == 0


def test_fee_rounding_to_zero_is_rejected(db, settings, service, gateway, make_trip, make_user):
    seeded = make_trip()
    booker = make_user()
    small = BookingService(db, settings).create_booking(
        seeded.trip_id,
        booker.id,
        1,
        total_amount=Decimal("0.09"),
    )

    with pytest.raises(ValidationError) as exc_info:
        service.create_payment_intent(small.id)

    assert "amount" in exc_info.value.errors
    assert gateway.created == []


def test_processor_failure_on_create_records_nothing(db, service, gateway, booking):
    gateway.failing.add("create")

    with pytest.raises(GatewayError):
        service.create_payment_intent(booking.id)

    assert _payment_count(db) == 0


def test_paid_or_cancelled_bookings_take_no_new_intent(db, settings, service, booking):
    booking.payment_status = BookingPaymentStatus.PAID
    with pytest.raises(ValidationError):
        service.create_payment_intent(booking.id)

    booking.payment_status = BookingPaymentStatus.PENDING
    BookingService(db, settings).cancel_booking(booking.id)
    with pytest.raises(ValidationError):
        service.create_payment_intent(booking.id)


def test_intent_for_unknown_booking(service):
    with pytest.raises(NotFoundError):
        service.create_payment_intent("missing")


def test_canceled_intent_leaves_booking_untouched(db, service, gateway, booking):
    payment, _ = service.create_payment_intent(booking.id)
    db.commit()
    gateway.statuses[payment.provider_intent_id] = "canceled"

    refreshed = service.refresh_status(payment.id)

    assert refreshed.status == PaymentStatus.CANCELED
    assert refreshed.paid_at is None
    assert booking.booking_status == BookingStatus.PENDING
    assert booking.payment_status == BookingPaymentStatus.PENDING


def test_refresh_success_is_applied_once(db, service, gateway, booking):
    payment, _ = service.create_payment_intent(booking.id)
    db.commit()
    payment_id = payment.id
    gateway.statuses[payment.provider_intent_id] = "paid"

    service.refresh_status(payment_id)
    db.commit()
    first_paid_at = db.get(Payment, payment_id).paid_at

    service.refresh_status(payment_id)
    db.commit()
    settled = db.get(Payment, payment_id)

    assert settled.status == PaymentStatus.SUCCEEDED
    assert first_paid_at is not None
    assert settled.paid_at == first_paid_at

    paid_booking = db.get(Booking, booking.id)
    assert paid_booking.booking_status == BookingStatus.CONFIRMED
    assert paid_booking.payment_status == BookingPaymentStatus.PAID
    assert all(passenger.check_in_status for passenger in paid_booking.passengers)


def test_refresh_keeps_pending_while_processor_is_undecided(db, service, gateway, booking):
    payment, _ = service.create_payment_intent(booking.id)
    gateway.statuses[payment.provider_intent_id] = "attempted"

    assert service.refresh_status(payment.id).status == PaymentStatus.PENDING
    assert booking.payment_status == BookingPaymentStatus.PENDING


def test_refresh_failure_is_recorded_and_raised(db, service, gateway, booking):
    payment, _ = service.create_payment_intent(booking.id)
    db.commit()
    payment_id = payment.id
    gateway.failing.add(payment.provider_intent_id)

    with pytest.raises(GatewayError):
        service.refresh_status(payment_id)
    db.rollback()

    stored = db.get(Payment, payment_id, populate_existing=True)
    assert stored.status == PaymentStatus.PENDING
    assert "Read timed out" in stored.last_error


def test_refresh_unknown_payment(service):
    with pytest.raises(NotFoundError):
        service.refresh_status("missing")


def test_confirm_failure_resolves_to_failed(db, service, gateway, booking):
    payment, _ = service.create_payment_intent(booking.id)
    gateway.failing.add(payment.provider_intent_id)

    confirmed = service.confirm_payment(payment.id, "pay_declined")

    assert confirmed.status == PaymentStatus.FAILED
    assert "declined" in confirmed.last_error
    assert booking.payment_status == BookingPaymentStatus.PENDING


def test_confirm_success_confirms_booking(db, service, gateway, booking):
    payment, _ = service.create_payment_intent(booking.id)

    confirmed = service.confirm_payment(payment.id, "pay_29QQoUBi66xm2f")

    assert gateway.confirm_calls == [(payment.provider_intent_id, "pay_29QQoUBi66xm2f")]
    assert confirmed.status == PaymentStatus.SUCCEEDED
    assert confirmed.paid_at is not None
    assert booking.booking_status == BookingStatus.CONFIRMED
    assert booking.payment_status == BookingPaymentStatus.PAID


def test_confirm_never_downgrades_a_succeeded_payment(db, service, gateway, booking):
    payment, _ = service.create_payment_intent(booking.id)
    service.confirm_payment(payment.id, "pay_1")
    gateway.failing.add(payment.provider_intent_id)

    again = service.confirm_payment(payment.id, "pay_1")

    assert again.status == PaymentStatus.SUCCEEDED
    assert again.last_error is not None


def test_create_and_confirm(service, gateway, booking):
    payment, _ = service.create_and_confirm(booking.id, "pay_29QQoUBi66xm2f")

    assert payment.status == PaymentStatus.SUCCEEDED
    assert len(gateway.confirm_calls) == 1

    booking.payment_status = BookingPaymentStatus.PENDING
    booking.booking_status = BookingStatus.PENDING
    pending, _ = service.create_and_confirm(booking.id)
    assert pending.status == PaymentStatus.PENDING
    assert len(gateway.confirm_calls) == 1


def test_payment_listings(db, settings, service, make_trip, make_user):
    seeded = make_trip()
    booker = make_user("mona")
    friend = make_user("youssef")
    stranger = make_user("karim")
    shared = BookingService(db, settings).create_booking(
        seeded.trip_id,
        booker.id,
        2,
        segment_ids=seeded.segment_ids,
        passenger_user_ids=[friend.id],
    )
    payment, _ = service.create_payment_intent(shared.id)
    db.commit()

    assert [p.id for p in service.list_payments_for_booking(shared.id)] == [payment.id]
    assert [p.id for p in service.list_payments_for_passenger(booker.id)] == [payment.id]
    assert [p.id for p in service.list_payments_for_passenger(friend.id)] == [payment.id]
    assert service.list_payments_for_passenger(stranger.id) == []
    assert service.get_payment(payment.id).amount == Decimal("18.00")

    with pytest.raises(NotFoundError):
        service.get_payment("missing")


def test_second_intent_is_refused_while_one_is_open(db, service, gateway, booking):
    first, _ = service.create_payment_intent(booking.id)
    db.commit()

    with pytest.raises(ValidationError) as exc_info:
        service.create_payment_intent(booking.id)
    db.rollback()

    assert "still pending" in exc_info.value.message
    assert len(gateway.created) == 1
    assert gateway.status_calls == [first.provider_intent_id]
    assert _payment_count(db) == 1


def test_open_intent_paid_meanwhile_settles_the_booking(db, service, gateway, booking):
    first, _ = service.create_payment_intent(booking.id)
    db.commit()
    first_id = first.id
    gateway.statuses[first.provider_intent_id] = "paid"

    with pytest.raises(ValidationError) as exc_info:
        service.create_payment_intent(booking.id)
    db.rollback()

    assert exc_info.value.message == "Booking is already paid."
    assert len(gateway.created) == 1
    assert db.get(Payment, first_id, populate_existing=True).status == PaymentStatus.SUCCEEDED
    settled = db.get(Booking, booking.id, populate_existing=True)
    assert settled.booking_status == BookingStatus.CONFIRMED
    assert settled.payment_status == BookingPaymentStatus.PAID


def test_new_intent_allowed_after_failed_payment(db, service, gateway, booking):
    first, _ = service.create_payment_intent(booking.id)
    gateway.failing.add(first.provider_intent_id)
    service.confirm_payment(first.id, "pay_declined")
    db.commit()

    second, _ = service.create_payment_intent(booking.id)

    assert second.status == PaymentStatus.PENDING
    assert second.provider_intent_id == "order_test_2"
