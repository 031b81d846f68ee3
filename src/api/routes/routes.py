import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from src.application.booking_service import BookingPatch, BookingService
from src.application.payment_service import PaymentService
from src.api.schemas.schemas import (
    BookingPassengerResponse,
    BookingRequest,
    BookingResponse,
    BookingSegmentResponse,
    BookingStatsResponse,
    BookingUpdateRequest,
    ConfirmPaymentRequest,
    CreatePaymentRequest,
    CreatePaymentResponse,
    PagedBookingResponse,
    PaymentResponse,
    TripAvailabilityResponse,
    TripInfoResponse,
)
from src.config import Settings, get_settings
from src.domain.exceptions import (
    CapacityError,
    GatewayError,
    NotFoundError,
    TransitBookingError,
    ValidationError,
)
from src.infrastructure.db.models import Booking, Payment
from src.infrastructure.db.session import SessionLocal
from src.infrastructure.gateways.razorpay_gateway import PaymentGateway, RazorpayGateway
from src.infrastructure.repositories.seat_repository import SeatRepository


router = APIRouter()
logger = logging.getLogger(__name__)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_app_settings() -> Settings:
    return get_settings()


def get_gateway(settings: Settings = Depends(get_app_settings)) -> PaymentGateway:
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.",
        )
    return RazorpayGateway(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        timeout_seconds=settings.gateway_timeout_seconds,
    )


def _http_error(exc: TransitBookingError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, CapacityError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, GatewayError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    detail = {"error": exc.error_code, "message": exc.message}
    if isinstance(exc, ValidationError):
        detail["errors"] = exc.errors
    return HTTPException(status_code=status_code, detail=detail)


def _booking_response(booking: Booking) -> BookingResponse:
    trip = booking.trip
    return BookingResponse(
        booking_id=booking.id,
        trip_id=booking.trip_id,
        booker_user_id=booking.booker_user_id,
        booker_user_name=booking.booker.user_name if booking.booker else "",
        booking_date=booking.booking_date,
        booking_status=booking.booking_status.value,
        payment_status=booking.payment_status.value,
        total_amount=booking.total_amount,
        seats_count=booking.seats_count,
        trip=TripInfoResponse(
            trip_id=trip.id,
            start_time=trip.start_time,
            end_time=trip.end_time,
            price_per_seat=trip.price_per_seat,
            available_seats=trip.available_seats,
            status=trip.status.value,
        ) if trip else None,
        passengers=[
            BookingPassengerResponse(
                booking_passenger_id=passenger.id,
                passenger_user_id=passenger.passenger_user_id,
                passenger_user_name=passenger.passenger.user_name if passenger.passenger else "",
                seat_number=passenger.seat_number,
                check_in_status=passenger.check_in_status,
            )
            for passenger in booking.passengers
        ],
        segments=[
            BookingSegmentResponse(
                booking_segment_id=segment.id,
                segment_id=segment.segment_id,
            )
            for segment in booking.segments
        ],
    )


def _payment_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        payment_id=payment.id,
        booking_id=payment.booking_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        provider_intent_id=payment.provider_intent_id,
        created_at=payment.created_at,
        paid_at=payment.paid_at,
        last_error=payment.last_error,
    )


@router.get("/health")
def health():
    return {"status": "ok"}


# -------------------- TRIPS --------------------

@router.get("/trips/{trip_id}/availability", response_model=TripAvailabilityResponse)
def trip_availability(trip_id: str, db: Session = Depends(get_db)):
    trip = SeatRepository(db).get_trip(trip_id)
    if not trip:
        raise _http_error(NotFoundError("Trip", trip_id))
    return TripAvailabilityResponse(
        trip_id=trip.id,
        available_seats=trip.available_seats,
        status=trip.status.value,
    )


# -------------------- BOOKINGS --------------------

@router.post("/bookings", response_model=BookingResponse)
def create_booking(
    request: BookingRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    service = BookingService(db, settings)
    try:
        booking = service.create_booking(
            trip_id=request.trip_id,
            booker_user_id=request.booker_user_id,
            seats_count=request.seats_count,
            segment_ids=request.segment_ids,
            passenger_user_ids=request.passenger_user_ids,
            total_amount=request.total_amount,
        )
        return _booking_response(service.get_booking(booking.id))
    except TransitBookingError as exc:
        raise _http_error(exc) from exc


@router.get("/bookings", response_model=list[BookingResponse])
def list_bookings(db: Session = Depends(get_db)):
    return [_booking_response(booking) for booking in BookingService(db).list_bookings()]


@router.get("/bookings/paged", response_model=PagedBookingResponse)
def list_bookings_paged(
    search: str | None = None,
    page_number: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    bookings, total = BookingService(db).list_bookings_paged(search, page_number, page_size)
    return PagedBookingResponse(
        items=[_booking_response(booking) for booking in bookings],
        total_count=total,
        page_number=page_number,
        page_size=page_size,
    )


@router.get("/bookings/user/{user_id}", response_model=list[BookingResponse])
def list_bookings_for_user(user_id: str, db: Session = Depends(get_db)):
    bookings = BookingService(db).list_bookings_for_user(user_id)
    return [_booking_response(booking) for booking in bookings]


@router.get("/bookings/user/{user_id}/stats", response_model=BookingStatsResponse)
def booking_stats_for_user(user_id: str, db: Session = Depends(get_db)):
    stats = BookingService(db).booking_stats_for_user(user_id)
    return BookingStatsResponse(
        total_bookings=stats.total_bookings,
        upcoming_bookings=stats.upcoming_bookings,
        completed_bookings=stats.completed_bookings,
    )


@router.get("/bookings/trip/{trip_id}", response_model=list[BookingResponse])
def list_bookings_for_trip(trip_id: str, db: Session = Depends(get_db)):
    bookings = BookingService(db).list_bookings_for_trip(trip_id)
    return [_booking_response(booking) for booking in bookings]


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    try:
        return _booking_response(BookingService(db).get_booking(booking_id))
    except TransitBookingError as exc:
        raise _http_error(exc) from exc


@router.patch("/bookings/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: str,
    request: BookingUpdateRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    service = BookingService(db, settings)
    patch = BookingPatch(
        booking_status=request.booking_status,
        total_amount=request.total_amount,
        seats_count=request.seats_count,
    )
    try:
        service.update_booking(booking_id, patch)
        return _booking_response(service.get_booking(booking_id))
    except TransitBookingError as exc:
        raise _http_error(exc) from exc


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(booking_id: str, db: Session = Depends(get_db)):
    service = BookingService(db)
    try:
        service.cancel_booking(booking_id)
        return _booking_response(service.get_booking(booking_id))
    except TransitBookingError as exc:
        raise _http_error(exc) from exc


@router.delete("/bookings/{booking_id}")
def delete_booking(booking_id: str, db: Session = Depends(get_db)):
    try:
        BookingService(db).delete_booking(booking_id)
    except TransitBookingError as exc:
        raise _http_error(exc) from exc
    return {"booking_id": booking_id, "deleted": True}


# -------------------- PAYMENTS --------------------

@router.post("/payments/intent", response_model=CreatePaymentResponse)
def create_payment(
    request: CreatePaymentRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: Settings = Depends(get_app_settings),
):
    service = PaymentService(db, gateway, settings)
    try:
        payment, client_secret = service.create_and_confirm(
            request.booking_id,
            request.payment_method_id,
        )
    except TransitBookingError as exc:
        raise _http_error(exc) from exc

    return CreatePaymentResponse(
        **_payment_response(payment).model_dump(),
        client_secret=client_secret,
        key_id=settings.razorpay_key_id,
    )


@router.post("/payments/{payment_id}/confirm", response_model=PaymentResponse)
def confirm_payment(
    payment_id: str,
    request: ConfirmPaymentRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: Settings = Depends(get_app_settings),
):
    try:
        payment = PaymentService(db, gateway, settings).confirm_payment(
            payment_id,
            request.payment_method_id,
        )
    except TransitBookingError as exc:
        raise _http_error(exc) from exc
    return _payment_response(payment)


@router.get("/payments/{payment_id}/status", response_model=PaymentResponse)
def payment_status(
    payment_id: str,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: Settings = Depends(get_app_settings),
):
    try:
        payment = PaymentService(db, gateway, settings).refresh_status(payment_id)
    except GatewayError as exc:
        # The error is already stored on the payment; the sweep retries later.
        logger.warning("Status refresh for payment %s failed: %s", payment_id, exc)
        raise _http_error(exc) from exc
    except TransitBookingError as exc:
        raise _http_error(exc) from exc
    return _payment_response(payment)


@router.get("/payments/user/{user_id}", response_model=list[PaymentResponse])
def list_payments_for_user(
    user_id: str,
    db: Session = Depends(get_db),
):
    payments = PaymentService(db, gateway=None).list_payments_for_passenger(user_id)
    return [_payment_response(payment) for payment in payments]


@router.get("/payments/{payment_id}", response_model=PaymentResponse)
def get_payment(payment_id: str, db: Session = Depends(get_db)):
    try:
        payment = PaymentService(db, gateway=None).get_payment(payment_id)
    except TransitBookingError as exc:
        raise _http_error(exc) from exc
    return _payment_response(payment)
