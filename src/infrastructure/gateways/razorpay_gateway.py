# src/infrastructure/gateways/razorpay_gateway.py

from dataclasses import dataclass
import logging
from typing import Callable, Protocol, TypeVar

import razorpay
from razorpay import errors as razorpay_errors
import requests

from src.domain.exceptions import GatewayError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PROCESSOR_ERRORS = (
    razorpay_errors.BadRequestError,
    razorpay_errors.GatewayError,
    razorpay_errors.ServerError,
    requests.exceptions.RequestException,
)


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    client_secret: str


class PaymentGateway(Protocol):
    """What the payment service needs from a processor."""

    def create_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
    ) -> PaymentIntent: ...

    def confirm(self, intent_id: str, payment_method_id: str) -> str: ...

    def get_status(self, intent_id: str) -> str: ...


class TimeoutSession(requests.Session):
    """requests.Session that never waits on the processor without a bound."""

    def __init__(self, timeout_seconds: float):
        super().__init__()
        self.timeout_seconds = timeout_seconds

    def request(self, method, url, **kwargs):
        kwargs.setdefault("timeout", self.timeout_seconds)
        return super().request(method, url, **kwargs)


class RazorpayGateway:
    """
    Razorpay adapter.

    An order plays the part of a payment intent; the Razorpay payment id
    produced by Checkout is the payment method used to confirm it.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        timeout_seconds: float = 10.0,
        client: razorpay.Client | None = None,
    ):
        self.key_id = key_id
        self.client = client or razorpay.Client(
            session=TimeoutSession(timeout_seconds),
            auth=(key_id, key_secret),
        )

    def create_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
    ) -> PaymentIntent:
        order = self._call(
            "order.create",
            lambda: self.client.order.create(
                {
                    "amount": amount_minor,
                    "currency": currency.upper(),
                    "receipt": metadata.get("booking_id"),
                    "notes": metadata,
                }
            ),
        )
        order_id = self._field(order, "id")
        logger.info("Created Razorpay order %s for %s %s", order_id, amount_minor, currency)
        # Checkout is opened with the order id; it is the only handle the client needs.
        return PaymentIntent(intent_id=order_id, client_secret=order_id)

    def confirm(self, intent_id: str, payment_method_id: str) -> str:
        payment = self._call(
            "payment.fetch",
            lambda: self.client.payment.fetch(payment_method_id),
        )

        if payment.get("order_id") != intent_id:
            raise GatewayError(
                f"Payment {payment_method_id} does not belong to order {intent_id}"
            )

        if self._field(payment, "status") == "authorized":
            payment = self._call(
                "payment.capture",
                lambda: self.client.payment.capture(
                    payment_method_id,
                    self._field(payment, "amount"),
                    {"currency": self._field(payment, "currency")},
                ),
            )

        return self._field(payment, "status")

    def get_status(self, intent_id: str) -> str:
        order = self._call(
            "order.fetch",
            lambda: self.client.order.fetch(intent_id),
        )
        return self._field(order, "status")

    @staticmethod
    def _call(operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except _PROCESSOR_ERRORS as exc:
            logger.warning("Razorpay %s failed: %s", operation, exc)
            raise GatewayError(f"Razorpay {operation} failed: {exc}") from exc

    @staticmethod
    def _field(payload: dict, name: str):
        try:
            return payload[name]
        except (KeyError, TypeError) as exc:
            raise GatewayError(f"Razorpay response is missing '{name}'") from exc
