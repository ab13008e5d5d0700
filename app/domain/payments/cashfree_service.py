"""Cashfree service - Integration with the Cashfree Payment Gateway API"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx

from ...config import (
    CASHFREE_APP_ID,
    CASHFREE_ENV,
    CASHFREE_SECRET_KEY,
    CASHFREE_TIMEOUT_SECONDS,
)
from ...errors import UpstreamError
from ...webhook_security import verify_notification_signature

logger = logging.getLogger(__name__)

CASHFREE_API_VERSION = "2022-09-01"
BASE_URLS = {
    "live_mode": "https://api.cashfree.com/pg",
    "test_mode": "https://sandbox.cashfree.com/pg",
}
HOSTED_CHECKOUT_URL = "https://payments.cashfree.com/order"


def normalize_cashfree_environment(env: Optional[str]) -> str:
    """Normalize Cashfree environment value to expected format"""
    value = (env or "test").strip().lower()
    if value in {"live", "production", "prod", "live_mode"}:
        return "live_mode"
    if value in {"test", "sandbox", "staging", "dev", "development", "test_mode"}:
        return "test_mode"
    logger.warning(f"Unknown CASHFREE environment '{env}', defaulting to test_mode")
    return "test_mode"


@dataclass
class CheckoutCustomer:
    customer_id: str
    email: str
    phone: str
    name: Optional[str] = None


@dataclass
class CheckoutOrder:
    order_id: str
    payment_session_id: Optional[str]
    payment_link: str


def build_hosted_checkout_link(order_id: str, payment_session_id: Optional[str]) -> str:
    if payment_session_id:
        return f"{HOSTED_CHECKOUT_URL}/#/?payment_session_id={quote(payment_session_id, safe='')}"
    return f"{HOSTED_CHECKOUT_URL}/#/?order_id={quote(order_id, safe='')}"


class CashfreeService:
    """Provider gateway for Cashfree order creation and webhook verification"""

    def __init__(
        self,
        app_id: Optional[str] = CASHFREE_APP_ID,
        secret_key: Optional[str] = CASHFREE_SECRET_KEY,
        environment: Optional[str] = CASHFREE_ENV,
        timeout: float = CASHFREE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.app_id = app_id
        self.secret_key = secret_key
        self.environment = normalize_cashfree_environment(environment)
        self.base_url = BASE_URLS[self.environment]
        self.timeout = timeout
        self._transport = transport

    def is_available(self) -> bool:
        return bool(self.app_id and self.secret_key)

    def _headers(self) -> dict:
        return {
            "x-client-id": self.app_id or "",
            "x-client-secret": self.secret_key or "",
            "x-api-version": CASHFREE_API_VERSION,
            "Content-Type": "application/json",
        }

    async def create_order(
        self,
        order_id: str,
        amount: float,
        currency: str,
        customer: CheckoutCustomer,
        return_url: str,
        notify_url: str,
        note: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CheckoutOrder:
        """
        Create a hosted checkout order.

        A timeout or any non-2xx answer raises UpstreamError; the call is not
        retried here.
        """
        if not self.is_available():
            logger.error(f"Cashfree credentials not set; cannot create order {order_id}")
            raise UpstreamError("Payment provider is not configured")

        payload = {
            "order_id": order_id,
            "order_amount": amount,
            "order_currency": currency,
            "customer_details": {
                "customer_id": customer.customer_id,
                "customer_email": customer.email,
                "customer_phone": customer.phone,
                "customer_name": customer.name,
            },
            "order_meta": {"return_url": return_url, "notify_url": notify_url},
        }
        if note:
            payload["order_note"] = note

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=timeout or self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post("/orders", json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.error(f"Cashfree order {order_id} timed out: {e}")
            raise UpstreamError("Payment provider timed out. Please try again.") from e
        except httpx.HTTPError as e:
            logger.error(f"Cashfree order {order_id} failed: {e}")
            raise UpstreamError("Unable to start payment. Please try again.") from e

        if response.status_code >= 400:
            try:
                message = response.json().get("message")
            except ValueError:
                message = None
            logger.error(f"Cashfree order {order_id} rejected: HTTP {response.status_code} {message}")
            raise UpstreamError(message or "Unable to start payment. Please try again.")

        data = response.json()
        confirmed_id = data.get("order_id") or order_id
        session_id = data.get("payment_session_id")
        logger.info(f"Cashfree order created: {confirmed_id}")
        return CheckoutOrder(
            order_id=confirmed_id,
            payment_session_id=session_id,
            payment_link=build_hosted_checkout_link(confirmed_id, session_id),
        )

    def verify_notification_signature(
        self, raw_body: bytes, signature_header: Optional[str], timestamp: Optional[str] = None
    ) -> bool:
        return verify_notification_signature(raw_body, signature_header, self.secret_key, timestamp)


def get_payment_gateway() -> CashfreeService:
    """FastAPI dependency; tests override it with a fake gateway"""
    return CashfreeService()
