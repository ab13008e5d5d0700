"""Test doubles shared across the suite."""
import json
from datetime import date, datetime, timedelta

from app.domain.payments.cashfree_service import CheckoutOrder, build_hosted_checkout_link
from app.webhook_security import compute_hmac_sha256_base64, verify_notification_signature

WEBHOOK_SECRET = "test-cashfree-secret"
# A Friday, two days after the frozen clock's start
BOOKING_DAY = date(2024, 3, 1)


class FrozenClock:
    """Controllable stand-in for datetime.utcnow."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)


class FakeGateway:
    """In-memory payment provider.

    `before_return` runs after the order is recorded and before the checkout
    reference is handed back, which is where a concurrent booking would land.
    """

    def __init__(self):
        self.orders = []
        self.error = None
        self.before_return = None

    async def create_order(
        self,
        order_id,
        amount,
        currency,
        customer,
        return_url,
        notify_url,
        note=None,
        timeout=None,
    ):
        if self.error:
            raise self.error
        self.orders.append(
            {
                "order_id": order_id,
                "amount": amount,
                "currency": currency,
                "customer": customer,
                "return_url": return_url,
                "notify_url": notify_url,
                "note": note,
                "timeout": timeout,
            }
        )
        if self.before_return:
            self.before_return()
        session_id = f"session_{order_id}"
        return CheckoutOrder(
            order_id=order_id,
            payment_session_id=session_id,
            payment_link=build_hosted_checkout_link(order_id, session_id),
        )

    def verify_notification_signature(self, raw_body, signature_header, timestamp=None):
        return verify_notification_signature(raw_body, signature_header, WEBHOOK_SECRET, timestamp)


class FakeDispatcher:
    """Records emails instead of sending them."""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, to_address, subject, body):
        if self.fail:
            raise RuntimeError("Email relay unavailable")
        self.sent.append({"to": to_address, "subject": subject, "body": body})
        return True


def notification_body(order_id: str, status: str = "SUCCESS", cf_payment_id: int = 987654) -> bytes:
    payload = {
        "type": "PAYMENT_SUCCESS_WEBHOOK" if status == "SUCCESS" else "PAYMENT_FAILED_WEBHOOK",
        "data": {
            "order": {"order_id": order_id, "order_amount": 700, "order_currency": "INR"},
            "payment": {
                "cf_payment_id": cf_payment_id,
                "payment_status": status,
                "payment_method": {"upi": {"upi_id": "patient@upi"}},
            },
        },
    }
    return json.dumps(payload).encode("utf-8")


def sign(raw_body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_hmac_sha256_base64(secret, raw_body)
