"""
Payment confirmation strategies.

Each strategy decides when a checkout may turn into an order:

- cod:    confirmed straight away, paid in cash on delivery
- online: Razorpay order, buyer pays on Razorpay's page, confirmed once the
          callback signature checks out
- upi:    UPI QR code, confirmed when the buyer uploads a screenshot
          (self-reported, nothing verifies the screenshot)
"""

import base64
import enum
import io
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote

from config import settings
from errors import InvalidSignature, MissingEvidence, NetworkFailure

logger = logging.getLogger(__name__)


class Verdict(str, enum.Enum):
    CONFIRMED = "confirmed"
    AWAITING = "awaiting"


@dataclass
class ConfirmationOutcome:
    verdict: Verdict
    handoff: dict = field(default_factory=dict)

    @property
    def confirmed(self) -> bool:
        return self.verdict is Verdict.CONFIRMED


class PaymentGateway:
    """Thin wrapper over the Razorpay orders API."""

    def __init__(self, key_id: str, key_secret: str, currency: str = "INR"):
        self.key_id = key_id
        self.key_secret = key_secret
        self.currency = currency
        self._client = None

    @property
    def client(self):
        if self._client is None:
            import razorpay
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    def create_intent(self, amount_minor: int, receipt: str) -> dict:
        try:
            order = self.client.order.create(data={
                "amount": amount_minor,
                "currency": self.currency,
                "receipt": receipt,
                "payment_capture": 1,
            })
        except Exception as exc:
            logger.error("Razorpay order creation failed for %s: %s", receipt, exc)
            raise NetworkFailure() from exc
        return {"id": order["id"], "amount": order.get("amount", amount_minor), "currency": order.get("currency", self.currency), "receipt": order.get("receipt", receipt)}

    def verify(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        """Check the HMAC-SHA256 of "order_id|payment_id" Razorpay sends back with a payment."""
        from razorpay.errors import SignatureVerificationError

        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": gateway_order_id,
                "razorpay_payment_id": gateway_payment_id,
                "razorpay_signature": signature or "",
            })
        except (SignatureVerificationError, TypeError):
            return False
        return True


def default_gateway() -> PaymentGateway:
    return PaymentGateway(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET, settings.CURRENCY)


class PaymentStrategy:
    method = ""
    prepaid = False

    def attempt_confirmation(self, session: dict) -> ConfirmationOutcome:
        raise NotImplementedError

    def payment_status(self) -> str:
        return "Paid" if self.prepaid else "Not Paid (COD)"


class CodStrategy(PaymentStrategy):
    method = "cod"

    def attempt_confirmation(self, session: dict) -> ConfirmationOutcome:
        return ConfirmationOutcome(Verdict.CONFIRMED)


class GatewayStrategy(PaymentStrategy):
    method = "online"
    prepaid = True

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    def attempt_confirmation(self, session: dict) -> ConfirmationOutcome:
        amount_minor = int(round(float(session["pricing"]["total"]) * 100))
        intent = self.gateway.create_intent(amount_minor, session["orderId"])
        return ConfirmationOutcome(Verdict.AWAITING, handoff={
            "key": self.gateway.key_id,
            "gateway_order_id": intent["id"],
            "amount": intent["amount"],
            "currency": intent["currency"],
            "receipt": intent["receipt"],
        })

    def verify_callback(self, session: dict, gateway_order_id: str, gateway_payment_id: str, signature: str) -> ConfirmationOutcome:
        expected_order = (session.get("handoff") or {}).get("gateway_order_id")
        if expected_order and gateway_order_id != expected_order:
            raise InvalidSignature("Payment does not belong to this checkout")
        if not self.gateway.verify(gateway_order_id, gateway_payment_id, signature):
            raise InvalidSignature()
        return ConfirmationOutcome(Verdict.CONFIRMED)


class ManualQrStrategy(PaymentStrategy):
    method = "upi"
    prepaid = True

    def __init__(self, payee_id: str, payee_name: str):
        self.payee_id = payee_id
        self.payee_name = payee_name

    def payment_link(self, order_id: str, amount: float) -> str:
        note = quote(f"Order ID: {order_id}")
        return (
            f"upi://pay?pa={self.payee_id}&pn={quote(self.payee_name)}&mc=5499"
            f"&tid={order_id}&am={amount:.2f}&tn={note}"
        )

    def attempt_confirmation(self, session: dict) -> ConfirmationOutcome:
        import qrcode

        amount = float(session["pricing"]["total"])
        link = self.payment_link(session["orderId"], amount)
        img = qrcode.make(link)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        b64 = base64.b64encode(buf.getvalue()).decode("utf-8")
        return ConfirmationOutcome(Verdict.AWAITING, handoff={
            "upi_link": link,
            "qr": f"data:image/png;base64,{b64}",
            "amount": amount,
        })

    def submit_evidence(self, session: dict, filename: Optional[str], content: Optional[bytes]) -> ConfirmationOutcome:
        if not filename or not content:
            raise MissingEvidence()
        return ConfirmationOutcome(Verdict.CONFIRMED)


def build_strategies(gateway: PaymentGateway) -> dict:
    return {
        "cod": CodStrategy(),
        "online": GatewayStrategy(gateway),
        "upi": ManualQrStrategy(settings.UPI_PAYEE_ID, settings.UPI_PAYEE_NAME),
    }
