"""
Order and service e-mails.

Everything here is best effort: it runs in FastAPI background tasks after
the response is sent, and a failed delivery is logged and dropped.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from config import settings

logger = logging.getLogger(__name__)

SHOP_NAME = "Smart Tech"

STATUS_SUBJECTS = {
    "Paid": "Your Smart Tech Order is Confirmed and Paid!",
    "Shipped": "Your Smart Tech Order Has Been Shipped!",
    "Delivered": "Your Smart Tech Order Has Been Delivered!",
    "Cancelled": "Your Smart Tech Order Has Been Cancelled",
}

STATUS_LINES = {
    "Paid": "Your payment has been successfully processed. We are now preparing your order for shipment!",
    "Shipped": "Your package is on its way and should arrive soon!",
    "Delivered": "We hope you enjoy your new tech! Thank you for your purchase.",
    "Cancelled": "The order has been cancelled as requested or due to an issue. Please contact support for any refund queries.",
}


class SmtpEmailSender:
    def __init__(self, host: str, port: int, user: str, password: str):
        self.host = host
        self.port = port
        self.user = user
        self.password = password

    def send(self, recipient: str, subject: str, body: str) -> None:
        if not self.user:
            logger.info("Mail is not configured, skipping '%s' to %s", subject, recipient)
            return
        message = EmailMessage()
        message["From"] = self.user
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.starttls()
            smtp.login(self.user, self.password)
            smtp.send_message(message)
        logger.info("Mail '%s' sent to %s", subject, recipient)


def default_sender() -> SmtpEmailSender:
    return SmtpEmailSender(settings.MAIL_HOST, settings.MAIL_PORT, settings.MAIL_USER, settings.MAIL_PASS)


def _money(value) -> str:
    try:
        return f"Rs. {float(value):,.2f}"
    except (TypeError, ValueError):
        return "Rs. 0.00"


def render_summary(order: dict) -> str:
    summary = order.get("email_summary") or {}
    products = summary.get("products") or []
    totals = summary.get("totals") or {}
    lines = [f"Order ID: {order.get('orderId')}", ""]
    for p in products:
        lines.append(f"  {p.get('name')}  {_money(p.get('price'))} x {p.get('quantity', 1)}")
    lines += [
        "",
        f"Subtotal:         {_money(totals.get('subtotal'))}",
        f"GST (5%):       + {_money(totals.get('gst'))}",
        f"Delivery:       + {_money(totals.get('delivery'))}",
        f"Total Amount:     {_money(totals.get('total'))}",
        "",
        f"Payment Status: {order.get('payment_status') or summary.get('paymentStatus', '')}",
        f"Payment Method: {str(order.get('payment_method', '')).upper()}",
        "",
        "Shipping Address:",
        summary.get("shippingAddress") or order.get("customerAddress") or "N/A",
    ]
    return "\n".join(lines)


def _first_name(order: dict) -> str:
    name = (order.get("customerName") or "").strip()
    return name.split(" ")[0] if name else "Valued Customer"


class NotificationDispatcher:
    def __init__(self, sender):
        self.sender = sender

    def _deliver(self, recipient: Optional[str], subject: str, body: str) -> bool:
        if not recipient:
            logger.warning("No recipient for '%s', mail skipped", subject)
            return False
        try:
            self.sender.send(recipient, subject, body)
        except Exception:
            logger.exception("Sending '%s' to %s failed", subject, recipient)
            return False
        return True

    def order_created(self, order: dict) -> bool:
        subject = f"{SHOP_NAME} Order #{order.get('orderId')} Confirmed!"
        body = "\n".join([
            f"Hello {_first_name(order)},",
            "",
            "Thank you for your order! Your order details are below:",
            "",
            render_summary(order),
            "",
            f"Thank you for shopping with {SHOP_NAME}!",
        ])
        return self._deliver(order.get("userEmail"), subject, body)

    def status_changed(self, order: dict) -> bool:
        status = order.get("status")
        if status not in STATUS_SUBJECTS:
            logger.info("Status %s update mail skipped", status)
            return False
        body = "\n".join([
            f"Hello {_first_name(order)},",
            "",
            f"Your order #{order.get('orderId')} status has been updated to {status}.",
            STATUS_LINES[status],
            "",
            render_summary(order),
            "",
            f"Thank you for shopping with {SHOP_NAME}!",
        ])
        return self._deliver(order.get("userEmail"), STATUS_SUBJECTS[status], body)

    def service_message(self, recipient: str, message: str) -> bool:
        return self._deliver(recipient, f"{SHOP_NAME} Shop - Service Request Update", message)
