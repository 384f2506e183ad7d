from conftest import RecordingSender
from notifications import NotificationDispatcher, SmtpEmailSender, render_summary

ORDER = {
    "orderId": "order_1700000000000_abc123",
    "userEmail": "asha@gmail.com",
    "customerName": "Asha Rao",
    "customerAddress": "12 MG Road, Bengaluru - 560001",
    "status": "Shipped",
    "payment_method": "cod",
    "payment_status": "Not Paid (COD)",
    "email_summary": {
        "products": [{"name": "USB-C Charger", "quantity": 1, "price": 1000}],
        "totals": {"subtotal": 1000, "gst": 50, "delivery": 40, "total": 1090},
    },
}


class BrokenSender:
    def send(self, recipient, subject, body):
        raise ConnectionRefusedError("smtp down")


def test_summary_lists_lines_and_totals():
    text = render_summary(ORDER)
    assert "USB-C Charger  Rs. 1,000.00 x 1" in text
    assert "Total Amount:     Rs. 1,090.00" in text
    assert "Payment Method: COD" in text


def test_status_mail_only_for_customer_facing_states():
    sender = RecordingSender()
    dispatcher = NotificationDispatcher(sender)
    assert dispatcher.status_changed(ORDER)
    assert sender.sent[0]["subject"] == "Your Smart Tech Order Has Been Shipped!"
    assert "Hello Asha," in sender.sent[0]["body"]
    assert not dispatcher.status_changed({**ORDER, "status": "Pending"})
    assert len(sender.sent) == 1


def test_delivery_failure_is_logged_not_raised(caplog):
    assert NotificationDispatcher(BrokenSender()).order_created(ORDER) is False
    assert "smtp down" in caplog.text


def test_unconfigured_smtp_skips(caplog):
    caplog.set_level("INFO")
    SmtpEmailSender("smtp.gmail.com", 587, "", "").send("asha@gmail.com", "hi", "body")
    assert "Mail is not configured" in caplog.text
