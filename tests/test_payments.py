import pytest

from conftest import FakeGateway, sign_payment
from errors import InvalidSignature, MissingEvidence
from payments import CodStrategy, GatewayStrategy, ManualQrStrategy, Verdict, build_strategies

SESSION = {"orderId": "order_1700000000000_abc123", "pricing": {"total": 1090.5}, "handoff": {}}


def test_cod_confirms_without_calling_out():
    gateway = FakeGateway()
    strategies = build_strategies(gateway)
    outcome = strategies["cod"].attempt_confirmation(SESSION)
    assert outcome.confirmed
    assert gateway.intents == []
    assert CodStrategy().payment_status() == "Not Paid (COD)"


def test_gateway_handoff_in_minor_units():
    gateway = FakeGateway()
    outcome = GatewayStrategy(gateway).attempt_confirmation(SESSION)
    assert outcome.verdict is Verdict.AWAITING
    assert outcome.handoff["amount"] == 109050
    assert outcome.handoff["gateway_order_id"] == "order_rzp_1"
    assert gateway.intents[0]["receipt"] == SESSION["orderId"]


def test_signature_is_hmac_of_order_and_payment():
    gateway = FakeGateway()
    signature = sign_payment("order_rzp_1", "pay_1")
    assert gateway.verify("order_rzp_1", "pay_1", signature)
    assert not gateway.verify("order_rzp_1", "pay_2", signature)
    assert not gateway.verify("order_rzp_1", "pay_1", sign_payment("order_rzp_1", "pay_1", secret="other"))
    assert not gateway.verify("order_rzp_1", "pay_1", None)


def test_callback_checks_signature_and_gateway_order():
    strategy = GatewayStrategy(FakeGateway())
    session = {**SESSION, "handoff": {"gateway_order_id": "order_rzp_1"}}
    good = sign_payment("order_rzp_1", "pay_1")

    assert strategy.verify_callback(session, "order_rzp_1", "pay_1", good).confirmed
    with pytest.raises(InvalidSignature):
        strategy.verify_callback(session, "order_rzp_1", "pay_1", "0" * 64)
    with pytest.raises(InvalidSignature):
        strategy.verify_callback(session, "order_rzp_9", "pay_1", sign_payment("order_rzp_9", "pay_1"))


def test_upi_handoff_carries_link_and_qr():
    outcome = ManualQrStrategy("smarttech@oksbi", "Smart Tech Shop").attempt_confirmation(SESSION)
    assert outcome.verdict is Verdict.AWAITING
    assert outcome.handoff["upi_link"].startswith("upi://pay?pa=smarttech@oksbi&pn=Smart%20Tech%20Shop")
    assert "am=1090.50" in outcome.handoff["upi_link"]
    assert outcome.handoff["qr"].startswith("data:image/png;base64,")


@pytest.mark.parametrize("filename,content", [(None, None), ("proof.png", b""), ("", b"png")])
def test_upi_requires_evidence(filename, content):
    with pytest.raises(MissingEvidence):
        ManualQrStrategy("smarttech@oksbi", "Smart Tech Shop").submit_evidence(SESSION, filename, content)
