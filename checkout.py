"""
Checkout orchestration.

A checkout session walks through

    Idle -> AddressCollected -> PaymentSelected -> AwaitingConfirmation
         -> Confirmed -> StockApplied -> Completed

with Rejected (retryable) and Abandoned (final) as the failure exits. The
session lives in the `checkout_session` collection; every state change is
a compare-and-set on the current state, so a duplicated request (a
double-clicked confirm, a replayed gateway callback) cannot run the same
step twice.

Once a payment strategy says "confirmed" the orchestrator writes exactly
one order (keyed on the session's business orderId), takes the stock for
all lines as one batch and, if the stock cannot be taken, removes that order
again and rejects the session.
"""

import enum
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from cart import CartService, lines_match
from database import now_utc, serialize_doc, to_object_id
from errors import EmptyCart, InvalidCheckoutState, InvalidSignature, SessionNotFound, ShopError, StoreUnavailable
from inventory import InventoryLedger, StockLine
from order_store import OrderStore
from payments import ConfirmationOutcome, PaymentStrategy, Verdict
from pricing import quote
from schemas import Address, Order, OrderItem

logger = logging.getLogger(__name__)


class CheckoutState(str, enum.Enum):
    IDLE = "Idle"
    ADDRESS_COLLECTED = "AddressCollected"
    PAYMENT_SELECTED = "PaymentSelected"
    AWAITING_CONFIRMATION = "AwaitingConfirmation"
    CONFIRMED = "Confirmed"
    STOCK_APPLIED = "StockApplied"
    COMPLETED = "Completed"
    REJECTED = "Rejected"
    ABANDONED = "Abandoned"


S = CheckoutState

ADDRESS_STATES = (S.IDLE, S.ADDRESS_COLLECTED, S.PAYMENT_SELECTED, S.REJECTED)
PAYMENT_STATES = (S.ADDRESS_COLLECTED, S.PAYMENT_SELECTED, S.AWAITING_CONFIRMATION, S.REJECTED)
CONFIRM_STATES = (S.PAYMENT_SELECTED, S.REJECTED)
ABANDON_STATES = (S.IDLE, S.ADDRESS_COLLECTED, S.PAYMENT_SELECTED, S.AWAITING_CONFIRMATION, S.REJECTED)


@dataclass
class CheckoutResult:
    session: dict
    order: Optional[dict] = None
    created: bool = False
    handoff: Dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "session": self.session,
            "order": self.order,
            "created": self.created,
            "handoff": self.handoff,
        }


def new_order_id() -> str:
    return f"order_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def stock_lines(items: List[dict]) -> List[StockLine]:
    return [StockLine(i["productId"], int(i["quantity"]), i.get("variantSpecName")) for i in items]


class CheckoutOrchestrator:
    def __init__(
        self,
        db: Database,
        ledger: InventoryLedger,
        store: OrderStore,
        strategies: Dict[str, PaymentStrategy],
        upload_dir: str = "uploads",
    ):
        self.sessions = db["checkout_session"]
        self.ledger = ledger
        self.store = store
        self.carts = CartService(db)
        self.strategies = strategies
        self.upload_dir = Path(upload_dir)

    # Plumbing

    def _load(self, session_id: str, user: dict) -> dict:
        oid = to_object_id(session_id)
        session = self.sessions.find_one({"_id": oid}) if oid else None
        if not session or session.get("userEmail") != user["email"]:
            raise SessionNotFound(id=session_id)
        return session

    @staticmethod
    def _require(session: dict, allowed, action: str) -> None:
        if S(session["state"]) not in allowed:
            raise InvalidCheckoutState(f"Cannot {action} while checkout is {session['state']}", state=session["state"])

    def _transition(self, session: dict, new_state: CheckoutState, **fields) -> dict:
        now = now_utc()
        update = {**fields, "state": new_state.value, "updated_at": now}
        result = self.sessions.update_one(
            {"_id": session["_id"], "state": session["state"]},
            {"$set": update, "$push": {"history": {"from": session["state"], "to": new_state.value, "at": now}}},
        )
        if result.matched_count == 0:
            raise InvalidCheckoutState("Checkout was changed by another request, please reload", state=session["state"])
        logger.info("Checkout %s (%s): %s -> %s", session["_id"], session["orderId"], session["state"], new_state.value)
        return {**session, **update}

    def _strategy(self, session: dict) -> PaymentStrategy:
        method = session.get("payment_method")
        if method not in self.strategies:
            raise InvalidCheckoutState("Select a payment method first")
        return self.strategies[method]

    @staticmethod
    def _out(session: dict) -> dict:
        return serialize_doc(session)

    # Session lifecycle

    def start(self, user: dict, source: str = "cart", product_id: Optional[str] = None, variant_spec_name: Optional[str] = None, quantity: int = 1) -> dict:
        if source == "buy_now":
            if not product_id:
                raise EmptyCart("Choose a product to buy")
            items = [self.ledger.price_line(product_id, variant_spec_name, quantity)]
        else:
            source = "cart"
            items = self.carts.items(user["email"])
            if not items:
                raise EmptyCart()
            self.ledger.check_availability(stock_lines(items))

        now = now_utc()
        session = {
            "orderId": new_order_id(),
            "userEmail": user["email"],
            "userName": user.get("name"),
            "state": S.IDLE.value,
            "source": source,
            "items": items,
            "address": None,
            "payment_method": None,
            "pricing": quote(items),
            "handoff": {},
            "history": [],
            "created_at": now,
            "updated_at": now,
        }
        session["_id"] = self.sessions.insert_one(session).inserted_id
        logger.info("Checkout %s started for %s from %s", session["_id"], user["email"], source)
        return self._out(session)

    def get(self, session_id: str, user: dict) -> dict:
        return self._out(self._load(session_id, user))

    def collect_address(self, session_id: str, user: dict, address: Address) -> dict:
        session = self._load(session_id, user)
        self._require(session, ADDRESS_STATES, "change the address")
        session = self._transition(session, S.ADDRESS_COLLECTED, address=address.model_dump(), payment_method=None, pricing=quote(session["items"]))
        return self._out(session)

    def select_payment(self, session_id: str, user: dict, method: str) -> dict:
        session = self._load(session_id, user)
        self._require(session, PAYMENT_STATES, "select a payment method")
        if not session.get("address"):
            raise InvalidCheckoutState("Add a delivery address first")
        if not session.get("items"):
            raise EmptyCart()
        if method not in self.strategies:
            raise InvalidCheckoutState(f"Unknown payment method {method}")
        # COD carries a delivery surcharge the prepaid methods do not, so reprice on every change
        session = self._transition(session, S.PAYMENT_SELECTED, payment_method=method, pricing=quote(session["items"], method), handoff={}, error=None)
        return self._out(session)

    def abandon(self, session_id: str, user: dict) -> dict:
        session = self._load(session_id, user)
        self._require(session, ABANDON_STATES, "abandon checkout")
        return self._out(self._transition(session, S.ABANDONED))

    # Confirmation

    def confirm(self, session_id: str, user: dict) -> CheckoutResult:
        session = self._load(session_id, user)
        self._require(session, CONFIRM_STATES, "confirm the order")
        strategy = self._strategy(session)
        self.ledger.check_availability(stock_lines(session["items"]))

        session = self._transition(session, S.AWAITING_CONFIRMATION, error=None)
        try:
            outcome = strategy.attempt_confirmation(session)
        except ShopError as exc:
            self._reject(session, exc)
            raise

        if outcome.verdict is Verdict.AWAITING:
            session = self._transition_in_place(session, handoff=outcome.handoff)
            return CheckoutResult(self._out(session), handoff=outcome.handoff)
        return self._finalize(session, strategy, outcome)

    def gateway_callback(self, session_id: str, user: dict, gateway_order_id: str, gateway_payment_id: str, signature: str) -> CheckoutResult:
        session = self._load(session_id, user)
        if session["state"] == S.COMPLETED.value and session.get("gateway_payment_id") == gateway_payment_id:
            # Replayed callback for an order that already exists
            order = self.store.find_by_order_id(session["orderId"])
            return CheckoutResult(self._out(session), order=order, created=False)
        self._require(session, (S.AWAITING_CONFIRMATION,), "verify a payment")
        strategy = self._strategy(session)
        if not hasattr(strategy, "verify_callback"):
            raise InvalidCheckoutState(f"Payment method {strategy.method} has no gateway callback")

        try:
            outcome = strategy.verify_callback(session, gateway_order_id, gateway_payment_id, signature)
        except InvalidSignature as exc:
            logger.warning("Rejected gateway callback for %s: %s", session["orderId"], exc.message)
            self._reject(session, exc)
            raise
        session = self._transition(session, S.CONFIRMED, gateway_payment_id=gateway_payment_id)
        return self._finalize(session, strategy, outcome)

    def submit_upi_evidence(self, session_id: str, user: dict, filename: Optional[str], content: Optional[bytes]) -> CheckoutResult:
        session = self._load(session_id, user)
        self._require(session, (S.AWAITING_CONFIRMATION,), "submit payment proof")
        strategy = self._strategy(session)
        if not hasattr(strategy, "submit_evidence"):
            raise InvalidCheckoutState(f"Payment method {strategy.method} takes no payment proof")

        outcome = strategy.submit_evidence(session, filename, content)
        stored = self._save_evidence(session["orderId"], filename, content)
        session = self._transition(session, S.CONFIRMED, payment_evidence=stored)
        return self._finalize(session, strategy, outcome)

    def retry(self, session_id: str, user: dict) -> CheckoutResult:
        """Finish a checkout whose payment was confirmed but whose order was not completed."""
        session = self._load(session_id, user)
        self._require(session, (S.CONFIRMED, S.STOCK_APPLIED), "retry the order")
        return self._finalize(session, self._strategy(session), ConfirmationOutcome(Verdict.CONFIRMED))

    # Internals

    def _transition_in_place(self, session: dict, **fields) -> dict:
        fields["updated_at"] = now_utc()
        self.sessions.update_one({"_id": session["_id"], "state": session["state"]}, {"$set": fields})
        return {**session, **fields}

    def _reject(self, session: dict, exc: ShopError) -> dict:
        return self._transition(session, S.REJECTED, error={"error": exc.code, "detail": exc.message})

    def _save_evidence(self, order_id: str, filename: str, content: bytes) -> str:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        safe_name = Path(filename).name.replace(" ", "_")
        path = self.upload_dir / f"{order_id}-{safe_name}"
        path.write_bytes(content)
        return f"/uploads/{path.name}"

    def _build_order(self, session: dict, strategy: PaymentStrategy) -> Order:
        address = Address(**session["address"])
        pricing = session["pricing"]
        items = session["items"]
        payment_status = strategy.payment_status()
        shipping_address = address.full()
        email_summary = {
            "orderId": session["orderId"],
            "products": [
                {
                    "name": i["name"],
                    "quantity": i["quantity"],
                    "price": i["unitPrice"],
                    "lineTotal": round(i["unitPrice"] * i["quantity"], 2),
                }
                for i in items
            ],
            "totals": {k: pricing[k] for k in ("subtotal", "gst", "delivery", "total")},
            "paymentStatus": payment_status,
            "shippingAddress": shipping_address,
        }
        return Order(
            orderId=session["orderId"],
            orderDate=date.today().isoformat(),
            userEmail=session["userEmail"],
            customerName=address.name,
            customerPhone=address.phone,
            customerAddress=shipping_address,
            total=pricing["total"],
            status="Pending",
            products_summary=[
                OrderItem(
                    productId=i["productId"],
                    name=i["name"],
                    quantity=i["quantity"],
                    image=i.get("image"),
                    variantSpecName=i.get("variantSpecName"),
                )
                for i in items
            ],
            payment_method=strategy.method,
            payment_status=payment_status,
            email_summary=email_summary,
            gateway_order_id=(session.get("handoff") or {}).get("gateway_order_id"),
            gateway_payment_id=session.get("gateway_payment_id"),
            payment_evidence=session.get("payment_evidence"),
        )

    def _finalize(self, session: dict, strategy: PaymentStrategy, outcome: ConfirmationOutcome) -> CheckoutResult:
        if session["state"] == S.AWAITING_CONFIRMATION.value:
            session = self._transition(session, S.CONFIRMED)

        created = False
        if session["state"] == S.CONFIRMED.value:
            try:
                order, created = self.store.create(self._build_order(session, strategy))
            except PyMongoError as exc:
                if strategy.prepaid:
                    logger.error(
                        "RECONCILE: payment for %s confirmed (%s) but the order could not be stored: %s",
                        session["orderId"], strategy.method, exc,
                    )
                else:
                    logger.error("Order %s could not be stored: %s", session["orderId"], exc)
                raise StoreUnavailable() from exc

            report = self.ledger.deduct(stock_lines(session["items"]))
            if not report.ok:
                error = report.first_error
                try:
                    self.store.delete_by_order_id(session["orderId"])
                except PyMongoError as exc:
                    # Session stays Confirmed for retry
                    logger.error("Order %s could not be withdrawn after %s: %s", session["orderId"], error.code, exc)
                    raise StoreUnavailable() from exc
                if strategy.prepaid:
                    logger.error(
                        "RECONCILE: payment for %s captured via %s but stock could not be taken (%s); order withdrawn, refund required",
                        session["orderId"], strategy.method, error.code,
                    )
                self._transition(session, S.REJECTED, error={"error": error.code, "detail": error.message}, deduction=report.to_dict())
                raise error
            session = self._transition(session, S.STOCK_APPLIED, order_db_id=order["id"])
        else:
            order = self.store.find_by_order_id(session["orderId"])

        if session["source"] == "cart" and lines_match(self.carts.items(session["userEmail"]), session["items"]):
            self.carts.clear(session["userEmail"])
        session = self._transition(session, S.COMPLETED)
        return CheckoutResult(self._out(session), order=order, created=created, handoff=outcome.handoff)
