import pytest

from conftest import seed_simple, stock_of
from errors import InvalidStatusTransition, OrderNotFound
from order_store import OrderStore
from schemas import Order, OrderItem


def make_order(order_id="order_1700000000000_abc123", payment_method="cod", payment_status="Not Paid (COD)", product_id="p1"):
    return Order(
        orderId=order_id,
        orderDate="2026-10-19",
        userEmail="asha@gmail.com",
        customerName="Asha Rao",
        customerPhone="9876543210",
        customerAddress="12 MG Road, Bengaluru - 560001",
        total=1090,
        products_summary=[OrderItem(productId=product_id, name="USB-C Charger", quantity=1)],
        payment_method=payment_method,
        payment_status=payment_status,
    )


def test_create_assigns_sequential_ids(db):
    store = OrderStore(db)
    first, created = store.create(make_order("order_a"))
    second, _ = store.create(make_order("order_b"))
    assert created
    assert (first["id"], second["id"]) == (1, 2)
    assert first["status"] == "Pending"


def test_create_is_idempotent_per_order_id(db):
    store = OrderStore(db)
    first, created = store.create(make_order())
    again, created_again = store.create(make_order())
    assert created and not created_again
    assert again["id"] == first["id"]
    assert db["order"].count_documents({}) == 1


def test_cod_delivery_marks_order_paid(db):
    store = OrderStore(db)
    order, _ = store.create(make_order())
    delivered = store.update_status(order["id"], "Delivered")
    assert delivered["payment_method"] == "COD-Paid"
    assert delivered["payment_status"] == "Paid"
    assert store.get(order["id"])["payment_method"] == "COD-Paid"


def test_prepaid_delivery_keeps_method(db):
    store = OrderStore(db)
    order, _ = store.create(make_order(payment_method="online", payment_status="Paid"))
    assert store.update_status(order["id"], "Delivered")["payment_method"] == "online"


def test_cancel_keeps_method_and_stock(db):
    pid = seed_simple(db, stock=2)
    store = OrderStore(db)
    order, _ = store.create(make_order(product_id=pid))
    cancelled = store.update_status(order["id"], "Cancelled")
    assert cancelled["status"] == "Cancelled"
    assert cancelled["payment_method"] == "cod"
    assert stock_of(db, pid) == 2


@pytest.mark.parametrize("path", [["Delivered", "Cancelled"], ["Cancelled", "Shipped"], ["Shipped", "Pending"]])
def test_terminal_and_backward_transitions_are_refused(db, path):
    store = OrderStore(db)
    order, _ = store.create(make_order())
    store.update_status(order["id"], path[0])
    with pytest.raises(InvalidStatusTransition):
        store.update_status(order["id"], path[1])


def test_forward_chain(db):
    store = OrderStore(db)
    order, _ = store.create(make_order(payment_method="upi", payment_status="Paid"))
    for status in ("Paid", "Shipped", "Delivered"):
        assert store.update_status(order["id"], status)["status"] == status


def test_missing_order(db):
    with pytest.raises(OrderNotFound):
        OrderStore(db).get(42)
    with pytest.raises(OrderNotFound):
        OrderStore(db).update_status(42, "Shipped")


def test_sequence_restarts_when_all_orders_removed(db):
    store = OrderStore(db)
    first, _ = store.create(make_order("order_a"))
    second, _ = store.create(make_order("order_b"))
    assert store.remove(first["id"]) is False
    assert store.remove(second["id"]) is True
    fresh, _ = store.create(make_order("order_c"))
    assert fresh["id"] == 1


def test_list_for_user(db):
    store = OrderStore(db)
    store.create(make_order("order_a"))
    assert [o["orderId"] for o in store.list_for_user("asha@gmail.com")] == ["order_a"]
    assert store.list_for_user("ravi@gmail.com") == []
