from datetime import date

from pricing import delivery_charge, discount_active, effective_price, quote


def line(unit_price, quantity=1, category="accessories"):
    return {"unitPrice": unit_price, "quantity": quantity, "category": category}


def test_discount_runs_until_end_date_inclusive():
    today = date(2026, 3, 10)
    assert discount_active(900, 1000, "2026-03-10", today)
    assert not discount_active(900, 1000, "2026-03-09", today)
    assert discount_active(900, 1000, None, today)


def test_effective_price_falls_back_to_mrp():
    assert effective_price(900, 1000) == 900
    assert effective_price(None, 1000) == 1000
    assert effective_price(1100, 1000) == 1000
    assert effective_price(900, 1000, "2020-01-01") == 1000


def test_cod_below_threshold_pays_delivery():
    totals = quote([line(1000)], "cod")
    assert totals == {"subtotal": 1000, "gst": 50, "delivery": 40, "total": 1090}


def test_cod_above_category_threshold_is_free():
    assert delivery_charge([line(800, 2)], "cod") == 0
    assert delivery_charge([line(30000, category="mobiles")], "cod") == 0
    assert delivery_charge([line(20000, category="mobiles"), line(1000)], "cod") == 40


def test_prepaid_never_pays_delivery():
    assert delivery_charge([line(100)], "online") == 0
    assert delivery_charge([line(100)], "upi") == 0
    assert quote([line(100)])["delivery"] == 0
