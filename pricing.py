from datetime import date
from typing import Dict, Iterable, Optional

GST_RATE = 0.05

# COD delivery is free once a single category's subtotal reaches its threshold
DELIVERY_THRESHOLDS = {
    "mobiles": 25000,
    "laptops": 40000,
    "tvs": 30000,
    "accessories": 1500,
    "smartwatch": 1500,
}
DEFAULT_DELIVERY_CHARGE = 40.0


def discount_active(price: Optional[float], mrp_price: Optional[float], discount_end_date: Optional[str], today: Optional[date] = None) -> bool:
    if not price or not mrp_price or price <= 0 or mrp_price <= 0 or price >= mrp_price:
        return False
    if discount_end_date:
        today = today or date.today()
        if today > date.fromisoformat(discount_end_date):
            return False
    return True


def effective_price(price: Optional[float], mrp_price: Optional[float], discount_end_date: Optional[str] = None, today: Optional[date] = None) -> float:
    """Price a buyer pays right now: the discount while it runs, otherwise MRP."""
    if discount_active(price, mrp_price, discount_end_date, today):
        return float(price)
    if mrp_price and mrp_price > 0:
        return float(mrp_price)
    return float(price or 0)


def category_subtotals(lines: Iterable[dict]) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    for line in lines:
        totals[line["category"]] = totals.get(line["category"], 0.0) + line["unitPrice"] * line["quantity"]
    return totals


def delivery_charge(lines: Iterable[dict], payment_method: Optional[str]) -> float:
    if payment_method != "cod":
        return 0.0
    for category, subtotal in category_subtotals(lines).items():
        threshold = DELIVERY_THRESHOLDS.get(category)
        if threshold and subtotal >= threshold:
            return 0.0
    return DEFAULT_DELIVERY_CHARGE


def quote(lines: Iterable[dict], payment_method: Optional[str] = None) -> dict:
    lines = list(lines)
    subtotal = round(sum(line["unitPrice"] * line["quantity"] for line in lines), 2)
    gst = round(subtotal * GST_RATE, 2)
    delivery = delivery_charge(lines, payment_method)
    total = round(subtotal + gst + delivery, 2)
    return {"subtotal": subtotal, "gst": gst, "delivery": delivery, "total": total}
