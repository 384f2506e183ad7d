"""
Inventory ledger: the only code that does stock arithmetic.

Simple products keep a single `stock` count. Variant products keep one
count per variant and their aggregate `stock` is recomputed from the
variants on every write. Writes are compare-and-set on the product's
`version` field so two concurrent deductions cannot both read the same
stock and overwrite each other.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import now_utc, to_object_id
from errors import MissingVariantSelector, OutOfStock, ProductNotFound, ShopError, StoreUnavailable, VariantNotFound
from pricing import effective_price
from schemas import CartLine

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 5
PLACEHOLDER_IMAGE = "https://placehold.co/400x300/e0e0e0/757575?text=No+Image"


@dataclass
class StockLine:
    product_id: str
    quantity: int
    variant_spec_name: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return self.product_id, self.variant_spec_name


@dataclass
class LineResult:
    line: StockLine
    ok: bool
    error: Optional[ShopError] = None
    rolled_back: bool = False
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "productId": self.line.product_id,
            "variantSpecName": self.line.variant_spec_name,
            "quantity": self.line.quantity,
            "ok": self.ok,
            "error": self.error.code if self.error else None,
            "message": self.error.message if self.error else None,
            "rolled_back": self.rolled_back,
            "skipped": self.skipped,
        }


@dataclass
class DeductionReport:
    results: List[LineResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def first_error(self) -> Optional[ShopError]:
        return next((r.error for r in self.results if r.error is not None), None)

    def to_dict(self) -> dict:
        return {"ok": self.ok, "lines": [r.to_dict() for r in self.results]}


def is_variant_product(doc: dict) -> bool:
    return doc.get("kind") == "variant" and bool(doc.get("variants"))


def _find_variant(doc: dict, variants: List[dict], spec_name: Optional[str]) -> dict:
    if not spec_name:
        raise MissingVariantSelector(productId=str(doc["_id"]))
    variant = next((v for v in variants if v.get("specName") == spec_name), None)
    if variant is None:
        raise VariantNotFound(
            f"Variant '{spec_name}' not found for product.",
            productId=str(doc["_id"]),
            variantSpecName=spec_name,
        )
    return variant


def apply_movement(doc: dict, line: StockLine, delta: int) -> Tuple[Optional[List[dict]], int]:
    """Return the (variants, aggregate stock) a product would have after moving `delta` units."""
    if is_variant_product(doc):
        variants = [dict(v) for v in doc["variants"]]
        variant = _find_variant(doc, variants, line.variant_spec_name)
        current = int(variant.get("stock") or 0)
        if current + delta < 0:
            raise OutOfStock(
                f"Not enough stock for variant '{line.variant_spec_name}'. Available: {current}, Requested: {-delta}",
                productId=line.product_id,
                variantSpecName=line.variant_spec_name,
                available=current,
            )
        variant["stock"] = current + delta
        return variants, sum(int(v.get("stock") or 0) for v in variants)

    current = int(doc.get("stock") or 0)
    if current + delta < 0:
        raise OutOfStock(
            f"Not enough stock for {doc.get('name', 'this product')}. Available: {current}, Requested: {-delta}",
            productId=line.product_id,
            available=current,
        )
    return None, current + delta


class InventoryLedger:
    def __init__(self, db: Database):
        self.products = db["product"]

    def load(self, product_id: str) -> dict:
        oid = to_object_id(product_id)
        doc = self.products.find_one({"_id": oid}) if oid else None
        if not doc:
            raise ProductNotFound(productId=product_id)
        return doc

    def _write(self, doc: dict, variants: Optional[List[dict]], stock: int) -> bool:
        update = {"stock": stock, "updated_at": now_utc()}
        if variants is not None:
            update["variants"] = variants
        result = self.products.update_one(
            {"_id": doc["_id"], "version": doc.get("version")},
            {"$set": update, "$inc": {"version": 1}},
        )
        return result.matched_count == 1

    def _move(self, line: StockLine, delta: int) -> None:
        try:
            self._apply(line, delta)
        except PyMongoError as exc:
            logger.error("Stock write for %s (%s) failed: %s", line.product_id, line.variant_spec_name, exc)
            raise StoreUnavailable("Stock could not be updated right now. Please try again.", productId=line.product_id) from exc

    def _apply(self, line: StockLine, delta: int) -> None:
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            doc = self.load(line.product_id)
            variants, stock = apply_movement(doc, line, delta)
            if self._write(doc, variants, stock):
                logger.debug("Stock moved by %s for %s (%s), aggregate now %s", delta, line.product_id, line.variant_spec_name, stock)
                return
            logger.info("Concurrent stock write on %s, retrying (%s/%s)", line.product_id, attempt, MAX_WRITE_ATTEMPTS)
        raise OutOfStock("Stock changed while placing the order. Please try again.", productId=line.product_id)

    def deduct(self, lines: Iterable[StockLine], atomic: bool = True) -> DeductionReport:
        """Take stock for every line.

        With ``atomic`` (the default) the first failing line stops the
        batch and every line already taken is put back, so an order either
        takes all of its stock or none. Without it each line stands alone
        and earlier successes are kept.
        """
        lines = list(lines)
        report = DeductionReport()
        applied: List[LineResult] = []
        for index, line in enumerate(lines):
            try:
                self._move(line, -line.quantity)
            except ShopError as exc:
                logger.warning("Stock deduction failed for %s (%s): %s", line.product_id, line.variant_spec_name, exc.message)
                report.results.append(LineResult(line, ok=False, error=exc))
                if atomic:
                    report.results.extend(LineResult(rest, ok=False, skipped=True) for rest in lines[index + 1:])
                    break
                continue
            result = LineResult(line, ok=True)
            report.results.append(result)
            applied.append(result)

        if atomic and not report.ok:
            for result in reversed(applied):
                try:
                    self._move(result.line, result.line.quantity)
                except ShopError as exc:
                    logger.error("RECONCILE: could not restore %s units of %s (%s): %s", result.line.quantity, result.line.product_id, result.line.variant_spec_name, exc.message)
                    continue
                result.rolled_back = True
        return report

    def restock(self, lines: Iterable[StockLine]) -> DeductionReport:
        report = DeductionReport()
        for line in lines:
            try:
                self._move(line, line.quantity)
            except ShopError as exc:
                logger.warning("Restock failed for %s (%s): %s", line.product_id, line.variant_spec_name, exc.message)
                report.results.append(LineResult(line, ok=False, error=exc))
                continue
            report.results.append(LineResult(line, ok=True))
        return report

    def check_availability(self, lines: Iterable[StockLine]) -> None:
        """Raise the error a deduction would raise, without writing anything."""
        wanted: Dict[Tuple[str, Optional[str]], StockLine] = {}
        for line in lines:
            if line.key in wanted:
                wanted[line.key].quantity += line.quantity
            else:
                wanted[line.key] = StockLine(line.product_id, line.quantity, line.variant_spec_name)
        for line in wanted.values():
            apply_movement(self.load(line.product_id), line, -line.quantity)

    def price_line(self, product_id: str, variant_spec_name: Optional[str], quantity: int = 1) -> dict:
        """Resolve a cart line at its current effective price, refusing items that cannot be supplied."""
        doc = self.load(product_id)
        line = StockLine(product_id, quantity, variant_spec_name)
        apply_movement(doc, line, -quantity)

        name = doc.get("name", "")
        if is_variant_product(doc):
            variant = _find_variant(doc, doc["variants"], variant_spec_name)
            unit_price = effective_price(variant.get("price"), variant.get("mrp_price"), variant.get("discount_end_date"))
            name = f"{name} ({variant_spec_name})"
        else:
            variant_spec_name = None
            unit_price = effective_price(doc.get("price"), doc.get("mrp_price"), doc.get("discount_end_date"))

        images = doc.get("images") or []
        return CartLine(
            productId=product_id,
            variantSpecName=variant_spec_name,
            unitPrice=unit_price,
            quantity=quantity,
            name=name,
            image=images[0] if images else PLACEHOLDER_IMAGE,
            category=doc["category"],
        ).model_dump()
