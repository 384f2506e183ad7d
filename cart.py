from typing import List, Optional

from pymongo.database import Database

from database import now_utc

ANONYMOUS_PREFIX = "anon:"


def owner_key(user: Optional[dict], cart_token: Optional[str]) -> Optional[str]:
    if user:
        return user["email"]
    if cart_token:
        return f"{ANONYMOUS_PREFIX}{cart_token}"
    return None


def _same_line(a: dict, b: dict) -> bool:
    return a["productId"] == b["productId"] and (a.get("variantSpecName") or None) == (b.get("variantSpecName") or None)


def lines_match(a: List[dict], b: List[dict]) -> bool:
    """True when two carts hold the same products, variants, quantities and prices."""
    def norm(lines):
        return sorted(
            (line["productId"], line.get("variantSpecName") or "", int(line["quantity"]), round(float(line["unitPrice"]), 2))
            for line in lines
        )
    return norm(a) == norm(b)


class CartService:
    def __init__(self, db: Database):
        self.carts = db["cart"]

    def items(self, owner: str) -> List[dict]:
        doc = self.carts.find_one({"owner": owner})
        return list(doc.get("items", [])) if doc else []

    def _save(self, owner: str, items: List[dict]) -> List[dict]:
        self.carts.update_one(
            {"owner": owner},
            {"$set": {"items": items, "updated_at": now_utc()}},
            upsert=True,
        )
        return items

    def add(self, owner: str, line: dict) -> List[dict]:
        items = self.items(owner)
        found = next((i for i in items if _same_line(i, line)), None)
        if found:
            found["quantity"] += line["quantity"]
        else:
            items.append(line)
        return self._save(owner, items)

    def set_quantity(self, owner: str, product_id: str, variant_spec_name: Optional[str], quantity: int) -> List[dict]:
        key = {"productId": product_id, "variantSpecName": variant_spec_name}
        items = self.items(owner)
        if quantity <= 0:
            items = [i for i in items if not _same_line(i, key)]
        else:
            for i in items:
                if _same_line(i, key):
                    i["quantity"] = quantity
        return self._save(owner, items)

    def remove(self, owner: str, product_id: str, variant_spec_name: Optional[str]) -> List[dict]:
        return self.set_quantity(owner, product_id, variant_spec_name, 0)

    def clear(self, owner: str) -> None:
        self.carts.delete_one({"owner": owner})

    def merge(self, from_owner: str, to_owner: str) -> List[dict]:
        """Fold an anonymous cart into the signed-in user's cart."""
        incoming = self.items(from_owner)
        items = self.items(to_owner)
        for line in incoming:
            found = next((i for i in items if _same_line(i, line)), None)
            if found:
                found["quantity"] += line["quantity"]
            else:
                items.append(line)
        self.clear(from_owner)
        return self._save(to_owner, items)


class WishlistService:
    def __init__(self, db: Database):
        self.wishlists = db["wishlist"]

    def items(self, owner: str) -> List[str]:
        doc = self.wishlists.find_one({"owner": owner})
        return list(doc.get("products", [])) if doc else []

    def add(self, owner: str, product_id: str) -> List[str]:
        self.wishlists.update_one({"owner": owner}, {"$addToSet": {"products": product_id}}, upsert=True)
        return self.items(owner)

    def remove(self, owner: str, product_id: str) -> List[str]:
        self.wishlists.update_one({"owner": owner}, {"$pull": {"products": product_id}})
        return self.items(owner)
