import logging
from typing import List, Optional

from pymongo.database import Database

from database import now_utc, to_object_id
from errors import ProductNotFound, RatingNotAllowed
from schemas import Review

logger = logging.getLogger(__name__)


def empty_breakdown() -> dict:
    return {str(star): 0 for star in range(5, 0, -1)}


class ReviewService:
    """Customer ratings; product rating fields are recomputed from the stored reviews."""

    def __init__(self, db: Database):
        self.reviews = db["review"]
        self.products = db["product"]
        self.orders = db["order"]

    def _has_ordered(self, email: str, product_id: str) -> bool:
        return self.orders.find_one({
            "userEmail": email,
            "products_summary.productId": product_id,
            "status": {"$ne": "Cancelled"},
        }) is not None

    def rate(self, product_id: str, user: dict, rating: int, comment: Optional[str] = None) -> dict:
        """Store or replace the user's rating for a product and return the new product summary."""
        oid = to_object_id(product_id)
        product = self.products.find_one({"_id": oid}) if oid else None
        if not product:
            raise ProductNotFound(productId=product_id)
        if not self._has_ordered(user["email"], product_id):
            raise RatingNotAllowed(productId=product_id)

        review = Review(
            productId=product_id,
            productName=product.get("name", ""),
            userEmail=user["email"],
            userName=user.get("name") or user["email"],
            rating=rating,
            comment=comment,
        )
        now = now_utc()
        self.reviews.update_one(
            {"productId": product_id, "userEmail": review.userEmail},
            {"$set": {**review.model_dump(), "updated_at": now}, "$setOnInsert": {"createdAt": now}},
            upsert=True,
        )
        summary = self.summary(product_id)
        self.products.update_one({"_id": oid}, {"$set": summary})
        logger.info("%s rated product %s with %s stars, average now %s", review.userEmail, product_id, rating, summary["rating"])
        return summary

    def summary(self, product_id: str) -> dict:
        breakdown = empty_breakdown()
        for review in self.reviews.find({"productId": product_id}):
            breakdown[str(review["rating"])] += 1
        count = sum(breakdown.values())
        stars = sum(int(star) * n for star, n in breakdown.items())
        return {
            "rating": round(stars / count, 1) if count else 0.0,
            "reviews": count,
            "ratingBreakdown": breakdown,
        }

    def report(self) -> List[dict]:
        return [
            {
                "id": str(r["_id"]),
                "product_name": r.get("productName"),
                "user_name": r.get("userName"),
                "rating": r["rating"],
                "comment": r.get("comment"),
                "createdAt": r.get("createdAt"),
            }
            for r in self.reviews.find({}).sort("createdAt", -1)
        ]
