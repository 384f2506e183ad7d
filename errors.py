"""
Error taxonomy for the shop core.

Domain code raises these; main.py turns them into JSON responses of the
form {"detail": ..., "error": <code>}.
"""

from typing import Optional


class ShopError(Exception):
    code = "ShopError"
    status_code = 400
    message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **context):
        self.message = message or self.message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **self.context}


class OutOfStock(ShopError):
    code = "OutOfStock"
    status_code = 409
    message = "This item is out of stock."


class MissingVariantSelector(ShopError):
    code = "MissingVariantSelector"
    status_code = 400
    message = "A variant must be selected for this product."


class InvalidSignature(ShopError):
    code = "InvalidSignature"
    status_code = 400
    message = "Invalid payment signature"


class MissingEvidence(ShopError):
    code = "MissingEvidence"
    status_code = 400
    message = "Please upload the payment screenshot to proceed."


class NotFound(ShopError):
    code = "NotFound"
    status_code = 404
    message = "Not found"


class ProductNotFound(NotFound):
    message = "Product not found"


class VariantNotFound(NotFound):
    message = "Variant not found for product"


class OrderNotFound(NotFound):
    message = "Order not found"


class SessionNotFound(NotFound):
    message = "Checkout session not found"


class InvalidStatusTransition(ShopError):
    code = "InvalidStatusTransition"
    status_code = 409
    message = "Order status cannot change this way"


class NetworkFailure(ShopError):
    code = "NetworkFailure"
    status_code = 502
    message = "Something went wrong while contacting the payment service. Please try again."


class EmptyCart(ShopError):
    code = "EmptyCart"
    status_code = 400
    message = "Your cart is empty"


class InvalidCheckoutState(ShopError):
    code = "InvalidCheckoutState"
    status_code = 409
    message = "Checkout cannot do that in its current state"


class StoreUnavailable(ShopError):
    code = "StoreUnavailable"
    status_code = 503
    message = "Your order could not be recorded right now. Please try again."


class RatingNotAllowed(ShopError):
    code = "RatingNotAllowed"
    status_code = 403
    message = "Only customers who ordered this product can rate it"
