"""
Database Schemas for Smart Tech Shop

Each Pydantic model represents a MongoDB collection. The collection name is the lowercase of the class name.

Collections:
- Product (SimpleProduct or VariantProduct, told apart by `kind`)
- Order
- Review (one per customer and product)
- ServiceRequest (stored as "service")
- Advertisement
- User

CartLine, Address and OrderItem are embedded documents. Carts, wishlists and
checkout sessions are plain documents owned by cart.py and checkout.py.
"""

from datetime import date
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, EmailStr, Field, model_validator

Category = Literal["mobiles", "laptops", "tvs", "accessories", "smartwatch", "seconds"]
VARIANT_CATEGORIES = ("mobiles", "laptops", "seconds")

PaymentMethod = Literal["cod", "online", "upi"]
COD_PAID = "COD-Paid"

OrderStatus = Literal["Pending", "Paid", "Shipped", "Delivered", "Cancelled"]


def _date_only(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if value in ("", "null"):
        return None
    value = value.split("T")[0]
    date.fromisoformat(value)
    return value


DateOnly = Annotated[Optional[str], BeforeValidator(_date_only)]


class Variant(BaseModel):
    specName: str = Field(..., min_length=1, description="Variant label, e.g. '8GB/128GB'")
    price: Optional[float] = Field(None, ge=0, description="Discounted price, null when no discount runs")
    mrp_price: float = Field(..., ge=0, description="Reference price")
    discount_end_date: DateOnly = Field(None, description="Last day of the discount (YYYY-MM-DD)")
    stock: int = Field(0, ge=0)


class ProductBase(BaseModel):
    name: str = Field(..., description="Product title")
    category: Category
    brand: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    specs: dict = Field(default_factory=dict)
    rating: float = Field(0, ge=0, le=5, description="Average stars, one decimal")
    reviews: int = Field(0, ge=0, description="Number of ratings")
    ratingBreakdown: Dict[str, int] = Field(default_factory=lambda: {str(star): 0 for star in range(5, 0, -1)})


class SimpleProduct(ProductBase):
    kind: Literal["simple"] = "simple"
    price: Optional[float] = Field(None, ge=0)
    mrp_price: float = Field(..., ge=0)
    discount_end_date: DateOnly = None
    stock: int = Field(0, ge=0)


class VariantProduct(ProductBase):
    kind: Literal["variant"] = "variant"
    variants: List[Variant] = Field(..., min_length=1)
    stock: int = Field(0, ge=0, description="Always the sum of variant stocks")

    @model_validator(mode="after")
    def _check_variants(self):
        if self.category not in VARIANT_CATEGORIES:
            raise ValueError(f"Variant pricing is only allowed for {', '.join(VARIANT_CATEGORIES)}")
        names = [v.specName for v in self.variants]
        if len(names) != len(set(names)):
            raise ValueError("Variant specName must be unique within a product")
        self.stock = sum(v.stock for v in self.variants)
        return self


Product = Annotated[Union[SimpleProduct, VariantProduct], Field(discriminator="kind")]


class CartLine(BaseModel):
    productId: str
    variantSpecName: Optional[str] = None
    unitPrice: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    name: str
    image: Optional[str] = None
    category: Category


class Address(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., pattern=r"^\d{10}$")
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    pincode: str = Field(..., pattern=r"^\d{6}$")

    def full(self) -> str:
        return f"{self.address.strip()}, {self.city.strip()} - {self.pincode.strip()}"


class OrderItem(BaseModel):
    productId: str
    name: str
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None
    variantSpecName: Optional[str] = None


class Order(BaseModel):
    orderId: str = Field(..., description="Business key generated at checkout")
    orderDate: str
    userEmail: EmailStr
    customerName: str
    customerPhone: str
    customerAddress: str
    total: float = Field(..., ge=0)
    status: OrderStatus = "Pending"
    products_summary: List[OrderItem]
    payment_method: str
    payment_status: str
    email_summary: dict = Field(default_factory=dict)
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    payment_evidence: Optional[str] = None


class ServiceRequest(BaseModel):
    name: str
    phone: str
    email: Optional[EmailStr] = None
    deviceType: str
    model: Optional[str] = None
    issue: str
    status: str = Field("Pending", description="Pending | In Progress | Completed")


class Review(BaseModel):
    productId: str
    productName: str
    userEmail: EmailStr
    userName: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class Advertisement(BaseModel):
    image_url: str
    description: Optional[str] = None


class User(BaseModel):
    first_name: str
    last_name: str = ""
    email: EmailStr
    password: str = Field(..., description="bcrypt hash")
    role: Literal["customer", "admin"] = "customer"
