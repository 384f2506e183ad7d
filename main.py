import json
import logging
import os
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field, TypeAdapter, ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
from auth import create_access_token, get_current_user, get_optional_user, get_password_hash, public_user, require_admin, verify_password
from cart import ANONYMOUS_PREFIX, CartService, WishlistService, owner_key
from checkout import CheckoutOrchestrator
from config import settings
from database import create_document, ensure_indexes, get_db, get_documents, next_sequence, now_utc, reset_sequence_if_empty, serialize_doc, to_object_id
from errors import InvalidSignature, ProductNotFound, ShopError
from inventory import InventoryLedger, StockLine
from notifications import NotificationDispatcher, default_sender
from order_store import OrderStore
from payments import PaymentGateway, build_strategies, default_gateway
from reviews import ReviewService
from schemas import Address, Advertisement, OrderStatus, PaymentMethod, Product, ServiceRequest, User

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Smart Tech Shop API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
def startup_event():
    try:
        ensure_indexes(database.db)
    except PyMongoError as exc:
        # The API still starts; requests will fail until MongoDB is reachable
        logger.warning("Could not create indexes: %s", exc)


# Dependencies

@lru_cache
def get_gateway() -> PaymentGateway:
    return default_gateway()


@lru_cache
def get_email_sender():
    return default_sender()


def get_dispatcher(sender=Depends(get_email_sender)) -> NotificationDispatcher:
    return NotificationDispatcher(sender)


def get_ledger(db: Database = Depends(get_db)) -> InventoryLedger:
    return InventoryLedger(db)


def get_order_store(db: Database = Depends(get_db)) -> OrderStore:
    return OrderStore(db)


def get_orchestrator(
    db: Database = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
    store: OrderStore = Depends(get_order_store),
    gateway: PaymentGateway = Depends(get_gateway),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(db, ledger, store, build_strategies(gateway), upload_dir=settings.UPLOAD_DIR)


def cart_owner(user=Depends(get_optional_user), cart_token: Optional[str] = Header(None, alias="X-Cart-Token")) -> str:
    owner = owner_key(user, cart_token)
    if owner is None:
        raise HTTPException(400, "Sign in or send an X-Cart-Token header")
    return owner


def save_upload(upload: UploadFile, content: bytes) -> str:
    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    name = f"{int(now_utc().timestamp() * 1000)}-{Path(upload.filename).name.replace(' ', '_')}"
    (upload_dir / name).write_bytes(content)
    return f"/uploads/{name}"


# Health and DB test
@app.get("/")
def read_root():
    return {"message": "Smart Tech Shop API ready"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": db.name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except PyMongoError as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


# Auth models
class RegisterBody(BaseModel):
    first_name: str
    last_name: str = ""
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


# Auth routes
@app.post("/register", status_code=201)
def register(body: RegisterBody, db: Database = Depends(get_db)):
    if db["user"].find_one({"email": body.email}):
        raise HTTPException(400, "Email already registered")
    role = "admin" if body.email.lower() == settings.ADMIN_EMAIL.lower() else "customer"
    user = User(first_name=body.first_name, last_name=body.last_name, email=body.email, password=get_password_hash(body.password), role=role)
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise HTTPException(400, "Email already registered")
    return {"id": user_id, "first_name": user.first_name, "last_name": user.last_name, "email": user.email, "role": role}


@app.post("/login")
def login(body: LoginBody, db: Database = Depends(get_db), cart_token: Optional[str] = Header(None, alias="X-Cart-Token")):
    user = db["user"].find_one({"email": body.email})
    if not user or not verify_password(body.password, user["password"]):
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    if cart_token:
        CartService(db).merge(f"{ANONYMOUS_PREFIX}{cart_token}", user["email"])
    access_token = create_access_token({"sub": str(user["_id"]), "role": user.get("role", "customer")})
    return {"access_token": access_token, "token_type": "bearer", "user": public_user(user)}


# Product endpoints
MAX_PRODUCT_IMAGES = 3
RATING_FIELDS = {"rating", "reviews", "ratingBreakdown"}
product_adapter = TypeAdapter(Product)


class StockUpdateItem(BaseModel):
    id: str
    qty: int = Field(..., ge=1)
    variantSpecName: Optional[str] = None


class StockUpdateBody(BaseModel):
    items: List[StockUpdateItem]
    atomic: bool = True
    mode: Literal["deduct", "restock"] = "deduct"


class RatingBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


def _blank(value: Optional[str]) -> bool:
    return value is None or value.strip() in ("", "null")


def _json_field(raw: Optional[str], default, name: str):
    if _blank(raw):
        return default
    try:
        return json.loads(raw)
    except ValueError:
        raise HTTPException(422, f"{name} must be valid JSON")


def product_form(
    name: str = Form(...),
    category: str = Form(...),
    kind: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    mrp_price: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    discount_end_date: Optional[str] = Form(None),
    specs: Optional[str] = Form(None),
    variants: Optional[str] = Form(None),
) -> dict:
    """Collect the multipart product fields; specs and variants arrive as JSON strings."""
    fields = {
        "name": name,
        "category": category,
        "brand": brand,
        "description": description,
        "price": price,
        "mrp_price": mrp_price,
        "stock": stock,
        "discount_end_date": discount_end_date,
    }
    data = {k: v for k, v in fields.items() if not _blank(v)}
    data["specs"] = _json_field(specs, {}, "specs")
    parsed_variants = _json_field(variants, [], "variants")
    data["kind"] = kind or ("variant" if parsed_variants else "simple")
    if data["kind"] == "variant":
        data["variants"] = parsed_variants
    return data


def validate_product(data: dict) -> dict:
    try:
        product = product_adapter.validate_python(data)
    except ValidationError as exc:
        raise HTTPException(422, exc.errors(include_url=False, include_context=False))
    return product.model_dump()


async def store_images(images: Optional[List[UploadFile]]) -> List[str]:
    uploads = [i for i in images or [] if i.filename]
    if len(uploads) > MAX_PRODUCT_IMAGES:
        raise HTTPException(400, f"At most {MAX_PRODUCT_IMAGES} images per upload.")
    return [save_upload(upload, await upload.read()) for upload in uploads]


@app.get("/api/products")
def list_products(category: Optional[str] = None, q: Optional[str] = None, limit: int = 100, db: Database = Depends(get_db)):
    filter_dict = {}
    if category:
        filter_dict["category"] = category
    if q:
        filter_dict["$or"] = [
            {"name": {"$regex": q, "$options": "i"}},
            {"brand": {"$regex": q, "$options": "i"}},
        ]
    return get_documents(db, "product", filter_dict, limit)


@app.put("/api/products/update-stock", dependencies=[Depends(require_admin)])
def update_stock(body: StockUpdateBody, ledger: InventoryLedger = Depends(get_ledger)):
    if not body.items:
        raise HTTPException(400, "No items provided for stock update.")
    lines = [StockLine(i.id, i.qty, i.variantSpecName) for i in body.items]
    if body.mode == "restock":
        report = ledger.restock(lines)
    else:
        report = ledger.deduct(lines, atomic=body.atomic)
    if not report.ok:
        return JSONResponse(status_code=409, content={"message": "Some stock updates failed.", **report.to_dict()})
    return {"message": "✅ All stock updated successfully", **report.to_dict()}


@app.put("/api/products/rate/{product_id}")
def rate_product(product_id: str, body: RatingBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    summary = ReviewService(db).rate(product_id, user, body.rating, body.comment)
    return {"message": "✅ Product rating updated", **summary}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    oid = to_object_id(product_id)
    doc = db["product"].find_one({"_id": oid}) if oid else None
    if not doc:
        raise ProductNotFound(productId=product_id)
    return serialize_doc(doc)


@app.post("/api/products", status_code=201, dependencies=[Depends(require_admin)])
async def create_product(
    fields: dict = Depends(product_form),
    images: Optional[List[UploadFile]] = File(None),
    db: Database = Depends(get_db),
):
    data = validate_product(fields)
    data["images"] = await store_images(images)
    data["version"] = 0
    product_id = create_document(db, "product", data)
    return {"message": "✅ Product added", "id": product_id}


@app.put("/api/products/{product_id}", dependencies=[Depends(require_admin)])
async def update_product(
    product_id: str,
    fields: dict = Depends(product_form),
    existingImages: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    db: Database = Depends(get_db),
):
    oid = to_object_id(product_id)
    current = db["product"].find_one({"_id": oid}) if oid else None
    if not current:
        raise ProductNotFound(productId=product_id)
    # Without existingImages the stored images are kept
    kept = _json_field(existingImages, current.get("images") or [], "existingImages")
    if not isinstance(kept, list):
        raise HTTPException(422, "existingImages must be a JSON list")
    update = validate_product(fields)
    update["images"] = kept + await store_images(images)
    for key in RATING_FIELDS:
        update.pop(key, None)
    update["updated_at"] = now_utc()
    if update["kind"] == "simple":
        update["variants"] = []
    res = db["product"].update_one({"_id": oid}, {"$set": update, "$inc": {"version": 1}})
    if res.matched_count == 0:
        raise ProductNotFound(productId=product_id)
    return {"message": "✅ Product updated"}


@app.delete("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, db: Database = Depends(get_db)):
    oid = to_object_id(product_id)
    res = db["product"].delete_one({"_id": oid}) if oid else None
    if not res or res.deleted_count == 0:
        raise ProductNotFound(productId=product_id)
    return {"message": "✅ Product deleted"}


@app.get("/api/review-report", dependencies=[Depends(require_admin)])
def review_report(db: Database = Depends(get_db)):
    return ReviewService(db).report()


# Cart & wishlist
class CartLineIn(BaseModel):
    productId: str
    variantSpecName: Optional[str] = None
    quantity: int = Field(1, ge=1)


class CartQuantity(BaseModel):
    productId: str
    variantSpecName: Optional[str] = None
    quantity: int = Field(..., ge=0)


@app.get("/api/cart")
def get_cart(owner: str = Depends(cart_owner), db: Database = Depends(get_db)):
    return {"items": CartService(db).items(owner)}


@app.post("/api/cart")
def add_to_cart(body: CartLineIn, owner: str = Depends(cart_owner), db: Database = Depends(get_db), ledger: InventoryLedger = Depends(get_ledger)):
    carts = CartService(db)
    already = sum(
        i["quantity"] for i in carts.items(owner)
        if i["productId"] == body.productId and (i.get("variantSpecName") or None) == (body.variantSpecName or None)
    )
    ledger.check_availability([StockLine(body.productId, already + body.quantity, body.variantSpecName)])
    line = ledger.price_line(body.productId, body.variantSpecName, body.quantity)
    return {"items": carts.add(owner, line)}


@app.put("/api/cart")
def update_cart(body: CartQuantity, owner: str = Depends(cart_owner), db: Database = Depends(get_db), ledger: InventoryLedger = Depends(get_ledger)):
    if body.quantity > 0:
        ledger.check_availability([StockLine(body.productId, body.quantity, body.variantSpecName)])
    return {"items": CartService(db).set_quantity(owner, body.productId, body.variantSpecName, body.quantity)}


@app.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, variantSpecName: Optional[str] = None, owner: str = Depends(cart_owner), db: Database = Depends(get_db)):
    return {"items": CartService(db).remove(owner, product_id, variantSpecName)}


@app.get("/api/wishlist")
def get_wishlist(owner: str = Depends(cart_owner), db: Database = Depends(get_db)):
    return {"products": WishlistService(db).items(owner)}


@app.post("/api/wishlist/{product_id}")
def add_to_wishlist(product_id: str, owner: str = Depends(cart_owner), db: Database = Depends(get_db), ledger: InventoryLedger = Depends(get_ledger)):
    ledger.load(product_id)
    return {"products": WishlistService(db).add(owner, product_id)}


@app.delete("/api/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, owner: str = Depends(cart_owner), db: Database = Depends(get_db)):
    return {"products": WishlistService(db).remove(owner, product_id)}


# Checkout
class StartCheckout(BaseModel):
    source: Literal["cart", "buy_now"] = "cart"
    productId: Optional[str] = None
    variantSpecName: Optional[str] = None
    quantity: int = Field(1, ge=1)


class PaymentChoice(BaseModel):
    payment_method: PaymentMethod


class GatewayCallback(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


def _checkout_response(result, background_tasks: BackgroundTasks, dispatcher: NotificationDispatcher) -> dict:
    if result.created and result.order:
        background_tasks.add_task(dispatcher.order_created, result.order)
    return result.to_dict()


@app.post("/api/checkout/sessions", status_code=201)
def start_checkout(body: StartCheckout, user=Depends(get_current_user), orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)):
    return orchestrator.start(user, body.source, body.productId, body.variantSpecName, body.quantity)


@app.get("/api/checkout/sessions/{session_id}")
def get_checkout(session_id: str, user=Depends(get_current_user), orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get(session_id, user)


@app.put("/api/checkout/sessions/{session_id}/address")
def set_checkout_address(session_id: str, address: Address, user=Depends(get_current_user), orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)):
    return orchestrator.collect_address(session_id, user, address)


@app.put("/api/checkout/sessions/{session_id}/payment")
def set_checkout_payment(session_id: str, body: PaymentChoice, user=Depends(get_current_user), orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)):
    return orchestrator.select_payment(session_id, user, body.payment_method)


@app.post("/api/checkout/sessions/{session_id}/confirm")
def confirm_checkout(
    session_id: str,
    background_tasks: BackgroundTasks,
    user=Depends(get_current_user),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return _checkout_response(orchestrator.confirm(session_id, user), background_tasks, dispatcher)


@app.post("/api/checkout/sessions/{session_id}/gateway-callback")
def checkout_gateway_callback(
    session_id: str,
    body: GatewayCallback,
    background_tasks: BackgroundTasks,
    user=Depends(get_current_user),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = orchestrator.gateway_callback(session_id, user, body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature)
    return _checkout_response(result, background_tasks, dispatcher)


@app.post("/api/checkout/sessions/{session_id}/upi-evidence")
async def checkout_upi_evidence(
    session_id: str,
    background_tasks: BackgroundTasks,
    screenshot: Optional[UploadFile] = File(None),
    user=Depends(get_current_user),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    filename = screenshot.filename if screenshot else None
    content = await screenshot.read() if screenshot else None
    result = orchestrator.submit_upi_evidence(session_id, user, filename, content)
    return _checkout_response(result, background_tasks, dispatcher)


@app.post("/api/checkout/sessions/{session_id}/retry")
def retry_checkout(
    session_id: str,
    background_tasks: BackgroundTasks,
    user=Depends(get_current_user),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return _checkout_response(orchestrator.retry(session_id, user), background_tasks, dispatcher)


@app.post("/api/checkout/sessions/{session_id}/abandon")
def abandon_checkout(session_id: str, user=Depends(get_current_user), orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)):
    return orchestrator.abandon(session_id, user)


@app.post("/api/verify-payment")
def verify_payment(body: GatewayCallback, gateway: PaymentGateway = Depends(get_gateway)):
    if not gateway.verify(body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature):
        raise InvalidSignature("Invalid Razorpay signature")
    return {"status": "success", "message": "Payment verified successfully"}


# Orders
class OrderStatusUpdate(BaseModel):
    status: OrderStatus


@app.get("/api/orders", dependencies=[Depends(require_admin)])
def list_orders(store: OrderStore = Depends(get_order_store)):
    return store.list()


@app.get("/api/orders/mine")
def my_orders(user=Depends(get_current_user), store: OrderStore = Depends(get_order_store)):
    return store.list_for_user(user["email"])


@app.get("/api/orders/{order_id}")
def get_order(order_id: int, user=Depends(get_current_user), store: OrderStore = Depends(get_order_store)):
    order = store.get(order_id)
    if user["role"] != "admin" and order["userEmail"] != user["email"]:
        raise HTTPException(403, "Not allowed")
    return order


@app.put("/api/orders/{order_id}")
def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    background_tasks: BackgroundTasks,
    user=Depends(get_current_user),
    store: OrderStore = Depends(get_order_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    if user["role"] != "admin":
        # Customers may only cancel their own orders
        order = store.get(order_id)
        if order["userEmail"] != user["email"] or body.status != "Cancelled":
            raise HTTPException(403, "Not allowed")
    order = store.update_status(order_id, body.status)
    background_tasks.add_task(dispatcher.status_changed, order)
    return {"message": "Order status updated successfully", "order": order}


@app.delete("/api/orders/{order_id}", dependencies=[Depends(require_admin)])
def delete_order(order_id: int, store: OrderStore = Depends(get_order_store)):
    if store.remove(order_id):
        return {"message": "✅ Order deleted and ID counter reset."}
    return {"message": "✅ Order deleted"}


# Service requests
class ServiceStatusUpdate(BaseModel):
    status: str


class MessageBody(BaseModel):
    type: Literal["email"] = "email"
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    message: str


@app.post("/api/services", status_code=201)
def create_service_request(body: ServiceRequest, db: Database = Depends(get_db)):
    doc = body.model_dump()
    doc["_id"] = next_sequence(db, "service")
    doc["createdAt"] = now_utc()
    db["service"].insert_one(doc)
    return {"message": "✅ Service request submitted", "id": doc["_id"]}


@app.get("/api/services", dependencies=[Depends(require_admin)])
def list_service_requests(db: Database = Depends(get_db)):
    return [serialize_doc(d) for d in db["service"].find({}).sort("createdAt", -1)]


@app.put("/api/services/{service_id}", dependencies=[Depends(require_admin)])
def update_service_request(service_id: int, body: ServiceStatusUpdate, db: Database = Depends(get_db)):
    res = db["service"].update_one({"_id": service_id}, {"$set": {"status": body.status}})
    if res.matched_count == 0:
        raise HTTPException(404, "Service request not found or no changes made")
    return {"message": "✅ Service status updated successfully"}


@app.delete("/api/services/{service_id}", dependencies=[Depends(require_admin)])
def delete_service_request(service_id: int, db: Database = Depends(get_db)):
    res = db["service"].delete_one({"_id": service_id})
    if res.deleted_count == 0:
        raise HTTPException(404, "Service request not found")
    if reset_sequence_if_empty(db, "service"):
        return {"message": "✅ Service request deleted and ID counter reset."}
    return {"message": "✅ Service request deleted"}


@app.post("/api/send-message", dependencies=[Depends(require_admin)])
def send_message(body: MessageBody, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    if not body.email:
        raise HTTPException(400, "Invalid request type or missing recipient.")
    if not dispatcher.service_message(body.email, body.message):
        raise HTTPException(502, "Email sending failed.")
    return {"message": "Email sent successfully!"}


# Advertisements
@app.post("/api/advertisements", status_code=201, dependencies=[Depends(require_admin)])
async def create_advertisement(image: Optional[UploadFile] = File(None), description: Optional[str] = Form(None), db: Database = Depends(get_db)):
    content = await image.read() if image else b""
    if not image or not content:
        raise HTTPException(400, "Image file is required.")
    image_url = save_upload(image, content)
    ad_id = create_document(db, "advertisement", Advertisement(image_url=image_url, description=description))
    return {"message": "✅ Advertisement added", "id": ad_id, "image_url": image_url}


@app.get("/api/advertisements")
def list_advertisements(db: Database = Depends(get_db)):
    return [serialize_doc(d) for d in db["advertisement"].find({}).sort("created_at", 1)]


@app.delete("/api/advertisements/{ad_id}", dependencies=[Depends(require_admin)])
def delete_advertisement(ad_id: str, db: Database = Depends(get_db)):
    oid = to_object_id(ad_id)
    ad = db["advertisement"].find_one({"_id": oid}) if oid else None
    if not ad:
        raise HTTPException(404, "Advertisement not found")
    db["advertisement"].delete_one({"_id": oid})
    path = Path(settings.UPLOAD_DIR) / Path(ad["image_url"]).name
    try:
        path.unlink()
    except OSError as exc:
        logger.warning("Could not delete physical file %s, DB record deleted: %s", path, exc)
    return {"message": "✅ Advertisement deleted"}


# Simple sales dashboard
def _month_prefix() -> str:
    return date.today().strftime("%Y-%m")


@app.get("/api/monthly-revenue", dependencies=[Depends(require_admin)])
def monthly_revenue(db: Database = Depends(get_db)):
    pipeline = [
        {"$match": {
            "orderDate": {"$regex": f"^{_month_prefix()}"},
            "payment_status": "Paid",
            "status": {"$ne": "Cancelled"},
        }},
        {"$group": {"_id": None, "revenue": {"$sum": "$total"}}},
    ]
    res = list(db["order"].aggregate(pipeline))
    return {"status": "success", "monthlyRevenue": round(res[0]["revenue"], 2) if res else 0}


@app.get("/api/dashboard/monthly-orders", dependencies=[Depends(require_admin)])
def monthly_orders(db: Database = Depends(get_db)):
    total = db["order"].count_documents({"orderDate": {"$regex": f"^{_month_prefix()}"}, "status": {"$ne": "Cancelled"}})
    return {"status": "success", "monthlyOrders": total}


@app.get("/api/top-selling-products", dependencies=[Depends(require_admin)])
def top_selling_products(limit: int = 5, db: Database = Depends(get_db)):
    pipeline = [
        {"$match": {"status": {"$ne": "Cancelled"}}},
        {"$unwind": "$products_summary"},
        {"$group": {"_id": "$products_summary.name", "units": {"$sum": "$products_summary.quantity"}}},
        {"$sort": {"units": -1}},
        {"$limit": limit},
    ]
    return [{"name": r["_id"], "units": r["units"]} for r in db["order"].aggregate(pipeline)]


@app.get("/api/customers", dependencies=[Depends(require_admin)])
def list_customers(db: Database = Depends(get_db)):
    customers = [public_user(u) for u in db["user"].find({"role": "customer"}).sort("created_at", 1)]
    return {"status": "success", "customers": customers}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
