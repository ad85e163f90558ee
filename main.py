import logging
import os
import re
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from math import ceil
from typing import Callable, List, Literal, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field, model_validator
from pymongo.errors import DuplicateKeyError

import emails
import inventory
import lifecycle
import pricing
import seed
import settings
from auth import current_user_view, get_current_user, hash_password, public_user, require_admin, token_for, verify_password
from database import create_document, db, ensure_indexes, serialize_doc
from inventory import ProductNotFound, StockError
from lifecycle import OrderStateError
from schemas import (
    CATEGORIES,
    PHONE_PATTERN,
    Category,
    OrderStatus,
    PaymentMethod,
    Product as ProductSchema,
    ShippingAddress,
    Specifications,
    User as UserSchema,
)

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is None:
        logger.warning("DATABASE_URL is not set; /api routes will answer 503")
    else:
        ensure_indexes(db)
    yield


app = FastAPI(title="FurniShop API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

REVENUE_STATUSES = ["processing", "shipped", "delivered"]
LOW_STOCK_THRESHOLD = 10


@app.middleware("http")
async def require_database(request: Request, call_next):
    if db is None and request.url.path.startswith("/api"):
        return JSONResponse(status_code=503, content={"detail": "Database not configured"})
    return await call_next(request)


@app.exception_handler(OrderStateError)
async def order_state_error(request: Request, exc: OrderStateError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StockError)
async def stock_error(request: Request, exc: StockError):
    return JSONResponse(status_code=400, content={"detail": exc.message, "available_quantity": exc.available_quantity})


@app.exception_handler(ProductNotFound)
async def product_not_found(request: Request, exc: ProductNotFound):
    return JSONResponse(status_code=404, content={"detail": "Product not found"})


# ----------------------- Utils -----------------------
def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def page_params(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)) -> Tuple[int, int]:
    return page, limit


def paginated(key: str, items: list, total: int, page: int, limit: int) -> dict:
    return {key: items, "total_pages": ceil(total / limit), "current_page": page, "total": total}


def present_product(doc: dict) -> dict:
    return serialize_doc(pricing.with_derived_fields(doc))


def load_product(product_id: str) -> dict:
    product = db["product"].find_one({"_id": oid(product_id)})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def load_order(order_id: str) -> dict:
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def owned_order(order_id: str, user: dict) -> dict:
    order = load_order(order_id)
    if order["user_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail="Access denied")
    return order


def save_transition(order: dict, update: lifecycle.OrderUpdate, guard: dict) -> None:
    """Persist a lifecycle change only if the guarded fields still hold their old values."""
    res = db["order"].update_one({"_id": order["_id"], **guard}, update.to_mongo())
    if res.matched_count == 0:
        raise HTTPException(status_code=409, detail="Order was updated by someone else, please retry")


def with_customers(orders: List[dict]) -> List[dict]:
    ids = list({o["user_id"] for o in orders})
    customers = {
        u["_id"]: {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email")}
        for u in db["user"].find({"_id": {"$in": ids}}, {"name": 1, "email": 1})
    }
    out = []
    for o in orders:
        doc = serialize_doc(o)
        doc["user"] = customers.get(o["user_id"])
        out.append(doc)
    return out


def notify_status(background_tasks: BackgroundTasks, order: dict, status: str) -> None:
    customer = db["user"].find_one({"_id": order["user_id"]}, {"name": 1, "email": 1})
    if customer:
        background_tasks.add_task(emails.send_order_status_email, customer["email"], customer.get("name", ""), order, status)


def cart_count(cart: list) -> int:
    return sum(line["quantity"] for line in cart)


def change_cart(user: dict, change: Callable[[list], list], attempts: int = 3) -> list:
    """
    Apply `change` to the user's cart and store it only if the stored cart is
    still the one it was computed from, reloading and retrying otherwise.
    """
    # a None guard also matches users stored without a cart field
    stored = user.get("cart")
    for _ in range(attempts):
        new_cart = change([dict(line) for line in stored or []])
        res = db["user"].update_one({"_id": user["_id"], "cart": stored}, {"$set": {"cart": new_cart}})
        if res.matched_count:
            return new_cart
        stored = (db["user"].find_one({"_id": user["_id"]}, {"cart": 1}) or {}).get("cart")
    raise HTTPException(status_code=409, detail="Cart was updated by another request, please retry")


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)


class AdminRegisterBody(RegisterBody):
    admin_key: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProductCreateBody(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    price: float = Field(..., ge=0)
    discount: float = Field(0, ge=0, le=100)
    category: Category
    images: List[str] = Field(default_factory=list)
    quantity: int = Field(..., ge=0)
    specifications: Specifications = Field(default_factory=Specifications)
    is_active: bool = True


class ProductUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0, le=100)
    category: Optional[Category] = None
    images: Optional[List[str]] = None
    quantity: Optional[int] = Field(None, ge=0)
    specifications: Optional[Specifications] = None
    is_active: Optional[bool] = None


class ReviewBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=1000)


class CartQuantityBody(BaseModel):
    quantity: int = Field(1, ge=1)


class OrderLineIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class PaymentDetailsIn(BaseModel):
    upi_id: Optional[str] = None


class CreateOrderBody(BaseModel):
    items: Optional[List[OrderLineIn]] = None
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_details: Optional[PaymentDetailsIn] = None
    notes: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def upi_needs_id(self):
        if self.payment_method == "upi" and not (self.payment_details and self.payment_details.upi_id):
            raise ValueError("UPI ID is required for UPI payment")
        return self


class StatusUpdateBody(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None


class UpiPaymentBody(BaseModel):
    transaction_id: str = Field(..., min_length=1)


class ReturnBody(BaseModel):
    reason: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    additional_comments: Optional[str] = None


class ExchangeBody(ReturnBody):
    new_product_requested: Optional[str] = None


class CancelBody(BaseModel):
    reason: Optional[str] = None


class ReturnReviewBody(BaseModel):
    status: Literal["approved", "rejected", "processing", "completed"]
    refund_amount: Optional[float] = Field(None, ge=0)


class ExchangeReviewBody(BaseModel):
    status: Literal["approved", "rejected", "processing", "completed"]
    price_difference: Optional[float] = None


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "FurniShop API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": settings.DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


@app.post("/seed")
def seed_demo_data():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    seeded = seed.seed_catalog(db)
    admin_created = seed.create_admin(db)
    return {"seeded": seeded > 0, "products": db["product"].count_documents({}), "admin_created": admin_created}


# ----------------------- Auth -----------------------
def _register(body: RegisterBody, role: str, background_tasks: BackgroundTasks) -> dict:
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = UserSchema(name=body.name, email=email, password_hash=hash_password(body.password), phone=body.phone, role=role)
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already registered")
    doc = db["user"].find_one({"_id": ObjectId(user_id)})
    background_tasks.add_task(emails.send_welcome_email, email, body.name)
    logger.info("Registered %s %s", role, email)
    return {"token": token_for(doc), "user": public_user(doc)}


def _login(body: LoginBody) -> dict:
    user = db["user"].find_one({"email": body.email.lower()})
    if not user or not verify_password(body.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


@app.post("/api/auth/register", status_code=201)
def register(body: RegisterBody, background_tasks: BackgroundTasks):
    return _register(body, "user", background_tasks)


@app.post("/api/auth/login")
def login(body: LoginBody):
    user = _login(body)
    return {"token": token_for(user), "user": public_user(user)}


@app.post("/api/auth/admin/register", status_code=201)
def admin_register(body: AdminRegisterBody, background_tasks: BackgroundTasks):
    if not settings.ADMIN_REGISTRATION_KEY or body.admin_key != settings.ADMIN_REGISTRATION_KEY:
        raise HTTPException(status_code=403, detail="Invalid admin registration key")
    return _register(body, "admin", background_tasks)


@app.post("/api/auth/admin/login")
def admin_login(body: LoginBody):
    user = _login(body)
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return {"token": token_for(user), "user": public_user(user)}


@app.get("/api/auth/me")
def me(user=Depends(current_user_view)):
    return user


# ----------------------- Users -----------------------
@app.get("/api/users")
def list_users(admin=Depends(require_admin)):
    users = db["user"].find({}, {"password_hash": 0}).sort("created_at", -1)
    return [
        {**public_user(u), "created_at": serialize_doc(u.get("created_at")), "cart_item_count": cart_count(u.get("cart", []))}
        for u in users
    ]


# ----------------------- Products -----------------------
@app.get("/api/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    search: Optional[str] = None,
    sort_by: Literal["name", "price", "created_at", "ratings.average"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
):
    filt: dict = {"is_active": True}
    if category and category != "all":
        if category not in CATEGORIES:
            raise HTTPException(status_code=400, detail="Invalid category")
        filt["category"] = category
    if min_price is not None or max_price is not None:
        filt["price"] = {}
        if min_price is not None:
            filt["price"]["$gte"] = min_price
        if max_price is not None:
            filt["price"]["$lte"] = max_price
    if search:
        pattern = re.escape(search)
        filt["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]

    total = db["product"].count_documents(filt)
    cursor = (
        db["product"].find(filt, {"reviews": 0})
        .sort(sort_by, -1 if sort_order == "desc" else 1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return paginated("products", [present_product(p) for p in cursor], total, page, limit)


@app.get("/api/products/categories/list")
def list_categories():
    return sorted(db["product"].distinct("category", {"is_active": True}))


@app.get("/api/products/category/{category}")
def products_by_category(category: Category, paging=Depends(page_params)):
    page, limit = paging
    filt = {"category": category, "is_active": True}
    total = db["product"].count_documents(filt)
    cursor = db["product"].find(filt, {"reviews": 0}).skip((page - 1) * limit).limit(limit)
    return paginated("products", [present_product(p) for p in cursor], total, page, limit)


@app.get("/api/products/admin/all")
def admin_list_products(paging=Depends(page_params), admin=Depends(require_admin)):
    page, limit = paging
    total = db["product"].count_documents({})
    cursor = db["product"].find({}, {"reviews": 0}).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return paginated("products", [present_product(p) for p in cursor], total, page, limit)


@app.post("/api/products/upload-image")
async def upload_image(image: UploadFile = File(...), admin=Depends(require_admin)):
    ext = os.path.splitext(image.filename or "")[1].lower().lstrip(".")
    if ext not in settings.ALLOWED_IMAGE_EXTENSIONS or not (image.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed")
    max_bytes = settings.MAX_UPLOAD_MB * 1024 * 1024
    if image.size is not None and image.size > max_bytes:
        raise HTTPException(status_code=400, detail=f"Image must be at most {settings.MAX_UPLOAD_MB}MB")
    data = await image.read(max_bytes + 1)
    if not data:
        raise HTTPException(status_code=400, detail="No image file provided")
    if len(data) > max_bytes:
        raise HTTPException(status_code=400, detail=f"Image must be at most {settings.MAX_UPLOAD_MB}MB")
    filename = f"{int(time.time() * 1000)}-{uuid.uuid4().hex}.{ext}"
    with open(os.path.join(settings.UPLOAD_DIR, filename), "wb") as fh:
        fh.write(data)
    return {"success": True, "message": "Image uploaded successfully", "image_url": f"/uploads/{filename}"}


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return present_product(load_product(product_id))


@app.post("/api/products", status_code=201)
def create_product(body: ProductCreateBody, admin=Depends(require_admin)):
    product = ProductSchema(**body.model_dump())
    product_id = create_document("product", product)
    logger.info("Product %s created by %s", product_id, admin["email"])
    return {"message": "Product created successfully", "product": present_product(load_product(product_id))}


@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, admin=Depends(require_admin)):
    update = body.model_dump(exclude_none=True)
    # dotted paths so unspecified specification fields are kept
    for key, value in update.pop("specifications", {}).items():
        update[f"specifications.{key}"] = value
    update["updated_at"] = datetime.now(timezone.utc)
    res = db["product"].update_one({"_id": oid(product_id)}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"message": "Product updated successfully", "product": present_product(load_product(product_id))}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin)):
    res = db["product"].delete_one({"_id": oid(product_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product %s deleted by %s", product_id, admin["email"])
    return {"message": "Product deleted successfully"}


@app.post("/api/products/{product_id}/reviews", status_code=201)
def add_review(product_id: str, body: ReviewBody, user=Depends(get_current_user)):
    product = load_product(product_id)
    if any(r.get("user_id") == user["_id"] for r in product.get("reviews", [])):
        raise HTTPException(status_code=400, detail="You have already reviewed this product")
    ratings = product.get("ratings") or {"average": 0, "count": 0}
    count = ratings.get("count", 0) + 1
    average = round((ratings.get("average", 0) * (count - 1) + body.rating) / count, 1)
    review = {
        "user_id": user["_id"],
        "name": user.get("name", ""),
        "rating": body.rating,
        "comment": body.comment,
        "created_at": datetime.now(timezone.utc),
    }
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$push": {"reviews": review}, "$set": {"ratings": {"average": average, "count": count}}},
    )
    return {"message": "Review added successfully", "ratings": {"average": average, "count": count}}


# ----------------------- Cart -----------------------
@app.get("/api/cart")
def get_cart(user=Depends(get_current_user)):
    lines = inventory.reconcile_cart(db, user.get("cart", []))
    return {"cart": serialize_doc(lines), **pricing.cart_summary(lines)}


@app.get("/api/cart/count")
def get_cart_count(user=Depends(get_current_user)):
    return {"cart_item_count": cart_count(user.get("cart", []))}


@app.post("/api/cart/add/{product_id}")
def add_to_cart(product_id: str, body: Optional[CartQuantityBody] = None, user=Depends(get_current_user)):
    quantity = body.quantity if body else 1
    product = load_product(product_id)

    def add(cart):
        existing = next((line for line in cart if line["product_id"] == product["_id"]), None)
        wanted = quantity + (existing["quantity"] if existing else 0)
        inventory.check_availability(product, wanted)
        if existing:
            existing["quantity"] = wanted
        else:
            cart.append({"product_id": product["_id"], "quantity": quantity})
        return cart

    cart = change_cart(user, add)
    return {"message": "Product added to cart", "cart_item_count": cart_count(cart)}


@app.put("/api/cart/update/{product_id}")
def update_cart(product_id: str, body: CartQuantityBody, user=Depends(get_current_user)):
    product = load_product(product_id)

    def set_quantity(cart):
        line = next((line for line in cart if line["product_id"] == product["_id"]), None)
        if not line:
            raise HTTPException(status_code=404, detail="Product not found in cart")
        inventory.check_availability(product, body.quantity)
        line["quantity"] = body.quantity
        return cart

    cart = change_cart(user, set_quantity)
    return {"message": "Cart updated successfully", "cart_item_count": cart_count(cart)}


@app.delete("/api/cart/clear")
def clear_cart(user=Depends(get_current_user)):
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"cart": []}})
    return {"message": "Cart cleared successfully", "cart_item_count": 0}


@app.delete("/api/cart/remove/{product_id}")
def remove_from_cart(product_id: str, user=Depends(get_current_user)):
    pid = oid(product_id)
    cart = change_cart(user, lambda cart: [line for line in cart if line["product_id"] != pid])
    return {"message": "Product removed from cart", "cart_item_count": cart_count(cart)}


# ----------------------- Wishlist -----------------------
@app.get("/api/wishlist")
def get_wishlist(user=Depends(get_current_user)):
    ids = user.get("wishlist", [])
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}}, {"reviews": 0})}
    return [present_product(products[i]) for i in ids if i in products]


@app.post("/api/wishlist/add/{product_id}")
def add_to_wishlist(product_id: str, user=Depends(get_current_user)):
    product = load_product(product_id)
    wishlist = user.get("wishlist", [])
    if product["_id"] in wishlist:
        raise HTTPException(status_code=400, detail="Product already in wishlist")
    db["user"].update_one({"_id": user["_id"]}, {"$push": {"wishlist": product["_id"]}})
    return {"message": "Product added to wishlist", "wishlist_count": len(wishlist) + 1}


@app.get("/api/wishlist/check/{product_id}")
def check_wishlist(product_id: str, user=Depends(get_current_user)):
    wishlist = user.get("wishlist", [])
    return {"is_in_wishlist": oid(product_id) in wishlist, "wishlist_count": len(wishlist)}


@app.delete("/api/wishlist/clear")
def clear_wishlist(user=Depends(get_current_user)):
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"wishlist": []}})
    return {"message": "Wishlist cleared successfully", "wishlist_count": 0}


@app.delete("/api/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(get_current_user)):
    pid = oid(product_id)
    wishlist = [i for i in user.get("wishlist", []) if i != pid]
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"wishlist": wishlist}})
    return {"message": "Product removed from wishlist", "wishlist_count": len(wishlist)}


# ----------------------- Orders -----------------------
def _insert_order(user: dict, items: list, body: CreateOrderBody, total: float, attempts: int = 5) -> dict:
    upi_id = body.payment_details.upi_id if body.payment_details else None
    for _ in range(attempts):
        order = lifecycle.new_order(
            user["_id"],
            items,
            body.shipping_address.model_dump(),
            body.payment_method,
            total,
            upi_id=upi_id,
            notes=body.notes,
        )
        try:
            order["_id"] = db["order"].insert_one(order).inserted_id
            return order
        except DuplicateKeyError:
            logger.warning("Order number %s already taken, regenerating", order["order_number"])
    raise HTTPException(status_code=500, detail="Could not allocate an order number")


@app.post("/api/orders/create", status_code=201)
def create_order(body: CreateOrderBody, background_tasks: BackgroundTasks, user=Depends(get_current_user)):
    if body.items is not None:
        lines = [{"product_id": oid(i.product_id), "quantity": i.quantity} for i in body.items]
    else:
        lines = [{"product_id": line["product_id"], "quantity": line["quantity"]} for line in user.get("cart", [])]
    if not lines:
        raise HTTPException(status_code=400, detail="Order must contain at least one item")

    items = inventory.reserve_stock(db, lines)
    total = pricing.order_total(items)
    try:
        order = _insert_order(user, items, body, total)
    except Exception:
        inventory.release_stock(db, items)
        raise

    ordered = {item["product_id"] for item in items}
    remaining = [line for line in user.get("cart", []) if line["product_id"] not in ordered]
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"cart": remaining}})

    background_tasks.add_task(emails.send_order_confirmation_email, user["email"], user.get("name", ""), order)
    logger.info("Order %s placed by %s for %.2f", order["order_number"], user["email"], total)
    return {
        "message": "Order placed successfully",
        "order": serialize_doc({
            "id": order["_id"],
            "order_number": order["order_number"],
            "total_amount": order["total_amount"],
            "estimated_delivery": order["tracking_info"]["estimated_delivery"],
            "payment_method": order["payment_method"],
        }),
    }


@app.get("/api/orders/my-orders")
def my_orders(paging=Depends(page_params), user=Depends(get_current_user)):
    page, limit = paging
    filt = {"user_id": user["_id"]}
    total = db["order"].count_documents(filt)
    cursor = db["order"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return paginated("orders", serialize_doc(list(cursor)), total, page, limit)


@app.get("/api/orders/track/{order_number}")
def track_order(order_number: str):
    order = db["order"].find_one({"order_number": order_number})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    address = order.get("shipping_address") or {}
    return serialize_doc({
        "order_number": order["order_number"],
        "status": order["order_status"],
        "tracking_info": order.get("tracking_info"),
        "shipping_address": {k: address.get(k) for k in ("city", "state", "pincode")},
        "total_amount": order["total_amount"],
        "order_date": order.get("created_at"),
    })


@app.get("/api/orders/admin/all")
def admin_list_orders(status: str = "all", paging=Depends(page_params), admin=Depends(require_admin)):
    page, limit = paging
    filt = {}
    if status != "all":
        if status not in lifecycle.ORDER_STATUSES:
            raise HTTPException(status_code=400, detail="Invalid order status")
        filt["order_status"] = status
    total = db["order"].count_documents(filt)
    cursor = db["order"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return paginated("orders", with_customers(list(cursor)), total, page, limit)


@app.get("/api/orders/admin/requests")
def admin_list_requests(
    type: Literal["return", "exchange", "all"] = "all",
    status: Literal["all", "requested", "approved", "rejected", "processing", "completed"] = "all",
    paging=Depends(page_params),
    admin=Depends(require_admin),
):
    page, limit = paging
    if type == "all":
        filt = {"$or": [{"return_request.status": {"$ne": "none"}}, {"exchange_request.status": {"$ne": "none"}}]}
    else:
        field = f"{type}_request.status"
        filt = {field: {"$ne": "none"} if status == "all" else status}
    total = db["order"].count_documents(filt)
    cursor = (
        db["order"].find(filt)
        .sort([("return_request.request_date", -1), ("exchange_request.request_date", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return paginated("requests", with_customers(list(cursor)), total, page, limit)


@app.put("/api/orders/admin/{order_id}/status")
def admin_update_status(order_id: str, body: StatusUpdateBody, background_tasks: BackgroundTasks, admin=Depends(require_admin)):
    order = load_order(order_id)
    previous = order["order_status"]
    update = lifecycle.apply_status(
        order,
        body.status,
        tracking_number=body.tracking_number,
        carrier=body.carrier,
        location=body.location,
        description=body.description,
    )
    save_transition(order, update, {"order_status": previous})
    if body.status == "cancelled":
        inventory.release_stock(db, order["items"])
    notify_status(background_tasks, order, body.status)
    return {
        "message": "Order status updated successfully",
        "order": serialize_doc({
            "order_number": order["order_number"],
            "status": order["order_status"],
            "tracking_info": order["tracking_info"],
        }),
    }


@app.put("/api/orders/admin/{order_id}/return/status")
def admin_review_return(order_id: str, body: ReturnReviewBody, admin=Depends(require_admin)):
    order = load_order(order_id)
    previous = order["return_request"]["status"]
    update = lifecycle.review_return(order, body.status, refund_amount=body.refund_amount)
    save_transition(order, update, {"return_request.status": previous})
    return {"message": f"Return request {body.status} successfully", "return_request": serialize_doc(order["return_request"])}


@app.put("/api/orders/admin/{order_id}/exchange/status")
def admin_review_exchange(order_id: str, body: ExchangeReviewBody, admin=Depends(require_admin)):
    order = load_order(order_id)
    previous = order["exchange_request"]["status"]
    update = lifecycle.review_exchange(order, body.status, price_difference=body.price_difference)
    save_transition(order, update, {"exchange_request.status": previous})
    return {"message": f"Exchange request {body.status} successfully", "exchange_request": serialize_doc(order["exchange_request"])}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    order = load_order(order_id)
    if order["user_id"] != user["_id"] and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Access denied")
    return with_customers([order])[0]


@app.post("/api/orders/{order_id}/payment/upi")
def pay_with_upi(order_id: str, body: UpiPaymentBody, user=Depends(get_current_user)):
    order = owned_order(order_id, user)
    update = lifecycle.confirm_upi_payment(order, body.transaction_id)
    save_transition(order, update, {"order_status": "pending", "payment_details.payment_status": {"$ne": "completed"}})
    return {
        "message": "Payment processed successfully",
        "order": {
            "order_number": order["order_number"],
            "payment_status": order["payment_details"]["payment_status"],
            "order_status": order["order_status"],
        },
    }


@app.post("/api/orders/{order_id}/return")
def request_return(order_id: str, body: ReturnBody, user=Depends(get_current_user)):
    order = owned_order(order_id, user)
    update = lifecycle.request_return(order, body.reason, body.description, body.additional_comments)
    save_transition(order, update, {"return_request.status": "none"})
    request = order["return_request"]
    return {
        "message": "Return request submitted successfully",
        "return_request": serialize_doc({k: request[k] for k in ("status", "request_date", "refund_amount")}),
    }


@app.post("/api/orders/{order_id}/exchange")
def request_exchange(order_id: str, body: ExchangeBody, user=Depends(get_current_user)):
    order = owned_order(order_id, user)
    update = lifecycle.request_exchange(
        order, body.reason, body.description, body.additional_comments, body.new_product_requested
    )
    save_transition(order, update, {"exchange_request.status": "none"})
    request = order["exchange_request"]
    return {
        "message": "Exchange request submitted successfully",
        "exchange_request": serialize_doc({k: request[k] for k in ("status", "request_date")}),
    }


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[CancelBody] = None,
    user=Depends(get_current_user),
):
    order = owned_order(order_id, user)
    previous = order["order_status"]
    update = lifecycle.cancel(order, reason=body.reason if body else None)
    save_transition(order, update, {"order_status": previous})
    inventory.release_stock(db, order["items"])
    notify_status(background_tasks, order, "cancelled")
    logger.info("Order %s cancelled by customer", order["order_number"])
    return {"message": "Order cancelled successfully", "order": {"order_number": order["order_number"], "status": "cancelled"}}


# ----------------------- Dashboard -----------------------
@app.get("/api/dashboard/admin/stats")
def dashboard_stats(admin=Depends(require_admin)):
    # stored datetimes come back naive UTC
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    orders = db["order"]

    revenue = list(orders.aggregate([
        {"$match": {"order_status": {"$in": REVENUE_STATUSES}}},
        {"$group": {"_id": None, "total_revenue": {"$sum": "$total_amount"}}},
    ]))

    monthly_revenue = list(orders.aggregate([
        {"$match": {"created_at": {"$gte": now - timedelta(days=182)}, "order_status": {"$in": REVENUE_STATUSES}}},
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
            "revenue": {"$sum": "$total_amount"},
            "orders": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ]))

    top_categories = list(orders.aggregate([
        {"$match": {"order_status": {"$ne": "cancelled"}}},
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.category",
            "total_sold": {"$sum": "$items.quantity"},
            "revenue": {"$sum": {"$multiply": ["$items.quantity", "$items.price"]}},
        }},
        {"$sort": {"total_sold": -1}},
        {"$limit": 5},
    ]))

    low_stock = db["product"].find(
        {"quantity": {"$lt": LOW_STOCK_THRESHOLD}, "is_active": True},
        {"name": 1, "quantity": 1, "category": 1},
    ).sort("quantity", 1).limit(10)

    recent = orders.find(
        {},
        {"order_number": 1, "total_amount": 1, "order_status": 1, "created_at": 1, "user_id": 1, "items": 1},
    ).sort("created_at", -1).limit(5)

    return {
        "overview": {
            "total_users": db["user"].count_documents({}),
            "total_products": db["product"].count_documents({}),
            "active_products": db["product"].count_documents({"is_active": True}),
            "total_orders": orders.count_documents({}),
            "total_revenue": round(revenue[0]["total_revenue"], 2) if revenue else 0,
            "recent_orders": orders.count_documents({"created_at": {"$gte": now - timedelta(days=30)}}),
        },
        "order_stats": {s: orders.count_documents({"order_status": s}) for s in lifecycle.ORDER_STATUSES},
        "monthly_revenue": monthly_revenue,
        "top_categories": top_categories,
        "low_stock_products": serialize_doc(list(low_stock)),
        "recent_orders_list": with_customers(list(recent)),
    }


@app.get("/api/dashboard/admin/analytics")
def dashboard_analytics(period: int = Query(30, ge=1, le=365), admin=Depends(require_admin)):
    since = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=period)
    orders = db["order"]

    daily_sales = list(orders.aggregate([
        {"$match": {"created_at": {"$gte": since}, "order_status": {"$in": REVENUE_STATUSES}}},
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}, "day": {"$dayOfMonth": "$created_at"}},
            "revenue": {"$sum": "$total_amount"},
            "orders": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1, "_id.day": 1}},
    ]))

    product_performance = list(orders.aggregate([
        {"$match": {"created_at": {"$gte": since}, "order_status": {"$ne": "cancelled"}}},
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.product_id",
            "name": {"$first": "$items.name"},
            "category": {"$first": "$items.category"},
            "total_sold": {"$sum": "$items.quantity"},
            "revenue": {"$sum": {"$multiply": ["$items.quantity", "$items.price"]}},
        }},
        {"$sort": {"revenue": -1}},
        {"$limit": 10},
    ]))

    return {"daily_sales": daily_sales, "product_performance": serialize_doc(product_performance)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
