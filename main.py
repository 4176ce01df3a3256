import logging
import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import carts
import catalog
import config
import orders
import payments
from auth import create_token, get_current_user, hash_password, require_admin, verify_password
from database import collection, create_document, ensure_indexes, now, serialize_doc, to_object_id
from errors import Conflict, NotFound, Unauthorized, ValidationError
from schemas import (
    CartItemIn,
    CheckoutRequest,
    Contact,
    LoginRequest,
    OrderUpdate,
    PaymentInitiateRequest,
    Product,
    ProductUpdate,
    ReasonBody,
    RegisterRequest,
    Review,
    ReviewIn,
    RoleUpdate,
    User,
    Variant,
    VariantStockUpdate,
    WishlistIn,
)

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except Exception as e:
        logger.error("could not ensure indexes: %s", e)
    yield


# App setup
app = FastAPI(title="Notebook Store API", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Errors -----------------------
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    body = {"error": exc.detail}
    if getattr(exc, "details", None):
        body["details"] = exc.details
    body.update(getattr(exc, "extra", None) or {})
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"] if p != "body")
        details.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return JSONResponse({"error": "Validation error", "details": details}, status_code=400)


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_error(request: Request, exc: DuplicateKeyError):
    return JSONResponse({"error": "Duplicate key"}, status_code=409)


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception("%s %s failed", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def user_out(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "provider": user.get("provider", "credentials"),
        "avatar": user.get("avatar"),
        "created_at": user["created_at"].isoformat() if user.get("created_at") else None,
        "last_active": user["last_active"].isoformat() if user.get("last_active") else None,
    }


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Notebook Store API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = collection("user").database.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest):
    email = payload.email.lower()
    if collection("user").find_one({"email": email}):
        raise ValidationError("User already registered")
    user = User(name=payload.name.strip(), email=email, password_hash=hash_password(payload.password))
    doc = user.model_dump()
    doc["last_active"] = now()
    user_id = create_document("user", doc)
    return {"message": "User registered successfully", "id": user_id}


@app.post("/auth/login")
def login(payload: LoginRequest, response: Response):
    user = collection("user").find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash")):
        raise Unauthorized("Invalid credentials")
    collection("user").update_one({"_id": user["_id"]}, {"$set": {"last_active": now()}})
    token = create_token(user)
    response.set_cookie(
        config.SESSION_COOKIE_NAME,
        token,
        max_age=config.JWT_EXPIRES_MIN * 60,
        httponly=True,
        samesite="lax",
        secure=config.SESSION_COOKIE_SECURE,
    )
    return {"token": token, "user": user_out(user)}


@app.post("/auth/logout")
def logout(response: Response):
    response.delete_cookie(config.SESSION_COOKIE_NAME)
    return {"message": "Logged out"}


@app.get("/me")
async def me(current_user: dict = Depends(get_current_user)):
    return user_out(current_user)


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(category: Optional[str] = None, q: Optional[str] = None, featured: Optional[bool] = None):
    filt = {"is_active": True}
    if category:
        filt["main_category"] = category
    if q:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"description": pattern}, {"tags": pattern}]
    if featured is not None:
        filt["is_featured"] = featured
    cursor = collection("product").find(filt).sort("created_at", -1)
    return {"products": [catalog.product_out(p) for p in cursor]}


@app.get("/products/{product_id}")
def get_product(product_id: str):
    return {"product": catalog.product_out(catalog.get_product(product_id))}


@app.post("/products", status_code=201)
@app.post("/admin/products", status_code=201)
async def create_product(payload: Product, admin: dict = Depends(require_admin)):
    existing = collection("product").find_one({"product_code": payload.product_code})
    if existing:
        raise Conflict("Product code already exists")
    catalog.check_sku_collisions([v.sku for v in payload.variants])
    product_id = create_document("product", payload)
    product = collection("product").find_one({"_id": to_object_id(product_id)})
    logger.info("product %s created by %s", payload.product_code, admin.get("email"))
    return {"message": "Product created", "product": catalog.product_out(product)}


@app.get("/admin/products")
async def admin_list_products(admin: dict = Depends(require_admin)):
    items = [catalog.product_out(p) for p in collection("product").find().sort("created_at", -1)]
    return {"products": items, "count": len(items)}


@app.put("/admin/products/{product_id}")
async def update_product(product_id: str, payload: ProductUpdate, admin: dict = Depends(require_admin)):
    oid = catalog.parse_id(product_id)
    catalog.get_product(oid, active_only=False)
    update = payload.model_dump(exclude_none=True)
    if "variants" in update:
        skus = [v["sku"] for v in update["variants"]]
        if len(set(skus)) != len(skus):
            raise ValidationError("Duplicate SKUs in request")
        catalog.check_sku_collisions(skus, exclude_id=oid)
        update["total_stock"] = catalog.total_stock(update["variants"])
    if "tags" in update:
        update["tags"] = [t.strip().lower() for t in update["tags"]]
    update["updated_at"] = now()
    collection("product").update_one({"_id": oid}, {"$set": update})
    return {"product": catalog.product_out(collection("product").find_one({"_id": oid}))}


@app.delete("/admin/products/{product_id}")
async def delete_product(product_id: str, admin: dict = Depends(require_admin)):
    res = collection("product").delete_one({"_id": catalog.parse_id(product_id)})
    if res.deleted_count == 0:
        raise NotFound("Product not found")
    return {"message": "Product deleted", "id": product_id}


@app.post("/admin/products/{product_id}/variants", status_code=201)
async def add_variant(product_id: str, payload: Variant, admin: dict = Depends(require_admin)):
    product = catalog.add_variant(catalog.parse_id(product_id), payload.model_dump())
    return {"product": catalog.product_out(product)}


@app.patch("/admin/products/{product_id}/variants/{sku}")
async def update_variant_stock(product_id: str, sku: str, payload: VariantStockUpdate,
                               admin: dict = Depends(require_admin)):
    product = catalog.update_variant_stock(catalog.parse_id(product_id), sku, payload.stock)
    return {"product": catalog.product_out(product)}


# ----------------------- Cart -----------------------
@app.get("/cart")
async def get_cart(user: dict = Depends(get_current_user)):
    return carts.read_cart(user["_id"])


@app.post("/cart")
async def cart_add(item: CartItemIn, user: dict = Depends(get_current_user)):
    carts.add_item(user["_id"], item.product_id, item.variant_sku, item.quantity)
    return {"message": "Product added to cart", "cart": carts.read_cart(user["_id"])}


@app.patch("/cart")
async def cart_update(item: CartItemIn, user: dict = Depends(get_current_user)):
    carts.update_quantity(user["_id"], catalog.parse_id(item.product_id), item.variant_sku, item.quantity)
    return {"message": "Cart updated", "cart": carts.read_cart(user["_id"])}


@app.delete("/cart/{product_id}")
async def cart_remove(product_id: str, variant_sku: Optional[str] = None, user: dict = Depends(get_current_user)):
    carts.remove_item(user["_id"], catalog.parse_id(product_id), variant_sku)
    return {"message": "Item removed", "cart": carts.read_cart(user["_id"])}


# ----------------------- Orders -----------------------
@app.post("/order", status_code=201)
async def create_order(payload: CheckoutRequest, user: dict = Depends(get_current_user)):
    order = orders.create(
        user["_id"],
        payload.shipping_address.model_dump(),
        payload.payment_method,
        billing_address=payload.billing_address.model_dump() if payload.billing_address else None,
    )
    return {"message": "Order created successfully", "order_id": order["order_id"], "data": serialize_doc(order)}


@app.get("/order")
async def list_orders(user: dict = Depends(get_current_user)):
    return {"orders": orders.list_for_user(user["_id"])}


@app.get("/order/latest")
async def latest_order(user: dict = Depends(get_current_user)):
    return orders.latest_for_user(user["_id"])


@app.get("/order/{order_id}")
async def get_order(order_id: str, user: dict = Depends(get_current_user)):
    return orders.get_for_user(order_id, user["_id"])


@app.delete("/order/{order_id}")
async def delete_order(order_id: str, user: dict = Depends(get_current_user)):
    order = orders.delete_if_unpaid(order_id, user["_id"])
    return {"message": "Order deleted", "order_id": order["order_id"]}


@app.get("/admin/orders")
async def admin_list_orders(admin: dict = Depends(require_admin)):
    return {"orders": orders.admin_list()}


@app.patch("/admin/orders/{order_id}")
async def admin_update_order(order_id: str, payload: OrderUpdate, admin: dict = Depends(require_admin)):
    order = orders.update(order_id, payload.model_dump(exclude_none=True))
    return {"message": "Order updated successfully", "order": serialize_doc(order)}


@app.post("/admin/orders/{order_id}/cancel")
async def admin_cancel_order(order_id: str, payload: ReasonBody, admin: dict = Depends(require_admin)):
    return {"message": "Order cancelled", "order": serialize_doc(orders.cancel(order_id, payload.reason))}


@app.post("/admin/orders/{order_id}/refund")
async def admin_refund_order(order_id: str, payload: ReasonBody, admin: dict = Depends(require_admin)):
    return {"message": "Order refunded", "order": serialize_doc(orders.refund(order_id, payload.reason))}


# ----------------------- Payments -----------------------
@app.post("/payment/initiate")
async def initiate_payment(payload: PaymentInitiateRequest, user: dict = Depends(get_current_user),
                           gateway: payments.PaymentGateway = Depends(payments.get_gateway)):
    order = orders.find_owned(payload.order_id, user["_id"])
    if order["payment_method"] == "cod":
        raise ValidationError("Cash on delivery orders are not paid online")
    if order["payment_status"] not in orders.UNPAID:
        raise Conflict("Order is already settled")
    merchant_order_id = order["order_id"]
    redirect_url = gateway.pay(merchant_order_id, order["grand_total"], payload.redirect_url)
    collection("order").update_one(
        {"_id": order["_id"]}, {"$set": {"merchant_order_id": merchant_order_id, "updated_at": now()}}
    )
    return {"redirect_url": redirect_url, "merchant_order_id": merchant_order_id}


@app.get("/payment/status")
async def payment_status(order_id: str, user: dict = Depends(get_current_user),
                         gateway: payments.PaymentGateway = Depends(payments.get_gateway)):
    order = orders.find_owned(order_id, user["_id"])
    status = gateway.order_status(order.get("merchant_order_id") or order["order_id"])
    gateway_status = payments.map_gateway_state(status.state)
    payment_status = orders.set_payment_status(order, gateway_status, status.transaction_id)
    return {"payment_status": payment_status}


@app.post("/payment/webhook")
async def payment_webhook(request: Request, authorization: Optional[str] = Header(None),
                          gateway: payments.PaymentGateway = Depends(payments.get_gateway)):
    if not payments.verify_webhook(authorization):
        logger.warning("payment webhook with bad signature rejected")
        raise Unauthorized("Invalid signature")
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    event = body.get("payload") if isinstance(body, dict) else None
    merchant_order_id = event.get("merchantOrderId") if isinstance(event, dict) else None
    if not merchant_order_id:
        raise ValidationError("merchantOrderId is required")
    order = collection("order").find_one(
        {"$or": [{"merchant_order_id": merchant_order_id}, {"order_id": merchant_order_id}]}
    )
    if not order:
        raise NotFound("Order not found")
    # the callback only says something happened, the gateway is asked for the actual state
    status = gateway.order_status(merchant_order_id)
    gateway_status = payments.map_gateway_state(status.state)
    payment_status = orders.set_payment_status(order, gateway_status, status.transaction_id)
    return {"payment_status": payment_status}


# ----------------------- Wishlist -----------------------
@app.get("/wishlist")
async def get_wishlist(user: dict = Depends(get_current_user)):
    wishlist = collection("wishlist").find_one({"user_id": user["_id"]})
    if not wishlist:
        return {"items": []}
    ids = [it["product_id"] for it in wishlist.get("items", [])]
    products = {p["_id"]: p for p in collection("product").find({"_id": {"$in": ids}})}
    items = []
    for it in wishlist.get("items", []):
        prod = products.get(it["product_id"])
        items.append({
            "product_id": str(it["product_id"]),
            "added_at": it["added_at"].isoformat() if it.get("added_at") else None,
            "product": catalog.product_out(prod) if prod else None,
        })
    return {"id": str(wishlist["_id"]), "items": items}


@app.post("/wishlist")
async def add_to_wishlist(payload: WishlistIn, response: Response, user: dict = Depends(get_current_user)):
    product = catalog.get_product(payload.product_id, active_only=False)
    wishlists = collection("wishlist")
    ts = now()
    wishlists.update_one(
        {"user_id": user["_id"]},
        {"$setOnInsert": {"items": [], "created_at": ts}, "$set": {"updated_at": ts}},
        upsert=True,
    )
    res = wishlists.update_one(
        {"user_id": user["_id"], "items": {"$not": {"$elemMatch": {"product_id": product["_id"]}}}},
        {"$push": {"items": {"product_id": product["_id"], "added_at": ts}}},
    )
    if not res.modified_count:
        return {"message": "Product already in wishlist"}
    response.status_code = 201
    return {"message": "Product added to wishlist"}


@app.delete("/wishlist/{product_id}")
async def remove_from_wishlist(product_id: str, user: dict = Depends(get_current_user)):
    res = collection("wishlist").update_one(
        {"user_id": user["_id"]},
        {"$pull": {"items": {"product_id": catalog.parse_id(product_id)}}, "$set": {"updated_at": now()}},
    )
    if not res.matched_count:
        raise NotFound("Wishlist not found")
    return {"message": "Product removed from wishlist"}


# ----------------------- Reviews -----------------------
@app.post("/review", status_code=201)
async def create_review(payload: ReviewIn, user: dict = Depends(get_current_user)):
    product = catalog.get_product(payload.product_id, active_only=False)
    review = Review(user_id=str(user["_id"]), product_id=str(product["_id"]), rating=payload.rating,
                    text=payload.text, date=now())
    doc = review.model_dump()
    doc["user_id"] = user["_id"]
    doc["product_id"] = product["_id"]
    review_id = create_document("review", doc)
    return {"message": "Review submitted", "id": review_id}


@app.get("/review")
def list_reviews(product_id: str):
    oid = catalog.parse_id(product_id)
    reviews = list(collection("review").find({"product_id": oid}).sort("date", -1))
    user_ids = list({r["user_id"] for r in reviews})
    users = {u["_id"]: u for u in collection("user").find({"_id": {"$in": user_ids}}, {"name": 1, "avatar": 1})}
    items = []
    for r in reviews:
        author = users.get(r["user_id"])
        if not author:
            # author account was deleted
            continue
        items.append({
            "id": str(r["_id"]),
            "rating": r["rating"],
            "text": r["text"],
            "date": r["date"].isoformat() if r.get("date") else None,
            "user": {"id": str(author["_id"]), "name": author.get("name"), "avatar": author.get("avatar")},
        })
    return {"reviews": items}


def review_summaries(product_ids: list) -> dict:
    pipeline = [
        {"$match": {"product_id": {"$in": product_ids}}},
        {"$group": {"_id": "$product_id", "average_rating": {"$avg": "$rating"}, "review_count": {"$sum": 1}}},
    ]
    return {
        str(s["_id"]): {"average_rating": s["average_rating"], "review_count": s["review_count"]}
        for s in collection("review").aggregate(pipeline)
    }


@app.get("/review-summary")
def review_summary(product_id: str):
    oid = catalog.parse_id(product_id)
    return review_summaries([oid]).get(str(oid), {"average_rating": 0, "review_count": 0})


@app.get("/review-summary-multi")
def review_summary_multi(product_ids: str):
    ids = [to_object_id(p.strip()) for p in product_ids.split(",")]
    ids = [i for i in ids if i is not None]
    if not ids:
        return {}
    return review_summaries(ids)


@app.get("/admin/reviews")
async def admin_list_reviews(admin: dict = Depends(require_admin)):
    reviews = list(collection("review").find().sort("created_at", -1))
    users = {u["_id"]: u for u in collection("user").find({"_id": {"$in": list({r["user_id"] for r in reviews})}})}
    products = {p["_id"]: p for p in collection("product").find({"_id": {"$in": list({r["product_id"] for r in reviews})}})}
    items = []
    for r in reviews:
        author = users.get(r["user_id"])
        prod = products.get(r["product_id"])
        items.append({
            "id": str(r["_id"]),
            "rating": r["rating"],
            "text": r["text"],
            "date": (r.get("date") or r.get("created_at")).isoformat(),
            "user": {"id": str(author["_id"]), "name": author.get("name"), "email": author.get("email"),
                     "avatar": author.get("avatar")} if author else None,
            "product": {
                "id": str(prod["_id"]),
                "name": prod.get("name"),
                "product_code": prod.get("product_code"),
                "price": prod.get("price"),
                "image": (prod.get("images") or [None])[0],
                "main_category": prod.get("main_category"),
                "sub_category": prod.get("sub_category"),
                "total_stock": prod.get("total_stock"),
            } if prod else None,
        })
    return {"reviews": items}


@app.delete("/admin/reviews/{review_id}")
async def admin_delete_review(review_id: str, admin: dict = Depends(require_admin)):
    res = collection("review").delete_one({"_id": catalog.parse_id(review_id, "review ID")})
    if not res.deleted_count:
        raise NotFound("Review not found")
    return {"message": "Review deleted successfully", "id": review_id}


# ----------------------- Users (admin) -----------------------
@app.get("/admin/users")
async def admin_list_users(search: Optional[str] = None, role: Optional[str] = None,
                           provider: Optional[str] = None, page: int = Query(1, ge=1),
                           page_size: int = Query(10, ge=1, le=100), order: str = Query("desc", pattern="^(asc|desc)$"),
                           admin: dict = Depends(require_admin)):
    filt = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"email": pattern}]
    if role:
        filt["role"] = role
    if provider:
        filt["provider"] = provider
    total = collection("user").count_documents(filt)
    cursor = (
        collection("user").find(filt)
        .sort("created_at", 1 if order == "asc" else -1)
        .skip((page - 1) * page_size)
        .limit(page_size)
    )
    return {"users": [user_out(u) for u in cursor], "total": total, "page": page, "page_size": page_size}


@app.get("/admin/users/metrics")
async def admin_user_metrics(admin: dict = Depends(require_admin)):
    users = collection("user")
    return {
        "total_users": users.count_documents({}),
        "total_admins": users.count_documents({"role": "admin"}),
        "google_signups": users.count_documents({"provider": "google"}),
    }


@app.get("/admin/users/{user_id}")
async def admin_get_user(user_id: str, admin: dict = Depends(require_admin)):
    user = collection("user").find_one({"_id": catalog.parse_id(user_id, "user ID")})
    if not user:
        raise NotFound("User not found")
    return user_out(user)


@app.patch("/admin/users/{user_id}")
async def admin_update_role(user_id: str, payload: RoleUpdate, admin: dict = Depends(require_admin)):
    oid = catalog.parse_id(user_id, "user ID")
    res = collection("user").update_one({"_id": oid}, {"$set": {"role": payload.role, "updated_at": now()}})
    if not res.matched_count:
        raise NotFound("User not found")
    logger.info("role of user %s set to %s by %s", user_id, payload.role, admin.get("email"))
    return {"message": "Role updated", "user": user_out(collection("user").find_one({"_id": oid}))}


@app.delete("/admin/users/{user_id}")
async def admin_delete_user(user_id: str, admin: dict = Depends(require_admin)):
    res = collection("user").delete_one({"_id": catalog.parse_id(user_id, "user ID")})
    if not res.deleted_count:
        raise NotFound("User not found")
    return {"message": "User deleted successfully"}


# ----------------------- Contact -----------------------
@app.post("/contact", status_code=201)
def create_contact(payload: Contact):
    contact_id = create_document("contact", payload)
    return {"message": "Contact created successfully", "id": contact_id}


@app.get("/admin/contacts")
async def admin_list_contacts(admin: dict = Depends(require_admin)):
    items = [serialize_doc(c) for c in collection("contact").find().sort("created_at", -1)]
    return {"contacts": items}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
