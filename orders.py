"""
Order lifecycle.

An order is a frozen copy of the cart taken at checkout: names and prices
of the lines do not follow later catalog edits. Status and payment status
are two independent axes and admin updates overwrite them unconditionally.
"""
import logging
import secrets
import string
import time
from typing import Optional

from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import carts
import pricing
from database import collection, now, serialize_doc, to_object_id
from errors import Conflict, NotFound, ValidationError
from schemas import Order, OrderItem

logger = logging.getLogger(__name__)

ID_ALPHABET = string.ascii_uppercase + string.digits
UNPAID = ("pending", "failed")
REFUNDED = "refunded"
UPDATABLE_FIELDS = (
    "status",
    "payment_status",
    "expected_delivery",
    "delivered_at",
    "cancellation_reason",
    "shipping_address",
    "billing_address",
    "notes",
)


def generate_order_id() -> str:
    timestamp = str(int(time.time() * 1000))
    suffix = "".join(secrets.choice(ID_ALPHABET) for _ in range(6))
    return f"ORD-{timestamp[-6:]}-{suffix}"


def order_query(ref: str) -> dict:
    """Match an order by its public order_id or by its document id."""
    oid = to_object_id(ref)
    if oid is not None:
        return {"$or": [{"_id": oid}, {"order_id": ref}]}
    return {"order_id": ref}


def snapshot_items(cart: dict) -> list:
    product_ids = list({it["product_id"] for it in cart.get("items", [])})
    products = {p["_id"]: p for p in collection("product").find({"_id": {"$in": product_ids}})}
    items = []
    for it in cart.get("items", []):
        product = products.get(it["product_id"])
        if product is None:
            raise ValidationError(f"Product {it['product_id']} is no longer available")
        price = pricing.money(it.get("price_at_add") or 0)
        items.append({
            "product_id": str(it["product_id"]),
            "variant_sku": it.get("variant_sku"),
            "name": product["name"],
            "quantity": it["quantity"],
            "price": price,
            "total": pricing.money(it["quantity"] * price),
        })
    return items


def create(user_id: ObjectId, shipping_address: dict, payment_method: str,
           billing_address: Optional[dict] = None) -> dict:
    cart = collection("cart").find_one({"user_id": user_id})
    if not cart or not cart.get("items"):
        raise ValidationError("Cart is empty")
    items = snapshot_items(cart)
    totals = pricing.compute_totals(
        ((it["quantity"], it["price"]) for it in items),
        tax=cart.get("tax_amount", 0) or 0,
    )
    try:
        order = Order(
            order_id=generate_order_id(),
            user_id=str(user_id),
            items=[OrderItem(**it) for it in items],
            subtotal=totals.subtotal,
            shipping_cost=totals.shipping,
            tax_amount=totals.tax,
            discount=totals.discount,
            grand_total=totals.grand_total,
            payment_method=payment_method,
            shipping_address=shipping_address,
            billing_address=billing_address,
        )
    except PydanticValidationError as exc:
        raise ValidationError(details=[f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()])

    doc = order.model_dump()
    doc["user_id"] = user_id
    for it in doc["items"]:
        it["product_id"] = ObjectId(it["product_id"])
    ts = now()
    doc["created_at"] = ts
    doc["updated_at"] = ts
    try:
        doc["_id"] = collection("order").insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise Conflict("Order ID already exists")
    logger.info("order %s created for user %s (%s, %.2f)", doc["order_id"], user_id, payment_method,
                doc["grand_total"])

    if payment_method == "cod":
        carts.clear(user_id)
    return doc


def _with_products(order: dict) -> dict:
    out = serialize_doc(order)
    product_ids = [it["product_id"] for it in order.get("items", [])]
    products = {
        p["_id"]: p
        for p in collection("product").find({"_id": {"$in": product_ids}}, {"name": 1, "images": 1, "brand_name": 1, "price": 1})
    }
    for item, raw in zip(out.get("items", []), order.get("items", [])):
        prod = products.get(raw["product_id"])
        item["product"] = {
            "id": str(prod["_id"]),
            "name": prod.get("name"),
            "brand_name": prod.get("brand_name"),
            "price": prod.get("price"),
            "image": (prod.get("images") or [None])[0],
        } if prod else None
    return out


def list_for_user(user_id: ObjectId) -> list:
    cursor = collection("order").find({"user_id": user_id}).sort("created_at", -1)
    return [_with_products(o) for o in cursor]


def latest_for_user(user_id: ObjectId) -> dict:
    orders = list(collection("order").find({"user_id": user_id}).sort("created_at", -1).limit(1))
    if not orders:
        raise NotFound("No orders found")
    return _with_products(orders[0])


def find_owned(ref: str, user_id: ObjectId) -> dict:
    order = collection("order").find_one({"$and": [order_query(ref), {"user_id": user_id}]})
    if not order:
        raise NotFound("Order not found")
    return order


def get_for_user(ref: str, user_id: ObjectId) -> dict:
    return _with_products(find_owned(ref, user_id))


def delete_if_unpaid(ref: str, user_id: ObjectId):
    order = find_owned(ref, user_id)
    if order.get("payment_status") not in UNPAID:
        raise Conflict("Only unpaid orders can be deleted")
    res = collection("order").delete_one({"_id": order["_id"], "payment_status": {"$in": list(UNPAID)}})
    if not res.deleted_count:
        # paid in the meantime
        raise Conflict("Only unpaid orders can be deleted")
    logger.info("unpaid order %s deleted by its owner", order["order_id"])
    return order


def update(ref: str, data: dict) -> dict:
    """Admin overwrite of lifecycle fields; no transition table is enforced."""
    if data.get("reason") and not data.get("cancellation_reason"):
        data["cancellation_reason"] = data["reason"]
    changes = {k: data[k] for k in UPDATABLE_FIELDS if data.get(k) is not None}
    if changes.get("status") == "delivered" and not changes.get("delivered_at"):
        changes["delivered_at"] = now()

    if not changes:
        order = collection("order").find_one(order_query(ref))
    else:
        changes["updated_at"] = now()
        order = collection("order").find_one_and_update(
            order_query(ref), {"$set": changes}, return_document=ReturnDocument.AFTER
        )
    if not order:
        raise NotFound("Order not found")
    return order


def cancel(ref: str, reason: Optional[str] = None) -> dict:
    return update(ref, {"status": "cancelled", "cancellation_reason": reason})


def refund(ref: str, reason: Optional[str] = None) -> dict:
    return update(ref, {"payment_status": REFUNDED, "cancellation_reason": reason})


def set_payment_status(order: dict, payment_status: str, transaction_id: Optional[str] = None) -> str:
    """Record a payment status read from the gateway and return the stored one.

    Refunded orders keep their status whatever the gateway reports.
    """
    if order.get("payment_status") == REFUNDED:
        return REFUNDED
    changes = {}
    if order.get("payment_status") != payment_status:
        changes["payment_status"] = payment_status
    if transaction_id and order.get("transaction_id") != transaction_id:
        changes["transaction_id"] = transaction_id
    if not changes:
        return payment_status
    changes["updated_at"] = now()
    res = collection("order").update_one(
        {"_id": order["_id"], "payment_status": {"$ne": REFUNDED}}, {"$set": changes}
    )
    if not res.matched_count:
        # refunded in the meantime
        return REFUNDED
    if "payment_status" in changes:
        logger.info("order %s payment %s -> %s", order["order_id"], order.get("payment_status"), payment_status)
        if payment_status == "paid":
            carts.clear(order["user_id"])
    return payment_status


def admin_list() -> list:
    cursor = collection("order").find().sort("created_at", -1)
    orders = list(cursor)
    user_ids = list({o["user_id"] for o in orders})
    users = {u["_id"]: u for u in collection("user").find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})}
    result = []
    for o in orders:
        out = _with_products(o)
        user = users.get(o["user_id"])
        out["user"] = {"id": str(user["_id"]), "name": user.get("name"), "email": user.get("email")} if user else None
        result.append(out)
    return result
