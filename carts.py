"""
Shopping cart consolidation.

One cart document per user. Lines are keyed by (product_id, variant_sku) with
`variant_sku=None` as its own key. Line mutations use single-document atomic
updates so concurrent "add to cart" requests never lose a quantity or create
a second line for the same key.
"""
import logging
from datetime import timedelta
from typing import Optional

from bson import ObjectId

import config
import pricing
from catalog import get_product, unit_price
from database import collection, now, serialize
from errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

MAX_RETRIES = 5


def _line_key(product_id: ObjectId, variant_sku: Optional[str]) -> dict:
    return {"product_id": product_id, "variant_sku": variant_sku}


def _touch(user_id: ObjectId):
    ts = now()
    collection("cart").update_one(
        {"user_id": user_id},
        {
            "$set": {"updated_at": ts, "expires_at": ts + timedelta(days=config.CART_TTL_DAYS)},
            "$setOnInsert": {"items": [], "shipping_cost": 0, "tax_amount": 0, "total_amount": 0, "created_at": ts},
        },
        upsert=True,
    )


def cart_totals(cart: Optional[dict]) -> pricing.Totals:
    items = (cart or {}).get("items", [])
    tax = (cart or {}).get("tax_amount", 0) or 0
    return pricing.compute_totals(((it["quantity"], it.get("price_at_add") or 0) for it in items), tax=tax)


def refresh_totals(user_id: ObjectId) -> Optional[dict]:
    """Recompute shipping and total_amount from the stored lines.

    The write is conditional on the lines being unchanged since the read, so
    a total is never stored for a line set that no longer exists.
    """
    carts = collection("cart")
    for _ in range(MAX_RETRIES):
        cart = carts.find_one({"user_id": user_id})
        if cart is None:
            return None
        totals = cart_totals(cart)
        res = carts.update_one(
            {"_id": cart["_id"], "items": cart.get("items", [])},
            {"$set": {"shipping_cost": totals.shipping, "total_amount": totals.grand_total}},
        )
        if res.matched_count:
            cart["shipping_cost"] = totals.shipping
            cart["total_amount"] = totals.grand_total
            return cart
        logger.info("cart %s changed while computing totals, retrying", user_id)
    logger.warning("gave up storing totals for cart %s", user_id)
    return carts.find_one({"user_id": user_id})


def add_item(user_id: ObjectId, product_id: str, variant_sku: Optional[str], quantity: int) -> dict:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer")
    product = get_product(product_id)
    price = unit_price(product, variant_sku)
    key = _line_key(product["_id"], variant_sku)

    _touch(user_id)
    carts = collection("cart")
    for _ in range(MAX_RETRIES):
        ts = now()
        res = carts.update_one(
            {"user_id": user_id, "items": {"$elemMatch": key}},
            {
                "$inc": {"items.$.quantity": quantity},
                "$set": {"items.$.price_at_add": price, "items.$.added_at": ts},
            },
        )
        if res.matched_count:
            break
        line = dict(key, quantity=quantity, price_at_add=price, added_at=ts)
        res = carts.update_one(
            {"user_id": user_id, "items": {"$not": {"$elemMatch": key}}},
            {"$push": {"items": line}},
        )
        if res.matched_count:
            break
        # another request appended the same line in between, increment it instead
    else:
        raise RuntimeError("could not add item to cart")
    return refresh_totals(user_id)


def remove_item(user_id: ObjectId, product_id: ObjectId, variant_sku: Optional[str] = None) -> dict:
    res = collection("cart").update_one(
        {"user_id": user_id},
        {"$pull": {"items": _line_key(product_id, variant_sku)}, "$set": {"updated_at": now()}},
    )
    if not res.matched_count:
        raise NotFound("Cart not found")
    return refresh_totals(user_id)


def update_quantity(user_id: ObjectId, product_id: ObjectId, variant_sku: Optional[str], quantity: int) -> dict:
    if quantity < 1:
        raise ValidationError("Quantity must be a positive integer")
    res = collection("cart").update_one(
        {"user_id": user_id, "items": {"$elemMatch": _line_key(product_id, variant_sku)}},
        {"$set": {"items.$.quantity": quantity}},
    )
    if not res.matched_count:
        raise NotFound("Cart item not found")
    return refresh_totals(user_id)


def clear(user_id: ObjectId):
    collection("cart").update_one(
        {"user_id": user_id},
        {"$set": {"items": [], "shipping_cost": 0, "total_amount": 0, "updated_at": now()}},
    )


def read_cart(user_id: ObjectId) -> dict:
    cart = collection("cart").find_one({"user_id": user_id})
    if not cart:
        return {
            "items": [],
            "subtotal": 0,
            "shipping_cost": 0,
            "tax_amount": 0,
            "total_amount": 0,
        }
    product_ids = list({it["product_id"] for it in cart.get("items", [])})
    products = {p["_id"]: p for p in collection("product").find({"_id": {"$in": product_ids}})}
    items = []
    for it in cart.get("items", []):
        prod = products.get(it["product_id"])
        price_at_add = it.get("price_at_add") or 0
        items.append({
            "product_id": str(it["product_id"]),
            "variant_sku": it.get("variant_sku"),
            "name": prod.get("name") if prod else None,
            "images": prod.get("images", []) if prod else [],
            "price": prod.get("price") if prod else None,
            "quantity": it["quantity"],
            "price_at_add": price_at_add,
            "subtotal": pricing.money(it["quantity"] * price_at_add),
            "added_at": serialize(it.get("added_at")),
        })
    totals = cart_totals(cart)
    return {
        "id": str(cart["_id"]),
        "items": items,
        "subtotal": totals.subtotal,
        "shipping_cost": totals.shipping,
        "tax_amount": totals.tax,
        "total_amount": totals.grand_total,
        "expires_at": serialize(cart.get("expires_at")),
    }
