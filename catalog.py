from typing import List, Optional

from bson import ObjectId

from database import collection, now, serialize_doc, to_object_id
from errors import Conflict, NotFound, ValidationError


def parse_id(value: str, label: str = "Product ID") -> ObjectId:
    oid = to_object_id(value)
    if oid is None:
        raise ValidationError(f"Invalid {label}")
    return oid


def get_product(product_id, active_only: bool = True) -> dict:
    oid = parse_id(product_id) if not isinstance(product_id, ObjectId) else product_id
    filt = {"_id": oid}
    if active_only:
        filt["is_active"] = True
    product = collection("product").find_one(filt)
    if not product:
        raise NotFound("Product not found")
    return product


def find_variant(product: dict, sku: Optional[str]) -> Optional[dict]:
    if sku is None:
        return None
    for variant in product.get("variants", []):
        if variant.get("sku") == sku:
            return variant
    return None


def unit_price(product: dict, sku: Optional[str] = None) -> float:
    """Current price of a product, including the variant surcharge if any."""
    price = float(product.get("price", 0))
    if sku is None:
        return price
    variant = find_variant(product, sku)
    if variant is None:
        raise NotFound("Variant not found")
    return price + float(variant.get("additional_price", 0))


def total_stock(variants: List[dict]) -> int:
    return sum(int(v.get("stock", 0)) for v in variants)


def price_range(product: dict) -> dict:
    base = float(product.get("price", 0))
    variants = product.get("variants") or []
    if not variants:
        return {"min": base, "max": base}
    prices = [base + float(v.get("additional_price", 0)) for v in variants]
    return {"min": min(prices), "max": max(prices)}


def product_out(product: dict) -> dict:
    out = serialize_doc(product)
    stock = product.get("total_stock", 0)
    out["in_stock"] = stock > 0
    out["low_stock"] = stock <= product.get("min_stock_alert", 5)
    out["price_range"] = price_range(product)
    return out


def check_sku_collisions(skus: List[str], exclude_id: Optional[ObjectId] = None):
    filt = {"variants.sku": {"$in": skus}}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    existing = collection("product").find_one(filt)
    if existing:
        colliding = [v["sku"] for v in existing.get("variants", []) if v.get("sku") in skus]
        raise Conflict("Variant SKU already exists", colliding=colliding)


def set_variants(product_id: ObjectId, variants: List[dict]) -> dict:
    """Replace the variant list and keep total_stock in step with it."""
    collection("product").update_one(
        {"_id": product_id},
        {"$set": {"variants": variants, "total_stock": total_stock(variants), "updated_at": now()}},
    )
    return collection("product").find_one({"_id": product_id})


def add_variant(product_id: ObjectId, variant: dict) -> dict:
    product = get_product(product_id, active_only=False)
    check_sku_collisions([variant["sku"]])
    return set_variants(product_id, product.get("variants", []) + [variant])


def update_variant_stock(product_id: ObjectId, sku: str, stock: int) -> dict:
    product = get_product(product_id, active_only=False)
    variants = product.get("variants", [])
    variant = find_variant(product, sku)
    if variant is None:
        raise NotFound("Variant not found")
    variant["stock"] = stock
    return set_variants(product_id, variants)
