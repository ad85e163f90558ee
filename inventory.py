"""
Cart/stock reconciliation.

Stock is decremented with conditional single-document updates
(``quantity >= requested``), so a product's quantity never drops below zero
even when two checkouts race. A multi-line reservation is not atomic: when a
later line falls short, the lines already taken are put back before the
error is raised.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId

import pricing

logger = logging.getLogger(__name__)


class StockError(Exception):
    """Requested quantity cannot be supplied."""

    def __init__(self, message: str, available_quantity: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.available_quantity = available_quantity


class ProductNotFound(Exception):
    def __init__(self, product_id):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


def merge_lines(lines: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Fold repeated product lines into one, keeping first-seen order."""
    merged: Dict[str, Dict[str, Any]] = {}
    for line in lines:
        key = str(line["product_id"])
        if key in merged:
            merged[key]["quantity"] += int(line["quantity"])
        else:
            merged[key] = {"product_id": ObjectId(key), "quantity": int(line["quantity"])}
    return list(merged.values())


def check_availability(product: Optional[Dict[str, Any]], requested: int) -> None:
    """Raise unless `requested` units of an active product can be put in a cart."""
    if not product:
        raise ProductNotFound(None)
    if not product.get("is_active", True):
        raise StockError("Product is not available", available_quantity=0)
    available = int(product.get("quantity", 0))
    if requested > available:
        raise StockError(f"Insufficient stock for {product.get('name')}", available_quantity=available)


def reserve_stock(db, lines: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Take stock for every line and return priced order items.

    Each item snapshots the product's name, first image and discounted unit
    price so later catalog edits do not change the order.
    """
    reserved: List[Dict[str, Any]] = []
    try:
        for line in merge_lines(lines):
            product_id, quantity = line["product_id"], line["quantity"]
            product = db["product"].find_one({"_id": product_id})
            if not product:
                raise ProductNotFound(str(product_id))
            if not product.get("is_active", True):
                raise StockError(f"{product['name']} is no longer available", available_quantity=0)

            images = product.get("images") or []
            item = {
                "product_id": product_id,
                "quantity": quantity,
                "price": pricing.discounted_price(product["price"], product.get("discount", 0)),
                "name": product["name"],
                "image": images[0] if images else "",
                "category": product.get("category"),
            }

            result = db["product"].update_one(
                {"_id": product_id, "is_active": True, "quantity": {"$gte": quantity}},
                {"$inc": {"quantity": -quantity}, "$set": {"updated_at": datetime.now(timezone.utc)}},
            )
            if result.matched_count == 0:
                current = db["product"].find_one({"_id": product_id}, {"quantity": 1}) or {}
                available = int(current.get("quantity", 0))
                logger.warning("Stock shortfall for %s: wanted %d, have %d", product_id, quantity, available)
                raise StockError(
                    f"Insufficient stock for {product['name']}. Available: {available}",
                    available_quantity=available,
                )

            reserved.append(item)
    except Exception:
        release_stock(db, reserved)
        raise
    return reserved


def release_stock(db, items: Iterable[Dict[str, Any]]) -> None:
    """Put order item quantities back on the shelf."""
    for item in items:
        db["product"].update_one(
            {"_id": item["product_id"]},
            {"$inc": {"quantity": item["quantity"]}, "$set": {"updated_at": datetime.now(timezone.utc)}},
        )
        logger.info("Restocked %d x %s", item["quantity"], item["product_id"])


def reconcile_cart(db, cart: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Resolve stored cart lines against the live catalog.

    Lines whose product was deleted or deactivated are dropped. Each
    remaining line carries the current prices plus the available stock so
    the client can flag lines that can no longer be fulfilled in full.
    """
    cart = list(cart)
    ids = [line["product_id"] for line in cart]
    products = {
        p["_id"]: p
        for p in db["product"].find({"_id": {"$in": ids}, "is_active": True}, {"reviews": 0})
    }
    lines = []
    for line in cart:
        product = products.get(line["product_id"])
        if product is None:
            continue
        unit = pricing.discounted_price(product["price"], product.get("discount", 0))
        available = int(product.get("quantity", 0))
        lines.append({
            "product": pricing.with_derived_fields(product),
            "quantity": line["quantity"],
            "price": product["price"],
            "discounted_price": unit,
            "item_total": pricing.line_total(unit, line["quantity"]),
            "available_quantity": available,
            "exceeds_stock": line["quantity"] > available,
        })
    return lines
