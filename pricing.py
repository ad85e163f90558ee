"""Price, discount and cart total computation."""
from typing import Any, Dict, Iterable, List

FREE_SHIPPING_THRESHOLD = 10000
SHIPPING_FEE = 500


def discounted_price(price: float, discount: float = 0) -> float:
    if discount is None:
        discount = 0
    if not 0 <= discount <= 100:
        raise ValueError("Discount must be between 0 and 100")
    return round(price - (price * discount / 100), 2)


def line_total(unit_price: float, quantity: int) -> float:
    return round(unit_price * quantity, 2)


def order_total(items: Iterable[Dict[str, Any]]) -> float:
    """Sum of discounted unit price x quantity over order items."""
    return round(sum(item["price"] * item["quantity"] for item in items), 2)


def shipping_fee(subtotal: float) -> float:
    return 0 if subtotal > FREE_SHIPPING_THRESHOLD else SHIPPING_FEE


def cart_summary(lines: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Totals for priced cart lines (each with `discounted_price` and `quantity`).

    Shipping only applies to a non-empty cart.
    """
    subtotal = round(sum(line["discounted_price"] * line["quantity"] for line in lines), 2)
    shipping = shipping_fee(subtotal) if lines else 0
    return {
        "subtotal": subtotal,
        "item_count": sum(line["quantity"] for line in lines),
        "shipping": shipping,
        "total": round(subtotal + shipping, 2),
    }


def with_derived_fields(product: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(product)
    out["discounted_price"] = discounted_price(out.get("price", 0), out.get("discount", 0))
    out["in_stock"] = out.get("quantity", 0) > 0
    return out
