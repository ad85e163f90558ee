"""
Order lifecycle: status transitions, tracking history and the
return/exchange sub-workflows.

Every operation takes the order document as loaded from Mongo, mutates it
in place and returns an OrderUpdate describing the same change as a Mongo
update (``$set`` for fields, ``$push`` for tracking history), so callers
can persist it without rewriting the whole document. Rule violations raise
OrderStateError and leave the document untouched.
"""
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from schemas import Order

logger = logging.getLogger(__name__)

STATUS_FLOW = ["pending", "confirmed", "processing", "shipped", "delivered"]
ORDER_STATUSES = STATUS_FLOW + ["cancelled"]
CANCELLABLE_STATUSES = {"pending", "confirmed", "processing"}
TERMINAL_STATUSES = {"delivered", "cancelled"}

REQUEST_TRANSITIONS = {
    "requested": {"approved", "rejected"},
    "approved": {"processing", "completed"},
    "processing": {"completed"},
    "rejected": set(),
    "completed": set(),
}
REVIEW_STATUSES = ["approved", "rejected", "processing", "completed"]

RETURN_WINDOW_DAYS = 7
DELIVERY_ESTIMATE_DAYS = 7


class OrderStateError(Exception):
    """An operation is not allowed in the order's current state."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive UTC datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrderUpdate:
    def __init__(self, order: Dict[str, Any], now: datetime):
        self.order = order
        self.now = now
        self.fields: Dict[str, Any] = {}
        self.history: List[Dict[str, Any]] = []

    def set(self, path: str, value: Any) -> None:
        target = self.order
        *parents, leaf = path.split(".")
        for key in parents:
            if target.get(key) is None:
                target[key] = {}
            target = target[key]
        target[leaf] = value
        self.fields[path] = value

    def push_history(self, status: str, description: str, location: str) -> None:
        entry = history_entry(status, description, location, self.now)
        tracking = self.order.setdefault("tracking_info", {})
        tracking.setdefault("status_history", []).append(entry)
        self.history.append(entry)

    def to_mongo(self) -> Dict[str, Any]:
        update: Dict[str, Any] = {"$set": {**self.fields, "updated_at": self.now}}
        if self.history:
            update["$push"] = {"tracking_info.status_history": {"$each": self.history}}
        return update


def history_entry(status: str, description: str, location: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {"status": status, "date": now or _now(), "location": location, "description": description}


def append_history(
    order: Dict[str, Any],
    status: str,
    description: str,
    location: str,
    now: Optional[datetime] = None,
) -> OrderUpdate:
    """Record a tracking event without touching the order status."""
    update = OrderUpdate(order, now or _now())
    update.push_history(status, description, location)
    return update


def generate_order_number(now: Optional[datetime] = None) -> str:
    """FS + YYYYMMDD + 4 random digits. Uniqueness is enforced by the index, not here."""
    now = now or _now()
    return f"FS{now:%Y%m%d}{random.randint(0, 9999):04d}"


def new_order(
    user_id,
    items: List[Dict[str, Any]],
    shipping_address: Dict[str, Any],
    payment_method: str,
    total_amount: float,
    upi_id: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or _now()
    if payment_method == "upi" and not upi_id:
        raise OrderStateError("UPI ID is required for UPI payment")
    order = Order(
        user_id=user_id,
        order_number=generate_order_number(now),
        items=items,
        shipping_address=shipping_address,
        payment_method=payment_method,
        payment_details={"upi_id": upi_id if payment_method == "upi" else None, "payment_status": "pending"},
        total_amount=total_amount,
        notes=notes,
        tracking_info={
            "estimated_delivery": now + timedelta(days=DELIVERY_ESTIMATE_DAYS),
            "status_history": [
                history_entry(
                    "Order Placed",
                    "Your order has been successfully placed and is being processed.",
                    "Processing Center",
                    now,
                )
            ],
        },
    ).model_dump()
    order["created_at"] = now
    order["updated_at"] = now
    return order


def can_transition(current: str, new: str) -> bool:
    if current in TERMINAL_STATUSES or current == new:
        return False
    if new == "cancelled":
        return current in CANCELLABLE_STATUSES
    if current not in STATUS_FLOW or new not in STATUS_FLOW:
        return False
    return STATUS_FLOW.index(new) > STATUS_FLOW.index(current)


def apply_status(
    order: Dict[str, Any],
    new_status: str,
    tracking_number: Optional[str] = None,
    carrier: Optional[str] = None,
    location: Optional[str] = None,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> OrderUpdate:
    if new_status not in ORDER_STATUSES:
        raise OrderStateError("Invalid order status")
    current = order.get("order_status", "pending")
    if not can_transition(current, new_status):
        raise OrderStateError(f"Cannot change order status from {current} to {new_status}")

    update = OrderUpdate(order, now or _now())
    update.set("order_status", new_status)
    if tracking_number:
        update.set("tracking_info.tracking_number", tracking_number)
    if carrier:
        update.set("tracking_info.carrier", carrier)
    if new_status == "delivered":
        update.set("delivery_date", update.now)
    update.push_history(
        new_status.capitalize(),
        description or f"Order status updated to {new_status}",
        location or "Fulfillment Center",
    )
    logger.info("Order %s: %s -> %s", order.get("order_number"), current, new_status)
    return update


def cancel(order: Dict[str, Any], reason: Optional[str] = None, now: Optional[datetime] = None) -> OrderUpdate:
    current = order.get("order_status", "pending")
    if current not in CANCELLABLE_STATUSES:
        raise OrderStateError(f"Orders that are {current} can no longer be cancelled")
    description = "Order cancelled by customer"
    if reason:
        description += f". Reason: {reason}"
    return apply_status(order, "cancelled", location="Customer Service", description=description, now=now)


def confirm_upi_payment(order: Dict[str, Any], transaction_id: str, now: Optional[datetime] = None) -> OrderUpdate:
    if order.get("payment_method") != "upi":
        raise OrderStateError("This order is not set for UPI payment")
    payment = order.get("payment_details") or {}
    if payment.get("payment_status") == "completed":
        raise OrderStateError("Payment has already been completed for this order")
    if order.get("order_status") != "pending":
        raise OrderStateError(f"Cannot take payment for an order that is {order.get('order_status')}")

    update = OrderUpdate(order, now or _now())
    update.set("payment_details.transaction_id", transaction_id)
    update.set("payment_details.payment_status", "completed")
    update.set("order_status", "confirmed")
    update.push_history("Payment Confirmed", "Payment has been successfully processed via UPI.", "Payment Gateway")
    logger.info("Order %s: UPI payment %s confirmed", order.get("order_number"), transaction_id)
    return update


# ----------------------- Returns & exchanges -----------------------
def window_open(order: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """Returns and exchanges are accepted within 7 days of delivery."""
    now = now or _now()
    delivered = order.get("delivery_date") or order.get("created_at")
    if delivered is None:
        return False
    return (now - _as_utc(delivered)).days <= RETURN_WINDOW_DAYS


def _check_request_allowed(order: Dict[str, Any], field: str, noun: str, now: datetime) -> None:
    if order.get("order_status") != "delivered":
        verb = "returned" if noun == "return" else "exchanged"
        raise OrderStateError(f"Only delivered orders can be {verb}")
    if not window_open(order, now):
        raise OrderStateError(
            f"{noun.capitalize()} window has expired. "
            f"{noun.capitalize()}s are accepted within {RETURN_WINDOW_DAYS} days of delivery."
        )
    if (order.get(field) or {}).get("status", "none") != "none":
        raise OrderStateError(f"{noun.capitalize()} request already exists for this order")


def request_return(
    order: Dict[str, Any],
    reason: str,
    description: str,
    additional_comments: Optional[str] = None,
    now: Optional[datetime] = None,
) -> OrderUpdate:
    now = now or _now()
    _check_request_allowed(order, "return_request", "return", now)
    update = OrderUpdate(order, now)
    update.set("return_request", {
        "status": "requested",
        "reason": reason,
        "description": description,
        "additional_comments": additional_comments or "",
        "request_date": now,
        "approval_date": None,
        "refund_amount": order.get("total_amount"),
        "refund_status": "pending",
    })
    update.push_history("Return Requested", f"Return request submitted. Reason: {reason}", "Customer Service")
    return update


def request_exchange(
    order: Dict[str, Any],
    reason: str,
    description: str,
    additional_comments: Optional[str] = None,
    new_product_requested: Optional[str] = None,
    now: Optional[datetime] = None,
) -> OrderUpdate:
    now = now or _now()
    _check_request_allowed(order, "exchange_request", "exchange", now)
    update = OrderUpdate(order, now)
    update.set("exchange_request", {
        "status": "requested",
        "reason": reason,
        "description": description,
        "additional_comments": additional_comments or "",
        "request_date": now,
        "approval_date": None,
        "new_product_requested": new_product_requested or "",
        # settled when an admin reviews the exchange
        "price_difference": 0,
    })
    update.push_history("Exchange Requested", f"Exchange request submitted. Reason: {reason}", "Customer Service")
    return update


def _review(order: Dict[str, Any], field: str, noun: str, status: str, now: Optional[datetime]) -> OrderUpdate:
    if status not in REVIEW_STATUSES:
        raise OrderStateError(f"Invalid {noun} status")
    current = (order.get(field) or {}).get("status", "none")
    if current == "none":
        raise OrderStateError(f"No {noun} request found for this order")
    if status not in REQUEST_TRANSITIONS.get(current, set()):
        raise OrderStateError(f"Cannot move {noun} request from {current} to {status}")

    update = OrderUpdate(order, now or _now())
    update.set(f"{field}.status", status)
    update.set(f"{field}.approval_date", update.now)
    update.push_history(f"{noun.capitalize()} {status.capitalize()}", f"{noun.capitalize()} request has been {status}", "Customer Service")
    logger.info("Order %s: %s request %s -> %s", order.get("order_number"), noun, current, status)
    return update


def review_return(
    order: Dict[str, Any],
    status: str,
    refund_amount: Optional[float] = None,
    now: Optional[datetime] = None,
) -> OrderUpdate:
    if refund_amount is not None and not 0 <= refund_amount <= order.get("total_amount", 0):
        raise OrderStateError("Refund amount must be between 0 and the order total")
    update = _review(order, "return_request", "return", status, now)
    if refund_amount is not None:
        update.set("return_request.refund_amount", refund_amount)
    if status == "approved":
        update.set("return_request.refund_status", "pending")
    elif status == "completed":
        update.set("return_request.refund_status", "completed")
    return update


def review_exchange(
    order: Dict[str, Any],
    status: str,
    price_difference: Optional[float] = None,
    now: Optional[datetime] = None,
) -> OrderUpdate:
    update = _review(order, "exchange_request", "exchange", status, now)
    if price_difference is not None:
        update.set("exchange_request.price_difference", price_difference)
    return update
