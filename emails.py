"""
Transactional emails (welcome, order confirmation, order status).

Sent through Resend from FastAPI background tasks. Sending is best effort:
without RESEND_API_KEY the message is skipped, and delivery errors are
logged rather than raised so they never fail the request that queued them.
"""
import logging
from datetime import datetime
from html import escape
from typing import Any, Dict

import resend

import settings

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    "confirmed": "Your order has been confirmed and is being prepared.",
    "processing": "Your order is being processed and will be shipped soon.",
    "shipped": "Great news! Your order has been shipped and is on its way.",
    "delivered": "Your order has been delivered. We hope you love your new furniture!",
    "cancelled": "Your order has been cancelled. Any payment made will be refunded.",
}

_WRAPPER = '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">{body}</div>'
_PANEL = '<div style="background-color: #f8fafc; padding: 20px; border-radius: 8px; margin: 20px 0;">{body}</div>'


def _money(amount: float) -> str:
    return f"₹{amount:,.2f}"


def _date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%d %b %Y")
    return escape(str(value or "-"))


def _footer() -> str:
    support = escape(settings.SUPPORT_EMAIL)
    return (
        f'<p>If you have any questions, contact us at <a href="mailto:{support}">{support}</a></p>'
        "<p>Thank you for choosing FurniShop!<br>The FurniShop Team</p>"
    )


def render_welcome(name: str) -> Dict[str, str]:
    body = (
        f'<h2 style="color: #3b82f6;">Welcome to FurniShop, {escape(name)}!</h2>'
        "<p>Thank you for joining our furniture family. We're excited to help you transform "
        "your home with our premium furniture collection.</p>"
        + _PANEL.format(body=(
            '<h3 style="color: #1e293b;">What\'s Next?</h3><ul>'
            "<li>Browse our extensive furniture collection</li>"
            "<li>Add your favorite items to your wishlist</li>"
            "<li>Enjoy free delivery on orders above ₹10,000</li>"
            "</ul>"
        ))
        + _footer()
    )
    return {"subject": "Welcome to FurniShop!", "html": _WRAPPER.format(body=body)}


def render_order_confirmation(name: str, order: Dict[str, Any]) -> Dict[str, str]:
    rows = "".join(
        "<tr>"
        f'<td style="padding: 10px;">{escape(item["name"])}</td>'
        f'<td style="padding: 10px; text-align: center;">{item["quantity"]}</td>'
        f'<td style="padding: 10px; text-align: right;">{_money(item["price"])}</td>'
        "</tr>"
        for item in order["items"]
    )
    address = order["shipping_address"]
    tracking = order.get("tracking_info") or {}
    number = escape(order["order_number"])
    body = (
        '<h2 style="color: #3b82f6;">Order Confirmation</h2>'
        f"<p>Hi {escape(name)},</p>"
        "<p>Thank you for your order! We've received your order and it's being processed.</p>"
        + _PANEL.format(body=(
            f"<p><strong>Order Number:</strong> {number}</p>"
            f"<p><strong>Order Date:</strong> {_date(order.get('created_at'))}</p>"
            f"<p><strong>Payment Method:</strong> {order['payment_method'].upper()}</p>"
            f"<p><strong>Estimated Delivery:</strong> {_date(tracking.get('estimated_delivery'))}</p>"
        ))
        + '<table style="width: 100%; border-collapse: collapse;">'
        "<thead><tr><th>Item</th><th>Qty</th><th>Price</th></tr></thead>"
        f"<tbody>{rows}</tbody></table>"
        f'<h3 style="text-align: right;">Total: {_money(order["total_amount"])}</h3>'
        + _PANEL.format(body=(
            "<h3>Shipping Address</h3><p>"
            f"{escape(address['name'])}<br>{escape(address['street'])}<br>"
            f"{escape(address['city'])}, {escape(address['state'])}<br>{escape(address['pincode'])}<br>"
            f"Phone: {escape(address['phone'])}</p>"
        ))
        + f"<p>You can track your order using order number: <strong>{number}</strong></p>"
        + _footer()
    )
    return {"subject": f"Order Confirmation - {order['order_number']}", "html": _WRAPPER.format(body=body)}


def render_order_status(name: str, order: Dict[str, Any], new_status: str) -> Dict[str, str]:
    tracking = order.get("tracking_info") or {}
    details = (
        f"<p><strong>Order Number:</strong> {escape(order['order_number'])}</p>"
        f'<p><strong>Status:</strong> <span style="color: #10b981; font-weight: bold;">{escape(new_status.upper())}</span></p>'
    )
    if tracking.get("tracking_number"):
        details += f"<p><strong>Tracking Number:</strong> {escape(tracking['tracking_number'])}</p>"
    if tracking.get("carrier"):
        details += f"<p><strong>Carrier:</strong> {escape(tracking['carrier'])}</p>"
    body = (
        '<h2 style="color: #3b82f6;">Order Status Update</h2>'
        f"<p>Hi {escape(name)},</p>"
        f"<p>{STATUS_MESSAGES.get(new_status, 'Your order status has been updated.')}</p>"
        + _PANEL.format(body=details)
        + _footer()
    )
    return {"subject": f"Order Update - {order['order_number']}", "html": _WRAPPER.format(body=body)}


def send_email(to: str, message: Dict[str, str]) -> bool:
    if not settings.RESEND_API_KEY:
        logger.info("RESEND_API_KEY not set; skipping email '%s' to %s", message["subject"], to)
        return False
    resend.api_key = settings.RESEND_API_KEY
    try:
        resend.Emails.send({
            "from": settings.EMAIL_FROM,
            "to": [to],
            "subject": message["subject"],
            "html": message["html"],
        })
    except Exception as exc:
        logger.error("Failed to send email '%s' to %s: %s", message["subject"], to, exc)
        return False
    logger.info("Sent email '%s' to %s", message["subject"], to)
    return True


def send_welcome_email(to: str, name: str) -> bool:
    return send_email(to, render_welcome(name))


def send_order_confirmation_email(to: str, name: str, order: Dict[str, Any]) -> bool:
    return send_email(to, render_order_confirmation(name, order))


def send_order_status_email(to: str, name: str, order: Dict[str, Any], new_status: str) -> bool:
    return send_email(to, render_order_status(name, order, new_status))
