"""Order notification emails delivered through Resend.

Both senders return ``(sent, error)`` and never raise, so a mail outage can
not fail the request that triggered it.
"""
from html import escape
from typing import Dict, Optional, Tuple

import resend

BRAND_NAME = "GadgetzWorld"
brand_colors = {
    "bg_primary": "#0b1120",
    "bg_card": "#111a2e",
    "border": "rgba(96, 165, 250, 0.25)",
    "text_primary": "#f1f5f9",
    "text_secondary": "rgba(226, 232, 240, 0.82)",
    "text_muted": "rgba(226, 232, 240, 0.55)",
    "accent": "#38bdf8",
}


def send_email_via_resend(payload: Dict[str, object], api_key: str):
    configured_api_key = (api_key or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def format_price(value) -> str:
    try:
        return f"{float(value):.2f}"
    except (TypeError, ValueError):
        return "0.00"


def build_order_summary(order_document: Dict[str, object]) -> Dict[str, str]:
    return {
        "order_id": str(order_document.get("_id") or "").strip() or "Order",
        "product_name": str(order_document.get("productName") or "").strip() or "Item",
        "quantity": str(order_document.get("quantity") or 1),
        "total": format_price(order_document.get("totalPrice")),
        "status": str(order_document.get("status") or "Pending"),
        "order_date": str(order_document.get("orderDate") or ""),
        "payment_method": str(order_document.get("paymentMethod") or "").strip(),
        "transaction_id": str(order_document.get("transactionId") or "").strip(),
    }


def build_order_email_html(heading: str, intro: str, summary: Dict[str, str]) -> str:
    colors = brand_colors
    rows = [
        ("Order", summary["order_id"]),
        ("Product", summary["product_name"]),
        ("Quantity", summary["quantity"]),
        ("Total", f"${summary['total']}"),
        ("Status", summary["status"]),
        ("Order date", summary["order_date"]),
    ]
    if summary["payment_method"]:
        rows.append(("Payment method", summary["payment_method"]))
    if summary["transaction_id"]:
        rows.append(("Transaction", summary["transaction_id"]))

    row_markup = "".join(
        f'<tr><td style="padding:8px 0;color:{colors["text_muted"]};">{escape(label)}</td>'
        f'<td style="padding:8px 0;text-align:right;color:{colors["text_primary"]};">{escape(value)}</td></tr>'
        for label, value in rows
    )

    return f"""<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <title>{escape(heading)}</title>
  </head>
  <body style="margin:0;padding:0;background-color:{colors['bg_primary']};font-family:'Inter','Segoe UI',Arial,sans-serif;">
    <div style="padding:40px 16px;">
      <table width="100%" cellpadding="0" cellspacing="0" role="presentation" style="max-width:560px;margin:0 auto;border-radius:24px;background:{colors['bg_card']};border:1px solid {colors['border']};">
        <tr>
          <td style="padding:40px 36px;">
            <p style="margin:0 0 12px 0;text-transform:uppercase;letter-spacing:0.3em;font-size:12px;color:{colors['accent']};">{BRAND_NAME}</p>
            <h1 style="margin:0 0 14px 0;font-size:24px;color:{colors['text_primary']};">{escape(heading)}</h1>
            <p style="margin:0 0 24px 0;font-size:15px;line-height:1.7;color:{colors['text_secondary']};">{escape(intro)}</p>
            <table width="100%" cellpadding="0" cellspacing="0" role="presentation" style="font-size:14px;">{row_markup}</table>
            <p style="margin:28px 0 0 0;font-size:13px;color:{colors['text_muted']};">The {BRAND_NAME} Team</p>
          </td>
        </tr>
      </table>
    </div>
  </body>
</html>"""


def build_order_email_text(intro: str, summary: Dict[str, str]) -> str:
    lines = [
        intro,
        "",
        f"Order: {summary['order_id']}",
        f"Product: {summary['product_name']} x{summary['quantity']}",
        f"Total: ${summary['total']}",
        f"Status: {summary['status']}",
    ]
    if summary["transaction_id"]:
        lines.append(f"Transaction: {summary['transaction_id']}")
    lines.extend(["", f"{BRAND_NAME} Team"])
    return "\n".join(lines)


def deliver_order_email(
    recipient_email: Optional[str],
    subject: str,
    heading: str,
    intro: str,
    order_document: Dict[str, object],
    *,
    api_key: str,
    sender: str,
    logger,
) -> Tuple[bool, Optional[str]]:
    recipient = str(recipient_email or "").strip()
    if not recipient:
        logger.warning("Skipping '%s' email: the order has no customer email.", subject)
        return False, "Missing customer email for the order."

    if not (api_key or "").strip():
        logger.warning(
            "Skipping '%s' email to %s: Resend API key is not configured.",
            subject,
            recipient,
        )
        return False, "Resend API key is not configured."

    summary = build_order_summary(order_document)
    payload: Dict[str, object] = {
        "from": f"{BRAND_NAME} <{sender}>",
        "to": [recipient],
        "subject": subject,
        "html": build_order_email_html(heading, intro, summary),
        "text": build_order_email_text(intro, summary),
    }

    sent, error_details = send_email_via_resend(payload, api_key)
    if not sent:
        logger.error(
            "Order email delivery failed for %s: %s",
            recipient,
            error_details or "Unknown Resend error",
        )
    return sent, error_details


def send_order_confirmation_email(order_document, recipient_email, **settings):
    return deliver_order_email(
        recipient_email,
        "Thank you for your purchase",
        "Your order is confirmed",
        "Thanks for shopping with us! We have received your order and will let you know when it ships.",
        order_document,
        **settings,
    )


def send_order_status_email(order_document, recipient_email, **settings):
    status = str(order_document.get("status") or "updated")
    return deliver_order_email(
        recipient_email,
        f"Your order is {status.lower()}",
        f"Order status: {status}",
        f"The status of your order has changed to {status}.",
        order_document,
        **settings,
    )
