"""
WhatsApp click-to-chat helpers: phone normalization, order message template
and deep link construction.
"""
import re
import string
from datetime import datetime, timezone
from typing import Iterable, List, Mapping, Optional, Union
from urllib.parse import quote

from cart_store import OrderLine

WHATSAPP_BASE_URL = "https://wa.me"

# characters encodeURIComponent leaves untouched besides letters, digits and "-_.~"
URI_COMPONENT_SAFE = "!~*'()"

BASE36 = string.digits + string.ascii_uppercase

OrderLineInput = Union[OrderLine, Mapping]


def format_whatsapp_number(raw: str) -> str:
    """Keep digits only and drop a leading 00 dialing prefix.

    >>> format_whatsapp_number("+90 (555) 123-4567")
    '905551234567'
    """
    digits = re.sub(r"\D", "", raw or "")
    if digits.startswith("00"):
        digits = digits[2:]
    return digits


def format_price(amount: float) -> str:
    """Turkish number formatting: 1234.5 -> '1.234,5'."""
    text = f"{amount:,.3f}".rstrip("0").rstrip(".")
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def encode_uri_component(text: str) -> str:
    return quote(text, safe=URI_COMPONENT_SAFE)


def _item_line(item: OrderLine) -> str:
    quantity = f" (x{item.quantity})" if item.quantity > 1 else ""
    attributes = ""
    if item.attributes:
        attributes = " (" + ", ".join(f"{k}: {v}" for k, v in item.attributes.items()) + ")"
    price = f" - {format_price(item.price)} TL" if item.price else ""
    return f"• {item.name}{quantity}{attributes}{price}"


def build_order_message(
    store_name: str,
    items: Iterable[OrderLineInput],
    total_amount: Optional[float] = None,
    order_reference: Optional[str] = None,
) -> str:
    lines: List[str] = [
        f"Hello {store_name},",
        "",
        "I would like to order the following products:",
        "",
    ]
    for item in items:
        if not isinstance(item, OrderLine):
            item = OrderLine.model_validate(item)
        lines.append(_item_line(item))

    if total_amount:
        lines.extend(["", f"Total Amount: {format_price(total_amount)} TL"])
    if order_reference:
        lines.append(f"Order Reference: {order_reference}")

    return "\n".join(lines)


def build_whatsapp_url(
    phone_number: str,
    store_name: str,
    items: Iterable[OrderLineInput],
    total_amount: Optional[float] = None,
    order_reference: Optional[str] = None,
) -> str:
    message = build_order_message(store_name, items, total_amount, order_reference)
    return f"{WHATSAPP_BASE_URL}/{format_whatsapp_number(phone_number)}?text={encode_uri_component(message)}"


def build_contact_url(phone_number: str, store_name: str) -> str:
    """Deep link for the storefront's general contact button (no cart attached)."""
    message = f"Hello, I'm browsing the products in the {store_name} storefront."
    return f"{WHATSAPP_BASE_URL}/{format_whatsapp_number(phone_number)}?text={encode_uri_component(message)}"


def generate_order_reference(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    value = int(now.timestamp() * 1000)
    digits = ""
    while value:
        value, rem = divmod(value, 36)
        digits = BASE36[rem] + digits
    return f"SIP-{digits or '0'}"
