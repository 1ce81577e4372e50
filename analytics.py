"""
Order-intent analytics.

The beacon is best effort: it runs as a detached task next to the WhatsApp
redirect, and a failed POST only ever reaches the log.
"""
import asyncio
import logging
import os
from typing import Any, Dict, Literal, Optional, Set

import httpx
from pydantic import BaseModel

from cart_store import CartStore, cart_items_to_order_items
from whatsapp import build_whatsapp_url, generate_order_reference

logger = logging.getLogger(__name__)

EventType = Literal["initiated", "order_initiated", "completed", "abandoned"]

DEFAULT_EVENTS_ENDPOINT = "http://localhost:8000/api/events"


class OrderEvent(BaseModel):
    tenant_id: str
    event_type: EventType
    cart_data: Optional[Dict[str, Any]] = None
    payload: Optional[Dict[str, Any]] = None


class EventBeacon:
    def __init__(self, endpoint: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.endpoint = endpoint or os.getenv("EVENTS_ENDPOINT", DEFAULT_EVENTS_ENDPOINT)
        self.client = client
        self._pending: Set[asyncio.Task] = set()

    async def send(self, event: OrderEvent) -> bool:
        body = event.model_dump(exclude_none=True)
        try:
            if self.client is not None:
                response = await self.client.post(self.endpoint, json=body)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self.endpoint, json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Analytics event was not delivered",
                extra={"tenant_id": event.tenant_id, "event_type": event.event_type, "error": str(exc)},
            )
            return False
        return True

    def fire(self, event: OrderEvent) -> Optional[asyncio.Task]:
        """Schedule send() without waiting for it.

        Outside a running event loop the event is logged and dropped; the caller
        is never blocked or interrupted.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop; analytics event skipped",
                extra={"tenant_id": event.tenant_id, "event_type": event.event_type},
            )
            return None
        task = loop.create_task(self.send(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending)


def checkout_via_whatsapp(
    cart: CartStore,
    store_name: str,
    phone_number: str,
    beacon: EventBeacon,
    order_reference: Optional[str] = None,
) -> Optional[str]:
    """Turn the cart into a WhatsApp deep link, report the order intent and empty the cart.

    Returns None for an empty cart. The beacon is fired, never awaited.
    """
    if cart.is_empty:
        return None

    lines = cart_items_to_order_items(cart.items)
    total = cart.get_total_price()
    url = build_whatsapp_url(
        phone_number,
        store_name,
        lines,
        total_amount=total,
        order_reference=order_reference or generate_order_reference(),
    )

    if cart.tenant_id:
        beacon.fire(
            OrderEvent(
                tenant_id=cart.tenant_id,
                event_type="initiated",
                cart_data={"items": [line.model_dump() for line in lines], "total": total},
            )
        )
    else:
        logger.warning("Cart has no tenant; order event skipped")

    cart.clear_cart()
    return url
