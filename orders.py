"""
Order lifecycle

Customers place orders against a restaurant's menu; prices, fees and tax
are computed here from the stored menu items, never taken from the client.
Status moves along a fixed table, each move stamping its own timestamp,
and the write is conditional on the status that was read.

Drivers pick work from the ``readyForPickup`` pool. Claiming is a single
conditional write on ``status == readyForPickup`` and ``driver_id == None``,
so two drivers racing for one order cannot both get it.
"""

import logging
import random
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

import database
import settings
from database import Query, Where
from errors import DocumentNotFound, InvalidStatusTransition, OrderRejected, PreconditionFailed
from schemas import Order, OrderIn, OrderItem

logger = logging.getLogger(__name__)

ORDERS = "orders"

TRANSITIONS = {
    "pending": {"accepted", "rejected", "cancelled"},
    "accepted": {"preparing", "readyForPickup", "cancelled"},
    "preparing": {"readyForPickup", "cancelled"},
    "readyForPickup": {"cancelled"},  # assigned only through claim()
    "assigned": {"out_for_delivery"},
    "out_for_delivery": {"delivered"},
    "delivered": set(),
    "rejected": set(),
    "cancelled": set(),
}

STATUS_TIMESTAMPS = {
    "accepted": ("accepted_at",),
    "readyForPickup": ("ready_at",),
    "assigned": ("assigned_at",),
    "out_for_delivery": ("picked_up_at",),
    "delivered": ("delivered_at", "actual_delivery_time"),
    "rejected": ("rejected_at",),
    "cancelled": ("cancelled_at",),
}

# statuses each party of an order may set
RESTAURANT_STATUSES = {"accepted", "rejected", "preparing", "readyForPickup", "cancelled"}
DRIVER_STATUSES = {"out_for_delivery", "delivered"}
CUSTOMER_STATUSES = {"cancelled"}

_TIMESTAMP_FIELDS = ("created_at", "updated_at", "estimated_delivery_time") + tuple(
    name for names in STATUS_TIMESTAMPS.values() for name in names
)


def generate_order_number() -> str:
    return f"ORD{str(int(time.time() * 1000))[-6:]}{random.randint(0, 999):03d}"


def _project(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    for name in _TIMESTAMP_FIELDS:
        if doc.get(name) is not None:
            doc[name] = database.to_datetime(doc[name])
    return doc


def _restaurant(restaurant_id: str) -> Dict[str, Any]:
    restaurant = database.get_document("restaurants", restaurant_id)
    if restaurant is None:
        raise DocumentNotFound("restaurants", restaurant_id)
    return restaurant


def price_items(restaurant_id: str, items) -> List[OrderItem]:
    priced = []
    for line in items:
        item = database.get_document("menuItems", line.item_id)
        if item is None or item.get("restaurant_id") != restaurant_id:
            raise OrderRejected(f"Item {line.item_id} is not on this restaurant's menu")
        if not item.get("is_available", True):
            raise OrderRejected(f"{item.get('name')} is not available right now")
        priced.append(OrderItem(
            item_id=line.item_id,
            name=item["name"],
            category=item.get("category", ""),
            unit_price_cents=item["price_cents"],
            quantity=line.quantity,
            preparation_time=item.get("preparation_time", 15),
            special_instructions=line.special_instructions,
        ))
    return priced


def create(customer: Dict[str, Any], body: OrderIn) -> Dict[str, Any]:
    restaurant = _restaurant(body.restaurant_id)
    if restaurant.get("status", "active") != "active":
        raise OrderRejected(f"{restaurant.get('name')} is not taking orders")

    items = price_items(body.restaurant_id, body.items)
    subtotal = sum(i.unit_price_cents * i.quantity for i in items)
    tax = round(subtotal * settings.TAX_RATE)
    fee = settings.DELIVERY_FEE_CENTS

    for _ in range(3):
        order = Order(
            order_number=generate_order_number(),
            customer_id=customer["id"],
            customer_name=customer.get("name", ""),
            customer_email=customer.get("email", ""),
            customer_phone=customer.get("phone", ""),
            delivery_address=body.delivery_address,
            restaurant_id=body.restaurant_id,
            restaurant_name=restaurant.get("name", ""),
            restaurant_phone=restaurant.get("phone", ""),
            restaurant_address=restaurant.get("address", ""),
            items=items,
            subtotal_cents=subtotal,
            delivery_fee_cents=fee,
            tax_cents=tax,
            total_cents=subtotal + fee + tax,
            payment_method=body.payment_method,
            special_instructions=body.special_instructions,
            estimated_delivery_time=database.now() + timedelta(minutes=settings.ESTIMATED_DELIVERY_MIN),
        )
        try:
            created = database.create_document(ORDERS, order)
            break
        except DuplicateKeyError:
            logger.warning("Order number %s taken, retrying", order.order_number)
    else:
        raise OrderRejected("Could not allocate an order number, try again")
    logger.info("Order %s placed by %s at %s", created["order_number"], customer["id"], body.restaurant_id)
    return _project(created)


def get(order_id: str) -> Optional[Dict[str, Any]]:
    return _project(database.get_document(ORDERS, order_id))


def permitted_statuses(order: Dict[str, Any], user: Dict[str, Any]) -> set:
    """Statuses ``user`` may set on ``order``, whatever its current status."""
    if user.get("role") == "admin":
        return set(STATUS_TIMESTAMPS) - {"assigned"}
    allowed = set()
    restaurant = database.get_document("restaurants", order.get("restaurant_id") or "")
    if restaurant is not None and restaurant.get("owner_id") == user["id"]:
        allowed |= RESTAURANT_STATUSES
    if order.get("driver_id") and order.get("driver_id") == user["id"]:
        allowed |= DRIVER_STATUSES
    if order.get("customer_id") == user["id"] and order.get("status") == "pending":
        allowed |= CUSTOMER_STATUSES
    return allowed


def update_status(order_id: str, status: str, actor_id: str, notes: str = "") -> Dict[str, Any]:
    current = database.get_document(ORDERS, order_id)
    if current is None:
        raise DocumentNotFound(ORDERS, order_id)
    current_status = current.get("status")
    if status not in TRANSITIONS.get(current_status, ()):
        raise InvalidStatusTransition(current_status, status)

    ts = database.now()
    changes: Dict[str, Any] = {"status": status, "status_updated_by": actor_id}
    for name in STATUS_TIMESTAMPS.get(status, ()):
        changes[name] = ts
    if notes:
        changes["status_notes"] = notes
    try:
        database.update_document(ORDERS, order_id, changes, expected={"status": current_status})
    except PreconditionFailed:
        latest = database.get_document(ORDERS, order_id) or {}
        raise InvalidStatusTransition(latest.get("status"), status) from None
    logger.info("Order %s: %s -> %s by %s", order_id, current_status, status, actor_id)

    if status == "delivered" and database.get_document("restaurants", current.get("restaurant_id") or "") is not None:
        database.increment_document("restaurants", current["restaurant_id"], "total_orders")
    return get(order_id)


def claim(order_id: str, driver: Dict[str, Any]) -> Dict[str, Any]:
    """Assign a ready, unassigned order to ``driver``. Losing a race raises InvalidStatusTransition."""
    ts = database.now()
    try:
        database.update_document(
            ORDERS,
            order_id,
            {
                "status": "assigned",
                "driver_id": driver["id"],
                "driver_name": driver.get("name", ""),
                "driver_phone": driver.get("phone", ""),
                "assigned_at": ts,
            },
            expected={"status": "readyForPickup", "driver_id": None},
        )
    except PreconditionFailed:
        latest = database.get_document(ORDERS, order_id) or {}
        logger.info("Driver %s lost order %s (%s)", driver["id"], order_id, latest.get("status"))
        raise InvalidStatusTransition(latest.get("status"), "assigned") from None
    logger.info("Order %s claimed by driver %s", order_id, driver["id"])
    return get(order_id)


def _by(field: str, value: str) -> Query:
    return Query(where=[Where(field=field, value=value)], order_by="created_at", descending=True)


def _available() -> Query:
    return Query(
        where=[Where(field="status", value="readyForPickup"), Where(field="driver_id", value=None)],
        order_by="ready_at",
        descending=True,
    )


def customer_orders(customer_id: str) -> List[Dict[str, Any]]:
    return [_project(d) for d in database.query_documents(ORDERS, _by("customer_id", customer_id))]


def restaurant_orders(restaurant_id: str) -> List[Dict[str, Any]]:
    return [_project(d) for d in database.query_documents(ORDERS, _by("restaurant_id", restaurant_id))]


def driver_orders(driver_id: str) -> List[Dict[str, Any]]:
    return [_project(d) for d in database.query_documents(ORDERS, _by("driver_id", driver_id))]


def available_orders() -> List[Dict[str, Any]]:
    return [_project(d) for d in database.query_documents(ORDERS, _available())]


def subscribe_restaurant(restaurant_id: str, callback: Callable[[List[Dict[str, Any]]], None]):
    return database.subscribe(ORDERS, lambda docs: callback([_project(d) for d in docs]), _by("restaurant_id", restaurant_id))


def subscribe_customer(customer_id: str, callback: Callable[[List[Dict[str, Any]]], None]):
    return database.subscribe(ORDERS, lambda docs: callback([_project(d) for d in docs]), _by("customer_id", customer_id))


def subscribe_available(callback: Callable[[List[Dict[str, Any]]], None]):
    return database.subscribe(ORDERS, lambda docs: callback([_project(d) for d in docs]), _available())
