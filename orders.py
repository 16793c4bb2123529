"""
Order assembly and the order status lifecycle.

An order is written in two steps: the order row, then one row per cart line
in ``order_items``. If the second step fails the order row is left in place
and the cart is kept, so the customer can retry.
"""
import random
import string
import time
from typing import List, Optional

import structlog
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from cart_store import CartStore
from database import create_document, serialize, to_obj_id, utcnow
from errors import Forbidden, InvalidStatusTransition, NotAuthenticated, NotFound, OrderNotCancellable, PreconditionFailed
from policies import allowed_status_targets, may_set_status
from schemas import Address, DeliveryAddress, Order, OrderItem, ProductSnapshot, RoleFlags

logger = structlog.get_logger(__name__)

STATUS_SEQUENCE = [
    "pending",
    "confirmed",
    "preparing",
    "ready_for_pickup",
    "assigned_to_delivery",
    "picked_up",
    "out_for_delivery",
    "delivered",
]
TERMINAL_FROM_PENDING = {"cancelled", "refunded"}
ACTIVE_DELIVERY_STATUSES = {"assigned_to_delivery", "picked_up", "out_for_delivery"}

_BASE36 = string.digits + string.ascii_uppercase


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_BASE36[r])
    return "".join(reversed(out))


def generate_order_number() -> str:
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_BASE36, k=4))
    return f"AM{timestamp}{suffix}"


def is_valid_transition(current: str, target: str) -> bool:
    if target in TERMINAL_FROM_PENDING:
        return current == "pending"
    if current not in STATUS_SEQUENCE or target not in STATUS_SEQUENCE:
        return False
    return STATUS_SEQUENCE.index(target) > STATUS_SEQUENCE.index(current)


def _snapshot_address(address: Address) -> DeliveryAddress:
    return DeliveryAddress(
        address_type=address.address_type,
        address_line1=address.address_line1,
        address_line2=address.address_line2,
        landmark=address.landmark,
        city=address.city,
        state=address.state,
        pincode=address.pincode,
    )


def create_order(db: Database, user: Optional[dict], cart: CartStore, address: Address,
                 payment_method: str, customer_notes: Optional[str] = None) -> dict:
    if not user:
        raise NotAuthenticated("User not authenticated")
    if not cart.items:
        raise PreconditionFailed("Cart is empty")

    # Flat cart fee, not the distance-tiered quote
    subtotal = cart.get_total_amount()
    delivery_fee = cart.get_delivery_fee()
    platform_fee = config.PLATFORM_FEE
    discount_amount = 0
    total_amount = subtotal + delivery_fee + platform_fee - discount_amount

    order = Order(
        order_number=generate_order_number(),
        customer_id=user["id"],
        vendor_id=cart.items[0].vendor_id,
        delivery_address=_snapshot_address(address),
        delivery_latitude=address.latitude,
        delivery_longitude=address.longitude,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        platform_fee=platform_fee,
        discount_amount=discount_amount,
        total_amount=total_amount,
        payment_method=payment_method,
        payment_status="pending",
        status="pending",
        customer_notes=customer_notes,
    )
    doc = order.model_dump()
    doc["placed_at"] = utcnow()
    order_id = create_document("orders", doc, database=db)

    items = [
        OrderItem(
            order_id=order_id,
            product_id=line.product_id,
            product_snapshot=ProductSnapshot(
                id=line.product_id,
                name=line.name,
                image_url=line.image_url,
                unit_value=line.unit_value,
                unit_type=line.unit_type,
                selling_price=line.selling_price,
                mrp=line.mrp,
            ),
            quantity=line.quantity,
            unit_price=line.selling_price,
            mrp=line.mrp,
            discount_amount=(line.mrp - line.selling_price) * line.quantity,
            total_price=line.selling_price * line.quantity,
        ).model_dump()
        for line in cart.items
    ]
    try:
        db["order_items"].insert_many(items)
    except PyMongoError:
        logger.error("order_items_write_failed", order_id=order_id, order_number=order.order_number)
        raise

    cart.clear_cart()
    logger.info("order_created", order_id=order_id, order_number=order.order_number, total_amount=total_amount)
    return get_order(db, order_id)


def _with_items(db: Database, doc: dict) -> dict:
    order = serialize(doc)
    order["order_items"] = [serialize(i) for i in db["order_items"].find({"order_id": order["id"]})]
    return order


def get_order(db: Database, order_id: str) -> dict:
    doc = db["orders"].find_one({"_id": to_obj_id(order_id)})
    if not doc:
        raise NotFound("Order not found")
    return _with_items(db, doc)


def list_orders(db: Database, customer_id: str) -> List[dict]:
    docs = db["orders"].find({"customer_id": customer_id}).sort("placed_at", DESCENDING)
    return [_with_items(db, d) for d in docs]


def list_vendor_orders(db: Database, vendor_id: str, status: Optional[str] = None) -> List[dict]:
    query = {"vendor_id": vendor_id}
    if status:
        query["status"] = status
    return [_with_items(db, d) for d in db["orders"].find(query).sort("placed_at", DESCENDING)]


def list_available_deliveries(db: Database) -> List[dict]:
    """Orders ready for pickup that no delivery partner has taken yet, oldest first."""
    docs = db["orders"].find({"status": "ready_for_pickup", "delivery_partner_id": None}).sort("placed_at", ASCENDING)
    return [_with_items(db, d) for d in docs]


def list_active_deliveries(db: Database, partner_id: str) -> List[dict]:
    docs = db["orders"].find({
        "delivery_partner_id": partner_id,
        "status": {"$in": list(ACTIVE_DELIVERY_STATUSES)},
    }).sort("placed_at", DESCENDING)
    return [_with_items(db, d) for d in docs]


def accept_delivery(db: Database, order_id: str, partner_id: str) -> dict:
    now = utcnow()
    res = db["orders"].update_one(
        {"_id": to_obj_id(order_id), "status": "ready_for_pickup", "delivery_partner_id": None},
        {"$set": {
            "delivery_partner_id": partner_id,
            "status": "assigned_to_delivery",
            "assigned_to_delivery_at": now,
            "updated_at": now,
        }},
    )
    if res.matched_count == 0:
        raise InvalidStatusTransition("Order is no longer available for pickup")
    logger.info("delivery_accepted", order_id=order_id, partner_id=partner_id)
    return get_order(db, order_id)


def cancel_order(db: Database, user: Optional[dict], order_id: str) -> dict:
    """Cancel a customer's own order. Only succeeds while the order is still pending."""
    if not user:
        raise NotAuthenticated("User not authenticated")
    query = {"_id": to_obj_id(order_id), "customer_id": user["id"]}
    if not db["orders"].find_one(query, {"_id": 1}):
        raise NotFound("Order not found")
    res = db["orders"].update_one(
        {**query, "status": "pending"},
        {"$set": {
            "status": "cancelled",
            "cancelled_at": utcnow(),
            "cancellation_reason": "Cancelled by customer",
            "updated_at": utcnow(),
        }},
    )
    if res.matched_count == 0:
        raise OrderNotCancellable("Order cannot be cancelled. It is no longer pending.")
    logger.info("order_cancelled", order_id=order_id, user_id=user["id"])
    return get_order(db, order_id)


def advance_status(db: Database, order_id: str, target: str, roles: RoleFlags) -> dict:
    """
    Move an order forward to `target` on behalf of an operator.

    Vendors act on their own orders and delivery partners on the orders
    assigned to them; admins on any order. The write is conditional on the
    status and owner read here, so a concurrent change makes it fail.
    """
    role_names = roles.as_list()
    if target not in allowed_status_targets(role_names):
        raise Forbidden(f"Your role cannot set status '{target}'")

    doc = db["orders"].find_one(
        {"_id": to_obj_id(order_id)}, {"status": 1, "vendor_id": 1, "delivery_partner_id": 1}
    )
    if not doc:
        raise NotFound("Order not found")
    actor_ids = {"vendor": roles.vendor_id, "delivery_partner": roles.delivery_partner_id}
    if not may_set_status(target, role_names, actor_ids, doc):
        raise Forbidden("You cannot update this order")
    current = doc["status"]
    if not is_valid_transition(current, target):
        raise InvalidStatusTransition(f"Cannot move order from '{current}' to '{target}'")

    updates = {"status": target, "updated_at": utcnow(), f"{target}_at": utcnow()}
    res = db["orders"].update_one(
        {
            "_id": doc["_id"],
            "status": current,
            "vendor_id": doc.get("vendor_id"),
            "delivery_partner_id": doc.get("delivery_partner_id"),
        },
        {"$set": updates},
    )
    if res.matched_count == 0:
        raise InvalidStatusTransition("Order status changed concurrently. Refresh and try again.")
    logger.info("order_status_advanced", order_id=order_id, from_status=current, to_status=target)
    return get_order(db, order_id)
