"""
Authorization rules by role.

Role sets name who may reach an area of the API; the predicates decide
row-level access per collection. Nothing here touches the database or
HTTP, so the rules can be checked on their own.
"""
from typing import Callable, Dict, Iterable, Optional, Tuple

ADMIN_ONLY = {"admin"}

VENDOR_ONLY = {"vendor"}

DELIVERY_ONLY = {"delivery_partner"}

# Roles allowed to move an order along its status sequence
CAN_OPERATE_ORDERS = {"vendor", "delivery_partner", "admin"}

STATUS_TARGETS_BY_ROLE = {
    "vendor": {"confirmed", "preparing", "ready_for_pickup", "cancelled"},
    "delivery_partner": {"assigned_to_delivery", "picked_up", "out_for_delivery", "delivered"},
    "admin": {
        "confirmed",
        "preparing",
        "ready_for_pickup",
        "assigned_to_delivery",
        "picked_up",
        "out_for_delivery",
        "delivered",
        "cancelled",
        "refunded",
    },
}

Predicate = Callable[[str, Iterable[str], Optional[dict]], bool]


def _is_owner(field: str) -> Predicate:
    def check(user_id, roles, row):
        return user_id is not None and row is not None and row.get(field) == user_id
    return check


def _has_any(allowed: set) -> Predicate:
    def check(user_id, roles, row):
        return bool(allowed & set(roles))
    return check


def _owner_or(field: str, allowed: set) -> Predicate:
    owner, role = _is_owner(field), _has_any(allowed)

    def check(user_id, roles, row):
        return owner(user_id, roles, row) or role(user_id, roles, row)
    return check


POLICIES: Dict[Tuple[str, str], Predicate] = {
    ("user_addresses", "read"): _is_owner("user_id"),
    ("user_addresses", "write"): _is_owner("user_id"),
    ("cart_items", "read"): _is_owner("user_id"),
    ("cart_items", "write"): _is_owner("user_id"),
    ("orders", "read"): _owner_or("customer_id", ADMIN_ONLY),
    ("orders", "cancel"): _is_owner("customer_id"),
    ("orders", "advance"): _has_any(ADMIN_ONLY),
    ("orders", "advance_as_vendor"): _is_owner("vendor_id"),
    ("orders", "advance_as_delivery_partner"): _is_owner("delivery_partner_id"),
    ("service_areas", "read"): lambda user_id, roles, row: True,
    ("service_areas", "write"): _has_any(ADMIN_ONLY),
    ("admins", "write"): _has_any(ADMIN_ONLY),
    ("vendors", "write"): _has_any(ADMIN_ONLY),
    ("delivery_partners", "write"): _has_any(ADMIN_ONLY),
}


def is_allowed(collection: str, action: str, user_id: Optional[str], roles: Iterable[str], row: Optional[dict] = None) -> bool:
    predicate = POLICIES.get((collection, action))
    if predicate is None:
        return False
    return predicate(user_id, list(roles), row)


def allowed_status_targets(roles: Iterable[str]) -> set:
    targets = set()
    for role in roles:
        targets |= STATUS_TARGETS_BY_ROLE.get(role, set())
    return targets


def may_set_status(target: str, roles: Iterable[str], actor_ids: Dict[str, Optional[str]], row: dict) -> bool:
    """
    Whether an actor may move the order `row` to `target`.

    Admins may move any order. A vendor may only move orders of its own
    vendor id, and a delivery partner only orders assigned to it. `actor_ids`
    maps a role to the registry id the actor holds for it.
    """
    roles = list(roles)
    if "admin" in roles and is_allowed("orders", "advance", None, roles, row):
        return target in STATUS_TARGETS_BY_ROLE["admin"]
    for role in ("vendor", "delivery_partner"):
        if role not in roles or target not in STATUS_TARGETS_BY_ROLE[role]:
            continue
        if is_allowed("orders", f"advance_as_{role}", actor_ids.get(role), [role], row):
            return True
    return False
