"""
Role resolution and route admission.

Customers need no registration. Admins, vendors and delivery partners must be
pre-registered by e-mail in their registry collection; admins and vendors must
also be ``active``.
"""
import asyncio
from enum import Enum
from typing import Iterable, NamedTuple, Optional

import structlog
from fastapi import Depends, Request
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from auth import get_optional_user, normalize_email
from database import get_db, utcnow
from errors import AuthorizationTimeout, Forbidden, NotAuthenticated
from schemas import Principal, RoleFlags, RoleValidation

logger = structlog.get_logger(__name__)

# role -> (registry collection, label, requires active status)
REGISTRIES = {
    "admin": ("admins", "Admin", True),
    "vendor": ("vendors", "Vendor", True),
    "delivery_partner": ("delivery_partners", "Delivery Partner", False),
}

REDIRECT_PATHS = {
    "admin": "/admin",
    "vendor": "/vendor",
    "delivery_partner": "/delivery",
    "customer": "/",
}


def get_role_label(role: str) -> str:
    if role in REGISTRIES:
        return REGISTRIES[role][1]
    return "Customer"


def get_role_redirect_path(role: str) -> str:
    return REDIRECT_PATHS.get(role, "/")


def validate_role_access(db: Database, email: str, role: str) -> RoleValidation:
    if role == "customer":
        return RoleValidation(is_valid=True)
    if role not in REGISTRIES:
        return RoleValidation(is_valid=False, error="Invalid role selected")

    collection, label, needs_active = REGISTRIES[role]
    try:
        record = db[collection].find_one({"email": normalize_email(email)}, {"_id": 1, "status": 1})
    except PyMongoError as e:
        logger.error("role_validation_failed", role=role, error=str(e))
        return RoleValidation(is_valid=False, error="Unable to verify your account. Please try again.")

    if not record or (needs_active and record.get("status") != "active"):
        return RoleValidation(
            is_valid=False,
            error=f"Your email is not registered as a {label}. Please contact the admin to get access.",
        )
    return RoleValidation(is_valid=True)


def _find_registry_record(db: Database, collection: str, user_id: str, email: Optional[str]) -> Optional[dict]:
    record = db[collection].find_one({"user_id": user_id})
    if record or not email:
        return record
    record = db[collection].find_one({"email": normalize_email(email)})
    if record:
        # link the account so later lookups hit by user_id
        try:
            db[collection].update_one({"_id": record["_id"], "user_id": None}, {"$set": {"user_id": user_id}})
            logger.info("role_record_linked", collection=collection, user_id=user_id)
        except PyMongoError as e:
            logger.error("role_record_link_failed", collection=collection, user_id=user_id, error=str(e))
    return record


def resolve_user_roles(db: Database, user_id: str, email: Optional[str]) -> RoleFlags:
    flags = RoleFlags()
    for role, (collection, _, needs_active) in REGISTRIES.items():
        record = _find_registry_record(db, collection, user_id, email)
        if record and (not needs_active or record.get("status") == "active"):
            setattr(flags, f"is_{role}", True)
            setattr(flags, f"{role}_id", str(record["_id"]))
    flags.is_customer = not (flags.is_admin or flags.is_vendor or flags.is_delivery_partner)
    return flags


def process_auth_callback(db: Database, user_id: str, email: Optional[str], selected_role: Optional[str]) -> dict:
    """Decide where a freshly signed-in user lands for the role chosen before sign-in."""
    role = selected_role or "customer"
    if role == "customer":
        return {"redirect": "/", "granted": True, "message": "You have successfully signed in."}
    if not email:
        return {"redirect": "/", "granted": False, "message": "Unable to verify your account."}

    result = validate_role_access(db, email, role)
    label = get_role_label(role)
    if not result.is_valid:
        return {
            "redirect": "/",
            "granted": False,
            "message": f"Your email is not registered as a {label}. Redirecting to home.",
        }
    db["user_roles"].update_one(
        {"user_id": user_id, "role": role},
        {"$set": {"updated_at": utcnow()}, "$setOnInsert": {"created_at": utcnow()}},
        upsert=True,
    )
    return {"redirect": get_role_redirect_path(role), "granted": True, "message": f"Signed in as {label}."}


# Route admission

class Admission(str, Enum):
    LOADING = "loading"
    AUTH_FAILED = "authorization_failed"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_HOME = "redirect_home"
    ADMIT = "admit"


class AdmissionDecision(NamedTuple):
    outcome: Admission
    redirect: Optional[str] = None
    from_location: Optional[str] = None


def decide_admission(
    user: Optional[dict],
    roles: Optional[RoleFlags],
    allowed_roles: Optional[Iterable[str]] = None,
    require_auth: bool = True,
    location: str = "/",
    redirect_to: str = "/auth",
    auth_loading: bool = False,
    roles_loading: bool = False,
    timed_out: bool = False,
) -> AdmissionDecision:
    if timed_out:
        return AdmissionDecision(Admission.AUTH_FAILED)
    if auth_loading or (user and roles_loading):
        return AdmissionDecision(Admission.LOADING)
    if require_auth and not user:
        return AdmissionDecision(Admission.REDIRECT_LOGIN, redirect_to, location)
    allowed = list(allowed_roles or [])
    if allowed:
        if roles is None or not any(roles.has(r) for r in allowed):
            return AdmissionDecision(Admission.REDIRECT_HOME, "/")
    return AdmissionDecision(Admission.ADMIT)


async def resolve_roles_with_timeout(db: Database, user: dict, timeout: Optional[float] = None) -> RoleFlags:
    timeout = config.ROLE_CHECK_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        # the lookup thread is abandoned on timeout, not interrupted
        loop = asyncio.get_running_loop()
        lookup = loop.run_in_executor(None, resolve_user_roles, db, user["id"], user.get("email"))
        return await asyncio.wait_for(lookup, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("role_check_timed_out", user_id=user["id"], timeout=timeout)
        raise AuthorizationTimeout("Authorization failed. Reload the page or go back to try again.")


def require_roles(*allowed_roles: str, require_auth: bool = True, redirect_to: str = "/auth"):
    """Dependency factory guarding an endpoint by sign-in state and role flags."""

    async def guard(request: Request, user: Optional[dict] = Depends(get_optional_user),
                    db: Database = Depends(get_db)) -> Principal:
        roles = await resolve_roles_with_timeout(db, user) if user else None
        decision = decide_admission(
            user,
            roles,
            allowed_roles=allowed_roles,
            require_auth=require_auth,
            location=request.url.path,
            redirect_to=redirect_to,
        )
        if decision.outcome == Admission.REDIRECT_LOGIN:
            raise NotAuthenticated("User not authenticated", redirect=f"{decision.redirect}?from={decision.from_location}")
        if decision.outcome == Admission.REDIRECT_HOME:
            raise Forbidden("You do not have access to this area", redirect=decision.redirect)
        return Principal(user=user, roles=roles or RoleFlags())

    return guard
