import os
import re
import uuid
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import config
from addresses import AddressBook
from auth import get_current_user, get_optional_user, login, normalize_email, signup
from cart_store import CartStore, load_product_line, open_cart, state_namespace
from database import create_document, get_db
from errors import StorefrontError
from geocoding import LocationCache, ReverseGeocoder
from orders import (
    accept_delivery, advance_status, cancel_order, create_order, get_order, list_active_deliveries,
    list_available_deliveries, list_orders, list_vendor_orders,
)
from policies import ADMIN_ONLY, CAN_OPERATE_ORDERS, DELIVERY_ONLY, VENDOR_ONLY, is_allowed
from roles import REGISTRIES, process_auth_callback, require_roles, resolve_roles_with_timeout, validate_role_access
from schemas import (
    Address, AddressInput, AddressUpdate, AuthCallbackRequest, CartItemInput, LocationRequest, LoginRequest,
    OrderCreateRequest, Principal, QuantityUpdate, RegistryEntry, RoleCheckRequest, ServiceArea, ServiceAreaInput,
    ServiceAreaUpdate, SignupRequest, StatusUpdate,
)
from service_areas import add_area, delete_area, list_areas, load_resolver, update_area
from storage import LocalStorage

config.configure_logging()

_SESSION_ID = re.compile(r"^[0-9a-f]{32}$")

app = FastAPI(title="Ahmed Mart API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    body = {"detail": exc.message}
    if exc.redirect:
        body["redirect"] = exc.redirect
    return JSONResponse(status_code=exc.status_code, content=body)


# Shared dependencies

def get_session_id(request: Request, response: Response) -> str:
    """Identify a client across requests so signed-out callers keep separate state."""
    session_id = request.cookies.get(config.SESSION_COOKIE, "")
    if not _SESSION_ID.match(session_id):
        session_id = uuid.uuid4().hex
        response.set_cookie(config.SESSION_COOKIE, session_id, max_age=config.SESSION_MAX_AGE_SECONDS,
                            httponly=True, samesite="lax")
    return session_id


def get_cart(user: Optional[dict] = Depends(get_optional_user), session_id: str = Depends(get_session_id),
             db: Database = Depends(get_db)) -> CartStore:
    return open_cart(db, user["id"] if user else None, session_id)


def get_address_book(user: dict = Depends(get_current_user), db: Database = Depends(get_db)) -> AddressBook:
    return AddressBook(db, user["id"])


def get_geocoder():
    geocoder = ReverseGeocoder()
    try:
        yield geocoder
    finally:
        geocoder.close()


def get_location_cache(user: Optional[dict] = Depends(get_optional_user),
                       session_id: str = Depends(get_session_id)) -> LocationCache:
    namespace = state_namespace(user["id"] if user else None, session_id)
    return LocationCache(LocalStorage(config.STATE_DIR, namespace=namespace))


@app.get("/")
def root():
    return {"name": "Ahmed Mart", "status": "ok"}


# Auth

@app.post("/api/auth/signup")
def auth_signup(payload: SignupRequest, db: Database = Depends(get_db)):
    return signup(db, payload)


@app.post("/api/auth/login")
def auth_login(payload: LoginRequest, db: Database = Depends(get_db)):
    return login(db, payload)


@app.get("/api/auth/me")
async def auth_me(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    roles = await resolve_roles_with_timeout(db, user)
    return {"user": user, "roles": roles.model_dump()}


@app.post("/api/auth/validate-role")
def auth_validate_role(payload: RoleCheckRequest, db: Database = Depends(get_db)):
    return validate_role_access(db, payload.email, payload.role).model_dump()


@app.post("/api/auth/callback")
def auth_callback(payload: AuthCallbackRequest, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return process_auth_callback(db, user["id"], user.get("email"), payload.selected_role)


# Service areas

@app.get("/api/service-areas", response_model=List[ServiceArea])
def service_areas_list(db: Database = Depends(get_db)):
    return list_areas(db)


@app.post("/api/service-areas", response_model=ServiceArea)
def service_areas_add(payload: ServiceAreaInput, principal: Principal = Depends(require_roles(*ADMIN_ONLY)),
                      db: Database = Depends(get_db)):
    return add_area(db, payload)


@app.patch("/api/service-areas/{area_id}", response_model=ServiceArea)
def service_areas_update(area_id: str, payload: ServiceAreaUpdate,
                         principal: Principal = Depends(require_roles(*ADMIN_ONLY)), db: Database = Depends(get_db)):
    return update_area(db, area_id, payload)


@app.delete("/api/service-areas/{area_id}")
def service_areas_delete(area_id: str, principal: Principal = Depends(require_roles(*ADMIN_ONLY)),
                         db: Database = Depends(get_db)):
    delete_area(db, area_id)
    return {"ok": True}


@app.get("/api/serviceability")
def serviceability(lat: float, lng: float, db: Database = Depends(get_db)):
    return {"serviceable": load_resolver(db).is_location_serviceable(lat, lng)}


@app.get("/api/delivery-fee")
def delivery_fee_quote(lat: float, lng: float, subtotal: float, db: Database = Depends(get_db)):
    return load_resolver(db).quote_delivery_fee(lat, lng, subtotal)


# Location

@app.get("/api/location")
def location_get(cache: LocationCache = Depends(get_location_cache), db: Database = Depends(get_db)):
    location = cache.get()
    if not location:
        return {"location": None, "serviceable": True}
    return {
        "location": location.model_dump(),
        "serviceable": load_resolver(db).is_location_serviceable(location.lat, location.lng),
    }


@app.post("/api/location")
def location_update(payload: LocationRequest, cache: LocationCache = Depends(get_location_cache),
                    geocoder: ReverseGeocoder = Depends(get_geocoder), db: Database = Depends(get_db)):
    location = geocoder.reverse_geocode(payload.lat, payload.lng)
    cache.save(location)
    return {
        "location": location.model_dump(),
        "serviceable": load_resolver(db).is_location_serviceable(location.lat, location.lng),
    }


# Cart

@app.get("/api/cart")
def cart_get(cart: CartStore = Depends(get_cart)):
    return cart.summary()


@app.post("/api/cart/items")
def cart_add(item: CartItemInput, cart: CartStore = Depends(get_cart), db: Database = Depends(get_db)):
    cart.add_item(load_product_line(db, item.product_id))
    return cart.summary()


@app.patch("/api/cart/items/{product_id}")
def cart_set_quantity(product_id: str, upd: QuantityUpdate, cart: CartStore = Depends(get_cart)):
    cart.update_quantity(product_id, upd.quantity)
    return cart.summary()


@app.post("/api/cart/items/{product_id}/increment")
def cart_increment(product_id: str, cart: CartStore = Depends(get_cart)):
    cart.increment_quantity(product_id)
    return cart.summary()


@app.post("/api/cart/items/{product_id}/decrement")
def cart_decrement(product_id: str, cart: CartStore = Depends(get_cart)):
    cart.decrement_quantity(product_id)
    return cart.summary()


@app.delete("/api/cart/items/{product_id}")
def cart_remove(product_id: str, cart: CartStore = Depends(get_cart)):
    cart.remove_item(product_id)
    return cart.summary()


@app.post("/api/cart/sync")
def cart_sync(cart: CartStore = Depends(get_cart)):
    cart.fetch_cart()
    return cart.summary()


@app.delete("/api/cart")
def cart_clear(cart: CartStore = Depends(get_cart)):
    cart.clear_cart()
    return cart.summary()


# Addresses

@app.get("/api/addresses", response_model=List[Address])
def addresses_list(book: AddressBook = Depends(get_address_book)):
    return book.list_addresses()


@app.get("/api/addresses/default", response_model=Optional[Address])
def addresses_default(book: AddressBook = Depends(get_address_book)):
    return book.default_address()


@app.post("/api/addresses", response_model=Address)
def addresses_add(payload: AddressInput, book: AddressBook = Depends(get_address_book)):
    return book.add_address(payload)


@app.patch("/api/addresses/{address_id}", response_model=Address)
def addresses_update(address_id: str, payload: AddressUpdate, book: AddressBook = Depends(get_address_book)):
    return book.update_address(address_id, payload)


@app.delete("/api/addresses/{address_id}")
def addresses_delete(address_id: str, book: AddressBook = Depends(get_address_book)):
    book.delete_address(address_id)
    return {"ok": True}


@app.post("/api/addresses/{address_id}/default", response_model=Address)
def addresses_set_default(address_id: str, book: AddressBook = Depends(get_address_book)):
    return book.set_default_address(address_id)


# Orders

@app.post("/api/orders")
def orders_create(payload: OrderCreateRequest, user: dict = Depends(get_current_user),
                  cart: CartStore = Depends(get_cart), db: Database = Depends(get_db)):
    address = AddressBook(db, user["id"]).get_address(payload.address_id)
    return create_order(db, user, cart, address, payload.payment_method, payload.customer_notes)


@app.get("/api/orders")
def orders_list(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return list_orders(db, user["id"])


@app.get("/api/orders/{order_id}")
def orders_get(order_id: str, principal: Principal = Depends(require_roles()), db: Database = Depends(get_db)):
    order = get_order(db, order_id)
    if not is_allowed("orders", "read", principal.user_id, principal.roles.as_list(), order):
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.post("/api/orders/{order_id}/cancel")
def orders_cancel(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cancel_order(db, user, order_id)


@app.post("/api/orders/{order_id}/status")
def orders_advance(order_id: str, upd: StatusUpdate,
                   principal: Principal = Depends(require_roles(*CAN_OPERATE_ORDERS)), db: Database = Depends(get_db)):
    return advance_status(db, order_id, upd.status, principal.roles)


# Vendor and delivery queues

@app.get("/api/vendor/orders")
def vendor_orders(status: Optional[str] = None, principal: Principal = Depends(require_roles(*VENDOR_ONLY)),
                  db: Database = Depends(get_db)):
    return list_vendor_orders(db, principal.roles.vendor_id, status)


@app.get("/api/delivery/available")
def delivery_available(principal: Principal = Depends(require_roles(*DELIVERY_ONLY)), db: Database = Depends(get_db)):
    return list_available_deliveries(db)


@app.get("/api/delivery/active")
def delivery_active(principal: Principal = Depends(require_roles(*DELIVERY_ONLY)), db: Database = Depends(get_db)):
    return list_active_deliveries(db, principal.roles.delivery_partner_id)


@app.post("/api/delivery/{order_id}/accept")
def delivery_accept(order_id: str, principal: Principal = Depends(require_roles(*DELIVERY_ONLY)),
                    db: Database = Depends(get_db)):
    return accept_delivery(db, order_id, principal.roles.delivery_partner_id)


# Admin endpoints

@app.post("/api/admin/registry/{role}")
def admin_register(role: str, entry: RegistryEntry, principal: Principal = Depends(require_roles(*ADMIN_ONLY)),
                   db: Database = Depends(get_db)):
    if role not in REGISTRIES:
        raise HTTPException(status_code=404, detail="Unknown role registry")
    collection = REGISTRIES[role][0]
    email = normalize_email(entry.email)
    if db[collection].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered for this role")
    doc = entry.model_dump()
    doc["email"] = email
    rid = create_document(collection, doc, database=db)
    return {"id": rid}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
