"""
Shopping cart state.

The cart is written in two phases: the local collection is mutated and
persisted first, then the change is sent to the user's rows in
``cart_items``. A failed remote write is logged and left alone, so local and
remote may disagree until the next ``fetch_cart``, which replaces the local
collection with the remote rows joined against live products.
"""
from typing import Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from database import utcnow
from errors import NotFound, PreconditionFailed
from schemas import CartItem
from storage import LocalStorage

logger = structlog.get_logger(__name__)

CART_STORAGE_KEY = "ahmed-mart-cart"
COLLECTION = "cart_items"


def line_from_product(product: dict) -> CartItem:
    """A single-unit cart line priced from the stored product."""
    return CartItem(
        product_id=str(product["_id"]),
        name=product["name"],
        image_url=product.get("primary_image_url") or "",
        unit_value=product.get("unit_value") or 1,
        unit_type=product.get("unit_type") or "piece",
        selling_price=product["selling_price"],
        mrp=product["mrp"],
        quantity=1,
        max_quantity=product.get("max_order_quantity") or config.DEFAULT_MAX_QUANTITY,
        vendor_id=product["vendor_id"],
    )


def load_product_line(db: Database, product_id: str) -> CartItem:
    product = None
    if ObjectId.is_valid(product_id):
        product = db["products"].find_one({"_id": ObjectId(product_id)})
    if not product:
        raise NotFound("Product not found")
    if product.get("status", "active") != "active":
        raise PreconditionFailed("Product is not available")
    return line_from_product(product)


class RemoteCart:
    """The ``cart_items`` rows of a single user."""

    def __init__(self, db: Database, user_id: str):
        self.db = db
        self.user_id = user_id

    @property
    def collection(self):
        return self.db[COLLECTION]

    def upsert(self, product_id: str, quantity: int) -> None:
        now = utcnow()
        self.collection.update_one(
            {"user_id": self.user_id, "product_id": product_id},
            {"$set": {"quantity": quantity, "updated_at": now}, "$setOnInsert": {"added_at": now}},
            upsert=True,
        )

    def update_quantity(self, product_id: str, quantity: int) -> None:
        self.collection.update_one(
            {"user_id": self.user_id, "product_id": product_id},
            {"$set": {"quantity": quantity, "updated_at": utcnow()}},
        )

    def delete(self, product_id: str) -> None:
        self.collection.delete_one({"user_id": self.user_id, "product_id": product_id})

    def clear(self) -> None:
        self.collection.delete_many({"user_id": self.user_id})

    def fetch(self) -> List[CartItem]:
        rows = list(self.collection.find({"user_id": self.user_id}).sort("added_at", 1))
        ids = [ObjectId(r["product_id"]) for r in rows if ObjectId.is_valid(r["product_id"])]
        products = {str(p["_id"]): p for p in self.db["products"].find({"_id": {"$in": ids}})}
        items = []
        for row in rows:
            product = products.get(row["product_id"])
            if not product:
                # product was deleted since it was added
                continue
            line = line_from_product(product)
            line.quantity = max(1, min(int(row.get("quantity", 1)), line.max_quantity))
            items.append(line)
        return items


class CartStore:
    """
    Cart for one session. `remote` is None when nobody is signed in, in which
    case the cart lives only in local storage.
    """

    def __init__(self, storage: LocalStorage, remote: Optional[RemoteCart] = None):
        self.storage = storage
        self.remote = remote
        self.items: List[CartItem] = self._load()

    # Persistence boundary

    def _load(self) -> List[CartItem]:
        state = self.storage.get_item(CART_STORAGE_KEY) or {}
        items = []
        for raw in state.get("items", []):
            try:
                items.append(CartItem(**raw))
            except (TypeError, ValueError) as e:
                logger.warning("cart_local_item_dropped", item=raw, error=str(e))
        return items

    def _persist(self) -> None:
        self.storage.set_item(CART_STORAGE_KEY, {"items": [i.model_dump() for i in self.items]})

    def _sync(self, method: str, *args) -> None:
        if self.remote is None:
            return
        try:
            getattr(self.remote, method)(*args)
        except PyMongoError as e:
            logger.error("cart_remote_sync_failed", action=method, user_id=self.remote.user_id, error=str(e))

    def _find(self, product_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    # Mutations

    def add_item(self, item: CartItem) -> CartItem:
        """Add one unit of a line built by `load_product_line`."""
        existing = self._find(item.product_id)
        if existing:
            existing.quantity = min(existing.quantity + 1, existing.max_quantity)
            line = existing
        else:
            line = item.model_copy(update={"quantity": 1})
            self.items.append(line)
        self._persist()
        self._sync("upsert", line.product_id, line.quantity)
        return line

    def remove_item(self, product_id: str) -> None:
        self.items = [i for i in self.items if i.product_id != product_id]
        self._persist()
        self._sync("delete", product_id)

    def update_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove_item(product_id)
            return
        item = self._find(product_id)
        if item is None:
            return
        item.quantity = max(1, min(quantity, item.max_quantity))
        self._persist()
        self._sync("update_quantity", product_id, item.quantity)

    def increment_quantity(self, product_id: str) -> None:
        item = self._find(product_id)
        if item is None or item.quantity >= item.max_quantity:
            return
        self.update_quantity(product_id, item.quantity + 1)

    def decrement_quantity(self, product_id: str) -> None:
        item = self._find(product_id)
        if item is None:
            return
        self.update_quantity(product_id, item.quantity - 1)

    def clear_cart(self) -> None:
        self.items = []
        self._persist()
        self._sync("clear")

    def fetch_cart(self) -> None:
        if self.remote is None:
            return
        try:
            items = self.remote.fetch()
        except PyMongoError as e:
            logger.error("cart_fetch_failed", user_id=self.remote.user_id, error=str(e))
            return
        self.items = items
        self._persist()

    # Derived reads

    def get_item_quantity(self, product_id: str) -> int:
        item = self._find(product_id)
        return item.quantity if item else 0

    def get_total_amount(self) -> float:
        return sum(i.selling_price * i.quantity for i in self.items)

    def get_total_items(self) -> int:
        return sum(i.quantity for i in self.items)

    def get_delivery_fee(self) -> int:
        """Flat cart-level fee, independent of distance."""
        return 0 if self.get_total_amount() >= config.FREE_DELIVERY_THRESHOLD else config.FLAT_DELIVERY_FEE

    def summary(self) -> Dict:
        return {
            "items": [i.model_dump() for i in self.items],
            "total_items": self.get_total_items(),
            "total_amount": self.get_total_amount(),
            "delivery_fee": self.get_delivery_fee(),
        }


def state_namespace(user_id: Optional[str], session_id: Optional[str]) -> str:
    """Local state belongs to the signed-in user, else to one client session."""
    if user_id:
        return user_id
    if not session_id:
        raise ValueError("an anonymous cart needs a session id")
    return f"session-{session_id}"


def open_cart(db: Database, user_id: Optional[str], session_id: Optional[str] = None,
              state_dir: Optional[str] = None) -> CartStore:
    storage = LocalStorage(state_dir or config.STATE_DIR, namespace=state_namespace(user_id, session_id))
    remote = RemoteCart(db, user_id) if user_id else None
    return CartStore(storage, remote)
