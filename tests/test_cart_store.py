import pytest
from pymongo.errors import PyMongoError

from cart_store import CART_STORAGE_KEY, CartStore, RemoteCart, load_product_line, open_cart, state_namespace
from errors import NotFound, PreconditionFailed


class FailingRemote(RemoteCart):
    def __init__(self):
        self.user_id = "user-1"

    def upsert(self, product_id, quantity):
        raise PyMongoError("network down")

    def delete(self, product_id):
        raise PyMongoError("network down")

    def update_quantity(self, product_id, quantity):
        raise PyMongoError("network down")

    def fetch(self):
        raise PyMongoError("network down")


def test_add_same_product_twice_merges_lines(storage, cart_input):
    cart = CartStore(storage)
    cart.add_item(cart_input())
    cart.add_item(cart_input())
    assert len(cart.items) == 1
    assert cart.get_item_quantity("p-1") == 2


def test_add_never_exceeds_max_quantity(storage, cart_input):
    cart = CartStore(storage)
    for _ in range(5):
        cart.add_item(cart_input(max_quantity=3))
    assert cart.get_item_quantity("p-1") == 3


def test_update_quantity_zero_removes_line(storage, cart_input):
    cart = CartStore(storage)
    cart.add_item(cart_input())
    cart.update_quantity("p-1", 0)
    assert cart.items == []


def test_update_quantity_clamps_to_max(storage, cart_input):
    cart = CartStore(storage)
    cart.add_item(cart_input(max_quantity=4))
    cart.update_quantity("p-1", 40)
    assert cart.get_item_quantity("p-1") == 4


def test_increment_is_noop_at_max(storage, cart_input):
    cart = CartStore(storage)
    cart.add_item(cart_input(max_quantity=2))
    cart.increment_quantity("p-1")
    cart.increment_quantity("p-1")
    assert cart.get_item_quantity("p-1") == 2


def test_decrement_at_one_removes_line(storage, cart_input):
    cart = CartStore(storage)
    cart.add_item(cart_input())
    cart.decrement_quantity("p-1")
    assert cart.get_item_quantity("p-1") == 0
    assert cart.items == []


def test_totals_and_flat_fee(storage, cart_input):
    cart = CartStore(storage)
    cart.add_item(cart_input("a", selling_price=40))
    cart.add_item(cart_input("b", selling_price=25))
    cart.add_item(cart_input("b", selling_price=25))
    assert cart.get_total_amount() == 90
    assert cart.get_total_items() == 3
    assert cart.get_delivery_fee() == 29


def test_flat_fee_free_at_two_hundred(storage, cart_input):
    cart = CartStore(storage)
    cart.add_item(cart_input(selling_price=100, mrp=120, max_quantity=5))
    cart.increment_quantity("p-1")
    assert cart.get_total_amount() == 200
    assert cart.get_delivery_fee() == 0


def test_state_survives_restart(storage, cart_input):
    cart = CartStore(storage)
    cart.add_item(cart_input())
    cart.add_item(cart_input())
    reopened = CartStore(storage)
    assert reopened.get_item_quantity("p-1") == 2
    assert storage.get_item(CART_STORAGE_KEY)["items"][0]["product_id"] == "p-1"


def test_remote_failure_keeps_local_state(storage, cart_input):
    cart = CartStore(storage, FailingRemote())
    cart.add_item(cart_input())
    cart.update_quantity("p-1", 3)
    assert cart.get_item_quantity("p-1") == 3
    cart.fetch_cart()
    assert cart.get_item_quantity("p-1") == 3


def test_remote_mirrors_local_mutations(db, storage, cart_input):
    cart = CartStore(storage, RemoteCart(db, "user-1"))
    cart.add_item(cart_input("a"))
    cart.add_item(cart_input("a"))
    cart.add_item(cart_input("b"))
    rows = {r["product_id"]: r["quantity"] for r in db["cart_items"].find({"user_id": "user-1"})}
    assert rows == {"a": 2, "b": 1}

    cart.remove_item("b")
    cart.update_quantity("a", 4)
    rows = {r["product_id"]: r["quantity"] for r in db["cart_items"].find({"user_id": "user-1"})}
    assert rows == {"a": 4}

    cart.clear_cart()
    assert db["cart_items"].count_documents({"user_id": "user-1"}) == 0
    assert cart.items == []


def test_fetch_cart_replaces_local_with_remote(db, storage, cart_input, make_product):
    milk = make_product("Milk", selling_price=60, max_order_quantity=3)
    bread = make_product("Bread", selling_price=35)
    db["cart_items"].insert_many([
        {"user_id": "user-1", "product_id": milk, "quantity": 9},
        {"user_id": "user-1", "product_id": bread, "quantity": 2},
        {"user_id": "user-1", "product_id": "5f1d7f1d7f1d7f1d7f1d7f1d", "quantity": 1},
        {"user_id": "someone-else", "product_id": bread, "quantity": 7},
    ])
    cart = CartStore(storage, RemoteCart(db, "user-1"))
    cart.add_item(cart_input("stale"))
    db["cart_items"].delete_one({"user_id": "user-1", "product_id": "stale"})

    cart.fetch_cart()
    assert {i.product_id: i.quantity for i in cart.items} == {milk: 3, bread: 2}
    assert cart.get_total_amount() == 60 * 3 + 35 * 2


def test_fetch_cart_without_identity_is_noop(storage, cart_input):
    cart = CartStore(storage)
    cart.add_item(cart_input())
    cart.fetch_cart()
    assert cart.get_item_quantity("p-1") == 1


def test_product_line_is_priced_from_the_catalogue(db, make_product):
    milk = make_product("Milk", selling_price=60, mrp=70, max_order_quantity=2, vendor_id="vendor-9")
    line = load_product_line(db, milk)
    assert (line.selling_price, line.mrp, line.max_quantity, line.vendor_id) == (60, 70, 2, "vendor-9")
    assert line.quantity == 1


def test_missing_or_unavailable_products_are_rejected(db, make_product):
    with pytest.raises(NotFound):
        load_product_line(db, "not-an-id")
    with pytest.raises(NotFound):
        load_product_line(db, "5f1d7f1d7f1d7f1d7f1d7f1d")
    bread = make_product("Bread")
    db["products"].update_one({"name": "Bread"}, {"$set": {"status": "out_of_stock"}})
    with pytest.raises(PreconditionFailed):
        load_product_line(db, bread)


def test_anonymous_carts_need_a_session(db, state_dir):
    with pytest.raises(ValueError):
        open_cart(db, None)
    assert state_namespace(None, "abc") == "session-abc"
    assert state_namespace("user-1", "abc") == "user-1"
