import json
import sys
from pathlib import Path
import pytest

repo_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(repo_root))

import utils
from models import Product
from stores import CartStore
from utils import LocalStorage, LoadStatus

SUNDAE = Product(id=1, name="Vanilla Sundae", description="Classic vanilla", price=20.0)
POPSICLE = Product(id=2, name="Mango Popsicle", price=5.0)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "storefront.json")


@pytest.mark.parametrize("times", [1, 2, 5])
def test_repeated_add_keeps_one_entry(storage, times):
    cart = CartStore(storage)
    for _ in range(times):
        cart.add_to_cart(SUNDAE)
    assert len(cart.items) == 1
    assert cart.items[0].quantity == times


def test_remove_n_times_after_n_adds_empties_cart(storage):
    cart = CartStore(storage)
    for _ in range(3):
        cart.add_to_cart(SUNDAE)
    for _ in range(3):
        cart.remove_from_cart(SUNDAE.id)
    assert cart.items == []


def test_remove_absent_product_is_noop(storage):
    cart = CartStore(storage)
    cart.add_to_cart(SUNDAE)
    cart.remove_from_cart(42)
    assert [(i.product.id, i.quantity) for i in cart.items] == [(1, 1)]


def test_set_item_quantity(storage):
    cart = CartStore(storage)
    cart.add_to_cart(SUNDAE)
    cart.add_to_cart(POPSICLE)
    cart.set_item_quantity(1, 4)
    assert cart.items[0].quantity == 4
    cart.set_item_quantity(99, 3)  # absent: nothing happens
    assert len(cart.items) == 2
    cart.set_item_quantity(2, 0)
    assert [i.product.id for i in cart.items] == [1]


def test_clear_cart_always_empties(storage):
    cart = CartStore(storage)
    cart.clear_cart()
    assert cart.items == []
    cart.add_to_cart(SUNDAE)
    cart.add_to_cart(POPSICLE)
    cart.clear_cart()
    assert cart.items == []
    assert CartStore(storage).items == []


def test_cart_survives_reload(storage):
    cart = CartStore(storage)
    cart.add_to_cart(SUNDAE)
    cart.add_to_cart(SUNDAE)
    cart.add_to_cart(POPSICLE)

    raw = json.loads(storage.get_item(utils.CART_STORAGE_KEY))
    assert raw[0]["product"]["imageUrl"] == ""
    assert raw[0]["quantity"] == 2

    reloaded = CartStore(storage)
    assert [(i.product.id, i.quantity) for i in reloaded.items] == [(1, 2), (2, 1)]


@pytest.mark.parametrize("raw", ["{not json", json.dumps({"product": 1}), json.dumps("text")])
def test_corrupt_or_wrong_shape_loads_empty(storage, raw):
    storage.set_item(utils.CART_STORAGE_KEY, raw)
    assert CartStore(storage).items == []


def test_malformed_entries_are_dropped(storage):
    storage.save_json(utils.CART_STORAGE_KEY, [
        {"product": {"id": 1, "name": "Vanilla Sundae", "price": 20}, "quantity": 2},
        {"product": {"name": "no id"}, "quantity": 1},
        {"product": {"id": 2, "name": "Mango Popsicle", "price": 5}, "quantity": 0},
    ])
    items = CartStore(storage).items
    assert [(i.product.id, i.quantity) for i in items] == [(1, 2)]


def test_unreadable_storage_file_is_treated_as_empty(tmp_path):
    path = tmp_path / "storefront.json"
    path.write_text("garbage", encoding="utf-8")
    storage = LocalStorage(path)
    assert storage.load_json(utils.CART_STORAGE_KEY).status is LoadStatus.EMPTY
    cart = CartStore(storage)
    cart.add_to_cart(SUNDAE)
    assert CartStore(storage).items[0].quantity == 1


def test_item_count_skips_unavailable(storage):
    cart = CartStore(storage)
    cart.add_to_cart(SUNDAE)
    cart.add_to_cart(Product(id=3, name="Berry Shake", price=30.0, available=False))
    cart.set_item_quantity(3, 5)
    assert cart.item_count == 1


def test_digit_string_ids_from_storage_match_numeric_ids(storage):
    storage.save_json(utils.CART_STORAGE_KEY, [
        {"product": {"id": "5", "name": "Choco Cone", "price": 4}, "quantity": 2},
        {"product": {"id": 1, "name": "Vanilla Sundae", "price": 20}, "quantity": 1},
        {"product": {"id": "1", "name": "Vanilla Sundae", "price": 20}, "quantity": 3},
    ])
    cart = CartStore(storage)
    assert [(i.product.id, i.quantity) for i in cart.items] == [(5, 2), (1, 1)]

    cart.remove_from_cart(5)
    assert cart.items[0].quantity == 1
    cart.set_item_quantity("1", 4)
    assert cart.items[1].quantity == 4


def test_non_numeric_ids_are_kept_as_is(storage):
    storage.save_json(utils.CART_STORAGE_KEY, [
        {"product": {"id": "test-product", "name": "Ghost", "price": 10}, "quantity": 1},
    ])
    assert CartStore(storage).items[0].product.id == "test-product"
