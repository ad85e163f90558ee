import mongomock
import pytest
from bson import ObjectId

import inventory
from conftest import make_product
from inventory import ProductNotFound, StockError


@pytest.fixture
def mdb():
    return mongomock.MongoClient()["furnishop_test"]


def stock(mdb, product_id):
    return mdb["product"].find_one({"_id": ObjectId(product_id)})["quantity"]


def test_merge_lines_folds_duplicates():
    pid = ObjectId()
    other = ObjectId()
    merged = inventory.merge_lines([
        {"product_id": pid, "quantity": 1},
        {"product_id": other, "quantity": 2},
        {"product_id": str(pid), "quantity": 3},
    ])
    assert merged == [{"product_id": pid, "quantity": 4}, {"product_id": other, "quantity": 2}]


def test_reserve_stock_decrements_and_snapshots(mdb):
    pid = make_product(mdb, price=20000.0, discount=25, quantity=4)
    [item] = inventory.reserve_stock(mdb, [{"product_id": ObjectId(pid), "quantity": 3}])
    assert item["price"] == 15000.0
    assert item["name"] == "Walnut Coffee Table"
    assert item["image"] == "/uploads/table.jpg"
    assert item["category"] == "table"
    assert stock(mdb, pid) == 1


def test_shortfall_releases_earlier_lines(mdb):
    first = make_product(mdb, quantity=5)
    second = make_product(mdb, name="Teak Bench", quantity=1)
    with pytest.raises(StockError) as exc:
        inventory.reserve_stock(mdb, [
            {"product_id": ObjectId(first), "quantity": 2},
            {"product_id": ObjectId(second), "quantity": 2},
        ])
    assert exc.value.available_quantity == 1
    assert "Teak Bench" in exc.value.message
    assert stock(mdb, first) == 5
    assert stock(mdb, second) == 1


def test_missing_product(mdb):
    with pytest.raises(ProductNotFound):
        inventory.reserve_stock(mdb, [{"product_id": ObjectId(), "quantity": 1}])


def test_inactive_product_cannot_be_reserved(mdb):
    pid = make_product(mdb, is_active=False)
    with pytest.raises(StockError):
        inventory.reserve_stock(mdb, [{"product_id": ObjectId(pid), "quantity": 1}])
    assert stock(mdb, pid) == 5


def test_release_stock(mdb):
    pid = make_product(mdb, quantity=0)
    inventory.release_stock(mdb, [{"product_id": ObjectId(pid), "quantity": 3}])
    assert stock(mdb, pid) == 3


def test_check_availability():
    product = {"name": "Sofa", "quantity": 2, "is_active": True}
    inventory.check_availability(product, 2)
    with pytest.raises(StockError) as exc:
        inventory.check_availability(product, 3)
    assert exc.value.available_quantity == 2
    with pytest.raises(StockError):
        inventory.check_availability({**product, "is_active": False}, 1)


def test_reconcile_cart_drops_gone_products_and_flags_overflow(mdb):
    kept = make_product(mdb, price=1000.0, discount=10, quantity=1)
    hidden = make_product(mdb, is_active=False)
    cart = [
        {"product_id": ObjectId(kept), "quantity": 2},
        {"product_id": ObjectId(hidden), "quantity": 1},
        {"product_id": ObjectId(), "quantity": 1},
    ]
    [line] = inventory.reconcile_cart(mdb, cart)
    assert line["product"]["_id"] == ObjectId(kept)
    assert line["discounted_price"] == 900.0
    assert line["item_total"] == 1800.0
    assert line["available_quantity"] == 1
    assert line["exceeds_stock"] is True


def test_unexpected_error_releases_everything(mdb):
    table = make_product(mdb, quantity=5)
    broken = make_product(mdb, name="Broken Chair", quantity=5, discount=150)
    with pytest.raises(ValueError):
        inventory.reserve_stock(mdb, [
            {"product_id": ObjectId(table), "quantity": 2},
            {"product_id": ObjectId(broken), "quantity": 1},
        ])
    assert stock(mdb, table) == 5
    assert stock(mdb, broken) == 5
