import pytest

import pricing


def test_discounted_price_rounds_to_paise():
    assert pricing.discounted_price(45999, 15) == 39099.15
    assert pricing.discounted_price(999.99, 0) == 999.99
    assert pricing.discounted_price(500, 100) == 0


@pytest.mark.parametrize("discount", [-1, 101])
def test_discount_outside_range_rejected(discount):
    with pytest.raises(ValueError):
        pricing.discounted_price(1000, discount)


def test_order_total_sums_snapshotted_prices():
    items = [{"price": 9000.0, "quantity": 2}, {"price": 1249.5, "quantity": 1}]
    assert pricing.order_total(items) == 19249.5


def test_shipping_is_free_only_above_threshold():
    assert pricing.shipping_fee(10000) == pricing.SHIPPING_FEE
    assert pricing.shipping_fee(10000.01) == 0


def test_cart_summary():
    lines = [{"discounted_price": 4000.0, "quantity": 2}, {"discounted_price": 1500.0, "quantity": 1}]
    assert pricing.cart_summary(lines) == {"subtotal": 9500.0, "item_count": 3, "shipping": 500, "total": 10000.0}


def test_empty_cart_has_no_shipping():
    assert pricing.cart_summary([]) == {"subtotal": 0, "item_count": 0, "shipping": 0, "total": 0}


def test_with_derived_fields_leaves_input_alone():
    product = {"price": 2000, "discount": 25, "quantity": 0}
    out = pricing.with_derived_fields(product)
    assert out["discounted_price"] == 1500
    assert out["in_stock"] is False
    assert "discounted_price" not in product
