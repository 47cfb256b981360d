from decimal import Decimal

from fooddelivery import schemas, validators


def test_totals_for_two_item_order():
    totals = validators.calculate_order_totals(
        [(Decimal("100"), 2), (Decimal("50"), 1)],
        Decimal("40"),
    )

    assert totals["subtotal"] == Decimal("250")
    assert totals["delivery_fee"] == Decimal("40")
    assert totals["platform_fee"] == Decimal("5")
    # 250 * 5% = 12.5, halves round up
    assert totals["taxes"] == Decimal("13")
    assert totals["total"] == Decimal("308")


def test_total_is_sum_of_parts():
    for lines, fee in [
        ([(Decimal("99.50"), 3)], Decimal("25")),
        ([(Decimal("12"), 1), (Decimal("7.25"), 4)], None),
        ([(Decimal("1"), 1)], Decimal("0")),
    ]:
        totals = validators.calculate_order_totals(lines, fee)
        assert totals["total"] == (
            totals["subtotal"] + totals["delivery_fee"] + totals["platform_fee"] + totals["taxes"]
        )
        assert totals["platform_fee"] >= 0
        assert totals["taxes"] >= 0
        assert totals["platform_fee"] == totals["platform_fee"].to_integral_value()
        assert totals["taxes"] == totals["taxes"].to_integral_value()


def test_fees_round_half_up():
    totals = validators.calculate_order_totals([(Decimal("25"), 1)], Decimal("40"))

    # 0.5 -> 1 and 1.25 -> 1
    assert totals["platform_fee"] == Decimal("1")
    assert totals["taxes"] == Decimal("1")


def test_missing_delivery_fee_uses_default():
    totals = validators.calculate_order_totals([(Decimal("10"), 1)], None)

    assert totals["delivery_fee"] == Decimal("40")
    assert totals["platform_fee"] == Decimal("0")
    assert totals["taxes"] == Decimal("1")
    assert totals["total"] == Decimal("51")


def test_zero_delivery_fee_is_kept():
    totals = validators.calculate_order_totals([(Decimal("100"), 1)], Decimal("0"))

    assert totals["delivery_fee"] == Decimal("0")
    assert totals["total"] == Decimal("107")


def test_minimum_order():
    assert validators.validate_minimum_order(Decimal("99"), Decimal("100"))[0] is False
    assert validators.validate_minimum_order(Decimal("100"), Decimal("100")) == (True, "")
    assert validators.validate_minimum_order(Decimal("1"), None) == (True, "")


def test_validate_order_items():
    assert validators.validate_order_items([]) == (False, "Order must contain at least one item")

    duplicated = [
        schemas.OrderItemCreate(menu_item_id="a", quantity=1),
        schemas.OrderItemCreate(menu_item_id="a", quantity=2),
    ]
    assert validators.validate_order_items(duplicated) == (False, "Order contains duplicate menu items")

    valid = [
        schemas.OrderItemCreate(menu_item_id="a", quantity=1),
        schemas.OrderItemCreate(menu_item_id="b", quantity=3, notes="no onions"),
    ]
    assert validators.validate_order_items(valid) == (True, "")


def test_parse_estimated_time():
    assert validators.parse_estimated_time("30-45") == 45
    assert validators.parse_estimated_time("25") == 25
    assert validators.parse_estimated_time(None) == 40
    assert validators.parse_estimated_time("soon") == 40
