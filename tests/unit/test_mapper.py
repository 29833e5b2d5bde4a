"""Unit tests for the course mapper and batch processor."""

from __future__ import annotations

from typing import Any
from unittest.mock import patch

import pytest

from es.courses.mapper import map_order
from es.courses.models import CourseType
from es.courses.processor import process_orders
from es.orders.client import RawOrder


def line_item(
    product_name: str | None,
    item_type: str = "SERVICE",
    item_id: str = "LI1",
    name: str = "",
    email: str = "",
) -> dict[str, Any]:
    customizations = []
    if name:
        customizations.append({"label": "Name", "value": name})
    if email:
        customizations.append({"label": "Email", "value": email})
    return {
        "id": item_id,
        "lineItemType": item_type,
        "productName": product_name,
        "customizations": customizations,
        "variantOptions": [],
    }


def make_order(*items: dict[str, Any], order_id: str = "O1") -> RawOrder:
    return RawOrder.from_api(
        {
            "id": order_id,
            "orderNumber": "1001",
            "customerEmail": "buyer@example.com",
            "lineItems": list(items),
        }
    )


class TestMapOrder:
    """Tests for map_order."""

    def test_no_service_items_yields_nothing(self) -> None:
        order = make_order(line_item("Hoodie", item_type="PHYSICAL"), line_item("E-book", item_type="DIGITAL"))
        assert map_order(order) == []

    def test_empty_line_items(self) -> None:
        assert map_order(make_order()) == []

    def test_one_record_per_service_item_of_same_product(self) -> None:
        order = make_order(
            line_item("Associates Program", item_id="A", name="Amina Khan", email="amina@example.com"),
            line_item("Associates Program", item_id="B", name="Yusuf Ali", email="yusuf@example.com"),
        )

        records = map_order(order)

        assert len(records) == 2
        assert [r.student_info.email for r in records] == ["amina@example.com", "yusuf@example.com"]
        assert [r.student_info.first_name for r in records] == ["Amina", "Yusuf"]
        assert [r.course_id for r in records] == ["A", "B"]

    def test_mixed_products_and_types(self) -> None:
        order = make_order(
            line_item("Associates Program", item_id="A"),
            line_item("Prophetic Guidance", item_id="B"),
            line_item("Tafsir Intensive", item_id="C"),
            line_item("Hoodie", item_type="PHYSICAL", item_id="D"),
        )

        records = map_order(order)

        assert [r.course_type for r in records] == [
            CourseType.ASSOCIATES_PROGRAM,
            CourseType.PROPHETIC_GUIDANCE,
            CourseType.GENERIC,
        ]

    def test_items_without_product_name_are_skipped(self) -> None:
        order = make_order(line_item(None, item_id="A"), line_item("  ", item_id="B"), line_item("Associates Program"))

        records = map_order(order)

        assert len(records) == 1
        assert records[0].course_type == CourseType.ASSOCIATES_PROGRAM

    def test_failing_group_does_not_affect_other_groups(self) -> None:
        order = make_order(
            line_item("Associates Program", item_id="A"),
            line_item("Prophetic Guidance", item_id="B"),
        )

        def broken_builder(order: RawOrder, item: Any) -> Any:
            raise RuntimeError("boom")

        with patch.dict("es.courses.mapper.BUILDERS", {CourseType.ASSOCIATES_PROGRAM: broken_builder}):
            records = map_order(order)

        assert [r.course_type for r in records] == [CourseType.PROPHETIC_GUIDANCE]


class TestProcessOrders:
    """Tests for the batch processor."""

    def test_empty_input(self) -> None:
        assert process_orders([]) == []

    def test_flattens_records_across_orders(self) -> None:
        orders = [
            make_order(line_item("Associates Program"), order_id="O1"),
            make_order(line_item("Prophetic Guidance"), line_item("Tafsir"), order_id="O2"),
        ]

        records = process_orders(orders)

        assert [r.order_id for r in records] == ["O1", "O2", "O2"]

    def test_failing_order_is_isolated(self) -> None:
        good = make_order(line_item("Associates Program"), order_id="GOOD")
        bad = make_order(line_item("Associates Program"), order_id="BAD")
        real_map_order = map_order

        def flaky(order: RawOrder):
            if order.order_id == "BAD":
                raise ValueError("corrupt order")
            return real_map_order(order)

        with patch("es.courses.processor.map_order", side_effect=flaky):
            records = process_orders([bad, good])

        assert [r.order_id for r in records] == ["GOOD"]


@pytest.mark.parametrize("item_type", ["PHYSICAL", "DIGITAL", "GIFT_CARD"])
def test_non_service_types_are_ignored(item_type: str) -> None:
    assert map_order(make_order(line_item("Associates Program", item_type=item_type))) == []
