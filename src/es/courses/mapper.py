"""Course mapper: dispatch an order's SERVICE line items to builders."""

from __future__ import annotations

import logging

from es.courses.builders import BUILDERS, BuilderSkip
from es.courses.classifiers import classify
from es.courses.models import CourseRecord
from es.orders.client import LineItem, RawOrder

logger = logging.getLogger(__name__)


def _group_by_product(items: list[LineItem]) -> dict[str, list[LineItem]]:
    groups: dict[str, list[LineItem]] = {}
    for item in items:
        groups.setdefault((item.product_name or "").strip(), []).append(item)
    return groups


def map_order(order: RawOrder) -> list[CourseRecord]:
    """Map one order to course records, one per SERVICE line item.

    Line items are grouped by product name and each group is classified once.
    Several SERVICE items for the same product produce several records, one
    per student. A failing group is logged and skipped; other groups in the
    same order still complete.
    """
    service_items = [item for item in order.line_items if item.is_service]
    if not service_items:
        logger.debug("Order %s has no service items", order.order_id)
        return []

    records: list[CourseRecord] = []
    for product_name, items in _group_by_product(service_items).items():
        if not product_name:
            logger.warning(
                "Order %s: skipping %d service item(s) without a product name",
                order.order_id,
                len(items),
            )
            continue

        course_type = classify(product_name)
        builder = BUILDERS[course_type]
        logger.info(
            "Mapping %d item(s) of course %r to %s model",
            len(items),
            product_name,
            course_type.value,
        )

        try:
            group_records: list[CourseRecord] = []
            for item in items:
                try:
                    group_records.append(builder(order, item))
                except BuilderSkip as e:
                    logger.warning("Order %s: %s", order.order_id, e)
            records.extend(group_records)
        except Exception:
            logger.exception("Order %s: error mapping course %r", order.order_id, product_name)

    return records
