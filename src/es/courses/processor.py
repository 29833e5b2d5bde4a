"""Batch processor: raw orders to a flat list of course records."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from es.courses.mapper import map_order
from es.courses.models import CourseRecord
from es.orders.client import RawOrder

logger = logging.getLogger(__name__)


def process_orders(orders: Iterable[RawOrder]) -> list[CourseRecord]:
    """Map every order, isolating failures per order.

    An order that raises while mapping is logged and contributes no records;
    the remaining orders are still processed.
    """
    records: list[CourseRecord] = []
    order_count = 0

    for order in orders:
        order_count += 1
        try:
            records.extend(map_order(order))
        except Exception:
            logger.exception("Error processing order %s", getattr(order, "order_id", "?"))

    if order_count == 0:
        logger.info("No orders to process")
    else:
        logger.info("Mapped %d course record(s) from %d order(s)", len(records), order_count)
    return records
