"""Warehouse preparation tracking — progress and missing-items checks.

Works on anything exposing ``qty``, ``prepared_qty`` and ``purchased_qty``
(OrderItem entities in practice). Arithmetic is done in ``Decimal`` so that
repeated adjustments do not drift.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, NamedTuple

from logistics.order.transitions import OrderStatus

LOW_PROGRESS_THRESHOLD = 80

_QTY_PLACES = Decimal("0.001")
_SHARE_PLACES = Decimal("0.01")


class Progress(NamedTuple):
    total_qty: float
    done_qty: float
    percent: int


def to_decimal(value) -> Decimal:
    if value is None or value == "":
        return Decimal(0)
    return Decimal(str(value))


def normalize_qty(value) -> Decimal:
    """Round a warehouse-entered quantity to 3 places, clamped at zero."""
    return max(Decimal(0), to_decimal(value).quantize(_QTY_PLACES, rounding=ROUND_HALF_UP))


def round_share(value: Decimal) -> Decimal:
    return value.quantize(_SHARE_PLACES, rounding=ROUND_HALF_UP)


def progress(items: Iterable) -> Progress:
    total = Decimal(0)
    done = Decimal(0)
    for item in items:
        qty = to_decimal(item.qty)
        total += qty
        done += min(to_decimal(item.prepared_qty), qty)

    if total == 0:
        return Progress(total_qty=0.0, done_qty=float(done), percent=0)

    percent = int((done / total * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    if done < total:
        # 100 is reserved for a fully prepared job
        percent = min(percent, 99)
    return Progress(total_qty=float(total), done_qty=float(done), percent=percent)


def is_item_missing(item) -> bool:
    return to_decimal(item.prepared_qty) + to_decimal(item.purchased_qty) < to_decimal(item.qty)


def is_missing(items: Iterable) -> bool:
    return any(is_item_missing(item) for item in items)


def missing_qty(item) -> Decimal:
    """Quantity still uncovered by preparation or purchases."""
    shortfall = to_decimal(item.qty) - to_decimal(item.prepared_qty) - to_decimal(item.purchased_qty)
    return max(Decimal(0), shortfall)


def closing_status(items: Iterable) -> OrderStatus:
    """Destination status for a warehouse job being closed."""
    return OrderStatus.FALTAS if is_missing(items) else OrderStatus.A_FATURAR
