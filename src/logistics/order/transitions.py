"""Order status machine — legal edges and audit classification.

State Machine (generic updates):
    ESPERA → PREP → {FALTAS, A_FATURAR}
    FALTAS → PREP (restocked)
    A_FATURAR → A_EXPEDIR → {EMROTA, EXPEDIDA}
    EMROTA → {A_EXPEDIR, EXPEDIDA}
    EXPEDIDA → {ENTREGUE, NAOENTREGUE}
    {NAOENTREGUE, CANCELADA} → ESPERA (reactivation)
    {ESPERA, PREP, FALTAS, A_FATURAR, A_EXPEDIR} → CANCELADA

Classification depends on the destination status only, never on the edge.
"""

from enum import Enum
from typing import NamedTuple

from protean.exceptions import ValidationError


class OrderStatus(Enum):
    ESPERA = "ESPERA"
    PREP = "PREP"
    FALTAS = "FALTAS"
    A_FATURAR = "A_FATURAR"
    A_EXPEDIR = "A_EXPEDIR"
    EMROTA = "EMROTA"
    EXPEDIDA = "EXPEDIDA"
    ENTREGUE = "ENTREGUE"
    NAOENTREGUE = "NAOENTREGUE"
    CANCELADA = "CANCELADA"


class EventType(Enum):
    PREP_CLOSED_MISSING = "PREP_CLOSED_MISSING"
    PREP_CLOSED_OK = "PREP_CLOSED_OK"
    INVOICED = "INVOICED"
    SEND_TO_PREP = "SEND_TO_PREP"
    # Recorded by dedicated operations only
    CREATED = "CREATED"
    BULK_BATCH_CREATED = "BULK_BATCH_CREATED"
    PURCHASE_RECEIVED = "PURCHASE_RECEIVED"
    DELIVERY_RECORDED = "DELIVERY_RECORDED"
    RECTIFICATION_ADDED = "RECTIFICATION_ADDED"
    REACTIVATED = "REACTIVATED"
    FORCED_PARTIAL = "FORCED_PARTIAL"


_CLASSIFICATION = {
    OrderStatus.FALTAS: EventType.PREP_CLOSED_MISSING,
    OrderStatus.A_FATURAR: EventType.PREP_CLOSED_OK,
    OrderStatus.A_EXPEDIR: EventType.INVOICED,
}

_VALID_TRANSITIONS = {
    OrderStatus.ESPERA: {OrderStatus.PREP, OrderStatus.CANCELADA},
    OrderStatus.PREP: {
        OrderStatus.ESPERA,
        OrderStatus.FALTAS,
        OrderStatus.A_FATURAR,
        OrderStatus.CANCELADA,
    },
    OrderStatus.FALTAS: {OrderStatus.PREP, OrderStatus.CANCELADA},
    OrderStatus.A_FATURAR: {OrderStatus.PREP, OrderStatus.A_EXPEDIR, OrderStatus.CANCELADA},
    OrderStatus.A_EXPEDIR: {OrderStatus.EMROTA, OrderStatus.EXPEDIDA, OrderStatus.CANCELADA},
    OrderStatus.EMROTA: {OrderStatus.A_EXPEDIR, OrderStatus.EXPEDIDA},
    OrderStatus.EXPEDIDA: {OrderStatus.ENTREGUE, OrderStatus.NAOENTREGUE},
    OrderStatus.ENTREGUE: set(),  # terminal
    OrderStatus.NAOENTREGUE: {OrderStatus.ESPERA},
    OrderStatus.CANCELADA: {OrderStatus.ESPERA},
}

# Warehouse overrides that skip the missing-items check
_FORCED_TRANSITIONS = {
    OrderStatus.PREP: {OrderStatus.A_FATURAR, OrderStatus.A_EXPEDIR},
    OrderStatus.FALTAS: {OrderStatus.A_FATURAR, OrderStatus.A_EXPEDIR},
}

CARRIER_REQUIRED_STATUSES = frozenset({OrderStatus.A_EXPEDIR, OrderStatus.EMROTA, OrderStatus.EXPEDIDA})


def classify(old_status: OrderStatus | str, new_status: OrderStatus | str) -> EventType:
    """Return the audit classification of a status change.

    ``old_status`` is accepted for symmetry with the callers but does not
    influence the result.
    """
    return _CLASSIFICATION.get(OrderStatus(new_status), EventType.SEND_TO_PREP)


def can_transition(current: OrderStatus | str, target: OrderStatus | str, forced: bool = False) -> bool:
    current, target = OrderStatus(current), OrderStatus(target)
    if target in _VALID_TRANSITIONS.get(current, set()):
        return True
    return forced and target in _FORCED_TRANSITIONS.get(current, set())


def assert_transition(current: OrderStatus | str, target: OrderStatus | str, forced: bool = False) -> None:
    """Raise ``ValidationError`` unless ``current → target`` is a legal edge."""
    if not can_transition(current, target, forced=forced):
        raise ValidationError(
            {"status": [f"Cannot transition from {OrderStatus(current).value} to {OrderStatus(target).value}"]}
        )


class StatusChange(NamedTuple):
    """A committed status change, handed to the audit log after commit."""

    order_id: str
    from_status: str
    to_status: str
    event_type: str
    meta: dict | None = None
