"""
Status state machines for the ledger entities.

Every status write in the ledger goes through transition(); nothing else compares
statuses to decide whether a change is allowed.
"""

from typing import Dict, FrozenSet, Union

from app.core.enums import GatewayPaymentStatus, InstallmentStatus, PaymentPlanStatus
from app.core.exceptions import InvalidTransitionError

INSTALLMENT = "Installment"
PAYMENT_PLAN = "PaymentPlan"
GATEWAY_PAYMENT = "GatewayPayment"

_Status = Union[InstallmentStatus, PaymentPlanStatus, GatewayPaymentStatus]

INSTALLMENT_TRANSITIONS: Dict[InstallmentStatus, FrozenSet[InstallmentStatus]] = {
    InstallmentStatus.PENDING: frozenset({InstallmentStatus.PAID, InstallmentStatus.OVERDUE}),
    InstallmentStatus.OVERDUE: frozenset({InstallmentStatus.PAID}),
    InstallmentStatus.PAID: frozenset(),
}

PAYMENT_PLAN_TRANSITIONS: Dict[PaymentPlanStatus, FrozenSet[PaymentPlanStatus]] = {
    PaymentPlanStatus.ACTIVE: frozenset(
        {
            PaymentPlanStatus.COMPLETED,
            PaymentPlanStatus.SUSPENDED,
            PaymentPlanStatus.DEFAULTED,
            PaymentPlanStatus.CANCELLED,
        }
    ),
    PaymentPlanStatus.SUSPENDED: frozenset(
        {
            PaymentPlanStatus.ACTIVE,
            PaymentPlanStatus.COMPLETED,
            PaymentPlanStatus.DEFAULTED,
            PaymentPlanStatus.CANCELLED,
        }
    ),
    PaymentPlanStatus.DEFAULTED: frozenset(
        {PaymentPlanStatus.ACTIVE, PaymentPlanStatus.COMPLETED, PaymentPlanStatus.CANCELLED}
    ),
    PaymentPlanStatus.COMPLETED: frozenset(),
    PaymentPlanStatus.CANCELLED: frozenset(),
}

GATEWAY_PAYMENT_TRANSITIONS: Dict[GatewayPaymentStatus, FrozenSet[GatewayPaymentStatus]] = {
    GatewayPaymentStatus.PENDING: frozenset({GatewayPaymentStatus.PAID, GatewayPaymentStatus.FAILED}),
    GatewayPaymentStatus.PAID: frozenset(),
    GatewayPaymentStatus.FAILED: frozenset(),
}

_TABLES = {
    INSTALLMENT: (InstallmentStatus, INSTALLMENT_TRANSITIONS),
    PAYMENT_PLAN: (PaymentPlanStatus, PAYMENT_PLAN_TRANSITIONS),
    GATEWAY_PAYMENT: (GatewayPaymentStatus, GATEWAY_PAYMENT_TRANSITIONS),
}

# Plan statuses an operator may force; Completed only follows from the balance reaching zero.
FORCEABLE_PLAN_STATUSES = frozenset(
    {
        PaymentPlanStatus.ACTIVE,
        PaymentPlanStatus.SUSPENDED,
        PaymentPlanStatus.DEFAULTED,
        PaymentPlanStatus.CANCELLED,
    }
)


def _coerce(kind: str, value):
    enum_cls, _ = _TABLES[kind]
    return value if isinstance(value, enum_cls) else enum_cls(value)


def can_transition(kind: str, current, target) -> bool:
    _, table = _TABLES[kind]
    return _coerce(kind, target) in table[_coerce(kind, current)]


def is_noop(kind: str, current, target) -> bool:
    return _coerce(kind, current) == _coerce(kind, target)


def is_terminal(kind: str, status) -> bool:
    _, table = _TABLES[kind]
    return not table[_coerce(kind, status)]


def transition(kind: str, current, target) -> str:
    """Validate current -> target and return the value to store. Raises InvalidTransitionError."""
    cur = _coerce(kind, current)
    tgt = _coerce(kind, target)
    if not can_transition(kind, cur, tgt):
        raise InvalidTransitionError(kind, cur.value, tgt.value)
    return tgt.value
