"""Order state machine.

``status`` (kitchen/fulfillment) and ``payment_status`` (mirrors the payment
processor) each have an explicit table of legal moves. Writes go through
``transition_order``, a single conditional UPDATE that only matches when the
row is currently in a legal source state, so duplicate or out-of-order
webhooks cannot regress an order no matter how they interleave.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.orm import Session

from fulfillment.models.order import Order, OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending: frozenset({OrderStatus.preparing, OrderStatus.cancelled}),
    OrderStatus.preparing: frozenset({OrderStatus.ready, OrderStatus.completed, OrderStatus.cancelled}),
    OrderStatus.ready: frozenset({OrderStatus.completed, OrderStatus.cancelled}),
    OrderStatus.completed: frozenset(),
    OrderStatus.cancelled: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.pending: frozenset({
        PaymentStatus.processing, PaymentStatus.succeeded, PaymentStatus.failed, PaymentStatus.canceled,
    }),
    PaymentStatus.processing: frozenset({PaymentStatus.succeeded, PaymentStatus.failed, PaymentStatus.canceled}),
    # a failed payment has already cancelled the order; a retry needs a new order
    PaymentStatus.failed: frozenset(),
    PaymentStatus.succeeded: frozenset(),
    PaymentStatus.canceled: frozenset(),
}


def can_transition(current, target) -> bool:
    """True if ``current`` -> ``target`` is a legal move in either vocabulary."""
    table = STATUS_TRANSITIONS if isinstance(target, OrderStatus) else PAYMENT_TRANSITIONS
    return target in table.get(current, frozenset())


def sources_for(target) -> list:
    """All states from which ``target`` may be entered."""
    table = STATUS_TRANSITIONS if isinstance(target, OrderStatus) else PAYMENT_TRANSITIONS
    return [state for state, targets in table.items() if target in targets]


def transition_order(
    db: Session,
    order_id: str,
    payment_status: Optional[PaymentStatus] = None,
    status: Optional[OrderStatus] = None,
    values: Optional[dict[str, Any]] = None,
    where: Sequence[Any] = (),
) -> bool:
    """Conditionally move an order to new payment and/or fulfillment states.

    All fields (the states plus ``values``) land in one UPDATE, guarded by
    the legal source states of every target and any extra ``where``
    criteria. Returns False, writing nothing, when the order is missing,
    already there, or the move is illegal. Does not commit.
    """
    stmt = update(Order).where(Order.order_id == order_id, *where)
    changes: dict[str, Any] = dict(values or {})
    if payment_status is not None:
        stmt = stmt.where(Order.payment_status.in_(sources_for(payment_status)))
        changes["payment_status"] = payment_status
    if status is not None:
        stmt = stmt.where(Order.status.in_(sources_for(status)))
        changes["status"] = status
    changes["updated_at"] = datetime.now(timezone.utc)

    result = db.execute(stmt.values(**changes).execution_options(synchronize_session=False))
    moved = result.rowcount == 1
    if moved:
        logger.info(
            "Order %s -> payment_status=%s status=%s",
            order_id,
            payment_status.value if payment_status else "-",
            status.value if status else "-",
        )
    else:
        logger.info(
            "Order %s transition to payment_status=%s status=%s not applied (missing, duplicate or illegal)",
            order_id,
            payment_status.value if payment_status else "-",
            status.value if status else "-",
        )
    return moved
