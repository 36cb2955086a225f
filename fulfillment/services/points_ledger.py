"""Points ledger: idempotent credit/debit of a user's reward balance.

Every movement is an append-only ``PointsLedgerEntry`` whose
``correlation_id`` is unique, so a retried webhook or a double-clicked
redemption collides in the database instead of applying twice. The cached
``UserProfile.points`` counter is changed in the same savepoint as the entry.
"""
import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment.exceptions import InsufficientPoints
from fulfillment.models.points import PointsLedgerEntry
from fulfillment.models.user import UserProfile

logger = logging.getLogger(__name__)


def _already_applied(db: Session, correlation_id: str) -> bool:
    return db.execute(
        select(PointsLedgerEntry.entry_id).where(PointsLedgerEntry.correlation_id == correlation_id)
    ).first() is not None


def credit(
    db: Session,
    user_id: str,
    amount: int,
    reason: str,
    correlation_id: str,
    order_id: Optional[str] = None,
) -> bool:
    """Add ``amount`` points once per ``correlation_id``.

    Returns True if points were applied, False for a duplicate or a
    non-positive amount. Does not commit.
    """
    if amount <= 0:
        logger.info("Skipping points credit %s: non-positive amount %d", correlation_id, amount)
        return False
    if _already_applied(db, correlation_id):
        logger.info("Points credit %s already applied", correlation_id)
        return False

    try:
        with db.begin_nested():
            db.add(PointsLedgerEntry(
                user_id=user_id,
                delta=amount,
                reason=reason,
                correlation_id=correlation_id,
                order_id=order_id,
            ))
            db.flush()
            db.execute(
                update(UserProfile)
                .where(UserProfile.user_id == user_id)
                .values(points=UserProfile.points + amount)
                .execution_options(synchronize_session=False)
            )
    except IntegrityError:
        # lost a race against a concurrent retry of the same credit
        logger.info("Points credit %s already applied (concurrent)", correlation_id)
        return False

    logger.info("Credited %d points to user %s (%s, %s)", amount, user_id, reason, correlation_id)
    return True


def debit(
    db: Session,
    user_id: str,
    amount: int,
    reason: str,
    correlation_id: str,
    order_id: Optional[str] = None,
    allow_partial: bool = False,
) -> int:
    """Remove ``amount`` points once per ``correlation_id``.

    The balance is decremented with a conditional UPDATE that only matches
    while the user still has enough points. Raises ``InsufficientPoints``
    unless ``allow_partial``, in which case whatever is left is taken.
    Returns the number of points removed (0 for a duplicate). Does not commit.
    """
    if amount <= 0 or _already_applied(db, correlation_id):
        return 0

    current = db.execute(select(UserProfile.points).where(UserProfile.user_id == user_id)).scalar()
    current = current or 0
    if current < amount:
        if not allow_partial:
            raise InsufficientPoints(balance=current, required=amount)
        amount = current
        if amount == 0:
            return 0

    try:
        with db.begin_nested():
            result = db.execute(
                update(UserProfile)
                .where(UserProfile.user_id == user_id, UserProfile.points >= amount)
                .values(points=UserProfile.points - amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InsufficientPoints(balance=current, required=amount)
            db.add(PointsLedgerEntry(
                user_id=user_id,
                delta=-amount,
                reason=reason,
                correlation_id=correlation_id,
                order_id=order_id,
            ))
            db.flush()
    except IntegrityError:
        logger.info("Points debit %s already applied (concurrent)", correlation_id)
        return 0

    logger.info("Debited %d points from user %s (%s, %s)", amount, user_id, reason, correlation_id)
    return amount


def balance(db: Session, user_id: str) -> int:
    """Current balance as the sum of the user's ledger entries."""
    total = db.execute(
        select(func.coalesce(func.sum(PointsLedgerEntry.delta), 0)).where(PointsLedgerEntry.user_id == user_id)
    ).scalar()
    return int(total or 0)


def history(db: Session, user_id: str, limit: int = 50) -> list[PointsLedgerEntry]:
    return (
        db.query(PointsLedgerEntry)
        .filter(PointsLedgerEntry.user_id == user_id)
        .order_by(PointsLedgerEntry.created_at.desc())
        .limit(limit)
        .all()
    )
