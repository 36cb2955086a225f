"""Compare-and-swap on a single column, with a compensating revert.

Every piece of shared mutable state in the service (spots left on an event,
the dispatch guard on an order) is claimed through a conditional UPDATE whose
WHERE clause repeats the value the caller last saw. The database decides the
winner; nothing is locked in application memory.

    swap = ColumnSwap(Event.available_spots, [Event.event_id == eid], expected=3, new=2)
    if not swap.apply(db):
        ...  # somebody else got there first
    with swap.compensating(db, undo=...):
        ...  # follow-up write; on failure the swap is reverted and the error re-raised
"""
import logging
from contextlib import contextmanager
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def compare_and_swap(
    db: Session,
    column,
    criteria: Sequence[Any],
    expected: Any,
    new: Any,
    commit: bool = True,
) -> bool:
    """Set ``column`` to ``new`` on the row matching ``criteria`` only while it still equals ``expected``.

    Returns True when exactly one row was changed.
    """
    guard = column.is_(None) if expected is None else column == expected
    stmt = update(column.class_).where(*criteria, guard).values({column: new})
    result = db.execute(stmt.execution_options(synchronize_session=False))
    if commit:
        db.commit()
    return result.rowcount == 1


class ColumnSwap:
    """One conditional write plus the knowledge needed to undo it."""

    def __init__(self, column, criteria: Sequence[Any], expected: Any, new: Any):
        self.column = column
        self.criteria = list(criteria)
        self.expected = expected
        self.new = new
        self.applied = False

    def apply(self, db: Session) -> bool:
        self.applied = compare_and_swap(db, self.column, self.criteria, self.expected, self.new)
        if not self.applied:
            logger.info("CAS lost on %s (expected %r)", self.column, self.expected)
        return self.applied

    def revert(self, db: Session) -> bool:
        """Put the pre-swap value back, provided nobody has moved it since."""
        if not self.applied:
            return False
        reverted = compare_and_swap(db, self.column, self.criteria, self.new, self.expected)
        if reverted:
            self.applied = False
        else:
            logger.warning("Could not revert %s: value changed after swap", self.column)
        return reverted

    @contextmanager
    def compensating(self, db: Session, undo: Optional[Callable[[Session], None]] = None):
        """Revert the swap if the wrapped block raises, then re-raise."""
        try:
            yield self
        except Exception:
            db.rollback()
            if undo is not None:
                undo(db)
            else:
                self.revert(db)
            raise
