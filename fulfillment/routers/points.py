"""Reward points balance and redemption routes."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fulfillment.auth import get_current_user_id
from fulfillment.database import get_db
from fulfillment.models.notification import NotificationCategory
from fulfillment.schemas.user import LedgerEntryOut, PointsOut, RedeemRequest
from fulfillment.services import notification_service, points_ledger

logger = logging.getLogger(__name__)
router = APIRouter()


def _points_view(db: Session, user_id: str) -> PointsOut:
    return PointsOut(
        user_id=user_id,
        balance=points_ledger.balance(db, user_id),
        history=[LedgerEntryOut.model_validate(e) for e in points_ledger.history(db, user_id)],
    )


@router.get("/", response_model=PointsOut)
def get_points(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Balance and recent ledger entries for the caller."""
    return _points_view(db, user_id)


@router.post("/redeem", response_model=PointsOut)
def redeem_points(
    payload: RedeemRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Spend points. Replaying the same ``reference_id`` is a no-op; 400 if the balance is short."""
    removed = points_ledger.debit(
        db, user_id, payload.points,
        reason=payload.reason,
        correlation_id=f"redeem:{user_id}:{payload.reference_id}",
    )
    if removed:
        notification_service.emit(
            db, user_id,
            title="Points Redeemed",
            message=f"You redeemed {removed} points.",
            category=NotificationCategory.points,
        )
    db.commit()
    logger.info("User %s redeemed %d points (ref %s)", user_id, removed, payload.reference_id)
    return _points_view(db, user_id)
