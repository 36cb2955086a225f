"""Tests for the points ledger and the /api/points routes."""
import pytest

from fulfillment.exceptions import InsufficientPoints
from fulfillment.models.points import PointsLedgerEntry
from fulfillment.models.user import UserProfile
from fulfillment.services import points_ledger
from tests.conftest import auth_headers, create_test_user, refetch


def _entries(db, user_id):
    db.rollback()
    return db.query(PointsLedgerEntry).filter(PointsLedgerEntry.user_id == user_id).all()


class TestCredit:
    def test_credit_updates_balance_and_ledger(self, db):
        user = create_test_user(db)
        assert points_ledger.credit(db, user.user_id, 25, "order", "order:o1:earn") is True
        db.commit()

        assert refetch(db, UserProfile, user.user_id).points == 25
        assert points_ledger.balance(db, user.user_id) == 25
        [entry] = _entries(db, user.user_id)
        assert entry.delta == 25
        assert entry.reason == "order"

    def test_same_correlation_credits_once(self, db):
        user = create_test_user(db)
        points_ledger.credit(db, user.user_id, 25, "order", "order:o1:earn")
        db.commit()
        assert points_ledger.credit(db, user.user_id, 25, "order", "order:o1:earn") is False
        db.commit()
        assert refetch(db, UserProfile, user.user_id).points == 25
        assert len(_entries(db, user.user_id)) == 1

    def test_non_positive_amount_is_skipped(self, db):
        user = create_test_user(db)
        assert points_ledger.credit(db, user.user_id, 0, "order", "order:o2:earn") is False
        assert _entries(db, user.user_id) == []

    def test_concurrent_duplicate_loses_on_unique_key(self, db, monkeypatch):
        """Two credits that both passed the pre-check: the second hits the constraint."""
        user = create_test_user(db)
        points_ledger.credit(db, user.user_id, 10, "order", "order:o3:earn")
        db.commit()

        monkeypatch.setattr(points_ledger, "_already_applied", lambda *args: False)
        assert points_ledger.credit(db, user.user_id, 10, "order", "order:o3:earn") is False
        db.commit()
        assert refetch(db, UserProfile, user.user_id).points == 10


class TestDebit:
    def test_debit_within_balance(self, db):
        user = create_test_user(db)
        points_ledger.credit(db, user.user_id, 50, "order", "c1")
        assert points_ledger.debit(db, user.user_id, 20, "merch_redemption", "r1") == 20
        db.commit()
        assert refetch(db, UserProfile, user.user_id).points == 30
        assert points_ledger.balance(db, user.user_id) == 30

    def test_insufficient_points_raises(self, db):
        user = create_test_user(db)
        points_ledger.credit(db, user.user_id, 5, "order", "c1")
        db.commit()
        with pytest.raises(InsufficientPoints):
            points_ledger.debit(db, user.user_id, 6, "merch_redemption", "r1")
        db.rollback()
        assert refetch(db, UserProfile, user.user_id).points == 5

    def test_partial_debit_takes_what_is_left(self, db):
        user = create_test_user(db)
        points_ledger.credit(db, user.user_id, 5, "order", "c1")
        assert points_ledger.debit(db, user.user_id, 8, "order_cancelled", "x1", allow_partial=True) == 5
        db.commit()
        assert refetch(db, UserProfile, user.user_id).points == 0
        assert points_ledger.balance(db, user.user_id) == 0

    def test_repeated_debit_is_noop(self, db):
        user = create_test_user(db)
        points_ledger.credit(db, user.user_id, 50, "order", "c1")
        points_ledger.debit(db, user.user_id, 10, "merch_redemption", "r1")
        assert points_ledger.debit(db, user.user_id, 10, "merch_redemption", "r1") == 0
        db.commit()
        assert refetch(db, UserProfile, user.user_id).points == 40


class TestPointsRoutes:
    def test_balance_and_history(self, client, db):
        user = create_test_user(db)
        points_ledger.credit(db, user.user_id, 30, "order", "c1")
        db.commit()

        resp = client.get("/api/points/", headers=auth_headers(user.user_id))
        assert resp.status_code == 200
        data = resp.json()
        assert data["balance"] == 30
        assert [e["delta"] for e in data["history"]] == [30]

    def test_redeem(self, client, db):
        user = create_test_user(db)
        points_ledger.credit(db, user.user_id, 100, "order", "c1")
        db.commit()

        body = {"points": 40, "reference_id": "cart-7"}
        resp = client.post("/api/points/redeem", json=body, headers=auth_headers(user.user_id))
        assert resp.status_code == 200
        assert resp.json()["balance"] == 60

        # a double-submitted redemption is applied once
        again = client.post("/api/points/redeem", json=body, headers=auth_headers(user.user_id))
        assert again.json()["balance"] == 60
        assert refetch(db, UserProfile, user.user_id).points == 60

    def test_redeem_more_than_balance(self, client, db):
        user = create_test_user(db)
        resp = client.post("/api/points/redeem", json={"points": 10, "reference_id": "cart-8"},
                           headers=auth_headers(user.user_id))
        assert resp.status_code == 400
        assert "Insufficient points" in resp.json()["detail"]

    def test_redeem_rejects_non_positive(self, client, db):
        user = create_test_user(db)
        resp = client.post("/api/points/redeem", json={"points": 0, "reference_id": "cart-9"},
                           headers=auth_headers(user.user_id))
        assert resp.status_code == 422
