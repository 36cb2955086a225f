"""Tests for capacity-limited event reservations.

Covers:
- Successful RSVP decrements spots and returns the remainder
- Already reserved / sold out / unknown event
- Lost compare-and-swap surfaces as a retryable 409 with nothing written
- A failed reservation insert hands the spot back
- Reserved + available always equals capacity, also under real concurrency
"""
import threading

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from fulfillment.exceptions import AlreadyReserved, ReservationConflict, SoldOut
from fulfillment.models.event import Event, EventReservation
from fulfillment.services import reservation_service
from tests.conftest import auth_headers, create_test_event, create_test_user, refetch

URL = "/api/reservations/"


def _reserved(db, event_id):
    db.rollback()
    return db.query(EventReservation).filter(EventReservation.event_id == event_id).count()


class TestReserveEndpoint:
    """POST /api/reservations."""

    def test_reserve_spot(self, client, db):
        user = create_test_user(db)
        event = create_test_event(db, capacity=10)
        resp = client.post(URL, json={"event_id": event.event_id}, headers=auth_headers(user.user_id))
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["available_spots"] == 9
        assert data["reservation"]["user_id"] == user.user_id
        assert data["reservation"]["event_id"] == event.event_id
        assert refetch(db, Event, event.event_id).available_spots == 9

    def test_requires_token(self, client, db):
        event = create_test_event(db)
        assert client.post(URL, json={"event_id": event.event_id}).status_code == 401
        bad = client.post(URL, json={"event_id": event.event_id}, headers={"Authorization": "Bearer junk"})
        assert bad.status_code == 401

    def test_already_reserved(self, client, db):
        user = create_test_user(db)
        event = create_test_event(db, capacity=10)
        client.post(URL, json={"event_id": event.event_id}, headers=auth_headers(user.user_id))
        resp = client.post(URL, json={"event_id": event.event_id}, headers=auth_headers(user.user_id))
        assert resp.status_code == 400
        assert "already" in resp.json()["detail"]
        assert refetch(db, Event, event.event_id).available_spots == 9

    def test_sold_out(self, client, db):
        user = create_test_user(db)
        event = create_test_event(db, capacity=3, available_spots=0)
        resp = client.post(URL, json={"event_id": event.event_id}, headers=auth_headers(user.user_id))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "No spots available for this event"
        assert refetch(db, Event, event.event_id).available_spots == 0

    def test_unknown_event(self, client, db):
        user = create_test_user(db)
        resp = client.post(URL, json={"event_id": "no-such-event"}, headers=auth_headers(user.user_id))
        assert resp.status_code == 404

    def test_last_spot_goes_to_one_user(self, client, db):
        first = create_test_user(db, name="First", email="first@example.com")
        second = create_test_user(db, name="Second", email="second@example.com")
        event = create_test_event(db, capacity=2, available_spots=1)

        ok = client.post(URL, json={"event_id": event.event_id}, headers=auth_headers(first.user_id))
        late = client.post(URL, json={"event_id": event.event_id}, headers=auth_headers(second.user_id))
        assert ok.status_code == 200
        assert ok.json()["available_spots"] == 0
        assert late.status_code == 400
        assert refetch(db, Event, event.event_id).available_spots == 0

    def test_lost_race_is_409(self, client, db, monkeypatch):
        """Both callers saw one spot; the second CAS finds the count already moved."""
        user = create_test_user(db)
        event = create_test_event(db, capacity=5, available_spots=1)
        # this caller read the count before another reservation took it to 1
        monkeypatch.setattr(reservation_service, "_read_available_spots", lambda db_, event_id: 2)

        resp = client.post(URL, json={"event_id": event.event_id}, headers=auth_headers(user.user_id))
        assert resp.status_code == 409
        assert "Try again" in resp.json()["detail"]
        assert refetch(db, Event, event.event_id).available_spots == 1
        assert _reserved(db, event.event_id) == 0


class TestReserveService:
    """reservation_service.reserve with one session."""

    def test_capacity_invariant_holds(self, db):
        event = create_test_event(db, capacity=3)
        users = [create_test_user(db, name=f"U{i}", email=f"u{i}@example.com") for i in range(4)]
        outcomes = []
        for user in users:
            try:
                reservation_service.reserve(db, event.event_id, user.user_id)
                outcomes.append("ok")
            except SoldOut:
                outcomes.append("sold_out")
        assert outcomes == ["ok", "ok", "ok", "sold_out"]

        event = refetch(db, Event, event.event_id)
        assert event.available_spots == 0
        assert event.available_spots + _reserved(db, event.event_id) == event.capacity

    def test_conflict_writes_nothing(self, db, monkeypatch):
        user = create_test_user(db)
        event = create_test_event(db, capacity=4, available_spots=2)
        monkeypatch.setattr(reservation_service, "_read_available_spots", lambda db_, event_id: 3)
        with pytest.raises(ReservationConflict):
            reservation_service.reserve(db, event.event_id, user.user_id)
        assert refetch(db, Event, event.event_id).available_spots == 2

    def test_failed_insert_returns_the_spot(self, db, monkeypatch):
        """A duplicate that slips past the pre-check is caught by the unique constraint."""
        user = create_test_user(db)
        event = create_test_event(db, capacity=5)
        reservation_service.reserve(db, event.event_id, user.user_id)
        assert refetch(db, Event, event.event_id).available_spots == 4

        monkeypatch.setattr(reservation_service, "_existing_reservation", lambda *args: None)
        with pytest.raises(AlreadyReserved):
            reservation_service.reserve(db, event.event_id, user.user_id)

        event = refetch(db, Event, event.event_id)
        assert event.available_spots == 4
        assert event.available_spots + _reserved(db, event.event_id) == event.capacity

    def test_returned_spot_survives_concurrent_change(self, db, monkeypatch):
        """If the count moved after our decrement, the spot comes back by increment."""
        user = create_test_user(db)
        other = create_test_user(db, name="Other", email="other@example.com")
        event = create_test_event(db, capacity=5)
        reservation_service.reserve(db, event.event_id, user.user_id)

        real_add = db.add

        def add_after_someone_else_reserved(obj):
            if isinstance(obj, EventReservation) and obj.user_id == user.user_id:
                # another reservation commits between our CAS and our insert
                db.add = real_add
                reservation_service.reserve(db, event.event_id, other.user_id)
            real_add(obj)

        monkeypatch.setattr(reservation_service, "_existing_reservation", lambda *args: None)
        monkeypatch.setattr(db, "add", add_after_someone_else_reserved)
        with pytest.raises(AlreadyReserved):
            reservation_service.reserve(db, event.event_id, user.user_id)

        event = refetch(db, Event, event.event_id)
        assert _reserved(db, event.event_id) == 2
        assert event.available_spots == 3

    def test_other_insert_failure_is_not_reported_as_duplicate(self, db, monkeypatch):
        """Only the one-per-user constraint maps to AlreadyReserved; the spot still comes back."""
        user = create_test_user(db)
        event = create_test_event(db, capacity=5)
        real_add = db.add

        def add_without_user(obj):
            if isinstance(obj, EventReservation):
                obj.user_id = None
            real_add(obj)

        monkeypatch.setattr(db, "add", add_without_user)
        with pytest.raises(IntegrityError):
            reservation_service.reserve(db, event.event_id, user.user_id)

        event = refetch(db, Event, event.event_id)
        assert event.available_spots == 5
        assert _reserved(db, event.event_id) == 0


class TestConcurrentReservations:
    """Real threads, one session each, racing for the same spot."""

    def test_one_spot_many_callers(self, db, db_engine):
        users = [create_test_user(db, name=f"Guest {i}", email=f"guest{i}@example.com") for i in range(8)]
        event = create_test_event(db, capacity=1)
        Session = sessionmaker(autoflush=False, expire_on_commit=False, bind=db_engine)
        barrier = threading.Barrier(len(users))
        outcomes = []

        def attempt(user_id):
            session = Session()
            try:
                barrier.wait()
                reservation_service.reserve(session, event.event_id, user_id)
                outcomes.append("reserved")
            except (ReservationConflict, SoldOut):
                outcomes.append("lost")
            except OperationalError:
                # SQLite reports a write-lock collision instead of a zero-row update
                outcomes.append("lost")
            finally:
                session.close()

        threads = [threading.Thread(target=attempt, args=(u.user_id,)) for u in users]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["lost"] * 7 + ["reserved"]
        event = refetch(db, Event, event.event_id)
        assert event.available_spots == 0
        assert _reserved(db, event.event_id) == 1
