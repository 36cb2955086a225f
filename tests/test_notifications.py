"""Tests for the notification emitter and inbox routes."""
from fulfillment.models.notification import Notification, NotificationCategory
from fulfillment.services import notification_service
from tests.conftest import auth_headers, create_test_user


class TestEmit:
    def test_emit_commits_with_caller(self, db):
        user = create_test_user(db)
        note = notification_service.emit(db, user.user_id, "Hello", "World",
                                         category=NotificationCategory.points, action_url="/rewards")
        assert note is not None
        db.commit()
        db.rollback()
        stored = db.query(Notification).one()
        assert stored.title == "Hello"
        assert stored.read is False
        assert stored.category == NotificationCategory.points
        assert stored.action_url == "/rewards"

    def test_rolled_back_with_caller(self, db):
        user = create_test_user(db)
        notification_service.emit(db, user.user_id, "Hello", "World")
        db.rollback()
        assert db.query(Notification).count() == 0

    def test_no_recipient_is_skipped(self, db):
        assert notification_service.emit(db, None, "Hello", "World") is None
        assert db.query(Notification).count() == 0

    def test_insert_failure_is_swallowed(self, db):
        """A bad notification does not abort the caller's transaction."""
        user = create_test_user(db)
        assert notification_service.emit(db, user.user_id, None, "title is required") is None
        notification_service.emit(db, user.user_id, "Still works", "ok")
        db.commit()
        db.rollback()
        assert [n.title for n in db.query(Notification).all()] == ["Still works"]


class TestInboxRoutes:
    def test_list_only_own_notifications(self, client, db):
        me = create_test_user(db)
        other = create_test_user(db, name="Other", email="other@example.com")
        notification_service.emit(db, me.user_id, "Mine", "a")
        notification_service.emit(db, other.user_id, "Theirs", "b")
        db.commit()

        resp = client.get("/api/notifications/", headers=auth_headers(me.user_id))
        assert resp.status_code == 200
        assert [n["title"] for n in resp.json()] == ["Mine"]

    def test_mark_read_and_filter_unread(self, client, db):
        me = create_test_user(db)
        first = notification_service.emit(db, me.user_id, "First", "a")
        notification_service.emit(db, me.user_id, "Second", "b")
        db.commit()

        resp = client.post(f"/api/notifications/{first.notification_id}/read", headers=auth_headers(me.user_id))
        assert resp.status_code == 200
        assert resp.json()["read"] is True

        unread = client.get("/api/notifications/?unread_only=true", headers=auth_headers(me.user_id))
        assert [n["title"] for n in unread.json()] == ["Second"]

    def test_cannot_mark_someone_elses(self, client, db):
        me = create_test_user(db)
        other = create_test_user(db, name="Other", email="other@example.com")
        theirs = notification_service.emit(db, other.user_id, "Theirs", "b")
        db.commit()
        resp = client.post(f"/api/notifications/{theirs.notification_id}/read", headers=auth_headers(me.user_id))
        assert resp.status_code == 404
