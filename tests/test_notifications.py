"""Tests for notification persistence, live delivery and the poll side."""
import pytest

from citizenconnect.models.domain import Notification
from citizenconnect.services.errors import NotFound
from citizenconnect.services.notifications import (
    NotificationService,
    complaint_channel,
    role_channel,
    user_channel,
)
from citizenconnect.models.enums import UserRole
from tests.conftest import FailingPublisher


@pytest.fixture
def notifications(db_session, publisher, clock):
    return NotificationService(db_session, publisher, clock)


class TestChannels:

    def test_channel_names(self):
        assert user_channel(7) == "user:7"
        assert role_channel(UserRole.CITY_ADMIN) == "role:CITY_ADMIN"
        assert role_channel("MAYOR") == "role:MAYOR"
        assert complaint_channel(42) == "complaint:42"


class TestNotify:

    def test_notification_is_stored_then_pushed(self, db_session, notifications, people, publisher, clock):
        notification = notifications.notify(people.citizen.id, "Your complaint was received")

        stored = db_session.get(Notification, notification.id)
        assert stored.message == "Your complaint was received"
        assert stored.is_read is False
        assert stored.created_at == clock.now

        events = publisher.on(f"user:{people.citizen.id}")
        assert len(events) == 1
        event, payload = events[0]
        assert event == "new-notification"
        assert payload["notification"]["id"] == notification.id
        assert payload["notification"]["isRead"] is False
        assert payload["notification"]["userId"] == people.citizen.id

    def test_custom_event_name(self, notifications, people, publisher):
        notifications.notify(people.asha.id, "Assigned", event_name="complaint-assigned")
        assert publisher.on(f"user:{people.asha.id}")[0][0] == "complaint-assigned"

    def test_delivery_failure_is_suppressed(self, db_session, people, clock):
        service = NotificationService(db_session, FailingPublisher(), clock)

        notification = service.notify(people.citizen.id, "Still stored")

        assert notification is not None
        assert db_session.query(Notification).count() == 1

    def test_persistence_failure_is_suppressed(self, db_session, notifications, publisher):
        # user_id is NOT NULL
        assert notifications.notify(None, "Nobody to receive this") is None
        assert publisher.events == []
        assert db_session.query(Notification).count() == 0

    def test_notify_many_skips_failures(self, notifications, people):
        created = notifications.notify_many([people.city_admin.id, None, people.super_admin.id], "Heads up")
        assert [n.user_id for n in created] == [people.city_admin.id, people.super_admin.id]

    def test_broadcasts_are_not_persisted(self, db_session, notifications, publisher):
        notifications.broadcast_to_role(UserRole.SUPER_ADMIN, "new-complaint", {"message": "hi"})
        notifications.broadcast_to_complaint(3, "status-changed", {"newStatus": "Resolved"})

        assert publisher.on("role:SUPER_ADMIN") == [("new-complaint", {"message": "hi"})]
        assert publisher.on("complaint:3") == [("status-changed", {"newStatus": "Resolved"})]
        assert db_session.query(Notification).count() == 0


class TestPollSide:

    def test_unread_first_then_newest(self, notifications, people, clock):
        oldest = notifications.notify(people.citizen.id, "one")
        clock.advance(minutes=1)
        middle = notifications.notify(people.citizen.id, "two")
        clock.advance(minutes=1)
        newest = notifications.notify(people.citizen.id, "three")
        notifications.notify(people.other_citizen.id, "not yours")
        notifications.mark_read(newest.id, people.citizen.id)

        listed, unread = notifications.list_for_user(people.citizen.id)

        assert [n.id for n in listed] == [middle.id, oldest.id, newest.id]
        assert unread == 2

    def test_mark_read_of_someone_elses_notification(self, notifications, people):
        notification = notifications.notify(people.citizen.id, "private")
        with pytest.raises(NotFound):
            notifications.mark_read(notification.id, people.other_citizen.id)
        with pytest.raises(NotFound):
            notifications.mark_read(12345, people.citizen.id)

    def test_mark_all_read(self, notifications, people):
        for message in ("a", "b", "c"):
            notifications.notify(people.citizen.id, message)
        notifications.notify(people.other_citizen.id, "d")

        assert notifications.mark_all_read(people.citizen.id) == 3
        assert notifications.list_for_user(people.citizen.id)[1] == 0
        assert notifications.list_for_user(people.other_citizen.id)[1] == 1
        assert notifications.mark_all_read(people.citizen.id) == 0
