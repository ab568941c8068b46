"""
Tests for complaint creation and status changes.

These tests prove:
- Creation resolves the department and auto-assigns to the least busy employee
- Every status change is validated, audited with dwell time, and notified
- Role and scope rules are enforced before anything is written
- A concurrent status change is detected and re-validated
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from citizenconnect.database import Base
from citizenconnect.models.audit import StatusUpdate
from citizenconnect.models.domain import Complaint, Notification
from citizenconnect.models.enums import ComplaintStatus
from citizenconnect.seed import seed_domain_categories
from citizenconnect.services import lifecycle as lifecycle_module
from citizenconnect.services.errors import Forbidden, InternalError, InvalidTransition, NotFound, ValidationError
from citizenconnect.services.lifecycle import ComplaintLifecycle
from citizenconnect.services.queries import ComplaintQuery
from tests.conftest import WATER, FailingPublisher, make_people


def history(db_session, complaint_id):
    return (
        db_session.query(StatusUpdate)
        .filter(StatusUpdate.complaint_id == complaint_id)
        .order_by(StatusUpdate.updated_at, StatusUpdate.id)
        .all()
    )


class TestCreateComplaint:

    def test_auto_assigned_complaint_starts_acknowledged(self, db_session, file_complaint, people, clock):
        complaint = file_complaint()

        assert complaint.status == ComplaintStatus.ACKNOWLEDGED
        assert complaint.department == WATER
        assert complaint.assigned_to_id == people.asha.id
        assert complaint.assigned_by_id is None
        assert complaint.assigned_at == clock.now
        assert complaint.acknowledged_at == clock.now
        assert complaint.user.id == people.citizen.id
        assert complaint.assigned_to.name == "Asha Employee"

        rows = history(db_session, complaint.id)
        assert len(rows) == 1
        assert rows[0].status == ComplaintStatus.ACKNOWLEDGED
        assert rows[0].remarks == "Auto-assigned by system"
        assert rows[0].updated_by_id is None
        assert rows[0].time_spent_in_previous_status is None

    def test_unmapped_category_stays_raised_without_history(self, db_session, file_complaint):
        """
        INVARIANT: an unassigned Raised complaint has no StatusUpdate rows.
        """
        complaint = file_complaint(domain="Water", category="Broken Fountain")

        assert complaint.status == ComplaintStatus.RAISED
        assert complaint.department is None
        assert complaint.assigned_to_id is None
        assert complaint.acknowledged_at is None
        assert history(db_session, complaint.id) == []

    def test_department_without_employees_stays_raised(self, db_session, file_complaint):
        complaint = file_complaint(domain="Health", category="Stray Dog Menace")

        assert complaint.status == ComplaintStatus.RAISED
        assert complaint.department == "Health Department"
        assert complaint.assigned_to_id is None
        assert history(db_session, complaint.id) == []

    def test_least_loaded_employee_wins_with_lowest_id_tie_break(self, file_complaint, people):
        assignees = [file_complaint().assigned_to_id for _ in range(4)]

        # Asha, Ravi and Meera (department admin) all start at zero load
        assert assignees == [people.asha.id, people.ravi.id, people.water_admin.id, people.asha.id]

    def test_finished_complaints_do_not_count_as_load(self, lifecycle, file_complaint, people):
        first = file_complaint()
        file_complaint()
        file_complaint()
        for status in ("InProgress", "Resolved"):
            lifecycle.update_status(first.id, status, None, people.city_admin)

        # Asha's only complaint is Resolved, Ravi and Meera each hold one active
        assert file_complaint().assigned_to_id == people.asha.id

    def test_missing_fields_are_listed(self, lifecycle, people, db_session):
        with pytest.raises(ValidationError) as exc_info:
            lifecycle.create_complaint(people.citizen, title="   ", description="Dark street", domain="Electrical")

        assert exc_info.value.fields == ["title", "category"]
        assert exc_info.value.to_dict()["fields"] == ["title", "category"]
        assert db_session.query(Complaint).count() == 0

    @pytest.mark.parametrize("latitude,longitude", [(90, 180), (-90, -180), (0, 0), (12.97, 77.59)])
    def test_coordinates_on_the_boundary_are_accepted(self, file_complaint, latitude, longitude):
        complaint = file_complaint(latitude=latitude, longitude=longitude)
        assert complaint.latitude == latitude
        assert complaint.longitude == longitude

    @pytest.mark.parametrize("latitude,longitude,field", [
        (90.0001, 0, "latitude"),
        (-90.0001, 0, "latitude"),
        (0, 180.0001, "longitude"),
        (0, -180.0001, "longitude"),
        (-91, 0, "latitude"),
    ])
    def test_coordinates_out_of_range_are_rejected(self, file_complaint, db_session, latitude, longitude, field):
        with pytest.raises(ValidationError) as exc_info:
            file_complaint(latitude=latitude, longitude=longitude)
        assert exc_info.value.fields == [field]
        assert db_session.query(Complaint).count() == 0

    def test_admins_and_assignee_are_notified(self, db_session, file_complaint, people, publisher):
        complaint = file_complaint()

        for channel in ("role:CITY_ADMIN", "role:SUPER_ADMIN"):
            events = publisher.on(channel)
            assert len(events) == 1
            event, payload = events[0]
            assert event == "new-complaint"
            assert payload["complaint"]["id"] == complaint.id
            assert payload["complaint"]["assignedToId"] == people.asha.id

        recipients = {n.user_id: n for n in db_session.query(Notification).all()}
        assert set(recipients) == {people.city_admin.id, people.super_admin.id, people.asha.id}
        assert recipients[people.city_admin.id].message == (
            f'New complaint #{complaint.id} ("Leaking main on 5th Cross") raised by a citizen.'
        )
        assert recipients[people.asha.id].message == (
            'You have been auto-assigned a new complaint: "Leaking main on 5th Cross"'
        )
        assert [event for event, _ in publisher.on(f"user:{people.asha.id}")] == ["complaint-assigned"]
        assert [event for event, _ in publisher.on(f"user:{people.city_admin.id}")] == ["new-notification"]

    def test_unassigned_complaint_only_notifies_admins(self, db_session, file_complaint, people):
        file_complaint(domain="Roads", category="Pothole Repair")

        recipients = {n.user_id for n in db_session.query(Notification).all()}
        assert recipients == {people.city_admin.id, people.super_admin.id}


class TestUpdateStatus:

    def test_status_change_records_dwell_time(self, db_session, lifecycle, file_complaint, people, clock):
        complaint = file_complaint()
        clock.advance(minutes=65)

        updated = lifecycle.update_status(complaint.id, "InProgress", None, people.city_admin)

        assert updated.status == ComplaintStatus.IN_PROGRESS
        assert updated.in_progress_at == clock.now
        rows = history(db_session, complaint.id)
        assert [r.status for r in rows] == [ComplaintStatus.ACKNOWLEDGED, ComplaintStatus.IN_PROGRESS]
        assert rows[1].time_spent_in_previous_status == 65
        assert rows[1].updated_by_id == people.city_admin.id
        assert rows[1].remarks == "InProgress updated by CITY_ADMIN"

    def test_dwell_time_is_floored(self, db_session, lifecycle, file_complaint, people, clock):
        complaint = file_complaint()
        clock.advance(minutes=4, seconds=59)

        lifecycle.update_status(complaint.id, "InProgress", "Crew dispatched", people.city_admin)

        latest = history(db_session, complaint.id)[-1]
        assert latest.time_spent_in_previous_status == 4
        assert latest.remarks == "Crew dispatched"

    def test_illegal_transition_is_refused_without_writes(self, db_session, lifecycle, file_complaint, people):
        complaint = file_complaint()

        with pytest.raises(InvalidTransition) as exc_info:
            lifecycle.update_status(complaint.id, "Closed", None, people.city_admin)

        assert exc_info.value.current_status == "Acknowledged"
        assert exc_info.value.allowed_next_statuses == ["InProgress", "Raised"]
        db_session.expire_all()
        assert db_session.get(Complaint, complaint.id).status == ComplaintStatus.ACKNOWLEDGED
        assert len(history(db_session, complaint.id)) == 1

    def test_closed_complaint_cannot_move(self, lifecycle, file_complaint, people):
        complaint = file_complaint()
        for status in ("InProgress", "Resolved", "Closed"):
            lifecycle.update_status(complaint.id, status, None, people.mayor)

        for status in ComplaintStatus:
            with pytest.raises(InvalidTransition) as exc_info:
                lifecycle.update_status(complaint.id, status.value, None, people.city_admin)
            assert exc_info.value.message == "Cannot change status of a closed complaint"
            assert exc_info.value.allowed_next_statuses == []

    def test_lifecycle_timestamps_are_set_once(self, lifecycle, file_complaint, people, clock):
        complaint = file_complaint()
        clock.advance(hours=1)
        first_entry = lifecycle.update_status(complaint.id, "InProgress", None, people.city_admin).in_progress_at
        clock.advance(hours=1)
        lifecycle.update_status(complaint.id, "Acknowledged", "Needs a second survey", people.city_admin)
        clock.advance(hours=1)
        updated = lifecycle.update_status(complaint.id, "InProgress", None, people.city_admin)

        assert updated.in_progress_at == first_entry
        assert updated.updated_at == clock.now

    def test_unknown_status_value(self, lifecycle, file_complaint, people):
        complaint = file_complaint()
        with pytest.raises(InvalidTransition) as exc_info:
            lifecycle.update_status(complaint.id, "Escalated", None, people.city_admin)
        assert "Invalid status: Escalated" in exc_info.value.message

    def test_missing_complaint(self, lifecycle, people):
        with pytest.raises(NotFound):
            lifecycle.update_status(999, "Acknowledged", None, people.city_admin)

    def test_creator_and_watchers_are_notified(self, db_session, lifecycle, file_complaint, people, publisher):
        complaint = file_complaint()
        lifecycle.update_status(complaint.id, "InProgress", "Crew on site", people.city_admin)

        notification = (
            db_session.query(Notification)
            .filter(Notification.user_id == people.citizen.id)
            .one()
        )
        assert notification.message == 'Your complaint status has been updated to "InProgress"'
        assert notification.complaint_id == complaint.id

        events = publisher.on(f"complaint:{complaint.id}")
        assert len(events) == 1
        event, payload = events[0]
        assert event == "status-changed"
        assert payload["newStatus"] == "InProgress"
        assert payload["remarks"] == "Crew on site"
        assert payload["updatedBy"] == people.city_admin.id
        assert [e for e, _ in publisher.on(f"user:{people.citizen.id}")] == ["complaint-status-updated"]

    def test_publisher_failure_does_not_fail_the_change(self, db_session, people, catalog, clock):
        lifecycle = ComplaintLifecycle(db_session, FailingPublisher(), clock=clock, max_retries=0)
        complaint = lifecycle.create_complaint(
            people.citizen, title="No water", description="Taps dry", domain="Water", category="No Water Supply"
        )

        updated = lifecycle.update_status(complaint.id, "InProgress", None, people.city_admin)

        assert updated.status == ComplaintStatus.IN_PROGRESS
        # Notifications are still persisted for polling
        assert db_session.query(Notification).filter(Notification.user_id == people.citizen.id).count() == 1


class TestStatusChangeAuthorization:

    def test_citizen_cannot_change_status(self, lifecycle, file_complaint, people):
        complaint = file_complaint()
        with pytest.raises(Forbidden):
            lifecycle.update_status(complaint.id, "InProgress", None, people.citizen)

    def test_employee_cannot_change_status(self, lifecycle, file_complaint, people):
        complaint = file_complaint()
        with pytest.raises(Forbidden):
            lifecycle.update_status(complaint.id, "InProgress", None, people.asha)

    def test_department_admin_limited_to_own_department(self, lifecycle, file_complaint, people):
        water = file_complaint()
        electrical = file_complaint(domain="Electrical", category="Street Light Not Working")

        lifecycle.update_status(water.id, "InProgress", None, people.water_admin)
        with pytest.raises(Forbidden):
            lifecycle.update_status(electrical.id, "InProgress", None, people.water_admin)

    def test_ward_officer_limited_to_own_ward(self, lifecycle, file_complaint, people):
        in_ward = file_complaint(ward="Ward 12")
        elsewhere = file_complaint(ward="Ward 3")

        assert lifecycle.update_status(in_ward.id, "InProgress", None, people.ward_officer).status == (
            ComplaintStatus.IN_PROGRESS
        )
        with pytest.raises(Forbidden):
            lifecycle.update_status(elsewhere.id, "InProgress", None, people.ward_officer)

    def test_refused_change_writes_nothing(self, db_session, lifecycle, file_complaint, people):
        complaint = file_complaint(domain="Electrical", category="Street Light Not Working")
        with pytest.raises(Forbidden):
            lifecycle.update_status(complaint.id, "InProgress", None, people.water_admin)
        assert len(history(db_session, complaint.id)) == 1


class TestCitizenEdits:

    def test_owner_can_edit_raised_complaint(self, lifecycle, file_complaint, people):
        complaint = file_complaint(domain="Roads", category="Unlisted")
        assert complaint.department is None

        edited = lifecycle.edit_complaint(
            complaint.id, people.citizen, title="  Deep pothole  ", category="Pothole Repair"
        )

        assert edited.title == "Deep pothole"
        assert edited.department == "Public Works Department"
        assert edited.status == ComplaintStatus.RAISED

    def test_only_owner_can_edit(self, lifecycle, file_complaint, people):
        complaint = file_complaint(domain="Roads", category="Pothole Repair")
        with pytest.raises(Forbidden):
            lifecycle.edit_complaint(complaint.id, people.other_citizen, title="Mine now")

    def test_cannot_edit_once_under_review(self, lifecycle, file_complaint, people):
        complaint = file_complaint()
        assert complaint.status == ComplaintStatus.ACKNOWLEDGED
        with pytest.raises(Forbidden) as exc_info:
            lifecycle.edit_complaint(complaint.id, people.citizen, title="Updated")
        assert "already under review" in exc_info.value.message

    def test_blank_and_unknown_fields_are_rejected(self, lifecycle, file_complaint, people):
        complaint = file_complaint(domain="Roads", category="Pothole Repair")
        with pytest.raises(ValidationError):
            lifecycle.edit_complaint(complaint.id, people.citizen, title=" ")
        with pytest.raises(ValidationError):
            lifecycle.edit_complaint(complaint.id, people.citizen, status="Closed")

    def test_delete_keeps_notifications_detached(self, db_session, lifecycle, file_complaint, people):
        complaint = file_complaint(domain="Roads", category="Pothole Repair")
        complaint_id = complaint.id

        lifecycle.delete_complaint(complaint_id, people.citizen)

        assert db_session.get(Complaint, complaint_id) is None
        notifications = db_session.query(Notification).all()
        assert len(notifications) == 2
        assert all(n.complaint_id is None for n in notifications)

    def test_cannot_delete_others_or_reviewed_complaints(self, lifecycle, file_complaint, people):
        raised = file_complaint(domain="Roads", category="Pothole Repair")
        acknowledged = file_complaint()

        with pytest.raises(Forbidden):
            lifecycle.delete_complaint(raised.id, people.other_citizen)
        with pytest.raises(Forbidden):
            lifecycle.delete_complaint(acknowledged.id, people.citizen)

    def test_complaint_sent_back_to_raised_keeps_its_history(self, db_session, lifecycle, file_complaint, people):
        complaint = file_complaint()
        lifecycle.update_status(complaint.id, "Raised", "Wrong department", people.city_admin)
        assert lifecycle.get_complaint(complaint.id).status == ComplaintStatus.RAISED

        with pytest.raises(Forbidden) as exc_info:
            lifecycle.delete_complaint(complaint.id, people.citizen)

        assert "status history" in exc_info.value.message
        assert db_session.get(Complaint, complaint.id) is not None
        assert db_session.query(StatusUpdate).filter(StatusUpdate.complaint_id == complaint.id).count() == 2


class TestReads:

    def test_list_is_scoped_to_the_actor(self, lifecycle, file_complaint, people):
        mine = file_complaint()
        file_complaint(citizen=people.other_citizen)
        file_complaint(domain="Electrical", category="Street Light Not Working")

        citizen_view = lifecycle.list_complaints(ComplaintQuery.for_actor(people.citizen))
        assert {c.id for c in citizen_view} == {mine.id, mine.id + 2}

        water_view = lifecycle.list_complaints(ComplaintQuery.for_actor(people.water_admin))
        assert all(c.department == WATER for c in water_view)
        assert len(water_view) == 2

        assert len(lifecycle.list_complaints(ComplaintQuery.for_actor(people.mayor))) == 3

    def test_other_citizens_complaint_is_not_found(self, lifecycle, file_complaint, people):
        complaint = file_complaint()
        assert lifecycle.get_complaint(complaint.id, people.citizen).id == complaint.id
        with pytest.raises(NotFound):
            lifecycle.get_complaint(complaint.id, people.other_citizen)


class TestConcurrentStatusChanges:
    """
    Two officials move the same complaint at once. The slower one must be
    validated against the faster one's committed status.
    """

    @pytest.fixture
    def two_sessions(self, tmp_path, clock):
        engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
        Base.metadata.create_all(engine)
        Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        first, second = Session(), Session()
        people = make_people(first, clock)
        seed_domain_categories(first)
        yield first, second, people
        first.close()
        second.close()
        engine.dispose()

    def _interleave(self, monkeypatch, second, complaint_id, status, actor, clock):
        """Let the other session commit right after this one reads the complaint."""
        real_lock = lifecycle_module.lock_complaint
        calls = []

        def lock_then_race(db, cid):
            complaint = real_lock(db, cid)
            if db is second:
                return complaint
            calls.append(cid)
            if len(calls) == 1:
                ComplaintLifecycle(second, clock=clock, max_retries=0).update_status(
                    complaint_id, status, "Faster official", actor
                )
            return complaint

        monkeypatch.setattr(lifecycle_module, "lock_complaint", lock_then_race)
        return calls

    def test_stale_write_is_revalidated(self, monkeypatch, two_sessions, clock):
        first, second, people = two_sessions
        lifecycle = ComplaintLifecycle(first, clock=clock, max_retries=3)
        complaint = lifecycle.create_complaint(
            people.citizen, title="Leak", description="Pipe burst", domain="Water", category="Pipe Leakage"
        )
        calls = self._interleave(monkeypatch, second, complaint.id, "InProgress", people.city_admin, clock)

        with pytest.raises(InvalidTransition) as exc_info:
            lifecycle.update_status(complaint.id, "InProgress", None, people.water_admin)

        # Retried once, then refused against the committed InProgress status
        assert len(calls) == 2
        assert exc_info.value.current_status == "InProgress"
        rows = history(first, complaint.id)
        assert [r.status for r in rows] == [ComplaintStatus.ACKNOWLEDGED, ComplaintStatus.IN_PROGRESS]
        assert rows[1].remarks == "Faster official"

    def test_gives_up_after_retries(self, monkeypatch, two_sessions, clock):
        first, second, people = two_sessions
        lifecycle = ComplaintLifecycle(first, clock=clock, max_retries=0)
        complaint = lifecycle.create_complaint(
            people.citizen, title="Leak", description="Pipe burst", domain="Water", category="Pipe Leakage"
        )
        self._interleave(monkeypatch, second, complaint.id, "InProgress", people.city_admin, clock)

        with pytest.raises(InternalError):
            lifecycle.update_status(complaint.id, "Raised", None, people.city_admin)

        assert len(history(first, complaint.id)) == 2
