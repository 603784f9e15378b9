"""
Real SQLite integration test for the Scheduling Engine.

This test creates a real SQLite database, creates tables, and drives
SchedulingOperations end to end: event lifecycle, conflicts, recurrence,
attendees, visibility, tenant isolation and post-commit side effects.
"""

import sys
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from services.scheduling.core.errors import (
    AttendeeNotFoundError,
    DuplicateError,
    EventNotFoundError,
    ForbiddenError,
    InvalidTimeRangeError,
    InvalidTransitionError,
    SchedulingConflictError,
    ValidationError,
)
from services.scheduling.core.lifecycle import STRICT_TRANSITIONS, table_policy
from services.scheduling.core.outbox import OutboxDispatcher
from services.scheduling.core.utils import utcnow
from services.scheduling.database.schema import (
    AttendeeResponseStatus,
    EventAttendee,
    EventStatus,
    EventType,
    ScheduleEvent,
)

from conftest import FailingRewardLedger


def event_payload(start="2025-03-10T10:00:00Z", end="2025-03-10T11:00:00Z", **overrides):
    payload = {
        "title": "Pipeline review",
        "start_at": start,
        "end_at": end,
    }
    payload.update(overrides)
    return payload


def count_rows(session_manager, model, *conditions):
    with session_manager.with_session() as session:
        return session.execute(
            select(func.count()).select_from(model).where(*conditions)
        ).scalar_one()


# ============================================================================
# EVENT LIFECYCLE
# ============================================================================


def test_create_event_defaults_and_side_effects(ops, reward_ledger, audit_log):
    """Create fills defaults, credits the creator and records an audit entry."""
    event = ops.create_event(event_payload(description="Quarterly numbers"))

    assert len(event.id) == 32
    assert event.tenant_id == "tenant-1"
    assert event.created_by == "alice"
    assert event.organizer_name == "Alice"
    assert event.status == EventStatus.scheduled
    assert event.event_type == EventType.meeting
    assert event.reminder_minutes == [15]
    assert event.start_at == datetime(2025, 3, 10, 10, 0)
    assert event.end_at == datetime(2025, 3, 10, 11, 0)

    assert len(reward_ledger.credits) == 1
    credit = reward_ledger.credits[0]
    assert credit["reason"] == "event_created"
    assert credit["amount"] == 10
    assert credit["coins"] == 5
    assert credit["entity_id"] == event.id

    assert audit_log.actions() == ["create"]
    assert audit_log.records[0]["entity_type"] == "schedule_event"

    print("✓ Event created with defaults and side effects")


def test_row_timestamps_default_to_naive_utc(ops, session_manager):
    """Event and ledger rows are stamped with the current UTC time, without tzinfo."""
    from crm_platform.db.schema import RewardLedgerEntry
    from services.scheduling.core.outbox import SqlRewardLedger

    before = utcnow().replace(microsecond=0)
    event = ops.create_event(event_payload())
    SqlRewardLedger(session_manager).credit(
        "alice", "tenant-1", 10, "event_created", coins=5, entity_id=event.id
    )
    after = utcnow()

    assert event.created_at.tzinfo is None
    assert before <= event.created_at <= after
    assert before <= event.updated_at <= after

    with session_manager.with_session() as session:
        entry = session.execute(select(RewardLedgerEntry)).scalar_one()
        assert entry.created_at.tzinfo is None
        assert before <= entry.created_at <= after


def test_create_non_meeting_reward_amount(ops, reward_ledger):
    """Non-meeting events earn the smaller creation reward."""
    ops.create_event(event_payload(event_type="call"))
    assert reward_ledger.credits[0]["amount"] == 8
    assert reward_ledger.credits[0]["coins"] == 4


def test_create_rejects_end_before_start(ops, session_manager, reward_ledger):
    """start=14:00, end=13:00 is rejected before anything is written."""
    with pytest.raises(InvalidTimeRangeError):
        ops.create_event(
            event_payload(start="2025-03-10T14:00:00Z", end="2025-03-10T13:00:00Z")
        )

    assert count_rows(session_manager, ScheduleEvent) == 0
    assert reward_ledger.credits == []


def test_create_rejects_equal_start_and_end(ops):
    with pytest.raises(ValidationError):
        ops.create_event(
            event_payload(start="2025-03-10T14:00:00Z", end="2025-03-10T14:00:00Z")
        )


def test_create_validates_payload(ops):
    """Short titles and recurring events without a frequency are invalid."""
    with pytest.raises(ValidationError) as exc_info:
        ops.create_event(event_payload(title="x"))
    assert exc_info.value.field == "title"

    with pytest.raises(ValidationError) as exc_info:
        ops.create_event(event_payload(recurring=True))
    assert exc_info.value.field == "recurring_frequency"


def test_get_event_includes_attendees(ops):
    created = ops.create_event(
        event_payload(attendees=[{"user_id": "bob"}, {"email": "carol@example.com"}])
    )
    event = ops.get_event(created.id)

    assert event.id == created.id
    assert len(event.attendees) == 2
    assert {a.user_id for a in event.attendees} == {"bob", None}
    assert all(a.response_status == AttendeeResponseStatus.invited for a in event.attendees)


def test_update_applies_only_present_fields(ops, audit_log):
    """A patch touches the fields it names and leaves the rest alone."""
    event = ops.create_event(
        event_payload(description="Original", location="Room 1")
    )

    updated = ops.update_event(event.id, {"location": None, "priority": "high"})

    assert updated.location is None
    assert updated.priority.value == "high"
    assert updated.description == "Original"
    assert updated.title == "Pipeline review"
    assert audit_log.actions() == ["create", "update"]


def test_update_rejects_inverted_window(ops):
    event = ops.create_event(event_payload())

    with pytest.raises(InvalidTimeRangeError):
        ops.update_event(event.id, {"end_at": "2025-03-10T09:00:00Z"})

    unchanged = ops.get_event(event.id)
    assert unchanged.end_at == datetime(2025, 3, 10, 11, 0)


def test_update_rejects_empty_patch(ops):
    event = ops.create_event(event_payload())
    with pytest.raises(ValidationError):
        ops.update_event(event.id, {})


def test_update_rejects_clearing_required_field(ops):
    event = ops.create_event(event_payload())
    with pytest.raises(ValidationError) as exc_info:
        ops.update_event(event.id, {"title": None})
    assert exc_info.value.field == "title"


def test_only_creator_can_mutate(ops, make_ops):
    event = ops.create_event(event_payload(attendees=[{"user_id": "bob"}]))
    bob = make_ops(user_id="bob")

    with pytest.raises(ForbiddenError):
        bob.update_event(event.id, {"title": "Hijacked"})
    with pytest.raises(ForbiddenError):
        bob.delete_event(event.id)
    with pytest.raises(ForbiddenError):
        bob.update_status(event.id, "cancelled")


def test_delete_event_is_soft_and_hides_event(ops, session_manager, audit_log):
    event = ops.create_event(event_payload(attendees=[{"user_id": "bob"}]))

    ops.delete_event(event.id)

    with pytest.raises(EventNotFoundError):
        ops.get_event(event.id)
    assert count_rows(session_manager, ScheduleEvent) == 1
    assert count_rows(
        session_manager, EventAttendee, EventAttendee.deleted_at.is_not(None)
    ) == 1
    assert audit_log.actions()[-1] == "delete"


def test_tags_are_normalized(ops):
    event = ops.create_event(event_payload(tags=["sales"]))

    tagged = ops.add_tags(event.id, ["b", " a ", "sales", ""])
    assert tagged.tags == ["a", "b", "sales"]

    untagged = ops.remove_tags(event.id, ["a", "missing"])
    assert untagged.tags == ["b", "sales"]


# ============================================================================
# TENANT ISOLATION
# ============================================================================


def test_events_are_invisible_across_tenants(ops, make_ops):
    """An id from another tenant behaves exactly like an unknown id."""
    event = ops.create_event(event_payload())
    other = make_ops(tenant_id="tenant-2", user_id="alice")

    with pytest.raises(EventNotFoundError):
        other.get_event(event.id)
    with pytest.raises(EventNotFoundError):
        other.update_event(event.id, {"title": "Other tenant"})
    with pytest.raises(EventNotFoundError):
        other.delete_event(event.id)

    listing = other.list_events()
    assert listing["events"] == []
    assert listing["pagination"]["total"] == 0


def test_conflicts_do_not_cross_tenants(ops, make_ops):
    ops.create_event(event_payload())
    other = make_ops(tenant_id="tenant-2", user_id="alice")
    event = other.create_event(event_payload(), check_conflicts=True)
    assert event.tenant_id == "tenant-2"


# ============================================================================
# CONFLICT DETECTION
# ============================================================================


def test_touching_intervals_do_not_conflict(ops):
    """[10:00, 11:00) and [11:00, 12:00) share a participant but do not overlap."""
    ops.create_event(event_payload())
    second = ops.create_event(
        event_payload(start="2025-03-10T11:00:00Z", end="2025-03-10T12:00:00Z"),
        check_conflicts=True,
    )
    assert second.id is not None


def test_overlapping_intervals_conflict(ops, session_manager):
    """[10:00, 11:00) and [10:30, 11:30) sharing a participant conflict."""
    first = ops.create_event(event_payload())

    with pytest.raises(SchedulingConflictError) as exc_info:
        ops.create_event(
            event_payload(start="2025-03-10T10:30:00Z", end="2025-03-10T11:30:00Z"),
            check_conflicts=True,
        )

    conflicts = exc_info.value.conflicts
    assert len(conflicts) == 1
    assert conflicts[0]["id"] == first.id
    assert conflicts[0]["conflicted_users"] == ["alice"]
    assert conflicts[0]["organizer_name"] == "Alice"
    assert count_rows(session_manager, ScheduleEvent) == 1

    # The caller may override an advisory conflict
    forced = ops.create_event(
        event_payload(start="2025-03-10T10:30:00Z", end="2025-03-10T11:30:00Z"),
        check_conflicts=True,
        ignore_conflicts=True,
    )
    assert forced.id != first.id
    assert count_rows(session_manager, ScheduleEvent) == 2


def test_overlap_is_allowed_unless_checking_is_requested(ops, session_manager):
    """Conflict checking is opt-in; overlapping events are created by default."""
    first = ops.create_event(event_payload())
    second = ops.create_event(
        event_payload(start="2025-03-10T10:30:00Z", end="2025-03-10T11:30:00Z")
    )
    assert second.id != first.id

    moved = ops.update_event(
        second.id,
        {"start_at": "2025-03-10T10:15:00Z", "end_at": "2025-03-10T11:15:00Z"},
    )
    assert moved.start_at == datetime(2025, 3, 10, 10, 15)
    assert count_rows(session_manager, ScheduleEvent) == 2


def test_conflict_through_attendance(ops, make_ops):
    """An attendee of an existing event is busy for the attendee's own events."""
    meeting = ops.create_event(event_payload(attendees=[{"user_id": "bob"}]))
    bob = make_ops(user_id="bob")

    with pytest.raises(SchedulingConflictError) as exc_info:
        bob.create_event(
            event_payload(start="2025-03-10T10:30:00Z", end="2025-03-10T11:30:00Z"),
            check_conflicts=True,
        )
    assert exc_info.value.conflicts[0]["id"] == meeting.id
    assert exc_info.value.conflicts[0]["conflicted_users"] == ["bob"]

    # Unrelated participants are free
    assert ops.find_conflicts(
        "2025-03-10T10:30:00Z", "2025-03-10T11:30:00Z", ["carol"]
    ) == []


def test_cancelled_and_completed_events_do_not_block(ops):
    cancelled = ops.create_event(event_payload())
    ops.update_status(cancelled.id, "cancelled")
    ops.create_event(event_payload(), check_conflicts=True)

    assert ops.find_conflicts(
        "2025-03-10T10:00:00Z", "2025-03-10T11:00:00Z", ["alice"]
    )


def test_update_excludes_event_from_its_own_conflicts(ops):
    event = ops.create_event(event_payload())

    moved = ops.update_event(
        event.id,
        {"start_at": "2025-03-10T10:15:00Z", "end_at": "2025-03-10T11:15:00Z"},
        check_conflicts=True,
    )
    assert moved.start_at == datetime(2025, 3, 10, 10, 15)

    other = ops.create_event(
        event_payload(start="2025-03-10T13:00:00Z", end="2025-03-10T14:00:00Z")
    )
    with pytest.raises(SchedulingConflictError) as exc_info:
        ops.update_event(
            event.id,
            {"start_at": "2025-03-10T13:30:00Z", "end_at": "2025-03-10T14:30:00Z"},
            check_conflicts=True,
        )
    assert [c["id"] for c in exc_info.value.conflicts] == [other.id]


def test_instant_events_conflict_only_inside_window(ops):
    """An event without an end is an instant p, busy for [s, e) iff s <= p < e."""
    ops.create_event(event_payload(start="2025-03-10T10:00:00Z", end=None))

    assert ops.find_conflicts("2025-03-10T09:00:00Z", "2025-03-10T10:00:00Z", ["alice"]) == []
    assert len(ops.find_conflicts("2025-03-10T10:00:00Z", "2025-03-10T10:30:00Z", ["alice"])) == 1
    assert len(ops.find_conflicts("2025-03-10T10:00:00Z", None, ["alice"])) == 1


# ============================================================================
# RECURRENCE
# ============================================================================


def test_daily_recurrence_stops_before_until(ops, make_ops):
    """Daily 09:00-10:00 until +3 days yields children on day+1 and day+2."""
    base = ops.create_event(
        event_payload(
            start="2025-03-10T09:00:00Z",
            end="2025-03-10T10:00:00Z",
            recurring=True,
            recurring_frequency="daily",
            recurring_until="2025-03-13T09:00:00Z",
        )
    )

    children = ops.list_children(base.id)
    assert [c.start_at for c in children] == [
        datetime(2025, 3, 11, 9, 0),
        datetime(2025, 3, 12, 9, 0),
    ]
    for child in children:
        assert child.parent_event_id == base.id
        assert child.recurring is False
        assert child.end_at - child.start_at == timedelta(hours=1)
        assert child.title == base.title
        assert child.created_by == "alice"

    print(f"✓ Generated {len(children)} daily children")


def test_recurrence_respects_count(ops):
    base = ops.create_event(
        event_payload(
            recurring=True,
            recurring_frequency="weekly",
            recurring_count=4,
        )
    )
    children = ops.list_children(base.id)
    assert len(children) == 4
    assert children[-1].start_at == datetime(2025, 4, 7, 10, 0)


def test_recurrence_is_capped_at_fifty(ops):
    uncapped = ops.create_event(
        event_payload(recurring=True, recurring_frequency="daily", recurring_count=80,
                      recurring_until="2027-01-01T00:00:00Z")
    )
    assert len(ops.list_children(uncapped.id)) == 50

    no_bounds = ops.create_event(
        event_payload(
            start="2026-06-01T10:00:00Z",
            end="2026-06-01T11:00:00Z",
            recurring=True,
            recurring_frequency="daily",
        ),
        ignore_conflicts=True,
    )
    assert len(ops.list_children(no_bounds.id)) == 50


def test_recurrence_failure_rolls_back_everything(
    ops, session_manager, reward_ledger, audit_log, monkeypatch
):
    """A failure after some children were written leaves no rows and no side effects."""
    import services.scheduling.core.lifecycle as lifecycle
    from services.scheduling.core.recurrence import expand_recurrence

    def failing_expand(store, base):
        expand_recurrence(store, base)
        raise RuntimeError("storage went away")

    monkeypatch.setattr(lifecycle, "expand_recurrence", failing_expand)

    with pytest.raises(RuntimeError):
        ops.create_event(
            event_payload(
                recurring=True,
                recurring_frequency="daily",
                recurring_count=3,
                attendees=[{"user_id": "bob"}],
            )
        )

    assert count_rows(session_manager, ScheduleEvent) == 0
    assert count_rows(session_manager, EventAttendee) == 0
    assert reward_ledger.credits == []
    assert audit_log.records == []


# ============================================================================
# ATTENDEES
# ============================================================================


def test_duplicate_attendee_is_rejected(ops, session_manager):
    event = ops.create_event(event_payload())

    ops.add_attendee(event.id, {"user_id": "bob"})
    with pytest.raises(DuplicateError):
        ops.add_attendee(event.id, {"user_id": "bob"})

    ops.add_attendee(event.id, {"email": "Carol@example.com"})
    with pytest.raises(DuplicateError):
        ops.add_attendee(event.id, {"email": "carol@example.com"})

    assert len(ops.list_attendees(event.id)) == 2
    assert count_rows(session_manager, EventAttendee) == 2


def test_creator_cannot_be_attendee(ops):
    event = ops.create_event(event_payload())
    with pytest.raises(ValidationError):
        ops.add_attendee(event.id, {"user_id": "alice"})

    # On create the creator is skipped instead of rejected
    other = ops.create_event(
        event_payload(
            start="2025-03-11T10:00:00Z",
            end="2025-03-11T11:00:00Z",
            attendees=[{"user_id": "alice"}, {"user_id": "bob"}],
        )
    )
    assert [a.user_id for a in other.attendees] == ["bob"]


def test_attendee_requires_identity(ops):
    event = ops.create_event(event_payload())
    with pytest.raises(ValidationError):
        ops.add_attendee(event.id, {"name": "Nobody"})


def test_removed_attendee_can_be_added_again(ops):
    event = ops.create_event(event_payload())
    attendee = ops.add_attendee(event.id, {"user_id": "bob"})

    ops.remove_attendee(event.id, attendee.id)
    assert ops.list_attendees(event.id) == []

    again = ops.add_attendee(event.id, {"user_id": "bob"})
    assert again.id != attendee.id

    with pytest.raises(AttendeeNotFoundError):
        ops.remove_attendee(event.id, attendee.id)


def test_attendee_response(ops, make_ops):
    """The attendee (or the owner) sets the response; others may not."""
    event = ops.create_event(event_payload(attendees=[{"user_id": "bob"}]))
    attendee_id = event.attendees[0].id

    bob = make_ops(user_id="bob")
    accepted = bob.update_attendee_response(event.id, attendee_id, "accepted")
    assert accepted.response_status == AttendeeResponseStatus.accepted
    assert accepted.responded_at is not None

    # Any state is reachable from any other
    maybe = ops.update_attendee_response(event.id, attendee_id, "maybe")
    assert maybe.response_status == AttendeeResponseStatus.maybe

    carol = make_ops(user_id="carol")
    with pytest.raises(ForbiddenError):
        carol.update_attendee_response(event.id, attendee_id, "declined")

    with pytest.raises(ValidationError):
        bob.update_attendee_response(event.id, attendee_id, "enthusiastic")


def test_replace_attendees_is_a_hard_reset(ops, make_ops, session_manager):
    """[bob, carol] -> [carol, dave]: old rows soft-deleted, carol's response reset."""
    event = ops.create_event(
        event_payload(attendees=[{"user_id": "bob"}, {"user_id": "carol"}])
    )
    carol_row = next(a for a in event.attendees if a.user_id == "carol")
    make_ops(user_id="carol").update_attendee_response(event.id, carol_row.id, "accepted")

    updated = ops.update_event(
        event.id, {"attendees": [{"user_id": "carol"}, {"user_id": "dave"}]}
    )

    active = {a.user_id: a for a in updated.attendees}
    assert set(active) == {"carol", "dave"}
    assert active["carol"].response_status == AttendeeResponseStatus.invited
    assert active["carol"].id != carol_row.id

    assert count_rows(
        session_manager, EventAttendee, EventAttendee.deleted_at.is_not(None)
    ) == 2
    assert count_rows(
        session_manager, EventAttendee, EventAttendee.deleted_at.is_(None)
    ) == 2


def test_failed_attendee_replacement_rolls_back_update(ops, audit_log, monkeypatch):
    """A failure while re-adding attendees leaves the event and its attendees untouched."""
    from services.scheduling.core.attendees import AttendeeManager

    event = ops.create_event(
        event_payload(attendees=[{"user_id": "bob"}, {"user_id": "carol"}])
    )
    original_add_many = AttendeeManager.add_many

    def failing_add_many(self, event, participants):
        original_add_many(self, event, participants)
        raise RuntimeError("storage went away")

    monkeypatch.setattr(AttendeeManager, "add_many", failing_add_many)

    with pytest.raises(RuntimeError):
        ops.update_event(
            event.id, {"title": "Renamed", "attendees": [{"user_id": "dave"}]}
        )

    monkeypatch.undo()
    current = ops.get_event(event.id)
    assert current.title == "Pipeline review"
    assert sorted(a.user_id for a in current.attendees) == ["bob", "carol"]
    assert audit_log.actions() == ["create"]


# ============================================================================
# STATUS TRANSITIONS
# ============================================================================


def test_completion_credits_reward_once(ops, reward_ledger, audit_log):
    event = ops.create_event(event_payload())

    completed = ops.update_status(event.id, "completed", notes="Went well")
    assert completed.status == EventStatus.completed
    assert completed.completed_at is not None

    # Re-entering the same status changes nothing and credits nothing
    ops.update_status(event.id, "completed")

    assert reward_ledger.reasons() == ["event_created", "event_completed"]
    completion = reward_ledger.credits[1]
    assert completion["amount"] == 15
    assert completion["coins"] == 8
    assert completion["user_id"] == "alice"

    status_records = [r for r in audit_log.records if r["action"] == "status_change"]
    assert "scheduled to completed: Went well" in status_records[0]["description"]


def test_completion_reward_for_call(ops, reward_ledger):
    event = ops.create_event(event_payload(event_type="call"))
    ops.update_status(event.id, "completed")
    assert reward_ledger.credits[-1]["amount"] == 10
    assert reward_ledger.credits[-1]["coins"] == 5


def test_completion_survives_reward_ledger_failure(make_ops, audit_log):
    """A failing reward ledger never undoes the committed transition."""
    failing = FailingRewardLedger()
    ops = make_ops(dispatcher=OutboxDispatcher(reward_ledger=failing, audit_log=audit_log))

    event = ops.create_event(event_payload())
    ops.update_status(event.id, "completed")

    assert ops.get_event(event.id).status == EventStatus.completed
    assert failing.reasons() == ["event_created", "event_completed"]
    assert "status_change" in audit_log.actions()


def test_status_in_update_patch_uses_transition(ops, reward_ledger):
    event = ops.create_event(event_payload())
    updated = ops.update_event(event.id, {"status": "completed", "title": "Closed deal"})

    assert updated.status == EventStatus.completed
    assert updated.completed_at is not None
    assert reward_ledger.reasons() == ["event_created", "event_completed"]


def test_cancel_stamps_cancelled_at(ops):
    event = ops.create_event(event_payload())
    cancelled = ops.update_status(event.id, "cancelled")
    assert cancelled.cancelled_at is not None

    # Permissive by default: a cancelled event can be rescheduled
    revived = ops.update_status(event.id, "scheduled")
    assert revived.status == EventStatus.scheduled


def test_unknown_status_is_rejected(ops):
    event = ops.create_event(event_payload())
    with pytest.raises(ValidationError):
        ops.update_status(event.id, "postponed")


def test_strict_transition_table(make_ops):
    ops = make_ops(transition_policy=table_policy(STRICT_TRANSITIONS))
    event = ops.create_event(event_payload())

    with pytest.raises(InvalidTransitionError):
        ops.update_status(event.id, "completed")

    ops.update_status(event.id, "in_progress")
    ops.update_status(event.id, "completed")
    with pytest.raises(InvalidTransitionError):
        ops.update_status(event.id, "scheduled")


# ============================================================================
# VISIBILITY & READ VIEWS
# ============================================================================


def test_private_events_hidden_from_non_participants(ops, make_ops):
    private = ops.create_event(
        event_payload(is_private=True, attendees=[{"user_id": "bob"}])
    )
    public = ops.create_event(
        event_payload(start="2025-03-10T13:00:00Z", end="2025-03-10T14:00:00Z")
    )

    carol = make_ops(user_id="carol")
    view = carol.calendar_view("2025-03-10", "2025-03-10")
    assert [e.id for e in view["events"]] == [public.id]
    assert view["events"][0].is_participant is False
    with pytest.raises(ForbiddenError):
        carol.get_event(private.id)
    assert [e.id for e in carol.list_events()["events"]] == [public.id]

    bob = make_ops(user_id="bob")
    bob_view = bob.calendar_view("2025-03-10", "2025-03-10")
    assert {e.id for e in bob_view["events"]} == {private.id, public.id}
    assert bob.get_event(private.id).is_private is True


def test_calendar_view_groups_by_day_and_week(ops):
    """Weeks are keyed by the Sunday on or before the event's start date."""
    sunday = ops.create_event(
        event_payload(start="2025-03-09T10:00:00Z", end="2025-03-09T11:00:00Z")
    )
    wednesday = ops.create_event(
        event_payload(start="2025-03-12T10:00:00Z", end="2025-03-12T11:00:00Z",
                      event_type="call")
    )
    next_sunday = ops.create_event(
        event_payload(start="2025-03-16T18:00:00Z", end="2025-03-16T19:00:00Z")
    )
    ops.create_event(
        event_payload(start="2025-03-17T10:00:00Z", end="2025-03-17T11:00:00Z")
    )

    view = ops.calendar_view("2025-03-09", "2025-03-16")

    assert [e.id for e in view["events"]] == [sunday.id, wednesday.id, next_sunday.id]
    assert set(view["by_date"]) == {"2025-03-09", "2025-03-12", "2025-03-16"}
    assert [e.id for e in view["by_week"]["2025-03-09"]] == [sunday.id, wednesday.id]
    assert [e.id for e in view["by_week"]["2025-03-16"]] == [next_sunday.id]
    assert view["stats"]["total_events"] == 3
    assert view["stats"]["by_type"] == {"meeting": 2, "call": 1}
    assert all(e.is_participant for e in view["events"])


def test_calendar_view_requires_valid_range(ops):
    with pytest.raises(ValidationError):
        ops.calendar_view(None, "2025-03-10")
    with pytest.raises(ValidationError):
        ops.calendar_view("2025-03-10", "2025-03-01")
    with pytest.raises(ValidationError):
        ops.calendar_view("not-a-date", "2025-03-10")


def test_list_events_filters_and_pagination(ops):
    ops.create_event(event_payload(title="Discovery call", event_type="call",
                                   priority="high", client_id=42))
    ops.create_event(event_payload(start="2025-03-11T10:00:00Z",
                                   end="2025-03-11T11:00:00Z", title="Demo"))
    ops.create_event(event_payload(start="2025-03-12T10:00:00Z",
                                   end="2025-03-12T11:00:00Z", title="Contract signing",
                                   priority="urgent"))

    calls = ops.list_events(event_type="call")
    assert [e.title for e in calls["events"]] == ["Discovery call"]
    assert calls["events"][0].client_id == "42"

    by_client = ops.list_events(client_id="42")
    assert by_client["pagination"]["total"] == 1

    searched = ops.list_events(search="DEMO")
    assert [e.title for e in searched["events"]] == ["Demo"]

    page = ops.list_events(limit=2, page=1)
    assert len(page["events"]) == 2
    assert page["pagination"] == {
        "page": 1,
        "limit": 2,
        "total": 3,
        "pages": 2,
        "has_next": True,
        "has_prev": False,
    }

    by_priority = ops.list_events(sort="priority", order="desc")
    assert [e.title for e in by_priority["events"]][0] == "Contract signing"

    stats = page["stats"]
    assert stats["total"] == 3
    assert stats["by_status"] == {"scheduled": 3}
    assert stats["high_priority"] == 2

    with pytest.raises(ValidationError):
        ops.list_events(status="sleeping")


def test_upcoming_and_user_events(ops, make_ops):
    now = utcnow()
    past = now - timedelta(days=2)
    future = now + timedelta(days=2)

    ops.create_event(event_payload(start=past.isoformat(), end=(past + timedelta(hours=1)).isoformat()))
    upcoming = ops.create_event(
        event_payload(start=future.isoformat(), end=(future + timedelta(hours=1)).isoformat(),
                      attendees=[{"user_id": "bob"}])
    )

    assert [e.id for e in ops.upcoming_events()] == [upcoming.id]

    bob = make_ops(user_id="bob")
    assert [e.id for e in bob.events_for_user("bob", role="attendee")] == [upcoming.id]
    assert bob.events_for_user("bob", role="organizer") == []
    assert len(ops.events_for_user("alice", role="organizer")) == 2

    with pytest.raises(ValidationError):
        ops.events_for_user("alice", role="watcher")


def test_event_statistics(ops):
    ops.create_event(event_payload(client_id="c1"))
    ops.create_event(event_payload(start="2025-03-11T10:00:00Z",
                                   end="2025-03-11T10:30:00Z", event_type="call",
                                   client_id="c2"))
    done = ops.create_event(event_payload(start="2025-03-12T10:00:00Z",
                                          end="2025-03-12T11:30:00Z"))
    ops.update_status(done.id, "completed")

    stats = ops.event_statistics()
    assert stats["total"] == 3
    assert stats["scheduled"] == 2
    assert stats["completed"] == 1
    assert stats["meetings"] == 2
    assert stats["calls"] == 1
    assert stats["overdue"] == 2
    assert stats["unique_organizers"] == 1
    assert stats["unique_clients"] == 2
    assert stats["avg_duration_minutes"] == 60.0

    ranged = ops.event_statistics(date_from="2025-03-11", date_to="2025-03-11T23:59:59Z")
    assert ranged["total"] == 1


if __name__ == "__main__":
    # Run tests directly with pytest
    sys.exit(pytest.main([__file__, "-v", "-s"]))
