"""
PROMISE LIFECYCLE TESTS
=======================

Create / read / list / update / decline / delete against an in-memory
database. Covers the authorization matrix end to end: a rejected change
must leave the stored promise untouched.
"""
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import NOW, RecordingEmailService
from exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    NotFoundOrForbidden,
    ValidationError,
)
from models import Milestone, Notification, Promise, PromiseNote
from promise_lifecycle_service import PromiseLifecycleService

pytestmark = pytest.mark.asyncio


# =============================================================================
# CREATE
# =============================================================================

class TestCreatePromise:

    async def test_create_resolves_participants_and_invites(
        self, services, people, email_service, notifications_of
    ):
        promise = await services.lifecycle.create_promise(people.owner.id, {
            "title": "  Call grandma weekly ",
            "promisee_email": "Promisee@Example.com",
            "mentor_id": str(people.mentor.id),
        })

        assert promise.status == "ongoing"
        assert promise.title == "Call grandma weekly"
        assert promise.promisee_id == people.promisee.id
        assert promise.promisee_email is None
        assert promise.mentor_id == people.mentor.id

        promisee_invites = await notifications_of(people.promisee.id, "promise_invitation")
        mentor_invites = await notifications_of(people.mentor.id, "mentorship_invitation")
        assert [n.message for n in promisee_invites] == ['Olivia made a promise to you: "Call grandma weekly"']
        assert [n.message for n in mentor_invites] == ['Olivia invited you to mentor their promise: "Call grandma weekly"']

        sent = {(m["to_email"], m["role"]) for m in email_service.sent}
        assert sent == {("promisee@example.com", "promisee"), ("mentor@example.com", "mentor")}

    async def test_unknown_email_stays_placeholder(self, services, people, notifications_of, email_service):
        promise = await services.lifecycle.create_promise(people.owner.id, {
            "title": "Teach you chess",
            "promisee_email": "newcomer@example.com",
        })

        assert promise.promisee_id is None
        assert promise.promisee_email == "newcomer@example.com"
        # no in-app invitation without an account, email only
        assert await notifications_of(people.owner.id) == []
        assert email_service.sent[0]["to_email"] == "newcomer@example.com"

    async def test_deadline_in_past_still_ongoing(self, services, people):
        promise = await services.lifecycle.create_promise(people.owner.id, {
            "title": "Late already",
            "deadline": (NOW - timedelta(days=1)).isoformat(),
        })
        assert promise.status == "ongoing"

    async def test_initial_milestones(self, services, people):
        promise = await services.lifecycle.create_promise(people.owner.id, {
            "title": "Write a book",
            "milestones": [{"title": "Outline"}, {"title": "Draft"}, "Edit"],
        })
        assert [m.title for m in promise.milestones] == ["Outline", "Draft", "Edit"]
        assert [m.order_index for m in promise.milestones] == [0, 1, 2]

    @pytest.mark.parametrize("data,field", [
        ({"title": "   "}, "title"),
        ({"title": "x", "deadline": "someday"}, "deadline"),
        ({"title": "x", "promisee_email": "not-an-email"}, "promisee_email"),
        ({"title": "x", "mentor_id": str(uuid.uuid4())}, "mentor_id"),
    ])
    async def test_validation(self, services, people, data, field):
        with pytest.raises(ValidationError) as exc_info:
            await services.lifecycle.create_promise(people.owner.id, data)
        assert exc_info.value.details["field"] == field

    async def test_email_failure_does_not_fail_creation(self, uow_factory, services, people, clock):
        failing = RecordingEmailService(fail=True)
        lifecycle = PromiseLifecycleService(
            uow_factory, services.users, services.notifications, failing, clock=clock
        )

        promise = await lifecycle.create_promise(people.owner.id, {
            "title": "Still created",
            "promisee_email": "someone@example.com",
        })

        assert failing.sent
        assert await lifecycle.get_promise(promise.id, people.owner.id) is not None


# =============================================================================
# READ
# =============================================================================

class TestReadPromise:

    async def test_participants_can_read(self, services, people, full_promise):
        for user in (people.owner, people.promisee, people.mentor):
            assert (await services.lifecycle.get_promise(full_promise.id, user.id)).id == full_promise.id

    async def test_outsider_and_missing_get_none(self, services, people, full_promise):
        assert await services.lifecycle.get_promise(full_promise.id, people.outsider.id) is None
        assert await services.lifecycle.get_promise(uuid.uuid4(), people.owner.id) is None
        assert await services.lifecycle.get_promise("garbage", people.owner.id) is None

    async def test_list_by_role(self, services, people, full_promise):
        own = await services.lifecycle.create_promise(people.promisee.id, {"title": "Own thing"})

        owned = await services.lifecycle.list_promises(people.promisee.id, "owned")
        to_me = await services.lifecycle.list_promises(people.promisee.id, "promised-to-me")
        mentoring = await services.lifecycle.list_promises(people.mentor.id, "mentoring")
        everything = await services.lifecycle.list_promises(people.promisee.id)

        assert [p.id for p in owned] == [own.id]
        assert [p.id for p in to_me] == [full_promise.id]
        assert [p.id for p in mentoring] == [full_promise.id]
        assert {p.id for p in everything} == {own.id, full_promise.id}

    async def test_promised_to_me_excludes_declined(self, services, people, full_promise):
        await services.lifecycle.decline_promise(full_promise.id, people.promisee.id)

        assert await services.lifecycle.list_promises(people.promisee.id, "promised-to-me") == []
        assert await services.lifecycle.list_promises(people.promisee.id, "promised-to-me", "declined") == []

    async def test_list_status_filter(self, services, people, full_promise):
        assert await services.lifecycle.list_promises(people.owner.id, "all", "completed") == []
        assert len(await services.lifecycle.list_promises(people.owner.id, "all", "ongoing")) == 1

    async def test_list_rejects_unknown_filters(self, services, people):
        with pytest.raises(ValidationError):
            await services.lifecycle.list_promises(people.owner.id, "watching")
        with pytest.raises(ValidationError):
            await services.lifecycle.list_promises(people.owner.id, "all", "archived")


# =============================================================================
# UPDATE
# =============================================================================

class TestUpdatePromise:

    async def test_promisee_cannot_change_title(self, services, people, full_promise):
        with pytest.raises(AuthorizationError):
            await services.lifecycle.update_promise(full_promise.id, people.promisee.id, {"title": "Hijacked"})

        stored = await services.lifecycle.get_promise(full_promise.id, people.owner.id)
        assert stored.title == "Run a marathon"

    @pytest.mark.parametrize("role,status", [
        ("promisee", "not_made"),
        ("mentor", "completed"),
        ("outsider", "completed"),
        ("owner", "overdue"),
        ("owner", "declined"),
        ("promisee", "declined"),
    ])
    async def test_disallowed_status_leaves_status_unchanged(self, services, people, full_promise, role, status):
        actor = getattr(people, role)
        with pytest.raises(AuthorizationError):
            await services.lifecycle.update_promise(full_promise.id, actor.id, {"status": status})

        stored = await services.lifecycle.get_promise(full_promise.id, people.owner.id)
        assert stored.status == "ongoing"

    async def test_combined_patch_is_all_or_nothing(self, services, people, full_promise):
        with pytest.raises(AuthorizationError):
            await services.lifecycle.update_promise(
                full_promise.id, people.promisee.id, {"status": "completed", "description": "changed"}
            )

        stored = await services.lifecycle.get_promise(full_promise.id, people.owner.id)
        assert stored.status == "ongoing"
        assert stored.description == "Sub 4 hours"

    async def test_promisee_completes_and_others_are_notified(
        self, services, people, full_promise, notifications_of
    ):
        promise = await services.lifecycle.update_promise(
            full_promise.id, people.promisee.id, {"status": "completed"}
        )
        assert promise.status == "completed"

        assert len(await notifications_of(people.owner.id, "promise_completed")) == 1
        assert len(await notifications_of(people.mentor.id, "promise_completed")) == 1
        assert await notifications_of(people.promisee.id, "promise_completed") == []

    async def test_owner_completes_overdue_promise(self, services, people, notifications_of):
        promise = await services.lifecycle.create_promise(people.owner.id, {
            "title": "Overdue one",
            "promisee_id": str(people.promisee.id),
            "mentor_id": str(people.mentor.id),
            "deadline": (NOW - timedelta(hours=2)).isoformat(),
        })
        await services.sweeper.run_expiry()
        assert (await services.lifecycle.get_promise(promise.id, people.owner.id)).status == "overdue"

        completed = await services.lifecycle.update_promise(promise.id, people.owner.id, {"status": "completed"})

        assert completed.status == "completed"
        assert len(await notifications_of(people.promisee.id, "promise_completed")) == 1
        assert len(await notifications_of(people.mentor.id, "promise_completed")) == 1
        assert await notifications_of(people.owner.id, "promise_completed") == []

    async def test_terminal_status_is_final(self, services, people, full_promise):
        await services.lifecycle.update_promise(full_promise.id, people.owner.id, {"status": "not_made"})

        with pytest.raises(AuthorizationError) as exc_info:
            await services.lifecycle.update_promise(full_promise.id, people.owner.id, {"status": "completed"})
        assert exc_info.value.details["rule"] == "terminal_state"

    async def test_owner_edits_fields_and_clears_optional_ones(self, services, people, full_promise):
        promise = await services.lifecycle.update_promise(full_promise.id, people.owner.id, {
            "title": "Run a half marathon",
            "description": None,
            "deadline": None,
            "mentor_id": None,
        })

        assert promise.title == "Run a half marathon"
        assert promise.description is None
        assert promise.deadline is None
        assert promise.mentor_id is None
        assert promise.promisee_id == people.promisee.id

    async def test_owner_can_edit_terminal_promise_fields(self, services, people, full_promise):
        await services.lifecycle.update_promise(full_promise.id, people.owner.id, {"status": "completed"})
        promise = await services.lifecycle.update_promise(full_promise.id, people.owner.id, {"title": "Done it"})
        assert promise.title == "Done it"
        assert promise.status == "completed"

    async def test_new_promisee_is_invited(self, services, people, notifications_of, email_service):
        promise = await services.lifecycle.create_promise(people.owner.id, {"title": "Solo for now"})

        await services.lifecycle.update_promise(
            promise.id, people.owner.id, {"promisee_email": "outsider@example.com"}
        )

        invites = await notifications_of(people.outsider.id, "promise_invitation")
        assert len(invites) == 1
        assert email_service.sent[-1]["to_email"] == "outsider@example.com"

    async def test_setting_id_clears_placeholder(self, services, people):
        promise = await services.lifecycle.create_promise(people.owner.id, {
            "title": "Placeholder",
            "promisee_email": "unknown@example.com",
        })

        promise = await services.lifecycle.update_promise(
            promise.id, people.owner.id, {"promisee_id": str(people.promisee.id)}
        )

        assert promise.promisee_id == people.promisee.id
        assert promise.promisee_email is None

    async def test_missing_promise(self, services, people):
        with pytest.raises(NotFoundError):
            await services.lifecycle.update_promise(uuid.uuid4(), people.owner.id, {"title": "x"})

    async def test_unknown_field_rejected(self, services, people, full_promise):
        with pytest.raises(ValidationError):
            await services.lifecycle.update_promise(full_promise.id, people.owner.id, {"user_id": str(people.mentor.id)})

    async def test_empty_patch_returns_promise(self, services, people, full_promise):
        promise = await services.lifecycle.update_promise(full_promise.id, people.mentor.id, {})
        assert promise.id == full_promise.id

    async def test_lost_race_is_conflict(self, services, people, full_promise, monkeypatch):
        """Status flips between the read and the conditional UPDATE"""
        from infrastructure.uow import PromiseRepository

        original = PromiseRepository.conditional_update

        async def racing_update(self, promise_id, expected_status, values):
            await original(self, promise_id, None, {"status": "not_made"})
            return await original(self, promise_id, expected_status, values)

        monkeypatch.setattr(PromiseRepository, "conditional_update", racing_update)

        with pytest.raises(ConflictError):
            await services.lifecycle.update_promise(full_promise.id, people.owner.id, {"status": "completed"})

        monkeypatch.undo()
        stored = await services.lifecycle.get_promise(full_promise.id, people.owner.id)
        assert stored.status == "ongoing"


# =============================================================================
# DECLINE
# =============================================================================

class TestDeclinePromise:

    async def test_promisee_declines(self, services, people, full_promise, notifications_of):
        promise = await services.lifecycle.decline_promise(full_promise.id, people.promisee.id)

        assert promise.status == "declined"
        owner_notes = await notifications_of(people.owner.id, "promise_invitation")
        assert [n.message for n in owner_notes] == ['Pat declined your promise: "Run a marathon"']

    async def test_promisee_declines_overdue(self, services, people):
        promise = await services.lifecycle.create_promise(people.owner.id, {
            "title": "Late",
            "promisee_id": str(people.promisee.id),
            "deadline": (NOW - timedelta(minutes=5)).isoformat(),
        })
        await services.sweeper.run_expiry()

        assert (await services.lifecycle.decline_promise(promise.id, people.promisee.id)).status == "declined"

    @pytest.mark.parametrize("role", ["owner", "mentor", "outsider"])
    async def test_only_promisee_can_decline(self, services, people, full_promise, role):
        with pytest.raises(NotFoundOrForbidden):
            await services.lifecycle.decline_promise(full_promise.id, getattr(people, role).id)

        stored = await services.lifecycle.get_promise(full_promise.id, people.owner.id)
        assert stored.status == "ongoing"

    @pytest.mark.parametrize("terminal", ["completed", "not_made"])
    async def test_cannot_decline_terminal(self, services, people, full_promise, terminal):
        await services.lifecycle.update_promise(full_promise.id, people.owner.id, {"status": terminal})

        with pytest.raises(NotFoundOrForbidden):
            await services.lifecycle.decline_promise(full_promise.id, people.promisee.id)

    async def test_decline_twice(self, services, people, full_promise):
        await services.lifecycle.decline_promise(full_promise.id, people.promisee.id)
        with pytest.raises(NotFoundOrForbidden):
            await services.lifecycle.decline_promise(full_promise.id, people.promisee.id)

    async def test_owner_cannot_decline_own_self_promise(self, services, people):
        promise = await services.lifecycle.create_promise(people.owner.id, {
            "title": "Read more",
            "promisee_id": str(people.owner.id),
        })

        with pytest.raises(NotFoundOrForbidden):
            await services.lifecycle.decline_promise(promise.id, people.owner.id)

        stored = await services.lifecycle.get_promise(promise.id, people.owner.id)
        assert stored.status == "ongoing"

    async def test_not_found_or_forbidden_is_not_found(self, services, people):
        with pytest.raises(NotFoundError):
            await services.lifecycle.decline_promise(uuid.uuid4(), people.promisee.id)


# =============================================================================
# DELETE
# =============================================================================

class TestDeletePromise:

    async def test_delete_cascades(self, services, people, full_promise, uow_factory):
        await services.milestones.create_milestone(full_promise.id, people.owner.id, {"title": "Train"})
        await services.notes.create_note(full_promise.id, people.promisee.id, "Go go go")

        assert await services.lifecycle.delete_promise(full_promise.id, people.owner.id) is True

        async with uow_factory() as uow:
            for model, column in (
                (Milestone, Milestone.promise_id),
                (PromiseNote, PromiseNote.promise_id),
                (Notification, Notification.related_promise_id),
                (Promise, Promise.id),
            ):
                rows = (await uow.session.execute(select(model).where(column == full_promise.id))).all()
                assert rows == [], model.__name__

    async def test_only_owner_deletes(self, services, people, full_promise):
        with pytest.raises(AuthorizationError):
            await services.lifecycle.delete_promise(full_promise.id, people.promisee.id)
        assert await services.lifecycle.get_promise(full_promise.id, people.owner.id) is not None

    async def test_delete_missing(self, services, people):
        with pytest.raises(NotFoundError):
            await services.lifecycle.delete_promise(uuid.uuid4(), people.owner.id)


# =============================================================================
# PLACEHOLDER INVITATIONS
# =============================================================================

class TestPendingInvitations:

    async def test_registration_does_not_backfill_until_attached(self, services, people):
        first = await services.lifecycle.create_promise(people.owner.id, {
            "title": "First", "promisee_email": "late@example.com",
        })
        second = await services.lifecycle.create_promise(people.owner.id, {
            "title": "Second", "mentor_email": "late@example.com",
        })

        late = await services.users.register("Late@Example.com", "Lee")

        newer = await services.lifecycle.create_promise(people.owner.id, {
            "title": "Third", "promisee_email": "late@example.com",
        })
        assert newer.promisee_id == late.id

        first = await services.lifecycle.get_promise(first.id, people.owner.id)
        assert first.promisee_email == "late@example.com"
        assert first.promisee_id is None

        attached = await services.lifecycle.attach_pending_invitations(late.id)

        assert set(attached) == {first.id, second.id}
        first = await services.lifecycle.get_promise(first.id, late.id)
        second = await services.lifecycle.get_promise(second.id, late.id)
        assert (first.promisee_id, first.promisee_email) == (late.id, None)
        assert (second.mentor_id, second.mentor_email) == (late.id, None)
