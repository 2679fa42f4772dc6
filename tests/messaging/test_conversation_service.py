import uuid

import pytest

from app.core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from app.messaging.models.conversation import Conversation
from app.messaging.models.conversation_participant import (
    ConversationParticipant,
    ParticipantStatus,
)
from app.messaging.models.message import Message, MessageType
from app.messaging.services.conversation_service import ConversationService


def _system_messages(db_session, conversation_id):
    return [
        m.content
        for m in db_session.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.message_type == MessageType.SYSTEM,
        )
        .order_by(Message.created_at)
        .all()
    ]


@pytest.fixture
def group(conversation_service, alice, bob, carol):
    return conversation_service.create_conversation(
        alice.id, [bob.id, carol.id], name="Team", is_group=True
    )


class TestCreateConversation:
    def test_direct_conversation_has_two_participants(self, conversation_service, alice, bob):
        conversation = conversation_service.create_conversation(alice.id, [bob.id])

        assert conversation.is_group is False
        assert {p.user_id for p in conversation.participants} == {alice.id, bob.id}
        assert conversation.last_message is not None
        assert conversation.last_message.content == "Conversation started"
        assert conversation.last_message.message_type == MessageType.SYSTEM

    def test_direct_create_is_idempotent_for_the_pair(self, conversation_service, alice, bob):
        first = conversation_service.create_conversation(alice.id, [bob.id])
        again = conversation_service.create_conversation(alice.id, [bob.id])
        reverse = conversation_service.create_conversation(bob.id, [alice.id])

        assert first.id == again.id == reverse.id

    def test_creator_in_participant_list_is_deduplicated(self, conversation_service, alice, bob):
        conversation = conversation_service.create_conversation(
            alice.id, [bob.id, alice.id, bob.id]
        )

        assert len(conversation.participants) == 2

    def test_direct_conversation_needs_exactly_one_other_member(
        self, conversation_service, alice, bob, carol
    ):
        with pytest.raises(BadRequestError):
            conversation_service.create_conversation(alice.id, [])
        with pytest.raises(BadRequestError):
            conversation_service.create_conversation(alice.id, [bob.id, carol.id])

    def test_group_creator_is_the_only_admin(self, group, alice):
        admins = [p.user_id for p in group.participants if p.is_admin]

        assert admins == [alice.id]
        assert group.name == "Team"
        assert group.created_by == alice.id
        assert group.creator_name == "Alice"
        assert group.last_message.content == 'Group "Team" created'

    def test_group_requires_a_name(self, conversation_service, alice, bob):
        with pytest.raises(BadRequestError):
            conversation_service.create_conversation(alice.id, [bob.id], is_group=True)
        with pytest.raises(BadRequestError):
            conversation_service.create_conversation(
                alice.id, [bob.id], name="   ", is_group=True
            )

    def test_rejects_unknown_and_inactive_users(
        self, conversation_service, alice, inactive_user
    ):
        with pytest.raises(BadRequestError):
            conversation_service.create_conversation(alice.id, [uuid.uuid4()])
        with pytest.raises(BadRequestError):
            conversation_service.create_conversation(alice.id, [inactive_user.id])

    def test_failed_create_writes_nothing(self, conversation_service, db_session, alice):
        with pytest.raises(BadRequestError):
            conversation_service.create_conversation(
                alice.id, [uuid.uuid4()], name="Ghosts", is_group=True
            )

        assert db_session.query(Conversation).count() == 0

    def test_concurrent_direct_create_returns_winner(
        self, conversation_service, db_session, alice, bob, monkeypatch
    ):
        winner = conversation_service.create_conversation(alice.id, [bob.id])

        # Make the pre-check miss once, as if the winner committed right after it
        real_lookup = ConversationService._find_direct_conversation
        calls = {"count": 0}

        def lookup_missing_once(self, direct_key):
            calls["count"] += 1
            if calls["count"] == 1:
                return None
            return real_lookup(self, direct_key)

        monkeypatch.setattr(
            ConversationService, "_find_direct_conversation", lookup_missing_once
        )

        loser = conversation_service.create_conversation(bob.id, [alice.id])

        assert loser.id == winner.id
        assert calls["count"] == 2
        assert db_session.query(Conversation).count() == 1

    def test_new_direct_conversation_after_member_left(
        self, conversation_service, alice, bob
    ):
        first = conversation_service.create_conversation(alice.id, [bob.id])
        conversation_service.leave_conversation(first.id, bob.id)

        second = conversation_service.create_conversation(alice.id, [bob.id])

        assert second.id != first.id
        assert len(second.participants) == 2


class TestUpdateConversation:
    def test_admin_renames_group(self, conversation_service, db_session, group, alice):
        updated = conversation_service.update_conversation(group.id, alice.id, name=" Core ")

        assert updated.name == "Core"
        assert updated.updated_at >= group.updated_at
        assert _system_messages(db_session, group.id)[-1] == (
            'Alice renamed the conversation to "Core"'
        )

    def test_non_admin_cannot_rename(self, conversation_service, group, bob):
        with pytest.raises(ForbiddenError):
            conversation_service.update_conversation(group.id, bob.id, name="Mine")

    def test_unknown_conversation_is_not_found(self, conversation_service, alice):
        with pytest.raises(NotFoundError):
            conversation_service.update_conversation(uuid.uuid4(), alice.id, name="X")


class TestMembership:
    def test_add_members_scenario(self, conversation_service, db_session, group, alice, dave):
        conversation_service.add_members(group.id, alice.id, [dave.id])

        detail = conversation_service.get_conversation(group.id, alice.id)
        assert len(detail.participants) == 4
        assert dave.id in {p.user_id for p in detail.participants}
        assert "Dave joined the group" in _system_messages(db_session, group.id)

    def test_add_members_requires_admin(self, conversation_service, group, bob, dave):
        with pytest.raises(ForbiddenError):
            conversation_service.add_members(group.id, bob.id, [dave.id])

    def test_add_members_only_for_groups(self, conversation_service, alice, bob, carol):
        direct = conversation_service.create_conversation(alice.id, [bob.id])

        with pytest.raises(BadRequestError):
            conversation_service.add_members(direct.id, alice.id, [carol.id])

    def test_add_members_rejects_inactive_users(
        self, conversation_service, group, alice, inactive_user
    ):
        with pytest.raises(BadRequestError):
            conversation_service.add_members(group.id, alice.id, [inactive_user.id])

    def test_adding_existing_member_is_a_no_op(
        self, conversation_service, db_session, group, alice, bob
    ):
        before = _system_messages(db_session, group.id)

        detail = conversation_service.add_members(group.id, alice.id, [bob.id])

        assert len(detail.participants) == 3
        assert _system_messages(db_session, group.id) == before

    def test_readded_member_is_active_without_admin(
        self, conversation_service, db_session, group, alice, bob
    ):
        conversation_service.make_admin(group.id, alice.id, bob.id)
        conversation_service.remove_member(group.id, alice.id, bob.id)

        conversation_service.add_members(group.id, alice.id, [bob.id])

        row = db_session.get(ConversationParticipant, (group.id, bob.id))
        assert row.status == ParticipantStatus.ACTIVE
        assert row.left_at is None
        assert row.is_admin is False

    def test_non_admin_cannot_remove_others(self, conversation_service, group, bob, carol):
        with pytest.raises(ForbiddenError):
            conversation_service.remove_member(group.id, carol.id, bob.id)

    def test_member_can_remove_self(
        self, conversation_service, db_session, group, alice, carol
    ):
        result = conversation_service.remove_member(group.id, carol.id, carol.id)

        assert result is None
        row = db_session.get(ConversationParticipant, (group.id, carol.id))
        assert row.status == ParticipantStatus.LEFT
        assert row.left_at is not None
        assert "Carol left the group" in _system_messages(db_session, group.id)
        with pytest.raises(ForbiddenError):
            conversation_service.get_conversation(group.id, carol.id)

    def test_admin_removes_member(self, conversation_service, db_session, group, alice, bob):
        detail = conversation_service.remove_member(group.id, alice.id, bob.id)

        assert bob.id not in {p.user_id for p in detail.participants}
        assert "Bob was removed from the group" in _system_messages(db_session, group.id)

    def test_removing_non_member_is_not_found(self, conversation_service, group, alice, dave):
        with pytest.raises(NotFoundError):
            conversation_service.remove_member(group.id, alice.id, dave.id)

    def test_membership_change_invalidates_cache(
        self, conversation_service, participant_cache, group, alice, dave
    ):
        assert group.id in participant_cache

        conversation_service.add_members(group.id, alice.id, [dave.id])

        # Re-populated by the read that assembled the response
        assert dave.id in participant_cache.get(group.id)


class TestAdmins:
    def test_make_admin(self, conversation_service, db_session, group, alice, bob):
        detail = conversation_service.make_admin(group.id, alice.id, bob.id)

        admins = {p.user_id for p in detail.participants if p.is_admin}
        assert admins == {alice.id, bob.id}
        assert "Bob is now an admin" in _system_messages(db_session, group.id)

    def test_make_admin_for_non_member_is_not_found(
        self, conversation_service, group, alice, dave
    ):
        with pytest.raises(NotFoundError):
            conversation_service.make_admin(group.id, alice.id, dave.id)

    def test_make_admin_requires_admin(self, conversation_service, group, bob, carol):
        with pytest.raises(ForbiddenError):
            conversation_service.make_admin(group.id, bob.id, carol.id)

    def test_revoke_admin(self, conversation_service, db_session, group, alice, bob):
        conversation_service.make_admin(group.id, alice.id, bob.id)

        detail = conversation_service.revoke_admin(group.id, alice.id, bob.id)

        assert {p.user_id for p in detail.participants if p.is_admin} == {alice.id}
        assert "Bob is no longer an admin" in _system_messages(db_session, group.id)

    def test_revoke_admin_rules(self, conversation_service, group, alice, bob, dave):
        with pytest.raises(BadRequestError):
            conversation_service.revoke_admin(group.id, alice.id, alice.id)
        with pytest.raises(BadRequestError):
            conversation_service.revoke_admin(group.id, alice.id, bob.id)
        with pytest.raises(NotFoundError):
            conversation_service.revoke_admin(group.id, alice.id, dave.id)

    def test_admin_only_toggle(self, conversation_service, db_session, group, alice, bob):
        detail = conversation_service.set_admin_only_messaging(group.id, alice.id, True)
        assert detail.admin_only_messages is True

        with pytest.raises(ForbiddenError):
            conversation_service.set_admin_only_messaging(group.id, bob.id, False)

        conversation_service.set_admin_only_messaging(group.id, alice.id, False)
        messages = _system_messages(db_session, group.id)
        assert "Only admins can now send messages in this group" in messages
        assert messages[-1] == "All members can now send messages in this group"

    def test_admin_only_is_group_only(self, conversation_service, alice, bob):
        direct = conversation_service.create_conversation(alice.id, [bob.id])

        with pytest.raises(BadRequestError):
            conversation_service.set_admin_only_messaging(direct.id, alice.id, True)


class TestReads:
    def test_get_conversation_requires_participation(self, conversation_service, group, dave):
        with pytest.raises(ForbiddenError):
            conversation_service.get_conversation(group.id, dave.id)

    def test_get_missing_conversation(self, conversation_service, alice):
        with pytest.raises(NotFoundError):
            conversation_service.get_conversation(uuid.uuid4(), alice.id)

    def test_list_orders_by_recent_activity(
        self, conversation_service, message_service, alice, bob, carol
    ):
        with_bob = conversation_service.create_conversation(alice.id, [bob.id])
        with_carol = conversation_service.create_conversation(alice.id, [carol.id])
        message_service.send_message(bob.id, with_bob.id, "bump")

        listing = conversation_service.list_conversations(alice.id)

        assert [c.id for c in listing.conversations] == [with_bob.id, with_carol.id]
        assert listing.has_more is False
        assert listing.next_cursor is None

    def test_list_pages_with_cursor(self, conversation_service, db_session, alice):
        from tests.utils.factories import create_user_factory

        created = []
        for _ in range(5):
            other = create_user_factory(db_session)
            created.append(conversation_service.create_conversation(alice.id, [other.id]).id)

        first = conversation_service.list_conversations(alice.id, limit=3)
        assert first.has_more is True
        assert first.next_cursor is not None

        second = conversation_service.list_conversations(
            alice.id, limit=3, cursor=first.next_cursor
        )
        assert second.has_more is False

        seen = [c.id for c in first.conversations] + [c.id for c in second.conversations]
        assert seen == list(reversed(created))

    def test_list_excludes_left_conversations(self, conversation_service, group, carol):
        conversation_service.leave_conversation(group.id, carol.id)

        assert conversation_service.list_conversations(carol.id).conversations == []
