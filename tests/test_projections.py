"""Tests for conversation lists, conversation detail and the message feed."""
import pytest
from bson import ObjectId

from chat_server.exception.AppError import ForbiddenError, NotFoundError

PLACEHOLDER = 'This message was deleted'


@pytest.fixture
def thread(context, accepted_dm, alice, bob, frozen):
    """Four messages one second apart: alice, bob, alice, bob."""
    sent = []
    for sender, text in ((alice, 'first'), (bob, 'second'), (alice, 'third'), (bob, 'fourth')):
        sent.append(context.messages.send(accepted_dm['_id'], sender['_id'], text))
        frozen.tick(1)
    return sent


class TestConversationList:

    def test_dm_shows_the_other_participant(self, context, accepted_dm, alice, bob):
        result = context.projections.list_for_user(alice['_id'])

        assert result['total_count'] == 1
        view = result['conversations'][0]
        assert view['_id'] == accepted_dm['_id']
        assert view['participants']['uid'] == 'uid-bob'
        assert view['last_message'] is None
        assert view['has_unread'] is False

    def test_group_shows_group_details(self, context, group, bob):
        view = context.projections.list_for_user(bob['_id'])['conversations'][0]
        assert view['kind'] == 'GROUP'
        assert view['participants']['name'] == 'Weekend plans'

    def test_filters_and_pagination(self, context, accepted_dm, group, alice):
        assert context.projections.list_for_user(alice['_id'], kind='GROUP')['total_count'] == 1
        assert context.projections.list_for_user(alice['_id'], status='pending')['total_count'] == 0

        page = context.projections.list_for_user(alice['_id'], limit=1)
        assert len(page['conversations']) == 1
        assert page['total_count'] == 2

    def test_last_message_preview_and_unread_flag(self, context, thread, alice, bob):
        bob_view = context.projections.list_for_user(bob['_id'])['conversations'][0]
        alice_view = context.projections.list_for_user(alice['_id'])['conversations'][0]

        assert bob_view['last_message']['content'] == 'fourth'
        assert bob_view['last_message']['sender_name'] == 'Bob'
        assert bob_view['has_unread'] is False
        assert alice_view['has_unread'] is True

    def test_mark_read_clears_unread_flag(self, context, thread, accepted_dm, alice):
        context.conversations.mark_read(accepted_dm['_id'], alice['_id'])
        assert context.projections.list_for_user(alice['_id'])['conversations'][0]['has_unread'] is False

    def test_retracted_last_message_shows_placeholder(self, context, thread, bob, alice):
        context.messages.delete_for_everyone(thread[-1]['_id'], bob['_id'])
        preview = context.projections.list_for_user(alice['_id'])['conversations'][0]['last_message']
        assert preview['content'] == PLACEHOLDER
        assert preview['is_deleted'] is True

    def test_initiated_by(self, context, pending_dm, alice, bob):
        assert [c['_id'] for c in context.projections.list_initiated_by(alice['_id'])] == [pending_dm['_id']]
        assert context.projections.list_initiated_by(bob['_id']) == []

    def test_find_direct_between(self, context, pending_dm, alice, bob, carol):
        assert context.projections.find_direct_between(bob['_id'], alice['_id'])['_id'] == pending_dm['_id']
        assert context.projections.find_direct_between(alice['_id'], carol['_id']) is None


class TestConversationDetail:

    def test_includes_members_and_response(self, context, accepted_dm, alice, bob):
        view = context.projections.get_for_user(alice['_id'], accepted_dm['_id'])

        assert [(m['user']['uid'], m['role']) for m in view['members']] == [
            ('uid-alice', 'initiator'), ('uid-bob', 'receiver'),
        ]
        assert view['responded_by'] == bob['_id']
        assert view['response_action'] == 'accepted'

    def test_outsider_sees_not_found(self, context, accepted_dm, mallory):
        with pytest.raises(NotFoundError):
            context.projections.get_for_user(mallory['_id'], accepted_dm['_id'])


class TestMessageFeed:

    def test_newest_first_with_total(self, context, thread, accepted_dm, alice):
        feed = context.projections.message_feed(accepted_dm['_id'], alice['_id'])

        assert [m['content'] for m in feed['messages']] == ['fourth', 'third', 'second', 'first']
        assert feed['total_count'] == 4
        assert feed['messages'][0]['sender']['uid'] == 'uid-bob'

    def test_pagination(self, context, thread, accepted_dm, alice):
        feed = context.projections.message_feed(accepted_dm['_id'], alice['_id'], limit=2, skip=2)
        assert [m['content'] for m in feed['messages']] == ['second', 'first']
        assert feed['total_count'] == 4

    def test_deleted_for_me_is_hidden_only_from_that_user(self, context, thread, accepted_dm, alice, bob):
        context.messages.delete_for_me(thread[0]['_id'], alice['_id'])

        alice_feed = context.projections.message_feed(accepted_dm['_id'], alice['_id'])
        bob_feed = context.projections.message_feed(accepted_dm['_id'], bob['_id'])

        assert 'first' not in [m['content'] for m in alice_feed['messages']]
        assert alice_feed['total_count'] == 3
        assert bob_feed['total_count'] == 4

    def test_retracted_message_keeps_its_slot(self, context, thread, accepted_dm, alice, bob):
        context.messages.delete_for_everyone(thread[1]['_id'], bob['_id'])

        messages = context.projections.message_feed(accepted_dm['_id'], alice['_id'])['messages']
        retracted = next(m for m in messages if m['_id'] == thread[1]['_id'])

        assert retracted['content'] == PLACEHOLDER
        assert retracted['is_deleted'] is True
        assert all('deletion_history' not in m for m in messages)

    def test_search_is_case_insensitive_and_skips_retracted(self, context, thread, accepted_dm, alice, bob):
        assert context.projections.message_feed(accepted_dm['_id'], alice['_id'], search='THIRD')['total_count'] == 1

        context.messages.delete_for_everyone(thread[1]['_id'], bob['_id'])
        assert context.projections.message_feed(accepted_dm['_id'], alice['_id'], search='second')['total_count'] == 0

    def test_search_treats_input_literally(self, context, thread, accepted_dm, alice):
        assert context.projections.message_feed(accepted_dm['_id'], alice['_id'], search='.*')['total_count'] == 0

    def test_reply_preview_and_reactions(self, context, accepted_dm, thread, alice, bob):
        reply = context.messages.send(accepted_dm['_id'], alice['_id'], 'agreed', reply_to=thread[1]['_id'])
        context.messages.add_reaction(reply['_id'], bob['_id'], '👍')

        view = context.projections.message_feed(accepted_dm['_id'], bob['_id'])['messages'][0]

        assert view['reply_to']['content'] == 'second'
        assert view['reply_to']['sender_name'] == 'Bob'
        assert view['reactions'][0]['emoji'] == '👍'
        assert view['reactions'][0]['user']['uid'] == 'uid-bob'

    def test_can_delete_for_everyone_follows_window(self, context, accepted_dm, alice, bob, frozen):
        sent = context.messages.send(accepted_dm['_id'], alice['_id'], 'fresh')

        alice_view = context.projections.message_views([sent], alice['_id'])[0]
        bob_view = context.projections.message_views([sent], bob['_id'])[0]
        assert alice_view['can_delete_for_everyone'] is True
        assert bob_view['can_delete_for_everyone'] is False
        assert bob_view['can_delete_for_me'] is True

        frozen.tick(601)
        assert context.projections.message_views([sent], alice['_id'])[0]['can_delete_for_everyone'] is False

    def test_pending_conversation_is_forbidden(self, context, pending_dm, alice):
        with pytest.raises(ForbiddenError):
            context.projections.message_feed(pending_dm['_id'], alice['_id'])

    def test_outsider_is_forbidden(self, context, accepted_dm, mallory):
        with pytest.raises(ForbiddenError):
            context.projections.message_feed(accepted_dm['_id'], mallory['_id'])

    def test_missing_conversation(self, context, alice):
        with pytest.raises(NotFoundError):
            context.projections.message_feed(ObjectId(), alice['_id'])
