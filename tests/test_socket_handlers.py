"""
Tests for the Socket.IO surface using Flask-SocketIO's test client.

Unlike the other suites these run the real EventEmitter, so room membership
and skip_sid behaviour come from python-socketio itself.
"""
import pytest
from pymongo.errors import PyMongoError

from chat_server.context import AppContext
from chat_server.security.authentication import AuthSecurity


@pytest.fixture
def live_context(db, settings):
    """AppContext with the default emitter, bound to Socket.IO by the hub."""
    return AppContext(db, settings)


@pytest.fixture
def socket_app(live_context):
    from server import create_app

    flask_app = create_app(live_context)
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def connect(socket_app):
    """Open a Socket.IO test connection authenticated as ``user``."""
    clients = []

    def _connect(user):
        token = AuthSecurity.issue_token(user['external_id'], user['name'], user['email'])
        client = socket_app.socketio.test_client(socket_app, auth={'token': token})
        clients.append(client)
        return client

    yield _connect
    for client in clients:
        if client.is_connected():
            client.disconnect()


def events(client, name):
    return [r['args'][0] for r in client.get_received() if r['name'] == name]


class TestConnection:

    def test_welcome_on_connect(self, connect, alice, live_context):
        client = connect(alice)

        assert client.is_connected()
        [welcome] = events(client, 'welcome')
        assert welcome['uid'] == 'uid-alice'
        assert welcome['message'] == 'Connected successfully!'
        assert live_context.users.get(alice['_id'])['presence_status'] == 'online'

    def test_bad_token_is_refused(self, socket_app):
        client = socket_app.socketio.test_client(socket_app, auth={'token': 'not-a-jwt'})
        assert not client.is_connected()

    def test_disconnect_sets_offline(self, connect, alice, live_context):
        client = connect(alice)
        client.disconnect()
        assert live_context.users.get(alice['_id'])['presence_status'] == 'offline'

    def test_contact_hears_presence(self, connect, accepted_dm, alice, bob):
        bob_client = connect(bob)
        bob_client.get_received()

        connect(alice)

        [status] = events(bob_client, 'user-status-changed')
        assert status['uid'] == 'uid-alice'
        assert status['status'] == 'online'


class TestMessaging:

    def test_send_reaches_the_other_side_only(self, connect, accepted_dm, alice, bob):
        alice_client = connect(alice)
        bob_client = connect(bob)
        alice_client.get_received()
        bob_client.get_received()

        ack = alice_client.emit('send-message', {
            'conversationId': str(accepted_dm['_id']),
            'content': 'hi bob',
        }, callback=True)

        assert ack['success'] is True
        assert ack['data']['content'] == 'hi bob'
        [received] = events(bob_client, 'new-message')
        assert received['message']['content'] == 'hi bob'
        assert events(alice_client, 'new-message') == []

    def test_pointer_failure_acks_stored_message_id(self, connect, live_context, accepted_dm, alice, bob,
                                                    monkeypatch):
        def fail(*args, **kwargs):
            raise PyMongoError('write concern timeout')

        monkeypatch.setattr(live_context.conversation_repo, 'set_last_message', fail)
        alice_client = connect(alice)
        bob_client = connect(bob)
        bob_client.get_received()

        ack = alice_client.emit('send-message', {'conversationId': str(accepted_dm['_id']), 'content': 'kept'},
                                callback=True)

        [stored] = live_context.message_repo.find()
        assert ack['success'] is False
        assert ack['messageId'] == str(stored['_id'])
        [received] = events(bob_client, 'new-message')
        assert received['message']['content'] == 'kept'

    def test_send_to_foreign_conversation_is_acked_as_error(self, connect, accepted_dm, mallory):
        client = connect(mallory)
        ack = client.emit('send-message', {'conversationId': str(accepted_dm['_id']), 'content': 'x'}, callback=True)

        assert ack['success'] is False
        assert 'not a participant' in ack['error']
        assert client.is_connected()

    def test_missing_conversation_id(self, connect, alice):
        ack = connect(alice).emit('send-message', {'content': 'x'}, callback=True)
        assert ack['success'] is False
        assert 'Invalid conversationId' in ack['error']

    def test_edit_and_reaction_reach_whole_room(self, connect, live_context, accepted_dm, alice, bob):
        message = live_context.messages.send(accepted_dm['_id'], alice['_id'], 'draft')
        alice_client = connect(alice)
        bob_client = connect(bob)
        alice_client.get_received()
        bob_client.get_received()

        edit_ack = alice_client.emit('edit-message', {'messageId': str(message['_id']), 'newContent': 'final'},
                                     callback=True)
        react_ack = bob_client.emit('add-reaction', {'messageId': str(message['_id']), 'emoji': '👍'}, callback=True)

        assert edit_ack['success'] and react_ack['success']
        for client in (alice_client, bob_client):
            received = client.get_received()
            names = [r['name'] for r in received]
            assert 'message-edited' in names
            assert 'reaction-added' in names

    def test_foreign_retraction_is_acked_as_error(self, connect, live_context, accepted_dm, alice, bob):
        message = live_context.messages.send(accepted_dm['_id'], alice['_id'], 'mine')
        ack = connect(bob).emit('delete-message-everyone', {'messageId': str(message['_id'])}, callback=True)
        assert ack == {'success': False, 'error': 'You can only delete your own messages for everyone'}

    def test_reconnect_marks_missed_messages_delivered(self, connect, live_context, accepted_dm, alice, bob):
        alice_client = connect(alice)
        alice_client.get_received()
        message = live_context.messages.send(accepted_dm['_id'], alice['_id'], 'while you were out')

        connect(bob)

        [delivered] = events(alice_client, 'mark-message-delivered')
        assert delivered['messageId'] == str(message['_id'])
        assert live_context.message_repo.get(message['_id'])['status'] == 'delivered'


class TestRooms:

    def test_join_pending_conversation_is_refused(self, connect, pending_dm, alice):
        ack = connect(alice).emit('join-conversation', {'conversationId': str(pending_dm['_id'])}, callback=True)
        assert ack['success'] is False

    def test_join_sends_participant_statuses(self, connect, accepted_dm, alice):
        client = connect(alice)
        client.get_received()

        ack = client.emit('join-conversation', {'conversationId': str(accepted_dm['_id'])}, callback=True)

        assert ack['success'] is True
        statuses = events(client, 'user-status-changed')
        assert sorted(s['uid'] for s in statuses) == ['uid-alice', 'uid-bob']

    def test_typing_is_relayed_to_others_in_room(self, connect, accepted_dm, alice, bob):
        alice_client = connect(alice)
        bob_client = connect(bob)
        alice_client.get_received()
        bob_client.get_received()

        alice_client.emit('typing-start', {'conversationId': str(accepted_dm['_id'])})

        assert events(bob_client, 'typing-start') == [{'conversationId': str(accepted_dm['_id']), 'uid': 'uid-alice'}]
        assert events(alice_client, 'typing-start') == []

    def test_typing_outside_room_is_dropped(self, connect, pending_dm, alice, bob):
        alice_client = connect(alice)
        bob_client = connect(bob)
        bob_client.get_received()

        alice_client.emit('typing-start', {'conversationId': str(pending_dm['_id'])})

        assert events(bob_client, 'typing-start') == []

    def test_update_status(self, connect, live_context, alice):
        client = connect(alice)
        ack = client.emit('update-status', {'status': 'offline'}, callback=True)

        assert ack == {'success': True, 'message': 'Status updated', 'status': 'offline'}
        assert live_context.users.get(alice['_id'])['presence_status'] == 'offline'
