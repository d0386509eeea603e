"""
Tests for the REST API.

Test Organization:
    TestAuth: token and registration gates
    TestUserAPI: register / me
    TestConversationAPI: request lifecycle, groups, listing
    TestMessageAPI: send, feed, mutations and the events they fan out
"""
from bson import ObjectId
from pymongo.errors import PyMongoError

from chat_server.context import AppContext
from chat_server.exception.UnauthorizedError import UnauthorizedError
from chat_server.websocket.event_emitter import EventEmitter, conversation_room


class TestAuth:

    def test_missing_token(self, client):
        response = client.get('/api/conversation/all')
        assert response.status_code == 401
        assert response.get_json()['success'] is False

    def test_garbage_token(self, client):
        response = client.get('/api/conversation/all', headers={'Authorization': 'Bearer not-a-jwt'})
        assert response.status_code == 401

    def test_unregistered_identity(self, client):
        from chat_server.security.authentication import AuthSecurity

        token = AuthSecurity.issue_token('uid-stranger', 'Stranger', 'stranger@example.com')
        response = client.get('/api/user/me', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 401
        assert 'not registered' in response.get_json()['message']

    def test_context_verifier_decides_rest_access(self, db, settings, emitter, alice, auth_headers):
        from server import create_app

        def opaque_authenticate(token):
            if token != 'opaque-cred':
                raise UnauthorizedError('Unknown credential')
            return {'external_id': 'uid-opaque', 'name': 'Opaque', 'email': 'opaque@example.com'}

        context = AppContext(db, settings, emitter=emitter, authenticator=opaque_authenticate)
        user = context.users.register('uid-opaque', 'Opaque', 'opaque@example.com')
        client = create_app(context).test_client()

        response = client.get('/api/user/me', headers={'Authorization': 'Bearer opaque-cred'})
        assert response.status_code == 200
        assert response.get_json()['data']['id'] == str(user['_id'])

        assert client.get('/api/user/me', headers=auth_headers(alice)).status_code == 401


class TestUserAPI:

    def test_register_from_token_claims(self, client, context):
        from chat_server.security.authentication import AuthSecurity

        token = AuthSecurity.issue_token('uid-dana', 'Dana', 'Dana@Example.com')
        response = client.post('/api/user/register', json={}, headers={'Authorization': f'Bearer {token}'})

        assert response.status_code == 201
        body = response.get_json()
        assert body['data']['uid'] == 'uid-dana'
        assert body['data']['email'] == 'dana@example.com'
        assert context.users.get_by_external_id('uid-dana') is not None

    def test_register_twice_conflicts(self, client, alice, auth_headers):
        response = client.post('/api/user/register', json={}, headers=auth_headers(alice))
        assert response.status_code == 409

    def test_me(self, client, alice, auth_headers):
        response = client.get('/api/user/me', headers=auth_headers(alice))
        assert response.status_code == 200
        assert response.get_json()['data']['id'] == str(alice['_id'])


class TestConversationAPI:

    def test_request_accept_and_list(self, client, alice, bob, auth_headers, emitter):
        created = client.post('/api/conversation/create', json={'receiverEmail': bob['email']},
                              headers=auth_headers(alice))
        assert created.status_code == 201
        conversation_id = created.get_json()['data']['id']
        assert created.get_json()['data']['conversation_status'] == 'pending'

        accepted = client.patch(f'/api/conversation/respond/{conversation_id}', json={'action': 'accepted'},
                                headers=auth_headers(bob))
        assert accepted.status_code == 200
        assert accepted.get_json()['data']['conversation_status'] == 'accepted'

        listed = client.get('/api/conversation/all', headers=auth_headers(alice)).get_json()
        assert listed['meta']['total_count'] == 1
        assert listed['data'][0]['participants']['uid'] == 'uid-bob'

    def test_duplicate_request_conflicts(self, client, pending_dm, alice, bob, auth_headers):
        response = client.post('/api/conversation/create', json={'receiverEmail': alice['email']},
                               headers=auth_headers(bob))
        assert response.status_code == 409

    def test_missing_receiver_email(self, client, alice, auth_headers):
        response = client.post('/api/conversation/create', json={}, headers=auth_headers(alice))
        assert response.status_code == 400
        assert 'receiverEmail' in response.get_json()['message']

    def test_invalid_conversation_id(self, client, alice, auth_headers):
        response = client.get('/api/conversation/not-an-id', headers=auth_headers(alice))
        assert response.status_code == 400

    def test_outsider_gets_not_found(self, client, accepted_dm, mallory, auth_headers):
        response = client.get(f"/api/conversation/{accepted_dm['_id']}", headers=auth_headers(mallory))
        assert response.status_code == 404

    def test_block_action_validation(self, client, accepted_dm, bob, auth_headers):
        url = f"/api/conversation/{accepted_dm['_id']}/block"
        assert client.patch(url, json={'action': 'mute'}, headers=auth_headers(bob)).status_code == 400

        blocked = client.patch(url, json={'action': 'block'}, headers=auth_headers(bob))
        assert blocked.status_code == 200
        assert blocked.get_json()['data']['block_details']['is_blocked'] is True

    def test_group_lifecycle(self, client, context, alice, bob, carol, mallory, auth_headers):
        created = client.post('/api/conversation/group', json={
            'participantIds': [str(bob['_id']), str(carol['_id'])],
            'groupName': 'Book club',
        }, headers=auth_headers(alice))
        assert created.status_code == 201
        group_id = created.get_json()['data']['id']

        added = client.post(f'/api/conversation/{group_id}/participants', json={'userId': str(mallory['_id'])},
                            headers=auth_headers(alice))
        assert added.status_code == 200
        assert len(added.get_json()['data']['members']) == 4

        removed = client.delete(f"/api/conversation/{group_id}/participants/{mallory['_id']}",
                                headers=auth_headers(alice))
        assert removed.status_code == 200
        assert len(context.conversation_repo.get(ObjectId(group_id))['participants']) == 3

    def test_outsider_cannot_add_participants(self, client, group, mallory, auth_headers):
        response = client.post(f"/api/conversation/{group['_id']}/participants",
                               json={'userId': str(mallory['_id'])}, headers=auth_headers(mallory))
        assert response.status_code == 403

    def test_initiated_and_direct_lookup(self, client, pending_dm, alice, bob, carol, auth_headers):
        initiated = client.get('/api/conversation/initiated', headers=auth_headers(alice)).get_json()
        assert [c['id'] for c in initiated['data']] == [str(pending_dm['_id'])]

        found = client.get(f"/api/conversation/with/{alice['_id']}", headers=auth_headers(bob))
        assert found.get_json()['data']['id'] == str(pending_dm['_id'])
        assert client.get(f"/api/conversation/with/{carol['_id']}", headers=auth_headers(bob)).status_code == 404

    def test_list_rejects_bad_pagination(self, client, alice, auth_headers):
        response = client.get('/api/conversation/all?limit=0', headers=auth_headers(alice))
        assert response.status_code == 400
        assert 'limit' in response.get_json()['errors']


class TestMessageAPI:

    def test_send_and_read_feed(self, client, accepted_dm, alice, bob, auth_headers, emitter):
        sent = client.post(f"/api/message/send/{accepted_dm['_id']}", json={'content': 'hello bob'},
                           headers=auth_headers(alice))
        assert sent.status_code == 201
        assert sent.get_json()['data']['content'] == 'hello bob'

        [event] = emitter.named(EventEmitter.NEW_MESSAGE)
        assert event['room'] == conversation_room(accepted_dm['_id'])

        feed = client.get(f"/api/message/{accepted_dm['_id']}?limit=10", headers=auth_headers(bob)).get_json()
        assert feed['meta']['total_count'] == 1
        assert feed['data'][0]['sender']['uid'] == 'uid-alice'

        unread = client.get(f"/api/message/{accepted_dm['_id']}/unread", headers=auth_headers(bob)).get_json()
        assert unread['data']['unread_count'] == 1

    def test_send_to_pending_is_forbidden(self, client, pending_dm, alice, auth_headers):
        response = client.post(f"/api/message/send/{pending_dm['_id']}", json={'content': 'hi'},
                               headers=auth_headers(alice))
        assert response.status_code == 403

    def test_send_survives_pointer_failure(self, client, context, accepted_dm, alice, auth_headers, emitter,
                                           monkeypatch):
        def fail(*args, **kwargs):
            raise PyMongoError('write concern timeout')

        monkeypatch.setattr(context.conversation_repo, 'set_last_message', fail)

        response = client.post(f"/api/message/send/{accepted_dm['_id']}", json={'content': 'still stored'},
                               headers=auth_headers(alice))

        assert response.status_code == 500
        assert response.get_json()['success'] is False
        assert context.message_repo.count() == 1
        [event] = emitter.named(EventEmitter.NEW_MESSAGE)
        assert event['data']['message']['content'] == 'still stored'

    def test_edit_delete_and_react(self, client, context, accepted_dm, alice, bob, auth_headers, emitter):
        message = context.messages.send(accepted_dm['_id'], alice['_id'], 'draft')
        base = f"/api/message/{message['_id']}"

        assert client.patch(f'{base}/edit', json={'content': 'final'}, headers=auth_headers(bob)).status_code == 403
        assert client.patch(f'{base}/edit', json={'content': 'final'}, headers=auth_headers(alice)).status_code == 200

        assert client.post(f'{base}/reactions', json={'emoji': '👍'}, headers=auth_headers(bob)).status_code == 200
        assert client.post(f'{base}/reactions', json={'emoji': '👍'}, headers=auth_headers(bob)).status_code == 409
        assert client.delete(f'{base}/reactions', json={'emoji': '👍'}, headers=auth_headers(bob)).status_code == 200

        assert client.delete(f'{base}/everyone', headers=auth_headers(alice)).status_code == 200
        assert client.delete(f'{base}/me', headers=auth_headers(bob)).status_code == 200

        assert len(emitter.named(EventEmitter.MESSAGE_EDITED)) == 1
        assert len(emitter.named(EventEmitter.REACTION_ADDED)) == 1
        assert len(emitter.named(EventEmitter.MESSAGE_DELETED_EVERYONE)) == 1

        feed = client.get(f"/api/message/{accepted_dm['_id']}", headers=auth_headers(alice)).get_json()
        assert feed['data'][0]['is_deleted'] is True
        assert client.get(f"/api/message/{accepted_dm['_id']}", headers=auth_headers(bob)).get_json()['data'] == []

    def test_status_update_notifies_sender(self, client, context, accepted_dm, alice, bob, auth_headers, emitter):
        message = context.messages.send(accepted_dm['_id'], alice['_id'], 'hi')
        url = f"/api/message/{message['_id']}/status"

        assert client.patch(url, json={'status': 'delivered'}, headers=auth_headers(bob)).status_code == 200
        assert client.patch(url, json={'status': 'read'}, headers=auth_headers(bob)).status_code == 200
        assert client.patch(url, json={'status': 'sent'}, headers=auth_headers(bob)).status_code == 409
        assert len(emitter.named(EventEmitter.MESSAGE_DELIVERED)) == 1

    def test_unknown_message(self, client, alice, auth_headers):
        response = client.delete(f'/api/message/{ObjectId()}/me', headers=auth_headers(alice))
        assert response.status_code == 404


def test_health(client):
    assert client.get('/health').get_json()['success'] is True
