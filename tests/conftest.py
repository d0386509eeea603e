"""
Test configuration and fixtures for the chat backend.

This module provides:
- An in-memory MongoDB (mongomock) per test
- An AppContext wired to a recording emitter, so fan-out can be asserted
  without a Socket.IO server
- Registered users and ready-made DM and group conversations
- Flask app / client helpers for authenticated requests

Usage:
    def test_example(client, alice, accepted_dm, auth_headers):
        response = client.get(f"/api/conversation/{accepted_dm['_id']}", headers=auth_headers(alice))
        assert response.status_code == 200
"""
import mongomock
import pytest
from freezegun import freeze_time

from chat_server.context import AppContext, ChatSettings
from chat_server.security.authentication import AuthSecurity
from chat_server.websocket.event_emitter import EventEmitter

TEST_SECRET = 'test-secret-key'
FROZEN_AT = '2026-01-05 10:00:00'


class RecordingEmitter(EventEmitter):
    """EventEmitter that keeps emits and room joins in memory."""

    def __init__(self):
        super().__init__()
        self.events = []
        self.rooms = {}

    def emit_to_room(self, room, event, data, skip_sid=None):
        self.events.append({'room': room, 'event': event, 'data': data, 'skip_sid': skip_sid})
        return True

    def join(self, sid, room):
        self.rooms.setdefault(sid, set()).add(room)
        return True

    def leave(self, sid, room):
        self.rooms.get(sid, set()).discard(room)
        return True

    def named(self, event):
        return [e for e in self.events if e['event'] == event]

    def clear(self):
        self.events = []


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def configure_auth():
    """Sign and verify tokens with a fixed test secret."""
    AuthSecurity.configure(TEST_SECRET, 'HS256', 60)


@pytest.fixture
def frozen():
    """Pin the clock; use ``frozen.tick(seconds)`` to move it."""
    with freeze_time(FROZEN_AT) as frozen_time:
        yield frozen_time


@pytest.fixture
def db():
    return mongomock.MongoClient().chat_test


@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest.fixture
def settings():
    return ChatSettings()


@pytest.fixture
def context(db, settings, emitter):
    return AppContext(db, settings, emitter=emitter)


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def alice(context):
    return context.users.register('uid-alice', 'Alice', 'alice@example.com')


@pytest.fixture
def bob(context):
    return context.users.register('uid-bob', 'Bob', 'bob@example.com')


@pytest.fixture
def carol(context):
    return context.users.register('uid-carol', 'Carol', 'carol@example.com')


@pytest.fixture
def mallory(context):
    """A registered user who is not part of any test conversation."""
    return context.users.register('uid-mallory', 'Mallory', 'mallory@example.com')


# =============================================================================
# Conversations
# =============================================================================


@pytest.fixture
def pending_dm(context, alice, bob):
    """DM requested by alice, not yet answered by bob."""
    return context.conversations.create_direct_request(alice['_id'], bob['email'])


@pytest.fixture
def accepted_dm(context, pending_dm, bob):
    return context.conversations.respond(pending_dm['_id'], bob['_id'], 'accepted')


@pytest.fixture
def group(context, alice, bob, carol):
    """Group created by alice (admin) with bob and carol as members."""
    return context.conversations.create_group(alice['_id'], [bob['_id'], carol['_id']], 'Weekend plans')


# =============================================================================
# HTTP
# =============================================================================


@pytest.fixture
def app(context):
    from server import create_app

    flask_app = create_app(context)
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


def token_for(user):
    return AuthSecurity.issue_token(user['external_id'], user['name'], user['email'])


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a user document."""
    def _headers(user):
        return {'Authorization': f'Bearer {token_for(user)}'}
    return _headers
