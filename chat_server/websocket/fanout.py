"""Delivery fan-out.

Routes created and mutated messages and presence changes to the sessions
that should see them, and reconciles delivery state when a user reconnects.
Every broadcast happens after the write it describes has succeeded.
"""
import logging
import threading
from typing import Any, Dict, List, Optional

from chat_server.messaging.models import DeletedFor, MessageStatus, PresenceStatus, participant_ids
from chat_server.repository.conversation_repository import ConversationRepository
from chat_server.repository.message_repository import MessageRepository
from chat_server.repository.user_repository import UserRepository
from chat_server.utils.helpers import normalize_doc
from chat_server.utils.time_utils import now_utc, to_iso
from chat_server.websocket.event_emitter import EventEmitter, conversation_room, user_room

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Connected sessions: socket id -> session info, and user id -> socket ids."""

    def __init__(self):
        self.connected_users: Dict[str, Dict[str, Any]] = {}
        self.user_sockets: Dict[Any, List[str]] = {}
        self._lock = threading.Lock()

    def add(self, sid: str, user: Dict[str, Any]) -> bool:
        """Register a session; returns True when it is the user's first one."""
        with self._lock:
            self.connected_users[sid] = {
                'user_id': user['_id'],
                'external_id': user['external_id'],
                'connected_at': now_utc(),
            }
            sockets = self.user_sockets.setdefault(user['_id'], [])
            sockets.append(sid)
            return len(sockets) == 1

    def remove(self, sid: str) -> Optional[Dict[str, Any]]:
        """Drop a session; the returned info has ``last_session`` set when no other remains."""
        with self._lock:
            info = self.connected_users.pop(sid, None)
            if not info:
                return None
            sockets = [s for s in self.user_sockets.get(info['user_id'], []) if s != sid]
            if sockets:
                self.user_sockets[info['user_id']] = sockets
            else:
                self.user_sockets.pop(info['user_id'], None)
            return dict(info, last_session=not sockets)

    def get(self, sid: str) -> Optional[Dict[str, Any]]:
        return self.connected_users.get(sid)

    def sockets_of(self, user_id) -> List[str]:
        return list(self.user_sockets.get(user_id, []))

    def is_online(self, user_id) -> bool:
        return bool(self.user_sockets.get(user_id))


class DeliveryFanout:

    def __init__(self, emitter: EventEmitter, sessions: SessionRegistry, users: UserRepository,
                 conversations: ConversationRepository, messages: MessageRepository, projections):
        self.emitter = emitter
        self.sessions = sessions
        self.users = users
        self.conversations = conversations
        self.messages = messages
        self.projections = projections

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def on_connect(self, user: Dict[str, Any], sid: str) -> Dict[str, Any]:
        """Subscribe a freshly authenticated session and bring its user up to date.

        Joins the user room and every accepted conversation room, marks the
        user online (notifying contacts on the first session), then runs
        delivery reconciliation. Returns the welcome payload.
        """
        first_session = self.sessions.add(sid, user)
        self.emitter.join(sid, user_room(user['external_id']))
        for conversation_id in self.conversations.accepted_ids_for(user['_id']):
            self.emitter.join(sid, conversation_room(conversation_id))

        if first_session:
            self.set_presence(user, PresenceStatus.ONLINE)

        welcome = {
            'message': 'Connected successfully!',
            'socketId': sid,
            'name': user.get('name'),
            'uid': user.get('external_id'),
            'status': PresenceStatus.ONLINE.value,
        }
        self.emitter.emit_to_session(sid, EventEmitter.WELCOME, welcome)
        self.reconcile_deliveries(user)
        return welcome

    def on_disconnect(self, sid: str) -> Optional[Dict[str, Any]]:
        info = self.sessions.remove(sid)
        if not info:
            return None
        if info['last_session']:
            user = self.users.get(info['user_id'])
            if user:
                self.set_presence(user, PresenceStatus.OFFLINE)
        else:
            logger.debug("User %s still has open sessions", info['external_id'])
        return info

    # =========================================================================
    # Presence
    # =========================================================================

    def set_presence(self, user: Dict[str, Any], status: PresenceStatus) -> Dict[str, Any]:
        updated = self.users.set_presence(user['_id'], status) or user
        logger.info("User %s is %s", updated.get('external_id'), PresenceStatus(status).value)
        self.broadcast_presence(updated)
        return updated

    def presence_payload(self, user: Dict[str, Any], conversation_id) -> Dict[str, Any]:
        return {
            '_id': str(user['_id']),
            'uid': user.get('external_id'),
            'email': user.get('email'),
            'name': user.get('name'),
            'status': user.get('presence_status'),
            'lastSeen': to_iso(user.get('last_seen')),
            'conversationId': str(conversation_id),
        }

    def broadcast_presence(self, user: Dict[str, Any]) -> int:
        """Push the user's status to each counterpart's user room, once per shared conversation."""
        conversations = self.conversations.find_for_participant(user['_id'])
        counterpart_ids = set()
        for conversation in conversations:
            counterpart_ids.update(pid for pid in participant_ids(conversation) if pid != user['_id'])
        counterparts = {u['_id']: u for u in self.users.find_many_by_ids(counterpart_ids)}

        sent = 0
        for conversation in conversations:
            payload = self.presence_payload(user, conversation['_id'])
            for pid in participant_ids(conversation):
                counterpart = counterparts.get(pid)
                if pid == user['_id'] or not counterpart:
                    continue
                if self.emitter.emit_to_user(counterpart['external_id'], EventEmitter.USER_STATUS_CHANGED, payload):
                    sent += 1
        return sent

    def send_participant_statuses(self, sid: str, conversation: Dict[str, Any]) -> None:
        """Tell a session the current status of every participant of a conversation it joined."""
        for participant in self.users.find_many_by_ids(participant_ids(conversation)):
            self.emitter.emit_to_session(
                sid, EventEmitter.USER_STATUS_CHANGED, self.presence_payload(participant, conversation['_id'])
            )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def reconcile_deliveries(self, user: Dict[str, Any]) -> int:
        """Flip messages the user missed from ``sent`` to ``delivered``.

        Each flip is its own conditional update, so a message already moved by a
        concurrent reconnect is skipped and every sender hears about a message once.
        """
        conversation_ids = [c['_id'] for c in self.conversations.find_for_participant(user['_id'])]
        pending = self.messages.undelivered_for(conversation_ids, user['_id'])
        if not pending:
            return 0

        senders = {u['_id']: u for u in self.users.find_many_by_ids(m['sender_id'] for m in pending)}
        flipped = 0
        now = now_utc()
        for message in pending:
            if not self.messages.mark_delivered_if_sent(message['_id'], now):
                continue
            flipped += 1
            sender = senders.get(message['sender_id'])
            if sender:
                self.emitter.emit_to_user(sender['external_id'], EventEmitter.MESSAGE_DELIVERED, {
                    'messageId': str(message['_id']),
                    'conversationId': str(message['conversation_id']),
                })
        logger.info("Reconciled %d message(s) for %s", flipped, user.get('external_id'))
        return flipped

    # =========================================================================
    # Message events
    # =========================================================================

    def message_created(self, message: Dict[str, Any], skip_sid: Optional[str] = None) -> bool:
        payload = {
            'message': normalize_doc(self.projections.broadcast_view(message)),
            'conversationId': str(message['conversation_id']),
        }
        return self.emitter.emit_to_room(
            conversation_room(message['conversation_id']), EventEmitter.NEW_MESSAGE, payload, skip_sid=skip_sid
        )

    def message_edited(self, message: Dict[str, Any]) -> bool:
        return self.emitter.emit_to_room(conversation_room(message['conversation_id']), EventEmitter.MESSAGE_EDITED, {
            'messageId': str(message['_id']),
            'newContent': message['content'],
            'editedAt': to_iso(message.get('edited_at')),
            'conversationId': str(message['conversation_id']),
        })

    def message_deleted_for_everyone(self, message: Dict[str, Any]) -> bool:
        deleted_at = next(
            (e.get('time') for e in message.get('deletion_history', []) if e.get('deleted_for') == DeletedFor.EVERYONE.value), None
        )
        return self.emitter.emit_to_room(
            conversation_room(message['conversation_id']), EventEmitter.MESSAGE_DELETED_EVERYONE, {
                'messageId': str(message['_id']),
                'conversationId': str(message['conversation_id']),
                'deletedAt': to_iso(deleted_at),
            })

    def reaction_added(self, message: Dict[str, Any], user_id, emoji: str) -> bool:
        reacted_at = next(
            (r.get('reacted_at') for r in message.get('reactions', [])
             if r.get('user_id') == user_id and r.get('emoji') == emoji), None
        )
        return self.emitter.emit_to_room(conversation_room(message['conversation_id']), EventEmitter.REACTION_ADDED, {
            'messageId': str(message['_id']),
            'userId': str(user_id),
            'emoji': emoji,
            'conversationId': str(message['conversation_id']),
            'reactedAt': to_iso(reacted_at),
        })

    def reaction_removed(self, message: Dict[str, Any], user_id, emoji: str) -> bool:
        return self.emitter.emit_to_room(conversation_room(message['conversation_id']), EventEmitter.REACTION_REMOVED, {
            'messageId': str(message['_id']),
            'userId': str(user_id),
            'emoji': emoji,
            'conversationId': str(message['conversation_id']),
        })

    def status_advanced(self, message: Dict[str, Any]) -> bool:
        """Tell the sender a message reached ``delivered``; ``read`` is carried by read receipts."""
        if message.get('status') != MessageStatus.DELIVERED.value:
            return False
        sender = self.users.get(message['sender_id'])
        if not sender:
            return False
        return self.emitter.emit_to_user(sender['external_id'], EventEmitter.MESSAGE_DELIVERED, {
            'messageId': str(message['_id']),
            'conversationId': str(message['conversation_id']),
        })

    # =========================================================================
    # Room membership changes
    # =========================================================================

    def subscribe_participants(self, conversation: Dict[str, Any]) -> None:
        """Join every connected session of the participants to the conversation room."""
        room = conversation_room(conversation['_id'])
        for user_id in participant_ids(conversation):
            for sid in self.sessions.sockets_of(user_id):
                self.emitter.join(sid, room)

    def unsubscribe_user(self, conversation_id, user_id) -> None:
        room = conversation_room(conversation_id)
        for sid in self.sessions.sockets_of(user_id):
            self.emitter.leave(sid, room)
