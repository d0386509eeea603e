"""Chat data models.

Collections:
- users: identity records and presence
- conversations: DM and group conversations (tagged by ``kind``)
- messages: messages with embedded reactions and deletion history

Engines persist and read plain documents; the classes here build new
documents and validate them, dispatching on the conversation kind.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum

from chat_server.exception.AppError import InvalidArgumentError
from chat_server.utils.time_utils import now_utc

MAX_CONTENT_LENGTH = 5000
MAX_GROUP_MEMBERS = 256


class ConversationKind(str, Enum):
    DM = "DM"
    GROUP = "GROUP"


class ConversationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ResponseAction(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ParticipantRole(str, Enum):
    INITIATOR = "initiator"
    RECEIVER = "receiver"
    MEMBER = "member"
    ADMIN = "admin"


class MembershipState(str, Enum):
    ACTIVE = "active"
    LEFT = "left"
    REMOVED = "removed"
    INVITED = "invited"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    SYSTEM = "system"
    LOCATION = "location"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ]


class DeletedFor(str, Enum):
    ME = "me"
    EVERYONE = "everyone"


class PresenceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


def parse_enum(enum_cls, value, field):
    """Coerce ``value`` into ``enum_cls`` or raise InvalidArgumentError naming ``field``."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(e.value for e in enum_cls)
        raise InvalidArgumentError(f"Invalid {field} '{value}'. Allowed: {allowed}")


def participant_doc(user_id, role: ParticipantRole, joined_at: datetime = None) -> Dict[str, Any]:
    return {
        'user_id': user_id,
        'role': ParticipantRole(role).value,
        'membership_state': MembershipState.ACTIVE.value,
        'joined_at': joined_at or now_utc(),
    }


def dm_key_for(user_a, user_b) -> str:
    """Order-independent key identifying the DM between two users."""
    return ':'.join(sorted([str(user_a), str(user_b)]))


def participant_ids(conversation: Dict[str, Any]) -> List:
    return [p['user_id'] for p in conversation.get('participants', [])]


def is_participant(conversation: Dict[str, Any], user_id) -> bool:
    return any(p['user_id'] == user_id for p in conversation.get('participants', []))


class Conversation:
    """Shared base record of a conversation; subclasses hold the kind-specific payload."""
    kind: ConversationKind = None
    initial_status: ConversationStatus = None

    def __init__(self, participants: List[Dict[str, Any]], initiated_by, created_at: Optional[datetime] = None):
        self.participants = participants
        self.initiated_by = initiated_by
        self.created_at = created_at or now_utc()

    def extra_fields(self) -> Dict[str, Any]:
        return {}

    def to_db_doc(self) -> Dict[str, Any]:
        doc = {
            'kind': self.kind.value,
            'participants': self.participants,
            'conversation_status': self.initial_status.value,
            'initiated_by': self.initiated_by,
            'initiated_at': self.created_at,
            'last_message_id': None,
            'read_receipts': [],
            'created_at': self.created_at,
            'updated_at': self.created_at,
        }
        doc.update(self.extra_fields())
        validate_conversation_doc(doc)
        return doc


class DirectConversation(Conversation):
    kind = ConversationKind.DM
    initial_status = ConversationStatus.PENDING

    def __init__(self, sender_id, receiver_id, created_at: Optional[datetime] = None):
        now = created_at or now_utc()
        super().__init__(
            participants=[
                participant_doc(sender_id, ParticipantRole.INITIATOR, now),
                participant_doc(receiver_id, ParticipantRole.RECEIVER, now),
            ],
            initiated_by=sender_id,
            created_at=now,
        )
        self.sender_id = sender_id
        self.receiver_id = receiver_id

    def extra_fields(self) -> Dict[str, Any]:
        return {
            'dm_key': dm_key_for(self.sender_id, self.receiver_id),
            'block_details': {'is_blocked': False, 'blocked_by': None, 'time': None},
        }


class GroupConversation(Conversation):
    kind = ConversationKind.GROUP
    initial_status = ConversationStatus.ACCEPTED

    def __init__(self, creator_id, member_ids: List, name: str, image: Optional[str] = None,
                 description: Optional[str] = None, settings: Optional[Dict[str, Any]] = None,
                 created_at: Optional[datetime] = None):
        now = created_at or now_utc()
        participants = [participant_doc(creator_id, ParticipantRole.ADMIN, now)]
        for member_id in member_ids:
            if member_id != creator_id and member_id not in [p['user_id'] for p in participants]:
                participants.append(participant_doc(member_id, ParticipantRole.MEMBER, now))
        super().__init__(participants=participants, initiated_by=creator_id, created_at=now)
        group_settings = {
            'only_admin_can_post': False,
            'approval_required_to_join': False,
            'max_members': MAX_GROUP_MEMBERS,
        }
        group_settings.update(settings or {})
        self.group_details = {
            'name': (name or '').strip(),
            'image': image,
            'description': description,
            'settings': group_settings,
        }

    def extra_fields(self) -> Dict[str, Any]:
        return {'group_details': self.group_details}


def validate_direct(participants):
    if len(participants) != 2:
        raise InvalidArgumentError('A direct conversation must have exactly 2 participants')
    if participants[0]['user_id'] == participants[1]['user_id']:
        raise InvalidArgumentError('Cannot start a conversation with yourself')


def validate_group(participants, group_details):
    if len(participants) < 2:
        raise InvalidArgumentError('A group needs at least 2 participants')
    if not group_details or not group_details.get('name'):
        raise InvalidArgumentError('Group name is required')
    max_members = group_details.get('settings', {}).get('max_members', MAX_GROUP_MEMBERS)
    if len(participants) > max_members:
        raise InvalidArgumentError(f'A group cannot have more than {max_members} members')


def validate_conversation_doc(doc: Dict[str, Any]):
    """Validate a stored conversation against the rules of its kind."""
    kind = parse_enum(ConversationKind, doc.get('kind'), 'conversation kind')
    if kind == ConversationKind.DM:
        validate_direct(doc.get('participants', []))
    else:
        validate_group(doc.get('participants', []), doc.get('group_details'))


def is_blocked(conversation: Dict[str, Any]) -> bool:
    # absent block_details means not blocked
    return bool((conversation.get('block_details') or {}).get('is_blocked'))


class Message:
    """Message document structure."""

    def __init__(
        self,
        conversation_id,
        sender_id,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        caption: Optional[str] = None,
        reply_to=None,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ):
        self.conversation_id = conversation_id
        self.sender_id = sender_id
        self.content = content
        self.message_type = parse_enum(MessageType, message_type, 'message type')
        self.caption = caption
        self.reply_to = reply_to
        self.metadata = metadata
        self.created_at = created_at or now_utc()

    def normalized_metadata(self) -> Optional[Dict[str, Any]]:
        """Keep only the forwarding and expiry keys; stamp forwarded_time on forwards."""
        if self.metadata is None:
            return None
        is_forwarded = bool(self.metadata.get('is_forwarded'))
        return {
            'is_forwarded': is_forwarded,
            'forwarded_from': self.metadata.get('forwarded_from'),
            'forwarded_time': self.created_at if is_forwarded else None,
            'expires_at': self.metadata.get('expires_at'),
        }

    def validate(self):
        if not isinstance(self.content, str) or not self.content.strip():
            raise InvalidArgumentError('Message content is required')
        if len(self.content) > MAX_CONTENT_LENGTH:
            raise InvalidArgumentError(f'Message cannot exceed {MAX_CONTENT_LENGTH} characters')
        if self.metadata is not None and not isinstance(self.metadata, dict):
            raise InvalidArgumentError('metadata must be an object')

    def to_db_doc(self) -> Dict[str, Any]:
        self.validate()
        return {
            'conversation_id': self.conversation_id,
            'sender_id': self.sender_id,
            'type': self.message_type.value,
            'content': self.content,
            'caption': self.caption,
            'status': MessageStatus.SENT.value,
            'edited': False,
            'edited_at': None,
            'reply_to': self.reply_to,
            'metadata': self.normalized_metadata(),
            'reactions': [],
            'deletion_history': [],
            'created_at': self.created_at,
            'updated_at': self.created_at,
        }


def is_deleted_for_everyone(message: Dict[str, Any]) -> bool:
    return any(e.get('deleted_for') == DeletedFor.EVERYONE.value for e in message.get('deletion_history', []))


def is_deleted_for_user(message: Dict[str, Any], user_id) -> bool:
    return any(
        e.get('deleted_for') == DeletedFor.ME.value and e.get('user_id') == user_id
        for e in message.get('deletion_history', [])
    )


def apply_visibility(message: Dict[str, Any], viewer_id, placeholder: str) -> Optional[Dict[str, Any]]:
    """Return the message as ``viewer_id`` may see it, or None when it is hidden.

    A delete-for-everyone entry wins over any delete-for-me entry: the message
    stays in the feed with its content replaced by ``placeholder``.
    The deletion bookkeeping itself is never part of the result.
    """
    view = {k: v for k, v in message.items() if k != 'deletion_history'}
    if is_deleted_for_everyone(message):
        view['content'] = placeholder
        view['caption'] = None
        view['is_deleted'] = True
        return view
    if is_deleted_for_user(message, viewer_id):
        return None
    view['is_deleted'] = False
    return view
