"""Conversation and message engines with their read-side projections.

Models are re-exported here; engines are imported from their modules.
"""

from chat_server.messaging.models import (
    ConversationKind, ConversationStatus, ResponseAction, ParticipantRole, MembershipState,
    MessageType, MessageStatus, DeletedFor, PresenceStatus,
    DirectConversation, GroupConversation, Message,
)

__all__ = [
    'ConversationKind', 'ConversationStatus', 'ResponseAction', 'ParticipantRole', 'MembershipState',
    'MessageType', 'MessageStatus', 'DeletedFor', 'PresenceStatus',
    'DirectConversation', 'GroupConversation', 'Message',
]
