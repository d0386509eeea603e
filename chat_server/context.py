"""Application context.

One AppContext is built per Flask app and stored in ``app.extensions['chat']``.
It owns the database handle, the repositories, the engines and the fan-out
broadcaster, and is passed to every route and socket handler.
"""
import logging

from flask import current_app

from chat_server.messaging.conversation_service import ConversationService
from chat_server.messaging.message_service import MessageService
from chat_server.messaging.projections import ProjectionService
from chat_server.repository.conversation_repository import ConversationRepository
from chat_server.repository.message_repository import MessageRepository
from chat_server.repository.mongo_helper import ensure_indexes
from chat_server.repository.user_repository import UserRepository
from chat_server.security.authentication import authenticate
from chat_server.websocket.event_emitter import EventEmitter
from chat_server.websocket.fanout import DeliveryFanout, SessionRegistry

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'chat'


class ChatSettings:
    """Messaging rules read from ``config`` (see config.base.yaml, ``messaging`` section)."""

    def __init__(self, retraction_window_seconds=600, deleted_placeholder='This message was deleted',
                 enforce_block_on_send=False, default_page_size=50, max_page_size=200):
        self.retraction_window_seconds = retraction_window_seconds
        self.deleted_placeholder = deleted_placeholder
        self.enforce_block_on_send = enforce_block_on_send
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    @classmethod
    def from_config(cls, cfg):
        return cls(
            retraction_window_seconds=cfg.RETRACTION_WINDOW_SECONDS,
            deleted_placeholder=cfg.DELETED_PLACEHOLDER,
            enforce_block_on_send=cfg.ENFORCE_BLOCK_ON_SEND,
            default_page_size=cfg.DEFAULT_PAGE_SIZE,
            max_page_size=cfg.MAX_PAGE_SIZE,
        )


class AppContext:

    def __init__(self, db, settings: ChatSettings = None, emitter: EventEmitter = None,
                 authenticator=authenticate):
        self.db = db
        self.settings = settings or ChatSettings()
        self.authenticate = authenticator

        try:
            ensure_indexes(db)
        except Exception as e:
            logger.exception("Failed to ensure DB indexes: %s", e)

        self.users = UserRepository(db)
        self.conversation_repo = ConversationRepository(db)
        self.message_repo = MessageRepository(db)

        self.conversations = ConversationService(self.users, self.conversation_repo)
        self.messages = MessageService(
            self.conversations,
            self.message_repo,
            retraction_window_seconds=self.settings.retraction_window_seconds,
            enforce_block_on_send=self.settings.enforce_block_on_send,
        )
        self.projections = ProjectionService(
            self.users,
            self.conversation_repo,
            self.message_repo,
            placeholder=self.settings.deleted_placeholder,
            retraction_window_seconds=self.settings.retraction_window_seconds,
        )

        self.emitter = emitter or EventEmitter()
        self.sessions = SessionRegistry()
        self.fanout = DeliveryFanout(
            self.emitter, self.sessions, self.users, self.conversation_repo, self.message_repo, self.projections
        )

    def init_app(self, app):
        app.extensions[EXTENSION_KEY] = self
        return self


def get_context() -> AppContext:
    return current_app.extensions[EXTENSION_KEY]
