"""Shared plumbing for Socket.IO event handlers."""
import functools
import logging
from typing import Any, Callable, Dict, Optional

from flask import request

from chat_server.exception.AppError import AppError
from chat_server.exception.UnauthorizedError import UnauthorizedError
from chat_server.utils.helpers import to_object_id

logger = logging.getLogger(__name__)


def socket_ack(func: Callable) -> Callable:
    """Turn a handler's result or failure into an acknowledgement.

    Successful handlers return a dict merged into ``{'success': True}``.
    AppError becomes ``{'success': False, 'error': message}``; anything else
    is logged and reported as an internal error. The connection stays open.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            result = func(*args, **kwargs)
        except AppError as e:
            logger.info("%s rejected: %s", func.__name__, e.message)
            ack = {'success': False, 'error': e.message}
            message_id = getattr(e, 'message_id', None)
            if message_id is not None:
                ack['messageId'] = str(message_id)
            return ack
        except Exception:
            logger.exception("Unexpected error in %s", func.__name__)
            return {'success': False, 'error': 'Internal server error'}
        ack = {'success': True}
        ack.update(result or {})
        return ack
    return wrapper


class SocketHandler:
    """Base for handler groups; resolves the calling session to its user."""

    def __init__(self, socketio, context):
        self.socketio = socketio
        self.context = context

    def current_user(self) -> Dict[str, Any]:
        info = self.context.sessions.get(request.sid)
        if not info:
            raise UnauthorizedError('Not authenticated')
        user = self.context.users.get(info['user_id'])
        if not user:
            raise UnauthorizedError('User no longer exists')
        return user

    @staticmethod
    def payload(data) -> Dict[str, Any]:
        return data if isinstance(data, dict) else {}

    @staticmethod
    def object_id(data: Dict[str, Any], *keys: str, required: bool = True) -> Optional[Any]:
        for key in keys:
            value = data.get(key)
            if value:
                return to_object_id(value, keys[0])
        if required:
            return to_object_id(None, keys[0])
        return None
