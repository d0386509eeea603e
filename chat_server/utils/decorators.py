"""Route decorators for error handling, authentication and body validation."""
import functools
import logging
from typing import Callable

from flask import request

from chat_server.context import get_context
from chat_server.exception.AppError import AppError
from chat_server.exception.UnauthorizedError import UnauthorizedError
from chat_server.security.authentication import get_auth_payload
from chat_server.utils.helpers import respond_error

logger = logging.getLogger(__name__)


def handle_errors(func: Callable) -> Callable:
    """Decorator to map exceptions raised by route handlers to JSON responses.

    Catches:
    - UnauthorizedError -> 401
    - AppError subclasses -> their status_code
    - ValueError -> 400
    - Other exceptions -> 500
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except UnauthorizedError as e:
            logger.warning("Unauthorized: %s", e)
            return respond_error(str(e), status=401)
        except AppError as e:
            if e.status_code >= 500:
                logger.error("%s failed: %s", func.__name__, e)
            else:
                logger.info("%s rejected: %s", func.__name__, e)
            return respond_error(e.message, status=e.status_code)
        except ValueError as e:
            logger.warning("Validation error: %s", e)
            return respond_error(str(e), status=400)
        except Exception:
            logger.exception("Unexpected error in %s", func.__name__)
            return respond_error('Internal server error', status=500)
    return wrapper


def require_auth(func: Callable) -> Callable:
    """Decorator to require authentication and inject the caller into the handler.

    The decorated function receives ``current_user`` (the stored user document)
    as a keyword argument. Tokens for identities that never registered are
    rejected with 401.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        identity = get_auth_payload(request, get_context().authenticate)
        users = get_context().users
        user = users.get_by_external_id(identity['external_id'])
        if not user:
            raise UnauthorizedError('User is not registered')
        users.touch_last_login(user['_id'])
        kwargs['current_user'] = user
        return func(*args, **kwargs)
    return wrapper


def require_identity(func: Callable) -> Callable:
    """Like require_auth, but only verifies the token; used before registration."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        kwargs['identity'] = get_auth_payload(request, get_context().authenticate)
        return func(*args, **kwargs)
    return wrapper


def validate_json(*required_fields: str) -> Callable:
    """Decorator to validate that required JSON fields are present."""
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            data = request.get_json(silent=True)

            if not isinstance(data, dict):
                return respond_error('Request body must be JSON', status=400)

            missing = [f for f in required_fields if f not in data or data[f] in (None, '')]
            if missing:
                return respond_error(f'Missing required fields: {", ".join(missing)}', status=400)

            return func(*args, **kwargs)
        return wrapper
    return decorator


def log_request(func: Callable) -> Callable:
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.debug("%s %s called", request.method, request.path)
        return func(*args, **kwargs)
    return wrapper


def protected_route(func: Callable) -> Callable:
    """Composite decorator: handle_errors + require_auth + log_request."""
    return handle_errors(require_auth(log_request(func)))
