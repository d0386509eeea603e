"""User REST API routes.

- POST /api/user/register - create the caller's user record from their token
- GET  /api/user/me       - the caller's profile and presence
"""
import logging

from flask import Blueprint, request

from chat_server.context import get_context
from chat_server.messaging.projections import user_summary
from chat_server.utils.decorators import handle_errors, protected_route, require_identity
from chat_server.utils.helpers import respond_success, normalize_doc

logger = logging.getLogger(__name__)

user_bp = Blueprint('user', __name__, url_prefix='/api/user')


@user_bp.route('/register', methods=['POST'])
@handle_errors
@require_identity
def register(identity):
    data = request.get_json(silent=True) or {}
    user = get_context().users.register(
        identity['external_id'],
        data.get('name') or identity.get('name'),
        data.get('email') or identity.get('email'),
    )
    return respond_success({'data': normalize_doc(user_summary(user))}, status=201, message='User registered')


@user_bp.route('/me', methods=['GET'])
@protected_route
def me(current_user):
    return respond_success({'data': normalize_doc(user_summary(current_user))})
