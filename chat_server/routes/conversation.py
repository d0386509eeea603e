"""Conversation REST API routes.

- POST   /api/conversation/create                  {receiverEmail}
- POST   /api/conversation/group                   {participantIds, groupName, groupImage?, description?}
- PATCH  /api/conversation/respond/<id>            {action: accepted|rejected}
- PATCH  /api/conversation/<id>/block              {action: block|unblock}
- POST   /api/conversation/<id>/participants       {userId, role?}
- DELETE /api/conversation/<id>/participants/<uid>
- POST   /api/conversation/<id>/read
- GET    /api/conversation/all                     ?status&kind&limit&skip
- GET    /api/conversation/initiated
- GET    /api/conversation/with/<user_id>
- GET    /api/conversation/<id>
"""
import logging

from flask import Blueprint, request

from chat_server.context import get_context
from chat_server.exception.AppError import InvalidArgumentError, NotFoundError
from chat_server.messaging.models import (
    ConversationKind, ConversationStatus, ResponseAction, parse_enum
)
from chat_server.utils.decorators import handle_errors, protected_route, require_auth, validate_json
from chat_server.utils.helpers import respond_success, respond_error, normalize_doc, parse_pagination, to_object_id

logger = logging.getLogger(__name__)

conversation_bp = Blueprint('conversation', __name__, url_prefix='/api/conversation')


def _view(user_id, conversation_id):
    return normalize_doc(get_context().projections.get_for_user(user_id, conversation_id))


@conversation_bp.route('/create', methods=['POST'])
@handle_errors
@validate_json('receiverEmail')
@require_auth
def create_direct_request(current_user):
    data = request.get_json()
    conversation = get_context().conversations.create_direct_request(current_user['_id'], data['receiverEmail'])
    return respond_success({'data': _view(current_user['_id'], conversation['_id'])}, status=201,
                           message='Conversation request sent')


@conversation_bp.route('/group', methods=['POST'])
@handle_errors
@validate_json('participantIds', 'groupName')
@require_auth
def create_group(current_user):
    data = request.get_json()
    if not isinstance(data['participantIds'], list):
        raise InvalidArgumentError('participantIds must be a list')
    ctx = get_context()
    participant_ids = [to_object_id(pid, 'participantIds') for pid in data['participantIds']]
    conversation = ctx.conversations.create_group(
        current_user['_id'],
        participant_ids,
        data['groupName'],
        image=data.get('groupImage'),
        description=data.get('description'),
        settings=data.get('settings'),
    )
    ctx.fanout.subscribe_participants(conversation)
    return respond_success({'data': _view(current_user['_id'], conversation['_id'])}, status=201,
                           message='Group created')


@conversation_bp.route('/respond/<conversation_id>', methods=['PATCH'])
@handle_errors
@validate_json('action')
@require_auth
def respond(conversation_id, current_user):
    ctx = get_context()
    conversation_id = to_object_id(conversation_id, 'conversation id')
    action = parse_enum(ResponseAction, request.get_json()['action'], 'action')
    conversation = ctx.conversations.respond(conversation_id, current_user['_id'], action)
    if action == ResponseAction.ACCEPTED:
        ctx.fanout.subscribe_participants(conversation)
    return respond_success({'data': _view(current_user['_id'], conversation_id)},
                           message=f'Conversation request {action.value}')


@conversation_bp.route('/<conversation_id>/block', methods=['PATCH'])
@handle_errors
@validate_json('action')
@require_auth
def set_block(conversation_id, current_user):
    ctx = get_context()
    conversation_id = to_object_id(conversation_id, 'conversation id')
    action = request.get_json()['action']
    if action == 'block':
        ctx.conversations.block(conversation_id, current_user['_id'])
    elif action == 'unblock':
        ctx.conversations.unblock(conversation_id, current_user['_id'])
    else:
        return respond_error("action must be 'block' or 'unblock'", status=400)
    return respond_success({'data': _view(current_user['_id'], conversation_id)}, message=f'Conversation {action}ed')


@conversation_bp.route('/<conversation_id>/participants', methods=['POST'])
@handle_errors
@validate_json('userId')
@require_auth
def add_participant(conversation_id, current_user):
    ctx = get_context()
    data = request.get_json()
    conversation_id = to_object_id(conversation_id, 'conversation id')
    ctx.conversations.get_for_participant(conversation_id, current_user['_id'])
    conversation = ctx.conversations.add_participant(
        conversation_id, to_object_id(data['userId'], 'userId'), data.get('role') or 'member'
    )
    ctx.fanout.subscribe_participants(conversation)
    return respond_success({'data': _view(current_user['_id'], conversation_id)}, message='Participant added')


@conversation_bp.route('/<conversation_id>/participants/<user_id>', methods=['DELETE'])
@handle_errors
@require_auth
def remove_participant(conversation_id, user_id, current_user):
    ctx = get_context()
    conversation_id = to_object_id(conversation_id, 'conversation id')
    user_id = to_object_id(user_id, 'user id')
    ctx.conversations.get_for_participant(conversation_id, current_user['_id'])
    ctx.conversations.remove_participant(conversation_id, user_id)
    ctx.fanout.unsubscribe_user(conversation_id, user_id)
    return respond_success(message='Participant removed')


@conversation_bp.route('/<conversation_id>/read', methods=['POST'])
@handle_errors
@require_auth
def mark_read(conversation_id, current_user):
    conversation_id = to_object_id(conversation_id, 'conversation id')
    get_context().conversations.mark_read(conversation_id, current_user['_id'])
    return respond_success({'data': _view(current_user['_id'], conversation_id)}, message='Conversation marked read')


@conversation_bp.route('/all', methods=['GET'])
@handle_errors
@require_auth
def list_conversations(current_user):
    ctx = get_context()
    limit, skip, errors = parse_pagination(request.args, ctx.settings.default_page_size, ctx.settings.max_page_size)
    if errors:
        return respond_error(errors, status=400)
    status = request.args.get('status')
    kind = request.args.get('kind')
    if status:
        status = parse_enum(ConversationStatus, status, 'status').value
    if kind:
        kind = parse_enum(ConversationKind, kind.upper(), 'kind').value
    result = ctx.projections.list_for_user(current_user['_id'], status=status, kind=kind, limit=limit, skip=skip)
    return respond_success({
        'data': normalize_doc(result['conversations']),
        'meta': {'total_count': result['total_count'], 'limit': limit, 'skip': skip},
    })


@conversation_bp.route('/initiated', methods=['GET'])
@protected_route
def list_initiated(current_user):
    conversations = get_context().projections.list_initiated_by(current_user['_id'])
    return respond_success({'data': normalize_doc(conversations)})


@conversation_bp.route('/with/<user_id>', methods=['GET'])
@handle_errors
@require_auth
def find_direct(user_id, current_user):
    conversation = get_context().projections.find_direct_between(current_user['_id'], to_object_id(user_id, 'user id'))
    if not conversation:
        raise NotFoundError('No direct conversation with this user')
    return respond_success({'data': normalize_doc(conversation)})


@conversation_bp.route('/<conversation_id>', methods=['GET'])
@protected_route
def get_conversation(conversation_id, current_user):
    return respond_success({'data': _view(current_user['_id'], to_object_id(conversation_id, 'conversation id'))})
