"""Message REST API routes.

- POST   /api/message/send/<conversation_id>  {content, type?, caption?, replyTo?, metadata?}
- GET    /api/message/<conversation_id>        ?limit&skip&search
- GET    /api/message/<conversation_id>/unread
- PATCH  /api/message/<id>/edit                {content}
- PATCH  /api/message/<id>/status              {status}
- DELETE /api/message/<id>/everyone
- DELETE /api/message/<id>/me
- POST   /api/message/<id>/reactions           {emoji}
- DELETE /api/message/<id>/reactions           {emoji}
"""
import logging

from flask import Blueprint, request

from chat_server.context import get_context
from chat_server.exception.AppError import LastMessagePointerError
from chat_server.utils.decorators import handle_errors, protected_route, require_auth, validate_json
from chat_server.utils.helpers import respond_success, respond_error, normalize_doc, parse_pagination, to_object_id

logger = logging.getLogger(__name__)

message_bp = Blueprint('message', __name__, url_prefix='/api/message')


@message_bp.route('/send/<conversation_id>', methods=['POST'])
@handle_errors
@validate_json('content')
@require_auth
def send_message(conversation_id, current_user):
    ctx = get_context()
    data = request.get_json()
    conversation_id = to_object_id(conversation_id, 'conversation id')
    reply_to = data.get('replyTo')
    try:
        message = ctx.messages.send(
            conversation_id,
            current_user['_id'],
            data['content'],
            data.get('type') or 'text',
            caption=data.get('caption'),
            reply_to=to_object_id(reply_to, 'replyTo') if reply_to else None,
            metadata=data.get('metadata'),
        )
    except LastMessagePointerError as e:
        ctx.fanout.message_created(ctx.messages.get(e.message_id))
        raise
    ctx.fanout.message_created(message)
    view = ctx.projections.message_views([message], current_user['_id'])[0]
    return respond_success({'data': normalize_doc(view)}, status=201, message='Message sent')


@message_bp.route('/<conversation_id>', methods=['GET'])
@handle_errors
@require_auth
def get_messages(conversation_id, current_user):
    ctx = get_context()
    limit, skip, errors = parse_pagination(request.args, ctx.settings.default_page_size, ctx.settings.max_page_size)
    if errors:
        return respond_error(errors, status=400)
    result = ctx.projections.message_feed(
        to_object_id(conversation_id, 'conversation id'),
        current_user['_id'],
        limit=limit,
        skip=skip,
        search=request.args.get('search') or None,
    )
    return respond_success({
        'data': normalize_doc(result['messages']),
        'meta': {'total_count': result['total_count'], 'limit': limit, 'skip': skip},
    })


@message_bp.route('/<conversation_id>/unread', methods=['GET'])
@protected_route
def unread_count(conversation_id, current_user):
    count = get_context().messages.get_unread_count(to_object_id(conversation_id, 'conversation id'),
                                                    current_user['_id'])
    return respond_success({'data': {'unread_count': count}})


@message_bp.route('/<message_id>/edit', methods=['PATCH'])
@handle_errors
@validate_json('content')
@require_auth
def edit_message(message_id, current_user):
    ctx = get_context()
    message = ctx.messages.edit(to_object_id(message_id, 'message id'), current_user['_id'],
                                request.get_json()['content'])
    ctx.fanout.message_edited(message)
    view = ctx.projections.message_views([message], current_user['_id'])[0]
    return respond_success({'data': normalize_doc(view)}, message='Message edited')


@message_bp.route('/<message_id>/status', methods=['PATCH'])
@handle_errors
@validate_json('status')
@require_auth
def update_status(message_id, current_user):
    ctx = get_context()
    message = ctx.messages.update_status(to_object_id(message_id, 'message id'), request.get_json()['status'],
                                         current_user['_id'])
    ctx.fanout.status_advanced(message)
    return respond_success({'data': {'id': str(message['_id']), 'status': message['status']}},
                           message='Message status updated')


@message_bp.route('/<message_id>/everyone', methods=['DELETE'])
@handle_errors
@require_auth
def delete_for_everyone(message_id, current_user):
    ctx = get_context()
    message = ctx.messages.delete_for_everyone(to_object_id(message_id, 'message id'), current_user['_id'])
    ctx.fanout.message_deleted_for_everyone(message)
    return respond_success(message='Message deleted for everyone')


@message_bp.route('/<message_id>/me', methods=['DELETE'])
@handle_errors
@require_auth
def delete_for_me(message_id, current_user):
    get_context().messages.delete_for_me(to_object_id(message_id, 'message id'), current_user['_id'])
    return respond_success(message='Message deleted for you')


@message_bp.route('/<message_id>/reactions', methods=['POST'])
@handle_errors
@validate_json('emoji')
@require_auth
def add_reaction(message_id, current_user):
    ctx = get_context()
    emoji = request.get_json()['emoji']
    message = ctx.messages.add_reaction(to_object_id(message_id, 'message id'), current_user['_id'], emoji)
    ctx.fanout.reaction_added(message, current_user['_id'], emoji)
    return respond_success(message='Reaction added')


@message_bp.route('/<message_id>/reactions', methods=['DELETE'])
@handle_errors
@validate_json('emoji')
@require_auth
def remove_reaction(message_id, current_user):
    ctx = get_context()
    emoji = request.get_json()['emoji']
    message = ctx.messages.remove_reaction(to_object_id(message_id, 'message id'), current_user['_id'], emoji)
    ctx.fanout.reaction_removed(message, current_user['_id'], emoji)
    return respond_success(message='Reaction removed')
