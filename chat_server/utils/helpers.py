from datetime import datetime

from bson import ObjectId
from flask import jsonify

from chat_server.exception.AppError import InvalidArgumentError


def respond_error(message_or_dict, status=400):
    """Return a standardized error response."""
    if isinstance(message_or_dict, dict):
        body = {'success': False, 'message': 'Validation failed', 'errors': message_or_dict}
    else:
        body = {'success': False, 'message': message_or_dict}
    return jsonify(body), status


def respond_success(payload=None, status=200, message=None):
    if payload is None:
        payload = {}
    body = {'success': True}
    if message:
        body['message'] = message
    if isinstance(payload, dict):
        body.update(payload)
    else:
        body['data'] = payload
    return jsonify(body), status


def normalize_doc(obj):
    """Recursively convert BSON types (ObjectId) and datetimes to JSON-serializable values.

    - ObjectId -> str(ObjectId)
    - datetime -> ISO string
    - ``_id`` keys are exposed as ``id``
    Returns a new object; the input is not mutated.
    """
    if obj is None:
        return None
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            out['id' if k == '_id' else k] = normalize_doc(v)
        return out
    if isinstance(obj, list):
        return [normalize_doc(v) for v in obj]
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


def to_object_id(value, field='id'):
    """Parse a hex string into an ObjectId or raise InvalidArgumentError."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        raise InvalidArgumentError(f'Invalid {field}: {value!r}')
    return ObjectId(str(value))


def parse_pagination(args, default_limit=50, max_limit=200):
    errors = {}
    limit = default_limit
    skip = 0
    try:
        limit = int(args.get('limit', default_limit))
        if limit < 1 or limit > max_limit:
            errors['limit'] = f'limit must be between 1 and {max_limit}'
    except (TypeError, ValueError):
        errors['limit'] = 'limit must be an integer'
    try:
        skip = int(args.get('skip', 0))
        if skip < 0:
            errors['skip'] = 'skip must be >= 0'
    except (TypeError, ValueError):
        errors['skip'] = 'skip must be an integer'
    if errors:
        return None, None, errors
    return limit, skip, None
