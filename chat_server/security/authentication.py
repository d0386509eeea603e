import logging
from datetime import timedelta
from typing import Callable, Dict, Optional

from jose import jwt, JWTError

from chat_server.exception.UnauthorizedError import UnauthorizedError
from chat_server.utils.time_utils import now_utc

logger = logging.getLogger(__name__)

MALFORMED_TOKEN = "Malformed or missing token. Please provide a valid JWT token in the Authorization header."
EXPIRED_TOKEN = "Token expired. Please login again or refresh your session."


class AuthSecurity:
    secret_key = None
    algorithm = 'HS256'
    access_token_expire_minutes = 7 * 24 * 60

    @classmethod
    def configure(cls, secret_key, algorithm='HS256', access_token_expire_minutes=7 * 24 * 60):
        cls.secret_key = secret_key
        cls.algorithm = algorithm
        cls.access_token_expire_minutes = access_token_expire_minutes

    @classmethod
    def encode_token(cls, data: dict, expires_delta: timedelta = None) -> str:
        to_encode = data.copy()
        expire = now_utc() + (expires_delta or timedelta(minutes=cls.access_token_expire_minutes))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, cls.secret_key, algorithm=cls.algorithm)

    @classmethod
    def issue_token(cls, external_id: str, name: str, email: str, expires_delta: timedelta = None) -> str:
        """Sign an access token carrying the identity claims read by authenticate()."""
        return cls.encode_token({'uid': external_id, 'name': name, 'email': email}, expires_delta)

    @classmethod
    def decode_token(cls, token: str) -> dict:
        # A JWT always has exactly two dots
        if not token or token.count('.') != 2:
            raise UnauthorizedError(MALFORMED_TOKEN)
        try:
            return jwt.decode(token, cls.secret_key, algorithms=[cls.algorithm])
        except JWTError as e:
            msg = str(e)
            if 'Signature has expired' in msg:
                raise UnauthorizedError(EXPIRED_TOKEN)
            elif 'Not enough segments' in msg or 'Invalid header string' in msg:
                raise UnauthorizedError(MALFORMED_TOKEN)
            elif 'Signature verification failed' in msg:
                raise UnauthorizedError("Invalid token signature. Please login again.")
            raise UnauthorizedError(f"Invalid token: {msg}")


def authenticate(token: str) -> Dict[str, str]:
    """Verify a credential and return the identity it carries.

    Returns ``{'external_id', 'name', 'email'}``; raises UnauthorizedError
    for missing, malformed, expired or badly signed tokens.
    """
    payload = AuthSecurity.decode_token(token)
    external_id = payload.get('uid') or payload.get('sub')
    if not external_id:
        raise UnauthorizedError('Token does not identify a user')
    return {
        'external_id': str(external_id),
        'name': payload.get('name'),
        'email': payload.get('email'),
    }


def get_bearer_token(request) -> Optional[str]:
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None
    return auth_header.split(' ', 1)[1].strip()


def get_auth_payload(request, verifier: Callable[[str], Dict[str, str]] = authenticate) -> Dict[str, str]:
    """
    Extracts the Bearer token from the Authorization header and passes it to ``verifier``.
    Raises UnauthorizedError if missing or invalid.
    """
    token = get_bearer_token(request)
    if not token:
        raise UnauthorizedError('Missing or invalid token')
    return verifier(token)
