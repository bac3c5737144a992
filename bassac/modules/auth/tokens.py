"""
JWT helpers (PyJWT, HS256).

Access tokens carry {id, email, role}; refresh tokens use a separate secret.
Single-purpose tokens (email verification) carry a ``purpose`` claim.
Every token carries a ``type`` claim and each verifier accepts only its own
type.
"""

import re
from datetime import timedelta

import jwt

from bassac.core.config import get_config_value
from bassac.core.helpers import utcnow

ALGORITHM = 'HS256'

_DURATION_RE = re.compile(r'^(\d+)\s*([smhdw]?)$')
_UNITS = {'s': 'seconds', 'm': 'minutes', 'h': 'hours', 'd': 'days', 'w': 'weeks', '': 'seconds'}


class TokenError(Exception):
    """Raised for invalid or expired tokens; message is safe to show"""


def parse_duration(value, default=timedelta(days=7)):
    """'7d', '15m', '24h' or plain seconds -> timedelta"""
    if isinstance(value, timedelta):
        return value
    match = _DURATION_RE.match(str(value or '').strip().lower())
    if not match:
        return default
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})


def _access_secret():
    return get_config_value('JWT_SECRET') or get_config_value('SECRET_KEY')


def _refresh_secret():
    return get_config_value('JWT_REFRESH_SECRET') or _access_secret()


def _encode(payload, secret, expires_in):
    now = utcnow()
    claims = dict(payload, iat=now, exp=now + expires_in)
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def _decode(token, secret, token_type):
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenError('Token has expired')
    except jwt.InvalidTokenError:
        raise TokenError('Invalid token')
    if payload.get('type') != token_type:
        raise TokenError('Invalid token')
    return payload


def generate_access_token(user):
    expires_in = parse_duration(get_config_value('JWT_EXPIRES_IN', '7d'))
    return _encode({'id': user['id'], 'email': user['email'], 'role': user['role'], 'type': 'access'},
                   _access_secret(), expires_in)


def generate_refresh_token(user):
    expires_in = parse_duration(get_config_value('JWT_REFRESH_EXPIRES_IN', '30d'), timedelta(days=30))
    return _encode({'id': user['id'], 'type': 'refresh'}, _refresh_secret(), expires_in)


def generate_token_pair(user):
    return generate_access_token(user), generate_refresh_token(user)


def verify_access_token(token):
    return _decode(token, _access_secret(), 'access')


def verify_refresh_token(token):
    return _decode(token, _refresh_secret(), 'refresh')


def generate_purpose_token(user_id, purpose, expires_in=timedelta(hours=24)):
    return _encode({'id': user_id, 'purpose': purpose, 'type': 'purpose'}, _access_secret(), expires_in)


def verify_purpose_token(token, purpose):
    payload = _decode(token, _access_secret(), 'purpose')
    if payload.get('purpose') != purpose:
        raise TokenError('Invalid token')
    return payload
