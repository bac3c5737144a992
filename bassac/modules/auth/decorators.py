from functools import wraps

from flask import g, request

from bassac.core.responses import error_response
from .database import UserDatabase
from .tokens import TokenError, verify_access_token

STAFF_ROLES = ('admin', 'editor')
WRITER_ROLES = ('admin', 'editor', 'writer')


def _bearer_token():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip() or None
    return None


def _authenticate():
    """Resolve the bearer token to an active user.

    Returns (user, None) on success or (None, (message, status)) on failure.
    """
    token = _bearer_token()
    if not token:
        return None, ('Access denied. No token provided', 401)

    try:
        payload = verify_access_token(token)
    except TokenError as e:
        return None, (str(e), 401)

    user = UserDatabase.get_user_by_id(payload.get('id'))
    if not user:
        return None, ('User not found', 401)
    if user['status'] != 'active':
        return None, ('Your account has been deactivated', 403)

    return user, None


def is_staff(user):
    return bool(user) and user.get('role') in STAFF_ROLES


def login_required(f):
    """Decorator to require a valid bearer token; sets g.user"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user, error = _authenticate()
        if error:
            return error_response(*error)
        g.user = user
        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """Attach g.user when a valid token is present, otherwise None"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.user = None
        if _bearer_token():
            user, error = _authenticate()
            g.user = None if error else user
        return f(*args, **kwargs)

    return decorated_function


def roles_required(*roles):
    """Decorator factory: login_required plus a role check"""
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            if g.user['role'] not in roles:
                return error_response(f"Access denied. Required role(s): {', '.join(roles)}", 403)
            return f(*args, **kwargs)

        return decorated_function

    return decorator


is_admin = roles_required('admin')
is_editor = roles_required(*STAFF_ROLES)
is_writer = roles_required(*WRITER_ROLES)
