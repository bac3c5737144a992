"""
Bassac Auth Module

Provides JWT authentication and user management:
- Email/password registration and login with lockout
- Email verification and password reset
- OAuth login (Google, GitHub) via Authlib
- Role decorators (admin, editor, writer)
- Profile, avatar and admin user management under /api/users
"""

from flask import Blueprint

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')
users_bp = Blueprint('users', __name__, url_prefix='/api/users')

from . import routes, user_routes  # noqa: E402,F401
from .database import UserDatabase  # noqa: E402
from .decorators import is_admin, is_editor, is_writer, login_required, optional_auth, roles_required  # noqa: E402
from .oauth import configure_oauth, oauth  # noqa: E402

__all__ = ['auth_bp', 'users_bp', 'UserDatabase', 'login_required', 'optional_auth', 'roles_required',
           'is_admin', 'is_editor', 'is_writer', 'configure_oauth', 'oauth']
