import hashlib
import secrets
from datetime import timedelta
from urllib.parse import urlencode

from flask import g, redirect, request, url_for

from bassac.core.cache import cache
from bassac.core.config import get_config_value
from bassac.core.helpers import utcnow
from bassac.core.logging_service import logger as app_logger
from bassac.core.responses import (
    BadRequestError, UnauthorizedError, ValidationError, created_response, error_response, success_response,
)
from bassac.modules.email import email_service
from . import auth_bp
from .database import EMAIL_REGEX, UserDatabase
from .decorators import login_required
from .lockout import clear_failures, lock_remaining_minutes, record_failure
from .oauth import PROVIDERS, fetch_profile, oauth
from .tokens import (
    TokenError, generate_purpose_token, generate_token_pair, verify_purpose_token, verify_refresh_token,
)

MIN_PASSWORD_LENGTH = 8
NAME_MAX_LENGTH = 50
RESET_TOKEN_TTL = timedelta(hours=1)
SOCIAL_CODE_TTL = 60


def _hash_token(token):
    return hashlib.sha256(token.encode()).hexdigest()


def _issue_tokens(user):
    """Generate an access/refresh pair and remember the refresh token on the user"""
    access_token, refresh_token = generate_token_pair(user)
    UserDatabase.update_user(user['id'], refresh_token=refresh_token)
    return access_token, refresh_token


def _send_verification(user):
    try:
        token = generate_purpose_token(user['id'], 'email-verification')
        email_service.send_verification_email(user, token)
    except Exception as e:
        app_logger.error('auth', f"Failed to send verification email: {e}", {'user_id': user['id']})


def validate_registration(data):
    """Field errors for a registration payload"""
    errors = []
    email = (data.get('email') or '').strip()
    if not email or not EMAIL_REGEX.match(email):
        errors.append({'field': 'email', 'message': 'Please provide a valid email'})
    if len(data.get('password') or '') < MIN_PASSWORD_LENGTH:
        errors.append({'field': 'password',
                       'message': f'Password must be at least {MIN_PASSWORD_LENGTH} characters'})
    for field, label in (('first_name', 'First name'), ('last_name', 'Last name')):
        value = (data.get(field) or '').strip()
        if not value:
            errors.append({'field': field, 'message': f'{label} is required'})
        elif len(value) > NAME_MAX_LENGTH:
            errors.append({'field': field, 'message': f'{label} cannot exceed {NAME_MAX_LENGTH} characters'})
    return errors


@auth_bp.route('/check-email', methods=['GET'])
def check_email():
    email = (request.args.get('email') or '').strip().lower()
    if not email:
        raise BadRequestError('Email is required')
    exists = UserDatabase.email_exists(email)
    return success_response({'email': email, 'exists': exists, 'available': not exists})


@auth_bp.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    errors = validate_registration(data)
    if errors:
        raise ValidationError('Validation failed', errors)

    if UserDatabase.email_exists(data['email']):
        return error_response('Email already registered', 409)

    user = UserDatabase.create_user(data['email'], data['first_name'], data['last_name'],
                                    password=data['password'])
    access_token, refresh_token = _issue_tokens(user)
    _send_verification(user)

    app_logger.log_user_action('auth', 'register', user['id'], {'email': user['email']})
    return created_response({'user': user, 'accessToken': access_token, 'refreshToken': refresh_token},
                            'Registration successful. Please verify your email.')


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not email or not password:
        raise BadRequestError('Email and password are required')

    minutes = lock_remaining_minutes(email)
    if minutes:
        return error_response(f'Too many failed login attempts. Please try again in {minutes} minutes.', 423)

    record = UserDatabase.verify_credentials(email, password)
    if not record:
        remaining = record_failure(email)
        app_logger.log_security_event('Failed login attempt', {'email': email, 'remaining': remaining})
        if remaining == 0:
            minutes = lock_remaining_minutes(email)
            return error_response(
                f'Too many failed login attempts. Please try again in {minutes} minutes.', 423)
        return error_response(f'Invalid email or password. {remaining} attempts remaining.', 401)

    if record['status'] != 'active':
        return error_response('Your account has been deactivated. Please contact support.', 401)

    clear_failures(email)
    UserDatabase.update_last_login(record['id'])
    user = UserDatabase.get_user_by_id(record['id'])
    access_token, refresh_token = _issue_tokens(user)

    app_logger.log_user_action('auth', 'login', user['id'])
    return success_response({'user': user, 'accessToken': access_token, 'refreshToken': refresh_token},
                            'Login successful')


@auth_bp.route('/refresh', methods=['POST'])
def refresh():
    data = request.get_json(silent=True) or {}
    token = data.get('refreshToken') or data.get('refresh_token')
    if not token:
        raise BadRequestError('Refresh token is required')

    try:
        payload = verify_refresh_token(token)
    except TokenError:
        raise UnauthorizedError('Invalid refresh token')

    record = UserDatabase.get_record(payload.get('id'))
    if not record or record.get('refresh_token') != token:
        raise UnauthorizedError('Invalid refresh token')
    if record['status'] != 'active':
        raise UnauthorizedError('Your account has been deactivated. Please contact support.')

    access_token, refresh_token = _issue_tokens(UserDatabase.get_user_by_id(record['id']))
    return success_response({'accessToken': access_token, 'refreshToken': refresh_token},
                            'Token refreshed successfully')


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return success_response(g.user, 'User retrieved successfully')


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    UserDatabase.update_user(g.user['id'], refresh_token=None)
    return success_response(None, 'Logged out successfully')


@auth_bp.route('/verify-email', methods=['POST'])
def verify_email():
    token = (request.get_json(silent=True) or {}).get('token')
    if not token:
        raise BadRequestError('Verification token is required')

    try:
        payload = verify_purpose_token(token, 'email-verification')
    except TokenError:
        raise BadRequestError('Invalid or expired verification token')

    user = UserDatabase.get_user_by_id(payload['id'])
    if not user:
        raise BadRequestError('Invalid or expired verification token')

    user = UserDatabase.update_user(user['id'], is_email_verified=True)
    return success_response(user, 'Email verified successfully')


@auth_bp.route('/resend-verification', methods=['POST'])
@login_required
def resend_verification():
    if g.user['is_email_verified']:
        raise BadRequestError('Email is already verified')
    _send_verification(g.user)
    return success_response(None, 'Verification email sent')


@auth_bp.route('/forgot-password', methods=['POST'])
def forgot_password():
    email = ((request.get_json(silent=True) or {}).get('email') or '').strip().lower()
    if not email:
        raise BadRequestError('Email is required')

    user = UserDatabase.get_user_by_email(email)
    if user:
        token = secrets.token_urlsafe(32)
        expires = (utcnow() + RESET_TOKEN_TTL).isoformat(timespec='microseconds')
        UserDatabase.update_user(user['id'], reset_token=_hash_token(token), reset_token_expires=expires)
        try:
            email_service.send_password_reset_email(user, token)
        except Exception as e:
            app_logger.error('auth', f"Failed to send password reset email: {e}", {'user_id': user['id']})

    return success_response(None, 'If the email exists, a reset link has been sent')


@auth_bp.route('/reset-password', methods=['POST'])
def reset_password():
    data = request.get_json(silent=True) or {}
    token = data.get('token')
    password = data.get('password') or ''
    if not token:
        raise BadRequestError('Reset token is required')
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError('Validation failed', [{
            'field': 'password', 'message': f'Password must be at least {MIN_PASSWORD_LENGTH} characters'}])

    record = UserDatabase.get_user_by_reset_token(_hash_token(token))
    if not record:
        raise BadRequestError('Invalid or expired reset token')

    UserDatabase.set_password(record['id'], password)
    UserDatabase.update_user(record['id'], refresh_token=None)
    clear_failures(record['email'])
    app_logger.log_security_event('Password reset', {'user_id': record['id']})
    return success_response(None, 'Password reset successful')


@auth_bp.route('/change-password', methods=['PUT'])
@login_required
def change_password():
    data = request.get_json(silent=True) or {}
    current = data.get('current_password') or ''
    new = data.get('new_password') or ''

    if not UserDatabase.check_password(g.user['id'], current):
        raise BadRequestError('Current password is incorrect')
    if len(new) < MIN_PASSWORD_LENGTH:
        raise ValidationError('Validation failed', [{
            'field': 'new_password', 'message': f'Password must be at least {MIN_PASSWORD_LENGTH} characters'}])

    UserDatabase.set_password(g.user['id'], new)
    return success_response(None, 'Password changed successfully')


# ===== Social login =====

def _oauth_client(provider):
    if provider not in PROVIDERS:
        raise BadRequestError('Invalid authentication provider')
    client = oauth.create_client(provider)
    if client is None:
        return None
    return client


@auth_bp.route('/social/<provider>', methods=['GET'])
def social_login(provider):
    client = _oauth_client(provider)
    if client is None:
        return error_response(f'{provider.title()} login is not configured', 503)
    redirect_uri = url_for('auth.social_callback', provider=provider, _external=True)
    return client.authorize_redirect(redirect_uri)


@auth_bp.route('/social/<provider>/callback', methods=['GET'])
def social_callback(provider):
    """Finish the OAuth dance and hand the frontend a one-time exchange code"""
    frontend_url = get_config_value('FRONTEND_URL', 'http://localhost:5173').rstrip('/')
    client = _oauth_client(provider)
    if client is None:
        return error_response(f'{provider.title()} login is not configured', 503)

    try:
        provider_id, email, first_name, last_name, avatar = fetch_profile(provider, client)
    except Exception as e:
        app_logger.error('auth', f"OAuth callback failed for {provider}: {e}")
        return redirect(f"{frontend_url}/login?{urlencode({'error': 'oauth_failed'})}")

    if not email:
        return redirect(f"{frontend_url}/login?{urlencode({'error': 'email_unavailable'})}")

    user = UserDatabase.find_or_create_oauth_user(provider, provider_id, email, first_name, last_name, avatar)
    if user['status'] != 'active':
        return redirect(f"{frontend_url}/login?{urlencode({'error': 'account_deactivated'})}")

    UserDatabase.update_last_login(user['id'])
    code = secrets.token_urlsafe(24)
    cache.set(cache.key('social', code), user['id'], SOCIAL_CODE_TTL)
    app_logger.log_user_action('auth', 'social_login', user['id'], {'provider': provider})
    return redirect(f"{frontend_url}/auth/callback?{urlencode({'code': code})}")


@auth_bp.route('/social/exchange', methods=['POST'])
def social_exchange():
    code = (request.get_json(silent=True) or {}).get('code')
    if not code:
        raise BadRequestError('Code is required')

    key = cache.key('social', code)
    user_id = cache.get(key)
    cache.delete(key)
    user = UserDatabase.get_user_by_id(user_id) if user_id else None
    if not user:
        raise UnauthorizedError('Invalid or expired code')

    access_token, refresh_token = _issue_tokens(user)
    return success_response({'user': user, 'accessToken': access_token, 'refreshToken': refresh_token},
                            'Login successful')
