from flask import g, request

from bassac.core.helpers import paginate_params
from bassac.core.logging_service import logger as app_logger
from bassac.core.responses import (
    BadRequestError, NotFoundError, ValidationError, paginated_response, success_response,
)
from bassac.core.storage import delete_file, save_uploaded_image
from bassac.modules.notifications.service import notify_role_changed
from . import users_bp
from .database import GENDERS, ROLES, STATUSES, UserDatabase
from .decorators import is_admin, login_required

BIO_MAX_LENGTH = 500
NAME_MAX_LENGTH = 50
AVATAR_SIZE = 400


def validate_profile(data):
    errors = [{'field': key, 'message': f'{key} must be a string'}
              for key in ('first_name', 'last_name', 'bio', 'gender')
              if data.get(key) is not None and not isinstance(data[key], str)]
    if errors:
        return errors
    for field, label in (('first_name', 'First name'), ('last_name', 'Last name')):
        if field in data:
            value = (data.get(field) or '').strip()
            if not value:
                errors.append({'field': field, 'message': f'{label} is required'})
            elif len(value) > NAME_MAX_LENGTH:
                errors.append({'field': field, 'message': f'{label} cannot exceed {NAME_MAX_LENGTH} characters'})
    if len(data.get('bio') or '') > BIO_MAX_LENGTH:
        errors.append({'field': 'bio', 'message': f'Bio cannot exceed {BIO_MAX_LENGTH} characters'})
    if data.get('gender') and data['gender'] not in GENDERS:
        errors.append({'field': 'gender', 'message': 'Invalid gender'})
    return errors


@users_bp.route('/profile/<int:user_id>', methods=['GET'])
def public_profile(user_id):
    user = UserDatabase.get_user_by_id(user_id)
    if not user or user['status'] != 'active':
        raise NotFoundError('User not found')

    profile = {key: user[key] for key in ('id', 'first_name', 'last_name', 'full_name', 'avatar', 'bio',
                                          'role', 'created_at')}
    return success_response(profile, 'Profile retrieved successfully')


@users_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    data = request.get_json(silent=True) or {}
    errors = validate_profile(data)
    if errors:
        raise ValidationError('Validation failed', errors)

    updates = {key: data[key] for key in ('first_name', 'last_name', 'bio', 'gender') if key in data}
    user = UserDatabase.update_user(g.user['id'], **updates)
    return success_response(user, 'Profile updated successfully')


@users_bp.route('/avatar', methods=['POST'])
@login_required
def upload_avatar():
    url = save_uploaded_image(request.files.get('avatar'), 'avatars', square=AVATAR_SIZE)
    previous = g.user.get('avatar')
    user = UserDatabase.update_user(g.user['id'], avatar=url)
    if previous:
        delete_file(previous)
    return success_response(user, 'Avatar uploaded successfully')


@users_bp.route('/avatar', methods=['DELETE'])
@login_required
def remove_avatar():
    if g.user.get('avatar'):
        delete_file(g.user['avatar'])
    user = UserDatabase.update_user(g.user['id'], avatar=None)
    return success_response(user, 'Avatar removed successfully')


# ===== Admin =====

@users_bp.route('', methods=['GET'])
@is_admin
def list_users():
    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'), default_limit=20)
    users, total = UserDatabase.list_users(request.args.get('role'), request.args.get('status'),
                                           request.args.get('q'), limit, offset)
    return paginated_response(users, page, limit, total, 'Users retrieved successfully')


@users_bp.route('/stats', methods=['GET'])
@is_admin
def user_stats():
    return success_response(UserDatabase.get_stats(), 'User statistics retrieved')


@users_bp.route('/<int:user_id>', methods=['GET'])
@is_admin
def get_user(user_id):
    user = UserDatabase.get_user_by_id(user_id)
    if not user:
        raise NotFoundError('User not found')
    return success_response(user, 'User retrieved successfully')


@users_bp.route('/<int:user_id>', methods=['PUT'])
@is_admin
def update_user(user_id):
    user = UserDatabase.get_user_by_id(user_id)
    if not user:
        raise NotFoundError('User not found')

    data = request.get_json(silent=True) or {}
    role = data.get('role')
    status = data.get('status')

    if role is not None and role not in ROLES:
        raise BadRequestError('Invalid role')
    if status is not None and status not in STATUSES:
        raise BadRequestError('Invalid status')

    if user_id == g.user['id']:
        if role is not None and role != 'admin':
            raise BadRequestError('You cannot change your own role')
        if status is not None and status != 'active':
            raise BadRequestError('You cannot deactivate your own account')

    errors = validate_profile(data)
    if errors:
        raise ValidationError('Validation failed', errors)

    updates = {key: data[key] for key in ('first_name', 'last_name', 'bio', 'role', 'status') if key in data}
    updated = UserDatabase.update_user(user_id, **updates)

    if role is not None and role != user['role']:
        notify_role_changed(user_id, role, changed_by=g.user['id'])
        app_logger.log_user_action('users', 'role_changed', g.user['id'],
                                   {'target': user_id, 'from': user['role'], 'to': role})

    return success_response(updated, 'User updated successfully')


@users_bp.route('/<int:user_id>', methods=['DELETE'])
@is_admin
def delete_user(user_id):
    if user_id == g.user['id']:
        raise BadRequestError('You cannot delete your own account')
    if not UserDatabase.delete_user(user_id):
        raise NotFoundError('User not found')

    app_logger.log_user_action('users', 'user_deleted', g.user['id'], {'target': user_id})
    return success_response(None, 'User deleted successfully')
