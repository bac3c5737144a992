from flask import g, request

from bassac.core.helpers import paginate_params, parse_bool
from bassac.core.responses import BadRequestError, NotFoundError, paginated_response, success_response
from bassac.modules.auth.decorators import is_admin, login_required
from . import notifications_bp
from .database import (
    delete_all_notifications_db, delete_notification_db, get_notifications_db, get_unread_count_db,
    mark_all_read_db, mark_read_db,
)
from .service import announce


@notifications_bp.route('', methods=['GET'])
@login_required
def list_notifications():
    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'), default_limit=20)
    unread_only = parse_bool(request.args.get('unreadOnly')) or False
    items, total = get_notifications_db(g.user['id'], unread_only, limit, offset)
    return paginated_response(items, page, limit, total, 'Notifications retrieved successfully')


@notifications_bp.route('/unread-count', methods=['GET'])
@login_required
def unread_count():
    return success_response({'count': get_unread_count_db(g.user['id'])})


@notifications_bp.route('/read-all', methods=['PUT'])
@login_required
def read_all():
    updated = mark_all_read_db(g.user['id'])
    return success_response({'updated': updated}, 'All notifications marked as read')


@notifications_bp.route('/<int:notification_id>/read', methods=['PUT'])
@login_required
def read_one(notification_id):
    notification = mark_read_db(notification_id, g.user['id'])
    if not notification:
        raise NotFoundError('Notification not found')
    return success_response(notification, 'Notification marked as read')


@notifications_bp.route('/all', methods=['DELETE'])
@login_required
def delete_all():
    deleted = delete_all_notifications_db(g.user['id'])
    return success_response({'deleted': deleted}, 'All notifications deleted')


@notifications_bp.route('/<int:notification_id>', methods=['DELETE'])
@login_required
def delete_one(notification_id):
    if not delete_notification_db(notification_id, g.user['id']):
        raise NotFoundError('Notification not found')
    return success_response(None, 'Notification deleted')


@notifications_bp.route('/announce', methods=['POST'])
@is_admin
def send_announcement():
    data = request.get_json(silent=True) or {}
    title = (data.get('title') or '').strip()
    message = (data.get('message') or '').strip()
    if not title or not message:
        raise BadRequestError('Title and message are required')

    delivered = announce(title, message, link=data.get('link'), priority=data.get('priority', 'normal'))
    return success_response({'recipients': delivered}, 'Announcement sent')
