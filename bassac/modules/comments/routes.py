import logging

from flask import g, request

from bassac.core.helpers import get_client_ip, get_user_agent, paginate_params
from bassac.core.logging_service import db_log
from bassac.core.responses import (
    BadRequestError, ForbiddenError, NotFoundError, created_response, paginated_response, success_response,
)
from bassac.modules.articles.database import get_article_by_id_db
from bassac.modules.auth.decorators import is_editor, is_staff, login_required, optional_auth
from bassac.modules.notifications.service import (
    notify_comment_moderated, notify_comment_received, notify_comment_reply,
)
from bassac.modules.settings.database import is_feature_enabled
from . import comments_bp
from .database import (
    MODERATION_STATUSES, bulk_moderate_db, clean_content, count_by_status_db, create_comment_db,
    delete_comment_db, get_comment_by_id_db, list_article_comments_db, list_comments_admin_db,
    moderate_comment_db, populate_comments, public_comment, toggle_like_db, update_comment_content_db,
    validate_guest, within_edit_window,
)

logger = logging.getLogger(__name__)


def _published_article(article_id):
    article = get_article_by_id_db(article_id)
    if not article or article['status'] != 'published':
        raise NotFoundError('Article not found')
    return article


def _load_comment(comment_id):
    comment = get_comment_by_id_db(comment_id)
    if not comment:
        raise NotFoundError('Comment not found')
    return comment


def _display_name(user):
    return f"{user.get('first_name', '')} {user.get('last_name', '')}".strip() or 'Someone'


@comments_bp.route('/articles/<int:article_id>/comments', methods=['GET'])
def article_comments(article_id):
    _published_article(article_id)
    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'),
                                          max_limit=50, default_limit=20)
    comments, total = list_article_comments_db(article_id, limit, offset)
    return paginated_response(comments, page, limit, total, 'Comments retrieved successfully')


@comments_bp.route('/articles/<int:article_id>/comments', methods=['POST'])
@optional_auth
def create_comment(article_id):
    if not is_feature_enabled('enableComments'):
        raise ForbiddenError('Comments are disabled')
    article = _published_article(article_id)
    data = request.get_json(silent=True) or {}
    content = clean_content(data.get('content'))

    parent = None
    if data.get('parent_id'):
        parent = get_comment_by_id_db(data['parent_id'])
        if not parent or parent['article_id'] != article_id:
            raise BadRequestError('Invalid parent comment')

    if g.user:
        author_id, guest_name, guest_email, status = g.user['id'], None, None, 'approved'
        commenter_name = _display_name(g.user)
    else:
        guest_name, guest_email = validate_guest(data.get('guest_name'), data.get('guest_email'))
        author_id, status, commenter_name = None, 'pending', guest_name

    comment = create_comment_db(
        article_id, content, author_id=author_id, guest_name=guest_name, guest_email=guest_email,
        parent_id=parent['id'] if parent else None, status=status,
        ip_address=get_client_ip(), user_agent=get_user_agent(),
    )

    if article['author_id'] != author_id:
        notify_comment_received(article, comment, commenter_name)
    if parent and parent.get('author_id') and parent['author_id'] != author_id:
        notify_comment_reply(parent, comment, article, commenter_name)

    comment = populate_comments([public_comment(comment)])[0]
    message = 'Comment posted successfully' if status == 'approved' else 'Comment submitted for moderation'
    return created_response(comment, message)


@comments_bp.route('/comments/<int:comment_id>', methods=['PUT'])
@login_required
def update_comment(comment_id):
    comment = _load_comment(comment_id)
    is_admin_user = g.user['role'] == 'admin'
    if comment['author_id'] != g.user['id'] and not is_admin_user:
        raise ForbiddenError('You do not have permission to edit this comment')
    if not is_admin_user and not within_edit_window(comment):
        raise ForbiddenError('Comments can only be edited within 15 minutes')

    content = clean_content((request.get_json(silent=True) or {}).get('content'))
    updated = update_comment_content_db(comment_id, content)
    return success_response(populate_comments([public_comment(updated)])[0], 'Comment updated successfully')


@comments_bp.route('/comments/<int:comment_id>', methods=['DELETE'])
@login_required
def delete_comment(comment_id):
    comment = _load_comment(comment_id)
    if comment['author_id'] != g.user['id'] and not is_staff(g.user):
        raise ForbiddenError('You do not have permission to delete this comment')

    removed = delete_comment_db(comment_id)
    db_log('info', 'comments', 'Comment deleted', {'id': comment_id, 'removed': removed, 'by': g.user['id']})
    return success_response({'deleted': removed}, 'Comment deleted successfully')


@comments_bp.route('/comments/<int:comment_id>/like', methods=['POST'])
@login_required
def like_comment(comment_id):
    _load_comment(comment_id)
    liked, likes = toggle_like_db(comment_id, g.user['id'])
    return success_response({'liked': liked, 'likes': likes}, 'Comment liked' if liked else 'Comment unliked')


@comments_bp.route('/comments', methods=['GET'])
@is_editor
def admin_comments():
    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'), default_limit=20)
    comments, total = list_comments_admin_db(request.args.get('status'), request.args.get('article'), limit, offset)
    return paginated_response(comments, page, limit, total, 'Comments retrieved successfully',
                              counts=count_by_status_db())


@comments_bp.route('/comments/<int:comment_id>/moderate', methods=['PUT'])
@is_editor
def moderate_comment(comment_id):
    comment = _load_comment(comment_id)
    data = request.get_json(silent=True) or {}
    status = data.get('status')
    if status not in MODERATION_STATUSES:
        raise BadRequestError('Invalid status. Must be approved, rejected or spam')

    updated = moderate_comment_db(comment_id, status, g.user['id'], data.get('note'))
    article = get_article_by_id_db(comment['article_id'])
    if article and comment['status'] != status and status in ('approved', 'rejected'):
        notify_comment_moderated(updated, article, status == 'approved')

    return success_response(updated, f'Comment {status}')


@comments_bp.route('/comments/bulk-moderate', methods=['POST'])
@is_editor
def bulk_moderate():
    data = request.get_json(silent=True) or {}
    ids = data.get('ids')
    status = data.get('status')
    if not isinstance(ids, list) or not ids:
        raise BadRequestError('Comment ids are required')
    if not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
        raise BadRequestError('Comment ids must be integers')
    if status not in MODERATION_STATUSES:
        raise BadRequestError('Invalid status. Must be approved, rejected or spam')

    modified = bulk_moderate_db(ids, status, g.user['id'])
    db_log('info', 'comments', 'Bulk moderation', {'status': status, 'modified': modified, 'by': g.user['id']})
    return success_response({'modified': modified}, f'{modified} comments updated')
