import copy

from flask import g, request

from bassac.core.cache import TTL, cache
from bassac.core.helpers import build_pagination, clamp_limit, paginate_params, parse_bool
from bassac.core.logging_service import db_log, logger
from bassac.core.responses import (
    BadRequestError, ForbiddenError, NotFoundError, created_response, paginated_response, success_response,
)
from bassac.core.storage import delete_file, save_uploaded_image
from bassac.modules.analytics.analytics import Analytics, default_range
from bassac.modules.auth.decorators import is_editor, is_writer, login_required, optional_auth
from bassac.modules.categories.database import get_category_by_id_db, get_category_by_slug_db
from bassac.modules.comments.database import delete_comments_for_article_db
from bassac.modules.notifications.service import notify_article_published
from bassac.modules.subscriptions.database import get_or_create
from . import articles_bp
from .content import truncate_blocks
from .database import (
    count_by_status_db, create_article_db, delete_article_db, extract_fields, get_article_by_id_db,
    get_articles_by_ids_db, get_featured_articles_db, get_latest_articles_db, get_related_articles_db,
    list_articles_db, normalize_post_type, populate_article, populate_articles, search_articles_db,
    set_review_fields_db, update_article_db, validate_article,
)
from .translations import apply_preferred_language, delete_article_translations_db, normalize_language, \
    resolve_article_by_slug
from .views import flush_view_counts, record_view
from .workflow import (
    after_delete, after_write, apply_status_change, approve_article, can_access, can_delete, check_can_edit,
    create_message, filter_updates, reject_article, resolve_create_status, submitted_for_review,
)

PREVIEW_BLOCKS = 3


def _requested_language():
    return normalize_language(request.args.get('language') or request.args.get('lang'))


def _localized(articles, language):
    return apply_preferred_language(populate_articles(articles), language)


def _load_article(article_id):
    article = get_article_by_id_db(article_id)
    if not article:
        raise NotFoundError('Article not found')
    return article


def _require_category(category_id):
    category = get_category_by_id_db(category_id) if category_id else None
    if not category or not category['is_active']:
        raise BadRequestError('Category not found')
    return category


# ===== Public =====

@articles_bp.route('', methods=['GET'])
def list_articles():
    args = request.args
    page, limit, offset = paginate_params(args.get('page'), args.get('limit'), max_limit=50)
    language = _requested_language()
    post_type = normalize_post_type(args['postType']) if args.get('postType') else None
    sort_by = args.get('sortBy') or 'publishedAt'
    sort_order = args.get('sortOrder') or 'desc'
    category_slug = args.get('category') or ''
    tag = (args.get('tag') or '').strip().lower()
    is_breaking = parse_bool(args.get('isBreaking'))
    is_featured = parse_bool(args.get('isFeatured'))

    def build():
        filters = {'status': 'published', 'tag': tag, 'post_type': post_type,
                   'is_breaking': is_breaking, 'is_featured': is_featured}
        if category_slug:
            category = get_category_by_slug_db(category_slug)
            if not category:
                return {'items': [], 'total': 0}
            filters['category_id'] = category['id']
        items, total = list_articles_db(filters, sort_by, sort_order, limit, offset)
        return {'items': _localized(items, language), 'total': total}

    key = cache.key('articles', 'list', page, limit, category_slug, tag, sort_by, sort_order,
                    is_breaking, is_featured, post_type or '', language or '')
    result = cache.get_or_set(key, build, TTL['list'])
    return paginated_response(result['items'], page, limit, result['total'], 'Articles retrieved successfully')


@articles_bp.route('/featured', methods=['GET'])
def featured_articles():
    limit = clamp_limit(request.args.get('limit'), 5, 10)
    language = _requested_language()
    articles = cache.get_or_set(
        cache.key('articles', 'featured', limit, language or ''),
        lambda: _localized(get_featured_articles_db(limit), language),
        TTL['featured'],
    )
    return success_response(articles, 'Featured articles retrieved successfully')


@articles_bp.route('/latest', methods=['GET'])
def latest_articles():
    limit = clamp_limit(request.args.get('limit'), 10, 20)
    language = _requested_language()
    articles = cache.get_or_set(
        cache.key('articles', 'latest', limit, language or ''),
        lambda: _localized(get_latest_articles_db(limit), language),
        TTL['list'],
    )
    return success_response(articles, 'Latest articles retrieved successfully')


@articles_bp.route('/search', methods=['GET'])
def search_articles():
    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'), max_limit=50)
    articles, total = search_articles_db(request.args.get('q'), limit, offset)
    return paginated_response(_localized(articles, _requested_language()), page, limit, total,
                              'Search results retrieved successfully')


@articles_bp.route('/category/<slug>', methods=['GET'])
def articles_by_category(slug):
    category = get_category_by_slug_db(slug)
    if not category:
        raise NotFoundError('Category not found')

    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'), max_limit=50)
    articles, total = list_articles_db({'status': 'published', 'category_id': category['id']},
                                       limit=limit, offset=offset)
    return success_response({
        'category': category,
        'articles': _localized(articles, _requested_language()),
        'pagination': build_pagination(page, limit, total),
    }, 'Articles retrieved successfully')


@articles_bp.route('/slug/<slug>', methods=['GET'])
@optional_auth
def get_article_by_slug(slug):
    lang = request.args.get('lang') or request.args.get('language')

    def resolve():
        article, language_block = resolve_article_by_slug(slug, lang)
        if not article:
            return None
        return {'article': populate_article(article), 'language': language_block}

    if lang:
        resolved = resolve()
    else:
        resolved = cache.get_or_set(cache.key('article', slug), resolve, TTL['article'])
    if not resolved:
        raise NotFoundError('Article not found')

    resolved = copy.deepcopy(resolved)
    article = resolved['article']
    owner_or_staff = can_access(article, g.user)
    if article['status'] != 'published' and not owner_or_staff:
        raise NotFoundError('Article not found')

    article['locked'] = False
    if article.get('is_premium') and not owner_or_staff:
        allowed = False
        if g.user:
            subscription = get_or_create(g.user['id'])
            allowed = subscription.can_access_article(article)
            if allowed and subscription['plan'] == 'free':
                subscription.increment_article_read(article['id'])
        if not allowed:
            article['content'] = truncate_blocks(article['content'], PREVIEW_BLOCKS)
            article['locked'] = True

    return success_response(resolved, 'Article retrieved successfully')


@articles_bp.route('/<int:article_id>/view', methods=['POST'])
@optional_auth
def track_view(article_id):
    article = _load_article(article_id)
    if article['status'] != 'published':
        raise NotFoundError('Article not found')
    count = record_view(article, g.user['id'] if g.user else None)
    return success_response({'buffered_views': count}, 'View recorded')


@articles_bp.route('/<int:article_id>/related', methods=['GET'])
def related_articles(article_id):
    article = _load_article(article_id)
    limit = clamp_limit(request.args.get('limit'), 4, 10)
    return success_response(_localized(get_related_articles_db(article, limit), _requested_language()),
                            'Related articles retrieved successfully')


# ===== Authenticated =====

@articles_bp.route('/my', methods=['GET'])
@login_required
def my_articles():
    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'), max_limit=50)
    filters = {'author_id': g.user['id'], 'status': request.args.get('status')}
    articles, total = list_articles_db(filters, 'created_at', 'desc', limit, offset)
    return paginated_response(populate_articles(articles), page, limit, total, 'Articles retrieved successfully')


@articles_bp.route('', methods=['POST'])
@is_writer
def create_article():
    data = request.get_json(silent=True) or {}
    fields = extract_fields(data)
    validate_article(fields)
    _require_category(fields['category_id'])

    fields['status'] = resolve_create_status(fields.get('status') or 'draft', g.user)
    filter_updates(fields, g.user)

    article = create_article_db(fields, g.user['id'])
    after_write(article)
    if article['status'] == 'pending':
        submitted_for_review(article, g.user)

    logger.log_user_action('articles', 'create_article', g.user['id'],
                           {'article_id': article['id'], 'status': article['status']})
    return created_response(populate_article(article), create_message(article['status']))


@articles_bp.route('/id/<int:article_id>', methods=['GET'])
@login_required
def get_article_by_id(article_id):
    article = _load_article(article_id)
    if not can_access(article, g.user) and article['status'] != 'published':
        raise ForbiddenError('You do not have access to this article')
    return success_response(populate_article(article), 'Article retrieved successfully')


@articles_bp.route('/<int:article_id>', methods=['PUT'])
@login_required
def update_article(article_id):
    article = _load_article(article_id)
    check_can_edit(article, g.user)

    data = request.get_json(silent=True) or {}
    updates = extract_fields(data)
    requested_status = updates.pop('status', None)
    filter_updates(updates, g.user)

    validate_article(dict(article, **updates))
    if 'category_id' in updates and updates['category_id'] != article['category_id']:
        _require_category(updates['category_id'])
    updates.update(apply_status_change(article, requested_status, g.user))

    updated = update_article_db(article_id, updates, g.user['id'])
    after_write(updated, previous=article)

    if article['featured_image'] and updated['featured_image'] != article['featured_image']:
        delete_file(article['featured_image'])
    if updated['status'] == 'pending' and article['status'] != 'pending':
        author = g.user if g.user['id'] == updated['author_id'] else None
        submitted_for_review(updated, author)
    if updated['status'] == 'published' and article['status'] != 'published' \
            and updated['author_id'] != g.user['id']:
        notify_article_published(updated)

    logger.log_user_action('articles', 'update_article', g.user['id'],
                           {'article_id': article_id, 'status': updated['status']})
    return success_response(populate_article(updated), 'Article updated successfully')


@articles_bp.route('/<int:article_id>', methods=['DELETE'])
@login_required
def delete_article(article_id):
    article = _load_article(article_id)
    if not can_delete(article, g.user):
        raise ForbiddenError('You do not have permission to delete this article')

    delete_article_db(article_id)
    delete_article_translations_db(article_id)
    delete_comments_for_article_db(article_id)
    after_delete(article)
    if article['featured_image']:
        delete_file(article['featured_image'])

    logger.log_user_action('articles', 'delete_article', g.user['id'], {'article_id': article_id})
    return success_response(None, 'Article deleted successfully')


@articles_bp.route('/<int:article_id>/featured-image', methods=['POST'])
@login_required
def upload_featured_image(article_id):
    article = _load_article(article_id)
    check_can_edit(article, g.user)

    file = request.files.get('image')
    if not file or not file.filename:
        raise BadRequestError('No image file provided')

    url = save_uploaded_image(file, 'articles', max_width=1600)
    updated = set_review_fields_db(article_id, featured_image=url)
    if article['featured_image']:
        delete_file(article['featured_image'])
    after_write(updated, previous=article)
    return success_response({'featured_image': url}, 'Featured image uploaded successfully')


# ===== Editor =====

@articles_bp.route('/pending', methods=['GET'])
@is_editor
def pending_articles():
    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'), max_limit=50)
    articles, total = list_articles_db({'status': 'pending'}, 'created_at', 'asc', limit, offset)
    return paginated_response(populate_articles(articles), page, limit, total,
                              'Pending articles retrieved successfully')


@articles_bp.route('/<int:article_id>/approve', methods=['PUT'])
@is_editor
def approve(article_id):
    data = request.get_json(silent=True) or {}
    article = approve_article(_load_article(article_id), g.user, data.get('notes') or data.get('review_notes'))
    logger.log_user_action('articles', 'approve_article', g.user['id'], {'article_id': article_id})
    return success_response(populate_article(article), 'Article approved and published')


@articles_bp.route('/<int:article_id>/reject', methods=['PUT'])
@is_editor
def reject(article_id):
    data = request.get_json(silent=True) or {}
    article = reject_article(_load_article(article_id), g.user, data.get('reason'))
    logger.log_user_action('articles', 'reject_article', g.user['id'], {'article_id': article_id})
    return success_response(populate_article(article), 'Article rejected')


@articles_bp.route('/admin', methods=['GET'])
@is_editor
def admin_articles():
    args = request.args
    page, limit, offset = paginate_params(args.get('page'), args.get('limit'), max_limit=100)
    filters = {
        'status': args.get('status'),
        'author_id': args.get('author'),
        'q': (args.get('q') or '').strip(),
        'post_type': normalize_post_type(args['postType']) if args.get('postType') else None,
    }
    if args.get('category'):
        filters['category_id'] = args['category']
    articles, total = list_articles_db(filters, args.get('sortBy') or 'createdAt', args.get('sortOrder') or 'desc',
                                       limit, offset)
    return paginated_response(populate_articles(articles), page, limit, total, 'Articles retrieved successfully',
                              counts=count_by_status_db())


@articles_bp.route('/insights', methods=['GET'])
@is_editor
def insights():
    date_range = default_range(request.args.get('startDate'), request.args.get('endDate'))
    if date_range is None:
        raise BadRequestError('Invalid date range')
    start, end = date_range

    top = Analytics.top_articles(start, end, limit=10)
    articles = get_articles_by_ids_db(row['article_id'] for row in top)
    top_articles = [
        dict(row, title=articles[row['article_id']]['title'], slug=articles[row['article_id']]['slug'])
        for row in top if row['article_id'] in articles
    ]

    return success_response({
        'range': {'start': start.isoformat(), 'end': end.isoformat()},
        'daily_views': Analytics.daily_views(start, end),
        'totals': Analytics.totals(start, end),
        'top_articles': top_articles,
        'by_status': count_by_status_db(),
    }, 'Article insights retrieved')


@articles_bp.route('/flush-views', methods=['POST'])
@is_editor
def flush_views():
    updated = flush_view_counts()
    db_log('info', 'articles', 'Manual view flush', {'updated': updated, 'user_id': g.user['id']})
    return success_response({'updated': updated}, 'View counts flushed')

