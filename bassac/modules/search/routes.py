from flask import request

from bassac.core.helpers import build_pagination, clamp_limit, paginate_params, parse_bool
from bassac.core.logging_service import db_log
from bassac.core.responses import NotFoundError, success_response
from bassac.modules.articles.translations import normalize_language
from bassac.modules.auth.decorators import is_admin
from bassac.modules.categories.database import get_category_by_slug_db
from bassac.modules.settings.database import is_feature_enabled
from . import search_bp
from .service import search_service


@search_bp.before_request
def check_search_enabled():
    if not is_feature_enabled('enableSearch'):
        raise NotFoundError('Search is disabled')


@search_bp.route('', methods=['GET'])
def search():
    args = request.args
    page, limit, _ = paginate_params(args.get('page'), args.get('limit'), max_limit=50)

    filters = {
        'language': normalize_language(args.get('language')),
        'author_id': args.get('author'),
        'tags': [t.strip().lower() for t in args.get('tags', '').split(',') if t.strip()],
        'start_date': args.get('startDate'),
        'end_date': args.get('endDate'),
        'is_featured': parse_bool(args.get('isFeatured')),
        'is_breaking': parse_bool(args.get('isBreaking')),
    }
    if args.get('category'):
        category = get_category_by_slug_db(args['category'])
        filters['category_id'] = category['id'] if category else -1

    result = search_service.search(args.get('q'), filters, args.get('sortBy') or 'relevance', page, limit)
    result['pagination'] = build_pagination(page, limit, result.pop('total'))
    return success_response(result, 'Search completed')


@search_bp.route('/autocomplete', methods=['GET'])
def autocomplete():
    limit = clamp_limit(request.args.get('limit'), 5, 10)
    return success_response(search_service.autocomplete(request.args.get('q'), limit), 'Suggestions retrieved')


@search_bp.route('/similar/<int:article_id>', methods=['GET'])
def similar(article_id):
    articles = search_service.similar(article_id, clamp_limit(request.args.get('limit'), 5, 20))
    if articles is None:
        raise NotFoundError('Article not found')
    return success_response(articles, 'Similar articles retrieved')


@search_bp.route('/trending', methods=['GET'])
def trending():
    days = clamp_limit(request.args.get('days'), 7, 90)
    limit = clamp_limit(request.args.get('limit'), 10, 50)
    return success_response(search_service.trending(days, limit), 'Trending articles retrieved')


@search_bp.route('/reindex', methods=['POST'])
@is_admin
def reindex():
    indexed = search_service.reindex_all()
    db_log('info', 'search', f'Reindexed {indexed} articles')
    return success_response({'indexed': indexed}, 'Reindex completed')


@search_bp.route('/status', methods=['GET'])
@is_admin
def status():
    return success_response(search_service.status(), 'Search status retrieved')
