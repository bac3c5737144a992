from flask import g, request

from bassac.core.cache import cache
from bassac.core.responses import ForbiddenError, NotFoundError, created_response, success_response
from bassac.modules.auth.decorators import is_writer
from . import translations_bp
from .database import get_article_by_id_db
from .translations import (
    LANGUAGES, create_translation_db, delete_translation_db, get_translation_db, get_translations_db,
    normalize_language, update_translation_db,
)
from .workflow import can_access


def _editable_article(article_id):
    article = get_article_by_id_db(article_id)
    if not article:
        raise NotFoundError('Article not found')
    if not can_access(article, g.user):
        raise ForbiddenError('You do not have permission to translate this article')
    return article


def _invalidate(article, *translation_slugs):
    cache.invalidate_article(article['id'], article['slug'], *translation_slugs)
    cache.invalidate_article_lists()


@translations_bp.route('/languages', methods=['GET'])
def languages():
    return success_response(LANGUAGES, 'Languages retrieved successfully')


@translations_bp.route('/articles/<int:article_id>', methods=['GET'])
def article_translations(article_id):
    article = get_article_by_id_db(article_id)
    if not article:
        raise NotFoundError('Article not found')
    return success_response({
        'article': {'id': article['id'], 'title': article['title'], 'language': article['language']},
        'translations': get_translations_db(article_id),
    }, 'Translations retrieved successfully')


@translations_bp.route('/articles/<int:article_id>/<lang>', methods=['GET'])
def article_translation(article_id, lang):
    translation = get_translation_db(article_id, normalize_language(lang))
    if not translation:
        raise NotFoundError('Translation not found')
    return success_response(translation, 'Translation retrieved successfully')


@translations_bp.route('/articles/<int:article_id>', methods=['POST'])
@is_writer
def create_translation(article_id):
    article = _editable_article(article_id)
    translation = create_translation_db(article_id, request.get_json(silent=True) or {}, g.user['id'])
    _invalidate(article, translation['slug'])
    return created_response(translation, 'Translation created successfully')


@translations_bp.route('/articles/<int:article_id>/<lang>', methods=['PUT'])
@is_writer
def update_translation(article_id, lang):
    article = _editable_article(article_id)
    language = normalize_language(lang)
    previous = get_translation_db(article_id, language)
    translation = update_translation_db(article_id, language, request.get_json(silent=True) or {})
    _invalidate(article, translation['slug'], previous['slug'] if previous else None)
    return success_response(translation, 'Translation updated successfully')


@translations_bp.route('/articles/<int:article_id>/<lang>', methods=['DELETE'])
@is_writer
def delete_translation(article_id, lang):
    article = _editable_article(article_id)
    language = normalize_language(lang)
    previous = get_translation_db(article_id, language)
    delete_translation_db(article_id, language)
    _invalidate(article, previous['slug'] if previous else None)
    return success_response(None, 'Translation deleted successfully')
