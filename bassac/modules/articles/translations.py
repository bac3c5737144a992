"""
Article translations and language resolution.

A translation overlays title/slug/excerpt/content/meta fields onto its
article. When several candidates exist for a language the one with the
most advanced ``translation_status`` wins.
"""

import sqlite3

from bassac.core.database import Database, dump_json, row_to_dict
from bassac.core.helpers import generate_slug, now_iso
from bassac.core.responses import ConflictError, NotFoundError, ValidationError
from .content import sanitize_editor_content
from .database import SUPPORTED_LANGUAGES, get_article_by_id_db, get_article_by_slug_db, set_review_fields_db

TRANSLATION_STATUSES = ('draft', 'in_progress', 'review', 'published')
STATUS_RANK = {'published': 4, 'review': 3, 'in_progress': 2, 'draft': 1}

LANGUAGES = [
    {'code': 'en', 'name': 'English', 'native_name': 'English'},
    {'code': 'km', 'name': 'Khmer', 'native_name': 'ខ្មែរ'},
    {'code': 'zh', 'name': 'Chinese', 'native_name': '中文'},
    {'code': 'ja', 'name': 'Japanese', 'native_name': '日本語'},
    {'code': 'ko', 'name': 'Korean', 'native_name': '한국어'},
    {'code': 'th', 'name': 'Thai', 'native_name': 'ไทย'},
    {'code': 'vi', 'name': 'Vietnamese', 'native_name': 'Tiếng Việt'},
    {'code': 'fr', 'name': 'French', 'native_name': 'Français'},
    {'code': 'de', 'name': 'German', 'native_name': 'Deutsch'},
    {'code': 'es', 'name': 'Spanish', 'native_name': 'Español'},
    {'code': 'pt', 'name': 'Portuguese', 'native_name': 'Português'},
    {'code': 'ru', 'name': 'Russian', 'native_name': 'Русский'},
    {'code': 'ar', 'name': 'Arabic', 'native_name': 'العربية', 'rtl': True},
    {'code': 'hi', 'name': 'Hindi', 'native_name': 'हिन्दी'},
]

OVERLAY_FIELDS = ('title', 'slug', 'meta_title', 'meta_description')


def init_translations_db(db_path):
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS article_translations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                article_id INTEGER NOT NULL,
                language TEXT NOT NULL,
                title TEXT NOT NULL,
                slug TEXT UNIQUE NOT NULL,
                excerpt TEXT DEFAULT '',
                content TEXT,
                meta_title TEXT,
                meta_description TEXT,
                meta_keywords TEXT DEFAULT '[]',
                translation_status TEXT DEFAULT 'draft',
                translated_by INTEGER,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (article_id, language)
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_translations_article ON article_translations(article_id)")


def _path():
    return Database.ensure_schema('NEWS_DB', init_translations_db)


def serialize_translation(row):
    return row_to_dict(row, json_fields=('content', 'meta_keywords'))


def normalize_language(value):
    """Map a locale string (en-US, zh_Hant, KM) to a supported code, or None"""
    raw = str(value or '').strip().lower()
    if not raw:
        return None
    for prefix in ('zh', 'km', 'en'):
        if raw.startswith(prefix):
            return prefix
    code = raw.replace('_', '-').split('-')[0]
    return code if code in SUPPORTED_LANGUAGES else None


def _best_by_language(translations, exclude_language=None):
    """Pick the highest ranked translation per language"""
    best = {}
    for translation in translations:
        language = normalize_language(translation['language'])
        if not language or language == exclude_language:
            continue
        current = best.get(language)
        if current is None or STATUS_RANK.get(translation['translation_status'], 0) > \
                STATUS_RANK.get(current['translation_status'], 0):
            best[language] = translation
    return best


def _language_list(languages, base):
    result = [base]
    for language in languages or []:
        language = normalize_language(language)
        if language and language not in result:
            result.append(language)
    return result


# ===== Repository =====

def get_translations_db(article_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM article_translations WHERE article_id = ?
            ORDER BY updated_at DESC, created_at DESC
        """, (article_id,))
        return [serialize_translation(row) for row in cursor.fetchall()]


def get_translation_db(article_id, language):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM article_translations WHERE article_id = ? AND language = ?",
                       (article_id, language))
        return serialize_translation(cursor.fetchone())


def get_translation_by_slug_db(slug):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM article_translations WHERE slug = ?", (slug,))
        return serialize_translation(cursor.fetchone())


def _translations_for(article_ids, language):
    ids = [int(i) for i in article_ids if i]
    if not ids:
        return {}
    placeholders = ','.join('?' for _ in ids)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            SELECT article_id, language, slug, title, excerpt, meta_title, meta_description, meta_keywords,
                   translation_status
            FROM article_translations
            WHERE article_id IN ({placeholders}) AND language = ?
            ORDER BY updated_at DESC
        """, (*ids, language))
        rows = [serialize_translation(row) for row in cursor.fetchall()]

    grouped = {}
    for row in rows:
        grouped.setdefault(row['article_id'], []).append(row)
    return {article_id: _best_by_language(items).get(language) for article_id, items in grouped.items()}


def _sync_available_languages(article_id):
    article = get_article_by_id_db(article_id)
    if not article:
        return
    base = normalize_language(article['language']) or 'en'
    languages = _language_list([t['language'] for t in get_translations_db(article_id)], base)
    set_review_fields_db(article_id, available_languages=languages[1:])


def _validate_translation(data, partial=False):
    errors = []
    if (not partial or 'title' in data) and not (data.get('title') or '').strip():
        errors.append({'field': 'title', 'message': 'Translation title is required'})
    if data.get('translation_status') and data['translation_status'] not in TRANSLATION_STATUSES:
        errors.append({'field': 'translation_status', 'message': 'Invalid translation status'})
    if errors:
        raise ValidationError('Validation failed', errors)


def create_translation_db(article_id, data, user_id):
    language = normalize_language(data.get('language'))
    if not language:
        raise ValidationError('Validation failed', [{'field': 'language', 'message': 'Unsupported language'}])
    _validate_translation(data)

    article = get_article_by_id_db(article_id)
    if not article:
        raise NotFoundError('Article not found')
    if get_translation_db(article_id, language):
        raise ConflictError('Translation already exists for this language')

    title = data['title'].strip()
    slug = (data.get('slug') or '').strip() or f"{generate_slug(title)}-{language}"
    content = sanitize_editor_content(data['content']) if data.get('content') else None
    now = now_iso()

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        try:
            cursor.execute("""
                INSERT INTO article_translations (article_id, language, title, slug, excerpt, content, meta_title,
                                                  meta_description, meta_keywords, translation_status,
                                                  translated_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (article_id, language, title, slug, data.get('excerpt') or '',
                  dump_json(content) if content else None, data.get('meta_title'), data.get('meta_description'),
                  dump_json(data.get('meta_keywords') or []), data.get('translation_status') or 'draft',
                  user_id, now, now))
        except sqlite3.IntegrityError:
            raise ConflictError('Translation slug already in use')

    _sync_available_languages(article_id)
    return get_translation_db(article_id, language)


def update_translation_db(article_id, language, data):
    translation = get_translation_db(article_id, language)
    if not translation:
        raise NotFoundError('Translation not found')
    _validate_translation(data, partial=True)

    updates = {}
    for key in ('title', 'slug', 'excerpt', 'meta_title', 'meta_description', 'translation_status'):
        if key in data and data[key] is not None:
            updates[key] = data[key].strip() if isinstance(data[key], str) else data[key]
    if data.get('content'):
        updates['content'] = dump_json(sanitize_editor_content(data['content']))
    if 'meta_keywords' in data:
        updates['meta_keywords'] = dump_json(data['meta_keywords'] or [])
    if not updates:
        return translation

    updates['updated_at'] = now_iso()
    set_clause = ', '.join(f"{key} = ?" for key in updates)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        try:
            cursor.execute(f"UPDATE article_translations SET {set_clause} WHERE id = ?",
                           (*updates.values(), translation['id']))
        except sqlite3.IntegrityError:
            raise ConflictError('Translation slug already in use')

    return get_translation_db(article_id, language)


def delete_translation_db(article_id, language):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM article_translations WHERE article_id = ? AND language = ?",
                       (article_id, language))
        deleted = cursor.rowcount > 0
    if not deleted:
        raise NotFoundError('Translation not found')
    _sync_available_languages(article_id)
    return True


def delete_article_translations_db(article_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM article_translations WHERE article_id = ?", (article_id,))
        return cursor.rowcount


# ===== Language overlay =====

def _overlay(article, translation, language, base, available, include_content=False):
    result = dict(article, language=base, available_languages=available,
                  original_slug=article['slug'], original_language=base, is_translation=False)
    if not translation:
        return result

    for field in OVERLAY_FIELDS:
        if translation.get(field):
            result[field] = translation[field]
    if translation.get('excerpt') is not None:
        result['excerpt'] = translation['excerpt']
    if translation.get('meta_keywords'):
        result['meta_keywords'] = translation['meta_keywords']
    if include_content and translation.get('content'):
        result['content'] = translation['content']
    result['language'] = language
    result['is_translation'] = True
    return result


def apply_preferred_language(articles, lang):
    """Overlay the best translation in ``lang`` onto each article"""
    language = normalize_language(lang)
    translations = _translations_for([a['id'] for a in articles], language) if language else {}

    localized = []
    for article in articles:
        base = normalize_language(article.get('language')) or 'en'
        translation = translations.get(article['id']) if language != base else None
        available = _language_list(
            list(article.get('available_languages') or []) + ([language] if translation else []), base)
        localized.append(_overlay(article, translation, language, base, available))
    return localized


def resolve_article_by_slug(slug, lang=None):
    """
    Find an article by its own slug or a translation slug and resolve the
    language to serve. Returns (article, language_block) or (None, None).
    """
    requested = normalize_language(lang)
    article = get_article_by_slug_db(slug)
    matched = None

    if article:
        matched = normalize_language(article['language']) or 'en'
    else:
        slug_translation = get_translation_by_slug_db(slug)
        if not slug_translation:
            return None, None
        article = get_article_by_id_db(slug_translation['article_id'])
        if not article:
            return None, None
        matched = normalize_language(slug_translation['language'])

    base = normalize_language(article['language']) or 'en'
    best = _best_by_language(get_translations_db(article['id']), exclude_language=base)

    target = requested or matched or base
    selected = best.get(target) if target != base else None
    available = [base] + [language for language in best if language != base]

    resolved = _overlay(article, selected, target, base, available, include_content=True)
    versions = [{'language': base, 'slug': article['slug'], 'status': article['status']}]
    versions.extend({'language': language, 'slug': translation['slug'],
                     'status': translation['translation_status']} for language, translation in best.items())

    block = {
        'requested': requested,
        'resolved': resolved['language'],
        'usedFallback': bool(requested and requested != resolved['language']),
        'available': available,
        'versions': versions,
        'resolvedSlug': resolved['slug'],
    }
    return resolved, block
