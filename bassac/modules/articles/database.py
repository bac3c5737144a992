"""
Article repository (NEWS_DB).

Content, tags, available_languages and meta_keywords are JSON columns.
Authors live in USER_DB and categories in the categories table; both are
attached to results by ``populate_articles``.
"""

from bassac.core.database import Database, dump_json, row_to_dict
from bassac.core.helpers import calculate_read_time, now_iso, parse_bool, unique_article_slug
from bassac.core.responses import BadRequestError, NotFoundError, ValidationError
from bassac.core.sanitize import is_media_url
from bassac.modules.auth.database import UserDatabase
from bassac.modules.categories.database import category_summary, get_categories_by_ids_db
from .content import build_video_content, count_words, has_blocks, sanitize_editor_content

SUPPORTED_LANGUAGES = ('en', 'km', 'zh', 'ja', 'ko', 'th', 'vi', 'fr', 'de', 'es', 'pt', 'ru', 'ar', 'hi')
STATUSES = ('draft', 'pending', 'published', 'rejected', 'archived')
POST_TYPES = ('news', 'video')
IMAGE_POSITIONS = ('top', 'center', 'bottom', 'custom')

TITLE_MAX_LENGTH = 200
EXCERPT_MAX_LENGTH = 500
VIDEO_URL_MAX_LENGTH = 1200
META_TITLE_MAX_LENGTH = 70
META_DESCRIPTION_MAX_LENGTH = 160

JSON_FIELDS = ('content', 'tags', 'available_languages', 'meta_keywords')
BOOL_FIELDS = ('is_featured', 'is_breaking', 'is_premium')
TEXT_FIELDS = (
    'title', 'excerpt', 'language', 'post_type', 'video_url', 'featured_image', 'featured_image_position',
    'featured_image_alt', 'meta_title', 'meta_description', 'status',
)

# Accepted sort keys (query param spelling -> column)
SORT_FIELDS = {
    'publishedAt': 'published_at', 'published_at': 'published_at',
    'createdAt': 'created_at', 'created_at': 'created_at',
    'viewCount': 'view_count', 'view_count': 'view_count',
    'title': 'title',
}

EDITABLE_FIELDS = (
    'title', 'excerpt', 'content', 'language', 'post_type', 'video_url', 'featured_image',
    'featured_image_position', 'featured_image_position_y', 'featured_image_alt', 'category_id', 'tags',
    'meta_title', 'meta_description', 'meta_keywords', 'status', 'is_featured', 'is_breaking', 'is_premium',
)

LIST_COLUMNS = """
    id, title, slug, excerpt, language, available_languages, post_type, video_url, featured_image,
    featured_image_position, featured_image_position_y, featured_image_alt, category_id, tags, author_id,
    status, published_at, is_featured, is_breaking, is_premium, view_count, read_time, meta_title,
    meta_description, meta_keywords, reviewed_by, reviewed_at, review_notes, rejection_reason, version,
    last_edited_by, created_at, updated_at
"""


def init_articles_db(db_path):
    """Initialize the articles table with proper schema"""
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS articles (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                slug TEXT UNIQUE NOT NULL,
                excerpt TEXT DEFAULT '',
                content TEXT NOT NULL,
                language TEXT DEFAULT 'en',
                available_languages TEXT DEFAULT '[]',
                post_type TEXT DEFAULT 'news',
                video_url TEXT DEFAULT '',
                featured_image TEXT,
                featured_image_position TEXT DEFAULT 'center',
                featured_image_position_y INTEGER DEFAULT 50,
                featured_image_alt TEXT DEFAULT '',
                category_id INTEGER NOT NULL,
                tags TEXT DEFAULT '[]',
                author_id INTEGER NOT NULL,
                status TEXT DEFAULT 'draft',
                published_at TEXT,
                is_featured BOOLEAN DEFAULT 0,
                is_breaking BOOLEAN DEFAULT 0,
                is_premium BOOLEAN DEFAULT 0,
                view_count INTEGER DEFAULT 0,
                read_time INTEGER DEFAULT 1,
                meta_title TEXT,
                meta_description TEXT,
                meta_keywords TEXT DEFAULT '[]',
                reviewed_by INTEGER,
                reviewed_at TEXT,
                review_notes TEXT,
                rejection_reason TEXT,
                version INTEGER DEFAULT 1,
                last_edited_by INTEGER,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        Database.add_missing_columns(cursor, 'articles', [
            ('is_premium', 'BOOLEAN DEFAULT 0'),
            ('featured_image_alt', "TEXT DEFAULT ''"),
            ('available_languages', "TEXT DEFAULT '[]'"),
        ])

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_articles_status_published ON articles(status, published_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_articles_category ON articles(category_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_articles_author ON articles(author_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_articles_featured ON articles(is_featured, status)")


def _path():
    return Database.ensure_schema('NEWS_DB', init_articles_db)


def serialize_article(row):
    article = row_to_dict(row, json_fields=JSON_FIELDS, bool_fields=BOOL_FIELDS)
    if article is None:
        return None
    for field in ('tags', 'available_languages', 'meta_keywords'):
        if article.get(field) is None and field in article:
            article[field] = []
    return article


# ===== Validation / save rules =====

def normalize_tags(tags):
    """Lowercased, trimmed, de-duplicated; accepts a list or a comma separated string"""
    if isinstance(tags, str):
        tags = tags.split(',')
    seen = []
    for tag in tags or []:
        tag = str(tag).strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def normalize_post_type(value):
    return 'video' if str(value or '').strip().lower() == 'video' else 'news'


def validate_article(fields, partial=False):
    """Raise ValidationError listing every invalid field"""
    errors = []

    def check(field, ok, message):
        if (not partial or field in fields) and not ok:
            errors.append({'field': field, 'message': message})

    title = (fields.get('title') or '').strip()
    check('title', bool(title), 'Article title is required')
    check('title', len(title) <= TITLE_MAX_LENGTH, f'Title cannot exceed {TITLE_MAX_LENGTH} characters')
    check('excerpt', len(fields.get('excerpt') or '') <= EXCERPT_MAX_LENGTH,
          f'Excerpt cannot exceed {EXCERPT_MAX_LENGTH} characters')
    check('category_id', bool(fields.get('category_id')), 'Category is required')
    check('language', fields.get('language', 'en') in SUPPORTED_LANGUAGES, 'Unsupported language')
    check('status', fields.get('status', 'draft') in STATUSES, 'Invalid status')
    check('video_url', len(fields.get('video_url') or '') <= VIDEO_URL_MAX_LENGTH,
          f'Video URL cannot exceed {VIDEO_URL_MAX_LENGTH} characters')
    check('meta_title', len(fields.get('meta_title') or '') <= META_TITLE_MAX_LENGTH,
          f'Meta title cannot exceed {META_TITLE_MAX_LENGTH} characters')
    check('meta_description', len(fields.get('meta_description') or '') <= META_DESCRIPTION_MAX_LENGTH,
          f'Meta description cannot exceed {META_DESCRIPTION_MAX_LENGTH} characters')
    check('featured_image', is_media_url(fields.get('featured_image')), 'Invalid featured image URL')
    check('featured_image_position', fields.get('featured_image_position', 'center') in IMAGE_POSITIONS,
          'Invalid featured image position')

    position_y = fields.get('featured_image_position_y', 50)
    check('featured_image_position_y',
          isinstance(position_y, (int, float)) and not isinstance(position_y, bool) and 0 <= position_y <= 100,
          'Featured image position must be between 0 and 100')

    if errors:
        raise ValidationError('Validation failed', errors)


def extract_fields(data):
    """Pick editable fields from a request body and normalise their types"""
    fields = {key: data[key] for key in EDITABLE_FIELDS if key in data}
    for key in TEXT_FIELDS:
        if fields.get(key) is not None and not isinstance(fields[key], str):
            raise BadRequestError(f'{key} must be a string')
    if fields.get('tags') is not None and not isinstance(fields['tags'], (str, list)):
        raise BadRequestError('tags must be a list or a comma separated string')
    if fields.get('meta_keywords') is not None and not isinstance(fields['meta_keywords'], (str, list)):
        raise BadRequestError('meta_keywords must be a list or a comma separated string')
    if 'title' in fields:
        fields['title'] = (fields['title'] or '').strip()
    if 'tags' in fields:
        fields['tags'] = normalize_tags(fields['tags'])
    if 'meta_keywords' in fields:
        fields['meta_keywords'] = normalize_tags(fields['meta_keywords'])
    if 'post_type' in fields:
        fields['post_type'] = normalize_post_type(fields['post_type'])
    if 'video_url' in fields:
        fields['video_url'] = str(fields['video_url'] or '').strip()
    if 'language' in fields:
        fields['language'] = str(fields['language'] or 'en').strip().lower()
    for flag in BOOL_FIELDS:
        if flag in fields:
            fields[flag] = bool(parse_bool(fields[flag]))
    if 'category_id' in fields and fields['category_id'] not in (None, ''):
        try:
            fields['category_id'] = int(fields['category_id'])
        except (TypeError, ValueError):
            raise ValidationError('Validation failed', [{'field': 'category_id', 'message': 'Invalid category'}])
    return fields


def apply_save_rules(fields, existing=None):
    """
    Apply the rules every save goes through:
    sanitized content, video fallback body, read time, published_at and version.
    ``fields`` is the full merged record; ``existing`` the stored one on update.
    """
    fields['post_type'] = normalize_post_type(fields.get('post_type'))
    if fields['post_type'] != 'video':
        fields['video_url'] = ''
    elif not fields.get('video_url'):
        raise ValidationError('Validation failed', [
            {'field': 'video_url', 'message': 'Video URL is required for video posts'}])

    content = sanitize_editor_content(fields.get('content'))
    if not has_blocks(content) and fields['post_type'] == 'video':
        content = sanitize_editor_content(
            build_video_content(fields.get('excerpt'), fields.get('title'), fields['video_url']))
    if not has_blocks(content):
        raise ValidationError('Validation failed', [{'field': 'content', 'message': 'Article content is required'}])

    fields['content'] = content
    fields['read_time'] = calculate_read_time(count_words(content))

    if fields.get('status') == 'published' and not fields.get('published_at'):
        fields['published_at'] = now_iso()

    if existing is not None:
        changed = (existing.get('title') != fields.get('title')
                   or (existing.get('content') or {}).get('blocks') != content.get('blocks'))
        fields['version'] = (existing.get('version') or 1) + (1 if changed else 0)
    return fields


# ===== Reads =====

def get_article_by_id_db(article_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM articles WHERE id = ?", (article_id,))
        return serialize_article(cursor.fetchone())


def get_article_by_slug_db(slug):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM articles WHERE slug = ?", (slug,))
        return serialize_article(cursor.fetchone())


def get_articles_by_ids_db(article_ids):
    """Map of id -> article summary (no content)"""
    ids = sorted({int(i) for i in article_ids if i})
    if not ids:
        return {}
    placeholders = ','.join('?' for _ in ids)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT {LIST_COLUMNS} FROM articles WHERE id IN ({placeholders})", ids)
        return {row['id']: serialize_article(row) for row in cursor.fetchall()}


def _build_filters(filters):
    clauses, params = [], []
    status = filters.get('status')
    if isinstance(status, (list, tuple)):
        clauses.append(f"status IN ({','.join('?' for _ in status)})")
        params.extend(status)
    elif status:
        clauses.append("status = ?")
        params.append(status)

    for key, column in (('category_id', 'category_id'), ('author_id', 'author_id'),
                        ('post_type', 'post_type'), ('language', 'language')):
        if filters.get(key) not in (None, ''):
            clauses.append(f"{column} = ?")
            params.append(filters[key])

    for flag in BOOL_FIELDS:
        if filters.get(flag) is not None:
            clauses.append(f"{flag} = ?")
            params.append(1 if filters[flag] else 0)

    if filters.get('tag'):
        clauses.append("EXISTS (SELECT 1 FROM json_each(articles.tags) WHERE json_each.value = ?)")
        params.append(str(filters['tag']).strip().lower())

    if filters.get('q'):
        clauses.append("(title LIKE ? OR excerpt LIKE ?)")
        params.extend([f"%{filters['q']}%"] * 2)

    if filters.get('exclude_id'):
        clauses.append("id != ?")
        params.append(filters['exclude_id'])

    if filters.get('published_after'):
        clauses.append("published_at >= ?")
        params.append(filters['published_after'])

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ''
    return where, params


def list_articles_db(filters=None, sort_by='published_at', sort_order='desc', limit=10, offset=0,
                     include_content=False):
    """Filtered, sorted page of articles. Returns (articles, total)"""
    where, params = _build_filters(filters or {})
    column = SORT_FIELDS.get(sort_by, 'published_at')
    direction = 'ASC' if str(sort_order).lower() == 'asc' else 'DESC'
    columns = '*' if include_content else LIST_COLUMNS

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT COUNT(*) FROM articles {where}", params)
        total = cursor.fetchone()[0]
        cursor.execute(f"""
            SELECT {columns} FROM articles {where}
            ORDER BY {column} {direction}, id {direction}
            LIMIT ? OFFSET ?
        """, (*params, limit, offset))
        articles = [serialize_article(row) for row in cursor.fetchall()]

    return articles, total


def get_featured_articles_db(limit=5):
    articles, _ = list_articles_db({'status': 'published', 'is_featured': True}, limit=limit)
    return articles


def get_latest_articles_db(limit=10):
    articles, _ = list_articles_db({'status': 'published'}, limit=limit)
    return articles


def get_related_articles_db(article, limit=4):
    """Published articles sharing the category or any tag, most recent first"""
    tags = article.get('tags') or []
    tag_clause = ''
    params = [article['id'], article['category_id']]
    if tags:
        tag_clause = f" OR EXISTS (SELECT 1 FROM json_each(articles.tags) WHERE json_each.value IN " \
                     f"({','.join('?' for _ in tags)}))"
        params.extend(tags)

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            SELECT {LIST_COLUMNS} FROM articles
            WHERE status = 'published' AND id != ? AND (category_id = ?{tag_clause})
            ORDER BY published_at DESC LIMIT ?
        """, (*params, limit))
        return [serialize_article(row) for row in cursor.fetchall()]


def search_articles_db(q, limit=10, offset=0):
    """LIKE search over published title/excerpt. Returns (articles, total)"""
    q = (q or '').strip()
    if len(q) < 2:
        raise BadRequestError('Search query must be at least 2 characters')
    return list_articles_db({'status': 'published', 'q': q}, limit=limit, offset=offset)


def count_by_status_db(author_id=None):
    where, params = ("WHERE author_id = ?", (author_id,)) if author_id else ("", ())
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT status, COUNT(*) AS count FROM articles {where} GROUP BY status", params)
        counts = {status: 0 for status in STATUSES}
        counts.update({row['status']: row['count'] for row in cursor.fetchall()})
    counts['total'] = sum(counts[status] for status in STATUSES)
    return counts


def get_trending_articles_db(since, limit=10):
    """Most viewed articles published since the given ISO timestamp"""
    articles, _ = list_articles_db({'status': 'published', 'published_after': since},
                                   sort_by='view_count', limit=limit)
    return articles


# ===== Writes =====

def create_article_db(fields, author_id):
    """Insert an article. ``fields`` must already have passed validate_article"""
    fields = apply_save_rules(dict(fields))
    now = now_iso()

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO articles (title, slug, excerpt, content, language, available_languages, post_type,
                                  video_url, featured_image, featured_image_position, featured_image_position_y,
                                  featured_image_alt, category_id, tags, author_id, status, published_at,
                                  is_featured, is_breaking, is_premium, read_time, meta_title, meta_description,
                                  meta_keywords, version, last_edited_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
        """, (
            fields['title'], unique_article_slug(fields['title']), fields.get('excerpt') or '',
            dump_json(fields['content']), fields.get('language') or 'en', dump_json([]), fields['post_type'],
            fields.get('video_url') or '', fields.get('featured_image'),
            fields.get('featured_image_position') or 'center', fields.get('featured_image_position_y', 50),
            fields.get('featured_image_alt') or '', fields['category_id'], dump_json(fields.get('tags') or []),
            author_id, fields.get('status') or 'draft', fields.get('published_at'),
            bool(fields.get('is_featured')), bool(fields.get('is_breaking')), bool(fields.get('is_premium')),
            fields['read_time'], fields.get('meta_title'), fields.get('meta_description'),
            dump_json(fields.get('meta_keywords') or []), author_id, now, now,
        ))
        article_id = cursor.lastrowid

    return get_article_by_id_db(article_id)


def update_article_db(article_id, updates, editor_id=None):
    """Merge updates into the stored article, re-run the save rules and persist"""
    existing = get_article_by_id_db(article_id)
    if not existing:
        raise NotFoundError('Article not found')

    merged = dict(existing, **updates)
    if 'content' not in updates:
        merged['content'] = existing['content']
    merged = apply_save_rules(merged, existing)
    if 'title' in updates and updates['title'] != existing['title']:
        merged['slug'] = unique_article_slug(merged['title'])

    columns = set(EDITABLE_FIELDS) | {'slug', 'read_time', 'published_at', 'version', 'reviewed_by',
                                      'reviewed_at', 'review_notes', 'rejection_reason'}
    values = {}
    for column in columns:
        if column in merged and merged[column] != existing.get(column):
            value = merged[column]
            values[column] = dump_json(value) if column in JSON_FIELDS else value
    values['last_edited_by'] = editor_id or existing.get('last_edited_by')
    values['updated_at'] = now_iso()

    set_clause = ', '.join(f"{column} = ?" for column in values)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"UPDATE articles SET {set_clause} WHERE id = ?", (*values.values(), article_id))

    return get_article_by_id_db(article_id)


def set_review_fields_db(article_id, **fields):
    """Direct column update used by the review workflow (status, reviewer, reasons)"""
    allowed = {'status', 'published_at', 'reviewed_by', 'reviewed_at', 'review_notes', 'rejection_reason',
               'featured_image', 'available_languages'}
    values = {key: (dump_json(value) if key in JSON_FIELDS else value)
              for key, value in fields.items() if key in allowed}
    values['updated_at'] = now_iso()

    set_clause = ', '.join(f"{column} = ?" for column in values)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"UPDATE articles SET {set_clause} WHERE id = ?", (*values.values(), article_id))
        if cursor.rowcount == 0:
            raise NotFoundError('Article not found')

    return get_article_by_id_db(article_id)


def delete_article_db(article_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM articles WHERE id = ?", (article_id,))
        return cursor.rowcount > 0


def increment_view_counts_db(counts):
    """Add buffered view counts ({article_id: n}). Returns the number of articles updated"""
    updated = 0
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        for article_id, count in counts.items():
            if int(count) <= 0:
                continue
            cursor.execute("UPDATE articles SET view_count = view_count + ? WHERE id = ?",
                           (int(count), int(article_id)))
            updated += cursor.rowcount
    return updated


# ===== Population =====

def populate_articles(articles):
    """Attach author and category summaries in place. Returns the same list"""
    articles = [a for a in articles if a]
    authors = UserDatabase.get_users_by_ids(a['author_id'] for a in articles)
    categories = get_categories_by_ids_db(a['category_id'] for a in articles)

    for article in articles:
        article['author'] = authors.get(article['author_id'])
        article['category'] = category_summary(categories.get(article['category_id']))
    return articles


def populate_article(article):
    if article:
        populate_articles([article])
    return article
