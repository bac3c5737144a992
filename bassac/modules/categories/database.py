import re
import sqlite3

from bassac.core.cache import TTL, cache
from bassac.core.database import Database
from bassac.core.helpers import generate_slug, now_iso
from bassac.core.responses import BadRequestError, ConflictError, NotFoundError, ValidationError

DEFAULT_COLOR = '#3B82F6'
NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
HEX_COLOR = re.compile(r'^#(?:[0-9a-fA-F]{3}){1,2}$')

EDITABLE_FIELDS = ('name', 'description', 'image', 'color', 'parent_id', 'order', 'is_active',
                   'meta_title', 'meta_description')


def init_categories_db(db_path):
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                slug TEXT UNIQUE NOT NULL,
                description TEXT DEFAULT '',
                image TEXT,
                color TEXT DEFAULT '#3B82F6',
                parent_id INTEGER REFERENCES categories(id),
                sort_order INTEGER DEFAULT 0,
                is_active BOOLEAN DEFAULT 1,
                article_count INTEGER DEFAULT 0,
                meta_title TEXT,
                meta_description TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        cursor.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_categories_name ON categories(name COLLATE NOCASE)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_categories_parent ON categories(parent_id)")


def _path():
    return Database.ensure_schema('NEWS_DB', init_categories_db)


def serialize_category(row):
    if row is None:
        return None
    data = dict(row)
    data['order'] = data.pop('sort_order', 0)
    data['is_active'] = bool(data['is_active'])
    return data


def category_summary(category):
    if not category:
        return None
    return {key: category[key] for key in ('id', 'name', 'slug', 'color')}


TEXT_FIELDS = ('name', 'description', 'image', 'color', 'meta_title', 'meta_description')


def _as_int(value, field):
    if isinstance(value, bool):
        raise BadRequestError(f'{field} must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BadRequestError(f'{field} must be an integer')


def validate_category(data, partial=False):
    for key in TEXT_FIELDS:
        if data.get(key) is not None and not isinstance(data[key], str):
            raise BadRequestError(f'{key} must be a string')
    if data.get('order') not in (None, ''):
        _as_int(data['order'], 'order')

    errors = []
    name = data.get('name')
    if not partial or 'name' in data:
        name = (name or '').strip()
        if not name:
            errors.append({'field': 'name', 'message': 'Category name is required'})
        elif len(name) > NAME_MAX_LENGTH:
            errors.append({'field': 'name', 'message': f'Name cannot exceed {NAME_MAX_LENGTH} characters'})
    if len(data.get('description') or '') > DESCRIPTION_MAX_LENGTH:
        errors.append({'field': 'description',
                       'message': f'Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters'})
    if data.get('color') and not HEX_COLOR.match(data['color']):
        errors.append({'field': 'color', 'message': 'Color must be a valid hex code'})
    if errors:
        raise ValidationError('Validation failed', errors)


# ===== Reads =====

def get_category_by_id_db(category_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM categories WHERE id = ?", (category_id,))
        return serialize_category(cursor.fetchone())


def get_category_by_slug_db(slug, active_only=True):
    query = "SELECT * FROM categories WHERE slug = ?" + (" AND is_active = 1" if active_only else "")
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(query, (slug,))
        return serialize_category(cursor.fetchone())


def get_categories_by_ids_db(category_ids):
    ids = sorted({int(i) for i in category_ids if i})
    if not ids:
        return {}
    placeholders = ','.join('?' for _ in ids)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT * FROM categories WHERE id IN ({placeholders})", ids)
        return {row['id']: serialize_category(row) for row in cursor.fetchall()}


def list_categories_db(include_inactive=False):
    """Categories sorted by order then name"""
    where = "" if include_inactive else "WHERE is_active = 1"
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT * FROM categories {where} ORDER BY sort_order ASC, name ASC")
        return [serialize_category(row) for row in cursor.fetchall()]


def find_active_categories():
    return cache.get_or_set(cache.key('categories', 'active'), list_categories_db, TTL['categories'])


def get_category_tree():
    """Active root categories, each with its active subcategories"""
    def build():
        categories = list_categories_db()
        children = {}
        for category in categories:
            if category['parent_id']:
                children.setdefault(category['parent_id'], []).append(category)
        return [dict(category, subcategories=children.get(category['id'], []))
                for category in categories if not category['parent_id']]

    return cache.get_or_set(cache.key('categories', 'tree'), build, TTL['categories'])


# ===== Writes =====

def _check_name_available(cursor, name, exclude_id=None):
    cursor.execute("SELECT id FROM categories WHERE name = ? COLLATE NOCASE AND id != ?",
                   (name, exclude_id or 0))
    if cursor.fetchone():
        raise ConflictError('Category with this name already exists')


def _check_parent(cursor, parent_id, category_id=None):
    """Resolve parent_id; the parent must exist and must not sit below category_id"""
    if not parent_id:
        return None
    parent_id = _as_int(parent_id, 'parent_id')
    if category_id and parent_id == int(category_id):
        raise BadRequestError('Category cannot be its own parent')
    cursor.execute("SELECT id FROM categories WHERE id = ?", (parent_id,))
    if not cursor.fetchone():
        raise BadRequestError('Parent category not found')

    if category_id:
        seen = set()
        ancestor = parent_id
        while ancestor and ancestor not in seen:
            if ancestor == int(category_id):
                raise BadRequestError('Category cannot be moved under its own subcategory')
            seen.add(ancestor)
            cursor.execute("SELECT parent_id FROM categories WHERE id = ?", (ancestor,))
            row = cursor.fetchone()
            ancestor = row['parent_id'] if row else None
    return parent_id


def create_category_db(data):
    validate_category(data)
    name = data['name'].strip()
    now = now_iso()

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        _check_name_available(cursor, name)
        parent_id = _check_parent(cursor, data.get('parent_id'))
        try:
            cursor.execute("""
                INSERT INTO categories (name, slug, description, image, color, parent_id, sort_order,
                                        is_active, meta_title, meta_description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (name, generate_slug(name), (data.get('description') or '').strip(), data.get('image'),
                  data.get('color') or DEFAULT_COLOR, parent_id, _as_int(data.get('order') or 0, 'order'),
                  bool(data.get('is_active', True)), data.get('meta_title'), data.get('meta_description'),
                  now, now))
        except sqlite3.IntegrityError:
            raise ConflictError('Category with this name already exists')
        category_id = cursor.lastrowid

    cache.invalidate_categories()
    return get_category_by_id_db(category_id)


def update_category_db(category_id, data):
    category = get_category_by_id_db(category_id)
    if not category:
        raise NotFoundError('Category not found')
    validate_category(data, partial=True)

    updates = {key: data[key] for key in EDITABLE_FIELDS if key in data}
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        if 'name' in updates:
            updates['name'] = updates['name'].strip()
            _check_name_available(cursor, updates['name'], category_id)
            updates['slug'] = generate_slug(updates['name'])
        if 'parent_id' in updates:
            updates['parent_id'] = _check_parent(cursor, updates['parent_id'], category_id)
        if 'order' in updates:
            updates['sort_order'] = _as_int(updates.pop('order') or 0, 'order')
        if 'is_active' in updates:
            updates['is_active'] = bool(updates['is_active'])

        if updates:
            updates['updated_at'] = now_iso()
            set_clause = ', '.join(f"{key} = ?" for key in updates)
            try:
                cursor.execute(f"UPDATE categories SET {set_clause} WHERE id = ?",
                               (*updates.values(), category_id))
            except sqlite3.IntegrityError:
                raise ConflictError('Category with this name already exists')

    cache.invalidate_categories()
    return get_category_by_id_db(category_id)


def delete_category_db(category_id):
    """Delete a category that has no articles and no subcategories"""
    if not get_category_by_id_db(category_id):
        raise NotFoundError('Category not found')

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM articles WHERE category_id = ?", (category_id,))
        article_count = cursor.fetchone()[0]
        if article_count:
            raise BadRequestError(
                f'Cannot delete category with {article_count} articles. Please reassign articles first.')

        cursor.execute("SELECT COUNT(*) FROM categories WHERE parent_id = ?", (category_id,))
        subcategory_count = cursor.fetchone()[0]
        if subcategory_count:
            raise BadRequestError(
                f'Cannot delete category with {subcategory_count} subcategories. '
                'Please delete or reassign them first.')

        cursor.execute("DELETE FROM categories WHERE id = ?", (category_id,))

    cache.invalidate_categories()
    return True


def reorder_categories_db(items):
    """Apply [{id, order}, ...]. Returns the number of categories updated"""
    if not isinstance(items, list):
        raise BadRequestError('Categories must be an array')

    updated = 0
    now = now_iso()
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        for item in items:
            if not isinstance(item, dict) or 'id' not in item:
                continue
            cursor.execute("UPDATE categories SET sort_order = ?, updated_at = ? WHERE id = ?",
                           (_as_int(item.get('order') or 0, 'order'), now, _as_int(item['id'], 'id')))
            updated += cursor.rowcount

    cache.invalidate_categories()
    return updated


def update_article_count_db(category_id):
    """Recount published articles for a category. Returns the new count"""
    if not category_id:
        return 0
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM articles WHERE category_id = ? AND status = 'published'",
                       (category_id,))
        count = cursor.fetchone()[0]
        cursor.execute("UPDATE categories SET article_count = ? WHERE id = ?", (count, category_id))

    cache.invalidate_categories()
    return count


def get_category_stats_db():
    """Per-category totals: all articles, published articles and views"""
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT c.id, c.name, c.slug, c.color, c.is_active,
                   COUNT(a.id) AS total_articles,
                   COALESCE(SUM(CASE WHEN a.status = 'published' THEN 1 ELSE 0 END), 0) AS published_articles,
                   COALESCE(SUM(a.view_count), 0) AS total_views
            FROM categories c
            LEFT JOIN articles a ON a.category_id = c.id
            GROUP BY c.id
            ORDER BY total_articles DESC, c.name ASC
        """)
        rows = [dict(row) for row in cursor.fetchall()]

    for row in rows:
        row['is_active'] = bool(row['is_active'])
    return rows
