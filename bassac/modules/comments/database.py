from datetime import timedelta

from bassac.core.database import Database, row_to_dict
from bassac.core.helpers import now_iso, parse_date, utcnow
from bassac.core.responses import ValidationError
from bassac.core.sanitize import sanitize_text
from bassac.modules.auth.database import EMAIL_REGEX, UserDatabase

STATUSES = ('pending', 'approved', 'rejected', 'spam')
MODERATION_STATUSES = ('approved', 'rejected', 'spam')
CONTENT_MAX_LENGTH = 2000
GUEST_NAME_MAX_LENGTH = 100
EDIT_WINDOW = timedelta(minutes=15)

PRIVATE_FIELDS = ('guest_email', 'ip_address', 'user_agent')


def init_comments_db(db_path):
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS comments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                article_id INTEGER NOT NULL,
                author_id INTEGER,
                guest_name TEXT,
                guest_email TEXT,
                content TEXT NOT NULL,
                parent_id INTEGER REFERENCES comments(id),
                status TEXT DEFAULT 'pending',
                likes INTEGER DEFAULT 0,
                is_edited BOOLEAN DEFAULT 0,
                edited_at TEXT,
                moderated_by INTEGER,
                moderated_at TEXT,
                moderation_note TEXT,
                ip_address TEXT,
                user_agent TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS comment_likes (
                comment_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (comment_id, user_id)
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_comments_article ON comments(article_id, status, parent_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_comments_status ON comments(status, created_at)")


def _path():
    return Database.ensure_schema('NEWS_DB', init_comments_db)


def serialize_comment(row):
    return row_to_dict(row, bool_fields=('is_edited',))


def public_comment(comment):
    return {key: value for key, value in comment.items() if key not in PRIVATE_FIELDS}


def clean_content(content):
    """Sanitized comment body; raises ValidationError when empty or too long"""
    cleaned = sanitize_text(content or '').strip()
    if not cleaned:
        raise ValidationError('Validation failed', [{'field': 'content', 'message': 'Comment content is required'}])
    if len(cleaned) > CONTENT_MAX_LENGTH:
        raise ValidationError('Validation failed', [
            {'field': 'content', 'message': f'Comment cannot exceed {CONTENT_MAX_LENGTH} characters'}])
    return cleaned


def validate_guest(name, email):
    errors = []
    name = sanitize_text(name or '').strip()
    email = email.strip().lower() if isinstance(email, str) else ''
    if not name:
        errors.append({'field': 'guest_name', 'message': 'Name is required'})
    elif len(name) > GUEST_NAME_MAX_LENGTH:
        errors.append({'field': 'guest_name', 'message': f'Name cannot exceed {GUEST_NAME_MAX_LENGTH} characters'})
    if not email or not EMAIL_REGEX.match(email):
        errors.append({'field': 'guest_email', 'message': 'A valid email is required'})
    if errors:
        raise ValidationError('Validation failed', errors)
    return name, email


def within_edit_window(comment):
    created = parse_date(comment['created_at'])
    return created is not None and utcnow() - created <= EDIT_WINDOW


# ===== Reads =====

def get_comment_by_id_db(comment_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM comments WHERE id = ?", (comment_id,))
        return serialize_comment(cursor.fetchone())


def populate_comments(comments):
    """Attach author summaries (or the guest name) in place"""
    authors = UserDatabase.get_users_by_ids(c['author_id'] for c in comments if c.get('author_id'))
    for comment in comments:
        if comment.get('author_id'):
            comment['author'] = authors.get(comment['author_id'])
        else:
            comment['author'] = {'id': None, 'full_name': comment.get('guest_name'), 'avatar': None}
        for reply in comment.get('replies', []):
            populate_comments([reply])
    return comments


def list_article_comments_db(article_id, limit=20, offset=0):
    """Approved top-level comments, newest first, each with approved replies oldest first"""
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT COUNT(*) FROM comments
            WHERE article_id = ? AND status = 'approved' AND parent_id IS NULL
        """, (article_id,))
        total = cursor.fetchone()[0]

        cursor.execute("""
            SELECT * FROM comments
            WHERE article_id = ? AND status = 'approved' AND parent_id IS NULL
            ORDER BY created_at DESC LIMIT ? OFFSET ?
        """, (article_id, limit, offset))
        comments = [public_comment(serialize_comment(row)) for row in cursor.fetchall()]

        ids = [c['id'] for c in comments]
        replies = {}
        if ids:
            placeholders = ','.join('?' for _ in ids)
            cursor.execute(f"""
                SELECT * FROM comments
                WHERE parent_id IN ({placeholders}) AND status = 'approved'
                ORDER BY created_at ASC
            """, ids)
            for row in cursor.fetchall():
                reply = public_comment(serialize_comment(row))
                replies.setdefault(reply['parent_id'], []).append(reply)

    for comment in comments:
        comment['replies'] = replies.get(comment['id'], [])
    return populate_comments(comments), total


def list_comments_admin_db(status=None, article_id=None, limit=20, offset=0):
    clauses, params = [], []
    if status:
        clauses.append("status = ?")
        params.append(status)
    if article_id:
        clauses.append("article_id = ?")
        params.append(article_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ''

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT COUNT(*) FROM comments {where}", params)
        total = cursor.fetchone()[0]
        cursor.execute(f"SELECT * FROM comments {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
                       (*params, limit, offset))
        comments = [serialize_comment(row) for row in cursor.fetchall()]

    return populate_comments(comments), total


def count_by_status_db():
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT status, COUNT(*) AS count FROM comments GROUP BY status")
        counts = {status: 0 for status in STATUSES}
        counts.update({row['status']: row['count'] for row in cursor.fetchall()})
    return counts


# ===== Writes =====

def create_comment_db(article_id, content, author_id=None, guest_name=None, guest_email=None, parent_id=None,
                      status='pending', ip_address=None, user_agent=None):
    now = now_iso()
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO comments (article_id, author_id, guest_name, guest_email, content, parent_id, status,
                                  ip_address, user_agent, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (article_id, author_id, guest_name, guest_email, content, parent_id, status, ip_address,
              (user_agent or '')[:500], now, now))
        comment_id = cursor.lastrowid
    return get_comment_by_id_db(comment_id)


def update_comment_content_db(comment_id, content):
    now = now_iso()
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE comments SET content = ?, is_edited = 1, edited_at = ?, updated_at = ? WHERE id = ?
        """, (content, now, now, comment_id))
    return get_comment_by_id_db(comment_id)


def delete_comment_db(comment_id):
    """Delete a comment and every reply below it. Returns the number of rows removed"""
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            WITH RECURSIVE thread(id) AS (
                SELECT id FROM comments WHERE id = ?
                UNION ALL
                SELECT c.id FROM comments c JOIN thread t ON c.parent_id = t.id
            )
            SELECT id FROM thread
        """, (comment_id,))
        ids = [row['id'] for row in cursor.fetchall()]
        if not ids:
            return 0
        placeholders = ','.join('?' for _ in ids)
        cursor.execute(f"DELETE FROM comment_likes WHERE comment_id IN ({placeholders})", ids)
        cursor.execute(f"DELETE FROM comments WHERE id IN ({placeholders})", ids)
        return cursor.rowcount


def delete_comments_for_article_db(article_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            DELETE FROM comment_likes WHERE comment_id IN (SELECT id FROM comments WHERE article_id = ?)
        """, (article_id,))
        cursor.execute("DELETE FROM comments WHERE article_id = ?", (article_id,))
        return cursor.rowcount


def toggle_like_db(comment_id, user_id):
    """Like or unlike. Returns (liked, likes)"""
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM comment_likes WHERE comment_id = ? AND user_id = ?", (comment_id, user_id))
        if cursor.fetchone():
            cursor.execute("DELETE FROM comment_likes WHERE comment_id = ? AND user_id = ?", (comment_id, user_id))
            liked = False
        else:
            cursor.execute("INSERT INTO comment_likes (comment_id, user_id, created_at) VALUES (?, ?, ?)",
                           (comment_id, user_id, now_iso()))
            liked = True

        cursor.execute("SELECT COUNT(*) FROM comment_likes WHERE comment_id = ?", (comment_id,))
        likes = cursor.fetchone()[0]
        cursor.execute("UPDATE comments SET likes = ? WHERE id = ?", (likes, comment_id))
    return liked, likes


def moderate_comment_db(comment_id, status, moderator_id, note=None):
    now = now_iso()
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE comments SET status = ?, moderated_by = ?, moderated_at = ?, moderation_note = ?, updated_at = ?
            WHERE id = ?
        """, (status, moderator_id, now, note, now, comment_id))
    return get_comment_by_id_db(comment_id)


def bulk_moderate_db(ids, status, moderator_id):
    """Returns the number of comments modified"""
    ids = [int(i) for i in ids]
    if not ids:
        return 0
    now = now_iso()
    placeholders = ','.join('?' for _ in ids)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            UPDATE comments SET status = ?, moderated_by = ?, moderated_at = ?, updated_at = ?
            WHERE id IN ({placeholders})
        """, (status, moderator_id, now, now, *ids))
        return cursor.rowcount
