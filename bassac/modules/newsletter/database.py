import csv
import io
import secrets

from bassac.core.database import Database, dump_json, row_to_dict
from bassac.core.helpers import now_iso
from bassac.core.responses import NotFoundError

STATUSES = ('pending', 'confirmed', 'unsubscribed')
SOURCES = ('website', 'article', 'popup', 'footer', 'other')
DEFAULT_PREFERENCES = {'dailyDigest': False, 'weeklyNewsletter': True, 'breakingNews': True}

EXPORT_COLUMNS = ('email', 'name', 'status', 'source', 'confirmed_at', 'created_at')


def init_newsletter_db(db_path):
    """Initialize the newsletter_subscribers table"""
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS newsletter_subscribers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT UNIQUE NOT NULL,
                name TEXT,
                status TEXT DEFAULT 'pending',
                confirm_token TEXT,
                unsubscribe_token TEXT NOT NULL,
                confirmed_at TEXT,
                unsubscribed_at TEXT,
                source TEXT DEFAULT 'website',
                preferences TEXT DEFAULT '{}',
                ip_address TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_newsletter_status ON newsletter_subscribers(status, created_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_newsletter_confirm ON newsletter_subscribers(confirm_token)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_newsletter_unsub ON newsletter_subscribers(unsubscribe_token)")


def _path():
    return Database.ensure_schema('USER_DB', init_newsletter_db)


def _token():
    return secrets.token_urlsafe(32)


def serialize_subscriber(row):
    subscriber = row_to_dict(row, json_fields=('preferences',))
    if subscriber is not None:
        subscriber['preferences'] = dict(DEFAULT_PREFERENCES, **(subscriber.get('preferences') or {}))
    return subscriber


def public_subscriber(subscriber):
    return {key: subscriber[key] for key in ('id', 'email', 'name', 'status', 'source', 'preferences',
                                             'confirmed_at', 'created_at')}


def clean_preferences(preferences):
    if not isinstance(preferences, dict):
        return {}
    return {key: bool(preferences[key]) for key in DEFAULT_PREFERENCES if key in preferences}


def _fetch(column, value):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT * FROM newsletter_subscribers WHERE {column} = ?", (value,))
        return serialize_subscriber(cursor.fetchone())


def get_subscriber_by_email(email):
    return _fetch('email', email)


def get_subscriber_by_confirm_token(token):
    return _fetch('confirm_token', token) if token else None


def get_subscriber_by_unsubscribe_token(token):
    return _fetch('unsubscribe_token', token) if token else None


def create_subscriber(email, name=None, source='website', preferences=None, ip_address=None):
    now = now_iso()
    prefs = dict(DEFAULT_PREFERENCES, **clean_preferences(preferences))
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO newsletter_subscribers (email, name, status, confirm_token, unsubscribe_token, source,
                                                preferences, ip_address, created_at, updated_at)
            VALUES (?, ?, 'pending', ?, ?, ?, ?, ?, ?, ?)
        """, (email, name, _token(), _token(), source if source in SOURCES else 'other', dump_json(prefs),
              ip_address, now, now))
    return get_subscriber_by_email(email)


def _update(subscriber_id, **fields):
    fields['updated_at'] = now_iso()
    if 'preferences' in fields:
        fields['preferences'] = dump_json(fields['preferences'])
    set_clause = ', '.join(f"{key} = ?" for key in fields)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"UPDATE newsletter_subscribers SET {set_clause} WHERE id = ?",
                       (*fields.values(), subscriber_id))


def resubscribe(subscriber, name=None, source=None):
    """Move an unsubscribed address back to pending with a fresh confirmation token"""
    _update(subscriber['id'], status='pending', confirm_token=_token(), unsubscribed_at=None,
            name=name or subscriber['name'], source=source or subscriber['source'])
    return get_subscriber_by_email(subscriber['email'])


def refresh_confirm_token(subscriber):
    _update(subscriber['id'], confirm_token=_token())
    return get_subscriber_by_email(subscriber['email'])


def confirm_subscriber(subscriber):
    _update(subscriber['id'], status='confirmed', confirmed_at=now_iso(), confirm_token=None)
    return get_subscriber_by_email(subscriber['email'])


def unsubscribe_subscriber(subscriber):
    _update(subscriber['id'], status='unsubscribed', unsubscribed_at=now_iso())
    return get_subscriber_by_email(subscriber['email'])


def update_preferences(subscriber, preferences):
    merged = dict(subscriber['preferences'], **clean_preferences(preferences))
    _update(subscriber['id'], preferences=merged)
    return get_subscriber_by_email(subscriber['email'])


def delete_subscriber(subscriber_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM newsletter_subscribers WHERE id = ?", (subscriber_id,))
        if cursor.rowcount == 0:
            raise NotFoundError('Subscriber not found')


def _filters(status=None, q=None):
    clauses, params = [], []
    if status:
        clauses.append("status = ?")
        params.append(status)
    if q:
        clauses.append("(email LIKE ? OR name LIKE ?)")
        params.extend([f"%{q}%"] * 2)
    return (f"WHERE {' AND '.join(clauses)}" if clauses else ''), params


def list_subscribers(status=None, q=None, limit=20, offset=0):
    where, params = _filters(status, q)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT COUNT(*) FROM newsletter_subscribers {where}", params)
        total = cursor.fetchone()[0]
        cursor.execute(f"""
            SELECT * FROM newsletter_subscribers {where}
            ORDER BY created_at DESC LIMIT ? OFFSET ?
        """, (*params, limit, offset))
        return [public_subscriber(serialize_subscriber(row)) for row in cursor.fetchall()], total


def get_subscriber_stats():
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT status, COUNT(*) AS count FROM newsletter_subscribers GROUP BY status")
        by_status = {status: 0 for status in STATUSES}
        by_status.update({row['status']: row['count'] for row in cursor.fetchall()})
        cursor.execute("SELECT source, COUNT(*) AS count FROM newsletter_subscribers GROUP BY source")
        by_source = {row['source']: row['count'] for row in cursor.fetchall()}
    return {'total': sum(by_status.values()), 'by_status': by_status, 'by_source': by_source}


def get_subscriber_count():
    """Confirmed subscribers"""
    return get_subscriber_stats()['by_status']['confirmed']


def export_csv(status=None):
    where, params = _filters(status)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            SELECT {', '.join(EXPORT_COLUMNS)} FROM newsletter_subscribers {where}
            ORDER BY created_at DESC
        """, params)
        rows = cursor.fetchall()

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for row in rows:
        writer.writerow([row[column] or '' for column in EXPORT_COLUMNS])
    return buffer.getvalue(), len(rows)
