from bassac.core.database import Database, dump_json, row_to_dict
from bassac.core.helpers import now_iso

NOTIFICATION_TYPES = (
    'article_published', 'article_approved', 'article_rejected', 'article_submitted',
    'comment_received', 'comment_reply', 'comment_approved', 'comment_rejected',
    'role_changed', 'system_announcement', 'newsletter_subscribed',
)
PRIORITIES = ('low', 'normal', 'high')


def init_notifications_db(db_path):
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                recipient_id INTEGER NOT NULL,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                link TEXT,
                related_article_id INTEGER,
                related_comment_id INTEGER,
                related_user_id INTEGER,
                priority TEXT DEFAULT 'normal',
                metadata TEXT DEFAULT '{}',
                is_read BOOLEAN DEFAULT 0,
                read_at TEXT,
                email_sent BOOLEAN DEFAULT 0,
                email_sent_at TEXT,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_notifications_recipient
            ON notifications(recipient_id, is_read, created_at)
        """)


def _path():
    return Database.ensure_schema('USER_DB', init_notifications_db)


def _serialize(row):
    return row_to_dict(row, json_fields=('metadata',), bool_fields=('is_read', 'email_sent'))


def create_notification_db(recipient_id, type, title, message, link=None, related_article_id=None,
                           related_comment_id=None, related_user_id=None, priority='normal', metadata=None):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO notifications (recipient_id, type, title, message, link, related_article_id,
                                       related_comment_id, related_user_id, priority, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (recipient_id, type, title, message, link, related_article_id, related_comment_id,
              related_user_id, priority if priority in PRIORITIES else 'normal', dump_json(metadata or {}),
              now_iso()))
        notification_id = cursor.lastrowid
        cursor.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,))
        return _serialize(cursor.fetchone())


def mark_email_sent_db(notification_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("UPDATE notifications SET email_sent = 1, email_sent_at = ? WHERE id = ?",
                       (now_iso(), notification_id))


def get_notifications_db(recipient_id, unread_only=False, limit=20, offset=0):
    where = "WHERE recipient_id = ?" + (" AND is_read = 0" if unread_only else "")
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT COUNT(*) FROM notifications {where}", (recipient_id,))
        total = cursor.fetchone()[0]
        cursor.execute(f"""
            SELECT * FROM notifications {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?
        """, (recipient_id, limit, offset))
        return [_serialize(row) for row in cursor.fetchall()], total


def get_unread_count_db(recipient_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM notifications WHERE recipient_id = ? AND is_read = 0",
                       (recipient_id,))
        return cursor.fetchone()[0]


def mark_read_db(notification_id, recipient_id):
    """Mark one notification read. Returns the notification or None if not owned"""
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE notifications SET is_read = 1, read_at = COALESCE(read_at, ?)
            WHERE id = ? AND recipient_id = ?
        """, (now_iso(), notification_id, recipient_id))
        cursor.execute("SELECT * FROM notifications WHERE id = ? AND recipient_id = ?",
                       (notification_id, recipient_id))
        return _serialize(cursor.fetchone())


def mark_all_read_db(recipient_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE notifications SET is_read = 1, read_at = ? WHERE recipient_id = ? AND is_read = 0
        """, (now_iso(), recipient_id))
        return cursor.rowcount


def delete_notification_db(notification_id, recipient_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM notifications WHERE id = ? AND recipient_id = ?",
                       (notification_id, recipient_id))
        return cursor.rowcount > 0


def delete_all_notifications_db(recipient_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM notifications WHERE recipient_id = ?", (recipient_id,))
        return cursor.rowcount
