import logging
import re
from datetime import timedelta

from bassac.core.database import Database
from bassac.core.helpers import detect_device, now_iso, parse_date, utcnow

logger = logging.getLogger(__name__)

PAGE_TYPES = ('home', 'article', 'category', 'search', 'video', 'other')


def init_page_views_db(db_path):
    """Initialize the page_views table"""
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS page_views (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                path TEXT NOT NULL,
                page_type TEXT DEFAULT 'other',
                article_id INTEGER,
                visitor_hash TEXT,
                user_id INTEGER,
                device TEXT,
                referrer TEXT,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_page_views_created ON page_views(created_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_page_views_article ON page_views(article_id, created_at)")


def _path():
    return Database.ensure_schema('ANALYTICS_DB', init_page_views_db)


def default_range(start=None, end=None, days=30):
    """
    Parse a start/end pair (ISO dates). Missing values default to the last
    ``days`` days. Returns (start, end) datetimes or None when invalid.
    """
    end_dt = parse_date(end) if end else utcnow()
    start_dt = parse_date(start) if start else end_dt - timedelta(days=days)
    if start_dt is None or end_dt is None or start_dt > end_dt:
        return None
    if end and len(str(end)) <= 10:
        end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)
    return start_dt, end_dt


class Analytics:
    BOT_PATTERNS = [
        r'bot', r'crawler', r'spider', r'scraper', r'wget', r'curl', r'headless', r'phantom',
        r'selenium', r'puppeteer', r'facebookexternalhit', r'preview',
    ]

    @staticmethod
    def is_bot(user_agent):
        if not user_agent:
            return False
        user_agent = user_agent.lower()
        return any(re.search(pattern, user_agent) for pattern in Analytics.BOT_PATTERNS)

    @staticmethod
    def record_page_view(path, page_type='other', article_id=None, visitor_hash=None, user_id=None,
                         user_agent=None, referrer=None):
        """Store one page view. Bot traffic is ignored. Returns True when stored"""
        if Analytics.is_bot(user_agent):
            return False
        if page_type not in PAGE_TYPES:
            page_type = 'other'

        with Database.connect(_path()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO page_views (path, page_type, article_id, visitor_hash, user_id, device, referrer,
                                        created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, ((path or '/')[:500], page_type, article_id, visitor_hash, user_id,
                  detect_device(user_agent), (referrer or '')[:500] or None, now_iso()))
        return True

    @staticmethod
    def daily_views(start, end, article_id=None):
        """[{date, views, visitors}] for each day with traffic"""
        params = [start.isoformat(), end.isoformat()]
        article_clause = ''
        if article_id:
            article_clause = 'AND article_id = ?'
            params.append(article_id)

        with Database.connect(_path()) as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT substr(created_at, 1, 10) AS date, COUNT(*) AS views,
                       COUNT(DISTINCT visitor_hash) AS visitors
                FROM page_views
                WHERE created_at >= ? AND created_at <= ? {article_clause}
                GROUP BY date ORDER BY date ASC
            """, params)
            return [dict(row) for row in cursor.fetchall()]

    @staticmethod
    def totals(start, end):
        with Database.connect(_path()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT COUNT(*) AS views, COUNT(DISTINCT visitor_hash) AS unique_visitors
                FROM page_views WHERE created_at >= ? AND created_at <= ?
            """, (start.isoformat(), end.isoformat()))
            row = cursor.fetchone()
            return {'views': row['views'], 'unique_visitors': row['unique_visitors']}

    @staticmethod
    def top_articles(start, end, limit=10):
        """[{article_id, views, visitors}] ordered by views"""
        with Database.connect(_path()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT article_id, COUNT(*) AS views, COUNT(DISTINCT visitor_hash) AS visitors
                FROM page_views
                WHERE article_id IS NOT NULL AND created_at >= ? AND created_at <= ?
                GROUP BY article_id ORDER BY views DESC LIMIT ?
            """, (start.isoformat(), end.isoformat(), limit))
            return [dict(row) for row in cursor.fetchall()]

    @staticmethod
    def breakdown(start, end, column):
        """Views grouped by page_type or device"""
        if column not in ('page_type', 'device'):
            raise ValueError(f"Cannot group page views by {column}")
        with Database.connect(_path()) as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT {column} AS name, COUNT(*) AS views FROM page_views
                WHERE created_at >= ? AND created_at <= ?
                GROUP BY {column} ORDER BY views DESC
            """, (start.isoformat(), end.isoformat()))
            return [dict(row) for row in cursor.fetchall()]

    @staticmethod
    def cleanup_old_page_views(days_to_keep=365):
        cutoff = (utcnow() - timedelta(days=days_to_keep)).isoformat()
        with Database.connect(_path()) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM page_views WHERE created_at < ?", (cutoff,))
            return cursor.rowcount
