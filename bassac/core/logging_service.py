"""
Logging Service
===============

Persistent application log for the Bassac API. Entries land in the
``app_logs`` table of ANALYTICS_DB together with the request that produced
them (client IP, user agent, path and signed-in user), and staff read them
back through the dashboard log viewer.

Feature modules call ``db_log(level, source, message, details)``; the
``logger`` instance adds the user-action, security and traceback helpers.
Process-level diagnostics keep using ``logging.getLogger(__name__)``.
"""

import json
import logging
import traceback
from datetime import timedelta

from flask import g, has_request_context, request

from .database import Database
from .helpers import get_client_ip, get_user_agent, now_iso, utcnow

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

py_logger = logging.getLogger(__name__)


def init_logs_db(db_path):
    """Ensure the app_logs table exists"""
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS app_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                level TEXT NOT NULL,
                source TEXT NOT NULL,
                message TEXT NOT NULL,
                details TEXT,
                ip_address TEXT,
                user_agent TEXT,
                request_path TEXT,
                user_id TEXT
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_logs_timestamp ON app_logs(timestamp DESC)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_logs_level ON app_logs(level)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_logs_source ON app_logs(source)")


def _logs_path():
    return Database.ensure_schema('ANALYTICS_DB', init_logs_db)


def _request_fields():
    """(ip, user agent, path, user id) of the current request, or Nones"""
    if not has_request_context():
        return None, None, None, None
    user = getattr(g, 'user', None)
    return (get_client_ip() or None, get_user_agent()[:500] or None, request.path,
            str(user['id']) if user else None)


def _normalize_level(level):
    level = (level or 'INFO').upper()
    return level if level in LOG_LEVELS else 'INFO'


class LoggingService:
    """Writes and reads the persistent app log"""

    @staticmethod
    def log(level, source, message, details=None, user_id=None):
        """
        Store one log entry.

        Args:
            level (str): DEBUG, INFO, WARNING, ERROR or CRITICAL (case-insensitive)
            source (str): module that emitted it (auth, articles, ads, jobs...)
            message (str): short human readable message
            details (str/dict/list): extra context, JSON-encoded when structured
            user_id: acting user; defaults to the signed-in user of the request
        """
        level = _normalize_level(level)
        if isinstance(details, (dict, list)):
            details = json.dumps(details, indent=2, default=str)

        try:
            ip_address, user_agent, request_path, request_user = _request_fields()
            with Database.connect(_logs_path()) as conn:
                conn.execute("""
                    INSERT INTO app_logs
                    (timestamp, level, source, message, details, ip_address, user_agent, request_path, user_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (now_iso(), level, source, message, details, ip_address, user_agent, request_path,
                      str(user_id) if user_id is not None else request_user))
        except Exception as e:
            # The log table is unavailable; keep the entry in the process log
            py_logger.log(getattr(logging, level), f"[{source}] {message}")
            if details:
                py_logger.log(getattr(logging, level), f"[{source}] details: {details}")
            py_logger.error(f"Logging service error: {e}")

    @staticmethod
    def info(source, message, details=None, user_id=None):
        LoggingService.log('INFO', source, message, details, user_id)

    @staticmethod
    def warning(source, message, details=None, user_id=None):
        LoggingService.log('WARNING', source, message, details, user_id)

    @staticmethod
    def error(source, message, details=None, user_id=None):
        LoggingService.log('ERROR', source, message, details, user_id)

    @staticmethod
    def log_user_action(source, action, user_id=None, details=None):
        """Editorial and account actions (create_article, approve_article, change_role...)"""
        LoggingService.info(source, f"User action: {action}", details, user_id)

    @staticmethod
    def log_security_event(message, details=None):
        """Failed logins, lockouts, password resets and rejected webhooks"""
        LoggingService.warning('security', message, details)

    @staticmethod
    def log_error_with_traceback(source, error, details=None):
        error_details = {
            'error_type': type(error).__name__,
            'error_message': str(error),
            'traceback': traceback.format_exc(),
        }
        if details:
            error_details['additional_details'] = details
        LoggingService.error(source, f"Exception occurred: {type(error).__name__}", error_details)

    @staticmethod
    def get_recent_logs(level=None, source=None, limit=100):
        """Newest entries first, optionally filtered by level and source"""
        clauses, params = [], []
        if level:
            clauses.append('level = ?')
            params.append(level.upper())
        if source:
            clauses.append('source = ?')
            params.append(source)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ''

        with Database.connect(_logs_path()) as conn:
            rows = conn.execute(f"""
                SELECT id, timestamp, level, source, message, details, ip_address, request_path, user_id
                FROM app_logs {where}
                ORDER BY id DESC
                LIMIT ?
            """, (*params, limit)).fetchall()
        return [dict(row) for row in rows]

    @staticmethod
    def cleanup_old_logs(days_to_keep=30):
        """Delete entries older than ``days_to_keep``. Returns the number removed"""
        cutoff = (utcnow() - timedelta(days=days_to_keep)).isoformat(timespec='microseconds')
        try:
            with Database.connect(_logs_path()) as conn:
                deleted = conn.execute("DELETE FROM app_logs WHERE timestamp < ?", (cutoff,)).rowcount
        except Exception as e:
            LoggingService.error('jobs', f"Failed to clean up old logs: {e}")
            return 0

        if deleted:
            LoggingService.info('jobs', f"Removed {deleted} log entries older than {days_to_keep} days")
        return deleted


def db_log(level, source, message, details=None):
    """Shorthand used by feature modules for persistent logging"""
    LoggingService.log(level, source, message, details)


logger = LoggingService()
