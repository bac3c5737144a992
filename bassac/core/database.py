import json
import os
import sqlite3
import threading
from contextlib import contextmanager

from .config import get_config_value


class Database:
    # Schema creation runs once per database file per process
    _lock = threading.Lock()
    _initialised = set()

    @staticmethod
    @contextmanager
    def connect(path):
        """
        Open a SQLite connection with dict-like rows.
        Commits on success, rolls back on error and always closes.
        """
        conn = sqlite3.connect(path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def path(key):
        """Resolve a database path (NEWS_DB, USER_DB, ...) and make sure its directory exists"""
        db_path = get_config_value(key)
        if not db_path:
            db_path = os.path.join(get_config_value('DB_DIR', 'databases'), f"{key.lower()}.db")

        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        return db_path

    @classmethod
    def ensure_schema(cls, key, init_fn):
        """Run init_fn(path) the first time a database path is used"""
        db_path = cls.path(key)
        marker = (init_fn.__module__, init_fn.__name__, db_path)
        if marker in cls._initialised:
            return db_path

        with cls._lock:
            if marker not in cls._initialised:
                init_fn(db_path)
                cls._initialised.add(marker)
        return db_path

    @staticmethod
    def add_missing_columns(cursor, table, columns):
        """Additive migration: ALTER TABLE for every (name, type) not present yet"""
        cursor.execute(f"PRAGMA table_info({table})")
        existing = [column[1] for column in cursor.fetchall()]

        for col_name, col_type in columns:
            if col_name not in existing:
                print(f"Adding {col_name} column to {table} table...")
                cursor.execute(f'ALTER TABLE {table} ADD COLUMN {col_name} {col_type}')


def row_to_dict(row, json_fields=(), bool_fields=()):
    """Convert a sqlite3.Row to a plain dict, decoding JSON and boolean columns"""
    if row is None:
        return None

    data = dict(row)
    for field in json_fields:
        if field in data:
            data[field] = load_json(data[field])
    for field in bool_fields:
        if field in data and data[field] is not None:
            data[field] = bool(data[field])
    return data


def load_json(value, default=None):
    if value is None or value == '':
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def dump_json(value):
    if value is None:
        return None
    return json.dumps(value)
