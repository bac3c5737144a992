import re
import sqlite3

from werkzeug.security import check_password_hash, generate_password_hash

from bassac.core.database import Database
from bassac.core.helpers import now_iso
from bassac.core.responses import ConflictError, NotFoundError

ROLES = ('admin', 'editor', 'writer', 'user')
STATUSES = ('active', 'inactive', 'suspended')
GENDERS = ('male', 'female', 'other', 'prefer_not_to_say')

# Email validation regex - rejects consecutive dots, leading/trailing dots
EMAIL_REGEX = re.compile(r'^[a-zA-Z0-9_%+-]+(\.[a-zA-Z0-9_%+-]+)*@[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,}$')

PUBLIC_FIELDS = ('id', 'email', 'first_name', 'last_name', 'role', 'status', 'bio', 'avatar', 'gender',
                 'is_email_verified', 'oauth_provider', 'last_login', 'created_at', 'updated_at')

PROFILE_FIELDS = ('first_name', 'last_name', 'bio', 'avatar', 'gender')


def init_users_db(db_path):
    """Initialize the users table with proper schema"""
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT,
                first_name TEXT NOT NULL,
                last_name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'user',
                status TEXT NOT NULL DEFAULT 'active',
                bio TEXT DEFAULT '',
                avatar TEXT,
                gender TEXT,
                is_email_verified BOOLEAN DEFAULT 0,
                oauth_provider TEXT,
                oauth_provider_id TEXT,
                refresh_token TEXT,
                reset_token TEXT,
                reset_token_expires TEXT,
                last_login TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        Database.add_missing_columns(cursor, 'users', [
            ('gender', 'TEXT'),
            ('oauth_provider', 'TEXT'),
            ('oauth_provider_id', 'TEXT'),
        ])

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_users_role ON users(role)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_users_oauth ON users(oauth_provider, oauth_provider_id)")


def serialize_user(row):
    """Public representation: never exposes hashes or tokens"""
    if row is None:
        return None
    data = {field: row[field] for field in PUBLIC_FIELDS if field in row.keys()}
    data['is_email_verified'] = bool(data.get('is_email_verified'))
    data['full_name'] = f"{row['first_name']} {row['last_name']}".strip()
    return data


def author_summary(user):
    if not user:
        return None
    return {
        'id': user['id'],
        'first_name': user['first_name'],
        'last_name': user['last_name'],
        'full_name': f"{user['first_name']} {user['last_name']}".strip(),
        'avatar': user.get('avatar') if isinstance(user, dict) else user['avatar'],
    }


class UserDatabase:

    @staticmethod
    def _path():
        return Database.ensure_schema('USER_DB', init_users_db)

    @staticmethod
    def _fetch_one(query, params):
        with Database.connect(UserDatabase._path()) as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchone()

    # ===== Lookups =====

    @staticmethod
    def get_user_by_id(user_id):
        """Public user dict or None"""
        return serialize_user(UserDatabase._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,)))

    @staticmethod
    def get_user_by_email(email):
        return serialize_user(UserDatabase._fetch_one(
            "SELECT * FROM users WHERE email = ?", ((email or '').strip().lower(),)))

    @staticmethod
    def get_record(user_id):
        """Full row including password hash and tokens (internal use only)"""
        row = UserDatabase._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        return dict(row) if row else None

    @staticmethod
    def get_record_by_email(email):
        row = UserDatabase._fetch_one("SELECT * FROM users WHERE email = ?", ((email or '').strip().lower(),))
        return dict(row) if row else None

    @staticmethod
    def email_exists(email):
        return UserDatabase.get_record_by_email(email) is not None

    @staticmethod
    def get_users_by_ids(user_ids):
        """Map of id -> author summary, used to populate articles and comments"""
        ids = sorted({int(i) for i in user_ids if i})
        if not ids:
            return {}

        placeholders = ','.join('?' for _ in ids)
        with Database.connect(UserDatabase._path()) as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT id, first_name, last_name, avatar FROM users WHERE id IN ({placeholders})
            """, ids)
            return {row['id']: author_summary(dict(row)) for row in cursor.fetchall()}

    @staticmethod
    def get_users_by_roles(roles, exclude_id=None):
        """Active users holding any of the roles (reviewer fan-out)"""
        placeholders = ','.join('?' for _ in roles)
        params = list(roles)
        query = f"SELECT * FROM users WHERE role IN ({placeholders}) AND status = 'active'"
        if exclude_id:
            query += " AND id != ?"
            params.append(exclude_id)

        with Database.connect(UserDatabase._path()) as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [serialize_user(row) for row in cursor.fetchall()]

    @staticmethod
    def get_active_user_ids():
        with Database.connect(UserDatabase._path()) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id FROM users WHERE status = 'active'")
            return [row['id'] for row in cursor.fetchall()]

    # ===== Mutations =====

    @staticmethod
    def create_user(email, first_name, last_name, password=None, role='user', oauth_provider=None,
                    oauth_provider_id=None, avatar=None, verified=False):
        """Create a new user. Raises ConflictError if the email is taken"""
        now = now_iso()
        password_hash = generate_password_hash(password) if password else None

        try:
            with Database.connect(UserDatabase._path()) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    INSERT INTO users (email, password_hash, first_name, last_name, role, status,
                                       avatar, is_email_verified, oauth_provider, oauth_provider_id,
                                       created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 'active', ?, ?, ?, ?, ?, ?)
                """, (email.strip().lower(), password_hash, first_name.strip(), last_name.strip(), role,
                      avatar, verified, oauth_provider, oauth_provider_id, now, now))
                user_id = cursor.lastrowid
        except sqlite3.IntegrityError:
            raise ConflictError('Email already registered')

        return UserDatabase.get_user_by_id(user_id)

    @staticmethod
    def verify_credentials(email, password):
        """Full record when the password matches, else None"""
        record = UserDatabase.get_record_by_email(email)
        if not record or not record.get('password_hash'):
            return None
        if not check_password_hash(record['password_hash'], password or ''):
            return None
        return record

    @staticmethod
    def check_password(user_id, password):
        record = UserDatabase.get_record(user_id)
        return bool(record and record.get('password_hash')
                    and check_password_hash(record['password_hash'], password or ''))

    @staticmethod
    def update_user(user_id, **fields):
        """Update whitelisted columns. Returns the updated public user"""
        allowed = set(PROFILE_FIELDS) | {'role', 'status', 'is_email_verified', 'refresh_token',
                                         'reset_token', 'reset_token_expires', 'last_login',
                                         'oauth_provider', 'oauth_provider_id'}
        set_clauses, values = [], []
        for field, value in fields.items():
            if field in allowed:
                set_clauses.append(f"{field} = ?")
                values.append(value.strip() if isinstance(value, str) and field in PROFILE_FIELDS else value)

        if not set_clauses:
            return UserDatabase.get_user_by_id(user_id)

        set_clauses.append("updated_at = ?")
        values.extend([now_iso(), user_id])

        with Database.connect(UserDatabase._path()) as conn:
            cursor = conn.cursor()
            cursor.execute(f"UPDATE users SET {', '.join(set_clauses)} WHERE id = ?", values)
            if cursor.rowcount == 0:
                raise NotFoundError('User not found')

        return UserDatabase.get_user_by_id(user_id)

    @staticmethod
    def set_password(user_id, password):
        with Database.connect(UserDatabase._path()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE users SET password_hash = ?, reset_token = NULL, reset_token_expires = NULL,
                                 updated_at = ?
                WHERE id = ?
            """, (generate_password_hash(password), now_iso(), user_id))
            return cursor.rowcount > 0

    @staticmethod
    def update_last_login(user_id):
        UserDatabase.update_user(user_id, last_login=now_iso())

    @staticmethod
    def get_user_by_reset_token(token_hash):
        row = UserDatabase._fetch_one("""
            SELECT * FROM users WHERE reset_token = ? AND reset_token_expires > ?
        """, (token_hash, now_iso()))
        return dict(row) if row else None

    @staticmethod
    def find_or_create_oauth_user(provider, provider_id, email, first_name, last_name, avatar=None):
        """Link OAuth identity to an existing account by email, or create a verified one"""
        row = UserDatabase._fetch_one("""
            SELECT * FROM users WHERE oauth_provider = ? AND oauth_provider_id = ?
        """, (provider, str(provider_id)))
        if row:
            return serialize_user(row)

        existing = UserDatabase.get_record_by_email(email)
        if existing:
            return UserDatabase.update_user(existing['id'], oauth_provider=provider,
                                            oauth_provider_id=str(provider_id), is_email_verified=True)

        return UserDatabase.create_user(email, first_name or 'Reader', last_name or '', oauth_provider=provider,
                                        oauth_provider_id=str(provider_id), avatar=avatar, verified=True)

    @staticmethod
    def delete_user(user_id):
        with Database.connect(UserDatabase._path()) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM users WHERE id = ?", (user_id,))
            return cursor.rowcount > 0

    # ===== Admin listing =====

    @staticmethod
    def list_users(role=None, status=None, q=None, limit=20, offset=0):
        clauses, params = [], []
        if role:
            clauses.append("role = ?")
            params.append(role)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if q:
            clauses.append("(email LIKE ? OR first_name LIKE ? OR last_name LIKE ?)")
            params.extend([f"%{q}%"] * 3)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ''

        with Database.connect(UserDatabase._path()) as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT COUNT(*) FROM users {where}", params)
            total = cursor.fetchone()[0]
            cursor.execute(f"""
                SELECT * FROM users {where} ORDER BY created_at DESC LIMIT ? OFFSET ?
            """, (*params, limit, offset))
            users = [serialize_user(row) for row in cursor.fetchall()]

        return users, total

    @staticmethod
    def get_stats():
        with Database.connect(UserDatabase._path()) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT role, COUNT(*) AS count FROM users GROUP BY role")
            by_role = {role: 0 for role in ROLES}
            by_role.update({row['role']: row['count'] for row in cursor.fetchall()})

            cursor.execute("SELECT status, COUNT(*) AS count FROM users GROUP BY status")
            by_status = {status: 0 for status in STATUSES}
            by_status.update({row['status']: row['count'] for row in cursor.fetchall()})

            cursor.execute("SELECT COUNT(*) FROM users")
            total = cursor.fetchone()[0]

        return {'total': total, 'by_role': by_role, 'by_status': by_status}
