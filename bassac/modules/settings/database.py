"""
Settings Database with Encryption
=================================

Two stores live in SETTINGS_DB:

- ``settings``: flat key/value integration settings (Stripe, email, OAuth,
  storage). Secret values are encrypted with Fernet (AES-128-CBC).
- ``site_settings``: the public site configuration document (branding,
  menus, homepage sections, widgets, SEO, feature toggles).
"""

import base64
import copy
import hashlib
import json
import os
from datetime import datetime

from cryptography.fernet import Fernet, InvalidToken

from bassac.core.database import Database
from bassac.core.config import get_config_value
from bassac.core.cache import cache, TTL

SITE_SETTINGS_KEY = 'site'

DEFAULT_SITE_SETTINGS = {
    'siteName': 'Bassac Post',
    'siteTagline': 'Your trusted source for news and insights',
    'siteDescription': '',
    'siteLogo': '',
    'siteFavicon': '',
    'siteEmail': '',
    'primaryColor': '#2563eb',
    'secondaryColor': '#64748b',
    'accentColor': '#f59e0b',
    'socialLinks': [],
    'menus': {'header': [], 'footer': []},
    'homepageSections': [],
    'widgets': [],
    'seo': {
        'metaTitle': '',
        'metaDescription': '',
        'ogImage': '',
        'googleAnalyticsId': '',
        'enableSitemap': True,
    },
    'articleSettings': {
        'defaultLayout': 'standard',
        'enableComments': True,
        'enableSharing': True,
        'enableRelatedPosts': True,
        'relatedPostsCount': 4,
    },
    'features': {
        'enableComments': True,
        'enableNewsletter': True,
        'enableSubscriptions': True,
        'enableAds': True,
        'enableSearch': True,
        'maintenanceMode': False,
        'maintenanceMessage': 'Site is under maintenance. Please check back later.',
    },
}

# Sections that can be replaced wholesale via PUT /api/settings/<section>
SECTION_KEYS = {
    'homepage': 'homepageSections',
    'menus': 'menus',
    'widgets': 'widgets',
    'seo': 'seo',
    'branding': None,
}

BRANDING_FIELDS = ('siteName', 'siteTagline', 'siteDescription', 'siteLogo', 'siteFavicon',
                   'primaryColor', 'secondaryColor', 'accentColor', 'socialLinks')


def get_settings_db_path():
    """Get settings database path"""
    return Database.ensure_schema('SETTINGS_DB', init_settings_db)


def get_encryption_key():
    """
    Derive encryption key from Flask SECRET_KEY.
    Returns a Fernet-compatible key (32 bytes, base64 encoded).
    """
    secret = get_config_value('SECRET_KEY') or os.environ.get('FLASK_SECRET_KEY', 'default-insecure-key')

    # Derive a 32-byte key using SHA256
    key_bytes = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(key_bytes)


def encrypt_value(value):
    """Encrypt a value using Fernet"""
    if not value:
        return value
    return Fernet(get_encryption_key()).encrypt(value.encode()).decode()


def decrypt_value(encrypted_value):
    """Decrypt a value using Fernet"""
    if not encrypted_value:
        return encrypted_value
    try:
        return Fernet(get_encryption_key()).decrypt(encrypted_value.encode()).decode()
    except InvalidToken:
        # Stored before encryption was enabled, or SECRET_KEY rotated
        return encrypted_value


def init_settings_db(db_path):
    """Initialize settings database"""
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS settings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                category TEXT NOT NULL,
                key TEXT NOT NULL UNIQUE,
                value TEXT,
                is_secret BOOLEAN DEFAULT 0,
                description TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_settings_category ON settings(category)')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS site_settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_by INTEGER,
                updated_at TEXT
            )
        ''')


# ===== Encrypted key/value store =====

def get_setting(key, default=None, decrypt=True):
    """
    Get a setting value by key.
    Falls back to app config / environment variable if not in database.
    """
    try:
        with Database.connect(get_settings_db_path()) as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT value, is_secret FROM settings WHERE key = ?', (key,))
            row = cursor.fetchone()

        if row:
            value, is_secret = row['value'], row['is_secret']
            if is_secret and decrypt and value:
                value = decrypt_value(value)
            return value if value else default

    except Exception as e:
        print(f"Error getting setting {key}: {e}")

    return get_config_value(key, default)


def set_setting(key, value, category='general', is_secret=False, description=None):
    """Set a setting value"""
    stored_value = encrypt_value(value) if is_secret and value else value

    with Database.connect(get_settings_db_path()) as conn:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO settings (category, key, value, is_secret, description, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                category = excluded.category,
                is_secret = excluded.is_secret,
                description = COALESCE(excluded.description, settings.description),
                updated_at = excluded.updated_at
        ''', (category, key, stored_value, is_secret, description, datetime.now().isoformat()))
    return True


def delete_setting(key):
    """Delete a setting"""
    with Database.connect(get_settings_db_path()) as conn:
        cursor = conn.cursor()
        cursor.execute('DELETE FROM settings WHERE key = ?', (key,))
        return cursor.rowcount > 0


def mask_secret(value):
    """Show only the last 4 characters"""
    if not value:
        return value
    if len(value) <= 4:
        return '****'
    return '*' * (len(value) - 4) + value[-4:]


def get_all_settings(category=None, mask_secrets=True):
    """
    Get all settings, optionally filtered by category.
    Secrets are masked by default (show only last 4 chars).
    """
    with Database.connect(get_settings_db_path()) as conn:
        cursor = conn.cursor()
        if category:
            cursor.execute('''
                SELECT id, category, key, value, is_secret, description, updated_at
                FROM settings WHERE category = ? ORDER BY key
            ''', (category,))
        else:
            cursor.execute('''
                SELECT id, category, key, value, is_secret, description, updated_at
                FROM settings ORDER BY category, key
            ''')
        rows = cursor.fetchall()

    settings = []
    for row in rows:
        value = row['value']
        if row['is_secret'] and value:
            value = decrypt_value(value)
            if mask_secrets:
                value = mask_secret(value)

        settings.append({
            'id': row['id'],
            'category': row['category'],
            'key': row['key'],
            'value': value,
            'is_secret': bool(row['is_secret']),
            'description': row['description'],
            'updated_at': row['updated_at'],
        })
    return settings


def find_schema_entry(key):
    """Look up a key in SETTINGS_SCHEMA. Returns (category, entry) or (None, None)"""
    for category, group in SETTINGS_SCHEMA.items():
        for entry in group['settings']:
            if entry['key'] == key:
                return category, entry
    return None, None


# ===== Site settings document =====

def _merge(defaults, stored):
    merged = copy.deepcopy(defaults)
    for key, value in (stored or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_site_settings():
    """Full site settings document with defaults filled in"""
    with Database.connect(get_settings_db_path()) as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT value FROM site_settings WHERE key = ?', (SITE_SETTINGS_KEY,))
        row = cursor.fetchone()

    stored = json.loads(row['value']) if row else {}
    return _merge(DEFAULT_SITE_SETTINGS, stored)


def save_site_settings(settings, user_id=None):
    with Database.connect(get_settings_db_path()) as conn:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO site_settings (key, value, updated_by, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_by = excluded.updated_by,
                updated_at = excluded.updated_at
        ''', (SITE_SETTINGS_KEY, json.dumps(settings), user_id, datetime.now().isoformat()))

    cache.delete(cache.key('settings', 'public'))
    return settings


def update_site_settings(updates, user_id=None):
    """Deep-merge updates into the stored document"""
    current = get_site_settings()
    return save_site_settings(_merge(current, updates), user_id)


def _sorted_enabled(items):
    return sorted([i for i in (items or []) if i.get('enabled', True)], key=lambda i: i.get('order', 0))


def get_public_settings():
    """Public-facing subset, cached"""
    def build():
        settings = get_site_settings()
        return {
            'siteName': settings['siteName'],
            'siteTagline': settings['siteTagline'],
            'siteDescription': settings['siteDescription'],
            'siteLogo': settings['siteLogo'],
            'siteFavicon': settings['siteFavicon'],
            'primaryColor': settings['primaryColor'],
            'secondaryColor': settings['secondaryColor'],
            'accentColor': settings['accentColor'],
            'socialLinks': [s for s in settings['socialLinks'] if s.get('enabled', True)],
            'menus': settings['menus'],
            'homepageSections': _sorted_enabled(settings['homepageSections']),
            'widgets': _sorted_enabled(settings['widgets']),
            'articleSettings': settings['articleSettings'],
            'features': settings['features'],
            'seo': {
                'metaTitle': settings['seo'].get('metaTitle', ''),
                'metaDescription': settings['seo'].get('metaDescription', ''),
                'ogImage': settings['seo'].get('ogImage', ''),
            },
        }

    return cache.get_or_set(cache.key('settings', 'public'), build, TTL['settings'])


def is_feature_enabled(feature):
    features = get_site_settings().get('features', {})
    return bool(features.get(feature, True))


# Define the standard settings schema
SETTINGS_SCHEMA = {
    'stripe': {
        'label': 'Payment (Stripe)',
        'settings': [
            {'key': 'STRIPE_SECRET_KEY', 'label': 'Secret Key', 'type': 'password', 'is_secret': True, 'description': 'sk_live_... or sk_test_...'},
            {'key': 'STRIPE_PUBLISHABLE_KEY', 'label': 'Publishable Key', 'type': 'text', 'is_secret': False, 'description': 'pk_...'},
            {'key': 'STRIPE_WEBHOOK_SECRET', 'label': 'Webhook Secret', 'type': 'password', 'is_secret': True, 'description': 'whsec_...'},
            {'key': 'STRIPE_PRICE_BASIC_MONTHLY', 'label': 'Basic monthly price id', 'type': 'text', 'is_secret': False, 'description': 'price_...'},
            {'key': 'STRIPE_PRICE_PREMIUM_MONTHLY', 'label': 'Premium monthly price id', 'type': 'text', 'is_secret': False, 'description': 'price_...'},
        ]
    },
    'email': {
        'label': 'Email (Resend)',
        'settings': [
            {'key': 'RESEND_API_KEY', 'label': 'Resend API Key', 'type': 'password', 'is_secret': True, 'description': 're_...'},
            {'key': 'EMAIL_FROM', 'label': 'From Email', 'type': 'email', 'is_secret': False, 'description': 'noreply@yourdomain.com'},
        ]
    },
    'oauth': {
        'label': 'OAuth Authentication',
        'settings': [
            {'key': 'GOOGLE_CLIENT_ID', 'label': 'Google Client ID', 'type': 'text', 'is_secret': False, 'description': 'From Google Cloud Console'},
            {'key': 'GOOGLE_CLIENT_SECRET', 'label': 'Google Client Secret', 'type': 'password', 'is_secret': True, 'description': 'GOCSPX-...'},
            {'key': 'GITHUB_CLIENT_ID', 'label': 'GitHub Client ID', 'type': 'text', 'is_secret': False, 'description': 'From GitHub Developer Settings'},
            {'key': 'GITHUB_CLIENT_SECRET', 'label': 'GitHub Client Secret', 'type': 'password', 'is_secret': True, 'description': 'GitHub OAuth secret'},
        ]
    },
    'storage': {
        'label': 'Storage (DigitalOcean Spaces)',
        'settings': [
            {'key': 'STORAGE_TYPE', 'label': 'Storage Type', 'type': 'select', 'options': ['local', 'cloud'], 'default': 'local', 'is_secret': False, 'description': 'Where to store uploaded files'},
            {'key': 'DO_SPACES_REGION', 'label': 'Region', 'type': 'text', 'is_secret': False, 'description': 'e.g., sfo3, nyc3'},
            {'key': 'DO_SPACES_NAME', 'label': 'Space Name', 'type': 'text', 'is_secret': False, 'description': 'Your space/bucket name'},
            {'key': 'DO_SPACES_KEY', 'label': 'Access Key ID', 'type': 'text', 'is_secret': False, 'description': 'Spaces access key'},
            {'key': 'DO_SPACES_SECRET', 'label': 'Secret Access Key', 'type': 'password', 'is_secret': True, 'description': 'Spaces secret key'},
        ]
    },
    'site': {
        'label': 'Site Settings',
        'settings': [
            {'key': 'BASE_URL', 'label': 'Base URL', 'type': 'url', 'is_secret': False, 'description': 'https://yourdomain.com'},
            {'key': 'ENVIRONMENT', 'label': 'Environment', 'type': 'select', 'options': ['development', 'staging', 'production'], 'default': 'development', 'is_secret': False, 'description': 'Current environment'},
        ]
    }
}
