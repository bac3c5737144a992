import os
from dotenv import load_dotenv

load_dotenv(override=True)


class Config:
    """
    Base configuration for the Bassac publishing platform.
    Projects should provide database paths and secrets via environment variables.
    """
    # Flask settings
    SECRET_KEY = os.getenv('FLASK_SECRET_KEY') or os.getenv('SECRET_KEY')
    UPLOAD_FOLDER = os.getenv('UPLOAD_FOLDER', 'uploads')

    SITE_NAME = os.getenv('SITE_NAME', 'Bassac Post')
    FRONTEND_URL = os.getenv('FRONTEND_URL', 'http://localhost:5173')

    DB_DIR = os.getenv('DB_DIR', os.path.join(os.getcwd(), 'databases'))

    # One SQLite file per concern, under DB_DIR unless set individually
    NEWS_DB = os.getenv('NEWS_DB', os.path.join(DB_DIR, "news.db"))
    USER_DB = os.getenv('USER_DB', os.path.join(DB_DIR, "users.db"))
    ANALYTICS_DB = os.getenv('ANALYTICS_DB', os.path.join(DB_DIR, "analytics.db"))
    SETTINGS_DB = os.getenv('SETTINGS_DB', os.path.join(DB_DIR, "settings.db"))

    # JWT
    JWT_SECRET = os.getenv('JWT_SECRET')
    JWT_EXPIRES_IN = os.getenv('JWT_EXPIRES_IN', '7d')
    JWT_REFRESH_SECRET = os.getenv('JWT_REFRESH_SECRET')
    JWT_REFRESH_EXPIRES_IN = os.getenv('JWT_REFRESH_EXPIRES_IN', '30d')

    # Cache - in-process memory unless REDIS_URL is set
    REDIS_URL = os.getenv('REDIS_URL')

    # Elasticsearch
    ELASTICSEARCH_URL = os.getenv('ELASTICSEARCH_URL')
    ELASTICSEARCH_INDEX = os.getenv('ELASTICSEARCH_INDEX', 'articles')
    SKIP_ELASTICSEARCH_SYNC = os.getenv('SKIP_ELASTICSEARCH_SYNC', 'false')

    # OAuth settings
    GOOGLE_CLIENT_ID = os.getenv('GOOGLE_CLIENT_ID')
    GOOGLE_CLIENT_SECRET = os.getenv('GOOGLE_CLIENT_SECRET')
    GITHUB_CLIENT_ID = os.getenv('GITHUB_CLIENT_ID')
    GITHUB_CLIENT_SECRET = os.getenv('GITHUB_CLIENT_SECRET')

    # Email settings
    EMAIL_PROVIDER = os.getenv('EMAIL_PROVIDER', 'resend')
    EMAIL_ADDRESS = os.getenv('EMAIL_ADDRESS', 'onboarding@resend.dev')
    EMAIL_PASSWORD = os.getenv('EMAIL_PASSWORD')
    EMAIL_HOST = os.getenv('EMAIL_HOST', 'smtp.gmail.com')
    EMAIL_PORT = int(os.getenv('EMAIL_PORT', '587'))
    RESEND_API_KEY = os.getenv('RESEND_API_KEY') or os.getenv('RESEND')

    # Stripe settings
    STRIPE_SECRET_KEY = os.getenv('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.getenv('STRIPE_WEBHOOK_SECRET')

    # Ad tracking
    IP_HASH_SALT = os.getenv('IP_HASH_SALT', 'default-salt-change-me')


def get_config_value(key, default=None):
    """Resolve a setting: Flask app config, then Config, then environment."""
    try:
        from flask import current_app
        val = current_app.config.get(key)
        if val is not None:
            return val
    except RuntimeError:
        # Outside of application context
        pass

    val = getattr(Config, key, None)
    if val is not None:
        return val

    return os.getenv(key, default)
