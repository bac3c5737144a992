"""
Bassac - A Flask News & Publishing Platform
===========================================

A modular Flask REST API for editorial sites:
- Articles with review workflow, translations and premium paywall
- JWT + OAuth authentication with roles (admin, editor, writer, user)
- Categories, comments, notifications and newsletter
- Subscriptions with Stripe Checkout
- Ad inventory with targeting, frequency capping and tracking
- Elasticsearch search with a SQL fallback
- Analytics, staff dashboard and /health

Usage:
    from flask import Flask
    from bassac import Bassac

    app = Flask(__name__)
    bassac = Bassac(app, {'features': {'ads': False}, 'background_jobs': True})
"""

import logging
import os
import threading
import time

from flask import request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .core.config import Config
from .core.database import Database
from .core.responses import ApiError, error_response

__version__ = '0.1.0'

logger = logging.getLogger(__name__)

DB_FILES = (
    ('NEWS_DB', 'news.db'),
    ('USER_DB', 'users.db'),
    ('ANALYTICS_DB', 'analytics.db'),
    ('SETTINGS_DB', 'settings.db'),
)

BACKGROUND_INTERVAL = 300
LOG_RETENTION_DAYS = 30


def _module_blueprints():
    """(name, [blueprints]) for every feature module, in registration order"""
    from .modules.ads import ads_bp
    from .modules.analytics import analytics_bp
    from .modules.articles import articles_bp, translations_bp
    from .modules.auth import auth_bp, users_bp
    from .modules.categories import categories_bp
    from .modules.comments import comments_bp
    from .modules.dashboard import dashboard_bp
    from .modules.newsletter import newsletter_bp
    from .modules.notifications import notifications_bp
    from .modules.ops import ops_health_bp
    from .modules.search import search_bp
    from .modules.settings import settings_bp
    from .modules.subscriptions import subscriptions_bp

    return [
        ('auth', [auth_bp, users_bp]),
        ('settings', [settings_bp]),
        ('categories', [categories_bp]),
        ('articles', [articles_bp, translations_bp]),
        ('comments', [comments_bp]),
        ('notifications', [notifications_bp]),
        ('newsletter', [newsletter_bp]),
        ('subscriptions', [subscriptions_bp]),
        ('analytics', [analytics_bp]),
        ('search', [search_bp]),
        ('ads', [ads_bp]),
        ('dashboard', [dashboard_bp]),
        ('ops', [ops_health_bp]),
    ]


def _schemas():
    """(database key, init function) for every table set"""
    from .core.logging_service import init_logs_db
    from .modules.ads.database import init_ads_db
    from .modules.analytics.analytics import init_page_views_db
    from .modules.articles.database import init_articles_db
    from .modules.articles.translations import init_translations_db
    from .modules.auth.database import init_users_db
    from .modules.categories.database import init_categories_db
    from .modules.comments.database import init_comments_db
    from .modules.email.email_service import init_email_logs_db
    from .modules.newsletter.database import init_newsletter_db
    from .modules.notifications.database import init_notifications_db
    from .modules.settings.database import init_settings_db
    from .modules.subscriptions.database import init_subscriptions_db

    return [
        ('USER_DB', init_users_db),
        ('USER_DB', init_email_logs_db),
        ('USER_DB', init_notifications_db),
        ('USER_DB', init_newsletter_db),
        ('USER_DB', init_subscriptions_db),
        ('SETTINGS_DB', init_settings_db),
        ('ANALYTICS_DB', init_logs_db),
        ('ANALYTICS_DB', init_page_views_db),
        ('ANALYTICS_DB', init_ads_db),
        ('NEWS_DB', init_categories_db),
        ('NEWS_DB', init_articles_db),
        ('NEWS_DB', init_translations_db),
        ('NEWS_DB', init_comments_db),
    ]


def run_background_jobs(app, state=None):
    """
    One pass of the periodic jobs. ``state`` remembers the last day the daily
    jobs ran so they fire once per day. Returns a dict of what each job did.
    """
    from .core.helpers import utcnow
    from .core.logging_service import logger as app_logger
    from .modules.ads.database import aggregate_daily_stats
    from .modules.articles.views import flush_view_counts
    from .modules.subscriptions.database import expire_overdue

    state = state if state is not None else {}
    results = {}
    today = utcnow().date().isoformat()

    jobs = [('views_flushed', flush_view_counts), ('subscriptions_expired', expire_overdue)]
    if state.get('daily') != today:
        jobs += [('ads_aggregated', aggregate_daily_stats),
                 ('logs_removed', lambda: app_logger.cleanup_old_logs(LOG_RETENTION_DAYS))]
        state['daily'] = today

    with app.app_context():
        for name, job in jobs:
            try:
                results[name] = job()
            except Exception as e:
                logger.error(f"Background job {name} failed: {e}")
                app_logger.log_error_with_traceback('jobs', e, {'job': name})
                results[name] = None
    return results


class Bassac:
    """
    Flask extension that wires the Bassac modules into an app.

    Config dict keys:
        features         {module_name: bool}; modules are on unless set to False
        brand_name       display name (defaults to SITE_NAME)
        cors_origins     list of allowed origins for /api/* (defaults to FRONTEND_URL)
        background_jobs  start the periodic job thread
    """

    def __init__(self, app=None, config=None):
        self._config = dict(config or {})
        self._registered = []
        self._jobs_thread = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self._resolve_config(app)
        self._setup_database_dir(app)

        with app.app_context():
            self._init_schemas()
            self._init_services(app)

        self._register_modules(app)
        self._register_error_handlers(app)
        self._setup_cors(app)
        self._register_uploads(app)

        @app.context_processor
        def inject_bassac():
            return {'bassac_config': self._config, 'brand_name': self.brand_name(app)}

        app.extensions['bassac'] = self

        if self._config.get('background_jobs') and not app.config.get('TESTING'):
            self._start_background_jobs(app)

    # ===== Setup =====

    def _resolve_config(self, app):
        """Fill app.config from Config without overriding what the app set"""
        db_dir = app.config.get('DB_DIR') or Config.DB_DIR
        app.config['DB_DIR'] = db_dir
        for key, filename in DB_FILES:
            if not app.config.get(key):
                app.config[key] = os.getenv(key) or os.path.join(db_dir, filename)

        for key in dir(Config):
            if key.isupper() and key not in app.config:
                app.config[key] = getattr(Config, key)

        app.config['SECRET_KEY'] = app.config.get('SECRET_KEY') or Config.SECRET_KEY
        if not app.config['SECRET_KEY']:
            logger.warning("SECRET_KEY is not set; tokens and encrypted settings are insecure")
            app.config['SECRET_KEY'] = 'bassac-dev-secret-change-me'

    def _setup_database_dir(self, app):
        os.makedirs(app.config['DB_DIR'], exist_ok=True)
        for key, _ in DB_FILES:
            db_dir = os.path.dirname(app.config[key])
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

    def _init_schemas(self):
        for key, init_fn in _schemas():
            Database.ensure_schema(key, init_fn)

    def _init_services(self, app):
        from .core.cache import cache
        from .modules.auth.oauth import configure_oauth
        from .modules.email import email_service
        from .modules.search.service import search_service

        cache.init_app(app)
        email_service.init_app(app)
        search_service.init_app(app)
        configure_oauth(app)

    def _register_modules(self, app):
        features = self._config.get('features') or {}
        for name, blueprints in _module_blueprints():
            if features.get(name) is False:
                logger.info(f"Module {name} disabled")
                continue
            for blueprint in blueprints:
                if blueprint.name not in app.blueprints:
                    app.register_blueprint(blueprint)
            self._registered.append(name)

    def _register_error_handlers(self, app):
        from .core.logging_service import logger as app_logger

        @app.errorhandler(ApiError)
        def handle_api_error(error):
            return error.to_response()

        @app.errorhandler(Exception)
        def handle_exception(error):
            if isinstance(error, HTTPException):
                if request.path.startswith('/api/'):
                    return error_response(error.description, error.code)
                return error
            logger.exception(f"Unhandled error on {request.path}")
            app_logger.log_error_with_traceback('app', error, {'path': request.path})
            return error_response('Internal server error', 500)

    def _setup_cors(self, app):
        origins = self._config.get('cors_origins') or [app.config.get('FRONTEND_URL')]
        CORS(app, resources={r'/api/*': {'origins': origins}}, supports_credentials=True)

    def _register_uploads(self, app):
        if 'bassac_uploads' in app.view_functions:
            return

        def bassac_uploads(filename):
            from .core.storage import upload_root
            return send_from_directory(upload_root(), filename)

        app.add_url_rule('/uploads/<path:filename>', 'bassac_uploads', bassac_uploads)

    def _start_background_jobs(self, app):
        state = {}

        def loop():
            while True:
                time.sleep(BACKGROUND_INTERVAL)
                results = run_background_jobs(app, state)
                logger.debug(f"Background jobs: {results}")

        self._jobs_thread = threading.Thread(target=loop, name='bassac-jobs', daemon=True)
        self._jobs_thread.start()
        logger.info(f"Background jobs running every {BACKGROUND_INTERVAL}s")

    # ===== Introspection =====

    def brand_name(self, app=None):
        if self._config.get('brand_name'):
            return self._config['brand_name']
        config = app.config if app is not None else {}
        return config.get('EMAIL_BRAND_NAME') or config.get('SITE_NAME') or Config.SITE_NAME

    def get_registered_modules(self):
        return list(self._registered)


__all__ = ['Bassac', 'run_background_jobs', '__version__']
