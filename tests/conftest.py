"""
Shared fixtures for the Bassac test-suite.

Run with: pytest tests/ -v
Install with: pip install -e ".[dev]"
"""

import os
import shutil
import tempfile

import pytest
from flask import Flask

from bassac import Bassac
from bassac.core.cache import cache


def make_app(db_dir, config=None, **settings):
    """Flask app with every database inside db_dir and no optional services"""
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["SECRET_KEY"] = "test-secret"
    app.config["DB_DIR"] = db_dir
    app.config["USER_DB"] = os.path.join(db_dir, "users.db")
    app.config["NEWS_DB"] = os.path.join(db_dir, "news.db")
    app.config["ANALYTICS_DB"] = os.path.join(db_dir, "analytics.db")
    app.config["SETTINGS_DB"] = os.path.join(db_dir, "settings.db")
    # Prevent real backing services -- memory cache, SQL search, no email
    app.config["REDIS_URL"] = None
    app.config["ELASTICSEARCH_URL"] = None
    app.config["RESEND_API_KEY"] = None
    app.config["STRIPE_SECRET_KEY"] = None
    app.config.update(settings)
    Bassac(app, config or {})
    return app


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_db_dir():
    """Create a temporary directory for test databases, cleaned up after."""
    d = tempfile.mkdtemp(prefix="bassac-test-")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def app(tmp_db_dir):
    """Fully initialised Flask app with all Bassac modules registered."""
    app = make_app(tmp_db_dir)
    cache.clear()
    with app.app_context():
        yield app
    cache.clear()


@pytest.fixture
def client(app):
    return app.test_client()


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(app):
    """Factory: make_user(role='user') -> (user, auth headers)"""
    from bassac.modules.auth.database import UserDatabase
    from bassac.modules.auth.tokens import generate_access_token

    counter = {"n": 0}

    def _make(role="user", email=None, password="password123", status="active"):
        counter["n"] += 1
        email = email or f"{role}{counter['n']}@example.com"
        user = UserDatabase.create_user(email, role.title(), f"Tester{counter['n']}",
                                        password=password, role=role)
        if status != "active":
            user = UserDatabase.update_user(user["id"], status=status)
        headers = {"Authorization": f"Bearer {generate_access_token(user)}"}
        return user, headers

    return _make


@pytest.fixture
def category(app):
    from bassac.modules.categories.database import create_category_db

    return create_category_db({"name": "World", "description": "World news"})


def paragraphs(*texts):
    return {"blocks": [{"type": "paragraph", "data": {"text": text}} for text in texts]}


@pytest.fixture
def make_article(app, category):
    """Factory: make_article(author, status='published', **fields) -> article dict"""
    from bassac.modules.articles.database import create_article_db

    def _make(author, status="published", **fields):
        data = {
            "title": "Mekong river levels rise",
            "excerpt": "Water levels are rising across the delta.",
            "content": paragraphs("First paragraph.", "Second paragraph.", "Third paragraph.",
                                  "Fourth paragraph.", "Fifth paragraph."),
            "category_id": category["id"],
            "tags": ["Mekong", "weather"],
            "status": status,
        }
        data.update(fields)
        return create_article_db(data, author["id"])

    return _make


@pytest.fixture
def app_factory(tmp_db_dir):
    """Factory for extra apps: app_factory(config=None, db_dir=None)"""
    def _make(config=None, db_dir=None):
        return make_app(db_dir or os.path.join(tmp_db_dir, "extra"), config)

    return _make
