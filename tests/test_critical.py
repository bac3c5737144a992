"""
Critical Integration Tests for Bassac
=====================================

Focused tests covering the integration points most likely to break:
extension boot, config resolution, blueprint registration, error envelope,
health and the background jobs.
Run with: pytest tests/test_critical.py -v

NOTE: pytest is listed under extras_require["dev"] in setup.py.
Install with: pip install -e ".[dev]"
"""

import os
import shutil
import tempfile

from flask import Flask

from bassac import Bassac, run_background_jobs


# ---------------------------------------------------------------------------
# 1. Framework initialisation -- Bassac(app) does not raise
# ---------------------------------------------------------------------------

def test_framework_initialisation(tmp_db_dir):
    """Bassac(app) boots without errors and stores itself on the app."""
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["SECRET_KEY"] = "test-secret"
    app.config["DB_DIR"] = tmp_db_dir

    bassac = Bassac(app)

    assert "bassac" in app.extensions
    assert app.extensions["bassac"] is bassac


def test_init_app_factory_pattern(tmp_db_dir):
    """Bassac() followed by init_app(app) behaves like Bassac(app)."""
    bassac = Bassac(config={"brand_name": "Mekong Daily"})
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["DB_DIR"] = tmp_db_dir
    bassac.init_app(app)

    assert app.extensions["bassac"] is bassac
    assert bassac.brand_name(app) == "Mekong Daily"


# ---------------------------------------------------------------------------
# 2. Config resolution -- DB paths are non-empty and contain expected names
# ---------------------------------------------------------------------------

def test_config_db_paths(app):
    """DB_DIR, USER_DB, NEWS_DB, ANALYTICS_DB, SETTINGS_DB resolve to
    non-empty paths containing expected filenames."""
    assert app.config["DB_DIR"], "DB_DIR must not be empty"
    assert "users.db" in app.config["USER_DB"]
    assert "news.db" in app.config["NEWS_DB"]
    assert "analytics.db" in app.config["ANALYTICS_DB"]
    assert "settings.db" in app.config["SETTINGS_DB"]


def test_db_paths_default_to_db_dir(tmp_db_dir):
    """Only DB_DIR set -- every database lands inside it."""
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["DB_DIR"] = tmp_db_dir
    Bassac(app)

    for key in ("USER_DB", "NEWS_DB", "ANALYTICS_DB", "SETTINGS_DB"):
        if not os.getenv(key):
            assert app.config[key].startswith(tmp_db_dir)
    assert app.config["SECRET_KEY"]


# ---------------------------------------------------------------------------
# 3. Email service init -- init_app with Resend / SES config does not crash
# ---------------------------------------------------------------------------

def test_email_service_init_resend(app):
    """EmailService.init_app() with Resend provider stores config correctly."""
    from bassac.modules.email.email_service import EmailService

    svc = EmailService()
    app.config["RESEND_API_KEY"] = "re_test_fake_key_123"
    app.config["EMAIL_PROVIDER"] = "resend"
    app.config["EMAIL_BRAND_NAME"] = "TestBrand"

    svc.init_app(app)

    assert svc.provider == "resend"
    assert svc.brand_name == "TestBrand"
    assert svc.api_key == "re_test_fake_key_123"
    assert svc.is_configured


def test_email_service_init_ses(app):
    """EmailService.init_app() with SES provider does not crash without
    AWS credentials."""
    from bassac.modules.email.email_service import EmailService

    svc = EmailService()
    app.config["EMAIL_PROVIDER"] = "ses"
    app.config["AWS_REGION"] = "us-east-1"

    svc.init_app(app)

    assert svc.provider == "ses"


def test_unconfigured_email_is_skipped_and_logged(app):
    """Without a provider key send_email returns False and writes a
    'skipped' row to email_logs."""
    from bassac.core.database import Database
    from bassac.modules.email import email_service

    assert email_service.send_email(["reader@example.com"], "Hello", "<p>Hi</p>") is False

    with Database.connect(Database.path("USER_DB")) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT status FROM email_logs WHERE recipient = ?", ("reader@example.com",))
        row = cursor.fetchone()
    assert row["status"] == "skipped"


# ---------------------------------------------------------------------------
# 4. Blueprint registration -- every feature module is registered
# ---------------------------------------------------------------------------

EXPECTED_MODULES = [
    "auth",
    "settings",
    "categories",
    "articles",
    "comments",
    "notifications",
    "newsletter",
    "subscriptions",
    "analytics",
    "search",
    "ads",
    "dashboard",
    "ops",
]


def test_all_blueprints_registered(app):
    """All feature modules should be registered as blueprints."""
    registered = app.extensions["bassac"].get_registered_modules()

    for mod in EXPECTED_MODULES:
        assert mod in registered, (
            f"Module '{mod}' was not registered. Registered: {registered}"
        )

    assert len(registered) == len(EXPECTED_MODULES)


def test_disabled_feature_is_not_registered(app_factory):
    """features={'ads': False} leaves the ads routes out of the URL map."""
    app = app_factory({"features": {"ads": False}})

    assert "ads" not in app.extensions["bassac"].get_registered_modules()
    rules = [rule.rule for rule in app.url_map.iter_rules()]
    assert not any(rule.startswith("/api/ads") for rule in rules)
    assert "/api/articles" in rules


# ---------------------------------------------------------------------------
# 5. Template context -- bassac_config and brand_name are injected
# ---------------------------------------------------------------------------

def test_template_context_injection(app):
    """Context processor injects bassac_config and brand_name."""
    with app.test_request_context("/"):
        ctx = {}
        for func in app.template_context_processors[None]:
            ctx.update(func())

        assert "bassac_config" in ctx, "bassac_config missing from template context"
        assert "brand_name" in ctx, "brand_name missing from template context"
        assert isinstance(ctx["bassac_config"], dict)
        assert isinstance(ctx["brand_name"], str)
        assert len(ctx["brand_name"]) > 0


# ---------------------------------------------------------------------------
# 6. Database directory creation -- _setup_database_dir creates the dir
# ---------------------------------------------------------------------------

def test_database_dir_creation(app_factory):
    """_setup_database_dir creates the configured DB_DIR on disk."""
    d = tempfile.mkdtemp(prefix="bassac-dbtest-")
    target = os.path.join(d, "sub", "databases")

    try:
        app_factory(db_dir=target)
        assert os.path.isdir(target), f"DB_DIR was not created at {target}"
        assert os.path.exists(os.path.join(target, "news.db"))
    finally:
        shutil.rmtree(d, ignore_errors=True)


# ---------------------------------------------------------------------------
# 7. Error envelope -- API errors render as {success: false, message}
# ---------------------------------------------------------------------------

def test_unknown_api_route_returns_json_404(client):
    response = client.get("/api/does-not-exist")
    assert response.status_code == 404
    body = response.get_json()
    assert body["success"] is False
    assert body["message"]


def test_validation_error_carries_field_errors(client):
    response = client.post("/api/auth/register", json={"email": "nope"})
    assert response.status_code == 422
    body = response.get_json()
    assert body["success"] is False
    fields = {error["field"] for error in body["errors"]}
    assert {"email", "password", "first_name", "last_name"} <= fields


def test_unexpected_error_returns_500_envelope(app):
    """An unhandled exception inside a view becomes a logged 500."""
    @app.route("/api/boom")
    def boom():
        raise RuntimeError("kaboom")

    response = app.test_client().get("/api/boom")
    assert response.status_code == 500
    assert response.get_json() == {"success": False, "message": "Internal server error"}

    from bassac.core.logging_service import logger
    logs = logger.get_recent_logs(level="error", source="app")
    assert any(entry["message"] == "Exception occurred: RuntimeError" and "kaboom" in entry["details"]
               for entry in logs)


def test_cors_headers_on_api(app, client):
    origin = app.config["FRONTEND_URL"]
    response = client.get("/api/categories", headers={"Origin": origin})
    assert response.status_code == 200
    assert response.headers.get("Access-Control-Allow-Origin") == origin


# ---------------------------------------------------------------------------
# 8. Health endpoint -- GET /health returns status and checks
# ---------------------------------------------------------------------------

def test_health_endpoint(client):
    """GET /health returns JSON with status field and checks dict.
    HTTP 200 for ok/warning, 503 for critical -- both are valid."""
    response = client.get("/health")
    assert response.status_code in (200, 503), (
        f"Expected 200 or 503, got {response.status_code}"
    )
    data = response.get_json()
    assert data["status"] in ("ok", "warning", "critical")
    for check in ("disk", "memory", "uptime", "databases", "cache"):
        assert check in data["checks"], f"Health response missing '{check}' check"
    assert data["checks"]["cache"]["type"] == "memory"
    assert all(db["ok"] for db in data["checks"]["databases"].values())


def test_health_is_critical_when_database_unreachable(app):
    """A failing database check turns the overall status critical."""
    import sqlite3
    from unittest.mock import patch

    from bassac.modules.ops.routes import build_health_response

    with patch("bassac.modules.ops.routes.Database.connect", side_effect=sqlite3.OperationalError("locked")):
        data, status = build_health_response()

    assert status == "critical"
    assert data["checks"]["databases"]["NEWS_DB"] == {"ok": False, "error": "locked"}
    assert any(issue["type"] == "database_unavailable" for issue in data["issues"])


# ---------------------------------------------------------------------------
# 9. Background jobs -- one pass runs every job and the daily ones once
# ---------------------------------------------------------------------------

def test_background_jobs_single_pass(app, make_user, make_article):
    from bassac.core.cache import cache

    author, _ = make_user("writer")
    article = make_article(author)
    cache.increment_view(article["id"])
    cache.increment_view(article["id"])

    state = {}
    results = run_background_jobs(app, state)
    assert results["views_flushed"] == 1
    assert results["subscriptions_expired"] == 0
    assert "ads_aggregated" in results
    assert "logs_removed" in results

    from bassac.modules.articles.database import get_article_by_id_db
    assert get_article_by_id_db(article["id"])["view_count"] == 2

    # Daily jobs do not run twice on the same day
    again = run_background_jobs(app, state)
    assert "ads_aggregated" not in again
    assert again["views_flushed"] == 0
