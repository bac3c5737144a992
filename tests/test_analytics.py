"""
Analytics & Dashboard Tests
===========================

Page-view tracking with bot filtering, the editor overview, the dashboard
landing stats and the admin log viewer.
Run with: pytest tests/test_analytics.py -v
"""

from datetime import datetime

from bassac.core.logging_service import db_log
from bassac.modules.analytics.analytics import Analytics, default_range

BROWSER = {"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Firefox/131.0"}
PHONE = {"User-Agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148"}


# ---------------------------------------------------------------------------
# 1. Page-view tracking
# ---------------------------------------------------------------------------

def test_pageview_recorded(client):
    response = client.post("/api/analytics/pageview", headers=BROWSER,
                           json={"path": "/article/flood", "page_type": "article", "article_id": 3})
    assert response.status_code == 200
    assert response.get_json()["data"]["recorded"] is True


def test_pageview_ignores_bots(client):
    response = client.post("/api/analytics/pageview", headers={"User-Agent": "Googlebot/2.1"},
                           json={"path": "/"})
    assert response.get_json()["data"]["recorded"] is False


def test_pageview_requires_path(client):
    assert client.post("/api/analytics/pageview", json={}).status_code == 400


def test_default_range():
    start, end = default_range("2026-01-01", "2026-01-31")
    assert start == datetime(2026, 1, 1)
    assert end.date().isoformat() == "2026-01-31"
    assert end.hour == 23
    assert default_range("2026-02-01", "2026-01-01") is None
    assert default_range("not-a-date") is None


# ---------------------------------------------------------------------------
# 2. Overview
# ---------------------------------------------------------------------------

def test_overview(client, make_user):
    _, editor_headers = make_user("editor")
    client.post("/api/analytics/pageview", headers=BROWSER, json={"path": "/", "page_type": "home"})
    client.post("/api/analytics/pageview", headers=BROWSER,
                json={"path": "/article/flood", "page_type": "article", "article_id": 3})
    client.post("/api/analytics/pageview", headers=PHONE,
                json={"path": "/article/flood", "page_type": "article", "article_id": 3})

    data = client.get("/api/analytics/overview", headers=editor_headers).get_json()["data"]
    assert data["totals"] == {"views": 3, "unique_visitors": 2}
    assert data["top_articles"] == [{"article_id": 3, "views": 2, "visitors": 2}]
    assert {row["name"]: row["views"] for row in data["by_device"]} == {"desktop": 2, "mobile": 1}
    assert data["daily"][0]["views"] == 3

    response = client.get("/api/analytics/overview?startDate=2026-05-01&endDate=2026-04-01", headers=editor_headers)
    assert response.status_code == 400


def test_cleanup_old_page_views(app):
    Analytics.record_page_view("/", user_agent=BROWSER["User-Agent"])
    assert Analytics.cleanup_old_page_views(days_to_keep=365) == 0


# ---------------------------------------------------------------------------
# 3. Dashboard
# ---------------------------------------------------------------------------

def test_dashboard_stats(client, make_user, make_article):
    _, editor_headers = make_user("editor")
    writer, _ = make_user("writer")
    make_article(writer)
    make_article(writer, status="pending", title="Waiting for review")

    data = client.get("/api/dashboard/stats", headers=editor_headers).get_json()["data"]
    assert data["articles"]["published"] == 1
    assert data["articles"]["pending"] == 1
    assert data["articles"]["total"] == 2
    assert data["users"]["by_role"]["writer"] == 1
    assert data["comments"] == {"pending": 0}
    assert data["subscribers"] == {"confirmed": 0, "total": 0}
    assert len(data["recent_articles"]) == 2


def test_dashboard_requires_editor(client, make_user):
    _, writer_headers = make_user("writer")
    assert client.get("/api/dashboard/stats", headers=writer_headers).status_code == 403


def test_logs_viewer(client, make_user):
    _, admin_headers = make_user("admin")
    db_log("info", "articles", "Article published")
    db_log("error", "email", "Send failed", {"to": "reader@example.com"})

    entries = client.get("/api/dashboard/logs?level=error", headers=admin_headers).get_json()["data"]
    assert [e["message"] for e in entries] == ["Send failed"]
    assert "reader@example.com" in entries[0]["details"]

    entries = client.get("/api/dashboard/logs?source=articles", headers=admin_headers).get_json()["data"]
    assert [e["message"] for e in entries] == ["Article published"]

    assert client.get("/api/dashboard/logs?level=loud", headers=admin_headers).status_code == 400
