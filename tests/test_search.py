"""
Search Tests
============

Search runs against the database when Elasticsearch is not configured, so
these tests cover the fallback path plus the shared validation.
Run with: pytest tests/test_search.py -v
"""

from bassac.core.database import Database
from bassac.modules.search.service import SearchService, build_document
from bassac.modules.settings.database import update_site_settings


def _set_views(article_id, views):
    with Database.connect(Database.path("NEWS_DB")) as conn:
        conn.execute("UPDATE articles SET view_count = ? WHERE id = ?", (views, article_id))


# ---------------------------------------------------------------------------
# 1. Full-text search (database fallback)
# ---------------------------------------------------------------------------

def test_search_database_fallback(client, make_user, make_article):
    writer, _ = make_user("writer")
    make_article(writer)
    make_article(writer, title="Phnom Penh traffic", excerpt="Rush hour gridlock.")
    make_article(writer, title="Mekong draft", status="draft")

    body = client.get("/api/search?q=mekong").get_json()
    data = body["data"]
    assert data["engine"] == "database"
    assert [a["title"] for a in data["articles"]] == ["Mekong river levels rise"]
    assert data["articles"][0]["author"]["id"] == writer["id"]
    assert data["pagination"]["total"] == 1
    assert data["aggregations"] == {}


def test_search_filters(client, make_user, make_article):
    writer, _ = make_user("writer")
    make_article(writer)
    make_article(writer, title="Mekong fishing", tags=["fishing"])

    data = client.get("/api/search?q=mekong&tags=fishing").get_json()["data"]
    assert [a["title"] for a in data["articles"]] == ["Mekong fishing"]

    data = client.get("/api/search?q=mekong&category=nowhere").get_json()["data"]
    assert data["articles"] == []


def test_search_query_too_short(client):
    response = client.get("/api/search?q=a")
    assert response.status_code == 400
    assert response.get_json()["message"] == "Search query must be at least 2 characters"


def test_search_disabled(client):
    update_site_settings({"features": {"enableSearch": False}})
    response = client.get("/api/search?q=mekong")
    assert response.status_code == 404
    assert response.get_json()["message"] == "Search is disabled"


# ---------------------------------------------------------------------------
# 2. Autocomplete, similar, trending
# ---------------------------------------------------------------------------

def test_autocomplete(client, make_user, make_article):
    article = make_article(make_user("writer")[0])
    data = client.get("/api/search/autocomplete?q=Mek").get_json()["data"]
    assert data == [{"id": article["id"], "title": article["title"], "slug": article["slug"]}]
    assert client.get("/api/search/autocomplete?q=M").status_code == 400


def test_similar(client, make_user, make_article):
    writer, _ = make_user("writer")
    article = make_article(writer)
    related = make_article(writer, title="Mekong dams", tags=["mekong"])

    data = client.get(f"/api/search/similar/{article['id']}").get_json()["data"]
    assert related["id"] in [a["id"] for a in data]
    assert article["id"] not in [a["id"] for a in data]
    assert client.get("/api/search/similar/9999").status_code == 404


def test_trending_orders_by_views(client, make_user, make_article):
    writer, _ = make_user("writer")
    quiet = make_article(writer, title="Quiet story")
    popular = make_article(writer, title="Popular story")
    _set_views(quiet["id"], 3)
    _set_views(popular["id"], 40)

    data = client.get("/api/search/trending?days=7").get_json()["data"]
    assert [a["id"] for a in data] == [popular["id"], quiet["id"]]


# ---------------------------------------------------------------------------
# 3. Admin and indexing
# ---------------------------------------------------------------------------

def test_status_and_reindex_without_elasticsearch(client, make_user):
    _, admin_headers = make_user("admin")
    data = client.get("/api/search/status", headers=admin_headers).get_json()["data"]
    assert data == {"engine": "database", "connected": False, "index": "articles"}

    response = client.post("/api/search/reindex", headers=admin_headers)
    assert response.status_code == 400
    assert response.get_json()["message"] == "Elasticsearch is not available"


def test_service_without_url_is_unavailable(app):
    service = SearchService(app)
    assert service.available is False


def test_build_document(make_user, make_article):
    from bassac.modules.articles.database import populate_article

    article = populate_article(make_article(make_user("writer")[0]))
    document = build_document(article)
    assert document["title"] == "Mekong river levels rise"
    assert document["status"] == "published"
    assert document["tags"] == ["mekong", "weather"]
    assert "First paragraph." in document["content"]
