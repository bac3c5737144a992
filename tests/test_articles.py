"""
Articles Tests
==============

Editor.js content handling, the editorial workflow, public reads with the
premium paywall, view buffering and translations.
Run with: pytest tests/test_articles.py -v
"""

from bassac.core.cache import cache
from bassac.modules.articles.content import (
    build_video_content, count_words, get_plain_text, sanitize_editor_content, truncate_blocks,
)
from bassac.modules.articles.database import get_article_by_id_db
from bassac.modules.articles.translations import normalize_language
from bassac.modules.articles.workflow import resolve_create_status
from bassac.modules.notifications.database import get_notifications_db
from tests.conftest import paragraphs


# ---------------------------------------------------------------------------
# 1. Content -- sanitizing and measuring Editor.js documents
# ---------------------------------------------------------------------------

def test_sanitize_editor_content_normalises_blocks():
    content = sanitize_editor_content({"blocks": [
        {"type": "paragraph", "data": {"text": "Hello <script>alert(1)</script><b>world</b>"}},
        {"type": "marquee", "data": {"text": "odd"}},
        {"type": "paragraph", "data": {}},
        "not-a-block",
    ]})

    assert [block["type"] for block in content["blocks"]] == ["paragraph", "paragraph", "paragraph"]
    assert "<script>" not in content["blocks"][0]["data"]["text"]
    assert "<b>world</b>" in content["blocks"][0]["data"]["text"]
    assert content["blocks"][2]["data"]["text"] == ""
    assert all(block["id"].startswith("blk-") for block in content["blocks"])
    assert content["version"] == "2.28.2"
    assert isinstance(content["time"], int)


def test_sanitize_non_dict_content_is_empty_document():
    assert sanitize_editor_content("plain string")["blocks"] == []


def test_count_words_and_plain_text():
    content = {"blocks": [
        {"type": "header", "data": {"text": "Big <i>news</i>"}},
        {"type": "paragraph", "data": {"text": "One two three"}},
        {"type": "quote", "data": {"text": "Said so"}},
        {"type": "list", "data": {"items": ["first", {"content": "second item"}]}},
        {"type": "table", "data": {"content": [["a", "b"], ["c", "d"]]}},
    ]}
    assert count_words(content) == 2 + 3 + 2 + 3 + 4
    assert get_plain_text(content).splitlines() == [
        "Big news", "One two three", "\"Said so\"", "• first", "• second item",
    ]


def test_video_fallback_content():
    content = build_video_content("", "Flood footage", "https://video.example.com/v/1")
    assert content["blocks"][0]["data"]["text"] == "Flood footage"
    assert 'href="https://video.example.com/v/1"' in content["blocks"][1]["data"]["text"]
    assert build_video_content()["blocks"][0]["data"]["text"] == "Video post"


def test_truncate_blocks():
    content = paragraphs("a", "b", "c", "d")
    assert len(truncate_blocks(content, 3)["blocks"]) == 3
    assert len(content["blocks"]) == 4


# ---------------------------------------------------------------------------
# 2. Workflow -- create status by role
# ---------------------------------------------------------------------------

def test_resolve_create_status():
    writer = {"id": 1, "role": "writer"}
    editor = {"id": 2, "role": "editor"}
    assert resolve_create_status("published", writer) == "pending"
    assert resolve_create_status("published", editor) == "published"
    assert resolve_create_status("archived", writer) == "draft"
    assert resolve_create_status("bogus", editor) == "draft"


def test_writer_publish_request_goes_to_review(client, make_user, category):
    editor, _ = make_user("editor")
    writer, headers = make_user("writer")

    response = client.post("/api/articles", headers=headers, json={
        "title": "Rice harvest up",
        "content": paragraphs("Farmers report a record year."),
        "category_id": category["id"],
        "status": "published",
        "is_featured": True,
    })
    assert response.status_code == 201
    body = response.get_json()
    assert body["message"] == "Article submitted for review"
    assert body["data"]["status"] == "pending"
    assert body["data"]["is_featured"] is False
    assert body["data"]["author"]["id"] == writer["id"]
    assert body["data"]["category"]["slug"] == "world"

    notifications, _ = get_notifications_db(editor["id"])
    assert [n["type"] for n in notifications] == ["article_submitted"]


def test_create_validation_errors(client, make_user):
    _, headers = make_user("writer")
    response = client.post("/api/articles", headers=headers, json={"title": "", "content": paragraphs("x")})
    assert response.status_code == 422
    fields = {error["field"] for error in response.get_json()["errors"]}
    assert {"title", "category_id"} <= fields

    response = client.post("/api/articles", headers=headers, json={"title": 123, "content": paragraphs("x")})
    assert response.status_code == 400
    assert response.get_json()["message"] == "title must be a string"
    response = client.post("/api/articles", headers=headers, json={"title": "Ok", "excerpt": {"a": 1}})
    assert response.status_code == 400


def test_regular_user_cannot_create(client, make_user, category):
    _, headers = make_user("user")
    response = client.post("/api/articles", headers=headers, json={"title": "x"})
    assert response.status_code == 403


def test_save_rules(make_user, make_article):
    writer, _ = make_user("writer")
    article = make_article(writer, status="draft", tags=["Mekong", "mekong ", "Weather"])
    assert article["tags"] == ["mekong", "weather"]
    assert article["read_time"] == 1
    assert article["published_at"] is None
    assert article["version"] == 1

    video = make_article(writer, post_type="video", video_url="https://v.example.com/1", content=None)
    assert video["post_type"] == "video"
    assert len(video["content"]["blocks"]) == 2


def test_owner_cannot_edit_published(client, make_user, make_article):
    writer, headers = make_user("writer")
    article = make_article(writer, status="published")
    response = client.put(f"/api/articles/{article['id']}", headers=headers, json={"title": "New title"})
    assert response.status_code == 403


def test_update_bumps_version_and_submits(client, make_user, make_article):
    writer, headers = make_user("writer")
    article = make_article(writer, status="draft")

    response = client.put(f"/api/articles/{article['id']}", headers=headers,
                          json={"title": "Updated title", "status": "pending"})
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["version"] == 2
    assert data["status"] == "pending"


def test_approve_and_reject(client, make_user, make_article):
    writer, _ = make_user("writer")
    _, editor_headers = make_user("editor")
    pending = make_article(writer, status="pending")
    other = make_article(writer, status="pending", title="Another one")

    response = client.put(f"/api/articles/{pending['id']}/approve", headers=editor_headers,
                          json={"notes": "Nice"})
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["status"] == "published"
    assert data["published_at"]
    assert data["review_notes"] == "Nice"

    response = client.put(f"/api/articles/{pending['id']}/approve", headers=editor_headers)
    assert response.status_code == 400
    assert response.get_json()["message"] == "Only pending articles can be approved"

    response = client.put(f"/api/articles/{other['id']}/reject", headers=editor_headers, json={})
    assert response.status_code == 400

    response = client.put(f"/api/articles/{other['id']}/reject", headers=editor_headers,
                          json={"reason": "Needs sources"})
    assert response.get_json()["data"]["rejection_reason"] == "Needs sources"

    types = sorted(n["type"] for n in get_notifications_db(writer["id"])[0])
    assert types == ["article_approved", "article_rejected"]


def test_rejected_back_to_draft_clears_reason(client, make_user, make_article):
    writer, headers = make_user("writer")
    article = make_article(writer, status="draft")
    from bassac.modules.articles.database import set_review_fields_db
    set_review_fields_db(article["id"], status="rejected", rejection_reason="Too short")

    response = client.put(f"/api/articles/{article['id']}", headers=headers, json={"status": "draft"})
    data = response.get_json()["data"]
    assert data["status"] == "draft"
    assert data["rejection_reason"] is None


def test_delete_owner_or_admin_only(client, make_user, make_article):
    writer, _ = make_user("writer")
    _, other_headers = make_user("writer")
    _, admin_headers = make_user("admin")
    article = make_article(writer, status="draft")

    assert client.delete(f"/api/articles/{article['id']}", headers=other_headers).status_code == 403
    assert client.delete(f"/api/articles/{article['id']}", headers=admin_headers).status_code == 200
    assert get_article_by_id_db(article["id"]) is None


# ---------------------------------------------------------------------------
# 3. Public reads -- lists, visibility and the paywall
# ---------------------------------------------------------------------------

def test_public_list_only_published(client, make_user, make_article):
    writer, _ = make_user("writer")
    make_article(writer, status="published", title="Visible")
    make_article(writer, status="draft", title="Hidden")

    body = client.get("/api/articles").get_json()
    assert [a["title"] for a in body["data"]] == ["Visible"]
    assert body["pagination"]["total"] == 1
    assert "content" not in body["data"][0]


def test_list_filters_by_tag_and_category(client, make_user, make_article):
    writer, _ = make_user("writer")
    make_article(writer, title="Tagged", tags=["floods"])
    make_article(writer, title="Other", tags=["sport"])

    body = client.get("/api/articles?tag=floods").get_json()
    assert [a["title"] for a in body["data"]] == ["Tagged"]
    body = client.get("/api/articles?category=no-such-category").get_json()
    assert body["data"] == []


def test_breaking_news_filter(client, make_user, make_article):
    writer, _ = make_user("writer")
    make_article(writer, title="Flash flood warning", is_breaking=True)
    make_article(writer, title="Weekend markets")

    body = client.get("/api/articles?isBreaking=true").get_json()
    assert [a["title"] for a in body["data"]] == ["Flash flood warning"]
    assert body["pagination"]["total"] == 1


def test_draft_hidden_from_public_but_visible_to_owner(client, make_user, make_article):
    writer, headers = make_user("writer")
    article = make_article(writer, status="draft")

    assert client.get(f"/api/articles/slug/{article['slug']}").status_code == 404
    response = client.get(f"/api/articles/slug/{article['slug']}", headers=headers)
    assert response.status_code == 200
    assert response.get_json()["data"]["language"]["resolved"] == "en"


def test_premium_article_is_truncated_for_anonymous(client, make_user, make_article):
    writer, _ = make_user("writer")
    article = make_article(writer, is_premium=True)

    data = client.get(f"/api/articles/slug/{article['slug']}").get_json()["data"]
    assert data["article"]["locked"] is True
    assert len(data["article"]["content"]["blocks"]) == 3

    # The cached copy keeps the full body
    data = client.get(f"/api/articles/slug/{article['slug']}").get_json()["data"]
    assert len(data["article"]["content"]["blocks"]) == 3
    assert len(get_article_by_id_db(article["id"])["content"]["blocks"]) == 5


def test_free_plan_reads_premium_until_limit(client, make_user, make_article):
    writer, _ = make_user("writer")
    _, reader_headers = make_user()
    articles = [make_article(writer, title=f"Premium story {n}", is_premium=True) for n in range(6)]
    urls = [f"/api/articles/slug/{article['slug']}" for article in articles]

    for url in urls[:5]:
        assert client.get(url, headers=reader_headers).get_json()["data"]["article"]["locked"] is False
    assert client.get(urls[5], headers=reader_headers).get_json()["data"]["article"]["locked"] is True
    assert client.get(urls[0], headers=reader_headers).get_json()["data"]["article"]["locked"] is False


def test_search_requires_two_characters(client):
    response = client.get("/api/articles/search?q=a")
    assert response.status_code == 400
    assert response.get_json()["message"] == "Search query must be at least 2 characters"


def test_related_articles(client, make_user, make_article):
    writer, _ = make_user("writer")
    article = make_article(writer, tags=["floods"])
    related = make_article(writer, title="Same category")
    make_article(writer, status="draft", title="Draft sibling")

    data = client.get(f"/api/articles/{article['id']}/related").get_json()["data"]
    assert [a["id"] for a in data] == [related["id"]]


# ---------------------------------------------------------------------------
# 4. Views -- buffered in the cache, flushed to the database
# ---------------------------------------------------------------------------

def test_views_are_buffered_then_flushed(client, make_user, make_article):
    writer, _ = make_user("writer")
    _, editor_headers = make_user("editor")
    article = make_article(writer)

    for expected in (1, 2, 3):
        body = client.post(f"/api/articles/{article['id']}/view").get_json()
        assert body["data"]["buffered_views"] == expected
    assert get_article_by_id_db(article["id"])["view_count"] == 0

    body = client.post("/api/articles/flush-views", headers=editor_headers).get_json()
    assert body["data"]["updated"] == 1
    assert get_article_by_id_db(article["id"])["view_count"] == 3
    assert cache.get_buffered_views() == {}


def test_insights_range_validation(client, make_user):
    _, editor_headers = make_user("editor")
    response = client.get("/api/articles/insights?startDate=2024-05-10&endDate=2024-05-01",
                          headers=editor_headers)
    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid date range"

    response = client.get("/api/articles/insights", headers=editor_headers)
    assert response.status_code == 200
    assert {"daily_views", "totals", "top_articles"} <= set(response.get_json()["data"])


# ---------------------------------------------------------------------------
# 5. Translations -- language resolution and overlay
# ---------------------------------------------------------------------------

def test_normalize_language():
    assert normalize_language("zh-Hant") == "zh"
    assert normalize_language("km_KH") == "km"
    assert normalize_language("en-US") == "en"
    assert normalize_language("FR-ca") == "fr"
    assert normalize_language("xx") is None
    assert normalize_language("") is None


def test_translation_resolves_by_lang_and_slug(client, make_user, make_article):
    writer, headers = make_user("writer")
    article = make_article(writer)

    response = client.post(f"/api/translations/articles/{article['id']}", headers=headers, json={
        "language": "km", "title": "ទឹកទន្លេមេគង្គ", "slug": "mekong-km", "translation_status": "published",
    })
    assert response.status_code == 201

    response = client.post(f"/api/translations/articles/{article['id']}", headers=headers,
                           json={"language": "km", "title": "again"})
    assert response.status_code == 409

    data = client.get(f"/api/articles/slug/{article['slug']}?lang=km").get_json()["data"]
    assert data["article"]["title"] == "ទឹកទន្លេមេគង្គ"
    assert data["article"]["is_translation"] is True
    assert data["language"]["resolved"] == "km"
    assert data["language"]["usedFallback"] is False
    assert data["language"]["resolvedSlug"] == "mekong-km"
    assert set(data["language"]["available"]) == {"en", "km"}

    data = client.get("/api/articles/slug/mekong-km").get_json()["data"]
    assert data["article"]["id"] == article["id"]
    assert data["language"]["resolved"] == "km"

    data = client.get(f"/api/articles/slug/{article['slug']}?lang=fr").get_json()["data"]
    assert data["language"]["resolved"] == "en"
    assert data["language"]["usedFallback"] is True
