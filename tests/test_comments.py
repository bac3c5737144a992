"""
Comments Tests
==============

Posting (members vs guests), threading, the edit window, likes and
moderation.
Run with: pytest tests/test_comments.py -v
"""

from datetime import timedelta

import pytest

from bassac.core.database import Database
from bassac.core.helpers import to_iso, utcnow
from bassac.modules.notifications.database import get_notifications_db

GUEST = {"guest_name": "Visitor", "guest_email": "visitor@example.com"}


@pytest.fixture
def article(make_user, make_article):
    author, _ = make_user("writer", email="author@example.com")
    return make_article(author)


def post_comment(client, article_id, headers=None, **body):
    return client.post(f"/api/articles/{article_id}/comments", headers=headers or {}, json=body)


# ---------------------------------------------------------------------------
# 1. Posting
# ---------------------------------------------------------------------------

def test_member_comment_is_approved_and_notifies_author(client, make_user, article):
    _, headers = make_user()
    response = post_comment(client, article["id"], headers, content="Great <b>reporting</b>")
    assert response.status_code == 201
    body = response.get_json()
    assert body["message"] == "Comment posted successfully"
    assert body["data"]["status"] == "approved"
    assert body["data"]["content"] == "Great reporting"
    assert "ip_address" not in body["data"]

    notifications, _ = get_notifications_db(article["author_id"])
    assert [n["type"] for n in notifications] == ["comment_received"]


def test_guest_comment_needs_name_and_email_and_starts_pending(client, article):
    response = post_comment(client, article["id"], content="Hello")
    assert response.status_code == 422
    fields = {error["field"] for error in response.get_json()["errors"]}
    assert fields == {"guest_name", "guest_email"}

    response = post_comment(client, article["id"], content="Hello", **GUEST)
    assert response.status_code == 201
    assert response.get_json()["message"] == "Comment submitted for moderation"
    assert response.get_json()["data"]["status"] == "pending"
    assert response.get_json()["data"]["author"]["full_name"] == "Visitor"


def test_comment_content_limits(client, make_user, article):
    _, headers = make_user()
    assert post_comment(client, article["id"], headers, content="   ").status_code == 422
    assert post_comment(client, article["id"], headers, content="x" * 2001).status_code == 422


def test_entity_encoded_markup_is_stripped(client, make_user, article):
    _, headers = make_user()
    response = post_comment(client, article["id"], headers, content="hi &lt;img src=x onerror=alert(1)&gt;")
    assert response.status_code == 201
    assert response.get_json()["data"]["content"] == "hi"

    content = "ok &amp;lt;script&amp;gt;alert(1)&amp;lt;/script&amp;gt;"
    assert post_comment(client, article["id"], headers, content=content).get_json()["data"]["content"] == "ok"


def test_guest_email_must_be_text(client, article):
    response = post_comment(client, article["id"], content="Hello", guest_name="Visitor", guest_email=42)
    assert response.status_code == 422
    assert {e["field"] for e in response.get_json()["errors"]} == {"guest_email"}


def test_only_published_articles_accept_comments(client, make_user, make_article):
    writer, headers = make_user("writer")
    draft = make_article(writer, status="draft")
    response = post_comment(client, draft["id"], headers, content="Early!")
    assert response.status_code == 404
    assert response.get_json()["message"] == "Article not found"


def test_reply_must_share_article(client, make_user, make_article, article):
    _, headers = make_user()
    other = make_article(make_user("writer")[0], title="Other story")
    parent = post_comment(client, other["id"], headers, content="On the other story").get_json()["data"]

    response = post_comment(client, article["id"], headers, content="Reply", parent_id=parent["id"])
    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid parent comment"


def test_public_thread_shows_approved_with_replies(client, make_user, article):
    first, first_headers = make_user()
    _, second_headers = make_user()

    parent = post_comment(client, article["id"], first_headers, content="Top level").get_json()["data"]
    post_comment(client, article["id"], second_headers, content="A reply", parent_id=parent["id"])
    post_comment(client, article["id"], content="Guest waits", **GUEST)

    body = client.get(f"/api/articles/{article['id']}/comments").get_json()
    assert body["pagination"]["total"] == 1
    assert body["data"][0]["content"] == "Top level"
    assert [r["content"] for r in body["data"][0]["replies"]] == ["A reply"]

    notifications, _ = get_notifications_db(first["id"])
    assert "comment_reply" in [n["type"] for n in notifications]


def test_comments_disabled_by_feature_flag(client, make_user, article):
    from bassac.modules.settings.database import update_site_settings
    update_site_settings({"features": {"enableComments": False}})

    _, headers = make_user()
    response = post_comment(client, article["id"], headers, content="Hello")
    assert response.status_code == 403
    assert response.get_json()["message"] == "Comments are disabled"


# ---------------------------------------------------------------------------
# 2. Editing and deleting
# ---------------------------------------------------------------------------

def _age_comment(comment_id, minutes):
    with Database.connect(Database.path("NEWS_DB")) as conn:
        conn.execute("UPDATE comments SET created_at = ? WHERE id = ?",
                     (to_iso(utcnow() - timedelta(minutes=minutes)), comment_id))


def test_edit_window(client, make_user, article):
    _, headers = make_user()
    _, admin_headers = make_user("admin")
    comment = post_comment(client, article["id"], headers, content="Tpyo").get_json()["data"]

    response = client.put(f"/api/comments/{comment['id']}", headers=headers, json={"content": "Typo"})
    assert response.status_code == 200
    assert response.get_json()["data"]["is_edited"] is True

    _age_comment(comment["id"], 20)
    response = client.put(f"/api/comments/{comment['id']}", headers=headers, json={"content": "Late"})
    assert response.status_code == 403
    assert response.get_json()["message"] == "Comments can only be edited within 15 minutes"

    response = client.put(f"/api/comments/{comment['id']}", headers=admin_headers, json={"content": "Admin fix"})
    assert response.status_code == 200


def test_delete_removes_replies(client, make_user, article):
    _, headers = make_user()
    _, stranger_headers = make_user()
    parent = post_comment(client, article["id"], headers, content="Parent").get_json()["data"]
    post_comment(client, article["id"], headers, content="Child", parent_id=parent["id"])

    assert client.delete(f"/api/comments/{parent['id']}", headers=stranger_headers).status_code == 403
    response = client.delete(f"/api/comments/{parent['id']}", headers=headers)
    assert response.get_json()["data"]["deleted"] == 2


# ---------------------------------------------------------------------------
# 3. Likes and moderation
# ---------------------------------------------------------------------------

def test_like_toggle(client, make_user, article):
    _, headers = make_user()
    comment = post_comment(client, article["id"], headers, content="Like me").get_json()["data"]

    assert client.post(f"/api/comments/{comment['id']}/like").status_code == 401
    data = client.post(f"/api/comments/{comment['id']}/like", headers=headers).get_json()["data"]
    assert data == {"liked": True, "likes": 1}
    data = client.post(f"/api/comments/{comment['id']}/like", headers=headers).get_json()["data"]
    assert data == {"liked": False, "likes": 0}


def test_moderation(client, make_user, article):
    _, editor_headers = make_user("editor")
    first = post_comment(client, article["id"], content="One", **GUEST).get_json()["data"]
    second = post_comment(client, article["id"], content="Two", **GUEST).get_json()["data"]

    response = client.put(f"/api/comments/{first['id']}/moderate", headers=editor_headers,
                          json={"status": "pending"})
    assert response.status_code == 400

    response = client.put(f"/api/comments/{first['id']}/moderate", headers=editor_headers,
                          json={"status": "approved", "note": "ok"})
    assert response.get_json()["data"]["status"] == "approved"

    response = client.post("/api/comments/bulk-moderate", headers=editor_headers,
                           json={"ids": [second["id"]], "status": "spam"})
    assert response.get_json()["data"]["modified"] == 1

    body = client.get("/api/comments?status=spam", headers=editor_headers).get_json()
    assert [c["id"] for c in body["data"]] == [second["id"]]
    assert body["counts"]["approved"] == 1
    assert body["counts"]["spam"] == 1

    response = client.post("/api/comments/bulk-moderate", headers=editor_headers,
                           json={"ids": ["x"], "status": "spam"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Comment ids must be integers"
