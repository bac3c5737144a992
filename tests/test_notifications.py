"""
Notifications Tests
===================

Per-user inbox: listing, unread counts, read/delete and admin
announcements.
Run with: pytest tests/test_notifications.py -v
"""

from bassac.modules.notifications.service import notify


def test_inbox_lifecycle(client, make_user):
    user, headers = make_user()
    first = notify(user["id"], "system_announcement", "Hello", "First message")
    notify(user["id"], "system_announcement", "Again", "Second message", priority="urgent")

    body = client.get("/api/notifications", headers=headers).get_json()
    assert body["pagination"]["total"] == 2
    assert body["data"][0]["title"] == "Again"
    assert body["data"][0]["is_read"] is False

    assert client.get("/api/notifications/unread-count", headers=headers).get_json()["data"]["count"] == 2

    data = client.put(f"/api/notifications/{first['id']}/read", headers=headers).get_json()["data"]
    assert data["is_read"] is True
    assert data["read_at"]

    body = client.get("/api/notifications?unreadOnly=true", headers=headers).get_json()
    assert [n["title"] for n in body["data"]] == ["Again"]

    assert client.put("/api/notifications/read-all", headers=headers).get_json()["data"]["updated"] == 1
    assert client.get("/api/notifications/unread-count", headers=headers).get_json()["data"]["count"] == 0


def test_cannot_touch_other_users_notifications(client, make_user):
    owner, _ = make_user()
    _, other_headers = make_user()
    notification = notify(owner["id"], "system_announcement", "Private", "Only for the owner")

    assert client.put(f"/api/notifications/{notification['id']}/read", headers=other_headers).status_code == 404
    assert client.delete(f"/api/notifications/{notification['id']}", headers=other_headers).status_code == 404


def test_delete_one_and_all(client, make_user):
    user, headers = make_user()
    first = notify(user["id"], "system_announcement", "One", "1")
    notify(user["id"], "system_announcement", "Two", "2")
    notify(user["id"], "system_announcement", "Three", "3")

    assert client.delete(f"/api/notifications/{first['id']}", headers=headers).status_code == 200
    assert client.delete("/api/notifications/all", headers=headers).get_json()["data"]["deleted"] == 2


def test_unknown_priority_falls_back_to_normal(app, make_user):
    user, _ = make_user()
    assert notify(user["id"], "system_announcement", "Hi", "There", priority="shouting")["priority"] == "normal"


def test_announce_reaches_active_users(client, make_user):
    _, admin_headers = make_user("admin")
    make_user()
    make_user(status="inactive")

    response = client.post("/api/notifications/announce", headers=admin_headers, json={"title": "", "message": "x"})
    assert response.status_code == 400

    response = client.post("/api/notifications/announce", headers=admin_headers,
                           json={"title": "Maintenance", "message": "Tonight at 10pm"})
    assert response.get_json()["data"]["recipients"] == 2


def test_inbox_requires_login(client):
    assert client.get("/api/notifications").status_code == 401
