"""
Categories Tests
================

CRUD, hierarchy, ordering and the delete guards.
Run with: pytest tests/test_categories.py -v
"""

from bassac.modules.categories.database import create_category_db, get_category_tree


# ---------------------------------------------------------------------------
# 1. Create and validate
# ---------------------------------------------------------------------------

def test_create_category(client, make_user):
    _, admin_headers = make_user("admin")
    response = client.post("/api/categories", headers=admin_headers,
                           json={"name": "Southeast Asia", "color": "#10b981"})
    assert response.status_code == 201
    data = response.get_json()["data"]
    assert data["slug"] == "southeast-asia"
    assert data["is_active"] is True
    assert data["order"] == 0


def test_create_requires_admin(client, make_user):
    _, editor_headers = make_user("editor")
    assert client.post("/api/categories", headers=editor_headers, json={"name": "Sport"}).status_code == 403


def test_duplicate_name_is_case_insensitive(client, make_user, category):
    _, admin_headers = make_user("admin")
    response = client.post("/api/categories", headers=admin_headers, json={"name": "WORLD"})
    assert response.status_code == 409
    assert response.get_json()["message"] == "Category with this name already exists"


def test_validation(client, make_user):
    _, admin_headers = make_user("admin")
    response = client.post("/api/categories", headers=admin_headers, json={"name": " ", "color": "blue"})
    assert response.status_code == 422
    assert {e["field"] for e in response.get_json()["errors"]} == {"name", "color"}


def test_non_string_and_non_numeric_input_is_a_bad_request(client, make_user, category):
    _, admin_headers = make_user("admin")
    response = client.post("/api/categories", headers=admin_headers, json={"name": 123})
    assert response.status_code == 400
    assert response.get_json()["message"] == "name must be a string"

    response = client.post("/api/categories", headers=admin_headers, json={"name": "Sport", "parent_id": "abc"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "parent_id must be an integer"

    response = client.put(f"/api/categories/{category['id']}", headers=admin_headers, json={"parent_id": [1]})
    assert response.status_code == 400

    response = client.put("/api/categories/reorder", headers=admin_headers,
                          json={"categories": [{"id": category["id"], "order": "first"}]})
    assert response.status_code == 400


# ---------------------------------------------------------------------------
# 2. Reads -- active list, tree, slug lookup
# ---------------------------------------------------------------------------

def test_tree_and_inactive(client, category):
    create_category_db({"name": "Asia", "parent_id": category["id"]})
    create_category_db({"name": "Archive", "is_active": False})

    tree = get_category_tree()
    assert [c["name"] for c in tree] == ["World"]
    assert [c["name"] for c in tree[0]["subcategories"]] == ["Asia"]

    names = [c["name"] for c in client.get("/api/categories").get_json()["data"]]
    assert "Archive" not in names
    names = [c["name"] for c in client.get("/api/categories?includeInactive=true").get_json()["data"]]
    assert "Archive" in names

    assert client.get("/api/categories/slug/world").get_json()["data"]["id"] == category["id"]
    assert client.get("/api/categories/slug/archive").status_code == 404


def test_list_cache_invalidated_on_write(client, make_user, category):
    _, admin_headers = make_user("admin")
    assert len(client.get("/api/categories").get_json()["data"]) == 1
    client.post("/api/categories", headers=admin_headers, json={"name": "Business"})
    assert len(client.get("/api/categories").get_json()["data"]) == 2


def test_reorder(client, make_user, category):
    _, admin_headers = make_user("admin")
    business = create_category_db({"name": "Business"})
    response = client.put("/api/categories/reorder", headers=admin_headers,
                          json={"categories": [{"id": business["id"], "order": 0}, {"id": category["id"], "order": 1}]})
    assert response.get_json()["data"]["updated"] == 2
    names = [c["name"] for c in client.get("/api/categories").get_json()["data"]]
    assert names == ["Business", "World"]

    assert client.put("/api/categories/reorder", headers=admin_headers, json={"categories": "x"}).status_code == 400


# ---------------------------------------------------------------------------
# 3. Update and delete guards
# ---------------------------------------------------------------------------

def test_update_renames_slug_and_rejects_self_parent(client, make_user, category):
    _, admin_headers = make_user("admin")
    data = client.put(f"/api/categories/{category['id']}", headers=admin_headers,
                      json={"name": "World News"}).get_json()["data"]
    assert data["slug"] == "world-news"

    response = client.put(f"/api/categories/{category['id']}", headers=admin_headers,
                          json={"parent_id": category["id"]})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Category cannot be its own parent"


def test_parent_cycle_is_rejected(client, make_user):
    _, admin_headers = make_user("admin")
    world = create_category_db({"name": "World"})
    asia = create_category_db({"name": "Asia", "parent_id": world["id"]})
    cambodia = create_category_db({"name": "Cambodia", "parent_id": asia["id"]})

    for descendant in (asia, cambodia):
        response = client.put(f"/api/categories/{world['id']}", headers=admin_headers,
                              json={"parent_id": descendant["id"]})
        assert response.status_code == 400
        assert response.get_json()["message"] == "Category cannot be moved under its own subcategory"

    response = client.put(f"/api/categories/{cambodia['id']}", headers=admin_headers,
                          json={"parent_id": world["id"]})
    assert response.status_code == 200
    assert response.get_json()["data"]["parent_id"] == world["id"]


def test_delete_guards(client, make_user, make_article, category):
    _, admin_headers = make_user("admin")
    make_article(make_user("writer")[0])
    child = create_category_db({"name": "Asia", "parent_id": category["id"]})

    response = client.delete(f"/api/categories/{category['id']}", headers=admin_headers)
    assert response.status_code == 400
    assert response.get_json()["message"].startswith("Cannot delete category with 1 articles")

    assert client.delete(f"/api/categories/{child['id']}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/categories/{child['id']}", headers=admin_headers).status_code == 404


def test_stats(client, make_user, make_article, category):
    _, editor_headers = make_user("editor")
    writer, _ = make_user("writer")
    make_article(writer)
    make_article(writer, status="draft", title="Draft story")

    stats = client.get("/api/categories/stats", headers=editor_headers).get_json()["data"]
    world = next(row for row in stats if row["slug"] == "world")
    assert world["total_articles"] == 2
    assert world["published_articles"] == 1
