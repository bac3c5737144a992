"""
Ads Tests
=========

Page/identity keys, targeting and scheduling, frequency control,
tracking dedupe, click-fraud checks and the admin endpoints.
Run with: pytest tests/test_ads.py -v
"""

from datetime import datetime, timedelta

import pytest

from bassac.core.helpers import utcnow
from bassac.modules.ads.database import (
    aggregate_daily_stats, create_ad_db, ctr, get_ad_by_id_db, get_daily_stats_db, normalize_targeting,
)
from bassac.modules.ads.selection import (
    apply_frequency_control, apply_weighted_rotation, build_context, in_schedule, matches_targeting, record_event,
    select_ads, track_event,
)
from bassac.modules.ads.tracking import (
    build_dedupe_key, build_identity_key, build_page_key, normalize_page_path, normalize_page_type,
)


@pytest.fixture
def make_ad(app):
    def _make(**fields):
        data = {"name": "Banner", "type": "image", "image_url": "/uploads/ads/banner.png",
                "link_url": "https://example.com", "placement": "sidebar", "status": "active"}
        data.update(fields)
        return create_ad_db(data)
    return _make


# ---------------------------------------------------------------------------
# 1. Page, identity and dedupe keys
# ---------------------------------------------------------------------------

def test_normalize_page_type():
    assert normalize_page_type("Articles") == "article"
    assert normalize_page_type("") == "other"
    assert normalize_page_type("landing") == "other"


def test_normalize_page_path():
    assert normalize_page_path("https://news.example.com/articles/flood/?ref=x#top") == "/articles/flood"
    assert normalize_page_path("category/world") == "/category/world"
    assert normalize_page_path("/") == "/"
    assert normalize_page_path(None) == ""


def test_build_page_key():
    assert build_page_key("article", "/articles/flood-warning") == "article:flood-warning"
    assert build_page_key("page", "/about") == "page:/about"
    assert build_page_key("homepage", "", fallback="") == "homepage:homepage"
    assert build_page_key("category", None, fallback=7) == "category:7"


def test_identity_and_dedupe_keys():
    assert build_identity_key(5, "abc") == "user:5"
    assert build_identity_key(None, "abc") == "session:abc"
    assert build_identity_key() is None

    assert build_dedupe_key("impression", 1, "article:x", "session:s") == "impression:session:s:1:article:x"
    assert build_dedupe_key("impression", 1, "article:x", None) is None
    assert build_dedupe_key("click", 1, None, None, event_id="e1") == "click:anon:1:no-page:e1"


# ---------------------------------------------------------------------------
# 2. Targeting, schedule, rotation
# ---------------------------------------------------------------------------

def test_targeting_filters(app, make_ad):
    ad = make_ad(targeting={"devices": ["mobile"], "user_status": {"guest": False},
                            "exclude_categories": [3], "geo": {"enabled": True, "countries": ["kh"]}})
    assert ad["targeting"]["devices"] == {"desktop": False, "mobile": True, "tablet": False}
    assert ad["targeting"]["geo"]["countries"] == ["KH"]

    base = dict(device="mobile", is_logged_in=True, country="KH")
    assert matches_targeting(ad, build_context(**base))
    assert not matches_targeting(ad, build_context(**dict(base, device="desktop")))
    assert not matches_targeting(ad, build_context(**dict(base, is_logged_in=False)))
    assert not matches_targeting(ad, build_context(**dict(base, category_id=3)))
    assert not matches_targeting(ad, build_context(**dict(base, country="TH")))


def test_schedule_windows():
    ad = {"schedule": {"start_date": None, "end_date": None, "day_of_week": [1],
                       "time_start": "09:00", "time_end": "17:00"}}
    monday_noon = datetime(2026, 10, 12, 12, 0)
    assert in_schedule(ad, monday_noon)
    assert not in_schedule(ad, monday_noon.replace(hour=18))
    assert not in_schedule(ad, monday_noon + timedelta(days=1))

    expired = {"schedule": {"start_date": "2020-01-01", "end_date": "2020-02-01", "day_of_week": []}}
    assert not in_schedule(expired, monday_noon)


def test_weighted_rotation_orders_by_priority():
    ads = [{"id": 1, "priority": 0, "weight": 100}, {"id": 2, "priority": 5, "weight": 1},
           {"id": 3, "priority": 0, "weight": 100}]
    rotated = apply_weighted_rotation(ads)
    assert rotated[0]["id"] == 2
    assert {ad["id"] for ad in rotated[1:]} == {1, 3}


def test_select_respects_placement_and_status(app, make_ad):
    sidebar = make_ad()
    make_ad(name="Header", placement="header")
    make_ad(name="Paused", status="paused")

    selected = select_ads(build_context(placement="sidebar", session_id="s1"))
    assert [ad["id"] for ad in selected] == [sidebar["id"]]


def test_select_rejects_unknown_placement(app):
    from bassac.core.responses import BadRequestError
    with pytest.raises(BadRequestError):
        select_ads(build_context(placement="billboard"))


# ---------------------------------------------------------------------------
# 3. Frequency control and tracking
# ---------------------------------------------------------------------------

def test_once_per_session_frequency(app, make_ad):
    ad = make_ad(frequency={"type": "once_per_session"})
    context = build_context(placement="sidebar", session_id="s1", page_type="homepage")
    record_event(ad["id"], "impression", context)

    assert apply_frequency_control([ad], session_id="s1") == []
    assert apply_frequency_control([ad], session_id="s2") == [ad]


def test_max_impressions_cap(app, make_ad):
    ad = make_ad(frequency={"max_impressions": 1})
    record_event(ad["id"], "impression", build_context(session_id="a", page_type="homepage"))
    assert apply_frequency_control([ad], session_id="b") == []


def test_impression_dedupe(app, make_ad):
    ad = make_ad()
    context = build_context(session_id="s1", page_type="article", page_url="/articles/flood")
    assert track_event(ad["id"], "impression", context) == {"recorded": True, "reason": None}
    assert track_event(ad["id"], "impression", context) == {"recorded": False, "reason": "duplicate"}
    assert get_ad_by_id_db(ad["id"])["impressions"] == 1


def test_clicks_without_event_id_are_not_deduped(app, make_ad):
    ad = make_ad()
    context = build_context(session_id="s1", page_type="homepage")
    track_event(ad["id"], "click", context)
    track_event(ad["id"], "click", context)
    assert track_event(ad["id"], "click", context, event_id="c1")["recorded"] is True
    assert track_event(ad["id"], "click", context, event_id="c1")["reason"] == "duplicate"
    assert get_ad_by_id_db(ad["id"])["clicks"] == 3


def test_click_fraud_threshold(app, make_ad):
    ad = make_ad()
    context = build_context(session_id="clicker", page_type="homepage")
    for _ in range(5):
        assert track_event(ad["id"], "click", context, ip_hash="iphash")["recorded"] is True
    assert track_event(ad["id"], "click", context, ip_hash="iphash") == {"recorded": False, "reason": "fraud"}


def test_track_validation(client, make_ad):
    ad = make_ad()
    assert client.post("/api/ads/track", json={"adId": ad["id"]}).status_code == 400
    assert client.post("/api/ads/track", json={"adId": ad["id"], "type": "hover"}).status_code == 400
    assert client.post("/api/ads/track", json={"adId": 9999, "type": "click"}).status_code == 404


def test_select_route_sets_session_cookie_and_logs(client, make_ad):
    ad = make_ad()
    response = client.get("/api/ads/select?placement=sidebar&pageType=homepage&logImpressions=true")
    assert response.status_code == 200
    assert [a["id"] for a in response.get_json()["data"]] == [ad["id"]]
    assert "bassac_sid=" in response.headers.get("Set-Cookie", "")
    assert get_ad_by_id_db(ad["id"])["impressions"] == 1


def test_homepage_bundle_groups_sections(client, make_ad):
    make_ad(name="Section 2", placement="between_sections", section_index=2)
    data = client.get("/api/ads/bundle/homepage").get_json()["data"]
    assert set(data) == {"header", "after_hero", "between_sections", "sidebar", "footer", "popup"}
    assert list(data["between_sections"]) == ["2"]
    assert client.get("/api/ads/bundle/sidebar").status_code == 400


# ---------------------------------------------------------------------------
# 4. Admin and stats
# ---------------------------------------------------------------------------

def test_admin_crud(client, make_user):
    _, admin_headers = make_user("admin")
    _, editor_headers = make_user("editor")

    response = client.post("/api/ads", headers=admin_headers, json={"name": "No image", "placement": "sidebar"})
    assert response.status_code == 422
    assert {e["field"] for e in response.get_json()["errors"]} == {"image_url"}

    body = {"name": "House ad", "type": "html", "html_content": "<p>Read more</p>", "placement": "footer"}
    assert client.post("/api/ads", headers=editor_headers, json=body).status_code == 403
    ad = client.post("/api/ads", headers=admin_headers, json=body).get_json()["data"]
    assert ad["status"] == "draft"

    copy = client.post(f"/api/ads/{ad['id']}/duplicate", headers=admin_headers).get_json()["data"]
    assert copy["name"] == "House ad (Copy)"

    response = client.post("/api/ads/bulk-update", headers=admin_headers,
                           json={"ids": [ad["id"], copy["id"]], "updates": {"status": "active"}})
    assert response.get_json()["data"]["modified"] == 2

    listing = client.get("/api/ads?status=active", headers=editor_headers).get_json()
    assert listing["pagination"]["total"] == 2

    response = client.post("/api/ads/bulk-delete", headers=admin_headers, json={"ids": [ad["id"], copy["id"]]})
    assert response.get_json()["data"]["deleted"] == 2
    assert client.delete(f"/api/ads/{ad['id']}", headers=admin_headers).status_code == 404


def test_ad_html_is_sanitized_and_urls_checked(client, make_user):
    _, admin_headers = make_user("admin")

    body = {"name": "House ad", "type": "html", "placement": "footer",
            "html_content": '<p onclick="steal()">Read <script>alert(1)</script>more</p><iframe src="x"></iframe>'}
    ad = client.post("/api/ads", headers=admin_headers, json=body).get_json()["data"]
    assert ad["html_content"] == "<p>Read more</p>"

    body = {"name": "Bad links", "type": "image", "placement": "sidebar",
            "image_url": "javascript:alert(1)", "link_url": "javascript:alert(1)"}
    response = client.post("/api/ads", headers=admin_headers, json=body)
    assert response.status_code == 422
    assert {e["field"] for e in response.get_json()["errors"]} == {"image_url", "link_url"}

    body.update(image_url="/uploads/../secrets.png", link_url="https://example.com/offer")
    response = client.post("/api/ads", headers=admin_headers, json=body)
    assert {e["field"] for e in response.get_json()["errors"]} == {"image_url"}

    response = client.put(f"/api/ads/{ad['id']}", headers=admin_headers, json={"link_url": "ftp://example.com"})
    assert response.status_code == 422

    response = client.post("/api/ads", headers=admin_headers, json={"name": 42, "placement": "sidebar"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "name must be a string"


def test_schedule_validation(app, make_ad):
    from bassac.core.responses import ValidationError
    with pytest.raises(ValidationError) as exc:
        make_ad(schedule={"start_date": "2026-05-01", "end_date": "2026-04-01", "time_start": "25:00"})
    fields = {error["field"] for error in exc.value.errors}
    assert fields == {"schedule.end_date", "schedule.time_start"}


def test_ctr():
    assert ctr(0, 0) == 0
    assert ctr(1, 3) == 33.33


def test_aggregate_daily_stats(app, make_ad):
    ad = make_ad()
    record_event(ad["id"], "impression", build_context(session_id="a", page_type="homepage", device="mobile"))
    record_event(ad["id"], "impression", build_context(session_id="b", page_type="homepage"))
    record_event(ad["id"], "click", build_context(session_id="a", page_type="homepage", device="mobile"))

    today = utcnow().date()
    assert aggregate_daily_stats(today.isoformat()) == 1
    assert aggregate_daily_stats(today.isoformat()) == 1

    rows = get_daily_stats_db(ad["id"])
    assert len(rows) == 1
    assert rows[0]["impressions"] == 2
    assert rows[0]["clicks"] == 1
    assert rows[0]["ctr"] == 50.0
    assert rows[0]["unique_sessions"] == 2
    assert rows[0]["by_device"]["mobile"] == {"impressions": 1, "clicks": 1}


def test_targeting_normalisation_defaults():
    targeting = normalize_targeting({"pages": "article", "categories": ["2", "x", 4]})
    assert targeting["pages"] == ["article"]
    assert targeting["categories"] == [2, 4]
    assert targeting["user_status"] == {"loggedIn": True, "guest": True}
