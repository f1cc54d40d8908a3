from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from conftest import auth_headers
from app.core.errors import ForbiddenError, InvalidInputError, NotFoundError
from app.database import SessionLocal
from app.models import Ad, AdStatus, BannerType
from app.schemas.ads import AdminAdUpdate, OwnerAdUpdate
from app.services.ad_service import AdLifecycleEngine, record_impressions, update_schema_for

JAN_FIRST = "2024-01-01T00:00:00Z"
JAN_END = "2024-01-31T23:59:59Z"


def _ad_form(**overrides):
    form = {
        "title": "Grand opening",
        "content": "Half price all week",
        "target_type": "external",
        "start_at": JAN_FIRST,
        "end_at": JAN_END,
    }
    form.update(overrides)
    return form


def _insert_ad(db, **overrides):
    now = datetime.now(timezone.utc)
    values = dict(
        title="Live ad",
        banner_type="hero",
        target_type="external",
        start_at=now - timedelta(days=1),
        end_at=now + timedelta(days=1),
        status="approved",
        is_active=True,
        priority=0,
        clicks=0,
        impressions=0,
    )
    values.update(overrides)
    ad = Ad(**values)
    db.add(ad)
    db.commit()
    db.refresh(ad)
    return ad


def _reload(db, ad_id):
    db.expire_all()
    return db.query(Ad).filter(Ad.id == ad_id).first()


class TestCreateAd:
    def test_admin_creates_external_ad(self, client, admin_headers):
        response = client.post("/api/ads", data=_ad_form(), headers=admin_headers)
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["target_type"] == "external"
        assert body["target_id"] is None
        assert body["status"] == "pending_review"
        assert body["is_active"] is False
        assert body["priority"] == 0
        assert body["clicks"] == 0
        assert body["impressions"] == 0
        assert body["banner_type"] == "hero"

    def test_admin_cannot_target_business(self, client, admin_headers, owner, make_business):
        business = make_business(owner)
        form = _ad_form(target_type="business", target_id=str(business.id))
        response = client.post("/api/ads", data=form, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "target_type"

    def test_owner_creates_ad_for_own_business(self, client, owner, owner_headers, make_business):
        business = make_business(owner)
        form = _ad_form(target_type="business", target_id=str(business.id), banner_type="sidebar")
        response = client.post("/api/ads", data=form, headers=owner_headers)
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["target_id"] == business.id
        assert body["banner_type"] == "sidebar"
        assert body["status"] == "pending_review"

    def test_owner_cannot_advertise_foreign_business(self, client, owner, owner_headers, make_user, make_business):
        make_business(owner, "Own Place")
        other_owner = make_user("owner")
        foreign = make_business(other_owner, "Other Place")

        form = _ad_form(target_type="business", target_id=str(foreign.id))
        response = client.post("/api/ads", data=form, headers=owner_headers)
        assert response.status_code == 403

    def test_owner_unknown_business(self, client, owner_headers):
        form = _ad_form(target_type="business", target_id="9999")
        response = client.post("/api/ads", data=form, headers=owner_headers)
        assert response.status_code == 404

    def test_owner_non_numeric_target(self, client, owner_headers):
        form = _ad_form(target_type="business", target_id="abc")
        response = client.post("/api/ads", data=form, headers=owner_headers)
        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "target_id"

    def test_owner_cannot_create_external_ad(self, client, owner_headers):
        response = client.post("/api/ads", data=_ad_form(), headers=owner_headers)
        assert response.status_code == 400

    def test_end_before_start_is_rejected(self, client, admin_headers):
        form = _ad_form(start_at=JAN_END, end_at=JAN_FIRST)
        response = client.post("/api/ads", data=form, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "end_at"

    def test_equal_dates_are_rejected(self, client, admin_headers):
        form = _ad_form(start_at=JAN_FIRST, end_at=JAN_FIRST)
        response = client.post("/api/ads", data=form, headers=admin_headers)
        assert response.status_code == 400

    def test_missing_title_is_rejected(self, client, admin_headers):
        form = _ad_form()
        form.pop("title")
        response = client.post("/api/ads", data=form, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"]["type"] == "invalid_input"

    def test_invalid_date_is_rejected(self, client, admin_headers):
        response = client.post("/api/ads", data=_ad_form(start_at="not-a-date"), headers=admin_headers)
        assert response.status_code == 400

    def test_end_user_cannot_create(self, client, make_user):
        user = make_user("user")
        response = client.post("/api/ads", data=_ad_form(), headers=auth_headers(user))
        assert response.status_code == 403

    def test_images_are_uploaded(self, client, admin_headers, storage):
        files = {
            "image": ("banner.png", b"\x89PNG fake", "image/png"),
            "mobile_image": ("banner-m.jpg", b"jpeg bytes", "image/jpeg"),
        }
        response = client.post("/api/ads", data=_ad_form(), files=files, headers=admin_headers)
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["image_url"].startswith("https://cdn.test/ads/")
        assert body["mobile_image_url"].startswith("https://cdn.test/ads/mobile/")
        assert body["tablet_image_url"] is None
        assert len(storage.uploaded) == 2

    def test_non_image_upload_is_rejected(self, client, admin_headers):
        files = {"image": ("notes.txt", b"hello", "text/plain")}
        response = client.post("/api/ads", data=_ad_form(), files=files, headers=admin_headers)
        assert response.status_code == 400

    def test_upload_without_storage(self, client, admin_headers):
        from app.core.dependencies import get_storage_service
        from main import app

        app.dependency_overrides[get_storage_service] = lambda: None
        files = {"image": ("banner.png", b"\x89PNG fake", "image/png")}
        response = client.post("/api/ads", data=_ad_form(), files=files, headers=admin_headers)
        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "StorageServiceError"


class TestModeration:
    def test_approve_activates(self, client, admin_headers, db_session):
        ad = _insert_ad(db_session, status="pending_review", is_active=False)
        response = client.put(f"/api/ads/{ad.id}/status", json={"status": "approved"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert response.json()["is_active"] is True

    def test_reject_records_reason(self, client, admin_headers, db_session):
        ad = _insert_ad(db_session, status="pending_review", is_active=False)
        payload = {"status": "rejected", "rejection_reason": "Image is too blurry"}
        response = client.put(f"/api/ads/{ad.id}/status", json=payload, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert response.json()["rejection_reason"] == "Image is too blurry"

    def test_unknown_status(self, client, admin_headers, db_session):
        ad = _insert_ad(db_session)
        response = client.put(f"/api/ads/{ad.id}/status", json={"status": "archived"}, headers=admin_headers)
        assert response.status_code == 400

    def test_owner_cannot_moderate(self, client, owner_headers, db_session):
        ad = _insert_ad(db_session, status="pending_review", is_active=False)
        response = client.put(f"/api/ads/{ad.id}/status", json={"status": "approved"}, headers=owner_headers)
        assert response.status_code == 403

    def test_missing_ad(self, client, admin_headers):
        response = client.put("/api/ads/777/status", json={"status": "approved"}, headers=admin_headers)
        assert response.status_code == 404


class TestUpdateAd:
    def test_owner_moderation_fields_are_ignored(
        self, client, owner, owner_headers, make_user, make_business, db_session
    ):
        business = make_business(owner)
        elsewhere = make_business(make_user("owner"), "Other Place")
        ad = _insert_ad(
            db_session, target_type="business", target_id=business.id,
            status="pending_review", is_active=False,
        )
        form = {
            "title": "New headline",
            "status": "approved",
            "priority": "99",
            "is_active": "true",
            "target_type": "external",
            "target_id": str(elsewhere.id),
        }
        response = client.put(f"/api/ads/{ad.id}", data=form, headers=owner_headers)
        assert response.status_code == 200, response.text

        body = response.json()
        assert body["title"] == "New headline"
        assert body["status"] == "pending_review"
        assert body["priority"] == 0
        assert body["is_active"] is False
        assert body["target_type"] == "business"
        assert body["target_id"] == business.id

    def test_owner_cannot_edit_foreign_ad(self, client, owner_headers, make_user, make_business, db_session):
        other = make_user("owner")
        business = make_business(other, "Other Place")
        ad = _insert_ad(db_session, target_type="business", target_id=business.id)
        response = client.put(f"/api/ads/{ad.id}", data={"title": "Mine now"}, headers=owner_headers)
        assert response.status_code == 403

    def test_owner_cannot_edit_external_ad(self, client, owner_headers, db_session):
        ad = _insert_ad(db_session)
        response = client.put(f"/api/ads/{ad.id}", data={"title": "Mine now"}, headers=owner_headers)
        assert response.status_code == 403

    def test_admin_changes_status_through_update(self, client, admin_headers, db_session):
        ad = _insert_ad(db_session, status="pending_review", is_active=False)
        form = {"status": "approved", "priority": "5"}
        response = client.put(f"/api/ads/{ad.id}", data=form, headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "approved"
        assert body["is_active"] is True
        assert body["priority"] == 5

    def test_admin_updates_with_json(self, client, admin_headers, db_session):
        ad = _insert_ad(db_session)
        response = client.put(f"/api/ads/{ad.id}", json={"banner_type": "popup", "is_active": False}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["banner_type"] == "popup"
        assert response.json()["is_active"] is False

    def test_window_checked_against_stored_dates(self, client, admin_headers, db_session):
        ad = _insert_ad(
            db_session,
            start_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            end_at=datetime(2024, 1, 31, tzinfo=timezone.utc),
        )
        response = client.put(f"/api/ads/{ad.id}", data={"end_at": "2023-12-31T00:00:00Z"}, headers=admin_headers)
        assert response.status_code == 400

    def test_admin_retarget_unknown_business(self, client, admin_headers, db_session):
        ad = _insert_ad(db_session)
        form = {"target_type": "business", "target_id": "4040"}
        response = client.put(f"/api/ads/{ad.id}", data=form, headers=admin_headers)
        assert response.status_code == 404

    def test_admin_retarget_to_external_clears_target(self, client, admin_headers, owner, make_business, db_session):
        business = make_business(owner)
        ad = _insert_ad(db_session, target_type="business", target_id=business.id)
        response = client.put(f"/api/ads/{ad.id}", json={"target_type": "external"}, headers=admin_headers)
        assert response.status_code == 200, response.text
        assert response.json()["target_type"] == "external"
        assert response.json()["target_id"] is None
        assert _reload(db_session, ad.id).target_id is None

    def test_admin_retarget_to_business_needs_target_id(self, client, admin_headers, db_session):
        ad = _insert_ad(db_session)
        response = client.put(f"/api/ads/{ad.id}", json={"target_type": "business"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "target_id"
        assert _reload(db_session, ad.id).target_type == "external"

    def test_replacing_image_releases_old_one(self, client, admin_headers, db_session, storage):
        ad = _insert_ad(db_session, image_url="https://cdn.test/ads/old.jpg")
        files = {"image": ("new.png", b"\x89PNG fake", "image/png")}
        response = client.put(f"/api/ads/{ad.id}", files=files, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["image_url"] != "https://cdn.test/ads/old.jpg"
        assert storage.deleted == ["https://cdn.test/ads/old.jpg"]


class TestDeleteAd:
    def test_admin_deletes_and_releases_assets(self, client, admin_headers, db_session, storage):
        ad = _insert_ad(
            db_session,
            image_url="https://cdn.test/ads/a.jpg",
            tablet_image_url="https://cdn.test/ads/tablet/a.jpg",
        )
        response = client.delete(f"/api/ads/{ad.id}", headers=admin_headers)
        assert response.status_code == 200
        assert sorted(storage.deleted) == ["https://cdn.test/ads/a.jpg", "https://cdn.test/ads/tablet/a.jpg"]
        assert _reload(db_session, ad.id) is None

    def test_release_failure_does_not_fail_delete(self, client, admin_headers, db_session, storage):
        storage.fail_deletes = True
        ad = _insert_ad(db_session, image_url="https://cdn.test/ads/a.jpg")
        response = client.delete(f"/api/ads/{ad.id}", headers=admin_headers)
        assert response.status_code == 200
        assert _reload(db_session, ad.id) is None

    def test_owner_cannot_delete(self, client, owner, owner_headers, make_business, db_session):
        business = make_business(owner)
        ad = _insert_ad(db_session, target_type="business", target_id=business.id)
        response = client.delete(f"/api/ads/{ad.id}", headers=owner_headers)
        assert response.status_code == 403


class TestCounters:
    def test_clicks_accumulate(self, client, db_session):
        ad = _insert_ad(db_session)
        for _ in range(5):
            assert client.post(f"/api/ads/{ad.id}/click").status_code == 200
        assert _reload(db_session, ad.id).clicks == 5

    def test_concurrent_clicks_are_not_lost(self, db_session):
        ad = _insert_ad(db_session)
        workers = 10

        def click():
            session = SessionLocal()
            try:
                AdLifecycleEngine(session).increment_clicks(ad.id)
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=workers) as pool:
            for future in [pool.submit(click) for _ in range(workers)]:
                future.result()

        assert _reload(db_session, ad.id).clicks == workers

    def test_click_on_missing_ad(self, client, db_session):
        assert client.post("/api/ads/31337/click").status_code == 404

    def test_click_with_malformed_id(self, client, db_session):
        response = client.post("/api/ads/banner/click")
        assert response.status_code == 400

    def test_public_fetch_counts_impressions(self, client, db_session):
        served = _insert_ad(db_session, title="Served")
        hidden = _insert_ad(db_session, title="Hidden", status="pending_review", is_active=False)

        response = client.get("/api/ads/public")
        assert response.status_code == 200
        assert [ad["id"] for ad in response.json()] == [served.id]

        assert _reload(db_session, served.id).impressions == 1
        assert _reload(db_session, hidden.id).impressions == 0

    def test_record_impressions_with_no_ads(self, db_session):
        record_impressions([])


class TestPublicAds:
    def test_eligibility_follows_window(self, db_session):
        ad = _insert_ad(
            db_session,
            start_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            end_at=datetime(2024, 1, 31, tzinfo=timezone.utc),
        )
        engine = AdLifecycleEngine(db_session)

        during = engine.list_public_eligible(now=datetime(2024, 1, 5, tzinfo=timezone.utc))
        after = engine.list_public_eligible(now=datetime(2024, 2, 1, tzinfo=timezone.utc))
        before = engine.list_public_eligible(now=datetime(2023, 12, 31, tzinfo=timezone.utc))

        assert [a.id for a in during] == [ad.id]
        assert after == []
        assert before == []

    def test_window_bounds_are_inclusive(self, db_session):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 31, tzinfo=timezone.utc)
        ad = _insert_ad(db_session, start_at=start, end_at=end)
        engine = AdLifecycleEngine(db_session)

        assert [a.id for a in engine.list_public_eligible(now=start)] == [ad.id]
        assert [a.id for a in engine.list_public_eligible(now=end)] == [ad.id]

    def test_unapproved_or_inactive_ads_are_hidden(self, db_session):
        _insert_ad(db_session, status="rejected", is_active=True)
        _insert_ad(db_session, status="approved", is_active=False)
        _insert_ad(db_session, status="pending_review", is_active=True)
        assert AdLifecycleEngine(db_session).list_public_eligible() == []

    def test_ordered_by_priority_then_recency(self, db_session):
        low = _insert_ad(db_session, title="Low", priority=1)
        high = _insert_ad(db_session, title="High", priority=10)
        newer_low = _insert_ad(db_session, title="Newer low", priority=1)

        ids = [a.id for a in AdLifecycleEngine(db_session).list_public_eligible()]
        assert ids == [high.id, newer_low.id, low.id]

    def test_banner_type_filter(self, client, db_session):
        _insert_ad(db_session, banner_type="hero")
        sidebar = _insert_ad(db_session, banner_type="sidebar")

        response = client.get("/api/ads/public/sidebar")
        assert response.status_code == 200
        assert [ad["id"] for ad in response.json()] == [sidebar.id]

        ads = AdLifecycleEngine(db_session).list_public_eligible(banner_type=BannerType.SIDEBAR)
        assert [a.id for a in ads] == [sidebar.id]

    def test_unknown_banner_type(self, client, db_session):
        response = client.get("/api/ads/public/footer")
        assert response.status_code == 400

    def test_public_limits(self, client, db_session):
        for i in range(12):
            _insert_ad(db_session, title=f"Ad {i}", banner_type="popup")
        assert len(client.get("/api/ads/public").json()) == 10
        assert len(client.get("/api/ads/public/popup").json()) == 5


class TestListing:
    def test_owner_sees_only_own_ads(self, client, owner, owner_headers, make_user, make_business, db_session):
        mine = make_business(owner, "Own Place")
        other = make_business(make_user("owner"), "Other Place")
        own_ad = _insert_ad(db_session, target_type="business", target_id=mine.id, status="pending_review")
        _insert_ad(db_session, target_type="business", target_id=other.id)
        _insert_ad(db_session)

        body = client.get("/api/ads/mine", headers=owner_headers).json()
        assert body["total"] == 1
        assert [ad["id"] for ad in body["items"]] == [own_ad.id]

        filtered = client.get("/api/ads/mine", params={"status": "approved"}, headers=owner_headers).json()
        assert filtered["total"] == 0

    def test_owner_get_single(self, client, owner, owner_headers, make_business, db_session):
        mine = make_business(owner)
        own_ad = _insert_ad(db_session, target_type="business", target_id=mine.id)
        external = _insert_ad(db_session)

        assert client.get(f"/api/ads/{own_ad.id}", headers=owner_headers).status_code == 200
        assert client.get(f"/api/ads/{external.id}", headers=owner_headers).status_code == 403

    def test_admin_list_all_paginates(self, client, admin_headers, db_session):
        for i in range(5):
            _insert_ad(db_session, title=f"Ad {i}", priority=i)

        body = client.get(
            "/api/ads", params={"page": 2, "limit": 2, "sort_by": "priority", "sort_order": "asc"},
            headers=admin_headers,
        ).json()
        assert body["total"] == 5
        assert body["pages"] == 3
        assert body["page"] == 2
        assert [ad["priority"] for ad in body["items"]] == [2, 3]

    def test_admin_search(self, client, admin_headers, db_session):
        _insert_ad(db_session, title="Summer SALE")
        _insert_ad(db_session, title="Winter boots")
        body = client.get("/api/ads", params={"search": "sale"}, headers=admin_headers).json()
        assert [ad["title"] for ad in body["items"]] == ["Summer SALE"]

    def test_admin_list_rejects_unknown_sort(self, client, admin_headers, db_session):
        response = client.get("/api/ads", params={"sort_by": "title; drop table ads"}, headers=admin_headers)
        assert response.status_code == 400

    def test_owner_cannot_list_all(self, client, owner_headers):
        assert client.get("/api/ads", headers=owner_headers).status_code == 403


class TestEngineRules:
    def test_update_schema_for_role(self):
        assert update_schema_for("admin") is AdminAdUpdate
        assert update_schema_for("owner") is OwnerAdUpdate

    def test_owner_update_narrowed_inside_engine(self, db_session, owner, make_business):
        business = make_business(owner)
        ad = _insert_ad(db_session, target_type="business", target_id=business.id, status="pending_review")
        changes = AdminAdUpdate(title="Sneaky", status=AdStatus.APPROVED, priority=50)

        updated = AdLifecycleEngine(db_session).update(owner, ad.id, changes)
        assert updated.title == "Sneaky"
        assert updated.status == "pending_review"
        assert updated.priority == 0

    def test_end_user_cannot_update(self, db_session, make_user):
        user = make_user("user")
        ad = _insert_ad(db_session)
        with pytest.raises(ForbiddenError):
            AdLifecycleEngine(db_session).update(user, ad.id, OwnerAdUpdate(title="x"))

    def test_empty_dates_rejected(self, db_session, admin):
        ad = _insert_ad(db_session)
        with pytest.raises(InvalidInputError):
            AdLifecycleEngine(db_session).update(admin, ad.id, AdminAdUpdate(start_at=None))

    def test_delete_missing(self, db_session, admin):
        with pytest.raises(NotFoundError):
            AdLifecycleEngine(db_session).delete(admin, 1)
