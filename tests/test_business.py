from conftest import auth_headers
from app.models import Ad, Business


def _create(client, headers, **payload):
    payload.setdefault("name", "Corner Cafe")
    response = client.post("/api/business/", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_owner_creates_business(client, owner, owner_headers):
    body = _create(client, owner_headers, name="Corner Cafe", city="Lisbon")
    assert body["slug"] == "corner-cafe"
    assert body["owner_id"] == owner.id
    assert body["is_active"] is True


def test_duplicate_business_name_gets_suffix(client, owner_headers):
    first = _create(client, owner_headers, name="Corner Cafe")
    second = _create(client, owner_headers, name="Corner Cafe")
    assert second["slug"].startswith("corner-cafe-")
    assert second["slug"] != first["slug"]


def test_unknown_category_is_rejected(client, owner_headers):
    response = client.post("/api/business/", json={"name": "Corner Cafe", "category_id": 55}, headers=owner_headers)
    assert response.status_code == 400


def test_admin_cannot_create_business(client, admin_headers):
    response = client.post("/api/business/", json={"name": "Corner Cafe"}, headers=admin_headers)
    assert response.status_code == 403


def test_public_get_and_mine(client, owner_headers, make_user):
    created = _create(client, owner_headers)
    other_headers = auth_headers(make_user("owner"))
    _create(client, other_headers, name="Other Place")

    assert client.get(f"/api/business/{created['id']}").json()["name"] == "Corner Cafe"
    mine = client.get("/api/business/mine", headers=owner_headers).json()
    assert [b["id"] for b in mine] == [created["id"]]


def test_update_by_owner_and_stranger(client, owner_headers, make_user):
    created = _create(client, owner_headers)

    response = client.put(f"/api/business/{created['id']}", json={"name": "Corner Bistro"}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["slug"] == "corner-bistro"

    stranger = auth_headers(make_user("owner"))
    response = client.put(f"/api/business/{created['id']}", json={"city": "Porto"}, headers=stranger)
    assert response.status_code == 403


def test_update_errors_use_structured_detail(client, owner_headers, make_user):
    created = _create(client, owner_headers)

    response = client.put(f"/api/business/{created['id']}", json={}, headers=owner_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["type"] == "invalid_input"
    assert response.json()["detail"]["error"] == "ValidationError"

    response = client.put(f"/api/business/{created['id']}", json={"name": "   "}, headers=owner_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "name"

    stranger = auth_headers(make_user("owner"))
    response = client.put(f"/api/business/{created['id']}", json={"city": "Porto"}, headers=stranger)
    assert set(response.json()["detail"]) >= {"error", "message", "type"}


def test_admin_can_update(client, owner_headers, admin_headers):
    created = _create(client, owner_headers)
    response = client.put(f"/api/business/{created['id']}", json={"is_active": False}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is False


def test_delete_removes_business_ads(client, owner_headers, admin_headers, db_session, storage):
    created = _create(client, owner_headers)
    form = {
        "title": "Grand opening",
        "target_type": "business",
        "target_id": str(created["id"]),
        "start_at": "2024-01-01T00:00:00Z",
        "end_at": "2024-01-31T00:00:00Z",
    }
    files = {"image": ("banner.png", b"\x89PNG fake", "image/png")}
    ad = client.post("/api/ads", data=form, files=files, headers=owner_headers).json()
    external = client.post(
        "/api/ads",
        data={**form, "target_type": "external", "target_id": ""},
        headers=admin_headers,
    ).json()

    response = client.delete(f"/api/business/{created['id']}", headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["deleted_ads"] == 1

    db_session.expire_all()
    assert db_session.query(Business).filter(Business.id == created["id"]).first() is None
    assert db_session.query(Ad).filter(Ad.id == ad["id"]).first() is None
    assert db_session.query(Ad).filter(Ad.id == external["id"]).first() is not None
    assert storage.deleted == [ad["image_url"]]


def test_delete_missing_business(client, admin_headers):
    assert client.delete("/api/business/999", headers=admin_headers).status_code == 404
