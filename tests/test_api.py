import os

from database import Database


def _checklist(client, headers, references, **kw):
    payload = {
        "title": "Check boiler pressure",
        "periodicity": "daily",
        "time": "00:00",
        "validity": "2099-12-31T00:00:00Z",
        "items": [{"description": "Read gauge"}, {"description": "Photo of panel", "requirePhoto": True}],
        **references,
    }
    payload.update(kw)
    resp = client.post("/checklists", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_root(client):
    assert client.get("/").json() == {"message": "Checklist tracker API running"}


def test_health_lists_collections(client):
    body = client.get("/test").json()
    assert body["backend"] == "ok"
    assert body["db"] == "ok"
    assert "users" in body["collections"]


def test_login(client):
    ok = client.post("/auth/login", json={"username": "admin", "password": "admin123"})
    assert ok.status_code == 200
    body = ok.json()
    assert body["isAdmin"] is True
    assert body["token"]
    assert "password" not in body

    assert client.post("/auth/login", json={"username": "admin", "password": "nope"}).status_code == 401
    assert client.post("/auth/login", json={"username": "ghost", "password": "x"}).status_code == 401
    assert client.post("/auth/login", json={"username": "admin"}).status_code == 400


def test_requires_auth(client):
    assert client.get("/checklists").status_code == 401
    resp = client.get("/checklists", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_admin_only_routes(client, tech_headers):
    assert client.post("/clients", json={"name": "X"}, headers=tech_headers).status_code == 403
    assert client.get("/users", headers=tech_headers).status_code == 403
    assert client.get("/executions", headers=tech_headers).status_code == 403


def test_user_management(client, admin_headers, technician):
    users = client.get("/users", headers=admin_headers).json()
    assert {u["username"] for u in users} == {"admin", "tech1"}
    assert all("password" not in u for u in users)

    dup = client.post("/users", json={"username": "tech1", "password": "x"}, headers=admin_headers)
    assert dup.status_code == 400

    resp = client.put(f"/users/{technician['id']}", json={"password": "new-pw", "name": "T1"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "T1"
    assert client.post("/auth/login", json={"username": "tech1", "password": "new-pw"}).status_code == 200

    assert client.delete(f"/users/{technician['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/users/{technician['id']}", headers=admin_headers).status_code == 404


def test_reference_crud(client, admin_headers, tech_headers, references):
    assert client.post("/clients", json={"name": "central tower"}, headers=admin_headers).status_code == 400

    resp = client.get("/locations", params={"clientId": references["clientId"]}, headers=tech_headers)
    assert [loc["name"] for loc in resp.json()] == ["Boiler room"]
    assert client.get("/locations", params={"clientId": "other"}, headers=tech_headers).json() == []

    cat = client.post("/categories", json={"name": "Electrician"}, headers=admin_headers).json()
    resp = client.put(f"/categories/{cat['id']}", json={"description": "Wiring"}, headers=admin_headers)
    assert resp.json()["description"] == "Wiring"
    assert client.delete(f"/categories/{cat['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/categories/{cat['id']}", headers=admin_headers).status_code == 404

    bad = client.post("/locations", json={"name": "Roof", "clientId": "missing"}, headers=admin_headers)
    assert bad.status_code == 400


def test_checklist_validation(client, admin_headers, references):
    payload = {
        "title": "No time",
        "periodicity": "weekly",
        "validity": "2099-01-01",
        "items": [{"description": "x"}],
        **references,
    }
    resp = client.post("/checklists", json=payload, headers=admin_headers)
    assert resp.status_code == 400
    assert "time" in resp.json()["detail"]


def test_technician_flow(client, admin_headers, tech_headers, technician, references):
    daily = _checklist(client, admin_headers, references, assignedTo=technician["id"])
    loose = _checklist(client, admin_headers, references, title="Install extinguisher", periodicity="loose", time=None, validity=None)
    _checklist(client, admin_headers, references, title="Pool weekly", periodicity="weekly")

    view = client.get("/professional/view", headers=tech_headers).json()
    assert {c["id"] for c in view["pendingChecklists"]} >= {daily["id"], loose["id"]}
    assert view["dailyProgress"]["totalDailyChecklists"] == 1
    assert view["dailyProgress"]["completedDailyChecklistsToday"] == 0

    resp = client.post(
        "/executions",
        json={"checklistId": loose["id"], "completedItems": [i["id"] for i in loose["items"]]},
        headers=tech_headers,
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["execution"]["userId"] == technician["id"]

    again = client.post("/executions", json={"checklistId": loose["id"]}, headers=tech_headers)
    assert again.status_code == 400
    assert "already been executed" in again.json()["detail"]

    due = client.get(f"/checklists/{loose['id']}/due", headers=tech_headers).json()
    assert due["due"] is False
    assert due["lastCompletedAt"]

    assert client.post("/executions", json={"checklistId": daily["id"]}, headers=tech_headers).status_code == 201

    view = client.get("/professional/view", headers=tech_headers).json()
    pending_ids = {c["id"] for c in view["pendingChecklists"]}
    assert loose["id"] not in pending_ids
    assert daily["id"] not in pending_ids
    assert view["dailyProgress"]["completedDailyChecklistsToday"] == 1
    assert view["dailyProgress"]["percentage"] == 100
    assert view["overallStats"]["totalCompletedOverall"] == 2

    listed = {c["id"] for c in client.get("/checklists", headers=tech_headers).json()}
    assert daily["id"] not in listed and loose["id"] not in listed

    executions = client.get("/executions", params={"userId": technician["id"]}, headers=admin_headers).json()
    assert len(executions) == 2


def test_assigned_to_someone_else(client, admin_headers, tech_headers, references):
    other = client.post("/users", json={"username": "tech2", "password": "pw"}, headers=admin_headers).json()
    c = _checklist(client, admin_headers, references, assignedTo=other["id"])

    assert client.get(f"/checklists/{c['id']}", headers=tech_headers).status_code == 403
    assert client.post("/executions", json={"checklistId": c["id"]}, headers=tech_headers).status_code == 403


def test_inactive_checklist_cannot_be_executed(client, admin_headers, tech_headers, references):
    c = _checklist(client, admin_headers, references, periodicity="loose", time=None, validity=None)
    toggled = client.patch(f"/checklists/{c['id']}/toggle", headers=admin_headers).json()
    assert toggled["active"] is False

    assert client.post("/executions", json={"checklistId": c["id"]}, headers=tech_headers).status_code == 404
    assert client.get("/professional/view", headers=tech_headers).json()["pendingChecklists"] == []


def test_zero_state_view(client, tech_headers):
    view = client.get("/professional/view", headers=tech_headers).json()
    assert view["pendingChecklists"] == []
    assert view["dailyProgress"]["totalDailyChecklists"] == 0
    assert view["dailyProgress"]["percentage"] == 100
    assert view["overallStats"]["totalScheduledOverall"] == 0


def test_active_qrcodes(client, admin_headers, references):
    c = _checklist(client, admin_headers, references)
    resp = client.get("/checklists/active-qrcodes", headers=admin_headers)
    assert resp.status_code == 200
    entry = resp.json()["checklists"][0]
    assert entry["id"] == c["id"]
    assert entry["clientName"] == "Central Tower"
    assert entry["locationName"] == "Boiler room"
    assert entry["qrCode"] == f"/professional/{c['id']}"


def test_photo_upload(client, tech_headers, settings):
    resp = client.post(
        "/uploads/photos",
        files={"photo": ("panel.jpg", b"\xff\xd8\xff-fake-jpeg", "image/jpeg")},
        data={"checklistId": "c1", "itemId": "i1"},
        headers=tech_headers,
    )
    assert resp.status_code == 200, resp.text
    path = resp.json()["filePath"]
    assert path.startswith("/uploads/checklist-photos/c1_i1_") and path.endswith(".jpg")
    assert os.path.exists(os.path.join(settings.upload_dir, os.path.basename(path)))


def test_malformed_checklist_record_is_not_found(client, tech_headers, settings):
    Database(settings.data_dir).collection("checklists").put({"id": "broken", "items": [{"id": "i1"}]})
    assert client.get("/checklists/broken", headers=tech_headers).status_code == 404
    assert client.get("/checklists/broken/due", headers=tech_headers).status_code == 404
    assert client.post("/executions", json={"checklistId": "broken"}, headers=tech_headers).status_code == 404
