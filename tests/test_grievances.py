import pytest

GRIEVANCE = {
    "subject": "Seller did not show up",
    "category": "User Behavior",
    "description": "Waited 30 minutes at the library for pickup.",
}


@pytest.fixture
def grievance_id(client, headers, buyer):
    resp = client.post("/grievances/submit", json=GRIEVANCE, headers=headers(buyer))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["id"]


def test_submit_grievance_defaults(client, headers, buyer):
    resp = client.post("/grievances/submit", json=GRIEVANCE, headers=headers(buyer))

    grievance = resp.json()["data"]
    assert grievance["status"] == "Open"
    assert grievance["priority"] == "Medium"
    assert grievance["user_id"] == buyer.id
    assert grievance["user_name"] == "Rahul Kumar"
    assert grievance["resolved_at"] is None


def test_admin_cannot_submit(client, headers, admin):
    resp = client.post("/grievances/submit", json=GRIEVANCE, headers=headers(admin))
    assert resp.status_code == 403


def test_unknown_category_rejected(client, headers, buyer):
    resp = client.post("/grievances/submit", json={**GRIEVANCE, "category": "Spam"}, headers=headers(buyer))
    assert resp.status_code == 400


def test_my_grievances_only_lists_own(client, headers, buyer, stranger, grievance_id):
    client.post("/grievances/submit", json={**GRIEVANCE, "subject": "Other"}, headers=headers(stranger))

    mine = client.get("/grievances/my-grievances", headers=headers(buyer)).json()
    assert [g["id"] for g in mine["data"]] == [grievance_id]


def test_list_all_is_admin_only(client, headers, buyer, admin, grievance_id):
    assert client.get("/grievances/all", headers=headers(buyer)).status_code == 403
    resp = client.get("/grievances/all", headers=headers(admin))
    assert resp.status_code == 200
    assert resp.json()["count"] == 1


def test_view_single_grievance(client, headers, buyer, stranger, admin, grievance_id):
    assert client.get(f"/grievances/{grievance_id}", headers=headers(buyer)).status_code == 200
    assert client.get(f"/grievances/{grievance_id}", headers=headers(admin)).status_code == 200
    assert client.get(f"/grievances/{grievance_id}", headers=headers(stranger)).status_code == 403


@pytest.mark.parametrize("status", ["Resolved", "Closed"])
def test_resolving_stamps_resolved_at(client, headers, admin, grievance_id, status):
    resp = client.put(f"/grievances/{grievance_id}", json={"status": status, "admin_notes": "Spoke to seller"},
                      headers=headers(admin))

    assert resp.status_code == 200
    grievance = resp.json()["data"]
    assert grievance["status"] == status
    assert grievance["admin_notes"] == "Spoke to seller"
    assert grievance["resolved_at"] is not None


def test_in_progress_does_not_resolve(client, headers, admin, grievance_id):
    resp = client.put(f"/grievances/{grievance_id}", json={"status": "In Progress", "priority": "High"},
                      headers=headers(admin))
    grievance = resp.json()["data"]
    assert grievance["priority"] == "High"
    assert grievance["resolved_at"] is None


def test_admin_may_reopen_any_status(client, headers, admin, grievance_id):
    client.put(f"/grievances/{grievance_id}", json={"status": "Closed"}, headers=headers(admin))
    resp = client.put(f"/grievances/{grievance_id}", json={"status": "Open"}, headers=headers(admin))
    assert resp.json()["data"]["status"] == "Open"


def test_non_admin_cannot_update(client, headers, db, buyer, grievance_id):
    resp = client.put(f"/grievances/{grievance_id}", json={"status": "Resolved"}, headers=headers(buyer))

    assert resp.status_code == 403
    assert db["grievance"].find_one({})["status"] == "Open"


def test_update_unknown_grievance(client, headers, admin):
    resp = client.put("/grievances/64b7f0c2a1b2c3d4e5f60718", json={"status": "Closed"}, headers=headers(admin))
    assert resp.status_code == 404


def test_delete_is_admin_only(client, headers, db, buyer, admin, grievance_id):
    assert client.delete(f"/grievances/{grievance_id}", headers=headers(buyer)).status_code == 403
    assert client.delete(f"/grievances/{grievance_id}", headers=headers(admin)).status_code == 200
    assert db["grievance"].count_documents({}) == 0
    assert client.delete(f"/grievances/{grievance_id}", headers=headers(admin)).status_code == 404
