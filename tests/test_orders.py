import pytest
from bson import ObjectId

import orders
from errors import ConflictError


def test_place_order_snapshots_product_and_parties(client, headers, db, buyer, seller, product_id):
    resp = client.post("/orders", json={"product_id": product_id}, headers=headers(buyer))

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    order = body["data"]
    assert order["status"] == "pending"
    assert order["product_title"] == "Scientific Calculator"
    assert order["product_price"] == 450
    assert order["buyer_id"] == buyer.id
    assert order["buyer_phone"] == "9123456780"
    assert order["seller_id"] == seller.id
    assert order["seller_name"] == "Priya Sharma"
    assert order["pickup_location"] == "Library"
    assert order["pickup_coordinates"] == {"lat": 19.0760, "lng": 72.8777}
    assert order["payment"]["status"] == "pending"
    assert order["payment"]["amount"] == 450
    assert order["payment"]["payment_method"] == "upi"
    assert order["live_tracking"]["enabled"] is False


def test_product_edits_do_not_rewrite_existing_orders(client, headers, seller, order_id, product_id):
    resp = client.put(f"/products/{product_id}", json={"title": "Calculator (price drop)", "price": 300},
                      headers=headers(seller))
    assert resp.status_code == 200
    assert resp.json()["data"]["price"] == 300

    order = client.get(f"/orders/{order_id}", headers=headers(seller)).json()["data"]
    assert order["product_title"] == "Scientific Calculator"
    assert order["product_price"] == 450
    assert order["payment"]["amount"] == 450


def test_cannot_order_own_product(client, headers, db, seller, product_id):
    resp = client.post("/orders", json={"product_id": product_id}, headers=headers(seller))

    assert resp.status_code == 400
    assert resp.json()["message"] == "You cannot order your own product"
    assert resp.json()["error"] == "VALIDATION_ERROR"
    assert db["order"].count_documents({}) == 0


def test_cannot_order_sold_product(client, headers, db, buyer, seller, make_product):
    sold_id = make_product(seller, is_sold=True)
    resp = client.post("/orders", json={"product_id": sold_id}, headers=headers(buyer))

    assert resp.status_code == 400
    assert resp.json()["message"] == "This product is already sold"
    assert db["order"].count_documents({}) == 0


def test_order_unknown_product_is_404(client, headers, buyer):
    resp = client.post("/orders", json={"product_id": str(ObjectId())}, headers=headers(buyer))
    assert resp.status_code == 404


def test_orders_require_a_token(client, product_id):
    resp = client.post("/orders", json={"product_id": product_id})
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_buyer_and_seller_order_lists(client, headers, buyer, seller, order_id):
    mine = client.get("/orders/mine", headers=headers(buyer)).json()
    received = client.get("/orders/received", headers=headers(seller)).json()

    assert [o["id"] for o in mine["data"]] == [order_id]
    assert [o["id"] for o in received["data"]] == [order_id]
    assert client.get("/orders/mine", headers=headers(seller)).json()["count"] == 0


@pytest.mark.parametrize("path,party", [("/orders/my-orders", "buyer"), ("/orders/received-orders", "seller")])
def test_order_list_aliases(client, headers, buyer, seller, order_id, path, party):
    resp = client.get(path, headers=headers(buyer if party == "buyer" else seller))

    assert resp.status_code == 200
    assert [o["id"] for o in resp.json()["data"]] == [order_id]


def test_third_party_cannot_view_order(client, headers, stranger, order_id):
    assert client.get(f"/orders/{order_id}", headers=headers(stranger)).status_code == 403


@pytest.mark.parametrize("target", ["accepted", "rejected", "completed", "cancelled"])
def test_seller_moves_pending_order(set_status, order_id, target):
    resp = set_status(order_id, target)
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == target


def test_only_seller_updates_status(set_status, buyer, order_id):
    resp = set_status(order_id, "accepted", actor=buyer)
    assert resp.status_code == 403
    assert resp.json()["message"] == "Only the seller can update order status"


def test_unknown_status_is_rejected(set_status, order_id):
    resp = set_status(order_id, "shipped")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid order status"


def test_accepted_order_can_be_completed(set_status, order_id):
    assert set_status(order_id, "accepted").status_code == 200
    resp = set_status(order_id, "completed")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "completed"


@pytest.mark.parametrize("terminal", ["rejected", "completed", "cancelled"])
@pytest.mark.parametrize("target", ["pending", "accepted", "rejected", "completed", "cancelled"])
def test_terminal_orders_accept_no_transition(set_status, order_id, terminal, target):
    assert set_status(order_id, terminal).status_code == 200
    resp = set_status(order_id, target)
    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_STATE"


def test_completion_marks_product_sold(client, set_status, db, order_id, product_id):
    set_status(order_id, "completed")

    product = db["product"].find_one({"_id": ObjectId(product_id)})
    assert product["is_sold"] is True
    listed = client.get("/products").json()["data"]
    assert product_id not in [p["id"] for p in listed]


def test_rejection_leaves_product_unsold(set_status, db, order_id, product_id):
    set_status(order_id, "rejected")
    assert db["product"].find_one({"_id": ObjectId(product_id)})["is_sold"] is False


def test_buyer_cancels_pending_order(client, headers, buyer, order_id):
    resp = client.patch(f"/orders/{order_id}/cancel", headers=headers(buyer))
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "cancelled"


def test_buyer_cannot_cancel_accepted_order(client, headers, set_status, buyer, order_id):
    set_status(order_id, "accepted")
    resp = client.patch(f"/orders/{order_id}/cancel", headers=headers(buyer))
    assert resp.status_code == 400
    assert resp.json()["message"] == "Only pending orders can be cancelled"


def test_seller_cannot_use_buyer_cancel(client, headers, seller, order_id):
    assert client.patch(f"/orders/{order_id}/cancel", headers=headers(seller)).status_code == 403


def test_completion_backfills_missing_payment(db, seller, order_id):
    db["order"].update_one({"_id": ObjectId(order_id)}, {"$unset": {"payment": "", "version": ""}})

    updated = orders.update_status(db, seller, order_id, "completed")

    assert updated["payment"]["status"] == "pending"
    assert updated["payment"]["amount"] == 450
    assert updated["version"] == 1


def test_unversioned_order_still_guards_races(db, seller, order_id, monkeypatch):
    db["order"].update_one({"_id": ObjectId(order_id)}, {"$unset": {"version": ""}})
    stale = orders.get_order(db, order_id)

    orders.update_status(db, seller, order_id, "accepted")
    monkeypatch.setattr(orders, "get_order", lambda _db, _id: dict(stale))
    with pytest.raises(ConflictError):
        orders.update_status(db, seller, order_id, "rejected")


def test_racing_status_updates_only_one_wins(db, seller, order_id, monkeypatch):
    stale = orders.get_order(db, order_id)

    orders.update_status(db, seller, order_id, "accepted")
    monkeypatch.setattr(orders, "get_order", lambda _db, _id: dict(stale))
    with pytest.raises(ConflictError):
        orders.update_status(db, seller, order_id, "rejected")

    final = db["order"].find_one({"_id": ObjectId(order_id)})
    assert final["status"] == "accepted"
    assert final["version"] == 1


def test_racing_completion_does_not_mark_sold_twice(db, seller, order_id, product_id, monkeypatch):
    stale = orders.get_order(db, order_id)

    orders.update_status(db, seller, order_id, "cancelled")
    monkeypatch.setattr(orders, "get_order", lambda _db, _id: dict(stale))
    with pytest.raises(ConflictError):
        orders.update_status(db, seller, order_id, "completed")

    assert db["order"].find_one({"_id": ObjectId(order_id)})["status"] == "cancelled"
    assert db["product"].find_one({"_id": ObjectId(product_id)})["is_sold"] is False


def test_conflict_is_reported_as_409(client, headers, db, seller, order_id, monkeypatch):
    stale = orders.get_order(db, order_id)
    orders.update_status(db, seller, order_id, "accepted")
    monkeypatch.setattr(orders, "get_order", lambda _db, _id: dict(stale))

    resp = client.patch(f"/orders/{order_id}/status", json={"status": "rejected"}, headers=headers(seller))

    assert resp.status_code == 409
    assert resp.json()["error"] == "CONFLICT"
