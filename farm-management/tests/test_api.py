def headers(uid):
    return {"X-User-Id": uid}


def test_health(client):
    assert client.get("/").json() == {"message": "Farm service is running"}


def test_gloves_transfer_end_to_end(client, people, gloves, producer):
    created = client.post(
        "/api/v1/transfers",
        json={"stock_item_id": gloves.id, "to_ferme_id": "B", "quantity": 4, "priority": "high"},
        headers=headers("admin-a"),
    )
    assert created.status_code == 201
    transfer = created.json()
    assert transfer["status"] == "pending"
    assert transfer["tracking_number"].startswith("TRF-")

    inbox = client.get("/api/v1/transfers/notifications", headers=headers("admin-b")).json()
    assert [n["transfer_id"] for n in inbox] == [transfer["id"]]

    confirmed = client.post(f"/api/v1/transfers/{transfer['id']}/confirm", headers=headers("admin-b"))
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "delivered"

    stock = {(s["secteur_id"], s["item"]): s["quantity"] for s in client.get("/api/v1/stock/items").json()}
    assert stock == {("A", "Gloves"): 6, ("B", "Gloves"): 4}
    assert client.get("/api/v1/transfers/notifications", headers=headers("admin-b")).json() == []

    aggregate = client.get("/api/v1/stock/aggregate").json()
    assert aggregate[0]["item"] == "Gloves"
    assert aggregate[0]["total_quantity"] == 10
    assert {f["farm_name"] for f in aggregate[0]["farms"]} == {"Ferme A", "Ferme B"}

    assert producer.routing_keys() == ["notification.incoming_transfer", "notification.transfer_delivered"]

    again = client.post(f"/api/v1/transfers/{transfer['id']}/confirm", headers=headers("admin-b"))
    assert again.status_code == 409
    assert "delivered" in again.json()["error"]


def test_reject_through_api(client, people, gloves):
    transfer = client.post(
        "/api/v1/transfers",
        json={"stock_item_id": gloves.id, "to_ferme_id": "B", "quantity": 4},
        headers=headers("admin-a"),
    ).json()

    missing = client.post(f"/api/v1/transfers/{transfer['id']}/reject", json={}, headers=headers("admin-b"))
    assert missing.status_code == 400
    assert missing.json()["field"] == "reason"

    rejected = client.post(
        f"/api/v1/transfers/{transfer['id']}/reject", json={"reason": "Damaged"}, headers=headers("admin-b")
    ).json()
    assert rejected["status"] == "rejected"
    assert rejected["rejection_reason"] == "Damaged"

    stock = client.get(f"/api/v1/stock/items/{gloves.id}").json()
    assert stock["quantity"] == 10


def test_cancel_through_api(client, people, gloves):
    transfer = client.post(
        "/api/v1/transfers",
        json={"stock_item_id": gloves.id, "to_ferme_id": "B", "quantity": 4},
        headers=headers("user-a"),
    ).json()

    refused = client.post(f"/api/v1/transfers/{transfer['id']}/cancel", headers=headers("admin-b"))
    assert refused.status_code == 403

    cancelled = client.post(f"/api/v1/transfers/{transfer['id']}/cancel", headers=headers("user-a"))
    assert cancelled.json()["status"] == "cancelled"
    assert client.get("/api/v1/transfers", params={"status": "cancelled"}).json()[0]["id"] == transfer["id"]


def test_transfer_errors(client, people, gloves):
    too_many = client.post(
        "/api/v1/transfers",
        json={"stock_item_id": gloves.id, "to_ferme_id": "B", "quantity": 50},
        headers=headers("admin-a"),
    )
    assert too_many.status_code == 409
    assert too_many.json()["error"].startswith("Insufficient stock for Gloves")

    missing = client.post("/api/v1/transfers", json={"stock_item_id": gloves.id, "quantity": 1}, headers=headers("admin-a"))
    assert missing.status_code == 400
    assert missing.json() == {"error": "Missing required field: to_ferme_id", "field": "to_ferme_id"}

    assert client.get("/api/v1/transfers/999").status_code == 404
    assert client.get("/api/v1/transfers").json() == []


def test_caller_must_be_known(client, people, gloves):
    body = {"stock_item_id": gloves.id, "to_ferme_id": "B", "quantity": 1}

    assert client.post("/api/v1/transfers", json=body).status_code == 401
    assert client.post("/api/v1/transfers", json=body, headers=headers("ghost")).status_code == 401


def test_stock_register_through_api(client, people):
    added = client.post("/api/v1/stock/items", json={"item": "Seeds", "quantity": 3}, headers=headers("admin-b"))
    assert added.status_code == 200
    stock_id = added.json()["id"]

    topped_up = client.post("/api/v1/stock/items", json={"item": "Seeds", "quantity": 2}, headers=headers("admin-b"))
    assert topped_up.json()["id"] == stock_id
    assert topped_up.json()["quantity"] == 5

    edited = client.put(
        f"/api/v1/stock/items/{stock_id}", json={"item": "Seeds", "quantity": 1, "notes": "counted"}, headers=headers("admin-b")
    )
    assert edited.json()["quantity"] == 1

    assert client.delete(f"/api/v1/stock/items/{stock_id}", headers=headers("admin-b")).json() == {
        "status": "deleted",
        "id": stock_id,
    }
    assert client.get(f"/api/v1/stock/items/{stock_id}").status_code == 404


def test_reference_data(client):
    assert client.post("/api/v1/fermes", json={"id": "C", "nom": "Ferme C", "admins": ["admin-c"]}).status_code == 201
    assert client.post("/api/v1/fermes", json={"id": "C", "nom": "Again"}).status_code == 400
    assert client.post("/api/v1/users", json={"uid": "admin-c", "role": "admin", "ferme_id": "C"}).status_code == 201

    assert [f["id"] for f in client.get("/api/v1/fermes").json()] == ["C"]


def test_worker_conflict_through_api(client, people, producer):
    first = client.post(
        "/api/v1/workers",
        json={"nom": "Said", "cin": "AB123456", "ferme_id": "A", "date_entree": "2024-01-15"},
        headers=headers("admin-a"),
    )
    assert first.status_code == 201
    worker_id = first.json()["id"]

    check = client.get("/api/v1/workers/check", params={"cin": "AB123456", "ferme_id": "B"}, headers=headers("admin-b"))
    assert check.json()["conflict"] is True
    assert check.json()["worker"]["ferme_id"] == "A"
    assert check.json()["recipients"] == ["admin-a"]

    blocked = client.post(
        "/api/v1/workers", json={"nom": "Said", "cin": "AB123456", "ferme_id": "B"}, headers=headers("admin-b")
    )
    assert blocked.status_code == 409
    conflict = blocked.json()["conflict"]
    assert conflict["ferme_name"] == "Ferme A"
    assert conflict["date_entree"] == "2024-01-15"
    assert conflict["notification_sent"] is True

    left = client.post(
        f"/api/v1/workers/{worker_id}/exit",
        json={"date_sortie": "2024-06-30", "requester_ferme_id": "B"},
        headers=headers("admin-a"),
    )
    assert left.json()["statut"] == "inactif"

    assert client.post(
        "/api/v1/workers", json={"nom": "Said", "cin": "AB123456", "ferme_id": "B"}, headers=headers("admin-b")
    ).status_code == 201
    assert producer.routing_keys() == ["notification.worker_duplicate", "notification.worker_exit_confirmed"]


def test_null_priority_defaults_to_medium(client, people, gloves):
    created = client.post(
        "/api/v1/transfers",
        json={"stock_item_id": gloves.id, "to_ferme_id": "B", "quantity": 1, "priority": None},
        headers=headers("admin-a"),
    )

    assert created.status_code == 201
    assert created.json()["priority"] == "medium"
