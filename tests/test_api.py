from datetime import datetime, timedelta, timezone

import pytest


def cascade(client, action, batch_id, details):
    return client.post("/api/batch-cascade", json={
        "action": action,
        "batchId": batch_id,
        "details": details,
    })


@pytest.fixture
def chain(client):
    assert client.get("/api/seed").json()["status"] == "seeded"
    assert cascade(client, "createLot", "LOT1", {
        "constituentBatchIds": ["F001", "F002"],
        "newOwnerId": "aggregator-1",
        "productName": "Herb Mix",
        "quantity": 100,
        "unit": "kg",
    }).status_code == 200
    assert cascade(client, "processLot", "PROC1", {
        "parentLotId": "LOT1",
        "newOwnerId": "processor-1",
        "processType": "drying",
        "outputQuantity": 80,
        "outputUnit": "kg",
    }).status_code == 200
    assert cascade(client, "formulateProduct", "FP1", {
        "inputBatchIds": ["PROC1"],
        "newOwnerId": "manufacturer-1",
        "productName": "Extract",
        "finalQuantity": 80,
        "finalUnit": "kg",
    }).status_code == 200
    return client


def status(client, batch_id):
    return client.get(f"/api/batches/{batch_id}").json()["status"]


def parse_ts(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_seed_is_idempotent(client):
    assert client.get("/api/seed").json()["status"] == "seeded"
    assert client.get("/api/seed").json() == {"status": "exists", "batch_ids": ["F001", "F002"]}


def test_create_lot_response(client):
    client.get("/api/seed")

    r = cascade(client, "createLot", "LOT1", {
        "constituentBatchIds": ["F001", "F002"],
        "newOwnerId": "aggregator-1",
        "productName": "Herb Mix",
    })

    assert r.status_code == 200
    assert r.json() == {
        "success": True,
        "action": "createLot",
        "batchId": "LOT1",
        "affectedBatchIds": ["F001", "F002"],
        "notifiedUsers": 0,
    }
    lot = client.get("/api/batches/LOT1").json()
    assert lot["quantity"] == 100
    assert lot["unit"] == "kg"
    assert lot["sourceLocation"] == "Aggregation Center"


def test_chain_statuses_and_qr_payload(chain):
    assert status(chain, "F001") == "consolidated"
    assert status(chain, "LOT1") == "processing"
    assert status(chain, "PROC1") == "finalized"
    fp = chain.get("/api/batches/FP1").json()
    assert fp["status"] == "finalized"
    assert fp["type"] == "final_product"
    assert fp["qrPayload"]["batchId"] == "FP1"
    assert fp["qrPayload"]["manufacturerId"] == "manufacturer-1"


def test_direct_recall_over_http(chain):
    r = cascade(chain, "recall", "LOT1", {
        "reason": "contamination", "actorId": "aggregator-1", "scope": "direct",
    })

    assert r.status_code == 200
    assert sorted(r.json()["affectedBatchIds"]) == ["F001", "F002", "PROC1"]
    assert r.json()["notifiedUsers"] == 5
    for batch_id in ("LOT1", "F001", "F002", "PROC1"):
        assert status(chain, batch_id) == "recalled"
    assert status(chain, "FP1") == "finalized"


def test_transitive_recall_and_notifications(chain):
    r = cascade(chain, "recall", "F001", {"reason": "heavy metals", "actorId": "aggregator-1"})

    assert r.status_code == 200
    assert status(chain, "FP1") == "recalled"
    notes = chain.get("/api/users/distributor-1/notifications").json()
    assert len(notes) == 1
    assert notes[0]["title"] == "Batch Recall Alert"
    assert notes[0]["batchId"] == "F001"
    assert "heavy metals" in notes[0]["message"]
    assert notes[0]["isRead"] is False


def test_history_endpoint(chain):
    cascade(chain, "recall", "LOT1", {"reason": "contamination", "actorId": "aggregator-1"})

    body = chain.get("/api/batches/LOT1/history").json()
    assert body["verified"] is True
    assert [e["eventType"] for e in body["entries"]] == ["BatchCreated", "Recall"]
    assert body["entries"][1]["prevHash"] == body["entries"][0]["hash"]

    desc = chain.get("/api/batches/LOT1/history", params={"order": "desc"}).json()
    assert [e["eventType"] for e in desc["entries"]] == ["Recall", "BatchCreated"]


def test_lineage_endpoint(chain):
    body = chain.get("/api/batches/PROC1/lineage").json()

    assert body["upstream"] == ["F001", "F002", "LOT1"]
    assert body["downstream"] == ["FP1"]
    links = {(link["parentBatchId"], link["childBatchId"], link["linkType"]) for link in body["links"]}
    assert links == {("PROC1", "LOT1", "processing"), ("FP1", "PROC1", "formulation")}


def test_qrcode(chain):
    r = chain.get("/api/batches/FP1/qrcode")
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"

    assert chain.get("/api/batches/LOT1/qrcode").status_code == 404


def test_duplicate_id_is_conflict(chain):
    r = cascade(chain, "processLot", "PROC1", {
        "parentLotId": "LOT1",
        "newOwnerId": "processor-1",
        "processType": "drying",
        "outputQuantity": 10,
        "outputUnit": "kg",
    })

    assert r.status_code == 409
    assert r.json()["success"] is False
    assert r.json()["error"]["code"] == "DUPLICATE_KEY"


def test_missing_batch_is_not_found(client):
    r = cascade(client, "processLot", "PROC1", {
        "parentLotId": "LOT404",
        "newOwnerId": "processor-1",
        "processType": "drying",
        "outputQuantity": 10,
        "outputUnit": "kg",
    })

    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"
    assert client.get("/api/batches/PROC1").status_code == 404


def test_invalid_transition_is_conflict(chain):
    cascade(chain, "recall", "PROC1", {"reason": "mould", "actorId": "processor-1"})

    r = cascade(chain, "formulateProduct", "FP2", {
        "inputBatchIds": ["PROC1"],
        "newOwnerId": "manufacturer-1",
        "productName": "Extract",
        "finalQuantity": 10,
        "finalUnit": "kg",
    })

    assert r.status_code == 409
    assert r.json()["error"]["code"] == "INVALID_TRANSITION"
    assert r.json()["error"]["details"]["status"] == "recalled"


def test_unknown_action_and_bad_details(client):
    r = cascade(client, "explode", "X1", {})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    r = cascade(client, "recall", "X1", {"actorId": "a"})
    assert r.status_code == 422
    assert r.json()["error"]["details"]["errors"][0]["loc"] == ["reason"]


def test_malformed_request_body(client):
    r = client.post("/api/batch-cascade", json={"action": "recall"})

    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


def test_transfer_and_receive(chain):
    r = chain.post("/api/batches/FP1/transfer", json={
        "newOwnerId": "distributor-1",
        "destinationLocation": "Pune Warehouse",
        "actorId": "manufacturer-1",
        "details": {"note": "dispatch from plant"},
    })
    assert r.status_code == 200
    assert r.json()["ownerId"] == "distributor-1"
    assert r.json()["status"] == "in_transit"

    r = chain.post("/api/batches/FP1/status", json={"status": "received", "actorId": "distributor-1"})
    assert r.json()["status"] == "received"

    r = chain.post("/api/batches/FP1/status", json={"status": "recalled", "actorId": "distributor-1"})
    assert r.status_code == 422

    events = [e["eventType"] for e in chain.get("/api/batches/FP1/history").json()["entries"]]
    assert events == ["Formulation", "CustodyTransfer"]


def test_listing_by_role_and_filters(chain):
    agg = chain.get("/api/batches", params={"role": "aggregator", "user_id": "aggregator-1"}).json()
    assert sorted(b["batchId"] for b in agg["items"]) == ["F001", "F002", "LOT1"]
    assert agg["total"] == 3

    manu = chain.get("/api/batches", params={"role": "manufacturer", "user_id": "manufacturer-1"}).json()
    assert sorted(b["batchId"] for b in manu["items"]) == ["FP1", "PROC1"]

    finals = chain.get("/api/batches", params={"type": "final_product"}).json()
    assert [b["batchId"] for b in finals["items"]] == ["FP1"]

    page = chain.get("/api/batches", params={"page": 2, "page_size": 2}).json()
    assert page["total"] == 5
    assert len(page["items"]) == 2

    r = chain.get("/api/batches", params={"role": "processor"})
    assert r.status_code == 422


def test_listing_updated_since(chain):
    since = chain.get("/api/batches/FP1").json()["updatedAt"]
    cascade(chain, "recall", "FP1", {"reason": "label error", "actorId": "manufacturer-1"})

    changed = chain.get("/api/batches", params={"updated_since": since}).json()
    assert "FP1" in {b["batchId"] for b in changed["items"]}


def test_listing_updated_since_with_offset(chain):
    ist = timezone(timedelta(hours=5, minutes=30))
    before = parse_ts(chain.get("/api/batches/FP1").json()["updatedAt"])
    cascade(chain, "recall", "FP1", {"reason": "label error", "actorId": "manufacturer-1"})

    changed = chain.get("/api/batches", params={"updated_since": before.astimezone(ist).isoformat()}).json()
    assert "FP1" in {b["batchId"] for b in changed["items"]}

    after = parse_ts(chain.get("/api/batches/FP1").json()["updatedAt"])
    assert after.utcoffset() == timedelta(0)
    later = chain.get("/api/batches", params={"updated_since": after.astimezone(ist).isoformat()}).json()
    assert "FP1" not in {b["batchId"] for b in later["items"]}


def test_raw_material_shows_farmer_details(client):
    client.get("/api/seed")

    f001 = client.get("/api/batches/F001").json()
    assert f001["farmerName"] == "Ramesh Patil"
    assert f001["farmerLocation"] == "Nashik, Maharashtra"
    assert f001["farmerPhone"] is None


def test_role_assignment(client):
    assert client.post("/api/users/roles", json={"userId": "u9", "role": "processor"}).status_code == 200
    assert client.post("/api/users/roles", json={"userId": "u9", "role": "processor"}).status_code == 200
    assert client.post("/api/users/roles", json={"userId": "u9", "role": "pirate"}).status_code == 422

    client.post("/api/batches", json={
        "batchId": "F100", "ownerId": "farmer-9", "productName": "Neem", "quantity": 3, "unit": "kg",
    })
    r = cascade(client, "recall", "F100", {"reason": "test", "actorId": "u9"})
    assert r.json()["notifiedUsers"] == 1
