"""
Walk one batch through the whole chain against a running API.
Run:
    python scripts/simulate_chain.py [base_url]
"""
import sys

import requests

API = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"


def cascade(action, batch_id, details):
    rr = requests.post(f"{API}/api/batch-cascade", json={
        "action": action,
        "batchId": batch_id,
        "details": details,
    })
    print(action, batch_id, rr.status_code, rr.text)
    rr.raise_for_status()
    return rr.json()


def main():
    r = requests.get(f"{API}/api/seed")
    print("Seed:", r.json())

    cascade("createLot", "LOT1", {
        "constituentBatchIds": ["F001", "F002"],
        "newOwnerId": "aggregator-1",
        "productName": "Herb Mix",
        "quantity": 100,
        "unit": "kg",
    })
    cascade("processLot", "PROC1", {
        "parentLotId": "LOT1",
        "newOwnerId": "processor-1",
        "processType": "drying",
        "outputQuantity": 80,
        "outputUnit": "kg",
    })
    cascade("formulateProduct", "FP1", {
        "inputBatchIds": ["PROC1"],
        "newOwnerId": "manufacturer-1",
        "productName": "Extract",
        "finalQuantity": 80,
        "finalUnit": "kg",
    })

    rr = requests.post(f"{API}/api/batches/FP1/transfer", json={
        "newOwnerId": "distributor-1",
        "destinationLocation": "Pune Warehouse",
        "actorId": "manufacturer-1",
        "details": {"note": "Departed Manufacturing Unit"},
    })
    print("transfer:", rr.status_code, rr.text)

    cascade("recall", "LOT1", {"reason": "contamination", "actorId": "aggregator-1"})

    for batch_id in ("F001", "F002", "LOT1", "PROC1", "FP1"):
        b = requests.get(f"{API}/api/batches/{batch_id}").json()
        print(batch_id, b["status"])

    rr = requests.get(f"{API}/api/users/distributor-1/notifications")
    print("notifications:", rr.json())


if __name__ == "__main__":
    main()
