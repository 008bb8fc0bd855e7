"""HTTP surface: routing, validation and error mapping."""
from decimal import Decimal

from payout_ledger.services.paypal_payout_service import DisbursementFailure


TRANSACTION = {
    "txn_id": "txn_1",
    "order_id": "order_1",
    "occurred_at": "2024-05-03T12:00:00Z",
    "line_items": [{"id": "oitem_1", "actual_price": 2345, "store_id": "store_1"}],
}


async def record_and_run(client):
    response = await client.post("/api/v1/transactions", json=TRANSACTION)
    assert response.status_code == 201
    response = await client.post(
        "/api/v1/payout-methods",
        json={"payee_id": "store_1", "payout_type": "paypal", "payout_email": "store_1@example.com"},
    )
    assert response.status_code == 200
    response = await client.post(
        "/api/v1/payouts", json={"year": 2024, "month": 5, "approver_id": "approver_a"}
    )
    assert response.status_code == 201
    return response.json()


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"


async def test_record_transaction(client):
    response = await client.post("/api/v1/transactions", json=TRANSACTION)

    assert response.status_code == 201
    body = response.json()
    assert body["transaction"]["subtotal"] == 2345
    amounts = {p["payee_type"]: p["amount"] for p in body["payout_items"]}
    assert amounts == {"STORE": 1880, "PLATFORM": 351}


async def test_transaction_without_line_items_is_rejected(client):
    response = await client.post("/api/v1/transactions", json={**TRANSACTION, "line_items": []})
    assert response.status_code == 422


async def test_run_sign_and_approve(client, fake_processor):
    run = await record_and_run(client)
    payout, = run["payouts"]
    assert payout["amount"] == 1880
    assert payout["approver_ids"] == ["approver_a"]
    assert [p["payee_id"] for p in run["missing_payout_method"]] == ["gm-platform"]

    response = await client.post(
        "/api/v1/payouts/approve", json={"payout_ids": [payout["id"]], "approver_id": "approver_b"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["payout_batch_id"] == "BATCH-1"
    assert [p["status"] for p in body["reconciled"]] == ["PAID"]
    assert fake_processor.batches == [[payout["id"]]]

    response = await client.get("/api/v1/payouts", params={"year": 2024, "month": 5, "status": "paid"})
    assert [p["id"] for p in response.json()] == [payout["id"]]

    response = await client.get("/api/v1/payouts/aggregates", params={"year": 2024, "month": 5})
    assert response.json()["amount_total"] == 1880
    assert response.json()["count"] == 1


async def test_sign_only_moves_to_processing(client, fake_processor):
    payout, = (await record_and_run(client))["payouts"]

    response = await client.post(
        "/api/v1/payouts/sign", json={"payout_ids": [payout["id"]], "approver_id": "approver_b"}
    )

    assert response.status_code == 200
    assert [p["status"] for p in response.json()["advanced"]] == ["PROCESSING"]
    assert fake_processor.batches == []

    response = await client.post(
        "/api/v1/payouts/finalize",
        json={"advanced_payout_ids": [payout["id"]], "payout_batch_id": "BATCH-7"},
    )
    assert response.status_code == 200
    assert response.json()[0]["payout_batch_id"] == "BATCH-7"


async def test_insufficient_funds_maps_to_402(client, fake_processor):
    payout, = (await record_and_run(client))["payouts"]
    fake_processor.error = DisbursementFailure("INSUFFICIENT_FUNDS", "Sender does not have sufficient funds.", 422)

    response = await client.post(
        "/api/v1/payouts/approve", json={"payout_ids": [payout["id"]], "approver_id": "approver_b"}
    )

    assert response.status_code == 402
    assert response.json()["detail"]["retryable"] is True

    response = await client.get(
        "/api/v1/payouts", params={"year": 2024, "month": 5, "status": "PENDING_APPROVAL"}
    )
    assert [p["approver_ids"] for p in response.json()] == [["approver_a"]]


async def test_validation_error_maps_to_400(client, fake_processor):
    payout, = (await record_and_run(client))["payouts"]
    fake_processor.error = DisbursementFailure("VALIDATION_ERROR", "Invalid receiver", 400)

    response = await client.post(
        "/api/v1/payouts/approve", json={"payout_ids": [payout["id"]], "approver_id": "approver_b"}
    )
    assert response.status_code == 400


async def test_unknown_payout_is_404(client):
    response = await client.post(
        "/api/v1/payouts/sign", json={"payout_ids": ["payout_missing"], "approver_id": "approver_b"}
    )
    assert response.status_code == 404


async def test_finalize_before_approval_is_409(client):
    payout, = (await record_and_run(client))["payouts"]
    response = await client.post(
        "/api/v1/payouts/finalize",
        json={"advanced_payout_ids": [payout["id"]], "payout_batch_id": "BATCH-7"},
    )
    assert response.status_code == 409


async def test_invalid_period(client):
    response = await client.get("/api/v1/payouts", params={"year": 2024, "month": 13})
    assert response.status_code == 400


async def test_unknown_status_filter(client):
    response = await client.get("/api/v1/payouts", params={"year": 2024, "month": 5, "status": "LOST"})
    assert response.status_code == 422


async def test_refund_twice_is_409(client):
    await client.post("/api/v1/transactions", json=TRANSACTION)
    refund = {
        "order_id": "order_1",
        "order_item_ids": ["oitem_1"],
        "refund_id": "re_1",
        "refund_txn_id": "txn_refund_1",
    }

    response = await client.post("/api/v1/refunds", json=refund)
    assert response.status_code == 201
    assert sum(p["amount"] for p in response.json()["refund_items"]) == -2231

    response = await client.post(
        "/api/v1/refunds", json={**refund, "refund_id": "re_2", "refund_txn_id": "txn_refund_2"}
    )
    assert response.status_code == 409


async def test_payout_splits(client):
    response = await client.post(
        "/api/v1/payout-splits/seller-affiliate",
        json={"store_id": "store_1", "affiliate_id": "aff_seller_1", "rate": "0.1"},
    )
    assert response.status_code == 201
    assert response.json()["seller_policy"]["referrer_policy_id"] == response.json()["affiliate_policy"]["id"]

    response = await client.post(
        "/api/v1/payout-splits",
        json={"payee_id": "aff_buyer_1", "role": "buyer_affiliate", "rate": "0.3"},
    )
    assert response.status_code == 201

    response = await client.get("/api/v1/payout-splits", params={"payee_id": "aff_buyer_1"})
    policy, = response.json()
    assert Decimal(str(policy["rate"])) == Decimal("0.3")


async def test_out_of_range_rate_is_rejected(client):
    response = await client.post(
        "/api/v1/payout-splits",
        json={"payee_id": "aff_buyer_1", "role": "BUYER_AFFILIATE", "rate": "1.5"},
    )
    assert response.status_code == 422
