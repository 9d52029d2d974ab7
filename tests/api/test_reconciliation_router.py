"""Tests for the reconciliation API endpoints."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from payrecon.models import PaymentActivity, ReconciliationStatus
from tests.factories import PaymentAccountFactory, PaymentActivityFactory, TransactionFactory

JAN_15 = date(2024, 1, 15)


async def _reload(db, activity_id):
    db.expire_all()
    result = await db.execute(select(PaymentActivity).where(PaymentActivity.id == activity_id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_requires_bearer_token(public_client):
    response = await public_client.get("/reconciliation/activities")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_rejects_token_for_unknown_user(public_client):
    from payrecon.security import create_access_token

    token = create_access_token(uuid4())
    response = await public_client.get(
        "/reconciliation/stats", headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"] == {"database": True}
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_list_and_get_activity(client, db, test_user, other_user):
    mine = await PaymentActivityFactory.create_async(db, user_id=test_user.id, merchant_name="Ikea")
    await PaymentActivityFactory.create_async(db, user_id=other_user.id, merchant_name="Ikea")
    await db.commit()

    response = await client.get("/reconciliation/activities", params={"search": "ikea"})
    assert response.status_code == 200
    data = response.json()
    assert (data["total"], data["limit"], data["offset"]) == (1, 50, 0)
    assert data["items"][0]["id"] == str(mine.id)
    assert data["items"][0]["reconciliation_status"] == "pending"

    response = await client.get(f"/reconciliation/{mine.id}")
    assert response.status_code == 200
    assert response.json()["external_id"] == mine.external_id

    response = await client.get(f"/reconciliation/{uuid4()}")
    assert response.status_code == 404
    assert response.json()["detail"] == "Payment activity not found"


@pytest.mark.asyncio
async def test_list_rejects_inverted_date_range(client):
    response = await client.get(
        "/reconciliation/activities",
        params={"start_date": "2024-02-01", "end_date": "2024-01-01"},
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_rejects_oversized_page(client):
    response = await client.get("/reconciliation/activities", params={"limit": 500})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_candidates_endpoint(client, db, test_user):
    activity = await PaymentActivityFactory.create_async(
        db, user_id=test_user.id, amount=Decimal("-45.00"), execution_date=JAN_15, merchant_name="Amazon"
    )
    exact = await TransactionFactory.create_async(
        db, user_id=test_user.id, amount=Decimal("-45.00"), execution_date=JAN_15, description="AMAZON.IT ORDER 123"
    )
    near = await TransactionFactory.create_async(
        db,
        user_id=test_user.id,
        amount=Decimal("-46.50"),
        execution_date=JAN_15 + timedelta(days=3),
        description="AMZ MKTPLACE",
    )
    await db.commit()

    response = await client.get(f"/reconciliation/{activity.id}/candidates")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["scores"] == {str(exact.id): 100, str(near.id): 20}
    assert data["fallback_used"] is False
    assert data["high_confidence_threshold"] == 70
    top = data["items"][0]
    assert top["transaction"]["id"] == str(exact.id)
    assert top["breakdown"] == {"amount": 50, "date": 30, "description": 20, "total": 100}
    assert top["confidence_level"] == "high"
    assert top["high_confidence"] is True
    assert data["items"][1]["confidence_level"] == "low"

    response = await client.get(
        f"/reconciliation/{activity.id}/candidates",
        params={"date_window_days": 1},
    )
    assert [item["transaction"]["id"] for item in response.json()["items"]] == [str(exact.id)]


@pytest.mark.asyncio
async def test_candidates_fallback(client, db, test_user):
    activity = await PaymentActivityFactory.create_async(
        db, user_id=test_user.id, amount=Decimal("500.00"), execution_date=JAN_15
    )
    txn = await TransactionFactory.create_async(
        db, user_id=test_user.id, amount=Decimal("20.00"), execution_date=JAN_15 + timedelta(days=10)
    )
    await db.commit()

    response = await client.get(f"/reconciliation/{activity.id}/candidates")
    assert response.json()["items"] == []

    response = await client.get(f"/reconciliation/{activity.id}/candidates", params={"fallback": "true"})
    data = response.json()
    assert data["fallback_used"] is True
    assert [item["transaction"]["id"] for item in data["items"]] == [str(txn.id)]


@pytest.mark.asyncio
async def test_confirm_unmatch_fail_flow(client, db, test_user):
    activity = await PaymentActivityFactory.create_async(db, user_id=test_user.id)
    txn = await TransactionFactory.create_async(db, user_id=test_user.id)
    await db.commit()

    response = await client.post(
        f"/reconciliation/{activity.id}/confirm",
        json={"transactionId": str(txn.id), "expectedVersion": 1},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["reconciliation_status"] == "manual"
    assert data["reconciled_transaction_id"] == str(txn.id)
    assert data["reconciliation_confidence"] is None
    assert data["version"] == 2

    response = await client.post(f"/reconciliation/{activity.id}/fail", json={"reason": "duplicate"})
    assert response.status_code == 409

    response = await client.post(f"/reconciliation/{activity.id}/unmatch")
    assert response.status_code == 200
    data = response.json()
    assert data["reconciliation_status"] == "pending"
    assert data["reconciled_transaction_id"] is None
    assert data["reconciliation_confidence"] == 0

    response = await client.post(f"/reconciliation/{activity.id}/fail", json={"reason": "duplicate"})
    assert response.status_code == 200
    assert response.json()["reconciliation_failure_reason"] == "duplicate"

    stored = await _reload(db, activity.id)
    assert stored.reconciliation_status == ReconciliationStatus.FAILED
    assert stored.version == 4


@pytest.mark.asyncio
async def test_confirm_with_stale_version(client, db, test_user):
    activity = await PaymentActivityFactory.create_async(db, user_id=test_user.id)
    txn = await TransactionFactory.create_async(db, user_id=test_user.id)
    await db.commit()

    response = await client.post(
        f"/reconciliation/{activity.id}/confirm",
        json={"transaction_id": str(txn.id), "expected_version": 3},
    )

    assert response.status_code == 409
    assert "refresh and retry" in response.json()["detail"]
    stored = await _reload(db, activity.id)
    assert stored.reconciliation_status == ReconciliationStatus.PENDING


@pytest.mark.asyncio
async def test_confirm_error_mapping(client, db, test_user, other_user):
    account = await PaymentAccountFactory.create_async(db, user_id=test_user.id, linked_bank_account="ACC-1")
    activity = await PaymentActivityFactory.create_async(db, user_id=test_user.id, payment_account_id=account.id)
    foreign = await TransactionFactory.create_async(db, user_id=other_user.id)
    wrong_bank = await TransactionFactory.create_async(db, user_id=test_user.id, bank_account="ACC-2")
    await db.commit()

    response = await client.post(f"/reconciliation/{activity.id}/confirm", json={"transaction_id": str(uuid4())})
    assert response.status_code == 404
    assert response.json()["detail"] == "Transaction not found"

    response = await client.post(f"/reconciliation/{activity.id}/confirm", json={"transaction_id": str(foreign.id)})
    assert response.status_code == 403

    response = await client.post(
        f"/reconciliation/{activity.id}/confirm", json={"transaction_id": str(wrong_bank.id)}
    )
    assert response.status_code == 403

    response = await client.post(f"/reconciliation/{activity.id}/confirm", json={})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_import_batch_endpoint(client, db, test_user):
    txn = await TransactionFactory.create_async(
        db,
        user_id=test_user.id,
        amount=Decimal("50.00"),
        execution_date=JAN_15 + timedelta(days=1),
        description="MUSIC SUBSCRIPTION",
    )
    await db.commit()

    payload = {
        "activities": [
            {
                "externalId": "PP-100",
                "merchantName": "Spotify",
                "amount": "50.00",
                "executionDate": "2024-01-15",
            },
            {
                "externalId": "PP-101",
                "merchantName": "Unknown",
                "amount": "999.00",
                "executionDate": "2024-01-15",
            },
        ],
        "autoAcceptThreshold": 70,
    }
    response = await client.post("/reconciliation/import-batch", json=payload)

    assert response.status_code == 200
    data = response.json()
    assert (data["accepted"], data["left_pending"], data["skipped"]) == (1, 1, 0)
    accepted = data["items"][0]
    assert accepted["external_id"] == "PP-100"
    assert accepted["outcome"] == "accepted"
    assert accepted["score"] == 70
    assert accepted["transaction_id"] == str(txn.id)
    assert data["items"][1]["outcome"] == "left-pending"

    # Re-importing the same batch skips what is already reconciled
    response = await client.post("/reconciliation/import-batch", json=payload)
    data = response.json()
    assert [item["outcome"] for item in data["items"]] == ["skipped", "left-pending"]

    response = await client.get("/reconciliation/stats")
    assert response.json() == {
        "total": 2,
        "pending": 1,
        "reconciled": 1,
        "manual": 0,
        "failed": 0,
        "reconciled_percentage": 50,
        "pending_percentage": 50,
        "failed_percentage": 0,
    }


@pytest.mark.asyncio
async def test_import_batch_with_unknown_transaction_ids(client, db, test_user):
    payload = {
        "activities": [{"external_id": "PP-200", "amount": "10.00", "execution_date": "2024-01-15"}],
        "transaction_ids": [str(uuid4())],
    }

    response = await client.post("/reconciliation/import-batch", json=payload)

    assert response.status_code == 404
    result = await db.execute(select(PaymentActivity).where(PaymentActivity.user_id == test_user.id))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_import_batch_rejects_duplicate_external_ids(client, db, test_user):
    payload = {
        "activities": [
            {"externalId": "PP-1", "amount": "10.00", "executionDate": "2024-01-15"},
            {"externalId": "PP-1", "amount": "99.00", "executionDate": "2024-01-15"},
        ]
    }

    response = await client.post("/reconciliation/import-batch", json=payload)

    assert response.status_code == 422
    assert "PP-1" in str(response.json()["detail"])
    result = await db.execute(select(PaymentActivity).where(PaymentActivity.user_id == test_user.id))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_import_batch_validates_threshold(client):
    payload = {
        "activities": [{"external_id": "PP-300", "amount": "10.00", "execution_date": "2024-01-15"}],
        "auto_accept_threshold": 150,
    }

    response = await client.post("/reconciliation/import-batch", json=payload)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_batch_confirm_is_all_or_nothing(client, db, test_user):
    first = await PaymentActivityFactory.create_async(db, user_id=test_user.id)
    second = await PaymentActivityFactory.create_async(db, user_id=test_user.id)
    txn = await TransactionFactory.create_async(db, user_id=test_user.id)
    await db.commit()
    first_id, second_id, txn_id = first.id, second.id, str(txn.id)

    response = await client.post(
        "/reconciliation/batch-confirm",
        json={
            "items": [
                {"activity_id": str(first_id), "transaction_id": txn_id},
                {"activity_id": str(second_id), "transaction_id": str(uuid4())},
            ]
        },
    )
    assert response.status_code == 404
    assert (await _reload(db, first_id)).reconciliation_status == ReconciliationStatus.PENDING

    response = await client.post(
        "/reconciliation/batch-confirm",
        json={
            "items": [
                {"activity_id": str(first_id), "transaction_id": txn_id},
                {"activity_id": str(second_id), "transaction_id": txn_id},
            ]
        },
    )
    assert response.status_code == 200
    assert [item["reconciliation_status"] for item in response.json()] == ["manual", "manual"]
    assert str((await _reload(db, second_id)).reconciled_transaction_id) == txn_id


@pytest.mark.asyncio
async def test_rejects_expired_token(public_client, test_user):
    from payrecon.security import create_access_token, user_id_from_token

    token = create_access_token(test_user.id, expires_delta=timedelta(seconds=-5))
    assert user_id_from_token(token) is None

    response = await public_client.get("/reconciliation/stats", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
