"""Token ledger endpoint tests."""

from __future__ import annotations

import pytest

from tests.helpers import ALICE_ID

pytestmark = pytest.mark.unit


async def _register(client, user_id: str = ALICE_ID, initial_balance: int = 0):
    response = await client.post(
        "/users", json={"user_id": user_id, "initial_balance": initial_balance}
    )
    assert response.status_code == 201, response.text
    return response.json()


async def test_create_user(client):
    """Registration returns the starting balance."""
    body = await _register(client, initial_balance=100)
    assert body["user_id"] == ALICE_ID
    assert body["token_balance"] == 100
    assert body["created_at"].endswith("Z")


async def test_create_user_twice(client):
    """User IDs are unique."""
    await _register(client)
    response = await client.post("/users", json={"user_id": ALICE_ID})
    assert response.status_code == 409
    assert response.json()["error"] == "USER_EXISTS"


@pytest.mark.parametrize(
    "body",
    [{}, {"user_id": ""}, {"user_id": 42}],
)
async def test_create_user_requires_user_id(client, body):
    """user_id must be a non-empty string."""
    response = await client.post("/users", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_PAYLOAD"


async def test_create_user_negative_balance(client):
    """Starting balances cannot be negative."""
    response = await client.post("/users", json={"user_id": ALICE_ID, "initial_balance": -1})
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_AMOUNT"


async def test_balance_unknown_user(client):
    """Unknown users are 404."""
    response = await client.get("/users/u-ghost/balance")
    assert response.status_code == 404
    assert response.json()["error"] == "USER_NOT_FOUND"


async def test_award_and_deduct(client):
    """Mutations return the new balance."""
    await _register(client, initial_balance=10)

    award = await client.post(
        f"/users/{ALICE_ID}/award", json={"amount": 15, "reason": "bonus"}
    )
    assert award.status_code == 200
    assert award.json() == {"user_id": ALICE_ID, "token_balance": 25}

    deduct = await client.post(
        f"/users/{ALICE_ID}/deduct", json={"amount": 5, "reason": "purchase"}
    )
    assert deduct.status_code == 200
    assert deduct.json()["token_balance"] == 20


async def test_deduct_more_than_balance(client):
    """Overdrafts are refused with the current balance in details."""
    await _register(client, initial_balance=10)

    response = await client.post(
        f"/users/{ALICE_ID}/deduct", json={"amount": 11, "reason": "purchase"}
    )
    assert response.status_code == 402
    body = response.json()
    assert body["error"] == "INSUFFICIENT_BALANCE"
    assert body["details"] == {"balance": 10, "required": 11}

    balance = await client.get(f"/users/{ALICE_ID}/balance")
    assert balance.json()["token_balance"] == 10


@pytest.mark.parametrize("amount", [0, -5, "10", 1.5, True])
async def test_mutation_rejects_bad_amounts(client, amount):
    """Amounts are strictly positive integers."""
    await _register(client, initial_balance=10)
    response = await client.post(
        f"/users/{ALICE_ID}/award", json={"amount": amount, "reason": "bonus"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_AMOUNT"


async def test_mutation_requires_reason(client):
    """Every ledger entry carries a reason."""
    await _register(client)
    response = await client.post(f"/users/{ALICE_ID}/award", json={"amount": 5})
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_PAYLOAD"


async def test_mutation_wrong_content_type(client):
    """Ledger mutations take JSON only."""
    await _register(client)
    response = await client.post(
        f"/users/{ALICE_ID}/award",
        content=b"amount=5",
        headers={"Content-Type": "text/plain"},
    )
    assert response.status_code == 415


async def test_transactions_newest_first(client):
    """History is ordered newest first and honours limit."""
    await _register(client, initial_balance=10)
    await client.post(f"/users/{ALICE_ID}/award", json={"amount": 5, "reason": "first"})
    await client.post(f"/users/{ALICE_ID}/deduct", json={"amount": 3, "reason": "second"})

    response = await client.get(f"/users/{ALICE_ID}/transactions")
    assert response.status_code == 200
    rows = response.json()["transactions"]
    assert [row["reason"] for row in rows] == ["second", "first", "initial_balance"]
    assert [row["amount"] for row in rows] == [-3, 5, 10]
    assert [row["balance"] for row in rows] == [12, 15, 10]

    limited = await client.get(f"/users/{ALICE_ID}/transactions", params={"limit": 1})
    assert len(limited.json()["transactions"]) == 1


@pytest.mark.parametrize("limit", ["0", "501", "many"])
async def test_transactions_bad_limit(client, limit):
    """limit must be within the configured range."""
    await _register(client)
    response = await client.get(f"/users/{ALICE_ID}/transactions", params={"limit": limit})
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_PAYLOAD"


async def test_audit_reports_consistent_chain(client):
    """A clean history replays to the live balance."""
    await _register(client, initial_balance=10)
    await client.post(f"/users/{ALICE_ID}/award", json={"amount": 7, "reason": "bonus"})

    response = await client.get(f"/users/{ALICE_ID}/audit")
    assert response.status_code == 200
    assert response.json() == {
        "user_id": ALICE_ID,
        "entries": 2,
        "total": 17,
        "balance": 17,
        "chain_intact": True,
        "first_broken_seq": None,
        "consistent": True,
    }


async def test_audit_unknown_user(client):
    """Auditing an unknown user is 404."""
    response = await client.get("/users/u-ghost/audit")
    assert response.status_code == 404
