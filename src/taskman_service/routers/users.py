"""Token ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from taskman_service.core.exceptions import ServiceError
from taskman_service.core.state import get_app_state
from taskman_service.logging import get_logger
from taskman_service.routers.validation import extract_string, parse_int_query, parse_json_body
from taskman_service.schemas import (
    BalanceResponse,
    LedgerAuditResponse,
    TransactionListResponse,
    TransactionResponse,
    UserResponse,
)
from taskman_service.services.token_ledger import DuplicateUserError

router = APIRouter()


# === POST /users: Register a ledger user ===


@router.post("/users", status_code=201, response_model=UserResponse)
async def create_user(request: Request) -> JSONResponse:
    """Register a user with an optional starting balance."""
    data = parse_json_body(await request.body())
    user_id = extract_string(data, "user_id")
    initial_balance = data.get("initial_balance", 0)

    ledger = get_app_state().require_ledger()
    try:
        result = await run_in_threadpool(ledger.create_user, user_id, initial_balance)
    except DuplicateUserError as exc:
        raise ServiceError("USER_EXISTS", "User already exists", 409, {}) from exc

    return JSONResponse(status_code=201, content=result)


# === GET /users/{user_id}/balance ===


@router.get("/users/{user_id}/balance", response_model=BalanceResponse)
async def get_balance(user_id: str) -> BalanceResponse:
    """Current token balance."""
    ledger = get_app_state().require_ledger()
    balance = await run_in_threadpool(ledger.get_balance, user_id)
    return BalanceResponse(user_id=user_id, token_balance=balance)


# === GET /users/{user_id}/transactions: newest first ===


@router.get("/users/{user_id}/transactions", response_model=TransactionListResponse)
async def get_transactions(user_id: str, request: Request) -> TransactionListResponse:
    """Transaction history, newest first."""
    state = get_app_state()
    limit = parse_int_query(request, "limit", state.history_default_limit)
    if limit is None or limit < 1 or limit > state.history_max_limit:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"limit must be between 1 and {state.history_max_limit}",
            400,
            {},
        )

    ledger = state.require_ledger()
    rows = await run_in_threadpool(ledger.get_history, user_id, limit)
    return TransactionListResponse(
        user_id=user_id,
        transactions=[TransactionResponse.model_validate(row) for row in rows],
    )


# === GET /users/{user_id}/audit: replay the balance chain ===


@router.get("/users/{user_id}/audit", response_model=LedgerAuditResponse)
async def audit_user(user_id: str) -> LedgerAuditResponse:
    """Replay the user's transaction chain against the live balance."""
    ledger = get_app_state().require_ledger()
    audit = await run_in_threadpool(ledger.verify_history, user_id)
    return LedgerAuditResponse.model_validate(audit.to_dict())


# === POST /users/{user_id}/award and /deduct ===


async def _mutate(request: Request, user_id: str, operation: str) -> BalanceResponse:
    data = parse_json_body(await request.body())
    if "amount" not in data:
        raise ServiceError("INVALID_PAYLOAD", "Missing required field: amount", 400, {})
    reason = extract_string(data, "reason")

    ledger = get_app_state().require_ledger()
    mutate = ledger.award if operation == "award" else ledger.deduct
    balance = await run_in_threadpool(mutate, user_id, data["amount"], reason)
    get_logger(__name__).info(
        "Ledger mutation via API",
        extra={"user_id": user_id, "operation": operation, "reason": reason},
    )
    return BalanceResponse(user_id=user_id, token_balance=balance)


@router.post("/users/{user_id}/award", response_model=BalanceResponse)
async def award_tokens(user_id: str, request: Request) -> BalanceResponse:
    """Credit tokens to a user."""
    return await _mutate(request, user_id, "award")


@router.post("/users/{user_id}/deduct", response_model=BalanceResponse)
async def deduct_tokens(user_id: str, request: Request) -> BalanceResponse:
    """Debit tokens from a user. Fails rather than going negative."""
    return await _mutate(request, user_id, "deduct")
