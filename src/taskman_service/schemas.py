"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class SweeperStats(BaseModel):
    """Expiration sweeper counters."""

    model_config = ConfigDict(extra="forbid")
    running: bool
    interval_seconds: float
    last_released_count: int
    total_released: int
    sweeps_completed: int
    sweeps_failed: int
    last_sweep_at: str | None


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    database: Literal["ok", "unavailable"]
    total_tasks: int
    tasks_by_status: dict[str, int]
    sweeper: SweeperStats | None


class UserResponse(BaseModel):
    """Response model for POST /users."""

    model_config = ConfigDict(extra="forbid")
    user_id: str
    token_balance: int
    created_at: str


class BalanceResponse(BaseModel):
    """Response model for balance reads and ledger mutations."""

    model_config = ConfigDict(extra="forbid")
    user_id: str
    token_balance: int


class TransactionResponse(BaseModel):
    """A single ledger entry."""

    model_config = ConfigDict(extra="forbid")
    seq: int
    tx_id: str
    user_id: str
    amount: int
    balance: int
    type: Literal["award", "deduct"]
    reason: str
    created_at: str


class TransactionListResponse(BaseModel):
    """Response model for GET /users/{user_id}/transactions."""

    model_config = ConfigDict(extra="forbid")
    user_id: str
    transactions: list[TransactionResponse]


class LedgerAuditResponse(BaseModel):
    """Response model for GET /users/{user_id}/audit."""

    model_config = ConfigDict(extra="forbid")
    user_id: str
    entries: int
    total: int
    balance: int
    chain_intact: bool
    first_broken_seq: int | None
    consistent: bool
