"""Token ledger: balances plus an append-only transaction history."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

from taskman_service.core.exceptions import ServiceError
from taskman_service.logging import get_logger
from taskman_service.services.expiration import format_timestamp, utc_now

if TYPE_CHECKING:
    from collections.abc import Iterable

    from taskman_service.services.database import Database

logger = get_logger(__name__)

COMPOSITE_PREMIUM_PERCENT = 115


class DuplicateUserError(Exception):
    """Raised when a ledger user already exists."""


@dataclass(frozen=True)
class LedgerAudit:
    """Result of replaying one user's transaction chain."""

    user_id: str
    entries: int
    total: int
    balance: int
    chain_intact: bool
    first_broken_seq: int | None

    @property
    def consistent(self) -> bool:
        """True when the chain replays cleanly and sums to the live balance."""
        return self.chain_intact and self.total == self.balance

    def to_dict(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "entries": self.entries,
            "total": self.total,
            "balance": self.balance,
            "chain_intact": self.chain_intact,
            "first_broken_seq": self.first_broken_seq,
            "consistent": self.consistent,
        }


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ServiceError("INVALID_AMOUNT", "Amount must be a positive integer", 400, {})


class TokenLedger:
    """
    Per-user token balances.

    Every mutation updates ``users.token_balance`` and appends the matching
    ``token_transactions`` row inside one database transaction. When called
    from inside an open :meth:`Database.transaction`, the mutation joins it,
    so a caller can make a reward atomic with its own writes.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    def _new_tx_id(self) -> str:
        return f"tx-{uuid.uuid4()}"

    def create_user(self, user_id: str, initial_balance: int = 0) -> dict[str, object]:
        """
        Register a ledger user.

        A positive ``initial_balance`` is recorded as the user's first
        transaction so the history always sums to the balance.

        Raises:
            ServiceError: INVALID_AMOUNT if initial_balance < 0.
            DuplicateUserError: if the user already exists.
        """
        if (
            isinstance(initial_balance, bool)
            or not isinstance(initial_balance, int)
            or initial_balance < 0
        ):
            raise ServiceError("INVALID_AMOUNT", "Initial balance must be non-negative", 400, {})

        now = format_timestamp(utc_now())
        try:
            with self._db.transaction():
                self._db.write(
                    "INSERT INTO users (user_id, token_balance, created_at) VALUES (?, ?, ?)",
                    (user_id, initial_balance, now),
                )
                if initial_balance > 0:
                    self._append(
                        user_id,
                        initial_balance,
                        initial_balance,
                        "award",
                        "initial_balance",
                        now,
                    )
        except sqlite3.IntegrityError as exc:
            raise DuplicateUserError(f"User {user_id} already exists") from exc

        logger.info(
            "Ledger user created",
            extra={"user_id": user_id, "initial_balance": initial_balance},
        )
        return {"user_id": user_id, "token_balance": initial_balance, "created_at": now}

    def get_user(self, user_id: str) -> dict[str, object] | None:
        """Look up a user. Returns None if not found."""
        row = self._db.fetch_one(
            "SELECT user_id, token_balance, created_at FROM users WHERE user_id = ?",
            (user_id,),
        )
        if row is None:
            return None
        return {"user_id": row[0], "token_balance": row[1], "created_at": row[2]}

    def get_balance(self, user_id: str) -> int:
        """
        Current balance.

        Raises:
            ServiceError: USER_NOT_FOUND.
        """
        row = self._db.fetch_one(
            "SELECT token_balance FROM users WHERE user_id = ?", (user_id,)
        )
        if row is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
        return cast("int", row[0])

    def award(self, user_id: str, amount: int, reason: str) -> int:
        """
        Credit ``amount`` tokens and return the new balance.

        Raises:
            ServiceError: INVALID_AMOUNT, USER_NOT_FOUND.
        """
        _check_amount(amount)

        with self._db.transaction():
            updated = self._db.write(
                "UPDATE users SET token_balance = token_balance + ? WHERE user_id = ?",
                (amount, user_id),
            )
            if updated == 0:
                raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
            new_balance = self._current_balance(user_id)
            self._append(
                user_id, amount, new_balance, "award", reason, format_timestamp(utc_now())
            )

        logger.info(
            "Tokens awarded",
            extra={"user_id": user_id, "amount": amount, "balance": new_balance, "reason": reason},
        )
        return new_balance

    def deduct(self, user_id: str, amount: int, reason: str) -> int:
        """
        Debit ``amount`` tokens and return the new balance.

        The debit only applies while the balance covers it.

        Raises:
            ServiceError: INVALID_AMOUNT, USER_NOT_FOUND, INSUFFICIENT_BALANCE.
        """
        _check_amount(amount)

        with self._db.transaction():
            updated = self._db.write(
                "UPDATE users SET token_balance = token_balance - ? "
                "WHERE user_id = ? AND token_balance >= ?",
                (amount, user_id, amount),
            )
            if updated == 0:
                # Distinguish between not found and insufficient balance
                user = self.get_user(user_id)
                if user is None:
                    raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
                raise ServiceError(
                    "INSUFFICIENT_BALANCE",
                    "Insufficient token balance",
                    402,
                    {"balance": user["token_balance"], "required": amount},
                )
            new_balance = self._current_balance(user_id)
            self._append(
                user_id, -amount, new_balance, "deduct", reason, format_timestamp(utc_now())
            )

        logger.info(
            "Tokens deducted",
            extra={"user_id": user_id, "amount": amount, "balance": new_balance, "reason": reason},
        )
        return new_balance

    def get_history(self, user_id: str, limit: int) -> list[dict[str, object]]:
        """
        Most recent ``limit`` transactions, newest first.

        Raises:
            ServiceError: USER_NOT_FOUND.
        """
        if self.get_user(user_id) is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})

        rows = self._db.fetch_all(
            "SELECT seq, tx_id, amount, balance, type, reason, created_at "
            "FROM token_transactions WHERE user_id = ? ORDER BY seq DESC LIMIT ?",
            (user_id, limit),
        )
        return [
            {
                "seq": row[0],
                "tx_id": row[1],
                "user_id": user_id,
                "amount": row[2],
                "balance": row[3],
                "type": row[4],
                "reason": row[5],
                "created_at": row[6],
            }
            for row in rows
        ]

    def verify_history(self, user_id: str) -> LedgerAudit:
        """
        Replay a user's chain oldest first.

        Each entry's balance must equal the previous balance plus its
        amount, and the final total must equal the live balance.

        Raises:
            ServiceError: USER_NOT_FOUND.
        """
        with self._db.transaction():
            balance = self.get_balance(user_id)
            rows = self._db.fetch_all(
                "SELECT seq, amount, balance FROM token_transactions "
                "WHERE user_id = ? ORDER BY seq",
                (user_id,),
            )

        total = 0
        first_broken: int | None = None
        for seq, amount, recorded in rows:
            total += amount
            if first_broken is None and recorded != total:
                first_broken = seq

        audit = LedgerAudit(
            user_id=user_id,
            entries=len(rows),
            total=total,
            balance=balance,
            chain_intact=first_broken is None,
            first_broken_seq=first_broken,
        )
        if not audit.consistent:
            logger.error("Ledger audit failed", extra=audit.to_dict())
        return audit

    @staticmethod
    def calculate_composite_premium(costs: Iterable[int]) -> int:
        """Composite task reward: the sum of subtask costs plus 15%, floored."""
        return sum(costs) * COMPOSITE_PREMIUM_PERCENT // 100

    def _current_balance(self, user_id: str) -> int:
        row = self._db.fetch_one(
            "SELECT token_balance FROM users WHERE user_id = ?", (user_id,)
        )
        if row is None:
            msg = "User not found after update"
            raise RuntimeError(msg)
        return cast("int", row[0])

    def _append(
        self,
        user_id: str,
        amount: int,
        balance: int,
        tx_type: str,
        reason: str,
        created_at: str,
    ) -> None:
        self._db.write(
            "INSERT INTO token_transactions "
            "(tx_id, user_id, amount, balance, type, reason, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (self._new_tx_id(), user_id, amount, balance, tx_type, reason, created_at),
        )
