"""Credit balances with atomic check-and-decrement."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from knowledge_qa.types import DeductionResult, LedgerEntry


class CreditLedger(Protocol):
    """Balance store; `deduct` must check and decrement in one atomic step."""

    def get_balance(self, user_id: str) -> int:
        ...

    def deduct(
        self,
        user_id: str,
        amount: int,
        *,
        reason: str,
        metadata: dict[str, Any] | None = None,
    ) -> DeductionResult:
        ...

    def add(
        self,
        user_id: str,
        amount: int,
        *,
        reason: str = "purchase",
        metadata: dict[str, Any] | None = None,
    ) -> int:
        ...

    def history(self, user_id: str, limit: int = 50) -> list[LedgerEntry]:
        ...


def _check_amount(amount: int) -> None:
    if amount < 0:
        raise ValueError("Credit amounts must be non-negative")


def _insufficient(needed: int, balance: int) -> str:
    return f"Insufficient credits. You need {needed} credits but have {balance}."


class InMemoryCreditLedger:
    """Process-local ledger guarded by a single lock."""

    def __init__(self, initial_balances: dict[str, int] | None = None) -> None:
        self._lock = threading.Lock()
        self._balances: dict[str, int] = {}
        self._entries: list[LedgerEntry] = []
        for user_id, amount in (initial_balances or {}).items():
            self.add(user_id, amount, reason="free_starter")

    def get_balance(self, user_id: str) -> int:
        with self._lock:
            return self._balances.get(user_id, 0)

    def deduct(
        self,
        user_id: str,
        amount: int,
        *,
        reason: str,
        metadata: dict[str, Any] | None = None,
    ) -> DeductionResult:
        _check_amount(amount)
        with self._lock:
            balance = self._balances.get(user_id, 0)
            if balance < amount:
                return DeductionResult(False, balance, _insufficient(amount, balance))
            balance -= amount
            self._balances[user_id] = balance
            self._entries.append(
                LedgerEntry(
                    user_id=user_id,
                    delta=-amount,
                    reason=reason,
                    balance_after=balance,
                    timestamp=datetime.now(timezone.utc),
                    metadata=dict(metadata or {}),
                )
            )
            return DeductionResult(True, balance)

    def add(
        self,
        user_id: str,
        amount: int,
        *,
        reason: str = "purchase",
        metadata: dict[str, Any] | None = None,
    ) -> int:
        _check_amount(amount)
        with self._lock:
            balance = self._balances.get(user_id, 0) + amount
            self._balances[user_id] = balance
            self._entries.append(
                LedgerEntry(
                    user_id=user_id,
                    delta=amount,
                    reason=reason,
                    balance_after=balance,
                    timestamp=datetime.now(timezone.utc),
                    metadata=dict(metadata or {}),
                )
            )
            return balance

    def history(self, user_id: str, limit: int = 50) -> list[LedgerEntry]:
        with self._lock:
            entries = [entry for entry in self._entries if entry.user_id == user_id]
        return list(reversed(entries))[:limit]


class SqliteCreditLedger:
    """SQLite-backed ledger.

    Every mutation runs in one `BEGIN IMMEDIATE` transaction, so the
    conditional `UPDATE ... WHERE balance >= ?` and the transaction row are
    written together or not at all, even across processes sharing the file.
    """

    def __init__(self, path: str | Path, *, busy_timeout_seconds: float = 30.0) -> None:
        self.path = Path(path)
        self._timeout = busy_timeout_seconds
        self._ensure_tables()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=self._timeout, isolation_level=None)

    def _ensure_tables(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS credits ("
                " user_id TEXT PRIMARY KEY,"
                " balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),"
                " lifetime_used INTEGER NOT NULL DEFAULT 0,"
                " updated_at TEXT NOT NULL)"
            )
            conn.execute(
                "CREATE TABLE IF NOT EXISTS credit_transactions ("
                " id INTEGER PRIMARY KEY AUTOINCREMENT,"
                " user_id TEXT NOT NULL,"
                " amount INTEGER NOT NULL,"
                " balance_after INTEGER NOT NULL,"
                " reason TEXT NOT NULL,"
                " metadata TEXT,"
                " created_at TEXT NOT NULL)"
            )
        finally:
            conn.close()

    def get_balance(self, user_id: str) -> int:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT balance FROM credits WHERE user_id = ?", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        return int(row[0]) if row else 0

    def deduct(
        self,
        user_id: str,
        amount: int,
        *,
        reason: str,
        metadata: dict[str, Any] | None = None,
    ) -> DeductionResult:
        _check_amount(amount)
        now = datetime.now(timezone.utc).isoformat()
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            cur = conn.execute(
                "UPDATE credits SET balance = balance - ?,"
                " lifetime_used = lifetime_used + ?, updated_at = ?"
                " WHERE user_id = ? AND balance >= ?",
                (amount, amount, now, user_id, amount),
            )
            row = conn.execute(
                "SELECT balance FROM credits WHERE user_id = ?", (user_id,)
            ).fetchone()
            balance = int(row[0]) if row else 0
            if cur.rowcount == 0:
                conn.execute("ROLLBACK")
                return DeductionResult(False, balance, _insufficient(amount, balance))

            conn.execute(
                "INSERT INTO credit_transactions"
                " (user_id, amount, balance_after, reason, metadata, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (user_id, -amount, balance, reason, json.dumps(metadata or {}), now),
            )
            conn.execute("COMMIT")
            return DeductionResult(True, balance)
        except sqlite3.Error:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.exception(f"[Credits] Ledger deduction failed for user {user_id}")
            raise
        finally:
            conn.close()

    def add(
        self,
        user_id: str,
        amount: int,
        *,
        reason: str = "purchase",
        metadata: dict[str, Any] | None = None,
    ) -> int:
        _check_amount(amount)
        now = datetime.now(timezone.utc).isoformat()
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                "INSERT INTO credits(user_id, balance, updated_at) VALUES(?, ?, ?)"
                " ON CONFLICT(user_id) DO UPDATE SET"
                " balance = balance + excluded.balance, updated_at = excluded.updated_at",
                (user_id, amount, now),
            )
            balance = int(
                conn.execute(
                    "SELECT balance FROM credits WHERE user_id = ?", (user_id,)
                ).fetchone()[0]
            )
            conn.execute(
                "INSERT INTO credit_transactions"
                " (user_id, amount, balance_after, reason, metadata, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (user_id, amount, balance, reason, json.dumps(metadata or {}), now),
            )
            conn.execute("COMMIT")
            return balance
        except sqlite3.Error:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def history(self, user_id: str, limit: int = 50) -> list[LedgerEntry]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT amount, reason, balance_after, created_at, metadata"
                " FROM credit_transactions WHERE user_id = ?"
                " ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        finally:
            conn.close()
        return [
            LedgerEntry(
                user_id=user_id,
                delta=int(amount),
                reason=reason,
                balance_after=int(balance_after),
                timestamp=datetime.fromisoformat(created_at),
                metadata=json.loads(metadata) if metadata else {},
            )
            for amount, reason, balance_after, created_at, metadata in rows
        ]
