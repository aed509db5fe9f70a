"""
db.py
SQLite persistence for branches, members and transactions.

Every check-then-write done by the engine runs inside Store.transaction(),
which takes the SQLite write lock up front (BEGIN IMMEDIATE), so two desks
cannot both pass an availability or duplicate check and then both write.
Phone and email are also unique per branch at the table level.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime
from pathlib import Path

from clock import parse_instant
from errors import DuplicateMember, PersistenceFailure
from models import LOCKER, Branch, Member, Transaction

logger = logging.getLogger(__name__)

DB_FILE = Path(os.environ.get("LIBRARY_DB_PATH", Path(__file__).with_name("library.db")))
DB_TIMEOUT = float(os.environ.get("LIBRARY_DB_TIMEOUT", "5"))

MEMBER_COLUMNS = [f.name for f in fields(Member)]
TRANSACTION_COLUMNS = [f.name for f in fields(Transaction)]
_MEMBER_DATES = ("join_date", "expiry_date", "current_plan_start_date")
_MEMBER_FLAGS = ("card_issued", "card_returned", "locker_assigned")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS branches (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        location TEXT NOT NULL DEFAULT '',
        email TEXT NOT NULL DEFAULT '',
        total_cards INTEGER NOT NULL DEFAULT 0 CHECK(total_cards >= 0),
        total_lockers INTEGER NOT NULL DEFAULT 0 CHECK(total_lockers >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS members (
        id TEXT PRIMARY KEY,
        branch_id TEXT NOT NULL,
        full_name TEXT NOT NULL,
        phone TEXT NOT NULL,
        email TEXT,
        address TEXT NOT NULL,
        study_purpose TEXT NOT NULL,
        registered_by TEXT NOT NULL,
        join_date TEXT NOT NULL,
        expiry_date TEXT NOT NULL,
        subscription_plan TEXT,
        daily_access_hours TEXT,
        current_plan_start_date TEXT,
        card_issued INTEGER NOT NULL DEFAULT 0,
        card_payment_mode TEXT,
        card_returned INTEGER NOT NULL DEFAULT 0,
        locker_assigned INTEGER NOT NULL DEFAULT 0,
        locker_payment_mode TEXT,
        locker_number TEXT,
        seat_no TEXT,
        UNIQUE(branch_id, phone),
        UNIQUE(branch_id, email),
        CHECK(locker_assigned = 0 OR locker_number IS NOT NULL),
        FOREIGN KEY(branch_id) REFERENCES branches(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_members_locker ON members(branch_id, locker_number)",
    "CREATE INDEX IF NOT EXISTS idx_members_seat ON members(branch_id, seat_no)",
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        branch_id TEXT NOT NULL,
        type TEXT NOT NULL CHECK(type IN ('REGISTRATION','MEMBERSHIP','CARD','LOCKER','SNACK')),
        amount INTEGER NOT NULL,
        payment_mode TEXT NOT NULL CHECK(payment_mode IN ('CASH','UPI','SPLIT')),
        timestamp TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        member_id TEXT,
        cash_amount INTEGER,
        upi_amount INTEGER,
        status TEXT NOT NULL DEFAULT 'COMPLETED',
        CHECK(payment_mode != 'SPLIT' OR cash_amount + upi_amount = amount),
        FOREIGN KEY(branch_id) REFERENCES branches(id),
        FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transactions_member ON transactions(member_id, type)",
]


def _to_db(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


def _member_from_row(row: sqlite3.Row) -> Member:
    data = dict(row)
    for k in _MEMBER_DATES:
        if data[k] is not None:
            data[k] = parse_instant(data[k])
    for k in _MEMBER_FLAGS:
        data[k] = bool(data[k])
    return Member(**data)


def _transaction_from_row(row: sqlite3.Row) -> Transaction:
    data = dict(row)
    data["timestamp"] = parse_instant(data["timestamp"])
    return Transaction(**data)


def _branch_from_row(row: sqlite3.Row) -> Branch:
    return Branch(**dict(row))


class Store:
    def __init__(self, db_path: Path | str = DB_FILE, timeout: float = DB_TIMEOUT):
        self.db_path = str(db_path)
        self.timeout = timeout
        self._local = threading.local()

    # ---------- Connections ----------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path, timeout=self.timeout, isolation_level=None, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_conn(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            with _translate_errors():
                yield conn
            return
        with _translate_errors():
            conn = self._connect()
        try:
            with _translate_errors():
                yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """Serializable unit of work. Nested calls join the outer one."""
        if getattr(self._local, "conn", None) is not None:
            yield
            return
        with _translate_errors():
            conn = self._connect()
        try:
            with _translate_errors():
                conn.execute("BEGIN IMMEDIATE")
        except PersistenceFailure:
            conn.close()
            raise
        self._local.conn = conn
        try:
            yield
            with _translate_errors():
                conn.execute("COMMIT")
        except BaseException:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error("Rollback failed: %s", e)
            raise
        finally:
            self._local.conn = None
            conn.close()

    def execute(self, sql: str, params: tuple = ()) -> int:
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.rowcount

    def executemany(self, sql: str, seq_of_params: list[tuple]) -> None:
        with self.get_conn() as conn:
            conn.executemany(sql, seq_of_params)

    def fetch_one(self, sql: str, params: tuple = ()):
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.fetchone()

    def fetch_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.fetchall()

    def init_db(self) -> None:
        with self.transaction():
            for stmt in SCHEMA:
                self.execute(stmt)

    # ---------- Branches ----------

    def save_branch(self, branch: Branch) -> Branch:
        """Insert a branch; an existing one keeps its stock counts."""
        self.execute(
            """
            INSERT INTO branches(id, name, location, email, total_cards, total_lockers)
            VALUES(?,?,?,?,?,?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name, location=excluded.location, email=excluded.email
            """,
            (branch.id, branch.name, branch.location, branch.email, branch.total_cards, branch.total_lockers),
        )
        return self.get_branch(branch.id)

    def get_branch(self, branch_id: str) -> Branch | None:
        row = self.fetch_one("SELECT * FROM branches WHERE id = ?", (branch_id,))
        return _branch_from_row(row) if row else None

    def update_branch_capacity(self, branch_id: str, total_cards: int, total_lockers: int) -> Branch:
        self.execute(
            "UPDATE branches SET total_cards = ?, total_lockers = ? WHERE id = ?",
            (total_cards, total_lockers, branch_id),
        )
        return self.get_branch(branch_id)

    # ---------- Members ----------

    def get_member(self, member_id: str) -> Member | None:
        row = self.fetch_one("SELECT * FROM members WHERE id = ?", (member_id,))
        return _member_from_row(row) if row else None

    def list_members(self, branch_id: str) -> list[Member]:
        rows = self.fetch_all("SELECT * FROM members WHERE branch_id = ? ORDER BY full_name ASC", (branch_id,))
        return [_member_from_row(r) for r in rows]

    def find_members_by_resource_key(self, branch_id: str, kind: str, key: str) -> list[Member]:
        column = "locker_number" if kind == LOCKER else "seat_no"
        rows = self.fetch_all(
            f"SELECT * FROM members WHERE branch_id = ? AND UPPER(TRIM({column})) = UPPER(TRIM(?))",
            (branch_id, key),
        )
        return [_member_from_row(r) for r in rows]

    def find_member_by_contact(
        self, branch_id: str, phone: str, email: str | None, exclude_member_id: str | None = None
    ) -> Member | None:
        sql = "SELECT * FROM members WHERE branch_id = ? AND (phone = ? OR (email IS NOT NULL AND email = ?))"
        params = [branch_id, phone, email]
        if exclude_member_id:
            sql += " AND id != ?"
            params.append(exclude_member_id)
        row = self.fetch_one(sql + " LIMIT 1", tuple(params))
        return _member_from_row(row) if row else None

    def insert_member(self, member: Member) -> Member:
        placeholders = ",".join("?" for _ in MEMBER_COLUMNS)
        self.execute(
            f"INSERT INTO members({','.join(MEMBER_COLUMNS)}) VALUES({placeholders})",
            tuple(_to_db(getattr(member, c)) for c in MEMBER_COLUMNS),
        )
        return self.get_member(member.id)

    def update_member(self, member_id: str, changes: dict) -> Member:
        unknown = set(changes) - set(MEMBER_COLUMNS) | ({"id"} & set(changes))
        if unknown:
            raise ValueError(f"Cannot update member fields: {sorted(unknown)}")
        if changes:
            assignments = ", ".join(f"{k} = ?" for k in changes)
            count = self.execute(
                f"UPDATE members SET {assignments} WHERE id = ?",
                tuple(_to_db(v) for v in changes.values()) + (member_id,),
            )
            if count == 0:
                raise PersistenceFailure(f"Member {member_id} not found")
        return self.get_member(member_id)

    def delete_members(self, member_ids: list[str]) -> None:
        if not member_ids:
            return
        marks = ",".join("?" for _ in member_ids)
        # transactions go with them (ON DELETE CASCADE)
        self.execute(f"DELETE FROM members WHERE id IN ({marks})", tuple(member_ids))

    # ---------- Transactions ----------

    def insert_transactions(self, txns: list[Transaction]) -> list[Transaction]:
        if not txns:
            return []
        placeholders = ",".join("?" for _ in TRANSACTION_COLUMNS)
        with self.transaction():
            self.executemany(
                f"INSERT INTO transactions({','.join(TRANSACTION_COLUMNS)}) VALUES({placeholders})",
                [tuple(_to_db(getattr(t, c)) for c in TRANSACTION_COLUMNS) for t in txns],
            )
        return list(txns)

    def list_transactions(self, branch_id: str | None = None, member_id: str | None = None) -> list[Transaction]:
        sql = "SELECT * FROM transactions WHERE 1=1"
        params = []
        if branch_id:
            sql += " AND branch_id = ?"
            params.append(branch_id)
        if member_id:
            sql += " AND member_id = ?"
            params.append(member_id)
        rows = self.fetch_all(sql + " ORDER BY timestamp ASC", tuple(params))
        return [_transaction_from_row(r) for r in rows]

    def delete_transactions(self, member_ids: list[str], types: tuple[str, ...]) -> None:
        if not member_ids or not types:
            return
        id_marks = ",".join("?" for _ in member_ids)
        type_marks = ",".join("?" for _ in types)
        self.execute(
            f"DELETE FROM transactions WHERE member_id IN ({id_marks}) AND type IN ({type_marks})",
            tuple(member_ids) + tuple(types),
        )


@contextmanager
def _translate_errors():
    try:
        yield
    except sqlite3.IntegrityError as e:
        msg = str(e)
        if "members.phone" in msg or "members.email" in msg:
            raise DuplicateMember("A member with this Phone or Email already exists in this branch.") from e
        raise PersistenceFailure(f"Integrity error: {msg}") from e
    except sqlite3.Error as e:
        raise PersistenceFailure(f"Database error: {e}") from e
