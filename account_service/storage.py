"""
Storage Backend Module

Provides the abstract account store and implementations for in-memory (testing)
and SQLite (persistence). Both enforce the uniqueness and check constraints as
hard rules at write time; application-level lookups are only early exits.
Balances are stored as integer cents.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
import sqlite3
import json
import threading
from pathlib import Path
from contextlib import contextmanager

from .accounts import Account, AccountStatus, AccountType


ACCOUNT_NUMBER_CONSTRAINT = "account_number"
CUSTOMER_TYPE_CONSTRAINT = "customer_account_type"

_ACCOUNT_TYPES = tuple(t.value for t in AccountType)
_ACCOUNT_STATUSES = tuple(s.value for s in AccountStatus)


class StorageError(Exception):
    """Base class for storage failures"""
    pass


class UniqueConstraintViolation(StorageError):
    """A write would break a uniqueness constraint"""

    def __init__(self, constraint: str, message: Optional[str] = None):
        super().__init__(message or f"Unique constraint violated: {constraint}")
        self.constraint = constraint


class CheckConstraintViolation(StorageError):
    """A write would break a check constraint (balance floor, enum domain)"""
    pass


class AccountStore(ABC):
    """Abstract interface for account storage backends"""

    @abstractmethod
    def insert(self, account: Account) -> Account:
        """Insert a new account and return it with its assigned account_id"""
        pass

    @abstractmethod
    def update(self, account: Account) -> None:
        """Persist changes to an existing account"""
        pass

    @abstractmethod
    def load(self, account_id: int) -> Optional[Account]:
        """Load an account by surrogate id"""
        pass

    @abstractmethod
    def load_by_number(self, account_number: str) -> Optional[Account]:
        """Load an account by account number"""
        pass

    @abstractmethod
    def find_by_customer(self, customer_id: int) -> List[Account]:
        """All accounts of a customer, oldest first"""
        pass

    @abstractmethod
    def find_by_customer_and_type(self, customer_id: int,
                                  account_type: AccountType) -> Optional[Account]:
        """The customer's account of a given type, if any"""
        pass

    @abstractmethod
    def exists_account_number(self, account_number: str) -> bool:
        """Check if an account number is taken"""
        pass

    @abstractmethod
    def find(self, status: Optional[AccountStatus] = None,
             account_type: Optional[AccountType] = None,
             offset: int = 0, limit: Optional[int] = None) -> List[Account]:
        """Find accounts matching optional filters, ordered by account_id"""
        pass

    @abstractmethod
    def count(self, status: Optional[AccountStatus] = None,
              account_type: Optional[AccountType] = None) -> int:
        """Count accounts matching optional filters"""
        pass

    @abstractmethod
    def delete(self, account_id: int) -> bool:
        """Physically delete an account"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def load_all(self) -> List[Account]:
        """Load every account"""
        return self.find()

    @abstractmethod
    @contextmanager
    def atomic(self):
        """Context manager making check-then-write sequences atomic"""
        pass


def _filters_match(row: Dict[str, Any], status: Optional[AccountStatus],
                   account_type: Optional[AccountType]) -> bool:
    if status is not None and row["account_status"] != status.value:
        return False
    if account_type is not None and row["account_type"] != account_type.value:
        return False
    return True


class InMemoryAccountStore(AccountStore):
    """In-memory account storage for testing"""

    def __init__(self):
        self._rows: Dict[int, Dict[str, Any]] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    @staticmethod
    def _copy(row: Dict[str, Any]) -> Dict[str, Any]:
        # Deep copy to prevent external mutation
        return json.loads(json.dumps(row))

    def _check_constraints(self, row: Dict[str, Any], exclude_id: Optional[int] = None) -> None:
        if row["balance_cents"] < 0:
            raise CheckConstraintViolation("CHECK constraint failed: balance_cents >= 0")
        if row["account_type"] not in _ACCOUNT_TYPES:
            raise CheckConstraintViolation(f"CHECK constraint failed: account_type {row['account_type']}")
        if row["account_status"] not in _ACCOUNT_STATUSES:
            raise CheckConstraintViolation(f"CHECK constraint failed: account_status {row['account_status']}")

        for account_id, existing in self._rows.items():
            if account_id == exclude_id:
                continue
            if existing["account_number"] == row["account_number"]:
                raise UniqueConstraintViolation(ACCOUNT_NUMBER_CONSTRAINT)
            if (existing["customer_id"] == row["customer_id"]
                    and existing["account_type"] == row["account_type"]):
                raise UniqueConstraintViolation(CUSTOMER_TYPE_CONSTRAINT)

    def insert(self, account: Account) -> Account:
        with self._lock:
            row = account.to_dict()
            self._check_constraints(row)
            row["account_id"] = self._next_id
            self._rows[self._next_id] = self._copy(row)
            self._next_id += 1
            return Account.from_dict(row)

    def update(self, account: Account) -> None:
        with self._lock:
            existing = self._rows.get(account.account_id)
            if existing is None:
                raise StorageError(f"Account {account.account_id} does not exist")
            row = account.to_dict()
            # Immutable columns keep their stored values
            for column in ("customer_id", "account_number", "account_type", "created_at"):
                row[column] = existing[column]
            self._check_constraints(row, exclude_id=account.account_id)
            self._rows[account.account_id] = self._copy(row)

    def load(self, account_id: int) -> Optional[Account]:
        with self._lock:
            row = self._rows.get(account_id)
            return Account.from_dict(self._copy(row)) if row else None

    def load_by_number(self, account_number: str) -> Optional[Account]:
        with self._lock:
            for row in self._rows.values():
                if row["account_number"] == account_number:
                    return Account.from_dict(self._copy(row))
            return None

    def find_by_customer(self, customer_id: int) -> List[Account]:
        with self._lock:
            return [Account.from_dict(self._copy(row))
                    for _, row in sorted(self._rows.items())
                    if row["customer_id"] == customer_id]

    def find_by_customer_and_type(self, customer_id: int,
                                  account_type: AccountType) -> Optional[Account]:
        with self._lock:
            for row in self._rows.values():
                if row["customer_id"] == customer_id and row["account_type"] == account_type.value:
                    return Account.from_dict(self._copy(row))
            return None

    def exists_account_number(self, account_number: str) -> bool:
        with self._lock:
            return any(row["account_number"] == account_number for row in self._rows.values())

    def find(self, status: Optional[AccountStatus] = None,
             account_type: Optional[AccountType] = None,
             offset: int = 0, limit: Optional[int] = None) -> List[Account]:
        with self._lock:
            rows = [row for _, row in sorted(self._rows.items())
                    if _filters_match(row, status, account_type)]
            end = None if limit is None else offset + limit
            return [Account.from_dict(self._copy(row)) for row in rows[offset:end]]

    def count(self, status: Optional[AccountStatus] = None,
              account_type: Optional[AccountType] = None) -> int:
        with self._lock:
            return sum(1 for row in self._rows.values()
                       if _filters_match(row, status, account_type))

    def delete(self, account_id: int) -> bool:
        with self._lock:
            return self._rows.pop(account_id, None) is not None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    @contextmanager
    def atomic(self):
        """Hold the store lock and restore a snapshot if the block fails"""
        with self._lock:
            snapshot = {k: dict(v) for k, v in self._rows.items()}
            next_id = self._next_id
            try:
                yield
            except Exception:
                self._rows = snapshot
                self._next_id = next_id
                raise


class SQLiteAccountStore(AccountStore):
    """SQLite account storage for persistence"""

    _COLUMNS = ("account_id, customer_id, account_number, account_type, "
                "account_status, balance_cents, created_at, updated_at")

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Autocommit mode; transactions are opened explicitly by atomic()
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False,
                                           isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0

        with self._lock:
            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._ensure_schema()

    def _ensure_schema(self) -> None:
        types = ", ".join(f"'{t}'" for t in _ACCOUNT_TYPES)
        statuses = ", ".join(f"'{s}'" for s in _ACCOUNT_STATUSES)
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS accounts (
                account_id INTEGER PRIMARY KEY AUTOINCREMENT,
                customer_id INTEGER NOT NULL,
                account_number TEXT NOT NULL,
                account_type TEXT NOT NULL CHECK (account_type IN ({types})),
                account_status TEXT NOT NULL CHECK (account_status IN ({statuses})),
                balance_cents INTEGER NOT NULL CHECK (balance_cents >= 0),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                CONSTRAINT uq_account_number UNIQUE (account_number),
                CONSTRAINT uq_customer_account_type UNIQUE (customer_id, account_type)
            )
        """)
        self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_accounts_status ON accounts(account_status)
        """)

    @staticmethod
    def _translate(error: sqlite3.IntegrityError) -> StorageError:
        message = str(error)
        if "UNIQUE" in message:
            if "account_number" in message:
                return UniqueConstraintViolation(ACCOUNT_NUMBER_CONSTRAINT, message)
            return UniqueConstraintViolation(CUSTOMER_TYPE_CONSTRAINT, message)
        if "CHECK" in message:
            return CheckConstraintViolation(message)
        return StorageError(message)

    @staticmethod
    def _to_account(row: sqlite3.Row) -> Account:
        return Account.from_dict(dict(row))

    @staticmethod
    def _where(status: Optional[AccountStatus], account_type: Optional[AccountType]):
        clauses, params = [], []
        if status is not None:
            clauses.append("account_status = ?")
            params.append(status.value)
        if account_type is not None:
            clauses.append("account_type = ?")
            params.append(account_type.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def insert(self, account: Account) -> Account:
        row = account.to_dict()
        with self._lock:
            try:
                cursor = self._connection.execute("""
                    INSERT INTO accounts (customer_id, account_number, account_type,
                                          account_status, balance_cents, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (row["customer_id"], row["account_number"], row["account_type"],
                      row["account_status"], row["balance_cents"],
                      row["created_at"], row["updated_at"]))
            except sqlite3.IntegrityError as e:
                raise self._translate(e) from e
            return self.load(cursor.lastrowid)

    def update(self, account: Account) -> None:
        row = account.to_dict()
        with self._lock:
            try:
                cursor = self._connection.execute("""
                    UPDATE accounts
                    SET account_status = ?, balance_cents = ?, updated_at = ?
                    WHERE account_id = ?
                """, (row["account_status"], row["balance_cents"], row["updated_at"],
                      account.account_id))
            except sqlite3.IntegrityError as e:
                raise self._translate(e) from e
            if cursor.rowcount == 0:
                raise StorageError(f"Account {account.account_id} does not exist")

    def load(self, account_id: int) -> Optional[Account]:
        with self._lock:
            row = self._connection.execute(
                f"SELECT {self._COLUMNS} FROM accounts WHERE account_id = ?", (account_id,)
            ).fetchone()
            return self._to_account(row) if row else None

    def load_by_number(self, account_number: str) -> Optional[Account]:
        with self._lock:
            row = self._connection.execute(
                f"SELECT {self._COLUMNS} FROM accounts WHERE account_number = ?", (account_number,)
            ).fetchone()
            return self._to_account(row) if row else None

    def find_by_customer(self, customer_id: int) -> List[Account]:
        with self._lock:
            rows = self._connection.execute(
                f"SELECT {self._COLUMNS} FROM accounts WHERE customer_id = ? ORDER BY account_id",
                (customer_id,)
            ).fetchall()
            return [self._to_account(row) for row in rows]

    def find_by_customer_and_type(self, customer_id: int,
                                  account_type: AccountType) -> Optional[Account]:
        with self._lock:
            row = self._connection.execute(
                f"SELECT {self._COLUMNS} FROM accounts WHERE customer_id = ? AND account_type = ?",
                (customer_id, account_type.value)
            ).fetchone()
            return self._to_account(row) if row else None

    def exists_account_number(self, account_number: str) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                "SELECT 1 FROM accounts WHERE account_number = ? LIMIT 1", (account_number,)
            )
            return cursor.fetchone() is not None

    def find(self, status: Optional[AccountStatus] = None,
             account_type: Optional[AccountType] = None,
             offset: int = 0, limit: Optional[int] = None) -> List[Account]:
        where, params = self._where(status, account_type)
        query = f"SELECT {self._COLUMNS} FROM accounts {where} ORDER BY account_id"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params += [limit, offset]
        elif offset:
            query += " LIMIT -1 OFFSET ?"
            params.append(offset)
        with self._lock:
            rows = self._connection.execute(query, params).fetchall()
            return [self._to_account(row) for row in rows]

    def count(self, status: Optional[AccountStatus] = None,
              account_type: Optional[AccountType] = None) -> int:
        where, params = self._where(status, account_type)
        with self._lock:
            cursor = self._connection.execute(
                f"SELECT COUNT(*) AS count FROM accounts {where}", params
            )
            return cursor.fetchone()["count"]

    def delete(self, account_id: int) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                "DELETE FROM accounts WHERE account_id = ?", (account_id,)
            )
            return cursor.rowcount > 0

    @contextmanager
    def atomic(self):
        """
        Run the block in one write transaction.

        BEGIN IMMEDIATE takes the write lock up front so a concurrent writer
        cannot slip in between a uniqueness lookup and the insert. Nested
        blocks join the outer transaction.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._connection.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._connection.execute("ROLLBACK")
                raise
            else:
                self._depth -= 1
                if outermost:
                    self._connection.execute("COMMIT")

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_store(backend: str, database_path: str = ":memory:") -> AccountStore:
    """Build the configured store backend"""
    if backend == "memory":
        return InMemoryAccountStore()
    if backend == "sqlite":
        return SQLiteAccountStore(database_path)
    raise ValueError(f"Unknown storage backend: {backend}")
