"""
Ledger storage.

Two backends share the LedgerStore interface: MemoryStore keeps accounts
in a process-local table, SqliteStore persists them with aiosqlite.
Handlers only ever see the interface, so tests can swap in MemoryStore.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Tuple

import aiosqlite

from ledger import Entry, balance

logger = logging.getLogger(__name__)

# SQLite INTEGER range
MIN_AMOUNT = -2 ** 63
MAX_AMOUNT = 2 ** 63 - 1


# --- Errors ---
class LedgerError(Exception):
    pass


class ValidationError(LedgerError):
    pass


class AccountNotFound(LedgerError):
    def __init__(self, name):
        super().__init__(f'Account "{name}" does not exist')
        self.name = name


class DuplicateAccount(LedgerError):
    def __init__(self, name):
        super().__init__(f'Account "{name}" already exists')
        self.name = name


class StoreFailure(LedgerError):
    pass


@dataclass(frozen=True)
class Account:
    name: str
    entries: Tuple[Entry, ...] = ()

    @property
    def balance(self) -> int:
        return balance(self.entries)


def validate_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Account name cannot be empty")
    return name.strip()


def validate_entry(label, amount) -> Tuple[str, int]:
    if not isinstance(label, str) or not label.strip():
        raise ValidationError("Transaction label cannot be empty")
    # bool is an int subclass, reject it explicitly
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Transaction amount must be an integer")
    if not MIN_AMOUNT <= amount <= MAX_AMOUNT:
        raise ValidationError("Transaction amount is too large")
    return label.strip(), amount


class LedgerStore(ABC):
    """Named accounts, each holding an ordered sequence of entries."""

    @abstractmethod
    async def create_account(self, name: str) -> Account:
        """Create an empty account. Raises DuplicateAccount if the name is taken."""

    @abstractmethod
    async def append_entries(self, name: str, pairs: Iterable[Tuple[str, int]]) -> List[Entry]:
        """Append (label, amount) pairs in order, all of them or none."""

    @abstractmethod
    async def get_entries(self, name: str) -> List[Entry]:
        pass

    @abstractmethod
    async def delete_account(self, name: str) -> None:
        pass

    @abstractmethod
    async def clear_entries(self, name: str) -> None:
        pass

    @abstractmethod
    async def list_account_names(self) -> List[str]:
        pass

    async def append_entry(self, name: str, label: str, amount: int) -> Entry:
        entries = await self.append_entries(name, [(label, amount)])
        return entries[0]

    async def get_account(self, name: str) -> Account:
        entries = await self.get_entries(name)
        return Account(name=validate_name(name), entries=tuple(entries))

    async def balances(self) -> List[Tuple[str, int]]:
        result = []
        for name in await self.list_account_names():
            result.append((name, balance(await self.get_entries(name))))
        return result

    async def init(self) -> None:
        pass


# --- In-memory backend ---
class MemoryStore(LedgerStore):
    # No awaits inside the mutations: each one runs atomically on the event loop.

    def __init__(self):
        self._accounts: Dict[str, List[Entry]] = {}

    def _entries(self, name) -> List[Entry]:
        name = validate_name(name)
        if name not in self._accounts:
            raise AccountNotFound(name)
        return self._accounts[name]

    async def create_account(self, name: str) -> Account:
        name = validate_name(name)
        if name in self._accounts:
            raise DuplicateAccount(name)
        self._accounts[name] = []
        logger.info(f"Created account {name!r}")
        return Account(name=name)

    async def append_entries(self, name: str, pairs: Iterable[Tuple[str, int]]) -> List[Entry]:
        entries = self._entries(name)
        new_entries = [Entry(label=label, amount=amount)
                       for label, amount in (validate_entry(*pair) for pair in pairs)]
        entries.extend(new_entries)
        return new_entries

    async def get_entries(self, name: str) -> List[Entry]:
        return list(self._entries(name))

    async def delete_account(self, name: str) -> None:
        self._entries(name)
        del self._accounts[name.strip()]
        logger.info(f"Deleted account {name.strip()!r}")

    async def clear_entries(self, name: str) -> None:
        self._entries(name).clear()

    async def list_account_names(self) -> List[str]:
        return sorted(self._accounts)


# --- SQLite backend ---
class SqliteStore(LedgerStore):
    def __init__(self, path):
        self.path = str(path)

    async def init(self) -> None:
        try:
            async with aiosqlite.connect(self.path) as db:
                await db.execute('''
                    CREATE TABLE IF NOT EXISTS accounts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    )
                ''')
                await db.execute('''
                    CREATE TABLE IF NOT EXISTS transactions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        account_id INTEGER NOT NULL REFERENCES accounts (id),
                        label TEXT NOT NULL,
                        amount INTEGER NOT NULL,
                        created_at TEXT NOT NULL
                    )
                ''')
                await db.execute('''
                    CREATE INDEX IF NOT EXISTS idx_transactions_account_id ON transactions (account_id)
                ''')
                await db.commit()
        except aiosqlite.Error as e:
            raise StoreFailure(f"Failed to initialize database: {e}") from e

    async def _account_id(self, db, name) -> int:
        cursor = await db.execute("SELECT id FROM accounts WHERE name = ?", (name,))
        row = await cursor.fetchone()
        if row is None:
            raise AccountNotFound(name)
        return row[0]

    async def create_account(self, name: str) -> Account:
        name = validate_name(name)
        try:
            async with aiosqlite.connect(self.path) as db:
                await db.execute("INSERT INTO accounts (name) VALUES (?)", (name,))
                await db.commit()
        except aiosqlite.IntegrityError as e:
            raise DuplicateAccount(name) from e
        except aiosqlite.Error as e:
            raise StoreFailure(f"Failed to create account: {e}") from e
        logger.info(f"Created account {name!r}")
        return Account(name=name)

    async def append_entries(self, name: str, pairs: Iterable[Tuple[str, int]]) -> List[Entry]:
        name = validate_name(name)
        new_entries = [Entry(label=label, amount=amount)
                       for label, amount in (validate_entry(*pair) for pair in pairs)]
        try:
            async with aiosqlite.connect(self.path) as db:
                account_id = await self._account_id(db, name)
                await db.executemany('''
                    INSERT INTO transactions (account_id, label, amount, created_at)
                    VALUES (?, ?, ?, ?)
                ''', [(account_id, e.label, e.amount, e.created_at.isoformat()) for e in new_entries])
                await db.commit()
        except (aiosqlite.Error, OverflowError) as e:
            raise StoreFailure(f"Failed to create transaction: {e}") from e
        return new_entries

    async def get_entries(self, name: str) -> List[Entry]:
        name = validate_name(name)
        try:
            async with aiosqlite.connect(self.path) as db:
                account_id = await self._account_id(db, name)
                cursor = await db.execute('''
                    SELECT label, amount, created_at
                    FROM transactions
                    WHERE account_id = ?
                    ORDER BY id
                ''', (account_id,))
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreFailure(f"Failed to retrieve transactions: {e}") from e
        return [Entry(label=label, amount=amount, created_at=datetime.fromisoformat(created_at))
                for label, amount, created_at in rows]

    async def delete_account(self, name: str) -> None:
        name = validate_name(name)
        try:
            async with aiosqlite.connect(self.path) as db:
                account_id = await self._account_id(db, name)
                await db.execute("DELETE FROM transactions WHERE account_id = ?", (account_id,))
                await db.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
                await db.commit()
        except aiosqlite.Error as e:
            raise StoreFailure(f"Failed to delete account: {e}") from e
        logger.info(f"Deleted account {name!r}")

    async def clear_entries(self, name: str) -> None:
        name = validate_name(name)
        try:
            async with aiosqlite.connect(self.path) as db:
                account_id = await self._account_id(db, name)
                await db.execute("DELETE FROM transactions WHERE account_id = ?", (account_id,))
                await db.commit()
        except aiosqlite.Error as e:
            raise StoreFailure(f"Failed to clear account: {e}") from e

    async def list_account_names(self) -> List[str]:
        try:
            async with aiosqlite.connect(self.path) as db:
                cursor = await db.execute("SELECT name FROM accounts ORDER BY name")
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreFailure(f"Failed to retrieve accounts: {e}") from e
        return [row[0] for row in rows]


def open_store(config) -> LedgerStore:
    if config.storage == "memory":
        logger.info("Using in-memory storage, data is lost on restart")
        return MemoryStore()
    logger.info(f"Using SQLite storage at {config.db_path}")
    return SqliteStore(config.db_path)
