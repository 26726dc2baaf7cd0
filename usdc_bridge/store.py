"""
Transfer Record Store

Durable transfer records keyed by transfer id, with a per-user index.

Every mutation goes through ``update`` or ``transition``. ``transition`` is a
compare-and-swap on the stored status so concurrent callers cannot both
perform the same phase of a transfer.
"""

import asyncio
import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from . import errors
from .models import (
    MUTABLE_FIELDS,
    TERMINAL_STATUSES,
    WRITE_ONCE_FIELDS,
    Transfer,
    TransferStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


def _as_status(value: Any) -> TransferStatus:
    if isinstance(value, TransferStatus):
        return value
    try:
        return TransferStatus(value)
    except ValueError:
        raise errors.ValidationError(f"Unknown transfer status: {value!r}")


def apply_fields(current: Transfer, fields: Dict[str, Any]) -> Transfer:
    """Validate a partial update against ``current`` and return the new record."""
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise errors.ValidationError(f"Fields cannot be updated: {sorted(unknown)}")

    changes = dict(fields)
    if "status" in changes:
        target = _as_status(changes["status"])
        if target != current.status and not current.status.can_transition_to(target):
            raise errors.TransferStateError(
                f"Illegal transition {current.status.value} -> {target.value}",
                {"transfer_id": current.id}
            )
        changes["status"] = target

    for name in WRITE_ONCE_FIELDS & set(changes):
        existing = getattr(current, name)
        if existing is not None and changes[name] != existing:
            raise errors.TransferStateError(
                f"{name} is already set for transfer {current.id}",
                {"transfer_id": current.id, name: existing}
            )

    return replace(current, updated_at=utcnow(), **changes)


class TransferStore(ABC):
    """Store contract used by the orchestrator"""

    @abstractmethod
    async def create(self, user_id: str, source_chain: str, destination_chain: str, amount: str) -> Transfer:
        ...

    @abstractmethod
    async def get_by_id(self, transfer_id: str) -> Optional[Transfer]:
        ...

    @abstractmethod
    async def list_by_user(
        self,
        user_id: str,
        statuses: Optional[Iterable[TransferStatus]] = None
    ) -> List[Transfer]:
        """Transfers for a user, newest first"""

    @abstractmethod
    async def _apply(
        self,
        transfer_id: str,
        expected: Optional[frozenset],
        fields: Dict[str, Any]
    ) -> Optional[Transfer]:
        """Apply ``fields``; None if the id is unknown or the guard fails."""

    async def update(self, transfer_id: str, **fields) -> Optional[Transfer]:
        """Partial update; always bumps updated_at. None if the id is unknown."""
        return await self._apply(transfer_id, None, fields)

    async def transition(
        self,
        transfer_id: str,
        expected: Iterable[TransferStatus],
        status: TransferStatus,
        **fields
    ) -> Optional[Transfer]:
        """Guarded status change.

        Returns:
            The updated transfer, or None if the stored status is not in
            ``expected`` (another caller got there first)

        Raises:
            errors.NotFoundError: unknown transfer id
        """
        if await self.get_by_id(transfer_id) is None:
            raise errors.NotFoundError(f"Transfer not found: {transfer_id}")
        fields["status"] = status
        return await self._apply(transfer_id, frozenset(expected), fields)

    async def get_pending(self, user_id: str) -> List[Transfer]:
        statuses = [s for s in TransferStatus if s not in TERMINAL_STATUSES]
        return await self.list_by_user(user_id, statuses)

    async def get_finished(self, user_id: str) -> List[Transfer]:
        return await self.list_by_user(user_id, TERMINAL_STATUSES)

    async def close(self) -> None:
        return None


class InMemoryTransferStore(TransferStore):
    """Process-local store (tests, dry runs)"""

    def __init__(self):
        self._transfers: Dict[str, Transfer] = {}
        self._order: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def create(self, user_id: str, source_chain: str, destination_chain: str, amount: str) -> Transfer:
        now = utcnow()
        transfer = Transfer(
            id=str(uuid.uuid4()),
            user_id=user_id,
            source_chain=source_chain,
            destination_chain=destination_chain,
            amount=amount,
            status=TransferStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._transfers[transfer.id] = transfer
            self._order[transfer.id] = len(self._order)
        return replace(transfer)

    async def get_by_id(self, transfer_id: str) -> Optional[Transfer]:
        transfer = self._transfers.get(transfer_id)
        return replace(transfer) if transfer else None

    async def list_by_user(
        self,
        user_id: str,
        statuses: Optional[Iterable[TransferStatus]] = None
    ) -> List[Transfer]:
        wanted = frozenset(statuses) if statuses is not None else None
        matches = [
            t for t in self._transfers.values()
            if t.user_id == user_id and (wanted is None or t.status in wanted)
        ]
        matches.sort(key=lambda t: (t.created_at, self._order[t.id]), reverse=True)
        return [replace(t) for t in matches]

    async def _apply(
        self,
        transfer_id: str,
        expected: Optional[frozenset],
        fields: Dict[str, Any]
    ) -> Optional[Transfer]:
        async with self._lock:
            current = self._transfers.get(transfer_id)
            if current is None:
                return None
            if expected is not None and current.status not in expected:
                return None
            updated = apply_fields(current, fields)
            self._transfers[transfer_id] = updated
            return replace(updated)


class SQLiteTransferStore(TransferStore):
    """SQLite-backed store"""

    COLUMNS = (
        "id", "user_id", "source_chain", "destination_chain", "amount", "status",
        "burn_tx_hash", "mint_tx_hash", "message", "attestation", "error_message",
        "created_at", "updated_at",
    )

    def __init__(self, db_path: str = "data/bridge.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._initialized = False

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    async def initialize(self):
        """Create tables"""
        if self._initialized:
            return
        async with self._lock:
            if not self._initialized:
                await asyncio.to_thread(self._init_db)
                self._initialized = True
                logger.info(f"SQLiteTransferStore initialized: {self.db_path}")

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS transfers (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    user_id TEXT NOT NULL,
                    source_chain TEXT NOT NULL,
                    destination_chain TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    burn_tx_hash TEXT,
                    mint_tx_hash TEXT,
                    message TEXT,
                    attestation TEXT,
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_transfers_user
                    ON transfers(user_id, created_at);
            """)

    @classmethod
    def _row_to_transfer(cls, row: sqlite3.Row) -> Transfer:
        return Transfer.from_dict({name: row[name] for name in cls.COLUMNS})

    async def create(self, user_id: str, source_chain: str, destination_chain: str, amount: str) -> Transfer:
        await self.initialize()
        now = utcnow()
        transfer = Transfer(
            id=str(uuid.uuid4()),
            user_id=user_id,
            source_chain=source_chain,
            destination_chain=destination_chain,
            amount=amount,
            status=TransferStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            await asyncio.to_thread(self._insert, transfer)
        logger.debug(f"Transfer created: {transfer.id}")
        return transfer

    def _insert(self, transfer: Transfer):
        data = transfer.to_dict()
        placeholders = ", ".join("?" for _ in self.COLUMNS)
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO transfers ({', '.join(self.COLUMNS)}) VALUES ({placeholders})",
                [data[name] for name in self.COLUMNS]
            )

    async def get_by_id(self, transfer_id: str) -> Optional[Transfer]:
        await self.initialize()
        return await asyncio.to_thread(self._select_one, transfer_id)

    def _select_one(self, transfer_id: str) -> Optional[Transfer]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM transfers WHERE id = ?", (transfer_id,)).fetchone()
        return self._row_to_transfer(row) if row else None

    async def list_by_user(
        self,
        user_id: str,
        statuses: Optional[Iterable[TransferStatus]] = None
    ) -> List[Transfer]:
        await self.initialize()
        status_values = [s.value for s in statuses] if statuses is not None else None
        return await asyncio.to_thread(self._select_by_user, user_id, status_values)

    def _select_by_user(self, user_id: str, status_values: Optional[List[str]]) -> List[Transfer]:
        query = "SELECT * FROM transfers WHERE user_id = ?"
        params: List[Any] = [user_id]
        if status_values is not None:
            if not status_values:
                return []
            query += f" AND status IN ({', '.join('?' for _ in status_values)})"
            params.extend(status_values)
        query += " ORDER BY created_at DESC, seq DESC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_transfer(row) for row in rows]

    async def _apply(
        self,
        transfer_id: str,
        expected: Optional[frozenset],
        fields: Dict[str, Any]
    ) -> Optional[Transfer]:
        await self.initialize()
        async with self._lock:
            return await asyncio.to_thread(self._apply_sync, transfer_id, expected, fields)

    def _apply_sync(
        self,
        transfer_id: str,
        expected: Optional[frozenset],
        fields: Dict[str, Any]
    ) -> Optional[Transfer]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM transfers WHERE id = ?", (transfer_id,)).fetchone()
            if row is None:
                return None
            current = self._row_to_transfer(row)
            if expected is not None and current.status not in expected:
                return None

            updated = apply_fields(current, fields)
            data = updated.to_dict()
            columns = [name for name in fields if name != "status"] + ["status", "updated_at"]
            assignments = ", ".join(f"{name} = ?" for name in columns)
            # CAS on the status read above
            cursor = conn.execute(
                f"UPDATE transfers SET {assignments} WHERE id = ? AND status = ?",
                [data[name] for name in columns] + [transfer_id, current.status.value]
            )
            if cursor.rowcount == 0:
                return None
        return updated
