# receipt persistence: one interface, a local and a remote backend, and the per-call fallback between them
from __future__ import annotations

import json
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Optional

from db import crud
from db.models import (
    SETTLED_STATUSES,
    ExitDecision,
    Receipt,
    ReceiptStatus,
    receipt_from_record,
    receipt_to_record,
)
from db.remote import RemoteDataService, eq, in_
from utils.errors import PersistenceError, ReceiptCollisionError
from utils.logger import get_logger

_logger = get_logger(__name__)

_SETTLED = tuple(s.value for s in SETTLED_STATUSES)


def _allowed_from(
    status: ReceiptStatus, expected: Optional[ReceiptStatus]
) -> tuple[str, ...]:
    """Statuses a receipt may currently hold for a move to `status` to apply."""
    if expected is not None:
        if expected.rank > status.rank:
            return ()
        return (expected.value,)
    return tuple(s.value for s in status.statuses_up_to())


def _refusal(receipt: Optional[Receipt]) -> Optional[ExitDecision]:
    """Why a receipt cannot be consumed, or None if it could be."""
    if receipt is None:
        return ExitDecision.NOT_FOUND
    # already-used wins over payment state so a used receipt never looks acceptable
    if receipt.exit_verification:
        return ExitDecision.ALREADY_USED
    if receipt.payment_status not in SETTLED_STATUSES:
        return ExitDecision.PAYMENT_PENDING
    return None


class ReceiptStore(ABC):
    """Persistence for the authoritative receipt records."""

    name = "receipts"

    @abstractmethod
    async def insert(self, receipt: Receipt) -> None:
        """Create a receipt. ReceiptCollisionError if the number is taken."""

    @abstractmethod
    async def find(self, receipt_number: str) -> Optional[Receipt]:
        ...

    @abstractmethod
    async def update_payment_status(
        self,
        receipt_number: str,
        status: ReceiptStatus,
        expected: Optional[ReceiptStatus] = None,
    ) -> bool:
        """
        Move payment_status forward. False if the receipt does not exist, the
        current status differs from `expected`, or the move would regress.
        """

    @abstractmethod
    async def set_exit_verified(self, receipt_number: str) -> bool:
        """Set exit_verification. Idempotent; False only if the receipt is missing."""

    @abstractmethod
    async def _consume_if_eligible(self, receipt_number: str) -> bool:
        """Single conditional write used by try_consume_exit."""

    async def try_consume_exit(self, receipt_number: str) -> ExitDecision:
        """
        Consume the receipt's one exit if it is paid and unused.

        The check and the write happen in one conditional update, so two
        terminals racing on the same receipt cannot both win.
        """
        for _ in range(2):
            if await self._consume_if_eligible(receipt_number):
                return ExitDecision.CONSUMED
            refusal = _refusal(await self.find(receipt_number))
            if refusal is not None:
                return refusal
            # became eligible between the write and the read; try once more
        raise PersistenceError(
            f"receipt {receipt_number} kept changing during exit verification"
        )


# ---------------------------
# Local embedded store
# ---------------------------


@contextmanager
def _sqlite_errors(op: str, receipt_number: str):
    try:
        yield
    except sqlite3.IntegrityError as e:
        if "UNIQUE" in str(e):
            raise ReceiptCollisionError(
                f"receipt number {receipt_number} already exists"
            ) from e
        raise PersistenceError(f"local {op} rejected: {e}") from e
    except sqlite3.Error as e:
        raise PersistenceError(f"local {op} failed: {e}") from e


class LocalReceiptStore(ReceiptStore):
    name = "local"

    async def insert(self, receipt: Receipt) -> None:
        with _sqlite_errors("insert", receipt.receipt_number):
            await crud.insert_receipt(receipt_to_record(receipt))

    async def find(self, receipt_number: str) -> Optional[Receipt]:
        with _sqlite_errors("find", receipt_number):
            row = await crud.get_receipt(receipt_number)
        return receipt_from_record(row) if row else None

    async def update_payment_status(self, receipt_number, status, expected=None) -> bool:
        allowed = _allowed_from(status, expected)
        if not allowed:
            return False
        with _sqlite_errors("update", receipt_number):
            return await crud.update_receipt_status(
                receipt_number, status.value, allowed
            )

    async def set_exit_verified(self, receipt_number: str) -> bool:
        with _sqlite_errors("exit update", receipt_number):
            return await crud.set_exit_verified(receipt_number)

    async def _consume_if_eligible(self, receipt_number: str) -> bool:
        with _sqlite_errors("exit update", receipt_number):
            return await crud.consume_exit(receipt_number, _SETTLED)


# ---------------------------
# Remote data service
# ---------------------------


class RemoteReceiptStore(ReceiptStore):
    name = "remote"
    table = "receipts"

    def __init__(self, service: RemoteDataService) -> None:
        self._service = service

    @property
    def configured(self) -> bool:
        return self._service.configured

    async def insert(self, receipt: Receipt) -> None:
        record = receipt_to_record(receipt)
        # jsonb column: send the structure, not the encoded string
        record["items_json"] = json.loads(record["items_json"])
        try:
            await self._service.insert(self.table, record)
        except ReceiptCollisionError as e:
            raise ReceiptCollisionError(
                f"receipt number {receipt.receipt_number} already exists"
            ) from e

    async def find(self, receipt_number: str) -> Optional[Receipt]:
        row = await self._service.select_one(
            self.table, {"receipt_number": eq(receipt_number)}
        )
        return receipt_from_record(row) if row else None

    async def update_payment_status(self, receipt_number, status, expected=None) -> bool:
        allowed = _allowed_from(status, expected)
        if not allowed:
            return False
        rows = await self._service.update(
            self.table,
            {"receipt_number": eq(receipt_number), "payment_status": in_(allowed)},
            {"payment_status": status.value},
        )
        return bool(rows)

    async def set_exit_verified(self, receipt_number: str) -> bool:
        rows = await self._service.update(
            self.table,
            {"receipt_number": eq(receipt_number)},
            {"exit_verification": True},
        )
        return bool(rows)

    async def _consume_if_eligible(self, receipt_number: str) -> bool:
        rows = await self._service.update(
            self.table,
            {
                "receipt_number": eq(receipt_number),
                "exit_verification": eq(False),
                "payment_status": in_(_SETTLED),
            },
            {"exit_verification": True, "payment_status": ReceiptStatus.VERIFIED.value},
        )
        return bool(rows)


# ---------------------------
# Fallback selection
# ---------------------------


class FallbackReceiptStore(ReceiptStore):
    """
    The store handed to the lifecycle.

    `is_remote_enabled` is asked on every call. When it says yes the remote
    backend is tried first; any persistence failure other than a number
    collision sends that one call to the local backend. A remote miss is also
    retried locally, so receipts written locally during an outage stay
    reachable. Failure on both sides raises PersistenceError.
    """

    name = "fallback"

    def __init__(
        self,
        remote: Optional[ReceiptStore],
        local: ReceiptStore,
        is_remote_enabled: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._remote = remote
        self._local = local
        self._is_remote_enabled = is_remote_enabled or self._remote_configured

    def _remote_configured(self) -> bool:
        return bool(getattr(self._remote, "configured", True))

    def _use_remote(self) -> bool:
        return self._remote is not None and self._is_remote_enabled()

    async def _call(self, op: str, args: tuple, miss: Any = None) -> Any:
        if not self._use_remote():
            return await getattr(self._local, op)(*args)

        remote_error: Optional[PersistenceError] = None
        try:
            result = await getattr(self._remote, op)(*args)
        except ReceiptCollisionError:
            raise
        except PersistenceError as e:
            _logger.warning(f"remote {op} failed ({e}); using local store for this call")
            remote_error = e
        else:
            if result != miss:
                return result

        try:
            local_result = await getattr(self._local, op)(*args)
        except PersistenceError as e:
            if remote_error is None:
                raise
            _logger.error(f"{op} failed on both backends: remote={remote_error}; local={e}")
            raise PersistenceError(
                f"{op} failed on both backends", reason="BOTH_BACKENDS_FAILED"
            ) from e
        return local_result

    async def insert(self, receipt: Receipt) -> None:
        await self._call("insert", (receipt,), miss=object())

    async def find(self, receipt_number: str) -> Optional[Receipt]:
        return await self._call("find", (receipt_number,), miss=None)

    async def update_payment_status(self, receipt_number, status, expected=None) -> bool:
        return await self._call(
            "update_payment_status", (receipt_number, status, expected), miss=False
        )

    async def set_exit_verified(self, receipt_number: str) -> bool:
        return await self._call("set_exit_verified", (receipt_number,), miss=False)

    async def try_consume_exit(self, receipt_number: str) -> ExitDecision:
        return await self._call(
            "try_consume_exit", (receipt_number,), miss=ExitDecision.NOT_FOUND
        )

    async def _consume_if_eligible(self, receipt_number: str) -> bool:
        return await self._call("_consume_if_eligible", (receipt_number,), miss=False)


def build_receipt_store(remote: Optional[RemoteDataService]) -> FallbackReceiptStore:
    remote_store = RemoteReceiptStore(remote) if remote is not None else None
    return FallbackReceiptStore(remote_store, LocalReceiptStore())
