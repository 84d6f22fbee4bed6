from __future__ import annotations

import time
from contextlib import asynccontextmanager
from enum import Enum
from typing import Callable, Optional

from db.models import Employee, Receipt, ReceiptStatus
from services.lifecycle import ReceiptLifecycle
from utils.errors import ErrorKind, Outcome, ValidationError
from utils.logger import get_logger

_logger = get_logger(__name__)

MSG_BUSY = "Still processing the previous scan"


class TerminalMode(str, Enum):
    CASHIER = "CASHIER"
    GUARD = "GUARD"


class BusyGuard:
    """
    Lets one operation run at a time and turns away the rest.

    Checking and setting the flag happen with no await in between, so on a
    single event loop two scans cannot both get in.
    """

    def __init__(self) -> None:
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def try_enter(self) -> bool:
        if self._busy:
            return False
        self._busy = True
        return True

    def leave(self) -> None:
        self._busy = False

    @asynccontextmanager
    async def hold(self):
        if not self.try_enter():
            yield False
            return
        try:
            yield True
        finally:
            self.leave()


class ScanDebouncer:
    """Drops barcode scans that arrive within `min_interval` seconds of the last accepted one."""

    def __init__(
        self, min_interval: float = 2.5, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._min_interval = min_interval
        self._clock = clock
        self._last: Optional[float] = None

    def accept(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self._min_interval:
            return False
        self._last = now
        return True


class StaffTerminal:
    """
    One cashier or guard scanning station.

    Cashier: scan() looks the receipt up, collect() marks the scanned receipt
    paid. Guard: scan() verifies and consumes the exit.
    """

    def __init__(
        self, lifecycle: ReceiptLifecycle, employee: Employee, mode: TerminalMode
    ) -> None:
        if employee is None:
            raise ValidationError("log in before opening a terminal")
        if employee.role.value != mode.value:
            raise ValidationError(
                f"{employee.name} ({employee.role.value}) cannot operate a {mode.value} terminal"
            )
        self._lifecycle = lifecycle
        self.employee = employee
        self.mode = mode
        self.current: Optional[Receipt] = None
        self._guard = BusyGuard()

    @property
    def busy(self) -> bool:
        return self._guard.busy

    async def scan(self, text: str) -> Outcome[Receipt]:
        async with self._guard.hold() as entered:
            if not entered:
                _logger.debug(f"{self.mode.value} terminal ignored scan while busy")
                return Outcome.failure(ErrorKind.BUSY, MSG_BUSY)
            if self.mode is TerminalMode.GUARD:
                outcome = await self._lifecycle.verify_exit(text)
            else:
                outcome = await self._cashier_lookup(text)
            self.current = outcome.value
            return outcome

    async def _cashier_lookup(self, text: str) -> Outcome[Receipt]:
        outcome = await self._lifecycle.lookup(text)
        if not outcome.ok:
            return outcome
        receipt = outcome.value
        if receipt.payment_status is ReceiptStatus.PENDING:
            return Outcome.success(receipt, message=f"Collect ₹{receipt.total_amount}")
        return Outcome.success(receipt, message="Already Paid")

    async def collect(self) -> Outcome[Receipt]:
        """Record cash payment for the receipt shown after the last scan."""
        if self.mode is not TerminalMode.CASHIER:
            return Outcome.failure(
                ErrorKind.VALIDATION, "only a cashier terminal collects payment"
            )
        if self.current is None:
            return Outcome.failure(ErrorKind.VALIDATION, "scan a receipt first")
        async with self._guard.hold() as entered:
            if not entered:
                return Outcome.failure(ErrorKind.BUSY, MSG_BUSY)
            outcome = await self._lifecycle.collect_payment(self.current.receipt_number)
            if outcome.value is not None:
                self.current = outcome.value
            _logger.info(
                f"{self.employee.id} collect {self.current.receipt_number}: "
                f"{outcome.message or outcome.error}"
            )
            return outcome

    def reset(self) -> None:
        self.current = None
