"""
Receipt lifecycle: checkout creates the receipt, the cashier moves it from
PENDING to PAID, the guard consumes its single exit.

    PENDING --collect--> PAID --exit--> VERIFIED (exit_verification = true)

Cash orders start PENDING; UPI/card orders start PAID. Every public method
returns an Outcome instead of raising.
"""

from __future__ import annotations

import random
import string
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from db.models import (
    ExitDecision,
    Order,
    PaymentMethod,
    Receipt,
    ReceiptStatus,
    Store,
    to_money,
)
from db.receipt_store import ReceiptStore
from services.cart import Cart
from services.history import HistoryLog
from services.qr import LiteralPayload, decode_payload, encode_payload
from utils.errors import (
    CheckoutError,
    ErrorKind,
    NotFoundError,
    Outcome,
    PersistenceError,
    ReceiptCollisionError,
    ValidationError,
)
from utils.logger import get_logger

_logger = get_logger(__name__)

RECEIPT_PREFIX = "RCP-"
ORDER_PREFIX = "ORD-"

MSG_NOT_FOUND = "Receipt Not Found"
MSG_ALREADY_PAID = "Already Paid"
MSG_ALREADY_USED = "Bill Already Used! Cannot verify again."
MSG_PAYMENT_PENDING = "Payment Pending! STOP."
MSG_EXIT_ALLOWED = "Verified: Allowed to Exit"
MSG_PAYMENT_RECORDED = "Payment Recorded"
MSG_UPDATE_FAILED = "Update Failed"


def generate_receipt_number() -> str:
    return f"{RECEIPT_PREFIX}{random.randint(100000, 999999)}"


def generate_order_id() -> str:
    alphabet = string.ascii_uppercase + string.digits
    return ORDER_PREFIX + "".join(random.choice(alphabet) for _ in range(6))


def initial_status(method: PaymentMethod) -> ReceiptStatus:
    return ReceiptStatus.PENDING if method is PaymentMethod.CASH else ReceiptStatus.PAID


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _not_found(number: str) -> NotFoundError:
    return NotFoundError(f"{MSG_NOT_FOUND}: {number}")


class ReceiptLifecycle:
    def __init__(
        self,
        store: ReceiptStore,
        history: HistoryLog,
        *,
        allow_history_lookup: bool = False,
        receipt_attempts: int = 5,
        clock: Optional[Callable[[], datetime]] = None,
        receipt_numbers: Callable[[], str] = generate_receipt_number,
        order_ids: Callable[[], str] = generate_order_id,
    ) -> None:
        self._store = store
        self._history = history
        self._allow_history_lookup = allow_history_lookup
        self._receipt_attempts = max(1, receipt_attempts)
        self._clock = clock or _utcnow
        self._receipt_numbers = receipt_numbers
        self._order_ids = order_ids

    # ---------------------------
    # Checkout
    # ---------------------------

    async def _insert_with_fresh_number(self, build: Callable[[str], Receipt]) -> Receipt:
        for attempt in range(1, self._receipt_attempts + 1):
            receipt = build(self._receipt_numbers())
            try:
                await self._store.insert(receipt)
                return receipt
            except ReceiptCollisionError:
                _logger.warning(
                    f"receipt number {receipt.receipt_number} taken "
                    f"(attempt {attempt}/{self._receipt_attempts})"
                )
        raise PersistenceError(
            f"no free receipt number after {self._receipt_attempts} attempts",
            reason="RECEIPT_NUMBER_EXHAUSTED",
        )

    async def create_order(
        self, cart: Cart, method: PaymentMethod, store: Optional[Store]
    ) -> Outcome[Order]:
        if store is None:
            return Outcome.failure(ErrorKind.VALIDATION, "select a store before checkout")
        if cart.is_empty:
            return Outcome.failure(ErrorKind.VALIDATION, "cart is empty")

        items = cart.items()
        totals = cart.totals()
        status = initial_status(method)
        created_at = self._clock()

        def build(number: str) -> Receipt:
            return Receipt(
                receipt_number=number,
                store_id=store.id,
                total_amount=to_money(totals.amount_payable),
                payment_status=status,
                created_at=created_at,
                items=items,
                exit_verification=False,
            )

        try:
            receipt = await self._insert_with_fresh_number(build)
        except PersistenceError as e:
            _logger.error(f"checkout failed, receipt not saved: {e}")
            return Outcome.from_error(e)

        order_id = self._order_ids()
        order = Order(
            id=order_id,
            receipt_number=receipt.receipt_number,
            store_name=store.name,
            items=items,
            total_amount=receipt.total_amount,
            total_discount=to_money(totals.total_savings),
            payment_method=method,
            status=status,
            created_at=created_at,
            qr_payload=encode_payload(order_id, receipt.receipt_number, created_at),
        )
        _logger.info(
            f"created {receipt.receipt_number} ({status.value}, {method.value}) "
            f"for {receipt.total_amount} at {store.id}"
        )

        # the receipt is authoritative; a history failure does not undo it
        try:
            await self._history.append(order)
        except PersistenceError as e:
            _logger.error(f"order {order.id} not added to history: {e}")
            return Outcome.success(order, message="receipt saved; history not updated")
        return Outcome.success(order)

    # ---------------------------
    # Lookup
    # ---------------------------

    async def resolve_receipt_number(self, scan_text: str) -> str:
        """Turn scanned text (QR payload or typed number) into a receipt number."""
        payload = decode_payload(scan_text)
        if isinstance(payload, LiteralPayload):
            return payload.text
        if payload.receipt_number:
            return payload.receipt_number
        if payload.order_id and self._allow_history_lookup:
            order = await self._history.find_by_order_id(payload.order_id)
            if order is not None:
                _logger.debug(f"resolved order {payload.order_id} via local history")
                return order.receipt_number
        # no receipt field: the key goes to the store as-is and misses there
        return payload.order_id or scan_text.strip()

    async def _find(self, scan_text: str) -> Receipt:
        number = await self.resolve_receipt_number(scan_text)
        receipt = await self._store.find(number)
        if receipt is None:
            raise _not_found(number)
        return receipt

    async def lookup(self, scan_text: str) -> Outcome[Receipt]:
        try:
            return Outcome.success(await self._find(scan_text))
        except CheckoutError as e:
            return Outcome.from_error(e)

    # ---------------------------
    # Cashier
    # ---------------------------

    async def collect_payment(self, scan_text: str) -> Outcome[Receipt]:
        """PENDING -> PAID. Anything else is rejected as already paid."""
        try:
            receipt = await self._find(scan_text)
        except CheckoutError as e:
            return Outcome.from_error(e)

        if receipt.payment_status is not ReceiptStatus.PENDING:
            return Outcome.failure(
                ErrorKind.INVALID_TRANSITION,
                MSG_ALREADY_PAID,
                reason="ALREADY_PAID",
                value=receipt,
            )

        number = receipt.receipt_number
        try:
            moved = await self._store.update_payment_status(
                number, ReceiptStatus.PAID, expected=ReceiptStatus.PENDING
            )
        except PersistenceError as e:
            _logger.error(f"collect on {number} failed: {e}")
            return Outcome.failure(ErrorKind.PERSISTENCE, MSG_UPDATE_FAILED, value=receipt)

        if not moved:
            # someone else settled it between our read and write
            return Outcome.failure(
                ErrorKind.INVALID_TRANSITION,
                MSG_ALREADY_PAID,
                reason="ALREADY_PAID",
                value=receipt,
            )
        _logger.info(f"{number}: PENDING -> PAID")
        return Outcome.success(
            replace(receipt, payment_status=ReceiptStatus.PAID),
            message=MSG_PAYMENT_RECORDED,
        )

    # ---------------------------
    # Guard
    # ---------------------------

    async def verify_exit(self, scan_text: str) -> Outcome[Receipt]:
        """
        Consume the receipt's single exit.

        Order of checks: already used, then paid, then pending. The store does
        the check and the write as one conditional update; the record read
        beforehand is what the outcome carries.
        """
        try:
            number = await self.resolve_receipt_number(scan_text)
            before = await self._store.find(number)
            if before is None:
                return Outcome.from_error(_not_found(number))
            decision = await self._store.try_consume_exit(number)
        except ValidationError as e:
            return Outcome.from_error(e)
        except PersistenceError as e:
            _logger.error(f"exit verification failed: {e}")
            return Outcome.failure(ErrorKind.PERSISTENCE, MSG_UPDATE_FAILED)

        if decision is ExitDecision.NOT_FOUND:
            return Outcome.from_error(_not_found(number))

        if decision is ExitDecision.CONSUMED:
            _logger.info(f"{number}: exit verified")
            return Outcome.success(
                replace(before, exit_verification=True, payment_status=ReceiptStatus.VERIFIED),
                message=MSG_EXIT_ALLOWED,
            )

        # refused: show the record as it is now, if it can be read
        try:
            receipt = await self._store.find(number) or before
        except PersistenceError as e:
            _logger.warning(f"could not re-read {number} after exit check: {e}")
            receipt = before

        if decision is ExitDecision.ALREADY_USED:
            _logger.info(f"{number}: exit refused, already used")
            return Outcome.failure(
                ErrorKind.INVALID_TRANSITION,
                MSG_ALREADY_USED,
                reason=decision.value,
                value=receipt,
            )
        _logger.info(f"{number}: exit refused, payment pending")
        return Outcome.failure(
            ErrorKind.INVALID_TRANSITION,
            MSG_PAYMENT_PENDING,
            reason=decision.value,
            value=receipt,
        )
