from __future__ import annotations

from typing import Optional

from db.models import CartItem, Order, PaymentMethod, Product, Store
from services.cart import Cart, Totals
from services.catalog import CatalogResolver
from services.lifecycle import ReceiptLifecycle
from services.terminal import BusyGuard, ScanDebouncer
from utils.errors import CheckoutError, ErrorKind, Outcome

MSG_CHECKOUT_BUSY = "checkout already in progress"


class CustomerSession:
    """
    A shopper's visit: the chosen store, the cart, and checkout.

    Prices are store specific, so switching stores empties the cart. The cart
    is frozen while a checkout is in flight.
    """

    def __init__(
        self,
        catalog: CatalogResolver,
        lifecycle: ReceiptLifecycle,
        debouncer: Optional[ScanDebouncer] = None,
    ) -> None:
        self._catalog = catalog
        self._lifecycle = lifecycle
        self._debouncer = debouncer or ScanDebouncer()
        self._guard = BusyGuard()
        self.store: Optional[Store] = None
        self.cart = Cart()
        self.last_order: Optional[Order] = None

    def select_store(self, store: Store) -> None:
        if self.store is not None and self.store.id != store.id:
            self.cart.clear()
        self.store = store

    async def scan(self, barcode: str) -> Outcome[Product]:
        if self.store is None:
            return Outcome.failure(ErrorKind.VALIDATION, "Please select a store first.")
        if not self._debouncer.accept():
            return Outcome.failure(ErrorKind.BUSY, "duplicate scan ignored")
        return await self._catalog.resolve(barcode, self.store.id)

    def add(self, product: Product, qty: int = 1) -> Outcome[CartItem]:
        if self._guard.busy:
            return Outcome.failure(ErrorKind.BUSY, MSG_CHECKOUT_BUSY)
        try:
            return Outcome.success(self.cart.add(product, qty))
        except CheckoutError as e:
            return Outcome.from_error(e)

    def adjust(self, product_id: str, delta: int) -> Outcome[int]:
        if self._guard.busy:
            return Outcome.failure(ErrorKind.BUSY, MSG_CHECKOUT_BUSY)
        try:
            return Outcome.success(self.cart.adjust(product_id, delta))
        except CheckoutError as e:
            return Outcome.from_error(e)

    def totals(self) -> Totals:
        return self.cart.totals()

    async def checkout(self, method: PaymentMethod) -> Outcome[Order]:
        async with self._guard.hold() as entered:
            if not entered:
                return Outcome.failure(ErrorKind.BUSY, MSG_CHECKOUT_BUSY)
            outcome = await self._lifecycle.create_order(self.cart, method, self.store)
            if outcome.ok:
                self.last_order = outcome.value
                self.cart.clear()
            return outcome
