"""Barcode + store -> priced product."""

from __future__ import annotations

import sqlite3
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from db import crud
from db.models import Product, to_money
from db.remote import RemoteDataService, eq
from utils.errors import (
    CheckoutError,
    DataIntegrityError,
    NotFoundError,
    Outcome,
    PersistenceError,
    ValidationError,
)
from utils.logger import get_logger

_logger = get_logger(__name__)


def price_product(master: Dict[str, Any], store_price: Optional[Any]) -> Product:
    """
    Apply a store override to a master record.

    Without an override the product sells at its MRP with no discount.
    Raises DataIntegrityError if the effective price falls outside [0, mrp].
    """
    mrp = to_money(master["base_mrp"])
    price = mrp if store_price is None else to_money(store_price)
    if price < Decimal("0") or price > mrp:
        raise DataIntegrityError(
            f"price {price} for barcode {master['barcode']} is outside [0, {mrp}]"
        )
    return Product(
        id=str(master["id"]),
        barcode=str(master["barcode"]),
        name=master["name"],
        brand=master.get("brand") or "",
        weight=master.get("weight") or "",
        category=master.get("category") or "",
        image_url=master.get("image_url") or "",
        mrp=mrp,
        price=price,
        discount=mrp - price,
    )


class CatalogResolver:
    """
    Resolves scanned barcodes for a store.

    Reads from the remote data service when it is configured and falls back
    to the local embedded store for any call that fails remotely. Resolved
    products are cached per (store, barcode) for the life of the resolver.
    """

    def __init__(self, remote: Optional[RemoteDataService] = None) -> None:
        self._remote = remote
        self._cache: Dict[Tuple[str, str], Product] = {}

    async def _lookup_remote(self, barcode: str, store_id: str):
        master = await self._remote.select_one(
            "product_master", {"barcode": eq(barcode)}
        )
        if master is None:
            return None, None
        override = await self._remote.select_one(
            "store_inventory",
            {"store_id": eq(store_id), "barcode": eq(barcode)},
            columns="store_price",
        )
        return master, (override or {}).get("store_price")

    async def _lookup_local(self, barcode: str, store_id: str):
        master = await crud.get_master_product(barcode)
        if master is None:
            return None, None
        return master, await crud.get_store_price(store_id, barcode)

    async def _lookup(self, barcode: str, store_id: str):
        if self._remote is not None and self._remote.configured:
            try:
                return await self._lookup_remote(barcode, store_id)
            except PersistenceError as e:
                _logger.warning(f"remote catalog lookup failed ({e}); using local catalog")
        try:
            return await self._lookup_local(barcode, store_id)
        except sqlite3.Error as e:
            raise PersistenceError(f"local catalog lookup failed: {e}") from e

    async def fetch(self, barcode: str, store_id: str) -> Product:
        """Like resolve() but raises CheckoutError subclasses instead of returning an Outcome."""
        barcode = (barcode or "").strip()
        if not barcode:
            raise ValidationError("empty barcode")
        if not store_id:
            raise ValidationError("select a store before scanning")

        key = (store_id, barcode)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        master, store_price = await self._lookup(barcode, store_id)
        if master is None:
            raise NotFoundError(f"Not Found: [{barcode}]")
        try:
            product = price_product(master, store_price)
        except DataIntegrityError as e:
            _logger.error(f"rejected catalog record for store {store_id}: {e}")
            raise
        self._cache[key] = product
        return product

    async def resolve(self, barcode: str, store_id: str) -> Outcome[Product]:
        try:
            return Outcome.success(await self.fetch(barcode, store_id))
        except CheckoutError as e:
            return Outcome.from_error(e)
