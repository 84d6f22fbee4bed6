from __future__ import annotations

import sqlite3
from typing import List, Optional, Tuple

from db import crud
from db.models import Order
from utils.errors import PersistenceError


class HistoryLog:
    """
    Append-only record of this device's completed orders ("past orders").

    Not authoritative for staff verification; the receipt store is.
    """

    async def append(self, order: Order) -> None:
        try:
            await crud.append_order(order)
        except sqlite3.Error as e:
            raise PersistenceError(f"could not save order {order.id} to history: {e}") from e

    async def list(self, page: int = 1, page_size: int = 5) -> Tuple[List[Order], int]:
        """Newest first. Returns (orders_for_page, total_count)."""
        try:
            return await crud.list_orders(page, page_size)
        except sqlite3.Error as e:
            raise PersistenceError(f"could not read order history: {e}") from e

    async def find_by_order_id(self, order_id: str) -> Optional[Order]:
        try:
            return await crud.get_order(order_id)
        except sqlite3.Error as e:
            raise PersistenceError(f"could not read order {order_id}: {e}") from e
