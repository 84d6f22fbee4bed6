from __future__ import annotations

from typing import List, Optional

from db import crud
from db.models import Store


class StoreDirectory:
    """Static store reference data, loaded once from the local store."""

    def __init__(self) -> None:
        self._stores: Optional[List[Store]] = None

    async def list_stores(self) -> List[Store]:
        if self._stores is None:
            self._stores = await crud.list_stores()
        return list(self._stores)

    async def get(self, store_id: str) -> Optional[Store]:
        for store in await self.list_stores():
            if store.id == store_id:
                return store
        return None
