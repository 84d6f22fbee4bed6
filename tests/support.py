import json
import os
import sys
import tempfile
import unittest
from decimal import Decimal
from typing import Dict, List, Optional

import httpx

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from db import database as db_database  # noqa: E402
from db.models import Product  # noqa: E402
from utils.config import RemoteConfig  # noqa: E402


class TempDatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Each test gets its own freshly seeded SQLite file."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.sqlite")
        db_database.configure(self.db_path)

    async def asyncSetUp(self):
        # Touch initialization by opening a connection
        async with db_database.connect() as conn:
            cur = await conn.execute("SELECT name FROM sqlite_master WHERE type='table';")
            await cur.fetchall()
            await cur.close()

    def tearDown(self):
        self.temp_dir.cleanup()


def make_product(pid="p-1", mrp="100.00", price="80.00", barcode=None) -> Product:
    mrp, price = Decimal(mrp), Decimal(price)
    return Product(
        id=pid,
        barcode=barcode or f"bc-{pid}",
        name=f"Product {pid}",
        brand="Brand",
        weight="1kg",
        category="Misc",
        image_url="",
        mrp=mrp,
        price=price,
        discount=mrp - price,
    )


REMOTE_CONFIG = RemoteConfig(url="https://remote.test", api_key="k", timeout=1.0)

_KEYS = {"receipts": "receipt_number", "employees": "employee_id", "product_master": "barcode"}


def _as_text(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _matches(value, expr: str) -> bool:
    op, _, arg = expr.partition(".")
    if op == "eq":
        return _as_text(value) == arg
    if op == "is":
        return {"true": value is True, "false": value is False, "null": value is None}[arg]
    if op == "in":
        return _as_text(value) in arg.strip("()").split(",")
    raise AssertionError(f"unsupported filter {expr}")


class FakeRest:
    """
    In-memory stand-in for the PostgREST endpoints the remote data service
    talks to. Set `down = True` to make every request fail at the transport
    level, `timeout = True` to make it time out, or `status = 503` to make it
    answer with that status.
    """

    def __init__(self, tables: Optional[Dict[str, List[dict]]] = None):
        self.tables: Dict[str, List[dict]] = {
            name: [dict(r) for r in rows] for name, rows in (tables or {}).items()
        }
        self.calls: List[tuple] = []
        self.down = False
        self.timeout = False
        self.status: Optional[int] = None

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        table = request.url.path.rsplit("/", 1)[-1]
        self.calls.append((request.method, table))
        if self.down:
            raise httpx.ConnectError("remote down", request=request)
        if self.timeout:
            raise httpx.ReadTimeout("remote too slow", request=request)
        if self.status is not None:
            return httpx.Response(self.status, json={"message": "error"})

        rows = self.tables.setdefault(table, [])
        params = dict(request.url.params)
        limit = params.pop("limit", None)
        params.pop("select", None)

        def match(row):
            return all(_matches(row.get(k), v) for k, v in params.items())

        if request.method == "GET":
            found = [dict(r) for r in rows if match(r)]
            if limit is not None:
                found = found[: int(limit)]
            return httpx.Response(200, json=found)

        if request.method == "POST":
            key = _KEYS.get(table)
            for new in json.loads(request.content):
                if key and any(r.get(key) == new.get(key) for r in rows):
                    return httpx.Response(409, json={"code": "23505"})
                rows.append(dict(new))
            return httpx.Response(201)

        if request.method == "PATCH":
            values = json.loads(request.content)
            changed = []
            for row in rows:
                if match(row):
                    row.update(values)
                    changed.append(dict(row))
            return httpx.Response(200, json=changed)

        return httpx.Response(405)

    def row(self, table: str, **where) -> Optional[dict]:
        for r in self.tables.get(table, []):
            if all(r.get(k) == v for k, v in where.items()):
                return r
        return None
