# src/db/crud.py
# local embedded store queries; every function opens its own connection
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from db import models
from db.database import connect


def _row_to_dict(row) -> Dict[str, Any]:
    return {key: row[key] for key in row.keys()}


# ---------------------------
# Stores & Employees
# ---------------------------


async def list_stores() -> List[models.Store]:
    """Return every store ordered by id."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT store_id, name, address, lat, lng FROM stores ORDER BY store_id;"
        )
        rows = await cur.fetchall()
        await cur.close()
    return [
        models.Store(id=row[0], name=row[1], address=row[2], lat=row[3], lng=row[4])
        for row in rows
    ]


async def get_employee(employee_id: str, password: str) -> Optional[Dict[str, Any]]:
    """Return the employee row if id/password match; otherwise None."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT employee_id, name, role FROM employees WHERE employee_id = ? AND password = ?;",
            (employee_id, password),
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_dict(row) if row else None


# ---------------------------
# Catalog
# ---------------------------


async def get_master_product(barcode: str) -> Optional[Dict[str, Any]]:
    """Fetch the master record for a barcode."""
    async with connect() as conn:
        cur = await conn.execute(
            """
            SELECT id, barcode, name, brand, weight, category, image_url, base_mrp
            FROM product_master
            WHERE barcode = ?;
            """,
            (barcode,),
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_dict(row) if row else None


async def get_store_price(store_id: str, barcode: str) -> Optional[float]:
    """Return the store-specific price override, or None if the store has none."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT store_price FROM store_inventory WHERE store_id = ? AND barcode = ?;",
            (store_id, barcode),
        )
        row = await cur.fetchone()
        await cur.close()
    return row[0] if row else None


async def set_store_price(store_id: str, barcode: str, price: float) -> None:
    """Insert or replace a store price override."""
    async with connect() as conn:
        await conn.execute(
            """
            INSERT INTO store_inventory(store_id, barcode, store_price) VALUES (?, ?, ?)
            ON CONFLICT(store_id, barcode) DO UPDATE SET store_price = excluded.store_price;
            """,
            (store_id, barcode, price),
        )
        await conn.commit()


# ---------------------------
# Receipts
# ---------------------------


async def insert_receipt(record: Dict[str, Any]) -> None:
    """
    Insert a receipt row. Raises sqlite3.IntegrityError if the receipt number
    already exists.
    """
    async with connect() as conn:
        await conn.execute(
            """
            INSERT INTO receipts(receipt_number, store_id, total_amount, payment_status,
                                 items_json, created_at, exit_verification)
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                record["receipt_number"],
                record["store_id"],
                float(record["total_amount"]),
                record["payment_status"],
                record["items_json"],
                record["created_at"],
                1 if record["exit_verification"] else 0,
            ),
        )
        await conn.commit()


async def get_receipt(receipt_number: str) -> Optional[Dict[str, Any]]:
    async with connect() as conn:
        cur = await conn.execute(
            """
            SELECT receipt_number, store_id, total_amount, payment_status,
                   items_json, created_at, exit_verification
            FROM receipts
            WHERE receipt_number = ?;
            """,
            (receipt_number,),
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_dict(row) if row else None


async def update_receipt_status(
    receipt_number: str, status: str, allowed_from: Tuple[str, ...]
) -> bool:
    """
    Set payment_status only if the current status is one of allowed_from.
    Return True if a row was updated.
    """
    marks = ", ".join("?" for _ in allowed_from)
    async with connect() as conn:
        res = await conn.execute(
            f"""
            UPDATE receipts SET payment_status = ?
            WHERE receipt_number = ? AND payment_status IN ({marks});
            """,
            (status, receipt_number, *allowed_from),
        )
        await conn.commit()
        return res.rowcount > 0


async def set_exit_verified(receipt_number: str) -> bool:
    """Set exit_verification = 1. Succeeds on rows that are already verified."""
    async with connect() as conn:
        res = await conn.execute(
            "UPDATE receipts SET exit_verification = 1 WHERE receipt_number = ?;",
            (receipt_number,),
        )
        await conn.commit()
        return res.rowcount > 0


async def consume_exit(receipt_number: str, settled: Tuple[str, ...]) -> bool:
    """
    Flip exit_verification and mark the receipt VERIFIED in one statement,
    only if it is unused and settled. Return True if this call consumed it.
    """
    marks = ", ".join("?" for _ in settled)
    async with connect() as conn:
        res = await conn.execute(
            f"""
            UPDATE receipts
            SET exit_verification = 1, payment_status = 'VERIFIED'
            WHERE receipt_number = ?
              AND exit_verification = 0
              AND payment_status IN ({marks});
            """,
            (receipt_number, *settled),
        )
        await conn.commit()
        return res.rowcount == 1


# ---------------------------
# Order History (append-only)
# ---------------------------


async def append_order(order: models.Order) -> None:
    async with connect() as conn:
        await conn.execute(
            """
            INSERT INTO order_history(order_id, receipt_number, store_name, items_json,
                                      total_amount, total_discount, payment_method,
                                      status, created_at, qr_payload)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                order.id,
                order.receipt_number,
                order.store_name,
                models.items_to_json(order.items),
                float(order.total_amount),
                float(order.total_discount),
                order.payment_method.value,
                order.status.value,
                order.created_at.isoformat(),
                order.qr_payload,
            ),
        )
        await conn.commit()


def _order_from_row(row) -> models.Order:
    return models.Order(
        id=row["order_id"],
        receipt_number=row["receipt_number"],
        store_name=row["store_name"],
        items=models.items_from_json(row["items_json"]),
        total_amount=models.to_money(row["total_amount"]),
        total_discount=models.to_money(row["total_discount"]),
        payment_method=models.PaymentMethod(row["payment_method"]),
        status=models.ReceiptStatus(row["status"]),
        created_at=models.parse_timestamp(row["created_at"]),
        qr_payload=row["qr_payload"],
    )


_ORDER_COLUMNS = """
    order_id, receipt_number, store_name, items_json, total_amount,
    total_discount, payment_method, status, created_at, qr_payload
"""


async def list_orders(page: int, page_size: int = 5) -> Tuple[List[models.Order], int]:
    """
    List past orders newest first, paginated.
    Return (orders_for_page, total_count).
    """
    async with connect() as conn:
        cur = await conn.execute("SELECT COUNT(*) FROM order_history;")
        total = (await cur.fetchone())[0]
        await cur.close()
        offset = max(page - 1, 0) * page_size
        cur = await conn.execute(
            f"""
            SELECT {_ORDER_COLUMNS}
            FROM order_history
            ORDER BY seq DESC
            LIMIT ? OFFSET ?;
            """,
            (page_size, offset),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_order_from_row(row) for row in rows], total


async def get_order(order_id: str) -> Optional[models.Order]:
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_ORDER_COLUMNS} FROM order_history WHERE order_id = ?;",
            (order_id,),
        )
        row = await cur.fetchone()
        await cur.close()
    return _order_from_row(row) if row else None


async def count_orders() -> int:
    async with connect() as conn:
        cur = await conn.execute("SELECT COUNT(*) FROM order_history;")
        row = await cur.fetchone()
        await cur.close()
    return int(row[0])

