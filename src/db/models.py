# provide dataclass models shared by both storage backends

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Tuple

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a float/int/str/Decimal amount into a 2dp Decimal."""
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class PaymentMethod(str, Enum):
    CASH = "CASH"
    UPI = "UPI"
    CARD = "CARD"


class ReceiptStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    VERIFIED = "VERIFIED"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def statuses_up_to(self) -> Tuple["ReceiptStatus", ...]:
        """Statuses a receipt may hold before moving to this one."""
        return _STATUS_ORDER[: self.rank + 1]


_STATUS_ORDER: Tuple[ReceiptStatus, ...] = (
    ReceiptStatus.PENDING,
    ReceiptStatus.PAID,
    ReceiptStatus.VERIFIED,
)

SETTLED_STATUSES = (ReceiptStatus.PAID, ReceiptStatus.VERIFIED)


class EmployeeRole(str, Enum):
    CASHIER = "CASHIER"
    GUARD = "GUARD"


class ExitDecision(str, Enum):
    CONSUMED = "CONSUMED"
    ALREADY_USED = "ALREADY_USED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class Store:
    id: str
    name: str
    address: str
    lat: float
    lng: float


@dataclass(frozen=True)
class Employee:
    id: str
    name: str
    role: EmployeeRole


@dataclass(frozen=True)
class Product:
    id: str
    barcode: str
    name: str
    brand: str
    weight: str
    category: str
    image_url: str
    mrp: Decimal
    price: Decimal  # store-effective price
    discount: Decimal  # mrp - price


@dataclass(frozen=True)
class CartItem:
    product: Product
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.product.price * self.quantity

    @property
    def line_savings(self) -> Decimal:
        return (self.product.mrp - self.product.price) * self.quantity


@dataclass(frozen=True)
class Order:
    id: str
    receipt_number: str
    store_name: str
    items: Tuple[CartItem, ...]
    total_amount: Decimal
    total_discount: Decimal
    payment_method: PaymentMethod
    status: ReceiptStatus  # snapshot at creation, never re-synced
    created_at: datetime
    qr_payload: str


@dataclass(frozen=True)
class Receipt:
    receipt_number: str
    store_id: str
    total_amount: Decimal
    payment_status: ReceiptStatus
    created_at: datetime
    items: Tuple[CartItem, ...]
    exit_verification: bool = False


# ---------------------------
# Record (de)serialization
# ---------------------------


def product_to_record(p: Product) -> Dict[str, Any]:
    return {
        "id": p.id,
        "barcode": p.barcode,
        "name": p.name,
        "brand": p.brand,
        "weight": p.weight,
        "category": p.category,
        "image_url": p.image_url,
        "mrp": str(p.mrp),
        "price": str(p.price),
        "discount": str(p.discount),
    }


def product_from_record(rec: Dict[str, Any]) -> Product:
    return Product(
        id=rec["id"],
        barcode=rec["barcode"],
        name=rec["name"],
        brand=rec.get("brand") or "",
        weight=rec.get("weight") or "",
        category=rec.get("category") or "",
        image_url=rec.get("image_url") or "",
        mrp=to_money(rec["mrp"]),
        price=to_money(rec["price"]),
        discount=to_money(rec["discount"]),
    )


def items_to_json(items: Tuple[CartItem, ...]) -> str:
    return json.dumps(
        [dict(product_to_record(i.product), quantity=i.quantity) for i in items]
    )


def items_from_json(raw: Any) -> Tuple[CartItem, ...]:
    # the remote service returns jsonb already decoded
    data = json.loads(raw) if isinstance(raw, (str, bytes)) else (raw or [])
    return tuple(
        CartItem(product=product_from_record(rec), quantity=int(rec["quantity"]))
        for rec in data
    )


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def receipt_to_record(r: Receipt) -> Dict[str, Any]:
    """Field layout used by both the local table and the remote service."""
    return {
        "receipt_number": r.receipt_number,
        "store_id": r.store_id,
        "total_amount": str(r.total_amount),
        "payment_status": r.payment_status.value,
        "items_json": items_to_json(r.items),
        "created_at": r.created_at.isoformat(),
        "exit_verification": bool(r.exit_verification),
    }


def receipt_from_record(rec: Dict[str, Any]) -> Receipt:
    return Receipt(
        receipt_number=rec["receipt_number"],
        store_id=rec["store_id"],
        total_amount=to_money(rec["total_amount"]),
        payment_status=ReceiptStatus(rec["payment_status"]),
        created_at=parse_timestamp(rec["created_at"]),
        items=items_from_json(rec.get("items_json")),
        exit_verification=bool(rec.get("exit_verification") or False),
    )
