"""QR payload shown on the customer's receipt and read back by staff scanners."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from utils.errors import ValidationError

PAYLOAD_VERSION = 1
PAYLOAD_SIGNATURE = "SCANGO_VALID"


@dataclass(frozen=True)
class StructuredPayload:
    order_id: Optional[str]
    receipt_number: Optional[str]
    version: Optional[int]
    timestamp: Optional[int] = None
    signature: Optional[str] = None


@dataclass(frozen=True)
class LiteralPayload:
    text: str


ScanPayload = Union[StructuredPayload, LiteralPayload]


def encode_payload(order_id: str, receipt_number: str, created_at: datetime) -> str:
    return json.dumps(
        {
            "id": order_id,
            "receipt": receipt_number,
            "v": PAYLOAD_VERSION,
            "ts": int(created_at.timestamp() * 1000),
            "sig": PAYLOAD_SIGNATURE,
        },
        separators=(",", ":"),
    )


def _opt_str(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def decode_payload(text: str) -> ScanPayload:
    """
    Parse scanned text. JSON objects become StructuredPayload; anything else
    (plain receipt numbers, JSON scalars, garbage) is kept as LiteralPayload.
    """
    raw = (text or "").strip()
    if not raw:
        raise ValidationError("empty scan")
    try:
        data = json.loads(raw)
    except ValueError:
        return LiteralPayload(raw)
    if not isinstance(data, dict):
        return LiteralPayload(raw)
    return StructuredPayload(
        order_id=_opt_str(data.get("id")),
        receipt_number=_opt_str(data.get("receipt")),
        version=_opt_int(data.get("v")),
        timestamp=_opt_int(data.get("ts")),
        signature=_opt_str(data.get("sig")),
    )
