"""Employee login and the OTP collaborator used to gate customer login."""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from db import crud
from db.models import Employee, EmployeeRole
from db.remote import RemoteDataService, eq
from utils.config import OtpConfig
from utils.errors import PersistenceError
from utils.logger import get_logger

_logger = get_logger(__name__)


def _employee_from_row(row: Dict[str, Any]) -> Optional[Employee]:
    try:
        role = EmployeeRole(str(row.get("role") or "CASHIER").upper())
    except ValueError:
        _logger.error(f"employee {row.get('employee_id')} has unknown role {row.get('role')!r}")
        return None
    return Employee(id=str(row["employee_id"]), name=row["name"], role=role)


class Authenticator:
    """Checks staff credentials against the remote employees table, else the local one."""

    def __init__(self, remote: Optional[RemoteDataService] = None) -> None:
        self._remote = remote

    async def login(self, employee_id: str, password: str) -> Optional[Employee]:
        """Return the Employee if id/password match; otherwise None."""
        employee_id = (employee_id or "").strip()
        if not employee_id or not password:
            return None

        if self._remote is not None and self._remote.configured:
            try:
                row = await self._remote.select_one(
                    "employees",
                    {"employee_id": eq(employee_id), "password": eq(password)},
                    columns="employee_id,name,role",
                )
                if row:
                    return _employee_from_row(row)
            except PersistenceError as e:
                _logger.warning(f"remote login failed ({e}); checking local employees")

        try:
            row = await crud.get_employee(employee_id, password)
        except sqlite3.Error as e:
            raise PersistenceError(f"local employee lookup failed: {e}") from e
        return _employee_from_row(row) if row else None


class OtpGateway(ABC):
    """Delivers and checks one-time codes. Delivery itself happens elsewhere."""

    @abstractmethod
    async def send_otp(self, phone: str) -> bool:
        ...

    @abstractmethod
    async def verify_otp(self, phone: str, code: str) -> bool:
        ...


class HttpOtpGateway(OtpGateway):
    """Talks to the OTP backend (`POST /send-otp`, `POST /verify-otp`)."""

    def __init__(
        self,
        config: OtpConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

    async def _post(self, path: str, body: Dict[str, str]) -> bool:
        try:
            async with httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.post(path, json=body)
        except httpx.HTTPError as e:
            _logger.warning(f"OTP backend unreachable ({e})")
            return False
        if resp.is_error:
            _logger.warning(f"OTP backend returned {resp.status_code} for {path}")
            return False
        try:
            return bool(resp.json().get("success"))
        except (ValueError, AttributeError):
            _logger.warning(f"OTP backend sent an unreadable reply for {path}")
            return False

    async def send_otp(self, phone: str) -> bool:
        return await self._post("/send-otp", {"mobileNumber": phone})

    async def verify_otp(self, phone: str, code: str) -> bool:
        return await self._post("/verify-otp", {"mobileNumber": phone, "otp": code})
