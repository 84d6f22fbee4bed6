from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from db.models import Employee
from utils.errors import ErrorKind, Outcome
from utils.logger import get_logger

if TYPE_CHECKING:
    from services.auth import Authenticator, OtpGateway

_logger = get_logger(__name__)


@dataclass
class SessionState:
    """
    Who is using this device right now. Held in memory only.

    Fields:
      - employee: logged-in staff member, if any
      - customer_phone: phone number a customer verified via OTP, if any
    """

    employee: Optional[Employee] = None
    customer_phone: Optional[str] = None

    async def employee_login(
        self, auth: "Authenticator", employee_id: str, password: str
    ) -> Outcome[Employee]:
        if not (employee_id or "").strip() or not password:
            return Outcome.failure(
                ErrorKind.VALIDATION, "Employee ID or password cannot be empty!"
            )
        employee = await auth.login(employee_id, password)
        if employee is None:
            return Outcome.failure(ErrorKind.NOT_FOUND, "Invalid employee ID or password.")
        self.employee = employee
        _logger.info(f"employee {employee.id} logged in as {employee.role.value}")
        return Outcome.success(employee, message=f"Hello {employee.name}!")

    async def request_otp(self, otp: "OtpGateway", phone: str) -> Outcome[str]:
        phone = (phone or "").strip()
        if not phone:
            return Outcome.failure(ErrorKind.VALIDATION, "Enter a mobile number.")
        if not await otp.send_otp(phone):
            return Outcome.failure(ErrorKind.PERSISTENCE, "Could not send OTP, try again.")
        return Outcome.success(phone, message="OTP sent")

    async def customer_login(
        self, otp: "OtpGateway", phone: str, code: str
    ) -> Outcome[str]:
        """Customer login succeeds exactly when the OTP collaborator says so."""
        phone = (phone or "").strip()
        if not phone or not (code or "").strip():
            return Outcome.failure(ErrorKind.VALIDATION, "Enter the mobile number and OTP.")
        if not await otp.verify_otp(phone, code.strip()):
            return Outcome.failure(ErrorKind.VALIDATION, "Invalid OTP")
        self.customer_phone = phone
        return Outcome.success(phone, message="Verified")

    def logout(self) -> None:
        self.employee = None
        self.customer_phone = None
