import json

import httpx
from support import REMOTE_CONFIG, FakeRest, TempDatabaseTestCase

from db.models import EmployeeRole, PaymentMethod
from db.remote import RemoteDataService
from services.app import ScanGoCore
from services.auth import Authenticator, HttpOtpGateway, OtpGateway
from services.terminal import TerminalMode
from utils.config import AppConfig, DatabaseConfig, OtpConfig
from utils.errors import ErrorKind
from utils.state import SessionState

OTP_CONFIG = OtpConfig(base_url="http://otp.test/api", timeout=1.0)


class FakeOtp(OtpGateway):
    def __init__(self, code="4321"):
        self.code = code
        self.sent = []

    async def send_otp(self, phone):
        self.sent.append(phone)
        return True

    async def verify_otp(self, phone, code):
        return code == self.code


class AuthenticatorTestCase(TempDatabaseTestCase):
    async def test_local_seeded_employees(self):
        auth = Authenticator()
        cashier = await auth.login("admin", "1234")
        self.assertEqual(cashier.role, EmployeeRole.CASHIER)
        self.assertEqual(cashier.name, "Demo Employee")
        guard = await auth.login(" emp-201 ", "gate201")
        self.assertEqual(guard.role, EmployeeRole.GUARD)

    async def test_wrong_or_missing_credentials(self):
        auth = Authenticator()
        self.assertIsNone(await auth.login("admin", "wrong"))
        self.assertIsNone(await auth.login("", "1234"))
        self.assertIsNone(await auth.login("admin", ""))

    async def test_remote_employee(self):
        rest = FakeRest(
            {
                "employees": [
                    {"employee_id": "r-9", "password": "pw", "name": "Remote Guard", "role": "guard"}
                ]
            }
        )
        auth = Authenticator(RemoteDataService(REMOTE_CONFIG, transport=rest.transport()))
        employee = await auth.login("r-9", "pw")
        self.assertEqual(employee.name, "Remote Guard")
        self.assertEqual(employee.role, EmployeeRole.GUARD)

    async def test_remote_miss_checks_local(self):
        rest = FakeRest({"employees": []})
        auth = Authenticator(RemoteDataService(REMOTE_CONFIG, transport=rest.transport()))
        self.assertEqual((await auth.login("admin", "1234")).id, "admin")

    async def test_remote_down_falls_back_to_local(self):
        rest = FakeRest()
        rest.down = True
        auth = Authenticator(RemoteDataService(REMOTE_CONFIG, transport=rest.transport()))
        with self.assertLogs("scango.services.auth", level="WARNING"):
            employee = await auth.login("emp-101", "cash101")
        self.assertEqual(employee.role, EmployeeRole.CASHIER)

    async def test_unknown_role_rejected(self):
        rest = FakeRest(
            {"employees": [{"employee_id": "x", "password": "pw", "name": "X", "role": "MANAGER"}]}
        )
        auth = Authenticator(RemoteDataService(REMOTE_CONFIG, transport=rest.transport()))
        with self.assertLogs("scango.services.auth", level="ERROR"):
            self.assertIsNone(await auth.login("x", "pw"))


class HttpOtpGatewayTestCase(TempDatabaseTestCase):
    def gateway(self, handler) -> HttpOtpGateway:
        return HttpOtpGateway(OTP_CONFIG, transport=httpx.MockTransport(handler))

    async def test_send_and_verify(self):
        seen = []

        def handler(request):
            seen.append((request.url.path, json.loads(request.content)))
            body = json.loads(request.content)
            ok = request.url.path.endswith("/send-otp") or body.get("otp") == "4321"
            return httpx.Response(200, json={"success": ok})

        gateway = self.gateway(handler)
        self.assertTrue(await gateway.send_otp("9876543210"))
        self.assertTrue(await gateway.verify_otp("9876543210", "4321"))
        self.assertFalse(await gateway.verify_otp("9876543210", "0000"))
        self.assertEqual(seen[0], ("/api/send-otp", {"mobileNumber": "9876543210"}))
        self.assertEqual(seen[1][1], {"mobileNumber": "9876543210", "otp": "4321"})

    async def test_unreachable_backend_is_a_no(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.assertLogs("scango.services.auth", level="WARNING"):
            self.assertFalse(await self.gateway(handler).verify_otp("1", "4321"))

    async def test_error_status_or_garbage_is_a_no(self):
        self.assertFalse(
            await self.gateway(lambda r: httpx.Response(500)).send_otp("1")
        )
        self.assertFalse(
            await self.gateway(lambda r: httpx.Response(200, text="<html>")).send_otp("1")
        )


class SessionStateTestCase(TempDatabaseTestCase):
    async def test_employee_login_and_logout(self):
        state = SessionState()
        auth = Authenticator()
        self.assertEqual(
            (await state.employee_login(auth, "", "")).error, ErrorKind.VALIDATION
        )
        miss = await state.employee_login(auth, "admin", "nope")
        self.assertEqual(miss.error, ErrorKind.NOT_FOUND)
        self.assertIsNone(state.employee)

        hit = await state.employee_login(auth, "admin", "1234")
        self.assertTrue(hit.ok)
        self.assertEqual(state.employee.id, "admin")
        state.logout()
        self.assertIsNone(state.employee)

    async def test_customer_login_follows_otp(self):
        state = SessionState()
        otp = FakeOtp()
        self.assertTrue((await state.request_otp(otp, " 9876543210 ")).ok)
        self.assertEqual(otp.sent, ["9876543210"])

        wrong = await state.customer_login(otp, "9876543210", "0000")
        self.assertEqual(wrong.error, ErrorKind.VALIDATION)
        self.assertIsNone(state.customer_phone)

        self.assertTrue((await state.customer_login(otp, "9876543210", "4321")).ok)
        self.assertEqual(state.customer_phone, "9876543210")


class ScanGoCoreTestCase(TempDatabaseTestCase):
    def make_core(self) -> ScanGoCore:
        config = AppConfig(database=DatabaseConfig(path=self.db_path))
        return ScanGoCore(config, otp=FakeOtp())

    async def test_terminal_requires_matching_login(self):
        core = self.make_core()
        self.assertEqual(
            core.open_terminal(TerminalMode.GUARD).error, ErrorKind.VALIDATION
        )
        await core.state.employee_login(core.auth, "emp-201", "gate201")
        self.assertEqual(
            core.open_terminal(TerminalMode.CASHIER).error, ErrorKind.VALIDATION
        )
        terminal = core.open_terminal(TerminalMode.GUARD).value
        self.assertEqual(terminal.employee.id, "emp-201")
        await core.aclose()

    async def test_customer_session_uses_local_store(self):
        core = self.make_core()
        session = core.new_customer_session()
        session.select_store((await core.stores.list_stores())[0])
        product = (await session.scan("8901088136945")).value
        session.add(product)
        order = (await session.checkout(PaymentMethod.UPI)).value
        self.assertTrue((await core.lifecycle.verify_exit(order.qr_payload)).ok)
        await core.aclose()
