"""Wires the checkout core together from an AppConfig."""

from __future__ import annotations

from typing import Optional

import httpx

from db import database
from db.receipt_store import FallbackReceiptStore, build_receipt_store
from db.remote import RemoteDataService
from services.auth import Authenticator, HttpOtpGateway, OtpGateway
from services.catalog import CatalogResolver
from services.history import HistoryLog
from services.lifecycle import ReceiptLifecycle
from services.session import CustomerSession
from services.stores import StoreDirectory
from services.terminal import ScanDebouncer, StaffTerminal, TerminalMode
from utils.config import AppConfig, load_config
from utils.errors import ErrorKind, Outcome
from utils.logger import get_logger
from utils.state import SessionState

_logger = get_logger(__name__)


class ScanGoCore:
    def __init__(
        self,
        config: AppConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        otp: Optional[OtpGateway] = None,
    ) -> None:
        self.config = config
        database.configure(config.database.path)

        self.remote = RemoteDataService(config.remote, transport=transport)
        self.receipts: FallbackReceiptStore = build_receipt_store(self.remote)
        self.catalog = CatalogResolver(self.remote)
        self.history = HistoryLog()
        self.stores = StoreDirectory()
        self.auth = Authenticator(self.remote)
        self.otp = otp or HttpOtpGateway(config.otp)
        self.lifecycle = ReceiptLifecycle(
            self.receipts,
            self.history,
            allow_history_lookup=config.checkout.allow_history_lookup,
            receipt_attempts=config.checkout.receipt_attempts,
        )
        self.state = SessionState()

        backend = "remote with local fallback" if config.remote.enabled else "local only"
        _logger.info(f"checkout core ready ({backend}, db={config.database.path})")

    def new_customer_session(self) -> CustomerSession:
        return CustomerSession(
            self.catalog,
            self.lifecycle,
            ScanDebouncer(self.config.checkout.scan_debounce),
        )

    def open_terminal(self, mode: TerminalMode) -> Outcome[StaffTerminal]:
        """Open a terminal for the logged-in employee."""
        if self.state.employee is None:
            return Outcome.failure(ErrorKind.VALIDATION, "log in before opening a terminal")
        if self.state.employee.role.value != mode.value:
            return Outcome.failure(
                ErrorKind.VALIDATION,
                f"{self.state.employee.role.value} cannot open a {mode.value} terminal",
            )
        return Outcome.success(StaffTerminal(self.lifecycle, self.state.employee, mode))

    async def aclose(self) -> None:
        await self.remote.aclose()


def build_core(config_path: Optional[str] = None) -> ScanGoCore:
    return ScanGoCore(load_config(config_path))
