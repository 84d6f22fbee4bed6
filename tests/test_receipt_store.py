import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from support import REMOTE_CONFIG, FakeRest, TempDatabaseTestCase, make_product

from db.models import CartItem, ExitDecision, Receipt, ReceiptStatus
from db.receipt_store import (
    FallbackReceiptStore,
    LocalReceiptStore,
    RemoteReceiptStore,
    build_receipt_store,
)
from db.remote import RemoteDataService
from utils.config import RemoteConfig
from utils.errors import BackendUnavailableError, PersistenceError, ReceiptCollisionError


def make_receipt(number="RCP-500001", status=ReceiptStatus.PENDING, used=False) -> Receipt:
    return Receipt(
        receipt_number=number,
        store_id="store-001",
        total_amount=Decimal("160.00"),
        payment_status=status,
        created_at=datetime(2026, 5, 1, 9, 30, tzinfo=timezone.utc),
        items=(CartItem(make_product(), 2),),
        exit_verification=used,
    )


class StoreContract:
    """Behaviour every backend must share."""

    def make_store(self):
        raise NotImplementedError

    async def test_insert_and_find(self):
        store = self.make_store()
        await store.insert(make_receipt())
        found = await store.find("RCP-500001")
        self.assertEqual(found, make_receipt())
        self.assertIsNone(await store.find("RCP-123456"))

    async def test_insert_collision(self):
        store = self.make_store()
        await store.insert(make_receipt())
        with self.assertRaises(ReceiptCollisionError):
            await store.insert(make_receipt(status=ReceiptStatus.PAID))

    async def test_update_payment_status(self):
        store = self.make_store()
        await store.insert(make_receipt())
        self.assertTrue(
            await store.update_payment_status(
                "RCP-500001", ReceiptStatus.PAID, expected=ReceiptStatus.PENDING
            )
        )
        self.assertEqual((await store.find("RCP-500001")).payment_status, ReceiptStatus.PAID)
        # expected no longer matches
        self.assertFalse(
            await store.update_payment_status(
                "RCP-500001", ReceiptStatus.PAID, expected=ReceiptStatus.PENDING
            )
        )
        # never regresses
        self.assertFalse(await store.update_payment_status("RCP-500001", ReceiptStatus.PENDING))
        self.assertEqual((await store.find("RCP-500001")).payment_status, ReceiptStatus.PAID)

    async def test_update_missing_receipt_is_rejected_not_raised(self):
        store = self.make_store()
        self.assertFalse(await store.update_payment_status("RCP-123456", ReceiptStatus.PAID))
        self.assertFalse(await store.set_exit_verified("RCP-123456"))
        self.assertEqual(await store.try_consume_exit("RCP-123456"), ExitDecision.NOT_FOUND)

    async def test_set_exit_verified_twice(self):
        store = self.make_store()
        await store.insert(make_receipt(status=ReceiptStatus.PAID))
        self.assertTrue(await store.set_exit_verified("RCP-500001"))
        self.assertTrue(await store.set_exit_verified("RCP-500001"))
        self.assertTrue((await store.find("RCP-500001")).exit_verification)

    async def test_try_consume_exit(self):
        store = self.make_store()
        await store.insert(make_receipt("RCP-500001", ReceiptStatus.PAID))
        await store.insert(make_receipt("RCP-500002", ReceiptStatus.PENDING))

        self.assertEqual(await store.try_consume_exit("RCP-500001"), ExitDecision.CONSUMED)
        consumed = await store.find("RCP-500001")
        self.assertTrue(consumed.exit_verification)
        self.assertEqual(consumed.payment_status, ReceiptStatus.VERIFIED)
        self.assertEqual(await store.try_consume_exit("RCP-500001"), ExitDecision.ALREADY_USED)

        self.assertEqual(
            await store.try_consume_exit("RCP-500002"), ExitDecision.PAYMENT_PENDING
        )
        self.assertFalse((await store.find("RCP-500002")).exit_verification)

    async def test_concurrent_exit_has_one_winner(self):
        store = self.make_store()
        await store.insert(make_receipt(status=ReceiptStatus.PAID))
        decisions = await asyncio.gather(
            *(store.try_consume_exit("RCP-500001") for _ in range(8))
        )
        self.assertEqual(decisions.count(ExitDecision.CONSUMED), 1)
        self.assertEqual(decisions.count(ExitDecision.ALREADY_USED), 7)

    async def test_used_receipt_stays_used_even_if_pending(self):
        # a used flag wins over payment state
        store = self.make_store()
        await store.insert(make_receipt(status=ReceiptStatus.PENDING, used=True))
        self.assertEqual(await store.try_consume_exit("RCP-500001"), ExitDecision.ALREADY_USED)


class LocalReceiptStoreTestCase(StoreContract, TempDatabaseTestCase):
    def make_store(self):
        return LocalReceiptStore()


class RemoteReceiptStoreTestCase(StoreContract, TempDatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.rest = FakeRest({"receipts": []})

    def make_store(self):
        return RemoteReceiptStore(RemoteDataService(REMOTE_CONFIG, transport=self.rest.transport()))

    async def test_items_stored_as_structure(self):
        await self.make_store().insert(make_receipt())
        row = self.rest.row("receipts", receipt_number="RCP-500001")
        self.assertIsInstance(row["items_json"], list)
        self.assertEqual(row["items_json"][0]["quantity"], 2)
        self.assertIs(row["exit_verification"], False)


class FallbackReceiptStoreTestCase(TempDatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.rest = FakeRest({"receipts": []})
        self.remote = RemoteReceiptStore(
            RemoteDataService(REMOTE_CONFIG, transport=self.rest.transport())
        )
        self.local = LocalReceiptStore()
        self.store = FallbackReceiptStore(self.remote, self.local)

    async def test_uses_remote_when_reachable(self):
        await self.store.insert(make_receipt())
        self.assertIsNotNone(self.rest.row("receipts", receipt_number="RCP-500001"))
        self.assertIsNone(await self.local.find("RCP-500001"))

    async def test_insert_falls_back_when_remote_down(self):
        self.rest.down = True
        with self.assertLogs("scango.db.receipt_store", level="WARNING"):
            await self.store.insert(make_receipt())
        self.assertIsNotNone(await self.local.find("RCP-500001"))

    async def test_fallback_decided_per_call(self):
        self.rest.down = True
        await self.store.insert(make_receipt("RCP-500001", ReceiptStatus.PAID))
        self.rest.down = False
        await self.store.insert(make_receipt("RCP-500002", ReceiptStatus.PAID))
        self.assertIsNotNone(self.rest.row("receipts", receipt_number="RCP-500002"))
        self.assertIsNone(self.rest.row("receipts", receipt_number="RCP-500001"))

        # receipts written during the outage are still reachable once remote is back
        self.assertEqual(await self.store.try_consume_exit("RCP-500001"), ExitDecision.CONSUMED)
        self.assertTrue((await self.store.find("RCP-500001")).exit_verification)
        self.assertEqual(await self.store.try_consume_exit("RCP-500002"), ExitDecision.CONSUMED)

    async def test_remote_timeout_is_unavailable(self):
        self.rest.timeout = True
        with self.assertRaises(BackendUnavailableError):
            await self.remote.find("RCP-500001")

    async def test_remote_timeout_falls_back_to_local(self):
        self.rest.timeout = True
        with self.assertLogs("scango.db.receipt_store", level="WARNING"):
            await self.store.insert(make_receipt(status=ReceiptStatus.PAID))
        self.assertIsNone(self.rest.row("receipts", receipt_number="RCP-500001"))
        self.assertEqual(await self.store.try_consume_exit("RCP-500001"), ExitDecision.CONSUMED)
        self.assertTrue((await self.local.find("RCP-500001")).exit_verification)

    async def test_collision_is_not_retried_locally(self):
        await self.store.insert(make_receipt())
        with self.assertRaises(ReceiptCollisionError):
            await self.store.insert(make_receipt())
        self.assertIsNone(await self.local.find("RCP-500001"))

    async def test_remote_disabled_goes_straight_to_local(self):
        store = FallbackReceiptStore(self.remote, self.local, is_remote_enabled=lambda: False)
        await store.insert(make_receipt())
        self.assertEqual(self.rest.calls, [])
        self.assertIsNotNone(await self.local.find("RCP-500001"))

    async def test_unconfigured_remote_is_skipped(self):
        service = RemoteDataService(RemoteConfig(), transport=self.rest.transport())
        store = build_receipt_store(service)
        await store.insert(make_receipt())
        self.assertEqual(self.rest.calls, [])
        self.assertIsNotNone(await store.find("RCP-500001"))

    async def test_failure_on_both_backends_surfaces(self):
        self.rest.down = True

        class BrokenLocal(LocalReceiptStore):
            async def insert(self, receipt):
                raise PersistenceError("disk full")

        store = FallbackReceiptStore(self.remote, BrokenLocal())
        with self.assertRaises(PersistenceError) as ctx:
            await store.insert(make_receipt())
        self.assertEqual(ctx.exception.reason, "BOTH_BACKENDS_FAILED")

    async def test_lookup_not_found_in_either_backend(self):
        self.assertIsNone(await self.store.find("RCP-123456"))
        self.rest.down = True
        self.assertIsNone(await self.store.find("RCP-123456"))
