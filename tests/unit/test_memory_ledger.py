"""Ledger operations end to end against the in-memory store.

Covers the balance arithmetic of every primitive, the transaction log, and
serialization of concurrent reservations for one user.
"""

import asyncio
from decimal import Decimal

import pytest

from src.ic_common.enums import LedgerErrorCode, TransactionType
from src.ic_common.errors import CreditAccountNotFoundError
from src.ic_credits.application.service import CreditLedgerService
from src.ic_credits.domain.invariants import account_violations
from src.ic_credits.infrastructure.memory import InMemoryCreditRepository


async def _funded(
    ledger: CreditLedgerService, db, user_id: str = "user-1", amount: int = 100
) -> None:
    await ledger.open_account(db, user_id, welcome_credits=0)
    added = await ledger.add_credits(db, user_id, amount, "pay-1")
    assert added.success


class TestAccountLifecycle:
    async def test_open_account_grants_welcome_credits(self, ledger: CreditLedgerService, db) -> None:
        balance = await ledger.open_account(db, "user-1", welcome_credits=50)
        assert balance.credits == Decimal("50.00")
        assert balance.available_credits == Decimal("50.00")
        assert balance.max_duration_minutes == 5

    async def test_open_account_is_idempotent(self, ledger: CreditLedgerService, db) -> None:
        await ledger.open_account(db, "user-1", welcome_credits=50)
        again = await ledger.open_account(db, "user-1", welcome_credits=50)
        assert again.credits == Decimal("50.00")

    async def test_get_balance_missing_account(self, ledger: CreditLedgerService, db) -> None:
        with pytest.raises(CreditAccountNotFoundError):
            await ledger.get_balance(db, "nobody")

    async def test_get_balance_opens_when_asked(self, ledger: CreditLedgerService, db) -> None:
        balance = await ledger.get_balance(db, "new-user", open_if_missing=True)
        assert balance.user_id == "new-user"
        assert balance.blocked_credits == Decimal("0")


class TestBlockAndSettle:
    async def test_happy_path_charges_deducted_credits(
        self, ledger: CreditLedgerService, db, memory_repo
    ) -> None:
        # settling 30 of a 50 reservation takes 30 out of credits for good;
        # only the unused 20 goes back to available
        await _funded(ledger, db)

        block = await ledger.block_credits(db, "user-1", 50, "sess-1")
        assert block.success
        assert block.new_balance == Decimal("50.00")
        assert block.blocked_credits == Decimal("50.00")

        settle = await ledger.deduct_and_settle(db, "user-1", 50, 30, "sess-1")
        assert settle.success
        assert settle.credits_deducted == Decimal("30.00")
        assert settle.credits_refunded == Decimal("20.00")
        assert settle.new_balance == Decimal("70.00")
        assert len(settle.transaction_ids) == 2

        account = await memory_repo.get_account(None, "user-1")
        assert account.credits == Decimal("70.00")
        assert account.blocked_credits == Decimal("0.00")
        assert account_violations(account) == []

    async def test_block_insufficient(self, ledger: CreditLedgerService, db) -> None:
        await _funded(ledger, db, amount=30)
        block = await ledger.block_credits(db, "user-1", 50, "sess-1")
        assert not block.success
        assert block.error == LedgerErrorCode.INSUFFICIENT_CREDITS
        assert block.available == Decimal("30.00")
        assert block.needed == Decimal("50.00")

    async def test_block_unknown_account(self, ledger: CreditLedgerService, db) -> None:
        block = await ledger.block_credits(db, "ghost", 50, "sess-1")
        assert block.error == LedgerErrorCode.NOT_FOUND

    async def test_block_non_positive_amount(self, ledger: CreditLedgerService, db) -> None:
        await _funded(ledger, db)
        block = await ledger.block_credits(db, "user-1", 0, "sess-1")
        assert block.error == LedgerErrorCode.INVALID_AMOUNT

    async def test_settle_full_usage_has_no_refund_entry(self, ledger: CreditLedgerService, db) -> None:
        await _funded(ledger, db)
        await ledger.block_credits(db, "user-1", 50, "sess-1")
        settle = await ledger.deduct_and_settle(db, "user-1", 50, 50, "sess-1")
        assert settle.credits_refunded == Decimal("0.00")
        assert len(settle.transaction_ids) == 1

    async def test_settle_overrun_is_clamped(self, ledger: CreditLedgerService, db, memory_repo) -> None:
        await _funded(ledger, db)
        await ledger.block_credits(db, "user-1", 50, "sess-1")
        settle = await ledger.deduct_and_settle(db, "user-1", 50, Decimal("52.5"), "sess-1")
        assert settle.credits_deducted == Decimal("50.00")
        assert settle.credits_refunded == Decimal("0.00")
        account = await memory_repo.get_account(None, "user-1")
        assert account.credits == Decimal("50.00")

    async def test_settle_twice_is_already_processed(self, ledger: CreditLedgerService, db) -> None:
        await _funded(ledger, db)
        await ledger.block_credits(db, "user-1", 50, "sess-1")
        await ledger.deduct_and_settle(db, "user-1", 50, 30, "sess-1")
        again = await ledger.deduct_and_settle(db, "user-1", 50, 30, "sess-1")
        assert not again.success
        assert again.error == LedgerErrorCode.ALREADY_PROCESSED

    async def test_refund_all_restores_available(self, ledger: CreditLedgerService, db, memory_repo) -> None:
        await _funded(ledger, db)
        await ledger.block_credits(db, "user-1", 50, "sess-1")
        refund = await ledger.refund_blocked_credits(db, "user-1", 50, "sess-1", "zero_duration")
        assert refund.success
        assert refund.new_balance == Decimal("100.00")
        account = await memory_repo.get_account(None, "user-1")
        assert account.credits == Decimal("100.00")
        assert account.blocked_credits == Decimal("0.00")

        entries = await memory_repo.list_transactions(None, "user-1", 10, 0, "refund", None, None)
        assert entries[0].metadata["reason"] == "zero_duration"

    async def test_refund_more_than_blocked(self, ledger: CreditLedgerService, db) -> None:
        await _funded(ledger, db)
        refund = await ledger.refund_blocked_credits(db, "user-1", 50, "sess-1", "manual")
        assert refund.error == LedgerErrorCode.ALREADY_PROCESSED


class TestConcurrentBlocks:
    async def test_parallel_blocks_never_overdraw(self, ledger: CreditLedgerService, db, memory_repo) -> None:
        await _funded(ledger, db, amount=100)

        results = await asyncio.gather(
            *(ledger.block_credits(db, "user-1", 30, f"sess-{i}") for i in range(10))
        )

        succeeded = [r for r in results if r.success]
        rejected = [r for r in results if not r.success]
        assert len(succeeded) == 3
        assert all(r.error == LedgerErrorCode.INSUFFICIENT_CREDITS for r in rejected)

        account = await memory_repo.get_account(None, "user-1")
        assert account.blocked_credits == Decimal("90.00")
        assert account.available_credits == Decimal("10.00")
        assert account_violations(account) == []

    async def test_one_more_block_than_funds(self, ledger: CreditLedgerService, db, memory_repo) -> None:
        await _funded(ledger, db, amount=100)

        results = await asyncio.gather(
            *(ledger.block_credits(db, "user-1", 25, f"sess-{i}") for i in range(5))
        )

        assert sum(r.success for r in results) == 4
        (rejected,) = [r for r in results if not r.success]
        assert rejected.error == LedgerErrorCode.INSUFFICIENT_CREDITS
        account = await memory_repo.get_account(None, "user-1")
        assert account.available_credits == Decimal("0.00")

    async def test_lock_timeout_is_storage_failure(self, db) -> None:
        repo = InMemoryCreditRepository(lock_timeout_ms=10)
        ledger = CreditLedgerService(repo=repo)
        await _funded(ledger, db)

        lock = repo._locks["user-1"]
        await lock.acquire()
        try:
            block = await ledger.block_credits(db, "user-1", 10, "sess-1")
        finally:
            lock.release()
        assert block.error == LedgerErrorCode.STORAGE_FAILURE


class TestAdjust:
    async def test_credit_adjustment(self, ledger: CreditLedgerService, db) -> None:
        await _funded(ledger, db)
        adjusted = await ledger.adjust_credits(db, "user-1", 25, "goodwill")
        assert adjusted.success
        assert adjusted.new_balance == Decimal("125.00")

    async def test_debit_cannot_touch_blocked_credits(self, ledger: CreditLedgerService, db) -> None:
        await _funded(ledger, db)
        await ledger.block_credits(db, "user-1", 80, "sess-1")
        adjusted = await ledger.adjust_credits(db, "user-1", -30, "chargeback")
        assert adjusted.error == LedgerErrorCode.INSUFFICIENT_CREDITS

    async def test_zero_delta_rejected(self, ledger: CreditLedgerService, db) -> None:
        await _funded(ledger, db)
        adjusted = await ledger.adjust_credits(db, "user-1", 0, "noop")
        assert adjusted.error == LedgerErrorCode.INVALID_AMOUNT


class TestTransactionLog:
    async def test_signs_and_balance_after(self, ledger: CreditLedgerService, db, memory_repo) -> None:
        await _funded(ledger, db)
        await ledger.block_credits(db, "user-1", 50, "sess-1")
        await ledger.deduct_and_settle(db, "user-1", 50, 30, "sess-1")

        entries = await memory_repo.list_transactions(None, "user-1", 10, 0, None, None, None)
        by_type = {e.transaction_type: e for e in entries}

        assert by_type[TransactionType.PURCHASE.value].amount == Decimal("100.00")
        assert by_type[TransactionType.BLOCK.value].amount == Decimal("-50.00")
        assert by_type[TransactionType.BLOCK.value].balance_after == Decimal("50.00")
        assert by_type[TransactionType.DEDUCT.value].amount == Decimal("-30.00")
        assert by_type[TransactionType.REFUND.value].amount == Decimal("20.00")
        assert by_type[TransactionType.REFUND.value].balance_after == Decimal("70.00")
        assert all(e.balance_after >= 0 for e in entries)

    async def test_newest_first_with_paging(self, ledger: CreditLedgerService, db, memory_repo) -> None:
        await _funded(ledger, db)
        for i in range(3):
            await ledger.block_credits(db, "user-1", 10, f"sess-{i}")

        page = await memory_repo.list_transactions(None, "user-1", 2, 0, None, None, None)
        assert [e.reference_id for e in page] == ["sess-2", "sess-1"]
        rest = await memory_repo.list_transactions(None, "user-1", 2, 2, None, None, None)
        assert [e.reference_id for e in rest] == ["sess-0", "pay-1"]

    async def test_type_filter_and_count(self, ledger: CreditLedgerService, db, memory_repo) -> None:
        await _funded(ledger, db)
        await ledger.block_credits(db, "user-1", 10, "sess-1")
        await ledger.block_credits(db, "user-1", 10, "sess-2")

        assert await memory_repo.count_transactions(None, "user-1", "block", None, None) == 2
        assert await memory_repo.count_transactions(None, "user-1", None, None, None) == 3
        assert await memory_repo.count_transactions(None, "user-2", None, None, None) == 0
