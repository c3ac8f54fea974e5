"""
Test suite for the ledger engine

Covers deposit and transfer arithmetic, the ordered precondition checks,
all-or-nothing commits under storage faults and serialization of
concurrent operations on the same account.
"""

import pytest
import pytest_asyncio
import asyncio
from decimal import Decimal

from minibank.accounts import AccountStore, ACCOUNTS_TABLE
from minibank.async_storage import AsyncStorage
from minibank.errors import (
    AccountNotFound, ErrorKind, InsufficientFunds, InvalidAmount,
    RecipientAccountNotFound, SelfTransferForbidden, SourceAccountNotFound, StorageFailure
)
from minibank.ledger import AccountLockManager, LedgerEngine
from minibank.storage import InMemoryStorage, PendingWrite, StorageError
from minibank.transactions import (
    Direction, TransactionStore, TransactionType, TRANSACTIONS_TABLE
)


# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


class FlakyStorage(InMemoryStorage):
    """In-memory backend whose batch writes can be switched to fail"""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def save_many(self, writes):
        if self.fail_writes:
            raise StorageError("simulated disk failure")
        super().save_many(writes)


class LedgerTestBase:
    """Shared engine setup"""

    def setup_method(self):
        self.backend = FlakyStorage()
        self.storage = AsyncStorage(self.backend)
        self.accounts = AccountStore(self.storage)
        self.transactions = TransactionStore(self.storage)
        self.engine = LedgerEngine(self.storage, self.accounts, self.transactions)

    async def open(self, owner_id, number, balance=None):
        account = await self.accounts.create(owner_id, number)
        if balance:
            await self.engine.deposit(account.id, balance)
        return account

    async def balance(self, account):
        return await self.engine.get_account_balance(account.id)

    async def transaction_count(self):
        return await self.storage.count(TRANSACTIONS_TABLE)


class TestDeposit(LedgerTestBase):
    """Test deposit operation"""

    @pytest.mark.asyncio
    async def test_deposit_increases_balance(self):
        account = await self.open("U1", "1000000001")

        view = await self.engine.deposit(account.id, Decimal("100.00"), description="salary")

        assert await self.balance(account) == Decimal("100.00")
        assert view.transaction_type == TransactionType.DEPOSIT
        assert view.direction == Direction.IN
        assert view.amount == Decimal("100.00")
        assert view.from_account_id == view.to_account_id == account.id
        assert view.from_account_number == view.to_account_number == "1000000001"
        assert view.description == "salary"

    @pytest.mark.asyncio
    async def test_deposit_writes_exactly_one_record(self):
        account = await self.open("U1", "1000000001", balance=Decimal("20"))
        before = await self.transaction_count()

        view = await self.engine.deposit(account.id, "30.50")

        assert await self.transaction_count() == before + 1
        stored = await self.transactions.find_by_id(view.id)
        assert stored.amount == Decimal("30.50")
        assert stored.from_account_id == stored.to_account_id == account.id
        assert await self.balance(account) == Decimal("50.50")

    @pytest.mark.asyncio
    async def test_deposit_accepts_int_and_float(self):
        account = await self.open("U1", "1000000001")

        await self.engine.deposit(account.id, 10)
        await self.engine.deposit(account.id, 0.1)

        assert await self.balance(account) == Decimal("10.10")

    @pytest.mark.asyncio
    async def test_invalid_amount(self):
        account = await self.open("U1", "1000000001", balance=Decimal("5"))

        for amount in (0, Decimal("-1"), "-0.01", "abc", None, float("nan"),
                       "1e30", "12abc34", 10 ** 27, 1e30):
            with pytest.raises(InvalidAmount) as exc_info:
                await self.engine.deposit(account.id, amount)
            assert exc_info.value.kind == ErrorKind.INVALID_AMOUNT

        assert await self.balance(account) == Decimal("5.00")
        assert await self.transaction_count() == 1

    @pytest.mark.asyncio
    async def test_deposit_accepts_exponent_notation(self):
        account = await self.open("U1", "1000000001")

        txn = await self.engine.deposit(account.id, "1e2")

        assert txn.amount == Decimal("100.00")
        assert await self.balance(account) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_invalid_amount_checked_before_account(self):
        with pytest.raises(InvalidAmount):
            await self.engine.deposit("missing", 0)

    @pytest.mark.asyncio
    async def test_missing_account(self):
        with pytest.raises(AccountNotFound):
            await self.engine.deposit("missing", Decimal("10"))

        assert await self.transaction_count() == 0


class TestTransfer(LedgerTestBase):
    """Test transfer operation"""

    @pytest.mark.asyncio
    async def test_transfer_moves_money(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("100"))
        bob = await self.open("U2", "1000000002", balance=Decimal("10"))

        view = await self.engine.transfer(
            alice.id, "1000000002", Decimal("40.25"),
            description="dinner", recipient_ref="Bob"
        )

        assert await self.balance(alice) == Decimal("59.75")
        assert await self.balance(bob) == Decimal("50.25")
        assert view.direction == Direction.OUT
        assert view.transaction_type == TransactionType.TRANSFER
        assert view.from_account_id == alice.id
        assert view.to_account_id == bob.id
        assert view.from_account_number == "1000000001"
        assert view.to_account_number == "1000000002"
        assert view.recipient_ref == "Bob"

    @pytest.mark.asyncio
    async def test_sum_of_balances_is_preserved(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("100"))
        bob = await self.open("U2", "1000000002", balance=Decimal("35.55"))
        total = await self.balance(alice) + await self.balance(bob)

        await self.engine.transfer(alice.id, "1000000002", Decimal("12.34"))
        await self.engine.transfer(bob.id, "1000000001", Decimal("47.89"))

        assert await self.balance(alice) + await self.balance(bob) == total

    @pytest.mark.asyncio
    async def test_full_balance_transfer(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("100"))
        await self.open("U2", "1000000002")

        await self.engine.transfer(alice.id, "1000000002", Decimal("100"))

        assert await self.balance(alice) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_invalid_amount(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("100"))
        await self.open("U2", "1000000002")

        with pytest.raises(InvalidAmount):
            await self.engine.transfer(alice.id, "1000000002", Decimal("0"))

        assert await self.balance(alice) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_unknown_source(self):
        await self.open("U2", "1000000002")

        with pytest.raises(SourceAccountNotFound) as exc_info:
            await self.engine.transfer("missing", "1000000002", Decimal("1"))

        assert exc_info.value.message == "Your account was not found"

    @pytest.mark.asyncio
    async def test_unknown_recipient(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("100"))
        before = await self.transaction_count()

        with pytest.raises(RecipientAccountNotFound):
            await self.engine.transfer(alice.id, "9999999999", Decimal("10"))

        assert await self.balance(alice) == Decimal("100.00")
        assert await self.transaction_count() == before

    @pytest.mark.asyncio
    async def test_self_transfer(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("100"))
        before = await self.transaction_count()

        with pytest.raises(SelfTransferForbidden) as exc_info:
            await self.engine.transfer(alice.id, "1000000001", Decimal("10"))

        assert exc_info.value.message == "Cannot transfer to your own account"
        assert await self.balance(alice) == Decimal("100.00")
        assert await self.transaction_count() == before

    @pytest.mark.asyncio
    async def test_insufficient_funds(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("100"))
        bob = await self.open("U2", "1000000002")
        before = await self.transaction_count()

        with pytest.raises(InsufficientFunds) as exc_info:
            await self.engine.transfer(alice.id, "1000000002", Decimal("100.01"))

        assert exc_info.value.details["requested"] == "100.01"
        assert await self.balance(alice) == Decimal("100.00")
        assert await self.balance(bob) == Decimal("0.00")
        assert await self.transaction_count() == before

    @pytest.mark.asyncio
    async def test_check_order_first_failure_wins(self):
        alice = await self.open("U1", "1000000001")

        # Every check would fail: amount is reported first
        with pytest.raises(InvalidAmount):
            await self.engine.transfer("missing", "1000000001", Decimal("-5"))

        # Missing source before unknown recipient
        with pytest.raises(SourceAccountNotFound):
            await self.engine.transfer("missing", "9999999999", Decimal("5"))

        # Unknown recipient before funds
        with pytest.raises(RecipientAccountNotFound):
            await self.engine.transfer(alice.id, "9999999999", Decimal("5"))

        # Self transfer before funds
        with pytest.raises(SelfTransferForbidden):
            await self.engine.transfer(alice.id, "1000000001", Decimal("5"))


class TestStorageFaults(LedgerTestBase):
    """A failing commit leaves no trace"""

    @pytest.mark.asyncio
    async def test_deposit_fault_writes_nothing(self):
        account = await self.open("U1", "1000000001", balance=Decimal("10"))
        before = await self.transaction_count()
        self.backend.fail_writes = True

        with pytest.raises(StorageFailure) as exc_info:
            await self.engine.deposit(account.id, Decimal("5"))

        assert isinstance(exc_info.value.__cause__, StorageError)
        assert exc_info.value.kind == ErrorKind.STORAGE_FAILURE
        self.backend.fail_writes = False
        assert await self.balance(account) == Decimal("10.00")
        assert await self.transaction_count() == before

    @pytest.mark.asyncio
    async def test_transfer_fault_writes_nothing(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("100"))
        bob = await self.open("U2", "1000000002", balance=Decimal("1"))
        before = await self.transaction_count()
        self.backend.fail_writes = True

        with pytest.raises(StorageFailure):
            await self.engine.transfer(alice.id, "1000000002", Decimal("60"))

        self.backend.fail_writes = False
        assert await self.balance(alice) == Decimal("100.00")
        assert await self.balance(bob) == Decimal("1.00")
        assert await self.transaction_count() == before

        # The same transfer succeeds once storage recovers
        await self.engine.transfer(alice.id, "1000000002", Decimal("60"))
        assert await self.balance(alice) == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_write_from_another_process_is_detected(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("100"))
        await self.open("U2", "1000000002")

        original_save_many = self.backend.save_many

        def racing_save_many(writes):
            # Someone else bumps the source account just before our commit
            data = self.backend.load(ACCOUNTS_TABLE, alice.id)
            data["version"] += 1
            original_save_many([PendingWrite(ACCOUNTS_TABLE, alice.id, data)])
            self.backend.save_many = original_save_many
            original_save_many(writes)

        self.backend.save_many = racing_save_many

        with pytest.raises(StorageFailure):
            await self.engine.transfer(alice.id, "1000000002", Decimal("30"))

        assert await self.balance(alice) == Decimal("100.00")


class TestConcurrency(LedgerTestBase):
    """Operations on the same account are serialized"""

    @pytest.mark.asyncio
    async def test_concurrent_full_balance_transfers(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("100"))
        bob = await self.open("U2", "1000000002")
        carol = await self.open("U3", "1000000003")

        results = await asyncio.gather(
            self.engine.transfer(alice.id, "1000000002", Decimal("100")),
            self.engine.transfer(alice.id, "1000000003", Decimal("100")),
            return_exceptions=True
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], InsufficientFunds)

        assert await self.balance(alice) == Decimal("0.00")
        assert await self.balance(bob) + await self.balance(carol) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_concurrent_deposits_all_land(self):
        account = await self.open("U1", "1000000001")

        await asyncio.gather(*[
            self.engine.deposit(account.id, Decimal("1.25")) for _ in range(20)
        ])

        assert await self.balance(account) == Decimal("25.00")
        assert await self.transaction_count() == 20

    @pytest.mark.asyncio
    async def test_crossing_transfers_do_not_deadlock(self):
        alice = await self.open("U1", "1000000001", balance=Decimal("50"))
        bob = await self.open("U2", "1000000002", balance=Decimal("50"))

        await asyncio.wait_for(asyncio.gather(*[
            self.engine.transfer(alice.id, "1000000002", Decimal("1")) for _ in range(10)
        ] + [
            self.engine.transfer(bob.id, "1000000001", Decimal("2")) for _ in range(10)
        ]), timeout=10)

        assert await self.balance(alice) == Decimal("60.00")
        assert await self.balance(bob) == Decimal("40.00")


class TestBalanceMatchesHistory(LedgerTestBase):
    """Every balance is explained by its transactions"""

    @pytest.mark.asyncio
    async def test_balance_equals_signed_sum(self):
        alice = await self.open("U1", "1000000001")
        bob = await self.open("U2", "1000000002")

        await self.engine.deposit(alice.id, Decimal("250"))
        await self.engine.deposit(bob.id, Decimal("15.10"))
        await self.engine.transfer(alice.id, "1000000002", Decimal("99.99"))
        await self.engine.transfer(bob.id, "1000000001", Decimal("0.01"))
        with pytest.raises(InsufficientFunds):
            await self.engine.transfer(bob.id, "1000000001", Decimal("1000"))

        for account in (alice, bob):
            history = await self.transactions.find_by_participant(account.id)
            signed_sum = sum((t.signed_amount(account.id) for t in history), Decimal("0"))
            assert signed_sum == await self.balance(account)
            assert await self.balance(account) >= 0


class TestAccountLockManager:
    """Test per-account locking"""

    @pytest.mark.asyncio
    async def test_hold_locks_and_releases(self):
        locks = AccountLockManager()

        async with locks.hold("b", "a", "a"):
            assert locks.lock_for("a").locked()
            assert locks.lock_for("b").locked()

        assert not locks.lock_for("a").locked()
        assert not locks.lock_for("b").locked()

    @pytest.mark.asyncio
    async def test_same_account_is_exclusive(self):
        locks = AccountLockManager()
        order = []

        async def worker(name):
            async with locks.hold("a"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("one"), worker("two"))

        assert order == ["one-start", "one-end", "two-start", "two-end"]


class TestQueriesThroughEngine(LedgerTestBase):
    """Engine read operations"""

    @pytest.mark.asyncio
    async def test_history_and_balance(self):
        account = await self.open("U1", "1000000001", balance=Decimal("7"))

        history = await self.engine.get_account_transactions(account.id)

        assert len(history) == 1
        assert history[0].direction == Direction.IN
        assert await self.engine.get_account_balance(account.id) == Decimal("7.00")

    @pytest.mark.asyncio
    async def test_missing_account(self):
        with pytest.raises(AccountNotFound):
            await self.engine.get_account_balance("missing")
        with pytest.raises(AccountNotFound):
            await self.engine.get_account_transactions("missing")
