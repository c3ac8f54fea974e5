"""
Ledger Engine Module

The only component that moves money. Deposits and transfers validate their
inputs in a fixed order, then write the transaction record and every balance
change in one unit of work, so either all of them commit or none do.

Operations touching the same account are serialized by per-account locks,
acquired in ascending id order. Each balance update is also conditional on
the version it was computed from, which catches writers in other processes.
"""

from decimal import Decimal
from typing import Any, List, Optional
from contextlib import AsyncExitStack, asynccontextmanager, contextmanager
import asyncio
import weakref

from .accounts import AccountStore
from .amounts import to_positive_amount
from .async_storage import AsyncStorageInterface
from .errors import (
    AccountNotFound, InsufficientFunds, MiniBankError, RecipientAccountNotFound,
    SelfTransferForbidden, SourceAccountNotFound, StorageFailure
)
from .logging_config import get_logger, log_action
from .queries import LedgerQueries, TransactionView
from .storage import StorageError
from .transactions import TransactionStore, TransactionType


class AccountLockManager:
    """
    One asyncio.Lock per account id

    Locks are weakly referenced and disappear once no operation holds or
    waits on them.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, *account_ids: str):
        """Acquire the locks of all given accounts in sorted order"""
        async with AsyncExitStack() as stack:
            for account_id in sorted(set(account_ids)):
                await stack.enter_async_context(self.lock_for(account_id))
            yield


class LedgerEngine:
    """
    Deposit and transfer orchestration over the account and transaction stores
    """

    def __init__(
        self,
        storage: AsyncStorageInterface,
        accounts: AccountStore,
        transactions: TransactionStore,
        locks: Optional[AccountLockManager] = None,
        queries: Optional[LedgerQueries] = None
    ):
        self.storage = storage
        self.accounts = accounts
        self.transactions = transactions
        self.locks = locks or AccountLockManager()
        self.queries = queries or LedgerQueries(accounts, transactions)
        self.logger = get_logger("minibank.ledger")

    async def deposit(
        self,
        account_id: str,
        amount: Any,
        description: Optional[str] = None
    ) -> TransactionView:
        """
        Credit an account with new money

        Args:
            account_id: Account to credit
            amount: Positive amount (Decimal, int, float or numeric string)
            description: Optional free text stored on the record

        Returns:
            View of the DEPOSIT record with direction IN

        Raises:
            InvalidAmount: If amount is not a number greater than zero
            AccountNotFound: If the account does not exist
            StorageFailure: If persistence failed; nothing was written
        """
        try:
            amount = to_positive_amount(amount)

            with self._storage_faults("deposit"):
                account = await self.accounts.find_by_id(account_id)
                if not account:
                    raise AccountNotFound(details={"account_id": account_id})

                async with self.locks.hold(account.id):
                    async with self.storage.atomic():
                        transaction = await self.transactions.create(
                            TransactionType.DEPOSIT, amount,
                            from_account_id=account.id,
                            to_account_id=account.id,
                            description=description
                        )
                        await self.accounts.adjust_balance(account.id, amount)

        except MiniBankError as e:
            self._log_rejection("deposit", account_id, e)
            raise

        log_action(
            self.logger, "info", "Deposit completed",
            action="deposit", resource=account_id,
            extra={"transaction_id": transaction.id, "amount": str(amount)}
        )
        return TransactionView.of(
            transaction, account.id,
            from_account_number=account.number,
            to_account_number=account.number
        )

    async def transfer(
        self,
        from_account_id: str,
        to_account_number: str,
        amount: Any,
        description: Optional[str] = None,
        recipient_ref: Optional[str] = None
    ) -> TransactionView:
        """
        Move money from an account to the account with the given number

        Preconditions are checked in this order and the first failure wins:
        amount, source, recipient, self transfer, funds.

        Returns:
            View of the TRANSFER record with direction OUT

        Raises:
            InvalidAmount: If amount is not a number greater than zero
            SourceAccountNotFound: If the source account does not exist
            RecipientAccountNotFound: If no account has to_account_number
            SelfTransferForbidden: If the number belongs to the source account
            InsufficientFunds: If the source balance is below amount
            StorageFailure: If persistence failed; nothing was written
        """
        try:
            amount = to_positive_amount(amount)

            with self._storage_faults("transfer"):
                source = await self.accounts.find_by_id(from_account_id)
                if not source:
                    raise SourceAccountNotFound(details={"account_id": from_account_id})

                destination = await self.accounts.find_by_number(str(to_account_number))
                if not destination:
                    raise RecipientAccountNotFound(details={"account_number": str(to_account_number)})

                if source.id == destination.id:
                    raise SelfTransferForbidden(details={"account_number": destination.number})

                async with self.locks.hold(source.id, destination.id):
                    async with self.storage.atomic():
                        # Balance read before the lock may be stale
                        source = await self.accounts.find_by_id(source.id)
                        if not source.can_cover(amount):
                            raise InsufficientFunds(details={
                                "account_id": source.id,
                                "balance": str(source.balance),
                                "requested": str(amount)
                            })

                        transaction = await self.transactions.create(
                            TransactionType.TRANSFER, amount,
                            from_account_id=source.id,
                            to_account_id=destination.id,
                            description=description,
                            recipient_ref=recipient_ref
                        )
                        await self.accounts.adjust_balance(source.id, -amount)
                        await self.accounts.adjust_balance(destination.id, amount)

        except MiniBankError as e:
            self._log_rejection("transfer", from_account_id, e)
            raise

        log_action(
            self.logger, "info", "Transfer completed",
            action="transfer", resource=from_account_id,
            extra={
                "transaction_id": transaction.id,
                "to_account_id": destination.id,
                "amount": str(amount)
            }
        )
        return TransactionView.of(
            transaction, source.id,
            from_account_number=source.number,
            to_account_number=destination.number
        )

    async def get_account_transactions(self, account_id: str) -> List[TransactionView]:
        """Direction-annotated history, newest first"""
        with self._storage_faults("get_account_transactions"):
            return await self.queries.get_transactions(account_id)

    async def get_account_balance(self, account_id: str) -> Decimal:
        """Current balance of the account"""
        with self._storage_faults("get_account_balance"):
            return await self.queries.get_balance(account_id)

    @contextmanager
    def _storage_faults(self, operation: str):
        """Re-raise storage backend errors as StorageFailure"""
        try:
            yield
        except StorageError as e:
            log_action(
                self.logger, "error", f"Storage fault during {operation}: {e}",
                action=operation
            )
            raise StorageFailure(details={"operation": operation}) from e

    def _log_rejection(self, operation: str, account_id: str, error: MiniBankError) -> None:
        level = "error" if isinstance(error, StorageFailure) else "warning"
        log_action(
            self.logger, level, f"{operation.capitalize()} rejected: {error.message}",
            action=operation, resource=account_id,
            extra={"error": error.kind.value, **error.details}
        )
