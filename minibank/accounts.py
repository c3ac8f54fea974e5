"""
Account Management Module

Durable keyed storage for accounts. Each user owns exactly one account,
identified internally by an opaque id and externally by a 10-digit number.
The materialized balance is only ever changed through adjust_balance(),
which the ledger engine alone calls.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Optional
import uuid

from .amounts import MAX_BALANCE, ZERO, quantize
from .async_storage import AsyncStorageInterface
from .errors import AccountNotFound, InsufficientFunds, InvalidAmount
from .storage import StorageRecord

ACCOUNTS_TABLE = "accounts"
ACCOUNT_NUMBERS_TABLE = "account_numbers"


@dataclass
class Account(StorageRecord):
    """
    Balance-holding account owned by a single user
    """
    number: str
    owner_id: str
    balance: Decimal = ZERO
    version: int = 1

    def __post_init__(self):
        if not isinstance(self.balance, Decimal):
            self.balance = Decimal(str(self.balance))

        if self.balance < ZERO:
            raise ValueError(f"Account balance cannot be negative: {self.balance}")

    def can_cover(self, amount: Decimal) -> bool:
        """Check if the balance is large enough to withdraw amount"""
        return self.balance >= amount


class AccountStore:
    """
    Keyed account storage with an account-number uniqueness index
    """

    def __init__(self, storage: AsyncStorageInterface):
        self.storage = storage
        self.accounts_table = ACCOUNTS_TABLE
        self.numbers_table = ACCOUNT_NUMBERS_TABLE

    async def create(self, owner_id: str, number: str) -> Account:
        """
        Create a zero-balance account

        The number index row is insert-only, so committing a number that is
        already taken raises VersionConflictError for the numbers table.

        Args:
            owner_id: ID of the owning user
            number: Externally shareable account number

        Returns:
            Created Account object
        """
        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            number=number,
            owner_id=owner_id
        )

        async with self.storage.atomic():
            await self.storage.save(
                self.accounts_table, account.id, self._account_to_dict(account),
                expected_version=0
            )
            await self.storage.save(
                self.numbers_table, number,
                {"id": number, "account_id": account.id},
                expected_version=0
            )

        return account

    async def find_by_id(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        account_dict = await self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return self._account_from_dict(account_dict)
        return None

    async def find_by_number(self, number: str) -> Optional[Account]:
        """Get account by account number"""
        index = await self.storage.load(self.numbers_table, number)
        if not index:
            return None
        return await self.find_by_id(index['account_id'])

    async def find_by_owner(self, owner_id: str) -> Optional[Account]:
        """Get the account owned by a user"""
        accounts = await self.storage.find(self.accounts_table, {"owner_id": owner_id})
        if accounts:
            return self._account_from_dict(accounts[0])
        return None

    async def adjust_balance(self, account_id: str, delta: Decimal) -> Account:
        """
        Add a signed delta to the account balance

        The update is conditional on the version that was read, so a
        concurrent writer elsewhere makes the commit fail instead of
        overwriting its change.

        Raises:
            AccountNotFound: If the account does not exist
            InsufficientFunds: If the resulting balance would be negative
            InvalidAmount: If the resulting balance would exceed MAX_BALANCE
        """
        async with self.storage.atomic():
            account = await self.find_by_id(account_id)
            if not account:
                raise AccountNotFound(details={"account_id": account_id})

            new_balance = quantize(account.balance + delta)
            if new_balance < ZERO:
                raise InsufficientFunds(details={
                    "account_id": account_id,
                    "balance": str(account.balance),
                    "requested": str(-delta)
                })
            if new_balance > MAX_BALANCE:
                raise InvalidAmount(
                    "Resulting balance exceeds the maximum allowed",
                    details={"account_id": account_id, "balance": str(account.balance)}
                )

            expected_version = account.version
            account.balance = new_balance
            account.version += 1
            account.updated_at = datetime.now(timezone.utc)

            await self.storage.save(
                self.accounts_table, account.id, self._account_to_dict(account),
                expected_version=expected_version
            )

        return account

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        return account.to_dict()

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            number=data['number'],
            owner_id=data['owner_id'],
            balance=Decimal(data['balance']),
            version=int(data['version'])
        )
