"""
Transaction Record Module

Append-only storage of deposit and transfer records. Records are written
once, never updated and never deleted; together they are the audit trail
that explains every account balance.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import threading
import time
import uuid

from .async_storage import AsyncStorageInterface
from .storage import StorageRecord

TRANSACTIONS_TABLE = "transactions"


class TransactionType(Enum):
    """Types of balance-affecting events"""
    DEPOSIT = "DEPOSIT"    # Money enters the system at one account
    TRANSFER = "TRANSFER"  # Money moves between two accounts


class TransactionStatus(Enum):
    """Outcome recorded on a transaction"""
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"  # Part of the public schema; the ledger only persists completed work


class Direction(Enum):
    """Effect of a transaction on the account it is viewed from"""
    IN = "IN"
    OUT = "OUT"


_sequence_lock = threading.Lock()
_last_sequence = 0


def next_sequence() -> int:
    """Strictly increasing, clock-based sequence number for ordering records"""
    global _last_sequence
    with _sequence_lock:
        _last_sequence = max(_last_sequence + 1, time.time_ns())
        return _last_sequence


@dataclass
class Transaction(StorageRecord):
    """
    Immutable record of a deposit or transfer
    """
    transaction_type: TransactionType
    amount: Decimal
    from_account_id: str
    to_account_id: str
    description: Optional[str] = None
    recipient_ref: Optional[str] = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    sequence: int = 0

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))

        if self.amount <= Decimal('0'):
            raise ValueError("Transaction amount must be positive")

        if self.transaction_type == TransactionType.DEPOSIT:
            if self.from_account_id != self.to_account_id:
                raise ValueError("Deposit must credit the account it originates from")
        elif self.from_account_id == self.to_account_id:
            raise ValueError("Transfer source and destination must differ")

    @property
    def is_deposit(self) -> bool:
        return self.transaction_type == TransactionType.DEPOSIT

    @property
    def is_transfer(self) -> bool:
        return self.transaction_type == TransactionType.TRANSFER

    def involves(self, account_id: str) -> bool:
        """Check if the account is the source or destination"""
        return account_id in (self.from_account_id, self.to_account_id)

    def signed_amount(self, account_id: str) -> Decimal:
        """Balance change this transaction caused on the given account"""
        if not self.involves(account_id):
            return Decimal('0')
        if self.is_transfer and self.from_account_id == account_id:
            return -self.amount
        return self.amount


class TransactionStore:
    """
    Append-only transaction storage queryable by participant
    """

    def __init__(self, storage: AsyncStorageInterface):
        self.storage = storage
        self.table_name = TRANSACTIONS_TABLE

    async def create(
        self,
        transaction_type: TransactionType,
        amount: Decimal,
        from_account_id: str,
        to_account_id: str,
        description: Optional[str] = None,
        recipient_ref: Optional[str] = None
    ) -> Transaction:
        """
        Append a new completed transaction record

        The write is insert-only: a record with the same id can never be
        overwritten.

        Returns:
            Created Transaction object
        """
        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_type=transaction_type,
            amount=amount,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            description=description,
            recipient_ref=recipient_ref,
            sequence=next_sequence()
        )

        await self.storage.save(
            self.table_name, transaction.id, self._transaction_to_dict(transaction),
            expected_version=0
        )
        return transaction

    async def find_by_id(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        transaction_dict = await self.storage.load(self.table_name, transaction_id)
        if transaction_dict:
            return self._transaction_from_dict(transaction_dict)
        return None

    async def find_by_participant(self, account_id: str) -> List[Transaction]:
        """
        Get every transaction where the account is source or destination

        Returns:
            Transactions sorted newest first
        """
        outgoing = await self.storage.find(self.table_name, {"from_account_id": account_id})
        incoming = await self.storage.find(self.table_name, {"to_account_id": account_id})

        # Deposits match both queries
        by_id = {}
        for data in outgoing + incoming:
            by_id[data['id']] = data

        transactions = [self._transaction_from_dict(data) for data in by_id.values()]
        transactions.sort(key=lambda t: (t.created_at, t.sequence), reverse=True)
        return transactions

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        return transaction.to_dict()

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            transaction_type=TransactionType(data['transaction_type']),
            amount=Decimal(data['amount']),
            from_account_id=data['from_account_id'],
            to_account_id=data['to_account_id'],
            description=data.get('description'),
            recipient_ref=data.get('recipient_ref'),
            status=TransactionStatus(data.get('status', TransactionStatus.COMPLETED.value)),
            sequence=int(data.get('sequence', 0))
        )
