"""
Ledger Query Module

Read-only views over accounts and transactions: current balance and
direction-annotated history. Nothing here writes.
"""

from decimal import Decimal
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .accounts import AccountStore
from .errors import AccountNotFound
from .transactions import (
    Direction, Transaction, TransactionStatus, TransactionStore, TransactionType
)


def direction_for(transaction: Transaction, viewer_account_id: str) -> Direction:
    """
    Direction of a transaction as seen from one account

    Only the sending side of a transfer sees OUT. Deposits and incoming
    transfers are IN.
    """
    if (transaction.transaction_type == TransactionType.TRANSFER
            and transaction.from_account_id == viewer_account_id):
        return Direction.OUT
    return Direction.IN


@dataclass
class TransactionView:
    """Transaction annotated for display from one account's perspective"""
    id: str
    transaction_type: TransactionType
    amount: Decimal
    from_account_id: str
    to_account_id: str
    direction: Direction
    status: TransactionStatus
    created_at: datetime
    from_account_number: Optional[str] = None
    to_account_number: Optional[str] = None
    description: Optional[str] = None
    recipient_ref: Optional[str] = None

    @classmethod
    def of(cls, transaction: Transaction, viewer_account_id: str,
           from_account_number: Optional[str] = None,
           to_account_number: Optional[str] = None) -> 'TransactionView':
        return cls(
            id=transaction.id,
            transaction_type=transaction.transaction_type,
            amount=transaction.amount,
            from_account_id=transaction.from_account_id,
            to_account_id=transaction.to_account_id,
            direction=direction_for(transaction, viewer_account_id),
            status=transaction.status,
            created_at=transaction.created_at,
            from_account_number=from_account_number,
            to_account_number=to_account_number,
            description=transaction.description,
            recipient_ref=transaction.recipient_ref
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.transaction_type.value,
            "amount": str(self.amount),
            "from_account_id": self.from_account_id,
            "to_account_id": self.to_account_id,
            "from_account_number": self.from_account_number,
            "to_account_number": self.to_account_number,
            "direction": self.direction.value,
            "status": self.status.value,
            "description": self.description,
            "recipient_ref": self.recipient_ref,
            "created_at": self.created_at.isoformat()
        }


class LedgerQueries:
    """Balance and history lookups"""

    def __init__(self, accounts: AccountStore, transactions: TransactionStore):
        self.accounts = accounts
        self.transactions = transactions

    async def get_balance(self, account_id: str) -> Decimal:
        """
        Current materialized balance

        Raises:
            AccountNotFound: If the account does not exist
        """
        account = await self.accounts.find_by_id(account_id)
        if not account:
            raise AccountNotFound(details={"account_id": account_id})
        return account.balance

    async def get_transactions(self, account_id: str) -> List[TransactionView]:
        """
        Every transaction touching the account, newest first

        Raises:
            AccountNotFound: If the account does not exist
        """
        account = await self.accounts.find_by_id(account_id)
        if not account:
            raise AccountNotFound(details={"account_id": account_id})

        numbers = {account.id: account.number}

        async def number_of(other_id: str) -> Optional[str]:
            if other_id not in numbers:
                other = await self.accounts.find_by_id(other_id)
                numbers[other_id] = other.number if other else None
            return numbers[other_id]

        views = []
        for transaction in await self.transactions.find_by_participant(account_id):
            views.append(TransactionView.of(
                transaction, account_id,
                from_account_number=await number_of(transaction.from_account_id),
                to_account_number=await number_of(transaction.to_account_id)
            ))
        return views
