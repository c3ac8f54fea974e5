"""
Application container and request dependencies
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..accounts import Account, AccountStore
from ..account_numbers import AccountNumberGenerator
from ..async_storage import AsyncStorageInterface, create_async_storage
from ..config import MiniBankConfig, get_config
from ..errors import AccountNotFound, InvalidToken
from ..identity import IdentityService, UserStore
from ..ledger import LedgerEngine
from ..queries import LedgerQueries
from ..transactions import TransactionStore


class BankingSystem:
    """All ledger components wired to one shared storage handle"""

    def __init__(
        self,
        storage: AsyncStorageInterface,
        config: Optional[MiniBankConfig] = None,
        generator: Optional[AccountNumberGenerator] = None
    ):
        self.config = config or get_config()
        self.storage = storage

        self.accounts = AccountStore(storage)
        self.transactions = TransactionStore(storage)
        self.users = UserStore(storage)
        self.queries = LedgerQueries(self.accounts, self.transactions)
        self.ledger = LedgerEngine(
            storage, self.accounts, self.transactions, queries=self.queries
        )
        self.identity = IdentityService(
            storage, self.users, self.accounts, generator, self.config
        )

    @classmethod
    def from_config(cls, config: Optional[MiniBankConfig] = None) -> 'BankingSystem':
        config = config or get_config()
        return cls(create_async_storage(config.database_url), config)

    async def close(self) -> None:
        await self.storage.close()


def get_banking_system(request: Request) -> BankingSystem:
    return request.app.state.system


security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: BankingSystem = Depends(get_banking_system)
) -> str:
    """Dependency that validates the bearer token and returns the user id"""
    if not credentials:
        raise InvalidToken("Not authenticated")
    return system.identity.verify_token(credentials.credentials)


async def get_current_account(
    user_id: str = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
) -> Account:
    """The account owned by the authenticated user"""
    account = await system.accounts.find_by_owner(user_id)
    if not account:
        raise AccountNotFound(details={"user_id": user_id})
    return account
