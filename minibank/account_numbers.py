"""
Account Number Generation Module

Produces 10-digit account numbers from a cryptographically strong source.
Uniqueness is enforced by the account-number index at commit time, so a
collision shows up as a VersionConflictError on that table and is retried
here with a fresh number.
"""

import random
import secrets
from typing import Awaitable, Callable, Optional, TypeVar

from .accounts import ACCOUNT_NUMBERS_TABLE, Account, AccountStore
from .errors import AccountNumberExhausted
from .logging_config import get_logger, log_action
from .storage import VersionConflictError

MIN_ACCOUNT_NUMBER = 1_000_000_000
MAX_ACCOUNT_NUMBER = 9_999_999_999
DEFAULT_MAX_ATTEMPTS = 5

T = TypeVar("T")

logger = get_logger("minibank.account_numbers")


class AccountNumberGenerator:
    """Draws random 10-digit account numbers"""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or secrets.SystemRandom()

    def generate(self) -> str:
        return str(self._rng.randint(MIN_ACCOUNT_NUMBER, MAX_ACCOUNT_NUMBER))


async def with_fresh_account_number(
    generator: AccountNumberGenerator,
    action: Callable[[str], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
) -> T:
    """
    Run action(number) with a new number until it commits without a number collision

    Args:
        generator: Source of candidate numbers
        action: Coroutine function that persists something keyed by the number
        max_attempts: Number of candidates to try

    Returns:
        Whatever action returned

    Raises:
        AccountNumberExhausted: If every candidate collided
    """
    for attempt in range(1, max_attempts + 1):
        number = generator.generate()
        try:
            return await action(number)
        except VersionConflictError as e:
            if e.table != ACCOUNT_NUMBERS_TABLE:
                raise
            log_action(
                logger, "warning", "Account number collision, retrying",
                action="allocate_account_number", resource=number,
                extra={"attempt": attempt, "max_attempts": max_attempts}
            )

    raise AccountNumberExhausted(details={"attempts": max_attempts})


async def open_account(
    accounts: AccountStore,
    generator: AccountNumberGenerator,
    owner_id: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
) -> Account:
    """Create a zero-balance account for owner_id with a unique number"""
    return await with_fresh_account_number(
        generator,
        lambda number: accounts.create(owner_id, number),
        max_attempts
    )
