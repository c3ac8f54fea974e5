"""
Account and balance endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status

from .dependencies import BankingSystem, get_banking_system, get_current_account
from ..accounts import Account
from ..errors import AccountNotFound


router = APIRouter()
balance_router = APIRouter()


@router.get("/balance")
async def get_own_balance(account: Account = Depends(get_current_account)):
    """Get the caller's account and balance"""
    return {
        "id": account.id,
        "number": account.number,
        "balance": str(account.balance)
    }


@router.get("/{account_number}")
async def get_account_by_number(
    account_number: str,
    _: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Look up an account by number (no balance)"""
    account = await system.accounts.find_by_number(account_number)
    if not account:
        raise AccountNotFound(details={"account_number": account_number})

    return {
        "id": account.id,
        "number": account.number
    }


@balance_router.get("/{account_id}")
async def get_balance(
    account_id: str,
    account: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get the balance of the caller's account"""
    if account_id != account.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    balance = await system.ledger.get_account_balance(account_id)
    return {
        "account_id": account_id,
        "balance": str(balance)
    }
