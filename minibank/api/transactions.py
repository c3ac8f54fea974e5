"""
Transaction endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status

from .dependencies import BankingSystem, get_banking_system, get_current_account
from .schemas import DepositRequest, TransferRequest
from ..accounts import Account


router = APIRouter()


@router.post("/deposit", status_code=status.HTTP_201_CREATED)
async def deposit(
    request: DepositRequest,
    account: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Deposit into the caller's account"""
    view = await system.ledger.deposit(
        account_id=account.id,
        amount=request.amount,
        description=request.description
    )

    return {
        "transaction": view.to_dict(),
        "message": "Deposit successful"
    }


@router.post("/transfer", status_code=status.HTTP_201_CREATED)
async def transfer(
    request: TransferRequest,
    account: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transfer from the caller's account to another account by number"""
    view = await system.ledger.transfer(
        from_account_id=account.id,
        to_account_number=request.to_account_number,
        amount=request.amount,
        description=request.description,
        recipient_ref=request.recipient_ref
    )

    return {
        "transaction": view.to_dict(),
        "message": "Transfer successful"
    }


@router.get("/{account_id}")
async def get_account_transactions(
    account_id: str,
    account: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transaction history of the caller's account, newest first"""
    if account_id != account.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    views = await system.ledger.get_account_transactions(account_id)
    return {
        "account_id": account_id,
        "transactions": [view.to_dict() for view in views]
    }
