"""
Registration and login endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system
from .schemas import RegisterRequest, LoginRequest


router = APIRouter()


def _user_payload(user) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name}


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Register a user and open their account"""
    user, account, token = await system.identity.register(
        email=request.email,
        password=request.password,
        name=request.name
    )

    return {
        "user": _user_payload(user),
        "account": {
            "id": account.id,
            "number": account.number,
            "balance": str(account.balance)
        },
        "access_token": token,
        "token_type": "bearer",
        "message": "Registration successful"
    }


@router.post("/login")
async def login(
    request: LoginRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Authenticate user and return JWT token"""
    user, token = await system.identity.login(request.email, request.password)

    return {
        "user": _user_payload(user),
        "access_token": token,
        "token_type": "bearer",
        "message": "Login successful"
    }
