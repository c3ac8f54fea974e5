"""
Pydantic schemas for API requests
"""

from typing import Optional, Union
from pydantic import BaseModel, Field


# Amounts are validated by the ledger, so any number or numeric string is accepted here
AmountField = Union[str, int, float]


# Auth schemas
class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str


class LoginRequest(BaseModel):
    email: str
    password: str


# Transaction schemas
class DepositRequest(BaseModel):
    amount: AmountField = Field(..., description="Positive amount, as a number or decimal string")
    description: Optional[str] = None


class TransferRequest(BaseModel):
    to_account_number: str = Field(..., description="10-digit account number of the recipient")
    amount: AmountField = Field(..., description="Positive amount, as a number or decimal string")
    description: Optional[str] = None
    recipient_ref: Optional[str] = None
