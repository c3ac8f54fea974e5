"""
Error Taxonomy Module

Every failure the ledger can report has its own ErrorKind and exception
class. Callers branch on the kind (or the class), never on message text.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Distinguishable failure kinds"""
    # Ledger input and business-rule violations
    INVALID_AMOUNT = "invalid_amount"
    ACCOUNT_NOT_FOUND = "account_not_found"
    SOURCE_ACCOUNT_NOT_FOUND = "source_account_not_found"
    RECIPIENT_ACCOUNT_NOT_FOUND = "recipient_account_not_found"
    SELF_TRANSFER_FORBIDDEN = "self_transfer_forbidden"
    INSUFFICIENT_FUNDS = "insufficient_funds"

    # Persistence faults (transient)
    STORAGE_FAILURE = "storage_failure"

    # Identity
    VALIDATION_ERROR = "validation_error"
    EMAIL_ALREADY_REGISTERED = "email_already_registered"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_TOKEN = "invalid_token"


class MiniBankError(Exception):
    """Base class for all reported failures"""

    kind: ErrorKind = ErrorKind.STORAGE_FAILURE
    default_message = "Operation failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for transport"""
        return {
            "error": self.kind.value,
            "message": self.message,
            "details": self.details
        }


class InvalidAmount(MiniBankError):
    kind = ErrorKind.INVALID_AMOUNT
    default_message = "Amount must be greater than 0"


class AccountNotFound(MiniBankError):
    kind = ErrorKind.ACCOUNT_NOT_FOUND
    default_message = "Account not found"


class SourceAccountNotFound(MiniBankError):
    kind = ErrorKind.SOURCE_ACCOUNT_NOT_FOUND
    default_message = "Your account was not found"


class RecipientAccountNotFound(MiniBankError):
    kind = ErrorKind.RECIPIENT_ACCOUNT_NOT_FOUND
    default_message = "Recipient account not found"


class SelfTransferForbidden(MiniBankError):
    kind = ErrorKind.SELF_TRANSFER_FORBIDDEN
    default_message = "Cannot transfer to your own account"


class InsufficientFunds(MiniBankError):
    kind = ErrorKind.INSUFFICIENT_FUNDS
    default_message = "Insufficient funds"


class StorageFailure(MiniBankError):
    """Underlying persistence fault; no partial write was committed"""
    kind = ErrorKind.STORAGE_FAILURE
    default_message = "Storage failure, please retry"


class AccountNumberExhausted(StorageFailure):
    """No free account number found within the configured attempts"""
    default_message = "Could not allocate a unique account number"


class ValidationFailed(MiniBankError):
    kind = ErrorKind.VALIDATION_ERROR
    default_message = "Invalid input"


class EmailAlreadyRegistered(MiniBankError):
    kind = ErrorKind.EMAIL_ALREADY_REGISTERED
    default_message = "User already exists"


class InvalidCredentials(MiniBankError):
    kind = ErrorKind.INVALID_CREDENTIALS
    default_message = "Invalid email or password"


class InvalidToken(MiniBankError):
    kind = ErrorKind.INVALID_TOKEN
    default_message = "Invalid token"
