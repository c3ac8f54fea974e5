"""
Error kind to HTTP status mapping and exception handlers
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..errors import ErrorKind, MiniBankError, StorageFailure
from ..logging_config import get_logger, log_action
from ..storage import StorageError

logger = get_logger("minibank.api")


ERROR_STATUS = {
    ErrorKind.INVALID_AMOUNT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SELF_TRANSFER_FORBIDDEN: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ACCOUNT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.SOURCE_ACCOUNT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.RECIPIENT_ACCOUNT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INSUFFICIENT_FUNDS: status.HTTP_409_CONFLICT,
    ErrorKind.EMAIL_ALREADY_REGISTERED: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_TOKEN: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.STORAGE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def minibank_error_handler(request: Request, exc: MiniBankError) -> JSONResponse:
    """Handler for ledger and identity errors"""
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=exc.to_dict()
    )


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    """Handler for storage faults that escaped the services untranslated"""
    log_action(
        logger, "error", f"Storage fault: {exc}",
        action="request", resource=request.url.path
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=StorageFailure().to_dict()
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MiniBankError, minibank_error_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
