"""
MiniBank API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import MiniBankConfig, get_config
from ..logging_config import setup_logging
from .accounts import router as accounts_router, balance_router
from .auth import router as auth_router
from .dependencies import BankingSystem
from .errors import register_exception_handlers
from .transactions import router as transactions_router


def create_app(
    system: Optional[BankingSystem] = None,
    config: Optional[MiniBankConfig] = None
) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Pre-built banking system (tests); built from config when omitted
        config: Settings to use instead of the global configuration
    """
    config = config or get_config()
    setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = system is None
        app.state.system = system or BankingSystem.from_config(config)
        try:
            yield
        finally:
            if owned:
                await app.state.system.close()

    app = FastAPI(
        title=config.api_title,
        description="Minimal banking ledger: deposits and transfers between accounts",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
    app.include_router(transactions_router, prefix="/api/transactions", tags=["Transactions"])
    app.include_router(accounts_router, prefix="/api/accounts", tags=["Accounts"])
    app.include_router(balance_router, prefix="/api/balance", tags=["Accounts"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "minibank",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "minibank.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
