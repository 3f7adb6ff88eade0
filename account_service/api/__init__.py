"""
Account Service API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..logging_config import setup_logging
from .accounts import router as accounts_router
from .admin import router as admin_router
from .dependencies import AccountSystem, get_account_system
from .handlers import register_exception_handlers


def create_app(system: Optional[AccountSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Prebuilt account system; the lazily created global one otherwise
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        current = app.dependency_overrides.get(get_account_system, get_account_system)()
        setup_logging(
            level=current.config.log_level,
            log_format=current.config.log_format,
            log_file=current.config.log_file
        )
        current.start()
        try:
            yield
        finally:
            current.stop()

    app = FastAPI(
        title="Account Service API",
        description="Bank account lifecycle, access control and provisioning",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    if system is not None:
        app.dependency_overrides[get_account_system] = lambda: system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(admin_router, prefix="/api/accounts/admin", tags=["Admin"])
    app.include_router(accounts_router, prefix="/api/accounts", tags=["Accounts"])

    # Health check endpoint
    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "account_service",
            "version": __version__
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8083, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "account_service.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
