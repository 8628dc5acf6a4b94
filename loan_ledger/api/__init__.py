"""
Loan Ledger API Application Factory
"""

import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import (
    LoanLedgerError, ValidationError, NotFoundError, StateError,
    ConcurrencyConflict, PersistenceError
)
from .loans import router as loans_router
from .loans import installments_router, payroll_router, catalog_router


logger = logging.getLogger(__name__)

# Most specific class first
ERROR_STATUS_CODES = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (StateError, 409),
    (ConcurrencyConflict, 409),
    (PersistenceError, 503),
)


def status_code_for(error: LoanLedgerError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Employee Loan Ledger API",
        description="Employee loans with flat-interest installment schedules and payroll deductions",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LoanLedgerError)
    async def ledger_error_handler(request: Request, exc: LoanLedgerError):
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected (%s): %s", request.method, request.url.path,
                        exc.kind, exc.message)
        return JSONResponse(status_code=status_code,
                            content={"error": exc.kind, "detail": exc.message})

    # Include routers
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(installments_router, prefix="/installments", tags=["Installments"])
    app.include_router(payroll_router, prefix="/payroll", tags=["Payroll"])
    app.include_router(catalog_router, prefix="/catalog", tags=["Catalog"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_ledger_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8091, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "loan_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
