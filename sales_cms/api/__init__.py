"""
Sales Case Management API Application Factory
"""

import logging
import uvicorn

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import SalesCMSError, ValidationError, NotFoundError, ConcurrencyConflict
from .units import router as units_router
from .clients import router as clients_router
from .cases import router as cases_router
from .payments import router as payments_router
from .approvals import router as approvals_router
from .reporting import router as reporting_router


logger = logging.getLogger("sales_cms.api")


def _error_status(error: SalesCMSError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ConcurrencyConflict):
        return 409
    if isinstance(error, ValidationError):
        return 400
    return 500


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Sales Case Management API",
        description="Lot sales cases, payment schedules and collections",
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

    @app.exception_handler(SalesCMSError)
    async def handle_domain_error(request: Request, error: SalesCMSError):
        status_code = _error_status(error)
        if status_code >= 500:
            logger.error("Unhandled domain error", extra={"extra": {
                "path": request.url.path, **error.to_dict()
            }})
        return JSONResponse(status_code=status_code, content={"detail": error.to_dict()})

    app.include_router(units_router, prefix="/units", tags=["Units"])
    app.include_router(clients_router, tags=["Clients"])
    app.include_router(cases_router, prefix="/cases", tags=["Cases"])
    app.include_router(payments_router, prefix="/payments", tags=["Payments"])
    app.include_router(approvals_router, prefix="/approvals", tags=["Approvals"])
    app.include_router(reporting_router, prefix="/reports", tags=["Reports"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "sales_cms_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Sales Case Management API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "units": "/units",
                "clients": "/clients",
                "brokers": "/brokers",
                "cases": "/cases",
                "payments": "/payments",
                "approvals": "/approvals",
                "reports": "/reports",
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False,
               workers: int = 1, log_level: str = "info"):
    """Run the FastAPI server"""
    uvicorn.run(
        "sales_cms.api:app",
        host=host,
        port=port,
        reload=debug,
        workers=workers if not debug else 1,
        log_level=log_level
    )
