import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from procureflow import __version__
from procureflow.api.routers import admin, approvals, artifacts, delegations, health, invoices, workflows
from procureflow.api.schemas import ErrorResponse
from procureflow.core.config import get_settings
from procureflow.core.exceptions import RoutingError
from procureflow.core.logger import setup_logger

settings = get_settings()
setup_logger("api", settings)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    description="Approval routing for purchase orders and invoices",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RoutingError)
async def routing_error_handler(request: Request, exc: RoutingError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    body = ErrorResponse(error=exc.code, detail=exc.message, code=exc.code)
    return JSONResponse(
        status_code=exc.http_status,
        content={**body.model_dump(), "retryable": exc.retryable},
    )


# Include routers
app.include_router(artifacts.router, prefix="/api")
app.include_router(invoices.router, prefix="/api")
app.include_router(approvals.router, prefix="/api")
app.include_router(delegations.router, prefix="/api")
app.include_router(workflows.router, prefix="/api")
app.include_router(admin.router, prefix="/api")
app.include_router(health.router)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
    }
