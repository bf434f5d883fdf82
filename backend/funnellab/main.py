"""Main FastAPI application."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from funnellab.config import get_settings
from funnellab.middleware.logging import LoggingMiddleware, get_logger
from funnellab.api import admin, funnel, health
from funnellab.database import engine, Base
from funnellab.services.errors import FunnelError
import funnellab.models  # noqa: F401  (register tables on Base.metadata)

settings = get_settings()
logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup
    Base.metadata.create_all(bind=engine)
    logger.info("database_tables_verified")

    yield  # App runs here

    # Shutdown
    logger.info("shutting_down", service=settings.app_name)

# Create FastAPI app
app = FastAPI(
    title="FunnelLab",
    description="Funnel split-testing: sticky variant assignment, event tracking and conversion analytics",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# CORS middleware - landing pages and the admin dashboard
allowed_origins = [
    "http://localhost:5173",  # Local development
    "http://localhost:3000",  # Alternative local port
    settings.frontend_url,     # Production frontend
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Trace-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining"]
)

# Logging middleware
app.add_middleware(LoggingMiddleware)


@app.exception_handler(FunnelError)
async def funnel_error_handler(request: Request, exc: FunnelError):
    """Typed engine failures become 4xx responses, never 500s."""
    logger.warning(
        "funnel_request_rejected",
        error=exc.code,
        detail=exc.message,
        path=request.url.path
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message}
    )


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(funnel.router, tags=["funnel"])
app.include_router(admin.router, tags=["admin"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "FunnelLab",
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "disabled",
        "endpoints": {
            "health": "/health",
            "resolve": "GET /funnel/c/{slug}",
            "track": "POST /funnel/track",
            "analytics": "GET /admin/funnels/campaigns/{id}/analytics"
        }
    }


# uvicorn funnellab.main:app --reload
