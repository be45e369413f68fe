import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import logfire

from app.routes import (
    delivery_route,
    distance_route,
    notification_router,
    payment_route,
    wallet_route,
)
from app.config.config import redis, settings
from app.config.logging import logger
from app.database.supabase import create_supabase_admin_client, create_supabase_client
from app.utils.errors import http_error_handler, validation_error_handler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application lifespan events"""
    # Startup
    app.state.supabase = await create_supabase_client()
    app.state.supabase_admin = await create_supabase_admin_client()
    logger.info(
        "application_started", app=settings.APP_NAME, environment=settings.ENVIRONMENT
    )
    yield
    # Shutdown
    await redis.aclose()
    logger.info("application_shutdown", app=settings.APP_NAME)


app = FastAPI(
    title="Fast Haazir API",
    description="Rider assignment, delivery pricing, rider wallet and notification services for Fast Haazir",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.DEBUG,
)

if settings.LOGFIRE_TOKEN:
    logfire.instrument_fastapi(app)

app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests"""
    start_time = time.time()

    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=round(process_time, 3),
        )

        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.error(
            "request_failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            process_time=round(process_time, 3),
            exc_info=True,
        )
        raise


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint to verify API status.

    Returns:
        dict: A welcome message, link to docs, and status.
    """
    logger.debug("root_endpoint_accessed")
    return {"message": "Welcome to Fast Haazir API", "docs": "/docs", "status": "active"}


@app.get("/health", tags=["Root"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: The health status of the application.
    """
    logger.debug("health_check_accessed")
    return {"status": "healthy"}


# Include Routers
app.include_router(delivery_route.router)
app.include_router(distance_route.router)
app.include_router(notification_router.router)
app.include_router(wallet_route.router)
app.include_router(payment_route.router)
