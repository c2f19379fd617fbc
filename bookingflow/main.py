from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bookingflow.config import settings
from bookingflow.database import init_db
from bookingflow.errors import (
    AuthorizationError,
    BookingFlowError,
    ConfigurationError,
    InvalidSignatureError,
    MessageSendError,
    TenantNotFoundError,
    ValidationError,
)
from bookingflow.logging_config import get_logger, setup_logging
from bookingflow.api import routes
from bookingflow.services.scheduler import start_scheduler, stop_scheduler

setup_logging(settings.log_level)
logger = get_logger("main")

# Initialize database
init_db()

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes.router)

# Most specific first
ERROR_STATUS = (
    (InvalidSignatureError, 403),
    (ValidationError, 400),
    (AuthorizationError, 403),
    (TenantNotFoundError, 404),
    (MessageSendError, 502),
    (ConfigurationError, 500),
)


def status_for(error: BookingFlowError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


@app.exception_handler(BookingFlowError)
async def booking_flow_error_handler(request: Request, exc: BookingFlowError):
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request failed",
        extra={"context": {"path": request.url.path, "code": exc.code, "error": exc.message}},
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


@app.on_event("startup")
async def startup_event():
    """Start background scheduler on app startup"""
    if settings.scheduler_enabled:
        start_scheduler()
    logger.info(f"{settings.app_name} started", extra={"context": {"scheduler": settings.scheduler_enabled}})


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background scheduler on app shutdown"""
    if settings.scheduler_enabled:
        stop_scheduler()
    logger.info(f"{settings.app_name} stopped")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
