import logging
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from license_server.routers import licenses, paddle, revenuecat, admin
from license_server.config import settings
from license_server.exceptions import WebhookError

VERSION = "1.0.0"


# Configure logging
if settings.log_format == "json":
    import json as json_mod

    class JsonFormatter(logging.Formatter):
        def format(self, record):
            log_data = {
                "timestamp": self.formatTime(record),
                "level": record.levelname,
                "message": record.getMessage(),
                "module": record.module,
                "request_id": getattr(record, "request_id", None),
            }
            if record.exc_info:
                log_data["exception"] = self.formatException(record.exc_info)
            return json_mod.dumps(log_data)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.root.handlers = [handler]

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger("license_server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    errors, warnings = settings.validate_config()
    for warning in warnings:
        logger.warning("Config: %s", warning)
    for error in errors:
        logger.error("Config: %s", error)
    if errors:
        logger.error("Paddle webhooks will fail until the configuration errors above are fixed")
    yield


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

# Create FastAPI application
app = FastAPI(
    title="License Server API",
    description="Paddle and RevenueCat driven license issuance, validation and delivery",
    version=VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WebhookError)
async def webhook_error_handler(request: Request, exc: WebhookError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log("%s %s failed: %s (retryable=%s)", request.method, request.url.path, exc.message, exc.retryable)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "retryable": exc.retryable},
    )


# Include routers
app.include_router(licenses.router)
app.include_router(paddle.router)
app.include_router(revenuecat.router)
app.include_router(admin.router)


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "environment": settings.environment,
        "version": VERSION,
    }


@app.get("/")
def service_info():
    return {
        "name": "License Server",
        "version": VERSION,
        "endpoints": {
            "health": "/health",
            "licenses": "/licenses",
            "paddle_webhook": "/paddle/webhook",
            "revenuecat_migrate": "/revenuecat/migrate",
            "admin": "/admin",
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, reload=settings.debug)
