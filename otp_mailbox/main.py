"""
OTP Mailbox - Main Application Entry

HTTP access to verification codes delivered by email
"""

import logging

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from otp_mailbox.config import load_settings
from otp_mailbox.core.error_handlers import (
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from otp_mailbox.routes import codes, status

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="OTP Mailbox",
    description="Retrieve email verification codes for automated test runs",
    version=status.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Register exception handlers
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.include_router(codes.router)
app.include_router(status.router)


@app.on_event("startup")
async def startup_event():
    """Load mailbox settings on startup"""
    logger.info("🚀 Starting OTP Mailbox...")

    try:
        settings = load_settings("config/mailbox.json")
    except ValueError as e:
        logger.error(f"❌ Startup failed: {e}")
        raise

    codes.set_settings(settings)
    status.set_settings(settings)

    if not settings.imap_user or not settings.imap_pass:
        logger.warning("⚠️ IMAP_USER / IMAP_PASS not set, retrievals will fail")
    logger.info(f"✅ Using mailbox {settings.imap_user}@{settings.imap_host}")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "OTP Mailbox",
        "version": status.VERSION,
        "status": "active",
        "docs": "/docs",
        "endpoints": {
            "retrieve_code": "/api/v1/codes/retrieve",
            "health": "/api/v1/status/health",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "otp_mailbox.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
