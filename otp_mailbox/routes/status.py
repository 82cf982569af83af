"""
Status Routes - Service health and effective configuration
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from otp_mailbox.config import Settings
from otp_mailbox.core.errors import mask_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/status", tags=["status"])

VERSION = "1.0.0"

settings: Optional[Settings] = None


def set_settings(value: Optional[Settings]) -> None:
    global settings
    settings = value


class HealthResponse(BaseModel):
    """Health check response"""

    status: str = Field(..., description="healthy, or degraded when credentials are missing")
    version: str = Field(..., description="API version")
    mailbox_host: str
    mailbox_user: str
    mailbox_password: str = Field(..., description="Masked password")
    mailbox: str
    subject: str
    max_wait_seconds: float
    check_interval_seconds: float
    max_message_age_seconds: float


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check endpoint

    Status determination:
    - healthy: user and password configured
    - degraded: credentials missing, retrievals will fail
    """
    if settings is None:
        raise HTTPException(
            status_code=503,
            detail="Service unavailable: mailbox not configured",
        )

    status = "healthy" if settings.imap_user and settings.imap_pass else "degraded"

    return HealthResponse(
        status=status,
        version=VERSION,
        mailbox_host=f"{settings.imap_host}:{settings.imap_port}",
        mailbox_user=settings.imap_user,
        mailbox_password=mask_secret(settings.imap_pass),
        mailbox=settings.imap_mailbox,
        subject=settings.subject,
        max_wait_seconds=settings.max_wait,
        check_interval_seconds=settings.check_interval,
        max_message_age_seconds=settings.max_message_age,
    )
