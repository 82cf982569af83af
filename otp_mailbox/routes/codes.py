"""
Code Routes - Retrieve verification codes over HTTP

Lets browser-test harnesses outside Python block on the mailbox until the
code arrives.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from otp_mailbox.config import Settings
from otp_mailbox.core.error_handlers import RetrievalHTTPException
from otp_mailbox.core.poll_loop import retrieve_code_async
from otp_mailbox.models.retrieval import ErrorKind, Fatal, Found

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/codes", tags=["codes"])

settings: Optional[Settings] = None


def set_settings(value: Optional[Settings]) -> None:
    """
    Set the global settings instance

    Args:
        value: Loaded Settings, or None to reset
    """
    global settings
    settings = value


class RetrieveCodeRequest(BaseModel):
    """Retrieval parameters; omitted fields use the configured defaults"""

    subject: Optional[str] = Field(None, min_length=1, description="Subject to search for")
    recipient: Optional[str] = Field(None, description="Address the message must be for")
    max_wait_seconds: Optional[float] = Field(None, gt=0, le=600, description="Overall deadline")
    check_interval_seconds: Optional[float] = Field(None, gt=0, le=60, description="Pause between checks")
    max_message_age_seconds: Optional[float] = Field(None, gt=0, description="Oldest acceptable message")


class RetrieveCodeResponse(BaseModel):
    status: str = Field("found", description="Always 'found' on success")
    code: str = Field(..., description="6-digit verification code")
    strategy: str = Field(..., description="Extraction strategy that matched")
    attempts: int = Field(..., description="Polling attempts used")


@router.post("/retrieve", response_model=RetrieveCodeResponse)
async def retrieve_code(payload: RetrieveCodeRequest) -> RetrieveCodeResponse:
    """
    Wait for a verification code

    Returns:
        RetrieveCodeResponse: The code and how it was found

    Raises:
        HTTPException: 503 if not initialized, 504 on timeout,
            502 on a fatal mailbox error
    """
    if settings is None:
        raise HTTPException(
            status_code=503,
            detail="Service unavailable: mailbox not configured",
        )

    request = settings.build_request(
        subject=payload.subject,
        recipient=payload.recipient,
        max_wait=payload.max_wait_seconds,
        check_interval=payload.check_interval_seconds,
        max_message_age=payload.max_message_age_seconds,
    )
    outcome = await retrieve_code_async(settings.build_poll_loop(), request)

    if isinstance(outcome, Found):
        return RetrieveCodeResponse(
            code=outcome.code,
            strategy=outcome.strategy.value,
            attempts=outcome.attempts,
        )

    if isinstance(outcome, Fatal):
        error_code = (
            "MAILBOX_AUTH_FAILED"
            if outcome.reason == ErrorKind.AUTH_FAILURE
            else "MAILBOX_ERROR"
        )
        raise RetrievalHTTPException(
            status_code=502,
            detail=outcome.diagnostic,
            error_code=error_code,
            details={"reason": outcome.reason.value, "attempts": outcome.attempts},
        )

    raise RetrievalHTTPException(
        status_code=504,
        detail=f"No verification code after {outcome.waited_seconds:.0f} seconds",
        error_code="CODE_TIMEOUT",
        details={"attempts": outcome.attempts, "cancelled": outcome.cancelled},
    )
