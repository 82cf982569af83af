"""
Mailbox Errors - Typed error hierarchy and failure classification

Library-specific failures are translated into these types once, at the
protocol adapter boundary. The poll loop only looks at the types.
"""

import logging
from typing import Dict

from otp_mailbox.models.retrieval import ClassifiedError, ErrorKind

logger = logging.getLogger(__name__)

APP_PASSWORD_URL = "https://myaccount.google.com/apppasswords"


class MailboxError(Exception):
    """Base class for mailbox access failures"""


class MailboxConnectionError(MailboxError):
    """Connect, TLS handshake or dropped connection"""


class SearchError(MailboxError):
    """SEARCH failed on an open session"""


class MailboxOpenError(SearchError):
    """SELECT of the mailbox was refused"""


class FetchError(MailboxError):
    """FETCH of message headers or body failed"""


class AuthFailure(MailboxError):
    """Credentials were rejected by the server"""

    def __init__(
        self,
        message: str,
        account: str = "",
        app_password_required: bool = False,
    ):
        super().__init__(message)
        self.account = account
        self.app_password_required = app_password_required


class VerificationCodeTimeout(Exception):
    """No verification code arrived before the deadline"""


class MailboxFatalError(Exception):
    """Retrieval aborted on a non-retryable mailbox error"""

    def __init__(self, reason: ErrorKind, diagnostic: str):
        super().__init__(diagnostic)
        self.reason = reason
        self.diagnostic = diagnostic


TRANSIENT_ERRORS = (
    MailboxConnectionError,
    SearchError,
    FetchError,
    TimeoutError,
    ConnectionError,
)


def mask_secret(secret: str) -> str:
    """Show only the first 4 characters of a secret"""
    if not secret:
        return "<empty>"
    return f"{secret[:4]}****"


def auth_diagnostic(error: AuthFailure, attempts: int) -> str:
    """
    Build an actionable message for a rejected login

    Args:
        error: The authentication failure
        attempts: Consecutive failed attempts so far

    Returns:
        str: Account, cause and remediation
    """
    account = error.account or "<unknown account>"
    if error.app_password_required:
        return (
            f"Mailbox {account} requires an application-specific password. "
            f"Generate one at {APP_PASSWORD_URL} and set IMAP_PASS to it "
            f"(16 characters, no spaces). Server said: {error}"
        )
    return (
        f"Invalid credentials for {account} after {attempts} attempt(s). "
        f"Check IMAP_USER and IMAP_PASS; app passwords must be copied exactly "
        f"as shown (16 characters, no spaces) and can take 1-2 minutes to "
        f"become active. New ones can be generated at {APP_PASSWORD_URL}. "
        f"Server said: {error}"
    )


class ErrorClassifier:
    """
    Maps tick failures to Transient / Fatal(AuthFailure) / Fatal(Other)

    Auth failures and unrecognized errors only become fatal after
    `fatal_after` consecutive occurrences of the same kind; a successful
    tick resets the counters.
    """

    def __init__(self, fatal_after: int = 3):
        if fatal_after < 1:
            raise ValueError("fatal_after must be at least 1")
        self.fatal_after = fatal_after
        self._consecutive: Dict[ErrorKind, int] = {}

    def consecutive(self, kind: ErrorKind) -> int:
        return self._consecutive.get(kind, 0)

    def record_success(self) -> None:
        self._consecutive.clear()

    def _bump(self, kind: ErrorKind) -> int:
        count = self._consecutive.get(kind, 0) + 1
        self._consecutive = {kind: count}
        return count

    def classify(self, error: BaseException) -> ClassifiedError:
        """
        Classify one failure

        Args:
            error: Exception raised while running a tick

        Returns:
            ClassifiedError: Kind, fatality and diagnostic
        """
        if isinstance(error, AuthFailure):
            count = self._bump(ErrorKind.AUTH_FAILURE)
            fatal = error.app_password_required or count >= self.fatal_after
            return ClassifiedError(
                kind=ErrorKind.AUTH_FAILURE,
                fatal=fatal,
                error=error,
                diagnostic=auth_diagnostic(error, count),
            )

        if isinstance(error, TRANSIENT_ERRORS):
            # Transient failures break any run of other kinds
            self._bump(ErrorKind.TRANSIENT)
            return ClassifiedError(
                kind=ErrorKind.TRANSIENT,
                fatal=False,
                error=error,
                diagnostic=f"{type(error).__name__}: {error}",
            )

        count = self._bump(ErrorKind.OTHER)
        diagnostic = (
            f"Unexpected {type(error).__name__} on {count} consecutive "
            f"attempt(s): {error}"
        )
        if count < self.fatal_after:
            logger.debug(f"Treating unrecognized error as transient ({count}/{self.fatal_after})")
            return ClassifiedError(
                kind=ErrorKind.TRANSIENT,
                fatal=False,
                error=error,
                diagnostic=diagnostic,
            )
        return ClassifiedError(
            kind=ErrorKind.OTHER,
            fatal=True,
            error=error,
            diagnostic=diagnostic,
        )

