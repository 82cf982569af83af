"""
Credential Check - Validate mailbox app-password format and login

Providers such as Gmail only accept an application-specific password
over IMAP once two-step verification is on. These passwords are 16
lowercase letters; pasting them with the display spaces is the most
common mistake.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from otp_mailbox.core.errors import AuthFailure, MailboxError, auth_diagnostic, mask_secret
from otp_mailbox.core.imap_session import SessionFactory, acquire_session

logger = logging.getLogger(__name__)

APP_PASSWORD_LENGTH = 16
_APP_PASSWORD_RE = re.compile(r"[a-z]+")


@dataclass
class CredentialCheckResult:
    ok: bool
    account: str
    masked_password: str
    problems: List[str] = field(default_factory=list)
    error: Optional[str] = None


def app_password_problems(password: str) -> List[str]:
    """
    List format problems of an app password

    Args:
        password: Configured password

    Returns:
        List[str]: Human-readable problems, empty when the format is valid
    """
    problems = []
    if not password:
        return ["Password is empty"]
    if " " in password:
        problems.append("Password contains spaces; remove them")
    if len(password) != APP_PASSWORD_LENGTH:
        problems.append(
            f"Password must be exactly {APP_PASSWORD_LENGTH} characters (got {len(password)})"
        )
    if not _APP_PASSWORD_RE.fullmatch(password):
        problems.append("Password must contain only lowercase letters")
    return problems


def probe_login(
    session_factory: SessionFactory,
    account: str,
    password: str,
    mailbox: str = "INBOX",
) -> CredentialCheckResult:
    """
    Check the password format, then log in and open the mailbox once

    Args:
        session_factory: Creates an unconnected session
        account: Mailbox user, for reporting
        password: Mailbox password, for format checks and masking
        mailbox: Mailbox to open

    Returns:
        CredentialCheckResult: Outcome of the check
    """
    result = CredentialCheckResult(
        ok=False,
        account=account,
        masked_password=mask_secret(password),
        problems=app_password_problems(password),
    )
    for problem in result.problems:
        logger.warning(f"⚠️ {problem}")

    logger.info(f"🔌 Trying to log in as {account} ({result.masked_password})...")
    try:
        with acquire_session(session_factory, mailbox):
            pass
    except AuthFailure as e:
        result.error = auth_diagnostic(e, 1)
        logger.error(f"❌ {result.error}")
        return result
    except MailboxError as e:
        result.error = f"{type(e).__name__}: {e}"
        logger.error(f"❌ {result.error}")
        return result

    logger.info(f"✅ Logged in and opened {mailbox}")
    result.ok = True
    return result
