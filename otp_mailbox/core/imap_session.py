"""
IMAP Session - Thin protocol adapter over imaplib

Exposes the six primitives the poll loop needs (connect, open mailbox,
search, fetch meta, fetch body, close) and translates imaplib / socket
failures into the typed errors of otp_mailbox.core.errors. The mailbox is
selected read-only and bodies are fetched with BODY.PEEK so polling never
changes flags.
"""

import email
import email.message
import imaplib
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from email.parser import BytesHeaderParser
from email.utils import getaddresses, parsedate_to_datetime
from typing import Callable, Iterator, List, Optional, Protocol

from otp_mailbox.core.errors import (
    AuthFailure,
    FetchError,
    MailboxConnectionError,
    MailboxOpenError,
    SearchError,
)
from otp_mailbox.models.retrieval import MessageMeta

logger = logging.getLogger(__name__)

RECIPIENT_HEADERS = ("To", "Cc", "Delivered-To")
META_QUERY = "(INTERNALDATE BODY.PEEK[HEADER.FIELDS (DATE TO CC DELIVERED-TO)])"
BODY_QUERY = "(BODY.PEEK[])"

# imaplib raises socket/ssl errors as-is, and IMAP4.abort on dropped links
NETWORK_ERRORS = (OSError, imaplib.IMAP4.abort)


class ProtocolSession(Protocol):
    """Mailbox session primitives consumed by the poll loop"""

    def connect(self) -> None:
        ...

    def open_mailbox(self, name: str) -> None:
        ...

    def search(self, subject: str) -> List[bytes]:
        ...

    def fetch_meta(self, ref: bytes) -> MessageMeta:
        ...

    def fetch_body(self, ref: bytes) -> str:
        ...

    def close(self) -> None:
        ...


SessionFactory = Callable[[], ProtocolSession]


def _is_app_password_error(text: str) -> bool:
    lowered = text.lower()
    return "application-specific" in lowered or "app password" in lowered


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _fetch_parts(data: list) -> List[tuple]:
    """Keep the (envelope, literal) tuples of a FETCH response"""
    return [item for item in data if isinstance(item, tuple) and len(item) == 2]


def get_text_body(message: email.message.Message) -> str:
    """
    Return the first text/plain part of a message

    Args:
        message: Parsed message

    Returns:
        str: Decoded text, or "" when the message has no text/plain part
    """
    if message.is_multipart():
        for part in message.walk():
            if part.get_content_type() == "text/plain":
                return _decode_part(part)
        return ""
    return _decode_part(message)


def _decode_part(part: email.message.Message) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="ignore")
    except LookupError:
        return payload.decode("utf-8", errors="ignore")


def parse_meta(ref: bytes, envelope: bytes, headers: bytes) -> MessageMeta:
    """
    Build MessageMeta from a header FETCH response

    The Date header is the send time; INTERNALDATE is used when the
    header is missing or unparsable.
    """
    parsed = BytesHeaderParser().parsebytes(headers)

    sent_at: Optional[datetime] = None
    date_header = parsed.get("Date")
    if date_header:
        try:
            sent_at = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            sent_at = None
        if sent_at is not None and sent_at.tzinfo is None:
            sent_at = sent_at.replace(tzinfo=timezone.utc)

    if sent_at is None:
        internal = imaplib.Internaldate2tuple(envelope)
        if internal is not None:
            sent_at = datetime.fromtimestamp(time.mktime(internal), tz=timezone.utc)

    return MessageMeta(ref=ref, sent_at=sent_at, recipients=_recipients(parsed))


def _recipients(parsed: email.message.Message) -> List[str]:
    values: List[str] = []
    for name in RECIPIENT_HEADERS:
        values.extend(str(value) for value in parsed.get_all(name, []))
    return [address.lower() for _, address in getaddresses(values) if address]


class ImapSession:
    """
    One IMAP4-over-SSL session

    Not reusable: the poll loop creates a new instance per tick and always
    calls close(), which is safe after any failure.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        timeout: Optional[float] = 30.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout
        self._client: Optional[imaplib.IMAP4] = None
        self._selected = False

    def connect(self) -> None:
        try:
            client = imaplib.IMAP4_SSL(self.host, self.port, timeout=self.timeout)
        except (OSError, imaplib.IMAP4.error) as e:
            raise MailboxConnectionError(
                f"Cannot connect to {self.host}:{self.port}: {e}"
            ) from e
        self._client = client

        try:
            client.login(self.user, self.password)
        except imaplib.IMAP4.abort as e:
            raise MailboxConnectionError(f"Connection dropped during login: {e}") from e
        except imaplib.IMAP4.error as e:
            message = str(e)
            raise AuthFailure(
                message,
                account=self.user,
                app_password_required=_is_app_password_error(message),
            ) from e
        except OSError as e:
            raise MailboxConnectionError(f"Connection lost during login: {e}") from e

        logger.debug(f"IMAP login OK: {self.user}@{self.host}")

    def _require_client(self) -> imaplib.IMAP4:
        if self._client is None:
            raise MailboxConnectionError("Session is not connected")
        return self._client

    def open_mailbox(self, name: str) -> None:
        client = self._require_client()
        try:
            status, data = client.select(name, readonly=True)
        except NETWORK_ERRORS as e:
            raise MailboxConnectionError(f"Connection lost selecting {name}: {e}") from e
        except imaplib.IMAP4.error as e:
            raise MailboxOpenError(f"Cannot open mailbox {name}: {e}") from e
        if status != "OK":
            raise MailboxOpenError(f"Cannot open mailbox {name}: {data!r}")
        self._selected = True

    def search(self, subject: str) -> List[bytes]:
        client = self._require_client()
        try:
            if subject.isascii():
                status, data = client.search(None, "SUBJECT", _quote(subject))
            else:
                client.literal = subject.encode("utf-8")
                status, data = client.search("UTF-8", "SUBJECT")
        except (imaplib.IMAP4.error, OSError) as e:
            raise SearchError(f"SEARCH failed: {e}") from e
        if status != "OK":
            raise SearchError(f"SEARCH failed: {data!r}")
        return data[0].split() if data and data[0] else []

    def fetch_meta(self, ref: bytes) -> MessageMeta:
        client = self._require_client()
        try:
            status, data = client.fetch(ref, META_QUERY)
        except (imaplib.IMAP4.error, OSError) as e:
            raise FetchError(f"FETCH headers of {ref!r} failed: {e}") from e
        parts = _fetch_parts(data or [])
        if status != "OK" or not parts:
            raise FetchError(f"FETCH headers of {ref!r} failed: {data!r}")
        envelope, headers = parts[0]
        return parse_meta(ref, envelope, headers)

    def fetch_body(self, ref: bytes) -> str:
        client = self._require_client()
        try:
            status, data = client.fetch(ref, BODY_QUERY)
        except (imaplib.IMAP4.error, OSError) as e:
            raise FetchError(f"FETCH body of {ref!r} failed: {e}") from e
        parts = _fetch_parts(data or [])
        if status != "OK" or not parts:
            raise FetchError(f"FETCH body of {ref!r} failed: {data!r}")
        message = email.message_from_bytes(parts[0][1])
        return get_text_body(message)

    def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            if self._selected:
                client.close()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug(f"IMAP CLOSE failed: {e}")
        finally:
            self._selected = False
            try:
                client.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.debug(f"IMAP LOGOUT failed: {e}")


def imap_session_factory(
    host: str,
    port: int,
    user: str,
    password: str,
    timeout: Optional[float] = 30.0,
) -> SessionFactory:
    """Build a factory producing a fresh ImapSession per call"""

    def factory() -> ImapSession:
        return ImapSession(host, port, user, password, timeout=timeout)

    return factory


@contextmanager
def acquire_session(
    factory: SessionFactory,
    mailbox: str,
    checkpoint: Optional[Callable[[], None]] = None,
) -> Iterator[ProtocolSession]:
    """
    Connect, open the mailbox and guarantee close() on every exit path

    Args:
        factory: Creates an unconnected session
        mailbox: Mailbox to select
        checkpoint: Called between connect and select; may raise to abort

    Yields:
        ProtocolSession: Connected session with the mailbox selected
    """
    session = factory()
    try:
        session.connect()
        if checkpoint is not None:
            checkpoint()
        session.open_mailbox(mailbox)
        yield session
    finally:
        session.close()
