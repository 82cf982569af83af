"""
Poll Loop - Bounded polling retrieval of verification codes

State machine: Polling -> {Found, TimedOut, Fatal}

Each tick opens its own mailbox session, searches by subject, keeps the
fresh (and, when a recipient hint is given, matching) messages and runs
the code extractor over them newest first. The session is closed at the
end of every tick. Transient failures are logged and retried until the
deadline; fatal ones end the call immediately.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from otp_mailbox.core.errors import (
    ErrorClassifier,
    FetchError,
    MailboxFatalError,
    VerificationCodeTimeout,
)
from otp_mailbox.core.extractor import DEFAULT_PREAMBLES, CodeExtractor
from otp_mailbox.core.filters import FreshnessFilter, RecipientMatcher, recent_refs
from otp_mailbox.core.imap_session import SessionFactory, acquire_session
from otp_mailbox.core.searcher import MessageSearcher
from otp_mailbox.models.retrieval import (
    Attempt,
    ExtractionResult,
    Fatal,
    Found,
    Outcome,
    RetrievalRequest,
    SearchWindow,
    TimedOut,
)

logger = logging.getLogger(__name__)


class _StopPolling(Exception):
    """Deadline reached or cancellation requested inside a tick"""

    def __init__(self, cancelled: bool = False):
        super().__init__("cancelled" if cancelled else "deadline reached")
        self.cancelled = cancelled


class PollLoop:
    """
    Retrieves one verification code per call

    Args:
        session_factory: Creates a fresh, unconnected session per tick
        mailbox: Mailbox to search
        fatal_after: Consecutive auth / unrecognized failures before giving up
        preambles: Phrases that introduce the code in message bodies
        now_fn: Wall clock, timezone-aware
        sleep_fn: Blocking sleep between ticks
        stop_check: Optional callable; returning True cancels the call
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        mailbox: str = "INBOX",
        fatal_after: int = 3,
        preambles: Sequence[str] = DEFAULT_PREAMBLES,
        now_fn: Optional[Callable[[], datetime]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
        stop_check: Optional[Callable[[], bool]] = None,
    ):
        if fatal_after < 1:
            raise ValueError(f"fatal_after must be at least 1 (got {fatal_after})")
        self.session_factory = session_factory
        self.mailbox = mailbox
        self.fatal_after = fatal_after
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))
        self.sleep_fn = sleep_fn or time.sleep
        self.stop_check = stop_check

        self.searcher = MessageSearcher()
        self.matcher = RecipientMatcher()
        self.extractor = CodeExtractor(preambles)

    def _cancelled(self) -> bool:
        return bool(self.stop_check and self.stop_check())

    def _ensure_time_left(self, deadline: datetime) -> None:
        """Checked before every network round trip"""
        if self._cancelled():
            raise _StopPolling(cancelled=True)
        if self.now_fn() >= deadline:
            raise _StopPolling()

    def retrieve_code(self, request: RetrievalRequest) -> Outcome:
        """
        Poll the mailbox until a code is found, the deadline passes or a
        fatal error occurs

        Args:
            request: Retrieval parameters

        Returns:
            Outcome: Found, TimedOut or Fatal
        """
        window = SearchWindow(started_at=self.now_fn())
        deadline = window.started_at + timedelta(seconds=request.max_wait)
        classifier = ErrorClassifier(self.fatal_after)
        freshness = FreshnessFilter(request.max_message_age)
        attempts: List[Attempt] = []

        logger.info(
            f"📧 Waiting up to {request.max_wait:g}s for a verification code "
            f"(subject: \"{request.subject_pattern}\", "
            f"recipient: {request.recipient_hint or 'any'}, "
            f"max age: {request.max_message_age:g}s)"
        )

        while self.now_fn() < deadline:
            attempt = Attempt(number=len(attempts) + 1, started_at=self.now_fn())
            attempts.append(attempt)

            try:
                result = self._tick(request, window, deadline, freshness)
            except _StopPolling as stop:
                return self._timed_out(window, attempts, stop.cancelled)
            except Exception as e:
                classified = classifier.classify(e)
                attempt.error = classified
                if classified.fatal:
                    logger.error(f"❌ Giving up on attempt {attempt.number}: {classified.diagnostic}")
                    return Fatal(
                        reason=classified.kind,
                        diagnostic=classified.diagnostic,
                        attempts=len(attempts),
                    )
                logger.warning(
                    f"⚠️ Attempt {attempt.number} failed, will retry: {classified.diagnostic}"
                )
            else:
                classifier.record_success()
                if result is not None:
                    logger.info(
                        f"✅ Verification code found on attempt {attempt.number} "
                        f"({result.strategy.value} strategy)"
                    )
                    return Found(code=result.code, strategy=result.strategy, attempts=len(attempts))

            remaining = (deadline - self.now_fn()).total_seconds()
            if remaining <= 0:
                break
            if self._cancelled():
                return self._timed_out(window, attempts, cancelled=True)

            elapsed = (self.now_fn() - window.started_at).total_seconds()
            logger.info(
                f"⏳ No code yet ({int(elapsed)}s elapsed, {int(remaining)}s remaining)"
            )
            self.sleep_fn(min(request.check_interval, remaining))

            if self._cancelled():
                return self._timed_out(window, attempts, cancelled=True)

        return self._timed_out(window, attempts)

    def _tick(
        self,
        request: RetrievalRequest,
        window: SearchWindow,
        deadline: datetime,
        freshness: FreshnessFilter,
    ) -> Optional[ExtractionResult]:
        self._ensure_time_left(deadline)
        with acquire_session(
            self.session_factory,
            self.mailbox,
            checkpoint=lambda: self._ensure_time_left(deadline),
        ) as session:
            self._ensure_time_left(deadline)
            refs = self.searcher.search(session, request.subject_pattern)

            # An unreadable message is skipped; it must not hide the others
            metas = []
            for ref in recent_refs(refs):
                self._ensure_time_left(deadline)
                try:
                    metas.append(session.fetch_meta(ref))
                except FetchError as e:
                    logger.warning(f"⚠️ Skipping message {ref!r}: {e}")

            candidates = freshness.filter(metas, window, self.now_fn())
            if refs and not candidates:
                logger.info(
                    f"⏳ {len(metas)} message(s) checked, none sent in the last "
                    f"{request.max_message_age:g}s"
                )

            for meta in candidates:
                self._ensure_time_left(deadline)
                try:
                    body = session.fetch_body(meta.ref)
                except FetchError as e:
                    logger.warning(f"⚠️ Skipping message {meta.ref!r}: {e}")
                    continue
                if not self.matcher.matches(meta, body, request.recipient_hint):
                    logger.info(
                        f"⚠️ Message {meta.ref!r} is not for {request.recipient_hint}, skipping"
                    )
                    continue
                result = self.extractor.extract(body)
                if result is not None:
                    return result
                logger.debug(f"No code in message {meta.ref!r}")
        return None

    def _timed_out(
        self, window: SearchWindow, attempts: List[Attempt], cancelled: bool = False
    ) -> TimedOut:
        waited = (self.now_fn() - window.started_at).total_seconds()
        if cancelled:
            logger.info(f"🛑 Retrieval cancelled after {waited:.0f}s")
        else:
            logger.warning(
                f"⏰ No verification code after {waited:.0f}s ({len(attempts)} attempt(s))"
            )
        return TimedOut(waited_seconds=waited, attempts=len(attempts), cancelled=cancelled)


def wait_for_verification_code(loop: PollLoop, request: RetrievalRequest) -> str:
    """
    Retrieve a code, raising instead of returning an Outcome

    Args:
        loop: Configured poll loop
        request: Retrieval parameters

    Returns:
        str: The 6-digit code

    Raises:
        VerificationCodeTimeout: If no code arrived in time
        MailboxFatalError: On a fatal mailbox error
    """
    outcome = loop.retrieve_code(request)
    if isinstance(outcome, Found):
        return outcome.code
    if isinstance(outcome, Fatal):
        raise MailboxFatalError(outcome.reason, outcome.diagnostic)
    raise VerificationCodeTimeout(
        f"No verification code found after {request.max_wait:g} seconds. "
        f"No message with subject \"{request.subject_pattern}\" was received in the "
        f"last {request.max_message_age:g} seconds; check that the email was sent."
    )


async def retrieve_code_async(loop: PollLoop, request: RetrievalRequest) -> Outcome:
    """Run a retrieval in a worker thread so event loops are not blocked"""
    return await asyncio.to_thread(loop.retrieve_code, request)
