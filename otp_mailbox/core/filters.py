"""
Message Filters - Freshness window and recipient matching

Both run before any message body is handed to the code extractor.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from otp_mailbox.models.retrieval import MessageMeta, SearchWindow

logger = logging.getLogger(__name__)

# Only the newest refs of a search are evaluated, whatever the mailbox size
MAX_CANDIDATES = 10


def recent_refs(refs: Sequence[bytes], limit: int = MAX_CANDIDATES) -> List[bytes]:
    """Last `limit` refs by arrival order, newest first"""
    if limit <= 0:
        return []
    return list(reversed(refs[-limit:]))


class FreshnessFilter:
    """
    Accepts messages sent within the age window and after the search began

    A message passes when both hold:
    - now - sent_at <= max_age
    - sent_at >= window.started_at - 30s
    """

    def __init__(self, max_age: float):
        self.max_age = max_age

    def accepts(self, meta: MessageMeta, window: SearchWindow, now: datetime) -> bool:
        if meta.sent_at is None:
            logger.debug(f"⏭️ Skipping message {meta.ref!r}: no send date")
            return False

        sent_ts = meta.sent_at.timestamp()
        age = now.timestamp() - sent_ts
        if age > self.max_age:
            logger.debug(
                f"⏭️ Skipping message {meta.ref!r}: sent {int(age)}s ago "
                f"(older than {int(self.max_age)}s)"
            )
            return False

        if sent_ts < window.earliest_accepted:
            logger.debug(
                f"⏭️ Skipping message {meta.ref!r}: sent before the search started "
                f"({meta.sent_at.isoformat()})"
            )
            return False

        return True

    def filter(
        self, metas: Sequence[MessageMeta], window: SearchWindow, now: datetime
    ) -> List[MessageMeta]:
        """
        Keep fresh messages, newest first

        Args:
            metas: Candidate metadata
            window: Search window of the current call
            now: Current time

        Returns:
            List[MessageMeta]: Accepted messages sorted by send time, newest first
        """
        accepted = [meta for meta in metas if self.accepts(meta, window, now)]
        return sorted(accepted, key=lambda meta: meta.sent_at, reverse=True)


class RecipientMatcher:
    """Checks that a message is addressed to the expected recipient"""

    @staticmethod
    def needles(hint: str) -> List[str]:
        """Full address plus the local part before any + tag or @"""
        hint = hint.strip().lower()
        local = hint.split("+", 1)[0].split("@", 1)[0]
        return [hint, local] if local and local != hint else [hint]

    def matches(self, meta: MessageMeta, body: str, hint: Optional[str]) -> bool:
        if not hint or not hint.strip():
            return True
        haystacks = [" ".join(meta.recipients).lower(), (body or "").lower()]
        return any(
            needle in haystack for needle in self.needles(hint) for haystack in haystacks
        )
