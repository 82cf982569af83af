"""
Message Searcher - Subject search on an open session
"""

import logging
from typing import List

from otp_mailbox.core.imap_session import ProtocolSession

logger = logging.getLogger(__name__)


class MessageSearcher:
    """Issues read-only subject searches; SearchError propagates to the caller"""

    def search(self, session: ProtocolSession, subject: str) -> List[bytes]:
        refs = session.search(subject)
        if refs:
            logger.info(f"📧 Found {len(refs)} message(s) with subject \"{subject}\"")
        else:
            logger.info(f"⏳ No messages with subject \"{subject}\" yet")
        return list(refs)
