"""
Retrieval Models - Request, message and outcome types for code retrieval

A retrieval call is described by an immutable RetrievalRequest and ends
with exactly one Outcome:
- Found: a 6-digit code was extracted from a fresh message
- TimedOut: no code arrived before the deadline
- Fatal: a classified, non-retryable mailbox error
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

CODE_RE = re.compile(r"[0-9]{6}")

# Messages sent shortly before the search started are still accepted
SEARCH_BUFFER_SECONDS = 30.0


class ExtractionStrategy(str, Enum):
    """Text-matching rule that recovered a code"""

    EXACT_LINE = "exact_line"
    PREAMBLE = "preamble"
    LOOSE = "loose"


class ErrorKind(str, Enum):
    """Classification of a failed tick"""

    TRANSIENT = "transient"
    AUTH_FAILURE = "auth_failure"
    OTHER = "other"


@dataclass(frozen=True)
class RetrievalRequest:
    """
    Parameters of one retrieval call (durations in seconds)

    Args:
        subject_pattern: Subject text searched for on the server
        recipient_hint: Optional address the message must be for
        max_wait: Overall deadline for the call
        check_interval: Pause between polling ticks
        max_message_age: Oldest acceptable message age
    """

    subject_pattern: str
    recipient_hint: Optional[str] = None
    max_wait: float = 120.0
    check_interval: float = 5.0
    max_message_age: float = 60.0

    def __post_init__(self) -> None:
        if not self.subject_pattern:
            raise ValueError("subject_pattern must not be empty")
        if self.max_wait <= 0:
            raise ValueError("max_wait must be positive")
        if self.check_interval <= 0:
            raise ValueError("check_interval must be positive")
        if self.max_message_age <= 0:
            raise ValueError("max_message_age must be positive")


@dataclass(frozen=True)
class SearchWindow:
    """Lower bound for message acceptance, captured once per call"""

    started_at: datetime

    @property
    def earliest_accepted(self) -> float:
        return self.started_at.timestamp() - SEARCH_BUFFER_SECONDS


@dataclass(frozen=True)
class MessageMeta:
    """Envelope data of one candidate message"""

    ref: bytes
    sent_at: Optional[datetime]
    recipients: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractionResult:
    code: str
    strategy: ExtractionStrategy

    def __post_init__(self) -> None:
        if not CODE_RE.fullmatch(self.code):
            raise ValueError(f"Invalid verification code: {self.code!r}")


@dataclass(frozen=True)
class ClassifiedError:
    """A tick failure after classification"""

    kind: ErrorKind
    fatal: bool
    error: BaseException
    diagnostic: str = ""


@dataclass
class Attempt:
    """One polling tick, kept for diagnostics only"""

    number: int
    started_at: datetime
    error: Optional[ClassifiedError] = None


@dataclass(frozen=True)
class Found:
    code: str
    strategy: ExtractionStrategy
    attempts: int = 1


@dataclass(frozen=True)
class TimedOut:
    waited_seconds: float
    attempts: int = 0
    cancelled: bool = False


@dataclass(frozen=True)
class Fatal:
    reason: ErrorKind
    diagnostic: str
    attempts: int = 0


Outcome = Union[Found, TimedOut, Fatal]
