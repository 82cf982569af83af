"""
Shared fakes: a controllable clock and an in-memory mailbox
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from otp_mailbox.models.retrieval import MessageMeta

START = datetime(2026, 2, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Wall clock that only moves when slept on or advanced"""

    def __init__(self, start: datetime = START):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


@dataclass
class FakeMessage:
    ref: bytes
    sent_at: Optional[datetime]
    body: str
    recipients: List[str] = field(default_factory=list)
    arrives_at: Optional[datetime] = None


class FakeSession:
    def __init__(self, mailbox: "FakeMailbox"):
        self.mailbox = mailbox
        self.closed = 0
        self.body_fetches: List[bytes] = []

    def _step(self, op: str) -> None:
        self.mailbox.calls.append(op)
        self.mailbox.clock.advance(self.mailbox.latency)
        pending = self.mailbox.failures.get(op)
        if pending:
            exc = pending.pop(0)
            if exc is not None:
                raise exc
        elif op in self.mailbox.always:
            raise self.mailbox.always[op]

    def connect(self) -> None:
        self._step("connect")

    def open_mailbox(self, name: str) -> None:
        self.mailbox.opened.append(name)
        self._step("open")

    def search(self, subject: str) -> List[bytes]:
        self.mailbox.searched.append(subject)
        self._step("search")
        now = self.mailbox.clock()
        return [
            m.ref
            for m in self.mailbox.messages
            if m.arrives_at is None or m.arrives_at <= now
        ]

    def _message(self, ref: bytes) -> FakeMessage:
        return next(m for m in self.mailbox.messages if m.ref == ref)

    def fetch_meta(self, ref: bytes) -> MessageMeta:
        self._step("fetch_meta")
        if ref in self.mailbox.unreadable:
            raise self.mailbox.unreadable[ref]
        message = self._message(ref)
        return MessageMeta(ref=ref, sent_at=message.sent_at, recipients=message.recipients)

    def fetch_body(self, ref: bytes) -> str:
        self._step("fetch_body")
        if ref in self.mailbox.unreadable:
            raise self.mailbox.unreadable[ref]
        self.body_fetches.append(ref)
        return self._message(ref).body

    def close(self) -> None:
        self.closed += 1
        self.mailbox.calls.append("close")


class FakeMailbox:
    """
    In-memory mailbox; `failures` maps an operation name to a list of
    exceptions (or None for success) consumed one per call, `always` maps
    an operation to an exception raised on every call, `unreadable` maps a
    ref to the exception its fetches raise
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.messages: List[FakeMessage] = []
        self.failures = {}
        self.always = {}
        self.unreadable = {}
        self.latency = 0.0
        self.sessions: List[FakeSession] = []
        self.calls: List[str] = []
        self.opened: List[str] = []
        self.searched: List[str] = []

    def add(self, body: str, age: float, recipients=None, arrives_in: Optional[float] = None) -> bytes:
        ref = str(len(self.messages) + 1).encode()
        now = self.clock()
        arrives_at = now + timedelta(seconds=arrives_in) if arrives_in is not None else None
        sent_at = (arrives_at or now) - timedelta(seconds=age)
        self.messages.append(
            FakeMessage(ref=ref, sent_at=sent_at, body=body, recipients=recipients or [], arrives_at=arrives_at)
        )
        return ref

    def fail(self, op: str, *errors) -> None:
        self.failures.setdefault(op, []).extend(errors)

    def fail_always(self, op: str, error: Exception) -> None:
        self.always[op] = error

    def factory(self) -> FakeSession:
        session = FakeSession(self)
        self.sessions.append(session)
        return session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailbox(clock):
    return FakeMailbox(clock)
