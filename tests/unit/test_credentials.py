"""
Unit tests for the credential check
"""

from otp_mailbox.core.credentials import app_password_problems, probe_login
from otp_mailbox.core.errors import AuthFailure, MailboxConnectionError


class TestAppPasswordProblems:
    def test_valid_app_password(self):
        assert app_password_problems("jewlcrqnvvjstmvz") == []

    def test_spaces_reported(self):
        problems = app_password_problems("jewl crqn vvjs tmvz")
        assert any("spaces" in p for p in problems)

    def test_wrong_length(self):
        problems = app_password_problems("abcdef")
        assert problems == ["Password must be exactly 16 characters (got 6)"]

    def test_uppercase_or_digits(self):
        problems = app_password_problems("ABCDEFGH12345678")
        assert problems == ["Password must contain only lowercase letters"]

    def test_empty(self):
        assert app_password_problems("") == ["Password is empty"]


class TestProbeLogin:
    def test_successful_login(self, mailbox):
        result = probe_login(mailbox.factory, "qa@example.com", "jewlcrqnvvjstmvz")

        assert result.ok is True
        assert result.error is None
        assert result.masked_password == "jewl****"
        assert mailbox.calls == ["connect", "open", "close"]

    def test_rejected_login(self, mailbox):
        mailbox.fail("connect", AuthFailure("Invalid credentials", account="qa@example.com"))

        result = probe_login(mailbox.factory, "qa@example.com", "bad pass")

        assert result.ok is False
        assert "Invalid credentials for qa@example.com" in result.error
        assert result.problems
        assert mailbox.sessions[0].closed == 1

    def test_connection_failure(self, mailbox):
        mailbox.fail("connect", MailboxConnectionError("refused"))

        result = probe_login(mailbox.factory, "qa@example.com", "jewlcrqnvvjstmvz")

        assert result.ok is False
        assert result.error == "MailboxConnectionError: refused"
