"""
Configuration - Mailbox credentials and retrieval defaults

Settings are read from environment variables, optionally overlaid by a
JSON file (config/mailbox.json) with "mailbox" and "retrieval" sections.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from otp_mailbox.core.extractor import DEFAULT_PREAMBLES
from otp_mailbox.core.imap_session import SessionFactory, imap_session_factory
from otp_mailbox.core.poll_loop import PollLoop
from otp_mailbox.models.retrieval import RetrievalRequest

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Código de verificación"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    return float(raw) if raw.strip() else default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass
class Settings:
    imap_host: Optional[str] = None
    imap_port: Optional[int] = None
    imap_user: Optional[str] = None
    imap_pass: Optional[str] = None
    imap_mailbox: Optional[str] = None
    imap_timeout: Optional[float] = None
    subject: Optional[str] = None
    max_wait: Optional[float] = None
    check_interval: Optional[float] = None
    max_message_age: Optional[float] = None
    fatal_after: Optional[int] = None
    preambles: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.imap_host = self.imap_host or os.getenv("IMAP_HOST", "imap.gmail.com")
        self.imap_port = self.imap_port or int(os.getenv("IMAP_PORT", "993"))
        self.imap_user = self.imap_user or os.getenv("IMAP_USER", "")
        self.imap_pass = self.imap_pass or os.getenv("IMAP_PASS", "")
        self.imap_mailbox = self.imap_mailbox or os.getenv("IMAP_MAILBOX", "INBOX")
        self.imap_timeout = self.imap_timeout or _env_float("IMAP_TIMEOUT_SECONDS", 30.0)
        self.subject = self.subject or os.getenv("OTP_SUBJECT", DEFAULT_SUBJECT)
        self.max_wait = self.max_wait or _env_float("OTP_MAX_WAIT_SECONDS", 120.0)
        self.check_interval = self.check_interval or _env_float("OTP_CHECK_INTERVAL_SECONDS", 5.0)
        self.max_message_age = self.max_message_age or _env_float("OTP_MAX_MESSAGE_AGE_SECONDS", 60.0)
        self.fatal_after = self.fatal_after or int(os.getenv("OTP_FATAL_AFTER", "3"))
        if self.fatal_after < 1:
            raise ValueError(f"fatal_after (OTP_FATAL_AFTER) must be at least 1 (got {self.fatal_after})")
        self.preambles = tuple(self.preambles) or _env_list("OTP_PREAMBLES", DEFAULT_PREAMBLES)

    def build_request(
        self,
        subject: Optional[str] = None,
        recipient: Optional[str] = None,
        max_wait: Optional[float] = None,
        check_interval: Optional[float] = None,
        max_message_age: Optional[float] = None,
    ) -> RetrievalRequest:
        """Create a RetrievalRequest, falling back to the configured defaults"""
        return RetrievalRequest(
            subject_pattern=subject or self.subject,
            recipient_hint=recipient or None,
            max_wait=max_wait or self.max_wait,
            check_interval=check_interval or self.check_interval,
            max_message_age=max_message_age or self.max_message_age,
        )

    def session_factory(self) -> SessionFactory:
        return imap_session_factory(
            self.imap_host,
            self.imap_port,
            self.imap_user,
            self.imap_pass,
            timeout=self.imap_timeout,
        )

    def build_poll_loop(self, **kwargs) -> PollLoop:
        """Create a PollLoop for the configured mailbox; kwargs go to PollLoop"""
        return PollLoop(
            self.session_factory(),
            mailbox=self.imap_mailbox,
            fatal_after=self.fatal_after,
            preambles=self.preambles,
            **kwargs,
        )


class ConfigLoader:
    """Configuration loader for mailbox.json"""

    SECTIONS = ("mailbox", "retrieval")

    def __init__(self, config_path: str = "config/mailbox.json"):
        """
        Initialize Config Loader

        Args:
            config_path: Path to mailbox.json file
        """
        self.config_path = Path(config_path)

    def load(self) -> Settings:
        """
        Load settings from JSON, environment variables fill the gaps

        Returns:
            Settings: Loaded settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If JSON is invalid or contains unknown keys
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}\n"
                f"Create it or configure the mailbox through IMAP_* environment variables."
            )

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {self.config_path}: {e}")

        if not isinstance(config, dict):
            raise ValueError(f"Invalid configuration in {self.config_path}: expected an object")

        values = self._flatten(config)
        logger.info(f"✅ Loaded mailbox configuration from {self.config_path}")
        return Settings(**values)

    def _flatten(self, config: Dict) -> Dict:
        known = {f.name for f in fields(Settings)}
        values: Dict = {}
        for section in self.SECTIONS:
            data = config.get(section, {})
            if not isinstance(data, dict):
                raise ValueError(f"Section '{section}' must be an object")
            unknown: List[str] = [key for key in data if key not in known]
            if unknown:
                raise ValueError(
                    f"Unknown key(s) in section '{section}': {', '.join(sorted(unknown))}"
                )
            values.update(data)
        if "preambles" in values:
            values["preambles"] = tuple(values["preambles"])
        return values


def load_settings(config_path: str = "config/mailbox.json") -> Settings:
    """Load settings from the JSON file when present, else from the environment"""
    loader = ConfigLoader(config_path)
    if loader.config_path.exists():
        return loader.load()
    logger.info(f"No {config_path} found, using environment configuration")
    return Settings()
