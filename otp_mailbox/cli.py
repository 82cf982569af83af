import argparse
import logging
import sys
from typing import List, Optional

from otp_mailbox.config import Settings, load_settings
from otp_mailbox.core.credentials import probe_login
from otp_mailbox.core.errors import MailboxFatalError, VerificationCodeTimeout
from otp_mailbox.core.poll_loop import wait_for_verification_code

EXIT_CONFIG = 1
EXIT_TIMEOUT = 2
EXIT_FATAL = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Email verification code retriever")
    parser.add_argument("--config", default="config/mailbox.json", help="Optional JSON config file")
    parser.add_argument("--user", help="Mailbox user (overrides IMAP_USER)")
    parser.add_argument("--password", help="Mailbox password (overrides IMAP_PASS)")
    parser.add_argument("--host", help="IMAP host (overrides IMAP_HOST)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    fetch = sub.add_parser("fetch", help="Wait for a code and print it")
    fetch.add_argument("--subject", help="Subject to search for")
    fetch.add_argument("--recipient", help="Only accept messages for this address")
    fetch.add_argument("--max-wait", type=float, help="Seconds to wait in total")
    fetch.add_argument("--interval", type=float, help="Seconds between checks")
    fetch.add_argument("--max-age", type=float, help="Oldest acceptable message, in seconds")

    sub.add_parser("check", help="Verify mailbox credentials")
    return parser


def _settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    settings.imap_user = args.user or settings.imap_user
    settings.imap_pass = args.password or settings.imap_pass
    settings.imap_host = args.host or settings.imap_host
    return settings


def _fetch(settings: Settings, args: argparse.Namespace) -> int:
    request = settings.build_request(
        subject=args.subject,
        recipient=args.recipient,
        max_wait=args.max_wait,
        check_interval=args.interval,
        max_message_age=args.max_age,
    )
    try:
        code = wait_for_verification_code(settings.build_poll_loop(), request)
    except VerificationCodeTimeout as e:
        print(str(e), file=sys.stderr)
        return EXIT_TIMEOUT
    except MailboxFatalError as e:
        print(e.diagnostic, file=sys.stderr)
        return EXIT_FATAL
    print(code)
    return 0


def _check(settings: Settings) -> int:
    result = probe_login(
        settings.session_factory(),
        settings.imap_user,
        settings.imap_pass,
        mailbox=settings.imap_mailbox,
    )
    print(f"Account: {result.account}")
    print(f"Password: {result.masked_password}")
    for problem in result.problems:
        print(f"  - {problem}")
    if result.ok:
        print("Login OK")
        return 0
    print(f"Login failed: {result.error}", file=sys.stderr)
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if args.command is None:
        parser.print_help()
        return 1

    try:
        settings = _settings(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG

    if args.command == "fetch":
        return _fetch(settings, args)
    return _check(settings)


if __name__ == "__main__":
    raise SystemExit(main())
