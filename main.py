#!/usr/bin/env python3
"""
BidBuy Auth -- Buyer and Vendor credential lifecycle.

Operator CLI over the same AuthService the HTTP API uses. Each subcommand runs
one operation against the configured database and prints the response
envelope as JSON. Exit status is 0 when the envelope reports success, 1
otherwise.

Usage:
  python main.py signup buyer --name Ada --email ada@example.com --password 'Abc12345!'
  python main.py verify buyer --email ada@example.com --otp 123456
  python main.py resend vendor --email shop@example.com
  python main.py login --email ada@example.com --password 'Abc12345!'
  python main.py me --token eyJ...
  python main.py forgot --email ada@example.com
  python main.py verify-reset --email ada@example.com --otp 654321
  python main.py reset --token <reset token> --password 'NewPass1!'
  python main.py serve --host 127.0.0.1 --port 8000

Environment variables (see core/config.py):
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL. Defaults to bidbuy_auth.db beside this file.
  DEBUG          true enables the logging email sender and debug error detail.
"""

import argparse
import getpass
import json
import logging
import sys
from typing import Optional

from auth.models import PrincipalType
from auth.service import AuthService, Envelope
from core.config import get_settings


def _password(value: Optional[str], prompt: str = "Password: ") -> str:
    """Use --password if given, otherwise prompt without echo."""
    return value if value is not None else getpass.getpass(prompt)


def _print(envelope: Envelope) -> int:
    print(json.dumps(envelope.to_dict(), indent=2))
    return 0 if envelope.success else 1


def run(args: argparse.Namespace, service: AuthService) -> int:
    """Dispatch one parsed subcommand to the service. Returns the exit status."""
    if args.command == "signup":
        return _print(
            service.signup(
                args.principal_type,
                name=args.name,
                email=args.email,
                password=_password(args.password),
                phone_number=args.phone,
                state=args.state,
                country=args.country,
                address=args.address,
            )
        )
    if args.command == "verify":
        return _print(service.verify_email(args.principal_type, email=args.email, otp=args.otp))
    if args.command == "resend":
        return _print(service.resend_verification(args.principal_type, email=args.email))
    if args.command == "login":
        return _print(service.login(email=args.email, password=_password(args.password)))
    if args.command == "me":
        return _print(service.me(args.token))
    if args.command == "forgot":
        return _print(service.forgot_password(email=args.email))
    if args.command == "verify-reset":
        return _print(service.verify_reset_otp(email=args.email, otp=args.otp))
    if args.command == "reset":
        return _print(
            service.reset_password(
                reset_token=args.token,
                new_password=_password(args.password, "New password: "),
            )
        )
    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bidbuy-auth",
        description="Signup, email verification, login and password reset for BidBuy Buyers and Vendors.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")
    types = [t.value for t in PrincipalType]

    p = sub.add_parser("signup", help="Create an account and mail its verification code")
    p.add_argument("principal_type", choices=types)
    p.add_argument("--name", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--password", help="Prompted for if omitted")
    p.add_argument("--phone", help="Optional phone number")
    p.add_argument("--state")
    p.add_argument("--country")
    p.add_argument("--address")

    p = sub.add_parser("verify", help="Verify an email with its one-time code")
    p.add_argument("principal_type", choices=types)
    p.add_argument("--email", required=True)
    p.add_argument("--otp", required=True)

    p = sub.add_parser("resend", help="Mail a fresh verification code")
    p.add_argument("principal_type", choices=types)
    p.add_argument("--email", required=True)

    p = sub.add_parser("login", help="Log in and print a session token")
    p.add_argument("--email", required=True)
    p.add_argument("--password", help="Prompted for if omitted")

    p = sub.add_parser("me", help="Show the principal a session token belongs to")
    p.add_argument("--token", required=True)

    p = sub.add_parser("forgot", help="Mail a password reset code")
    p.add_argument("--email", required=True)

    p = sub.add_parser("verify-reset", help="Exchange a reset code for a reset token")
    p.add_argument("--email", required=True)
    p.add_argument("--otp", required=True)

    p = sub.add_parser("reset", help="Set a new password with a reset token")
    p.add_argument("--token", required=True)
    p.add_argument("--password", help="Prompted for if omitted")

    p = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--reload", action="store_true", help="Reload on code changes (development)")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
        return 0

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    service = AuthService.from_settings(get_settings())
    try:
        return run(args, service)
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
