"""Terminal client: log in through any channel and keep the session on disk."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from authbridge.client.api_client import AuthClientError, EmployeeAuthClient
from authbridge.core.logging import setup_logging
from authbridge.qr.handshake import HandshakeState
from authbridge.qr.store import QRStoreUnavailable
from authbridge.session.storage import JsonFileSessionStorage
from authbridge.session.unifier import AuthSession

DEFAULT_SESSION_FILE = Path.home() / ".authbridge" / "session.json"
DEFAULT_LOCAL_QR_FILE = Path.home() / ".authbridge" / "qr_sessions.json"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Employee authentication client.")
    parser.add_argument(
        "--base-url",
        default=os.getenv("AUTHBRIDGE_URL", "http://localhost:8000"),
        help="Authentication service URL.",
    )
    parser.add_argument(
        "--session-file",
        type=Path,
        default=DEFAULT_SESSION_FILE,
        help="File holding the persisted employee session.",
    )
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="command", required=True)

    for channel in ("sms", "whatsapp"):
        send = sub.add_parser(f"send-{channel}", help=f"Send a {channel} login code.")
        send.add_argument("phone")
        verify = sub.add_parser(f"verify-{channel}", help=f"Verify a {channel} login code.")
        verify.add_argument("phone")
        verify.add_argument("code")

    magic = sub.add_parser("send-magic-link", help="Email a login link.")
    magic.add_argument("email")
    magic.add_argument("--redirect-to", default=None)

    complete = sub.add_parser("complete-magic-link", help="Finish a magic-link login.")
    complete.add_argument("email")
    complete.add_argument("state")
    complete.add_argument("--token", default="")
    complete.add_argument("--access-token", default="")

    login = sub.add_parser("login", help="Username/password login.")
    login.add_argument("username")
    login.add_argument("password")

    qr = sub.add_parser("qr-login", help="Show a QR login URL and wait for approval.")
    qr.add_argument(
        "--local-store",
        type=Path,
        default=DEFAULT_LOCAL_QR_FILE,
        help="Client-local session file used when the service store is unavailable.",
    )
    qr.add_argument("--no-local-fallback", action="store_true")

    approve = sub.add_parser("qr-approve", help="Approve another device's QR session.")
    approve.add_argument("session_id")
    approve.add_argument("username")
    approve.add_argument("password")
    approve.add_argument(
        "--local-store",
        type=Path,
        default=None,
        help="Approve a session from the client-local store instead of the service.",
    )

    sub.add_parser("whoami", help="Print the persisted session.")
    logout = sub.add_parser("logout", help="Remove the persisted session.")
    logout.add_argument("--access-token", default=None)
    return parser


def _print(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _print_session(session: AuthSession) -> None:
    _print(session.model_dump(mode="json"))


async def _qr_login(client: EmployeeAuthClient, args: argparse.Namespace) -> int:
    handshake = client.qr_handshake(
        local_store_path=None if args.no_local_fallback else args.local_store,
    )
    try:
        ticket = await handshake.start()
    except QRStoreUnavailable as exc:
        print(f"QR login unavailable: {exc}", file=sys.stderr)
        return 1
    if handshake.degraded:
        print("Service store unavailable: this QR code only works on this machine.", file=sys.stderr)
    print(f"Scan: {ticket.login_url}")
    print(f"QR image: {ticket.image_url}")
    try:
        session = await handshake.wait()
    finally:
        await handshake.stop()
    if handshake.state is HandshakeState.EXPIRED:
        print("QR code expired. Run qr-login again for a new code.", file=sys.stderr)
        return 1
    if session is None:
        print(handshake.error or "QR login did not complete.", file=sys.stderr)
        return 1
    _print_session(session)
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    client = EmployeeAuthClient(args.base_url, JsonFileSessionStorage(args.session_file))

    try:
        if args.command == "send-sms":
            _print(client.send_sms(args.phone))
        elif args.command == "verify-sms":
            _print_session(client.verify_sms(args.phone, args.code))
        elif args.command == "send-whatsapp":
            _print(client.send_whatsapp(args.phone))
        elif args.command == "verify-whatsapp":
            _print_session(client.verify_whatsapp(args.phone, args.code))
        elif args.command == "send-magic-link":
            _print(client.send_magic_link(args.email, args.redirect_to))
        elif args.command == "complete-magic-link":
            _print_session(
                client.complete_magic_link(
                    args.email, args.state, token=args.token, access_token=args.access_token
                )
            )
        elif args.command == "login":
            _print_session(client.login(args.username, args.password))
        elif args.command == "qr-login":
            return asyncio.run(_qr_login(client, args))
        elif args.command == "qr-approve":
            if args.local_store is not None:
                approved = client.approve_qr_locally(
                    args.session_id, args.username, args.password, args.local_store
                )
                if not approved:
                    print("QR session is not waiting or has expired.", file=sys.stderr)
                    return 1
                _print({"session_id": args.session_id, "status": "authenticated"})
            else:
                _print(client.approve_qr(args.session_id, args.username, args.password))
        elif args.command == "whoami":
            session = client.current_session()
            if session is None:
                print("Not logged in.", file=sys.stderr)
                return 1
            _print_session(session)
        elif args.command == "logout":
            client.sign_out(args.access_token)
    except AuthClientError as exc:
        print(f"{exc.error_code}: {exc.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
