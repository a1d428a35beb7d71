"""keyceremony operator CLI.

Provides ``keyceremony`` console script and ``python -m keyceremony`` entry point.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from keyceremony.ceremony.errors import InvalidInput
from keyceremony.ceremony.types import CredentialRecord, UserIdentity, utcnow
from keyceremony.ceremony.webauthn import bytes_to_base64url
from keyceremony.config import Settings, relying_party_problems

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------
EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_BAD_ARGS = 2
EXIT_BAD_CONFIG = 3
EXIT_DB_ERROR = 4


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat()


def _output(data: Any, *, fmt: str = "json", pretty: bool = False) -> None:
    if fmt == "jsonl":
        if isinstance(data, list):
            for item in data:
                print(json.dumps(item, default=str))
        else:
            print(json.dumps(data, default=str))
    else:
        indent = 2 if pretty else None
        print(json.dumps(data, default=str, indent=indent))


def _err(msg: str) -> None:
    print(msg, file=sys.stderr)


def _require_yes(args: argparse.Namespace) -> bool:
    if not getattr(args, "yes", False):
        _err("--yes is required for mutating commands")
        return False
    return True


def _credential_dict(record: CredentialRecord) -> dict:
    """Serialize a credential record. The public key is never printed."""
    return {
        "credential_id": bytes_to_base64url(record.credential_id),
        "sign_count": record.sign_count,
        "transports": sorted(t.value for t in record.transports),
        "aaguid": record.aaguid,
        "backed_up": record.backed_up,
        "created_at": _iso(record.created_at),
        "last_used_at": _iso(record.last_used_at),
        "flagged_at": _iso(record.flagged_at),
    }


def _settings(args: argparse.Namespace) -> Settings:
    """Load settings from the environment, honouring a --db override."""
    if getattr(args, "db", None):
        return Settings(database_url=str(args.db))
    return Settings()


def _sql_store(args: argparse.Namespace):  # type: ignore[no-untyped-def]
    from keyceremony.ceremony.sql_store import SQLCredentialStore

    return SQLCredentialStore.from_settings(_settings(args))


def _make_sync_engine(args: argparse.Namespace):  # type: ignore[no-untyped-def]
    from keyceremony.db.engine import create_engine_from_url

    return create_engine_from_url(_settings(args).database_url)


# ---------------------------------------------------------------------------
# config commands
# ---------------------------------------------------------------------------


def _cmd_config_check(args: argparse.Namespace) -> int:
    settings = _settings(args)
    try:
        rp_id = settings.effective_rp_id()
        origin = settings.effective_origin()
    except RuntimeError as exc:
        _output({"ok": False, "problems": [str(exc)]}, fmt=args.format, pretty=args.pretty)
        return EXIT_BAD_CONFIG

    problems = relying_party_problems(rp_id, origin)
    _output(
        {
            "ok": not problems,
            "env": settings.env,
            "rp_name": settings.rp_name,
            "rp_id": rp_id,
            "origin": origin,
            "store_backend": settings.store_backend,
            "challenge_ttl_seconds": settings.challenge_ttl_seconds,
            "problems": problems,
        },
        fmt=args.format,
        pretty=args.pretty,
    )
    return EXIT_BAD_CONFIG if problems else EXIT_OK


# ---------------------------------------------------------------------------
# DB commands
# ---------------------------------------------------------------------------


def _cmd_db_ping(args: argparse.Namespace) -> int:
    from sqlalchemy import text

    engine = _make_sync_engine(args)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        _output({"ok": True}, fmt=args.format, pretty=args.pretty)
        return EXIT_OK
    except SQLAlchemyError as exc:
        _err(f"database unreachable: {exc}")
        return EXIT_DB_ERROR
    finally:
        engine.dispose()


def _cmd_db_init(args: argparse.Namespace) -> int:
    if not _require_yes(args):
        return EXIT_BAD_ARGS

    import keyceremony.ceremony.models  # noqa: F401
    from keyceremony.db.base import Base

    engine = _make_sync_engine(args)
    try:
        Base.metadata.create_all(engine)
        _output(
            {"ok": True, "tables": sorted(Base.metadata.tables)},
            fmt=args.format,
            pretty=args.pretty,
        )
        return EXIT_OK
    finally:
        engine.dispose()


# ---------------------------------------------------------------------------
# Credential commands
# ---------------------------------------------------------------------------


def _cmd_credentials_list(args: argparse.Namespace) -> int:
    try:
        identity = UserIdentity.from_username(args.username)
    except InvalidInput as exc:
        _err(str(exc))
        return EXIT_BAD_ARGS

    async def _run() -> list[CredentialRecord]:
        store = _sql_store(args)
        try:
            return await store.list_credentials(identity)
        finally:
            await store.close()

    records = asyncio.run(_run())
    if not records:
        _err("no credentials registered for user")
        return EXIT_NOT_FOUND
    _output([_credential_dict(r) for r in records], fmt=args.format, pretty=args.pretty)
    return EXIT_OK


def _cmd_credentials_flagged(args: argparse.Namespace) -> int:
    from sqlalchemy import select
    from sqlalchemy.orm import Session

    from keyceremony.ceremony.models import CredentialRow, UserRow

    engine = _make_sync_engine(args)
    try:
        with Session(engine) as session:
            stmt = (
                select(CredentialRow, UserRow.username)
                .join(UserRow, UserRow.handle == CredentialRow.user_handle)
                .where(CredentialRow.flagged_at.is_not(None))
                .order_by(CredentialRow.flagged_at)
            )
            rows = [
                {
                    "username": username,
                    "credential_id": bytes_to_base64url(cred.credential_id),
                    "sign_count": cred.sign_count,
                    "flagged_at": _iso(cred.flagged_at),
                }
                for cred, username in session.execute(stmt).all()
            ]
        _output(rows, fmt=args.format, pretty=args.pretty)
        return EXIT_OK
    finally:
        engine.dispose()


# ---------------------------------------------------------------------------
# Challenge commands
# ---------------------------------------------------------------------------


def _cmd_challenges_purge(args: argparse.Namespace) -> int:
    if not _require_yes(args):
        return EXIT_BAD_ARGS
    older_than = args.older_than
    if older_than is None:
        older_than = _settings(args).challenge_ttl_seconds
    if older_than < 0:
        _err("--older-than must not be negative")
        return EXIT_BAD_ARGS
    cutoff = utcnow() - timedelta(seconds=older_than)

    async def _run() -> int:
        store = _sql_store(args)
        try:
            return await store.purge_expired_challenges(cutoff)
        finally:
            await store.close()

    removed = asyncio.run(_run())
    _output(
        {"ok": True, "removed": removed, "cutoff": _iso(cutoff)},
        fmt=args.format,
        pretty=args.pretty,
    )
    return EXIT_OK


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    # Common flags shared by all leaf subcommands
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db", default=None, help="Database URL override")
    common.add_argument(
        "--format", choices=["json", "jsonl"], default="json", help="Output format"
    )
    common.add_argument("--pretty", action="store_true", default=False, help="Pretty-print output")

    parser = argparse.ArgumentParser(
        prog="keyceremony",
        description="keyceremony operator CLI",
    )
    subparsers = parser.add_subparsers(dest="command")

    # ---- config ----
    config_parser = subparsers.add_parser("config", help="Configuration checks")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser(
        "check", parents=[common], help="Validate relying-party ID against the origin"
    )

    # ---- db ----
    db_parser = subparsers.add_parser("db", help="Database operations")
    db_sub = db_parser.add_subparsers(dest="db_command")

    db_sub.add_parser("ping", parents=[common], help="Check database connectivity")

    db_init = db_sub.add_parser("init", parents=[common], help="Create ceremony tables")
    db_init.add_argument("--yes", action="store_true", help="Confirm mutation")

    # ---- credentials ----
    creds_parser = subparsers.add_parser("credentials", help="Credential inspection")
    creds_sub = creds_parser.add_subparsers(dest="credentials_command")

    creds_list = creds_sub.add_parser("list", parents=[common], help="List a user's credentials")
    creds_list.add_argument("--username", required=True, help="Username")

    creds_sub.add_parser(
        "flagged", parents=[common], help="List credentials flagged as possibly cloned"
    )

    # ---- challenges ----
    chal_parser = subparsers.add_parser("challenges", help="Pending challenge maintenance")
    chal_sub = chal_parser.add_subparsers(dest="challenges_command")

    chal_purge = chal_sub.add_parser("purge", parents=[common], help="Delete stale challenges")
    chal_purge.add_argument(
        "--older-than",
        type=int,
        default=None,
        help="Age in seconds (default: KEYCEREMONY_CHALLENGE_TTL_SECONDS)",
    )
    chal_purge.add_argument("--yes", action="store_true", help="Confirm mutation")

    return parser


# ---------------------------------------------------------------------------
# Command dispatch
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns an integer exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_BAD_ARGS

    try:
        return _dispatch(parser, args)
    except ValidationError as exc:
        _err(f"invalid configuration: {exc}")
        return EXIT_BAD_CONFIG
    except SQLAlchemyError as exc:
        _err(f"database error: {exc}")
        return EXIT_DB_ERROR


def _dispatch(parser: argparse.ArgumentParser, args: argparse.Namespace) -> int:
    # -- config --
    if args.command == "config":
        if getattr(args, "config_command", None) == "check":
            return _cmd_config_check(args)
        parser.parse_args(["config", "--help"])
        return EXIT_BAD_ARGS

    # -- db --
    if args.command == "db":
        db_cmd = getattr(args, "db_command", None)
        if db_cmd == "ping":
            return _cmd_db_ping(args)
        if db_cmd == "init":
            return _cmd_db_init(args)
        parser.parse_args(["db", "--help"])
        return EXIT_BAD_ARGS

    # -- credentials --
    if args.command == "credentials":
        creds_cmd = getattr(args, "credentials_command", None)
        if creds_cmd == "list":
            return _cmd_credentials_list(args)
        if creds_cmd == "flagged":
            return _cmd_credentials_flagged(args)
        parser.parse_args(["credentials", "--help"])
        return EXIT_BAD_ARGS

    # -- challenges --
    if args.command == "challenges":
        if getattr(args, "challenges_command", None) == "purge":
            return _cmd_challenges_purge(args)
        parser.parse_args(["challenges", "--help"])
        return EXIT_BAD_ARGS

    parser.print_help()
    return EXIT_BAD_ARGS
