"""
Dinero Sync Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite schema, restores the persisted session and runs the
requested command.  Every subsystem is wired here; no module-level
globals beyond the cached configuration.

Usage::

    python main.py                      # one sync cycle (default)
    python main.py status               # per-wallet sync status
    python main.py worker               # background sync until Ctrl+C
    python main.py sign-in <id-token>   # exchange a Google ID token
    python main.py sign-out
"""

from __future__ import annotations

import argparse
import atexit
import sys
import threading
import traceback
from typing import Optional

from dinero import __version__ as _APP_VERSION
from dinero.auth import SessionManager
from dinero.config import get_config
from dinero.contexts.auth_context import AuthContext
from dinero.contexts.wallet_context import WalletContext
from dinero.database import DatabaseManager
from dinero.logger import StructuredLogger, get_logger
from dinero.schema import initialize_schema
from dinero.services.container import ServiceContainer, create_services


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dinero",
        description="Local-first wallet and transaction sync.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_APP_VERSION}")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("sync", help="Run one sync cycle and print the status (default).")
    sub.add_parser("status", help="Print the sync status of every wallet.")
    sub.add_parser("worker", help="Run the background sync worker until interrupted.")
    sign_in = sub.add_parser("sign-in", help="Sign in with an OIDC ID token.")
    sign_in.add_argument("id_token")
    sign_in.add_argument("--provider", default="google")
    sub.add_parser("sign-out", help="End the current session on this device.")
    return parser


def _print_status(services: ServiceContainer, wallets: WalletContext) -> None:
    current = wallets.state.current_wallet_id
    if not wallets.state.wallets:
        print("No wallets on this device.")
        return
    for wallet in wallets.state.wallets:
        status = services["sync_service"].get_sync_status(wallet.id)
        marker = "*" if wallet.id == current else " "
        print(
            f"{marker} {wallet.name} ({wallet.id}) "
            f"last_sync={status.last_sync_at or 'never'} "
            f"pending_uploads={status.pending_uploads} "
            f"pending_deletes={status.pending_deletes}"
            f"{' wallet_dirty' if wallet.needs_sync else ''}"
        )


def _run_worker(services: ServiceContainer, logger: StructuredLogger) -> None:
    worker = services["sync_worker"]
    worker.start()
    worker.trigger()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping sync worker.")
    finally:
        worker.stop()


def main(argv: Optional[list[str]] = None) -> int:
    """Application entry point; returns the process exit code."""
    args = _build_parser().parse_args(argv)
    command = args.command or "sync"

    logger: StructuredLogger = get_logger("main")
    logger.info(
        "Starting dinero sync...",
        extra={"command": command, "version": _APP_VERSION},
    )

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager (local-first: Supabase optional, SQLite always)
    # ------------------------------------------------------------------
    db = DatabaseManager.from_config(config, StructuredLogger(name="database"))
    # close() is idempotent; this covers exits that skip the finally below.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite schema (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 4. Session, services, contexts
    # ------------------------------------------------------------------
    session = SessionManager()
    services = create_services(db=db, config=config, session=session)

    auth = AuthContext(
        auth_service=services["auth_service"],
        auth_storage=services["auth_storage"],
        wallet_storage=services["wallet_storage"],
        session=session,
        config=config,
        logger=get_logger("auth"),
    )
    wallets = WalletContext(
        wallet_storage=services["wallet_storage"],
        wallet_repo=services["wallet_repository"],
        session=session,
        logger=get_logger("wallets"),
    )

    try:
        if command == "sign-in":
            if not auth.sign_in(args.id_token, args.provider):
                print(f"Sign-in failed: {auth.state.error}", file=sys.stderr)
                return 1
            print(f"Signed in as {auth.user.email if auth.user else 'unknown'}.")
            wallets.load_wallets()
            _print_status(services, wallets)
            return 0

        if command == "sign-out":
            auth.sign_out()
            print("Signed out.")
            return 0

        if not auth.restore_session():
            print("Not signed in; showing local data only.")

        if command == "worker":
            if not auth.is_authenticated:
                print("Sign in first: python main.py sign-in <id-token>", file=sys.stderr)
                return 1
            _run_worker(services, logger)
            return 0

        if command == "sync" and auth.is_authenticated:
            report = services["sync_service"].sync_all()
            print(
                f"Sync finished: pushed={report.pushed} "
                f"acknowledged={report.acknowledged} pulled={report.pulled} "
                f"errors={len(report.errors)}"
            )
            for error in report.errors:
                print(f"  {error.code}: {error.message}", file=sys.stderr)

        wallets.load_wallets()
        _print_status(services, wallets)
        return 0
    finally:
        db.close()
        logger.info("dinero sync shut down.")


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        sys.stderr.write(
            f"FATAL: {type(exc).__name__}: {exc}\n"
            + "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        )
        sys.exit(1)
