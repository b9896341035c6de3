#!/usr/bin/env python
"""Command line entry point for gitnote-sync."""
import argparse
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel

from gitnote_sync import __version__
from gitnote_sync.config import config
from gitnote_sync.exceptions import GitNoteError, ValidationError
from gitnote_sync.models.db_models import init_db
from gitnote_sync.models.schema import ConflictDecision
from gitnote_sync.observability import configure_logging, metrics
from gitnote_sync.services.sync_service import SyncService
from gitnote_sync.storage.local_store import LocalStore
from gitnote_sync.storage.settings_store import SettingsStore
from gitnote_sync.storage.sync_repository import SyncRepository

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="gitnote-sync",
        description="Sync a local note store with a private GitHub repository",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--base-dir",
        help="Directory holding the database, settings and logs",
        type=str,
        default=os.environ.get("GITNOTE_BASE_DIR"),
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("GITNOTE_DATABASE_PATH"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("GITNOTE_LOG_LEVEL", "INFO"),
    )

    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Store a personal access token")
    login.add_argument("token")
    sub.add_parser("logout", help="Forget the stored account")
    sub.add_parser("sync", help="Push the local store (pulls first)")
    sub.add_parser("pull", help="Merge remote changes into the local store")
    sub.add_parser("status", help="Show sync status")
    sub.add_parser("conflicts", help="List pending config conflicts")

    resolve = sub.add_parser("resolve", help="Resolve config conflicts")
    resolve.add_argument(
        "decisions",
        nargs="+",
        metavar="KIND:ID=local|remote",
        help="e.g. folder:1234=remote or setting:darkMode=local",
    )

    history = sub.add_parser("history", help="Show recent sync passes")
    history.add_argument("--limit", type=int, default=20)

    watch = sub.add_parser("watch", help="Run auto-sync until interrupted")
    watch.add_argument("--interval", type=int, help="Minutes between syncs")
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.base_dir:
        config.base_dir = Path(args.base_dir)
    if args.database_path:
        config.database_path = Path(args.database_path)


def parse_decision(text: str) -> ConflictDecision:
    """Parse ``KIND:ID=local|remote``."""
    target, sep, use = text.rpartition("=")
    kind, colon, item_id = target.partition(":")
    if not sep or not colon or not item_id:
        raise ValidationError(f"Expected KIND:ID=local|remote, got '{text}'", field="decision")
    if kind not in ("notebook", "folder", "tag", "setting") or use not in ("local", "remote"):
        raise ValidationError(f"Invalid decision '{text}'", field="decision", value=text)
    return ConflictDecision(kind=kind, id=item_id, use=use)


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if is_dataclass(value):
        return {k: _jsonable(v) for k, v in asdict(value).items()}
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def emit(value: Any) -> None:
    print(json.dumps(_jsonable(value), indent=2, ensure_ascii=False, default=str))


def build_service() -> SyncService:
    engine = init_db(config.get_db_url(), config.default_notebook_name)
    repository = SyncRepository(LocalStore(engine))
    settings = SettingsStore(config.get_settings_file())
    return SyncService(config, repository, settings)


def _watch(service: SyncService, interval: Optional[int] = None) -> int:
    if not service.is_logged_in():
        emit({"success": False, "message": "Please log in to GitHub first"})
        return 1
    if interval:
        service.set_sync_interval(interval)
    service.start_auto_sync()

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    emit(service.sync_all())
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    service.stop_auto_sync(persist=False)
    return 0


def run_command(service: SyncService, args) -> int:
    command = args.command
    if command == "login":
        result = service.login(args.token)
        emit(result)
        return 0 if result.success else 1
    if command == "logout":
        service.logout()
        emit({"success": True})
        return 0
    if command == "sync":
        result = service.sync_all()
        emit(result)
        return 0 if result.success else 1
    if command == "pull":
        result = service.pull_from_github()
        emit(result)
        return 0 if result.success else 1
    if command == "status":
        emit(
            {
                "logged_in": service.is_logged_in(),
                "user": service.get_user(),
                "sync": service.get_sync_status(),
                "pending_conflicts": service.get_config_conflicts().count(),
            }
        )
        return 0
    if command == "conflicts":
        emit(service.get_config_conflicts())
        return 0
    if command == "resolve":
        decisions: List[ConflictDecision] = [parse_decision(d) for d in args.decisions]
        result = service.resolve_config_conflicts(decisions)
        emit(result)
        return 0 if result.success else 1
    if command == "history":
        emit(service.get_sync_history(args.limit))
        return 0
    if command == "watch":
        return _watch(service, args.interval)
    raise ValidationError(f"Unknown command '{command}'", field="command", value=command)


def main(argv=None):
    """Run one gitnote-sync command."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        configure_logging(config.get_log_dir(), level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning("Failed to configure file logging: %s", e)

    try:
        service = build_service()
    except Exception as e:
        logger.error("Failed to initialize local store: %s", e)
        sys.exit(1)

    try:
        code = run_command(service, args)
    except GitNoteError as e:
        emit(e.to_dict())
        code = 1
    finally:
        service.shutdown()
        logger.debug("Metrics: %s", metrics.get_summary())
    sys.exit(code)


if __name__ == "__main__":
    main()
