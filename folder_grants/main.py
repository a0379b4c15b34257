from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from .config import AppConfig, ShardConfig, load_config
from .errors import FolderGrantsError
from .google_api import GoogleWorkspaceClient
from .pipeline import ParticipantPipeline, run_polling

LOGGER = logging.getLogger("folder_grants")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _load_env_files(config_path: Path | None) -> None:
    """Load environment variables from .env files."""

    load_dotenv(override=False)

    if config_path is not None:
        config_env = config_path.parent / ".env"
        if config_env.exists():
            load_dotenv(dotenv_path=config_env, override=False)


def _configure_logging(verbose: bool, log_dir: str | None) -> Path | None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    if not log_dir:
        return None

    directory = Path(log_dir).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / f"share-{datetime.now().strftime('%Y%m%d-%H%M%S')}.log"
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return log_path


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Grant participants read access to their Google Drive folders"
    )
    parser.add_argument("--config", default=None, help="Path to the YAML configuration file")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulate grants; the sheet is still updated with DRY_RUN entries",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Override the maximum number of rows processed per pass",
    )
    parser.add_argument("--shard-index", type=int, default=None, help="Shard handled by this worker")
    parser.add_argument("--shard-total", type=int, default=None, help="Number of workers")
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep polling the sheet until interrupted",
    )
    parser.add_argument(
        "--poll-interval",
        type=int,
        default=None,
        help="Seconds between passes in loop mode",
    )
    parser.add_argument(
        "--log-dir",
        default=None,
        help="Directory for a per-session log file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def _apply_cli_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    updates: dict = {}
    if args.dry_run:
        updates["dry_run"] = True
    if args.limit is not None:
        updates["max_per_run"] = args.limit
    if args.poll_interval is not None:
        updates["poll_interval"] = args.poll_interval
    if args.shard_total is not None or args.shard_index is not None:
        current = config.shard or ShardConfig()
        total = args.shard_total if args.shard_total is not None else current.total
        index = args.shard_index if args.shard_index is not None else current.index
        updates["shard"] = None if total == 0 else ShardConfig(index=index, total=total)
    if not updates:
        return config
    return AppConfig.model_validate({**config.model_dump(), **updates})


def _install_stop_handlers(stop: threading.Event) -> None:
    def _handle(signum, _frame) -> None:
        LOGGER.info("Received signal %s; stopping after the current pass", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    log_path = _configure_logging(args.verbose, args.log_dir)

    config_path = Path(args.config).expanduser().resolve() if args.config else None
    _load_env_files(config_path)
    try:
        config = _apply_cli_overrides(load_config(config_path), args)
    except (FolderGrantsError, ValueError) as exc:
        LOGGER.error("%s", exc)
        return 2

    client = GoogleWorkspaceClient(str(config.sheets.credentials_file))
    LOGGER.info(
        "Sheet %s / %s, parent folder %s, %s",
        config.sheets.spreadsheet_id,
        config.sheets.sheet_name,
        config.drive.parent_folder_id or "(all folders)",
        "dry run" if config.dry_run else "production",
    )
    if config.shard is not None:
        LOGGER.info("Shard %s/%s", config.shard.index + 1, config.shard.total)

    try:
        LOGGER.info("Service account: %s", client.service_account_email)
        pipeline = ParticipantPipeline(config, client)
        if args.loop:
            stop = threading.Event()
            _install_stop_handlers(stop)
            run_polling(config, client, stop, pipeline=pipeline)
            return 0

        stats = pipeline.run_one_pass()
    except Exception:
        LOGGER.exception("Unexpected error")
        return 1
    finally:
        if log_path is not None:
            LOGGER.info("Log file: %s", log_path)

    return 1 if stats.aborted else 0


if __name__ == "__main__":
    sys.exit(main())
