"""Command line entry point for running translation sync jobs."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from tms_sync.config import Settings
from tms_sync.database import create_engine, create_schema
from tms_sync.exceptions import OperationResult
from tms_sync.jobs import TranslationJobs
from tms_sync.provider.crowdin import CrowdinClient
from tms_sync.registry import ModelRegistry, import_models
from tms_sync.schemas import DeleteJobPayload, SyncJobPayload, UpsertTranslationPayload
from tms_sync.services.datetime_service import parse_datetime
from tms_sync.services.sync_service import SyncFilters, SyncReport
from tms_sync.services.write_hooks import WriteInterceptor
from tms_sync.storage import SqlTranslationStore

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tms-sync",
        description="Synchronize translatable content with Crowdin",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Pull translations into the database")
    sync.add_argument(
        "--approved-only",
        action="store_true",
        help="Only pull fully approved files and delete those synced in every locale",
    )
    sync.add_argument(
        "--locale",
        action="append",
        dest="locales",
        help="Locale to sync (repeatable; default: all configured locales)",
    )
    sync.add_argument("--since", help="Only files updated at or after this date")
    sync.add_argument("--directory-id", help="Only files in this Crowdin directory")

    upload = subparsers.add_parser("upload", help="Upload source strings of one record")
    upload.add_argument("entity_type")
    upload.add_argument("entity_id")

    upsert = subparsers.add_parser("upsert", help="Write one approved translation")
    upsert.add_argument("locale")
    upsert.add_argument("translation_id")
    upsert.add_argument("source_string_id")

    delete = subparsers.add_parser("delete", help="Delete the remote file of one record")
    delete.add_argument("entity_type")
    delete.add_argument("entity_id")

    return parser


def _filters(args: argparse.Namespace) -> SyncFilters | None:
    if args.since is None and args.directory_id is None:
        return None
    return SyncFilters(
        directory_id=args.directory_id,
        updated_since=parse_datetime(args.since) if args.since else None,
    )


def _failed(result: OperationResult | SyncReport) -> bool:
    if isinstance(result, SyncReport):
        for failure in result.failures:
            print(f"Error: {failure}")
        return not result.ok
    if result.failure is not None:
        print(f"Error: {result.failure}")
        return True
    return False


async def run_command(args: argparse.Namespace, settings: Settings) -> bool:
    """Run one subcommand. Returns True when every operation succeeded."""
    registry = ModelRegistry()
    import_models(settings.translatable_models, registry)

    # Ensure database directory exists
    db_url = settings.database_url
    if db_url.startswith("sqlite"):
        db_path = db_url.split("///", 1)[-1] if "///" in db_url else None
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine, session_factory = create_engine(settings)
    interceptor = WriteInterceptor()
    store = SqlTranslationStore(
        session_factory, registry, settings.is_default_locale, interceptor=interceptor
    )
    try:
        await create_schema(engine)
        async with CrowdinClient.from_settings(settings) as provider:
            jobs = TranslationJobs(settings, provider, store, registry)
            jobs.install_write_hooks(interceptor)

            result: OperationResult | SyncReport
            if args.command == "sync":
                result = await jobs.sync_translations(
                    SyncJobPayload(approved_only=args.approved_only, locales=args.locales),
                    _filters(args),
                )
                print(f"Written: {result.written}")
                if result.deleted:
                    print(f"Deleted files: {', '.join(result.deleted)}")
            elif args.command == "upload":
                payload = jobs.upload_payload(args.entity_type, args.entity_id)
                result = await jobs.upload_source_strings(payload)
            elif args.command == "upsert":
                result = await jobs.upsert_single_translation(
                    UpsertTranslationPayload(
                        language=args.locale,
                        translation_id=args.translation_id,
                        source_string_id=args.source_string_id,
                    )
                )
            else:
                result = await jobs.delete_source_strings(
                    DeleteJobPayload(entity_type=args.entity_type, entity_id=args.entity_id)
                )
            return not _failed(result)
    finally:
        await engine.dispose()


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings()
    _configure_logging(settings.debug or args.debug)
    try:
        settings.validate_runtime()
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    try:
        ok = asyncio.run(run_command(args, settings))
    except (LookupError, ValueError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
