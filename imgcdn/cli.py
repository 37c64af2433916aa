from __future__ import annotations

import argparse
import mimetypes
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .core.config import Settings, get_settings
from .core.logging import configure_logging
from .core.storage import ObjectStore, StoreError, get_object_store
from .domain import AssetRef, PipelineError, UploadValidationError
from .ingest.codec import webp_supported
from .ingest.formats import FORMAT_TO_CONTENT_TYPE, detect_format
from .services.ingest_service import IngestCoordinator, create_intake
from .services.scanner import PendingSetScanner, process_pending
from .services.stats import collect_storage_stats

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level, renderer="console")

    if getattr(args, "check", False):
        _run_environment_check(settings)
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    store = get_object_store(settings)
    try:
        args.func(args, settings, store)
    finally:
        store.close()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="imgcdn image ingest CLI")
    parser.add_argument("--check", action="store_true", help="Validate Pillow WebP support and store access")

    subparsers = parser.add_subparsers(dest="command")

    upload_parser = subparsers.add_parser("upload", help="Admit a local image to the incoming stage")
    upload_parser.add_argument("--file", required=True, help="Path to the image file")
    upload_parser.add_argument("--process", action="store_true", help="Run the ingest pipeline right after upload")
    upload_parser.set_defaults(func=_cmd_upload)

    ingest_parser = subparsers.add_parser("ingest", help="Run the pipeline for one stored original")
    ingest_parser.add_argument("--key", required=True, help="Object key, e.g. uploads/1718000000000-abc.jpg")
    ingest_parser.add_argument("--bucket", default=None, help="Bucket (defaults to the incoming bucket)")
    ingest_parser.set_defaults(func=_cmd_ingest)

    archive_parser = subparsers.add_parser("archive", help="Move a processed original to the archive prefix")
    archive_parser.add_argument("--key", required=True, help="Processed key or filename, e.g. processed/1718000000000-abc.jpg")
    archive_parser.set_defaults(func=_cmd_archive)

    scan_parser = subparsers.add_parser("scan", help="Process unprocessed originals in the incoming stage")
    scan_parser.add_argument("--limit", type=int, default=None, help="Maximum number of originals to process")
    scan_parser.set_defaults(func=_cmd_scan)

    stats_parser = subparsers.add_parser("stats", help="Print per-bucket storage statistics")
    stats_parser.set_defaults(func=_cmd_stats)
    return parser


def _cmd_upload(args: argparse.Namespace, settings: Settings, store: ObjectStore) -> None:
    path = Path(args.file).expanduser().resolve()
    if not path.exists():
        console.print(f"[red]File not found: {path}[/]")
        sys.exit(2)

    data = path.read_bytes()
    detected = detect_format(data)
    content_type = FORMAT_TO_CONTENT_TYPE.get(detected or "") or mimetypes.guess_type(path.name)[0]
    try:
        asset = create_intake(settings, store).admit(data, path.name, content_type, len(data))
    except UploadValidationError as exc:
        console.print(f"[red]Upload rejected ({exc.code}):[/] {exc}")
        sys.exit(2)

    console.print(f"[green]Stored {asset.bucket}/{asset.key}[/]")
    if args.process:
        _print_result(IngestCoordinator(settings, store).ingest(asset).to_dict())


def _cmd_ingest(args: argparse.Namespace, settings: Settings, store: ObjectStore) -> None:
    asset = AssetRef(bucket=args.bucket or settings.incoming_bucket, key=args.key)
    _print_result(IngestCoordinator(settings, store).ingest(asset).to_dict())


def _cmd_archive(args: argparse.Namespace, settings: Settings, store: ObjectStore) -> None:
    asset = AssetRef(bucket=settings.processed_bucket, key=args.key)
    try:
        outcome = IngestCoordinator(settings, store).archive(asset)
    except (PipelineError, StoreError) as exc:
        console.print(f"[red]Archive failed:[/] {exc}")
        sys.exit(1)
    console.print(f"[green]Archived to {outcome.dst_bucket}/{outcome.dst_key}[/] ({outcome.status.value})")
    if outcome.warning:
        console.print(f"[yellow]{outcome.warning}[/]")


def _cmd_scan(args: argparse.Namespace, settings: Settings, store: ObjectStore) -> None:
    limit = args.limit or settings.scan_default_limit
    results = process_pending(IngestCoordinator(settings, store), PendingSetScanner.from_settings(settings, store), limit)
    for result in results:
        status = "[green]ok[/]" if result.success else "[red]failed[/]"
        console.print(f"{result.asset.key}: {status} {', '.join(result.versions)}")
    console.print(f"[bold]{sum(1 for item in results if item.success)}/{len(results)} processed[/]")


def _cmd_stats(args: argparse.Namespace, settings: Settings, store: ObjectStore) -> None:
    table = Table(title="Storage")
    table.add_column("Bucket")
    table.add_column("Files", justify="right")
    table.add_column("Bytes", justify="right")
    table.add_column("Types")
    for item in collect_storage_stats(settings, store):
        types = ", ".join(f"{ext}={count}" for ext, count in item.file_types.items())
        table.add_row(item.bucket, str(item.total_files), str(item.total_size), types)
    console.print(table)


def _print_result(result: dict) -> None:
    console.print_json(data=result)
    if not result["success"]:
        sys.exit(1)


def _run_environment_check(settings: Settings) -> None:
    """Check Pillow's WebP encoder and that the configured store answers."""
    results = {"Pillow WebP": webp_supported()}
    store = get_object_store(settings)
    try:
        store.list(settings.incoming_bucket, "", limit=1)
        results["Object store"] = True
    except StoreError:
        results["Object store"] = False
    finally:
        store.close()

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Environment check failed. Reinstall Pillow with WebP support or fix storage settings.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
