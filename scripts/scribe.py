#!/usr/bin/env python3
"""Command line entrypoint for the Scribe media pipeline.

Three modes share the same pipeline:

* ``watch <dir>`` follows a directory tree and writes ``-scribe.json``
  sidecars next to every processed media file.
* ``file <path-or-url>`` processes a single file or URL once and prints the
  result.
* ``relay`` subscribes to the configured source relays and publishes each
  result to the sink relays.

Every option falls back to the environment / ``.env`` settings.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from app.main import build_server, create_app
from app.models.schemas import MediaKind, WorkItem
from app.utils.config import Settings, get_settings
from app.utils.logger import setup_logging
from domains.media_scribe.backends import BACKEND_NAMES, build_selection
from domains.media_scribe.backends.base import is_remote
from domains.media_scribe.errors import ConfigurationError, LedgerError, SinkPublishError
from domains.media_scribe.extractor import classify_locator, extract_from_path
from domains.media_scribe.nostr import EventSigner
from domains.media_scribe.pipeline import ScribePipeline
from domains.media_scribe.sinks import RelaySink, SidecarSink
from domains.media_scribe.sources.filesystem import DirectoryWatcher
from domains.media_scribe.sources.relay import RelayPublisher, RelaySubscriber
from domains.media_scribe.workers import run_backend


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--backend",
        choices=(*BACKEND_NAMES, "auto"),
        default=None,
        help="Backend for every media kind (default: BACKEND or auto).",
    )
    common.add_argument("--api-key", default=None, help="OpenAI API key (or set OPENAI_API_KEY).")
    common.add_argument(
        "--model-path",
        type=Path,
        default=None,
        help="Path to the local whisper model file.",
    )
    common.add_argument("--timeout", type=float, default=None, help="Per-item timeout in seconds.")
    common.add_argument(
        "--markdown",
        action="store_true",
        default=None,
        help="Also write a Markdown sidecar next to the JSON one.",
    )
    common.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL or INFO).")

    pipeline_opts = argparse.ArgumentParser(add_help=False)
    pipeline_opts.add_argument("--workers", type=int, default=None, help="Number of worker tasks.")
    pipeline_opts.add_argument("--queue-size", type=int, default=None, help="Dispatch queue capacity.")
    pipeline_opts.add_argument("--ledger", type=Path, default=None, help="Dedup ledger JSON file.")
    pipeline_opts.add_argument(
        "--status-port",
        type=int,
        default=None,
        help="Serve the status API on this port while running.",
    )
    pipeline_opts.add_argument(
        "--no-drain",
        action="store_true",
        help="On shutdown, leave queued items for the next run instead of processing them.",
    )

    parser = argparse.ArgumentParser(
        description="Transcribe and describe media files, directories and relay messages.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    watch = commands.add_parser(
        "watch",
        parents=[common, pipeline_opts],
        help="Watch a directory and write sidecars for new media files.",
    )
    watch.add_argument("directory", type=Path, nargs="?", default=None)
    watch.add_argument(
        "--no-scan",
        action="store_true",
        help="Skip the startup scan of files already in the directory.",
    )

    single = commands.add_parser(
        "file",
        parents=[common],
        help="Process one file or URL and print the result.",
    )
    single.add_argument("target", help="Local path or http(s) URL.")
    single.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Where to write the sidecar (default: next to the file, or ./ for URLs).",
    )

    commands.add_parser(
        "relay",
        parents=[common, pipeline_opts],
        help="Process media referenced by relay messages and publish the results.",
    )

    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Return a copy of ``settings`` with every CLI option that was given."""
    mapping = {
        "backend": "backend",
        "api_key": "openai_api_key",
        "model_path": "whisper_model_path",
        "timeout": "item_timeout_seconds",
        "markdown": "sidecar_markdown",
        "log_level": "log_level",
        "workers": "worker_count",
        "queue_size": "queue_capacity",
        "ledger": "ledger_path",
        "status_port": "api_port",
        "directory": "watch_dir",
    }
    update = {}
    for option, field in mapping.items():
        value = getattr(args, option, None)
        if value is not None:
            update[field] = value
    if getattr(args, "no_scan", False):
        update["scan_existing"] = False
    if getattr(args, "no_drain", False):
        update["drain_on_shutdown"] = False
    return settings.model_copy(update=update)


def install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _signal_handler(signum: int) -> None:
        logger.info(f"Received signal {signum}, shutting down.")
        stop.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _signal_handler, signum)
        except NotImplementedError:
            # Windows event loops
            signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(_signal_handler, s))


async def serve_until_stopped(
    pipeline: ScribePipeline,
    settings: Settings,
    stop: asyncio.Event,
) -> None:
    """Run the optional status API until ``stop`` is set."""
    if settings.api_port is None:
        await stop.wait()
        return

    server = build_server(create_app(pipeline, settings), settings.api_host, settings.api_port)
    task = asyncio.create_task(server.serve(), name="status-api")
    task.add_done_callback(lambda _: stop.set())
    try:
        await stop.wait()
    finally:
        server.should_exit = True
        await task


async def run_watch(settings: Settings) -> int:
    if settings.watch_dir is None:
        logger.error("No directory to watch. Pass one or set WATCH_DIR.")
        return 1

    selection = build_selection(settings)
    sink = SidecarSink(write_markdown=settings.sidecar_markdown)
    pipeline = ScribePipeline.from_settings(settings, selection, sink)
    watcher = DirectoryWatcher(settings.watch_dir, pipeline, scan_existing=settings.scan_existing)

    stop = asyncio.Event()
    install_signal_handlers(stop)

    await pipeline.start()
    try:
        watcher.start()
    except FileNotFoundError as e:
        logger.error(str(e))
        await pipeline.shutdown(drain=False)
        return 1

    scan: Optional[asyncio.Future] = None
    if watcher.scan_existing:
        scan = asyncio.ensure_future(asyncio.to_thread(watcher.scan))

    try:
        await serve_until_stopped(pipeline, settings, stop)
    finally:
        # Intake first, so a blocked observer or scan thread can finish.
        pipeline.close()
        await asyncio.to_thread(watcher.stop)
        try:
            if scan is not None:
                await scan
        finally:
            await pipeline.shutdown(drain=settings.drain_on_shutdown)

    logger.info("Directory watcher stopped.")
    return 0


async def run_relay(settings: Settings) -> int:
    sources = settings.get_relay_sources()
    sinks = settings.get_relay_sinks()
    if not sources or not sinks:
        logger.error("Both RELAY_SOURCES and RELAY_SINKS must list at least one relay.")
        return 1

    selection = build_selection(settings)
    signer = EventSigner(settings.relay_secret_key)
    if not settings.relay_secret_key:
        logger.warning(f"No RELAY_SECRET_KEY set, publishing with ephemeral key {signer.pubkey}")
    publisher = RelayPublisher(sinks, signer, timeout=settings.relay_publish_timeout)
    pipeline = ScribePipeline.from_settings(settings, selection, RelaySink(publisher))
    subscriber = RelaySubscriber(
        sources,
        pipeline,
        kinds=settings.get_relay_kinds(),
        authors=settings.get_relay_authors(),
        reconnect_delay=settings.relay_reconnect_delay,
    )

    stop = asyncio.Event()
    install_signal_handlers(stop)

    await pipeline.start()
    subscriber.start()
    try:
        await serve_until_stopped(pipeline, settings, stop)
    finally:
        pipeline.close()
        await subscriber.stop()
        await pipeline.shutdown(drain=settings.drain_on_shutdown)

    logger.info("Relay processor stopped.")
    return 0


def build_single_item(target: str) -> Optional[WorkItem]:
    """Work item for a one-off path or URL; ``None`` if it is not media."""
    if is_remote(target):
        kind = classify_locator(target)
        if kind is None:
            return None
        return WorkItem(source_id=target, media_kind=kind, media_locator=target)

    items = extract_from_path(Path(target))
    return items[0] if items else None


async def run_file(settings: Settings, target: str, output_dir: Optional[Path]) -> int:
    if not is_remote(target) and not Path(target).is_file():
        logger.error(f"File not found: {target}")
        return 1

    item = build_single_item(target)
    if item is None:
        supported = ", ".join(kind.value for kind in MediaKind)
        logger.error(f"Unsupported file type: {target} (supported: {supported})")
        return 1

    selection = build_selection(settings)
    try:
        result = await run_backend(selection, item, settings.item_timeout_seconds)
    finally:
        await selection.aclose()

    if not result.ok:
        logger.error(f"Processing failed ({result.error.value}): {result.detail}")
        return 1

    sink = SidecarSink(write_markdown=settings.sidecar_markdown, output_dir=output_dir)
    try:
        await sink.emit(result)
    except SinkPublishError as e:
        logger.error(str(e))
        return 1

    print(json.dumps(result.content.model_dump(exclude_none=True), indent=2, ensure_ascii=False))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    settings = apply_overrides(get_settings(), args)
    setup_logging(settings.log_level)

    try:
        if args.command == "watch":
            return asyncio.run(run_watch(settings))
        if args.command == "relay":
            return asyncio.run(run_relay(settings))
        return asyncio.run(run_file(settings, args.target, args.output_dir))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except LedgerError as e:
        logger.error(f"Ledger unavailable: {e}")
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
