"""
Directory watcher source.

Monitors a directory tree for new or changed media files and submits them to
the pipeline. Uses watchdog library for cross-platform file system event
monitoring.
"""

from pathlib import Path
from typing import Iterator

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from app.models.schemas import Admission
from app.utils.helpers import is_hidden, normalise_path, should_exclude_path
from domains.media_scribe.errors import LedgerIOError, PipelineClosedError
from domains.media_scribe.extractor import extract_from_path
from domains.media_scribe.pipeline import ScribePipeline
from domains.media_scribe.sinks import is_sidecar, sidecar_path


class MediaEventHandler(FileSystemEventHandler):
    """Turns file system events into pipeline submissions."""

    def __init__(self, pipeline: ScribePipeline):
        """
        Initialize event handler.

        Args:
            pipeline: Started pipeline that receives work items
        """
        super().__init__()
        self.pipeline = pipeline

    def should_process(self, path: Path) -> bool:
        """
        Check if path should be processed.

        Args:
            path: File path

        Returns:
            True if should process, False otherwise
        """
        if is_hidden(path) or should_exclude_path(path):
            return False

        if is_sidecar(path):
            logger.debug(f"Ignoring output file: {path}")
            return False

        if not path.is_file():
            logger.debug(f"Path is not a file: {path}")
            return False

        if sidecar_path(path).exists():
            logger.debug(f"File already processed (output exists): {path}")
            return False

        return True

    def handle_path(self, raw_path: str) -> int:
        """
        Extract and submit work items for a path.

        Returns:
            Number of items admitted
        """
        path = Path(raw_path)
        if not self.should_process(path):
            return 0

        admitted = 0
        for item in extract_from_path(path):
            try:
                if self.pipeline.submit(item) == Admission.ADMITTED:
                    admitted += 1
            except LedgerIOError as e:
                logger.error(f"Dropped {path}, ledger unavailable: {e}")
            except PipelineClosedError:
                logger.debug(f"Pipeline closed, ignoring {path}")
        return admitted

    def on_created(self, event: FileSystemEvent):
        """Handle file creation."""
        if event.is_directory:
            return
        logger.info(f"File created: {event.src_path}")
        self.handle_path(event.src_path)

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification."""
        # Skip directory modifications (too noisy)
        if event.is_directory:
            return
        logger.debug(f"File modified: {event.src_path}")
        self.handle_path(event.src_path)

    def on_moved(self, event: FileSystemEvent):
        """Handle rename into a media name (e.g. finished downloads)."""
        if event.is_directory:
            return
        dest = getattr(event, "dest_path", None)
        if dest:
            logger.info(f"Moved: {event.src_path} -> {dest}")
            self.handle_path(dest)


def iter_media_files(root: Path) -> Iterator[Path]:
    """Yield every regular file below ``root``."""
    for child in sorted(root.rglob("*")):
        if child.is_file():
            yield child


class DirectoryWatcher:
    """File system monitoring orchestrator."""

    def __init__(self, watch_dir: Path, pipeline: ScribePipeline, scan_existing: bool = True):
        """Initialize directory watcher."""
        self.watch_dir = normalise_path(watch_dir)
        self.pipeline = pipeline
        self.scan_existing = scan_existing
        self.event_handler = MediaEventHandler(pipeline)
        self.observer = Observer()

        logger.info(f"Watching directory: {self.watch_dir}")

    def scan(self) -> int:
        """
        Submit media files already present in the watched tree.

        Blocks while the queue is full, so call it off the event loop.

        Returns:
            Number of items admitted
        """
        admitted = 0
        for path in iter_media_files(self.watch_dir):
            admitted += self.event_handler.handle_path(str(path))
        logger.info(f"Startup scan admitted {admitted} files")
        return admitted

    def start(self):
        """Start the observer thread."""
        if not self.watch_dir.is_dir():
            raise FileNotFoundError(f"Watch directory does not exist: {self.watch_dir}")

        self.observer.schedule(self.event_handler, str(self.watch_dir), recursive=True)
        self.observer.daemon = True
        self.observer.start()
        logger.success(f"Started watching: {self.watch_dir}")

    def stop(self):
        """Stop watching; blocks until the observer thread exits."""
        self.observer.stop()
        self.observer.join()
        logger.info("File system observer stopped")
