"""
Helper utilities for Scribe.

Common functions used across domains.
"""

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import List


def hash_text(text: str) -> str:
    """Generate SHA256 hash of text."""
    return hashlib.sha256(text.encode()).hexdigest()


def now_utc() -> datetime:
    """Get current timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def get_file_extension(path: Path) -> str:
    """Get lower-cased file extension without dot."""
    return path.suffix.lstrip('.').lower()


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""

    try:
        return path.expanduser().resolve()
    except FileNotFoundError:
        return path.expanduser().absolute()


def is_hidden(path: Path) -> bool:
    """Check if path is hidden (starts with dot)."""
    return path.name.startswith('.')


def should_exclude_path(path: Path, exclude_patterns: List[str] = None) -> bool:
    """
    Check if path should be excluded based on patterns.

    Args:
        path: Path to check
        exclude_patterns: List of glob patterns to exclude

    Returns:
        True if should exclude, False otherwise
    """
    if exclude_patterns is None:
        exclude_patterns = [
            '*.tmp',
            '*.part',
            '*.crdownload',
            '.git',
            '.DS_Store'
        ]

    path_str = str(path)

    for pattern in exclude_patterns:
        if path.match(pattern) or f"/{pattern}/" in path_str:
            return True

    return False


def atomic_write_text(path: Path, text: str) -> None:
    """
    Write ``text`` to ``path`` so readers never observe a partial file.

    The content is written to a sibling temp file which then replaces the
    target in a single rename.
    """
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        tmp_path.write_text(text, encoding="utf-8")
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def format_duration_ms(duration_ms: int) -> str:
    """Format milliseconds as M:SS."""
    seconds = duration_ms // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"
