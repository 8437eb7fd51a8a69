"""
Helper utilities for Cortex.

Common functions used across domains.
"""

import hashlib
import re
from pathlib import Path
from typing import Iterable, List
from uuid import uuid4

from loguru import logger


def generate_uuid() -> str:
    """Generate a unique identifier."""
    return str(uuid4())


def hash_text(text: str) -> str:
    """Generate SHA256 hash of text."""
    return hashlib.sha256(text.encode()).hexdigest()


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""

    try:
        return path.expanduser().resolve()
    except (FileNotFoundError, RuntimeError):
        return path.expanduser().absolute()


def is_relative_to(path: Path, root: Path) -> bool:
    """Check whether ``path`` lies at or under ``root``."""
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def iter_files(root: Path, recursive: bool = True) -> Iterable[Path]:
    """Yield regular files under ``root``."""
    pattern = root.rglob("*") if recursive else root.glob("*")
    for path in pattern:
        try:
            if path.is_file():
                yield path
        except OSError:
            continue


def redact_text(text: str, patterns: List[str]) -> str:
    """
    Redact sensitive information from text using regex patterns.

    Args:
        text: Text to redact
        patterns: List of regex patterns to redact

    Returns:
        Redacted text
    """
    redacted = text

    for pattern in patterns:
        try:
            redacted = re.sub(pattern, '[REDACTED]', redacted)
        except re.error as e:
            logger.warning(f"Skipping invalid redact pattern {pattern!r}: {e}")
            continue

    return redacted


def format_bytes(bytes_count: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"
