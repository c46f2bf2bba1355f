"""Utility functions."""
import re
import time
from pathlib import Path

from errors import InvalidPath

THUMB_PREFIX = "thumb-"
THUMB_EXT = ".webp"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9._-]+")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def safe_segment(value: str) -> str:
    """Reduce a user id to a single safe path segment."""
    cleaned = _UNSAFE_CHARS.sub("-", value.strip().lower()).strip("-.")
    return cleaned or "user"


def resolve_under_root(root: Path, candidate: Path) -> Path:
    """Resolve a path ensuring it's under the root directory."""
    root = root.resolve()
    real = candidate.resolve()
    if root not in real.parents and real != root:
        raise InvalidPath()
    return real


def thumbnail_name(filename: str) -> str:
    """Thumbnail filename for a stored asset; depends on nothing but the name."""
    return f"{THUMB_PREFIX}{Path(filename).stem}{THUMB_EXT}"
