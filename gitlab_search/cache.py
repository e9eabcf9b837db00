"""
On-disk cache documents for gitlab-search.

Each pipeline stage that talks to many projects persists its result as a
single JSON document under the hostname's cache directory. A present
document is reused verbatim until the caller busts it.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

PROJECTS_CACHE_FILE = "projects_list_cache.json"
FILES_CACHE_FILE = "projects_files_cache.json"


class CacheError(Exception):
    """Cache document exists but cannot be read back."""
    def __init__(self, message: str, path: Path | None = None):
        super().__init__(message)
        self.path = path


def bust(path: Path) -> None:
    """Delete a cache document if it exists."""
    if path.exists():
        path.unlink()
        logger.debug("Removed cache document %s", path)


def load_document(path: Path) -> Any:
    """Read a cache document. Raises CacheError on invalid JSON."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise CacheError(f"Cannot read cache document {path}: {e}", path)


def store_document(path: Path, data: Any) -> None:
    """Write a cache document atomically (temp file, then rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def cached(
    path: Path,
    compute: Callable[[], list[T]],
    dump: Callable[[T], dict[str, Any]],
    load: Callable[[dict[str, Any]], T],
    force_refresh: bool = False,
    description: str = "list",
) -> list[T]:
    """
    Return the cached list at ``path`` or compute and persist it.

    Args:
        path: Cache document location
        compute: Produces the list on a cache miss
        dump: Converts one item to a JSON-serializable dict
        load: Rebuilds one item from its dict form
        force_refresh: Delete any existing document first
        description: Used in the "Using cached ..." log line

    Returns:
        The list of items, either read back or freshly computed

    Raises:
        CacheError: The document exists but is not a list of the expected shape
    """
    if force_refresh:
        bust(path)

    if path.exists():
        logger.info("Using cached %s", description)
        data = load_document(path)
        if not isinstance(data, list):
            raise CacheError(f"Cache document {path} is not a JSON array", path)
        try:
            return [load(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            raise CacheError(f"Cache document {path} has unexpected shape: {e}", path)

    items = compute()
    store_document(path, [dump(item) for item in items])
    return items
