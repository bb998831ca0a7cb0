"""
Atomic file replacement for cache entries and the book store.

Content is written to a temporary file in the target's own directory, flushed
to disk and moved over the target with ``os.replace``. Readers therefore see
either the old file or the new one, never a partial write.
"""

import json
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

TEMP_SUFFIX = ".tmp"


def temp_prefix(target_path: Path) -> str:
    return f".{target_path.name}."


def is_temp_file(path: Path) -> bool:
    """True for leftovers of an interrupted atomic write."""
    return path.name.startswith(".") and path.name.endswith(TEMP_SUFFIX)


def remove_stale_temp_files(directory: Path, max_age: float = 3600.0) -> int:
    """
    Delete temporary files older than ``max_age`` seconds from ``directory``.

    Returns:
        Number of files removed
    """
    removed = 0
    now = time.time()
    try:
        candidates = [path for path in directory.iterdir() if path.is_file() and is_temp_file(path)]
    except OSError as e:
        logger.debug("Cannot scan for stale temp files", directory=str(directory), error=str(e))
        return 0
    for path in candidates:
        try:
            if now - path.stat().st_mtime > max_age:
                path.unlink()
                removed += 1
        except OSError:
            continue
    if removed:
        logger.debug("Removed stale temp files", directory=str(directory), count=removed)
    return removed


def atomic_write_text(target_path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Atomically replace ``target_path`` with ``content``.

    Args:
        target_path: File to write; parent directories are created
        content: Text to write
        encoding: Text encoding (default: utf-8)

    Raises:
        OSError: If the file could not be written or moved into place
    """
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    temp_file_path = None

    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=target_path.parent,
            prefix=temp_prefix(target_path),
            suffix=TEMP_SUFFIX,
            delete=False,
            encoding=encoding,
        ) as temp_file:
            temp_file_path = Path(temp_file.name)
            temp_file.write(content)
            temp_file.flush()
            os.fsync(temp_file.fileno())

        try:
            os.replace(temp_file_path, target_path)
        except OSError as rename_error:
            logger.warning("Atomic rename failed, falling back to move", target=str(target_path), error=str(rename_error))
            shutil.move(str(temp_file_path), str(target_path))
        logger.debug("Atomic write completed", target=str(target_path), size=len(content))

    except (OSError, shutil.Error) as e:
        if temp_file_path is not None and temp_file_path.exists():
            try:
                temp_file_path.unlink()
            except OSError as cleanup_error:
                logger.warning("Failed to clean up temp file", temp_file=str(temp_file_path), error=str(cleanup_error))
        raise OSError(f"Failed to atomically write {target_path}: {e}") from e


def atomic_write_json(target_path: Path, data: Any) -> None:
    """
    Serialize ``data`` as indented UTF-8 JSON and write it atomically.

    Raises:
        ValueError: If ``data`` is not JSON serializable
        OSError: If the file could not be written
    """
    try:
        content = json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.error("Failed to serialize data to JSON", target=str(target_path), error=str(e))
        raise ValueError(f"Cannot serialize data to JSON: {e}") from e
    atomic_write_text(Path(target_path), content)
