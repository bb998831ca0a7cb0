"""Utility modules for ShelfReader."""

from .atomic import atomic_write_json, atomic_write_text, remove_stale_temp_files
from .filenames import safe_filename

__all__ = ["atomic_write_json", "atomic_write_text", "remove_stale_temp_files", "safe_filename"]
