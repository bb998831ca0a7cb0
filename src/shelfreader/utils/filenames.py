"""
Filesystem-safe names for cache directories and entries.

Book and chapter ids are often URLs or titles. Characters that are unsafe in
a path component become ``_``; when that changes the name, a short hash of
the original is appended so distinct ids cannot collide.
"""

import hashlib
import re

UNSAFE_CHARS_PATTERN = re.compile(r'[\\/:*?"<>|\s\x00-\x1f\x7f]')

MAX_NAME_LENGTH = 100
# Leaves room under the 255-byte NAME_MAX for the hash suffix, ".txt" and temp-file affixes
MAX_NAME_BYTES = 200
HASH_LENGTH = 8

# Windows reserved device names
WINDOWS_RESERVED_NAMES = {
    "CON", "PRN", "AUX", "NUL",
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8", "COM9",
    "LPT1", "LPT2", "LPT3", "LPT4", "LPT5", "LPT6", "LPT7", "LPT8", "LPT9",
}


def short_hash(text: str, length: int = HASH_LENGTH) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:length]


def safe_filename(name: str) -> str:
    """
    Convert an id into a single safe path component.

    Examples:
        >>> safe_filename("chapter-12")
        'chapter-12'

        >>> safe_filename("第1章")
        '第1章'

        >>> safe_filename("a/b") == "a_b_" + short_hash("a/b")
        True
    """
    if len(name) > MAX_NAME_LENGTH or len(name.encode("utf-8")) > MAX_NAME_BYTES:
        return short_hash(name, 40)

    result = UNSAFE_CHARS_PATTERN.sub("_", name)
    # Leading dots would hide the file or collide with temp files.
    if result.startswith("."):
        result = "_" + result[1:]
    if not result or result.split(".")[0].upper() in WINDOWS_RESERVED_NAMES:
        result = f"{result}_"

    if result != name:
        result = f"{result}_{short_hash(name)}"
    return result
