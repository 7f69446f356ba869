"""Content hashing and normalization for deduplication.

Two granularities are used: the SHA-256 of the original bytes (same file
uploaded twice) and the SHA-256 of the normalized extracted text (same content
in a different container, e.g. a PDF and a DOCX export of one manuscript).
"""

import hashlib
import os
import re

_BLANK_LINE_RUNS = re.compile(r"\n\s*\n\s*\n")
_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")
_UNDERSCORE_RUNS = re.compile(r"_+")

MAX_FILENAME_LENGTH = 255


def hash_bytes(data: bytes) -> str:
    """SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def normalize_text(text: str) -> str:
    """Canonical form of extracted text.

    Line endings are unified to ``\\n``, each line is stripped, runs of blank
    lines collapse to a single blank line and the result is trimmed.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _BLANK_LINE_RUNS.sub("\n\n", text)
    return text.strip()


def hash_text(text: str) -> str:
    """SHA-256 hex digest of the normalized text."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def sanitize_filename(filename: str) -> str:
    """Make a user-supplied filename safe to store on disk."""
    name = os.path.basename(filename.replace("\\", "/"))
    name = _UNSAFE_FILENAME_CHARS.sub("_", name)
    name = _WHITESPACE.sub("_", name)
    name = _UNDERSCORE_RUNS.sub("_", name).strip("_")

    if len(name) > MAX_FILENAME_LENGTH:
        stem, ext = os.path.splitext(name)
        name = stem[: MAX_FILENAME_LENGTH - len(ext)] + ext

    return name or "unknown"
