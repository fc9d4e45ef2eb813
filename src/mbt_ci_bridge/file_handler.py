"""File handler module: encoding-aware reads, atomic writes, case-insensitive lookup.

Test documents checked into the repository come from Windows authoring
tools, so their encoding is not known in advance. Generated launcher
inputs (props files, suite manifests, result XML) are written atomically
so a crashed run never leaves a truncated file for the launcher to pick up.
"""

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails. A leading
    byte-order mark is never part of the returned content.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode("utf-8-sig", errors="replace")
    else:
        encoding = result.encoding
        # ascii is a strict subset of utf-8
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content.lstrip("\ufeff"), encoding)


def read_text_file(path: Path) -> str:
    """Return the decoded content of *path* (see ``read_file_with_encoding``)."""
    content, _ = read_file_with_encoding(path)
    return content


def write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write content atomically, creating parent directories as needed.

    Writes to a temp file in the target directory, then ``os.replace()``s it
    over the destination.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)
    fd, tmp_name = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(encoded)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return len(encoded)


# =============================================================================
# Lookup helpers
# =============================================================================


def find_file_ignore_case(directory: Path, name: str) -> Path | None:
    """Return the entry of *directory* whose name matches *name* case-insensitively.

    Authoring tools on Windows are inconsistent about ``Test.tsp`` versus
    ``test.tsp`` and ``Resource.mtr`` versus ``resource.mtr``.
    """
    if not directory.is_dir():
        return None
    exact = directory / name
    if exact.exists():
        return exact
    wanted = name.lower()
    for entry in directory.iterdir():
        if entry.name.lower() == wanted:
            return entry
    return None


def has_read_write_access(path: Path) -> bool:
    """True when *path* exists and the current process may read and write it."""
    return path.exists() and os.access(path, os.R_OK | os.W_OK)
