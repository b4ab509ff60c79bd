"""
Utility functions for file system operations and filename sanitization.

This module provides helper functions for:
- Sanitizing uploaded filenames for safe filesystem usage
- Ensuring directory creation with proper error handling
"""

from __future__ import annotations

import re
from pathlib import Path

# Pattern to match characters that are not safe for filesystem paths
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

# Tech support bundles are usually gzipped tarballs; some tooling re-zips them
BUNDLE_SUFFIXES = (".tar.gz", ".tgz", ".tar", ".zip")


def bundle_suffix(filename: str) -> str:
    """
    Return the recognised bundle suffix of ``filename``, or ``.tgz``.

    Example:
        >>> bundle_suffix("TSF-fw01.TAR.GZ")
        ".tar.gz"
        >>> bundle_suffix("export")
        ".tgz"
    """
    lowered = filename.lower()
    return next((suffix for suffix in BUNDLE_SUFFIXES if lowered.endswith(suffix)), ".tgz")


def sanitize_filename(filename: str, fallback: str = "bundle") -> str:
    """
    Generate a filesystem-safe name for an uploaded bundle.

    Directory components sent by the client are dropped, unsafe characters
    become hyphens and the bundle suffix is preserved.

    Example:
        >>> sanitize_filename("../My Firewall (1).tgz")
        "My-Firewall-1.tgz"
    """
    name = Path(filename.replace("\\", "/")).name
    suffix = bundle_suffix(name)
    stem = name[: -len(suffix)] if name.lower().endswith(suffix) else name
    cleaned = SANITIZE_PATTERN.sub("-", stem.strip()).strip("-_.")
    return f"{cleaned or fallback}{suffix}"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
