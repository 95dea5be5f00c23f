"""Resolve configured hook file patterns into concrete paths.

:func:`resolve_hookfiles` turns the ``hookfiles`` option (one glob pattern,
a list of them, or nothing) into the sorted list of absolute paths the loaders
work through. :func:`is_direct_language` decides whether hook files are
loaded in-process or handed to a worker process.
"""

from __future__ import annotations

import glob
import logging
import os
from pathlib import Path
from typing import Optional, Union

from apihooks.exceptions import HookResolutionError
from apihooks.models import DEFAULT_LANGUAGE

logger = logging.getLogger(__name__)

DIRECT_LANGUAGES = frozenset({DEFAULT_LANGUAGE, "python3"})
"""Language names whose hook files are loaded in-process."""


def is_direct_language(language: Optional[str]) -> bool:
    """Return ``True`` when hooks in *language* are loaded without a worker."""
    if not language:
        return True
    return language.strip().lower() in DIRECT_LANGUAGES


def resolve_hookfiles(
    patterns: Optional[Union[str, list[str]]],
    cwd: Optional[Union[str, Path]] = None,
) -> list[str]:
    """Expand hook file patterns to absolute, sorted, deduplicated paths.

    No filesystem access happens when *patterns* is empty. Patterns are
    expanded relative to *cwd* (default: the process working directory) and
    support recursive ``**``. A pattern that matches nothing is logged but is
    not an error.

    Args:
        patterns: A glob pattern, a list of patterns, or ``None``.
        cwd: Directory relative patterns are resolved against.

    Returns:
        Absolute paths of every matching file, sorted.

    Raises:
        HookResolutionError: If the filesystem cannot be read while expanding.
    """
    if not patterns:
        return []
    if isinstance(patterns, str):
        patterns = [patterns]

    base = Path(cwd) if cwd is not None else Path.cwd()
    found: set[str] = set()
    for pattern in patterns:
        full_pattern = os.path.join(str(base), os.path.expanduser(pattern))
        try:
            matches = glob.glob(full_pattern, recursive=True)
        except OSError as exc:
            raise HookResolutionError(
                f"Failed to expand hook file pattern '{pattern}': {exc}"
            ) from exc
        if not matches:
            logger.warning("Hook file pattern '%s' did not match any files", pattern)
        for match in matches:
            path = Path(match)
            if path.is_file():
                found.add(str(path.resolve()))

    resolved = sorted(found)
    logger.debug("Resolved hook files: %s", resolved)
    return resolved
