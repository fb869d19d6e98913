"""Rewrite the version string in a project's versioned files.

The new version must already have an entry in the changelog. In each file only
the first `X.Y.Z` occurrence (one or two digits per part) is replaced.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

from .constants import VERSION_PATTERN
from .errors import ConfigError, MissingVersionError, VersionNotInChangelogError
from .io_utils import _atomic_write_text

_VERSION_RE = re.compile(VERSION_PATTERN)


def bump_version(
    version: Optional[str],
    *,
    project_dir: Path,
    changelog: str,
    files: Sequence[str],
) -> list[Path]:
    """Replace the version in `files` after checking the changelog.

    Args:
        version: New version string.
        project_dir: Directory relative paths are resolved against.
        changelog: Changelog path; must mention `version`.
        files: Files whose first version occurrence is rewritten.

    Returns:
        The files whose content changed.

    Raises:
        MissingVersionError: If `version` is empty.
        VersionNotInChangelogError: If the changelog has no entry for `version`.
        ConfigError: If the changelog or a versioned file is missing.
    """
    version = (version or "").strip()
    if not version:
        raise MissingVersionError()

    changelog_path = project_dir / changelog
    try:
        changelog_text = changelog_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read changelog {changelog_path}: {exc}") from exc
    if version not in changelog_text:
        raise VersionNotInChangelogError(version, changelog)

    paths = [project_dir / name for name in files]
    missing = [str(path) for path in paths if not path.is_file()]
    if missing:
        raise ConfigError("Versioned file(s) not found: " + ", ".join(missing))

    changed: list[Path] = []
    for path in paths:
        text = path.read_text(encoding="utf-8")
        updated = _VERSION_RE.sub(lambda _match: version, text, count=1)
        if updated == text:
            logger.warning("No version string changed in {}", path)
            continue
        _atomic_write_text(path, updated)
        changed.append(path)
        logger.info("Bumped {} to {}", path, version)
    return changed
