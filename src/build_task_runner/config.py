"""Load optional runner configuration from `.taskrunner/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_CHANGELOG,
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_WATCH_PROFILE,
    STATE_DIR_NAME,
)
from .errors import ConfigError
from .io_utils import _load_data_with_error

_WATCH_KEYS = {"paths", "tasks", "debounce_seconds"}


def config_path(project_dir: Path) -> Path:
    return project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE


def load_runner_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional runner config file.

    Args:
        project_dir: Project root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = config_path(project_dir)
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _str_list(raw: Any) -> list[str]:
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list):
        return [str(item) for item in raw if isinstance(item, (str, int, float))]
    return []


def get_tasks_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the `tasks` block, keyed by task name.

    Args:
        config: Runner configuration dictionary.

    Returns:
        The `tasks` mapping, or an empty dict if not present.
    """
    raw = _get_nested(config, "tasks")
    return raw if isinstance(raw, dict) else {}


def _watch_settings(raw: Any) -> dict[str, Any]:
    raw = raw if isinstance(raw, dict) else {}
    debounce = raw.get("debounce_seconds")
    if isinstance(debounce, bool) or not isinstance(debounce, (int, float)) or debounce < 0:
        debounce = DEFAULT_DEBOUNCE_SECONDS
    return {
        "paths": _str_list(raw.get("paths")),
        "tasks": _str_list(raw.get("tasks")),
        "debounce_seconds": float(debounce),
    }


def get_watch_profiles(config: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Extract every watch profile, keyed by profile name.

    A `watch` block holding settings directly is the `default` profile.
    Otherwise each mapping under `watch` is a named profile:

        watch:
          default: {paths: [src, tests], tasks: [test]}
          babel: {paths: [src], tasks: [babel]}
    """
    raw = _get_nested(config, "watch")
    if not isinstance(raw, dict):
        return {}
    if _WATCH_KEYS & raw.keys():
        return {DEFAULT_WATCH_PROFILE: _watch_settings(raw)}
    return {str(name): _watch_settings(block) for name, block in raw.items() if isinstance(block, dict)}


def get_watch_config(config: dict[str, Any], profile: str = DEFAULT_WATCH_PROFILE) -> dict[str, Any]:
    """Extract one watch profile with defaults filled in.

    Args:
        config: Runner configuration dictionary.
        profile: Profile name.

    Returns:
        A dict with `paths`, `tasks`, and `debounce_seconds`.

    Raises:
        ConfigError: If a profile other than `default` is requested and not configured.
    """
    profiles = get_watch_profiles(config)
    if profile in profiles:
        return profiles[profile]
    if profile != DEFAULT_WATCH_PROFILE:
        known = ", ".join(sorted(profiles)) or "none"
        raise ConfigError(f"Unknown watch profile '{profile}' (configured: {known})")
    return _watch_settings(None)


def get_bump_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the version bump settings.

    Args:
        config: Runner configuration dictionary.

    Returns:
        A dict with `changelog` (path string) and `files` (list of path strings).
    """
    raw = _get_nested(config, "bump")
    raw = raw if isinstance(raw, dict) else {}
    changelog = raw.get("changelog")
    return {
        "changelog": changelog if isinstance(changelog, str) and changelog else DEFAULT_CHANGELOG,
        "files": _str_list(raw.get("files")),
    }


def get_concurrency_config(config: dict[str, Any]) -> int | None:
    """Return the configured concurrency limit, or None for unlimited."""
    raw = config.get("concurrency")
    if isinstance(raw, int) and not isinstance(raw, bool) and raw > 0:
        return raw
    return None


def get_environment_config(config: dict[str, Any]) -> dict[str, str]:
    """Return the `environment` block with values coerced to strings."""
    raw = config.get("environment")
    if not isinstance(raw, dict):
        return {}
    return {str(key): str(value) for key, value in raw.items() if value is not None}
