"""Configuration parsing for devloop."""

import logging
import os
from pathlib import Path
from typing import Any

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from devloop_core.models import (
    DEFAULT_COMMAND,
    DEFAULT_DELAY,
    DEFAULT_WATCH,
    ConfigValidationResult,
    DevConfig,
    DevOptions,
    ProtoConfigItem,
    SyncConfigItem,
)

logger = logging.getLogger(__name__)

SYNC_TYPES = ("symlink", "copy")


def _resolve(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = root / path
    return Path(os.path.normpath(path))


def _require(entry: dict[str, Any], key: str, section: str, index: int) -> Any:
    if key not in entry:
        raise ValueError(f"[[{section}]] entry {index} is missing required key '{key}'")
    return entry[key]


def _parse_dev(raw: dict[str, Any]) -> DevOptions:
    delay = raw.get("delay", DEFAULT_DELAY)
    if not isinstance(delay, int) or isinstance(delay, bool) or delay < 0:
        raise ValueError(f"[dev] delay must be a non-negative integer (milliseconds), got {delay!r}")

    watch = raw.get("watch", DEFAULT_WATCH)
    if not isinstance(watch, (str, list)) or not watch:
        raise ValueError(f"[dev] watch must be a path or a list of paths, got {watch!r}")

    return DevOptions(
        auto_proto=bool(raw.get("auto_proto", True)),
        auto_sync=bool(raw.get("auto_sync", True)),
        auto_api=bool(raw.get("auto_api", True)),
        command=str(raw.get("command", DEFAULT_COMMAND)),
        watch=watch,
        delay=delay,
    )


def parse_dev_config(raw: dict[str, Any], root: Path) -> DevConfig:
    """Build a DevConfig from already-parsed TOML data.

    Args:
        raw: Parsed TOML document
        root: Directory relative paths resolve against

    Returns:
        DevConfig

    Raises:
        ValueError: On missing keys or invalid values
    """
    dev = _parse_dev(raw.get("dev", {}))

    proto = []
    for index, entry in enumerate(raw.get("proto", [])):
        api_dir = entry.get("api_dir")
        proto.append(
            ProtoConfigItem(
                ptl_dir=_resolve(root, _require(entry, "ptl_dir", "proto", index)),
                output=_resolve(root, _require(entry, "output", "proto", index)),
                api_dir=_resolve(root, api_dir) if api_dir else None,
                ignore=list(entry.get("ignore", [])),
            )
        )

    sync = []
    for index, entry in enumerate(raw.get("sync", [])):
        sync_type = _require(entry, "type", "sync", index)
        if sync_type not in SYNC_TYPES:
            raise ValueError(f"[[sync]] entry {index} has unknown type {sync_type!r} (expected one of {SYNC_TYPES})")
        sync.append(
            SyncConfigItem(
                type=sync_type,
                from_path=_resolve(root, _require(entry, "from", "sync", index)),
                to_path=_resolve(root, _require(entry, "to", "sync", index)),
            )
        )

    # Watch patterns are resolved later by the file watcher against the same root
    return DevConfig(root=root, dev=dev, proto=proto, sync=sync, verbose=bool(raw.get("verbose", False)))


def load_dev_config(path: str | Path) -> DevConfig:
    """Load a dev session configuration.

    Args:
        path: Path to TOML config file

    Returns:
        DevConfig with paths resolved against the config file's directory
    """
    path = Path(path)

    # Check file exists with helpful error
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\nRun 'devloop' without arguments to auto-create a default config."
        )

    # Load TOML content
    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except Exception as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e

    config = parse_dev_config(raw, path.resolve().parent)
    logger.debug(f"Loaded {path}: {len(config.proto)} proto item(s), {len(config.sync)} sync item(s)")
    return config


def validate_dev_config(config: DevConfig) -> ConfigValidationResult:
    """Check a configuration for problems that would make watches silently useless."""
    result = ConfigValidationResult(proto_items=len(config.proto), sync_items=len(config.sync))

    for item in config.proto:
        if not item.ptl_dir.is_dir():
            result.warnings.append(f"Protocol directory does not exist: {item.ptl_dir}")
        if item.api_dir is not None and item.api_dir == item.ptl_dir:
            result.warnings.append(f"API stubs would be written into the protocol directory: {item.api_dir}")

    for item in config.sync:
        if not item.from_path.exists():
            message = f"Sync source does not exist: {item.from_path}"
            # A missing symlink source makes the setup step fail for sure
            (result.errors if item.type == "symlink" else result.warnings).append(message)
        if item.to_path == item.from_path:
            result.errors.append(f"Sync source and destination are the same: {item.from_path}")

    if not config.dev.command.strip():
        result.errors.append("[dev] command is empty")

    return result
