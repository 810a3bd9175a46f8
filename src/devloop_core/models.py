"""Shared configuration models for devloop_core."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

DEFAULT_COMMAND = "python src/main.py"
"""Conventional "run from source" command."""

DEFAULT_WATCH = "src"
DEFAULT_DELAY = 1000

SyncType = Literal["symlink", "copy"]


@dataclass(frozen=True)
class DevOptions:
    """The [dev] table: what a dev session automates."""

    auto_proto: bool = True
    """Regenerate protocol snapshots when protocol sources change."""

    auto_sync: bool = True
    """Keep copy-sync destinations up to date."""

    auto_api: bool = True
    """Generate API stubs after a successful regeneration."""

    command: str = DEFAULT_COMMAND
    """Shell command that starts the application under development."""

    watch: str | list[str] = DEFAULT_WATCH
    """Paths or globs whose change restarts the application."""

    delay: int = DEFAULT_DELAY
    """Quiet period in milliseconds for every watch."""


@dataclass(frozen=True)
class ProtoConfigItem:
    """One [[proto]] entry: a protocol directory and its generated snapshot."""

    ptl_dir: Path
    """Directory holding protocol sources."""

    output: Path
    """Snapshot file written by regeneration."""

    api_dir: Path | None = None
    """Directory that receives API stubs, if any."""

    ignore: list[str] = field(default_factory=list)
    """Extra patterns excluded from the protocol watch."""


@dataclass(frozen=True)
class SyncConfigItem:
    """One [[sync]] entry."""

    type: SyncType
    """"symlink" (one-time setup) or "copy" (watched copy-sync)."""

    from_path: Path
    """Source directory."""

    to_path: Path
    """Destination directory or link."""


@dataclass(frozen=True)
class DevConfig:
    """Complete configuration of a dev session."""

    root: Path
    """Directory relative paths were resolved against."""

    dev: DevOptions = field(default_factory=DevOptions)
    proto: list[ProtoConfigItem] = field(default_factory=list)
    sync: list[SyncConfigItem] = field(default_factory=list)
    verbose: bool = False

    @property
    def symlinks(self) -> list[SyncConfigItem]:
        return [item for item in self.sync if item.type == "symlink"]

    @property
    def copies(self) -> list[SyncConfigItem]:
        return [item for item in self.sync if item.type == "copy"]

    @property
    def watch_patterns(self) -> list[str]:
        watch = self.dev.watch
        return [watch] if isinstance(watch, str) else list(watch)


@dataclass
class ConfigValidationResult:
    """Results from startup configuration validation."""

    proto_items: int = 0
    """Number of protocol directories configured."""

    sync_items: int = 0
    """Number of sync entries configured."""

    warnings: list[str] = field(default_factory=list)
    """Config issues found (non-fatal)."""

    errors: list[str] = field(default_factory=list)
    """Config errors (should be fatal)."""
