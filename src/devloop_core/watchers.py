"""Watch registration model and path matching for file watching implementations."""

import fnmatch
import os
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

GLOB_CHARS = frozenset("*?[")


class ChangeKind(str, Enum):
    """Kind of filesystem change delivered to watch callbacks."""

    ADD = "add"
    ADD_DIR = "addDir"
    CHANGE = "change"
    UNLINK = "unlink"
    UNLINK_DIR = "unlinkDir"


@dataclass(frozen=True)
class ChangeEvent:
    """A single filesystem change, passed through unmodified to callbacks."""

    kind: ChangeKind
    """What happened to the path."""

    path: Path
    """Absolute path that changed."""

    stats: os.stat_result | None = None
    """Stat result for non-removal events when the path still exists."""

    @property
    def is_removal(self) -> bool:
        """True for unlink/unlinkDir."""
        return self.kind in (ChangeKind.UNLINK, ChangeKind.UNLINK_DIR)

    @property
    def is_directory(self) -> bool:
        """True for addDir/unlinkDir."""
        return self.kind in (ChangeKind.ADD_DIR, ChangeKind.UNLINK_DIR)


# Callbacks may be plain functions or coroutine functions.
WatchCallback = Callable[[Any], Awaitable[None] | None]


class WindowState(Enum):
    """Per-watch debounce state."""

    IDLE = "idle"
    """No burst in progress; the next event opens a window."""

    WINDOW_OPEN = "window_open"
    """A burst is in progress and the trailing timer is armed."""


@dataclass(frozen=True)
class WatchRegistration:
    """Configuration for one logical watch."""

    matches: Sequence[str | Path]
    """Files, directories or glob patterns to observe."""

    on_trigger: WatchCallback
    """Trailing edge: called once after the burst has been quiet for `delay` ms."""

    delay: int = 1000
    """Quiet period in milliseconds."""

    ignore: Sequence[str | Path] = field(default_factory=tuple)
    """Patterns excluded from observation."""

    on_will_trigger: WatchCallback | None = None
    """Leading edge: called once when a burst starts."""

    watch_id: str = ""
    """Identifier used in diagnostics only."""

    deliver_all: bool = False
    """Pass the whole ordered list of window events to `on_trigger` instead of the last one."""


def _has_glob(part: str) -> bool:
    return any(c in GLOB_CHARS for c in part)


def _normalize(pattern: str | Path, root: Path | None) -> str:
    path = Path(pattern).expanduser()
    if not path.is_absolute() and root is not None:
        path = root / path
    return os.path.normpath(str(path.absolute()))


def _match_parts(parts: tuple[str, ...], pattern_parts: tuple[str, ...]) -> bool:
    """Match path components one by one so `*` never crosses a separator; `**` spans any number of them."""
    if not pattern_parts:
        return not parts
    head, rest = pattern_parts[0], pattern_parts[1:]
    if head == "**":
        return any(_match_parts(parts[i:], rest) for i in range(len(parts) + 1))
    return bool(parts) and fnmatch.fnmatchcase(parts[0], head) and _match_parts(parts[1:], rest)


def base_directory(pattern: str) -> tuple[Path, bool]:
    """Return the directory to schedule for a normalized pattern and whether it must be recursive.

    Globs are watched from their longest non-glob prefix, directories recursively,
    and plain files through their parent directory.
    """
    path = Path(pattern)
    if _has_glob(pattern):
        prefix: list[str] = []
        for part in path.parts:
            if _has_glob(part):
                break
            prefix.append(part)
        return Path(*prefix), True
    if path.is_dir():
        return path, True
    return path.parent, False


class PathMatcher:
    """Decide whether a path belongs to a watch given its match and ignore patterns.

    A pattern without glob characters matches the path itself and everything
    beneath it. `*` and `?` stay within one path component; `**` matches
    zero or more directories.
    """

    def __init__(
        self,
        matches: Sequence[str | Path],
        ignore: Sequence[str | Path] = (),
        root: Path | None = None,
    ):
        self.matches = [_normalize(p, root) for p in matches]
        self.ignore = [_normalize(p, root) for p in ignore]

    @staticmethod
    def _match_one(path: str, pattern: str) -> bool:
        if not _has_glob(pattern):
            return path == pattern or path.startswith(pattern.rstrip(os.sep) + os.sep)
        parts = Path(path).parts
        pattern_parts = Path(pattern).parts
        # Everything beneath a matched directory belongs to the watch
        return any(_match_parts(parts[:n], pattern_parts) for n in range(len(parts), 0, -1))

    def is_ignored(self, path: str | Path) -> bool:
        path = os.path.normpath(str(path))
        return any(self._match_one(path, p) for p in self.ignore)

    def __call__(self, path: str | Path) -> bool:
        path = os.path.normpath(str(path))
        if self.is_ignored(path):
            return False
        return any(self._match_one(path, p) for p in self.matches)

    def schedule_targets(self) -> list[tuple[Path, bool]]:
        """Directories to hand to the observer, as (directory, recursive) pairs."""
        targets: dict[Path, bool] = {}
        for pattern in self.matches:
            directory, recursive = base_directory(pattern)
            targets[directory] = targets.get(directory, False) or recursive
        return list(targets.items())


class TriggerSourceWatcher(Protocol):
    """Protocol for file watcher implementations."""

    def create_watch(self, registration: WatchRegistration) -> Any:
        """Register a watch and return its handle."""
        ...

    def start(self) -> None:
        """Start watching."""
        ...

    def stop(self) -> None:
        """Stop watching."""
        ...
