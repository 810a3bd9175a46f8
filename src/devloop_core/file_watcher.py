"""Debounced watch engine built on watchdog.

watchdog delivers raw events on its observer thread. They are handed to the
event loop with ``call_soon_threadsafe`` and every piece of debounce state is
touched only from the loop, so each event is processed atomically.
"""

import asyncio
import logging
import os
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from devloop_core.watchers import (
    ChangeEvent,
    ChangeKind,
    PathMatcher,
    TriggerSourceWatcher,
    WatchCallback,
    WatchRegistration,
    WindowState,
)

logger = logging.getLogger(__name__)


class DebouncedWatch:
    """Sliding-window debounce with a leading and a trailing edge for one registration."""

    def __init__(self, registration: WatchRegistration, loop: asyncio.AbstractEventLoop):
        """Initialize watch.

        Args:
            registration: Watch configuration
            loop: Event loop that owns timers and callback tasks
        """
        self.registration = registration
        self.loop = loop
        self.state = WindowState.IDLE
        self.last_event: ChangeEvent | None = None
        self._window_events: list[ChangeEvent] = []
        self._timer: asyncio.TimerHandle | None = None
        self._will_task: asyncio.Future | None = None
        self._tasks: set[asyncio.Future] = set()

    @property
    def watch_id(self) -> str:
        return self.registration.watch_id

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def notify(self, event: ChangeEvent) -> None:
        """Feed one change event. Must be called on the loop thread.

        Nothing here suspends, so leading-edge detection and timer re-arming
        happen as one step per event.
        """
        if self.state is WindowState.IDLE:
            self.state = WindowState.WINDOW_OPEN
            self._window_events = []
            logger.debug(f"[{self.watch_id}] burst started by {event.kind.value} {event.path}")
            self._will_task = None
            if self.registration.on_will_trigger is not None:
                self._will_task = self._invoke(self.registration.on_will_trigger, event, "onWillTrigger")

        if self._timer is not None:
            self._timer.cancel()
        self.last_event = event
        self._window_events.append(event)
        self._timer = self.loop.call_later(self.registration.delay / 1000.0, self._close_window)

    def notify_threadsafe(self, event: ChangeEvent) -> None:
        """Feed an event from a foreign thread (the watchdog observer)."""
        self.loop.call_soon_threadsafe(self.notify, event)

    def _close_window(self) -> None:
        """Trailing edge: the window has been quiet for `delay` ms."""
        self._timer = None
        self.state = WindowState.IDLE
        events, self._window_events = self._window_events, []
        will_task, self._will_task = self._will_task, None
        payload = events if self.registration.deliver_all else self.last_event
        logger.debug(f"[{self.watch_id}] burst settled after {len(events)} event(s)")
        self._track(self.loop.create_task(self._fire_trigger(payload, will_task)))

    async def _fire_trigger(self, payload, will_task: asyncio.Future | None) -> None:
        # The leading edge of this burst must finish before its trailing edge runs
        if will_task is not None and not will_task.done():
            await asyncio.wait([will_task])
        result = self._invoke(self.registration.on_trigger, payload, "onTrigger")
        if result is not None:
            await asyncio.wait([result])

    def _invoke(self, callback: WatchCallback, payload, phase: str) -> asyncio.Future | None:
        """Call a sync or async callback; errors are logged and never stop the watch.

        Returns:
            Task for async callbacks, None for sync ones
        """
        try:
            result = callback(payload)
        except Exception as e:
            logger.exception(f"Error in {phase} for watch '{self.watch_id}': {e}")
            return None
        if asyncio.iscoroutine(result):
            return self._track(self.loop.create_task(result), phase)
        if isinstance(result, asyncio.Future):
            return self._track(result, phase)
        return None

    def _track(self, task: asyncio.Future, phase: str = "trigger") -> asyncio.Future:
        self._tasks.add(task)

        def done(t: asyncio.Future) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    f"Error in {phase} for watch '{self.watch_id}': {exc}",
                    exc_info=(type(exc), exc, exc.__traceback__),
                )

        task.add_done_callback(done)
        return task

    async def drain(self) -> None:
        """Wait for every callback task started so far (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.wait(list(self._tasks))

    def stop(self) -> None:
        """Cancel the armed timer and any running callback tasks."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.state = WindowState.IDLE
        for task in list(self._tasks):
            task.cancel()


class _WatchdogHandler(FileSystemEventHandler):
    """Translate watchdog events into ChangeEvents for one watch."""

    def __init__(self, watch: DebouncedWatch, matcher: PathMatcher):
        self.watch = watch
        self.matcher = matcher

    def _emit(self, kind: ChangeKind, src_path: str | bytes) -> None:
        path = Path(os.fsdecode(src_path))
        if not self.matcher(path):
            return
        stats = None
        if kind not in (ChangeKind.UNLINK, ChangeKind.UNLINK_DIR):
            try:
                stats = path.stat()
            except OSError:
                stats = None
        logger.debug(f"[{self.watch.watch_id}] {kind.value}: {path}")
        self.watch.notify_threadsafe(ChangeEvent(kind=kind, path=path, stats=stats))

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file/directory creation events."""
        self._emit(ChangeKind.ADD_DIR if event.is_directory else ChangeKind.ADD, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification events."""
        if event.is_directory:
            return
        self._emit(ChangeKind.CHANGE, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle file/directory removal events."""
        self._emit(ChangeKind.UNLINK_DIR if event.is_directory else ChangeKind.UNLINK, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """A move is a removal of the old path followed by an add of the new one."""
        if event.is_directory:
            self._emit(ChangeKind.UNLINK_DIR, event.src_path)
            self._emit(ChangeKind.ADD_DIR, event.dest_path)
        else:
            self._emit(ChangeKind.UNLINK, event.src_path)
            self._emit(ChangeKind.ADD, event.dest_path)


class FileWatcherManager(TriggerSourceWatcher):
    """Owns the watchdog observer and every DebouncedWatch of a session."""

    def __init__(self, loop: asyncio.AbstractEventLoop, root: Path | None = None):
        """Initialize file watcher manager.

        Args:
            loop: Event loop for timers and callbacks
            root: Directory that relative patterns resolve against
        """
        self.loop = loop
        self.root = root
        self.observer = Observer()
        self.watches: list[DebouncedWatch] = []
        self._scheduled = 0

    def create_watch(self, registration: WatchRegistration) -> DebouncedWatch:
        """Register a watch and schedule its directories on the observer.

        Args:
            registration: Watch configuration

        Returns:
            The DebouncedWatch handle
        """
        watch = DebouncedWatch(registration, self.loop)
        matcher = PathMatcher(registration.matches, registration.ignore, root=self.root)
        handler = _WatchdogHandler(watch, matcher)

        for directory, recursive in matcher.schedule_targets():
            if not directory.is_dir():
                logger.warning(f"Watcher directory does not exist: {directory} ({registration.watch_id})")
                continue
            self.observer.schedule(handler, str(directory), recursive=recursive)
            self._scheduled += 1

        self.watches.append(watch)
        logger.info(
            f"Watching {', '.join(str(m) for m in registration.matches)} for "
            f"'{registration.watch_id}' (delay: {registration.delay}ms)"
        )
        return watch

    def start(self) -> None:
        """Start all file watchers."""
        if not self._scheduled:
            logger.debug("No file watchers scheduled")
            return

        self.observer.start()
        logger.info(f"Started {len(self.watches)} file watcher(s)")

    def stop(self) -> None:
        """Stop all file watchers."""
        if self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=2.0)
            logger.info("Stopped file watchers")

        for watch in self.watches:
            watch.stop()
