"""Dev session orchestrator: wires watches, collaborators and the process supervisor."""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any

from devloop_core.config import validate_dev_config
from devloop_core.file_watcher import DebouncedWatch, FileWatcherManager
from devloop_core.models import DevConfig, ProtoConfigItem, SyncConfigItem
from devloop_core.notifier import DevNotifier, NoOpNotifier
from devloop_core.supervisor import ProcessSupervisor
from devloop_core.watchers import ChangeEvent, WatchRegistration

from devloop.api import generate_api_stubs
from devloop.proto import RegenerationError, load_prior_snapshot, regenerate_schema
from devloop.sync import ensure_symlink, map_destination, remove_path, sync_path, sync_tree

logger = logging.getLogger(__name__)

DEV_SERVER_WATCH_ID = "DEV_SERVER"


def _latest_per_path(events: list[ChangeEvent]) -> list[ChangeEvent]:
    """Keep the last event of every path, ordered by when that last event happened."""
    seen = set()
    latest = []
    for event in reversed(events):
        if event.path not in seen:
            seen.add(event.path)
            latest.append(event)
    latest.reverse()
    return latest


class DevSession:
    """Composition root of a dev session. Primary embed point.

    Usage (Embedded):
        session = DevSession(load_dev_config("devloop.toml"))
        task = asyncio.create_task(session.run())
        ...
        session.stop()
        await task
    """

    def __init__(
        self,
        config: DevConfig,
        notifier: DevNotifier | None = None,
        supervisor: ProcessSupervisor | None = None,
        enable_watchers: bool = True,
    ):
        """Initialize session.

        Args:
            config: Loaded configuration
            notifier: Optional notification handler (defaults to NoOpNotifier - silent)
            supervisor: Process supervisor (created from config.dev.command when omitted)
            enable_watchers: If False, watches are registered but the observer is never started
        """
        self.config = config
        self.notifier = notifier or NoOpNotifier()
        self.supervisor = supervisor or ProcessSupervisor(config.dev.command, notifier=self.notifier)
        self.enable_watchers = enable_watchers
        self.watches: dict[str, DebouncedWatch] = {}
        self._file_watcher: FileWatcherManager | None = None
        self._prior_snapshots: dict[int, dict[str, Any] | None] = {}
        self._bulk_synced: set[int] = set()
        self._tasks: set[asyncio.Task] = set()
        self._restart_windows: dict[int, asyncio.Task] = {}
        self._stop_event: asyncio.Event | None = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def run(self) -> None:
        """Set up and keep the session alive until stop() or cancellation."""
        self._stop_event = asyncio.Event()
        try:
            await self.setup()
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    async def setup(self) -> None:
        """Symlinks, watches and the first start of the dev server.

        Raises:
            ValueError: On configuration errors
            OSError: If a symlink cannot be set up
        """
        loop = asyncio.get_running_loop()

        validation = validate_dev_config(self.config)
        for warning in validation.warnings:
            self.notifier.warning(warning)
        if validation.errors:
            raise ValueError("Invalid configuration:\n" + "\n".join(validation.errors))

        await self.setup_symlinks()

        self._file_watcher = FileWatcherManager(loop, root=self.config.root)
        for registration in self.build_registrations():
            self.watches[registration.watch_id] = self._file_watcher.create_watch(registration)
        if self.enable_watchers:
            self._file_watcher.start()

        self._spawn(self._guard(DEV_SERVER_WATCH_ID, self.supervisor.start()))

    def stop(self) -> None:
        """Ask run() to return."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def shutdown(self) -> None:
        """Stop watchers, the dev server and pending collaborator tasks."""
        if self._file_watcher is not None:
            try:
                self._file_watcher.stop()
            except Exception as e:
                logger.error(f"Error stopping file watcher: {e}")
            self._file_watcher = None
        await self.supervisor.stop()
        for task in list(self._tasks):
            task.cancel()
        logger.debug("Dev session stopped")

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, watch_id: str, coro: Awaitable[Any]) -> Any:
        """Error boundary around one trigger: log, tell the user, keep the session alive.

        Returns:
            The result of `coro`, or None if it failed
        """
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Trigger '{watch_id}' failed: {e}")
            self.notifier.error(f"[{watch_id}] {e}")

    # ========================================================================
    # One-time steps
    # ========================================================================

    async def setup_symlinks(self) -> None:
        """Create configured symlinks in order. Any failure aborts the session."""
        for item in self.config.symlinks:
            self.notifier.info(f"Link {item.from_path} -> {item.to_path}")
            await asyncio.to_thread(ensure_symlink, item.from_path, item.to_path)
            self.notifier.success("Done")

    async def sync_once(self) -> None:
        """Symlinks plus a bulk copy of every copy-sync entry."""
        await self.setup_symlinks()
        for index, item in enumerate(self.config.sync):
            if item.type == "copy":
                await self._bulk_sync(index, item)

    async def proto_once(self) -> bool:
        """Regenerate every protocol snapshot once.

        Returns:
            True if every item regenerated successfully
        """
        ok = True
        for index, item in enumerate(self.config.proto):
            self._prior_snapshots[index] = await asyncio.to_thread(load_prior_snapshot, item)
            ok = await self._regenerate(index, item) and ok
        return ok

    # ========================================================================
    # Watches
    # ========================================================================

    def build_registrations(self) -> list[WatchRegistration]:
        """Describe every watch of the session. Prior snapshots are loaded here, once."""
        dev = self.config.dev
        registrations = []

        if dev.auto_proto:
            for index, item in enumerate(self.config.proto):
                self._prior_snapshots[index] = load_prior_snapshot(item)
                registrations.append(
                    WatchRegistration(
                        matches=[item.ptl_dir],
                        ignore=[item.output, *(item.ptl_dir / pattern for pattern in item.ignore)],
                        on_trigger=self._proto_trigger(index, item),
                        delay=dev.delay,
                        watch_id=f"AutoProto_{index}",
                    )
                )

        if dev.auto_sync:
            for index, item in enumerate(self.config.sync):
                if item.type != "copy":
                    continue
                registrations.append(
                    WatchRegistration(
                        matches=[item.from_path],
                        on_trigger=self._copy_trigger(index, item),
                        delay=dev.delay,
                        watch_id=f"AutoSync_{index}",
                        deliver_all=True,
                    )
                )

        # The whole window is delivered so its first event identifies the kill phase of the same burst
        registrations.append(
            WatchRegistration(
                matches=self.config.watch_patterns,
                on_will_trigger=self._restart_detected,
                on_trigger=self._restart_settled,
                delay=dev.delay,
                watch_id=DEV_SERVER_WATCH_ID,
                deliver_all=True,
            )
        )
        return registrations

    def _restart_detected(self, event: ChangeEvent) -> asyncio.Task:
        """Leading edge of the restart watch: start the kill phase right away."""
        task = self._spawn(self._guard(DEV_SERVER_WATCH_ID, self.supervisor.begin_restart()))
        self._restart_windows[id(event)] = task
        return task

    async def _restart_settled(self, events: list[ChangeEvent]) -> None:
        """Trailing edge: spawn for the generation this burst's kill phase returned."""
        kill_phase = self._restart_windows.pop(id(events[0]), None)
        if kill_phase is None:
            return
        generation = await kill_phase
        if generation is None:
            # The kill phase failed and was already reported
            return
        await self._guard(DEV_SERVER_WATCH_ID, self.supervisor.spawn_for(generation))

    def _proto_trigger(self, index: int, item: ProtoConfigItem):
        async def on_trigger(event: ChangeEvent) -> None:
            await self._guard(f"AutoProto_{index}", self._regenerate(index, item))

        return on_trigger

    async def _regenerate(self, index: int, item: ProtoConfigItem) -> bool:
        try:
            schema = await asyncio.to_thread(regenerate_schema, item, self._prior_snapshots.get(index))
        except RegenerationError as e:
            logger.warning(f"Regeneration of {item.ptl_dir} failed: {e}")
            self.notifier.error(str(e))
            return False

        self._prior_snapshots[index] = schema
        self.notifier.success(f"Generated {item.output}")

        if self.config.dev.auto_api and item.api_dir is not None:
            stubs = await asyncio.to_thread(generate_api_stubs, schema, item.ptl_dir, item.api_dir)
            for path in stubs:
                self.notifier.success(f"Created API stub {path}")
        return True

    def _copy_trigger(self, index: int, item: SyncConfigItem):
        async def on_trigger(events: list[ChangeEvent]) -> None:
            await self._guard(f"AutoSync_{index}", self._copy(index, item, events))

        return on_trigger

    async def _bulk_sync(self, index: int, item: SyncConfigItem) -> None:
        count = await asyncio.to_thread(sync_tree, item)
        self._bulk_synced.add(index)
        self.notifier.success(f"Synced {item.from_path} -> {item.to_path} ({count} files)")

    async def _copy(self, index: int, item: SyncConfigItem, events: list[ChangeEvent]) -> None:
        # Only the first burst copies the whole tree
        if index not in self._bulk_synced:
            await self._bulk_sync(index, item)
            return

        for event in _latest_per_path(events):
            dst = map_destination(item, event.path)
            if event.is_removal:
                await asyncio.to_thread(remove_path, dst)
                self.notifier.success(f'Removed "{dst}"')
            elif event.path.exists():
                await asyncio.to_thread(sync_path, event.path, dst, event.is_directory)
                self.notifier.success(f'Copy "{event.path}" -> "{dst}"')
            else:
                logger.debug(f"Skipping {event.path}: gone before it could be copied")
