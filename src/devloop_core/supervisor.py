"""Supervisor for the single child process of a dev session.

At most one child is alive at any time: the old one is always reaped before a
new one is spawned. Restart requests are coalesced by a short settle delay and
a generation counter; an attempt whose generation is no longer the latest is
dropped silently because a newer attempt will finish the work.
"""

import asyncio
import logging
import os
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from devloop_core.notifier import DevNotifier, NoOpNotifier

logger = logging.getLogger(__name__)

RESTART_SETTLE_DELAY = 0.2
"""Seconds to wait for further restart requests before spawning."""

DEFAULT_KILL_TIMEOUT = 10.0
"""Seconds to wait for a terminated child before killing it."""

Spawner = Callable[[str], Awaitable[asyncio.subprocess.Process]]


async def spawn_shell(command: str) -> asyncio.subprocess.Process:
    """Spawn `command` through the shell with the supervisor's own stdout/stderr.

    On POSIX the child leads its own process group so that signals reach the
    program behind the shell as well.
    """
    kwargs = {"start_new_session": True} if os.name == "posix" else {}
    return await asyncio.create_subprocess_shell(command, stdout=None, stderr=None, **kwargs)


@dataclass
class SupervisorState:
    """Mutable supervisor state, owned by one ProcessSupervisor."""

    process: asyncio.subprocess.Process | None = None
    """Currently running child, if any."""

    generation: int = 0
    """Incremented on every restart request."""

    spawned_generation: int | None = None
    """Generation the last spawn was performed for."""

    restarts: int = 0
    """Number of completed spawns."""

    closed: bool = False
    """Set by stop(); no process is spawned afterwards."""


class ProcessSupervisor:
    """Start, stop and restart the application under development."""

    def __init__(
        self,
        command: str,
        notifier: DevNotifier | None = None,
        settle_delay: float = RESTART_SETTLE_DELAY,
        kill_timeout: float | None = DEFAULT_KILL_TIMEOUT,
        spawner: Spawner | None = None,
        state: SupervisorState | None = None,
    ):
        """Initialize supervisor.

        Args:
            command: Shell command that starts the application
            notifier: User-facing notifications (silent by default)
            settle_delay: Seconds to coalesce restart requests
            kill_timeout: Seconds before a hanging child is killed; None waits forever
            spawner: Coroutine function creating the child process (defaults to spawn_shell)
            state: Explicit state object, created when omitted
        """
        self.command = command
        self.notifier = notifier or NoOpNotifier()
        self.settle_delay = settle_delay
        self.kill_timeout = kill_timeout
        self.spawner = spawner or spawn_shell
        self.state = state or SupervisorState()
        # Only children from spawn_shell lead their own process group
        self._signal_group = spawner is None and os.name == "posix"
        self._monitors: set[asyncio.Task] = set()
        self._stopped: set[asyncio.subprocess.Process] = set()

    @property
    def is_running(self) -> bool:
        process = self.state.process
        return process is not None and process.returncode is None

    async def start(self, command: str | None = None) -> bool:
        """Spawn the child, replacing the command when one is given.

        Returns:
            True if a process was spawned, False if the attempt went stale
        """
        if command is not None:
            self.command = command
        return await self.spawn_latest()

    async def request_restart(self) -> bool:
        """Stop the current child and spawn a new one unless a newer request supersedes this one."""
        generation = await self.begin_restart()
        return await self._spawn_if_current(generation)

    async def begin_restart(self) -> int:
        """Kill phase: bump the generation and reap the running child.

        Returns:
            The generation of this request
        """
        self.state.generation += 1
        generation = self.state.generation
        logger.debug(f"Restart requested (generation {generation})")
        if self.state.process is not None:
            self.notifier.warning("Restarting dev server...")
            await self._terminate_current()
        return generation

    async def spawn_latest(self) -> bool:
        """Spawn phase for the newest request."""
        return await self._spawn_if_current(self.state.generation)

    async def spawn_for(self, generation: int) -> bool:
        """Spawn phase for the request that returned `generation` from begin_restart().

        Returns:
            True if a process was spawned, False if a newer request superseded this one
        """
        return await self._spawn_if_current(generation)

    def _is_stale(self, generation: int) -> bool:
        if self.state.closed:
            logger.debug(f"Supervisor stopped, dropping spawn (generation {generation})")
            return True
        if generation != self.state.generation:
            logger.debug(f"Dropping stale restart (generation {generation}, latest {self.state.generation})")
            return True
        return False

    async def _spawn_if_current(self, generation: int) -> bool:
        await asyncio.sleep(self.settle_delay)
        if self._is_stale(generation):
            return False

        if self.state.process is not None:
            await self._terminate_current()
            if self._is_stale(generation):
                return False

        self.notifier.info(f"Executing: {self.command}\n")
        self.state.spawned_generation = generation
        try:
            process = await self.spawner(self.command)
        except Exception:
            self.state.spawned_generation = None
            raise
        self.state.process = process
        if self.state.closed:
            # stop() ran while the child was being created
            logger.debug(f"Supervisor stopped during spawn, terminating process {process.pid}")
            await self._terminate_current()
            self._stopped.discard(process)
            return False
        self.state.restarts += 1
        logger.info(f"Started process {process.pid} (generation {generation})")

        monitor = asyncio.get_running_loop().create_task(self._monitor(process))
        self._monitors.add(monitor)
        monitor.add_done_callback(self._monitors.discard)
        return True

    async def _monitor(self, process: asyncio.subprocess.Process) -> None:
        """Report children that exit on their own. They are not restarted automatically."""
        returncode = await process.wait()
        if process in self._stopped:
            self._stopped.discard(process)
            return
        if self.state.process is process:
            self.state.process = None
        if returncode == 0:
            logger.info(f"Process {process.pid} exited")
        else:
            logger.warning(f"Process {process.pid} exited with code {returncode}")
            self.notifier.error(f"Dev server exited with code {returncode}")

    def _signal(self, process: asyncio.subprocess.Process, force: bool = False) -> None:
        if process.returncode is not None:
            return
        try:
            if self._signal_group:
                os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
            elif force:
                process.kill()
            else:
                process.terminate()
        except ProcessLookupError:
            pass

    async def _terminate_current(self) -> None:
        """Terminate the current child and wait for its exit. The handle is released once."""
        process = self.state.process
        if process is None:
            return
        # A concurrent request may already be stopping this child
        if process.returncode is None and process not in self._stopped:
            self._stopped.add(process)
            self._signal(process)
        if self.kill_timeout is None:
            await process.wait()
        else:
            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Process {process.pid} did not exit after {self.kill_timeout}s, killing it")
                self._signal(process, force=True)
                await process.wait()
        if self.state.process is process:
            self.state.process = None
            logger.debug(f"Process {process.pid} stopped")

    async def stop(self) -> None:
        """Terminate the child for session shutdown; pending and later spawns are dropped."""
        self.state.closed = True
        self.state.generation += 1
        await self._terminate_current()
        for monitor in list(self._monitors):
            monitor.cancel()
