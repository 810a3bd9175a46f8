"""Pytest configuration and fixtures."""

import asyncio
import itertools
import sys
from pathlib import Path

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    _pids = itertools.count(1000)

    def __init__(self, command: str, exit_delay: float = 0.0, ignore_terminate: bool = False):
        self.command = command
        self.pid = next(self._pids)
        self.returncode = None
        self.exit_delay = exit_delay
        self.ignore_terminate = ignore_terminate
        self.signals: list[str] = []
        self._exited = asyncio.Event()

    def _exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self._exited.set()

    def terminate(self) -> None:
        self.signals.append("TERM")
        if not self.ignore_terminate:
            asyncio.get_running_loop().call_later(self.exit_delay, self._exit, -15)

    def kill(self) -> None:
        self.signals.append("KILL")
        self._exit(-9)

    def crash(self, code: int = 1) -> None:
        self._exit(code)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Spawner recording every process it creates."""

    def __init__(self, exit_delay: float = 0.0, ignore_terminate: bool = False, error: Exception | None = None):
        self.exit_delay = exit_delay
        self.ignore_terminate = ignore_terminate
        self.error = error
        self.spawned: list[FakeProcess] = []
        self.alive_at_spawn: list[int] = []

    async def __call__(self, command: str) -> FakeProcess:
        if self.error is not None:
            raise self.error
        self.alive_at_spawn.append(sum(1 for p in self.spawned if p.returncode is None))
        process = FakeProcess(command, exit_delay=self.exit_delay, ignore_terminate=self.ignore_terminate)
        self.spawned.append(process)
        return process


class FakeSupervisor:
    """Records the calls a session makes on its supervisor."""

    def __init__(self):
        self.calls: list[str] = []
        self.generation = 0
        self.spawned_for: list[int] = []

    async def start(self, command=None) -> bool:
        self.calls.append("start")
        return True

    async def begin_restart(self) -> int:
        self.calls.append("begin_restart")
        self.generation += 1
        return self.generation

    async def spawn_for(self, generation: int) -> bool:
        self.calls.append("spawn_for")
        self.spawned_for.append(generation)
        return generation == self.generation

    async def stop(self) -> None:
        self.calls.append("stop")


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def fake_supervisor():
    return FakeSupervisor()
