"""Shared fixtures for the WebShell test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator

import pytest

from sandbox.engine import ScriptEngine, ScriptRuntime
from webshell_core.actor import Actor
from webshell_core.errors import EngineAcquisitionError
from webshell_core.shell import EchoShell


class Probe(Actor):
    """Stand-in parent that records everything its children send it."""

    name = "probe"

    def __init__(self) -> None:
        super().__init__()
        self.received: list[object] = []
        self._arrived = asyncio.Event()

    def send(self, message: object) -> bool:
        self.received.append(message)
        self._arrived.set()
        return True

    def of_type(self, message_type: type) -> list[object]:
        return [message for message in self.received if isinstance(message, message_type)]

    def types(self) -> list[type]:
        return [type(message) for message in self.received]

    async def wait_for(self, message_type: type, count: int = 1, timeout: float = 5.0) -> list[object]:
        async def _wait() -> None:
            while len(self.of_type(message_type)) < count:
                self._arrived.clear()
                await self._arrived.wait()

        await asyncio.wait_for(_wait(), timeout)
        return self.of_type(message_type)


class FailingEngine(ScriptEngine):
    async def acquire(self) -> ScriptRuntime:
        raise EngineAcquisitionError("no engine available")


class GatedShell(EchoShell):
    """Echo shell that holds each command until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.commands: list[str] = []

    async def run_command(self, command: str) -> None:
        self.commands.append(command)
        await self.gate.wait()
        await super().run_command(command)


@pytest.fixture()
def probe() -> Probe:
    return Probe()


@pytest.fixture()
def runtime() -> Iterator[ScriptRuntime]:
    rt = asyncio.run(ScriptEngine().acquire())
    yield rt
    rt.dispose()


@pytest.fixture()
def eventually() -> Callable[..., Awaitable[None]]:
    async def _eventually(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
        async def _poll() -> None:
            while not predicate():
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout)

    return _eventually


@pytest.fixture()
def failing_engine() -> FailingEngine:
    return FailingEngine()


@pytest.fixture()
def gated_shell() -> GatedShell:
    return GatedShell()
