"""Console session: drives a Supervisor from stdin and renders to stdout."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterable

import typer

from ui.surface import ConsoleSurface
from webshell_core.messages import JumpToFirst, JumpToLast
from webshell_core.schemas import SessionConfig
from webshell_core.supervisor import Supervisor
from webshell_core.terminal import ShellFactory

CONTINUATION = "\\"
NAVIGATION = {":top": JumpToFirst, ":bottom": JumpToLast}
EXIT_COMMANDS = (":exit", ":quit")


class SessionClosed(Exception):
    """The actor tree stopped while the session was waiting on it."""


class ConsoleSession:
    """
    One Supervisor -> Terminal -> Shell tree attached to the console.

    Waiting is driven by the surface's events: `input_ready` is set when the
    terminal unlocks input and `drained` once the write-queue is empty.
    """

    def __init__(
        self,
        config: SessionConfig,
        surface: ConsoleSurface | None = None,
        shell_factory: ShellFactory | None = None,
    ) -> None:
        self.config = config
        self.surface = surface or ConsoleSurface()
        self.shell_factory = shell_factory
        self.supervisor: Supervisor | None = None
        self._stopped: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self.supervisor = Supervisor(self.surface, self.config.terminal, self.shell_factory).start()
        self._stopped = asyncio.ensure_future(self.supervisor.wait())
        await self._wait_for(self.surface.input_ready)

    async def execute(self, command: str) -> None:
        """Submit one command and wait until its output has been rendered."""
        supervisor = self._require_started()
        if not command.strip():
            return
        self.surface.input_ready.clear()
        supervisor.submit(command)
        await self._wait_for(self.surface.input_ready)
        await self._wait_for(self.surface.drained)

    def navigate(self, command: str) -> None:
        self._require_started().tell(NAVIGATION[command]())

    async def close(self) -> None:
        if self.supervisor is None:
            return
        await self.supervisor.shutdown()

    async def run_commands(self, commands: Iterable[str]) -> int:
        """Run commands in order; returns the number of errors rendered."""
        await self.start()
        try:
            for command in commands:
                await self.execute(command)
        finally:
            await self.close()
        return self.surface.errors_rendered

    async def interactive(self) -> None:
        await self.start()
        try:
            while True:
                command = await self._read_command()
                if command is None or command.strip() in EXIT_COMMANDS:
                    break
                if command.strip() in NAVIGATION:
                    self.navigate(command.strip())
                    continue
                if not command.strip():
                    continue
                await self.execute(command)
        finally:
            await self.close()

    async def _read_command(self) -> str | None:
        lines: list[str] = []
        prompt = f"{self.surface.prompt or self.config.terminal.shell.prompt}> "
        while True:
            typer.echo(prompt, nl=False)
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                return "\n".join(lines) if lines else None
            line = line.rstrip("\n")
            if line.endswith(CONTINUATION):
                lines.append(line[: -len(CONTINUATION)])
                prompt = "... "
                continue
            lines.append(line)
            return "\n".join(lines)

    async def _wait_for(self, event: asyncio.Event) -> None:
        if self._stopped is None:
            raise SessionClosed("session has not been started")
        if event.is_set():
            return
        waiter = asyncio.ensure_future(event.wait())
        done, _ = await asyncio.wait({waiter, self._stopped}, return_when=asyncio.FIRST_COMPLETED)
        if waiter in done:
            return
        waiter.cancel()
        # Re-raises ActorFailure when the tree stopped because of a failure.
        self._stopped.result()
        raise SessionClosed("session closed while waiting for the terminal")

    def _require_started(self) -> Supervisor:
        if self.supervisor is None:
            raise SessionClosed("session has not been started")
        return self.supervisor


def run_interactive(config: SessionConfig, shell_factory: ShellFactory | None = None) -> None:
    asyncio.run(ConsoleSession(config, shell_factory=shell_factory).interactive())


def run_commands(
    config: SessionConfig,
    commands: Iterable[str],
    surface: ConsoleSurface | None = None,
) -> int:
    session = ConsoleSession(config, surface=surface)
    return asyncio.run(session.run_commands(commands))
