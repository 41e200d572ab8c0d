"""Shell actor: owns the script runtime and runs one command at a time."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

from sandbox.engine import ScriptEngine, ScriptRuntime
from sandbox.executor import SandboxExecutor
from sandbox.host import HostStore

from .actor import Actor, Handler
from .errors import FailureAnalyzer
from .messages import (
    Configure,
    Exec,
    Exit,
    LockInput,
    OutputEvent,
    PrintCommand,
    PrintError,
    PrintOutput,
    Prompt,
    ReadPrompt,
    ShellReady,
    UnlockInput,
)
from .schemas import ShellConfig

logger = logging.getLogger(__name__)


class Shell(Actor):
    """
    States: awaiting_config -> setting_up -> ready -> running -> exit -> fin.

    `configure` starts the one-time engine acquisition; a failure there
    escapes the handler and fails the actor, which reports it to the parent.
    Script errors during `exec` are output, never actor failures.
    """

    name = "shell"

    def __init__(self, engine: ScriptEngine | None = None, name: str | None = None) -> None:
        super().__init__(name)
        self.engine = engine or ScriptEngine()
        self.config: ShellConfig | None = None
        self.runtime: ScriptRuntime | None = None
        self.store = HostStore()
        self.locked = False
        self.failures = FailureAnalyzer()
        self._executor: SandboxExecutor | None = None

    def handlers(self) -> Mapping[type, Handler]:
        if self.state == "awaiting_config":
            return {Configure: self._on_configure}
        if self.state == "running":
            return {Exec: self._on_exec, Prompt: self._on_prompt, Exit: self._on_exit}
        return {}

    async def _on_configure(self, message: Configure) -> None:
        self.config = ShellConfig.coerce(message.config if message.config is not None else {})
        self.transition("setting_up")
        await self.set_up()
        self.transition("ready")
        self.send_parent(ShellReady())
        self.transition("running")

    async def set_up(self) -> None:
        limits = self.config.limits if self.config is not None else ShellConfig().limits
        self.runtime = await self.engine.acquire()
        self._executor = SandboxExecutor(self.runtime, limits, self.store)
        logger.info(
            "%s ready (interrupt mode %s)", self.name, limits.interrupt_mode.value
        )

    async def _on_exec(self, message: Exec) -> None:
        self.send_parent(PrintCommand(message.command))
        self._lock()
        try:
            await self.run_command(message.command)
        finally:
            self._unlock()

    async def run_command(self, command: str) -> None:
        if self._executor is None:
            raise RuntimeError(f"{self.name} has no script runtime")
        loop = asyncio.get_running_loop()

        def emit(event: OutputEvent) -> None:
            loop.call_soon_threadsafe(self.send_parent, event)

        result = await asyncio.to_thread(self._executor.execute, command, emit)
        if result.success:
            if result.display is not None:
                self.send_parent(PrintOutput(result.display))
        else:
            error = result.error or "unknown error"
            failure_type = self.failures.record_failure(error)
            logger.info("%s: command failed (%s) after %.1f ms", self.name, failure_type.value, result.runtime_ms)
            self.send_parent(PrintError(error))

    def _on_prompt(self, message: Prompt) -> None:
        prompt = self.config.prompt if self.config is not None else ""
        self.send_parent(ReadPrompt(prompt))

    def _on_exit(self, message: Exit) -> None:
        self.transition("exit")
        self.dispose_runtime()
        self.finish()

    def dispose_runtime(self) -> None:
        if self.runtime is not None:
            self.runtime.dispose()

    def _lock(self) -> None:
        self.locked = True
        self.send_parent(LockInput())

    def _unlock(self) -> None:
        self.locked = False
        self.send_parent(UnlockInput())

    def on_stop(self) -> None:
        self.dispose_runtime()


class EchoShell(Shell):
    """Shell without an engine: echoes each command back as markdown output."""

    async def set_up(self) -> None:
        logger.info("%s ready (echo)", self.name)

    async def run_command(self, command: str) -> None:
        self.send_parent(PrintOutput(f"{command}  \n***  \n"))


def create_shell(config: ShellConfig) -> Shell:
    if config.kind == "echo":
        return EchoShell()
    return Shell()
