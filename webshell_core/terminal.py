"""Terminal actor: owns the output pipeline, the input lock and the Shell child."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping

from ui.nodes import Converter, text_to_nodes
from ui.surface import RenderSurface

from .actor import Actor, Handler
from .errors import ActorFailure, ConfigurationError
from .messages import (
    ChildFailed,
    ChildFinished,
    ClearInput,
    Configure,
    Exec,
    Exit,
    InputText,
    JumpToFirst,
    JumpToLast,
    LockInput,
    OutputEvent,
    Pause,
    PrintCommand,
    PrintError,
    PrintOutput,
    Prompt,
    ReadPrompt,
    RenderTick,
    Resume,
    ShellReady,
    SubmitCommand,
    TakeConfig,
    UnlockInput,
)
from .pipeline import OutputPipeline
from .schemas import ShellConfig, TerminalConfig
from .shell import Shell, create_shell

logger = logging.getLogger(__name__)

SHELL = "shell"

ShellFactory = Callable[[ShellConfig], Shell]


class Terminal(Actor):
    """
    Run states: awaiting_config -> setting_up -> awaiting_shell_ready ->
    running <-> paused -> exit -> fin.

    The input region is orthogonal to the run state and is either locked or
    unlocked. Command submission is only in the unlocked table, so a locked
    terminal has no handler for it at all.
    """

    name = "terminal"

    def __init__(self, name: str | None = None, converter: Converter = text_to_nodes) -> None:
        super().__init__(name)
        self.converter = converter
        self.config: TerminalConfig | None = None
        self.surface: RenderSurface | None = None
        self.pipeline: OutputPipeline | None = None
        self.input_locked = True
        self.input_buffer = ""
        self.prompt = ""
        self._timer: asyncio.Task[None] | None = None
        self._surface_closed = False

    # --- state tables ---

    def handlers(self) -> Mapping[type, Handler]:
        if self.state == "awaiting_config":
            return {TakeConfig: self._on_take_config, Exit: self._on_exit}
        if self.state == "awaiting_shell_ready":
            return {
                ShellReady: self._on_shell_ready,
                Exit: self._on_exit,
                ChildFailed: self._on_child_failed,
                ChildFinished: self._on_child_finished,
            }
        if self.state in ("running", "paused"):
            table: dict[type, Handler] = {
                PrintCommand: self._on_output,
                PrintOutput: self._on_output,
                PrintError: self._on_output,
                ReadPrompt: self._on_read_prompt,
                JumpToFirst: self._on_jump_to_first,
                JumpToLast: self._on_jump_to_last,
                Exit: self._on_exit,
                ChildFailed: self._on_child_failed,
                ChildFinished: self._on_child_finished,
            }
            if self.state == "running":
                table[RenderTick] = self._on_render_tick
                table[Pause] = self._on_pause
            else:
                table[Resume] = self._on_resume
            table.update(self._input_handlers())
            return table
        if self.state == "exit":
            return {
                PrintCommand: self._on_output,
                PrintOutput: self._on_output,
                PrintError: self._on_output,
                ChildFailed: self._on_child_failed,
                ChildFinished: self._on_child_finished,
            }
        return {}

    def _input_handlers(self) -> Mapping[type, Handler]:
        if self.input_locked:
            return {UnlockInput: self._on_unlock_input}
        return {
            SubmitCommand: self._on_submit,
            InputText: self._on_input_text,
            ClearInput: self._on_clear_input,
            LockInput: self._on_lock_input,
        }

    # --- configuration ---

    def _on_take_config(self, message: TakeConfig) -> None:
        if message.root is None:
            raise ConfigurationError("takeConfig requires a render root")
        self.config = TerminalConfig.coerce(message.config)
        self.surface = message.root
        self.transition("setting_up")
        self.pipeline = OutputPipeline(self.config, self.surface, self.converter)
        self.surface.set_input_enabled(False)
        factory = message.shell_factory or create_shell
        self.spawn(factory(self.config.shell))
        self.send_to(SHELL, Configure(self.config.shell))
        self.transition("awaiting_shell_ready")

    def _on_shell_ready(self, message: ShellReady) -> None:
        self._set_input_locked(False)
        self.transition("running")
        self._start_timer()
        self.send_to(SHELL, Prompt())

    # --- output ---

    def _on_output(self, message: OutputEvent) -> None:
        if self.pipeline is not None:
            self.pipeline.receive(message)

    def _on_render_tick(self, message: RenderTick) -> None:
        if self.pipeline is not None:
            self.pipeline.drain_one()

    def _on_read_prompt(self, message: ReadPrompt) -> None:
        self.prompt = message.prompt
        if self.surface is not None:
            self.surface.set_prompt(message.prompt)

    def _on_jump_to_first(self, message: JumpToFirst) -> None:
        if self.pipeline is not None:
            self.pipeline.jump_to_first()

    def _on_jump_to_last(self, message: JumpToLast) -> None:
        if self.pipeline is not None:
            self.pipeline.jump_to_last()

    def _on_pause(self, message: Pause) -> None:
        self._stop_timer()
        self.transition("paused")

    def _on_resume(self, message: Resume) -> None:
        self.transition("running")
        self._start_timer()

    # --- input region ---

    def _on_submit(self, message: SubmitCommand) -> None:
        command = message.command if message.command is not None else self.input_buffer
        if not command.strip():
            return
        self.input_buffer = ""
        # Locked until the shell's unlockInput for this command arrives.
        self._set_input_locked(True)
        self.send_to(SHELL, Exec(command))

    def _on_input_text(self, message: InputText) -> None:
        self.input_buffer += message.text

    def _on_clear_input(self, message: ClearInput) -> None:
        self.input_buffer = ""

    def _on_lock_input(self, message: LockInput) -> None:
        self._set_input_locked(True)

    def _on_unlock_input(self, message: UnlockInput) -> None:
        self._set_input_locked(False)

    def _set_input_locked(self, locked: bool) -> None:
        self.input_locked = locked
        if self.surface is not None:
            self.surface.set_input_enabled(not locked)

    # --- shutdown and supervision ---

    def _on_exit(self, message: Exit) -> None:
        self.transition("exit")
        self._stop_timer()
        self._set_input_locked(True)
        shell = self.children.get(SHELL)
        if shell is None or shell.is_finished:
            self._complete_shutdown()
        else:
            shell.send(Exit())

    def _on_child_finished(self, message: ChildFinished) -> None:
        if self.state != "exit":
            raise ActorFailure(message.name, RuntimeError(f"{message.name} finished unexpectedly"))
        self._complete_shutdown()

    def _on_child_failed(self, message: ChildFailed) -> None:
        raise ActorFailure(message.name, message.error)

    def _complete_shutdown(self) -> None:
        if self.pipeline is not None:
            drained = self.pipeline.drain_all()
            logger.debug("%s: rendered %d queued item(s) at shutdown", self.name, drained)
        self._close_surface()
        self.finish()

    def _start_timer(self) -> None:
        if self._timer is None and self.config is not None:
            interval = self.config.write_output_interval_ms / 1000
            self._timer = asyncio.get_running_loop().create_task(
                self._tick(interval), name=f"{self.name}:render"
            )

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _tick(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.send(RenderTick())

    def _close_surface(self) -> None:
        if self.surface is not None and not self._surface_closed:
            self._surface_closed = True
            self.surface.close()

    def on_stop(self) -> None:
        self._stop_timer()
        shell = self.children.get(SHELL)
        if shell is not None and not shell.is_finished:
            shell.send(Exit())
        self._close_surface()
