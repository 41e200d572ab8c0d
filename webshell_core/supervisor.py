"""Root actor: spawns the Terminal and hands it its one-time configuration."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import cast

from ui.nodes import Converter, text_to_nodes
from ui.surface import RenderSurface

from .actor import Actor, Handler
from .errors import ActorFailure
from .messages import ChildFailed, ChildFinished, Exit, SubmitCommand, TakeConfig
from .schemas import TerminalConfig
from .terminal import ShellFactory, Terminal

logger = logging.getLogger(__name__)

TERMINAL = "terminal"


class Supervisor(Actor):
    """
    Owns the actor tree for one session.

    Usage:
        supervisor = Supervisor(surface, TerminalConfig()).start()
        supervisor.submit("1 + 1")
        await supervisor.shutdown()

    A failure anywhere below is re-raised by `wait()` as ActorFailure.
    """

    name = "supervisor"

    def __init__(
        self,
        root: RenderSurface | None,
        config: TerminalConfig | dict[str, object] | None,
        shell_factory: ShellFactory | None = None,
        converter: Converter = text_to_nodes,
        name: str | None = None,
    ) -> None:
        super().__init__(name)
        self.root = root
        self.config = config
        self.shell_factory = shell_factory
        self.converter = converter

    def start(self) -> Supervisor:
        if self._task is not None:
            return self
        super().start()
        self.spawn(Terminal(converter=self.converter))
        self.send_to(TERMINAL, TakeConfig(self.root, self.config, self.shell_factory))
        self.transition("running")
        return self

    @property
    def terminal(self) -> Terminal:
        return cast(Terminal, self.children[TERMINAL])

    def handlers(self) -> Mapping[type, Handler]:
        if self.state in ("running", "exit"):
            table: dict[type, Handler] = {
                ChildFailed: self._on_child_failed,
                ChildFinished: self._on_child_finished,
            }
            if self.state == "running":
                table[Exit] = self._on_exit
            return table
        return {}

    def submit(self, command: str) -> bool:
        return self.send_to(TERMINAL, SubmitCommand(command))

    def tell(self, message: object) -> bool:
        """Forward a front-end message (navigation, input, pause) to the Terminal."""
        return self.send_to(TERMINAL, message)

    async def shutdown(self) -> None:
        self.send(Exit())
        await self.wait()

    async def wait(self) -> None:
        await super().wait()
        if self.failure is not None:
            if isinstance(self.failure, ActorFailure):
                raise self.failure
            raise ActorFailure(self.name, self.failure)

    def _on_exit(self, message: Exit) -> None:
        self.transition("exit")
        self.send_to(TERMINAL, Exit())

    def _on_child_finished(self, message: ChildFinished) -> None:
        logger.info("%s: %s finished", self.name, message.name)
        self.finish()

    def _on_child_failed(self, message: ChildFailed) -> None:
        if isinstance(message.error, ActorFailure):
            raise message.error
        raise ActorFailure(message.name, message.error)
