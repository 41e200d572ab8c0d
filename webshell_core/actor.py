"""Minimal asyncio actor: one mailbox, per-state handler tables, supervision."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping

from .messages import ChildFailed, ChildFinished

logger = logging.getLogger(__name__)

Handler = Callable[[object], "Awaitable[None] | None"]


class Actor:
    """
    Base class for the terminal's actors.

    Messages are processed one at a time in arrival order. Which messages an
    actor accepts depends on its current state: `handlers()` returns the
    table for that state and anything else is ignored. When an actor reaches
    `fin` (or a handler raises) its parent is told with ChildFinished or
    ChildFailed.
    """

    name: str = "actor"

    def __init__(self, name: str | None = None) -> None:
        self.name = name or type(self).name
        self.parent: Actor | None = None
        self.children: dict[str, Actor] = {}
        self.state: str = "awaiting_config"
        self.failure: Exception | None = None
        self._mailbox: asyncio.Queue[object] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._finished = False
        self._done = asyncio.Event()

    # --- lifecycle ---

    def start(self) -> Actor:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run(), name=f"actor:{self.name}")
        return self

    def spawn(self, child: Actor) -> Actor:
        child.parent = self
        self.children[child.name] = child
        child.start()
        logger.info("%s spawned %s", self.name, child.name)
        return child

    def finish(self) -> None:
        """Stop after the current message; the state becomes `fin`."""
        self._finished = True

    @property
    def is_finished(self) -> bool:
        return self._finished

    async def wait(self) -> None:
        await self._done.wait()

    def transition(self, state: str) -> None:
        if state != self.state:
            logger.info("%s: %s -> %s", self.name, self.state, state)
            self.state = state

    # --- messaging ---

    def send(self, message: object) -> bool:
        if self._finished:
            logger.debug("%s: dropping %s after fin", self.name, type(message).__name__)
            return False
        self._mailbox.put_nowait(message)
        return True

    def send_parent(self, message: object) -> None:
        if self.parent is not None:
            self.parent.send(message)

    def send_to(self, child_name: str, message: object) -> bool:
        child = self.children.get(child_name)
        if child is None:
            logger.warning("%s: no child named %s", self.name, child_name)
            return False
        return child.send(message)

    def handlers(self) -> Mapping[type, Handler]:
        return {}

    # --- hooks ---

    def on_stop(self) -> None:
        """Release resources owned by the current state. Runs exactly once."""

    # --- internals ---

    async def _dispatch(self, message: object) -> None:
        handler = self.handlers().get(type(message))
        if handler is None:
            logger.debug("%s[%s]: ignoring %s", self.name, self.state, type(message).__name__)
            return
        result = handler(message)
        if inspect.isawaitable(result):
            await result

    async def _run(self) -> None:
        try:
            while not self._finished:
                message = await self._mailbox.get()
                await self._dispatch(message)
        except Exception as exc:
            logger.error("%s failed in state %s: %s", self.name, self.state, exc)
            self.failure = exc
        finally:
            self._finished = True
            self.transition("fin")
            self.on_stop()
            self._done.set()

        if self.failure is not None:
            self.send_parent(ChildFailed(self.name, self.failure))
        else:
            self.send_parent(ChildFinished(self.name))
