"""Render surfaces: where drained output nodes end up."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence

import typer

from webshell_core.messages import OutputKind

from .nodes import RenderNode

_COLORS: dict[OutputKind, str] = {
    OutputKind.COMMAND_ECHO: typer.colors.CYAN,
    OutputKind.OUTPUT: typer.colors.WHITE,
    OutputKind.ERROR: typer.colors.RED,
}


class RenderSurface(ABC):
    """Interface the terminal renders through. Only the terminal calls it."""

    @abstractmethod
    def append(self, nodes: Sequence[RenderNode]) -> None:
        """Append nodes after the current last node."""

    @abstractmethod
    def remove_first(self, count: int) -> None:
        """Remove the `count` oldest nodes."""

    def scroll_to(self, node: RenderNode) -> None:
        """Bring a node into view."""

    def set_input_enabled(self, enabled: bool) -> None:
        """Enable or disable text entry and the submit affordance together."""

    def set_prompt(self, prompt: str) -> None:
        """Show the shell prompt."""

    def set_pending(self, pending: bool) -> None:
        """Signal whether output is still waiting in the write-queue."""

    def close(self) -> None:
        """Release the surface. Called once, at terminal shutdown."""


class MemorySurface(RenderSurface):
    """Records every call; the rendered list mirrors the output store."""

    def __init__(self) -> None:
        self.nodes: list[RenderNode] = []
        self.scrolled: list[RenderNode] = []
        self.input_enabled: bool = False
        self.input_history: list[bool] = []
        self.prompt: str = ""
        self.pending: bool = False
        self.closed: bool = False

    def append(self, nodes: Sequence[RenderNode]) -> None:
        self.nodes.extend(nodes)

    def remove_first(self, count: int) -> None:
        del self.nodes[:count]

    def scroll_to(self, node: RenderNode) -> None:
        self.scrolled.append(node)

    def set_input_enabled(self, enabled: bool) -> None:
        self.input_enabled = enabled
        self.input_history.append(enabled)

    def set_prompt(self, prompt: str) -> None:
        self.prompt = prompt

    def set_pending(self, pending: bool) -> None:
        self.pending = pending

    def close(self) -> None:
        self.closed = True

    def texts(self) -> list[str]:
        return [node.text for node in self.nodes]


class ConsoleSurface(RenderSurface):
    """Prints nodes to stdout as they are rendered.

    A terminal cannot un-print lines, so eviction only updates the retained
    count. The asyncio events let a console driver wait until input is
    accepted again and all queued output has been printed.
    """

    def __init__(self, color: bool = True) -> None:
        self.color = color
        self.retained = 0
        self.errors_rendered = 0
        self.prompt = ""
        self._last: RenderNode | None = None
        self.input_ready = asyncio.Event()
        self.drained = asyncio.Event()
        self.drained.set()
        self.closed = asyncio.Event()

    def append(self, nodes: Sequence[RenderNode]) -> None:
        for node in nodes:
            self.retained += 1
            self._last = node
            if node.kind == OutputKind.ERROR:
                self.errors_rendered += 1
            text = f"{self.prompt}> {node.text}" if node.kind == OutputKind.COMMAND_ECHO else node.text
            if self.color:
                typer.secho(text, fg=_COLORS[node.kind], err=node.kind == OutputKind.ERROR)
            else:
                typer.echo(text, err=node.kind == OutputKind.ERROR)

    def remove_first(self, count: int) -> None:
        self.retained = max(0, self.retained - count)

    def scroll_to(self, node: RenderNode) -> None:
        # The newest node is already on screen; anything else is reprinted.
        if node is self._last:
            return
        typer.secho(f"[{node.kind.value}] {node.text}", dim=True)

    def set_input_enabled(self, enabled: bool) -> None:
        if enabled:
            self.input_ready.set()
        else:
            self.input_ready.clear()

    def set_prompt(self, prompt: str) -> None:
        self.prompt = prompt

    def set_pending(self, pending: bool) -> None:
        if pending:
            self.drained.clear()
        else:
            self.drained.set()

    def close(self) -> None:
        self.input_ready.clear()
        self.drained.set()
        self.closed.set()
