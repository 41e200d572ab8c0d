"""
Bounded output pipeline owned by the Terminal.

Shell output enters a write-queue that admits or drops whole items, and a
render tick moves at most one item per tick into the rendered-output store,
which evicts its oldest entries to stay inside both of its bounds.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass

from ui.nodes import Converter, RenderNode, text_to_nodes
from ui.surface import RenderSurface

from .messages import OutputEvent, OutputKind
from .schemas import TerminalConfig

logger = logging.getLogger(__name__)


def _check_bounds(max_entries: int, max_chars: int) -> None:
    if max_entries <= 0:
        raise ValueError("max_entries must be positive")
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")


@dataclass(frozen=True)
class WriteQueueItem:
    kind: OutputKind
    nodes: tuple[RenderNode, ...]
    source_length: int


class WriteQueue:
    """FIFO of converted output with an entry bound and a character bound.

    Admission is all or nothing: an item that would break either bound is
    dropped and the queue is left untouched.
    """

    def __init__(self, max_entries: int, max_chars: int) -> None:
        _check_bounds(max_entries, max_chars)
        self.max_entries = max_entries
        self.max_chars = max_chars
        self.dropped_items = 0
        self._items: deque[WriteQueueItem] = deque()
        self._chars = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def chars(self) -> int:
        return self._chars

    def admits(self, source_length: int) -> bool:
        return (
            len(self._items) + 1 <= self.max_entries
            and self._chars + source_length <= self.max_chars
        )

    def offer(self, item: WriteQueueItem) -> bool:
        if not self.admits(item.source_length):
            self.reject(item.kind, item.source_length)
            return False
        self._items.append(item)
        self._chars += item.source_length
        return True

    def reject(self, kind: OutputKind, source_length: int) -> None:
        self.dropped_items += 1
        logger.debug(
            "Dropped %s item of %d chars (queue: %d entries, %d chars)",
            kind.value,
            source_length,
            len(self._items),
            self._chars,
        )

    def pop(self) -> WriteQueueItem | None:
        if not self._items:
            return None
        item = self._items.popleft()
        self._chars -= item.source_length
        return item


class RenderedOutputStore:
    """Ordered rendered nodes, oldest first, bounded by count and characters."""

    def __init__(self, max_entries: int, max_chars: int) -> None:
        _check_bounds(max_entries, max_chars)
        self.max_entries = max_entries
        self.max_chars = max_chars
        self.evicted_entries = 0
        self._nodes: deque[RenderNode] = deque()
        self._chars = 0

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def entry_count(self) -> int:
        return len(self._nodes)

    @property
    def chars(self) -> int:
        return self._chars

    @property
    def nodes(self) -> tuple[RenderNode, ...]:
        return tuple(self._nodes)

    def first(self) -> RenderNode | None:
        return self._nodes[0] if self._nodes else None

    def last(self) -> RenderNode | None:
        return self._nodes[-1] if self._nodes else None

    def _fit_incoming(self, incoming: Sequence[RenderNode]) -> list[RenderNode]:
        # Newest nodes win when the item alone breaks a bound.
        kept: list[RenderNode] = []
        chars = 0
        for node in reversed(incoming):
            if len(kept) + 1 > self.max_entries or chars + len(node) > self.max_chars:
                break
            kept.append(node)
            chars += len(node)
        kept.reverse()
        discarded = len(incoming) - len(kept)
        if discarded:
            self.evicted_entries += discarded
            logger.debug("Discarded %d incoming node(s) that exceed the output bounds", discarded)
        return kept

    def append(self, incoming: Sequence[RenderNode]) -> tuple[int, list[RenderNode]]:
        """Evict oldest-first until `incoming` fits, then append it.

        Returns the number of existing entries evicted and the incoming nodes
        actually appended.
        """
        kept = self._fit_incoming(incoming)
        incoming_chars = sum(len(node) for node in kept)
        evicted = 0
        while self._nodes and (
            len(self._nodes) + len(kept) > self.max_entries
            or self._chars + incoming_chars > self.max_chars
        ):
            node = self._nodes.popleft()
            self._chars -= len(node)
            evicted += 1
        if evicted:
            self.evicted_entries += evicted
            logger.debug("Evicted %d rendered entr%s", evicted, "y" if evicted == 1 else "ies")
        self._nodes.extend(kept)
        self._chars += incoming_chars
        return evicted, kept


class OutputPipeline:
    """Write-queue plus rendered store, mirrored onto a render surface."""

    def __init__(
        self,
        config: TerminalConfig,
        surface: RenderSurface,
        converter: Converter = text_to_nodes,
    ) -> None:
        self.surface = surface
        self.converter = converter
        self.queue = WriteQueue(config.max_write_queue_entries, config.max_write_queue_chars)
        self.store = RenderedOutputStore(config.max_output_entries, config.max_output_chars)

    def receive(self, event: OutputEvent) -> bool:
        """Queue one shell output event; returns False when it was dropped."""
        length = len(event.text)
        if not self.queue.admits(length):
            self.queue.reject(event.kind, length)
            return False
        nodes = self.converter(event.text, event.kind)
        admitted = self.queue.offer(WriteQueueItem(event.kind, tuple(nodes), length))
        if admitted:
            self.surface.set_pending(True)
        return admitted

    def drain_one(self) -> bool:
        """Render at most one queued item. Returns False if the queue was empty."""
        item = self.queue.pop()
        if item is None:
            return False
        evicted, appended = self.store.append(item.nodes)
        if evicted:
            self.surface.remove_first(evicted)
        if appended:
            self.surface.append(appended)
        last = self.store.last()
        if last is not None:
            self.surface.scroll_to(last)
        if not self.queue:
            self.surface.set_pending(False)
        return True

    def drain_all(self) -> int:
        drained = 0
        while self.drain_one():
            drained += 1
        return drained

    def jump_to_first(self) -> bool:
        node = self.store.first()
        if node is None:
            return False
        self.surface.scroll_to(node)
        return True

    def jump_to_last(self) -> bool:
        node = self.store.last()
        if node is None:
            return False
        self.surface.scroll_to(node)
        return True

    @property
    def pending(self) -> int:
        return len(self.queue)
