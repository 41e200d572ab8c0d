"""Render nodes and the text-to-node converter."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from webshell_core.messages import OutputKind

FENCE = "```"


@dataclass(frozen=True)
class RenderNode:
    kind: OutputKind
    text: str

    def __len__(self) -> int:
        return len(self.text)


Converter = Callable[[str, OutputKind], tuple[RenderNode, ...]]


def _split_blocks(text: str) -> list[str]:
    blocks: list[str] = []
    current: list[str] = []
    in_fence = False
    for line in text.split("\n"):
        if line.strip().startswith(FENCE):
            in_fence = not in_fence
            current.append(line)
            continue
        if not in_fence and not line.strip():
            if current:
                blocks.append("\n".join(current))
                current = []
            continue
        current.append(line)
    if current:
        blocks.append("\n".join(current))
    return blocks


def text_to_nodes(text: str, kind: OutputKind = OutputKind.OUTPUT) -> tuple[RenderNode, ...]:
    """Split markdown-ish text into block nodes.

    Paragraphs are separated by blank lines; fenced code blocks are kept
    whole even when they contain blank lines. Text with no visible blocks
    still renders as a single (possibly empty) node so every admitted item
    produces at least one entry.
    """
    blocks = _split_blocks(text)
    if not blocks:
        return (RenderNode(kind, text.strip()),)
    return tuple(RenderNode(kind, block) for block in blocks)
