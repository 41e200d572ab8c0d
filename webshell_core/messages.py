"""Message protocol exchanged between the Supervisor, Terminal and Shell actors."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from ui.surface import RenderSurface
    from webshell_core.schemas import ShellConfig, TerminalConfig
    from webshell_core.shell import Shell


class OutputKind(str, Enum):
    COMMAND_ECHO = "command"
    OUTPUT = "output"
    ERROR = "error"


# --- Shell -> Terminal ---


@dataclass(frozen=True)
class OutputEvent:
    text: str
    kind: ClassVar[OutputKind] = OutputKind.OUTPUT


@dataclass(frozen=True)
class PrintCommand(OutputEvent):
    kind: ClassVar[OutputKind] = OutputKind.COMMAND_ECHO


@dataclass(frozen=True)
class PrintOutput(OutputEvent):
    kind: ClassVar[OutputKind] = OutputKind.OUTPUT


@dataclass(frozen=True)
class PrintError(OutputEvent):
    kind: ClassVar[OutputKind] = OutputKind.ERROR


@dataclass(frozen=True)
class ShellReady:
    pass


@dataclass(frozen=True)
class LockInput:
    pass


@dataclass(frozen=True)
class UnlockInput:
    pass


@dataclass(frozen=True)
class ReadPrompt:
    prompt: str


# --- Terminal -> Shell ---


@dataclass(frozen=True)
class Configure:
    config: ShellConfig | None = None


@dataclass(frozen=True)
class Exec:
    command: str


@dataclass(frozen=True)
class Prompt:
    pass


# --- parent -> Terminal ---


@dataclass(frozen=True)
class TakeConfig:
    root: RenderSurface | None
    config: TerminalConfig | dict[str, object] | None
    shell_factory: Callable[[ShellConfig], Shell] | None = None


# --- front end -> Terminal ---


@dataclass(frozen=True)
class SubmitCommand:
    command: str | None = None


@dataclass(frozen=True)
class InputText:
    text: str


@dataclass(frozen=True)
class ClearInput:
    pass


@dataclass(frozen=True)
class JumpToFirst:
    pass


@dataclass(frozen=True)
class JumpToLast:
    pass


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class RenderTick:
    pass


# --- either direction ---


@dataclass(frozen=True)
class Exit:
    pass


# --- supervision ---


@dataclass(frozen=True)
class ChildFinished:
    name: str


@dataclass(frozen=True)
class ChildFailed:
    name: str
    error: BaseException = field(compare=False)

