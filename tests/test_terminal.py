import asyncio

import pytest

from ui.surface import MemorySurface
from webshell_core.errors import ActorFailure, ConfigurationError, EngineAcquisitionError
from webshell_core.messages import (
    ChildFailed,
    ChildFinished,
    ClearInput,
    Exit,
    InputText,
    JumpToFirst,
    JumpToLast,
    OutputKind,
    Pause,
    PrintOutput,
    Resume,
    SubmitCommand,
    TakeConfig,
)
from webshell_core.schemas import ExecutionLimits, ShellConfig, TerminalConfig
from webshell_core.shell import Shell
from webshell_core.terminal import Terminal

ECHO = ShellConfig(kind="echo")


async def _running_terminal(probe, eventually, surface, config=None, shell_factory=None) -> Terminal:
    terminal = Terminal()
    probe.spawn(terminal)
    terminal.send(TakeConfig(surface, config or TerminalConfig(shell=ECHO), shell_factory))
    await eventually(lambda: terminal.state == "running" and surface.input_enabled)
    return terminal


async def _exit(probe, terminal: Terminal) -> None:
    terminal.send(Exit())
    await probe.wait_for(ChildFinished)


@pytest.mark.asyncio
async def test_startup_unlocks_input_and_reads_prompt(probe, eventually) -> None:
    surface = MemorySurface()
    terminal = await _running_terminal(probe, eventually, surface)

    assert surface.input_history[0] is False
    await eventually(lambda: surface.prompt == "WebShell")
    assert terminal.prompt == "WebShell"
    await _exit(probe, terminal)


@pytest.mark.asyncio
async def test_submit_renders_echo_and_output(probe, eventually) -> None:
    surface = MemorySurface()
    terminal = await _running_terminal(probe, eventually, surface)

    terminal.send(SubmitCommand("hi"))

    await eventually(lambda: len(surface.nodes) == 2)
    assert surface.texts() == ["hi", "hi  \n***  "]
    assert [node.kind for node in surface.nodes] == [OutputKind.COMMAND_ECHO, OutputKind.OUTPUT]
    await eventually(lambda: surface.input_enabled)
    await _exit(probe, terminal)


@pytest.mark.asyncio
async def test_blank_submission_is_ignored(probe, eventually, gated_shell) -> None:
    surface = MemorySurface()
    terminal = await _running_terminal(probe, eventually, surface, shell_factory=lambda _: gated_shell)

    terminal.send(SubmitCommand("   "))
    await asyncio.sleep(0.05)

    assert gated_shell.commands == []
    assert terminal.input_locked is False
    await _exit(probe, terminal)


@pytest.mark.asyncio
async def test_locked_terminal_does_not_forward_submissions(probe, eventually, gated_shell) -> None:
    surface = MemorySurface()
    terminal = await _running_terminal(probe, eventually, surface, shell_factory=lambda _: gated_shell)

    terminal.send(SubmitCommand("first"))
    await eventually(lambda: gated_shell.commands == ["first"])
    assert terminal.input_locked is True
    assert surface.input_enabled is False

    terminal.send(SubmitCommand("second"))
    terminal.send(InputText("typed while locked"))
    await asyncio.sleep(0.05)
    assert gated_shell.commands == ["first"]
    assert terminal.input_buffer == ""

    gated_shell.gate.set()
    await eventually(lambda: surface.input_enabled)
    await eventually(lambda: len(surface.nodes) == 2)
    assert surface.texts()[0] == "first"
    assert gated_shell.commands == ["first"]
    await _exit(probe, terminal)


@pytest.mark.asyncio
async def test_input_buffer_is_submitted_and_cleared(probe, eventually) -> None:
    surface = MemorySurface()
    terminal = await _running_terminal(probe, eventually, surface)

    terminal.send(InputText("junk"))
    terminal.send(ClearInput())
    terminal.send(InputText("1 +"))
    terminal.send(InputText(" 1"))
    terminal.send(SubmitCommand())

    await eventually(lambda: len(surface.nodes) == 2)
    assert surface.texts()[0] == "1 + 1"
    assert terminal.input_buffer == ""
    await _exit(probe, terminal)


@pytest.mark.asyncio
async def test_write_queue_drops_when_full(probe, eventually) -> None:
    surface = MemorySurface()
    config = TerminalConfig(max_write_queue_entries=1, write_output_interval_ms=60_000, shell=ECHO)
    terminal = await _running_terminal(probe, eventually, surface, config)

    terminal.send(PrintOutput("one"))
    terminal.send(PrintOutput("two"))

    await eventually(lambda: terminal.pipeline is not None and terminal.pipeline.queue.dropped_items == 1)
    assert terminal.pipeline.pending == 1
    assert surface.nodes == []

    await _exit(probe, terminal)
    assert surface.texts() == ["one"]


@pytest.mark.asyncio
async def test_pause_stops_rendering_until_resume(probe, eventually) -> None:
    surface = MemorySurface()
    config = TerminalConfig(write_output_interval_ms=5, shell=ECHO)
    terminal = await _running_terminal(probe, eventually, surface, config)

    terminal.send(Pause())
    await eventually(lambda: terminal.state == "paused")
    terminal.send(PrintOutput("queued"))
    await asyncio.sleep(0.05)
    assert surface.nodes == []
    assert terminal.pipeline is not None and terminal.pipeline.pending == 1

    terminal.send(Resume())
    await eventually(lambda: surface.texts() == ["queued"])
    await _exit(probe, terminal)


@pytest.mark.asyncio
async def test_jumps_scroll_only_when_output_exists(probe, eventually) -> None:
    surface = MemorySurface()
    terminal = await _running_terminal(probe, eventually, surface)

    terminal.send(JumpToFirst())
    terminal.send(JumpToLast())
    await asyncio.sleep(0.02)
    assert surface.scrolled == []

    terminal.send(PrintOutput("top\n\nbottom"))
    await eventually(lambda: len(surface.nodes) == 2)
    terminal.send(JumpToFirst())
    await eventually(lambda: surface.scrolled[-1].text == "top")
    terminal.send(JumpToLast())
    await eventually(lambda: surface.scrolled[-1].text == "bottom")
    await _exit(probe, terminal)


@pytest.mark.asyncio
async def test_exit_waits_for_shell_then_closes_surface(probe, eventually) -> None:
    surface = MemorySurface()
    config = TerminalConfig(write_output_interval_ms=60_000, shell=ECHO)
    terminal = await _running_terminal(probe, eventually, surface, config)
    shell = terminal.children["shell"]
    terminal.send(PrintOutput("pending"))

    terminal.send(Exit())
    finished = await probe.wait_for(ChildFinished)

    assert finished == [ChildFinished("terminal")]
    assert shell.is_finished
    assert surface.closed is True
    assert surface.texts() == ["pending"]
    assert terminal._timer is None


@pytest.mark.asyncio
async def test_exit_before_config_finishes_terminal(probe) -> None:
    terminal = Terminal()
    probe.spawn(terminal)

    terminal.send(Exit())
    finished = await probe.wait_for(ChildFinished)

    assert finished == [ChildFinished("terminal")]
    assert terminal.state == "fin"
    assert terminal.children == {}
    assert terminal.send(TakeConfig(MemorySurface(), TerminalConfig(shell=ECHO))) is False


@pytest.mark.asyncio
async def test_missing_root_is_a_configuration_error(probe) -> None:
    terminal = Terminal()
    probe.spawn(terminal)
    terminal.send(TakeConfig(None, TerminalConfig()))

    failed = await probe.wait_for(ChildFailed)

    assert isinstance(failed[0].error, ConfigurationError)


@pytest.mark.asyncio
async def test_invalid_limits_are_a_configuration_error(probe) -> None:
    terminal = Terminal()
    probe.spawn(terminal)
    terminal.send(TakeConfig(MemorySurface(), {"max_output_entries": 0}))

    failed = await probe.wait_for(ChildFailed)

    assert isinstance(failed[0].error, ConfigurationError)


@pytest.mark.asyncio
async def test_shell_failure_propagates(probe, failing_engine) -> None:
    surface = MemorySurface()
    terminal = Terminal()
    probe.spawn(terminal)
    terminal.send(TakeConfig(surface, TerminalConfig(), lambda _: Shell(engine=failing_engine)))

    failed = await probe.wait_for(ChildFailed)

    error = failed[0].error
    assert isinstance(error, ActorFailure)
    assert error.actor_name == "shell"
    assert isinstance(error.cause, EngineAcquisitionError)
    assert surface.closed is True
    assert surface.input_enabled is False


@pytest.mark.asyncio
async def test_sandbox_shell_end_to_end(probe, eventually) -> None:
    surface = MemorySurface()
    config = TerminalConfig(
        write_output_interval_ms=5,
        shell=ShellConfig(limits=ExecutionLimits(deadline_ms=100)),
    )
    terminal = await _running_terminal(probe, eventually, surface, config)

    terminal.send(SubmitCommand("while True: pass"))
    await eventually(lambda: any(n.kind == OutputKind.ERROR for n in surface.nodes))
    await eventually(lambda: surface.input_enabled)

    terminal.send(SubmitCommand("log('after')"))
    await eventually(lambda: "after" in surface.texts())
    errors = [n.text for n in surface.nodes if n.kind == OutputKind.ERROR]
    assert errors == ["DeadlineExceeded: command interrupted after 100 ms"]
    await _exit(probe, terminal)
