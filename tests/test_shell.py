import asyncio

import pytest

from webshell_core.errors import ConfigurationError, EngineAcquisitionError, FailureType
from webshell_core.messages import (
    ChildFailed,
    ChildFinished,
    Configure,
    Exec,
    Exit,
    LockInput,
    PrintCommand,
    PrintError,
    PrintOutput,
    Prompt,
    ReadPrompt,
    ShellReady,
    UnlockInput,
)
from webshell_core.schemas import ExecutionLimits, ShellConfig
from webshell_core.shell import EchoShell, Shell, create_shell


async def _ready_shell(probe, config: ShellConfig | None = None) -> Shell:
    shell = Shell()
    probe.spawn(shell)
    shell.send(Configure(config or ShellConfig()))
    await probe.wait_for(ShellReady)
    return shell


async def _exec(probe, shell: Shell, command: str) -> list[object]:
    already = len(probe.of_type(UnlockInput))
    start = len(probe.received)
    shell.send(Exec(command))
    await probe.wait_for(UnlockInput, count=already + 1)
    return probe.received[start:]


@pytest.mark.asyncio
async def test_configure_reaches_running(probe) -> None:
    shell = await _ready_shell(probe)
    assert shell.state == "running"
    assert shell.runtime is not None
    assert probe.types() == [ShellReady]
    shell.send(Exit())
    await shell.wait()


@pytest.mark.asyncio
async def test_exec_is_bracketed_by_lock_and_unlock(probe) -> None:
    shell = await _ready_shell(probe)

    messages = await _exec(probe, shell, "1 + 1")

    assert messages == [PrintCommand("1 + 1"), LockInput(), PrintOutput("2"), UnlockInput()]
    shell.send(Exit())
    await shell.wait()


@pytest.mark.asyncio
async def test_log_output_arrives_before_unlock(probe) -> None:
    shell = await _ready_shell(probe)

    messages = await _exec(probe, shell, "log('hi')\nlog(42)")

    assert messages[2] == PrintOutput("hi")
    assert isinstance(messages[3], PrintError)
    assert "not a string" in messages[3].text
    assert messages[-1] == UnlockInput()
    shell.send(Exit())
    await shell.wait()


@pytest.mark.asyncio
async def test_script_error_does_not_fail_shell(probe) -> None:
    shell = await _ready_shell(probe)

    messages = await _exec(probe, shell, "1 / 0")
    assert PrintError("ZeroDivisionError: division by zero") in messages
    assert shell.failure is None

    messages = await _exec(probe, shell, "'still alive'")
    assert PrintOutput("'still alive'") in messages
    shell.send(Exit())
    await shell.wait()


@pytest.mark.asyncio
async def test_store_persists_across_commands(probe) -> None:
    shell = await _ready_shell(probe)

    await _exec(probe, shell, "set('n', 41)")
    messages = await _exec(probe, shell, "log(str(get('n') + 1))")

    assert PrintOutput("42") in messages
    shell.send(Exit())
    await shell.wait()


@pytest.mark.asyncio
async def test_no_context_leak_across_outcomes(probe) -> None:
    shell = await _ready_shell(probe, ShellConfig(limits=ExecutionLimits(deadline_ms=100)))

    for command in ("1", "1 / 0", "while True: pass", "import os"):
        await _exec(probe, shell, command)

    runtime = shell.runtime
    assert runtime is not None
    assert runtime.contexts_created == 4
    assert runtime.contexts_disposed == 4
    assert shell.failures.get_failure_stats()[FailureType.TIMEOUT] == 1
    shell.send(Exit())
    await shell.wait()


@pytest.mark.asyncio
async def test_prompt_is_answered(probe) -> None:
    shell = await _ready_shell(probe, ShellConfig(prompt="py"))
    shell.send(Prompt())
    replies = await probe.wait_for(ReadPrompt)
    assert replies == [ReadPrompt("py")]
    shell.send(Exit())
    await shell.wait()


@pytest.mark.asyncio
async def test_exit_disposes_runtime_and_ignores_later_exec(probe) -> None:
    shell = await _ready_shell(probe)
    runtime = shell.runtime

    shell.send(Exit())
    finished = await probe.wait_for(ChildFinished)

    assert finished == [ChildFinished("shell")]
    assert shell.state == "fin"
    assert runtime is not None and runtime.disposed
    assert shell.send(Exec("1")) is False


@pytest.mark.asyncio
async def test_exec_before_configure_is_ignored(probe) -> None:
    shell = Shell()
    probe.spawn(shell)
    shell.send(Exec("1"))
    await asyncio.sleep(0.05)
    assert probe.received == []
    assert shell.state == "awaiting_config"
    shell.send(Configure(ShellConfig()))
    await probe.wait_for(ShellReady)
    shell.send(Exit())
    await shell.wait()


@pytest.mark.asyncio
async def test_engine_failure_is_reported_to_parent(probe, failing_engine) -> None:
    shell = Shell(engine=failing_engine)
    probe.spawn(shell)
    shell.send(Configure(ShellConfig()))

    failed = await probe.wait_for(ChildFailed)

    assert failed[0].name == "shell"
    assert isinstance(failed[0].error, EngineAcquisitionError)
    assert ShellReady not in probe.types()


@pytest.mark.asyncio
async def test_invalid_config_is_reported_to_parent(probe) -> None:
    shell = Shell()
    probe.spawn(shell)
    shell.send(Configure({"limits": {"deadline_ms": -1}}))  # type: ignore[arg-type]

    failed = await probe.wait_for(ChildFailed)

    assert isinstance(failed[0].error, ConfigurationError)


@pytest.mark.asyncio
async def test_echo_shell_echoes_with_separator(probe) -> None:
    shell = create_shell(ShellConfig(kind="echo"))
    assert isinstance(shell, EchoShell)
    probe.spawn(shell)
    shell.send(Configure(ShellConfig(kind="echo")))
    await probe.wait_for(ShellReady)

    messages = await _exec(probe, shell, "hello")

    assert messages == [PrintCommand("hello"), LockInput(), PrintOutput("hello  \n***  \n"), UnlockInput()]
    shell.send(Exit())
    await shell.wait()
