"""
Script engine for sandboxed commands.

A ScriptRuntime owns the resource limits and the interrupt policy; each
command runs in a ScriptContext, which holds the host functions bound for
that command. Evaluation happens in a child interpreter (see
sandbox.protocol): the child enforces the stack limit and the interrupt
policy at trace checkpoints, the operating system caps its memory and CPU
time, and the host kills it once a deadline has run out.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Protocol, TypeVar, cast

from webshell_core.errors import EngineAcquisitionError, RuntimeDisposedError

from sandbox import policy, protocol
from sandbox.protocol import ABORTS, STACK_BYTES_PER_FRAME, CpuLimitExceeded, EvaluationAborted, Interrupted

logger = logging.getLogger(__name__)

# Time a child gets past its deadline to stop on its own before it is killed.
KILL_GRACE_MS = 500

DEFAULT_CPU_LIMIT_SECONDS = 10
ACQUIRE_TIMEOUT_SECONDS = 30.0


class Disposable(Protocol):
    def dispose(self) -> None:
        ...


TDisposable = TypeVar("TDisposable", bound=Disposable)


@dataclass(frozen=True)
class DeadlineInterrupt:
    """Abort once `deadline_ms` of wall-clock time has passed."""

    deadline_ms: int

    def to_wire(self) -> dict[str, object]:
        return {"mode": "deadline", "deadline_ms": self.deadline_ms}

    @property
    def kill_after(self) -> float | None:
        return (self.deadline_ms + KILL_GRACE_MS) / 1000


@dataclass(frozen=True)
class CycleInterrupt:
    """Abort at the first checkpoint after `cycle_limit` checkpoints."""

    cycle_limit: int

    def to_wire(self) -> dict[str, object]:
        return {"mode": "cycles", "cycle_limit": self.cycle_limit}

    @property
    def kill_after(self) -> float | None:
        return None


InterruptPolicy = DeadlineInterrupt | CycleInterrupt


@dataclass(frozen=True)
class EvalResult:
    ok: bool
    display: str | None = None
    error: str | None = None
    aborted: type[EvaluationAborted] | None = None
    interrupt_checks: int = 0


class Scope:
    """Guaranteed release of every handle it manages, newest first."""

    def __init__(self) -> None:
        self._managed: list[Disposable] = []

    def manage(self, handle: TDisposable) -> TDisposable:
        self._managed.append(handle)
        return handle

    def dispose(self) -> None:
        while self._managed:
            handle = self._managed.pop()
            try:
                handle.dispose()
            except Exception:  # noqa: BLE001 - keep releasing the rest
                logger.exception("Failed to dispose %r", handle)

    def __enter__(self) -> "Scope":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


class HostFunction:
    """Host callable bound into a context; dead once disposed."""

    def __init__(self, name: str, fn: Callable[..., object]) -> None:
        self.name = name
        self._fn: Callable[..., object] | None = fn

    def __call__(self, *args: object) -> object:
        if self._fn is None:
            raise RuntimeError(f"host function '{self.name}' has been disposed")
        return self._fn(*args)

    def dispose(self) -> None:
        self._fn = None

    def __repr__(self) -> str:
        return f"<host function {self.name}>"


def child_env() -> dict[str, str]:
    """Environment for sandbox children: the project root on PYTHONPATH."""
    env = os.environ.copy()
    project_root = str(Path(__file__).resolve().parents[1])
    existing_pythonpath = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = (
        f"{project_root}{os.pathsep}{existing_pythonpath}"
        if existing_pythonpath
        else project_root
    )
    return env


class _SandboxProcess:
    """One child interpreter running one evaluation."""

    def __init__(self, request: dict[str, object], kill_after: float | None) -> None:
        self.request = request
        self.kill_after = kill_after
        self.killed = threading.Event()
        self._process: subprocess.Popen[str] | None = None
        self._watchdog: threading.Timer | None = None

    def __enter__(self) -> _SandboxProcess:
        self._process = subprocess.Popen(
            [sys.executable, "-c", protocol.CHILD_TEMPLATE],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=child_env(),
        )
        if self.kill_after is not None:
            self._watchdog = threading.Timer(self.kill_after, self._kill)
            self._watchdog.daemon = True
            self._watchdog.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
        process = self._process
        if process is None:
            return
        if process.poll() is None:
            process.kill()
        process.wait()
        if process.stdin is not None:
            try:
                process.stdin.close()
            except BrokenPipeError:
                logger.debug("Sandbox process exited with a reply unread")
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()

    def _kill(self) -> None:
        self.killed.set()
        if self._process is not None and self._process.poll() is None:
            logger.debug("Killing sandbox process %d after its deadline", self._process.pid)
            self._process.kill()

    def run(self, functions: Mapping[str, HostFunction]) -> EvalResult:
        process = cast("subprocess.Popen[str]", self._process)
        writer = cast(IO[str], process.stdin)
        reader = cast(IO[str], process.stdout)
        try:
            protocol.write_message(writer, self.request)
            while True:
                message = protocol.read_message(reader)
                if message is None:
                    break
                if "result" in message:
                    return self._result(message["result"])
                protocol.write_message(writer, self._call(functions, message))
        except BrokenPipeError:
            logger.debug("Sandbox process stopped reading its input")
        except ValueError as exc:
            if not self.killed.is_set():
                return EvalResult(ok=False, error=f"SandboxError: invalid message from sandbox: {exc}")
        return self._exit_status(process)

    def _call(self, functions: Mapping[str, HostFunction], message: Mapping[str, object]) -> dict[str, object]:
        name = str(message.get("call"))
        fn = functions.get(name)
        if fn is None:
            return {"error": f"no host function named '{name}'", "type": "NameError"}
        args = [protocol.decode_argument(arg) for arg in cast(list[object], message.get("args", []))]
        try:
            return {"value": fn(*args)}
        except (TypeError, ValueError, RuntimeError) as exc:
            return {"error": str(exc), "type": type(exc).__name__}

    def _result(self, payload: object) -> EvalResult:
        if not isinstance(payload, dict):
            return EvalResult(ok=False, error="SandboxError: malformed result from sandbox")
        data = cast(dict[str, object], payload)
        display = data.get("display")
        error = data.get("error")
        checks = data.get("interrupt_checks")
        return EvalResult(
            ok=bool(data.get("ok")),
            display=str(display) if display is not None else None,
            error=str(error) if error is not None else None,
            aborted=ABORTS.get(str(data.get("aborted"))),
            interrupt_checks=checks if isinstance(checks, int) else 0,
        )

    def _exit_status(self, process: subprocess.Popen[str]) -> EvalResult:
        process.wait()
        if self.killed.is_set():
            return EvalResult(ok=False, error="Interrupted: evaluation interrupted", aborted=Interrupted)
        xcpu = getattr(signal, "SIGXCPU", None)
        if xcpu is not None and process.returncode == -xcpu:
            cpu_limit = self.request.get("cpu_limit_seconds")
            return EvalResult(
                ok=False,
                error=f"CpuLimitExceeded: cpu limit of {cpu_limit} s exceeded",
                aborted=CpuLimitExceeded,
            )
        stderr = process.stderr.read().strip() if process.stderr is not None else ""
        detail = stderr.splitlines()[-1] if stderr else f"sandbox exited with status {process.returncode}"
        return EvalResult(ok=False, error=f"SandboxError: {detail}")


class ScriptContext:
    """An isolated global scope for exactly one command."""

    def __init__(self, runtime: ScriptRuntime) -> None:
        self.runtime = runtime
        self.functions: dict[str, HostFunction] = {}
        self.props: dict[str, object] = {}
        self.alive = True

    def new_function(self, name: str, fn: Callable[..., object]) -> HostFunction:
        self._ensure_alive()
        return HostFunction(name, fn)

    def set_prop(self, name: str, value: object) -> None:
        """Bind a host function, or a JSON-shaped value, into the global scope."""
        self._ensure_alive()
        if isinstance(value, HostFunction):
            self.functions[name] = value
        elif protocol.is_json_value(value):
            self.props[name] = value
        else:
            raise TypeError(f"cannot bind {type(value).__name__} into a sandbox scope")

    def eval_code(self, source: str, interrupt: InterruptPolicy | None = None) -> EvalResult:
        """Evaluate sandbox source. Script failures are returned, never raised."""
        self._ensure_alive()
        try:
            policy.validate_source(source, self.runtime.allowed_modules)
        except (SyntaxError, policy.PolicyViolation) as exc:
            return EvalResult(ok=False, error=protocol.format_error(exc))

        active = interrupt or self.runtime.interrupt_handler
        request: dict[str, object] = {
            "source": source,
            "allowed_modules": self.runtime.allowed_modules,
            "functions": sorted(self.functions),
            "props": self.props,
            "memory_limit": self.runtime.memory_limit,
            "stack_limit": self.runtime.max_stack_size,
            "cpu_limit_seconds": self.runtime.cpu_limit_seconds,
            "interrupt": active.to_wire() if active is not None else None,
        }
        kill_after = active.kill_after if active is not None else None
        with _SandboxProcess(request, kill_after) as process:
            return process.run(self.functions)

    def dispose(self) -> None:
        if not self.alive:
            return
        self.alive = False
        self.functions.clear()
        self.props.clear()
        self.runtime._context_disposed()

    def _ensure_alive(self) -> None:
        if not self.alive:
            raise RuntimeDisposedError("script context has been disposed")


class ScriptRuntime:
    """Owns limits, the interrupt policy and the set of live contexts."""

    def __init__(self, engine: ScriptEngine, allowed_modules: list[str] | None = None) -> None:
        self.engine = engine
        self.allowed_modules = list(allowed_modules or policy.ALLOWED_MODULES)
        self.memory_limit: int | None = None
        self.max_stack_size: int = sys.getrecursionlimit() * STACK_BYTES_PER_FRAME
        self.cpu_limit_seconds: int = DEFAULT_CPU_LIMIT_SECONDS
        self.interrupt_handler: InterruptPolicy | None = None
        self.contexts_created = 0
        self.contexts_disposed = 0
        self.disposed = False

    @property
    def live_contexts(self) -> int:
        return self.contexts_created - self.contexts_disposed

    def set_memory_limit(self, limit_bytes: int) -> None:
        self._ensure_alive()
        self.memory_limit = limit_bytes

    def set_max_stack_size(self, stack_bytes: int) -> None:
        self._ensure_alive()
        self.max_stack_size = stack_bytes

    def set_cpu_limit(self, seconds: int) -> None:
        self._ensure_alive()
        self.cpu_limit_seconds = seconds

    def set_interrupt_handler(self, handler: InterruptPolicy) -> None:
        self._ensure_alive()
        self.interrupt_handler = handler

    def remove_interrupt_handler(self) -> None:
        self.interrupt_handler = None

    def new_context(self) -> ScriptContext:
        self._ensure_alive()
        context = ScriptContext(self)
        self.contexts_created += 1
        return context

    def _context_disposed(self) -> None:
        self.contexts_disposed += 1

    def dispose(self) -> None:
        if self.disposed:
            return
        if self.live_contexts:
            logger.warning("Disposing runtime with %d live context(s)", self.live_contexts)
        self.disposed = True
        self.interrupt_handler = None
        self.engine.release()

    def _ensure_alive(self) -> None:
        if self.disposed:
            raise RuntimeDisposedError("script runtime has been disposed")


class ScriptEngine:
    """Factory for runtimes.

    Acquisition starts the sandbox interpreter once and checks that it can
    import the child protocol; a failure there is never retried.
    """

    def __init__(self, allowed_modules: list[str] | None = None) -> None:
        self.allowed_modules = allowed_modules

    async def acquire(self) -> ScriptRuntime:
        if not sys.executable:
            raise EngineAcquisitionError("no Python interpreter available for the sandbox")
        try:
            check = await asyncio.create_subprocess_exec(
                sys.executable,
                "-c",
                protocol.PROBE_TEMPLATE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=child_env(),
            )
        except OSError as exc:
            raise EngineAcquisitionError(f"could not start sandbox interpreter: {exc}") from exc
        try:
            _, stderr = await asyncio.wait_for(check.communicate(), ACQUIRE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as exc:
            check.kill()
            await check.wait()
            raise EngineAcquisitionError("sandbox interpreter did not start in time") from exc
        if check.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or f"exit status {check.returncode}"
            raise EngineAcquisitionError(f"sandbox interpreter failed to start: {detail}")
        logger.info("Script runtime acquired (%s)", sys.executable)
        return ScriptRuntime(self, self.allowed_modules)

    def release(self) -> None:
        logger.info("Script runtime disposed")
