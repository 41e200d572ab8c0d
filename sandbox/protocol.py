"""
Child process protocol for sandbox evaluation.

Every evaluation runs in a fresh child interpreter. Host and child exchange
JSON lines: the first line on the child's stdin is the request; each call
to a host function is a {"call": ...} line on stdout answered by one line
on stdin; the evaluation ends with a single {"result": ...} line.

This module is imported by the child, so it depends on the standard library
and sandbox.policy only.
"""

from __future__ import annotations

import ast
import importlib
import json
import sys
import time
import tracemalloc
from collections.abc import Callable, Sequence
from types import CodeType, FrameType
from typing import IO, cast

from sandbox import policy

CHILD_TEMPLATE = """
from sandbox.protocol import child_main
child_main()
""".strip()

PROBE_TEMPLATE = "import sandbox.protocol"

# Bytes charged against the stack limit per sandboxed frame.
STACK_BYTES_PER_FRAME = 512

# Address space allowed on top of the memory limit. The allocation tracer
# enforces the limit itself at checkpoints; the address-space cap stops a
# single statement from running past it by more than this.
ADDRESS_SPACE_SLACK_BYTES = 32 * 1024 * 1024

_SCALARS = (bool, int, float, str)


class EvaluationAborted(BaseException):
    """Unwinds a sandboxed evaluation; not caught by `except Exception`."""


class Interrupted(EvaluationAborted):
    pass


class MemoryLimitExceeded(EvaluationAborted):
    pass


class StackLimitExceeded(EvaluationAborted):
    pass


class CpuLimitExceeded(EvaluationAborted):
    pass


ABORTS: dict[str, type[EvaluationAborted]] = {
    cls.__name__: cls for cls in (Interrupted, MemoryLimitExceeded, StackLimitExceeded, CpuLimitExceeded)
}

# Exception types a host function may report back into the sandbox.
_HOST_ERRORS: dict[str, type[Exception]] = {
    "TypeError": TypeError,
    "ValueError": ValueError,
    "NameError": NameError,
    "RuntimeError": RuntimeError,
}


class OpaqueValue:
    """Host-side stand-in for a sandbox value that cannot cross the boundary."""

    def __init__(self, type_name: str) -> None:
        self.type_name = type_name

    def __repr__(self) -> str:
        return f"<opaque {self.type_name}>"


def is_json_value(value: object) -> bool:
    # Exact types only: no sandbox-defined subclass method runs during encoding.
    if value is None or type(value) in _SCALARS:
        return True
    if type(value) in (list, tuple):
        return all(is_json_value(item) for item in cast(list[object], value))
    if type(value) is dict:
        mapping = cast(dict[object, object], value)
        return all(type(key) is str and is_json_value(item) for key, item in mapping.items())
    return False


def encode_argument(value: object) -> dict[str, object]:
    if is_json_value(value):
        return {"value": value}
    return {"opaque": type(value).__name__}


def decode_argument(argument: object) -> object:
    if not isinstance(argument, dict):
        raise ValueError("malformed call argument")
    encoded = cast(dict[str, object], argument)
    if "opaque" in encoded:
        return OpaqueValue(str(encoded["opaque"]))
    return encoded.get("value")


def format_error(exc: BaseException) -> str:
    return f"{exc.__class__.__name__}: {exc}"


def write_message(stream: IO[str], message: dict[str, object]) -> None:
    stream.write(json.dumps(message) + "\n")
    stream.flush()


def read_message(stream: IO[str]) -> dict[str, object] | None:
    """Read one protocol line; None once the other side has closed the pipe."""
    line = stream.readline()
    if not line:
        return None
    loaded = cast(object, json.loads(line))
    if not isinstance(loaded, dict):
        raise ValueError("sandbox message is not a JSON object")
    return cast(dict[str, object], loaded)


def compile_source(tree: ast.Module) -> tuple[CodeType, bool]:
    if len(tree.body) == 1 and isinstance(tree.body[0], ast.Expr):
        expression = ast.Expression(body=tree.body[0].value)
        return compile(expression, policy.SANDBOX_FILENAME, "eval"), True
    return compile(tree, policy.SANDBOX_FILENAME, "exec"), False


def should_interrupt_after_deadline(deadline: float) -> Callable[[], bool]:
    """Interrupt predicate that fires once time.monotonic() passes `deadline`."""

    def should_interrupt() -> bool:
        return time.monotonic() > deadline

    return should_interrupt


def should_interrupt_after_cycles(cycle_limit: int) -> Callable[[], bool]:
    """Interrupt predicate that fires on the call after `cycle_limit` calls."""
    cycles = 0

    def should_interrupt() -> bool:
        nonlocal cycles
        cycles += 1
        return cycles > cycle_limit

    return should_interrupt


def build_interrupt(spec: object) -> Callable[[], bool] | None:
    if not isinstance(spec, dict):
        return None
    interrupt = cast(dict[str, object], spec)
    if interrupt.get("mode") == "deadline":
        deadline_ms = float(cast(float, interrupt["deadline_ms"]))
        return should_interrupt_after_deadline(time.monotonic() + deadline_ms / 1000)
    return should_interrupt_after_cycles(int(cast(int, interrupt["cycle_limit"])))


class _Checkpoints:
    """Trace function for one evaluation.

    Every call and line event in a sandboxed frame is a checkpoint. Once
    an abort is raised it is latched: later checkpoints re-raise without
    consulting the interrupt predicate again.
    """

    def __init__(
        self,
        should_interrupt: Callable[[], bool] | None,
        stack_limit: int,
        memory_limit: int | None,
    ) -> None:
        self.should_interrupt = should_interrupt
        self.stack_limit = stack_limit
        self.memory_limit = memory_limit
        self.depth = 0
        self.max_depth = max(1, stack_limit // STACK_BYTES_PER_FRAME)
        self.checks = 0
        self.aborted: EvaluationAborted | None = None
        tracemalloc.reset_peak()
        self.memory_baseline = tracemalloc.get_traced_memory()[0]

    def __call__(self, frame: FrameType, event: str, arg: object) -> Callable[..., object] | None:
        if frame.f_code.co_filename != policy.SANDBOX_FILENAME:
            return None
        self.depth += 1
        self.check()
        return self._local

    def _local(self, frame: FrameType, event: str, arg: object) -> Callable[..., object] | None:
        if event == "line":
            self.check()
        elif event == "return":
            self.depth -= 1
        return self._local

    def memory_exceeded(self) -> bool:
        if self.memory_limit is None:
            return False
        return tracemalloc.get_traced_memory()[1] - self.memory_baseline > self.memory_limit

    def check(self) -> None:
        if self.aborted is not None:
            raise self.aborted
        if self.depth > self.max_depth:
            self._abort(StackLimitExceeded(f"stack limit of {self.stack_limit} bytes exceeded"))
        if self.memory_exceeded():
            self._abort(MemoryLimitExceeded(f"memory limit of {self.memory_limit} bytes exceeded"))
        if self.should_interrupt is not None:
            self.checks += 1
            if self.should_interrupt():
                self._abort(Interrupted("evaluation interrupted"))

    def _abort(self, exc: EvaluationAborted) -> None:
        self.aborted = exc
        raise exc


def _address_space_bytes() -> int | None:
    """Current virtual memory size of this process, where the OS reports it."""
    try:
        import resource
    except ImportError:
        return None
    try:
        with open("/proc/self/statm") as statm:
            pages = int(statm.read().split()[0])
    except OSError:
        return None
    return pages * resource.getpagesize()


class _AddressSpaceLimit:
    """Caps the address space while sandboxed code runs; lifted afterwards."""

    def __init__(self, memory_limit: int | None) -> None:
        self.memory_limit = memory_limit
        self._restore: tuple[int, int] | None = None

    def __enter__(self) -> _AddressSpaceLimit:
        current = _address_space_bytes()
        if self.memory_limit is None or current is None:
            return self
        import resource

        soft, hard = resource.getrlimit(resource.RLIMIT_AS)
        cap = current + self.memory_limit + ADDRESS_SPACE_SLACK_BYTES
        if hard != resource.RLIM_INFINITY:
            cap = min(cap, hard)
        resource.setrlimit(resource.RLIMIT_AS, (cap, hard))
        self._restore = (soft, hard)
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._restore is not None:
            import resource

            resource.setrlimit(resource.RLIMIT_AS, self._restore)
            self._restore = None


def _limit_cpu(cpu_seconds: int) -> None:
    """Apply the CPU-time limit to this process on Unix."""
    try:
        import resource
    except ImportError:
        return
    resource.setrlimit(resource.RLIMIT_CORE, (0, 0))
    if cpu_seconds > 0:
        resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))


class _HostChannel:
    """Child end of the host-function calls."""

    def __init__(self, reader: IO[str], writer: IO[str]) -> None:
        self.reader = reader
        self.writer = writer

    def call(self, name: str, args: Sequence[object]) -> object:
        write_message(self.writer, {"call": name, "args": [encode_argument(arg) for arg in args]})
        reply = read_message(self.reader)
        if reply is None:
            raise RuntimeError(f"host closed the channel during '{name}'")
        if "error" in reply:
            error_type = _HOST_ERRORS.get(str(reply.get("type")), RuntimeError)
            raise error_type(str(reply["error"]))
        return reply.get("value")


def _host_function(channel: _HostChannel, name: str) -> Callable[..., object]:
    def call(*args: object) -> object:
        return channel.call(name, args)

    call.__name__ = call.__qualname__ = name
    return call


def _preload(modules: Sequence[str]) -> None:
    # Loaded before the memory baseline so a sandbox import is not charged
    # for the module's own initialisation.
    for name in modules:
        importlib.import_module(name)


def evaluate(request: dict[str, object], channel: _HostChannel) -> dict[str, object]:
    """Run one request's source under its limits and build the result message."""
    source = str(request.get("source", ""))
    allowed_value = request.get("allowed_modules") or policy.ALLOWED_MODULES
    allowed_modules = [str(name) for name in cast(list[object], allowed_value)]
    function_names = [str(name) for name in cast(list[object], request.get("functions", []))]
    props = cast(dict[str, object], request.get("props") or {})
    memory_value = request.get("memory_limit")
    memory_limit = int(cast(int, memory_value)) if memory_value is not None else None
    default_stack = sys.getrecursionlimit() * STACK_BYTES_PER_FRAME
    stack_limit = int(cast(int, request.get("stack_limit", default_stack)))

    try:
        tree = policy.validate_source(source, allowed_modules)
        code, is_expression = compile_source(tree)
    except (SyntaxError, policy.PolicyViolation) as exc:
        return {"ok": False, "error": format_error(exc)}

    _preload(allowed_modules)
    scope: dict[str, object] = {
        "__builtins__": policy.build_builtins(allowed_modules),
        "__name__": "__sandbox__",
    }
    scope.update(props)
    for name in function_names:
        scope[name] = _host_function(channel, name)

    response: dict[str, object] = {"ok": True, "display": None, "error": None, "aborted": None}
    failure: BaseException | None = None
    checkpoints = _Checkpoints(build_interrupt(request.get("interrupt")), stack_limit, memory_limit)
    with _AddressSpaceLimit(memory_limit):
        sys.settrace(checkpoints)
        try:
            if is_expression:
                value = eval(code, scope)
                response["display"] = repr(value) if value is not None else None
            else:
                exec(code, scope)
        except BaseException as exc:  # noqa: BLE001 - capture all child errors
            failure = exc
        finally:
            sys.settrace(None)

    if failure is None and checkpoints.memory_exceeded():
        failure = MemoryLimitExceeded(f"memory limit of {memory_limit} bytes exceeded")
    if isinstance(failure, MemoryError):
        failure = MemoryLimitExceeded(f"memory limit of {memory_limit} bytes exceeded")
    if failure is not None:
        response.update(ok=False, display=None, error=format_error(failure))
        if isinstance(failure, EvaluationAborted):
            response["aborted"] = type(failure).__name__
    response["interrupt_checks"] = checkpoints.checks
    return response


def child_main() -> None:
    """Entry point for the sandbox child process."""
    request = read_message(sys.stdin) or {}
    _limit_cpu(int(cast(int, request.get("cpu_limit_seconds") or 0)))
    tracemalloc.start()
    response = evaluate(request, _HostChannel(sys.stdin, sys.stdout))
    tracemalloc.stop()
    write_message(sys.stdout, {"result": response})


if __name__ == "__main__":
    child_main()
