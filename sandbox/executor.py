"""
Per-command sandbox executor: scope, limits, host bindings and interrupt policy.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from webshell_core.schemas import ExecutionLimits, InterruptMode

from sandbox.engine import (
    CycleInterrupt,
    DeadlineInterrupt,
    EvalResult,
    Scope,
    ScriptContext,
    ScriptRuntime,
)
from sandbox.host import Emit, HostStore, build_host_functions
from sandbox.protocol import Interrupted

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    success: bool
    display: str | None
    error: str | None
    runtime_ms: float
    interrupted: bool = False


class SandboxExecutor:
    """
    Run one command at a time against a script runtime.

    Every call gets its own context, released on every exit path. Limits
    are re-applied to the runtime before the context is created, and exactly
    one interrupt policy is active for the evaluation.
    """

    def __init__(self, runtime: ScriptRuntime, limits: ExecutionLimits, store: HostStore) -> None:
        self.runtime = runtime
        self.limits = limits
        self.store = store
        self.interrupt_checks = 0

    def execute(self, command: str, emit: Emit) -> ExecutionResult:
        start = time.perf_counter()
        with Scope() as scope:
            self.runtime.set_memory_limit(self.limits.memory_limit_bytes)
            self.runtime.set_max_stack_size(self.limits.stack_limit_bytes)
            self.runtime.set_cpu_limit(self.limits.cpu_limit_seconds)
            context = scope.manage(self.runtime.new_context())
            for name, fn in build_host_functions(self.store, emit).items():
                context.set_prop(name, scope.manage(context.new_function(name, fn)))
            if self.limits.interrupt_mode == InterruptMode.DEADLINE:
                result = self._eval_with_deadline(context, command)
            else:
                result = self._eval_with_cycle_count(context, command)

        runtime_ms = (time.perf_counter() - start) * 1000
        interrupted = result.aborted is not None and issubclass(result.aborted, Interrupted)
        error = self._describe_interrupt() if interrupted else result.error
        return ExecutionResult(
            success=result.ok,
            display=result.display,
            error=error,
            runtime_ms=runtime_ms,
            interrupted=interrupted,
        )

    def _eval_with_deadline(self, context: ScriptContext, command: str) -> EvalResult:
        return context.eval_code(command, interrupt=DeadlineInterrupt(self.limits.deadline_ms))

    def _eval_with_cycle_count(self, context: ScriptContext, command: str) -> EvalResult:
        self.runtime.set_interrupt_handler(CycleInterrupt(self.limits.cycle_limit))
        try:
            result = context.eval_code(command)
        finally:
            self.runtime.remove_interrupt_handler()
        self.interrupt_checks = result.interrupt_checks
        logger.debug("Interrupt handler invoked %d time(s)", result.interrupt_checks)
        return result

    def _describe_interrupt(self) -> str:
        if self.limits.interrupt_mode == InterruptMode.DEADLINE:
            return f"DeadlineExceeded: command interrupted after {self.limits.deadline_ms} ms"
        return f"CycleLimitExceeded: command interrupted after {self.limits.cycle_limit} interrupt cycles"
