"""Error taxonomy and evaluation failure classification."""

from __future__ import annotations

from enum import Enum


class WebShellError(Exception):
    """Base class for errors raised by webshell actors."""


class ConfigurationError(WebShellError):
    """Missing or invalid setup payload; fatal to the receiving actor."""


class EngineAcquisitionError(WebShellError):
    """The one-time script engine setup failed. Never retried."""


class RuntimeDisposedError(WebShellError):
    """A disposed script runtime or context was used again."""


class ActorFailure(WebShellError):
    """An actor stopped because of an unhandled exception."""

    def __init__(self, actor_name: str, cause: BaseException) -> None:
        super().__init__(f"actor '{actor_name}' failed: {cause.__class__.__name__}: {cause}")
        self.actor_name = actor_name
        self.cause = cause


class FailureType(str, Enum):
    SCRIPT_ERROR = "script_error"
    SYNTAX_ERROR = "syntax_error"
    POLICY_VIOLATION = "policy_violation"
    TIMEOUT = "timeout"
    CYCLE_LIMIT = "cycle_limit"
    MEMORY_LIMIT = "memory_limit"
    STACK_LIMIT = "stack_limit"
    CPU_LIMIT = "cpu_limit"
    HOST_CALLBACK = "host_callback"


class FailureAnalyzer:
    """Counts evaluation failures by type for the lifetime of a shell."""

    def __init__(self) -> None:
        self.failures: dict[FailureType, int] = {ft: 0 for ft in FailureType}

    def classify_error(self, error_msg: str) -> FailureType:
        error_lower = error_msg.lower()

        if error_lower.startswith("deadlineexceeded"):
            return FailureType.TIMEOUT
        elif error_lower.startswith("cyclelimitexceeded"):
            return FailureType.CYCLE_LIMIT
        elif error_lower.startswith("memorylimitexceeded") or error_lower.startswith("memoryerror"):
            return FailureType.MEMORY_LIMIT
        elif error_lower.startswith("cpulimitexceeded"):
            return FailureType.CPU_LIMIT
        elif error_lower.startswith("stacklimitexceeded") or error_lower.startswith("recursionerror"):
            return FailureType.STACK_LIMIT
        elif error_lower.startswith("policyviolation"):
            return FailureType.POLICY_VIOLATION
        elif error_lower.startswith("syntaxerror") or "invalid syntax" in error_lower:
            return FailureType.SYNTAX_ERROR
        elif error_lower.startswith("invalid argument to"):
            return FailureType.HOST_CALLBACK
        else:
            return FailureType.SCRIPT_ERROR

    def record_failure(self, error_msg: str) -> FailureType:
        failure_type = self.classify_error(error_msg)
        self.failures[failure_type] += 1
        return failure_type

    def get_failure_stats(self) -> dict[FailureType, int]:
        return dict(self.failures)
