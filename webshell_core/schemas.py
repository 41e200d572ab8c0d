from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError

TBaseSchema = TypeVar("TBaseSchema", bound="BaseSchema")


class BaseSchema(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json()

    def to_dict(self) -> dict[str, object]:
        return self.model_dump(mode="json")

    @classmethod
    def from_json(cls: type[TBaseSchema], data: str) -> TBaseSchema:
        return cls.model_validate_json(data)

    @classmethod
    def from_dict(cls: type[TBaseSchema], data: Mapping[str, object]) -> TBaseSchema:
        return cls.model_validate(data)

    @classmethod
    def coerce(cls: type[TBaseSchema], payload: object) -> TBaseSchema:
        """Validate a config payload delivered in a message.

        Raises ConfigurationError instead of pydantic's ValidationError so the
        receiving actor fails with the protocol-level error type.
        """
        if isinstance(payload, cls):
            return payload
        if payload is None:
            raise ConfigurationError(f"missing {cls.__name__} payload")
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        if not isinstance(payload, Mapping):
            raise ConfigurationError(
                f"invalid {cls.__name__} payload: expected a mapping, got {type(payload).__name__}"
            )
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid {cls.__name__} payload: {exc}") from exc


class InterruptMode(str, Enum):
    DEADLINE = "deadline"
    CYCLE_COUNT = "cycle_count"


class ExecutionLimits(BaseSchema):
    model_config = ConfigDict(frozen=True)

    interrupt_mode: InterruptMode = InterruptMode.DEADLINE
    deadline_ms: int = Field(default=5000, gt=0)
    cycle_limit: int = Field(default=1024, gt=0)
    memory_limit_bytes: int = Field(default=1024 * 640, gt=0)
    stack_limit_bytes: int = Field(default=1024 * 320, gt=0)
    cpu_limit_seconds: int = Field(default=10, gt=0)


class ShellConfig(BaseSchema):
    model_config = ConfigDict(frozen=True)

    kind: Literal["sandbox", "echo"] = "sandbox"
    prompt: str = "WebShell"
    limits: ExecutionLimits = Field(default_factory=ExecutionLimits)


class TerminalConfig(BaseSchema):
    model_config = ConfigDict(frozen=True)

    max_write_queue_entries: int = Field(default=100, gt=0)
    max_write_queue_chars: int = Field(default=10_000, gt=0)
    max_output_entries: int = Field(default=200, gt=0)
    max_output_chars: int = Field(default=10_000, gt=0)
    write_output_interval_ms: int = Field(default=30, gt=0)
    shell: ShellConfig = Field(default_factory=ShellConfig)


class SessionConfig(BaseSchema):
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
