"""
Fault Plans

Declarative sets of interceptions, written in YAML and installed
together.

Example YAML:
```yaml
name: flaky_disk
description: Short reads, a slow stat and a missing config file

faults:
  - kind: zeno_read
  - kind: delay
    method: stat
    ms: 250
  - kind: fail
    method: open
    errno: 2
    message: "config.yaml is gone"
  - kind: stat_type
    type: FIFO
```
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator
from structlog import get_logger

from mutatefs import policies
from mutatefs.errors import FaultPlanError
from mutatefs.interceptor import InterceptRegistry, get_default_registry
from mutatefs.models import Restore, StatType

logger = get_logger(__name__)


class FaultKind(str, Enum):
    """Interception policies a fault plan can install."""

    PASS = "pass"
    FAIL = "fail"
    DELAY = "delay"
    STAT_FAIL = "stat_fail"
    STAT_TYPE = "stat_type"
    ZENO_READ = "zeno_read"


_NEEDS_METHOD = (FaultKind.PASS, FaultKind.FAIL, FaultKind.DELAY)
_NEEDS_ERROR = (FaultKind.FAIL, FaultKind.STAT_FAIL)


class FaultSpec(BaseModel):
    """
    One fault in a plan.

    Different kinds require different parameters:
    - pass: method, data
    - fail: method, errno and/or message
    - delay: method, ms
    - stat_fail: errno and/or message
    - stat_type: type
    - zeno_read: (no params)
    """

    kind: FaultKind = Field(
        description="Policy to install"
    )

    method: str | None = Field(
        default=None,
        description="Operation name to intercept (e.g., open, stat)"
    )

    data: Any = Field(
        default=None,
        description="Value returned by every call (for pass)"
    )

    errno: int | None = Field(
        default=None,
        description="errno of the forced OSError (for fail, stat_fail)"
    )

    message: str | None = Field(
        default=None,
        description="Message of the forced error; defaults to strerror(errno)"
    )

    ms: float | None = Field(
        default=None,
        ge=0,
        description="Minimum call duration in milliseconds (for delay)"
    )

    type: StatType | None = Field(
        default=None,
        description="File type reported by stat calls (for stat_type)"
    )

    @model_validator(mode="after")
    def check_parameters(self) -> "FaultSpec":
        """Ensure each kind carries the parameters it needs."""
        if self.kind in _NEEDS_METHOD and not self.method:
            raise ValueError(f"{self.kind.value} fault requires 'method'")
        if self.kind in _NEEDS_ERROR and self.errno is None and self.message is None:
            raise ValueError(f"{self.kind.value} fault requires 'errno' or 'message'")
        if self.kind is FaultKind.DELAY and self.ms is None:
            raise ValueError("delay fault requires 'ms'")
        if self.kind is FaultKind.STAT_TYPE and self.type is None:
            raise ValueError("stat_type fault requires 'type'")
        return self

    def build_error(self) -> OSError:
        """Build the error delivered by fail/stat_fail faults."""
        if self.errno is None:
            return OSError(self.message)
        return OSError(self.errno, self.message or os.strerror(self.errno))

    def install(self, registry: InterceptRegistry) -> Restore:
        """Install this fault on ``registry``."""
        handlers = {
            FaultKind.PASS: lambda: policies.pass_(registry, self.method, self.data),
            FaultKind.FAIL: lambda: policies.fail(registry, self.method, self.build_error()),
            FaultKind.DELAY: lambda: policies.delay(registry, self.method, self.ms),
            FaultKind.STAT_FAIL: lambda: policies.stat_fail(registry, self.build_error()),
            FaultKind.STAT_TYPE: lambda: policies.stat_type(registry, self.type),
            FaultKind.ZENO_READ: lambda: policies.zeno_read(registry),
        }
        return handlers[self.kind]()


class FaultPlan(BaseModel):
    """A named set of faults installed and restored together."""

    name: str = Field(
        description="Unique name for this plan"
    )

    description: str = Field(
        default="",
        description="Human-readable description"
    )

    faults: list[FaultSpec] = Field(
        default_factory=list,
        description="Faults in install order"
    )

    @classmethod
    def from_file(cls, path: Path | str) -> "FaultPlan":
        """Load a fault plan from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Fault plan not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise FaultPlanError(f"Invalid YAML in fault plan {path}: {e}") from e

        if not isinstance(data, dict):
            raise FaultPlanError(f"Fault plan {path} must be a mapping")

        plan = cls.from_dict(data)
        logger.info(
            "fault_plan_loaded",
            plan=plan.name,
            path=str(path),
            fault_count=len(plan.faults),
        )
        return plan

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FaultPlan":
        """Create a fault plan from a dictionary."""
        try:
            return cls(**data)
        except ValidationError as e:
            raise FaultPlanError(f"Invalid fault plan: {e}") from e

    def apply(self, registry: InterceptRegistry | None = None) -> Restore:
        """
        Install every fault in order.

        If a fault fails to install, the ones already installed are
        restored before the error propagates.

        Args:
            registry: Registry to install on. Defaults to the registry
                over the process-wide interface.

        Returns:
            Restore handle undoing the whole plan.
        """
        registry = registry or get_default_registry()

        restores: list[Restore] = []
        try:
            for fault in self.faults:
                restores.append(fault.install(registry))
        except Exception:
            Restore.combine(*restores)()
            raise

        logger.info(
            "fault_plan_applied",
            plan=self.name,
            fault_count=len(restores),
        )
        return Restore.combine(*restores, label=f"plan:{self.name}")
