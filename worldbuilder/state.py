"""Per-request assembly state machine.

    idle → resolving → placing → done
                 ↘        ↘
                  failed   failed

``failed`` is reached only when a request cannot finish at all; whatever
was built up to that point is still returned to the host.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class AssemblyState(str, Enum):
    idle = "idle"
    resolving = "resolving"
    placing = "placing"
    done = "done"
    failed = "failed"


_TRANSITIONS = {
    AssemblyState.idle: {AssemblyState.resolving, AssemblyState.failed},
    AssemblyState.resolving: {AssemblyState.placing, AssemblyState.failed},
    AssemblyState.placing: {AssemblyState.done, AssemblyState.failed},
    AssemblyState.done: set(),
    AssemblyState.failed: set(),
}


@dataclass
class AssemblyRequest:
    kind: str
    version: int = 0
    state: AssemblyState = AssemblyState.idle
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stale: bool = False
    # Whatever this request has built so far, for returning after a failure
    partial: Optional[Any] = field(default=None, repr=False)

    @property
    def finished(self) -> bool:
        return self.state in (AssemblyState.done, AssemblyState.failed)

    def advance(self, state: AssemblyState):
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal transition {self.state.value} -> {state.value}")
        logger.debug(f"{self.kind} request #{self.version}: {self.state.value} -> {state.value}")
        self.state = state

    def fail(self, message: str):
        self.errors.append(message)
        if not self.finished:
            self.state = AssemblyState.failed

    def warn(self, message: str):
        logger.warning(message)
        self.warnings.append(message)

    def error(self, message: str):
        logger.error(message)
        self.errors.append(message)


@dataclass
class AssemblyResult:
    """What the host receives: the built tree plus diagnostics."""

    kind: str
    state: AssemblyState
    root: Optional[Any] = None
    detail: Optional[Any] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.state == AssemblyState.done and not self.stale

    @classmethod
    def from_request(cls, request: AssemblyRequest, root=None, detail=None) -> "AssemblyResult":
        return cls(kind=request.kind, state=request.state, root=root, detail=detail,
                   errors=list(request.errors), warnings=list(request.warnings),
                   stale=request.stale)
