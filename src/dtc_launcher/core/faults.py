"""Fault taxonomy for the launcher.

Faults are plain records so they can be collected per entity and reported
after the fact; ``LauncherError`` wraps one when a fault has to unwind the
current entity's pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import EntityState


class FaultKind(str, Enum):
    OPERATOR = "OPERATOR"  # the launcher itself is broken or misconfigured
    RUN = "RUN"  # the client logged ERROR records
    INDETERMINATE = "INDETERMINATE"  # no confident verdict could be made
    DELIVERY = "DELIVERY"  # a notification sink failed


@dataclass(frozen=True, slots=True)
class Fault:
    kind: FaultKind
    message: str
    entity: str | None = None
    state: EntityState | None = None

    def describe(self) -> str:
        where = self.entity or "batch"
        if self.state is not None:
            where = f"{where} @ {self.state.value}"
        return f"{self.kind.value} fault ({where}): {self.message}"


class LauncherError(Exception):
    """Exception carrying a Fault record."""

    def __init__(self, fault: Fault) -> None:
        super().__init__(fault.message)
        self.fault = fault


class OperatorFaultError(LauncherError):
    """A precondition of the launcher was violated."""

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        state: EntityState | None = EntityState.PRECHECK,
    ) -> None:
        super().__init__(
            Fault(kind=FaultKind.OPERATOR, message=message, entity=entity, state=state)
        )
