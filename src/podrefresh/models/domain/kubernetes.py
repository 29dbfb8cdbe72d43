"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "ContainerCheck",
    "ContainerCheckResult",
    "PodDecision",
    "PodPhase",
    "PullPolicy",
    "RefreshResult",
]


class PodPhase(str, Enum):
    """One of the valid phases reported in the status section of a Pod."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class PullPolicy(Enum):
    """Pull policy for Docker images in Kubernetes."""

    ALWAYS = "Always"
    IF_NOT_PRESENT = "IfNotPresent"
    NEVER = "Never"


class ContainerCheck(Enum):
    """Outcome of comparing a running container to its registry digest."""

    UNCHANGED = "unchanged"
    NEEDS_UPDATE = "needs_update"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ContainerCheckResult:
    """Result of checking one container of a pod."""

    container: str
    """Name of the container."""

    check: ContainerCheck
    """Outcome of the check."""

    error: Exception | None = None
    """Exception that caused the check to fail, if any."""


@dataclass(frozen=True, slots=True)
class PodDecision:
    """A pod selected for deletion because its image has changed."""

    namespace: str
    """Namespace of the pod."""

    name: str
    """Name of the pod."""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class RefreshResult:
    """Summary of a single refresh run."""

    scanned: int = 0
    """Number of pods seen while listing."""

    checked: int = 0
    """Number of pods whose images were checked against their registry."""

    selected: list[PodDecision] = field(default_factory=list)
    """Pods whose images have changed."""

    deleted: list[PodDecision] = field(default_factory=list)
    """Pods that were deleted."""

    failed: list[PodDecision] = field(default_factory=list)
    """Pods that could not be deleted."""
