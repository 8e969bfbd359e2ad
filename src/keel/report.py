"""
Provides the per-resource status and the report of a convergence run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from keel.resources.api import Change, Ref

class ResourceState(Enum):
    """The convergence state of a resource within one run."""
    PENDING = "pending"
    CHECKED = "checked"
    NO_CHANGE = "no change"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    FAILED_DEPENDENCY = "failed dependency"

terminal_states = {ResourceState.NO_CHANGE, ResourceState.APPLIED, ResourceState.FAILED, ResourceState.FAILED_DEPENDENCY}
"""States after which a resource is not touched again in the current run."""

@dataclass
class ResourceStatus:
    """The status of a single resource in a convergence run."""
    ref: Ref
    state: ResourceState = ResourceState.PENDING
    changes: list[Change] = field(default_factory=list)
    """The changes that were (or in a dry run would have been) applied."""
    diffs: list[tuple[str, Optional[bytes], Optional[bytes]]] = field(default_factory=list)
    """File diffs belonging to the changes."""
    error: Optional[str] = None
    """The cause of the failure, if the resource failed."""
    operation: Optional[str] = None
    """The operation that failed: `examine`, `apply` or `refresh`."""
    refreshed: bool = False
    """Whether the resource was refreshed because of a notification."""
    dry: bool = False
    blocked_by: Optional[Ref] = None
    """The failed predecessor, if the resource was skipped."""

    @property
    def failed(self) -> bool:
        """Whether the resource failed or was skipped because of a failed dependency."""
        return self.state in [ResourceState.FAILED, ResourceState.FAILED_DEPENDENCY]

    @property
    def changed(self) -> bool:
        """Whether the resource changed the system in this run."""
        return self.state == ResourceState.APPLIED or self.refreshed

    @property
    def terminal(self) -> bool:
        """Whether the resource has reached a final state."""
        return self.state in terminal_states

    def failure_message(self) -> str:
        """Returns a message describing why this resource failed."""
        if self.state == ResourceState.FAILED_DEPENDENCY:
            return f"skipped because dependency {self.blocked_by} failed"
        return f"{self.operation} failed: {self.error}"

class Report:
    """The outcome of a convergence run."""

    def __init__(self, refs: list[Ref]):
        self.statuses: dict[Ref, ResourceStatus] = {r: ResourceStatus(ref=r) for r in refs}
        self.cancelled: bool = False

    def __getitem__(self, ref: Ref) -> ResourceStatus:
        return self.statuses[ref]

    def __iter__(self) -> Iterator[ResourceStatus]:
        return iter(self.statuses.values())

    def in_state(self, state: ResourceState) -> list[ResourceStatus]:
        """Returns the status of all resources in the given state."""
        return [s for s in self if s.state == state]

    def counts(self) -> dict[str, int]:
        """Returns the number of resources per outcome."""
        return {
            "applied": len(self.in_state(ResourceState.APPLIED)),
            "refreshed": len([s for s in self if s.refreshed]),
            "unchanged": len(self.in_state(ResourceState.NO_CHANGE)),
            "failed": len(self.in_state(ResourceState.FAILED)),
            "skipped": len(self.in_state(ResourceState.FAILED_DEPENDENCY)),
            "pending": len([s for s in self if not s.terminal]),
        }

    @property
    def changed_count(self) -> int:
        """The number of resources that changed the system."""
        return len([s for s in self if s.changed])

    @property
    def failed(self) -> bool:
        """Whether any resource failed."""
        return any(s.failed for s in self)

    @property
    def exit_code(self) -> int:
        """The exit code of the process: 130 when cancelled, 1 if any resource failed, otherwise 0."""
        if self.cancelled:
            return 130
        if self.failed:
            return 1
        return 0
