"""
Provides the convergence executor, which walks a catalog in topological order,
examines each resource, applies only the required changes and propagates notifications.
"""

import shlex
import subprocess
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import ExitStack
from typing import Callable

from keel import logger
from keel.catalog import Catalog
from keel.report import Report, ResourceState, ResourceStatus
from keel.resources.api import Delta, Ref, Resource
from keel.systems.system import System
from keel.utils import ApplyError

# Failures of the managed system that are localized to a single resource.
# Anything else is a bug and propagates.
resource_errors = (ApplyError, subprocess.SubprocessError, OSError, ValueError)

def describe_error(e: Exception) -> str:
    """Returns a message describing the cause of a failed resource operation."""
    if isinstance(e, subprocess.CalledProcessError):
        cmd = shlex.join(e.cmd) if isinstance(e.cmd, list) else str(e.cmd)
        msg = f"command '{cmd}' returned exit status {e.returncode}"
        stderr = e.stderr.decode("utf-8", errors="ignore").strip() if isinstance(e.stderr, bytes) else (e.stderr or "").strip()
        if stderr:
            msg += f": {stderr}"
        return msg
    return str(e) or type(e).__name__

class Executor:
    """
    Converges all resources of a catalog on a system.

    Parameters
    ----------
    catalog
        The compiled catalog.
    system
        The managed system.
    dry
        Whether to only report the changes that would be applied.
    jobs
        The maximum number of resources converged at the same time.
    """

    def __init__(self, catalog: Catalog, system: System, dry: bool = False, jobs: int = 1):
        self.catalog = catalog
        self.system = system
        self.dry = dry
        self.jobs = max(1, jobs)
        self.report = Report([r.ref for r in catalog])
        self.deltas: dict[Ref, Delta] = {}
        self._cancel_event = threading.Event()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def cancel(self) -> None:
        """
        Requests cancellation. Resources that are being converged finish their current
        step, no further resources are started.
        """
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._cancel_event.is_set()

    def run(self) -> Report:
        """
        Converges the catalog.

        Returns
        -------
        Report
            The status of each resource.
        """
        if self.jobs == 1:
            for res in self.catalog:
                if self.cancelled:
                    break
                self.converge(res)
        else:
            self._run_parallel()

        self.report.cancelled = self.cancelled and any(not s.terminal for s in self.report)
        return self.report

    def _run_parallel(self) -> None:
        graph = self.catalog.graph
        scheduled: set[Ref] = set()
        # A resource is done once its future finished. Its state is already
        # terminal while a refresh may still be running.
        finished: set[Ref] = set()
        with ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="keel") as pool:
            running: dict[Future, Ref] = {}
            while True:
                if not self.cancelled:
                    # Start every resource whose predecessors are all finished
                    for res in self.catalog:
                        if res.ref in scheduled:
                            continue
                        if all(p in finished for p in graph.predecessors(res.ref)):
                            scheduled.add(res.ref)
                            running[pool.submit(self.converge, res)] = res.ref

                if len(running) == 0:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    finished.add(running.pop(future))
                    future.result()

    def _lock(self, key: str) -> threading.Lock:
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def _step(self, status: ResourceStatus, operation: str, fn: Callable[[], None]) -> bool:
        """Runs one operation of a resource. On failure, marks the resource as failed."""
        try:
            fn()
        except resource_errors as e: # pylint: disable=catching-non-exception
            status.state = ResourceState.FAILED
            status.operation = operation
            status.error = describe_error(e)
            logger.debug(f"{status.ref}: {operation} raised {type(e).__name__}: {e}")
            return False
        return True

    def converge(self, res: Resource) -> ResourceStatus:
        """
        Converges a single resource. All predecessors must already be in a terminal state.

        Parameters
        ----------
        res
            The resource to converge.

        Returns
        -------
        ResourceStatus
            The final status of the resource.
        """
        status = self.report[res.ref]
        status.dry = self.dry
        graph = self.catalog.graph

        # Skip the resource if anything it depends on has failed
        for p in graph.predecessors(res.ref):
            if self.report[p].failed:
                status.state = ResourceState.FAILED_DEPENDENCY
                status.blocked_by = p
                logger.print_resource(status)
                return status

        if self.jobs == 1:
            logger.print_resource_early(status)

        delta = Delta()
        self.deltas[res.ref] = delta
        with ExitStack() as stack:
            # Acquire in sorted order so that resources sharing keys can't deadlock
            for key in sorted(res.lock_keys()):
                stack.enter_context(self._lock(key))
            self._converge_locked(res, status, delta)

        logger.print_resource(status)
        return status

    def _converge_locked(self, res: Resource, status: ResourceStatus, delta: Delta) -> None:
        if not self._step(status, "examine", lambda: res.examine(self.system, delta)):
            return

        status.state = ResourceState.CHECKED
        status.changes = delta.changes()
        status.diffs = list(delta.diffs)
        if len(status.changes) == 0:
            status.state = ResourceState.NO_CHANGE
        else:
            status.state = ResourceState.APPLYING
            if not self.dry and not self._step(status, "apply", lambda: res.apply(self.system, delta)):
                return
            status.state = ResourceState.APPLIED

        if not res.refreshable:
            return
        notifiers = [p for p in self.catalog.graph.notifiers(res.ref) if self.report[p].changed]
        if len(notifiers) == 0:
            return

        logger.debug(f"{res.ref}: notified by {', '.join(str(p) for p in notifiers)}")
        def refresh() -> None:
            status.refreshed = res.refresh(self.system, delta, self.dry)
        self._step(status, "refresh", refresh)
