# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import logging
from datetime import datetime, timezone
from typing import Dict, NamedTuple, Optional

from nodemaintenance.module_utils.drain import DrainResult
from nodemaintenance.module_utils.k8s.exceptions import (
    CoreException,
    DrainException,
    MalformedRequest,
    NodeNotFound,
    RequeueException,
    TerminalException,
)
from nodemaintenance.module_utils.status import (
    PHASE_RUNNING,
    TERMINAL_PHASES,
    get_status,
)
from nodemaintenance.module_utils.taints import add_or_remove_taint

logger = logging.getLogger(__name__)


class ReconcileResult(NamedTuple):
    """Outcome of a reconcile pass; requeue_after=None means done."""

    requeue_after: Optional[float] = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


DONE = ReconcileResult()


def _parse_time(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc)


class Reconciler:
    """Drives a NodeMaintenance from creation to a terminal phase.

    Each call to reconcile() is one pass. Passes are idempotent: markers that
    are already in place are not written again and the status is only written
    when it changed. Different requests may be reconciled concurrently, the
    same request must not. finalize() undoes the maintenance of a request
    being deleted; keeping the request around until then is up to the caller.
    """

    def __init__(
        self,
        service,
        sessions,
        tracker,
        watcher=None,
        requeue_after: float = 5,
        drain_timeout: float = 30,
        conflict_retries: int = 5,
    ) -> None:
        self.service = service
        self.sessions = sessions
        self.tracker = tracker
        self.watcher = watcher
        self.requeue_after = requeue_after
        self.drain_timeout = drain_timeout
        self.conflict_retries = conflict_retries

    def reconcile(self, name: str, namespace: Optional[str] = None) -> ReconcileResult:
        request = self.service.get_request(name, namespace)
        if request is None:
            logger.debug("NodeMaintenance %s not found, nothing to do", name)
            return DONE

        if request["metadata"].get("deletionTimestamp"):
            logger.debug("NodeMaintenance %s is being deleted", name)
            return DONE

        status = get_status(request)
        if status.get("phase") in TERMINAL_PHASES:
            return DONE
        previous = dict(status)

        result = None
        try:
            self.tracker.initialize(request)
            if status.get("phase") == PHASE_RUNNING:
                result = self._maintain(request)
        except TerminalException as e:
            logger.error("NodeMaintenance %s failed: %s", name, e)
            self.tracker.update(request, error=e)
        except DrainException as e:
            logger.error("NodeMaintenance %s failed: %s", name, e)
            self.tracker.update(request, result=e.result, error=e)
        except CoreException as e:
            self.tracker.update(request, error=e, terminal=False)
            self._persist(request, previous)
            raise RequeueException(
                "NodeMaintenance {0} will be retried: {1}".format(name, e)
            ) from e

        updated = self._persist(request, previous)
        if updated is None:
            return DONE
        return self._next(updated, result)

    def _maintain(self, request: Dict) -> DrainResult:
        """Cordon, taint and drain the target node for one pass."""
        spec = request.get("spec") or {}
        status = get_status(request)
        node_name = spec.get("nodeName")
        target = status.get("targetNode") or node_name
        if node_name != target:
            raise MalformedRequest(
                "spec.nodeName changed from '{0}' to '{1}' after the maintenance "
                "started; create a new NodeMaintenance instead.".format(target, node_name)
            )

        timeout = self._pass_timeout(request)
        if timeout <= 0:
            raise TerminalException(
                "Maintenance of node '{0}' did not complete within {1} seconds.".format(
                    node_name, spec.get("maxWaitSeconds")
                )
            )

        if self.service.get_node(node_name) is None:
            raise NodeNotFound(node_name)

        add_or_remove_taint(
            self.service, node_name, True, attempts=self.conflict_retries
        )
        if self.watcher is not None:
            self.watcher.track(node_name)
        result = self.sessions.get(node_name).drain(timeout)
        self.tracker.update(request, result=result)
        return result

    def _pass_timeout(self, request: Dict) -> float:
        max_wait = (request.get("spec") or {}).get("maxWaitSeconds")
        created = request["metadata"].get("creationTimestamp")
        if not max_wait or not created:
            return self.drain_timeout
        elapsed = (datetime.now(timezone.utc) - _parse_time(created)).total_seconds()
        return min(self.drain_timeout, max_wait - elapsed)

    def _next(self, request: Dict, result: Optional[DrainResult] = None) -> ReconcileResult:
        metadata = request["metadata"]
        status = get_status(request)
        node_name = status.get("targetNode")

        if status.get("phase") == PHASE_RUNNING:
            # pods may have left while the pass was busy, no need to wait then
            if self.watcher is not None and result is not None and node_name:
                if self.watcher.drained(node_name, result.remaining):
                    return ReconcileResult(requeue_after=0)
            return ReconcileResult(requeue_after=self.requeue_after)

        logger.info(
            "NodeMaintenance %s reached phase %s", metadata["name"], status.get("phase")
        )
        if node_name:
            self._forget(node_name)
        return DONE

    def _forget(self, node_name: str) -> None:
        self.sessions.release(node_name)
        if self.watcher is not None:
            self.watcher.untrack(node_name)

    def _persist(self, request: Dict, previous: Dict) -> Optional[Dict]:
        try:
            return self.tracker.persist(request, previous)
        except CoreException as e:
            raise RequeueException(
                "Failed to update status of NodeMaintenance {0}: {1}".format(
                    request["metadata"]["name"], e
                )
            ) from e

    def finalize(self, name: str, namespace: Optional[str] = None) -> None:
        """Revert the node markers of a request that is being deleted."""
        request = self.service.get_request(name, namespace)
        if request is None:
            return

        status = request.get("status") or {}
        node_name = status.get("targetNode") or (request.get("spec") or {}).get("nodeName")
        if node_name:
            try:
                add_or_remove_taint(
                    self.service,
                    node_name,
                    False,
                    uncordon=True,
                    attempts=self.conflict_retries,
                )
            except NodeNotFound:
                logger.info("Node %s is gone, nothing to revert", node_name)
            except CoreException as e:
                raise RequeueException(
                    "Failed to revert maintenance of node {0}: {1}".format(node_name, e)
                ) from e
            self._forget(node_name)
        logger.info("NodeMaintenance %s finalized", name)
