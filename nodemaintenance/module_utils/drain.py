# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from nodemaintenance.module_utils.k8s.exceptions import (
    DisruptionBudgetBlocked,
    DrainException,
)
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_before_delay,
    stop_when_event_set,
    wait_exponential,
)

logger = logging.getLogger(__name__)

MIRROR_ANNOTATION = "kubernetes.io/config.mirror"


def _pod_key(pod: Dict) -> Tuple[str, str]:
    return pod["metadata"].get("namespace"), pod["metadata"]["name"]


def filter_pods(pods: List[Dict]) -> Tuple[List[Dict], List[str]]:
    """Split the pods of a node into the ones to evict and warnings about the
    ones that are left alone."""
    daemonset, mirror, to_evict = [], [], []
    for pod in pods:
        metadata = pod["metadata"]
        # mirror pods cannot be deleted using the API server
        if MIRROR_ANNOTATION in (metadata.get("annotations") or {}):
            mirror.append(_pod_key(pod))
            continue
        owners = metadata.get("ownerReferences") or []
        if any(owner.get("kind") == "DaemonSet" for owner in owners):
            daemonset.append(_pod_key(pod))
            continue
        to_evict.append(pod)

    warnings = []
    if mirror:
        pod_names = ",".join("%s/%s" % pod for pod in mirror)
        warnings.append("Ignoring mirror Pods: {0}.".format(pod_names))
    if daemonset:
        pod_names = ",".join("%s/%s" % pod for pod in daemonset)
        warnings.append("Ignoring DaemonSet-managed Pods: {0}.".format(pod_names))
    return to_evict, warnings


class DrainResult(NamedTuple):
    evicted: int
    remaining: List[Tuple[str, str]]

    @property
    def pod_names(self) -> List[str]:
        return [name for _namespace, name in self.remaining]


class Drainer:
    """Drain session for a single node."""

    def __init__(
        self,
        service,
        node_name: str,
        grace_period: Optional[int] = None,
        concurrency: int = 5,
        backoff_initial: float = 1.0,
        backoff_max: float = 10.0,
        poll_interval: float = 1.0,
    ) -> None:
        self.service = service
        self.node_name = node_name
        self.grace_period = grace_period
        self.concurrency = concurrency
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.poll_interval = poll_interval
        self._lock = threading.Lock()

    def census(self) -> Tuple[List[Dict], int]:
        """Pods to evict and the number of pods currently on the node."""
        pods = self.service.list_pods(self.node_name)
        to_evict, warnings = filter_pods(pods)
        for warning in warnings:
            logger.info("Node %s: %s", self.node_name, warning)
        return to_evict, len(pods)

    def _gone(self, namespace: str, name: str, uid: Optional[str]) -> bool:
        pod = self.service.read_pod(namespace, name)
        if pod is None:
            return True
        # a pod recreated under the same name or moved elsewhere is not ours
        return pod["metadata"].get("uid") != uid or (
            (pod.get("spec") or {}).get("nodeName") != self.node_name
        )

    def _evict(self, pod: Dict, deadline: float, abandon: threading.Event) -> bool:
        namespace, name = _pod_key(pod)
        uid = pod["metadata"].get("uid")

        def _left():
            return max(0.0, deadline - time.monotonic())

        if abandon.is_set() or not _left():
            return False
        # a disruption budget may allow the eviction later, retry until the deadline
        retrying = Retrying(
            retry=retry_if_exception_type(DisruptionBudgetBlocked),
            wait=wait_exponential(multiplier=self.backoff_initial, max=self.backoff_max),
            stop=stop_when_event_set(abandon) | stop_before_delay(_left()),
            sleep=abandon.wait,
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )
        try:
            if not retrying(self.service.evict_pod, namespace, name, self.grace_period):
                return True
        except DisruptionBudgetBlocked:
            return False

        while not abandon.is_set() and _left():
            if self._gone(namespace, name, uid):
                logger.debug("Pod %s/%s left node %s", namespace, name, self.node_name)
                return True
            abandon.wait(min(self.poll_interval, _left()))
        return False

    def drain(self, timeout: float) -> DrainResult:
        """Evict every eligible pod of the node, waiting at most timeout seconds.

        Pods still on the node when the timeout elapses are reported in
        DrainResult.remaining. A non-retryable eviction failure raises
        DrainException.
        """
        with self._lock:
            deadline = time.monotonic() + timeout
            pods, _total = self.census()
            if not pods:
                return DrainResult(evicted=0, remaining=[])

            abandon = threading.Event()
            executor = ThreadPoolExecutor(
                max_workers=min(self.concurrency, len(pods)),
                thread_name_prefix="evict-{0}".format(self.node_name),
            )
            try:
                futures = {
                    executor.submit(self._evict, pod, deadline, abandon): _pod_key(pod)
                    for pod in pods
                }
                _done, pending = wait(futures, timeout=max(0.0, deadline - time.monotonic()))
            finally:
                abandon.set()
                executor.shutdown(wait=False, cancel_futures=True)

            evicted, remaining, errors = 0, [], []
            for future, key in futures.items():
                if future in pending or future.cancelled():
                    remaining.append(key)
                elif future.exception() is not None:
                    errors.append(future.exception())
                    remaining.append(key)
                elif future.result():
                    evicted += 1
                else:
                    remaining.append(key)

            result = DrainResult(evicted=evicted, remaining=sorted(remaining))
            if errors:
                error = errors[0]
                raise DrainException(
                    "Failed to drain node {0}: {1}".format(self.node_name, error),
                    result=result,
                ) from error

            logger.info(
                "Node %s: %d pod(s) evicted, %d remaining",
                self.node_name,
                evicted,
                len(remaining),
            )
            return result


class DrainSessions:
    """Drain sessions shared by the reconcile workers, keyed by node name."""

    def __init__(self, factory: Callable[[str], Drainer]) -> None:
        self._factory = factory
        self._sessions: Dict[str, Drainer] = {}
        self._lock = threading.Lock()

    def get(self, node_name: str) -> Drainer:
        with self._lock:
            session = self._sessions.get(node_name)
            if session is None:
                session = self._factory(node_name)
                self._sessions[node_name] = session
            return session

    def release(self, node_name: str) -> None:
        with self._lock:
            self._sessions.pop(node_name, None)

    def __contains__(self, node_name: str) -> bool:
        with self._lock:
            return node_name in self._sessions
