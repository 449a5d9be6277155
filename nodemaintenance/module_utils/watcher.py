# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import logging
import threading
from typing import Dict, Iterable, Mapping, Optional, Tuple

from nodemaintenance.module_utils.k8s.exceptions import CoreException
from nodemaintenance.module_utils.k8s.waiter import pod_ready

logger = logging.getLogger(__name__)

PodKey = Tuple[str, str]


def _key(pod: Mapping) -> PodKey:
    metadata = pod.get("metadata") or {}
    return metadata.get("namespace"), metadata.get("name")


class PodWatcher:
    """Best effort cache of the pods on nodes under maintenance.

    The operator feeds it every pod event it receives. A reconcile pass asks
    it whether the pods a drain left behind are gone already, so that the
    next pass can start at once instead of after the periodic requeue. The
    cache is never used to decide the outcome of a maintenance.
    """

    def __init__(self, service) -> None:
        self.service = service
        self._lock = threading.Lock()
        # node name -> {(namespace, name): ready}, for tracked nodes only
        self._pods: Dict[str, Dict[PodKey, bool]] = {}

    def track(self, node_name: str) -> None:
        """Start following the pods of node_name, seeding the view with a list."""
        with self._lock:
            if node_name in self._pods:
                return
        try:
            pods = self.service.list_pods(node_name)
        except CoreException as e:
            logger.warning("Unable to list pods of node %s: %s", node_name, e)
            return
        with self._lock:
            self._pods.setdefault(node_name, {_key(pod): pod_ready(pod) for pod in pods})

    def untrack(self, node_name: str) -> None:
        with self._lock:
            self._pods.pop(node_name, None)

    def drained(self, node_name: str, pods: Iterable[PodKey]) -> Optional[bool]:
        """Whether none of pods is on the node anymore, None when unknown."""
        with self._lock:
            seen = self._pods.get(node_name)
            if seen is None:
                return None
            return not any(tuple(key) in seen for key in pods)

    def handle_event(self, event_type: Optional[str], pod: Mapping) -> None:
        node_name = (pod.get("spec") or {}).get("nodeName")
        key = _key(pod)
        with self._lock:
            seen = self._pods.get(node_name)
            if seen is None:
                return
            if event_type == "DELETED":
                seen.pop(key, None)
            else:
                seen[key] = pod_ready(pod)
        logger.debug("Pod %s/%s on node %s: %s", key[0], key[1], node_name, event_type)
