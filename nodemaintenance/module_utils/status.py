# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from ansible.module_utils.common.text.converters import to_native
from nodemaintenance.module_utils.k8s.service import retry_on_conflict

logger = logging.getLogger(__name__)

PHASE_RUNNING = "Running"
PHASE_SUCCEEDED = "Succeeded"
PHASE_FAILED = "Failed"
TERMINAL_PHASES = (PHASE_SUCCEEDED, PHASE_FAILED)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def get_status(request: Dict) -> Dict:
    if request.get("status") is None:
        request["status"] = {}
    return request["status"]


class StatusTracker:
    """Derives the status of a NodeMaintenance and writes it back.

    initialize() and update() only change the request dictionary they are
    given; persist() performs the single status write of a reconcile pass.
    """

    def __init__(self, service, sessions, conflict_retries: int = 5) -> None:
        self.service = service
        self.sessions = sessions
        self.conflict_retries = conflict_retries

    def initialize(self, request: Dict) -> bool:
        status = get_status(request)
        if status.get("phase"):
            return False

        node_name = (request.get("spec") or {}).get("nodeName")
        if not node_name:
            status.update(
                phase=PHASE_FAILED,
                lastError="Malformed request: spec.nodeName must be set.",
                pendingPods=[],
                evictionPods=0,
                totalpods=0,
            )
            return True

        pods, total = self.sessions.get(node_name).census()
        status.update(
            phase=PHASE_RUNNING,
            pendingPods=[pod["metadata"]["name"] for pod in pods],
            evictionPods=len(pods),
            totalpods=total,
            lastError="",
            targetNode=node_name,
        )
        logger.info(
            "NodeMaintenance %s initialized: %d of %d pod(s) on node %s to evict",
            request["metadata"]["name"],
            len(pods),
            total,
            node_name,
        )
        return True

    def update(
        self, request: Dict, result=None, error: Optional[Exception] = None, terminal: bool = True
    ) -> Dict:
        """Fold a drain outcome and/or an error into the status.

        A terminal error fails the request, a retryable one is only recorded in
        lastError. The pods left by a drain are recorded either way. A request
        already Succeeded or Failed is never changed.
        """
        status = get_status(request)
        if status.get("phase") in TERMINAL_PHASES:
            return status

        if result is not None:
            status["pendingPods"] = result.pod_names
        if error is not None:
            status["lastError"] = to_native(error)
            if terminal:
                status["phase"] = PHASE_FAILED
            return status

        if result is not None:
            status["lastError"] = ""
            status["phase"] = PHASE_SUCCEEDED if not result.remaining else PHASE_RUNNING
        return status

    def persist(self, request: Dict, previous: Optional[Dict] = None) -> Optional[Dict]:
        """Write the status of request, returning the updated object.

        Nothing is written when the status equals previous. On conflict the
        request is re-read and the computed status applied to the fresh copy.
        Returns None when the request disappeared meanwhile.
        """
        status = dict(get_status(request))
        if previous is not None and status == previous:
            return request
        status["lastUpdated"] = _now()

        metadata = request["metadata"]
        latest: Optional[Dict] = request

        def _write():
            nonlocal latest
            current = latest or self.service.get_request(
                metadata["name"], metadata.get("namespace")
            )
            latest = None
            if current is None:
                return None
            return self.service.update_request_status(dict(current, status=status))

        return retry_on_conflict(_write, attempts=self.conflict_retries)
