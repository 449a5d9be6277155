# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import logging
from typing import Dict, List, Optional

from nodemaintenance.module_utils.k8s.exceptions import NodeNotFound
from nodemaintenance.module_utils.k8s.service import retry_on_conflict

logger = logging.getLogger(__name__)

MAINTENANCE_TAINT = {"key": "kubevirt.io/drain", "effect": "NoSchedule"}
UNSCHEDULABLE_TAINT = {"key": "node.kubernetes.io/unschedulable", "effect": "NoSchedule"}
MAINTENANCE_TAINTS = [MAINTENANCE_TAINT, UNSCHEDULABLE_TAINT]


def _equal_taints(a: Dict, b: Dict) -> bool:
    return a.get("key") == b.get("key") and a.get("effect") == b.get("effect")


def _get_difference(a: List[Dict], b: List[Dict]) -> List[Dict]:
    return [a_item for a_item in a if not any(_equal_taints(a_item, b_item) for b_item in b)]


def maintenance_taints(taints: Optional[List[Dict]], enable: bool) -> List[Dict]:
    """Return a new taint list with the maintenance taints added or removed.

    Unrelated taints are kept unchanged and in their original order; added
    taints are appended at the end.
    """
    existing = list(taints or [])
    if enable:
        return existing + _get_difference(MAINTENANCE_TAINTS, existing)
    return _get_difference(existing, MAINTENANCE_TAINTS)


def apply_maintenance(node: Dict, enable: bool, uncordon: bool = False) -> Optional[Dict]:
    """Compute the patch bringing a node in or out of maintenance.

    Returns None when the node is already in the requested state. Enabling
    always cordons the node; disabling leaves schedulability alone unless
    uncordon is set.
    """
    spec = node.get("spec") or {}
    current = spec.get("taints") or []
    taints = maintenance_taints(current, enable)

    patch = {}
    if taints != current:
        patch["taints"] = taints
    unschedulable = bool(spec.get("unschedulable"))
    if enable and not unschedulable:
        patch["unschedulable"] = True
    elif not enable and uncordon and unschedulable:
        patch["unschedulable"] = False

    if not patch:
        return None
    return {"spec": patch}


def add_or_remove_taint(
    service, node_name: str, enable: bool, uncordon: bool = False, attempts: int = 5
) -> bool:
    """Read-modify-write the maintenance markers of a node.

    Returns True when the node was changed. Raises NodeNotFound when the node
    is gone and ConflictException when every attempt lost a write race.
    """

    def _apply():
        node = service.get_node(node_name)
        if node is None:
            raise NodeNotFound(node_name)
        patch = apply_maintenance(node, enable, uncordon=uncordon)
        if patch is None:
            return False
        service.patch_node(
            node_name, patch, resource_version=node["metadata"].get("resourceVersion")
        )
        logger.info(
            "Node %s: maintenance markers %s%s",
            node_name,
            "added" if enable else "removed",
            ", uncordoned" if patch["spec"].get("unschedulable") is False else "",
        )
        return True

    return retry_on_conflict(_apply, attempts=attempts)
