# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import time
from typing import Callable, Dict, Iterator, Optional, Tuple

from nodemaintenance.module_utils.k8s.exceptions import CoreException

from kubernetes.dynamic.exceptions import NotFoundError
from kubernetes.dynamic.resource import Resource, ResourceInstance
from urllib3.exceptions import HTTPError

TERMINAL_PHASES = ("Succeeded", "Failed")


def pod_ready(pod: Optional[Dict]) -> bool:
    """Readiness of a pod given as a plain dictionary (watch raw_object)."""
    status = (pod or {}).get("status") or {}
    conditions = status.get("conditions") or []
    ready = [c for c in conditions if c.get("type") == "Ready"]
    if ready:
        return ready[0].get("status") == "True"
    container_statuses = status.get("containerStatuses")
    return container_statuses is not None and all(
        c.get("ready") for c in container_statuses
    )


def maintenance_finished(resource: Optional[ResourceInstance]) -> bool:
    return bool(
        resource and resource.status and resource.status.phase in TERMINAL_PHASES
    )


def resource_absent(resource: Optional[ResourceInstance]) -> bool:
    return not exists(resource)


def exists(resource: Optional[ResourceInstance]) -> bool:
    """Simple predicate to check for existence of a resource.

    While a List type resource technically always exists, this will only return
    true if the List contains items."""
    return bool(resource) and not empty_list(resource)


def empty_list(resource: ResourceInstance) -> bool:
    return resource["kind"].endswith("List") and not resource.get("items")


def clock(total: float, interval: float) -> Iterator[int]:
    start = time.monotonic()
    yield 0
    while (time.monotonic() - start) < total:
        time.sleep(interval)
        yield int(time.monotonic() - start)


class Waiter:
    def __init__(
        self, client, resource: Resource, predicate: Callable[[ResourceInstance], bool]
    ):
        self.client = client
        self.resource = resource
        self.predicate = predicate

    def wait(
        self,
        timeout: int,
        sleep: int,
        name: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> Tuple[bool, Dict, int]:
        params = {}

        if name:
            params["name"] = name

        if namespace:
            params["namespace"] = namespace

        instance = {}
        response = None
        elapsed = 0
        for i in clock(timeout, sleep):
            exception = None
            elapsed = i
            try:
                response = self.client.get(self.resource, **params)
            except NotFoundError:
                response = None
            # Retry connection errors as it may be intermittent network issues
            except HTTPError as e:
                exception = e
            if self.predicate(response):
                break
        if exception:
            msg = (
                "Exception '{0}' raised while trying to get resource using {1}".format(
                    exception, params
                )
            )
            raise CoreException(msg) from exception
        if response:
            instance = response.to_dict()
        return self.predicate(response), instance, elapsed


def get_waiter(client, resource: Resource, state: str = "present") -> Waiter:
    """Waiter for a NodeMaintenance: terminal phase when present, gone when absent."""
    if state == "present":
        return Waiter(client, resource, maintenance_finished)
    return Waiter(client, resource, resource_absent)
