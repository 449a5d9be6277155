# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import json
import logging
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from ansible.module_utils.common.text.converters import to_native
from nodemaintenance.module_utils.args_common import (
    MAINTENANCE_API_VERSION,
    MAINTENANCE_KIND,
)
from nodemaintenance.module_utils.k8s.exceptions import (
    ConflictException,
    CoreException,
    DisruptionBudgetBlocked,
    DrainException,
)

from kubernetes.dynamic.exceptions import (
    ConflictError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
    TooManyRequestsError,
)
from kubernetes.dynamic.resource import Resource
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

FINALIZER = "foregroundDeleteNodeMaintenance"
MERGE_PATCH = "application/merge-patch+json"

# seconds between attempts of a write that lost a race
CONFLICT_BACKOFF = 0.05
CONFLICT_BACKOFF_MAX = 1.0

T = TypeVar("T")


def format_dynamic_api_exc(exc) -> str:
    body = getattr(exc, "body", None)
    if body:
        headers = getattr(exc, "headers", None) or {}
        if headers.get("Content-Type") == "application/json":
            try:
                message = json.loads(body).get("message")
            except (TypeError, ValueError):
                message = None
            if message:
                return message
        return to_native(body)
    if hasattr(exc, "status"):
        return "%s Reason: %s" % (exc.status, exc.reason)
    return to_native(exc)


def _failure(action: str, exc: Exception) -> CoreException:
    return CoreException("Failed to {0} due to: {1}".format(action, format_dynamic_api_exc(exc)))


def retry_on_conflict(func: Callable[[], T], attempts: int = 5) -> T:
    """Run func, calling it again while it raises ConflictException.

    func is expected to re-read the object it writes on every call. The last
    ConflictException is re-raised once the attempts are exhausted.
    """
    retrying = Retrying(
        retry=retry_if_exception_type(ConflictException),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=CONFLICT_BACKOFF, max=CONFLICT_BACKOFF_MAX),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    )
    return retrying(func)


class MaintenanceService:
    """Access to the NodeMaintenance, Node and Pod objects of the cluster.

    All objects are returned as plain dictionaries. Reads of missing objects
    return None, write conflicts raise ConflictException and any other API
    failure raises CoreException with the message sent by the API server.
    """

    def __init__(
        self,
        client,
        api_version: str = MAINTENANCE_API_VERSION,
        namespace: Optional[str] = None,
    ) -> None:
        self.client = client
        self.api_version = api_version
        self.namespace = namespace
        self._resources: Dict[Tuple[str, str], Resource] = {}

    def find_resource(self, kind: str, api_version: str) -> Resource:
        key = (kind, api_version)
        if key not in self._resources:
            try:
                self._resources[key] = self.client.resource(kind, api_version)
            except (ResourceNotFoundError, ResourceNotUniqueError) as e:
                raise CoreException(
                    "Failed to find exact match for %s.%s by [kind, name, singularName, shortNames]"
                    % (api_version, kind)
                ) from e
        return self._resources[key]

    @property
    def maintenances(self) -> Resource:
        return self.find_resource(MAINTENANCE_KIND, self.api_version)

    @property
    def nodes(self) -> Resource:
        return self.find_resource("Node", "v1")

    @property
    def pods(self) -> Resource:
        return self.find_resource("Pod", "v1")

    def _get(self, resource: Resource, what: str, **params) -> Optional[Dict]:
        try:
            return self.client.get(resource, **params).to_dict()
        except NotFoundError:
            return None
        except Exception as e:
            raise _failure("retrieve {0}".format(what), e) from e

    def _write(self, what: str, call: Callable, *args, **kwargs) -> Dict:
        try:
            return call(*args, **kwargs).to_dict()
        except ConflictError as e:
            raise ConflictException(
                "Conflict while updating {0}: {1}".format(what, format_dynamic_api_exc(e))
            ) from e
        except Exception as e:
            raise _failure("update {0}".format(what), e) from e

    # NodeMaintenance

    def get_request(self, name: str, namespace: Optional[str] = None) -> Optional[Dict]:
        params = {"name": name}
        namespace = namespace or self.namespace
        if namespace:
            params["namespace"] = namespace
        return self._get(self.maintenances, "NodeMaintenance '{0}'".format(name), **params)

    def update_request_status(self, request: Dict) -> Dict:
        metadata = request["metadata"]
        resource = self.maintenances
        # Write through the status subresource when the CRD declares one
        target = resource.subresources.get("status", resource)
        return self._write(
            "status of NodeMaintenance '{0}'".format(metadata["name"]),
            self.client.replace,
            target,
            request,
            name=metadata["name"],
            namespace=metadata.get("namespace"),
        )

    # Node

    def get_node(self, name: str) -> Optional[Dict]:
        return self._get(self.nodes, "node '{0}'".format(name), name=name)

    def patch_node(
        self, name: str, patch: Dict, resource_version: Optional[str] = None
    ) -> Dict:
        if resource_version:
            patch = dict(patch, metadata={"resourceVersion": resource_version})
        return self._write(
            "node '{0}'".format(name),
            self.client.patch,
            self.nodes,
            patch,
            name=name,
            content_type=MERGE_PATCH,
        )

    # Pod

    def list_pods(self, node_name: str) -> List[Dict]:
        result = self._get(
            self.pods, "pods", field_selector="spec.nodeName={0}".format(node_name)
        )
        return (result or {}).get("items") or []

    def read_pod(self, namespace: str, name: str) -> Optional[Dict]:
        return self._get(
            self.pods, "pod {0}/{1}".format(namespace, name), name=name, namespace=namespace
        )

    def evict_pod(self, namespace: str, name: str, grace_period: Optional[int] = None) -> bool:
        """Ask the API server to evict a pod.

        Returns False when the pod no longer exists. Raises
        DisruptionBudgetBlocked when a disruption budget refuses the eviction.
        """
        body = {
            "apiVersion": "policy/v1",
            "kind": "Eviction",
            "metadata": {"name": name, "namespace": namespace},
        }
        if grace_period is not None:
            body["deleteOptions"] = {"gracePeriodSeconds": grace_period}
        try:
            self.client.create(
                self.pods.subresources["eviction"], body, name=name, namespace=namespace
            )
        except NotFoundError:
            return False
        except TooManyRequestsError as e:
            raise DisruptionBudgetBlocked(
                "Cannot evict pod {0}/{1}: {2}".format(
                    namespace, name, format_dynamic_api_exc(e)
                )
            ) from e
        except Exception as e:
            raise DrainException(
                "Failed to evict pod {0}/{1} due to: {2}".format(
                    namespace, name, format_dynamic_api_exc(e)
                )
            ) from e
        return True
