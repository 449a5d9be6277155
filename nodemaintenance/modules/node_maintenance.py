#!/usr/bin/python
# -*- coding: utf-8 -*-

# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

DOCUMENTATION = r"""

module: node_maintenance

short_description: Request or cancel the maintenance of a node

author: Red Hat | Ansible

description:
  - Create a NodeMaintenance object asking the node maintenance operator to
    cordon, taint and drain a node.
  - Deleting the NodeMaintenance object makes the operator remove the taint and
    mark the node schedulable again.
  - Optionally wait for the maintenance to reach a terminal phase, or for the
    object to be gone after a deletion.

options:
  state:
    description:
      - C(present) requests the maintenance of I(node_name).
      - C(absent) cancels it, reverting the node.
    type: str
    choices: [ present, absent ]
    default: present
  name:
    description:
      - Name of the NodeMaintenance object.
      - Defaults to C(maintenance-<node_name>).
    type: str
  namespace:
    description:
      - Namespace of the NodeMaintenance object, only used with a namespaced CRD.
    type: str
  node_name:
    description:
      - The node to put under maintenance.
      - Required when I(state=present).
    type: str
  reason:
    description:
      - Free text explaining the maintenance.
    type: str
  max_wait:
    description:
      - Seconds after which the operator gives up and fails the maintenance.
    type: int
  api_version:
    description:
      - API version of the NodeMaintenance custom resource.
    type: str
    default: kubevirt.io/v1alpha1
  wait:
    description:
      - Wait until the maintenance Succeeded or Failed when I(state=present),
        or until the object is gone when I(state=absent).
    type: bool
    default: false
  wait_sleep:
    description:
      - Number of seconds to sleep between checks.
    type: int
    default: 5
  wait_timeout:
    description:
      - How long in seconds to wait.
    type: int
    default: 600
  kubeconfig:
    description:
      - Path to an existing Kubernetes config file, or its content as a dictionary.
      - Can also be set with the E(K8S_AUTH_KUBECONFIG) environment variable.
    type: raw
  context:
    description:
      - The name of a context found in the config file.
    type: str

requirements:
  - python >= 3.9
  - kubernetes >= 24.2.0
  - PyYAML >= 3.11
"""

EXAMPLES = r"""
- name: Drain node01 for a kernel upgrade
  node_maintenance:
    node_name: node01
    reason: kernel upgrade
    wait: true
    wait_timeout: 1800

- name: Give node01 back to the scheduler
  node_maintenance:
    state: absent
    node_name: node01
    wait: true
"""

RETURN = r"""
result:
  description:
    - The NodeMaintenance object. Empty after a deletion.
  returned: success
  type: complex
  contains:
    metadata:
      description: Standard object metadata.
      returned: success
      type: complex
    spec:
      description: The requested node, reason and deadline.
      returned: success
      type: complex
    status:
      description: Phase, pending pods and last error reported by the operator.
      returned: when the operator picked the request up
      type: complex
duration:
  description: Seconds spent waiting.
  returned: when I(wait=true)
  type: int
"""

from nodemaintenance.module_utils.args_common import (
    MAINTENANCE_API_VERSION,
    MAINTENANCE_KIND,
)
from nodemaintenance.module_utils.k8s.client import get_api_client
from nodemaintenance.module_utils.k8s.core import NodeMaintenanceModule
from nodemaintenance.module_utils.k8s.exceptions import (
    CoreException,
    ResourceTimeout,
)
from nodemaintenance.module_utils.k8s.service import (
    MaintenanceService,
    format_dynamic_api_exc,
)
from nodemaintenance.module_utils.k8s.waiter import get_waiter
from nodemaintenance.module_utils.status import PHASE_FAILED


def argspec():
    return dict(
        state=dict(type="str", choices=["present", "absent"], default="present"),
        name=dict(type="str"),
        namespace=dict(type="str"),
        node_name=dict(type="str"),
        reason=dict(type="str"),
        max_wait=dict(type="int"),
        api_version=dict(type="str", default=MAINTENANCE_API_VERSION),
    )


class NodeMaintenanceAnsible:
    def __init__(self, module, client):
        self._module = module
        self.client = client
        self.service = MaintenanceService(
            client, module.params["api_version"], module.params.get("namespace")
        )

    @property
    def name(self):
        name = self._module.params.get("name")
        if name:
            return name
        return "maintenance-{0}".format(self._module.params["node_name"])

    def definition(self):
        spec = {"nodeName": self._module.params["node_name"]}
        if self._module.params.get("reason"):
            spec["reason"] = self._module.params["reason"]
        if self._module.params.get("max_wait") is not None:
            spec["maxWaitSeconds"] = self._module.params["max_wait"]
        metadata = {"name": self.name}
        if self._module.params.get("namespace"):
            metadata["namespace"] = self._module.params["namespace"]
        return {
            "apiVersion": self._module.params["api_version"],
            "kind": MAINTENANCE_KIND,
            "metadata": metadata,
            "spec": spec,
        }

    def wait(self, state):
        waiter = get_waiter(self.client, self.service.maintenances, state=state)
        satisfied, instance, duration = waiter.wait(
            timeout=self._module.params["wait_timeout"],
            sleep=self._module.params["wait_sleep"],
            name=self.name,
            namespace=self._module.params.get("namespace"),
        )
        if not satisfied:
            raise ResourceTimeout(
                "Timed out waiting on NodeMaintenance {0}".format(self.name),
                {"result": instance, "duration": duration},
            )
        return instance, duration

    def create(self):
        definition = self.definition()
        if self._module.check_mode:
            return definition
        try:
            return self.client.create(self.service.maintenances, definition).to_dict()
        except Exception as e:
            raise CoreException(
                "Failed to create NodeMaintenance {0} due to: {1}".format(
                    self.name, format_dynamic_api_exc(e)
                )
            ) from e

    def delete(self):
        if self._module.check_mode:
            return
        params = {"name": self.name}
        if self._module.params.get("namespace"):
            params["namespace"] = self._module.params["namespace"]
        try:
            self.client.delete(self.service.maintenances, **params)
        except Exception as e:
            raise CoreException(
                "Failed to delete NodeMaintenance {0} due to: {1}".format(
                    self.name, format_dynamic_api_exc(e)
                )
            ) from e

    def present(self):
        result = {"changed": False}
        existing = self.service.get_request(self.name, self._module.params.get("namespace"))
        if existing is not None:
            node_name = (existing.get("spec") or {}).get("nodeName")
            if node_name != self._module.params["node_name"]:
                self._module.fail_json(
                    msg="NodeMaintenance {0} already targets node '{1}'.".format(
                        self.name, node_name
                    ),
                    result=existing,
                )
            result["result"] = existing
        else:
            result["changed"] = True
            result["result"] = self.create()

        if self._module.params["wait"] and not self._module.check_mode:
            result["result"], result["duration"] = self.wait("present")
            status = result["result"].get("status") or {}
            if status.get("phase") == PHASE_FAILED:
                self._module.fail_json(
                    msg="Maintenance of node '{0}' failed: {1}".format(
                        self._module.params["node_name"], status.get("lastError")
                    ),
                    **result
                )
        return result

    def absent(self):
        result = {"changed": False, "result": {}}
        existing = self.service.get_request(self.name, self._module.params.get("namespace"))
        if existing is None:
            return result
        result["changed"] = True
        self.delete()
        if self._module.params["wait"] and not self._module.check_mode:
            _instance, result["duration"] = self.wait("absent")
        return result

    def execute_module(self):
        if self._module.params["state"] == "present":
            result = self.present()
        else:
            result = self.absent()
        self._module.exit_json(**result)


def main():
    module = NodeMaintenanceModule(
        argument_spec=argspec(),
        required_if=[("state", "present", ["node_name"])],
        required_one_of=[("name", "node_name")],
        supports_check_mode=True,
    )
    try:
        client = get_api_client(module.params)
        NodeMaintenanceAnsible(module, client).execute_module()
    except CoreException as e:
        module.fail_from_exception(e)


if __name__ == "__main__":
    main()
