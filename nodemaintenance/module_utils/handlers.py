# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

"""kopf handlers of the node maintenance operator.

kopf watches the NodeMaintenance objects, serializes the handling of each
object and keeps our finalizer on it. Every handler delegates to the Manager
found in the operator memo, a requeue hint or a retryable error becomes a
kopf.TemporaryError carrying the delay.
"""

import kopf
from nodemaintenance.module_utils.args_common import MAINTENANCE_KIND
from nodemaintenance.module_utils.k8s.exceptions import CoreException


def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_) -> None:
    memo.manager.configure(settings)


def login(memo: kopf.Memo, **_) -> kopf.ConnectionInfo:
    return memo.manager.connection_info()


def reconcile_request(name, namespace, memo: kopf.Memo, logger, **_) -> None:
    manager = memo.manager
    try:
        result = manager.reconciler.reconcile(name, namespace)
    except CoreException as e:
        raise kopf.TemporaryError(str(e), delay=manager.settings["retry_delay"]) from e
    if result.requeue:
        logger.debug("Maintenance in progress, next pass in %ss", result.requeue_after)
        raise kopf.TemporaryError(
            "NodeMaintenance {0} is still in progress".format(name),
            delay=result.requeue_after,
        )


def finalize_request(name, namespace, memo: kopf.Memo, **_) -> None:
    manager = memo.manager
    try:
        manager.reconciler.finalize(name, namespace)
    except CoreException as e:
        raise kopf.TemporaryError(str(e), delay=manager.settings["retry_delay"]) from e


def pod_event(event, memo: kopf.Memo, **_) -> None:
    memo.manager.watcher.handle_event(event.get("type"), event["object"])


def register(registry: kopf.OperatorRegistry, settings) -> kopf.OperatorRegistry:
    """Register the handlers for the configured NodeMaintenance API version."""
    group, _sep, version = settings["api_version"].rpartition("/")
    selector = dict(group=group, version=version, kind=MAINTENANCE_KIND)
    backoff = settings["retry_delay"]

    kopf.on.startup(registry=registry)(configure)
    kopf.on.login(registry=registry)(login)
    kopf.on.create(registry=registry, backoff=backoff, **selector)(reconcile_request)
    kopf.on.resume(registry=registry, backoff=backoff, **selector)(reconcile_request)
    kopf.on.update(registry=registry, backoff=backoff, **selector)(reconcile_request)
    kopf.on.delete(registry=registry, backoff=backoff, **selector)(finalize_request)
    if settings["watch_pods"]:
        kopf.on.event("v1", "pods", registry=registry)(pod_event)
    return registry
