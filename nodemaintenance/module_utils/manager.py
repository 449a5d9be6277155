# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import logging
from functools import partial
from typing import Dict, Optional

import kopf
from nodemaintenance.module_utils.drain import Drainer, DrainSessions
from nodemaintenance.module_utils.handlers import register
from nodemaintenance.module_utils.k8s.service import FINALIZER, MaintenanceService
from nodemaintenance.module_utils.reconcile import Reconciler
from nodemaintenance.module_utils.status import StatusTracker
from nodemaintenance.module_utils.watcher import PodWatcher

logger = logging.getLogger(__name__)

WATCH_TIMEOUT = 300
RECONNECT_DELAY = 5
ANNOTATIONS_PREFIX = "nodemaintenance.kubevirt.io"


class Manager:
    """Wires the controller together and runs it under kopf.

    kopf delivers NodeMaintenance and pod events to the handlers registered
    in self.registry; the handlers find this object in the operator memo.
    """

    def __init__(self, client, settings: Dict) -> None:
        self.settings = settings
        self.service = MaintenanceService(
            client, settings["api_version"], settings.get("namespace")
        )
        self.sessions = DrainSessions(
            partial(
                Drainer,
                self.service,
                grace_period=settings.get("grace_period"),
                concurrency=settings["eviction_concurrency"],
                backoff_initial=settings["eviction_backoff"],
                backoff_max=settings["eviction_backoff_max"],
            )
        )
        self.tracker = StatusTracker(
            self.service, self.sessions, conflict_retries=settings["conflict_retries"]
        )
        self.watcher: Optional[PodWatcher] = None
        if settings["watch_pods"]:
            self.watcher = PodWatcher(self.service)
        self.reconciler = Reconciler(
            self.service,
            self.sessions,
            self.tracker,
            watcher=self.watcher,
            requeue_after=settings["requeue_after"],
            drain_timeout=settings["drain_timeout"],
            conflict_retries=settings["conflict_retries"],
        )
        self.registry = register(kopf.OperatorRegistry(), settings)

    def configure(self, settings: kopf.OperatorSettings) -> None:
        """Apply our settings to kopf at startup."""
        settings.persistence.finalizer = FINALIZER
        # status belongs to the NodeMaintenance API, keep kopf state in annotations
        settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
            prefix=ANNOTATIONS_PREFIX
        )
        settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
            prefix=ANNOTATIONS_PREFIX
        )
        settings.execution.max_workers = self.settings["workers"]
        settings.watching.server_timeout = WATCH_TIMEOUT
        settings.watching.reconnect_delay = RECONNECT_DELAY
        # progress is reported in the NodeMaintenance status
        settings.posting.enabled = False

    def connection_info(self) -> kopf.ConnectionInfo:
        """Let kopf talk to the cluster with the credentials of our client."""
        configuration = self.service.client.configuration
        header = configuration.get_api_key_with_prefix("authorization")
        scheme, token = None, None
        if header:
            parts = header.split(" ", 1)
            if len(parts) == 1:
                token = parts[0]
            else:
                scheme, token = parts
        return kopf.ConnectionInfo(
            server=configuration.host,
            ca_path=configuration.ssl_ca_cert,
            insecure=not configuration.verify_ssl,
            username=configuration.username or None,
            password=configuration.password or None,
            scheme=scheme,
            token=token,
            certificate_path=configuration.cert_file,
            private_key_path=configuration.key_file,
            default_namespace=self.settings.get("namespace"),
        )

    def run(self) -> None:
        """Run the operator until it receives SIGINT or SIGTERM."""
        namespace = self.settings.get("namespace")
        logger.info(
            "Starting node maintenance controller with %d worker(s)",
            self.settings["workers"],
        )
        kopf.run(
            registry=self.registry,
            standalone=True,
            clusterwide=namespace is None,
            namespaces=[namespace] if namespace else [],
            memo=kopf.Memo(manager=self),
        )
        logger.info("Node maintenance controller stopped")
