# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

AUTH_ARG_SPEC = {
    "kubeconfig": {"type": "raw"},
    "context": {},
    "host": {},
    "api_key": {"no_log": True},
    "validate_certs": {"type": "bool", "aliases": ["verify_ssl"]},
    "ca_cert": {"type": "path", "aliases": ["ssl_ca_cert"]},
    "client_cert": {"type": "path", "aliases": ["cert_file"]},
    "client_key": {"type": "path", "aliases": ["key_file"]},
}

WAIT_ARG_SPEC = dict(
    wait=dict(type="bool", default=False),
    wait_sleep=dict(type="int", default=5),
    wait_timeout=dict(type="int", default=600),
)

# Map kubernetes-client parameters to ansible parameters
AUTH_ARG_MAP = {
    "kubeconfig": "kubeconfig",
    "context": "context",
    "host": "host",
    "api_key": "api_key",
    "verify_ssl": "validate_certs",
    "ssl_ca_cert": "ca_cert",
    "cert_file": "client_cert",
    "key_file": "client_key",
}

MAINTENANCE_API_VERSION = "kubevirt.io/v1alpha1"
MAINTENANCE_KIND = "NodeMaintenance"

CONTROLLER_ARG_SPEC = {
    "api_version": {"default": MAINTENANCE_API_VERSION},
    "namespace": {},
    "drain_timeout": {"type": "int", "default": 30},
    "requeue_after": {"type": "int", "default": 5},
    "retry_delay": {"type": "int", "default": 10},
    "eviction_concurrency": {"type": "int", "default": 5},
    "eviction_backoff": {"type": "float", "default": 1.0},
    "eviction_backoff_max": {"type": "float", "default": 10.0},
    "grace_period": {"type": "int"},
    "conflict_retries": {"type": "int", "default": 5},
    "workers": {"type": "int", "default": 2},
    "watch_pods": {"type": "bool", "default": True},
    "log_level": {
        "default": "INFO",
        "choices": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    },
}
