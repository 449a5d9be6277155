# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import os
from typing import Dict, Optional

import yaml
from ansible.module_utils.common.arg_spec import ArgumentSpecValidator
from nodemaintenance.module_utils.args_common import CONTROLLER_ARG_SPEC
from nodemaintenance.module_utils.k8s.exceptions import CoreException

ENV_PREFIX = "NODE_MAINTENANCE_"

# Values that must be strictly positive for the controller to make progress.
_POSITIVE = (
    "drain_timeout",
    "retry_delay",
    "eviction_concurrency",
    "eviction_backoff",
    "eviction_backoff_max",
    "conflict_retries",
    "workers",
)


def _from_file(path: str) -> Dict:
    try:
        with open(path) as fp:
            data = yaml.safe_load(fp) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CoreException(
            "Failed to load settings from {0}: {1}".format(path, e)
        ) from e
    if not isinstance(data, dict):
        raise CoreException("Settings file {0} must hold a mapping".format(path))
    return data


def _from_env(params: Dict, defaults: Dict) -> Dict:
    merged = dict(defaults)
    for name in CONTROLLER_ARG_SPEC:
        if params.get(name) is not None:
            merged[name] = params[name]
            continue
        env_value = os.getenv("{0}{1}".format(ENV_PREFIX, name.upper()), None)
        if env_value is not None:
            merged[name] = env_value
    return merged


def load_settings(params: Optional[Dict] = None, config_file: Optional[str] = None) -> Dict:
    """Build the controller settings.

    Explicit parameters win over NODE_MAINTENANCE_* environment variables,
    which win over the YAML config_file, which wins over the defaults of
    CONTROLLER_ARG_SPEC. String values coming from the environment are
    converted by the argument spec validator.
    """
    defaults = _from_file(config_file) if config_file else {}
    validator = ArgumentSpecValidator(CONTROLLER_ARG_SPEC)
    result = validator.validate(_from_env(params or {}, defaults))
    if result.error_messages:
        raise CoreException(
            "Invalid controller settings: {0}".format(
                "; ".join(result.error_messages)
            )
        )

    settings = result.validated_parameters
    invalid = [name for name in _POSITIVE if settings[name] <= 0]
    if invalid:
        raise CoreException(
            "Invalid controller settings: {0} must be greater than zero".format(
                ", ".join(invalid)
            )
        )
    if settings["requeue_after"] < 0:
        raise CoreException(
            "Invalid controller settings: requeue_after must not be negative"
        )
    return settings
