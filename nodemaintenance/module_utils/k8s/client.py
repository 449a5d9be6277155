# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import os
from typing import Any, Dict, Optional

from nodemaintenance.module_utils.args_common import AUTH_ARG_MAP, AUTH_ARG_SPEC
from nodemaintenance.module_utils.k8s.exceptions import CoreException

import kubernetes
import urllib3
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import (
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from kubernetes.dynamic.resource import Resource

urllib3.disable_warnings()


def _create_auth_spec(params: Optional[Dict] = None, **kwargs) -> Dict:
    """Collect connection settings from params, then kwargs, then K8S_AUTH_* variables."""
    auth: Dict = {}
    params = params or {}
    for true_name, arg_name in AUTH_ARG_MAP.items():
        value = params.get(arg_name)
        if value is None:
            value = kwargs.get(arg_name, kwargs.get(true_name))
        if value is None:
            value = os.getenv("K8S_AUTH_{0}".format(arg_name.upper())) or os.getenv(
                "K8S_AUTH_{0}".format(true_name.upper())
            )
            if value is not None and AUTH_ARG_SPEC[arg_name].get("type") == "bool":
                value = value.lower() not in ["0", "false", "no"]
        if value is not None:
            auth[true_name] = value
    return auth


def _load_config(auth: Dict) -> None:
    kubeconfig = auth.get("kubeconfig")
    if isinstance(kubeconfig, dict):
        kubernetes.config.load_kube_config_from_dict(
            config_dict=kubeconfig, context=auth.get("context")
        )
    else:
        kubernetes.config.load_kube_config(config_file=kubeconfig, context=auth.get("context"))


def _create_configuration(auth: Dict):
    def auth_set(*names: str) -> bool:
        return all(auth.get(name) for name in names)

    if auth_set("host"):
        # Removing trailing slashes if any from hostname
        auth["host"] = auth.get("host").rstrip("/")

    if auth_set("api_key", "host") or auth_set("cert_file", "key_file", "host"):
        # We have enough in the parameters to authenticate, no need to load incluster or kubeconfig
        pass
    elif auth_set("kubeconfig") or auth_set("context"):
        _load_config(auth)
    else:
        # The operator normally runs in a pod, try its service account first
        try:
            kubernetes.config.load_incluster_config()
        except kubernetes.config.ConfigException:
            _load_config(auth)

    configuration = kubernetes.client.Configuration().get_default_copy()

    for key, value in auth.items():
        if value is None:
            continue
        if key == "api_key":
            configuration.api_key = {"authorization": "Bearer {0}".format(value)}
        else:
            setattr(configuration, key, value)

    return configuration


class K8SClient:
    """A thin proxy over the kubernetes dynamic client.

    Every call the operator makes against the API server goes through one of
    these methods, which keeps the rest of the code independent from the
    dynamic client and easy to replace in tests.
    """

    def __init__(self, configuration, client) -> None:
        self.configuration = configuration
        self.client = client

    def _find_resource_with_prefix(
        self, prefix: Optional[str], kind: str, api_version: str
    ) -> Resource:
        for attribute in ["kind", "name", "singular_name"]:
            try:
                return self.client.resources.get(
                    **{"prefix": prefix, "api_version": api_version, attribute: kind}
                )
            except (ResourceNotFoundError, ResourceNotUniqueError):
                pass
        return self.client.resources.get(
            prefix=prefix, api_version=api_version, short_names=[kind]
        )

    def resource(self, kind: str, api_version: str) -> Resource:
        """Fetch a kubernetes client resource.

        This will attempt to find a kubernetes resource trying, in order, kind,
        name, singular_name and short_names.
        """
        try:
            if api_version == "v1":
                return self._find_resource_with_prefix("api", kind, api_version)
        except ResourceNotFoundError:
            pass
        return self._find_resource_with_prefix(None, kind, api_version)

    def get(self, resource, **params):
        return resource.get(**params)

    def delete(self, resource, **params):
        return resource.delete(**params)

    def create(self, resource, definition, **params):
        return resource.create(definition, **params)

    def replace(self, resource, definition, **params):
        return resource.replace(definition, **params)

    def patch(self, resource, definition, **params):
        return resource.patch(definition, **params)


def get_api_client(params: Optional[Dict] = None, **kwargs: Optional[Any]) -> K8SClient:
    auth_spec = _create_auth_spec(params, **kwargs)
    try:
        configuration = _create_configuration(auth_spec)
        client = DynamicClient(kubernetes.client.ApiClient(configuration))
    except (
        kubernetes.config.ConfigException,
        kubernetes.client.exceptions.ApiException,
        urllib3.exceptions.HTTPError,
    ) as e:
        msg = "Could not create API client: {0}".format(e)
        raise CoreException(msg) from e

    return K8SClient(configuration=configuration, client=client)
