import re

import kubernetes
import pytest
from mock import MagicMock, patch
from nodemaintenance.module_utils.k8s.core import (
    NodeMaintenanceModule,
    gather_versions,
    has_at_least,
    requires,
)
from nodemaintenance.module_utils.k8s.exceptions import ResourceTimeout

MINIMAL_K8S_VERSION = "24.2.0"
UNSUPPORTED_K8S_VERSION = "11.0.0"


class FakeAnsibleModule:
    def __init__(self, argument_spec, **kwargs):
        self.argument_spec = argument_spec
        self.params = {}
        self.check_mode = False

    def exit_json(self):
        raise SystemExit(0)


@patch.object(NodeMaintenanceModule, "warn")
def test_no_warn(m_warn, monkeypatch):
    monkeypatch.setattr(kubernetes, "__version__", MINIMAL_K8S_VERSION)

    module = NodeMaintenanceModule(argument_spec={}, module_class=FakeAnsibleModule)
    with pytest.raises(SystemExit):
        module.exit_json()
    m_warn.assert_not_called()


@patch.object(NodeMaintenanceModule, "warn")
def test_warn_on_k8s_version(m_warn, monkeypatch, capfd):
    monkeypatch.setattr(kubernetes, "__version__", UNSUPPORTED_K8S_VERSION)

    m_warn.side_effect = print
    NodeMaintenanceModule(argument_spec={}, module_class=FakeAnsibleModule)

    m_warn.assert_called_once()
    out, err = capfd.readouterr()
    assert (
        re.search(
            r"kubernetes<([0-9]+\.[0-9]+\.[0-9]+) is not supported or tested. Some features may not work.",
            out,
        )
        is not None
    )


def test_argument_spec_includes_auth_and_wait_options():
    module = NodeMaintenanceModule(
        argument_spec={"node_name": {"type": "str"}}, module_class=FakeAnsibleModule
    )
    spec = module._module.argument_spec
    assert {"kubeconfig", "context", "wait", "wait_timeout", "node_name"} <= set(spec)

    module = NodeMaintenanceModule(
        argument_spec={}, module_class=FakeAnsibleModule, wait=False
    )
    assert "wait" not in module._module.argument_spec


def test_fail_from_exception_keeps_result():
    module = NodeMaintenanceModule(argument_spec={}, module_class=FakeAnsibleModule)
    module.fail_json = MagicMock()

    try:
        raise ResourceTimeout("Timed out", {"result": {"kind": "NodeMaintenance"}})
    except ResourceTimeout as e:
        module.fail_from_exception(e)

    kwargs = module.fail_json.call_args[1]
    assert kwargs["msg"] == "Timed out"
    assert kwargs["result"] == {"kind": "NodeMaintenance"}
    assert "ResourceTimeout" in kwargs["exception"]


def test_gather_versions(monkeypatch):
    monkeypatch.setattr(kubernetes, "__version__", "28.1.0")
    versions = gather_versions()
    assert versions["kubernetes"] == "28.1.0"
    assert "pyyaml" in versions


dependencies = [
    ["28.20.0", "24.2.1", False],
    ["28.20.0", "28.20.0", True],
    ["24.2.1", "28.20.0", True],
]


@pytest.mark.parametrize("desired,actual,result", dependencies)
def test_has_at_least(monkeypatch, desired, actual, result):
    monkeypatch.setattr(kubernetes, "__version__", actual)
    assert has_at_least("kubernetes", desired) is result
    assert has_at_least("kubernetes") is True


dependencies = [
    ["kubernetes", "28.20.0", "(kubernetes>=28.20.0)"],
    ["foobar", "1.0.0", "(foobar>=1.0.0)"],
    ["foobar", None, "(foobar)"],
]


@pytest.mark.parametrize("dependency,version,msg", dependencies)
def test_requires_fails_with_message(monkeypatch, dependency, version, msg):
    monkeypatch.setattr(kubernetes, "__version__", "24.2.0")
    with pytest.raises(ImportError) as excinfo:
        requires(dependency, version)
    assert msg in str(excinfo.value)


def test_module_requires_fails_json(monkeypatch):
    monkeypatch.setattr(kubernetes, "__version__", "24.2.0")
    module = NodeMaintenanceModule(argument_spec={}, module_class=FakeAnsibleModule)
    module.fail_json = MagicMock(side_effect=SystemExit(1))

    with pytest.raises(SystemExit):
        module.requires("kubernetes", "28.20.0")
    assert "kubernetes>=28.20.0" in module.fail_json.call_args[1]["msg"]
