# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import copy
import importlib
import traceback
from typing import Dict, Optional

from ansible.module_utils.basic import AnsibleModule, missing_required_lib
from ansible.module_utils.common.text.converters import to_text
from ansible.module_utils.compat.version import LooseVersion
from nodemaintenance.module_utils.args_common import AUTH_ARG_SPEC, WAIT_ARG_SPEC

# distribution -> (import name, oldest version tested)
DEPENDENCIES = {
    "kubernetes": ("kubernetes", "24.2.0"),
    "pyyaml": ("yaml", "3.11"),
}


class NodeMaintenanceModule:
    """AnsibleModule wrapper shared by the node maintenance modules.

    The authentication options, and unless wait=False the wait options, are
    merged into argument_spec. Missing Python dependencies fail the module
    before any work is done.
    """

    def __init__(
        self, argument_spec: Dict, module_class=AnsibleModule, wait: bool = True, **kwargs
    ) -> None:
        spec = copy.deepcopy(AUTH_ARG_SPEC)
        if wait:
            spec.update(copy.deepcopy(WAIT_ARG_SPEC))
        spec.update(argument_spec)
        self._module = module_class(argument_spec=spec, **kwargs)

        for dependency in DEPENDENCIES:
            self.requires(dependency)
        self.has_at_least("kubernetes", DEPENDENCIES["kubernetes"][1], warn=True)

    @property
    def check_mode(self):
        return self._module.check_mode

    @property
    def params(self):
        return self._module.params

    def warn(self, *args, **kwargs):
        return self._module.warn(*args, **kwargs)

    def exit_json(self, *args, **kwargs):
        return self._module.exit_json(*args, **kwargs)

    def fail_json(self, *args, **kwargs):
        return self._module.fail_json(*args, **kwargs)

    def fail_from_exception(self, exception):
        """Fail with the message of exception, keeping any partial result it carries."""
        result = dict(getattr(exception, "result", None) or {})
        tb = "".join(
            traceback.format_exception(None, exception, exception.__traceback__)
        )
        return self.fail_json(msg=to_text(exception), exception=tb, **result)

    def has_at_least(
        self, dependency: str, minimum: Optional[str] = None, warn: bool = False
    ) -> bool:
        supported = has_at_least(dependency, minimum)
        if not supported and warn:
            self.warn(
                "{0}<{1} is not supported or tested. Some features may not work.".format(
                    dependency, minimum
                )
            )
        return supported

    def requires(self, dependency: str, minimum: Optional[str] = None) -> None:
        try:
            requires(dependency, minimum)
        except ImportError as e:
            self.fail_json(msg=to_text(e))


def gather_versions() -> Dict[str, str]:
    versions = {}
    for dependency, (import_name, _minimum) in DEPENDENCIES.items():
        try:
            module = importlib.import_module(import_name)
        except ImportError:
            continue
        versions[dependency] = module.__version__
    return versions


def has_at_least(dependency: str, minimum: Optional[str] = None) -> bool:
    """Check if a dependency is installed, at minimum version when given."""
    current = gather_versions().get(dependency)
    if current is None:
        return False
    return minimum is None or LooseVersion(current) >= LooseVersion(minimum)


def requires(
    dependency: str, minimum: Optional[str] = None, reason: Optional[str] = None
) -> None:
    """Raise ImportError unless dependency is installed at minimum version."""
    if not has_at_least(dependency, minimum):
        lib = dependency if minimum is None else "{0}>={1}".format(dependency, minimum)
        raise ImportError(missing_required_lib(lib, reason=reason))
