# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)


class CoreException(Exception):
    pass


class ResourceTimeout(CoreException):
    def __init__(self, message="", result=None):
        self.result = result or {}
        super().__init__(message)


class ConflictException(CoreException):
    """The object was modified concurrently; re-read and try again."""


class RequeueException(CoreException):
    """The reconcile pass must be retried later."""


class DisruptionBudgetBlocked(CoreException):
    """Eviction refused because it would violate a PodDisruptionBudget."""


class DrainException(CoreException):
    """An eviction failed for a reason retrying will not fix.

    result holds what the drain pass achieved before the failure, if known.
    """

    def __init__(self, message="", result=None):
        self.result = result
        super().__init__(message)


class TerminalException(CoreException):
    """No amount of retrying will change the outcome."""


class NodeNotFound(TerminalException):
    def __init__(self, name):
        self.name = name
        super().__init__("Node '{0}' has not been found.".format(name))


class MalformedRequest(TerminalException):
    pass
