from unittest.mock import Mock

import pytest
from nodemaintenance.module_utils.drain import DrainResult, DrainSessions
from nodemaintenance.module_utils.k8s.exceptions import (
    ConflictException,
    CoreException,
    DrainException,
    NodeNotFound,
)
from nodemaintenance.module_utils.status import (
    PHASE_FAILED,
    PHASE_RUNNING,
    PHASE_SUCCEEDED,
    StatusTracker,
    get_status,
)


def _sessions(pods, total):
    drainer = Mock()
    drainer.census.return_value = (pods, total)
    return DrainSessions(lambda node: drainer)


def _request(node_name="node01", status=None):
    request = {"metadata": {"name": "nm"}, "spec": {"nodeName": node_name}}
    if status is not None:
        request["status"] = status
    return request


def test_get_status_creates_empty_status():
    request = {"metadata": {"name": "nm"}}
    get_status(request)["phase"] = PHASE_RUNNING
    assert request["status"] == {"phase": PHASE_RUNNING}


def test_get_status_keeps_empty_status():
    status = {}
    request = {"metadata": {"name": "nm"}, "status": status}

    get_status(request)["phase"] = PHASE_RUNNING
    assert status == {"phase": PHASE_RUNNING}
    assert request["status"] is status


def test_initialize_takes_pod_census():
    pods = [{"metadata": {"name": "pod-a"}}, {"metadata": {"name": "pod-b"}}]
    tracker = StatusTracker(Mock(), _sessions(pods, 3))
    request = _request()

    assert tracker.initialize(request) is True
    assert request["status"] == {
        "phase": PHASE_RUNNING,
        "pendingPods": ["pod-a", "pod-b"],
        "evictionPods": 2,
        "totalpods": 3,
        "lastError": "",
        "targetNode": "node01",
    }


def test_initialize_only_once():
    tracker = StatusTracker(Mock(), _sessions([], 0))
    request = _request(status={"phase": PHASE_RUNNING, "totalpods": 7})

    assert tracker.initialize(request) is False
    assert request["status"] == {"phase": PHASE_RUNNING, "totalpods": 7}


@pytest.mark.parametrize("node_name", [None, ""])
def test_initialize_rejects_malformed_request(node_name):
    sessions = Mock()
    tracker = StatusTracker(Mock(), sessions)
    request = _request(node_name=node_name)

    assert tracker.initialize(request) is True
    status = request["status"]
    assert status["phase"] == PHASE_FAILED
    assert "nodeName" in status["lastError"]
    sessions.get.assert_not_called()


def test_update_with_remaining_pods():
    tracker = StatusTracker(Mock(), Mock())
    request = _request(status={"phase": PHASE_RUNNING, "lastError": "old"})

    tracker.update(request, result=DrainResult(1, [("default", "pod-b")]))
    assert request["status"] == {
        "phase": PHASE_RUNNING,
        "pendingPods": ["pod-b"],
        "lastError": "",
    }


def test_update_drained_node_succeeds():
    tracker = StatusTracker(Mock(), Mock())
    request = _request(status={"phase": PHASE_RUNNING, "pendingPods": ["pod-a"]})

    tracker.update(request, result=DrainResult(1, []))
    assert request["status"]["phase"] == PHASE_SUCCEEDED
    assert request["status"]["pendingPods"] == []


def test_update_terminal_error_fails():
    tracker = StatusTracker(Mock(), Mock())
    request = _request(status={"phase": PHASE_RUNNING})

    tracker.update(request, error=NodeNotFound("nope"))
    assert request["status"] == {
        "phase": PHASE_FAILED,
        "lastError": "Node 'nope' has not been found.",
    }


def test_update_drain_failure_records_remaining_pods():
    tracker = StatusTracker(Mock(), Mock())
    request = _request(status={"phase": PHASE_RUNNING, "pendingPods": ["pod-a", "pod-b"]})

    tracker.update(
        request,
        result=DrainResult(1, [("default", "pod-b")]),
        error=DrainException("Failed to evict pod default/pod-b"),
    )
    assert request["status"] == {
        "phase": PHASE_FAILED,
        "pendingPods": ["pod-b"],
        "lastError": "Failed to evict pod default/pod-b",
    }


def test_update_retryable_error_keeps_phase():
    tracker = StatusTracker(Mock(), Mock())
    request = _request(status={"phase": PHASE_RUNNING})

    tracker.update(request, error=CoreException("API unavailable"), terminal=False)
    assert request["status"] == {"phase": PHASE_RUNNING, "lastError": "API unavailable"}


@pytest.mark.parametrize("phase", [PHASE_SUCCEEDED, PHASE_FAILED])
def test_update_never_leaves_terminal_phase(phase):
    tracker = StatusTracker(Mock(), Mock())
    request = _request(status={"phase": phase, "lastError": ""})

    tracker.update(request, result=DrainResult(0, [("default", "pod-a")]))
    tracker.update(request, error=CoreException("late"))
    assert request["status"] == {"phase": phase, "lastError": ""}


def test_persist_skips_unchanged_status():
    service = Mock()
    tracker = StatusTracker(service, Mock())
    request = _request(status={"phase": PHASE_RUNNING})

    assert tracker.persist(request, previous={"phase": PHASE_RUNNING}) is request
    service.update_request_status.assert_not_called()


def test_persist_stamps_last_updated(cluster, service):
    cluster.add_request("nm", "node01")
    request = service.get_request("nm")
    request["status"] = {"phase": PHASE_RUNNING}

    updated = StatusTracker(service, Mock()).persist(request, previous={})
    assert updated["status"]["phase"] == PHASE_RUNNING
    assert updated["status"]["lastUpdated"]
    assert cluster.request("nm")["status"] == updated["status"]


def test_persist_retries_on_conflict(cluster, service):
    cluster.add_request("nm", "node01")
    request = service.get_request("nm")
    # someone else updates the request meanwhile
    cluster.request("nm")["metadata"]["labels"] = {"touched": "yes"}
    cluster.request("nm")["metadata"]["resourceVersion"] = "999"
    request["status"] = {"phase": PHASE_RUNNING}

    updated = StatusTracker(service, Mock()).persist(request)
    assert updated["metadata"]["labels"] == {"touched": "yes"}
    assert cluster.request("nm")["status"]["phase"] == PHASE_RUNNING


def test_persist_gives_up_after_retries(cluster, service):
    cluster.add_request("nm", "node01")
    cluster.conflicts["NodeMaintenance"] = 10
    request = service.get_request("nm")
    request["status"] = {"phase": PHASE_RUNNING}

    with pytest.raises(ConflictException):
        StatusTracker(service, Mock(), conflict_retries=3).persist(request)
    assert cluster.conflicts["NodeMaintenance"] == 7


def test_persist_request_deleted_meanwhile():
    service = Mock()
    service.update_request_status.side_effect = ConflictException("conflict")
    service.get_request.return_value = None
    request = _request(status={"phase": PHASE_RUNNING})

    assert StatusTracker(service, Mock()).persist(request) is None
    service.get_request.assert_called_once_with("nm", None)
