import json

import pytest

from blockydns.api import (
    BlockingEndpoint,
    BlockingStatus,
    ListRefreshEndpoint,
    QueryRequest,
    QueryResult,
    Router,
    register_endpoint,
)


class BlockingControlMock:
    def __init__(self, enabled=False):
        self.enabled = enabled
        self.calls = []

    def enable_blocking(self):
        self.enabled = True

    def disable_blocking(self, duration, groups):
        self.calls.append((duration, groups))
        self.enabled = False

    def blocking_status(self):
        return BlockingStatus(enabled=self.enabled)


class FailingControl(BlockingControlMock):
    def disable_blocking(self, duration, groups):
        raise ValueError("group 'unknown' is unknown")


class ListRefreshMock:
    def __init__(self):
        self.refresh_triggered = False

    def refresh_lists(self):
        self.refresh_triggered = True


@pytest.fixture
def control():
    return BlockingControlMock(enabled=True)


@pytest.fixture
def endpoint(control):
    return BlockingEndpoint(control)


def test_register_router_dispatches_blocking_routes():
    router = Router()
    control = BlockingControlMock(enabled=True)
    register_endpoint(router, control)
    response = router.dispatch("GET", "/api/blocking/status")
    assert response.status == 200
    assert json.loads(response.body)["enabled"] is True
    assert router.dispatch("POST", "/api/lists/refresh").status == 404


def test_register_router_dispatches_refresh_route():
    router = Router()
    refresher = ListRefreshMock()
    register_endpoint(router, refresher)
    response = router.dispatch("POST", "/api/lists/refresh")
    assert response.status == 200
    assert refresher.refresh_triggered is True
    assert router.dispatch("GET", "/api/lists/refresh").status == 405
    assert router.dispatch("GET", "/api/blocking/status").status == 404


def test_list_refresh_triggers_refresh():
    refresher = ListRefreshMock()
    response = ListRefreshEndpoint(refresher).refresh({})
    assert response.status == 200
    assert response.headers["Content-Type"] == "application/json"
    assert refresher.refresh_triggered is True


def test_disable_without_parameters(endpoint, control):
    response = endpoint.disable({})
    assert response.status == 200
    assert response.headers["Content-Type"] == "application/json"
    assert control.calls == [(0.0, [])]


def test_disable_with_wrong_duration(endpoint, control):
    response = endpoint.disable({"duration": "xyz"})
    assert response.status == 400
    assert response.headers["Content-Type"] == "application/json"
    assert control.enabled is True


def test_disable_with_duration(endpoint, control):
    assert control.enabled is True
    router = Router()
    register_endpoint(router, control)
    response = router.dispatch("GET", "/api/blocking/disable?duration=500ms")
    assert response.status == 200
    assert response.headers["Content-Type"] == "application/json"
    assert control.enabled is False
    assert control.calls == [(0.5, [])]


def test_disable_with_groups(endpoint, control):
    response = endpoint.disable({"groups": "ads,special"})
    assert response.status == 200
    assert response.headers["Content-Type"] == "application/json"
    assert control.calls == [(0.0, ["ads", "special"])]


def test_disable_refused_by_control():
    response = BlockingEndpoint(FailingControl()).disable({"groups": "unknown"})
    assert response.status == 400


def test_status_flow(endpoint):
    response = endpoint.enable({})
    assert response.status == 200
    assert response.headers["Content-Type"] == "application/json"

    response = endpoint.status({})
    assert response.status == 200
    assert response.headers["Content-Type"] == "application/json"
    assert BlockingStatus.from_json(response.body).enabled is True

    response = endpoint.disable({"duration": "500ms"})
    assert response.status == 200

    response = endpoint.status({})
    assert BlockingStatus.from_json(response.body).enabled is False


def test_blocking_status_json_round_trip():
    status = BlockingStatus(enabled=False, disabled_groups=["abc"], auto_enable_in_sec=5)
    assert BlockingStatus.from_json(status.to_json()) == status
    assert set(json.loads(status.to_json())) == {"enabled", "disabledGroups", "autoEnableInSec"}


def test_blocking_status_null_groups():
    status = BlockingStatus.from_json('{"enabled":true,"disabledGroups":null,"autoEnableInSec":0}')
    assert status.disabled_groups == []


def test_query_result_json_round_trip():
    result = QueryResult(reason="Reason", response_type="Type", response="Response", return_code="NOERROR")
    assert QueryResult.from_json(result.to_json()) == result
    assert json.loads(result.to_json())["returnCode"] == "NOERROR"


def test_query_request_json():
    request = QueryRequest(query="google.de", type="A")
    assert json.loads(request.to_json()) == {"Query": "google.de", "Type": "A"}


def test_router_unknown_path():
    assert Router().dispatch("GET", "/nothing").status == 404