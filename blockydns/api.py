"""REST data structures and endpoints for controlling blocking and lists."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Protocol, runtime_checkable
from urllib.parse import parse_qs, urlsplit

from blockydns.durations import parse_duration

_logger = logging.getLogger(__name__)

PATH_BLOCKING_STATUS = "/api/blocking/status"
PATH_BLOCKING_ENABLE = "/api/blocking/enable"
PATH_BLOCKING_DISABLE = "/api/blocking/disable"
PATH_LISTS_REFRESH = "/api/lists/refresh"
PATH_QUERY = "/api/query"
PATH_DOH_QUERY = "/dns-query"

CONTENT_TYPE_HEADER = "Content-Type"
JSON_CONTENT_TYPE = "application/json"

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_METHOD_NOT_ALLOWED = 405


def _dumps(data: object) -> str:
    return json.dumps(data, separators=(",", ":"))


def _escape(text: str) -> str:
    return text.replace("\n", "").replace("\r", "")


@dataclass
class QueryRequest:
    """A DNS query to perform: domain name and record type (A, AAAA, ...)."""

    query: str
    type: str

    def to_json(self) -> str:
        return _dumps({"Query": self.query, "Type": self.type})


@dataclass
class QueryResult:
    """Result of a DNS query performed through the API."""

    reason: str = ""
    response_type: str = ""
    response: str = ""
    return_code: str = ""

    def to_json(self) -> str:
        return _dumps(
            {
                "reason": self.reason,
                "responseType": self.response_type,
                "response": self.response,
                "returnCode": self.return_code,
            }
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> "QueryResult":
        data = json.loads(text)
        return cls(
            reason=data.get("reason") or "",
            response_type=data.get("responseType") or "",
            response=data.get("response") or "",
            return_code=data.get("returnCode") or "",
        )


@dataclass
class BlockingStatus:
    """Current blocking state, with disabled groups and auto-enable countdown."""

    enabled: bool = False
    disabled_groups: list[str] = field(default_factory=list)
    auto_enable_in_sec: int = 0

    def to_json(self) -> str:
        return _dumps(
            {
                "enabled": self.enabled,
                "disabledGroups": list(self.disabled_groups),
                "autoEnableInSec": self.auto_enable_in_sec,
            }
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> "BlockingStatus":
        data = json.loads(text)
        return cls(
            enabled=bool(data.get("enabled", False)),
            disabled_groups=list(data.get("disabledGroups") or []),
            auto_enable_in_sec=int(data.get("autoEnableInSec") or 0),
        )


@runtime_checkable
class BlockingControl(Protocol):
    def enable_blocking(self) -> None: ...

    def disable_blocking(self, duration: float, groups: list[str]) -> None: ...

    def blocking_status(self) -> BlockingStatus: ...


@runtime_checkable
class ListRefresher(Protocol):
    def refresh_lists(self) -> None: ...


@dataclass
class Response:
    """An HTTP response produced by an endpoint handler."""

    status: int = HTTP_OK
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


Handler = Callable[[Mapping[str, str]], Response]


class Router:
    """Maps (method, path) pairs to handlers that take query parameters."""

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], Handler] = {}

    def add_route(self, method: str, path: str, handler: Handler) -> None:
        self._routes[(method.upper(), path)] = handler

    def dispatch(self, method: str, url: str) -> Response:
        parts = urlsplit(url)
        handler = self._routes.get((method.upper(), parts.path))
        if handler is None:
            known_path = any(path == parts.path for _, path in self._routes)
            return Response(HTTP_METHOD_NOT_ALLOWED if known_path else HTTP_NOT_FOUND)
        query = {
            key: values[0]
            for key, values in parse_qs(parts.query, keep_blank_values=True).items()
        }
        return handler(query)


def _json_response(status: int = HTTP_OK, body: bytes = b"") -> Response:
    return Response(status, {CONTENT_TYPE_HEADER: JSON_CONTENT_TYPE}, body)


class BlockingEndpoint:
    """Endpoints that enable, disable and report the blocking status."""

    def __init__(self, control: BlockingControl) -> None:
        self.control = control

    def enable(self, query: Mapping[str, str]) -> Response:
        _logger.info("enabling blocking...")
        self.control.enable_blocking()
        return _json_response()

    def disable(self, query: Mapping[str, str]) -> Response:
        duration = 0.0
        duration_param = query.get("duration", "")
        if duration_param:
            try:
                duration = parse_duration(duration_param)
            except ValueError:
                _logger.error("wrong duration format '%s'", _escape(duration_param))
                return _json_response(HTTP_BAD_REQUEST)

        groups_param = query.get("groups", "")
        groups = groups_param.split(",") if groups_param else []

        try:
            self.control.disable_blocking(duration, groups)
        except Exception as error:  # any refusal of the control maps to 400
            _logger.error("can't disable the blocking: %s", _escape(str(error)))
            return _json_response(HTTP_BAD_REQUEST)
        return _json_response()

    def status(self, query: Mapping[str, str]) -> Response:
        status = self.control.blocking_status()
        return _json_response(body=status.to_json().encode())


class ListRefreshEndpoint:
    """Endpoint that triggers a refresh of all lists."""

    def __init__(self, refresher: ListRefresher) -> None:
        self.refresher = refresher

    def refresh(self, query: Mapping[str, str]) -> Response:
        self.refresher.refresh_lists()
        return _json_response()


def register_endpoint(router: Router, target: object) -> None:
    """Register every endpoint that target can serve."""
    if isinstance(target, BlockingControl):
        blocking = BlockingEndpoint(target)
        router.add_route("GET", PATH_BLOCKING_ENABLE, blocking.enable)
        router.add_route("GET", PATH_BLOCKING_DISABLE, blocking.disable)
        router.add_route("GET", PATH_BLOCKING_STATUS, blocking.status)
    if isinstance(target, ListRefresher):
        refresh = ListRefreshEndpoint(target)
        router.add_route("POST", PATH_LISTS_REFRESH, refresh.refresh)


def _optional(value: Optional[str]) -> str:
    return value or ""