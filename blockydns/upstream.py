"""Upstream DNS server definitions and the enumerations used by the configuration."""

from __future__ import annotations

import enum
import ipaddress
import re
from dataclasses import dataclass
from typing import Optional


class UpstreamError(ValueError):
    """Raised when an upstream definition or a port cannot be parsed."""


class _TextEnum(enum.IntEnum):
    """Integer enumeration whose members carry a fixed textual name."""

    text: str

    def __new__(cls, value: int, text: str) -> "_TextEnum":
        member = int.__new__(cls, value)
        member._value_ = value
        member.text = text
        return member

    def __str__(self) -> str:
        return self.text

    def __format__(self, spec: str) -> str:
        return format(self.text, spec)

    @classmethod
    def names(cls) -> list[str]:
        """All textual names, in declaration order."""
        return [member.text for member in cls]

    @classmethod
    def _lookup(cls, name: str) -> "_TextEnum":
        for member in cls:
            if member.text == name:
                return member
        raise ValueError(
            f"{name} is not a valid {cls.__name__}, try [{', '.join(cls.names())}]"
        )


class NetProtocol(_TextEnum):
    """Protocol used to talk to an upstream resolver."""

    TCP_UDP = 0, "tcp+udp"
    TCP_TLS = 1, "tcp-tls"
    HTTPS = 2, "https"

    @classmethod
    def parse(cls, name: str) -> "NetProtocol":
        """Return the protocol called name; raise ValueError for unknown names."""
        return cls._lookup(name)


class QueryLogType(_TextEnum):
    """Destination of the query log."""

    CONSOLE = 0, "console"
    NONE = 1, "none"
    MYSQL = 2, "mysql"
    POSTGRESQL = 3, "postgresql"
    CSV = 4, "csv"
    CSV_CLIENT = 5, "csv-client"

    @classmethod
    def parse(cls, name: str) -> "QueryLogType":
        """Return the log type called name; raise ValueError for unknown names."""
        return cls._lookup(name)


class StartStrategyType(_TextEnum):
    """How blocking lists are loaded on startup."""

    BLOCKING = 0, "blocking"
    FAIL_ON_ERROR = 1, "failOnError"
    FAST = 2, "fast"

    @classmethod
    def parse(cls, name: str) -> "StartStrategyType":
        """Return the strategy called name; raise ValueError for unknown names."""
        return cls._lookup(name)


DEFAULT_PORTS: dict[NetProtocol, int] = {
    NetProtocol.TCP_UDP: 53,
    NetProtocol.TCP_TLS: 853,
    NetProtocol.HTTPS: 443,
}

_MAX_PORT = 65535
_PORT_DIGITS = re.compile(r"[0-9]+")
_VALID_DOMAIN = re.compile(
    r"(([a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9\-]*[a-zA-Z0-9])\.)*"
    r"([A-Za-z0-9]|[A-Za-z0-9][A-Za-z0-9\-]*[A-Za-z0-9])"
)


@dataclass(frozen=True)
class Upstream:
    """An external DNS server: protocol, host, port and optional URL path."""

    net: NetProtocol = NetProtocol.TCP_UDP
    host: str = ""
    port: int = 0
    path: str = ""

    def is_default(self) -> bool:
        """True if this is the empty, unconfigured upstream."""
        return self == Upstream()

    def __str__(self) -> str:
        if self.is_default():
            return "no upstream"

        parts = [self.net.text, ":"]
        if self.net is NetProtocol.HTTPS:
            parts.append("//")
        parts.append(f"[{self.host}]" if ":" in self.host else self.host)
        if self.port != DEFAULT_PORTS.get(self.net):
            parts.append(f":{self.port}")
        parts.append(self.path)
        return "".join(parts)


def convert_port(text: str) -> int:
    """Convert a decimal string (surrounding spaces allowed) into a port 0-65535."""
    stripped = text.strip()
    if not _PORT_DIGITS.fullmatch(stripped):
        raise UpstreamError(f'strconv.ParseUint: parsing "{stripped}": invalid syntax')
    port = int(stripped)
    if port > _MAX_PORT:
        raise UpstreamError(f'strconv.ParseUint: parsing "{stripped}": value out of range')
    return port


def _split_host_port(hostport: str) -> Optional[tuple[str, str]]:
    """Split "host:port" or "[host]:port"; None if the text has no valid port part."""
    last_colon = hostport.rfind(":")
    if last_colon < 0:
        return None

    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0 or end + 1 != last_colon:
            return None
        host = hostport[1:end]
        bracket_open_from, bracket_close_from = 1, end + 1
    else:
        host = hostport[:last_colon]
        if ":" in host:
            return None
        bracket_open_from, bracket_close_from = 0, 0

    if "[" in hostport[bracket_open_from:] or "]" in hostport[bracket_close_from:]:
        return None
    return host, hostport[last_colon + 1:]


def _is_ip(host: str) -> bool:
    if "%" in host:
        return False
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def _extract_net(text: str) -> tuple[NetProtocol, str]:
    for protocol in NetProtocol:
        prefix = protocol.text + ":"
        if text.startswith(prefix):
            rest = text[len(prefix):]
            if protocol is NetProtocol.HTTPS and rest.startswith("//"):
                rest = rest[2:]
            return protocol, rest
    return NetProtocol.TCP_UDP, text


def _extract_path(text: str) -> tuple[str, str]:
    slash = text.find("/")
    if slash < 0:
        return "", text
    return text[slash:], text[:slash]


def parse_upstream(text: str) -> Upstream:
    """Parse an upstream written as [net:]host[:port][/path]."""
    protocol, rest = _extract_net(text)
    path, rest = _extract_path(rest)

    split = _split_host_port(rest)
    if split is not None:
        host, port_text = split
        try:
            port = convert_port(port_text)
        except UpstreamError as error:
            raise UpstreamError(
                f"can't convert port to number (1 - 65535) {error}"
            ) from error
    else:
        host = rest
        if host.startswith("["):
            host = host[1:]
        if host.endswith("]"):
            host = host[:-1]
        port = DEFAULT_PORTS[protocol]

    if not _is_ip(host) and not _VALID_DOMAIN.fullmatch(host):
        raise UpstreamError(f"wrong host name '{host}'")

    return Upstream(net=protocol, host=host, port=port, path=path)