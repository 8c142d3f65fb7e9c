"""Loading and validation of the YAML configuration."""

from __future__ import annotations

import ipaddress
import logging
import re
import stat
import threading
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Iterable, Union

import dns.rdatatype
import yaml

from blockydns.durations import parse_duration
from blockydns.upstream import (
    QueryLogType,
    StartStrategyType,
    Upstream,
    UpstreamError,
    parse_upstream,
)

_logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_MINUTE = 60.0
_HOUR = 3600.0


class ConfigError(ValueError):
    """Raised when the configuration cannot be read or is invalid."""


class _Loader(yaml.BaseLoader):
    """Keeps every scalar as text, except an explicit or empty null."""


_Loader.add_implicit_resolver(
    "tag:yaml.org,2002:null", re.compile(r"^(?:~|null|Null|NULL|)$"), ["~", "n", "N", ""]
)
_Loader.add_constructor("tag:yaml.org,2002:null", lambda _loader, _node: None)


# --- DNS query types -------------------------------------------------------

_QTYPES: dict[str, dns.rdatatype.RdataType] = {
    name.replace("_", "-"): member
    for name, member in dns.rdatatype.RdataType.__members__.items()
    if not name.startswith("TYPE")
}


def parse_qtype(text: str) -> dns.rdatatype.RdataType:
    """Return the DNS record type with the given name, e.g. "AAAA"."""
    try:
        return _QTYPES[text]
    except KeyError:
        raise ConfigError(
            f"unknown DNS query type: '{text}'. "
            f"Please use following types '{', '.join(sorted(_QTYPES))}'"
        ) from None


def _as_qtype(value: Any) -> dns.rdatatype.RdataType:
    if isinstance(value, str):
        return parse_qtype(value)
    return dns.rdatatype.RdataType.make(int(value))


class QTypeSet(set):
    """A set of DNS record types."""

    def __init__(self, qtypes: Iterable[Any] = ()) -> None:
        super().__init__(_as_qtype(qtype) for qtype in qtypes)

    def contains(self, qtype: Any) -> bool:
        return _as_qtype(qtype) in self

    def insert(self, qtype: Any) -> None:
        self.add(_as_qtype(qtype))


# --- scalar and collection parsers -----------------------------------------

_ATOI = re.compile(r"[+-]?[0-9]+")
_DECIMAL = re.compile(r"[+-]?[0-9_]+")
_TRUE = {"y", "yes", "true", "on"}
_FALSE = {"n", "no", "false", "off"}


def _kind(raw: Any) -> str:
    if isinstance(raw, dict):
        return "!!map"
    if isinstance(raw, list):
        return "!!seq"
    return "!!str"


def _unmarshal_error(raw: Any, target: str) -> ConfigError:
    shown = f" `{raw}`" if isinstance(raw, str) else ""
    return ConfigError(f"cannot unmarshal {_kind(raw)}{shown} into {target}")


def _text(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    raise _unmarshal_error(raw, "string")


def _bool(raw: Any) -> bool:
    text = _text(raw)
    if text.lower() in _TRUE:
        return True
    if text.lower() in _FALSE:
        return False
    raise _unmarshal_error(text, "bool")


def _int(raw: Any) -> int:
    text = _text(raw)
    if _DECIMAL.fullmatch(text):
        return int(text.replace("_", ""))
    try:
        return int(text, 0)
    except ValueError:
        raise _unmarshal_error(text, "int") from None


def _uint(raw: Any) -> int:
    value = _int(raw)
    if value < 0:
        raise _unmarshal_error(_text(raw), "uint")
    return value


def parse_config_duration(value: Any) -> float:
    """Parse a duration in seconds; a bare number counts as minutes."""
    if isinstance(value, bool):
        raise _unmarshal_error(str(value), "Duration")
    if isinstance(value, int):
        return value * _MINUTE
    text = str(value) if isinstance(value, float) else _text(value)
    if _ATOI.fullmatch(text):
        return int(text) * _MINUTE
    try:
        return parse_duration(text)
    except ValueError as error:
        raise ConfigError(str(error)) from None


def _list_of(parse: Callable[[Any], Any]) -> Callable[[Any], list]:
    def parse_list(raw: Any) -> list:
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise _unmarshal_error(raw, "list")
        return [parse(item) for item in raw]

    return parse_list


def _map_of(parse: Callable[[Any], Any]) -> Callable[[Any], dict]:
    def parse_map(raw: Any) -> dict:
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise _unmarshal_error(raw, "map")
        return {key: parse(value) for key, value in raw.items()}

    return parse_map


def _parse_ip(text: str) -> IPAddress:
    if "%" in text:
        raise ValueError(text)
    return ipaddress.ip_address(text)


def _ip(raw: Any) -> IPAddress:
    text = _text(raw)
    try:
        return _parse_ip(text)
    except ValueError:
        raise ConfigError(f"invalid IP address: {text}") from None


def _ip_csv(raw: Any) -> list[IPAddress]:
    ips = []
    for part in _text(raw).split(","):
        try:
            ips.append(_parse_ip(part.strip()))
        except ValueError:
            raise ConfigError(f"invalid IP address '{part}'") from None
    return ips


def _upstream(raw: Any) -> Upstream:
    text = _text(raw)
    try:
        return parse_upstream(text)
    except UpstreamError as error:
        raise ConfigError(f"can't convert upstream '{text}': {error}") from error


def _upstream_csv(raw: Any) -> list[Upstream]:
    return [_upstream(part.strip()) for part in _text(raw).split(",")]


def _listen(raw: Any) -> list[str]:
    return _text(raw).split(",")


def _start_strategy(raw: Any) -> StartStrategyType:
    try:
        return StartStrategyType.parse(_text(raw))
    except ValueError as error:
        raise ConfigError(str(error)) from None


def _query_log_type(raw: Any) -> QueryLogType:
    try:
        return QueryLogType.parse(_text(raw))
    except ValueError as error:
        raise ConfigError(str(error)) from None


def _qtype_set(raw: Any) -> QTypeSet:
    return QTypeSet(parse_qtype(_text(item)) for item in _list_of(lambda x: x)(raw))


def _decode(cls: type, raw: Any) -> Any:
    """Build a config dataclass from a YAML mapping, rejecting unknown keys."""
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise _unmarshal_error(raw, cls.__name__)
    known = {spec.metadata["yaml"]: spec for spec in fields(cls)}
    values = {}
    for key, value in raw.items():
        spec = known.get(key)
        if spec is None:
            raise ConfigError(f"field {key} not found in type {cls.__name__}")
        if value is None:
            continue
        values[spec.name] = spec.metadata["parse"](value)
    return cls(**values)


def _nested(cls: type) -> Callable[[Any], Any]:
    return lambda raw: _decode(cls, raw)


def _yaml(key: str, parse: Callable[[Any], Any], **kwargs: Any) -> Any:
    return field(metadata={"yaml": key, "parse": parse}, **kwargs)


_strings = _list_of(_text)
_string_lists = _map_of(_strings)


# --- configuration sections ------------------------------------------------


@dataclass
class BootstrapConfig:
    upstream: Upstream = _yaml("upstream", _upstream, default=Upstream())
    ips: list[IPAddress] = _yaml("ips", _list_of(_ip), default_factory=list)


def _bootstrap(raw: Any) -> BootstrapConfig:
    if isinstance(raw, str):
        try:
            return BootstrapConfig(upstream=parse_upstream(raw))
        except UpstreamError:
            raise _unmarshal_error(raw, "BootstrapConfig") from None
    return _decode(BootstrapConfig, raw)


@dataclass
class PrometheusConfig:
    enable: bool = _yaml("enable", _bool, default=False)
    path: str = _yaml("path", _text, default="/metrics")


@dataclass
class UpstreamConfig:
    external_resolvers: dict[str, list[Upstream]] = field(default_factory=dict)


def _upstream_config(raw: Any) -> UpstreamConfig:
    return UpstreamConfig(external_resolvers=_map_of(_list_of(_upstream))(raw))


@dataclass
class CustomDNSConfig:
    rewrite: dict[str, str] = _yaml("rewrite", _map_of(_text), default_factory=dict)
    fallback_upstream: bool = _yaml("fallbackUpstream", _bool, default=False)
    custom_ttl: float = _yaml("customTTL", parse_config_duration, default=_HOUR)
    mapping: dict[str, list[IPAddress]] = _yaml(
        "mapping", _map_of(_ip_csv), default_factory=dict
    )
    filter_unmapped_types: bool = _yaml("filterUnmappedTypes", _bool, default=True)


@dataclass
class ConditionalUpstreamConfig:
    rewrite: dict[str, str] = _yaml("rewrite", _map_of(_text), default_factory=dict)
    fallback_upstream: bool = _yaml("fallbackUpstream", _bool, default=False)
    mapping: dict[str, list[Upstream]] = _yaml(
        "mapping", _map_of(_upstream_csv), default_factory=dict
    )


@dataclass
class BlockingConfig:
    black_lists: dict[str, list[str]] = _yaml("blackLists", _string_lists, default_factory=dict)
    white_lists: dict[str, list[str]] = _yaml("whiteLists", _string_lists, default_factory=dict)
    client_groups_block: dict[str, list[str]] = _yaml(
        "clientGroupsBlock", _string_lists, default_factory=dict
    )
    block_type: str = _yaml("blockType", _text, default="ZEROIP")
    block_ttl: float = _yaml("blockTTL", parse_config_duration, default=6 * _HOUR)
    download_timeout: float = _yaml("downloadTimeout", parse_config_duration, default=60.0)
    download_attempts: int = _yaml("downloadAttempts", _uint, default=3)
    download_cooldown: float = _yaml("downloadCooldown", parse_config_duration, default=1.0)
    refresh_period: float = _yaml("refreshPeriod", parse_config_duration, default=4 * _HOUR)
    fail_start_on_list_error: bool = _yaml("failStartOnListError", _bool, default=False)
    processing_concurrency: int = _yaml("processingConcurrency", _uint, default=4)
    start_strategy: StartStrategyType = _yaml(
        "startStrategy", _start_strategy, default=StartStrategyType.BLOCKING
    )


@dataclass
class ClientLookupConfig:
    clients: dict[str, list[IPAddress]] = _yaml(
        "clients", _map_of(_list_of(_ip)), default_factory=dict
    )
    upstream: Upstream = _yaml("upstream", _upstream, default=Upstream())
    single_name_order: list[int] = _yaml("singleNameOrder", _list_of(_uint), default_factory=list)


@dataclass
class CachingConfig:
    min_caching_time: float = _yaml("minTime", parse_config_duration, default=0.0)
    max_caching_time: float = _yaml("maxTime", parse_config_duration, default=0.0)
    cache_time_negative: float = _yaml(
        "cacheTimeNegative", parse_config_duration, default=30 * _MINUTE
    )
    max_items_count: int = _yaml("maxItemsCount", _int, default=0)
    prefetching: bool = _yaml("prefetching", _bool, default=False)
    prefetch_expires: float = _yaml("prefetchExpires", parse_config_duration, default=2 * _HOUR)
    prefetch_threshold: int = _yaml("prefetchThreshold", _int, default=5)
    prefetch_max_items_count: int = _yaml("prefetchMaxItemsCount", _int, default=0)


@dataclass
class QueryLogConfig:
    target: str = _yaml("target", _text, default="")
    type: QueryLogType = _yaml("type", _query_log_type, default=QueryLogType.CONSOLE)
    log_retention_days: int = _yaml("logRetentionDays", _uint, default=0)
    creation_attempts: int = _yaml("creationAttempts", _int, default=3)
    creation_cooldown: float = _yaml("creationCooldown", parse_config_duration, default=2.0)


@dataclass
class RedisConfig:
    address: str = _yaml("address", _text, default="")
    password: str = _yaml("password", _text, default="")
    database: int = _yaml("database", _int, default=0)
    required: bool = _yaml("required", _bool, default=False)
    connection_attempts: int = _yaml("connectionAttempts", _int, default=3)
    connection_cooldown: float = _yaml("connectionCooldown", parse_config_duration, default=1.0)


@dataclass
class HostsFileConfig:
    filepath: str = _yaml("filePath", _text, default="")
    hosts_ttl: float = _yaml("hostsTTL", parse_config_duration, default=_HOUR)
    refresh_period: float = _yaml("refreshPeriod", parse_config_duration, default=_HOUR)
    filter_loopback: bool = _yaml("filterLoopback", _bool, default=False)


@dataclass
class FilteringConfig:
    query_types: QTypeSet = _yaml("queryTypes", _qtype_set, default_factory=QTypeSet)


@dataclass
class EdeConfig:
    enable: bool = _yaml("enable", _bool, default=False)


@dataclass
class Config:
    """The complete configuration, with defaults for every setting."""

    upstream: UpstreamConfig = _yaml("upstream", _upstream_config, default_factory=UpstreamConfig)
    upstream_timeout: float = _yaml("upstreamTimeout", parse_config_duration, default=2.0)
    custom_dns: CustomDNSConfig = _yaml(
        "customDNS", _nested(CustomDNSConfig), default_factory=CustomDNSConfig
    )
    conditional: ConditionalUpstreamConfig = _yaml(
        "conditional", _nested(ConditionalUpstreamConfig), default_factory=ConditionalUpstreamConfig
    )
    blocking: BlockingConfig = _yaml(
        "blocking", _nested(BlockingConfig), default_factory=BlockingConfig
    )
    client_lookup: ClientLookupConfig = _yaml(
        "clientLookup", _nested(ClientLookupConfig), default_factory=ClientLookupConfig
    )
    caching: CachingConfig = _yaml("caching", _nested(CachingConfig), default_factory=CachingConfig)
    query_log: QueryLogConfig = _yaml(
        "queryLog", _nested(QueryLogConfig), default_factory=QueryLogConfig
    )
    prometheus: PrometheusConfig = _yaml(
        "prometheus", _nested(PrometheusConfig), default_factory=PrometheusConfig
    )
    redis: RedisConfig = _yaml("redis", _nested(RedisConfig), default_factory=RedisConfig)
    log_level: str = _yaml("logLevel", _text, default="info")
    log_format: str = _yaml("logFormat", _text, default="text")
    log_privacy: bool = _yaml("logPrivacy", _bool, default=False)
    log_timestamp: bool = _yaml("logTimestamp", _bool, default=True)
    dns_ports: list[str] = _yaml("port", _listen, default_factory=lambda: ["53"])
    http_ports: list[str] = _yaml("httpPort", _listen, default_factory=list)
    https_ports: list[str] = _yaml("httpsPort", _listen, default_factory=list)
    tls_ports: list[str] = _yaml("tlsPort", _listen, default_factory=list)
    doh_user_agent: str = _yaml("dohUserAgent", _text, default="")
    min_tls_serve_ver: str = _yaml("minTlsServeVersion", _text, default="1.2")
    start_verify_upstream: bool = _yaml("startVerifyUpstream", _bool, default=False)
    disable_ipv6: bool = _yaml("disableIPv6", _bool, default=False)
    cert_file: str = _yaml("certFile", _text, default="")
    key_file: str = _yaml("keyFile", _text, default="")
    bootstrap_dns: BootstrapConfig = _yaml(
        "bootstrapDns", _bootstrap, default_factory=BootstrapConfig
    )
    hosts_file: HostsFileConfig = _yaml(
        "hostsFile", _nested(HostsFileConfig), default_factory=HostsFileConfig
    )
    fqdn_only: bool = _yaml("fqdnOnly", _bool, default=False)
    filtering: FilteringConfig = _yaml(
        "filtering", _nested(FilteringConfig), default_factory=FilteringConfig
    )
    ede: EdeConfig = _yaml("ede", _nested(EdeConfig), default_factory=EdeConfig)


# --- loading ---------------------------------------------------------------

_lock = threading.RLock()
_current = Config()


def validate_config(cfg: Config) -> None:
    """Translate deprecated settings into their replacements."""
    if cfg.disable_ipv6:
        _logger.warning(
            "'disableIPv6' is deprecated. Please use 'filtering.queryTypes' with 'AAAA' instead."
        )
        cfg.filtering.query_types.insert(dns.rdatatype.AAAA)

    if cfg.blocking.fail_start_on_list_error:
        _logger.warning(
            "'blocking.failStartOnListError' is deprecated. Please use 'blocking.startStrategy'"
            " with 'failOnError' instead."
        )
        if cfg.blocking.start_strategy is StartStrategyType.BLOCKING:
            cfg.blocking.start_strategy = StartStrategyType.FAIL_ON_ERROR
        elif cfg.blocking.start_strategy is StartStrategyType.FAST:
            _logger.warning(
                "'blocking.startStrategy' with 'fast' will ignore 'blocking.failStartOnListError'."
            )


def parse_config(data: str | bytes) -> Config:
    """Parse YAML text into a validated Config; unknown keys are errors."""
    try:
        cfg = _decode(Config, yaml.load(data, Loader=_Loader))
    except (yaml.YAMLError, ConfigError) as error:
        raise ConfigError(f"wrong file structure: {error}") from error
    validate_config(cfg)
    return cfg


def _describe(operation: str, path: Path, error: OSError) -> str:
    reason = (error.strerror or str(error)).lower()
    return f"{operation} {path}: {reason}"


def _read_dir(root: Path) -> bytes:
    chunks = []
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        try:
            chunks.append(b"\n" + entry.read_bytes())
        except OSError as error:
            raise ConfigError(
                f"can't read config files: {_describe('read', entry, error)}"
            ) from error
    return b"".join(chunks)


def load_config(path: str | Path, mandatory: bool) -> Config:
    """Load the configuration from a file or from every file in a directory.

    A missing path yields the defaults unless the configuration is mandatory.
    """
    global _current
    target = Path(path)
    with _lock:
        try:
            info = target.stat()
        except FileNotFoundError as error:
            if not mandatory:
                _current = Config()
                return _current
            raise ConfigError(
                f"can't read config file(s): {_describe('stat', target, error)}"
            ) from error
        except OSError as error:
            raise ConfigError(
                f"can't read config file(s): {_describe('stat', target, error)}"
            ) from error

        if stat.S_ISDIR(info.st_mode):
            data = _read_dir(target)
        else:
            try:
                data = target.read_bytes()
            except OSError as error:
                raise ConfigError(
                    f"can't read config file: {_describe('read', target, error)}"
                ) from error

        cfg = parse_config(data)
        _current = cfg
        return cfg


def get_config() -> Config:
    """Return the most recently loaded configuration."""
    with _lock:
        return _current