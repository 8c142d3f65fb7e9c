"""Command line client for the DNS proxy's REST API and health check."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Callable, Mapping, Optional, Sequence
from urllib.parse import quote

import dns.exception
import dns.message
import dns.query
import dns.rdatatype
import requests

from blockydns.api import (
    JSON_CONTENT_TYPE,
    PATH_BLOCKING_DISABLE,
    PATH_BLOCKING_ENABLE,
    PATH_BLOCKING_STATUS,
    PATH_LISTS_REFRESH,
    PATH_QUERY,
    BlockingStatus,
    QueryRequest,
    QueryResult,
)
from blockydns.config import Config, ConfigError, load_config, parse_qtype
from blockydns.durations import format_go_duration, parse_duration
from blockydns.upstream import UpstreamError, convert_port

_logger = logging.getLogger(__name__)

DEFAULT_PORT = 4000
DEFAULT_HOST = "localhost"
DEFAULT_CONFIG_PATH = "./config.yml"
CONFIG_FILE_ENV_VAR = "BLOCKY_CONFIG_FILE"
CONFIG_FILE_ENV_VAR_OLD = "CONFIG_FILE"
DEFAULT_DNS_PORT = 53
HEALTHCHECK_TIMEOUT = 2.0

_HTTP_OK = 200

try:
    VERSION = version("blockydns")
except PackageNotFoundError:
    VERSION = "undefined"
BUILD_TIME = "undefined"

_LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
}


class CommandError(Exception):
    """Raised when a command cannot complete."""


def api_url(host: str, port: int, path: str) -> str:
    """Build the URL of an API endpoint."""
    return f"http://{host}:{port}{path}"


def resolve_config_path(path: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Return the configuration path, taking environment overrides of the default."""
    env = os.environ if environ is None else environ
    if path != DEFAULT_CONFIG_PATH:
        return path
    if CONFIG_FILE_ENV_VAR in env:
        return env[CONFIG_FILE_ENV_VAR]
    if CONFIG_FILE_ENV_VAR_OLD in env:
        return env[CONFIG_FILE_ENV_VAR_OLD]
    return path


def api_address_from_config(cfg: Config, host: str, port: int) -> tuple[str, int]:
    """Return the API host and port, taken from the first HTTP listen address if any."""
    if not cfg.http_ports:
        return host, port
    parts = cfg.http_ports[0].split(":")
    try:
        api_port = convert_port(parts[-1])
    except UpstreamError as error:
        raise CommandError(f"can't convert port to number (1 - 65535) {error}") from error
    return ":".join(parts[:-1]), api_port


def _status_text(response: requests.Response) -> str:
    return f"{response.status_code} {response.reason or ''}".strip()


def _request(method: str, url: str, prefix: str, **kwargs: object) -> requests.Response:
    try:
        return requests.request(method, url, **kwargs)
    except requests.RequestException as error:
        raise CommandError(f"{prefix} {error}") from error


def enable_blocking(host: str, port: int) -> str:
    """Enable blocking through the API."""
    response = _request("GET", api_url(host, port, PATH_BLOCKING_ENABLE), "can't execute")
    with response:
        if response.status_code != _HTTP_OK:
            raise CommandError(f"response NOK, Status: {_status_text(response)}")
    _logger.info("OK")
    return "OK"


def disable_blocking(
    host: str, port: int, duration: float = 0.0, groups: Sequence[str] = ()
) -> str:
    """Disable blocking through the API, optionally for a time and for some groups."""
    url = "{}?duration={}&groups={}".format(
        api_url(host, port, PATH_BLOCKING_DISABLE),
        format_go_duration(duration),
        quote(",".join(groups), safe=","),
    )
    response = _request("GET", url, "can't execute")
    with response:
        if response.status_code != _HTTP_OK:
            raise CommandError(f"response NOK, Status: {_status_text(response)}")
    _logger.info("OK")
    return "OK"


def blocking_status(host: str, port: int) -> str:
    """Query the blocking status and describe it."""
    response = _request("GET", api_url(host, port, PATH_BLOCKING_STATUS), "can't execute")
    with response:
        if response.status_code != _HTTP_OK:
            raise CommandError(f"response NOK, Status: {_status_text(response)}")
        try:
            status = BlockingStatus.from_json(response.content)
        except (ValueError, TypeError, AttributeError) as error:
            raise CommandError(f"can't parse response {error}") from error

    if status.enabled:
        message = "blocking enabled"
    elif status.auto_enable_in_sec == 0:
        message = f"blocking disabled for groups: {'; '.join(status.disabled_groups)}"
    else:
        message = (
            f"blocking disabled for groups: {'; '.join(status.disabled_groups)}, "
            f"for {status.auto_enable_in_sec} seconds"
        )
    _logger.info("%s", message)
    return message


def refresh_lists(host: str, port: int) -> str:
    """Trigger a refresh of all lists."""
    response = _request(
        "POST",
        api_url(host, port, PATH_LISTS_REFRESH),
        "can't execute",
        headers={"Content-Type": JSON_CONTENT_TYPE},
    )
    with response:
        if response.status_code != _HTTP_OK:
            raise CommandError(f"response NOK, {_status_text(response)} {response.text}")
    _logger.info("OK")
    return "OK"


def query(host: str, port: int, domain: str, qtype: str = "A") -> list[str]:
    """Perform a DNS query through the API and describe the result."""
    try:
        rtype = parse_qtype(qtype)
    except ConfigError:
        rtype = dns.rdatatype.NONE
    if int(rtype) == 0:
        raise CommandError(f"unknown query type '{qtype}'")

    request = QueryRequest(query=domain, type=qtype)
    response = _request(
        "POST",
        api_url(host, port, PATH_QUERY),
        "can't execute:",
        data=request.to_json().encode(),
        headers={"Content-Type": JSON_CONTENT_TYPE},
    )
    with response:
        if response.status_code != _HTTP_OK:
            raise CommandError(f"response NOK, {_status_text(response)} {response.text}")
        try:
            result = QueryResult.from_json(response.content)
        except (ValueError, TypeError, AttributeError) as error:
            raise CommandError(f"can't read response: {error}") from error

    lines = [
        f"Query result for '{request.query}' ({request.type}):",
        f"\treason:        {result.reason:>20}",
        f"\tresponse type: {result.response_type:>20}",
        f"\tresponse:      {result.response:>20}",
        f"\treturn code:   {result.return_code:>20}",
    ]
    for line in lines:
        _logger.info("%s", line)
    return lines


def healthcheck(port: int = DEFAULT_DNS_PORT) -> str:
    """Send a DNS query over TCP to the local server; print OK or NOT OK."""
    message = dns.message.make_query("healthcheck.blocky.", dns.rdatatype.A)
    try:
        dns.query.tcp(message, "127.0.0.1", timeout=HEALTHCHECK_TIMEOUT, port=port)
    except (OSError, dns.exception.DNSException) as error:
        print("NOT OK")
        raise CommandError(f"healthcheck failed: {error}") from error
    print("OK")
    return "OK"


def version_lines() -> list[str]:
    """Lines printed by the version command."""
    return ["blocky", f"Version: {VERSION}", f"Build time: {BUILD_TIME}"]


def _port_arg(text: str) -> int:
    try:
        return convert_port(text)
    except UpstreamError as error:
        raise argparse.ArgumentTypeError(str(error)) from None


def _duration_arg(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as error:
        raise argparse.ArgumentTypeError(str(error)) from None


Handler = Callable[[argparse.Namespace, str, int], None]


def _print_version(_args: argparse.Namespace, _host: str, _port: int) -> None:
    for line in version_lines():
        print(line)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with every command."""
    root = argparse.ArgumentParser(
        prog="blocky",
        description="A fast and configurable DNS Proxy and ad-blocker for local network.",
    )
    root.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH,
                      help="path to config file or folder")
    root.add_argument("--apiHost", dest="api_host", default=DEFAULT_HOST,
                      help="host of blocky (API). Default overridden by config and CLI.")
    root.add_argument("--apiPort", dest="api_port", type=_port_arg, default=DEFAULT_PORT,
                      help="port of blocky (API). Default overridden by config and CLI.")
    commands = root.add_subparsers(dest="command")

    commands.add_parser("refresh", help="refreshes all lists").set_defaults(
        handler=lambda _a, host, port: refresh_lists(host, port)
    )

    query_cmd = commands.add_parser("query", help="performs DNS query")
    query_cmd.add_argument("domain")
    query_cmd.add_argument("-t", "--type", default="A", help="query type (A, AAAA, ...)")
    query_cmd.set_defaults(handler=lambda a, host, port: query(host, port, a.domain, a.type))

    commands.add_parser("version", help="Print the version number of blocky").set_defaults(
        handler=_print_version
    )

    blocking = commands.add_parser(
        "blocking", aliases=["block"], help="Control status of blocking resolver"
    )
    blocking_commands = blocking.add_subparsers(dest="blocking_command")
    blocking_commands.add_parser("enable", aliases=["on"], help="Enable blocking").set_defaults(
        handler=lambda _a, host, port: enable_blocking(host, port)
    )
    disable = blocking_commands.add_parser(
        "disable", aliases=["off"], help="Disable blocking for certain duration"
    )
    disable.add_argument("-d", "--duration", type=_duration_arg, default=0.0,
                         help="duration in min")
    disable.add_argument("-g", "--groups", action="append", default=None,
                         help="blocking groups to disable")
    disable.set_defaults(
        handler=lambda a, host, port: disable_blocking(host, port, a.duration, a.groups or [])
    )
    blocking_commands.add_parser(
        "status", help="Print the status of blocking resolver"
    ).set_defaults(handler=lambda _a, host, port: blocking_status(host, port))

    lists = commands.add_parser("lists", help="lists operations")
    lists_commands = lists.add_subparsers(dest="lists_command")
    lists_commands.add_parser("refresh", help="refreshes all lists").set_defaults(
        handler=lambda _a, host, port: refresh_lists(host, port)
    )

    health = commands.add_parser("healthcheck", help="performs healthcheck")
    health.add_argument("-p", "--port", type=_port_arg, default=DEFAULT_DNS_PORT,
                        help="healthcheck port")
    health.set_defaults(handler=lambda a, _host, _port: healthcheck(a.port))

    return root


def _configure_logging(cfg: Config) -> None:
    level = _LOG_LEVELS.get(cfg.log_level.lower(), logging.INFO)
    fmt = "%(levelname)s %(message)s"
    if cfg.log_timestamp:
        fmt = "%(asctime)s " + fmt
    logging.basicConfig(level=level, format=fmt)
    logging.getLogger("blockydns").setLevel(level)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the command line; return the exit status."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exit_:
        return exit_.code if isinstance(exit_.code, int) else 1

    config_path = resolve_config_path(args.config)
    try:
        cfg = load_config(config_path, False)
    except ConfigError as error:
        print(f"unable to load configuration: {error}", file=sys.stderr)
        return 1
    _configure_logging(cfg)

    handler: Optional[Handler] = getattr(args, "handler", None)
    try:
        host, port = api_address_from_config(cfg, args.api_host, args.api_port)
        if handler is None:
            parser.print_help()
            return 0
        handler(args, host, port)
    except CommandError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1
    return 0