# blockydns

Building blocks of a blocking DNS proxy, and a command-line client for the
proxy's REST API.

## Modules

- `blockydns.config` loads the YAML configuration. `load_config(path, mandatory)`
  accepts a single file or a directory, in which case every file in it is read
  in name order. Settings that are left out get their defaults, and unknown keys
  are rejected with `ConfigError`. If the path is missing and `mandatory` is
  false, the defaults are returned. `validate_config` maps the deprecated
  options `disableIPv6` and `blocking.failStartOnListError` onto the options
  that replace them. `get_config()` returns the configuration that was loaded
  last.
- `blockydns.upstream` has `parse_upstream`, which reads upstream resolvers
  written as `[net:]host[:port][/path]`. `net` is one of `tcp+udp`, `tcp-tls`
  or `https`, and the default port depends on it (53, 853 or 443). The
  resulting `Upstream` prints back in the same canonical form. The module also
  defines the enums `NetProtocol`, `QueryLogType` and `StartStrategyType`, and
  `convert_port`.
- `blockydns.listcache` provides `ListCache`, which holds named groups of block
  or allow lists. A list is read from a link that starts with `http`, from a
  local path (optionally prefixed with `file://`), or from inline text that
  contains a line break. `match(domain, groups)` returns the first group that
  contains the domain, or `None`. When `refresh_period` is positive, the lists
  are reloaded in the background until `close()` is called.
- `blockydns.downloader` provides `HTTPDownloader`, which fetches a file over
  HTTP with a timeout, a number of attempts and a pause between attempts. A
  timeout is raised as `TransientError`.
- `blockydns.stringcache` contains `StringCache`, a case-insensitive
  exact-match cache, and `RegexCache`. `ChainedCacheFactory` puts entries
  written as `/pattern/` into the regex cache and all other entries into the
  string cache.
- `blockydns.expirationcache` provides `ExpiringLRUCache`, an LRU cache whose
  entries each carry a TTL. A background cleanup removes expired entries. The
  optional `on_expired` hook is called for each expired entry and can supply a
  new value and TTL to keep it.
- `blockydns.api` holds the REST data types (`QueryRequest`, `QueryResult`,
  `BlockingStatus`) and the endpoint handlers for enabling, disabling and
  inspecting blocking and for refreshing the lists. Handlers are attached to a
  `Router` with `register_endpoint`.
- `blockydns.durations` parses and formats durations written like `1m20s` or
  `500ms`.
- `blockydns.events` is a small synchronous publish/subscribe bus, `EventBus`.
  The instance shared by the whole application is returned by `bus()`.

## Installation

```
pip install .
```

## Command line

The `blockydns` command talks to a running server through its REST API:

```
blockydns blocking enable
blockydns blocking disable --duration 5m --groups ads
blockydns blocking status
blockydns lists refresh
blockydns query example.com --type AAAA
blockydns healthcheck --port 53
blockydns version
```

`blocking` can also be called as `block`, `enable` as `on`, and `disable` as
`off`. `--groups` may be given more than once.

The API address is set with `--apiHost` and `--apiPort`, which default to
`localhost` and `4000`. If the configuration has an `httpPort` entry, the
first such entry takes precedence.

The configuration file is given with `--config`. If that option is left
unset, the path is taken from the `BLOCKY_CONFIG_FILE` environment variable,
then from `CONFIG_FILE`, and finally defaults to `./config.yml`. A missing
file is not an error.

`healthcheck` sends a DNS query over TCP to `127.0.0.1` and prints `OK` or
`NOT OK`.

## Library use

```python
from blockydns.upstream import parse_upstream
from blockydns.stringcache import ChainedCacheFactory

upstream = parse_upstream("https://dns.example.com/dns-query")
print(upstream)          # https://dns.example.com/dns-query

factory = ChainedCacheFactory()
factory.add_entry("ads.example.com")
factory.add_entry("/^tracker\\.(com|net)$/")
cache = factory.create()
cache.contains("ADS.example.com")   # True
cache.contains("tracker.net")       # True
```

## What this package does not do

It contains no DNS server and no resolver. There is no command that starts
serving queries. The REST handlers in `blockydns.api` can be dispatched
through `Router`, but the package does not include an HTTP server to host
them. The command-line client expects such a server to be running already.

## Tests

```
pip install .[test]
pytest
```