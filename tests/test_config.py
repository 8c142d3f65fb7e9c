import ipaddress

import dns.rdatatype
import pytest

from blockydns.config import (
    Config,
    ConfigError,
    QTypeSet,
    get_config,
    load_config,
    parse_config,
    parse_config_duration,
    parse_qtype,
    validate_config,
)
from blockydns.durations import humanize_duration
from blockydns.upstream import NetProtocol, QueryLogType, StartStrategyType, Upstream

PART_ONE = [
    "upstream:",
    "  default:",
    "    - tcp+udp:8.8.8.8",
    "    - tcp+udp:8.8.4.4",
    "    - 1.1.1.1",
    "customDNS:",
    "  mapping:",
    "    my.duckdns.org: 192.168.178.3",
    "    multiple.ips: 192.168.178.3,192.168.178.4,2001:0db8:85a3:08d3:1319:8a2e:0370:7344",
    "conditional:",
    "  mapping:",
    "    fritz.box: tcp+udp:192.168.178.1",
    "    multiple.resolvers: tcp+udp:192.168.178.1,tcp+udp:192.168.178.2",
    "filtering:",
    "  queryTypes:",
    "    - AAAA",
    "    - A",
]

PART_TWO = [
    "blocking:",
    "  blackLists:",
    "    ads:",
    "      - https://lists.example.com/simple_ad.txt",
    "      - https://lists.example.com/hosts",
    "      - http://lists.example.com/justdomains",
    "    special:",
    "      - https://lists.example.com/ad_servers.txt",
    "  whiteLists:",
    "    ads:",
    "      - whitelist.txt",
    "  clientGroupsBlock:",
    "    default:",
    "      - ads",
    "      - special",
    "    Laptop-D.fritz.box:",
    "      - ads",
    "  blockTTL: 1m",
    "  refreshPeriod: 120",
    "clientLookup:",
    "  upstream: 192.168.178.1",
    "  singleNameOrder:",
    "    - 2",
    "    - 1",
    "queryLog:",
    "  type: csv-client",
    "  target: /opt/log",
    "port: 55553,:55554,[::1]:55555",
    "logLevel: debug",
    "dohUserAgent: testBlocky",
    "minTlsServeVersion: 1.3",
    "startVerifyUpstream: false",
]


def _write(path, lines):
    path.write_text("\n".join(lines))
    return path


def _check_test_file_config(cfg):
    assert cfg.dns_ports == ["55553", ":55554", "[::1]:55555"]
    default = cfg.upstream.external_resolvers["default"]
    assert [u.host for u in default] == ["8.8.8.8", "8.8.4.4", "1.1.1.1"]
    mapping = cfg.custom_dns.mapping
    assert len(mapping) == 2
    assert mapping["my.duckdns.org"][0] == ipaddress.ip_address("192.168.178.3")
    assert mapping["multiple.ips"] == [
        ipaddress.ip_address("192.168.178.3"),
        ipaddress.ip_address("192.168.178.4"),
        ipaddress.ip_address("2001:0db8:85a3:08d3:1319:8a2e:0370:7344"),
    ]
    assert len(cfg.conditional.mapping) == 2
    assert len(cfg.conditional.mapping["fritz.box"]) == 1
    assert len(cfg.conditional.mapping["multiple.resolvers"]) == 2
    assert cfg.client_lookup.upstream.host == "192.168.178.1"
    assert cfg.client_lookup.single_name_order == [2, 1]
    assert len(cfg.blocking.black_lists) == 2
    assert len(cfg.blocking.white_lists) == 1
    assert len(cfg.blocking.client_groups_block) == 2
    assert cfg.blocking.block_ttl == 60
    assert cfg.blocking.refresh_period == 2 * 3600
    assert len(cfg.filtering.query_types) == 2
    assert cfg.caching.max_caching_time == 0
    assert cfg.caching.min_caching_time == 0
    assert cfg.query_log.type is QueryLogType.CSV_CLIENT
    assert cfg.log_level == "debug"
    assert cfg.doh_user_agent == "testBlocky"
    assert cfg.min_tls_serve_ver == "1.3"
    assert cfg.start_verify_upstream is False
    assert get_config() is cfg


def test_load_single_file(tmp_path):
    path = _write(tmp_path / "config.yml", PART_ONE + PART_TWO)
    _check_test_file_config(load_config(path, True))


def test_load_directory(tmp_path):
    _write(tmp_path / "config1.yaml", PART_ONE)
    _write(tmp_path / "config2.yaml", PART_TWO)
    _check_test_file_config(load_config(tmp_path, True))


def test_missing_file_mandatory(tmp_path):
    with pytest.raises(ConfigError, match="no such file or directory"):
        load_config(tmp_path / "config.yml", True)


def test_missing_folder_mandatory(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "does-not-exist-config", True)


def test_missing_file_not_mandatory_uses_defaults(tmp_path):
    cfg = load_config(tmp_path / "config.yml", False)
    assert cfg.log_level == "info"
    assert get_config() is cfg


def test_malformed_file(tmp_path):
    path = _write(tmp_path / "config.yml", ["malformed_config"])
    with pytest.raises(ConfigError, match="wrong file structure"):
        load_config(path, True)


def test_wrong_duration():
    with pytest.raises(ConfigError) as info:
        parse_config("blocking:\n  refreshPeriod: wrongduration")
    assert 'invalid duration "wrongduration"' in str(info.value)


def test_custom_dns_wrong_ip():
    with pytest.raises(ConfigError) as info:
        parse_config("customDNS:\n  mapping:\n    someDomain: 192.168.178.WRONG")
    assert "invalid IP address '192.168.178.WRONG'" in str(info.value)


def test_conditional_wrong_upstream():
    data = "conditional:\n  mapping:\n    multiple.resolvers: 192.168.178.1,wrongprotocol:4.4.4.4:53"
    with pytest.raises(ConfigError) as info:
        parse_config(data)
    assert "wrong host name 'wrongprotocol:4.4.4.4:53'" in str(info.value)


def test_wrong_upstreams():
    data = "upstream:\n  default:\n    - 8.8.8.8\n    - wrongprotocol:8.8.4.4\n    - 1.1.1.1"
    with pytest.raises(ConfigError) as info:
        parse_config(data)
    assert "can't convert upstream 'wrongprotocol:8.8.4.4'" in str(info.value)


def test_wrong_filtering():
    with pytest.raises(ConfigError) as info:
        parse_config("filtering:\n  queryTypes:\n    - invalidqtype\n")
    assert "unknown DNS query type: 'invalidqtype'" in str(info.value)


def test_bootstrap_as_string():
    cfg = parse_config("bootstrapDns: 0.0.0.0")
    assert cfg.bootstrap_dns.upstream.host == "0.0.0.0"


def test_bootstrap_as_mapping():
    data = "bootstrapDns:\n  upstream: tcp-tls:dns.example.com\n  ips:\n    - 0.0.0.0\n"
    cfg = parse_config(data)
    assert cfg.bootstrap_dns.upstream.host == "dns.example.com"
    assert cfg.bootstrap_dns.upstream.net is NetProtocol.TCP_TLS
    assert cfg.bootstrap_dns.ips == [ipaddress.ip_address("0.0.0.0")]


def test_not_yaml_mapping():
    with pytest.raises(ConfigError) as info:
        parse_config("///")
    assert "cannot unmarshal !!str `///`" in str(info.value)


def test_unknown_field_is_rejected():
    with pytest.raises(ConfigError, match="field unknownKey not found"):
        parse_config("unknownKey: 1")


def test_disable_ipv6_adds_aaaa():
    cfg = Config(disable_ipv6=True)
    validate_config(cfg)
    assert dns.rdatatype.AAAA in cfg.filtering.query_types
    assert cfg.filtering.query_types.contains(dns.rdatatype.AAAA)


def test_fail_start_on_list_error_changes_blocking_strategy():
    cfg = Config()
    cfg.blocking.fail_start_on_list_error = True
    validate_config(cfg)
    assert cfg.blocking.start_strategy is StartStrategyType.FAIL_ON_ERROR


def test_fail_start_on_list_error_keeps_fast():
    cfg = Config()
    cfg.blocking.fail_start_on_list_error = True
    cfg.blocking.start_strategy = StartStrategyType.FAST
    validate_config(cfg)
    assert cfg.blocking.start_strategy is StartStrategyType.FAST


def test_start_strategy_parsing():
    assert parse_config("blocking:\n  startStrategy: fast").blocking.start_strategy is (
        StartStrategyType.FAST
    )
    with pytest.raises(ConfigError, match="is not a valid StartStrategyType"):
        parse_config("blocking:\n  startStrategy: slow")


def test_upstream_in_client_lookup():
    cfg = parse_config("clientLookup:\n  upstream: tcp+udp:1.2.3.4")
    assert cfg.client_lookup.upstream == Upstream(NetProtocol.TCP_UDP, "1.2.3.4", 53)


def test_listen_config_split():
    assert parse_config('port: "55,:56"').dns_ports == ["55", ":56"]


def test_defaults():
    cfg = parse_config("")
    assert cfg.upstream_timeout == 2
    assert cfg.dns_ports == ["53"]
    assert cfg.blocking.block_type == "ZEROIP"
    assert cfg.blocking.block_ttl == 6 * 3600
    assert cfg.blocking.start_strategy is StartStrategyType.BLOCKING
    assert cfg.custom_dns.filter_unmapped_types is True
    assert cfg.prometheus.path == "/metrics"
    assert cfg.log_timestamp is True


def test_duration_with_unit():
    seconds = parse_config_duration("1m20s")
    assert seconds == 80
    assert humanize_duration(seconds) == "1 minute 20 seconds"


def test_duration_without_unit_is_minutes():
    assert parse_config_duration("120") == 7200
    assert parse_config_duration(5) == 300


def test_duration_wrong_format():
    with pytest.raises(ConfigError) as info:
        parse_config_duration("wrong")
    assert str(info.value) == 'time: invalid duration "wrong"'


def test_conditional_mapping_single():
    cfg = parse_config("conditional:\n  mapping:\n    key: 1.2.3.4")
    assert cfg.conditional.mapping == {
        "key": [Upstream(net=NetProtocol.TCP_UDP, host="1.2.3.4", port=53)]
    }


def test_custom_dns_mapping_single():
    cfg = parse_config("customDNS:\n  mapping:\n    key: 1.2.3.4")
    assert cfg.custom_dns.mapping == {"key": [ipaddress.ip_address("1.2.3.4")]}


def test_parse_qtype():
    qtype = parse_qtype("AAAA")
    assert qtype == dns.rdatatype.AAAA
    assert dns.rdatatype.to_text(qtype) == "AAAA"


def test_parse_qtype_unknown():
    with pytest.raises(ConfigError, match="unknown DNS query type: 'WRONGTYPE'"):
        parse_qtype("WRONGTYPE")


def test_qtype_set_new_contains_given():
    qtypes = QTypeSet([dns.rdatatype.A])
    assert qtypes.contains(dns.rdatatype.A)
    assert not qtypes.contains(dns.rdatatype.AAAA)


def test_qtype_set_insert():
    qtypes = QTypeSet()
    assert not qtypes.contains(dns.rdatatype.AAAA)
    qtypes.insert(dns.rdatatype.AAAA)
    assert qtypes.contains(dns.rdatatype.AAAA)
    assert qtypes.contains("AAAA")