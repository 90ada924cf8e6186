import ipaddress

import pytest

from conflux.settings import (
    DEFAULT_GOSSIP_INTERVAL_SECS,
    DEFAULT_MAX_OUTSTANDING_RECON_REQUESTS,
    DEFAULT_SEEN_CACHE_SIZE,
    IPMatcher,
    NetType,
    Partner,
    PTreeConfig,
    Settings,
    SettingsError,
    default_settings,
    parse_settings,
)


def test_parse_empty_string_gives_defaults():
    assert parse_settings("") == default_settings()


def test_parse_some_defaults():
    toml = """
[conflux.recon]
version="2.3.4"
logname="blammo"
filters=["something","else"]
"""
    expected = Settings(
        version="2.3.4",
        log_name="blammo",
        filters=["else", "something"],
        http_addr=":11371",
        recon_addr=":11370",
        partners={},
        seen_cache_size=DEFAULT_SEEN_CACHE_SIZE,
        gossip_interval_secs=DEFAULT_GOSSIP_INTERVAL_SECS,
        max_outstanding_recon_requests=DEFAULT_MAX_OUTSTANDING_RECON_REQUESTS,
    )
    assert parse_settings(toml) == expected


def test_parse_override_defaults():
    toml = """
[conflux.recon]
version="2.3.4"
logname="blammo"
httpAddr="12.23.34.45:11371"
seenCacheSize=4092
reconAddr="[2001:db8:85a3::8a2e:370:7334]:11370"
filters=["something","else"]
"""
    expected = Settings(
        version="2.3.4",
        log_name="blammo",
        http_addr="12.23.34.45:11371",
        recon_addr="[2001:db8:85a3::8a2e:370:7334]:11370",
        filters=["else", "something"],
        partners={},
        seen_cache_size=4092,
    )
    assert parse_settings(toml) == expected


@pytest.mark.parametrize(
    "toml, pattern",
    [
        ("nope", "toml"),
        ('[conflux.recon]\nhttpNet="ansible"\n',
         'don\'t know how to resolve network "ansible" address'),
        ('[conflux.recon]\nhttpNet="tcp"\nhttpAddr="/dev/null"\n',
         "missing port in address"),
        ('[conflux.recon]\nhttpNet="tcp"\nhttpAddr="1.2.3.4:8080"\n'
         'reconNet="floo"\nreconAddr="flarb"\n',
         'don\'t know how to resolve network "floo" address "flarb"'),
        ('[conflux.recon]\nhttpNet="tcp"\nhttpAddr="1.2.3.4:8080"\n'
         'reconNet="tcp"\nreconAddr=":-1"\n',
         "invalid port"),
    ],
)
def test_parse_errors(toml, pattern):
    with pytest.raises(SettingsError, match=pattern):
        parse_settings(toml)


def test_parse_new_style_partners():
    toml = """
[conflux.recon]
httpAddr=":11371"
reconAddr=":11370"

[conflux.recon.partner.alice]
httpAddr="1.2.3.4:11371"
reconAddr="5.6.7.8:11370"

[conflux.recon.partner.bob]
httpAddr="4.3.2.1:11371"
reconAddr="8.7.6.5:11370"
"""
    expected = Settings(
        partners={
            "alice": Partner(http_addr="1.2.3.4:11371", recon_addr="5.6.7.8:11370"),
            "bob": Partner(http_addr="4.3.2.1:11371", recon_addr="8.7.6.5:11370"),
        }
    )
    assert parse_settings(toml) == expected


def test_parse_compat_style():
    toml = """
[conflux.recon]
httpPort=11371
reconPort=11370
partners=["1.2.3.4:11370","5.6.7.8:11370"]
"""
    expected = Settings(
        http_addr=":11371",
        recon_addr=":11370",
        compat_http_port=11371,
        compat_recon_port=11370,
        partners={
            "1.2.3.4": Partner(http_addr="1.2.3.4:11371", recon_addr="1.2.3.4:11370"),
            "5.6.7.8": Partner(http_addr="5.6.7.8:11371", recon_addr="5.6.7.8:11370"),
        },
        compat_partner_addrs=["1.2.3.4:11370", "5.6.7.8:11370"],
    )
    assert parse_settings(toml) == expected


def test_parse_wrong_type_rejected():
    with pytest.raises(SettingsError):
        parse_settings('[conflux.recon]\nseenCacheSize="many"\n')


def test_add_filters():
    settings1 = Settings(filters=["a", "b", "bar", "c", "foo", "x", "y", "z"])
    settings2 = Settings(filters=["foo", "bar", "foo", "bar"])
    settings2.add_filters(["a", "a", "z", "a", "b", "z", "bar", "foo", "c", "y", "x", "a", "z"])
    assert settings2 == settings1


@pytest.fixture
def matcher():
    settings = Settings(
        allow_cidrs=["192.168.1.0/24", "10.0.0.0/8", "20.21.22.23/32"],
        partners={
            "foo": Partner(http_addr="1.2.3.4:11371", recon_addr="4.3.2.1:11370"),
            "bar": Partner(http_addr="5.6.7.8:11371", recon_addr="5.6.7.8:11370"),
        },
    )
    return settings.matcher()


@pytest.mark.parametrize(
    "addr, expect",
    [
        ("10.0.0.14", True),
        ("10.1.0.14", True),
        ("11.1.0.14", False),
        ("1.2.3.4", True),
        ("1.2.3.5", False),
        ("1.3.3.5", False),
        ("4.3.2.1", True),
        ("5.6.7.8", True),
        ("5.6.7.9", False),
        ("5.7.7.8", False),
        ("20.21.22.23", True),
        ("20.21.22.11", False),
        ("147.26.10.11", False),
        ("2.2.3.4", False),
    ],
)
def test_matcher(matcher, addr, expect):
    assert (matcher.match(addr) is not None) == expect


def test_matcher_returns_named_partner(matcher):
    partner = matcher.match("4.3.2.1")
    assert partner.name == "foo"
    assert ipaddress.ip_address("1.2.3.4") in partner.ips


@pytest.mark.parametrize("addr", ["10.0.0.1", "192.168.1.14", "127.0.0.1"])
def test_match_all(addr):
    matcher = Settings(allow_cidrs=["0.0.0.0/0"]).matcher()
    assert matcher.match(addr).ips[0] == ipaddress.ip_address(addr)


def test_invalid_cidr():
    with pytest.raises(SettingsError):
        IPMatcher().allow_cidr("not-a-cidr")


def test_ptree_thresholds():
    config = PTreeConfig()
    assert config.split_threshold() == 50
    assert config.join_threshold() == 25
    assert config.num_samples() == 6


def test_net_type_default_prints_as_tcp():
    assert str(NetType("")) == "tcp"
    assert str(NetType("unix")) == "unix"


def test_resolve_unix_address():
    addr = NetType.UNIX.resolve("/tmp/recon.sock")
    assert str(addr) == "/tmp/recon.sock"


def test_resolve_tcp_ipv6():
    addr = NetType.TCP.resolve("[2001:db8::1]:11370")
    assert addr.port == 11370
    assert str(addr) == "[2001:db8::1]:11370"


def test_config_message():
    settings = Settings(filters=["a", "b"])
    config = settings.config()
    assert config.http_port == 11371
    assert config.version == "1.1.6"
    assert config.bit_quantum == 2
    assert config.mbar == 5
    assert config.filters == "a,b"


def test_config_needs_tcp_http_port():
    settings = Settings(http_net=NetType.UNIX, http_addr="/tmp/http.sock")
    with pytest.raises(SettingsError, match="cannot determine httpPort"):
        settings.config()


def test_random_partner_single():
    matcher = Settings(
        partners={"alice": Partner(recon_addr="5.6.7.8:11370", http_addr="5.6.7.8:11371")}
    ).matcher()
    partner, errors = matcher.random_partner()
    assert partner.name == "alice"
    assert str(partner.addr) == "5.6.7.8:11370"
    assert errors == []


def test_random_partner_negative_weight_excluded():
    matcher = Settings(
        partners={"alice": Partner(recon_addr="5.6.7.8:11370", weight=-1)}
    ).matcher()
    partner, errors = matcher.random_partner()
    assert partner is None
    assert errors == []


def test_random_partner_collects_resolve_errors():
    matcher = Settings(
        partners={"alice": Partner(recon_addr="flarb", recon_net=NetType("floo"))}
    ).matcher()
    partner, errors = matcher.random_partner()
    assert partner is None
    assert len(errors) == 1


def test_partner_str():
    partner = Partner(recon_addr="1.2.3.4:11370", http_addr="1.2.3.4:11371", weight=5)
    assert str(partner) == "recon=1.2.3.4:11370, http=1.2.3.4:11371, weight=5, addr=<nil>, ips=[]"