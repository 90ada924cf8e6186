"""Configuration of the local reconciliation peer and its partners."""

from __future__ import annotations

import dataclasses
import ipaddress
import random
import socket
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, NamedTuple

from .messages import Config

__all__ = [
    "DEFAULT_VERSION",
    "DEFAULT_LOG_NAME",
    "DEFAULT_HTTP_ADDR",
    "DEFAULT_RECON_ADDR",
    "DEFAULT_SEEN_CACHE_SIZE",
    "DEFAULT_GOSSIP_INTERVAL_SECS",
    "DEFAULT_MAX_OUTSTANDING_RECON_REQUESTS",
    "DEFAULT_THRESH_MULT",
    "DEFAULT_BIT_QUANTUM",
    "DEFAULT_MBAR",
    "SettingsError",
    "NetType",
    "PTreeConfig",
    "Partner",
    "IPMatcher",
    "Settings",
    "parse_settings",
    "default_settings",
]

DEFAULT_VERSION = "1.1.6"
DEFAULT_LOG_NAME = "conflux.recon"
DEFAULT_HTTP_ADDR = ":11371"
DEFAULT_RECON_ADDR = ":11370"
DEFAULT_SEEN_CACHE_SIZE = 256
DEFAULT_GOSSIP_INTERVAL_SECS = 60
DEFAULT_MAX_OUTSTANDING_RECON_REQUESTS = 100

DEFAULT_THRESH_MULT = 10
DEFAULT_BIT_QUANTUM = 2
DEFAULT_MBAR = 5

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class SettingsError(ValueError):
    """Raised for invalid configuration or unresolvable addresses."""


class _Address(NamedTuple):
    """A resolved network address."""

    network: str
    host: str
    port: int | None

    def __str__(self) -> str:
        if self.network == "tcp" and self.port is not None:
            return _join_host_port(self.host, self.port)
        return self.host


def _split_host_port(hostport: str) -> tuple[str, str]:
    def err(why: str) -> SettingsError:
        return SettingsError(f"address {hostport}: {why}")

    i = hostport.rfind(":")
    if i < 0:
        raise err("missing port in address")
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise err("missing ']' in address")
        if end + 1 == len(hostport):
            raise err("missing port in address")
        if end + 1 != i:
            if hostport[end + 1] == ":":
                raise err("too many colons in address")
            raise err("missing port in address")
        host = hostport[1:end]
        open_from, close_from = 1, end + 1
    else:
        host = hostport[:i]
        if ":" in host:
            raise err("too many colons in address")
        open_from = close_from = 0
    if "[" in hostport[open_from:]:
        raise err("unexpected '[' in address")
    if "]" in hostport[close_from:]:
        raise err("unexpected ']' in address")
    return host, hostport[i + 1:]


def _join_host_port(host: str, port: int | str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _parse_port(service: str) -> int:
    if service == "":
        return 0
    sign = service[0] if service[0] in "+-" else ""
    digits = service[len(sign):]
    if digits and all(c in "0123456789" for c in digits):
        port = int(digits)
        if sign == "-":
            port = -port
    else:
        try:
            port = socket.getservbyname(service, "tcp")
        except OSError as exc:
            raise SettingsError(f"lookup tcp/{service}: unknown port") from exc
    if not 0 <= port <= 0xFFFF:
        raise SettingsError(f"address {service}: invalid port")
    return port


def _lookup_ips(host: str) -> list[IPAddress]:
    """Resolve host to its IP addresses; raises OSError when it cannot."""
    if not host:
        raise OSError("no such host")
    try:
        return [ipaddress.ip_address(host)]
    except ValueError:
        pass
    result: list[IPAddress] = []
    for info in socket.getaddrinfo(host, None, type=socket.SOCK_STREAM):
        ip = ipaddress.ip_address(info[4][0])
        if ip not in result:
            result.append(ip)
    if not result:
        raise OSError(f"no addresses for {host}")
    return result


def _resolve_tcp(addr: str) -> _Address:
    host, service = _split_host_port(addr)
    port = _parse_port(service)
    if not host:
        return _Address("tcp", "", port)
    try:
        ips = _lookup_ips(host)
    except OSError as exc:
        raise SettingsError(f"lookup {host}: {exc}") from exc
    chosen = next((ip for ip in ips if ip.version == 4), ips[0])
    return _Address("tcp", str(chosen), port)


def _normalize_ip(ip: str | IPAddress) -> IPAddress:
    if isinstance(ip, str):
        ip = ipaddress.ip_address(ip)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


class NetType(str):
    """A network type name: "" (default, meaning tcp), "tcp" or "unix"."""

    DEFAULT: ClassVar[NetType]
    TCP: ClassVar[NetType]
    UNIX: ClassVar[NetType]

    def __str__(self) -> str:
        return super().__str__() or "tcp"

    def __repr__(self) -> str:
        return f"NetType({super().__repr__()})"

    def resolve(self, addr: str) -> _Address:
        """Resolve addr on this network; raises SettingsError on failure."""
        if self in ("", "tcp"):
            return _resolve_tcp(addr)
        if self == "unix":
            return _Address("unix", addr, None)
        raise SettingsError(
            f"don't know how to resolve network \"{self}\" address \"{addr}\""
        )


NetType.DEFAULT = NetType("")
NetType.TCP = NetType("tcp")
NetType.UNIX = NetType("unix")


@dataclass
class PTreeConfig:
    """Prefix-tree parameters, which must match among peers."""

    thresh_mult: int = DEFAULT_THRESH_MULT
    bit_quantum: int = DEFAULT_BIT_QUANTUM
    mbar: int = DEFAULT_MBAR

    def split_threshold(self) -> int:
        """Most elements a node may hold before it splits into children."""
        return self.thresh_mult * self.mbar

    def join_threshold(self) -> int:
        """Element count below which a node's children are merged into it."""
        return self.split_threshold() // 2

    def num_samples(self) -> int:
        """Number of sample points used for interpolation."""
        return self.mbar + 1


@dataclass
class Partner:
    """A reconciliation partner and its recent history."""

    http_addr: str = ""
    http_net: NetType = NetType.DEFAULT
    recon_addr: str = ""
    recon_net: NetType = NetType.DEFAULT
    weight: int = 0
    web_addr: str = ""
    stats_path: str = ""
    mask: bool = False
    name: str = ""
    addr: _Address | None = field(default=None, compare=False)
    ips: list[IPAddress] = field(default_factory=list, compare=False)
    recon_started: datetime | None = field(default=None, compare=False)
    last_incoming_recon: datetime | None = field(default=None, compare=False)
    last_incoming_error: Exception | None = field(default=None, compare=False)
    last_outgoing_recon: datetime | None = field(default=None, compare=False)
    last_outgoing_error: Exception | None = field(default=None, compare=False)
    last_recovery: datetime | None = field(default=None, compare=False)
    last_recovery_error: Exception | None = field(default=None, compare=False)

    def __str__(self) -> str:
        addr = "<nil>" if self.addr is None else str(self.addr)
        ips = "[" + " ".join(str(ip) for ip in self.ips) + "]"
        return (
            f"recon={self.recon_addr}, http={self.http_addr}, "
            f"weight={self.weight}, addr={addr}, ips={ips}"
        )

    def update_ips(self) -> None:
        """Refresh the source IPs allowed for incoming recon from DNS."""
        if self.recon_net not in ("", "tcp"):
            return
        try:
            recon_host, _ = _split_host_port(self.recon_addr)
        except SettingsError:
            recon_host = ""
        try:
            ips = _lookup_ips(recon_host)
        except OSError:
            return
        if self.http_net in ("", "tcp"):
            try:
                http_host, _ = _split_host_port(self.http_addr)
            except SettingsError:
                http_host = None
            if http_host is not None and http_host != recon_host:
                try:
                    ips = ips + _lookup_ips(http_host)
                except OSError:
                    pass
        if ips:
            self.ips = ips


@dataclass
class IPMatcher:
    """Decides which remote addresses may reconcile with this peer."""

    nets: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = field(default_factory=list)
    partners: list[Partner] = field(default_factory=list)

    def current_partners(self) -> list[Partner]:
        return self.partners

    def allow(self, name: str, partner: Partner) -> None:
        """Add a copy of partner under name."""
        partner = dataclasses.replace(partner)
        partner.update_ips()
        partner.name = name
        partner.recon_started = datetime.now(timezone.utc)
        self.partners.append(partner)

    def allow_cidr(self, cidr: str) -> None:
        """Allow every address in a CIDR block."""
        if "/" not in cidr:
            raise SettingsError(f"invalid CIDR address: {cidr}")
        try:
            network = ipaddress.ip_network(cidr, strict=False)
        except ValueError as exc:
            raise SettingsError(f"invalid CIDR address: {cidr}") from exc
        self.nets.append(network)

    def match(self, ip: str | IPAddress) -> Partner | None:
        """Return the partner allowed to connect from ip, or None."""
        ip = _normalize_ip(ip)
        if ip.is_loopback or any(
            ip.version == network.version and ip in network for network in self.nets
        ):
            return Partner(ips=[ip], addr=_Address("ip", str(ip), None))
        for partner in self.partners:
            if any(_normalize_ip(candidate) == ip for candidate in partner.ips):
                return partner
        return None

    def random_partner(self) -> tuple[Partner | None, list[Exception]]:
        """Pick a weighted-random resolvable partner; also return resolve errors."""
        choices: list[Partner] = []
        weights: list[int] = []
        errors: list[Exception] = []
        for partner in self.partners:
            try:
                addr = partner.recon_net.resolve(partner.recon_addr)
            except SettingsError as exc:
                errors.append(exc)
                continue
            partner.addr = addr
            partner.update_ips()
            weight = partner.weight or 100
            if weight > 0:
                choices.append(partner)
                weights.append(weight)
        if not choices:
            return None, errors
        return random.choices(choices, weights=weights)[0], errors


@dataclass
class Settings(PTreeConfig):
    """Configuration of the local reconciliation peer."""

    version: str = DEFAULT_VERSION
    log_name: str = DEFAULT_LOG_NAME
    http_addr: str = DEFAULT_HTTP_ADDR
    http_net: NetType = NetType.DEFAULT
    recon_addr: str = DEFAULT_RECON_ADDR
    recon_net: NetType = NetType.DEFAULT
    seen_cache_size: int = DEFAULT_SEEN_CACHE_SIZE
    partners: dict[str, Partner] = field(default_factory=dict)
    allow_cidrs: list[str] = field(default_factory=list)
    filters: list[str] = field(default_factory=list)
    compat_http_port: int = 0
    compat_recon_port: int = 0
    compat_partner_addrs: list[str] = field(default_factory=list)
    gossip_interval_secs: int = DEFAULT_GOSSIP_INTERVAL_SECS
    max_outstanding_recon_requests: int = DEFAULT_MAX_OUTSTANDING_RECON_REQUESTS

    def resolve(self) -> None:
        """Apply backwards-compatible keys and check that addresses resolve."""
        if self.compat_http_port:
            self.http_addr = f":{self.compat_http_port}"
        if self.compat_recon_port:
            self.recon_addr = f":{self.compat_recon_port}"
        if self.compat_partner_addrs:
            self.partners = {}
            for partner_addr in self.compat_partner_addrs:
                try:
                    host, _ = _split_host_port(partner_addr)
                except SettingsError as exc:
                    raise SettingsError(
                        f"invalid 'partners' address \"{partner_addr}\": {exc}"
                    ) from exc
                self.partners[host] = Partner(
                    http_addr=f"{host}:11371", recon_addr=partner_addr
                )
        try:
            self.http_net.resolve(self.http_addr)
        except SettingsError as exc:
            raise SettingsError(
                f"invalid httpNet \"{self.http_net}\" httpAddr \"{self.http_addr}\": {exc}"
            ) from exc
        if self.recon_addr != "none":
            try:
                self.recon_net.resolve(self.recon_addr)
            except SettingsError as exc:
                raise SettingsError(
                    f"invalid reconNet \"{self.recon_net}\" "
                    f"reconAddr \"{self.recon_addr}\": {exc}"
                ) from exc

    def add_filters(self, new_filters: list[str]) -> None:
        """Merge new filters into the sorted, duplicate-free filter list."""
        self.filters = sorted(set(self.filters) | set(new_filters))

    def matcher(self) -> IPMatcher:
        """Build the matcher for incoming connections."""
        m = IPMatcher()
        for cidr in self.allow_cidrs:
            m.allow_cidr(cidr)
        for name, partner in self.partners.items():
            m.allow(name, partner)
        return m

    def config(self) -> Config:
        """The protocol config message describing this peer."""
        try:
            addr = self.http_net.resolve(self.http_addr)
        except SettingsError as exc:
            raise SettingsError(
                f"invalid httpNet \"{self.http_net}\" httpAddr \"{self.http_addr}\": {exc}"
            ) from exc
        if addr.network != "tcp" or addr.port is None:
            raise SettingsError(
                f"cannot determine httpPort from httpNet \"{self.http_net}\" "
                f"httpAddr \"{self.http_addr}\""
            )
        return Config(
            version=self.version,
            http_port=addr.port,
            bit_quantum=self.bit_quantum,
            mbar=self.mbar,
            filters=",".join(self.filters),
        )


_STR, _INT, _BOOL, _NET, _LIST = "str", "int", "bool", "net", "list"

_SETTINGS_KEYS: dict[str, tuple[str, str]] = {
    "threshmult": ("thresh_mult", _INT),
    "bitquantum": ("bit_quantum", _INT),
    "mbar": ("mbar", _INT),
    "version": ("version", _STR),
    "logname": ("log_name", _STR),
    "httpaddr": ("http_addr", _STR),
    "httpnet": ("http_net", _NET),
    "reconaddr": ("recon_addr", _STR),
    "reconnet": ("recon_net", _NET),
    "seencachesize": ("seen_cache_size", _INT),
    "allowcidrs": ("allow_cidrs", _LIST),
    "filters": ("filters", _LIST),
    "httpport": ("compat_http_port", _INT),
    "reconport": ("compat_recon_port", _INT),
    "partners": ("compat_partner_addrs", _LIST),
    "gossipintervalsecs": ("gossip_interval_secs", _INT),
    "maxoutstandingreconrequests": ("max_outstanding_recon_requests", _INT),
}

_PARTNER_KEYS: dict[str, tuple[str, str]] = {
    "httpaddr": ("http_addr", _STR),
    "httpnet": ("http_net", _NET),
    "reconaddr": ("recon_addr", _STR),
    "reconnet": ("recon_net", _NET),
    "weight": ("weight", _INT),
    "webaddr": ("web_addr", _STR),
    "statspath": ("stats_path", _STR),
    "mask": ("mask", _BOOL),
    "name": ("name", _STR),
}


def _convert(key: str, kind: str, value: Any) -> Any:
    if kind in (_STR, _NET) and isinstance(value, str):
        return NetType(value) if kind == _NET else value
    if kind == _INT and isinstance(value, int) and not isinstance(value, bool):
        return value
    if kind == _BOOL and isinstance(value, bool):
        return value
    if kind == _LIST and isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise SettingsError(f"toml: cannot load {type(value).__name__} into {key!r}")


def _apply(target: Any, table: dict[str, Any], keys: dict[str, tuple[str, str]]) -> None:
    for key, value in table.items():
        spec = keys.get(key.lower())
        if spec is not None:
            attr, kind = spec
            setattr(target, attr, _convert(key, kind, value))


def _table(value: Any, key: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise SettingsError(f"toml: cannot load {type(value).__name__} into table {key!r}")
    return value


def parse_settings(data: str) -> Settings:
    """Parse TOML text with a [conflux.recon] table into resolved Settings."""
    try:
        doc = tomllib.loads(data)
    except tomllib.TOMLDecodeError as exc:
        raise SettingsError(f"toml: {exc}") from exc
    settings = default_settings()
    conflux = _table(doc.get("conflux", {}), "conflux")
    recon = _table(conflux.get("recon", {}), "recon")
    _apply(settings, recon, _SETTINGS_KEYS)
    for key, value in recon.items():
        if key.lower() == "partner":
            partners = {}
            for name, table in _table(value, key).items():
                partner = Partner()
                _apply(partner, _table(table, name), _PARTNER_KEYS)
                partners[name] = partner
            settings.partners = partners
    settings.resolve()
    settings.filters.sort()
    return settings


def default_settings() -> Settings:
    """Return default peer configuration settings."""
    return Settings()