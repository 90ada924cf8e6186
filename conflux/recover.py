"""Hand-off of elements recovered from a reconciliation partner."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum

from .messages import Config
from .settings import Partner, SettingsError, _join_host_port, _split_host_port
from .zp import Zp

__all__ = ["PeerMode", "Recover"]

RemoteAddr = str | tuple


class PeerMode(str, Enum):
    """Which roles a peer takes on when started."""

    DEFAULT = ""
    GOSSIP_ONLY = "gossip only"
    SERVE_ONLY = "serve only"


def _remote_host(remote_addr: RemoteAddr) -> str:
    """Return the host part of a "host:port" string or a socket address tuple."""
    if isinstance(remote_addr, tuple):
        if not remote_addr:
            raise SettingsError("empty remote address")
        return str(remote_addr[0])
    host, _ = _split_host_port(remote_addr)
    return host


def _format_addr(remote_addr: RemoteAddr) -> str:
    if isinstance(remote_addr, tuple) and len(remote_addr) >= 2:
        return _join_host_port(str(remote_addr[0]), remote_addr[1])
    return str(remote_addr)


@dataclass
class Recover:
    """Elements a partner holds that the local peer is missing."""

    partner: Partner
    remote_addr: RemoteAddr
    remote_config: Config
    remote_elements: list[Zp] = field(default_factory=list)
    done: threading.Event = field(default_factory=threading.Event)

    def __str__(self) -> str:
        return f"{_format_addr(self.remote_addr)}: {len(self.remote_elements)} elements"

    def recover_addr(self) -> str:
        """The "host:port" to fetch recovered items from.

        The host is the partner's configured recon host, falling back to the
        connection's remote host; the port is the HTTP port the partner
        advertised in its config.
        """
        try:
            host, _ = _split_host_port(self.partner.recon_addr)
        except SettingsError as recon_err:
            host = ""
            first_error: SettingsError | None = recon_err
        else:
            first_error = None
        if not host:
            try:
                host = _remote_host(self.remote_addr)
            except SettingsError as exc:
                detail = f"cannot parse remote address from {self.remote_addr!r}: {exc}"
                if first_error is not None:
                    detail += f", or {self.partner.recon_addr!r}: {first_error}"
                raise SettingsError(detail) from exc
        return _join_host_port(host, self.remote_config.http_port)