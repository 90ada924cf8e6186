"""Wire format of the reconciliation protocol messages."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from enum import IntEnum
from typing import BinaryIO, ClassVar

from .zp import P_SKS, ZSet, Zp

__all__ = [
    "SKS_ZP_NBYTES",
    "MAX_READ_LEN",
    "REMOTE_CONFIG_PASSED",
    "REMOTE_CONFIG_FAILED",
    "ProtocolError",
    "MsgType",
    "Prefix",
    "ReconMsg",
    "ReconRqstPoly",
    "ReconRqstFull",
    "Elements",
    "FullElements",
    "SyncFail",
    "Done",
    "Flush",
    "Error",
    "DbRqst",
    "DbRepl",
    "Config",
    "pad_sks_element",
    "read_int",
    "read_len",
    "write_int",
    "read_string",
    "write_string",
    "read_prefix",
    "write_prefix",
    "read_zp",
    "write_zp",
    "read_zz_array",
    "write_zz_array",
    "read_zset",
    "write_zset",
    "read_msg",
    "write_msg_direct",
    "write_msg",
]

SKS_ZP_NBYTES = (P_SKS.bit_length() + 7) // 8
"""Number of bytes used to encode one element of Z(P_SKS) on the wire."""

MAX_READ_LEN = 1 << 24
"""Largest length prefix accepted from a peer."""

REMOTE_CONFIG_PASSED = "passed"
REMOTE_CONFIG_FAILED = "failed"

_INT_CONFIG_KEYS = ("http port", "bitquantum", "mbar")


class ProtocolError(ValueError):
    """Raised when a peer sends data that does not follow the protocol."""


class MsgType(IntEnum):
    """Message type codes of the reconciliation protocol."""

    RECON_RQST_POLY = 0
    RECON_RQST_FULL = 1
    ELEMENTS = 2
    FULL_ELEMENTS = 3
    SYNC_FAIL = 4
    DONE = 5
    FLUSH = 6
    ERROR = 7
    DB_RQST = 8
    DB_REPL = 9
    CONFIG = 10

    def __str__(self) -> str:
        return _MSG_TYPE_NAMES[self]


_MSG_TYPE_NAMES = {
    MsgType.RECON_RQST_POLY: "ReconRqstPoly",
    MsgType.RECON_RQST_FULL: "ReconRqstFull",
    MsgType.ELEMENTS: "Elements",
    MsgType.FULL_ELEMENTS: "FullElements",
    MsgType.SYNC_FAIL: "SyncFail",
    MsgType.DONE: "Done",
    MsgType.FLUSH: "Flush",
    MsgType.ERROR: "Error",
    MsgType.DB_RQST: "DbRqst",
    MsgType.DB_REPL: "DbRepl",
    MsgType.CONFIG: "Config",
}


@dataclass(frozen=True)
class Prefix:
    """A prefix-tree key: a bit string of bit_length bits packed in data."""

    bit_length: int = 0
    data: bytes = b""

    def __post_init__(self) -> None:
        if self.bit_length < 0:
            raise ValueError(f"negative bit length {self.bit_length}")
        nbytes = (self.bit_length + 7) // 8
        object.__setattr__(self, "data", bytes(self.data[:nbytes]).ljust(nbytes, b"\0"))


def _read_exact(r: BinaryIO, n: int) -> bytes:
    chunks = []
    remaining = n
    while remaining > 0:
        chunk = r.read(remaining)
        if not chunk:
            raise ProtocolError(f"unexpected end of stream: wanted {n} bytes, got {n - remaining}")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def pad_sks_element(zb: bytes) -> bytes:
    """Pad an element's byte form with zeros to the SKS element width."""
    return bytes(zb).ljust(SKS_ZP_NBYTES, b"\0")


def read_int(r: BinaryIO) -> int:
    """Read a 32-bit unsigned big-endian integer."""
    return int.from_bytes(_read_exact(r, 4), "big")


def read_len(r: BinaryIO) -> int:
    """Read a length prefix, rejecting lengths above MAX_READ_LEN."""
    n = read_int(r)
    if n > MAX_READ_LEN:
        raise ProtocolError(f"read length {n} exceeds maximum limit")
    return n


def write_int(w: BinaryIO, n: int) -> None:
    """Write n as a 32-bit unsigned big-endian integer (wrapping)."""
    w.write((n & 0xFFFFFFFF).to_bytes(4, "big"))


def read_string(r: BinaryIO) -> str:
    """Read a length-prefixed string."""
    n = read_len(r)
    if n == 0:
        return ""
    return _read_exact(r, n).decode("utf-8", errors="surrogateescape")


def write_string(w: BinaryIO, text: str) -> None:
    """Write a length-prefixed string."""
    data = text.encode("utf-8", errors="surrogateescape")
    write_int(w, len(data))
    w.write(data)


def read_prefix(r: BinaryIO) -> Prefix:
    """Read a prefix bit string: bit count, byte count, bytes."""
    nbits = read_int(r)
    nbytes = read_len(r)
    if nbits == 0:
        return Prefix(0)
    return Prefix(nbits, _read_exact(r, nbytes))


def write_prefix(w: BinaryIO, prefix: Prefix) -> None:
    """Write a prefix bit string."""
    write_int(w, prefix.bit_length)
    write_int(w, len(prefix.data))
    w.write(prefix.data)


def read_zp(r: BinaryIO) -> Zp:
    """Read one fixed-width little-endian element of Z(P_SKS)."""
    return Zp.from_bytes(P_SKS, _read_exact(r, SKS_ZP_NBYTES))


def write_zp(w: BinaryIO, z: Zp) -> None:
    """Write one element, zero-padded to the SKS element width."""
    w.write(pad_sks_element(z.to_bytes()))


def read_zz_array(r: BinaryIO) -> list[Zp]:
    """Read a count-prefixed array of elements."""
    n = read_int(r)
    if n * SKS_ZP_NBYTES > MAX_READ_LEN:
        raise ProtocolError(f"read length {n * SKS_ZP_NBYTES} exceeds maximum limit")
    return [read_zp(r) for _ in range(n)]


def write_zz_array(w: BinaryIO, arr: list[Zp]) -> None:
    """Write a count-prefixed array of elements."""
    write_int(w, len(arr))
    for z in arr:
        write_zp(w, z)


def read_zset(r: BinaryIO) -> ZSet:
    """Read an element array as a set."""
    return ZSet(read_zz_array(r))


def write_zset(w: BinaryIO, zset: ZSet) -> None:
    """Write a set as an element array."""
    write_zz_array(w, zset.items())


@dataclass
class ReconMsg:
    """Base of all protocol messages; the base form carries no payload."""

    msg_type: ClassVar[MsgType]

    def marshal(self, w: BinaryIO) -> None:
        """Write the message payload (without type code or length)."""

    @classmethod
    def unmarshal(cls, r: BinaryIO) -> ReconMsg:
        """Read a message payload and return the message."""
        return cls()

    def __str__(self) -> str:
        return str(self.msg_type)


@dataclass
class ReconRqstPoly(ReconMsg):
    """Request to reconcile a node by rational function interpolation."""

    msg_type: ClassVar[MsgType] = MsgType.RECON_RQST_POLY

    prefix: Prefix = field(default_factory=Prefix)
    size: int = 0
    samples: list[Zp] = field(default_factory=list)

    def __str__(self) -> str:
        samples = "[" + " ".join(str(z) for z in self.samples) + "]"
        return f"{self.msg_type}: prefix={self.prefix} size={self.size} elements={samples}"

    def marshal(self, w: BinaryIO) -> None:
        write_prefix(w, self.prefix)
        write_int(w, self.size)
        write_zz_array(w, self.samples)

    @classmethod
    def unmarshal(cls, r: BinaryIO) -> ReconRqstPoly:
        prefix = read_prefix(r)
        size = read_len(r)
        samples = read_zz_array(r)
        return cls(prefix=prefix, size=size, samples=samples)


@dataclass
class ReconRqstFull(ReconMsg):
    """Request to reconcile a node by exchanging its full element set."""

    msg_type: ClassVar[MsgType] = MsgType.RECON_RQST_FULL

    prefix: Prefix = field(default_factory=Prefix)
    elements: ZSet = field(default_factory=ZSet)

    def __str__(self) -> str:
        return f"{self.msg_type}: prefix={self.prefix} ({len(self.elements)} elements)"

    def marshal(self, w: BinaryIO) -> None:
        write_prefix(w, self.prefix)
        write_zset(w, self.elements)

    @classmethod
    def unmarshal(cls, r: BinaryIO) -> ReconRqstFull:
        prefix = read_prefix(r)
        return cls(prefix=prefix, elements=read_zset(r))


@dataclass
class Elements(ReconMsg):
    """Elements the receiving peer is missing."""

    msg_type: ClassVar[MsgType] = MsgType.ELEMENTS

    zset: ZSet = field(default_factory=ZSet)

    def marshal(self, w: BinaryIO) -> None:
        write_zset(w, self.zset)

    @classmethod
    def unmarshal(cls, r: BinaryIO) -> Elements:
        return cls(zset=read_zset(r))


@dataclass
class FullElements(ReconMsg):
    """The full element set of a node."""

    msg_type: ClassVar[MsgType] = MsgType.FULL_ELEMENTS

    zset: ZSet = field(default_factory=ZSet)

    def marshal(self, w: BinaryIO) -> None:
        write_zset(w, self.zset)

    @classmethod
    def unmarshal(cls, r: BinaryIO) -> FullElements:
        return cls(zset=read_zset(r))


@dataclass
class SyncFail(ReconMsg):
    """Interpolation failed; the requester should descend to children."""

    msg_type: ClassVar[MsgType] = MsgType.SYNC_FAIL


@dataclass
class Done(ReconMsg):
    """Reconciliation is complete."""

    msg_type: ClassVar[MsgType] = MsgType.DONE


@dataclass
class Flush(ReconMsg):
    """The sender has flushed its pending requests."""

    msg_type: ClassVar[MsgType] = MsgType.FLUSH


@dataclass
class _TextMsg(ReconMsg):
    text: str = ""

    def __str__(self) -> str:
        return f"{self.msg_type}: {self.text}"

    def marshal(self, w: BinaryIO) -> None:
        write_string(w, self.text)

    @classmethod
    def unmarshal(cls, r: BinaryIO) -> _TextMsg:
        return cls(text=read_string(r))


@dataclass
class Error(_TextMsg):
    """An error reported by the peer."""

    msg_type: ClassVar[MsgType] = MsgType.ERROR


@dataclass
class DbRqst(_TextMsg):
    """A database request."""

    msg_type: ClassVar[MsgType] = MsgType.DB_RQST


@dataclass
class DbRepl(_TextMsg):
    """A database reply."""

    msg_type: ClassVar[MsgType] = MsgType.DB_REPL


@dataclass
class Config(ReconMsg):
    """A peer's reconciliation configuration."""

    msg_type: ClassVar[MsgType] = MsgType.CONFIG

    version: str = ""
    http_port: int = 0
    bit_quantum: int = 0
    mbar: int = 0
    filters: str = ""
    custom: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return (
            f"{self.msg_type}: Version={self.version} HTTPPort={self.http_port} "
            f"BitQuantum={self.bit_quantum} MBar={self.mbar} Filters={self.filters}"
        )

    def marshal(self, w: BinaryIO) -> None:
        write_int(w, 5 + len(self.custom))
        write_string(w, "version")
        write_string(w, self.version)
        for key, value in (
            ("http port", self.http_port),
            ("bitquantum", self.bit_quantum),
            ("mbar", self.mbar),
        ):
            write_string(w, key)
            write_int(w, 4)
            write_int(w, value)
        write_string(w, "filters")
        write_string(w, self.filters)
        for key, value in self.custom.items():
            write_string(w, key)
            write_string(w, value)

    @classmethod
    def unmarshal(cls, r: BinaryIO) -> Config:
        config = cls()
        for _ in range(read_len(r)):
            key = read_string(r)
            if key in _INT_CONFIG_KEYS:
                length = read_len(r)
                if length != 4:
                    raise ProtocolError(
                        f"Invalid length={length} for integer config value {key}"
                    )
                ival = read_int(r)
                if key == "http port":
                    config.http_port = ival
                elif key == "bitquantum":
                    config.bit_quantum = ival
                else:
                    config.mbar = ival
                continue
            value = read_string(r)
            if key == "version":
                config.version = value
            elif key == "filters":
                config.filters = value
            else:
                config.custom[key] = value
        return config


_MESSAGE_CLASSES: dict[int, type[ReconMsg]] = {
    cls.msg_type: cls
    for cls in (
        ReconRqstPoly,
        ReconRqstFull,
        Elements,
        FullElements,
        SyncFail,
        Done,
        Flush,
        Error,
        DbRqst,
        DbRepl,
        Config,
    )
}


def read_msg(r: BinaryIO) -> ReconMsg:
    """Read one length-prefixed, type-tagged message."""
    size = read_len(r)
    body = io.BytesIO(_read_exact(r, size))
    code = _read_exact(body, 1)[0]
    cls = _MESSAGE_CLASSES.get(code)
    if cls is None:
        raise ProtocolError(f"unexpected message code: {code}")
    return cls.unmarshal(body)


def write_msg_direct(w: BinaryIO, msg: ReconMsg) -> None:
    """Write one message with its length prefix and type code."""
    data = io.BytesIO()
    data.write(bytes([msg.msg_type]))
    msg.marshal(data)
    payload = data.getvalue()
    write_int(w, len(payload))
    w.write(payload)


def write_msg(w: BinaryIO, *args: ReconMsg) -> None:
    """Write several messages in a single write."""
    buf = io.BytesIO()
    for msg in args:
        write_msg_direct(buf, msg)
    w.write(buf.getvalue())