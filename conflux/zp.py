"""Integers in a prime finite field Z(p) and sets of them."""

from __future__ import annotations

import re
import secrets
from collections.abc import Iterable, Iterator

__all__ = [
    "P_128",
    "P_160",
    "P_256",
    "P_512",
    "P_SKS",
    "FieldMismatchError",
    "Zp",
    "ZSet",
    "zset_diff",
]

P_128 = int.from_bytes(
    bytes(
        [0x1, 0x11, 0xD, 0xB2, 0x97, 0xCD, 0x30, 0x8D,
         0x90, 0xE5, 0x3F, 0xB8, 0xA1, 0x30, 0x90, 0x97, 0xE9]
    ),
    "big",
)
"""A field that includes all 128-bit integers."""

P_160 = int.from_bytes(
    bytes(
        [0x1, 0xFE, 0x90, 0xE7, 0xB4, 0x19, 0x88, 0xA6,
         0x41, 0xB1, 0xA6, 0xFE, 0xC8, 0x7D, 0x89, 0xA3,
         0x1E, 0x2A, 0x61, 0x31, 0xF5]
    ),
    "big",
)
"""A field that includes all 160-bit integers."""

P_256 = int.from_bytes(
    bytes(
        [0x1, 0xDD, 0xF4, 0x8A, 0xC3, 0x45, 0x19, 0x18,
         0x13, 0xAB, 0x7D, 0x92, 0x27, 0x99, 0xE8, 0x93,
         0x96, 0x19, 0x43, 0x8, 0xA4, 0xA5, 0x9, 0xB,
         0x36, 0xC9, 0x62, 0xD5, 0xD5, 0xD6, 0xDD, 0x80, 0x27]
    ),
    "big",
)
"""A field that includes all 256-bit integers."""

P_512 = int.from_bytes(
    bytes(
        [0x1, 0xC7, 0x19, 0x72, 0x25, 0xF4, 0xA5, 0xD5,
         0x8A, 0xC0, 0x2, 0xA4, 0xDC, 0x8D, 0xB1, 0xD9,
         0xB0, 0xA1, 0x5B, 0x7A, 0x43, 0x22, 0x5D, 0x5B,
         0x51, 0xA8, 0x1C, 0x76, 0x17, 0x44, 0x2A, 0x4A,
         0x9C, 0x62, 0xDC, 0x9E, 0x25, 0xD6, 0xE3, 0x12,
         0x1A, 0xEA, 0xEF, 0xAC, 0xD9, 0xFD, 0x8D, 0x6C,
         0xB7, 0x26, 0x6D, 0x19, 0x15, 0x53, 0xD7, 0xD,
         0xB6, 0x68, 0x3B, 0x65, 0x40, 0x89, 0x18, 0x3E, 0xBD]
    ),
    "big",
)
"""A field that includes all 512-bit integers."""

P_SKS = 530512889551602322505127520352579437339
"""The field used by the SKS key server reconciliation protocol."""

_DECIMAL = re.compile(r"[+-]?[0-9]+")


class FieldMismatchError(ValueError):
    """Raised when values from different finite fields are combined."""

    def __init__(self, expected: int, actual: int | None) -> None:
        super().__init__(f"expect finite field Z({expected}), was Z({actual})")
        self.expected = expected
        self.actual = actual


class Zp:
    """An immutable integer in the finite field Z(p); arithmetic is mod p."""

    __slots__ = ("_value", "_p")

    def __init__(self, p: int, value: int = 0) -> None:
        if p <= 0:
            raise ValueError(f"invalid field modulus {p}")
        self._p = p
        self._value = value % p

    @property
    def p(self) -> int:
        """The prime modulus of the field."""
        return self._p

    @property
    def value(self) -> int:
        """The normalised integer value, 0 <= value < p."""
        return self._value

    @classmethod
    def from_int(cls, p: int, n: int) -> Zp:
        """Return n reduced into Z(p)."""
        return cls(p, n)

    @classmethod
    def from_str(cls, p: int, s: str) -> Zp:
        """Return the base-10 integer s reduced into Z(p)."""
        if not _DECIMAL.fullmatch(s):
            raise ValueError(f"invalid integer {s!r}")
        return cls(p, int(s))

    @classmethod
    def from_bytes(cls, p: int, b: bytes) -> Zp:
        """Return the little-endian integer in b reduced into Z(p)."""
        return cls(p, int.from_bytes(b, "little"))

    @classmethod
    def random(cls, p: int) -> Zp:
        """Return a cryptographically random element of Z(p)."""
        return cls(p, secrets.randbelow(p))

    def to_bytes(self) -> bytes:
        """Minimal little-endian bytes of the value; zero gives b''."""
        if self._value == 0:
            return b""
        return self._value.to_bytes((self._value.bit_length() + 7) // 8, "little")

    def full_key_hash(self) -> str:
        """The value formatted as a full-key hash (hex of to_bytes)."""
        return self.to_bytes().hex()

    def is_zero(self) -> bool:
        return self._value == 0

    def inv(self) -> Zp:
        """The multiplicative inverse; ZeroDivisionError if none exists."""
        try:
            return Zp(self._p, pow(self._value, -1, self._p))
        except ValueError as exc:
            raise ZeroDivisionError(
                f"{self._value} has no inverse in Z({self._p})"
            ) from exc

    def _coerce(self, other: object) -> int:
        if isinstance(other, Zp):
            if other._p != self._p:
                raise FieldMismatchError(self._p, other._p)
            return other._value
        if isinstance(other, int) and not isinstance(other, bool):
            return other
        raise TypeError(f"cannot combine Zp with {type(other).__name__}")

    def __add__(self, other: Zp | int) -> Zp:
        return Zp(self._p, self._value + self._coerce(other))

    def __radd__(self, other: int) -> Zp:
        return self.__add__(other)

    def __sub__(self, other: Zp | int) -> Zp:
        return Zp(self._p, self._value - self._coerce(other))

    def __rsub__(self, other: int) -> Zp:
        return Zp(self._p, self._coerce(other) - self._value)

    def __mul__(self, other: Zp | int) -> Zp:
        return Zp(self._p, self._value * self._coerce(other))

    def __rmul__(self, other: int) -> Zp:
        return self.__mul__(other)

    def __truediv__(self, other: Zp | int) -> Zp:
        divisor = Zp(self._p, self._coerce(other))
        return self * divisor.inv()

    def __pow__(self, other: Zp | int) -> Zp:
        exponent = self._coerce(other)
        if exponent < 0:
            return Zp(self._p, pow(self.inv()._value, -exponent, self._p))
        return Zp(self._p, pow(self._value, exponent, self._p))

    def __neg__(self) -> Zp:
        return Zp(self._p, self._p - self._value)

    def __lt__(self, other: Zp) -> bool:
        if not isinstance(other, Zp):
            return NotImplemented
        return self._value < self._coerce(other)

    def __le__(self, other: Zp) -> bool:
        if not isinstance(other, Zp):
            return NotImplemented
        return self._value <= self._coerce(other)

    def __gt__(self, other: Zp) -> bool:
        if not isinstance(other, Zp):
            return NotImplemented
        return self._value > self._coerce(other)

    def __ge__(self, other: Zp) -> bool:
        if not isinstance(other, Zp):
            return NotImplemented
        return self._value >= self._coerce(other)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Zp):
            return NotImplemented
        return self._p == other._p and self._value == other._value

    def __hash__(self) -> int:
        return hash((self._p, self._value))

    def __int__(self) -> int:
        return self._value

    def __index__(self) -> int:
        return self._value

    def __str__(self) -> str:
        return str(self._value)

    def __repr__(self) -> str:
        return f"Zp({self._p}, {self._value})"


class ZSet:
    """A mutable set of integers from a single finite field."""

    __hash__ = None  # type: ignore[assignment]

    def __init__(self, elements: Iterable[Zp] = ()) -> None:
        self._values: set[int] = set()
        self.p: int | None = None
        for element in elements:
            self.add(element)

    def add(self, v: Zp) -> None:
        """Add v; raises FieldMismatchError if v is from another field."""
        if self.p is None:
            self.p = v.p
        elif v.p != self.p:
            raise FieldMismatchError(self.p, v.p)
        self._values.add(v.value)

    def remove(self, v: Zp) -> None:
        """Remove v if present."""
        self._values.discard(v.value)

    def update(self, other: ZSet | Iterable[Zp]) -> None:
        """Add every element of another set or iterable."""
        if isinstance(other, ZSet):
            if self.p is None:
                self.p = other.p
            self._values |= other._values
        else:
            for element in other:
                self.add(element)

    def difference_update(self, other: ZSet | Iterable[Zp]) -> None:
        """Remove every element of another set or iterable."""
        if isinstance(other, ZSet):
            if self.p is None:
                self.p = other.p
            self._values -= other._values
        else:
            for element in other:
                self.remove(element)

    def items(self) -> list[Zp]:
        """All elements, in ascending order."""
        return list(self)

    def __contains__(self, v: object) -> bool:
        return isinstance(v, Zp) and v.value in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Zp]:
        if self.p is None:
            return iter(())
        p = self.p
        return (Zp(p, value) for value in sorted(self._values))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ZSet):
            return NotImplemented
        return self._values == other._values

    def __str__(self) -> str:
        return "{" + ", ".join(str(value) for value in sorted(self._values)) + "}"

    def __repr__(self) -> str:
        return f"ZSet({self})"


def zset_diff(a: ZSet, b: ZSet) -> ZSet:
    """Return the elements of a that are not in b."""
    result = ZSet()
    result.p = a.p if a.p is not None else b.p
    result.update(a)
    result.difference_update(b)
    return result