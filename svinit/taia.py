"""TAI timestamps: whole seconds (Tai) and seconds with fractions (Taia)."""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass

UINT64_MASK = (1 << 64) - 1
TAI_UNIX_OFFSET = 4611686018427387914
BILLION = 1_000_000_000
TAI_PACK = 8
TAIA_PACK = 16


@dataclass(frozen=True, order=True)
class Tai:
    """A TAI label counted in whole seconds, kept as an unsigned 64-bit value."""

    x: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", self.x & UINT64_MASK)

    @classmethod
    def now(cls) -> Tai:
        """The current time, to the second."""
        return cls.from_unix(int(time.time()))

    @classmethod
    def from_unix(cls, seconds: int) -> Tai:
        """The TAI label for a count of seconds since the Unix epoch."""
        return cls(TAI_UNIX_OFFSET + seconds)

    def pack(self) -> bytes:
        """Eight bytes, most significant first."""
        return struct.pack(">Q", self.x)

    @classmethod
    def unpack(cls, data: bytes) -> Tai:
        """Read a label from the first eight bytes of data."""
        if len(data) < TAI_PACK:
            raise ValueError(f"need {TAI_PACK} bytes, got {len(data)}")
        (x,) = struct.unpack_from(">Q", data)
        return cls(x)

    def approx(self) -> float:
        return float(self.x)

    def __add__(self, other: object) -> Tai:
        if not isinstance(other, Tai):
            return NotImplemented
        return Tai(self.x + other.x)

    def __sub__(self, other: object) -> Tai:
        if not isinstance(other, Tai):
            return NotImplemented
        return Tai(self.x - other.x)


@dataclass(frozen=True, order=True)
class Taia:
    """A TAI label with nanoseconds and attoseconds (each 0..999999999)."""

    sec: Tai = Tai()
    nano: int = 0
    atto: int = 0

    @classmethod
    def now(cls) -> Taia:
        """The current time, to the microsecond."""
        micros = time.time_ns() // 1000
        seconds, usec = divmod(micros, 1_000_000)
        return cls(Tai.from_unix(seconds), 1000 * usec + 500, 0)

    @classmethod
    def from_seconds(cls, seconds: int) -> Taia:
        """A span of whole seconds with no fraction."""
        return cls(Tai(seconds), 0, 0)

    def frac(self) -> float:
        """The fractional part in seconds."""
        return (self.atto * 0.000000001 + self.nano) * 0.000000001

    def approx(self) -> float:
        """The whole value in seconds, as a float."""
        return self.sec.approx() + self.frac()

    def pack(self) -> bytes:
        """Sixteen bytes: seconds, nanoseconds, attoseconds, big-endian."""
        return self.sec.pack() + struct.pack(
            ">II", self.nano & 0xFFFFFFFF, self.atto & 0xFFFFFFFF
        )

    def __add__(self, other: object) -> Taia:
        if not isinstance(other, Taia):
            return NotImplemented
        sec = self.sec.x + other.sec.x
        nano = self.nano + other.nano
        atto = self.atto + other.atto
        if atto >= BILLION:
            atto -= BILLION
            nano += 1
        if nano >= BILLION:
            nano -= BILLION
            sec += 1
        return Taia(Tai(sec), nano, atto)

    def __sub__(self, other: object) -> Taia:
        if not isinstance(other, Taia):
            return NotImplemented
        sec = self.sec.x - other.sec.x
        nano = self.nano - other.nano
        atto = self.atto - other.atto
        if atto < 0:
            atto += BILLION
            nano -= 1
        if nano < 0:
            nano += BILLION
            sec -= 1
        return Taia(Tai(sec), nano, atto)