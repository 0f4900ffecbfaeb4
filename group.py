"""Ed25519 prime-order group arithmetic backed by libsodium through PyNaCl.

Points are kept as their canonical 32 byte encoding, scalars are plain ints
reduced modulo ``GROUP_ORDER``.
"""

from __future__ import annotations

import hashlib
import os
import secrets
from dataclasses import dataclass, field

from nacl import bindings

from constants import EMBED_LEN, GROUP_ORDER, POINT_BYTES, SCALAR_BYTES
from errors import DecodeFailed, InvalidPoint, KeyTooLarge

IDENTITY_BYTES = b"\x01" + b"\x00" * (POINT_BYTES - 1)  # (x, y) = (0, 1)


def scalar_to_bytes(k: int) -> bytes:
    return (k % GROUP_ORDER).to_bytes(SCALAR_BYTES, "little")


def random_scalar() -> int:
    """均匀随机的非零标量 / Uniform non-zero scalar."""
    return secrets.randbelow(GROUP_ORDER - 1) + 1


def hash_to_scalar(*parts: bytes) -> int:
    digest = hashlib.sha512()
    for part in parts:
        digest.update(part)
    return int.from_bytes(digest.digest(), "little") % GROUP_ORDER


class Point:
    """Element of the Ed25519 prime-order subgroup."""

    __slots__ = ("_encoded",)

    def __init__(self, encoded: bytes) -> None:
        self._encoded = bytes(encoded)

    @classmethod
    def identity(cls) -> "Point":
        return cls(IDENTITY_BYTES)

    @classmethod
    def base(cls) -> "Point":
        return _BASE

    @classmethod
    def mul_base(cls, k: int) -> "Point":
        k %= GROUP_ORDER
        if k == 0:
            return cls.identity()
        return cls(bindings.crypto_scalarmult_ed25519_base_noclamp(scalar_to_bytes(k)))

    @classmethod
    def from_bytes(cls, data: bytes) -> "Point":
        """解析规范编码 / Parse a canonical encoding, rejecting anything outside the subgroup."""
        data = bytes(data)
        if len(data) != POINT_BYTES:
            raise InvalidPoint(f"point encoding must be {POINT_BYTES} bytes, got {len(data)}")
        if data != IDENTITY_BYTES and not bindings.crypto_core_ed25519_is_valid_point(data):
            raise InvalidPoint("not a canonical point of the prime-order subgroup")
        return cls(data)

    @classmethod
    def from_hex(cls, text: str) -> "Point":
        return cls.from_bytes(bytes.fromhex(text))

    @classmethod
    def embed(cls, data: bytes) -> "Point":
        """将字节嵌入曲线点 / Embed up to ``EMBED_LEN`` bytes into a random point.

        Byte 0 holds the length, the data follows, the remaining bytes are
        random. Candidates are drawn until one is a valid subgroup point.
        """
        if len(data) > EMBED_LEN:
            raise KeyTooLarge(f"got {len(data)} bytes, a single point carries at most {EMBED_LEN}")
        while True:
            candidate = bytearray(os.urandom(POINT_BYTES))
            candidate[0] = len(data)
            candidate[1:1 + len(data)] = data
            if bindings.crypto_core_ed25519_is_valid_point(bytes(candidate)):
                return cls(bytes(candidate))

    def data(self) -> bytes:
        """Inverse of :meth:`embed`."""
        length = self._encoded[0]
        if length > EMBED_LEN:
            raise DecodeFailed(f"embedded length {length} exceeds capacity {EMBED_LEN}")
        return self._encoded[1:1 + length]

    def to_bytes(self) -> bytes:
        return self._encoded

    def hex(self) -> str:
        return self._encoded.hex()

    def is_identity(self) -> bool:
        return self._encoded == IDENTITY_BYTES

    def __add__(self, other: "Point") -> "Point":
        return Point(bindings.crypto_core_ed25519_add(self._encoded, other._encoded))

    def __sub__(self, other: "Point") -> "Point":
        return Point(bindings.crypto_core_ed25519_sub(self._encoded, other._encoded))

    def __neg__(self) -> "Point":
        return Point(bindings.crypto_core_ed25519_sub(IDENTITY_BYTES, self._encoded))

    def __mul__(self, k: int) -> "Point":
        k %= GROUP_ORDER
        # libsodium refuses to produce the identity, so those cases stay here
        if k == 0 or self.is_identity():
            return Point.identity()
        return Point(bindings.crypto_scalarmult_ed25519_noclamp(scalar_to_bytes(k), self._encoded))

    __rmul__ = __mul__

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Point):
            return NotImplemented
        return self._encoded == other._encoded

    def __hash__(self) -> int:
        return hash(self._encoded)

    def __repr__(self) -> str:
        return f"Point({self._encoded.hex()[:16]}...)"


_BASE = Point(bindings.crypto_scalarmult_ed25519_base_noclamp(scalar_to_bytes(1)))


@dataclass(frozen=True)
class KeyPair:
    """读者密钥对 / Reader (or writer) key pair; the private half stays out of repr."""

    public: Point
    private: int = field(repr=False)

    @classmethod
    def generate(cls) -> "KeyPair":
        private = random_scalar()
        return cls(public=Point.mul_base(private), private=private)
