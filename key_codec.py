"""Writer-side encoding and reader-side decoding of the symmetric document key."""

from __future__ import annotations

from constants import GROUP_ORDER
from data_models import EncodedKey
from group import Point, random_scalar


def encode_key(X: Point, key: bytes) -> EncodedKey:
    """将对称密钥加密到集体公钥 / ElGamal-encode ``key`` under the aggregate key ``X``.

    Input:
      - X: aggregate public key produced by the DKG
      - key: symmetric key, at most ``EMBED_LEN`` bytes

    Output: ``EncodedKey(U, C)`` with ``U = r*B`` and ``C = r*X + Embed(key)``.
    Raises ``KeyTooLarge`` when the key does not fit into one point.
    """
    key_point = Point.embed(key)
    r = random_scalar()
    U = Point.mul_base(r)
    C = X * r + key_point
    return EncodedKey(commit=U, ciphertext=C)


def decode_key(X: Point, C: Point, XhatEnc: Point, xc: int) -> bytes:
    """读者解密 / Turn the re-encrypted commit back into the symmetric key.

    ``XhatEnc`` is ``x * (U + Xc)`` as interpolated from the partial shares;
    removing ``xc * X`` leaves ``x * U = r * X``, the blinding applied to ``C``.
    Raises ``DecodeFailed`` when the result is not an embedded key.
    """
    xc_neg = (-xc) % GROUP_ORDER
    XhatDec = X * xc_neg
    Xhat = XhatEnc + XhatDec
    key_point = C + (-Xhat)
    return key_point.data()
