"""Threshold sharing primitives: joint key generation stand-in and Lagrange recovery."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

from constants import GROUP_ORDER
from data_models import CommitmentPolynomial, DistributedKeyShare, PartialShare
from errors import InsufficientShares
from group import Point, random_scalar


def lagrange_coefficients(indices: Sequence[int]) -> Dict[int, int]:
    """在0点的拉格朗日系数 / Lagrange basis at zero for x-coordinates ``index + 1``."""
    coefficients: Dict[int, int] = {}
    xs = [i + 1 for i in indices]
    for i, xi in zip(indices, xs):
        numerator = 1
        denominator = 1
        for xj in xs:
            if xj != xi:
                numerator = (numerator * (0 - xj)) % GROUP_ORDER
                denominator = (denominator * (xi - xj)) % GROUP_ORDER
        # 费马小定理求逆元
        denominator_inv = pow(denominator, GROUP_ORDER - 2, GROUP_ORDER)
        coefficients[i] = numerator * denominator_inv % GROUP_ORDER
    return coefficients


def _select(shares: Iterable, threshold: int, n: int) -> List:
    by_index = {}
    for share in shares:
        if 0 <= share.index < n and share.index not in by_index:
            by_index[share.index] = share
    if len(by_index) < threshold:
        raise InsufficientShares(len(by_index), threshold)
    return [by_index[i] for i in sorted(by_index)][:threshold]


def interpolate_commit(shares: Sequence[PartialShare]) -> Point:
    """Interpolate partial shares in the exponent without checking how many there are."""
    coefficients = lagrange_coefficients([share.index for share in shares])
    result = Point.identity()
    for share in shares:
        result = result + share.value * coefficients[share.index]
    return result


def recover_commit(shares: Iterable[PartialShare], threshold: int, n: int) -> Point:
    """聚合部分份额 / Recover ``x * (U + Xc)`` from at least ``threshold`` partial shares."""
    return interpolate_commit(_select(shares, threshold, n))


def recover_secret(shares: Iterable[DistributedKeyShare], threshold: int, n: int) -> int:
    selected = _select(shares, threshold, n)
    coefficients = lagrange_coefficients([share.index for share in selected])
    secret = 0
    for share in selected:
        secret = (secret + share.secret * coefficients[share.index]) % GROUP_ORDER
    return secret


def shamir_share(secret: int, n: int, t: int) -> Tuple[List[int], List[int]]:
    """Split ``secret`` with a random degree ``t - 1`` polynomial; returns (evaluations, coefficients)."""
    coefficients = [secret % GROUP_ORDER] + [random_scalar() for _ in range(t - 1)]

    evaluations = []
    for i in range(1, n + 1):
        value = 0
        for power, coeff in enumerate(coefficients):
            value = (value + coeff * pow(i, power, GROUP_ORDER)) % GROUP_ORDER
        evaluations.append(value)
    return evaluations, coefficients


def simulate_dkg(n: int, t: int) -> Tuple[List[DistributedKeyShare], CommitmentPolynomial]:
    """无可信分发者的联合密钥生成 / Dealerless joint sharing run in-process.

    Every participant shares its own random secret; each node sums what it
    received and the commitments are summed coefficient-wise. The aggregate
    secret is the sum of all dealt secrets and is never assembled here.
    """
    if not 1 <= t <= n:
        raise ValueError(f"threshold must be in [1, {n}], got {t}")

    totals = [0] * n
    commits = [Point.identity()] * t
    for _dealer in range(n):
        evaluations, coefficients = shamir_share(random_scalar(), n, t)
        for node in range(n):
            totals[node] = (totals[node] + evaluations[node]) % GROUP_ORDER
        for j, coeff in enumerate(coefficients):
            commits[j] = commits[j] + Point.mul_base(coeff)

    shares = [DistributedKeyShare(index=i, secret=totals[i]) for i in range(n)]
    return shares, CommitmentPolynomial(tuple(commits))
