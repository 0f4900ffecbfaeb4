"""Per-node re-encryption math: the partial share and its correctness proof.

A node holding share ``v_i`` publishes ``Ui = v_i * (U + Xc)`` together with a
Chaum-Pedersen proof that ``log_B(Eval(i)) == log_{U+Xc}(Ui)``, so the root can
drop contributions made with anything but the committed share.
"""

from __future__ import annotations

from constants import GROUP_ORDER
from data_models import DistributedKeyShare, PartialShare, ReencryptionRequest
from errors import LocalShareInconsistent
from group import Point, hash_to_scalar, random_scalar


def _challenge(ui: Point, ui_hat: Point, hi_hat: Point) -> int:
    return hash_to_scalar(ui.to_bytes(), ui_hat.to_bytes(), hi_hat.to_bytes())


def compute_partial_share(key_share: DistributedKeyShare, request: ReencryptionRequest) -> PartialShare:
    """计算部分份额 / Re-encrypt the commit towards the reader with this node's share.

    Raises ``LocalShareInconsistent`` when the share does not match
    ``request.commitment_polynomial``; such a share must never be used.
    """
    if not request.commitment_polynomial.check_share(key_share):
        raise LocalShareInconsistent(key_share.index)

    target = request.commit + request.reader_public
    ui = target * key_share.secret

    si = random_scalar()
    ui_hat = target * si
    hi_hat = Point.mul_base(si)
    ei = _challenge(ui, ui_hat, hi_hat)
    fi = (si + ei * key_share.secret) % GROUP_ORDER
    return PartialShare(index=key_share.index, value=ui, challenge=ei, response=fi)


def verify_partial_share(share: PartialShare, request: ReencryptionRequest) -> bool:
    target = request.commit + request.reader_public
    public_share = request.commitment_polynomial.eval(share.index)
    ui_hat = target * share.response - share.value * share.challenge
    hi_hat = Point.mul_base(share.response) - public_share * share.challenge
    return _challenge(share.value, ui_hat, hi_hat) == share.challenge
