"""Verification policies evaluated by every node before it contributes a share."""

from __future__ import annotations

from typing import Callable, Iterable

from data_models import ReencryptionRequest


class VerificationPolicy:
    """授权策略接口 / Decide whether a re-encryption request is authorized.

    Implementations must be free of side effects so that every node reaches
    the same decision for the same request.
    """

    def verify(self, request: ReencryptionRequest) -> bool:
        raise NotImplementedError


class RequirePayload(VerificationPolicy):
    """Accept any request that carries verification data."""

    def verify(self, request: ReencryptionRequest) -> bool:
        return request.verification_payload is not None


class AllowList(VerificationPolicy):
    def __init__(self, payloads: Iterable[bytes]) -> None:
        self.payloads = frozenset(payloads)

    def verify(self, request: ReencryptionRequest) -> bool:
        return request.verification_payload in self.payloads


class FunctionPolicy(VerificationPolicy):
    def __init__(self, check: Callable[[ReencryptionRequest], bool]) -> None:
        self.check = check

    def verify(self, request: ReencryptionRequest) -> bool:
        return bool(self.check(request))
