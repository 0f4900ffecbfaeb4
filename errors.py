"""Exceptions raised by the on-chain secrets components."""


class OCSError(Exception):
    """Base class for every error raised by this package."""


class KeyTooLarge(OCSError, ValueError):
    """The symmetric key does not fit into a single embedded point."""


class DecodeFailed(OCSError):
    """The reconstructed point does not carry a valid embedding."""


class InvalidPoint(OCSError, ValueError):
    """Bytes that are not a canonical point of the prime-order subgroup."""


class LocalShareInconsistent(OCSError):
    """A node's own key share does not match the public commitments."""

    def __init__(self, index: int) -> None:
        super().__init__(f"key share {index} does not match the commitment polynomial")
        self.index = index


class InsufficientShares(OCSError):
    """Not enough distinct partial shares to interpolate."""

    def __init__(self, got: int, needed: int) -> None:
        super().__init__(f"need {needed} partial shares to recover, got {got}")
        self.got = got
        self.needed = needed
