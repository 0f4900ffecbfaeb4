"""Shared constants for the on-chain secrets re-encryption protocol.

The group is the prime-order subgroup of Ed25519, points travel in their
canonical 32 byte encoding.
"""

GROUP_ORDER: int = 2**252 + 27742317777372353535851937790883648493  # l, order of the base point
POINT_BYTES: int = 32
SCALAR_BYTES: int = 32

# One byte holds the data length, one more is lost to the sign bit and the
# subgroup search, the rest can carry data.
EMBED_LEN: int = (255 - 8 - 8) // 8

NONCE_LEN: int = 12  # AES-GCM nonce appended to every sealed document

DEFAULT_GATHER_TIMEOUT: float = 1.0  # seconds the root waits for its subtree
POLL_INTERVAL: float = 0.05  # mailbox poll granularity for node threads
FINISHED_RUN_RETENTION: float = 4.0  # gather timeouts a finished run id is remembered for
