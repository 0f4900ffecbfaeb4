"""Dataclasses shared across the on-chain secrets implementation.

Everything that crosses a node boundary is immutable; only
``ProtocolRunState`` is mutated, and only by the node that owns it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Set, Tuple

from group import Point


@dataclass(frozen=True)
class DistributedKeyShare:
    """节点私有份额 / A node's share of the aggregate key, evaluated at ``index + 1``."""

    index: int
    secret: int = field(repr=False)


@dataclass(frozen=True)
class CommitmentPolynomial:
    """公开承诺多项式 / Feldman commitments ``a_j * B`` of the joint sharing polynomial."""

    commits: Tuple[Point, ...]

    @property
    def threshold(self) -> int:
        return len(self.commits)

    def public_key(self) -> Point:
        return self.commits[0]

    def eval(self, index: int) -> Point:
        # Horner in the exponent at x = index + 1
        x = index + 1
        result = Point.identity()
        for commit in reversed(self.commits):
            result = result * x + commit
        return result

    def check_share(self, share: DistributedKeyShare) -> bool:
        return Point.mul_base(share.secret) == self.eval(share.index)


@dataclass(frozen=True)
class PartialShare:
    """部分重加密份额 / ``secret_i * (U + Xc)`` with a proof that it used the committed share."""

    index: int
    value: Point
    challenge: int
    response: int


@dataclass(frozen=True)
class ReencryptionRequest:
    commit: Point  # U
    reader_public: Point  # Xc
    threshold: int
    verification_payload: bytes | None
    commitment_polynomial: CommitmentPolynomial


@dataclass(frozen=True)
class EncodedKey:
    """写者发布的密文 / The writer's published pair (U, C)."""

    commit: Point
    ciphertext: Point

    def to_bytes(self) -> bytes:
        return self.commit.to_bytes() + self.ciphertext.to_bytes()

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncodedKey":
        if len(data) != 64:
            raise ValueError(f"encoded key must be 64 bytes, got {len(data)}")
        return cls(Point.from_bytes(data[:32]), Point.from_bytes(data[32:]))


class RunOutcome(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUSED = "refused"
    TIMED_OUT = "timed_out"


class NodeState(Enum):
    IDLE = "idle"
    AWAITING_LOCAL_VERIFICATION = "awaiting_local_verification"
    CONTRIBUTING = "contributing"
    REFUSING = "refusing"
    FORWARDING = "forwarding"
    ROOT_COMPLETED = "root_completed"
    ROOT_REFUSED = "root_refused"
    ROOT_TIMED_OUT = "root_timed_out"


@dataclass(frozen=True)
class MessageReencrypt:
    """向下广播的请求 / Request travelling down the tree."""

    run_id: str
    request: ReencryptionRequest
    budget: float  # seconds the receiver may spend gathering its subtree


@dataclass(frozen=True)
class MessageReencryptReply:
    """子树聚合回复 / One reply per subtree, travelling up the tree."""

    run_id: str
    sender_id: int
    shares: List[PartialShare]
    refusals: int
    responders: List[int]


@dataclass
class ProtocolRunState:
    """单次运行的节点本地状态 / Node-local state of one protocol run."""

    run_id: str
    request: ReencryptionRequest
    parent: int | None
    pending_children: Set[int]
    deadline: float
    state: NodeState = NodeState.IDLE
    local_share: PartialShare | None = None
    contributed: bool = False
    collected: Dict[int, PartialShare] = field(default_factory=dict)
    refusals: int = 0
    responders: Set[int] = field(default_factory=set)
    outcome: RunOutcome = RunOutcome.PENDING


@dataclass
class PerformanceStats:
    """性能统计数据类 / Collects timing and operation counts for each protocol phase."""

    phase_name: str
    duration: float
    operations: Dict[str, int] | None = None

    def __post_init__(self) -> None:
        if self.operations is None:
            self.operations = {}
