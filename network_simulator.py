"""Thread-safe in-memory tree transport for node communication."""

import threading
from queue import Empty, Queue
from typing import Any, Dict, List, Sequence, Set, Tuple

from crypto_manager import CryptoManager


class TreeTopology:
    """固定通信树 / Immutable parent/children index over node ids ``0..n-1``."""

    def __init__(self, parents: Sequence[int | None]) -> None:
        roots = [node for node, parent in enumerate(parents) if parent is None]
        if len(roots) != 1:
            raise ValueError(f"tree needs exactly one root, got {len(roots)}")
        self.root: int = roots[0]
        self.parents: Tuple[int | None, ...] = tuple(parents)
        children: List[List[int]] = [[] for _ in parents]
        for node, parent in enumerate(parents):
            if parent is not None:
                if not 0 <= parent < len(parents):
                    raise ValueError(f"node {node} has unknown parent {parent}")
                children[parent].append(node)
        self.children: Tuple[Tuple[int, ...], ...] = tuple(tuple(c) for c in children)

        # 每个节点都必须可从根到达，否则存在环
        seen = {self.root}
        frontier = [self.root]
        while frontier:
            node = frontier.pop()
            for child in self.children[node]:
                seen.add(child)
                frontier.append(child)
        if len(seen) != len(parents):
            raise ValueError("topology contains a cycle or unreachable nodes")

        self._heights = {node: self._height(node) for node in range(len(parents))}

    @classmethod
    def star(cls, n: int, root: int = 0) -> "TreeTopology":
        return cls([None if node == root else root for node in range(n)])

    @classmethod
    def balanced(cls, n: int, branching: int = 2) -> "TreeTopology":
        """Complete ``branching``-ary tree rooted at node 0."""
        return cls([None] + [(node - 1) // branching for node in range(1, n)])

    @property
    def size(self) -> int:
        return len(self.parents)

    def parent(self, node: int) -> int | None:
        return self.parents[node]

    def children_of(self, node: int) -> Tuple[int, ...]:
        return self.children[node]

    def subtree_height(self, node: int) -> int:
        return self._heights[node]

    def _height(self, node: int) -> int:
        if not self.children[node]:
            return 0
        return 1 + max(self._height(child) for child in self.children[node])

    def dump(self) -> str:
        lines: List[str] = []

        def walk(node: int, depth: int) -> None:
            lines.append("  " * depth + f"Node {node}")
            for child in self.children[node]:
                walk(child, depth + 1)

        walk(self.root, 0)
        return "\n".join(lines)


class NetworkSimulator:
    """网络模拟器，用于节点之间沿树通信 / Mailboxes connected along a fixed tree.

    Messages are serialized on send and decoded on receive, so nodes never
    share objects. A paused node is unreachable: messages addressed to it are
    dropped.
    """

    def __init__(self, topology: TreeTopology) -> None:
        self.topology = topology
        self.message_queues: Dict[int, Queue] = {}
        self.paused: Set[int] = set()
        self.lock = threading.Lock()
        self.sent_count = 0
        self.dropped_count = 0

    def register_node(self, node_id: int) -> None:
        """注册节点邮箱 / Register a node mailbox."""
        with self.lock:
            if node_id not in self.message_queues:
                self.message_queues[node_id] = Queue()

    def pause(self, node_id: int) -> None:
        with self.lock:
            self.paused.add(node_id)

    def resume(self, node_id: int) -> None:
        with self.lock:
            self.paused.discard(node_id)

    def is_paused(self, node_id: int) -> bool:
        with self.lock:
            return node_id in self.paused

    def send(self, receiver_id: int, msg_type: str, message: Any) -> bool:
        """发送消息 / Deliver a message; returns False when it was dropped."""
        raw = CryptoManager.encode_message(msg_type, message)
        with self.lock:
            if receiver_id in self.paused or receiver_id not in self.message_queues:
                self.dropped_count += 1
                return False
            self.message_queues[receiver_id].put(raw)
            self.sent_count += 1
            return True

    def send_to_parent(self, sender_id: int, msg_type: str, message: Any) -> bool:
        parent = self.topology.parent(sender_id)
        if parent is None:
            return False
        return self.send(parent, msg_type, message)

    def send_to_children(self, sender_id: int, msg_type: str, message: Any) -> List[int]:
        """广播给子节点 / Send to every child, returning the ones that were reachable."""
        return [
            child
            for child in self.topology.children_of(sender_id)
            if self.send(child, msg_type, message)
        ]

    def receive(self, node_id: int, timeout: float = 0.1) -> Tuple[str, Any] | None:
        """接收一条消息 / Wait up to ``timeout`` for the next message."""
        try:
            raw = self.message_queues[node_id].get(timeout=timeout)
        except Empty:
            return None
        return CryptoManager.decode_message(raw)
