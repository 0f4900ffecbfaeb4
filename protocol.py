"""High-level orchestration for running on-chain secrets re-encryption."""

from __future__ import annotations

import os
import time
from typing import Dict, List, Sequence, Tuple

import numpy as np

from constants import DEFAULT_GATHER_TIMEOUT, EMBED_LEN
from crypto_manager import CryptoManager
from data_models import (
    EncodedKey,
    PartialShare,
    PerformanceStats,
    ReencryptionRequest,
    RunOutcome,
)
from group import KeyPair, Point
from key_codec import decode_key, encode_key
from network_simulator import NetworkSimulator, TreeTopology
from node import OCSNode, ReencryptionHandle
from policy import VerificationPolicy
from sharing import recover_commit, simulate_dkg


class OCSCluster:
    """持有分布式密钥的节点集合 / n key-holding nodes wired along a fixed tree."""

    def __init__(
        self,
        n: int,
        threshold: int,
        topology: TreeTopology | None = None,
        policy: VerificationPolicy | None = None,
        gather_timeout: float = DEFAULT_GATHER_TIMEOUT,
    ) -> None:
        self.n = n
        self.threshold = threshold
        self.topology = topology if topology is not None else TreeTopology.star(n)
        if self.topology.size != n:
            raise ValueError(f"topology has {self.topology.size} nodes, expected {n}")
        self.network = NetworkSimulator(self.topology)

        key_shares, self.commitment_polynomial = simulate_dkg(n, threshold)
        self.nodes: List[OCSNode] = [
            OCSNode(
                node_id=i,
                network=self.network,
                key_share=key_shares[i],
                policy=policy,
                gather_timeout=gather_timeout,
            )
            for i in range(n)
        ]

    @property
    def public_key(self) -> Point:
        return self.commitment_polynomial.public_key()

    @property
    def root(self) -> OCSNode:
        return self.nodes[self.topology.root]

    def start(self) -> None:
        for node in self.nodes:
            node.start()

    def stop(self) -> None:
        for node in self.nodes:
            node.stop()
        for node in self.nodes:
            if node.is_alive():
                node.join(timeout=1.0)

    def __enter__(self) -> "OCSCluster":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def pause(self, node_id: int) -> None:
        print(f"Pausing Node {node_id}")
        self.network.pause(node_id)

    def resume(self, node_id: int) -> None:
        self.network.resume(node_id)

    def make_request(
        self,
        encoded: EncodedKey,
        reader_public: Point,
        verification_payload: bytes | None,
    ) -> ReencryptionRequest:
        return ReencryptionRequest(
            commit=encoded.commit,
            reader_public=reader_public,
            threshold=self.threshold,
            verification_payload=verification_payload,
            commitment_polynomial=self.commitment_polynomial,
        )


def start_reencryption(cluster: OCSCluster, request: ReencryptionRequest) -> ReencryptionHandle:
    """发起重加密 / Start a run at the cluster's root; wait on the returned handle."""
    return cluster.root.start_run(request)


def write_document(X: Point, data: bytes, key_len: int = 16) -> Tuple[EncodedKey, bytes]:
    """写者：加密文档并发布 (U, C) / Seal ``data`` under a fresh key and encode the key under ``X``."""
    if key_len not in (16, 24):
        raise ValueError(f"AES key length must be 16 or 24 bytes to fit in a point, got {key_len}")
    key = os.urandom(key_len)
    sealed = CryptoManager.aead_seal(key, data)
    return encode_key(X, key), sealed


def read_document(
    X: Point,
    encoded: EncodedKey,
    shares: Sequence[PartialShare],
    threshold: int,
    n: int,
    reader: KeyPair,
    sealed: bytes,
) -> bytes:
    """读者：恢复密钥并解密文档 / Recover the document key from partial shares and open ``sealed``."""
    XhatEnc = recover_commit(shares, threshold, n)
    key = decode_key(X, encoded.ciphertext, XhatEnc, reader.private)
    return CryptoManager.aead_open(key, sealed)


def print_performance_report(stats: List[PerformanceStats]) -> None:
    """打印性能报告 / Pretty-print collected performance statistics."""
    print("\n" + "=" * 80)
    print("***  PROTOCOL PERFORMANCE ANALYSIS REPORT  ***".center(80))
    print("=" * 80 + "\n")

    total_time = sum(stat.duration for stat in stats)

    for idx, stat in enumerate(stats, 1):
        percentage = (stat.duration / total_time * 100) if total_time > 0 else 0

        print(f"┌─ Phase {idx}: {stat.phase_name}")
        print(f"│  ⏱  Duration:    {stat.duration*1000:.4f} ms  ({percentage:.1f}% of total)")

        if stat.operations:
            print("│  📊 Operations:")
            for op_name, count in stat.operations.items():
                print(f"│     • {op_name}: {count:,}")
        print(f"└{'─'*78}\n")

    print("=" * 80)
    print(f"🕐 TOTAL EXECUTION TIME: {total_time*1000:.4f} ms ({total_time:.6f} seconds)")
    print("=" * 80 + "\n")


def run_demo(num_nodes: int = 3, threshold: int = 2, rounds: int = 3) -> Dict[str, float]:
    """运行演示：写者加密、读者请求重加密、恢复文档；返回各阶段平均耗时."""
    print("\n" + "=" * 80)
    print("***  ON-CHAIN SECRETS RE-ENCRYPTION DEMO  ***".center(80))
    print("=" * 80 + "\n")

    print("*** Protocol Parameters ***")
    print(f"  • Number of nodes (N):     {num_nodes}")
    print(f"  • Threshold (T):           {threshold}")
    print(f"  • Group:                   Ed25519 prime-order subgroup")
    print(f"  • Embedding capacity:      {EMBED_LEN} bytes")
    print(f"  • Document encryption:     AES-GCM")
    print("-" * 80 + "\n")

    document = b"Very secret Message to be encrypted"
    timings: Dict[str, List[float]] = {"encode": [], "reencrypt": [], "recover": [], "decode": []}
    shares_per_run: List[int] = []
    messages_per_run: List[int] = []

    with OCSCluster(num_nodes, threshold) as cluster:
        X = cluster.public_key
        print(f"  Aggregate public key X: {X.hex()[:32]}...\n")

        for round_idx in range(1, rounds + 1):
            print(f"*** Round {round_idx} ***")
            start_time = time.time()
            encoded, sealed = write_document(X, document)
            timings["encode"].append(time.time() - start_time)

            reader = KeyPair.generate()
            request = cluster.make_request(encoded, reader.public, b"correct block")
            sent_before = cluster.network.sent_count
            start_time = time.time()
            handle = start_reencryption(cluster, request)
            outcome = handle.wait(timeout=cluster.root.gather_timeout * 2)
            timings["reencrypt"].append(time.time() - start_time)
            messages_per_run.append(cluster.network.sent_count - sent_before)

            if outcome is not RunOutcome.COMPLETED:
                print(f"  ✗ Run ended as {outcome.value}")
                continue
            shares_per_run.append(len(handle.shares))

            start_time = time.time()
            XhatEnc = recover_commit(handle.shares, threshold, num_nodes)
            timings["recover"].append(time.time() - start_time)

            start_time = time.time()
            key = decode_key(X, encoded.ciphertext, XhatEnc, reader.private)
            recovered = CryptoManager.aead_open(key, sealed)
            timings["decode"].append(time.time() - start_time)

            status = "✓ SUCCESS" if recovered == document else "✗ MISMATCH"
            print(f"  {status} - recovered {recovered!r} from {len(handle.shares)} partial shares\n")

    averages = {phase: float(np.mean(values)) if values else 0.0 for phase, values in timings.items()}
    stats = [
        PerformanceStats("Key encoding (writer)", averages["encode"], {
            "Point embeddings": 1,
            "Scalar multiplications": 2,
        }),
        PerformanceStats("Distributed re-encryption", averages["reencrypt"], {
            "Partial shares per run (mean)": int(np.mean(shares_per_run)) if shares_per_run else 0,
            "Messages per run (mean)": int(np.mean(messages_per_run)) if messages_per_run else 0,
        }),
        PerformanceStats("Lagrange recovery", averages["recover"], {
            "Interpolated shares": threshold,
        }),
        PerformanceStats("Key decoding + document open", averages["decode"], {
            "Scalar multiplications": 1,
            "AES-GCM decryptions": 1,
        }),
    ]
    print_performance_report(stats)
    return averages


if __name__ == "__main__":
    run_demo()
