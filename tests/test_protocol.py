"""End-to-end runs with every node on its own thread."""

import threading
from dataclasses import replace

import pytest

from constants import EMBED_LEN
from crypto_manager import CryptoManager
from data_models import MessageReencrypt, RunOutcome
from errors import InsufficientShares, InvalidPoint
from group import KeyPair, Point
from key_codec import decode_key, encode_key
from network_simulator import TreeTopology
from policy import FunctionPolicy
from protocol import OCSCluster, read_document, run_demo, start_reencryption, write_document
from sharing import recover_commit

WAIT = 3.0


def ocs(n, threshold, keylen=EMBED_LEN, fail=0, refuse=False, topology=None):
    """Encode a key, re-encrypt it to a fresh reader and return what the reader sees."""
    with OCSCluster(n, threshold, topology=topology, gather_timeout=0.5) as cluster:
        X = cluster.public_key
        key = bytes((i * 7 + 1) % 256 for i in range(keylen))
        encoded = encode_key(X, key)
        reader = KeyPair.generate()

        for node_id in range(1, 1 + fail):
            cluster.pause(node_id)

        request = cluster.make_request(encoded, reader.public, None if refuse else b"correct block")
        handle = start_reencryption(cluster, request)
        outcome = handle.wait(timeout=WAIT)
    return X, key, encoded, reader, handle, outcome


def test_ocs_three_nodes():
    X, key, encoded, reader, handle, outcome = ocs(3, 2)
    assert outcome is RunOutcome.COMPLETED
    assert len(handle.shares) == 3

    XhatEnc = recover_commit(handle.shares, 2, 3)
    assert decode_key(X, encoded.ciphertext, XhatEnc, reader.private) == key


def test_any_two_of_three_decode_identically():
    with OCSCluster(3, 2, gather_timeout=0.5) as cluster:
        X = cluster.public_key
        key = b"Very secret Message to be encrypted"[:EMBED_LEN]
        encoded = encode_key(X, key)
        reader = KeyPair.generate()
        handle = start_reencryption(cluster, cluster.make_request(encoded, reader.public, b"correct block"))
        assert handle.wait(timeout=WAIT) is RunOutcome.COMPLETED

    by_index = {share.index: share for share in handle.shares}
    first = decode_key(X, encoded.ciphertext, recover_commit([by_index[0], by_index[1]], 2, 3), reader.private)
    second = decode_key(X, encoded.ciphertext, recover_commit([by_index[1], by_index[2]], 2, 3), reader.private)
    assert first == second == key


@pytest.mark.parametrize("keylen", [1, 9, 17, EMBED_LEN])
def test_key_lengths(keylen):
    X, key, encoded, reader, handle, outcome = ocs(3, 2, keylen=keylen)
    assert outcome is RunOutcome.COMPLETED
    assert decode_key(X, encoded.ciphertext, recover_commit(handle.shares, 2, 3), reader.private) == key


def test_paused_nodes_within_tolerance():
    X, key, encoded, reader, handle, outcome = ocs(4, 2, fail=2)
    assert outcome is RunOutcome.COMPLETED
    assert sorted(s.index for s in handle.shares) == [0, 3]
    assert decode_key(X, encoded.ciphertext, recover_commit(handle.shares, 2, 4), reader.private) == key


@pytest.mark.parametrize("n, threshold", [(3, 2), (5, 3)])
def test_tolerates_exactly_n_minus_threshold_failures(n, threshold):
    fail = n - threshold
    X, key, encoded, reader, handle, outcome = ocs(n, threshold, fail=fail)
    assert outcome is RunOutcome.COMPLETED
    assert sorted(s.index for s in handle.shares) == [0] + list(range(1 + fail, n))
    assert decode_key(X, encoded.ciphertext, recover_commit(handle.shares, threshold, n), reader.private) == key


def test_too_many_paused_nodes_cannot_recover():
    _, _, _, _, handle, outcome = ocs(4, 3, fail=2)
    assert outcome is RunOutcome.COMPLETED
    assert len(handle.shares) == 2
    with pytest.raises(InsufficientShares):
        recover_commit(handle.shares, 3, 4)


def test_refuse_without_verification_data():
    _, _, _, _, handle, outcome = ocs(3, 2, refuse=True)
    assert outcome is RunOutcome.REFUSED
    assert handle.shares is None


def test_unreachable_root_times_out():
    with OCSCluster(3, 2, gather_timeout=0.5) as cluster:
        encoded = encode_key(cluster.public_key, b"key")
        cluster.pause(cluster.topology.root)
        handle = start_reencryption(cluster, cluster.make_request(encoded, KeyPair.generate().public, b"ok"))
        assert handle.wait(timeout=0.3) is RunOutcome.TIMED_OUT
        assert handle.shares is None


def test_deeper_tree_with_unreachable_subtree():
    topology = TreeTopology.balanced(7, branching=2)
    X, key, encoded, reader, handle, outcome = ocs(7, 3, fail=1, topology=topology)
    assert outcome is RunOutcome.COMPLETED
    # node 1 is paused, so its children 3 and 4 never see the request
    assert sorted(s.index for s in handle.shares) == [0, 2, 5, 6]
    assert decode_key(X, encoded.ciphertext, recover_commit(handle.shares, 3, 7), reader.private) == key


def test_concurrent_runs_are_kept_apart():
    with OCSCluster(5, 3, topology=TreeTopology.balanced(5), gather_timeout=0.5) as cluster:
        X = cluster.public_key
        jobs = []
        for key in (b"first document key", b"second document key"):
            encoded = encode_key(X, key)
            reader = KeyPair.generate()
            handle = start_reencryption(cluster, cluster.make_request(encoded, reader.public, b"correct block"))
            jobs.append((key, encoded, reader, handle))

        assert jobs[0][3].run_id != jobs[1][3].run_id
        for key, encoded, reader, handle in jobs:
            assert handle.wait(timeout=WAIT) is RunOutcome.COMPLETED
            XhatEnc = recover_commit(handle.shares, 3, 5)
            assert decode_key(X, encoded.ciphertext, XhatEnc, reader.private) == key


def test_document_helpers_round_trip():
    with OCSCluster(3, 2, gather_timeout=0.5) as cluster:
        X = cluster.public_key
        encoded, sealed = write_document(X, b"Very secret Message to be encrypted")
        reader = KeyPair.generate()
        handle = start_reencryption(cluster, cluster.make_request(encoded, reader.public, b"correct block"))
        assert handle.wait(timeout=WAIT) is RunOutcome.COMPLETED
    plaintext = read_document(X, encoded, handle.shares, 2, 3, reader, sealed)
    assert plaintext == b"Very secret Message to be encrypted"


def test_write_document_rejects_unusable_key_length():
    with pytest.raises(ValueError):
        write_document(KeyPair.generate().public, b"data", key_len=32)


def test_cluster_rejects_mismatched_topology():
    with pytest.raises(ValueError):
        OCSCluster(3, 2, topology=TreeTopology.star(4))


def test_demo_runs(capsys):
    averages = run_demo(num_nodes=3, threshold=2, rounds=1)
    assert set(averages) == {"encode", "reencrypt", "recover", "decode"}
    out = capsys.readouterr().out
    assert "SUCCESS" in out
    # one request and one reply per edge of the star, plus the root messaging itself
    assert "Messages per run (mean): 5" in out


def test_leaf_going_dark_after_receiving_is_cut_off_by_the_deadline():
    release = threading.Event()
    entered = threading.Event()

    def stall_node_two(request):
        if threading.current_thread().name == "ocs-node-2":
            cluster.pause(2)
            entered.set()
            release.wait(timeout=WAIT)
        return True

    with OCSCluster(3, 2, policy=FunctionPolicy(stall_node_two), gather_timeout=0.5) as cluster:
        X = cluster.public_key
        key = b"document key"
        encoded = encode_key(X, key)
        reader = KeyPair.generate()
        try:
            handle = start_reencryption(cluster, cluster.make_request(encoded, reader.public, b"correct block"))
            assert handle.wait(timeout=WAIT) is RunOutcome.COMPLETED
            assert entered.is_set()
            assert handle.duration < 0.5 + 0.5
        finally:
            release.set()

    assert sorted(s.index for s in handle.shares) == [0, 1]
    assert decode_key(X, encoded.ciphertext, recover_commit(handle.shares, 2, 3), reader.private) == key


def test_malformed_request_does_not_take_nodes_down():
    with OCSCluster(3, 2, gather_timeout=0.5) as cluster:
        X = cluster.public_key
        key = b"document key"
        encoded = encode_key(X, key)
        reader = KeyPair.generate()
        good = cluster.make_request(encoded, reader.public, b"correct block")
        bad = replace(good, reader_public=Point(b"\x00" * 32))

        with pytest.raises(InvalidPoint):
            start_reencryption(cluster, bad)

        # the same request injected straight onto the wire, plus plain garbage
        raw = CryptoManager.encode_message(CryptoManager.MSG_REENCRYPT, MessageReencrypt("ba" * 16, bad, 0.5))
        for node_id in range(3):
            cluster.network.message_queues[node_id].put(raw)
            cluster.network.message_queues[node_id].put(b"not json")

        handle = start_reencryption(cluster, good)
        assert handle.wait(timeout=WAIT) is RunOutcome.COMPLETED
        assert all(node.is_alive() for node in cluster.nodes)

    assert decode_key(X, encoded.ciphertext, recover_commit(handle.shares, 2, 3), reader.private) == key
