import pytest

from crypto_manager import CryptoManager
from data_models import MessageReencryptReply
from network_simulator import NetworkSimulator, TreeTopology


def _reply(sender_id):
    return MessageReencryptReply(run_id="00" * 16, sender_id=sender_id, shares=[], refusals=0, responders=[sender_id])


def test_star_topology():
    tree = TreeTopology.star(4)
    assert tree.root == 0
    assert tree.children_of(0) == (1, 2, 3)
    assert tree.parent(2) == 0
    assert tree.subtree_height(0) == 1
    assert tree.subtree_height(3) == 0


def test_balanced_topology_heights():
    tree = TreeTopology.balanced(7, branching=2)
    assert tree.children_of(0) == (1, 2)
    assert tree.children_of(1) == (3, 4)
    assert tree.parent(6) == 2
    assert tree.subtree_height(0) == 2
    assert tree.subtree_height(2) == 1
    assert "Node 6" in tree.dump()


def test_topology_rejects_bad_shapes():
    with pytest.raises(ValueError):
        TreeTopology([None, None])
    with pytest.raises(ValueError):
        TreeTopology([None, 2, 1])
    with pytest.raises(ValueError):
        TreeTopology([None, 5])


def test_messages_follow_the_tree():
    network = NetworkSimulator(TreeTopology.balanced(3, branching=2))
    for node in range(3):
        network.register_node(node)
    assert network.send_to_parent(2, CryptoManager.MSG_REPLY, _reply(2))
    assert not network.send_to_parent(0, CryptoManager.MSG_REPLY, _reply(0))
    assert network.sent_count == 1

    msg_type, message = network.receive(0, timeout=0.1)
    assert msg_type == CryptoManager.MSG_REPLY
    assert message.sender_id == 2
    assert network.receive(0, timeout=0.01) is None


def test_paused_nodes_are_unreachable():
    network = NetworkSimulator(TreeTopology.star(3))
    for node in range(3):
        network.register_node(node)
    network.pause(2)
    assert network.is_paused(2)
    assert network.send_to_children(0, CryptoManager.MSG_REPLY, _reply(0)) == [1]
    assert network.dropped_count == 1
    assert network.sent_count == 1
    assert network.receive(2, timeout=0.01) is None

    network.resume(2)
    assert network.send_to_children(0, CryptoManager.MSG_REPLY, _reply(0)) == [1, 2]
