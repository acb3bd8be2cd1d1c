# tests/test_merkle.py
import hashlib

import pytest

from optirollup.exceptions import InvalidLeafIndexError, InvariantError
from optirollup.rollup.merkle import (
    MerkleTree, PairingRule, ProofStep, Side, hash_leaf, hash_node, verify_proof
)


def _sha(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


class TestMerkleTree:
    @pytest.fixture
    def leaves(self):
        return [f"leaf-{i}".encode() for i in range(7)]

    def test_empty_tree_has_no_root(self):
        tree = MerkleTree()
        assert tree.root is None
        assert len(tree) == 0
        assert tree.get_stats()["is_empty"] is True

    def test_single_leaf_root_is_leaf_hash(self):
        tree = MerkleTree([b"only"])
        assert tree.root == hash_leaf(b"only")
        assert tree.get_proof(0) == []
        assert tree.verify_proof(hash_leaf(b"only"), [], tree.root)

    def test_two_leaf_root_uses_sorted_pair(self):
        a, b = _sha(b"a"), _sha(b"b")
        tree = MerkleTree([b"a", b"b"])
        expected = "0x" + hashlib.sha256(min(a, b) + max(a, b)).hexdigest()
        assert tree.root == expected

    def test_sorted_pairing_is_order_insensitive_per_pair(self):
        left, right = hash_leaf(b"x"), hash_leaf(b"y")
        assert hash_node(left, right) == hash_node(right, left)

    def test_ordered_pairing_is_order_sensitive(self):
        left, right = hash_leaf(b"x"), hash_leaf(b"y")
        assert hash_node(left, right, PairingRule.ORDERED) != hash_node(right, left, PairingRule.ORDERED)

    @pytest.mark.parametrize("count", [1, 2, 3, 4, 5, 7, 8, 13])
    @pytest.mark.parametrize("pairing", [PairingRule.SORTED, PairingRule.ORDERED])
    def test_every_leaf_proof_verifies(self, count, pairing):
        data = [f"tx-{i}".encode() for i in range(count)]
        tree = MerkleTree(data, pairing=pairing)
        for i, leaf in enumerate(data):
            proof = tree.get_proof(i)
            assert verify_proof(hash_leaf(leaf), proof, tree.root, pairing)

    def test_odd_trailing_leaf_proof_uses_itself_as_sibling(self, leaves):
        tree = MerkleTree(leaves[:3])
        proof = tree.get_proof(2)
        assert proof[0] == ProofStep(sibling=hash_leaf(leaves[2]), side=Side.RIGHT)
        assert tree.verify_proof(hash_leaf(leaves[2]), proof, tree.root)

    def test_proof_fails_for_wrong_leaf(self, leaves):
        tree = MerkleTree(leaves)
        assert not tree.verify_proof(hash_leaf(b"intruder"), tree.get_proof(3), tree.root)

    def test_proof_fails_against_missing_root(self, leaves):
        tree = MerkleTree(leaves)
        assert not tree.verify_proof(hash_leaf(leaves[0]), tree.get_proof(0), None)

    def test_malformed_sibling_does_not_verify(self, leaves):
        tree = MerkleTree(leaves)
        proof = [ProofStep(sibling="0xzz", side=Side.RIGHT)]
        assert not tree.verify_proof(hash_leaf(leaves[0]), proof, tree.root)

    @pytest.mark.parametrize("index", [-1, 7, 100])
    def test_get_proof_rejects_out_of_range_index(self, leaves, index):
        tree = MerkleTree(leaves)
        with pytest.raises(InvalidLeafIndexError) as exc:
            tree.get_proof(index)
        assert exc.value.reason == "index_out_of_range"

    def test_invalid_index_is_an_index_error(self):
        with pytest.raises(IndexError):
            MerkleTree().get_proof(0)

    def test_add_leaf_matches_full_rebuild(self, leaves):
        tree = MerkleTree(leaves[:4])
        new_root = tree.add_leaf(leaves[4])
        assert new_root == MerkleTree(leaves[:5]).root
        assert len(tree) == 5

    def test_reordering_leaves_changes_root(self, leaves):
        assert MerkleTree(leaves).root != MerkleTree(list(reversed(leaves))).root

    def test_stats(self, leaves):
        stats = MerkleTree(leaves).get_stats()
        assert stats["leaf_count"] == 7
        assert stats["tree_height"] == 4
        assert stats["pairing"] == "sorted"

    def test_serialization_restores_same_root(self, leaves):
        tree = MerkleTree(leaves)
        restored = MerkleTree.from_dict(tree.to_dict())
        assert restored.root == tree.root
        assert restored.levels == tree.levels

    def test_tampered_serialization_is_an_invariant_violation(self, leaves):
        data = MerkleTree(leaves).to_dict()
        data["root"] = "0x" + "11" * 32
        with pytest.raises(InvariantError):
            MerkleTree.from_dict(data)

    def test_proof_step_dict_round_trip(self):
        step = ProofStep(sibling=hash_leaf(b"s"), side=Side.LEFT)
        assert ProofStep.from_dict(step.to_dict()) == step
