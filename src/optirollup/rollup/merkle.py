# src/optirollup/rollup/merkle.py
"""
Binary Merkle tree over ordered leaves.

Leaves are hashed with SHA-256; parents combine two children with
``hash_node``. Under the default ``PairingRule.SORTED`` the pair is sorted
before hashing, so a proof verifies regardless of the recorded sides. With
``PairingRule.ORDERED`` the left child always comes first and proof sides
matter.

An odd trailing node at any level is paired with itself. Its proof step
carries the node itself as the sibling so that every leaf index verifies.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
import hashlib
import logging
import threading

from ..crypto.hash import Hash
from ..exceptions import InvalidLeafIndexError, InvariantError
from ..utils.logger import short_hash

logger = logging.getLogger(__name__)

LeafData = Union[str, bytes]


class PairingRule(Enum):
    SORTED = "sorted"
    ORDERED = "ordered"


class Side(Enum):
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class ProofStep:
    """A sibling hash and which side of the running hash it sits on"""
    sibling: str
    side: Side

    def to_dict(self) -> Dict[str, str]:
        return {"sibling": self.sibling, "side": self.side.value}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'ProofStep':
        return cls(sibling=data["sibling"], side=Side(data["side"]))


MerkleProof = List[ProofStep]


def hash_leaf(data: LeafData) -> str:
    """Hash raw leaf bytes"""
    return Hash.sha256(data)


def hash_node(left: str, right: str, pairing: PairingRule = PairingRule.SORTED) -> str:
    """Combine two child hashes into their parent"""
    left_bytes = Hash.to_bytes(left)
    right_bytes = Hash.to_bytes(right)
    if pairing is PairingRule.SORTED and right_bytes < left_bytes:
        left_bytes, right_bytes = right_bytes, left_bytes
    return "0x" + hashlib.sha256(left_bytes + right_bytes).hexdigest()


def build(
    leaf_hashes: Sequence[str],
    pairing: PairingRule = PairingRule.SORTED
) -> Tuple[List[List[str]], Optional[str]]:
    """Build every level from already-hashed leaves; returns (levels, root)"""
    if not leaf_hashes:
        return [], None

    current_level = list(leaf_hashes)
    levels = [current_level]
    while len(current_level) > 1:
        next_level = []
        for i in range(0, len(current_level), 2):
            left = current_level[i]
            right = current_level[i + 1] if i + 1 < len(current_level) else left
            next_level.append(hash_node(left, right, pairing))
        levels.append(next_level)
        current_level = next_level

    return levels, current_level[0]


def verify_proof(
    leaf_hash: str,
    proof: Iterable[ProofStep],
    root: Optional[str],
    pairing: PairingRule = PairingRule.SORTED
) -> bool:
    """Fold the proof over ``leaf_hash`` and compare with ``root``"""
    if root is None:
        return False
    try:
        current = leaf_hash
        for step in proof:
            if step.side is Side.LEFT:
                current = hash_node(step.sibling, current, pairing)
            else:
                current = hash_node(current, step.sibling, pairing)
    except ValueError:
        # malformed hex in the proof
        return False
    return current.lower() == root.lower()


class MerkleTree:
    def __init__(
        self,
        leaves: Optional[Iterable[LeafData]] = None,
        pairing: PairingRule = PairingRule.SORTED
    ):
        self.pairing = pairing
        self._write_lock = threading.Lock()
        leaf_hashes = [hash_leaf(leaf) for leaf in (leaves or [])]
        # (leaves, levels, root) is swapped as a whole so readers never see
        # a half-built tree
        self._state = self._rebuild(leaf_hashes)

    def _rebuild(self, leaf_hashes: List[str]) -> Tuple[List[str], List[List[str]], Optional[str]]:
        levels, root = build(leaf_hashes, self.pairing)
        if leaf_hashes and root is None:
            raise InvariantError("Merkle tree produced no root for a non-empty leaf set")
        logger.debug(
            f"Merkle tree built: leaves={len(leaf_hashes)}, "
            f"height={len(levels)}, root={short_hash(root)}"
        )
        return leaf_hashes, levels, root

    @property
    def root(self) -> Optional[str]:
        return self._state[2]

    @property
    def leaves(self) -> List[str]:
        return list(self._state[0])

    @property
    def levels(self) -> List[List[str]]:
        return [list(level) for level in self._state[1]]

    def __len__(self) -> int:
        return len(self._state[0])

    def hash_node(self, left: str, right: str) -> str:
        return hash_node(left, right, self.pairing)

    def get_proof(self, index: int) -> MerkleProof:
        """Collect the sibling path for the leaf at ``index``"""
        leaf_hashes, levels, _ = self._state
        if not isinstance(index, int) or index < 0 or index >= len(leaf_hashes):
            raise InvalidLeafIndexError(
                f"Invalid leaf index {index} for tree of {len(leaf_hashes)} leaves",
                reason="index_out_of_range"
            )

        proof: MerkleProof = []
        current_index = index
        for level in levels[:-1]:
            if current_index % 2 == 0:
                sibling_index = current_index + 1
                sibling = level[sibling_index] if sibling_index < len(level) else level[current_index]
                proof.append(ProofStep(sibling=sibling, side=Side.RIGHT))
            else:
                proof.append(ProofStep(sibling=level[current_index - 1], side=Side.LEFT))
            current_index //= 2

        return proof

    def verify_proof(self, leaf_hash: str, proof: Iterable[ProofStep], root: Optional[str]) -> bool:
        return verify_proof(leaf_hash, proof, root, self.pairing)

    def add_leaf(self, data: LeafData) -> Optional[str]:
        """Append a leaf and rebuild the whole tree; returns the new root"""
        with self._write_lock:
            leaf_hashes = list(self._state[0])
            leaf_hashes.append(hash_leaf(data))
            self._state = self._rebuild(leaf_hashes)
        logger.debug(f"Leaf added: count={len(leaf_hashes)}, root={short_hash(self.root)}")
        return self.root

    def get_stats(self) -> Dict[str, Any]:
        leaf_hashes, levels, root = self._state
        return {
            "leaf_count": len(leaf_hashes),
            "tree_height": len(levels),
            "root": root,
            "is_empty": not leaf_hashes,
            "pairing": self.pairing.value
        }

    def to_dict(self) -> Dict[str, Any]:
        leaf_hashes, levels, root = self._state
        return {
            "leaves": list(leaf_hashes),
            "levels": [list(level) for level in levels],
            "root": root,
            "pairing": self.pairing.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MerkleTree':
        """Restore a tree from hashed leaves, checking the stored levels and root"""
        tree = cls(pairing=PairingRule(data.get("pairing", PairingRule.SORTED.value)))
        leaf_hashes = list(data.get("leaves") or [])
        with tree._write_lock:
            tree._state = tree._rebuild(leaf_hashes)

        if "root" in data and data["root"] != tree.root:
            raise InvariantError(
                f"Serialized Merkle root {short_hash(data['root'])} does not match "
                f"recomputed root {short_hash(tree.root)}"
            )
        if "levels" in data and data["levels"] != tree.levels:
            raise InvariantError("Serialized Merkle levels do not match leaves")
        return tree
