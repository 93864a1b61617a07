"""
Membership tree over identity identifiers.

Layout (sorted-pair "simple" tree):
    Leaf:          keccak256(utf8(identifier))  (32 bytes, used as-is)
    Internal hash: keccak256(min(a, b) + max(a, b))

Leaves are sorted by hash, then placed at the end of a flat array of
2n - 1 nodes in reverse order; node i has children 2i + 1 and 2i + 2 and
the root is node 0. Sorting makes the root and every proof independent of
the order identifiers were supplied in, and sorted pairs mean a proof is a
plain list of sibling hashes with no direction flags.

Proof bytes (the OPRF input for one identity):
    single-leaf tree: the root itself
    otherwise:        sibling hashes concatenated leaf-to-root
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any

from gperm import TREE_FORMAT
from gperm.errors import EmptySetError, IdentifierNotFoundError, InvalidTreeError
from gperm.hashing import from_hex, keccak256, to_hex

_NODE_SIZE = 32


def _hash_pair(a: bytes, b: bytes) -> bytes:
    """Hash two sibling nodes in sorted order."""
    if a <= b:
        return keccak256(a + b)
    return keccak256(b + a)


def _left_child(i: int) -> int:
    return 2 * i + 1


def _right_child(i: int) -> int:
    return 2 * i + 2


def _sibling(i: int) -> int:
    return i + 1 if i % 2 == 1 else i - 1


def _parent(i: int) -> int:
    return (i - 1) // 2


def _make_tree(leaves: list[bytes]) -> list[bytes]:
    size = 2 * len(leaves) - 1
    tree: list[bytes] = [b""] * size
    for i, leaf in enumerate(leaves):
        tree[size - 1 - i] = leaf
    for i in range(size - 1 - len(leaves), -1, -1):
        tree[i] = _hash_pair(tree[_left_child(i)], tree[_right_child(i)])
    return tree


def leaf_for(identifier: str) -> bytes:
    """The 32-byte leaf committed for an identifier."""
    return keccak256(identifier.encode("utf-8"))


@dataclass(frozen=True)
class MerkleProof:
    """Inclusion proof for a leaf in a MerkleTree.

    Attributes:
        leaf: The 32-byte leaf value.
        tree_index: Position of the leaf in the flat node array.
        siblings: Sibling hashes, leaf-to-root.
        root: The Merkle root (32 bytes).
    """

    leaf: bytes
    tree_index: int
    siblings: tuple[bytes, ...]
    root: bytes

    @property
    def root_hex(self) -> str:
        return to_hex(self.root)

    def to_bytes(self) -> bytes:
        """Concatenated sibling hashes."""
        return b"".join(self.siblings)


def verify_proof(proof: MerkleProof) -> bool:
    """Verify a Merkle inclusion proof.

    Uses constant-time comparison for the root check.
    Fail-closed: returns False on any error.
    """
    try:
        current = proof.leaf
        for sibling in proof.siblings:
            current = _hash_pair(current, sibling)
        return hmac.compare_digest(current, proof.root)
    except Exception:
        return False


class MerkleTree:
    """Sorted-pair Merkle tree over 32-byte leaf values.

    Usage:
        tree = MerkleTree.from_identifiers(["a@x.com", "0xabc..."])
        proof = tree.get_proof_for("a@x.com")
        assert verify_proof(proof)
        clone = MerkleTree.load(tree.dump())
    """

    def __init__(self, tree: list[bytes], values: list[tuple[bytes, int]]) -> None:
        self._tree = tree
        self._values = values

    @classmethod
    def of(cls, leaf_values: list[bytes], sort_leaves: bool = True) -> MerkleTree:
        """Build a tree from 32-byte leaf values.

        Raises:
            EmptySetError: If leaf_values is empty.
            ValueError: If a leaf is not 32 bytes.
        """
        if not leaf_values:
            raise EmptySetError("Cannot build Merkle tree from empty leaf list")
        for value in leaf_values:
            if len(value) != _NODE_SIZE:
                raise ValueError(f"Leaf must be {_NODE_SIZE} bytes, got {len(value)}")

        ordered = [(value, i) for i, value in enumerate(leaf_values)]
        if sort_leaves:
            ordered.sort(key=lambda item: item[0])

        tree = _make_tree([value for value, _ in ordered])

        tree_indices = [0] * len(leaf_values)
        for leaf_index, (_, value_index) in enumerate(ordered):
            tree_indices[value_index] = len(tree) - leaf_index - 1

        values = [(value, tree_indices[i]) for i, value in enumerate(leaf_values)]
        return cls(tree, values)

    @classmethod
    def from_identifiers(cls, identifiers: list[str]) -> MerkleTree:
        """Build a tree whose leaves are keccak256(identifier)."""
        return cls.of([leaf_for(identifier) for identifier in identifiers])

    @classmethod
    def load(cls, data: dict[str, Any]) -> MerkleTree:
        """Rebuild a tree from dump() output, validating every node.

        Raises:
            InvalidTreeError: If the dump is malformed or inconsistent.
        """
        if not isinstance(data, dict) or data.get("format") != TREE_FORMAT:
            raise InvalidTreeError(f"Unknown tree format: expected {TREE_FORMAT!r}")

        try:
            tree = [from_hex(node) for node in data["tree"]]
            values = [
                (from_hex(entry["value"]), int(entry["treeIndex"]))
                for entry in data["values"]
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidTreeError(f"Malformed tree dump: {e}") from e

        if not tree or not values:
            raise InvalidTreeError("Tree dump has no nodes")
        if any(len(node) != _NODE_SIZE for node in tree):
            raise InvalidTreeError(f"Tree nodes must be {_NODE_SIZE} bytes")

        for value, tree_index in values:
            is_leaf = 0 <= tree_index < len(tree) and _left_child(tree_index) >= len(tree)
            if not is_leaf:
                raise InvalidTreeError(f"Index {tree_index} is not a leaf")
            if tree[tree_index] != value:
                raise InvalidTreeError(f"Value does not match leaf at index {tree_index}")

        for i, node in enumerate(tree):
            left, right = _left_child(i), _right_child(i)
            if right >= len(tree):
                if left < len(tree):
                    raise InvalidTreeError(f"Node {i} has a single child")
            elif node != _hash_pair(tree[left], tree[right]):
                raise InvalidTreeError(f"Hash mismatch at node {i}")

        return cls(tree, values)

    def dump(self) -> dict[str, Any]:
        """Canonical JSON-serializable form, reloadable with load()."""
        return {
            "format": TREE_FORMAT,
            "tree": [to_hex(node) for node in self._tree],
            "values": [
                {"value": to_hex(value), "treeIndex": tree_index}
                for value, tree_index in self._values
            ],
        }

    @property
    def root(self) -> bytes:
        """The 32-byte Merkle root."""
        return self._tree[0]

    @property
    def root_hex(self) -> str:
        return to_hex(self.root)

    @property
    def leaf_count(self) -> int:
        return len(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def leaf_lookup(self, leaf: bytes) -> int:
        """Index of a leaf value in insertion order.

        Raises:
            IdentifierNotFoundError: If the leaf is not in the tree.
        """
        for i, (value, _) in enumerate(self._values):
            if value == leaf:
                return i
        raise IdentifierNotFoundError("Leaf is not in tree")

    def get_proof(self, index: int) -> MerkleProof:
        """Generate an inclusion proof for the value at the given index.

        Raises:
            IndexError: If index is out of range.
        """
        if index < 0 or index >= len(self._values):
            raise IndexError(
                f"Value index {index} out of range [0, {len(self._values)})"
            )

        leaf, tree_index = self._values[index]
        siblings = []
        i = tree_index
        while i > 0:
            siblings.append(self._tree[_sibling(i)])
            i = _parent(i)

        return MerkleProof(
            leaf=leaf,
            tree_index=tree_index,
            siblings=tuple(siblings),
            root=self.root,
        )

    def get_proof_for(self, identifier: str) -> MerkleProof:
        """Inclusion proof for an identifier.

        Raises:
            IdentifierNotFoundError: If the identifier is not a member.
        """
        return self.get_proof(self.leaf_lookup(leaf_for(identifier)))


def build_tree(identifiers: list[str]) -> MerkleTree:
    """Build the membership tree for a grant set's identifiers.

    Raises:
        EmptySetError: If identifiers is empty.
    """
    if not identifiers:
        raise EmptySetError("No identifiers found")
    return MerkleTree.from_identifiers(list(identifiers))


def proof_bytes(tree: MerkleTree, identifier: str) -> bytes:
    """Deterministic proof bytes for an identifier, the OPRF input.

    Raises:
        IdentifierNotFoundError: If the identifier is not a member.
    """
    proof = tree.get_proof_for(identifier)
    if tree.leaf_count == 1:
        return tree.root
    return proof.to_bytes()


def verify_membership(tree: MerkleTree, identifier: str) -> bool:
    """Check an identifier is a member of the tree. Fail-closed."""
    try:
        proof = tree.get_proof_for(identifier)
    except IdentifierNotFoundError:
        return False
    return verify_proof(proof)


def load_tree(data: dict[str, Any]) -> MerkleTree:
    """Rebuild a MerkleTree from its dump."""
    return MerkleTree.load(data)
