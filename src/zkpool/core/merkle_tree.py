"""Fixed-height Merkle tree over field elements (mirror of the on-chain account tree)."""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from zkpool.utils.hash import FieldHasher, ZERO_VALUE, default_hasher, is_field_element
from zkpool.exceptions import IndexOutOfRangeError, TreeFullError


@dataclass(frozen=True)
class MerklePath:
    """
    Authentication path for one leaf.

    ``path_indices`` is the leaf index as an integer; bit ``i`` is 1 when the
    node at level ``i`` is a right child. This is the form the circuits take.
    """

    index: int
    leaf: int
    root: int
    path_elements: Tuple[int, ...]
    path_indices: int

    def compute_root(self, hasher: FieldHasher, leaf: Optional[int] = None) -> int:
        """Fold the path from ``leaf`` (default: the stored leaf) up to a root."""
        current = self.leaf if leaf is None else leaf
        for level, sibling in enumerate(self.path_elements):
            if (self.path_indices >> level) & 1:
                current = hasher.hash(sibling, current)
            else:
                current = hasher.hash(current, sibling)
        return current

    def verify(self, hasher: FieldHasher) -> bool:
        return self.compute_root(hasher) == self.root

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "leaf": self.leaf,
            "root": self.root,
            "path_elements": list(self.path_elements),
            "path_indices": self.path_indices,
        }


class MerkleTree:
    """
    Append-only Merkle tree of account commitments.

    This implementation uses a binary tree structure where:
    - Leaves are account commitments, inserted left to right
    - Empty subtrees hash to precomputed zero values
    - The root after every insertion is kept in ``root_history``
    """

    # Constants
    DEFAULT_HEIGHT = 20

    def __init__(
        self,
        tree_height: int = DEFAULT_HEIGHT,
        leaves: Optional[Iterable[int]] = None,
        hasher: Optional[FieldHasher] = None,
    ):
        """
        Initialize a tree, optionally with initial leaves.

        Args:
            tree_height: Number of levels below the root
            leaves: Commitments to insert in order
            hasher: Two-to-one field hash (default SHA-256 field hasher)

        Raises:
            ValueError: If height is invalid
        """
        if tree_height < 1 or tree_height > 32:
            raise ValueError("Tree height must be between 1 and 32")

        self.height = tree_height
        self.capacity = 2 ** tree_height
        self.hasher = hasher or default_hasher()

        self.leaves: List[int] = []
        # (level, position) -> hash
        self.nodes: Dict[Tuple[int, int], int] = {}

        self.zeros: List[int] = [ZERO_VALUE]
        for _ in range(tree_height):
            self.zeros.append(self.hasher.hash(self.zeros[-1], self.zeros[-1]))

        self._roots: List[int] = [self.zeros[tree_height]]

        if leaves:
            self.bulk_insert(leaves)

    @property
    def root(self) -> int:
        """Current root."""
        return self._roots[-1]

    @property
    def root_history(self) -> List[int]:
        """root_history[n] is the root of the tree holding the first n leaves."""
        return list(self._roots)

    def root_at(self, leaf_count: int) -> int:
        """Root of the tree when it held leaf_count leaves."""
        if leaf_count < 0 or leaf_count > len(self.leaves):
            raise IndexOutOfRangeError(f"No root for leaf count {leaf_count}")
        return self._roots[leaf_count]

    def insert(self, leaf: int) -> int:
        """
        Append a leaf and return its index.

        Raises:
            TreeFullError: If the tree is at capacity
            ValueError: If leaf is not a field element
        """
        if not is_field_element(leaf):
            raise ValueError(f"Leaf is not a field element: {leaf!r}")
        if len(self.leaves) >= self.capacity:
            raise TreeFullError(f"Tree is full (max {self.capacity} leaves)")

        index = len(self.leaves)
        self.leaves.append(leaf)
        self.nodes[(0, index)] = leaf
        self._roots.append(self._compute_parent_hashes(index))
        return index

    def bulk_insert(self, leaves: Iterable[int]) -> List[int]:
        """Append several leaves in order."""
        return [self.insert(leaf) for leaf in leaves]

    def _compute_parent_hashes(self, index: int) -> int:
        """Update parent hashes up the tree from a leaf; return the new root."""
        position = index
        current = self.nodes[(0, index)]

        for level in range(self.height):
            sibling = self.nodes.get((level, position ^ 1), self.zeros[level])
            if position % 2 == 0:
                current = self.hasher.hash(current, sibling)
            else:
                current = self.hasher.hash(sibling, current)
            position >>= 1
            self.nodes[(level + 1, position)] = current

        return current

    def _siblings(self, index: int) -> Tuple[int, ...]:
        siblings = []
        position = index
        for level in range(self.height):
            siblings.append(self.nodes.get((level, position ^ 1), self.zeros[level]))
            position >>= 1
        return tuple(siblings)

    def insertion_siblings(self, index: int) -> Tuple[int, ...]:
        """
        Siblings leaf ``index`` saw at the moment it was inserted.

        Left siblings cover only earlier leaves and are final; right siblings
        were still empty then.

        Raises:
            IndexOutOfRangeError: If index is beyond the next free slot
        """
        if not isinstance(index, int) or index < 0 or index > len(self.leaves):
            raise IndexOutOfRangeError(
                f"Invalid leaf index: {index} (tree holds {len(self.leaves)} leaves)"
            )

        siblings = []
        position = index
        for level in range(self.height):
            sibling = position ^ 1
            if sibling < position:
                siblings.append(self.nodes[(level, sibling)])
            else:
                siblings.append(self.zeros[level])
            position >>= 1
        return tuple(siblings)

    def path(self, index: int) -> MerklePath:
        """
        Return the authentication path of an existing leaf.

        Raises:
            IndexOutOfRangeError: If index >= number of leaves
        """
        if not isinstance(index, int) or index < 0 or index >= len(self.leaves):
            raise IndexOutOfRangeError(
                f"Invalid leaf index: {index} (tree holds {len(self.leaves)} leaves)"
            )

        return MerklePath(
            index=index,
            leaf=self.leaves[index],
            root=self.root,
            path_elements=self._siblings(index),
            path_indices=index,
        )

    def insertion_path(self, leaf: int) -> MerklePath:
        """
        Path the next leaf would take, without inserting it.

        ``root`` is the root the tree would have after insertion.

        Raises:
            TreeFullError: If the tree is at capacity
        """
        index = len(self.leaves)
        if index >= self.capacity:
            raise TreeFullError(f"Tree is full (max {self.capacity} leaves)")

        siblings = self._siblings(index)
        partial = MerklePath(
            index=index, leaf=leaf, root=0, path_elements=siblings, path_indices=index
        )
        return MerklePath(
            index=index,
            leaf=leaf,
            root=partial.compute_root(self.hasher),
            path_elements=siblings,
            path_indices=index,
        )

    def index_of(self, leaf: int) -> Optional[int]:
        """Index of the first occurrence of leaf, or None."""
        try:
            return self.leaves.index(leaf)
        except ValueError:
            return None

    def copy(self) -> "MerkleTree":
        return MerkleTree(self.height, leaves=self.leaves, hasher=self.hasher)

    def get_state(self) -> dict:
        """
        Get the current state of the tree for serialization.

        Returns:
            dict: Tree state including leaves, height, and root
        """
        return {
            "height": self.height,
            "capacity": self.capacity,
            "num_leaves": len(self.leaves),
            "leaves": list(self.leaves),
            "root": self.root,
        }

    def __len__(self) -> int:
        """Return the number of leaves in the tree."""
        return len(self.leaves)

    def __repr__(self) -> str:
        """String representation of the tree."""
        return (
            f"MerkleTree(height={self.height}, "
            f"leaves={len(self.leaves)}/{self.capacity}, "
            f"root={hex(self.root)[:18]}...)"
        )
