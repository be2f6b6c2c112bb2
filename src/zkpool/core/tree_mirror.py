"""Local mirror of the on-chain account tree.

The contract applies insertions lazily: every operation appends its output
commitment (and emits ``NewAccount``) right away, but the root it accepts for
the next proof may lag behind until a tree-update proof folds the pending
leaves in. The mirror therefore tracks two roots:

    committed root  - what ``chain.last_account_root()`` accepts right now
    local root      - the root over every leaf seen so far

When they differ, :meth:`TreeMirror.reconcile` builds the tree-update
witness that moves the chain from the committed root to the local root.

Concurrency: one writer (``sync``) and any number of readers (paths, roots).
"""

import logging
import threading
from typing import Iterable, List, Optional, Set, Tuple

from zkpool.chain.interface import ChainInterface, NewAccountEvent, decode_events
from zkpool.core.merkle_tree import MerklePath, MerkleTree
from zkpool.core.witness import TreeUpdateArgs, TreeUpdateWitness
from zkpool.models.schemas import TreeState
from zkpool.utils.hash import FieldHasher, default_hasher
from zkpool.utils.locks import ReadWriteLock
from zkpool.exceptions import TreeFullError, TreeSyncError, ValidationError

logger = logging.getLogger(__name__)


class TreeMirror:
    """Append-only replica of the account tree plus the spent-nullifier view."""

    def __init__(
        self,
        tree_height: int = MerkleTree.DEFAULT_HEIGHT,
        hasher: Optional[FieldHasher] = None,
        store=None,
    ):
        """
        Args:
            tree_height: Height of the on-chain tree
            hasher: Field hasher matching the circuits
            store: Optional DatabaseManager; cached events are loaded on
                construction and new events are saved after every sync
        """
        self.hasher = hasher or default_hasher()
        self.store = store
        self._tree = MerkleTree(tree_height, hasher=self.hasher)
        self._events: List[NewAccountEvent] = []
        self._spent: Set[int] = set()
        self._lock = ReadWriteLock()
        # Serializes syncs; chain calls happen under this, not under _lock
        self._sync_lock = threading.Lock()
        # Leading events known to be in the store
        self._persisted = 0

        if store is not None:
            cached = self._contiguous_prefix(store.load_events())
            if cached:
                with self._lock.write():
                    self._apply(self._validate_batch(cached))
                self._persisted = len(cached)
                logger.info("Loaded %d cached leaves from store", len(cached))

    @property
    def height(self) -> int:
        return self._tree.height

    @property
    def local_root(self) -> int:
        with self._lock.read():
            return self._tree.root

    @property
    def account_count(self) -> int:
        with self._lock.read():
            return len(self._tree)

    def events(self) -> List[NewAccountEvent]:
        """Snapshot of every synced event, in index order."""
        with self._lock.read():
            return list(self._events)

    def is_spent(self, nullifier_hash: int) -> bool:
        """Whether a synced event has already revealed this nullifier hash."""
        with self._lock.read():
            return nullifier_hash in self._spent

    def sync(self, chain: ChainInterface) -> int:
        """
        Pull NewAccount events past the local cursor and append them in order.

        Safe to call repeatedly; a call with nothing new is a no-op.

        Returns:
            int: Number of leaves appended

        Raises:
            TreeSyncError: On a gap, a reorder, a conflicting duplicate, or a
                chain that reports fewer leaves than the mirror holds
            StorageError: If the leaf cache cannot be written; the unsaved
                leaves are retried on the next sync
        """
        with self._sync_lock:
            cursor = self.account_count
            chain_count = chain.account_count()
            if chain_count < cursor:
                raise TreeSyncError(
                    f"Chain reports {chain_count} accounts but mirror holds {cursor}"
                )

            staged: List[NewAccountEvent] = []
            if chain_count > cursor:
                events = decode_events(chain.get_new_account_events(cursor))
                with self._lock.write():
                    staged = self._validate_batch(events)
                    self._apply(staged)

            self._persist()

        if chain_count == cursor:
            return 0

        if len(staged) + cursor < chain_count:
            logger.debug(
                "Synced to %d of %d accounts; remaining events not yet available",
                cursor + len(staged),
                chain_count,
            )
        else:
            logger.debug("Synced %d new leaves (cursor %d -> %d)", len(staged), cursor, chain_count)
        return len(staged)

    def _validate_batch(self, events: Iterable[NewAccountEvent]) -> List[NewAccountEvent]:
        """Check a batch against local state without mutating it. Caller holds the write lock."""
        cursor = len(self._tree)
        expected = cursor
        staged: List[NewAccountEvent] = []

        for event in events:
            if event.index < cursor:
                if self._tree.leaves[event.index] != event.commitment:
                    raise TreeSyncError(
                        f"Leaf {event.index} conflicts with the mirrored commitment"
                    )
                continue
            if event.index < expected:
                raise TreeSyncError(f"Event for index {event.index} arrived out of order")
            if event.index > expected:
                raise TreeSyncError(f"Gap in account stream: expected {expected}, got {event.index}")
            staged.append(event)
            expected += 1

        if cursor + len(staged) > self._tree.capacity:
            raise TreeFullError(f"Tree is full (max {self._tree.capacity} leaves)")
        return staged

    def _apply(self, events: List[NewAccountEvent]) -> None:
        for event in events:
            self._tree.insert(event.commitment)
            self._events.append(event)
            self._spent.add(event.nullifier_hash)

    def _persist(self) -> None:
        """Save every event not yet in the store. Caller holds the sync lock."""
        if self.store is None:
            return
        with self._lock.read():
            pending = self._events[self._persisted:]
        if pending:
            self.store.save_events(pending)
            self._persisted += len(pending)

    @staticmethod
    def _contiguous_prefix(events: List[NewAccountEvent]) -> List[NewAccountEvent]:
        """Cached events up to the first hole; the chain refills the rest."""
        prefix: List[NewAccountEvent] = []
        for event in events:
            if event.index != len(prefix):
                logger.warning(
                    "Leaf cache has a hole at index %d; the chain refills from there",
                    len(prefix),
                )
                break
            prefix.append(event)
        return prefix

    def proof_for(self, index: int) -> MerklePath:
        """
        Authentication path of leaf ``index`` against the local root.

        Raises:
            IndexOutOfRangeError: If index >= current leaf count
        """
        with self._lock.read():
            return self._tree.path(index)

    def find_leaf(self, commitment: int) -> Optional[int]:
        with self._lock.read():
            return self._tree.index_of(commitment)

    def operation_paths(
        self, input_commitment: Optional[int], output_commitment: int
    ) -> Tuple[MerklePath, MerklePath]:
        """
        Input membership path and output insertion path, from one consistent view.

        A zero input account has no leaf; it gets an all-zero path at index 0
        against the current root.

        Raises:
            ValidationError: If the input commitment is not in the mirror
            TreeFullError: If there is no room for the output leaf
        """
        with self._lock.read():
            if input_commitment is None:
                input_path = MerklePath(
                    index=0,
                    leaf=0,
                    root=self._tree.root,
                    path_elements=tuple(self._tree.zeros[:self._tree.height]),
                    path_indices=0,
                )
            else:
                index = self._tree.index_of(input_commitment)
                if index is None:
                    raise ValidationError(
                        "Input account commitment is not in the synced tree",
                        field="account",
                    )
                input_path = self._tree.path(index)
            output_path = self._tree.insertion_path(output_commitment)
        return input_path, output_path

    def committed_index(self, committed_root: int) -> Optional[int]:
        """Leaf count at which the local tree had ``committed_root``, or None."""
        with self._lock.read():
            history = self._tree.root_history
        for count in range(len(history) - 1, -1, -1):
            if history[count] == committed_root:
                return count
        return None

    def reconcile(self, chain: ChainInterface) -> Optional[TreeUpdateWitness]:
        """
        Bring the mirror up to date and bridge any lag in the chain's root.

        Returns:
            TreeUpdateWitness covering every pending leaf, or None when the
            chain already accepts the local root

        Raises:
            TreeSyncError: If the chain's root is unknown even after one re-sync
        """
        self.sync(chain)
        committed_root = chain.last_account_root()
        start = self.committed_index(committed_root)

        if start is None:
            logger.warning("Chain root %s unknown locally; re-syncing once", hex(committed_root))
            self.sync(chain)
            committed_root = chain.last_account_root()
            start = self.committed_index(committed_root)
            if start is None:
                raise TreeSyncError(
                    f"Chain root {hex(committed_root)} does not match any mirrored tree state"
                )

        with self._lock.read():
            if start == len(self._tree):
                return None
            witness = self._build_tree_update(start)

        logger.info(
            "Tree drift: %d pending leaves (index %d onward) need a tree update",
            len(witness.args.leaves),
            start,
        )
        return witness

    def _build_tree_update(self, start: int) -> TreeUpdateWitness:
        """Caller holds the read lock."""
        pending = tuple(self._tree.leaves[start:])
        end = len(self._tree)
        path_elements = tuple(self._tree.insertion_siblings(index) for index in range(start, end))

        last = MerklePath(end - 1, pending[-1], self._tree.root, path_elements[-1], end - 1)
        if not last.verify(self.hasher):
            raise TreeSyncError("Pending leaf paths do not reproduce the local root")

        args = TreeUpdateArgs(
            old_root=self._tree.root_at(start),
            new_root=self._tree.root,
            start_index=start,
            leaves=pending,
        )
        return TreeUpdateWitness(args=args, path_elements=path_elements)

    def state(self, committed_root: Optional[int] = None) -> TreeState:
        """Summary for logging and display."""
        with self._lock.read():
            return TreeState(
                tree_height=self._tree.height,
                account_count=len(self._tree),
                local_root=hex(self._tree.root),
                committed_root=hex(committed_root) if committed_root is not None else None,
                spent_nullifiers=len(self._spent),
            )

    def __len__(self) -> int:
        return self.account_count

    def __repr__(self) -> str:
        return f"TreeMirror(height={self.height}, accounts={self.account_count})"
