"""
Incremental Merkle Stream
Append-only Merkle tree for confirmed votes. Each append recomputes only
the right spine of the tree (the O(log n) path from the new leaf to the
root) inside a per-level node arena, so throughput does not degrade as the
stream grows.

The pairing rule is the one every tree in this package uses, which makes
the stream root identical to a static registry built over the same leaves
with LeafOrdering.INSERTION.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from commitments.hashing import constant_time_equal, from_hex, leaf_hash, node_hash, require_length
from election_errors import CorruptStateError, IndexOutOfRange, InvalidInputLength

from .proof import (
    EMPTY_TREE_ROOT,
    MerkleProof,
    build_levels,
    compute_root,
    path_from_levels,
    root_of_levels,
    tree_height,
)

logger = logging.getLogger(__name__)

CheckpointListener = Callable[['Checkpoint'], None]

# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass(frozen=True)
class Checkpoint:
    """Snapshot of the stream taken at an exact leaf count"""
    root: bytes
    leaf_count: int
    timestamp: float
    height: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'root': self.root.hex(),
            'leaf_count': self.leaf_count,
            'timestamp': self.timestamp,
            'height': self.height,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Checkpoint':
        return cls(
            root=from_hex(data['root'], 'checkpoint root'),
            leaf_count=int(data['leaf_count']),
            timestamp=float(data['timestamp']),
            height=int(data['height']),
        )


@dataclass(frozen=True)
class MerkleUpdate:
    """
    Result of a single append.

    `affected_path` lists the recomputed nodes from the new leaf's level-0
    hash up to the new root. `siblings` and `path_bits` are the nodes the
    path was folded against, so the update can be checked on its own.
    """
    new_leaf: bytes
    new_root: bytes
    affected_path: Tuple[bytes, ...]
    siblings: Tuple[bytes, ...]
    path_bits: int
    leaf_index: int
    leaf_count: int
    previous_root: bytes
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'new_leaf': self.new_leaf.hex(),
            'new_root': self.new_root.hex(),
            'affected_path': [node.hex() for node in self.affected_path],
            'siblings': [s.hex() for s in self.siblings],
            'path_bits': self.path_bits,
            'leaf_index': self.leaf_index,
            'leaf_count': self.leaf_count,
            'previous_root': self.previous_root.hex(),
            'timestamp': self.timestamp,
        }


# ============================================================================
# INCREMENTAL STREAM
# ============================================================================


class IncrementalMerkleStream:
    """Append-only Merkle tree with periodic checkpoints"""

    def __init__(self, checkpoint_interval: int = 100, max_checkpoints: int = 100,
                 listener_workers: int = 2):
        if checkpoint_interval < 1:
            raise ValueError("checkpoint_interval must be positive")
        if max_checkpoints < 1:
            raise ValueError("max_checkpoints must be positive")

        self.checkpoint_interval = checkpoint_interval
        self.max_checkpoints = max_checkpoints

        # levels[0] = leaf hashes, levels[-1] = [root]
        self._leaves: List[bytes] = []
        self._levels: List[List[bytes]] = [[]]
        self._root = EMPTY_TREE_ROOT
        self._checkpoints: Deque[Checkpoint] = deque(maxlen=max_checkpoints)

        self._lock = threading.RLock()
        self._listeners: List[CheckpointListener] = []
        self._executor = ThreadPoolExecutor(
            max_workers=listener_workers, thread_name_prefix="checkpoint")
        self._closed = False

        self.update_count = 0

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    def append(self, leaf: bytes) -> MerkleUpdate:
        """Append one leaf, recomputing only its path to the root"""
        leaf = require_length(leaf, "leaf")
        with self._lock:
            previous_root = self._root
            index = len(self._leaves)
            self._leaves.append(leaf)
            self._levels[0].append(leaf_hash(leaf))

            affected, siblings, path_bits = self._update_spine(index)
            self._root = affected[-1]
            self.update_count += 1

            update = MerkleUpdate(
                new_leaf=leaf,
                new_root=self._root,
                affected_path=tuple(affected),
                siblings=tuple(siblings),
                path_bits=path_bits,
                leaf_index=index,
                leaf_count=len(self._leaves),
                previous_root=previous_root,
            )

            if len(self._leaves) % self.checkpoint_interval == 0:
                self._create_checkpoint()

        logger.debug(f"Stream append #{index}: root {update.new_root.hex()[:16]}...")
        return update

    def append_batch(self, leaves: Sequence[bytes]) -> List[MerkleUpdate]:
        """Append leaves in order; the whole batch is validated first"""
        checked = [require_length(leaf, "leaf") for leaf in leaves]
        with self._lock:
            return [self.append(leaf) for leaf in checked]

    def _update_spine(self, index: int) -> Tuple[List[bytes], List[bytes], int]:
        """Recompute the right spine after leaf `index` was added at level 0"""
        position = index
        current = self._levels[0][index]
        affected = [current]
        siblings: List[bytes] = []
        path_bits = 0

        level = 0
        while len(self._levels[level]) > 1:
            row = self._levels[level]
            if position % 2 == 0:
                # Rightmost node with no partner pairs with itself
                sibling = row[position + 1] if position + 1 < len(row) else current
                current = node_hash(current, sibling)
                path_bits |= 1 << level
            else:
                sibling = row[position - 1]
                current = node_hash(sibling, current)
            siblings.append(sibling)

            position //= 2
            if level + 1 == len(self._levels):
                self._levels.append([])
            parent_row = self._levels[level + 1]
            if position == len(parent_row):
                parent_row.append(current)
            else:
                parent_row[position] = current

            affected.append(current)
            level += 1

        return affected, siblings, path_bits

    # ------------------------------------------------------------------
    # Verification and proofs
    # ------------------------------------------------------------------

    @staticmethod
    def verify_update(update: MerkleUpdate, previous_root: bytes) -> bool:
        """
        Check that an update's path is internally consistent and ends in
        the claimed new root.

        Only the declared previous root is compared against
        `previous_root`; continuity across updates is not re-derived here.
        Callers that need it should chain checkpoints.
        """
        if not update.affected_path:
            return False
        if len(update.affected_path) != len(update.siblings) + 1:
            return False
        if not constant_time_equal(update.previous_root, previous_root):
            return False
        if not constant_time_equal(update.affected_path[0], leaf_hash(update.new_leaf)):
            return False

        current = update.affected_path[0]
        for level, sibling in enumerate(update.siblings):
            if (update.path_bits >> level) & 1:
                current = node_hash(current, sibling)
            else:
                current = node_hash(sibling, current)
            if not constant_time_equal(current, update.affected_path[level + 1]):
                return False

        if not constant_time_equal(update.affected_path[-1], update.new_root):
            return False
        return constant_time_equal(
            compute_root(update.new_leaf, update.siblings, update.path_bits), update.new_root)

    def prove_membership(self, index: int) -> MerkleProof:
        """Proof for a committed leaf against the current root"""
        with self._lock:
            siblings, path_bits = path_from_levels(self._levels, index)
            return MerkleProof(
                leaf=self._leaves[index],
                siblings=tuple(siblings),
                path_bits=path_bits,
                root=self._root,
                leaf_index=index,
            )

    def root_at(self, leaf_count: int) -> bytes:
        """Root the stream had when it held its first `leaf_count` leaves"""
        with self._lock:
            if leaf_count < 0 or leaf_count > len(self._leaves):
                raise IndexOutOfRange(leaf_count, len(self._leaves))
            if leaf_count == len(self._leaves):
                return self._root
            prefix = list(self._leaves[:leaf_count])
        return root_of_levels(build_levels(prefix))

    def snapshot(self) -> Tuple[Tuple[bytes, ...], bytes]:
        """Consistent (leaves, root) pair; never a half-applied append"""
        with self._lock:
            return tuple(self._leaves), self._root

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def root(self) -> bytes:
        with self._lock:
            return self._root

    @property
    def leaf_count(self) -> int:
        with self._lock:
            return len(self._leaves)

    @property
    def height(self) -> int:
        with self._lock:
            return tree_height(len(self._leaves))

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get_leaf(self, index: int) -> bytes:
        with self._lock:
            if index < 0 or index >= len(self._leaves):
                raise IndexOutOfRange(index, len(self._leaves))
            return self._leaves[index]

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def add_checkpoint_listener(self, listener: CheckpointListener):
        """Register a callback run off the append path for every checkpoint"""
        with self._lock:
            self._listeners.append(listener)

    def _create_checkpoint(self):
        checkpoint = Checkpoint(
            root=self._root,
            leaf_count=len(self._leaves),
            timestamp=time.time(),
            height=tree_height(len(self._leaves)),
        )
        self._checkpoints.append(checkpoint)
        logger.info(
            f"Checkpoint at {checkpoint.leaf_count} leaves: root {checkpoint.root.hex()[:16]}...")

        if self._closed:
            return
        for listener in self._listeners:
            future = self._executor.submit(listener, checkpoint)
            future.add_done_callback(self._report_listener_failure)

    @staticmethod
    def _report_listener_failure(future: Future):
        error = future.exception()
        if error is not None:
            logger.error(f"Checkpoint listener failed: {error}")

    @property
    def checkpoints(self) -> List[Checkpoint]:
        with self._lock:
            return list(self._checkpoints)

    @property
    def latest_checkpoint(self) -> Optional[Checkpoint]:
        with self._lock:
            return self._checkpoints[-1] if self._checkpoints else None

    def rollback_to(self, checkpoint: Checkpoint):
        """
        Truncate the stream back to a checkpoint.

        The prefix is rebuilt and must reproduce the checkpoint root,
        otherwise the stream is left untouched and CorruptStateError is
        raised.
        """
        with self._lock:
            if checkpoint.leaf_count > len(self._leaves):
                raise IndexOutOfRange(checkpoint.leaf_count, len(self._leaves) + 1,
                                      "checkpoint is ahead of the stream")

            prefix = self._leaves[:checkpoint.leaf_count]
            levels = build_levels(prefix)
            rebuilt_root = root_of_levels(levels)
            if not constant_time_equal(rebuilt_root, checkpoint.root):
                raise CorruptStateError(
                    f"Checkpoint root does not match the stream at {checkpoint.leaf_count} leaves")

            self._leaves = prefix
            self._levels = levels
            self._root = rebuilt_root
            kept = [cp for cp in self._checkpoints if cp.leaf_count <= checkpoint.leaf_count]
            self._checkpoints = deque(kept, maxlen=self.max_checkpoints)

        logger.warning(f"Stream rolled back to {checkpoint.leaf_count} leaves")

    # ------------------------------------------------------------------
    # Stats and persistence
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'leaf_count': len(self._leaves),
                'height': tree_height(len(self._leaves)),
                'checkpoint_count': len(self._checkpoints),
                'update_count': self.update_count,
                'root': self._root.hex(),
            }

    def export_state(self) -> Dict[str, Any]:
        """Leaves plus the last checkpoint"""
        with self._lock:
            latest = self._checkpoints[-1] if self._checkpoints else None
            return {
                'leaves': [leaf.hex() for leaf in self._leaves],
                'root': self._root.hex(),
                'checkpoint_interval': self.checkpoint_interval,
                'last_checkpoint': latest.to_dict() if latest else None,
            }

    @classmethod
    def import_state(cls, data: Dict[str, Any], max_checkpoints: int = 100,
                     listener_workers: int = 2) -> 'IncrementalMerkleStream':
        """
        Replay exported leaves into a fresh stream.

        The last checkpoint's root must match the replayed prefix and the
        declared root must match the full replay; anything else fails
        closed with CorruptStateError.
        """
        try:
            leaves = [from_hex(leaf, 'leaf') for leaf in data['leaves']]
            declared_root = from_hex(data['root'], 'root')
            interval = int(data.get('checkpoint_interval', 100))
            raw_checkpoint = data.get('last_checkpoint')
            checkpoint = Checkpoint.from_dict(raw_checkpoint) if raw_checkpoint else None
        except (KeyError, TypeError, ValueError, InvalidInputLength) as e:
            raise CorruptStateError(f"Malformed stream snapshot: {e}") from e

        if checkpoint is not None:
            if checkpoint.leaf_count > len(leaves):
                raise CorruptStateError(
                    f"Stream snapshot truncated: checkpoint at {checkpoint.leaf_count}, "
                    f"only {len(leaves)} leaves")
            prefix_root = root_of_levels(build_levels(leaves[:checkpoint.leaf_count]))
            if not constant_time_equal(prefix_root, checkpoint.root):
                raise CorruptStateError("Stream snapshot checkpoint root mismatch")

        levels = build_levels(leaves)
        root = root_of_levels(levels)
        if not constant_time_equal(root, declared_root):
            raise CorruptStateError("Stream snapshot root mismatch")

        stream = cls(checkpoint_interval=interval, max_checkpoints=max_checkpoints,
                     listener_workers=listener_workers)
        stream._leaves = leaves
        stream._levels = levels
        stream._root = root
        if checkpoint is not None:
            stream._checkpoints.append(checkpoint)
        logger.info(f"Restored stream with {len(leaves)} leaves")
        return stream

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self):
        """Wait for pending checkpoint listeners and stop the worker pool"""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# ============================================================================
# STREAM MANAGER
# ============================================================================


class StreamManager:
    """Named incremental streams, one per election"""

    def __init__(self, checkpoint_interval: int = 100, max_checkpoints: int = 100,
                 listener_workers: int = 2):
        self.checkpoint_interval = checkpoint_interval
        self.max_checkpoints = max_checkpoints
        self.listener_workers = listener_workers
        self._streams: Dict[str, IncrementalMerkleStream] = {}
        self._lock = threading.Lock()

    def create_stream(self, stream_id: str) -> IncrementalMerkleStream:
        with self._lock:
            if stream_id in self._streams:
                raise ValueError(f"Stream {stream_id} already exists")
            stream = IncrementalMerkleStream(
                checkpoint_interval=self.checkpoint_interval,
                max_checkpoints=self.max_checkpoints,
                listener_workers=self.listener_workers,
            )
            self._streams[stream_id] = stream
        logger.info(f"Created stream {stream_id}")
        return stream

    def get_stream(self, stream_id: str) -> Optional[IncrementalMerkleStream]:
        with self._lock:
            return self._streams.get(stream_id)

    def append_to_stream(self, stream_id: str, leaf: bytes) -> Optional[MerkleUpdate]:
        stream = self.get_stream(stream_id)
        if stream is None:
            logger.warning(f"Append to unknown stream {stream_id}")
            return None
        return stream.append(leaf)

    def active_streams(self) -> List[str]:
        with self._lock:
            return list(self._streams)

    def remove_stream(self, stream_id: str) -> bool:
        with self._lock:
            stream = self._streams.pop(stream_id, None)
        if stream is None:
            return False
        stream.close()
        return True

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            streams = dict(self._streams)
        return {stream_id: stream.get_stats() for stream_id, stream in streams.items()}

    def close(self):
        with self._lock:
            streams = list(self._streams.values())
            self._streams.clear()
        for stream in streams:
            stream.close()
