"""
Nullifier Set
Per-election record of spent nullifiers. Membership is monotonic: entries
are only ever added, and insertion is refused once the election closes.
Check-and-insert is a single atomic step, so two concurrent casts with the
same nullifier can never both succeed.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Set

from commitments.hashing import from_hex, require_length
from election_errors import CorruptStateError, DoubleVote, ElectionClosed, InvalidInputLength

logger = logging.getLogger(__name__)


class NullifierSet:
    """Thread-safe spent-nullifier registry for one election"""

    def __init__(self, election_id: bytes):
        self.election_id = require_length(election_id, "election_id")
        self._nullifiers: Set[bytes] = set()
        self._lock = threading.Lock()
        self._closed = False
        self.closed_at: Optional[float] = None

    def check_and_insert(self, nullifier: bytes):
        """
        Record `nullifier` as spent.

        Raises DoubleVote if it was already recorded and ElectionClosed
        after `close()`; in both cases the set is unchanged.
        """
        nullifier = require_length(nullifier, "nullifier")
        with self._lock:
            if self._closed:
                raise ElectionClosed(self.election_id.hex())
            if nullifier in self._nullifiers:
                logger.warning(f"Double vote attempt: {nullifier.hex()[:16]}...")
                raise DoubleVote(nullifier.hex())
            self._nullifiers.add(nullifier)

    def contains(self, nullifier: bytes) -> bool:
        with self._lock:
            return bytes(nullifier) in self._nullifiers

    def __contains__(self, nullifier: bytes) -> bool:
        return self.contains(nullifier)

    def __len__(self) -> int:
        with self._lock:
            return len(self._nullifiers)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.closed_at = time.time()
        logger.info(
            f"Nullifier set for election {self.election_id.hex()[:16]}... closed "
            f"with {len(self._nullifiers)} entries")

    def export_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'election_id': self.election_id.hex(),
                'nullifiers': sorted(n.hex() for n in self._nullifiers),
                'count': len(self._nullifiers),
                'closed': self._closed,
            }

    @classmethod
    def import_state(cls, data: Dict[str, Any]) -> 'NullifierSet':
        """Restore from `export_state` output; a count mismatch fails closed"""
        try:
            nullifier_set = cls(from_hex(data['election_id'], 'election_id'))
            entries: List[bytes] = [from_hex(n, 'nullifier') for n in data['nullifiers']]
            declared_count = int(data['count'])
            closed = bool(data.get('closed', False))
        except (KeyError, TypeError, ValueError, InvalidInputLength) as e:
            raise CorruptStateError(f"Malformed nullifier snapshot: {e}") from e

        if len(set(entries)) != declared_count or len(entries) != declared_count:
            raise CorruptStateError(
                f"Nullifier snapshot holds {len(entries)} entries, declared {declared_count}")

        nullifier_set._nullifiers = set(entries)
        if closed:
            nullifier_set._closed = True
        return nullifier_set
