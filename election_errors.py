"""
Error taxonomy for the election trust core.

Every failure the core can report is one of these classes. None of them
are retried internally: ``DoubleVote`` and ``InsufficientQuorum`` are
expected, terminal-for-that-attempt outcomes that the calling protocol
must handle.
"""

from typing import Optional


class ElectionCoreError(Exception):
    """Base exception for election core operations"""
    pass


class InvalidInputLength(ElectionCoreError):
    """Raised when a fixed-size input has the wrong length"""

    def __init__(self, field_name: str, expected: int, actual: int):
        self.field_name = field_name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{field_name} must be {expected} bytes, got {actual}")


class IndexOutOfRange(ElectionCoreError):
    """Raised when a tree index or slot is outside the addressable range"""

    def __init__(self, index: int, bound: int, reason: Optional[str] = None):
        self.index = index
        self.bound = bound
        message = f"Index {index} out of range [0, {bound})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DoubleVote(ElectionCoreError):
    """Raised when a nullifier is already present in the nullifier set"""

    def __init__(self, nullifier_hex: str):
        self.nullifier_hex = nullifier_hex
        super().__init__(f"Nullifier already recorded: {nullifier_hex[:16]}...")


class InvalidMembershipProof(ElectionCoreError):
    """Raised when a Merkle membership proof does not verify"""
    pass


class InvalidEligibilityProof(ElectionCoreError):
    """Raised when the external eligibility proof is rejected"""
    pass


class InsufficientQuorum(ElectionCoreError):
    """Raised when fewer than k contributions are available"""

    def __init__(self, current: int, required: int, item_id: Optional[str] = None):
        self.current = current
        self.required = required
        self.item_id = item_id
        where = f" for item {item_id}" if item_id is not None else ""
        super().__init__(
            f"Need {required} contributions{where}, have {current}")


class NonInvertibleElement(ElectionCoreError):
    """Raised when interpolation hits a zero denominator (duplicate indices)"""
    pass


class ElectionClosed(ElectionCoreError):
    """Raised when a nullifier insertion is attempted after election close"""

    def __init__(self, election_id_hex: str):
        self.election_id_hex = election_id_hex
        super().__init__(f"Election {election_id_hex[:16]}... is closed")


class CorruptStateError(ElectionCoreError):
    """Raised when an imported snapshot is inconsistent with itself"""
    pass


class RecoveryLockedError(ElectionCoreError):
    """Raised when a recovery is executed before its time lock expires"""

    def __init__(self, unlock_time: float):
        self.unlock_time = unlock_time
        super().__init__(f"Recovery locked until {unlock_time:.0f}")
