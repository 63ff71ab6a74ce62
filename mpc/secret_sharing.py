"""
Shamir Secret Sharing
Split a field element into n shares so that any k of them reconstruct it
and fewer than k reveal nothing about it.

`combine` refuses to interpolate from fewer than degree + 1 shares: with
too few points Lagrange interpolation still produces a field element, just
not the secret, and that silent failure is never what a caller wants.
`interpolate_at_zero` keeps the raw, ungated interpolation for diagnostics.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from election_errors import InsufficientQuorum, InvalidInputLength, NonInvertibleElement

from .field import ELEMENT_SIZE, PrimeField, mod_inverse

logger = logging.getLogger(__name__)

INDEX_SIZE = 4

# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass(frozen=True)
class Share:
    """One evaluation of the sharing polynomial"""
    index: int
    value: int
    degree: int

    def __post_init__(self):
        if self.index <= 0:
            raise ValueError("Share index must be positive")
        if self.index >= 1 << (8 * INDEX_SIZE):
            raise ValueError(f"Share index must fit in {INDEX_SIZE} bytes")
        if self.degree < 0:
            raise ValueError("Polynomial degree must be non-negative")
        if self.value < 0:
            raise ValueError("Share value must be non-negative")

    @property
    def threshold(self) -> int:
        return self.degree + 1

    def to_bytes(self, element_size: int = ELEMENT_SIZE) -> bytes:
        """Wire form: 4-byte big-endian index || fixed-width big-endian value"""
        return self.index.to_bytes(INDEX_SIZE, "big") + self.value.to_bytes(element_size, "big")

    @classmethod
    def from_bytes(cls, data: bytes, degree: int, element_size: int = ELEMENT_SIZE) -> 'Share':
        expected = INDEX_SIZE + element_size
        if len(data) != expected:
            raise InvalidInputLength("share", expected, len(data))
        return cls(
            index=int.from_bytes(data[:INDEX_SIZE], "big"),
            value=int.from_bytes(data[INDEX_SIZE:], "big"),
            degree=degree,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'value': self.value.to_bytes(ELEMENT_SIZE, "big").hex(),
            'degree': self.degree,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Share':
        raw = bytes.fromhex(data['value'])
        if len(raw) != ELEMENT_SIZE:
            raise InvalidInputLength("share value", ELEMENT_SIZE, len(raw))
        return cls(
            index=int(data['index']),
            value=int.from_bytes(raw, "big"),
            degree=int(data['degree']),
        )

    def __repr__(self) -> str:
        # Share values are secret material
        return f"Share(index={self.index}, degree={self.degree})"


# ============================================================================
# SHAMIR SCHEME
# ============================================================================


class ShamirSecretSharing:
    """k-of-n Shamir sharing over an explicit prime field"""

    def __init__(self, field: Optional[PrimeField] = None):
        self.field = field or PrimeField()

    def split(self, secret: int, threshold: int, num_shares: int) -> List[Share]:
        """Share `secret` at points 1..num_shares"""
        if num_shares < 1:
            raise ValueError("Need at least one share")
        return self.split_at(secret, threshold, range(1, num_shares + 1))

    def split_at(self, secret: int, threshold: int, indices: Iterable[int]) -> List[Share]:
        """Share `secret` at caller-chosen nonzero evaluation points"""
        points = list(indices)
        if threshold < 1:
            raise ValueError(f"Threshold must be at least 1, got {threshold}")
        if threshold > len(points):
            raise ValueError(
                f"Threshold {threshold} cannot exceed number of shares {len(points)}")
        if len(points) >= self.field.modulus:
            raise ValueError("Number of shares must be smaller than the field modulus")
        if len(set(points)) != len(points):
            raise ValueError(f"Duplicate share indices: {points}")
        if any(x <= 0 or x >= self.field.modulus for x in points):
            raise ValueError("Share indices must be nonzero field elements")
        if not self.field.validate_element(secret):
            raise ValueError("Secret is not a field element")

        # a_0 = secret, a_1..a_{k-1} uniformly random
        coefficients = [secret] + [self.field.random_element() for _ in range(threshold - 1)]
        values = self.field.evaluate_polynomial(coefficients, points)

        degree = threshold - 1
        shares = [Share(index=x, value=y, degree=degree) for x, y in zip(points, values)]
        logger.debug(f"Split secret into {len(shares)} shares, threshold {threshold}")
        return shares

    def combine(self, shares: Sequence[Share]) -> int:
        """
        Reconstruct the secret from at least degree + 1 shares.

        Raises InsufficientQuorum when too few shares are supplied and
        NonInvertibleElement when two shares carry the same index.
        """
        if not shares:
            raise InsufficientQuorum(0, 1)

        degrees = {share.degree for share in shares}
        if len(degrees) != 1:
            raise ValueError(f"Shares come from polynomials of different degree: {sorted(degrees)}")
        required = degrees.pop() + 1
        if len(shares) < required:
            raise InsufficientQuorum(len(shares), required)

        for share in shares:
            if not self.field.validate_element(share.value):
                raise ValueError(f"Share {share.index} is not a field element")

        return self.interpolate_at_zero([(share.index, share.value) for share in shares])

    def interpolate_at_zero(self, points: Union[Mapping[int, int], Sequence[Tuple[int, int]]]) -> int:
        """Raw Lagrange interpolation at x = 0; no quorum gate"""
        pairs = list(points.items()) if isinstance(points, Mapping) else list(points)
        p = self.field.modulus

        secret = 0
        for i, (x_i, y_i) in enumerate(pairs):
            numerator = 1
            denominator = 1
            for j, (x_j, _) in enumerate(pairs):
                if i == j:
                    continue
                numerator = (numerator * -x_j) % p
                denominator = (denominator * (x_i - x_j)) % p

            if denominator == 0:
                raise NonInvertibleElement(f"Duplicate share index {x_i}")
            lagrange_coeff = (numerator * mod_inverse(denominator, p)) % p
            secret = (secret + y_i * lagrange_coeff) % p

        return secret

    # ------------------------------------------------------------------
    # 32-byte secrets
    # ------------------------------------------------------------------

    def secret_from_bytes(self, data: bytes) -> int:
        """Interpret a 32-byte key as a field element"""
        return self.field.element_from_bytes(data)

    def secret_to_bytes(self, secret: int) -> bytes:
        return self.field.element_to_bytes(secret)
