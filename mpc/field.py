"""
Prime Field Arithmetic
Fixed 256-bit prime field used by the secret-sharing layer. Polynomial
evaluation goes through galois; interpolation uses plain integer
arithmetic with an explicit extended-Euclid inverse so that a zero
denominator surfaces as NonInvertibleElement instead of a library error.
"""

import logging
import secrets
from functools import lru_cache
from typing import List, Sequence

import galois

from election_errors import InvalidInputLength, NonInvertibleElement

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

# secp256k1 base-field prime, 2**256 - 2**32 - 977
DEFAULT_MODULUS = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
ELEMENT_SIZE = 32


def mod_inverse(a: int, p: int) -> int:
    """Multiplicative inverse of a modulo p via the extended Euclidean algorithm"""
    a %= p
    if a == 0:
        raise NonInvertibleElement("Zero has no inverse; duplicate share indices?")

    old_r, r = a, p
    old_s, s = 1, 0
    while r != 0:
        quotient = old_r // r
        old_r, r = r, old_r - quotient * r
        old_s, s = s, old_s - quotient * s

    if old_r != 1:
        raise NonInvertibleElement(f"{a} is not invertible modulo {p}")
    return old_s % p


@lru_cache(maxsize=8)
def _field_class(modulus: int):
    return galois.GF(modulus)


class PrimeField:
    """GF(p) context shared by split, combine and the threshold service"""

    def __init__(self, modulus: int = DEFAULT_MODULUS):
        if modulus < 3:
            raise ValueError(f"Modulus must be an odd prime, got {modulus}")

        self.modulus = modulus
        self.element_size = (modulus.bit_length() + 7) // 8
        self.GF = _field_class(modulus)

        logger.debug(f"Initialized prime field of {modulus.bit_length()} bits")

    def random_element(self) -> int:
        """Uniform element from the OS CSPRNG"""
        return secrets.randbelow(self.modulus)

    def random_nonzero_element(self) -> int:
        return 1 + secrets.randbelow(self.modulus - 1)

    def validate_element(self, element: int) -> bool:
        return isinstance(element, int) and 0 <= element < self.modulus

    def evaluate_polynomial(self, coefficients: Sequence[int], points: Sequence[int]) -> List[int]:
        """
        Evaluate the polynomial with ascending `coefficients` at every point.

        coefficients[0] is the constant term.
        """
        poly = galois.Poly(self.GF(list(coefficients)), order="asc")
        values = poly(self.GF(list(points)))
        return [int(v) for v in values]

    def element_to_bytes(self, element: int) -> bytes:
        """Fixed-width big-endian encoding sized to the modulus"""
        if not self.validate_element(element):
            raise ValueError("Value is not a field element")
        return element.to_bytes(self.element_size, "big")

    def element_from_bytes(self, data: bytes) -> int:
        if len(data) != self.element_size:
            raise InvalidInputLength("field element", self.element_size, len(data))
        element = int.from_bytes(data, "big")
        if element >= self.modulus:
            raise ValueError("Encoded value is not reduced modulo the field prime")
        return element

    def __repr__(self) -> str:
        return f"PrimeField({self.modulus.bit_length()} bits)"
