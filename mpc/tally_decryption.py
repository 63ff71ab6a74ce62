"""
Threshold Tally Decryption
Election authorities jointly hold an X25519 tally key as Shamir shares.
Tally payloads are sealed to the public half (ephemeral X25519, HKDF,
AES-GCM) and can only be opened for a given item once a quorum of
authorities has contributed its share for that item.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from commitments.hashing import constant_time_equal
from election_errors import CorruptStateError

from .field import PrimeField
from .secret_sharing import Share
from .threshold import Authority, ThresholdShareService

logger = logging.getLogger(__name__)

HKDF_INFO = b"election-core/v1/tally-seal"
NONCE_SIZE = 12


@dataclass(frozen=True)
class SealedItem:
    """Ciphertext for one tally item"""
    item_id: str
    ephemeral_public_key: bytes
    nonce: bytes
    ciphertext: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            'item_id': self.item_id,
            'ephemeral_public_key': self.ephemeral_public_key.hex(),
            'nonce': self.nonce.hex(),
            'ciphertext': self.ciphertext.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SealedItem':
        return cls(
            item_id=data['item_id'],
            ephemeral_public_key=bytes.fromhex(data['ephemeral_public_key']),
            nonce=bytes.fromhex(data['nonce']),
            ciphertext=bytes.fromhex(data['ciphertext']),
        )


def _raw_public_bytes(public_key: X25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _derive_key(shared_secret: bytes, item_id: str) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=HKDF_INFO + item_id.encode("utf-8"),
    ).derive(shared_secret)


class TallyDecryptionCoordinator:
    """k-of-n election authorities opening sealed tally items"""

    def __init__(self, threshold: int, authorities: Sequence[Authority],
                 field: Optional[PrimeField] = None):
        self.service = ThresholdShareService(threshold, authorities, field)
        self.public_key: Optional[X25519PublicKey] = None
        self._sealed: Dict[str, SealedItem] = {}
        self._opened: Dict[str, bytes] = {}

    @property
    def threshold(self) -> int:
        return self.service.threshold

    def generate_tally_key(self) -> Dict[str, Share]:
        """
        Create a fresh tally key and hand out its shares.

        The private key is never kept; only the public half stays here for
        sealing. Any previously sealed items become unopenable.
        """
        secret = self.service.field.random_element()
        private_key = X25519PrivateKey.from_private_bytes(
            self.service.sharing.secret_to_bytes(secret))
        shares = self.service.distribute_shares(secret)

        self.public_key = private_key.public_key()
        self._sealed.clear()
        self._opened.clear()
        logger.info(
            f"Generated tally key {_raw_public_bytes(self.public_key).hex()[:16]}... "
            f"for {len(shares)} authorities")
        return shares

    def seal(self, item_id: str, plaintext: bytes) -> SealedItem:
        """Encrypt `plaintext` so that it opens only with the reconstructed tally key"""
        if self.public_key is None:
            raise RuntimeError("Tally key has not been generated")

        ephemeral = X25519PrivateKey.generate()
        key = _derive_key(ephemeral.exchange(self.public_key), item_id)
        nonce = secrets.token_bytes(NONCE_SIZE)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, item_id.encode("utf-8"))

        sealed = SealedItem(
            item_id=item_id,
            ephemeral_public_key=_raw_public_bytes(ephemeral.public_key()),
            nonce=nonce,
            ciphertext=ciphertext,
        )
        self._sealed[item_id] = sealed
        logger.debug(f"Sealed tally item {item_id}")
        return sealed

    def submit_partial(self, authority_id: str, item_id: str, share: Share,
                       proof: Optional[bytes] = None) -> bool:
        if item_id not in self._sealed:
            logger.warning(f"Submission for unknown tally item {item_id}")
            return False
        return self.service.submit_partial(authority_id, item_id, share, proof)

    def open(self, item_id: str) -> bytes:
        """
        Reconstruct the tally key from the quorum for `item_id` and decrypt.

        Raises InsufficientQuorum until enough authorities have submitted.
        """
        if item_id in self._opened:
            return self._opened[item_id]
        sealed = self._sealed.get(item_id)
        if sealed is None:
            raise KeyError(f"Unknown tally item {item_id}")

        secret = self.service.tally(item_id)
        private_key = X25519PrivateKey.from_private_bytes(
            self.service.sharing.secret_to_bytes(secret))
        if not constant_time_equal(_raw_public_bytes(private_key.public_key()),
                                   _raw_public_bytes(self.public_key)):
            raise CorruptStateError(f"Reconstructed key for {item_id} does not match the tally key")

        peer = X25519PublicKey.from_public_bytes(sealed.ephemeral_public_key)
        key = _derive_key(private_key.exchange(peer), item_id)
        try:
            plaintext = AESGCM(key).decrypt(sealed.nonce, sealed.ciphertext, item_id.encode("utf-8"))
        except InvalidTag as e:
            raise CorruptStateError(f"Sealed item {item_id} failed authentication") from e

        self._opened[item_id] = plaintext
        logger.info(f"Opened tally item {item_id}")
        return plaintext

    def open_ready(self) -> Dict[str, bytes]:
        """Open every sealed item that has reached quorum"""
        return {
            item_id: self.open(item_id)
            for item_id in self._sealed
            if self.service.can_tally(item_id)
        }

    def pending_items(self) -> List[str]:
        return [item_id for item_id in self._sealed if not self.service.can_tally(item_id)]

    def get_stats(self) -> Dict[str, Any]:
        stats = self.service.get_stats()
        stats.update({
            'sealed_items': len(self._sealed),
            'opened_items': len(self._opened),
        })
        return stats
