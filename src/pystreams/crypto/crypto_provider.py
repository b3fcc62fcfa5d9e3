from abc import ABC, abstractmethod
from typing import Optional

from .ciphersuites import ChannelCiphersuite


class CryptoProvider(ABC):
    """Pluggable primitive set used by the channel engine.

    A provider is bound to one channel ciphersuite for its lifetime: a signing
    scheme, an AEAD, a key-exchange/wrap scheme (HPKE) and a keyed hash.
    """

    @property
    @abstractmethod
    def active_ciphersuite(self) -> ChannelCiphersuite:
        pass

    @abstractmethod
    def keyed_hash(self, key: bytes, data: bytes) -> bytes:
        """
        Collision-resistant keyed hash (HMAC with the suite hash).
        """
        pass

    @abstractmethod
    def kdf(self, ikm: bytes, info: bytes, length: int, salt: Optional[bytes] = None) -> bytes:
        pass

    @abstractmethod
    def aead_encrypt(self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> bytes:
        pass

    @abstractmethod
    def aead_decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes, aad: bytes) -> bytes:
        pass

    @abstractmethod
    def sign(self, private_key: bytes, data: bytes) -> bytes:
        pass

    @abstractmethod
    def verify(self, public_key: bytes, data: bytes, signature: bytes) -> None:
        pass

    @abstractmethod
    def hpke_seal(self, public_key: bytes, info: bytes, aad: bytes, ptxt: bytes) -> tuple[bytes, bytes]:
        pass

    @abstractmethod
    def hpke_open(self, private_key: bytes, kem_output: bytes, info: bytes, aad: bytes, ctxt: bytes) -> bytes:
        pass

    @abstractmethod
    def derive_signature_key_pair(self, seed: bytes) -> tuple[bytes, bytes]:
        pass

    @abstractmethod
    def derive_exchange_key_pair(self, seed: bytes) -> tuple[bytes, bytes]:
        pass

    @abstractmethod
    def aead_key_size(self) -> int:
        pass

    @abstractmethod
    def aead_nonce_size(self) -> int:
        pass

    @abstractmethod
    def hash_len(self) -> int:
        pass
