"""Concrete CryptoProvider using the 'cryptography' and 'rfc9180' Python packages.

DefaultCryptoProvider selects hash, AEAD, signature and HPKE algorithms from
the active channel ciphersuite. Identity keys are derived deterministically
from a seed so a user can be recreated from the same seed and ciphersuite.
"""
from typing import Optional

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.asymmetric import x25519, x448
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.ed448 import (
    Ed448PrivateKey,
    Ed448PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.exceptions import InvalidSignature

from .hpke_backend import unwrap_key, wrap_key
from .crypto_provider import CryptoProvider
from .ciphersuites import (
    AEAD,
    KDF as KDFEnum,
    KEM,
    ChannelCiphersuite,
    SignatureScheme,
    get_ciphersuite_by_id,
)
from . import labels
from ..channels.exceptions import InvalidSignatureError, UnsupportedCipherSuiteError


class DefaultCryptoProvider(CryptoProvider):
    """Concrete CryptoProvider implementation using the cryptography library.

    Args:
        suite_id: Channel ciphersuite ID (default: 0x0001).

    Raises:
        UnsupportedCipherSuiteError: If the ciphersuite ID is not supported.

    Example:
        >>> crypto = DefaultCryptoProvider(suite_id=0x0001)
        >>> # X25519 key wrapping, AES-128-GCM payloads, Ed25519 signatures
    """
    def __init__(self, suite_id: int = 0x0001):
        cs = get_ciphersuite_by_id(suite_id)
        if not cs:
            raise UnsupportedCipherSuiteError(f"Unsupported channel ciphersuite id: {suite_id:#06x}")
        self._suite: ChannelCiphersuite = cs

    @property
    def active_ciphersuite(self) -> ChannelCiphersuite:
        return self._suite

    # --- Internals for algorithm selection ---
    def _hash_algo(self):
        if self._suite.kdf == KDFEnum.HKDF_SHA256:
            return hashes.SHA256()
        if self._suite.kdf == KDFEnum.HKDF_SHA512:
            return hashes.SHA512()
        raise UnsupportedCipherSuiteError("Unsupported KDF")

    def _aead_impl(self):
        if self._suite.aead in (AEAD.AES_128_GCM, AEAD.AES_256_GCM):
            return AESGCM
        if self._suite.aead == AEAD.CHACHA20_POLY1305:
            return ChaCha20Poly1305
        raise UnsupportedCipherSuiteError("Unsupported AEAD")

    def keyed_hash(self, key: bytes, data: bytes) -> bytes:
        """HMAC over data with the suite hash.

        Used for channel instance and message id derivation, so it must be
        deterministic across users sharing a ciphersuite.
        """
        h = hmac.HMAC(key, self._hash_algo())
        h.update(data)
        return h.finalize()

    def kdf(self, ikm: bytes, info: bytes, length: int, salt: Optional[bytes] = None) -> bytes:
        """HKDF (extract and expand) with the suite hash.

        Args:
            ikm: Input keying material.
            info: Context label; callers pass a value from ``labels``.
            length: Desired output length in bytes.
            salt: Optional salt for the extract step.
        """
        hkdf = HKDF(
            algorithm=self._hash_algo(),
            length=length,
            salt=salt,
            info=info,
        )
        return hkdf.derive(ikm)

    def aead_encrypt(self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> bytes:
        aead = self._aead_impl()
        return aead(key).encrypt(nonce, plaintext, aad)

    def aead_decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes, aad: bytes) -> bytes:
        """Decrypt using the active AEAD implementation.

        Raises:
            InvalidTag: If authentication fails.
        """
        aead = self._aead_impl()
        return aead(key).decrypt(nonce, ciphertext, aad)

    def sign(self, private_key: bytes, data: bytes) -> bytes:
        scheme = self._suite.signature
        if scheme == SignatureScheme.ED25519:
            sk = Ed25519PrivateKey.from_private_bytes(private_key)
            return sk.sign(data)
        if scheme == SignatureScheme.ED448:
            sk = Ed448PrivateKey.from_private_bytes(private_key)  # type: ignore[assignment]
            return sk.sign(data)
        raise UnsupportedCipherSuiteError("Unsupported signature scheme")

    def verify(self, public_key: bytes, data: bytes, signature: bytes) -> None:
        """Verify signature according to the active signature scheme.

        Raises:
            InvalidSignatureError: If the signature does not verify or the key is malformed.
        """
        scheme = self._suite.signature
        try:
            if scheme == SignatureScheme.ED25519:
                pk = Ed25519PublicKey.from_public_bytes(public_key)
                pk.verify(signature, data)
                return
            if scheme == SignatureScheme.ED448:
                pk = Ed448PublicKey.from_public_bytes(public_key)  # type: ignore[assignment]
                pk.verify(signature, data)
                return
        except InvalidSignature as e:
            raise InvalidSignatureError("invalid signature") from e
        except ValueError as e:
            raise InvalidSignatureError("malformed public key") from e
        raise UnsupportedCipherSuiteError("Unsupported signature scheme")

    def hpke_seal(self, public_key: bytes, info: bytes, aad: bytes, ptxt: bytes) -> tuple[bytes, bytes]:
        return wrap_key(self._suite, public_key, info, aad, ptxt)

    def hpke_open(self, private_key: bytes, kem_output: bytes, info: bytes, aad: bytes, ctxt: bytes) -> bytes:
        """HPKE base mode open using the active suite.

        Raises:
            InvalidTag: If decryption or authentication fails.
        """
        return unwrap_key(self._suite, private_key, kem_output, info, aad, ctxt)

    def derive_signature_key_pair(self, seed: bytes) -> tuple[bytes, bytes]:
        """Derive a deterministic signing key pair from a user seed.

        Returns:
            Tuple of (private_key_bytes, public_key_bytes).
        """
        scheme = self._suite.signature
        if scheme == SignatureScheme.ED25519:
            skm = self.kdf(seed, labels.SIGNATURE_KEY, 32)
            sk = Ed25519PrivateKey.from_private_bytes(skm)
            return sk.private_bytes_raw(), sk.public_key().public_bytes_raw()
        if scheme == SignatureScheme.ED448:
            skm = self.kdf(seed, labels.SIGNATURE_KEY, 57)
            sk448 = Ed448PrivateKey.from_private_bytes(skm)
            return sk448.private_bytes_raw(), sk448.public_key().public_bytes_raw()
        raise UnsupportedCipherSuiteError("Unsupported signature scheme")

    def derive_exchange_key_pair(self, seed: bytes) -> tuple[bytes, bytes]:
        """Derive a deterministic key-exchange (HPKE) key pair from a user seed.

        For X25519/X448 the scalar is clamped per RFC 7748.
        """
        kem = self._suite.kem
        if kem == KEM.DHKEM_X25519_HKDF_SHA256:
            # 32-byte scalar, clamp per RFC 7748
            skm = bytearray(self.kdf(seed, labels.EXCHANGE_KEY, 32))
            skm[0] &= 248
            skm[31] &= 127
            skm[31] |= 64
            sk = x25519.X25519PrivateKey.from_private_bytes(bytes(skm))
            return sk.private_bytes_raw(), sk.public_key().public_bytes_raw()
        if kem == KEM.DHKEM_X448_HKDF_SHA512:
            # 56-byte scalar, clamp per RFC 7748
            skm = bytearray(self.kdf(seed, labels.EXCHANGE_KEY, 56))
            skm[0] &= 252
            skm[55] |= 128
            sk448 = x448.X448PrivateKey.from_private_bytes(bytes(skm))
            return sk448.private_bytes_raw(), sk448.public_key().public_bytes_raw()
        raise UnsupportedCipherSuiteError("Unsupported KEM")

    def aead_key_size(self) -> int:
        if self._suite.aead == AEAD.AES_128_GCM:
            return 16
        if self._suite.aead in (AEAD.AES_256_GCM, AEAD.CHACHA20_POLY1305):
            return 32
        raise UnsupportedCipherSuiteError("Unsupported AEAD")

    def aead_nonce_size(self) -> int:
        # All supported AEADs use 96-bit nonces
        return 12

    def hash_len(self) -> int:
        return self._hash_algo().digest_size
