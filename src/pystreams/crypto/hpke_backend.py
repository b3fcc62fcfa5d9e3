"""Key wrapping for keyload recipients, on top of rfc9180-py (imported as ``rfc9180``).

A keyload block addressed to a public key is an HPKE base-mode ciphertext of
the branch session key under the recipient's exchange key. One HPKE context
is built per channel ciphersuite and reused.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Tuple

from rfc9180 import HPKE, KEMID, KDFID, AEADID
from rfc9180.exceptions import OpenError
from cryptography.exceptions import InvalidTag

from ..channels.exceptions import UnsupportedCipherSuiteError
from .ciphersuites import AEAD, KDF, KEM, ChannelCiphersuite

_KEMS = {
    KEM.DHKEM_X25519_HKDF_SHA256: KEMID.DHKEM_X25519_HKDF_SHA256,
    KEM.DHKEM_X448_HKDF_SHA512: KEMID.DHKEM_X448_HKDF_SHA512,
}
_KDFS = {
    KDF.HKDF_SHA256: KDFID.HKDF_SHA256,
    KDF.HKDF_SHA512: KDFID.HKDF_SHA512,
}
_AEADS = {
    AEAD.AES_128_GCM: AEADID.AES_128_GCM,
    AEAD.AES_256_GCM: AEADID.AES_256_GCM,
    AEAD.CHACHA20_POLY1305: AEADID.CHACHA20_POLY1305,
}


@lru_cache(maxsize=None)
def hpke_for(suite: ChannelCiphersuite) -> HPKE:
    """HPKE context matching the KEM, KDF and AEAD of ``suite``.

    Raises:
        UnsupportedCipherSuiteError: If rfc9180-py has no counterpart for a component.
    """
    try:
        return HPKE(_KEMS[suite.kem], _KDFS[suite.kdf], _AEADS[suite.aead])
    except KeyError as e:
        raise UnsupportedCipherSuiteError(
            f"suite {suite.suite_id:#06x} has no HPKE mapping for {e}"
        ) from e


def wrap_key(suite: ChannelCiphersuite, exchange_public_key: bytes, info: bytes, aad: bytes, key: bytes
             ) -> Tuple[bytes, bytes]:
    """Seal ``key`` to ``exchange_public_key``. Returns (kem_output, wrapped)."""
    return hpke_for(suite).seal_base(exchange_public_key, info, aad, key)


def unwrap_key(suite: ChannelCiphersuite, exchange_private_key: bytes, kem_output: bytes, info: bytes,
               aad: bytes, wrapped: bytes) -> bytes:
    """Open a wrapped key.

    Raises:
        InvalidTag: If the block was not sealed to this private key or was altered.
    """
    try:
        return hpke_for(suite).open_base(kem_output, exchange_private_key, info, aad, wrapped)
    except OpenError as e:
        raise InvalidTag("key wrap did not open") from e
