from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, List, Optional


class KEM(IntEnum):
    """Key encapsulation mechanisms used for keyload key wrapping (RFC 9180 ids)."""
    DHKEM_X25519_HKDF_SHA256 = 0x0020
    DHKEM_X448_HKDF_SHA512 = 0x0021


class KDF(IntEnum):
    """Key derivation functions (RFC 9180 ids)."""
    HKDF_SHA256 = 0x0001
    HKDF_SHA512 = 0x0003


class AEAD(IntEnum):
    """AEAD algorithms protecting masked payloads (RFC 9180 ids)."""
    AES_128_GCM = 0x0001
    AES_256_GCM = 0x0002
    CHACHA20_POLY1305 = 0x0003


class SignatureScheme(Enum):
    """Signature schemes usable as publisher identities."""

    ED25519 = "Ed25519"
    ED448 = "Ed448"


@dataclass(frozen=True)
class ChannelCiphersuite:
    """
    Channel ciphersuite combining KEM, KDF, AEAD and signature scheme.
    Selected by the Author at announcement time and fixed for the channel.
    """

    suite_id: int
    name: str
    kem: KEM
    kdf: KDF
    aead: AEAD
    signature: SignatureScheme


_REGISTRY_BY_ID: Dict[int, ChannelCiphersuite] = {
    0x0001: ChannelCiphersuite(
        suite_id=0x0001,
        name="STREAMS_128_DHKEMX25519_AES128GCM_SHA256_Ed25519",
        kem=KEM.DHKEM_X25519_HKDF_SHA256,
        kdf=KDF.HKDF_SHA256,
        aead=AEAD.AES_128_GCM,
        signature=SignatureScheme.ED25519,
    ),
    0x0003: ChannelCiphersuite(
        suite_id=0x0003,
        name="STREAMS_128_DHKEMX25519_CHACHAPOLY_SHA256_Ed25519",
        kem=KEM.DHKEM_X25519_HKDF_SHA256,
        kdf=KDF.HKDF_SHA256,
        aead=AEAD.CHACHA20_POLY1305,
        signature=SignatureScheme.ED25519,
    ),
    0x0005: ChannelCiphersuite(
        suite_id=0x0005,
        name="STREAMS_256_DHKEMX448_AES256GCM_SHA512_Ed448",
        kem=KEM.DHKEM_X448_HKDF_SHA512,
        kdf=KDF.HKDF_SHA512,
        aead=AEAD.AES_256_GCM,
        signature=SignatureScheme.ED448,
    ),
    0x0007: ChannelCiphersuite(
        suite_id=0x0007,
        name="STREAMS_256_DHKEMX448_CHACHAPOLY_SHA512_Ed448",
        kem=KEM.DHKEM_X448_HKDF_SHA512,
        kdf=KDF.HKDF_SHA512,
        aead=AEAD.CHACHA20_POLY1305,
        signature=SignatureScheme.ED448,
    ),
}


def get_ciphersuite_by_id(suite_id: int) -> Optional[ChannelCiphersuite]:
    return _REGISTRY_BY_ID.get(suite_id)


def list_ciphersuite_ids() -> List[int]:
    return sorted(_REGISTRY_BY_ID.keys())
