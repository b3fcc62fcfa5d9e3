"""Pre-shared key registry, populated out-of-band."""
from __future__ import annotations

from typing import Dict, List, Optional

from ..crypto import labels
from ..crypto.crypto_provider import CryptoProvider
from ..crypto.utils import secure_wipe

PSK_ID_SIZE = 16
PSK_SIZE = 32


def psk_from_seed(crypto: CryptoProvider, seed: bytes) -> bytes:
    """Derive a PSK secret from a shared human-level seed."""
    return crypto.kdf(seed, labels.PSK_FROM_SEED, PSK_SIZE)


def psk_id_from_secret(crypto: CryptoProvider, secret: bytes) -> bytes:
    """Public 16-byte identifier of a PSK, safe to place in keyload blocks."""
    return crypto.kdf(secret, labels.PSK_ID, PSK_ID_SIZE)


class PskStore:
    """Maps psk_id -> secret for one user."""

    def __init__(self, crypto: CryptoProvider):
        self._crypto = crypto
        self._psks: Dict[bytes, bytearray] = {}

    def store(self, secret: bytes) -> bytes:
        if not secret:
            raise ValueError("PSK secret must not be empty")
        psk_id = psk_id_from_secret(self._crypto, secret)
        self._psks[psk_id] = bytearray(secret)
        return psk_id

    def remove(self, psk_id: bytes) -> bool:
        buf = self._psks.pop(psk_id, None)
        if buf is None:
            return False
        secure_wipe(buf)
        return True

    def get(self, psk_id: bytes) -> Optional[bytes]:
        buf = self._psks.get(psk_id)
        return bytes(buf) if buf is not None else None

    def ids(self) -> List[bytes]:
        return list(self._psks.keys())

    def __contains__(self, psk_id: object) -> bool:
        return psk_id in self._psks

    def __len__(self) -> int:
        return len(self._psks)

    def clear(self) -> None:
        for buf in self._psks.values():
            secure_wipe(buf)
        self._psks.clear()
