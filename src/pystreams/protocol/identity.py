"""User identity: a signing key pair and a key-exchange key pair from one seed."""
from __future__ import annotations

from typing import Optional

from ..channels.exceptions import ConfigurationError
from ..crypto.crypto_provider import CryptoProvider
from ..crypto.utils import secure_wipe


class Identity:
    """Key material owned by a single user.

    Both key pairs are derived deterministically from ``seed`` under the
    provider's active ciphersuite. The signing public key doubles as the
    user's publisher id. Private keys are kept in mutable buffers so that
    ``close()`` can wipe them.
    """

    def __init__(self, crypto: CryptoProvider, seed: bytes):
        if not seed:
            raise ConfigurationError("identity seed must not be empty")
        self._crypto = crypto
        self._seed = bytearray(seed)
        sig_sk, sig_pk = crypto.derive_signature_key_pair(bytes(seed))
        ke_sk, ke_pk = crypto.derive_exchange_key_pair(bytes(seed))
        self._sig_sk: Optional[bytearray] = bytearray(sig_sk)
        self._ke_sk: Optional[bytearray] = bytearray(ke_sk)
        self.public_key = sig_pk
        self.exchange_public_key = ke_pk

    @property
    def publisher_id(self) -> bytes:
        return self.public_key

    @property
    def closed(self) -> bool:
        return self._sig_sk is None

    def _require_open(self) -> None:
        if self._sig_sk is None or self._ke_sk is None:
            raise ConfigurationError("identity key material has been released")

    def sign(self, data: bytes) -> bytes:
        self._require_open()
        assert self._sig_sk is not None
        return self._crypto.sign(bytes(self._sig_sk), data)

    def open_wrap(self, kem_output: bytes, info: bytes, aad: bytes, wrapped: bytes) -> bytes:
        """Unwrap a key sealed to this identity's exchange key.

        Raises:
            InvalidTag: If the wrap was not addressed to this identity.
        """
        self._require_open()
        assert self._ke_sk is not None
        return self._crypto.hpke_open(bytes(self._ke_sk), kem_output, info, aad, wrapped)

    def close(self) -> None:
        """Wipe private key material. Safe to call more than once."""
        for buf in (self._sig_sk, self._ke_sk, self._seed):
            if buf is not None:
                secure_wipe(buf)
        self._sig_sk = None
        self._ke_sk = None

    def __enter__(self) -> "Identity":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
