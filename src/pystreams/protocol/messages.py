"""Masking and signing of envelopes.

Order of operations when sending: build the envelope with its plaintext
payloads, encrypt the masked payload with the branch key using the header
and public payload as associated data, then sign the result. Receivers
verify the signature first and decrypt afterwards.
"""
from __future__ import annotations

import dataclasses

from ..channels.exceptions import SignatureInvalid
from ..codec.envelope import associated_data, signing_bytes
from ..crypto import labels
from ..crypto.crypto_provider import CryptoProvider
from ..crypto.utils import random_bytes
from .address import Address
from .data_structures import Envelope
from .identity import Identity


def default_branch_key(crypto: CryptoProvider, announcement_link: Address) -> bytes:
    """Key of the unrestricted branch rooted at the announcement.

    Anyone who knows the announcement link can derive it, so packets on this
    branch are integrity protected but readable by every channel reader.
    """
    return crypto.kdf(announcement_link.serialize(), labels.PUBLIC_BRANCH_KEY, crypto.aead_key_size())


def seal_masked(crypto: CryptoProvider, key: bytes, env: Envelope, plaintext: bytes) -> Envelope:
    """Return ``env`` with ``plaintext`` encrypted into its masked payload."""
    nonce = random_bytes(crypto.aead_nonce_size())
    ct = crypto.aead_encrypt(key, nonce, plaintext, associated_data(env))
    return dataclasses.replace(env, masked_payload=nonce + ct)


def open_masked(crypto: CryptoProvider, key: bytes, env: Envelope) -> bytes:
    """Decrypt the masked payload of ``env``.

    Raises:
        InvalidTag: If the key is wrong or any authenticated byte changed.
        ValueError: If the masked payload is too short to hold a nonce.
    """
    n = crypto.aead_nonce_size()
    if len(env.masked_payload) < n:
        raise ValueError("masked payload shorter than nonce")
    nonce, ct = env.masked_payload[:n], env.masked_payload[n:]
    return crypto.aead_decrypt(key, nonce, ct, associated_data(env))


def sign_envelope(identity: Identity, env: Envelope) -> Envelope:
    return dataclasses.replace(env, signature=identity.sign(signing_bytes(env)))


def verify_envelope(crypto: CryptoProvider, env: Envelope, public_key: bytes) -> None:
    """Check the envelope signature against ``public_key``.

    Raises:
        SignatureInvalid: If the signature is absent or does not verify.
    """
    if env.signature is None:
        raise SignatureInvalid(f"message at {env.link} is not signed")
    crypto.verify(public_key, signing_bytes(env), env.signature)
