"""Keyload construction and processing, and the per-user branch key store.

A keyload opens a new branch: it carries a fresh random session key wrapped
once for every authorized public key (HPKE to the recipient's exchange key)
and once for every authorized PSK (AEAD under a key derived from the PSK).
The keyload's own link is the branch id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from cryptography.exceptions import InvalidTag

from ..channels.exceptions import EmptyKeyload
from ..crypto import labels
from ..crypto.crypto_provider import CryptoProvider
from ..crypto.utils import random_bytes, secure_wipe
from .address import Address
from .data_structures import Envelope, KeyWrapBlock, KeyWrapKind, MessageType, Skipped
from .identity import Identity
from .messages import sign_envelope
from .psk import PskStore

logger = logging.getLogger(__name__)

# (publisher id, exchange public key)
Recipient = Tuple[bytes, bytes]


@dataclass(frozen=True)
class Branch:
    """Access-controlled branch: session key plus the keys allowed to read it."""
    branch_id: Address
    session_key: bytes
    authorized_pubkeys: FrozenSet[bytes] = frozenset()
    authorized_psk_ids: FrozenSet[bytes] = frozenset()

    @property
    def is_public(self) -> bool:
        return not self.authorized_pubkeys and not self.authorized_psk_ids


class KeyStore:
    """branch id -> Branch for one user."""

    def __init__(self) -> None:
        self._branches: Dict[Address, Branch] = {}
        self._keys: Dict[Address, bytearray] = {}

    def add(self, branch: Branch) -> None:
        self._branches[branch.branch_id] = branch
        self._keys[branch.branch_id] = bytearray(branch.session_key)

    def get(self, branch_id: Address) -> Optional[Branch]:
        return self._branches.get(branch_id)

    def session_key(self, branch_id: Address) -> Optional[bytes]:
        key = self._keys.get(branch_id)
        return bytes(key) if key is not None else None

    def __contains__(self, branch_id: object) -> bool:
        return branch_id in self._branches

    def __len__(self) -> int:
        return len(self._branches)

    def clear(self) -> None:
        for key in self._keys.values():
            secure_wipe(key)
        self._keys.clear()
        self._branches.clear()


def _wrap_info(link: Address) -> bytes:
    return labels.KEYLOAD_WRAP + link.serialize()


def require_recipients(recipients: Sequence[Recipient], psk_ids: Sequence[bytes]) -> None:
    if not recipients and not psk_ids:
        raise EmptyKeyload("keyload needs at least one public-key or PSK recipient")


def build_keyload(
    crypto: CryptoProvider,
    identity: Identity,
    link: Address,
    seq: int,
    link_to: Address,
    recipients: Sequence[Recipient],
    psks: Sequence[Tuple[bytes, bytes]],
) -> Tuple[Envelope, Branch]:
    """Build and sign a keyload envelope at ``link``.

    Args:
        recipients: (publisher id, exchange public key) pairs to authorize.
        psks: (psk id, secret) pairs to authorize.

    Returns:
        The signed keyload and the Branch it opens.

    Raises:
        EmptyKeyload: If there are no recipients and no PSKs.
    """
    require_recipients(recipients, [pid for pid, _ in psks])
    session_key = random_bytes(crypto.aead_key_size())
    info = _wrap_info(link)
    blocks: List[KeyWrapBlock] = []
    for pub_id, ke_pk in recipients:
        enc, wrapped = crypto.hpke_seal(ke_pk, info, pub_id, session_key)
        blocks.append(KeyWrapBlock(KeyWrapKind.PUBLIC_KEY, pub_id, enc, wrapped))
    for psk_id, secret in psks:
        wrap_key = crypto.kdf(secret, info, crypto.aead_key_size())
        nonce = random_bytes(crypto.aead_nonce_size())
        wrapped = crypto.aead_encrypt(wrap_key, nonce, session_key, psk_id)
        blocks.append(KeyWrapBlock(KeyWrapKind.PSK, psk_id, nonce, wrapped))
    env = Envelope(
        msg_type=MessageType.KEYLOAD,
        link=link,
        publisher_id=identity.publisher_id,
        seq=seq,
        previous_links=(link_to,),
        key_wraps=tuple(blocks),
    )
    branch = Branch(
        branch_id=link,
        session_key=session_key,
        authorized_pubkeys=frozenset(pub_id for pub_id, _ in recipients),
        authorized_psk_ids=frozenset(pid for pid, _ in psks),
    )
    return sign_envelope(identity, env), branch


def _unwrap(crypto: CryptoProvider, env: Envelope, identity: Identity, psks: PskStore) -> Optional[bytes]:
    info = _wrap_info(env.link)
    for block in env.key_wraps:
        try:
            if block.kind == KeyWrapKind.PUBLIC_KEY and block.recipient_id == identity.publisher_id:
                return identity.open_wrap(block.kem_output, info, block.recipient_id, block.wrapped_key)
            if block.kind == KeyWrapKind.PSK:
                secret = psks.get(block.recipient_id)
                if secret is None:
                    continue
                wrap_key = crypto.kdf(secret, info, crypto.aead_key_size())
                return crypto.aead_decrypt(wrap_key, block.kem_output, block.wrapped_key, block.recipient_id)
        except (InvalidTag, ValueError) as e:
            logger.debug("Key wrap block for %s at %s did not open: %s", block.kind.name, env.link, e)
    return None


def process_keyload(
    crypto: CryptoProvider, env: Envelope, identity: Identity, psks: PskStore
) -> Union[Branch, Skipped]:
    """Recover the branch key from a keyload, or Skipped if none of its blocks open.

    The envelope signature must have been verified by the caller.
    """
    session_key = _unwrap(crypto, env, identity, psks)
    if session_key is None or len(session_key) != crypto.aead_key_size():
        return Skipped(env.link, MessageType.KEYLOAD, "not a recipient of this keyload")
    return Branch(
        branch_id=env.link,
        session_key=session_key,
        authorized_pubkeys=frozenset(recipient_pubkeys(env)),
        authorized_psk_ids=frozenset(
            b.recipient_id for b in env.key_wraps if b.kind == KeyWrapKind.PSK
        ),
    )


def recipient_pubkeys(env: Envelope) -> Iterable[bytes]:
    return [b.recipient_id for b in env.key_wraps if b.kind == KeyWrapKind.PUBLIC_KEY]
