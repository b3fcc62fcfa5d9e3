"""Domain separation labels for every keyed hash, KDF and HPKE call.

Each derivation uses its own label so that a value computed for one purpose
can never be replayed as another.
"""
from __future__ import annotations

PREFIX = b"pystreams 1.0 "

# Identity derivation from a user seed
SIGNATURE_KEY = PREFIX + b"signature key"
EXCHANGE_KEY = PREFIX + b"exchange key"

# Address derivation
CHANNEL_INSTANCE = PREFIX + b"channel instance"
MESSAGE_ID = PREFIX + b"message id"
BRANCH_MESSAGE_ID = PREFIX + b"branch message id"

# Keys
PUBLIC_BRANCH_KEY = PREFIX + b"public branch key"
KEYLOAD_WRAP = PREFIX + b"keyload wrap"
PSK_FROM_SEED = PREFIX + b"psk"
PSK_ID = PREFIX + b"psk id"


def with_label(label: bytes, data: bytes) -> bytes:
    """Prefix data with a length-delimited label."""
    return len(label).to_bytes(1, "big") + label + data
