from __future__ import annotations

import secrets


def secure_wipe(buf: bytearray) -> None:
    """
    Overwrite the provided bytearray with zeros in-place.
    """
    for i in range(len(buf)):
        buf[i] = 0


def random_bytes(n: int) -> bytes:
    """Return n bytes from the OS CSPRNG (session keys, nonces, channel nonces)."""
    return secrets.token_bytes(n)


def random_uint64() -> int:
    return secrets.randbits(64)
