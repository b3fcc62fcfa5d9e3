"""Big-endian integer and length-prefixed vector helpers.

Conventions
- "write_*" functions return the encoded bytes for the given value.
- "read_*" functions take a buffer and an offset, and return a tuple of
  (decoded_value, new_offset). They raise TruncatedEnvelope if the buffer
  ends before the value is complete.
- Vectors carry a 1-, 2- or 4-byte length prefix (opaque8/16/32).
"""

from __future__ import annotations

from ..channels.exceptions import TruncatedEnvelope


def _require(buf: bytes, offset: int, need: int) -> None:
    if offset < 0 or len(buf) - offset < need:
        raise TruncatedEnvelope(
            f"buffer too short at offset {offset}: need {need}, have {max(0, len(buf) - offset)}"
        )


def write_uint8(x: int) -> bytes:
    return x.to_bytes(1, "big")


def write_uint16(x: int) -> bytes:
    return x.to_bytes(2, "big")


def write_uint32(x: int) -> bytes:
    return x.to_bytes(4, "big")


def write_uint64(x: int) -> bytes:
    """Encode an unsigned 64-bit integer (sequence numbers, channel nonces)."""
    return x.to_bytes(8, "big")


def _read_uint(buf: bytes, offset: int, size: int) -> tuple[int, int]:
    _require(buf, offset, size)
    return int.from_bytes(buf[offset : offset + size], "big"), offset + size


def read_uint8(buf: bytes, offset: int = 0) -> tuple[int, int]:
    return _read_uint(buf, offset, 1)


def read_uint16(buf: bytes, offset: int = 0) -> tuple[int, int]:
    return _read_uint(buf, offset, 2)


def read_uint32(buf: bytes, offset: int = 0) -> tuple[int, int]:
    return _read_uint(buf, offset, 4)


def read_uint64(buf: bytes, offset: int = 0) -> tuple[int, int]:
    return _read_uint(buf, offset, 8)


def read_fixed(buf: bytes, offset: int, size: int) -> tuple[bytes, int]:
    """Read exactly ``size`` raw bytes starting at offset."""
    _require(buf, offset, size)
    return bytes(buf[offset : offset + size]), offset + size


def _write_vector(data: bytes, length_bytes: int) -> bytes:
    limit = (1 << (8 * length_bytes)) - 1
    if len(data) > limit:
        raise ValueError(f"vector too long for {length_bytes}-byte length: {len(data)}")
    return len(data).to_bytes(length_bytes, "big") + data


def _read_vector(buf: bytes, offset: int, length_bytes: int) -> tuple[bytes, int]:
    length, offset = _read_uint(buf, offset, length_bytes)
    return read_fixed(buf, offset, length)


def write_opaque8(data: bytes) -> bytes:
    """Encode a vector with an 8-bit length prefix (max 255 bytes)."""
    return _write_vector(data, 1)


def write_opaque16(data: bytes) -> bytes:
    """Encode a vector with a 16-bit length prefix (max 65535 bytes)."""
    return _write_vector(data, 2)


def write_opaque32(data: bytes) -> bytes:
    """Encode a vector with a 32-bit length prefix."""
    return _write_vector(data, 4)


def read_opaque8(buf: bytes, offset: int = 0) -> tuple[bytes, int]:
    return _read_vector(buf, offset, 1)


def read_opaque16(buf: bytes, offset: int = 0) -> tuple[bytes, int]:
    return _read_vector(buf, offset, 2)


def read_opaque32(buf: bytes, offset: int = 0) -> tuple[bytes, int]:
    return _read_vector(buf, offset, 4)
