"""Wire encoding for channel message envelopes.

Wire Layout
- Header:
  - uint8 version (currently 1)
  - uint8 msg_type (see MessageType)
  - link (44 bytes: instance_id || message_id)
  - opaque8 publisher_id
  - uint64 seq
  - uint8 n_prev, followed by n_prev links (44 bytes each)
- opaque32 public_payload
- opaque32 masked_payload (nonce || AEAD ciphertext, or empty)
- uint8 flags (bit 0: signature present, bit 1: key wraps present)
- [opaque16 signature]
- [uint16 count, KeyWrapBlock * count]

The signature covers every byte except the signature itself (see
``signing_bytes``). The masked payload is encrypted with the header and the
length-prefixed public payload as associated data (see ``associated_data``).
"""
from __future__ import annotations

from ..channels.exceptions import EnvelopeDecodeError, UnknownMsgType
from ..protocol.address import Address
from ..protocol.data_structures import Envelope, KeyWrapBlock, MessageType
from .binary import (
    read_opaque8,
    read_opaque16,
    read_opaque32,
    read_uint8,
    read_uint16,
    read_uint64,
    write_opaque8,
    write_opaque16,
    write_opaque32,
    write_uint8,
    write_uint16,
    write_uint64,
)

WIRE_VERSION = 1

FLAG_SIGNED = 0x01
FLAG_KEY_WRAPS = 0x02


def encode_header(env: Envelope) -> bytes:
    if len(env.previous_links) > 0xFF:
        raise ValueError("too many previous links")
    out = (
        write_uint8(WIRE_VERSION)
        + write_uint8(int(env.msg_type))
        + env.link.serialize()
        + write_opaque8(env.publisher_id)
        + write_uint64(env.seq)
        + write_uint8(len(env.previous_links))
    )
    for prev in env.previous_links:
        out += prev.serialize()
    return out


def _encode_key_wraps(env: Envelope) -> bytes:
    if not env.key_wraps:
        return b""
    out = write_uint16(len(env.key_wraps))
    for block in env.key_wraps:
        out += block.serialize()
    return out


def associated_data(env: Envelope) -> bytes:
    """Bytes bound to the masked payload's AEAD: header || opaque32(public_payload)."""
    return encode_header(env) + write_opaque32(env.public_payload)


def signing_bytes(env: Envelope) -> bytes:
    """Canonical bytes covered by the publisher signature."""
    flags = FLAG_KEY_WRAPS if env.key_wraps else 0
    return (
        associated_data(env)
        + write_opaque32(env.masked_payload)
        + write_uint8(flags)
        + _encode_key_wraps(env)
    )


def encode_envelope(env: Envelope) -> bytes:
    flags = 0
    if env.signature is not None:
        flags |= FLAG_SIGNED
    if env.key_wraps:
        flags |= FLAG_KEY_WRAPS
    out = (
        associated_data(env)
        + write_opaque32(env.masked_payload)
        + write_uint8(flags)
    )
    if env.signature is not None:
        out += write_opaque16(env.signature)
    return out + _encode_key_wraps(env)


def decode_envelope(data: bytes) -> Envelope:
    """Parse envelope bytes.

    Raises:
        TruncatedEnvelope: If the buffer ends before a field is complete.
        UnknownMsgType: If the message type is outside the closed set.
        EnvelopeDecodeError: On a wrong version, unknown flags or trailing bytes.
    """
    version, off = read_uint8(data, 0)
    if version != WIRE_VERSION:
        raise EnvelopeDecodeError(f"unsupported envelope version {version}")
    type_val, off = read_uint8(data, off)
    try:
        msg_type = MessageType(type_val)
    except ValueError as e:
        raise UnknownMsgType(f"unknown message type {type_val}") from e
    link, off = Address.read_from(data, off)
    publisher_id, off = read_opaque8(data, off)
    seq, off = read_uint64(data, off)
    n_prev, off = read_uint8(data, off)
    prev = []
    for _ in range(n_prev):
        p, off = Address.read_from(data, off)
        prev.append(p)
    public_payload, off = read_opaque32(data, off)
    masked_payload, off = read_opaque32(data, off)
    flags, off = read_uint8(data, off)
    if flags & ~(FLAG_SIGNED | FLAG_KEY_WRAPS):
        raise EnvelopeDecodeError(f"unknown envelope flags {flags:#04x}")
    signature = None
    if flags & FLAG_SIGNED:
        signature, off = read_opaque16(data, off)
    wraps = []
    if flags & FLAG_KEY_WRAPS:
        count, off = read_uint16(data, off)
        for _ in range(count):
            block, off = KeyWrapBlock.read_from(data, off)
            wraps.append(block)
    if off != len(data):
        raise EnvelopeDecodeError(f"{len(data) - off} trailing bytes after envelope")
    return Envelope(
        msg_type=msg_type,
        link=link,
        publisher_id=publisher_id,
        seq=seq,
        previous_links=tuple(prev),
        public_payload=public_payload,
        masked_payload=masked_payload,
        signature=signature,
        key_wraps=tuple(wraps),
    )
