"""Core protocol data structures and (de)serialization helpers for channels."""
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple

from ..codec.binary import (
    read_opaque8,
    read_opaque16,
    read_uint8,
    read_uint16,
    read_uint64,
    write_opaque8,
    write_opaque16,
    write_uint8,
    write_uint16,
    write_uint64,
)
from ..channels.exceptions import EnvelopeDecodeError
from .address import Address


class MessageType(IntEnum):
    """Closed set of envelope kinds; any other value fails decoding."""
    ANNOUNCE = 0
    KEYLOAD = 1
    SIGNED_PACKET = 2
    TAGGED_PACKET = 3
    SUBSCRIBE = 4
    UNSUBSCRIBE = 5
    SEQUENCE = 6


# Kinds that occupy a publisher's content slots (seq >= FIRST_SEQ)
CONTENT_TYPES = frozenset({MessageType.KEYLOAD, MessageType.SIGNED_PACKET, MessageType.TAGGED_PACKET})


class BranchingMode(IntEnum):
    """Single: one shared linear chain. Multi: per-publisher sequencing chains."""
    SINGLE = 0
    MULTI = 1


class KeyWrapKind(IntEnum):
    PUBLIC_KEY = 0
    PSK = 1


def _expect_consumed(data: bytes, offset: int, what: str) -> None:
    if offset != len(data):
        raise EnvelopeDecodeError(f"{len(data) - offset} trailing bytes after {what}")


@dataclass(frozen=True)
class KeyWrapBlock:
    """One recipient's copy of a keyload session key.

    For PUBLIC_KEY blocks ``recipient_id`` is the recipient's publisher id
    (signing public key) and ``kem_output`` the HPKE encapsulated share of a
    seal to the recipient's exchange key. For PSK blocks
    ``recipient_id`` is the 16-byte PSK id and ``kem_output`` carries the
    AEAD nonce.
    """
    kind: KeyWrapKind
    recipient_id: bytes
    kem_output: bytes
    wrapped_key: bytes

    def serialize(self) -> bytes:
        """Encode as uint8 kind || opaque8 recipient_id || opaque16 kem_output || opaque16 wrapped_key."""
        return (
            write_uint8(int(self.kind))
            + write_opaque8(self.recipient_id)
            + write_opaque16(self.kem_output)
            + write_opaque16(self.wrapped_key)
        )

    @classmethod
    def read_from(cls, buf: bytes, offset: int) -> Tuple["KeyWrapBlock", int]:
        kind_val, offset = read_uint8(buf, offset)
        try:
            kind = KeyWrapKind(kind_val)
        except ValueError as e:
            raise EnvelopeDecodeError(f"unknown key wrap kind {kind_val}") from e
        recipient_id, offset = read_opaque8(buf, offset)
        kem_output, offset = read_opaque16(buf, offset)
        wrapped_key, offset = read_opaque16(buf, offset)
        return cls(kind, recipient_id, kem_output, wrapped_key), offset


@dataclass(frozen=True)
class Envelope:
    """A decoded channel message.

    ``masked_payload`` is held in its encrypted form (nonce || ciphertext);
    decryption happens in the engine once the branch key is known. The
    signature covers every other field.
    """
    msg_type: MessageType
    link: Address
    publisher_id: bytes
    seq: int
    previous_links: Tuple[Address, ...] = ()
    public_payload: bytes = b""
    masked_payload: bytes = b""
    signature: Optional[bytes] = None
    key_wraps: Tuple[KeyWrapBlock, ...] = ()

    @property
    def previous_link(self) -> Optional[Address]:
        return self.previous_links[0] if self.previous_links else None

    @property
    def is_signed(self) -> bool:
        return self.signature is not None


@dataclass(frozen=True)
class AnnounceContent:
    """Public payload of an Announce message."""
    author_public_key: bytes
    exchange_public_key: bytes
    suite_id: int
    branching: BranchingMode
    channel_nonce: int

    def serialize(self) -> bytes:
        return (
            write_opaque8(self.author_public_key)
            + write_opaque8(self.exchange_public_key)
            + write_uint16(self.suite_id)
            + write_uint8(int(self.branching))
            + write_uint64(self.channel_nonce)
        )

    @classmethod
    def deserialize(cls, data: bytes) -> "AnnounceContent":
        author_pk, off = read_opaque8(data, 0)
        exchange_pk, off = read_opaque8(data, off)
        suite_id, off = read_uint16(data, off)
        branching_val, off = read_uint8(data, off)
        nonce, off = read_uint64(data, off)
        _expect_consumed(data, off, "announce content")
        try:
            branching = BranchingMode(branching_val)
        except ValueError as e:
            raise EnvelopeDecodeError(f"unknown branching mode {branching_val}") from e
        return cls(author_pk, exchange_pk, suite_id, branching, nonce)


@dataclass(frozen=True)
class SubscribeContent:
    """Public payload of a Subscribe message: the subscriber's exchange key."""
    exchange_public_key: bytes

    def serialize(self) -> bytes:
        return write_opaque8(self.exchange_public_key)

    @classmethod
    def deserialize(cls, data: bytes) -> "SubscribeContent":
        pk, off = read_opaque8(data, 0)
        _expect_consumed(data, off, "subscribe content")
        return cls(pk)


@dataclass(frozen=True)
class SequenceContent:
    """Public payload of a Sequence message: where the referenced content lives."""
    ref_link: Address
    seq: int

    def serialize(self) -> bytes:
        return self.ref_link.serialize() + write_uint64(self.seq)

    @classmethod
    def deserialize(cls, data: bytes) -> "SequenceContent":
        ref_link, off = Address.read_from(data, 0)
        seq, off = read_uint64(data, off)
        _expect_consumed(data, off, "sequence content")
        return cls(ref_link, seq)


@dataclass(frozen=True)
class Skipped:
    """Non-error outcome: the message is not readable by this user."""
    link: Address
    msg_type: Optional[MessageType] = None
    reason: str = ""


@dataclass(frozen=True)
class ReceivedMessage:
    """A message accepted by the engine, with its payloads in plaintext."""
    link: Address
    msg_type: MessageType
    publisher_id: bytes
    previous_link: Optional[Address] = None
    public_payload: bytes = b""
    masked_payload: bytes = b""
    seq: int = 0
