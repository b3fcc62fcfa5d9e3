"""Channel links: derivation, binary encoding and the hex text form.

A link is the pair (instance_id, message_id). The instance id names the
channel and is fixed for its lifetime; the message id is derived from the
publisher and its sequence number so any user holding the same state can
compute where the next message of a publisher will appear.
"""
from __future__ import annotations

import binascii
from dataclasses import dataclass

from ..channels.exceptions import MalformedAddress
from ..codec.binary import read_fixed, write_opaque8, write_uint64
from ..crypto import labels
from ..crypto.crypto_provider import CryptoProvider

INSTANCE_ID_SIZE = 32
MESSAGE_ID_SIZE = 12
ADDRESS_SIZE = INSTANCE_ID_SIZE + MESSAGE_ID_SIZE


@dataclass(frozen=True, order=True)
class Address:
    """Link of a single message inside a channel."""
    instance_id: bytes
    message_id: bytes

    def __post_init__(self) -> None:
        if len(self.instance_id) != INSTANCE_ID_SIZE:
            raise MalformedAddress(
                f"instance id must be {INSTANCE_ID_SIZE} bytes, got {len(self.instance_id)}"
            )
        if len(self.message_id) != MESSAGE_ID_SIZE:
            raise MalformedAddress(
                f"message id must be {MESSAGE_ID_SIZE} bytes, got {len(self.message_id)}"
            )

    def serialize(self) -> bytes:
        """Encode as instance_id(32) || message_id(12)."""
        return self.instance_id + self.message_id

    @classmethod
    def deserialize(cls, data: bytes) -> "Address":
        if len(data) != ADDRESS_SIZE:
            raise MalformedAddress(f"address must be {ADDRESS_SIZE} bytes, got {len(data)}")
        return cls(bytes(data[:INSTANCE_ID_SIZE]), bytes(data[INSTANCE_ID_SIZE:]))

    @classmethod
    def read_from(cls, buf: bytes, offset: int) -> tuple["Address", int]:
        raw, offset = read_fixed(buf, offset, ADDRESS_SIZE)
        return cls.deserialize(raw), offset

    def to_string(self) -> str:
        return f"{self.instance_id.hex()}:{self.message_id.hex()}"

    @classmethod
    def parse(cls, text: str) -> "Address":
        """Parse the ``<instance_id>:<message_id>`` hex form.

        Raises:
            MalformedAddress: On wrong arity, non-hex characters or wrong lengths.
        """
        parts = text.split(":")
        if len(parts) != 2:
            raise MalformedAddress(f"expected '<instance_id>:<message_id>', got {text!r}")
        inst_hex, msg_hex = parts
        if len(inst_hex) != 2 * INSTANCE_ID_SIZE or len(msg_hex) != 2 * MESSAGE_ID_SIZE:
            raise MalformedAddress(
                f"expected {2 * INSTANCE_ID_SIZE}:{2 * MESSAGE_ID_SIZE} hex characters, "
                f"got {len(inst_hex)}:{len(msg_hex)}"
            )
        try:
            return cls(binascii.unhexlify(inst_hex), binascii.unhexlify(msg_hex))
        except (binascii.Error, ValueError) as e:
            raise MalformedAddress(f"invalid hex in address {text!r}") from e

    @property
    def channel_address(self) -> "ChannelAddress":
        return ChannelAddress(self.instance_id)

    def __str__(self) -> str:
        return self.to_string()


@dataclass(frozen=True)
class ChannelAddress:
    """Channel instance identifier, shared by every link in a channel."""
    instance_id: bytes

    def to_string(self) -> str:
        return self.instance_id.hex()

    def __str__(self) -> str:
        return self.to_string()


def derive_channel_instance(crypto: CryptoProvider, author_public_key: bytes, nonce: int) -> ChannelAddress:
    """Bind a channel instance id to the author's public key and a nonce."""
    data = labels.with_label(labels.CHANNEL_INSTANCE, write_opaque8(author_public_key) + write_uint64(nonce))
    return ChannelAddress(crypto.keyed_hash(labels.CHANNEL_INSTANCE, data)[:INSTANCE_ID_SIZE])


def derive_next_address(crypto: CryptoProvider, channel: ChannelAddress, publisher_id: bytes, seq: int) -> Address:
    """Derive the link for the ``seq``-th message of ``publisher_id`` in ``channel``."""
    data = labels.with_label(labels.MESSAGE_ID, write_opaque8(publisher_id) + write_uint64(seq))
    msgid = crypto.keyed_hash(channel.instance_id, data)[:MESSAGE_ID_SIZE]
    return Address(channel.instance_id, msgid)


def derive_branch_address(crypto: CryptoProvider, link_to: Address, publisher_id: bytes, seq: int) -> Address:
    """Derive a branch-scoped content link hanging off ``link_to``."""
    data = labels.with_label(
        labels.BRANCH_MESSAGE_ID,
        link_to.serialize() + write_opaque8(publisher_id) + write_uint64(seq),
    )
    msgid = crypto.keyed_hash(link_to.instance_id, data)[:MESSAGE_ID_SIZE]
    return Address(link_to.instance_id, msgid)


def announcement_address(crypto: CryptoProvider, channel: ChannelAddress) -> Address:
    # The announcement has no publisher cursor; it occupies the empty-publisher slot 0.
    return derive_next_address(crypto, channel, b"", 0)
