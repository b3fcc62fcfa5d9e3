from __future__ import annotations

import dataclasses
from typing import Optional

from pystreams import Address, Author, BranchingMode, BucketTransport, Subscriber, UserConfig
from pystreams.channels.exceptions import TransportUnavailable
from pystreams.codec.envelope import decode_envelope, encode_envelope


class FlakyTransport(BucketTransport):
    """BucketTransport whose publishes fail on demand.

    After ``skip`` further successful publishes, the next ``failures``
    publishes raise TransportUnavailable without storing anything.
    """

    def __init__(self) -> None:
        super().__init__()
        self.skip = 0
        self.failures = 0
        self.published = 0

    def fail_next(self, failures: int = 1, skip: int = 0) -> None:
        self.failures = failures
        self.skip = skip

    def publish(self, link: Address, data: bytes) -> None:
        if self.failures:
            if self.skip:
                self.skip -= 1
            else:
                self.failures -= 1
                raise TransportUnavailable(f"simulated outage publishing {link}")
        super().publish(link, data)
        self.published += 1


def config(branching: BranchingMode = BranchingMode.SINGLE, **kwargs) -> UserConfig:
    return UserConfig(branching=branching, channel_nonce=kwargs.pop("channel_nonce", 7), **kwargs)


def make_channel(
    branching: BranchingMode = BranchingMode.SINGLE,
    transport: Optional[BucketTransport] = None,
    seed: bytes = b"author seed",
) -> tuple[BucketTransport, Author, Address]:
    transport = transport if transport is not None else BucketTransport()
    author = Author(seed, transport, config(branching))
    ann = author.send_announce()
    return transport, author, ann


def join(author: Author, transport: BucketTransport, ann: Address, seed: bytes) -> Subscriber:
    """Create a subscriber, subscribe it and let the author accept the subscription."""
    sub = Subscriber(seed, transport)
    sub.receive_announcement(ann)
    sub_link = sub.send_subscribe(ann)
    author.receive_subscribe(sub_link)
    return sub


def tamper(transport: BucketTransport, link: Address, **changes) -> None:
    """Rewrite the stored envelope at ``link`` with some fields replaced."""
    env = decode_envelope(transport.bucket[link])
    transport.bucket[link] = encode_envelope(dataclasses.replace(env, **changes))


def flip_bit(data: bytes, index: int = 0) -> bytes:
    buf = bytearray(data)
    buf[index] ^= 0x01
    return bytes(buf)
