"""Per-user sequencing state: publisher cursors and the table of seen links.

Sequence numbers 0 and 1 of every publisher are reserved for its Subscribe
and Unsubscribe messages; content starts at FIRST_SEQ. In single-branch
channels every publisher shares one linear counter, so after any message
is accepted all cursors move to it. In multi-branch channels each publisher
advances only its own cursor.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from ..crypto.crypto_provider import CryptoProvider
from .address import Address, derive_next_address
from .data_structures import BranchingMode, MessageType

logger = logging.getLogger(__name__)

SUBSCRIBE_SEQ = 0
UNSUBSCRIBE_SEQ = 1
FIRST_SEQ = 2


@dataclass(frozen=True)
class Cursor:
    """Last-known head link of a publisher and the next sequence number it will use."""
    link: Address
    seq: int


@dataclass(frozen=True)
class LinkInfo:
    """What this user knows about a message it has accepted or skipped."""
    msg_type: MessageType
    publisher_id: bytes
    branch_id: Address
    seq: int


class LinkStore:
    """Link -> LinkInfo for every message this user has processed."""

    def __init__(self) -> None:
        self._links: Dict[Address, LinkInfo] = {}

    def add(self, link: Address, info: LinkInfo) -> None:
        self._links[link] = info

    def get(self, link: Address) -> Optional[LinkInfo]:
        return self._links.get(link)

    def __contains__(self, link: object) -> bool:
        return link in self._links

    def __len__(self) -> int:
        return len(self._links)

    def clear(self) -> None:
        self._links.clear()


class SequencingState:
    """publisher id -> Cursor, plus link-to selection for sends."""

    def __init__(self, crypto: CryptoProvider, branching: BranchingMode, announcement_link: Address):
        self._crypto = crypto
        self.branching = branching
        self.announcement_link = announcement_link
        self.channel = announcement_link.channel_address
        self._cursors: Dict[bytes, Cursor] = {}

    def __contains__(self, publisher_id: object) -> bool:
        return publisher_id in self._cursors

    def __iter__(self) -> Iterator[bytes]:
        return iter(list(self._cursors.keys()))

    def __len__(self) -> int:
        return len(self._cursors)

    def publishers(self) -> List[bytes]:
        return list(self._cursors.keys())

    def get(self, publisher_id: bytes) -> Optional[Cursor]:
        return self._cursors.get(publisher_id)

    def snapshot(self) -> Dict[bytes, Cursor]:
        return dict(self._cursors)

    def add_publisher(self, publisher_id: bytes, cursor: Optional[Cursor] = None) -> bool:
        """Start tracking a publisher. Returns False if it was already known."""
        if publisher_id in self._cursors:
            return False
        if cursor is None:
            cursor = self.initial_cursor()
        self._cursors[publisher_id] = cursor
        return True

    def remove_publisher(self, publisher_id: bytes) -> None:
        self._cursors.pop(publisher_id, None)

    def initial_cursor(self) -> Cursor:
        """Cursor a newly learned publisher starts from.

        In single-branch channels all cursors are equal, so a new publisher
        joins at the shared position.
        """
        if self.branching == BranchingMode.SINGLE and self._cursors:
            return max(self._cursors.values(), key=lambda c: c.seq)
        return Cursor(self.announcement_link, FIRST_SEQ)

    def next_link_for_send(self, publisher_id: bytes) -> Tuple[Address, int]:
        """Reserve the next slot on ``publisher_id``'s chain.

        This is the only place a counter moves forward for a send. The
        caller must call ``release`` if the publish fails, so the address
        is never reused with different content.
        """
        cur = self._cursors.get(publisher_id)
        if cur is None:
            cur = self.initial_cursor()
        self._cursors[publisher_id] = Cursor(cur.link, cur.seq + 1)
        return self.chain_address(publisher_id, cur.seq), cur.seq

    def chain_address(self, publisher_id: bytes, seq: int) -> Address:
        return derive_next_address(self._crypto, self.channel, publisher_id, seq)

    def next_candidate(self, publisher_id: bytes) -> Optional[Tuple[Address, int]]:
        """Address where the publisher's next message would appear, without reserving it."""
        cur = self._cursors.get(publisher_id)
        if cur is None:
            return None
        return self.chain_address(publisher_id, cur.seq), cur.seq

    def release(self, publisher_id: bytes, seq: int) -> None:
        """Undo a reservation made by ``next_link_for_send`` whose publish failed."""
        cur = self._cursors.get(publisher_id)
        if cur is not None and cur.seq == seq + 1:
            self._cursors[publisher_id] = Cursor(cur.link, seq)

    def advance_head(self, publisher_id: bytes, link: Address, seq: int) -> bool:
        """Move a publisher's head to ``link`` at ``seq``. Never moves backwards."""
        cur = self._cursors.get(publisher_id)
        if cur is not None and seq + 1 < cur.seq:
            logger.debug(
                "Ignoring head regression for %s: seq %d behind cursor %d",
                publisher_id.hex()[:16], seq, cur.seq,
            )
            return False
        self._cursors[publisher_id] = Cursor(link, seq + 1)
        return True

    def advance_all(self, link: Address, seq: int) -> None:
        """Single-branch: move every cursor to the shared head."""
        for pk in list(self._cursors):
            self.advance_head(pk, link, seq)

    def commit_send(self, publisher_id: bytes, link: Address, seq: int) -> None:
        if self.branching == BranchingMode.SINGLE:
            self.advance_all(link, seq)
        else:
            self.advance_head(publisher_id, link, seq)

    def resolve_link_to(self, publisher_id: bytes, branch_id: Optional[Address] = None) -> Address:
        """Pick the previous link for a new message.

        Single-branch: the publisher's own last-known head. Multi-branch: the
        branch root, or the announcement when no branch is given.
        """
        if self.branching == BranchingMode.SINGLE:
            cur = self._cursors.get(publisher_id)
            return cur.link if cur is not None else self.announcement_link
        return branch_id if branch_id is not None else self.announcement_link

    def reset(self) -> None:
        for pk in list(self._cursors):
            self._cursors[pk] = Cursor(self.announcement_link, FIRST_SEQ)

    def items(self) -> List[Tuple[bytes, Cursor]]:
        return list(self._cursors.items())
