"""Transport interface to the append-only ledger, and an in-memory implementation."""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterator, Optional

from .exceptions import AddressConflict
from ..protocol.address import Address

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Publish and fetch raw envelope bytes by link.

    ``publish`` raises AddressConflict when the ledger already holds different
    bytes at the link, and TransportUnavailable when it cannot be reached.
    ``fetch`` returns None when nothing is stored at the link.
    """

    @abstractmethod
    def publish(self, link: Address, data: bytes) -> None:
        pass

    @abstractmethod
    def fetch(self, link: Address) -> Optional[bytes]:
        pass


class BucketTransport(Transport):
    """In-memory ledger: a dict of link -> bytes shared by every user of the instance.

    Safe to share between threads. Re-publishing identical bytes at a link is
    a no-op.
    """

    def __init__(self) -> None:
        self.bucket: Dict[Address, bytes] = {}
        self._lock = threading.Lock()

    def publish(self, link: Address, data: bytes) -> None:
        with self._lock:
            existing = self.bucket.get(link)
            if existing is not None:
                if existing == data:
                    return
                raise AddressConflict(f"different content already published at {link}")
            self.bucket[link] = bytes(data)
        logger.debug("Published %d bytes at %s", len(data), link)

    def fetch(self, link: Address) -> Optional[bytes]:
        with self._lock:
            return self.bucket.get(link)

    def __len__(self) -> int:
        with self._lock:
            return len(self.bucket)

    def __iter__(self) -> Iterator[Address]:
        with self._lock:
            return iter(list(self.bucket.keys()))
