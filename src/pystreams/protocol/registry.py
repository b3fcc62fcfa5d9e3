"""Author-side subscriber registry."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .address import Address


class SubscriberStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    UNREGISTERED = "unregistered"


@dataclass
class SubscriberRecord:
    public_key: bytes
    exchange_public_key: bytes
    status: SubscriberStatus
    subscribe_link: Optional[Address] = None


class SubscriberRegistry:
    """public key -> SubscriberRecord.

    Only Active records are eligible for "for everyone" keyloads.
    """

    def __init__(self) -> None:
        self._records: Dict[bytes, SubscriberRecord] = {}

    def register(
        self,
        public_key: bytes,
        exchange_public_key: bytes,
        status: SubscriberStatus,
        subscribe_link: Optional[Address] = None,
    ) -> SubscriberRecord:
        rec = SubscriberRecord(public_key, exchange_public_key, status, subscribe_link)
        self._records[public_key] = rec
        return rec

    def get(self, public_key: bytes) -> Optional[SubscriberRecord]:
        return self._records.get(public_key)

    def set_status(self, public_key: bytes, status: SubscriberStatus) -> bool:
        rec = self._records.get(public_key)
        if rec is None:
            return False
        rec.status = status
        return True

    def active(self) -> List[SubscriberRecord]:
        return [r for r in self._records.values() if r.status == SubscriberStatus.ACTIVE]

    def all(self) -> List[SubscriberRecord]:
        return list(self._records.values())

    def __contains__(self, public_key: object) -> bool:
        return public_key in self._records

    def __len__(self) -> int:
        return len(self._records)
