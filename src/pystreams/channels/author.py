"""Channel author: announcement, subscriber admission and keyloads."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from .exceptions import ChannelAlreadyAnnounced, ProtocolError
from .user import ReceiveResult, User, UserState
from ..crypto.utils import random_uint64
from ..protocol.address import Address, announcement_address, derive_channel_instance
from ..protocol.data_structures import AnnounceContent, Envelope, MessageType, SubscribeContent
from ..protocol.keyload import Recipient, build_keyload, require_recipients
from ..protocol.messages import sign_envelope
from ..protocol.registry import SubscriberRecord, SubscriberRegistry, SubscriberStatus

logger = logging.getLogger(__name__)


class Author(User):
    """Channel owner: announces the channel, admits subscribers and issues keyloads.

    Example:
        >>> transport = BucketTransport()
        >>> with Author(b"author seed", transport) as author:
        ...     ann = author.send_announce()
        ...     author.send_signed_packet(ann, b"hello", b"")
    """

    def __init__(self, seed: bytes, transport, config=None, crypto=None):
        super().__init__(seed, transport, config, crypto)
        self.registry = SubscriberRegistry()

    @property
    def is_author(self) -> bool:
        return True

    def send_announce(self) -> Address:
        """Create the channel and publish its announcement.

        Raises:
            ChannelAlreadyAnnounced: If this author already announced a channel.
        """
        if self.announcement_link() is not None:
            raise ChannelAlreadyAnnounced(f"channel {self.channel_address()} was already announced")
        nonce = self.config.channel_nonce
        if nonce is None:
            nonce = random_uint64()
        channel = derive_channel_instance(self.crypto, self.public_key, nonce)
        link = announcement_address(self.crypto, channel)
        content = AnnounceContent(
            author_public_key=self.public_key,
            exchange_public_key=self.exchange_public_key,
            suite_id=self.crypto.active_ciphersuite.suite_id,
            branching=self.config.branching,
            channel_nonce=nonce,
        )
        env = Envelope(
            msg_type=MessageType.ANNOUNCE,
            link=link,
            publisher_id=self.public_key,
            seq=0,
            public_payload=content.serialize(),
        )
        self._publish(link, sign_envelope(self.identity, env))
        self._attach(link, self.public_key, self.exchange_public_key, self.config.branching)
        self.state = UserState.ANNOUNCED
        logger.info("Announced channel %s at %s", channel, link)
        return link

    # --- Subscriber management ---
    def receive_subscribe(self, link: Address) -> ReceiveResult:
        """Process a Subscribe. This is the only way a key becomes keyload-eligible besides add_subscriber."""
        return self._receive_typed(link, MessageType.SUBSCRIBE)

    def receive_unsubscribe(self, link: Address) -> ReceiveResult:
        return self._receive_typed(link, MessageType.UNSUBSCRIBE)

    def _activate(self, public_key: bytes) -> None:
        self._require_channel().add_publisher(public_key)

    def _on_subscribe(self, env: Envelope, content: SubscribeContent) -> None:
        existing = self.registry.get(env.publisher_id)
        if existing is not None and existing.status != SubscriberStatus.UNREGISTERED:
            return
        status = SubscriberStatus.ACTIVE if self.config.auto_accept_subscribers else SubscriberStatus.PENDING
        self.registry.register(env.publisher_id, content.exchange_public_key, status, env.link)
        if status == SubscriberStatus.ACTIVE:
            self._activate(env.publisher_id)
        logger.info("Subscriber %s registered as %s", env.publisher_id.hex()[:16], status.value)

    def _on_unsubscribe(self, env: Envelope) -> None:
        if self.registry.set_status(env.publisher_id, SubscriberStatus.UNREGISTERED):
            logger.info("Subscriber %s unsubscribed", env.publisher_id.hex()[:16])

    def add_subscriber(self, public_key: bytes, exchange_public_key: bytes) -> SubscriberRecord:
        """Register a subscriber whose keys were exchanged out-of-band."""
        self._require_channel()
        rec = self.registry.register(public_key, exchange_public_key, SubscriberStatus.ACTIVE)
        self._activate(public_key)
        return rec

    def accept_subscriber(self, public_key: bytes) -> None:
        rec = self.registry.get(public_key)
        if rec is None or rec.status != SubscriberStatus.PENDING:
            raise ProtocolError("no pending subscription for this key")
        rec.status = SubscriberStatus.ACTIVE
        self._activate(public_key)

    def remove_subscriber(self, public_key: bytes) -> bool:
        return self.registry.set_status(public_key, SubscriberStatus.UNREGISTERED)

    def subscribers(self, status: Optional[SubscriberStatus] = None) -> List[SubscriberRecord]:
        return [r for r in self.registry.all() if status is None or r.status == status]

    # --- Keyloads ---
    def _recipients_for(self, pubkeys: Iterable[bytes]) -> List[Recipient]:
        out: List[Recipient] = []
        for pk in pubkeys:
            rec = self.registry.get(pk)
            if rec is None or rec.status != SubscriberStatus.ACTIVE:
                raise ProtocolError(f"{pk.hex()[:16]} is not an active subscriber")
            out.append((rec.public_key, rec.exchange_public_key))
        return out

    def _psks_for(self, psk_ids: Iterable[bytes]) -> List[Tuple[bytes, bytes]]:
        out = []
        for psk_id in psk_ids:
            secret = self.psks.get(psk_id)
            if secret is None:
                raise ProtocolError(f"unknown PSK id {psk_id.hex()}")
            out.append((psk_id, secret))
        return out

    def send_keyload(
        self,
        link_to: Optional[Address],
        psk_ids: Sequence[bytes] = (),
        pubkeys: Sequence[bytes] = (),
    ) -> Address:
        """Open a new branch readable by ``pubkeys`` and holders of ``psk_ids``.

        Raises:
            EmptyKeyload: If both lists are empty. No counter is consumed.
            ProtocolError: If a key is not an active subscriber or a PSK id is unknown.
        """
        self._require_channel()
        recipients = self._recipients_for(pubkeys)
        psks = self._psks_for(psk_ids)
        require_recipients(recipients, [pid for pid, _ in psks])
        target = self._resolve_link_to(link_to)
        self._branch_of(target)

        opened = []

        def build(link: Address, n: int):
            env, branch = build_keyload(self.crypto, self.identity, link, n, target, recipients, psks)
            opened.append(branch)
            return env, link

        link = self._send(build, target)
        self.keys.add(opened[-1])
        self.state = UserState.ACTIVE
        return link

    def send_keyload_for_everyone(self, link_to: Optional[Address]) -> Address:
        """Keyload for every Active subscriber and every stored PSK."""
        return self.send_keyload(
            link_to,
            psk_ids=self.psks.ids(),
            pubkeys=[r.public_key for r in self.registry.active()],
        )
