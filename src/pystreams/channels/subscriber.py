"""Channel subscriber: joining, subscribing and unsubscribing."""
from __future__ import annotations

import logging
from typing import Optional

from .exceptions import ProtocolError
from .user import ReceiveResult, User, UserState
from ..protocol.address import Address
from ..protocol.data_structures import Envelope, MessageType, SubscribeContent
from ..protocol.keyload import Branch
from ..protocol.messages import sign_envelope
from ..protocol.sequencing import SUBSCRIBE_SEQ, UNSUBSCRIBE_SEQ, LinkInfo

logger = logging.getLogger(__name__)


class Subscriber(User):
    """Channel participant that joins an Author's channel."""

    def __init__(self, seed: bytes, transport, config=None, crypto=None):
        super().__init__(seed, transport, config, crypto)
        self.subscribe_link: Optional[Address] = None

    def receive_announcement(self, link: Address) -> ReceiveResult:
        """Attach to the channel announced at ``link``.

        The channel's branching mode is taken from the announcement.
        """
        return self._receive_typed(link, MessageType.ANNOUNCE)

    def _on_attached(self) -> None:
        self.state = UserState.REGISTERED

    def _on_branch_key(self, branch: Branch) -> None:
        if self.public_key in branch.authorized_pubkeys or any(
            pid in self.psks for pid in branch.authorized_psk_ids
        ):
            self.state = UserState.ACTIVE

    def send_subscribe(self, announcement_link: Address) -> Address:
        """Ask the author for access. The author must process the returned link."""
        current = self.announcement_link()
        if current is None:
            self.receive_announcement(announcement_link)
        elif current != announcement_link:
            raise ProtocolError(f"already attached to channel {current.channel_address}")
        seq = self._require_channel()
        link = seq.chain_address(self.public_key, SUBSCRIBE_SEQ)
        env = Envelope(
            msg_type=MessageType.SUBSCRIBE,
            link=link,
            publisher_id=self.public_key,
            seq=SUBSCRIBE_SEQ,
            previous_links=(announcement_link,),
            public_payload=SubscribeContent(self.exchange_public_key).serialize(),
        )
        self._publish(link, sign_envelope(self.identity, env))
        self.links.add(link, LinkInfo(MessageType.SUBSCRIBE, self.public_key, announcement_link, SUBSCRIBE_SEQ))
        self.subscribe_link = link
        if self.state != UserState.ACTIVE:
            self.state = UserState.SUBSCRIBED
        logger.debug("Subscribed to %s at %s", seq.channel, link)
        return link

    def send_unsubscribe(self) -> Address:
        """Tell the author to drop this subscriber from future keyloads."""
        if self.subscribe_link is None:
            raise ProtocolError("not subscribed")
        seq = self._require_channel()
        link = seq.chain_address(self.public_key, UNSUBSCRIBE_SEQ)
        env = Envelope(
            msg_type=MessageType.UNSUBSCRIBE,
            link=link,
            publisher_id=self.public_key,
            seq=UNSUBSCRIBE_SEQ,
            previous_links=(self.subscribe_link,),
        )
        self._publish(link, sign_envelope(self.identity, env))
        self.links.add(link, LinkInfo(MessageType.UNSUBSCRIBE, self.public_key, seq.announcement_link, UNSUBSCRIBE_SEQ))
        self.state = UserState.REGISTERED
        return link
