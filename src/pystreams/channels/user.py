"""Channel protocol engine shared by Author and Subscriber.

A User owns one identity, its PSKs, the branch keys it has recovered, the
table of links it has processed and its sequencing state. Every mutation of
that state happens here, and only after a message has been fully validated
(signature first, then decryption). Callers serialize operations on a user;
distinct users only interact through the transport.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag

from .config import UserConfig
from .exceptions import (
    ConfigurationError,
    EnvelopeDecodeError,
    MessageNotFound,
    ProtocolError,
    TransportUnavailable,
    UnknownPreviousLink,
    UnsupportedCipherSuiteError,
)
from .sync import FetchResult, backward_fetch, forward_fetch
from .transport import Transport
from ..codec.envelope import decode_envelope, encode_envelope
from ..crypto.crypto_provider import CryptoProvider
from ..crypto.default_crypto_provider import DefaultCryptoProvider
from ..protocol.address import (
    Address,
    ChannelAddress,
    announcement_address,
    derive_branch_address,
    derive_channel_instance,
)
from ..protocol.data_structures import (
    CONTENT_TYPES,
    AnnounceContent,
    BranchingMode,
    Envelope,
    MessageType,
    ReceivedMessage,
    SequenceContent,
    Skipped,
    SubscribeContent,
)
from ..protocol.identity import Identity
from ..protocol.keyload import Branch, KeyStore, process_keyload, recipient_pubkeys
from ..protocol.messages import default_branch_key, open_masked, seal_masked, sign_envelope, verify_envelope
from ..protocol.psk import PskStore
from ..protocol.sequencing import (
    FIRST_SEQ,
    SUBSCRIBE_SEQ,
    UNSUBSCRIBE_SEQ,
    Cursor,
    LinkInfo,
    LinkStore,
    SequencingState,
)

logger = logging.getLogger(__name__)

ReceiveResult = Union[ReceivedMessage, Skipped]


class UserState(Enum):
    CREATED = "created"
    ANNOUNCED = "announced"
    REGISTERED = "registered"
    SUBSCRIBED = "subscribed"
    ACTIVE = "active"


def _short(pk: bytes) -> str:
    return pk.hex()[:16]


class User:
    """Base engine. Use Author or Subscriber."""

    def __init__(
        self,
        seed: bytes,
        transport: Transport,
        config: Optional[UserConfig] = None,
        crypto: Optional[CryptoProvider] = None,
    ):
        self.config = config or UserConfig.recommended()
        if crypto is None:
            crypto = DefaultCryptoProvider(self.config.suite_id)
        elif crypto.active_ciphersuite.suite_id != self.config.suite_id:
            raise ConfigurationError(
                f"crypto provider runs suite {crypto.active_ciphersuite.suite_id:#06x}, "
                f"config asks for {self.config.suite_id:#06x}"
            )
        self.crypto = crypto
        self.transport = transport
        self.identity = Identity(crypto, seed)
        self.psks = PskStore(crypto)
        self.keys = KeyStore()
        self.links = LinkStore()
        self.state = UserState.CREATED
        self.author_public_key: Optional[bytes] = None
        self.author_exchange_public_key: Optional[bytes] = None
        self.last_sequence_link: Optional[Address] = None
        self._sequencing: Optional[SequencingState] = None
        self._pending: List[Tuple[Address, bytes]] = []

    # --- Identity and channel info ---
    @property
    def public_key(self) -> bytes:
        return self.identity.public_key

    def get_public_key(self) -> bytes:
        return self.identity.public_key

    @property
    def exchange_public_key(self) -> bytes:
        return self.identity.exchange_public_key

    @property
    def is_author(self) -> bool:
        return False

    def announcement_link(self) -> Optional[Address]:
        return self._sequencing.announcement_link if self._sequencing else None

    def channel_address(self) -> Optional[ChannelAddress]:
        return self._sequencing.channel if self._sequencing else None

    def is_multi_branching(self) -> bool:
        return self._require_channel().branching == BranchingMode.MULTI

    def _require_channel(self) -> SequencingState:
        if self._sequencing is None:
            raise ProtocolError("user is not attached to a channel")
        return self._sequencing

    @property
    def sequencing(self) -> SequencingState:
        return self._require_channel()

    def _attach(self, announcement: Address, author_pk: bytes, author_ke_pk: bytes, branching: BranchingMode) -> None:
        seq = SequencingState(self.crypto, branching, announcement)
        self._sequencing = seq
        self.author_public_key = author_pk
        self.author_exchange_public_key = author_ke_pk
        self.keys.add(Branch(announcement, default_branch_key(self.crypto, announcement)))
        self.links.add(announcement, LinkInfo(MessageType.ANNOUNCE, author_pk, announcement, 0))
        seq.add_publisher(author_pk)
        seq.add_publisher(self.public_key)

    # --- PSKs ---
    def store_psk(self, secret: bytes) -> bytes:
        """Store a PSK shared out-of-band. Returns its 16-byte id."""
        return self.psks.store(secret)

    def remove_psk(self, psk_id: bytes) -> bool:
        return self.psks.remove(psk_id)

    # --- Sequencing helpers ---
    def fetch_state(self) -> Dict[bytes, Cursor]:
        return self._require_channel().snapshot()

    def reset_state(self) -> None:
        """Move every cursor back to the announcement so the channel can be re-read."""
        self._require_channel().reset()

    def gen_next_msg_addresses(self) -> Dict[bytes, Address]:
        seq = self._require_channel()
        out: Dict[bytes, Address] = {}
        for pk in seq.publishers():
            cand = seq.next_candidate(pk)
            if cand is not None:
                out[pk] = cand[0]
        return out

    def add_publisher(self, public_key: bytes) -> bool:
        return self._require_channel().add_publisher(public_key)

    # --- Sending ---
    def _publish(self, link: Address, env: Envelope) -> None:
        self.transport.publish(link, encode_envelope(env))

    def _branch_of(self, link_to: Address) -> Address:
        info = self.links.get(link_to)
        if info is None:
            raise UnknownPreviousLink(f"cannot link to unknown message {link_to}")
        return info.branch_id

    def _resolve_link_to(self, link_to: Optional[Address]) -> Address:
        if link_to is not None:
            return link_to
        return self._require_channel().resolve_link_to(self.public_key)

    def flush_pending(self) -> int:
        """Re-publish Sequence messages whose first publish failed. Returns how many went out."""
        sent = 0
        while self._pending:
            link, data = self._pending[0]
            try:
                self.transport.publish(link, data)
            except TransportUnavailable as e:
                logger.warning("Sequence message at %s still pending: %s", link, e)
                break
            self._pending.pop(0)
            sent += 1
        return sent

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _publish_sequence(self, chain_link: Address, n: int, ref_link: Address) -> None:
        seq = self._require_channel()
        env = Envelope(
            msg_type=MessageType.SEQUENCE,
            link=chain_link,
            publisher_id=self.public_key,
            seq=n,
            previous_links=(seq.announcement_link,),
            public_payload=SequenceContent(ref_link, n).serialize(),
        )
        data = encode_envelope(sign_envelope(self.identity, env))
        self.links.add(chain_link, LinkInfo(MessageType.SEQUENCE, self.public_key, seq.announcement_link, n))
        self.last_sequence_link = chain_link
        try:
            self.transport.publish(chain_link, data)
        except TransportUnavailable as e:
            logger.warning("Sequence message for %s kept pending: %s", ref_link, e)
            self._pending.append((chain_link, data))

    def _send(self, build, link_to: Address) -> Address:
        """Reserve a slot, build the envelope for it and publish.

        ``build(link, n)`` returns (envelope, branch_id). The counter is released
        if the publish fails so the slot is never reused with other content.
        """
        seq = self._require_channel()
        self.flush_pending()
        chain_link, n = seq.next_link_for_send(self.public_key)
        if seq.branching == BranchingMode.MULTI:
            link = derive_branch_address(self.crypto, link_to, self.public_key, n)
        else:
            link = chain_link
        try:
            env, branch_id = build(link, n)
            self._publish(link, env)
        except Exception:
            seq.release(self.public_key, n)
            raise
        self.links.add(link, LinkInfo(env.msg_type, self.public_key, branch_id, n))
        if seq.branching == BranchingMode.MULTI:
            self._publish_sequence(chain_link, n, link)
        seq.commit_send(self.public_key, link, n)
        logger.debug("Sent %s at %s (seq %d)", env.msg_type.name, link, n)
        return link

    def _send_packet(
        self, msg_type: MessageType, link_to: Optional[Address], public_payload: bytes, masked_payload: bytes
    ) -> Address:
        self._require_channel()
        target = self._resolve_link_to(link_to)
        branch_id = self._branch_of(target)
        key = self.keys.session_key(branch_id)
        if key is None:
            raise ProtocolError(f"no session key for branch {branch_id}")

        def build(link: Address, n: int) -> Tuple[Envelope, Address]:
            env = Envelope(
                msg_type=msg_type,
                link=link,
                publisher_id=self.public_key,
                seq=n,
                previous_links=(target,),
                public_payload=bytes(public_payload),
            )
            env = seal_masked(self.crypto, key, env, bytes(masked_payload))
            if msg_type == MessageType.SIGNED_PACKET:
                env = sign_envelope(self.identity, env)
            return env, branch_id

        return self._send(build, target)

    def send_signed_packet(
        self, link_to: Optional[Address], public_payload: bytes = b"", masked_payload: bytes = b""
    ) -> Address:
        """Publish a signed packet on the branch of ``link_to``.

        With ``link_to=None`` the packet links to this user's current head
        (single-branch) or the announcement (multi-branch).
        """
        return self._send_packet(MessageType.SIGNED_PACKET, link_to, public_payload, masked_payload)

    def send_tagged_packet(
        self, link_to: Optional[Address], public_payload: bytes = b"", masked_payload: bytes = b""
    ) -> Address:
        """Publish an unsigned packet; authenticity rests on the branch key."""
        return self._send_packet(MessageType.TAGGED_PACKET, link_to, public_payload, masked_payload)

    # --- Receiving ---
    def _fetch_envelope(self, link: Address) -> Envelope:
        data = self.transport.fetch(link)
        if data is None:
            raise MessageNotFound(f"no message at {link}")
        env = decode_envelope(data)
        if env.link != link:
            raise EnvelopeDecodeError(f"message fetched from {link} claims link {env.link}")
        return env

    def receive_msg(self, link: Address) -> ReceiveResult:
        """Fetch and process the message at ``link``, whatever its type."""
        return self.handle_envelope(self._fetch_envelope(link), commit=True)

    def _receive_typed(self, link: Address, *types: MessageType) -> ReceiveResult:
        env = self._fetch_envelope(link)
        if env.msg_type == MessageType.SEQUENCE and self._sequencing is not None:
            ref = self.resolve_sequence(env)
            if ref is None:
                raise MessageNotFound(f"sequence at {link} references a missing message")
            env_to_check = ref
        else:
            env_to_check = env
        if env_to_check.msg_type not in types:
            raise ProtocolError(
                f"expected {'/'.join(t.name for t in types)} at {link}, found {env_to_check.msg_type.name}"
            )
        return self.handle_envelope(env, commit=True)

    def receive_signed_packet(self, link: Address) -> ReceiveResult:
        return self._receive_typed(link, MessageType.SIGNED_PACKET)

    def receive_tagged_packet(self, link: Address) -> ReceiveResult:
        return self._receive_typed(link, MessageType.TAGGED_PACKET)

    def receive_keyload(self, link: Address) -> ReceiveResult:
        return self._receive_typed(link, MessageType.KEYLOAD)

    def receive_sequence(self, link: Address) -> ReceiveResult:
        return self._receive_typed(link, MessageType.SIGNED_PACKET, MessageType.TAGGED_PACKET, MessageType.KEYLOAD)

    def handle_envelope(self, env: Envelope, commit: bool = True) -> ReceiveResult:
        """Validate and apply a decoded envelope.

        With ``commit=False`` nothing is recorded: no links, keys, cursors or
        registry entries change, and unknown previous links yield Skipped
        instead of raising.

        Raises:
            SignatureInvalid: If a signed message does not verify.
            UnknownPreviousLink: If ``commit`` and the message links to an unseen message.
            ProtocolError: If the message is not acceptable in this channel or role.
        """
        if env.msg_type == MessageType.ANNOUNCE:
            return self._handle_announce(env, commit)
        seq = self._require_channel()
        if env.link.instance_id != seq.channel.instance_id:
            raise ProtocolError(f"message {env.link} belongs to another channel")
        if env.msg_type == MessageType.SEQUENCE:
            self._check_slot(env)
            return self._handle_sequence(env, commit)
        prev = env.previous_link
        if prev is None:
            raise ProtocolError(f"{env.msg_type.name} at {env.link} has no previous link")
        self._check_slot(env)
        if prev not in self.links:
            if commit:
                raise UnknownPreviousLink(f"{env.link} links to unknown message {prev}")
            return Skipped(env.link, env.msg_type, "unknown previous link")
        if env.msg_type == MessageType.SUBSCRIBE:
            return self._handle_subscribe(env, commit)
        if env.msg_type == MessageType.UNSUBSCRIBE:
            return self._handle_unsubscribe(env, commit)
        if env.msg_type == MessageType.KEYLOAD:
            return self._handle_keyload(env, commit)
        return self._handle_packet(env, commit)

    def _check_slot(self, env: Envelope) -> None:
        """Reject a message whose link is not the address its header derives.

        Seq 0 and 1 belong to Subscribe and Unsubscribe only. Every other
        message must carry a seq of at least FIRST_SEQ.
        """
        state = self._require_channel()
        msg_type = env.msg_type
        if msg_type == MessageType.SUBSCRIBE:
            valid_seq = env.seq == SUBSCRIBE_SEQ
        elif msg_type == MessageType.UNSUBSCRIBE:
            valid_seq = env.seq == UNSUBSCRIBE_SEQ
        else:
            valid_seq = env.seq >= FIRST_SEQ
        if not valid_seq:
            raise ProtocolError(f"{msg_type.name} at {env.link} carries seq {env.seq}")
        on_chain = (
            msg_type in (MessageType.SUBSCRIBE, MessageType.UNSUBSCRIBE, MessageType.SEQUENCE)
            or state.branching == BranchingMode.SINGLE
        )
        if on_chain:
            expected = state.chain_address(env.publisher_id, env.seq)
        else:
            prev = env.previous_link
            assert prev is not None
            expected = derive_branch_address(self.crypto, prev, env.publisher_id, env.seq)
        if env.link != expected:
            raise ProtocolError(f"{msg_type.name} at {env.link} does not sit at the slot its header names")

    def _record(self, env: Envelope, branch_id: Address) -> None:
        seq = self._require_channel()
        self.links.add(env.link, LinkInfo(env.msg_type, env.publisher_id, branch_id, env.seq))
        seq.add_publisher(env.publisher_id)
        if env.seq < FIRST_SEQ:
            return
        if seq.branching == BranchingMode.SINGLE:
            seq.advance_all(env.link, env.seq)
        else:
            seq.advance_head(env.publisher_id, env.link, env.seq)

    def _handle_announce(self, env: Envelope, commit: bool) -> ReceiveResult:
        content = AnnounceContent.deserialize(env.public_payload)
        suite = self.crypto.active_ciphersuite.suite_id
        if content.suite_id != suite:
            raise UnsupportedCipherSuiteError(
                f"channel uses suite {content.suite_id:#06x}, this user runs {suite:#06x}"
            )
        if env.publisher_id != content.author_public_key:
            raise ProtocolError("announcement publisher does not match the announced author key")
        verify_envelope(self.crypto, env, content.author_public_key)
        channel = derive_channel_instance(self.crypto, content.author_public_key, content.channel_nonce)
        if env.link != announcement_address(self.crypto, channel):
            raise ProtocolError(f"announcement at {env.link} is not bound to its author key")
        result = ReceivedMessage(env.link, MessageType.ANNOUNCE, content.author_public_key, None, seq=env.seq)
        current = self.announcement_link()
        if current is not None:
            if current != env.link:
                raise ProtocolError(f"already attached to channel {current.channel_address}")
            return result
        if commit:
            self._attach(env.link, content.author_public_key, content.exchange_public_key, content.branching)
            self._on_attached()
            logger.debug("Attached to channel %s (%s)", channel, content.branching.name)
        return result

    def _on_attached(self) -> None:
        pass

    def _handle_subscribe(self, env: Envelope, commit: bool) -> ReceiveResult:
        verify_envelope(self.crypto, env, env.publisher_id)
        content = SubscribeContent.deserialize(env.public_payload)
        if commit:
            self._on_subscribe(env, content)
            self.links.add(env.link, LinkInfo(env.msg_type, env.publisher_id, self._branch_of(env.previous_link), env.seq))  # type: ignore[arg-type]
        return ReceivedMessage(env.link, env.msg_type, env.publisher_id, env.previous_link, seq=env.seq)

    def _on_subscribe(self, env: Envelope, content: SubscribeContent) -> None:
        raise ProtocolError("only the channel author accepts subscriptions")

    def _handle_unsubscribe(self, env: Envelope, commit: bool) -> ReceiveResult:
        verify_envelope(self.crypto, env, env.publisher_id)
        prev_info = self.links.get(env.previous_link)  # type: ignore[arg-type]
        if (
            prev_info is None
            or prev_info.msg_type != MessageType.SUBSCRIBE
            or prev_info.publisher_id != env.publisher_id
        ):
            raise ProtocolError(f"unsubscribe at {env.link} does not follow its publisher's subscribe")
        if commit:
            self._on_unsubscribe(env)
            self.links.add(env.link, LinkInfo(env.msg_type, env.publisher_id, prev_info.branch_id, env.seq))
        return ReceivedMessage(env.link, env.msg_type, env.publisher_id, env.previous_link, seq=env.seq)

    def _on_unsubscribe(self, env: Envelope) -> None:
        raise ProtocolError("only the channel author handles unsubscriptions")

    def _handle_keyload(self, env: Envelope, commit: bool) -> ReceiveResult:
        if env.publisher_id != self.author_public_key:
            raise ProtocolError(f"keyload at {env.link} is not from the channel author")
        verify_envelope(self.crypto, env, env.publisher_id)
        known = self.keys.get(env.link)
        outcome: Union[Branch, Skipped] = known if known is not None else process_keyload(
            self.crypto, env, self.identity, self.psks
        )
        if commit:
            seq = self._require_channel()
            for pk in recipient_pubkeys(env):
                if seq.add_publisher(pk):
                    logger.debug("Learned publisher %s from keyload %s", _short(pk), env.link)
            if isinstance(outcome, Branch) and known is None:
                self.keys.add(outcome)
                self._on_branch_key(outcome)
            self._record(env, env.link)
        if isinstance(outcome, Skipped):
            logger.debug("Skipped keyload %s: %s", env.link, outcome.reason)
            return outcome
        return ReceivedMessage(env.link, env.msg_type, env.publisher_id, env.previous_link, seq=env.seq)

    def _on_branch_key(self, branch: Branch) -> None:
        pass

    def _handle_packet(self, env: Envelope, commit: bool) -> ReceiveResult:
        if env.msg_type == MessageType.SIGNED_PACKET:
            verify_envelope(self.crypto, env, env.publisher_id)
        elif env.signature is not None:
            raise ProtocolError(f"tagged packet at {env.link} carries a signature")
        branch_id = self._branch_of(env.previous_link)  # type: ignore[arg-type]
        key = self.keys.session_key(branch_id)
        result: ReceiveResult
        if key is None:
            result = Skipped(env.link, env.msg_type, "no key for branch")
        else:
            try:
                masked = open_masked(self.crypto, key, env)
                result = ReceivedMessage(
                    env.link,
                    env.msg_type,
                    env.publisher_id,
                    env.previous_link,
                    env.public_payload,
                    masked,
                    env.seq,
                )
            except (InvalidTag, ValueError):
                result = Skipped(env.link, env.msg_type, "masked payload did not decrypt")
        if isinstance(result, Skipped):
            logger.debug("Skipped %s at %s: %s", env.msg_type.name, env.link, result.reason)
        if commit:
            self._record(env, branch_id)
        return result

    def resolve_sequence(self, env: Envelope) -> Optional[Envelope]:
        """Verify a Sequence message and load the content it references.

        Returns None when the referenced message is not (yet) on the transport.
        """
        verify_envelope(self.crypto, env, env.publisher_id)
        content = SequenceContent.deserialize(env.public_payload)
        if content.seq != env.seq:
            raise ProtocolError(f"sequence at {env.link} numbers {content.seq}, header says {env.seq}")
        data = self.transport.fetch(content.ref_link)
        if data is None:
            return None
        ref = decode_envelope(data)
        if ref.link != content.ref_link or ref.publisher_id != env.publisher_id or ref.seq != env.seq:
            raise ProtocolError(f"sequence at {env.link} references a message from another slot")
        if ref.msg_type not in CONTENT_TYPES:
            raise ProtocolError(f"sequence at {env.link} references a {ref.msg_type.name} message")
        return ref

    def _handle_sequence(self, env: Envelope, commit: bool) -> ReceiveResult:
        ref = self.resolve_sequence(env)
        if ref is None:
            raise MessageNotFound(f"sequence at {env.link} references a missing message")
        return self.apply_sequence(env, ref, commit)

    def apply_sequence(self, env: Envelope, ref: Envelope, commit: bool = True) -> ReceiveResult:
        """Process the content ``ref`` announced by the verified Sequence ``env``."""
        result = self.handle_envelope(ref, commit)
        if commit:
            seq = self._require_channel()
            self.links.add(env.link, LinkInfo(MessageType.SEQUENCE, env.publisher_id, seq.announcement_link, env.seq))
        return result

    # --- Fetch and sync ---
    def fetch_next_msgs(self) -> FetchResult:
        """One forward pass over every known publisher."""
        return forward_fetch(self, self.config.max_fetch_rounds)

    def fetch_all_next_msgs(self) -> FetchResult:
        """Forward passes until a pass finds nothing new."""
        total = FetchResult()
        for _ in range(self.config.max_fetch_rounds):
            step = self.fetch_next_msgs()
            total.extend(step)
            if not step.progressed:
                break
        return total

    def sync_state(self) -> FetchResult:
        """Bring every cursor up to date. Publishers call this before composing a send."""
        return self.fetch_all_next_msgs()

    def fetch_prev_msgs(self, link: Address, count: int) -> List[ReceiveResult]:
        """Read up to ``count`` predecessors of ``link``, newest first, without changing state."""
        return backward_fetch(self, link, count)

    def fetch_prev_msg(self, link: Address) -> Optional[ReceiveResult]:
        found = self.fetch_prev_msgs(link, 1)
        return found[0] if found else None

    # --- Lifecycle ---
    def close(self) -> None:
        """Release private key material, PSKs and branch keys."""
        self.identity.close()
        self.psks.clear()
        self.keys.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
