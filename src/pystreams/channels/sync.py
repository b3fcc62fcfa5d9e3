"""Forward and backward fetch over the transport.

Forward fetch polls, for every known publisher, the address its next
message would occupy and processes what it finds. A per-message failure
(bad encoding, bad signature, protocol violation) is recorded and stops
that publisher only; transport outages propagate so the caller can retry,
leaving state at the last fully processed message.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Deque, FrozenSet, Iterator, List, Optional, Set, Union

from .exceptions import AddressConflict, ProtocolError, StreamsError, TransportUnavailable
from ..codec.envelope import decode_envelope
from ..protocol.address import Address
from ..protocol.data_structures import CONTENT_TYPES, Envelope, MessageType, ReceivedMessage, Skipped

if TYPE_CHECKING:
    from .user import User
    from ..protocol.sequencing import SequencingState

logger = logging.getLogger(__name__)

SEQUENCE_ONLY = frozenset({MessageType.SEQUENCE})


@dataclass(frozen=True)
class FetchError:
    """Non-fatal failure of one message during a fetch."""
    link: Address
    publisher_id: bytes
    error: StreamsError


@dataclass
class FetchResult:
    messages: List[ReceivedMessage] = field(default_factory=list)
    skipped: List[Skipped] = field(default_factory=list)
    errors: List[FetchError] = field(default_factory=list)

    def __iter__(self) -> Iterator[ReceivedMessage]:
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    @property
    def progressed(self) -> bool:
        return bool(self.messages or self.skipped)

    def add(self, outcome: Union[ReceivedMessage, Skipped]) -> None:
        if isinstance(outcome, Skipped):
            self.skipped.append(outcome)
        else:
            self.messages.append(outcome)

    def extend(self, other: "FetchResult") -> None:
        self.messages.extend(other.messages)
        self.skipped.extend(other.skipped)
        self.errors.extend(other.errors)


def _record_error(result: FetchResult, link: Address, publisher_id: bytes, err: StreamsError) -> None:
    logger.warning("Stopped fetching from %s at %s: %s", publisher_id.hex()[:16], link, err)
    result.errors.append(FetchError(link, publisher_id, err))


def _check_candidate(env: Envelope, link: Address, pk: bytes, n: int, expected: FrozenSet[MessageType]) -> None:
    if env.link != link or env.publisher_id != pk or env.seq != n:
        raise ProtocolError(f"message at {link} does not belong to this slot")
    if env.msg_type not in expected:
        raise ProtocolError(f"{env.msg_type.name} message found in content slot {link}")


def _advanced(state: "SequencingState", pk: bytes, n: int) -> bool:
    cur = state.get(pk)
    return cur is not None and cur.seq > n


def _fetch_single(user: "User", result: FetchResult, max_rounds: int) -> None:
    state = user.sequencing
    failed: Set[bytes] = set()
    for _ in range(max_rounds):
        candidates = []
        for pk in state.publishers():
            if pk in failed:
                continue
            cand = state.next_candidate(pk)
            if cand is not None:
                candidates.append((pk, cand[0], cand[1]))
        progressed = False
        for pk, link, n in candidates:
            data = user.transport.fetch(link)
            if data is None:
                continue
            try:
                env = decode_envelope(data)
                _check_candidate(env, link, pk, n, CONTENT_TYPES)
                outcome = user.handle_envelope(env, commit=True)
                if not _advanced(state, pk, n):
                    raise ProtocolError(f"message at {link} did not advance its publisher")
            except (TransportUnavailable, AddressConflict):
                raise
            except StreamsError as e:
                _record_error(result, link, pk, e)
                failed.add(pk)
                continue
            result.add(outcome)
            progressed = True
        if not progressed:
            return


def _fetch_multi(user: "User", result: FetchResult, max_rounds: int) -> None:
    state = user.sequencing
    queue: Deque[bytes] = deque(state.publishers())
    queued: Set[bytes] = set(queue)
    while queue:
        pk = queue.popleft()
        for _ in range(max_rounds):
            cand = state.next_candidate(pk)
            if cand is None:
                break
            link, n = cand
            data = user.transport.fetch(link)
            if data is None:
                break
            try:
                env = decode_envelope(data)
                _check_candidate(env, link, pk, n, SEQUENCE_ONLY)
                ref = user.resolve_sequence(env)
                if ref is None:
                    logger.debug("Sequence %s references a message not yet available", link)
                    break
                outcome = user.apply_sequence(env, ref)
                if not _advanced(state, pk, n):
                    raise ProtocolError(f"sequence at {link} did not advance its publisher")
            except (TransportUnavailable, AddressConflict):
                raise
            except StreamsError as e:
                _record_error(result, link, pk, e)
                break
            result.add(outcome)
        for new_pk in state.publishers():
            if new_pk not in queued:
                queued.add(new_pk)
                queue.append(new_pk)


def forward_fetch(user: "User", max_rounds: int) -> FetchResult:
    """Fetch and process every message that follows the current cursors."""
    result = FetchResult()
    if user.is_multi_branching():
        _fetch_multi(user, result, max_rounds)
    else:
        _fetch_single(user, result, max_rounds)
    return result


def backward_fetch(user: "User", link: Address, count: int) -> List[Union[ReceivedMessage, Skipped]]:
    """Walk ``previous_link`` from ``link`` for up to ``count`` hops, newest first.

    The starting message is not included. The walk stops at the announcement,
    at a link that is not on the transport, or at a message that fails
    validation, returning the hops gathered before it. Nothing is committed.
    """
    out: List[Union[ReceivedMessage, Skipped]] = []
    data = user.transport.fetch(link)
    if data is None:
        return out
    env = decode_envelope(data)
    if env.msg_type == MessageType.SEQUENCE:
        ref = user.resolve_sequence(env)
        if ref is None:
            return out
        env = ref
    current: Optional[Address] = env.previous_link
    for _ in range(max(0, count)):
        if current is None:
            break
        data = user.transport.fetch(current)
        if data is None:
            break
        try:
            env = decode_envelope(data)
            if env.link != current:
                raise ProtocolError(f"message fetched from {current} claims link {env.link}")
            outcome = user.handle_envelope(env, commit=False)
        except (TransportUnavailable, AddressConflict):
            raise
        except StreamsError as e:
            logger.warning("Backward fetch stopped at %s: %s", current, e)
            break
        out.append(outcome)
        if env.msg_type == MessageType.ANNOUNCE:
            break
        current = env.previous_link
    return out
