"""pystreams: decentralized publish/subscribe channels over an append-only ledger."""
from .channels.author import Author  # High-level API
from .channels.subscriber import Subscriber
from .channels.user import UserState
from .channels.config import UserConfig
from .channels.transport import BucketTransport, Transport
from .channels.sync import FetchResult, FetchError
from .crypto.default_crypto_provider import DefaultCryptoProvider
from .protocol.address import Address, ChannelAddress
from .protocol.data_structures import BranchingMode, MessageType, ReceivedMessage, Skipped
from .protocol.psk import psk_from_seed, psk_id_from_secret

__all__ = [
    "Author",
    "Subscriber",
    "UserState",
    "UserConfig",
    "Transport",
    "BucketTransport",
    "FetchResult",
    "FetchError",
    "DefaultCryptoProvider",
    "Address",
    "ChannelAddress",
    "BranchingMode",
    "MessageType",
    "ReceivedMessage",
    "Skipped",
    "psk_from_seed",
    "psk_id_from_secret",
]
