"""Exception hierarchy shared by every pystreams layer.

All errors raised by the library derive from StreamsError so applications
can catch library failures with a single except clause. The decode-time
errors (TruncatedEnvelope, UnknownMsgType, MalformedAddress) are local and
never worth retrying; TransportUnavailable is the only retryable kind.
"""
from __future__ import annotations


class StreamsError(Exception):
    """Base class for all pystreams errors."""


class ConfigurationError(StreamsError):
    """Raised when configuration values are missing or inconsistent."""


class UnsupportedCipherSuiteError(StreamsError):
    """Raised when a channel ciphersuite id is unknown or does not match."""


class MalformedAddress(StreamsError, ValueError):
    """Raised when an address string or byte encoding cannot be parsed."""


class EnvelopeDecodeError(StreamsError):
    """Raised when envelope bytes cannot be decoded."""


class TruncatedEnvelope(EnvelopeDecodeError):
    """Raised when the buffer ends before a field is complete."""


class UnknownMsgType(EnvelopeDecodeError):
    """Raised when the envelope carries a message type outside the closed set."""


class SignatureInvalid(StreamsError):
    """Raised when a signature is missing or does not verify."""


# Name used by the crypto provider layer.
InvalidSignatureError = SignatureInvalid


class EmptyKeyload(StreamsError):
    """Raised when a keyload would have neither public-key nor PSK recipients."""


class ChannelAlreadyAnnounced(StreamsError):
    """Raised when an Author tries to announce a channel a second time."""


class AddressConflict(StreamsError):
    """Raised when the transport holds different content at a derived address."""


class TransportUnavailable(StreamsError):
    """Raised by transports when publish/fetch cannot reach the ledger."""


class MessageNotFound(StreamsError):
    """Raised when an explicitly requested link holds no message."""


class ProtocolError(StreamsError):
    """Raised when an operation violates the channel protocol state machine."""


class UnknownPreviousLink(ProtocolError):
    """Raised when a message links to a message this user has never seen."""
