"""
Chat Layer
==========

Everything the companion knows about chat messages, independent of any one
chat service:

- envelope.py: decode/encode the JSON message envelope
- location.py: resolve client coordinates into a place name
- transport.py: the narrow contract a chat service has to satisfy
"""

from medcompanion.chat.envelope import (
    Envelope,
    Location,
    PartialEnvelope,
    SUPPORTED_LOCALES,
    decode,
    decode_incremental,
    encode_response,
    fallback_envelope,
)
from medcompanion.chat.location import LocationResolver, DEFAULT_LOCATION_NAME
from medcompanion.chat.transport import AIState, ChatTransport, TransportMessage

__all__ = [
    "Envelope",
    "Location",
    "PartialEnvelope",
    "SUPPORTED_LOCALES",
    "decode",
    "decode_incremental",
    "encode_response",
    "fallback_envelope",
    "LocationResolver",
    "DEFAULT_LOCATION_NAME",
    "AIState",
    "ChatTransport",
    "TransportMessage",
]
