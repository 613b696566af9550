"""
otrcore: session layer of the Off-the-Record messaging protocol.

Typical use:

    session = OTRSession(identity_key, ui_callback, io_callback)
    session.send_query()        # ask the peer for a private conversation
    session.receive(raw)        # feed everything the transport delivers
    session.send("hello")       # encrypted once the handshake completes
    session.end_session()
"""

from .config import Policy
from .errors import (
    ConstructionError,
    HandshakeError,
    MessageIntegrityError,
    OTRError,
    ProtocolStateError,
)
from .session import MessageState, OTRSession

__all__ = [
    'OTRSession',
    'MessageState',
    'Policy',
    'OTRError',
    'ConstructionError',
    'ProtocolStateError',
    'MessageIntegrityError',
    'HandshakeError',
]
