"""
Error classification for the OTR session core.

Three kinds of failure exist:

- ConstructionError: the session object cannot be created. Raised to the
  caller, never reported through callbacks.
- ProtocolStateError: the session is not in a state that allows the
  operation (not ready to encrypt, conversation finished). The message is
  queued and the condition is reported to the UI callback.
- MessageIntegrityError: an inbound message failed validation (bad MAC,
  stale counter, unknown key epoch, malformed). The message is dropped and
  no session state changes.
"""


class OTRError(Exception):
    """Base class for all session errors."""

    def __init__(self, message, notify_peer=False):
        super().__init__(message)
        self.message = message
        # mirror the error text to the peer as "?OTR Error:..."
        self.notify_peer = notify_peer

    def __str__(self):
        return self.message


class ConstructionError(OTRError):
    pass


class ProtocolStateError(OTRError):
    pass


class MessageIntegrityError(OTRError):
    pass


class HandshakeError(MessageIntegrityError):
    """Raised by the handshake collaborator when a key announcement is rejected."""
