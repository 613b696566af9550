"""
Signed Key Exchange

A minimal handshake collaborator: each side announces its current DH
public value and key id, signed with its long-term identity key. The
receiver verifies the signature, installs the key through
``session.complete_handshake`` and answers with its own announcement.

Announcement layout (after the version/type header):

    reply(1) keyid(4) MPI(DH public) DATA(identity public key, DER)
    DATA(signature over keyid || MPI(DH public))

Announcements are bound to the identity key only, not to the peer they
are addressed to; hosts must check ``session.their_fingerprint()``
out of band.
"""

import logging
import struct

from .dh import is_valid_public_value
from .errors import HandshakeError
from .helpers import pack_data, pack_int, pack_mpi, read_data, read_int, read_mpi, wrap_message
from .identity import load_public_key, serialize_public_key, sign_data, verify_signature


logger = logging.getLogger(__name__)

KEY_ANNOUNCE_TYPE = 0x0a
HEADER = struct.Struct("!HB")


def _signed_bytes(keyid, public_value):
    return pack_int(keyid) + pack_mpi(public_value)


class SignedKeyExchange:
    """Handshake collaborator built per session by ``handshake_factory``."""

    def __init__(self, session):
        self.session = session

    def start(self):
        """
        Send our signed key announcement.

        Once a peer key is known our key pair is rotated first, so a
        repeated handshake never announces a key already in use.
        """
        logger.info("[KEY EXCHANGE] Starting key exchange")
        if self.session.keys.their_keyid:
            self.session.rotate_our_keys()
        self._announce(reply=False)

    def handle(self, message):
        """
        Process a peer announcement.

        Args:
            message: ParsedMessage of class "ake"

        Raises:
            HandshakeError: if the announcement is malformed or its
                signature does not verify
        """
        if message.type != KEY_ANNOUNCE_TYPE:
            raise HandshakeError(f"Unsupported handshake message type 0x{message.type:02x}.")

        body = message.payload
        try:
            if not body:
                raise ValueError("Empty key announcement")
            reply = body[0]
            keyid, offset = read_int(body, 1)
            public_value, offset = read_mpi(body, offset)
            identity_der, offset = read_data(body, offset)
            signature, offset = read_data(body, offset)
            identity = load_public_key(identity_der)
        except ValueError as e:
            logger.warning("[KEY EXCHANGE] Malformed key announcement: %s", e)
            raise HandshakeError("Malformed key announcement.")

        if not is_valid_public_value(public_value):
            raise HandshakeError("Invalid DH public value in key announcement.")

        if not verify_signature(identity, signature, _signed_bytes(keyid, public_value)):
            raise HandshakeError("Invalid signature on DH public key.", notify_peer=True)

        logger.info("[KEY EXCHANGE] ✓ Peer's DH signature verified")

        self.session.complete_handshake(public_value, keyid, their_identity=identity)

        if not reply:
            self._announce(reply=True)

    def _announce(self, reply):
        session = self.session
        keys = session.keys
        identity = session.identity_key

        keyid = keys.our_keyid
        public_value = keys.our_dh.public_value

        announce = HEADER.pack(2, KEY_ANNOUNCE_TYPE)
        announce += struct.pack("!B", 1 if reply else 0)
        announce += _signed_bytes(keyid, public_value)
        announce += pack_data(serialize_public_key(identity.public_key()))
        announce += pack_data(sign_data(identity, _signed_bytes(keyid, public_value)))

        session.send(wrap_message(announce), internal=True)
