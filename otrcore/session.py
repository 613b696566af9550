"""
OTR Session Controller

One OTRSession exists per conversation. It owns the message state, the
key rotation manager, the queue of messages waiting for encryption, and
dispatches incoming traffic to the handshake collaborator or the data
message codec.

All operations on one session must be serialized by the host; the
controller does no locking of its own.
"""

import logging
from enum import Enum

from .config import Policy
from .data_message import (
    FLAG_IGNORE_UNREADABLE,
    TLV,
    TLV_DISCONNECTED,
    DataMessageCodec,
    encode_tlvs,
)
from .errors import ConstructionError, MessageIntegrityError, OTRError, ProtocolStateError
from .handshake import SignedKeyExchange
from .helpers import wrap_message
from .identity import fingerprint, generate_identity_key, is_identity_key
from .parse import MessageParser, error_message, query_message, tag_plaintext
from .rotation import KeyRotationManager


logger = logging.getLogger(__name__)


class MessageState(Enum):
    PLAINTEXT = 0
    ENCRYPTED = 1
    FINISHED = 2


class OTRSession:

    def __init__(self, identity_key, ui_callback, io_callback, policy=None,
                 parser=None, handshake_factory=SignedKeyExchange):
        """
        Create a session.

        Args:
            identity_key: long-lived signing key (sign + public_key), or
                None to generate a fresh DSA key
            ui_callback: called with delivered plaintext and error text
            io_callback: called with every outgoing wire message
            policy: Policy, defaults to Policy()
            parser: wire classifier, defaults to MessageParser()
            handshake_factory: callable(session) -> handshake collaborator

        Raises:
            ConstructionError: on an invalid identity key or missing callbacks
        """
        # -----------------------------
        # Long-term identity
        # -----------------------------
        if identity_key is None:
            identity_key = generate_identity_key()
        elif not is_identity_key(identity_key):
            raise ConstructionError("Requires long-lived signing key.")
        self.identity_key = identity_key

        # -----------------------------
        # Host callbacks
        # -----------------------------
        if not callable(ui_callback) or not callable(io_callback):
            raise ConstructionError("UI and IO callbacks are required.")
        self.ui_callback = ui_callback
        self.io_callback = io_callback

        self.policy = policy if policy is not None else Policy()
        self.parser = parser if parser is not None else MessageParser()
        self._handshake_factory = handshake_factory

        self.init()

    def init(self):
        """Reset all conversation state."""
        self.msgstate = MessageState.PLAINTEXT

        # keys and codec
        self.keys = KeyRotationManager()
        self.codec = DataMessageCodec(self.keys)

        # negotiated by the handshake
        self.ssid = None
        self.their_identity = None

        # messages waiting for encryption
        self.stored_messages = []

        # interactive authentication sub-session (not implemented here)
        self.sm = None

        self.handshake = self._handshake_factory(self)

        # plaintext received since entering PLAINTEXT (whitespace tag policy)
        self._plaintext_received = False

    # -----------------------------------
    # Error Reporting
    # -----------------------------------
    def report(self, error):
        """
        Report a non-fatal error.

        The text always goes to the UI callback. Errors flagged with
        ``notify_peer`` are also sent to the peer as "?OTR Error:" messages.
        """
        if self.policy.debug:
            logger.info("[SESSION] %s: %s", type(error).__name__, error)
        else:
            logger.debug("[SESSION] %s: %s", type(error).__name__, error)

        if getattr(error, "notify_peer", False):
            self.send(error_message(str(error)), internal=True)
        self.ui_callback(str(error))

    # -----------------------------------
    # Outgoing
    # -----------------------------------
    def send_query(self):
        """Ask the peer to start a handshake."""
        self.send(query_message(self.policy.versions), internal=True)

    def send(self, message, internal=False):
        """
        Send a message.

        Internal messages (protocol traffic) go straight to the transport.
        User messages depend on the message state.

        Args:
            message: str to send
            internal: True for protocol messages
        """
        if internal:
            self.io_callback(message)
            return

        if self.msgstate is MessageState.PLAINTEXT:
            if self.policy.require_encryption:
                self.stored_messages.append(message)
                self.send_query()
                return
            if self.policy.send_whitespace_tag and not self._plaintext_received:
                message = tag_plaintext(message, self.policy.versions)
            self.io_callback(message)

        elif self.msgstate is MessageState.FINISHED:
            self.stored_messages.append(message)
            self.report(ProtocolStateError("Message cannot be sent at this time."))

        else:
            self.stored_messages.append(message)
            try:
                wire = self.prepare_message(message.encode("utf-8"))
            except ProtocolStateError as e:
                self.report(e)
                return
            self.stored_messages.pop()
            self.io_callback(wire)

    def prepare_message(self, plaintext, flags=0):
        """
        Encode ``plaintext`` (bytes) as a wire-ready data message.

        Raises:
            ProtocolStateError: if the session is not ready to encrypt
        """
        if self.msgstate is not MessageState.ENCRYPTED or self.keys.their_keyid == 0:
            raise ProtocolStateError("Not ready to encrypt.")
        return wrap_message(self.codec.encode(plaintext, flags))

    def flush_queued(self):
        """Resend every stored message, oldest first."""
        stored, self.stored_messages = self.stored_messages, []
        for message in stored:
            self.send(message)

    # -----------------------------------
    # Incoming
    # -----------------------------------
    def receive(self, raw):
        """
        Process one message from the transport.

        Args:
            raw: str as received
        """
        message = self.parser.parse(raw)
        if message is None:
            return

        handler = getattr(self, f"_handle_{message.cls}")
        handler(message)

    def _handle_error(self, message):
        self.ui_callback(message.msg)
        if self.policy.error_start_ake:
            self.send_query()

    def _handle_query(self, message):
        if 2 in message.versions and self.policy.allow_v2:
            self.handshake.start()
        else:
            logger.info("[SESSION] No common protocol version in query %s", sorted(message.versions))

    def _handle_ake(self, message):
        try:
            self.handshake.handle(message)
        except OTRError as e:
            self.report(e)

    def _handle_data(self, message):
        if self.msgstate is not MessageState.ENCRYPTED:
            self.report(MessageIntegrityError("Received an unreadable encrypted message.", notify_peer=True))
            return

        try:
            data = self.codec.decode(message.payload)
        except MessageIntegrityError as e:
            logger.warning("[SESSION] Rejected data message: %s", e)
            self.report(e)
            return
        if data is None:
            return

        if data.has_tlv(TLV_DISCONNECTED):
            logger.info("[SESSION] Peer ended the private conversation")
            self.msgstate = MessageState.FINISHED
            self.sm = None

        if data.message:
            self.ui_callback(data.message.decode("utf-8", errors="replace"))

    def _handle_plaintext(self, message):
        if message.versions and self.policy.whitespace_start_ake and 2 in message.versions:
            self.handshake.start()

        if self.msgstate is not MessageState.PLAINTEXT or self.policy.require_encryption:
            logger.warning("[SESSION] Received an unencrypted message")

        self._plaintext_received = True
        if message.msg:
            self.ui_callback(message.msg)

    # -----------------------------------
    # Lifecycle
    # -----------------------------------
    def complete_handshake(self, their_public, their_keyid, ssid=None, their_identity=None):
        """
        Hook for the handshake collaborator once a peer key is authenticated.

        Args:
            their_public: peer DH public value (int)
            their_keyid: peer key id for that value
            ssid: negotiated session id, defaults to the current bundle's id
            their_identity: peer long-term public key, if known

        Raises:
            MessageIntegrityError: if the key or key id is invalid, stale,
                or reuses a known peer value
        """
        self.keys.install_peer(their_public, their_keyid)
        self.ssid = ssid if ssid is not None else self.keys.current().id
        self.their_identity = their_identity
        self.msgstate = MessageState.ENCRYPTED
        logger.info("[KEY EXCHANGE] ✓ Private conversation started, ssid %s", self.ssid.hex())

    def end_session(self):
        """Leave the private conversation, telling the peer if encrypted."""
        try:
            if self.msgstate is MessageState.ENCRYPTED:
                notice = b"\x00" + encode_tlvs([TLV(TLV_DISCONNECTED)])
                try:
                    wire = self.prepare_message(notice, flags=FLAG_IGNORE_UNREADABLE)
                except ProtocolStateError as e:
                    self.report(e)
                else:
                    self.send(wire, internal=True)
        finally:
            self.sm = None
            self.msgstate = MessageState.PLAINTEXT
            self._plaintext_received = False

    def rotate_our_keys(self):
        self.keys.rotate_ours()

    def rotate_their_keys(self, their_y):
        self.keys.rotate_theirs(their_y)

    # -----------------------------------
    # Identity
    # -----------------------------------
    def fingerprint(self):
        return fingerprint(self.identity_key.public_key())

    def their_fingerprint(self):
        if self.their_identity is None:
            return None
        return fingerprint(self.their_identity)

    def __repr__(self):
        return (
            f"OTRSession("
            f"state={self.msgstate.name}, "
            f"our_keyid={self.keys.our_keyid}, "
            f"their_keyid={self.keys.their_keyid}, "
            f"stored={len(self.stored_messages)})"
        )
