"""
Data Message Codec

Encodes outgoing plaintext as authenticated, encrypted OTR v2 data
messages and verifies/decrypts incoming ones.

Wire layout (big-endian):

    version(2) type(1) flags(1)
    sender_keyid(4) recipient_keyid(4) MPI(sender DH public) counter(4)
    DATA(ciphertext) MAC(20) DATA(disclosed MAC keys)

The MAC covers sender_keyid through the ciphertext DATA field.
"""

import logging
import struct

from .errors import MessageIntegrityError, ProtocolStateError
from .helpers import (
    MAC_SIZE,
    decrypt_aes,
    make_aes,
    make_mac,
    pack_data,
    pack_int,
    pack_mpi,
    read_data,
    read_int,
    read_mpi,
    verify_mac,
)
from .rotation import CURRENT


logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 2
DATA_MESSAGE_TYPE = 0x03
HEADER = struct.Struct("!HB")

FLAG_IGNORE_UNREADABLE = 0x01

MAX_COUNTER = 0xFFFFFFFF

# TLV record types
TLV_PADDING = 0
TLV_DISCONNECTED = 1


class TLV:
    def __init__(self, type, value=b""):
        self.type = type
        self.value = value

    def __repr__(self):
        return f"TLV(type={self.type}, length={len(self.value)})"

    def encode(self):
        return struct.pack("!HH", self.type, len(self.value)) + self.value


def encode_tlvs(tlvs):
    return b"".join(tlv.encode() for tlv in tlvs)


def decode_tlvs(buffer):
    """
    Split a buffer into TLV records.

    Raises:
        ValueError: if a record is truncated
    """
    tlvs = []
    offset = 0
    while offset < len(buffer):
        if len(buffer) < offset + 4:
            raise ValueError("Truncated TLV header")
        type, length = struct.unpack_from("!HH", buffer, offset)
        offset += 4
        if len(buffer) < offset + length:
            raise ValueError("Truncated TLV value")
        tlvs.append(TLV(type, bytes(buffer[offset:offset + length])))
        offset += length
    return tlvs


class DataMessage:
    """
    A verified, decrypted incoming data message.

    Attributes:
        flags (int): header flags
        sender_keyid (int), recipient_keyid (int): key ids as sent
        counter (int): message counter
        plaintext (bytes): full decrypted body
        message (bytes): human-readable part (before the first NUL)
        tlvs (list): TLV records following the NUL, if any
        old_mac_keys (bytes): MAC keys disclosed by the peer
    """

    def __init__(self, flags, sender_keyid, recipient_keyid, counter, plaintext,
                 old_mac_keys):
        self.flags = flags
        self.sender_keyid = sender_keyid
        self.recipient_keyid = recipient_keyid
        self.counter = counter
        self.plaintext = plaintext
        self.old_mac_keys = old_mac_keys
        self.message, self.tlvs = self._split_tlvs(plaintext)

    @staticmethod
    def _split_tlvs(plaintext):
        message, sep, tlv_data = plaintext.partition(b"\x00")
        if not sep:
            return plaintext, []
        try:
            return message, decode_tlvs(tlv_data)
        except ValueError:
            return plaintext, []

    def has_tlv(self, type):
        return any(tlv.type == type for tlv in self.tlvs)

    def __repr__(self):
        return (
            f"DataMessage(flags={self.flags}, sender_keyid={self.sender_keyid}, "
            f"recipient_keyid={self.recipient_keyid}, counter={self.counter}, "
            f"tlvs={self.tlvs!r})"
        )


class DataMessageCodec:
    """Encodes and decodes data messages against a KeyRotationManager."""

    def __init__(self, keys):
        self.keys = keys

    # -----------------------------------
    # Outgoing
    # -----------------------------------
    def encode(self, plaintext, flags=0):
        """
        Encrypt and authenticate ``plaintext``.

        Args:
            plaintext: bytes to send
            flags: header flags (FLAG_IGNORE_UNREADABLE for control messages)

        Returns:
            bytes: binary data message, header included

        Raises:
            ProtocolStateError: if no peer key is established yet or the
                send counter is exhausted
        """
        keys = self.keys
        sess_keys = keys.current()
        if keys.their_keyid == 0 or sess_keys is None:
            raise ProtocolStateError("Not ready to encrypt.")
        if sess_keys.send_counter >= MAX_COUNTER:
            raise ProtocolStateError("Message counter exhausted, keys must be rotated.")

        counter = sess_keys.next_send_counter()

        ta = pack_int(keys.our_keyid - 1)
        ta += pack_int(keys.their_keyid)
        ta += pack_mpi(keys.our_dh.public_value)
        ta += pack_int(counter)
        ta += pack_data(make_aes(plaintext, sess_keys.send_enc, counter))

        mta = make_mac(ta, sess_keys.send_mac)
        sess_keys.send_mac_used = True

        send = HEADER.pack(PROTOCOL_VERSION, DATA_MESSAGE_TYPE)
        send += struct.pack("!B", flags)
        send += ta + mta + pack_data(keys.take_old_mac_keys())
        return send

    # -----------------------------------
    # Incoming
    # -----------------------------------
    @staticmethod
    def split(body):
        """
        Split a data message body (everything after version and type).

        Returns:
            tuple: (flags, sender_keyid, recipient_keyid, public, counter,
                    ciphertext, authenticated_bytes, mac, old_mac_keys)

        Raises:
            ValueError: if the body does not match the layout
        """
        if not body:
            raise ValueError("Empty data message")
        flags = body[0]
        sender_keyid, offset = read_int(body, 1)
        recipient_keyid, offset = read_int(body, offset)
        public, offset = read_mpi(body, offset)
        counter, offset = read_int(body, offset)
        ciphertext, offset = read_data(body, offset)
        authenticated = bytes(body[1:offset])
        if len(body) < offset + MAC_SIZE:
            raise ValueError("Truncated MAC field")
        mac = bytes(body[offset:offset + MAC_SIZE])
        old_mac_keys, offset = read_data(body, offset + MAC_SIZE)
        if offset != len(body):
            raise ValueError("Trailing bytes after data message")
        return (flags, sender_keyid, recipient_keyid, public, counter,
                ciphertext, authenticated, mac, old_mac_keys)

    def decode(self, body):
        """
        Verify and decrypt an incoming data message.

        Nothing is mutated unless the message passes every check.

        Args:
            body: message bytes following the version/type header

        Returns:
            DataMessage, or None if the message was malformed but carried
            the ignore-unreadable flag

        Raises:
            MessageIntegrityError: on any validation failure
        """
        try:
            (flags, sender_keyid, recipient_keyid, _, counter,
             ciphertext, authenticated, mac, old_mac_keys) = self.split(body)
        except ValueError as e:
            if body and body[0] & FLAG_IGNORE_UNREADABLE:
                logger.debug("[SESSION] Ignoring malformed flagged data message: %s", e)
                return None
            raise MessageIntegrityError("Malformed data message.")

        keys = self.keys
        our_offset = keys.our_keyid - recipient_keyid
        # the sender writes its key id minus one
        their_offset = keys.their_keyid - (sender_keyid + 1)

        sess_keys = keys.resolve(our_offset, their_offset)

        if counter <= sess_keys.recv_counter:
            raise MessageIntegrityError("Counter in message is not larger.")

        if not verify_mac(authenticated, sess_keys.recv_mac, mac):
            raise MessageIntegrityError("MACs do not match.")

        plaintext = decrypt_aes(ciphertext, sess_keys.recv_enc, counter)

        sess_keys.recv_counter = counter
        sess_keys.recv_mac_used = True

        if our_offset != CURRENT or their_offset != CURRENT:
            logger.debug("[SESSION] Accepted message for key offsets (%d, %d)", our_offset, their_offset)

        return DataMessage(flags, sender_keyid, recipient_keyid, counter,
                           plaintext, old_mac_keys)
