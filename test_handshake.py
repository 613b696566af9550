"""
Tests for SignedKeyExchange

1. Announcement verification and key installation
2. Rejection of forged or malformed announcements
3. RSA identity keys
"""

import struct

from cryptography.hazmat.primitives.asymmetric import rsa

from conftest import Endpoint
from otrcore import MessageState
from otrcore.helpers import pack_data, pack_int, pack_mpi, unwrap_message, wrap_message
from otrcore.identity import serialize_public_key, sign_data, verify_signature


def announcement_from(endpoint):
    endpoint.session.handshake.start()
    return endpoint.outbox.pop()


def test_announcement_installs_peer_key(alice, bob):
    bob.session.receive(announcement_from(alice))

    assert bob.session.msgstate is MessageState.ENCRYPTED
    assert bob.session.keys.their_y == alice.session.keys.our_dh.public_value
    assert bob.session.keys.their_keyid == alice.session.keys.our_keyid
    # bob answers with his own announcement, flagged as a reply
    assert len(bob.outbox) == 1
    reply = unwrap_message(bob.outbox[0])
    assert reply[:3] == b"\x00\x02\x0a"
    assert reply[3] == 1


def test_reply_is_not_answered(alice, bob):
    bob.session.receive(announcement_from(alice))
    bob.deliver_to(alice)
    assert alice.session.msgstate is MessageState.ENCRYPTED
    assert alice.outbox == []


def test_forged_signature_rejected(alice, bob):
    binary = bytearray(unwrap_message(announcement_from(alice)))
    binary[-1] ^= 0x01

    bob.session.receive(wrap_message(bytes(binary)))

    assert bob.session.msgstate is MessageState.PLAINTEXT
    assert bob.ui == ["Invalid signature on DH public key."]
    assert bob.outbox == ["?OTR Error:Invalid signature on DH public key."]


def test_substituted_dh_key_rejected(alice, bob):
    """A valid signature over one DH key does not cover another."""
    identity = alice.session.identity_key
    signed_keyid = 1
    signed_y = alice.session.keys.our_dh.public_value
    other_y = bob.session.keys.our_old_dh.public_value

    announce = b"\x00\x02\x0a" + b"\x00"
    announce += pack_int(signed_keyid) + pack_mpi(other_y)
    announce += pack_data(serialize_public_key(identity.public_key()))
    announce += pack_data(sign_data(identity, pack_int(signed_keyid) + pack_mpi(signed_y)))

    bob.session.receive(wrap_message(announce))

    assert bob.session.msgstate is MessageState.PLAINTEXT
    assert bob.session.keys.their_keyid == 0


def test_malformed_announcement_rejected(bob):
    bob.session.receive(wrap_message(b"\x00\x02\x0a\x00\x00"))
    assert bob.session.msgstate is MessageState.PLAINTEXT
    assert bob.ui == ["Malformed key announcement."]


def test_unsupported_handshake_type_rejected(bob):
    bob.session.receive(wrap_message(b"\x00\x02\x02" + struct.pack("!I", 0)))
    assert bob.session.msgstate is MessageState.PLAINTEXT
    assert bob.ui == ["Unsupported handshake message type 0x02."]


def test_rsa_identity_keys(bob_key):
    rsa_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    signature = sign_data(rsa_key, b"data")
    assert verify_signature(rsa_key.public_key(), signature, b"data")
    assert not verify_signature(rsa_key.public_key(), signature, b"other")

    alice = Endpoint(rsa_key)
    bob = Endpoint(bob_key)
    bob.session.receive(announcement_from(alice))
    bob.deliver_to(alice)

    assert alice.session.msgstate is MessageState.ENCRYPTED
    assert bob.session.msgstate is MessageState.ENCRYPTED
    alice.session.send("signed with RSA")
    alice.deliver_to(bob)
    assert bob.ui == ["signed with RSA"]
