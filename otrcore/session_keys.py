"""
Session Key Bundles

This module derives the per-pairing key material used by data messages:
one local DH key pair combined with one peer public value yields a send
key, a receive key, their MAC keys, and the counters that keep every
(key, counter) pair unique.
"""

from .helpers import h1, h2, pack_mpi, sha1


def is_high_end(our_public, their_public):
    """
    Are we the "high" end of the connection?

    Both peers evaluate this on the same two values, so exactly one of
    them is high and neither needs to tell the other.
    """
    return our_public > their_public


class SessionKeys:
    """
    Key material for one (local key pair, peer public value) pairing.

    Attributes:
        id (bytes): 8-byte session id, first 64 bits of SHA-256(0x00 || s)
        send_enc (bytes): 128-bit AES key for outgoing messages
        send_mac (bytes): SHA-1(send_enc), HMAC key for outgoing messages
        send_mac_used (bool): set once a message has been sent with these keys
        recv_enc (bytes): 128-bit AES key for incoming messages
        recv_mac (bytes): SHA-1(recv_enc), HMAC key for incoming messages
        recv_mac_used (bool): set once an incoming message verified
        send_counter (int): counter of the last message sent
        recv_counter (int): counter of the last message accepted
    """

    def __init__(self, session_id, send_enc, recv_enc):
        self.id = session_id

        self.send_enc = send_enc
        self.send_mac = sha1(send_enc)
        self.send_mac_used = False

        self.recv_enc = recv_enc
        self.recv_mac = sha1(recv_enc)
        self.recv_mac_used = False

        self.send_counter = 0
        self.recv_counter = 0

    @classmethod
    def derive(cls, our_dh, their_y):
        """
        Derive the bundle for ``our_dh`` paired with ``their_y``.

        Args:
            our_dh: local DHKeyPair
            their_y: peer public value (int)

        Returns:
            SessionKeys
        """
        secbytes = pack_mpi(our_dh.shared_secret(their_y))

        session_id = h2(b"\x00", secbytes)[:8]

        if is_high_end(our_dh.public_value, their_y):
            sendbyte, rcvbyte = b"\x01", b"\x02"
        else:
            sendbyte, rcvbyte = b"\x02", b"\x01"

        return cls(
            session_id,
            send_enc=h1(sendbyte, secbytes)[:16],
            recv_enc=h1(rcvbyte, secbytes)[:16],
        )

    def next_send_counter(self):
        """Increment and return the send counter."""
        self.send_counter += 1
        return self.send_counter

    def __repr__(self):
        return (
            f"SessionKeys("
            f"id={self.id.hex()}, "
            f"send_counter={self.send_counter}, "
            f"recv_counter={self.recv_counter}, "
            f"send_mac_used={self.send_mac_used}, "
            f"recv_mac_used={self.recv_mac_used})"
        )
