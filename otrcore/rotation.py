"""
Key Rotation

Two independent rotation axes are tracked: our DH key pairs and the
peer's DH public values. Each axis keeps its current and previous epoch,
giving a 2x2 matrix of session key bundles indexed
``[our offset][their offset]`` where 0 is current and 1 is previous.

When an epoch falls out of the window its bundles are dropped, and any
MAC key that was actually used is queued for disclosure to the peer.
"""

import logging

from .dh import generate_keypair, is_valid_public_value
from .errors import MessageIntegrityError
from .session_keys import SessionKeys


logger = logging.getLogger(__name__)

CURRENT = 0
PREVIOUS = 1


class KeyRotationManager:
    """
    Owns both DH axes, the session key matrix, and the MAC disclosure list.

    Attributes:
        our_dh / our_old_dh: current and previous local DHKeyPair
        our_keyid (int): epoch of ``our_dh``, starts at 1
        their_y / their_old_y: current and previous peer public values
        their_keyid (int): epoch of ``their_y``, 0 until a peer key is known
        sess_keys: 2x2 matrix of SessionKeys (None where a key is missing)
        old_mac_keys (list): retired MAC keys awaiting disclosure
    """

    def __init__(self, keypair_factory=generate_keypair):
        self._generate = keypair_factory

        # our keys
        self.our_dh = self._generate()
        self.our_old_dh = self._generate()
        self.our_keyid = 1

        # their keys
        self.their_y = None
        self.their_old_y = None
        self.their_keyid = 0

        self.sess_keys = [[None, None], [None, None]]
        self.old_mac_keys = []

    def _session(self, our_dh, their_y):
        if our_dh is None or their_y is None:
            return None
        return SessionKeys.derive(our_dh, their_y)

    def _retire(self, bundles):
        for sk in bundles:
            if sk is None:
                continue
            if sk.send_mac_used:
                self.old_mac_keys.append(sk.send_mac)
            if sk.recv_mac_used:
                self.old_mac_keys.append(sk.recv_mac)

    # -----------------------------------
    # Rotation
    # -----------------------------------
    def rotate_ours(self):
        """
        Retire our previous key pair and generate a new current one.

        Only call once the peer has acknowledged our current key, so that
        nothing in flight still needs the pair being dropped.
        """
        self._retire(self.sess_keys[PREVIOUS])

        self.our_old_dh = self.our_dh
        self.our_dh = self._generate()
        self.our_keyid += 1

        self.sess_keys[PREVIOUS] = self.sess_keys[CURRENT]
        self.sess_keys[CURRENT] = [
            self._session(self.our_dh, self.their_y),
            self._session(self.our_dh, self.their_old_y),
        ]

        logger.info("[KEY EXCHANGE] Rotated our DH key, now at key id %d", self.our_keyid)

    def rotate_theirs(self, their_y):
        """
        Accept the peer's newly announced public value.

        Local key pairs are not touched.

        Raises:
            MessageIntegrityError: if ``their_y`` is not a valid group element
        """
        if not is_valid_public_value(their_y):
            raise MessageIntegrityError("Invalid DH public value.")

        fresh = [
            self._session(self.our_dh, their_y),
            self._session(self.our_old_dh, their_y),
        ]

        self._retire(row[PREVIOUS] for row in self.sess_keys)

        self.their_old_y = self.their_y
        self.their_y = their_y
        self.their_keyid += 1

        for row, sk in zip(self.sess_keys, fresh):
            row[PREVIOUS] = row[CURRENT]
            row[CURRENT] = sk

        logger.info("[KEY EXCHANGE] Rotated their DH key, now at key id %d", self.their_keyid)

    def install_peer(self, their_y, their_keyid):
        """
        Install a peer key negotiated by the handshake.

        The key already installed is kept as is, bundles and counters
        included. The key following it is taken as a peer rotation. Any
        other newer key replaces the whole peer axis: every live bundle is
        retired and the previous peer value is forgotten.

        Key ids never go back, and a peer value is never paired with our
        keys twice, so no bundle is ever derived again with fresh counters.

        Returns:
            bool: False if the key was already installed

        Raises:
            MessageIntegrityError: on an invalid public value, a stale key
                id, or a known peer value under a new key id
        """
        if not is_valid_public_value(their_y):
            raise MessageIntegrityError("Invalid DH public value.")
        if their_keyid <= 0:
            raise MessageIntegrityError("Invalid key id (must be strictly positive).")

        if their_y == self.their_y and their_keyid == self.their_keyid:
            logger.debug("[KEY EXCHANGE] Peer key id %d already installed", their_keyid)
            return False
        if their_keyid <= self.their_keyid:
            raise MessageIntegrityError("Stale key id in key announcement.")
        if their_y in (self.their_y, self.their_old_y):
            raise MessageIntegrityError("Key announcement reuses a known DH key.")

        if self.their_y is not None and their_keyid == self.their_keyid + 1:
            self.rotate_theirs(their_y)
            return True

        fresh = [
            [self._session(self.our_dh, their_y), None],
            [self._session(self.our_old_dh, their_y), None],
        ]

        for row in self.sess_keys:
            self._retire(row)

        self.their_y = their_y
        self.their_old_y = None
        self.their_keyid = their_keyid
        self.sess_keys = fresh
        return True

    # -----------------------------------
    # Lookup
    # -----------------------------------
    def current(self):
        """The bundle used for every new outgoing message."""
        return self.sess_keys[CURRENT][CURRENT]

    def resolve(self, our_offset, their_offset):
        """
        Find the bundle for an incoming message's key epochs.

        Args:
            our_offset: 0 for our current key, 1 for our previous key
            their_offset: 0 for their current key, 1 for their previous key

        Raises:
            MessageIntegrityError: if either offset is unknown or the key
                it names is not available
        """
        if our_offset not in (CURRENT, PREVIOUS):
            raise MessageIntegrityError("Not of our latest keys.", notify_peer=True)
        if their_offset not in (CURRENT, PREVIOUS):
            raise MessageIntegrityError("Not of your latest keys.", notify_peer=True)
        if their_offset == PREVIOUS and self.their_old_y is None:
            raise MessageIntegrityError("Do not have that key.")

        sk = self.sess_keys[our_offset][their_offset]
        if sk is None:
            raise MessageIntegrityError("Do not have that key.")
        return sk

    def take_old_mac_keys(self):
        """Return the retired MAC keys as one byte string and clear the list."""
        old_mac_keys = b"".join(self.old_mac_keys)
        self.old_mac_keys = []
        return old_mac_keys
