"""
Tests for KeyRotationManager

1. Initial state and handshake installation
2. Rotating our keys (epoch counter, retained pairs, moved bundles)
3. Rotating their keys (local pairs untouched)
4. MAC key disclosure on retirement
5. Resolving key offsets for incoming messages
"""

import pytest

from otrcore.dh import generate_keypair
from otrcore.errors import MessageIntegrityError
from otrcore.rotation import CURRENT, PREVIOUS, KeyRotationManager


def test_initial_state():
    keys = KeyRotationManager()
    assert keys.our_keyid == 1
    assert keys.their_keyid == 0
    assert keys.their_y is None
    assert keys.our_dh is not keys.our_old_dh
    assert keys.current() is None
    assert keys.sess_keys == [[None, None], [None, None]]


def test_install_peer_fills_current_column(manager_pair):
    a, b = manager_pair
    assert a.their_keyid == b.our_keyid == 1
    assert a.sess_keys[CURRENT][CURRENT] is not None
    assert a.sess_keys[PREVIOUS][CURRENT] is not None
    assert a.sess_keys[CURRENT][PREVIOUS] is None
    assert a.current().id == b.current().id


def test_install_peer_rejects_bad_input():
    keys = KeyRotationManager()
    with pytest.raises(MessageIntegrityError):
        keys.install_peer(1, 1)
    with pytest.raises(MessageIntegrityError):
        keys.install_peer(generate_keypair().public_value, 0)
    assert keys.their_keyid == 0


def test_install_peer_keeps_installed_key(manager_pair):
    a, b = manager_pair
    bundle = a.current()
    bundle.next_send_counter()

    assert a.install_peer(b.our_dh.public_value, b.our_keyid) is False
    assert a.current() is bundle
    assert bundle.send_counter == 1


def test_install_peer_next_key_rotates_theirs(manager_pair):
    a, b = manager_pair
    old_y = a.their_y
    bundle = a.current()
    b.rotate_ours()

    assert a.install_peer(b.our_dh.public_value, b.our_keyid)
    assert a.their_keyid == 2
    assert a.their_old_y == old_y
    assert a.sess_keys[CURRENT][PREVIOUS] is bundle


def test_install_peer_jump_replaces_peer_axis(manager_pair):
    a, _ = manager_pair
    a.install_peer(generate_keypair().public_value, 5)
    assert a.their_keyid == 5
    assert a.their_old_y is None
    assert a.sess_keys[CURRENT][PREVIOUS] is None


def test_install_peer_rejects_stale_and_reused_keys(manager_pair):
    a, b = manager_pair
    first_y = b.our_dh.public_value
    b.rotate_ours()
    a.install_peer(b.our_dh.public_value, b.our_keyid)

    with pytest.raises(MessageIntegrityError, match="Stale key id"):
        a.install_peer(first_y, 1)
    with pytest.raises(MessageIntegrityError, match="reuses a known DH key"):
        a.install_peer(first_y, 3)
    with pytest.raises(MessageIntegrityError, match="Stale key id"):
        a.install_peer(generate_keypair().public_value, 2)
    assert a.their_keyid == 2
    assert a.their_y == b.our_dh.public_value


def test_rotate_ours_increments_epoch():
    keys = KeyRotationManager()
    keys.install_peer(generate_keypair().public_value, 1)

    for n in range(1, 4):
        previous = keys.our_dh
        keys.rotate_ours()
        assert keys.our_keyid == 1 + n
        assert keys.our_old_dh is previous
        assert keys.our_dh is not previous


def test_rotate_ours_moves_current_row():
    keys = KeyRotationManager()
    keys.install_peer(generate_keypair().public_value, 1)
    bundle = keys.current()
    bundle.next_send_counter()

    keys.rotate_ours()

    assert keys.sess_keys[PREVIOUS][CURRENT] is bundle
    assert bundle.send_counter == 1
    assert keys.current() is not bundle
    assert keys.current().send_counter == 0


def test_rotate_theirs_leaves_local_pairs_alone():
    keys = KeyRotationManager()
    keys.install_peer(generate_keypair().public_value, 1)
    our_dh, our_old_dh, our_keyid = keys.our_dh, keys.our_old_dh, keys.our_keyid
    old_y = keys.their_y
    bundle = keys.current()

    new_y = generate_keypair().public_value
    keys.rotate_theirs(new_y)

    assert (keys.our_dh, keys.our_old_dh, keys.our_keyid) == (our_dh, our_old_dh, our_keyid)
    assert keys.their_y == new_y
    assert keys.their_old_y == old_y
    assert keys.their_keyid == 2
    assert keys.sess_keys[CURRENT][PREVIOUS] is bundle


def test_rotate_theirs_rejects_invalid_value():
    keys = KeyRotationManager()
    keys.install_peer(generate_keypair().public_value, 1)
    with pytest.raises(MessageIntegrityError):
        keys.rotate_theirs(0)
    assert keys.their_keyid == 1
    assert keys.their_old_y is None


def test_rotations_commute():
    """Both orders of one rotation per axis cover the same four pairings."""
    keys = KeyRotationManager()
    keys.install_peer(generate_keypair().public_value, 1)
    new_y = generate_keypair().public_value

    keys.rotate_ours()
    keys.rotate_theirs(new_y)

    assert all(cell is not None for row in keys.sess_keys for cell in row)
    assert keys.our_keyid == 2
    assert keys.their_keyid == 2


def test_unused_mac_keys_are_not_disclosed():
    keys = KeyRotationManager()
    keys.install_peer(generate_keypair().public_value, 1)
    keys.rotate_ours()
    keys.rotate_ours()
    keys.rotate_theirs(generate_keypair().public_value)
    keys.rotate_theirs(generate_keypair().public_value)
    assert keys.old_mac_keys == []


def test_used_mac_keys_disclosed_once_when_retired():
    keys = KeyRotationManager()
    keys.install_peer(generate_keypair().public_value, 1)
    bundle = keys.current()
    bundle.send_mac_used = True
    bundle.recv_mac_used = True

    # first rotation only moves the bundle to the previous row
    keys.rotate_ours()
    assert keys.old_mac_keys == []

    # second rotation drops it
    keys.rotate_ours()
    assert keys.old_mac_keys == [bundle.send_mac, bundle.recv_mac]

    keys.rotate_ours()
    assert keys.old_mac_keys == [bundle.send_mac, bundle.recv_mac]

    assert keys.take_old_mac_keys() == bundle.send_mac + bundle.recv_mac
    assert keys.old_mac_keys == []
    assert keys.take_old_mac_keys() == b""


def test_rotate_theirs_discloses_previous_column():
    keys = KeyRotationManager()
    keys.install_peer(generate_keypair().public_value, 1)
    bundle = keys.current()
    bundle.recv_mac_used = True

    keys.rotate_theirs(generate_keypair().public_value)
    assert keys.old_mac_keys == []

    keys.rotate_theirs(generate_keypair().public_value)
    assert keys.old_mac_keys == [bundle.recv_mac]


def test_resolve_offsets():
    keys = KeyRotationManager()
    keys.install_peer(generate_keypair().public_value, 1)

    assert keys.resolve(0, 0) is keys.current()
    assert keys.resolve(1, 0) is keys.sess_keys[PREVIOUS][CURRENT]

    with pytest.raises(MessageIntegrityError) as excinfo:
        keys.resolve(2, 0)
    assert excinfo.value.notify_peer

    with pytest.raises(MessageIntegrityError) as excinfo:
        keys.resolve(0, -1)
    assert excinfo.value.notify_peer

    with pytest.raises(MessageIntegrityError) as excinfo:
        keys.resolve(0, 1)
    assert str(excinfo.value) == "Do not have that key."
    assert not excinfo.value.notify_peer
