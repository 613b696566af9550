"""
Shared fixtures for the otrcore test suite.

Identity keys are generated once per test run (DSA key generation is the
slowest thing the suite does).
"""

import pytest

from otrcore import OTRSession, Policy
from otrcore.identity import generate_identity_key
from otrcore.rotation import KeyRotationManager


class Endpoint:
    """One side of a conversation: a session plus captured callbacks."""

    def __init__(self, identity_key, policy=None):
        self.outbox = []
        self.ui = []
        self.session = OTRSession(identity_key, self.ui.append, self.outbox.append, policy=policy)

    def deliver_to(self, other):
        """Hand every queued outgoing message to ``other``, in order."""
        while self.outbox:
            other.session.receive(self.outbox.pop(0))


def connect(alice, bob):
    """Run the handshake between two endpoints until both are encrypted."""
    alice.session.send_query()
    alice.deliver_to(bob)
    bob.deliver_to(alice)
    alice.deliver_to(bob)


@pytest.fixture(scope="session")
def alice_key():
    return generate_identity_key()


@pytest.fixture(scope="session")
def bob_key():
    return generate_identity_key()


@pytest.fixture
def alice(alice_key):
    return Endpoint(alice_key)


@pytest.fixture
def bob(bob_key):
    return Endpoint(bob_key)


@pytest.fixture
def connected(alice, bob):
    connect(alice, bob)
    return alice, bob


@pytest.fixture
def strict_policy():
    return Policy(require_encryption=True)


@pytest.fixture
def manager_pair():
    """Two rotation managers that know each other's current key."""
    a = KeyRotationManager()
    b = KeyRotationManager()
    a.install_peer(b.our_dh.public_value, b.our_keyid)
    b.install_peer(a.our_dh.public_value, a.our_keyid)
    return a, b
