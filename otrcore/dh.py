"""
Ephemeral Diffie-Hellman Key Pairs

All key pairs live in the fixed 1536-bit MODP group of RFC 3526 (group 5)
with generator 2. Fresh pairs are generated for every key epoch; the
private scalar never leaves this module's objects and is never logged.
"""

import logging

from cryptography.hazmat.primitives.asymmetric import dh

from .errors import MessageIntegrityError


logger = logging.getLogger(__name__)


# RFC 3526, 1536-bit MODP group
N = int(
    "FFFFFFFF" "FFFFFFFF" "C90FDAA2" "2168C234" "C4C6628B" "80DC1CD1"
    "29024E08" "8A67CC74" "020BBEA6" "3B139B22" "514A0879" "8E3404DD"
    "EF9519B3" "CD3A431B" "302B0A6D" "F25F1437" "4FE1356D" "6D51C245"
    "E485B576" "625E7EC6" "F44C42E9" "A637ED6B" "0BFF5CB6" "F406B7ED"
    "EE386BFB" "5A899FA5" "AE9F2411" "7C4B1FE6" "49286651" "ECE45B3D"
    "C2007CB8" "A163BF05" "98DA4836" "1C55D39A" "69163FA8" "FD24CF5F"
    "83655D23" "DCA3AD96" "1C62F356" "208552BB" "9ED52907" "7096966D"
    "670C354E" "4ABC9804" "F1746C08" "CA237327" "FFFFFFFF" "FFFFFFFF",
    16,
)
G = 2

_PARAMETER_NUMBERS = dh.DHParameterNumbers(N, G)
_parameters = None


def group_parameters():
    """
    Return the shared DHParameters object for the fixed group.

    Unlike freshly generated parameters these are a well-known safe prime,
    so there is no generation cost; the object is built once and reused.
    """
    global _parameters
    if _parameters is None:
        _parameters = _PARAMETER_NUMBERS.parameters()
    return _parameters


class DHKeyPair:
    """
    One ephemeral key pair.

    Attributes:
        private_scalar (int): secret exponent
        public_value (int): G^private_scalar mod N
    """

    def __init__(self, private_key):
        self._private_key = private_key
        numbers = private_key.private_numbers()
        self.private_scalar = numbers.x
        self.public_value = numbers.public_numbers.y

    def shared_secret(self, peer_public):
        """
        Compute ``peer_public ^ private_scalar mod N``.

        Args:
            peer_public: peer's public value (int)

        Returns:
            int: the shared secret
        """
        peer_key = load_public_value(peer_public)
        try:
            secret = self._private_key.exchange(peer_key)
        except ValueError as e:
            logger.debug("[CRYPTO] DH exchange failed: %s", e)
            raise MessageIntegrityError("Invalid DH public value.")
        return int.from_bytes(secret, "big")

    def __repr__(self):
        return f"DHKeyPair(public_value={hex(self.public_value)[:18]}...)"


def generate_keypair():
    """
    Generate an ephemeral key pair in the fixed group.

    Returns:
        DHKeyPair
    """
    return DHKeyPair(group_parameters().generate_private_key())


def is_valid_public_value(value):
    return isinstance(value, int) and 2 <= value <= N - 2


def load_public_value(value):
    """
    Turn a peer's public value into a ``DHPublicKey``.

    Raises:
        MessageIntegrityError: if the value is outside [2, N-2] or rejected
            by the backend
    """
    if not is_valid_public_value(value):
        raise MessageIntegrityError("Invalid DH public value.")
    try:
        return dh.DHPublicNumbers(value, _PARAMETER_NUMBERS).public_key()
    except ValueError as e:
        logger.debug("[CRYPTO] DH public value rejected: %s", e)
        raise MessageIntegrityError("Invalid DH public value.")
