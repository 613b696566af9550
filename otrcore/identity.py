"""
Long-term Identity Keys

The session only needs a value that can sign data and export a public
key. DSA keys are the default (as in OTR v2); RSA keys are accepted too
and sign with RSA-PSS.
"""

import logging

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, padding, rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_der_public_key
)

from .helpers import sha1


logger = logging.getLogger(__name__)


def generate_identity_key():
    """
    Generate a long-lived DSA identity key (1024-bit, as OTR v2 uses).

    Returns:
        DSAPrivateKey
    """
    return dsa.generate_private_key(key_size=1024)


def is_identity_key(key):
    """Structural check: can this value sign and export a public key?"""
    return callable(getattr(key, "sign", None)) and callable(getattr(key, "public_key", None))


def _pss():
    return padding.PSS(
        mgf=padding.MGF1(hashes.SHA256()),
        salt_length=padding.PSS.MAX_LENGTH
    )


def sign_data(private_key, data):
    """
    Sign ``data`` with a long-term identity key.

    Args:
        private_key: DSA or RSA private key
        data: bytes to sign

    Returns:
        bytes: signature
    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key.sign(data, _pss(), hashes.SHA256())
    return private_key.sign(data, hashes.SHA256())


def verify_signature(public_key, signature, data):
    """
    Verify a signature made by :func:`sign_data`.

    Returns:
        bool: True if the signature is valid, False otherwise
    """
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, data, _pss(), hashes.SHA256())
        else:
            public_key.verify(signature, data, hashes.SHA256())
        return True
    except InvalidSignature:
        logger.warning("[CRYPTO] Identity signature verification failed")
        return False


def serialize_public_key(public_key):
    return public_key.public_bytes(
        encoding=Encoding.DER,
        format=PublicFormat.SubjectPublicKeyInfo
    )


def load_public_key(der_bytes):
    """
    Load a DER-encoded identity public key.

    Raises:
        ValueError: if the bytes are not a supported DSA or RSA public key
    """
    try:
        public_key = load_der_public_key(der_bytes)
    except UnsupportedAlgorithm as e:
        raise ValueError(str(e))
    if not isinstance(public_key, (dsa.DSAPublicKey, rsa.RSAPublicKey)):
        raise ValueError("Unsupported identity key type")
    return public_key


def fingerprint(public_key):
    """Human-readable SHA-1 fingerprint, five groups of eight hex digits."""
    digest = sha1(serialize_public_key(public_key)).hex().upper()
    return " ".join(digest[i:i + 8] for i in range(0, len(digest), 8))
