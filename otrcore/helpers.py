"""
Low-level Primitives for the OTR Session Layer

This module provides the byte-level building blocks used by the session
core:
1. Integer / MPI / DATA packing and unpacking (big-endian, OTR v2 layout)
2. Hashing (SHA-1 for key material, SHA-256 for session ids)
3. HMAC-SHA1 message authentication
4. AES-128 in counter mode for data message bodies
5. ASCII armouring of encoded messages ("?OTR:...")

All functions are pure: no state, no logging of key material.
"""

import base64
import binascii
import struct

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes


MAC_SIZE = 20  # HMAC-SHA1 digest

ENCODED_PREFIX = "?OTR:"
ENCODED_SUFFIX = "."


# ========================================
# Packing
# ========================================

def pack_int(value):
    """Pack an unsigned 32-bit integer (OTR "INT")."""
    return struct.pack("!I", value)


def pack_data(data):
    """
    Pack a length-prefixed byte string (OTR "DATA").

    Args:
        data: bytes to pack

    Returns:
        bytes: 4-byte big-endian length followed by the data
    """
    return struct.pack("!I", len(data)) + data


def long_to_bytes(value):
    """Minimal big-endian encoding of a non-negative integer."""
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def pack_mpi(value):
    """Pack a multi-precision integer (OTR "MPI"): DATA of its magnitude."""
    return pack_data(long_to_bytes(value))


def read_int(buffer, offset):
    """
    Read an INT at ``offset``.

    Returns:
        tuple: (value, new_offset)

    Raises:
        ValueError: if the buffer is truncated
    """
    if len(buffer) < offset + 4:
        raise ValueError("Truncated INT field")
    value, = struct.unpack_from("!I", buffer, offset)
    return value, offset + 4


def read_data(buffer, offset):
    """Read a DATA field at ``offset``. Returns (bytes, new_offset)."""
    length, offset = read_int(buffer, offset)
    if len(buffer) < offset + length:
        raise ValueError("Truncated DATA field")
    return bytes(buffer[offset:offset + length]), offset + length


def read_mpi(buffer, offset):
    """Read an MPI field at ``offset``. Returns (int, new_offset)."""
    data, offset = read_data(buffer, offset)
    return int.from_bytes(data, "big"), offset


# ========================================
# Hashing
# ========================================

def sha1(data):
    digest = hashes.Hash(hashes.SHA1())
    digest.update(data)
    return digest.finalize()


def sha256(data):
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize()


def h1(selector, secbytes):
    """SHA-1 of a one-byte selector followed by the packed shared secret."""
    return sha1(selector + secbytes)


def h2(selector, secbytes):
    """SHA-256 of a one-byte selector followed by the packed shared secret."""
    return sha256(selector + secbytes)


# ========================================
# Message Authentication
# ========================================

def make_mac(data, key):
    """
    Compute HMAC-SHA1 over ``data``.

    Args:
        data: bytes to authenticate
        key: MAC key (20 bytes in this protocol)

    Returns:
        bytes: 20-byte MAC
    """
    mac = hmac.HMAC(key, hashes.SHA1())
    mac.update(data)
    return mac.finalize()


def verify_mac(data, key, expected):
    """
    Verify an HMAC-SHA1 tag in constant time.

    Returns:
        bool: True if the tag matches, False otherwise
    """
    mac = hmac.HMAC(key, hashes.SHA1())
    mac.update(data)
    try:
        mac.verify(expected)
        return True
    except InvalidSignature:
        return False


# ========================================
# AES-128 Counter Mode
# ========================================

def _counter_block(counter):
    # top half carries the message counter, bottom half the block counter
    return struct.pack("!Q", counter) + b"\x00" * 8


def make_aes(plaintext, key, counter):
    """
    Encrypt ``plaintext`` with AES-CTR keyed by (key, counter).

    The same (key, counter) pair must never be used twice.

    Args:
        plaintext: bytes to encrypt
        key: 16-byte AES key
        counter: message counter placed in the top half of the IV

    Returns:
        bytes: ciphertext, same length as the plaintext
    """
    encryptor = Cipher(algorithms.AES(key), modes.CTR(_counter_block(counter))).encryptor()
    return encryptor.update(plaintext) + encryptor.finalize()


def decrypt_aes(ciphertext, key, counter):
    decryptor = Cipher(algorithms.AES(key), modes.CTR(_counter_block(counter))).decryptor()
    return decryptor.update(ciphertext) + decryptor.finalize()


# ========================================
# ASCII Armour
# ========================================

def wrap_message(binary):
    """Wrap a binary encoded message as ``?OTR:<base64>.``"""
    return ENCODED_PREFIX + base64.b64encode(binary).decode("ascii") + ENCODED_SUFFIX


def unwrap_message(text):
    """
    Reverse of :func:`wrap_message`.

    Raises:
        ValueError: if the text is not a well-formed encoded message
    """
    if not text.startswith(ENCODED_PREFIX) or not text.endswith(ENCODED_SUFFIX):
        raise ValueError("Not an encoded OTR message")
    try:
        return base64.b64decode(text[len(ENCODED_PREFIX):-len(ENCODED_SUFFIX)], validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Invalid base64 in encoded OTR message")


__all__ = [
    'MAC_SIZE',
    # packing
    'pack_int',
    'pack_data',
    'pack_mpi',
    'long_to_bytes',
    'read_int',
    'read_data',
    'read_mpi',
    # hashing / MAC
    'sha1',
    'sha256',
    'h1',
    'h2',
    'make_mac',
    'verify_mac',
    # cipher
    'make_aes',
    'decrypt_aes',
    # armour
    'wrap_message',
    'unwrap_message',
]
