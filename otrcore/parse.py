"""
Wire Message Classification

Turns a raw transport payload into a ParsedMessage tagged with one of:

    error      "?OTR Error:<text>"
    query      "?OTR?", "?OTRv2?", "?OTR?v2?"
    ake        encoded handshake messages
    data       encoded data messages
    plaintext  anything else (whitespace tag stripped)

Fragments ("?OTR,k,n,piece,") are reassembled; until the last piece
arrives the parser returns None.
"""

import logging
import re
import struct

from .helpers import unwrap_message


logger = logging.getLogger(__name__)

ERROR_PREFIX = "?OTR Error:"
QUERY_EXPLANATION = (
    "I would like to start an Off-the-Record private conversation, "
    "but you do not seem to support that."
)

HEADER = struct.Struct("!HB")

DATA_TYPE = 0x03
AKE_TYPES = frozenset([0x02, 0x0a, 0x11, 0x12])

WHITESPACE_PREFIX = "\x20\x09\x20\x20\x09\x09\x09\x09\x20\x09\x20\x09\x20\x09\x20\x20"
WHITESPACE_VERSIONS = {
    1: "\x20\x09\x20\x09\x20\x20\x09\x20",
    2: "\x20\x20\x09\x09\x20\x20\x09\x20",
}

_FRAGMENT_RE = re.compile(r"^\?OTR,(?P<k>\d{1,5}),(?P<n>\d{1,5}),(?P<piece>[^,]*),$")


class ParsedMessage:
    """
    A classified incoming message.

    Attributes:
        cls (str): one of error, query, ake, data, plaintext
        msg (str): text for error/plaintext messages
        payload (bytes): body after the version/type header (ake, data)
        type (int): encoded message type (ake, data)
        versions (set): versions advertised by a query or whitespace tag
    """

    def __init__(self, cls, msg="", payload=b"", type=None, versions=None):
        self.cls = cls
        self.msg = msg
        self.payload = payload
        self.type = type
        self.versions = set(versions or ())

    def __repr__(self):
        return f"ParsedMessage(cls={self.cls!r}, type={self.type!r}, versions={self.versions!r})"


# -----------------------------------
# Outgoing helpers
# -----------------------------------
def query_message(versions):
    """
    Build a query message advertising ``versions``.

    Returns:
        str, e.g. "?OTRv2? I would like to ..."
    """
    if versions == {1}:
        tag = "?OTR?"
    elif 1 in versions:
        tag = "?OTR?v" + "".join(str(v) for v in sorted(versions) if v != 1) + "?"
    else:
        tag = "?OTRv" + "".join(str(v) for v in sorted(versions)) + "?"
    return tag + " " + QUERY_EXPLANATION


def error_message(text):
    return ERROR_PREFIX + text


def tag_plaintext(message, versions):
    """Append the whitespace tag advertising ``versions``."""
    tag = WHITESPACE_PREFIX
    for version in sorted(versions):
        tag += WHITESPACE_VERSIONS.get(version, "")
    return message + tag


# -----------------------------------
# Incoming
# -----------------------------------
def _parse_query(message):
    versions = set()
    if message.startswith("?OTR?v"):
        body, sep, _ = message[6:].partition("?")
        if sep != "?":
            return None
        versions.add(1)
    elif message.startswith("?OTRv"):
        body, sep, _ = message[5:].partition("?")
        if sep != "?":
            return None
    elif message.startswith("?OTR?"):
        return {1}
    else:
        return None
    versions.update(int(c) for c in body if c.isdigit())
    return versions


def _strip_whitespace_tag(message):
    start = message.find(WHITESPACE_PREFIX)
    if start < 0:
        return message, set()

    versions = set()
    end = start + len(WHITESPACE_PREFIX)
    while True:
        token = message[end:end + 8]
        if len(token) != 8 or set(token) - {"\x20", "\x09"}:
            break
        for version, tag in WHITESPACE_VERSIONS.items():
            if token == tag:
                versions.add(version)
        end += 8
    return message[:start] + message[end:], versions


class MessageParser:
    """Stateful classifier; the state is the fragment being reassembled."""

    def __init__(self):
        self.reset()

    def reset(self):
        self._fragment = ""
        self._k = 0
        self._n = 0

    def _collect_fragment(self, match):
        k = int(match.group("k"))
        n = int(match.group("n"))
        piece = match.group("piece")

        if k == 0 or n == 0 or k > n:
            logger.debug("[SESSION] Dropping invalid fragment %d/%d", k, n)
            return None
        if k == 1:
            self._fragment, self._k, self._n = piece, k, n
        elif k == self._k + 1 and n == self._n:
            self._fragment += piece
            self._k = k
        else:
            logger.debug("[SESSION] Out of order fragment %d/%d, discarding buffer", k, n)
            self.reset()
            return None

        if self._k == self._n:
            message = self._fragment
            self.reset()
            return message
        return None

    def parse(self, raw):
        """
        Classify a raw payload.

        Args:
            raw: str received from the transport

        Returns:
            ParsedMessage, or None if the payload was absorbed (partial
            fragment, unknown encoded message)
        """
        match = _FRAGMENT_RE.match(raw)
        if match:
            raw = self._collect_fragment(match)
            if raw is None:
                return None

        if raw.startswith(ERROR_PREFIX):
            return ParsedMessage("error", msg=raw[len(ERROR_PREFIX):])

        if raw.startswith("?OTR:"):
            return self._parse_encoded(raw)

        if raw.startswith("?OTR"):
            versions = _parse_query(raw)
            if versions is not None:
                return ParsedMessage("query", versions=versions)

        message, versions = _strip_whitespace_tag(raw)
        return ParsedMessage("plaintext", msg=message, versions=versions)

    def _parse_encoded(self, raw):
        try:
            binary = unwrap_message(raw)
        except ValueError as e:
            logger.warning("[SESSION] Discarding undecodable OTR message: %s", e)
            return None
        if len(binary) < HEADER.size:
            logger.warning("[SESSION] Discarding truncated OTR message")
            return None

        version, type = HEADER.unpack_from(binary)
        if version != 2:
            logger.warning("[SESSION] Discarding OTR message with unsupported version %d", version)
            return None

        payload = binary[HEADER.size:]
        if type == DATA_TYPE:
            return ParsedMessage("data", payload=payload, type=type)
        if type in AKE_TYPES:
            return ParsedMessage("ake", payload=payload, type=type)

        logger.warning("[SESSION] Discarding OTR message of unknown type 0x%02x", type)
        return None
