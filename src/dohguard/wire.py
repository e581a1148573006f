"""Wire-format helpers for DNS messages carried over HTTPS.

Brief:
  Extract the question (QNAME, QTYPE) from a raw DNS message without a full
  message parser, and decode the base64url payload used by DoH GET requests.

Notes:
  - Extraction never raises; a message that cannot be parsed yields an empty
    domain, which callers treat as "cannot classify".
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import List, NamedTuple

logger = logging.getLogger(__name__)

DNS_HEADER_LEN = 12
DEFAULT_QTYPE = 1  # A
MAX_POINTER_JUMPS = 5

_POINTER_MASK = 0xC0
_MAX_LABEL_LEN = 63
MAX_NAME_LEN = 253


class Question(NamedTuple):
    """Brief: Normalized question section of a DNS query.

    Inputs:
      - domain: Lower-cased, dot-joined QNAME; "" when parsing failed.
      - qtype: Numeric query type (1=A, 28=AAAA, ...).
    """

    domain: str
    qtype: int


def _read_labels(raw: bytes) -> tuple[List[str], int]:
    """Brief: Walk the QNAME labels starting at the question section.

    Inputs:
      - raw: Full DNS message bytes (len >= DNS_HEADER_LEN).

    Outputs:
      - (labels, cursor): labels collected so far and the offset just past
        the name in the original byte stream. cursor is -1 when the name was
        cut short and no trustworthy position follows it.
    """

    labels: List[str] = []
    pos = DNS_HEADER_LEN
    cursor = -1
    jumps = 0
    size = len(raw)

    while pos < size:
        length = raw[pos]

        if length == 0:
            if cursor < 0:
                cursor = pos + 1
            return labels, cursor

        if length & _POINTER_MASK == _POINTER_MASK:
            if pos + 1 >= size:
                break
            if jumps >= MAX_POINTER_JUMPS:
                logger.debug("compression pointer limit reached at offset %d", pos)
                break
            # Only the first pointer moves the post-name cursor.
            if cursor < 0:
                cursor = pos + 2
            pos = ((length & 0x3F) << 8) | raw[pos + 1]
            jumps += 1
            continue

        if length > _MAX_LABEL_LEN:
            break

        end = pos + 1 + length
        if end > size:
            break
        labels.append(raw[pos + 1 : end].decode("latin-1"))
        pos = end

    return labels, -1 if cursor < 0 or cursor > size else cursor


def extract_question(raw: bytes) -> Question:
    """Brief: Extract the normalized QNAME and QTYPE from a raw DNS message.

    Inputs:
      - raw: Wire-format DNS message.

    Outputs:
      - Question: ("", 1) for messages shorter than the fixed header.
        Malformed names degrade to whatever labels were read before the
        fault. QTYPE defaults to 1 when the question is truncated.

    Example:
      >>> q = bytes(12) + b"\\x07example\\x03com\\x00\\x00\\x1c\\x00\\x01"
      >>> extract_question(q)
      Question(domain='example.com', qtype=28)
    """

    if not raw or len(raw) < DNS_HEADER_LEN:
        return Question("", DEFAULT_QTYPE)

    labels, cursor = _read_labels(bytes(raw))
    domain = ".".join(labels).lower()

    qtype = DEFAULT_QTYPE
    if cursor >= 0 and cursor + 2 <= len(raw):
        qtype = int.from_bytes(raw[cursor : cursor + 2], "big")
    return Question(domain, qtype)


def is_valid_name(domain: str) -> bool:
    """Brief: True when ``domain`` fits in a DNS question.

    Inputs:
      - domain: Normalized dotted name without the trailing dot.

    Outputs:
      - bool: False for an empty name, an empty label, a label over 63
        characters or a name over 253 characters.

    Example:
      >>> is_valid_name("a..example.com")
      False
    """

    if not domain or len(domain) > MAX_NAME_LEN:
        return False
    return all(0 < len(label) <= _MAX_LABEL_LEN for label in domain.split("."))


def b64url_decode_nopad(text: str) -> bytes:
    """
    Brief: Decode base64url without padding, tolerating malformed input.

    Inputs:
    - text: base64url string, usually without '=' padding

    Outputs:
    - bytes: decoded binary, or b"" when the input cannot be decoded

    Example:
        >>> b64url_decode_nopad('AQI')
        b'\\x01\\x02'
        >>> b64url_decode_nopad('%%%')
        b''
    """
    if not isinstance(text, str):
        return b""
    s = text.strip().replace("-", "+").replace("_", "/")
    pad = "=" * ((4 - len(s) % 4) % 4)
    try:
        return base64.b64decode(s + pad, validate=True)
    except (binascii.Error, ValueError):
        logger.debug("malformed base64url payload (%d chars)", len(text))
        return b""
