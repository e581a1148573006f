from __future__ import annotations

import logging

from .wire import DNS_HEADER_LEN

logger = logging.getLogger(__name__)

RCODE_NOERROR = 0
RCODE_NXDOMAIN = 3

# Supported deny policies mapped to the RCODE written into the header.
DENY_POLICIES = {
    "nxdomain": RCODE_NXDOMAIN,
    "nodata": RCODE_NOERROR,
    "noerror_empty": RCODE_NOERROR,
}

_FLAG_QR = 0x80
_FLAG_AA = 0x04
_FLAG_TC = 0x02
_FLAG_RA = 0x80


def synthesize_blocked(
    raw_query: bytes, domain: str = "", policy: str = "nxdomain"
) -> bytes:
    """
    Brief: Build a blocked DNS response by rewriting the original query.

    Inputs:
    - raw_query: wire-format DNS query as received
    - domain: blocked QNAME (used for logging only)
    - policy: "nxdomain" (RCODE 3) or "nodata" (RCODE 0, no answers)

    Outputs:
    - bytes: response echoing the transaction ID and question section with
      QR=1, RA=1, RD preserved and all record counts after the question set
      to zero. A query shorter than the header yields a zero-filled
      header-only response.

    Example:
        >>> q = bytes.fromhex("abcd01000001000000000000") + b"\\x00\\x00\\x01\\x00\\x01"
        >>> r = synthesize_blocked(q, "")
        >>> r[:2], hex(r[2]), hex(r[3]), r[6:8]
        (b'\\xab\\xcd', '0x81', '0x83', b'\\x00\\x00')
    """
    rcode = DENY_POLICIES.get(str(policy).lower(), RCODE_NXDOMAIN)

    buf = bytearray(max(len(raw_query or b""), DNS_HEADER_LEN))
    buf[: len(raw_query or b"")] = raw_query or b""

    # Byte 2: QR=1, keep OPCODE and RD, drop AA/TC copied from the query.
    buf[2] = (buf[2] | _FLAG_QR) & ~(_FLAG_AA | _FLAG_TC) & 0xFF
    # Byte 3: RA=1, Z bits cleared, RCODE per policy.
    buf[3] = _FLAG_RA | rcode
    # ANCOUNT, NSCOUNT, ARCOUNT: nothing follows the question.
    buf[6:12] = b"\x00" * 6

    logger.debug("synthesized %s response for %r", policy, domain)
    return bytes(buf)
