"""QNAME extraction from raw DNS query messages."""
from __future__ import annotations

from typing import List, Optional

HEADER_SIZE = 12
POINTER_MASK = 0xC0


def extract_domain(buffer: bytes) -> Optional[str]:
    """Return the queried name of a wire-format DNS message.

    Only the literal labels of the first question are read. A compression
    pointer ends the name without being followed, so the result is the
    uncompressed prefix (possibly ``""``). ``None`` means the buffer is too
    short or a label runs past its end.
    """
    if buffer is None or len(buffer) <= HEADER_SIZE:
        return None

    labels: List[str] = []
    offset = HEADER_SIZE
    end = len(buffer)

    while True:
        if offset >= end:
            return None
        length = buffer[offset]
        if length == 0:
            break
        if length & POINTER_MASK == POINTER_MASK:
            break
        offset += 1
        if offset + length > end:
            return None
        labels.append(bytes(buffer[offset:offset + length]).decode("utf-8", errors="replace"))
        offset += length

    return ".".join(labels).lower()
