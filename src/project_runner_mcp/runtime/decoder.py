"""Byte-accurate UTF-8 decoding of chunked process output.

project-runner-mcp runtime module v0.1.0

A pipe read can end in the middle of a multi-byte character. Decoding each
chunk on its own would corrupt that character, so the incomplete tail is
carried over to the next chunk instead.

Both functions are pure: the carried-over bytes are passed in and returned
explicitly, and the caller owns them per (project, stream).
"""

from __future__ import annotations

__all__ = [
    "MAX_SEQUENCE_LENGTH",
    "REPLACEMENT_CHAR",
    "feed",
    "flush",
    "split_decodable",
]

MAX_SEQUENCE_LENGTH = 4
REPLACEMENT_CHAR = "\ufffd"


def _sequence_length(lead: int) -> int:
    """Declared length of the sequence started by ``lead`` (0 = not a lead byte)."""
    if lead & 0x80 == 0x00:
        return 1
    if lead & 0xE0 == 0xC0:
        return 2
    if lead & 0xF0 == 0xE0:
        return 3
    if lead & 0xF8 == 0xF0:
        return 4
    return 0


def split_decodable(data: bytes) -> int:
    """Find the last guaranteed character boundary in ``data``.

    Scans backwards at most :data:`MAX_SEQUENCE_LENGTH` bytes:
    - an ASCII byte ends a complete character, so the boundary is after it;
    - a lead byte whose sequence is already complete puts the boundary at the end;
    - a lead byte whose sequence is still short puts the boundary before it.

    When no boundary is found in the window (a run of stray continuation
    bytes) the whole input is treated as decodable so malformed data cannot
    stall the stream.

    Returns:
        Number of leading bytes that can be decoded now
    """
    size = len(data)
    for back in range(1, min(MAX_SEQUENCE_LENGTH, size) + 1):
        index = size - back
        byte = data[index]
        if byte & 0x80 == 0x00:
            return index + 1
        length = _sequence_length(byte)
        if length:
            return size if back >= length else index
    return size


def feed(buffer: bytes, chunk: bytes) -> tuple[str, bytes]:
    """Decode as much of ``buffer + chunk`` as is known to be complete.

    Args:
        buffer: Bytes carried over from the previous call
        chunk: Newly read bytes

    Returns:
        Tuple of (decoded text, bytes to carry over to the next call).
        Malformed spans are replaced with U+FFFD instead of raising.
    """
    data = buffer + chunk
    if not data:
        return "", b""
    boundary = split_decodable(data)
    text = data[:boundary].decode("utf-8", errors="replace")
    return text, data[boundary:]


def flush(buffer: bytes) -> str:
    """Decode whatever is left once the stream has ended.

    An incomplete trailing sequence can never be completed at this point, so
    it is rendered with the replacement marker.
    """
    if not buffer:
        return ""
    return buffer.decode("utf-8", errors="replace")
