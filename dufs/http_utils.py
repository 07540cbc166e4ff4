"""Helpers for streaming request and response bodies."""

from __future__ import annotations

from typing import BinaryIO, Iterator, Union

_DEFAULT_CAPACITY = 4096

BodyContent = Union[str, bytes, bytearray, memoryview]


def length_limited_stream(
    reader: BinaryIO, limit: int, capacity: int = _DEFAULT_CAPACITY
) -> Iterator[bytes]:
    """Yield chunks read from ``reader`` until ``limit`` bytes have been produced.

    Each read asks for at most ``capacity`` bytes. The stream ends early when the
    reader is exhausted; read errors propagate to the consumer.
    """
    if capacity <= 0:
        raise ValueError("capacity must be positive")
    remaining = limit
    while remaining > 0:
        chunk = reader.read(capacity)
        if not chunk:
            return
        chunk = bytes(chunk[:remaining])
        remaining -= len(chunk)
        yield chunk


def body_full(content: BodyContent) -> bytes:
    """Return a complete response body as bytes."""
    if isinstance(content, str):
        return content.encode("utf-8")
    return bytes(content)