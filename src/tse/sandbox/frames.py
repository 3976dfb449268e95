"""Incremental decoder for the container runtime's multiplexed exec stream.

Each frame is an 8-byte header followed by its payload::

    [stream selector: 1 byte][reserved: 3 bytes][payload length: uint32 BE]

Chunks read from the socket may end anywhere, including inside a header, so
unconsumed bytes are buffered until a full frame is available.
"""

from __future__ import annotations

import struct
from typing import Iterable

from ..errors import FrameDecodeError, OutputLimitError

HEADER_SIZE = 8
STDIN = 0
STDOUT = 1
STDERR = 2

_STREAM_NAMES = {STDOUT: "stdout", STDERR: "stderr"}
_LENGTH = struct.Struct(">I")


class FrameDecoder:
    """Accumulate stdout/stderr payloads from arbitrarily split chunks."""

    def __init__(self, max_bytes: int | None = None) -> None:
        self._buffer = bytearray()
        self._streams: dict[int, bytearray] = {STDOUT: bytearray(), STDERR: bytearray()}
        self._max_bytes = max_bytes

    def feed(self, chunk: bytes) -> None:
        """Consume ``chunk`` and decode every frame that is now complete."""
        if not chunk:
            return
        self._buffer.extend(chunk)
        while len(self._buffer) >= HEADER_SIZE:
            selector = self._buffer[0]
            (length,) = _LENGTH.unpack_from(self._buffer, 4)
            frame_end = HEADER_SIZE + length
            if len(self._buffer) < frame_end:
                break
            payload = bytes(self._buffer[HEADER_SIZE:frame_end])
            del self._buffer[:frame_end]
            self._append(selector, payload)

    def _append(self, selector: int, payload: bytes) -> None:
        if selector == STDIN:
            return
        target = self._streams.get(selector)
        if target is None:
            raise FrameDecodeError(
                f"Unknown stream selector {selector} in multiplexed output",
                details={"selector": selector},
            )
        target.extend(payload)
        if self._max_bytes is not None and len(target) > self._max_bytes:
            raise OutputLimitError(_STREAM_NAMES[selector], self._max_bytes)

    @property
    def stdout(self) -> bytes:
        return bytes(self._streams[STDOUT])

    @property
    def stderr(self) -> bytes:
        return bytes(self._streams[STDERR])

    @property
    def pending(self) -> int:
        """Number of buffered bytes belonging to an incomplete frame."""
        return len(self._buffer)

    def finish(self) -> None:
        """Assert that the stream ended on a frame boundary."""
        if self._buffer:
            raise FrameDecodeError(
                f"Stream ended inside a frame ({len(self._buffer)} bytes left undecoded)",
                details={"pending": len(self._buffer)},
            )


def encode_frame(selector: int, payload: bytes) -> bytes:
    """Build a single frame; used by fakes and tests."""
    return bytes([selector, 0, 0, 0]) + _LENGTH.pack(len(payload)) + payload


def decode_stream(chunks: Iterable[bytes], *, max_bytes: int | None = None) -> tuple[bytes, bytes]:
    """Decode a complete stream delivered as ``chunks`` into ``(stdout, stderr)``."""
    decoder = FrameDecoder(max_bytes=max_bytes)
    for chunk in chunks:
        decoder.feed(chunk)
    decoder.finish()
    return decoder.stdout, decoder.stderr


__all__ = [
    "FrameDecoder",
    "HEADER_SIZE",
    "STDERR",
    "STDIN",
    "STDOUT",
    "decode_stream",
    "encode_frame",
]
