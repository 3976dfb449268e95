from __future__ import annotations

import pytest

from tse.errors import FrameDecodeError, OutputLimitError
from tse.sandbox.frames import STDERR, STDIN, STDOUT, FrameDecoder, decode_stream, encode_frame


def _interleaved() -> bytes:
    return (
        encode_frame(STDOUT, b"hello ")
        + encode_frame(STDERR, b"warning\n")
        + encode_frame(STDOUT, b"world\n")
    )


def test_single_chunk_demultiplexes_streams() -> None:
    stdout, stderr = decode_stream([_interleaved()])

    assert stdout == b"hello world\n"
    assert stderr == b"warning\n"


@pytest.mark.parametrize("split", [1, 3, 7, 8, 9, 14, 20])
def test_split_inside_header_matches_unsplit(split: int) -> None:
    payload = _interleaved()

    assert decode_stream([payload[:split], payload[split:]]) == decode_stream([payload])


def test_byte_at_a_time_delivery() -> None:
    payload = _interleaved()
    decoder = FrameDecoder()

    for index in range(len(payload)):
        decoder.feed(payload[index : index + 1])
    decoder.finish()

    assert decoder.stdout == b"hello world\n"
    assert decoder.stderr == b"warning\n"


def test_partial_frame_is_buffered_until_complete() -> None:
    frame = encode_frame(STDOUT, b"abcdef")
    decoder = FrameDecoder()

    decoder.feed(frame[:10])
    assert decoder.stdout == b""
    assert decoder.pending == 10

    decoder.feed(frame[10:])
    assert decoder.stdout == b"abcdef"
    assert decoder.pending == 0


def test_stdin_frames_are_ignored() -> None:
    stdout, stderr = decode_stream([encode_frame(STDIN, b"echo"), encode_frame(STDOUT, b"ok")])

    assert (stdout, stderr) == (b"ok", b"")


def test_unknown_selector_raises() -> None:
    decoder = FrameDecoder()

    with pytest.raises(FrameDecodeError, match="selector 7"):
        decoder.feed(encode_frame(7, b"x"))


def test_truncated_stream_fails_on_finish() -> None:
    frame = encode_frame(STDOUT, b"abcdef")
    decoder = FrameDecoder()
    decoder.feed(frame[:-2])

    with pytest.raises(FrameDecodeError):
        decoder.finish()


def test_output_limit_is_a_hard_failure() -> None:
    decoder = FrameDecoder(max_bytes=4)
    decoder.feed(encode_frame(STDOUT, b"1234"))

    with pytest.raises(OutputLimitError) as excinfo:
        decoder.feed(encode_frame(STDOUT, b"5"))

    assert excinfo.value.stream == "stdout"
    assert excinfo.value.limit == 4


def test_empty_payload_frame() -> None:
    assert decode_stream([encode_frame(STDOUT, b""), encode_frame(STDERR, b"e")]) == (b"", b"e")
