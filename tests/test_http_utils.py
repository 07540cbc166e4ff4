import io

import pytest

from dufs.http_utils import body_full, length_limited_stream


def test_stream_stops_at_limit():
    data = b"abcdefghij"
    chunks = list(length_limited_stream(io.BytesIO(data), 4))
    assert b"".join(chunks) == data[:4]


def test_stream_respects_capacity():
    data = b"x" * 10
    chunks = list(length_limited_stream(io.BytesIO(data), 100, capacity=3))
    assert b"".join(chunks) == data
    assert all(len(chunk) <= 3 for chunk in chunks)


def test_stream_truncates_last_chunk():
    data = b"0123456789"
    chunks = list(length_limited_stream(io.BytesIO(data), 5, capacity=3))
    assert chunks == [data[:3], data[3:5]]


def test_stream_zero_limit_reads_nothing():
    reader = io.BytesIO(b"abc")
    assert list(length_limited_stream(reader, 0)) == []
    assert reader.tell() == 0


def test_stream_ends_when_reader_exhausted():
    data = b"short"
    chunks = list(length_limited_stream(io.BytesIO(data), 1000))
    assert b"".join(chunks) == data


def test_stream_propagates_read_errors():
    class Broken(io.RawIOBase):
        def read(self, size=-1):
            raise OSError("boom")

    with pytest.raises(OSError, match="boom"):
        list(length_limited_stream(Broken(), 10))


def test_stream_rejects_bad_capacity():
    with pytest.raises(ValueError):
        list(length_limited_stream(io.BytesIO(b"abc"), 3, capacity=0))


def test_body_full_from_str_and_bytes():
    assert body_full("abc") == b"abc"
    assert body_full(bytearray(b"xyz")) == b"xyz"
    assert body_full("😀") == "😀".encode("utf-8")