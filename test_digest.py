import io

import pytest

from bagr.digest import (
    DigestAlgorithm,
    digest_bytes,
    digest_file,
    digest_stream,
    digests_equal,
    normalize_algorithms,
)
from bagr.errors import AlgorithmUnsupported

HELLO_SHA256 = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
HELLO_MD5 = "5d41402abc4b2a76b9719d911017c592"
HELLO_SHA1 = "aaf4c61ddcc5e8a2dabede0f3b482cd9aea9434d"


class CountingStream(io.BytesIO):
    def __init__(self, data):
        super().__init__(data)
        self.bytes_read = 0
        self.reads = 0

    def read(self, size=-1):
        chunk = super().read(size)
        self.reads += 1
        self.bytes_read += len(chunk)
        return chunk


def test_digest_stream_multiple_algorithms():
    digests = digest_stream(io.BytesIO(b"hello"), [DigestAlgorithm.SHA256, DigestAlgorithm.MD5, DigestAlgorithm.SHA1])
    assert digests == {
        DigestAlgorithm.SHA256: HELLO_SHA256,
        DigestAlgorithm.MD5: HELLO_MD5,
        DigestAlgorithm.SHA1: HELLO_SHA1,
    }


def test_stream_is_read_once_for_all_algorithms():
    data = b"x" * 10000
    stream = CountingStream(data)
    digest_stream(stream, list(DigestAlgorithm), chunk_size=1024)
    assert stream.bytes_read == len(data)
    # nine full chunks, one partial, one empty read at EOF
    assert stream.reads == 11


def test_digest_independent_of_chunk_size():
    data = bytes(range(256)) * 50
    expected = digest_bytes(data, [DigestAlgorithm.SHA512])
    for chunk_size in (1, 7, 256, 4096, 1 << 20):
        assert digest_stream(io.BytesIO(data), [DigestAlgorithm.SHA512], chunk_size) == expected


def test_digest_file(tmp_path):
    path = tmp_path / "hello.txt"
    path.write_bytes(b"hello world")
    assert digest_file(path, [DigestAlgorithm.SHA256]) == {
        DigestAlgorithm.SHA256: "b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9"
    }


def test_empty_input():
    assert digest_bytes(b"", [DigestAlgorithm.MD5]) == {DigestAlgorithm.MD5: "d41d8cd98f00b204e9800998ecf8427e"}


def test_from_name():
    assert DigestAlgorithm.from_name("SHA256") is DigestAlgorithm.SHA256
    assert DigestAlgorithm.from_name(" md5 ") is DigestAlgorithm.MD5
    with pytest.raises(AlgorithmUnsupported) as e:
        DigestAlgorithm.from_name("crc32")
    assert "crc32" in str(e.value)


def test_normalize_algorithms_dedupes_and_sorts():
    assert normalize_algorithms(["sha512", DigestAlgorithm.MD5, "SHA512"]) == (
        DigestAlgorithm.MD5,
        DigestAlgorithm.SHA512,
    )
    assert normalize_algorithms([]) == ()


def test_digests_equal_ignores_case():
    assert digests_equal(HELLO_MD5.upper(), HELLO_MD5)
    assert not digests_equal(HELLO_MD5, HELLO_SHA1)
