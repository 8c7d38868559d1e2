"""Digest algorithms and single-pass multi-digest calculation."""

import enum
import hashlib
import logging
from pathlib import Path
from typing import BinaryIO, Iterable

from bagr.errors import AlgorithmUnsupported


logger = logging.getLogger(__name__)

CHUNK_SIZE = 512 * 1024


class DigestAlgorithm(enum.Enum):
    """The closed set of digest algorithms a bag can use.

    The value is the name used in manifest file names, e.g. `manifest-sha256.txt`.
    """

    MD5 = "md5"
    SHA1 = "sha1"
    SHA224 = "sha224"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    def __str__(self) -> str:
        return self.value

    def __lt__(self, other: "DigestAlgorithm") -> bool:
        if not isinstance(other, DigestAlgorithm):
            return NotImplemented
        return self.value < other.value

    def new(self):
        """Return a fresh hashlib object for this algorithm."""
        return hashlib.new(self.value)

    @classmethod
    def from_name(cls, name: str) -> "DigestAlgorithm":
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise AlgorithmUnsupported(name) from None

    @classmethod
    def names(cls) -> list[str]:
        return [a.value for a in cls]


DEFAULT_ALGORITHMS = (DigestAlgorithm.SHA512,)


def normalize_algorithms(algorithms: Iterable) -> tuple[DigestAlgorithm, ...]:
    """Dedupe and sort algorithms given as members or names."""
    result = set()
    for algorithm in algorithms:
        if not isinstance(algorithm, DigestAlgorithm):
            algorithm = DigestAlgorithm.from_name(algorithm)
        result.add(algorithm)
    return tuple(sorted(result))


def digest_stream(
    stream: BinaryIO,
    algorithms: Iterable[DigestAlgorithm],
    chunk_size: int = CHUNK_SIZE,
) -> dict[DigestAlgorithm, str]:
    """Compute every requested digest while reading `stream` once.

    Returns a mapping of algorithm to lowercase hex digest.
    """
    hashers = {algorithm: algorithm.new() for algorithm in algorithms}
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        for hasher in hashers.values():
            hasher.update(chunk)
    return {algorithm: hasher.hexdigest() for algorithm, hasher in hashers.items()}


def digest_file(
    path: Path,
    algorithms: Iterable[DigestAlgorithm],
    chunk_size: int = CHUNK_SIZE,
) -> dict[DigestAlgorithm, str]:
    """Open `path` and compute the requested digests in one read pass."""
    logger.debug("Calculating digests for %s", path)
    with open(path, "rb") as fp:
        return digest_stream(fp, algorithms, chunk_size)


def digest_bytes(data: bytes, algorithms: Iterable[DigestAlgorithm]) -> dict[DigestAlgorithm, str]:
    hashers = {algorithm: algorithm.new() for algorithm in algorithms}
    for hasher in hashers.values():
        hasher.update(data)
    return {algorithm: hasher.hexdigest() for algorithm, hasher in hashers.items()}


def digests_equal(a: str, b: str) -> bool:
    """Compare hex digests ignoring case."""
    return a.strip().lower() == b.strip().lower()
