"""Reading and writing payload and tag manifests.

A manifest line is `<hex digest> <path>` terminated by LF. Paths are opaque
text: nothing is percent-decoded when reading and nothing is encoded when
writing. Rendering sorts lines by path so identical contents always produce
identical bytes.
"""

import enum
import re
from pathlib import Path
from typing import Iterable, Iterator, NamedTuple, Optional, Union

from bagr.digest import DigestAlgorithm, digests_equal
from bagr.errors import EncodingError, IoFailure, ManifestParseError
from bagr import policy


LINE_SPLIT = re.compile(r"\s+")


class ManifestRole(enum.Enum):
    PAYLOAD = "manifest"
    TAG = "tagmanifest"

    @property
    def prefix(self) -> str:
        return self.value


class ManifestEntry(NamedTuple):
    digest: str
    path: str


class Manifest:
    """The entries of one manifest file, keyed by path."""

    def __init__(self, role: ManifestRole, algorithm: DigestAlgorithm, entries: Iterable[ManifestEntry] = ()):
        self.role = role
        self.algorithm = algorithm
        self._entries: dict[str, str] = {}
        for entry in entries:
            self.add(entry.path, entry.digest)

    @property
    def filename(self) -> str:
        return f"{self.role.prefix}-{self.algorithm}.txt"

    def add(self, path: str, digest: str):
        """Add or replace the digest recorded for `path`."""
        self._entries[path] = digest

    def remove(self, path: str):
        self._entries.pop(path, None)

    def get(self, path: str) -> Optional[str]:
        return self._entries.get(path)

    def paths(self) -> set[str]:
        return set(self._entries)

    def entries(self) -> list[ManifestEntry]:
        """Entries ordered by path."""
        return [ManifestEntry(self._entries[p], p) for p in sorted(self._entries, key=_sort_key)]

    def matches(self, path: str, digest: str) -> bool:
        recorded = self._entries.get(path)
        return recorded is not None and digests_equal(recorded, digest)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(self.entries())

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return (
            self.role == other.role
            and self.algorithm == other.algorithm
            and self._entries == other._entries
        )

    def __repr__(self) -> str:
        return f"Manifest({self.filename!r}, {len(self)} entries)"


def _sort_key(path: str) -> bytes:
    return path.encode("utf-8", "surrogateescape")


def render(manifest: Manifest) -> str:
    """Serialize a manifest, one LF-terminated line per entry, sorted by path."""
    lines = []
    for entry in manifest.entries():
        policy.check(entry.path)
        lines.append(f"{entry.digest} {entry.path}\n")
    return "".join(lines)


def render_bytes(manifest: Manifest) -> bytes:
    return render(manifest).encode("utf-8")


def parse(
    text: str,
    role: ManifestRole,
    algorithm: DigestAlgorithm,
    source: Union[str, Path] = "<manifest>",
) -> Manifest:
    """Parse manifest text.

    Digest lengths are not checked against the algorithm here. Any malformed or
    duplicate line raises `ManifestParseError` with its line number.
    """
    manifest = Manifest(role, algorithm)
    # CR is never part of an accepted path, so CRLF endings are tolerated
    for number, line in enumerate(text.split("\n"), start=1):
        line = line.rstrip("\r")
        if not line.strip():
            continue
        parts = LINE_SPLIT.split(line.lstrip(), maxsplit=1)
        if len(parts) != 2 or not parts[1]:
            raise ManifestParseError(source, number, f"expected '<digest> <path>', found {line!r}")
        digest, path = parts
        if path in manifest:
            raise ManifestParseError(source, number, f"duplicate entry for {path!r}")
        manifest.add(path, digest)
    return manifest


def read_manifest(path: Path, role: ManifestRole, algorithm: DigestAlgorithm) -> Manifest:
    """Read and parse the manifest file at `path`."""
    try:
        data = path.read_bytes()
    except OSError as e:
        raise IoFailure(path, "Error reading manifest", e) from e
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise EncodingError(path, str(e)) from e
    return parse(text, role, algorithm, source=path)

