"""Names and locations of the files that make up a BagIt 1.0 bag."""

import logging
import os
import re
from pathlib import Path
from typing import Union

from bagr.digest import DigestAlgorithm
from bagr.errors import AlgorithmUnsupported, IoFailure
from bagr.manifest import ManifestRole


logger = logging.getLogger(__name__)

BAGIT_VERSION = "1.0"
TAG_FILE_ENCODING = "UTF-8"

BAGIT_TXT = "bagit.txt"
BAG_INFO_TXT = "bag-info.txt"
DATA = "data"

PAYLOAD_MANIFEST_MATCHER = re.compile(r"^manifest-([A-Za-z0-9]+)\.txt$")
TAG_MANIFEST_MATCHER = re.compile(r"^tagmanifest-([A-Za-z0-9]+)\.txt$")

# prefix of directories and files bagr creates while an operation is running
TEMP_PREFIX = ".bagr-tmp-"


class BagLayout:
    """Computes paths inside a bag rooted at `base_dir`.

    Apart from manifest discovery nothing here touches the filesystem.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)

    @property
    def bagit_txt(self) -> Path:
        return self.base_dir / BAGIT_TXT

    @property
    def bag_info_txt(self) -> Path:
        return self.base_dir / BAG_INFO_TXT

    @property
    def data_dir(self) -> Path:
        return self.base_dir / DATA

    def manifest_name(self, role: ManifestRole, algorithm: DigestAlgorithm) -> str:
        return f"{role.prefix}-{algorithm}.txt"

    def manifest_path(self, role: ManifestRole, algorithm: DigestAlgorithm) -> Path:
        return self.base_dir / self.manifest_name(role, algorithm)

    def payload_manifest(self, algorithm: DigestAlgorithm) -> Path:
        return self.manifest_path(ManifestRole.PAYLOAD, algorithm)

    def tag_manifest(self, algorithm: DigestAlgorithm) -> Path:
        return self.manifest_path(ManifestRole.TAG, algorithm)

    def payload_path(self, relative: str) -> str:
        """Bag-relative path for a path relative to `data/`."""
        return f"{DATA}/{relative}"

    def resolve(self, bag_relative: str) -> Path:
        return self.base_dir.joinpath(*bag_relative.split("/"))

    def manifest_files(self, role: ManifestRole = ManifestRole.PAYLOAD) -> list[tuple[str, str]]:
        """(file name, algorithm name) of every manifest of `role` in the base directory."""
        matcher = PAYLOAD_MANIFEST_MATCHER if role is ManifestRole.PAYLOAD else TAG_MANIFEST_MATCHER
        found = []
        try:
            with os.scandir(self.base_dir) as entries:
                for entry in entries:
                    match = matcher.match(entry.name)
                    if match and entry.is_file():
                        found.append((entry.name, match.group(1)))
        except OSError as e:
            raise IoFailure(self.base_dir, "Error reading directory", e) from e
        return sorted(found)

    def discover_manifests(self, role: ManifestRole = ManifestRole.PAYLOAD) -> dict[DigestAlgorithm, Path]:
        """Manifest files of `role` present in the base directory, by algorithm.

        Computed fresh on every call, keeping each file name as found on disk.
        Manifest files naming an algorithm outside the supported set are logged
        and ignored.
        """
        found = {}
        for filename, name in self.manifest_files(role):
            try:
                found[DigestAlgorithm.from_name(name)] = self.base_dir / filename
            except AlgorithmUnsupported:
                logger.warning("Detected unsupported digest algorithm: %s", name)
        return dict(sorted(found.items()))

    def discover_algorithms(self, role: ManifestRole = ManifestRole.PAYLOAD) -> tuple[DigestAlgorithm, ...]:
        return tuple(self.discover_manifests(role))

    def is_tag_manifest_name(self, name: str) -> bool:
        return bool(TAG_MANIFEST_MATCHER.match(name))
