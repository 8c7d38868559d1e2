"""Creating and opening BagIt bags.

For more information on the BagIt standard, see: https://www.rfc-editor.org/rfc/rfc8493
"""

import enum
import logging
import os
import threading
from pathlib import Path
from typing import Iterable, Optional, Union

from bagr.collect import PayloadFile, collect, collect_tag_files
from bagr.digest import DEFAULT_ALGORITHMS, DigestAlgorithm, digest_bytes, normalize_algorithms
from bagr.errors import AlgorithmUnsupported, IoFailure, UnrecognizedBag
from bagr.fileops import StagedWrites, copy_file, make_temp_dir, move, remove
from bagr.layout import BAG_INFO_TXT, BAGIT_TXT, DATA, TEMP_PREFIX, BagLayout
from bagr.manifest import Manifest, ManifestRole, read_manifest, render_bytes
from bagr.pipeline import DigestedFile, digest_files
from bagr.tags import (
    LABEL_BAGGING_DATE,
    LABEL_PAYLOAD_OXUM,
    LABEL_SOFTWARE_AGENT,
    BagDeclaration,
    BagInfo,
    read_bag_declaration,
    read_bag_info,
)
from bagr.utils import format_date, payload_oxum, software_agent


logger = logging.getLogger(__name__)


class Bag:
    """A bag on disk, with its tag files and manifests loaded."""

    def __init__(
        self,
        base_dir: Union[str, Path],
        declaration: BagDeclaration,
        bag_info: BagInfo,
        payload_manifests: dict[DigestAlgorithm, Manifest],
        tag_manifests: dict[DigestAlgorithm, Manifest],
    ):
        self.layout = BagLayout(base_dir)
        self.declaration = declaration
        self.info = bag_info
        self.payload_manifests = payload_manifests
        self.tag_manifests = tag_manifests

    @property
    def base_dir(self) -> Path:
        return self.layout.base_dir

    @property
    def version(self) -> str:
        return self.declaration.version

    @property
    def algorithms(self) -> tuple[DigestAlgorithm, ...]:
        return tuple(sorted(self.payload_manifests))

    def payload_files(self) -> list[str]:
        """Bag-relative paths of every payload file, sorted."""
        paths = set()
        for manifest in self.payload_manifests.values():
            paths |= manifest.paths()
        return sorted(paths)

    def __repr__(self) -> str:
        return f"Bag({str(self.base_dir)!r}, algorithms={[str(a) for a in self.algorithms]})"


def is_bag(bag_directory: Path) -> bool:
    """Check if directory looks like a BagIt bag."""
    return (Path(bag_directory) / BAGIT_TXT).is_file()


def open_bag(base_dir: Union[str, Path]) -> Bag:
    """Open the bag in `base_dir`, reading its tag files and every manifest."""
    layout = BagLayout(base_dir)
    logger.info("Opening bag at %s", layout.base_dir)
    if not layout.base_dir.is_dir():
        raise UnrecognizedBag(layout.base_dir, "not a directory")
    declaration = read_bag_declaration(layout.bagit_txt)
    if not layout.manifest_files(ManifestRole.PAYLOAD):
        raise UnrecognizedBag(layout.base_dir, "no payload manifest found")
    manifests = layout.discover_manifests(ManifestRole.PAYLOAD)
    if not manifests:
        names = ", ".join(name for _, name in layout.manifest_files(ManifestRole.PAYLOAD))
        raise AlgorithmUnsupported(names, f"No payload manifest uses a supported algorithm ({names})")
    payload_manifests = {
        a: read_manifest(path, ManifestRole.PAYLOAD, a) for a, path in manifests.items()
    }
    tag_manifests = {
        a: read_manifest(path, ManifestRole.TAG, a)
        for a, path in layout.discover_manifests(ManifestRole.TAG).items()
    }
    return Bag(layout.base_dir, declaration, read_bag_info(layout.bag_info_txt),
               payload_manifests, tag_manifests)


def build_payload_manifests(
    layout: BagLayout,
    digested: Iterable[DigestedFile],
    algorithms: Iterable[DigestAlgorithm],
    prefix: str = "",
) -> dict[DigestAlgorithm, Manifest]:
    """Payload manifests from digested files; `prefix` is prepended to each relative path."""
    manifests = {a: Manifest(ManifestRole.PAYLOAD, a) for a in algorithms}
    for d in digested:
        path = prefix + d.file.relative
        for algorithm, manifest in manifests.items():
            manifest.add(path, d.digests[algorithm])
    return manifests


def stage_if_changed(staged: StagedWrites, target: Path, data: bytes) -> bool:
    """Stage `data` for `target` unless the file already holds exactly those bytes."""
    try:
        if target.is_file() and target.read_bytes() == data:
            logger.debug("%s is unchanged", target)
            return False
    except OSError as e:
        raise IoFailure(target, "Error reading", e) from e
    staged.write(target, data)
    return True


def stage_tag_files(
    layout: BagLayout,
    staged: StagedWrites,
    pending: dict[str, bytes],
    algorithms: Iterable[DigestAlgorithm],
    scan_disk: bool = True,
    skip: Iterable[str] = (),
    only_changed: bool = True,
    workers: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> dict[DigestAlgorithm, Manifest]:
    """Stage `pending` tag files, then the tag manifests covering them.

    `pending` maps bag-relative paths to their final bytes. Tag manifests are
    computed over those bytes plus, with `scan_disk`, every other tag file
    already in the bag except the ones named in `skip`. With `only_changed`,
    files whose bytes on disk already match are left alone.
    """
    def write(target: Path, data: bytes):
        if only_changed:
            stage_if_changed(staged, target, data)
        else:
            staged.write(target, data)

    algorithms = tuple(algorithms)
    skip = set(skip)
    for relative, data in pending.items():
        write(layout.resolve(relative), data)

    manifests = {a: Manifest(ManifestRole.TAG, a) for a in algorithms}
    if scan_disk:
        on_disk = (
            f for f in collect_tag_files(layout)
            if f.relative not in pending and f.relative not in skip
        )
        for relative, d in digest_files(on_disk, algorithms, workers, cancel).items():
            for algorithm, manifest in manifests.items():
                manifest.add(relative, d.digests[algorithm])
    for relative, data in pending.items():
        for algorithm, digest in digest_bytes(data, algorithms).items():
            manifests[algorithm].add(relative, digest)

    for algorithm, manifest in manifests.items():
        logger.info("Writing tag manifest %s", layout.tag_manifest(algorithm))
        write(layout.tag_manifest(algorithm), render_bytes(manifest))
    return manifests


def update_bag_info(
    bag_info: BagInfo,
    files: Iterable[PayloadFile],
    bagging_date: Optional[str] = None,
    agent: Optional[str] = None,
    refresh: bool = False,
) -> BagInfo:
    """Fill in the reserved tags bagr maintains.

    `Payload-Oxum` is always recomputed. `Bagging-Date` and
    `Bag-Software-Agent` are set when given, when missing, or with `refresh`.
    """
    if bagging_date or refresh or bag_info.bagging_date is None:
        bag_info.add(LABEL_BAGGING_DATE, bagging_date or format_date())
    if agent or refresh or bag_info.software_agent is None:
        bag_info.add(LABEL_SOFTWARE_AGENT, agent or software_agent())
    bag_info.add(LABEL_PAYLOAD_OXUM, payload_oxum(f.size for f in files))
    return bag_info


class BuildState(enum.Enum):
    COLLECTING = "collecting"
    DIGESTING = "digesting"
    WRITING_MANIFESTS = "writing manifests"
    WRITING_DECLARATION = "writing declaration"
    COMPLETE = "complete"
    FAILED = "failed"


class BagBuilder:
    """Creates a bag from a source directory.

    With no destination, or a destination equal to the source, the bag is made
    in place: the directory's contents become `data/`. Otherwise the source is
    copied into the destination and left untouched.

    Excluding hidden files during an in-place build DELETES them from disk,
    and that is not undone if the build later fails.

    Nothing here locks the directories involved; running two operations on
    the same bag at once is the caller's responsibility to prevent.
    """

    def __init__(
        self,
        src_dir: Union[str, Path],
        dst_dir: Optional[Union[str, Path]] = None,
        algorithms: Optional[Iterable] = None,
        bag_info: Optional[BagInfo] = None,
        exclude_hidden: bool = False,
        workers: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.src_dir = Path(src_dir).absolute()
        self.dst_dir = Path(dst_dir).absolute() if dst_dir is not None else self.src_dir
        if algorithms is None:
            algorithms = DEFAULT_ALGORITHMS
        self.algorithms = normalize_algorithms(algorithms)
        if not self.algorithms:
            raise AlgorithmUnsupported("", "At least one digest algorithm is required")
        self.bag_info = BagInfo(bag_info or ())
        self.exclude_hidden = exclude_hidden
        self.workers = workers
        self.cancel = cancel
        self.layout = BagLayout(self.dst_dir)
        self.state = BuildState.COLLECTING

    @property
    def in_place(self) -> bool:
        return os.path.normcase(self.src_dir) == os.path.normcase(self.dst_dir)

    def _enter(self, state: BuildState):
        logger.debug("Bag %s: %s -> %s", self.dst_dir, self.state.value, state.value)
        self.state = state

    def build(self) -> Bag:
        logger.info("Creating bag in %s", self.dst_dir)
        if not self.src_dir.is_dir():
            raise IoFailure(self.src_dir, "Source is not a directory:")
        try:
            if self.in_place:
                bag = self._build_in_place()
            else:
                bag = self._build_copy()
        except BaseException:
            self._enter(BuildState.FAILED)
            raise
        self._enter(BuildState.COMPLETE)
        return bag

    def _stage_bag_files(
        self,
        staged: StagedWrites,
        digested: dict[str, DigestedFile],
        scan_disk: bool,
    ) -> Bag:
        self._enter(BuildState.WRITING_MANIFESTS)
        payload_manifests = build_payload_manifests(
            self.layout, digested.values(), self.algorithms, prefix=DATA + "/")
        pending = {}
        for algorithm, manifest in payload_manifests.items():
            logger.info("Writing manifest %s", self.layout.payload_manifest(algorithm))
            pending[manifest.filename] = render_bytes(manifest)

        self._enter(BuildState.WRITING_DECLARATION)
        declaration = BagDeclaration()
        update_bag_info(self.bag_info, (d.file for d in digested.values()))
        pending[BAGIT_TXT] = declaration.render().encode("utf-8")
        pending[BAG_INFO_TXT] = self.bag_info.render().encode("utf-8")

        tag_manifests = stage_tag_files(
            self.layout, staged, pending, self.algorithms, scan_disk=scan_disk,
            only_changed=False, workers=self.workers, cancel=self.cancel)
        return Bag(self.dst_dir, declaration, self.bag_info, payload_manifests, tag_manifests)

    def _build_copy(self) -> Bag:
        created_dst = not self.dst_dir.exists()
        try:
            self.dst_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IoFailure(self.dst_dir, "Error creating", e) from e
        if self.layout.data_dir.exists() or self.layout.data_dir.is_symlink():
            raise IoFailure(self.layout.data_dir, "Destination already contains")

        tmp = make_temp_dir(self.dst_dir)
        moved = False
        try:
            with StagedWrites() as staged:
                self._enter(BuildState.COLLECTING)
                ignore = self._ignore_destination()
                for f in collect(self.src_dir, exclude_hidden=self.exclude_hidden, ignore=ignore):
                    copy_file(f.path, tmp.joinpath(*f.relative.split("/")))

                self._enter(BuildState.DIGESTING)
                digested = digest_files(collect(tmp), self.algorithms, self.workers, self.cancel)
                bag = self._stage_bag_files(staged, digested, scan_disk=True)

                move(tmp, self.layout.data_dir)
                moved = True
                staged.commit()
            return bag
        except BaseException:
            remove(self.layout.data_dir if moved else tmp)
            if created_dst:
                remove(self.dst_dir)
            raise

    def _ignore_destination(self):
        """Skip the destination while copying when it lies inside the source."""
        try:
            inner = self.dst_dir.relative_to(self.src_dir).as_posix()
        except ValueError:
            return None
        return lambda relative: relative == inner

    def _build_in_place(self) -> Bag:
        base = self.src_dir
        with StagedWrites() as staged:
            self._enter(BuildState.COLLECTING)
            files = collect(
                base,
                exclude_hidden=self.exclude_hidden,
                delete_hidden=self.exclude_hidden,
                ignore=lambda relative: relative.startswith(TEMP_PREFIX),
            )
            self._enter(BuildState.DIGESTING)
            digested = digest_files(files, self.algorithms, self.workers, self.cancel)
            bag = self._stage_bag_files(staged, digested, scan_disk=False)

            entries = sorted(p for p in base.iterdir() if not p.name.startswith(TEMP_PREFIX))
            tmp = make_temp_dir(base)
            moved = []
            try:
                for entry in entries:
                    move(entry, tmp / entry.name)
                    moved.append(entry)
                move(tmp, self.layout.data_dir)
            except BaseException:
                self._restore_entries(tmp, moved)
                raise
            try:
                staged.commit()
            except BaseException:
                move(self.layout.data_dir, tmp)
                self._restore_entries(tmp, moved)
                raise
        return bag

    @staticmethod
    def _restore_entries(tmp: Path, moved: list[Path]):
        for entry in reversed(moved):
            move(tmp / entry.name, entry)
        remove(tmp)


def create_bag(
    src_dir: Union[str, Path],
    dst_dir: Optional[Union[str, Path]] = None,
    algorithms: Optional[Iterable] = None,
    bag_info: Optional[BagInfo] = None,
    exclude_hidden: bool = False,
    workers: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> Bag:
    """Create a bag from `src_dir`, in place or by copying into `dst_dir`.

    `algorithms` defaults to sha512. See `BagBuilder` for the hidden-file caveat.
    """
    return BagBuilder(src_dir, dst_dir, algorithms, bag_info, exclude_hidden, workers, cancel).build()

