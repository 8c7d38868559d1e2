"""Recomputing the manifests of an existing bag after its payload changed."""

import logging
import threading
from pathlib import Path
from typing import Iterable, NamedTuple, Optional, Union

from bagr.bag import Bag, build_payload_manifests, stage_tag_files, update_bag_info
from bagr.collect import collect_payload
from bagr.digest import DigestAlgorithm, normalize_algorithms
from bagr.errors import AlgorithmUnsupported, IoFailure, UnrecognizedBag
from bagr.fileops import StagedWrites
from bagr.layout import BAG_INFO_TXT, BagLayout
from bagr.manifest import Manifest, ManifestRole, read_manifest, render_bytes
from bagr.pipeline import digest_files
from bagr.tags import BagInfo, read_bag_declaration, read_bag_info


logger = logging.getLogger(__name__)


def _same_file(a: Path, b: Path) -> bool:
    """True when both names lead to one file, as on a case-insensitive filesystem."""
    try:
        return a != b and a.samefile(b)
    except OSError:
        return False


class RebagResult(NamedTuple):
    """What a rebag changed, with paths relative to the bag root."""

    bag: Bag
    added: list[str]
    modified: list[str]
    removed: list[str]
    algorithms_added: list[DigestAlgorithm]
    algorithms_removed: list[DigestAlgorithm]

    @property
    def changed(self) -> bool:
        return any((self.added, self.modified, self.removed,
                    self.algorithms_added, self.algorithms_removed))


class Rebagger:
    """Brings the manifests of an existing bag up to date with its payload.

    Every payload file is read again on each rebag; file timestamps are never
    trusted to decide that content is unchanged. Each file is read once for
    all target algorithms. Files that are no longer present are dropped from
    the manifests. Unless `algorithms` is given, the algorithms of the
    existing payload manifests are reused.

    Nothing is written until every file has been digested and every new file
    staged, so a failure leaves the bag exactly as it was.
    """

    def __init__(
        self,
        bag_path: Union[str, Path],
        algorithms: Optional[Iterable] = None,
        bag_info: Optional[BagInfo] = None,
        bagging_date: Optional[str] = None,
        software_agent: Optional[str] = None,
        workers: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.layout = BagLayout(Path(bag_path).absolute())
        self.requested = normalize_algorithms(algorithms or ())
        self.extra_info = bag_info
        self.bagging_date = bagging_date
        self.software_agent = software_agent
        self.workers = workers
        self.cancel = cancel

    def _load(self) -> tuple[dict[DigestAlgorithm, Manifest], tuple[DigestAlgorithm, ...]]:
        """Parse every existing manifest; any error aborts before anything is written."""
        layout = self.layout
        if not layout.base_dir.is_dir():
            raise UnrecognizedBag(layout.base_dir, "not a directory")
        if not layout.manifest_files(ManifestRole.PAYLOAD):
            raise UnrecognizedBag(layout.base_dir, "no payload manifest found")
        discovered = layout.discover_manifests(ManifestRole.PAYLOAD)
        algorithms = self.requested or tuple(discovered)
        if not algorithms:
            raise AlgorithmUnsupported(
                "", f"No payload manifest in {layout.base_dir} uses a supported algorithm")
        before = {
            a: read_manifest(path, ManifestRole.PAYLOAD, a) for a, path in discovered.items()
        }
        # tag manifests are recomputed from scratch, but a corrupt one must not be overwritten
        for a, path in layout.discover_manifests(ManifestRole.TAG).items():
            tag_manifest = read_manifest(path, ManifestRole.TAG, a)
            logger.debug("Read %s with %d entries", path, len(tag_manifest))
        return before, algorithms

    def rebag(self) -> RebagResult:
        layout = self.layout
        logger.info("Updating bag at %s", layout.base_dir)
        declaration = read_bag_declaration(layout.bagit_txt)
        before, algorithms = self._load()
        bag_info = read_bag_info(layout.bag_info_txt)
        if not layout.data_dir.is_dir():
            raise IoFailure(layout.data_dir, "Payload directory is missing:")

        digested = digest_files(collect_payload(layout), algorithms, self.workers, self.cancel)
        after = build_payload_manifests(layout, digested.values(), algorithms)

        before_paths = set()
        for manifest in before.values():
            before_paths |= manifest.paths()
        after_paths = set(digested)
        shared = [a for a in algorithms if a in before]
        modified = sorted(
            p for p in after_paths & before_paths
            if any(p in before[a] and not before[a].matches(p, after[a].get(p)) for a in shared)
        )
        added = sorted(after_paths - before_paths)
        removed = sorted(before_paths - after_paths)
        algorithms_added = [a for a in algorithms if a not in before]
        algorithms_removed = [a for a in before if a not in algorithms]
        for path in removed:
            logger.info("Removing %s from manifests", path)

        pending = {m.filename: render_bytes(m) for m in after.values()}
        content_changed = bool(added or modified or removed or algorithms_added or algorithms_removed)
        original_info = bag_info.render()
        if self.extra_info:
            bag_info.update(self.extra_info)
        update_bag_info(bag_info, (d.file for d in digested.values()),
                        self.bagging_date, self.software_agent, refresh=content_changed)
        if content_changed or bag_info.render() != original_info:
            pending[BAG_INFO_TXT] = bag_info.render().encode("utf-8")
        else:
            bag_info = read_bag_info(layout.bag_info_txt)

        new_names = {layout.manifest_name(ManifestRole.PAYLOAD, a) for a in algorithms}
        new_names |= {layout.manifest_name(ManifestRole.TAG, a) for a in algorithms}
        obsolete = [
            name
            for role in (ManifestRole.PAYLOAD, ManifestRole.TAG)
            for name, _ in layout.manifest_files(role)
            if name not in new_names
            and not (name.lower() in new_names
                     and _same_file(layout.base_dir / name, layout.base_dir / name.lower()))
        ]

        with StagedWrites() as staged:
            tag_manifests = stage_tag_files(
                layout, staged, pending, algorithms, skip=obsolete,
                workers=self.workers, cancel=self.cancel)
            for name in obsolete:
                staged.delete(layout.base_dir / name)
            staged.commit()

        bag = Bag(layout.base_dir, declaration, bag_info, after, tag_manifests)
        return RebagResult(bag, added, modified, removed, algorithms_added, algorithms_removed)


def rebag(
    bag_path: Union[str, Path],
    algorithms: Optional[Iterable] = None,
    bag_info: Optional[BagInfo] = None,
    bagging_date: Optional[str] = None,
    software_agent: Optional[str] = None,
    workers: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> RebagResult:
    """Recompute the manifests of the bag at `bag_path`.

    With no `algorithms` the ones already in use are kept.
    """
    return Rebagger(bag_path, algorithms, bag_info, bagging_date, software_agent,
                    workers, cancel).rebag()
