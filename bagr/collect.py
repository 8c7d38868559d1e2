"""Walking a directory tree into the files that go into a manifest."""

import logging
import os
import stat
from pathlib import Path
from typing import Callable, Iterator, NamedTuple, Optional

from bagr import policy
from bagr.errors import IoFailure, PathRejected
from bagr.fileops import remove
from bagr.layout import DATA, TEMP_PREFIX, BagLayout


logger = logging.getLogger(__name__)


class PayloadFile(NamedTuple):
    """A regular file found by a walk.

    `relative` is the `/` separated path below the walked root.
    """

    path: Path
    relative: str
    size: int


def collect(
    root: Path,
    exclude_hidden: bool = False,
    delete_hidden: bool = False,
    ignore: Optional[Callable[[str], bool]] = None,
) -> Iterator[PayloadFile]:
    """Lazily yield every regular file below `root`, in sorted order.

    Every name is checked against the path policy and a rejected name raises
    `PathRejected`. With `exclude_hidden`, hidden entries are skipped before
    that check, and with `delete_hidden` as well they are deleted from disk,
    which cannot be undone. Symbolic links are followed; reaching the same
    directory twice raises `PathRejected` instead of looping. `ignore` receives
    each relative path and skips the entry when it returns true.
    """
    root = Path(root)
    try:
        root_stat = os.stat(root)
    except OSError as e:
        raise IoFailure(root, "Error reading directory", e) from e
    root_id = (root_stat.st_dev, root_stat.st_ino)
    yield from _walk(root, "", exclude_hidden, delete_hidden, ignore, (root_id,), {root_id})


def _walk(directory, prefix, exclude_hidden, delete_hidden, ignore, ancestors, seen):
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        raise IoFailure(directory, "Error reading directory", e) from e

    for entry in entries:
        relative = prefix + entry.name
        path = Path(entry.path)

        if ignore is not None and ignore(relative):
            continue

        if exclude_hidden and policy.is_hidden_file(entry.name):
            if delete_hidden:
                logger.warning("Deleting hidden file %s", path)
                remove(path)
            else:
                logger.info("Skipping hidden file %s", path)
            continue

        result = policy.classify_name(entry.name)
        if not result.accepted:
            raise PathRejected(relative, result.reason)

        try:
            st = entry.stat()
        except FileNotFoundError as e:
            raise IoFailure(path, "Broken symbolic link", e) from e
        except OSError as e:
            raise IoFailure(path, "Failed to stat", e) from e

        if stat.S_ISDIR(st.st_mode):
            dir_id = (st.st_dev, st.st_ino)
            if dir_id in ancestors:
                raise PathRejected(relative, "symbolic link cycle")
            if dir_id in seen:
                raise PathRejected(relative, "directory reached more than once through symbolic links")
            seen.add(dir_id)
            yield from _walk(path, relative + "/", exclude_hidden, delete_hidden, ignore,
                             ancestors + (dir_id,), seen)
        elif stat.S_ISREG(st.st_mode):
            yield PayloadFile(path, relative, st.st_size)
        else:
            raise PathRejected(relative, "unsupported file type")


def collect_payload(layout: BagLayout, exclude_hidden: bool = False) -> Iterator[PayloadFile]:
    """Payload files of an existing bag, relative to the bag root (`data/...`)."""
    for f in collect(layout.data_dir, exclude_hidden=exclude_hidden):
        yield f._replace(relative=layout.payload_path(f.relative))


def is_ignored_tag_path(relative: str, layout: BagLayout) -> bool:
    name = relative.rsplit("/", 1)[-1]
    if name.startswith(TEMP_PREFIX):
        return True
    if "/" not in relative:
        return relative == DATA or layout.is_tag_manifest_name(relative)
    return False


def collect_tag_files(layout: BagLayout) -> Iterator[PayloadFile]:
    """Every tag file of the bag except the tag manifests themselves."""
    return collect(layout.base_dir, ignore=lambda rel: is_ignored_tag_path(rel, layout))
