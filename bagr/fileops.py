"""Copying, moving and atomically replacing files inside a bag."""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from bagr.errors import IoFailure
from bagr.layout import TEMP_PREFIX


logger = logging.getLogger(__name__)


def copy_file(src: Path, dst: Path):
    """Copy the bytes (and permission bits) of `src` to `dst`."""
    logger.debug("Copying %s to %s", src, dst)
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dst)
        shutil.copymode(src, dst)
    except OSError as e:
        raise IoFailure(src, f"Failed to copy to {dst} from", e) from e


def move(src: Path, dst: Path):
    logger.debug("Moving %s to %s", src, dst)
    try:
        os.rename(src, dst)
    except OSError as e:
        raise IoFailure(src, f"Failed to move to {dst} from", e) from e


def remove(path: Path):
    """Delete a file, link or whole directory tree."""
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        raise IoFailure(path, "Failed to delete", e) from e


def make_temp_dir(parent: Path) -> Path:
    try:
        tmp = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX, dir=parent))
        # temp directories are only accessible by the creating user, so make accessible
        os.chmod(tmp, 0o755)
        return tmp
    except OSError as e:
        raise IoFailure(parent, "Failed to create temporary directory in", e) from e


class StagedWrites:
    """Stage new file contents next to their targets, then swap them in together.

    Every `write` goes to a temporary file in the target's directory. Nothing
    visible changes until `commit`, which renames each temporary file over its
    target and then performs the queued deletions. Leaving the `with` block
    with an exception discards everything staged.
    """

    def __init__(self):
        self._staged: list[tuple[Path, Path]] = []
        self._deletions: list[Path] = []
        self.committed = False

    def write(self, target: Path, data: bytes):
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=target.parent)
        except OSError as e:
            raise IoFailure(target.parent, "Failed to create temporary file in", e) from e
        tmp = Path(tmp_name)
        self._staged.append((tmp, target))
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(data)
                fp.flush()
                os.fsync(fp.fileno())
            os.chmod(tmp, 0o644)
        except OSError as e:
            raise IoFailure(target, "Error writing", e) from e

    def delete(self, target: Path):
        """Queue `target` for deletion once everything staged is in place."""
        self._deletions.append(target)

    def commit(self):
        """Swap every staged file in, then perform the queued deletions.

        Existing targets are hard-linked to a backup before being replaced and
        deleted files are first moved aside. If any step fails, every target
        already touched is put back before the error propagates.
        """
        done: list[tuple[Path, Optional[Path]]] = []
        try:
            for tmp, target in self._staged:
                done.append((target, self._back_up(target, Path(f"{tmp}.orig"))))
                logger.info("Writing %s", target)
                try:
                    os.replace(tmp, target)
                except OSError as e:
                    raise IoFailure(target, "Error replacing", e) from e
            for target in self._deletions:
                if not target.exists():
                    continue
                logger.info("Deleting %s", target)
                backup = self._reserve(target.parent)
                try:
                    os.replace(target, backup)
                except OSError as e:
                    backup.unlink()
                    raise IoFailure(target, "Failed to delete", e) from e
                done.append((target, backup))
        except BaseException:
            self._roll_back(done)
            raise
        for _, backup in done:
            if backup is not None:
                remove(backup)
        self._staged = []
        self._deletions = []
        self.committed = True

    @staticmethod
    def _reserve(directory: Path) -> Path:
        try:
            fd, name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=directory)
        except OSError as e:
            raise IoFailure(directory, "Failed to create temporary file in", e) from e
        os.close(fd)
        return Path(name)

    @staticmethod
    def _back_up(target: Path, backup: Path) -> Optional[Path]:
        """Keep the current contents of `target` at `backup`; None if it does not exist."""
        if not target.exists():
            return None
        try:
            try:
                os.link(target, backup)
            except OSError:
                # not every filesystem supports hard links
                shutil.copy2(target, backup)
        except OSError as e:
            raise IoFailure(target, "Failed to back up", e) from e
        return backup

    @staticmethod
    def _roll_back(done: list[tuple[Path, Optional[Path]]]):
        for target, backup in reversed(done):
            logger.info("Restoring %s", target)
            try:
                if backup is None:
                    target.unlink()
                else:
                    os.replace(backup, target)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error("Failed to restore %s: %s", target, e)

    def discard(self):
        for tmp, _ in self._staged:
            try:
                tmp.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error("Failed to remove temporary file %s: %s", tmp, e)
        self._staged = []
        self._deletions = []

    def __enter__(self) -> "StagedWrites":
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        if exc_type is not None or not self.committed:
            self.discard()
        return None
