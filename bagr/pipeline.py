"""Bounded worker pool that digests files while the tree is still being walked."""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Iterable, NamedTuple, Optional

from bagr.collect import PayloadFile
from bagr.digest import DigestAlgorithm, digest_file
from bagr.errors import IoFailure, OperationCancelled
from bagr.utils import default_workers


logger = logging.getLogger(__name__)


class DigestedFile(NamedTuple):
    file: PayloadFile
    digests: dict[DigestAlgorithm, str]


def _digest_one(f: PayloadFile, algorithms: tuple[DigestAlgorithm, ...]) -> DigestedFile:
    try:
        return DigestedFile(f, digest_file(f.path, algorithms))
    except OSError as e:
        raise IoFailure(f.path, "Error reading file", e) from e


def _check_cancel(cancel: Optional[threading.Event]):
    if cancel is not None and cancel.is_set():
        raise OperationCancelled("Operation cancelled before digesting finished")


def digest_files(
    files: Iterable[PayloadFile],
    algorithms: Iterable[DigestAlgorithm],
    workers: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> dict[str, DigestedFile]:
    """Digest every file with every algorithm, keyed by relative path.

    `files` may be a lazy walk; files are submitted as they are found and at
    most twice `workers` of them are in flight at once. Each worker reads its
    file once for all algorithms. Only this function touches the result map.
    On an error, or when `cancel` is set, no more work is submitted, running
    digests are allowed to finish, and the error propagates.
    """
    algorithms = tuple(algorithms)
    workers = default_workers() if workers is None else workers
    if workers < 1:
        raise ValueError(f"workers must be at least 1, got {workers}")
    max_pending = workers * 2

    results: dict[str, DigestedFile] = {}
    pending: set[Future] = set()

    def drain(done):
        for future in done:
            digested = future.result()
            results[digested.file.relative] = digested

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bagr-digest") as pool:
        try:
            for f in files:
                _check_cancel(cancel)
                logger.info("Calculating digests for %s", f.path)
                pending.add(pool.submit(_digest_one, f, algorithms))
                if len(pending) >= max_pending:
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    drain(done)
            done, pending = wait(pending)
            drain(done)
        except BaseException:
            for future in pending:
                future.cancel()
            wait(pending)
            raise

    _check_cancel(cancel)
    return results
