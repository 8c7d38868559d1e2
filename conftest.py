import errno
import os

import pytest


@pytest.fixture
def fail_replace(monkeypatch):
    """Make the n-th call to os.replace fail as if the disk were full."""
    def install(n):
        real_replace = os.replace
        calls = []

        def replace(src, dst):
            calls.append(dst)
            if len(calls) == n:
                raise OSError(errno.ENOSPC, "No space left on device")
            return real_replace(src, dst)

        monkeypatch.setattr(os, "replace", replace)
        return calls

    return install
