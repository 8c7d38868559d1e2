"""Rules deciding which file names may go into a bag.

Manifests are line oriented UTF-8 text, so a name has to survive being written
on a single line and read back unchanged. BagIt asks for CR and LF to be percent
encoded, but readers disagree on decoding them, so such names are refused
instead. Other percent signs are written verbatim and never decoded on read.
"""

import re
from pathlib import PurePath
from typing import NamedTuple, Optional, Union

from bagr.errors import PathRejected


LINE_BREAKS = ("\r", "\n")
# readers that decode CR/LF would turn these back into line breaks
ENCODED_LINE_BREAK = re.compile(r"%0[AD]", re.IGNORECASE)


class Classification(NamedTuple):
    accepted: bool
    reason: Optional[str] = None


ACCEPTED = Classification(True)


def rejected(reason: str) -> Classification:
    return Classification(False, reason)


def classify_name(name: str) -> Classification:
    """Classify a single path component."""
    if any(c in name for c in LINE_BREAKS):
        return rejected("name contains a carriage return or line feed")
    if ENCODED_LINE_BREAK.search(name):
        return rejected("name contains a percent-encoded line break")
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return rejected("name is not valid UTF-8")
    return ACCEPTED


def classify(path: Union[str, PurePath]) -> Classification:
    """Classify every component of a relative path."""
    # a manifest line is split on the first run of whitespace after the digest
    if str(path)[:1].isspace():
        return rejected("path starts with whitespace")
    for part in PurePath(path).parts:
        result = classify_name(part)
        if not result.accepted:
            return result
    return ACCEPTED


def check(path: Union[str, PurePath]):
    """Raise `PathRejected` unless `path` is acceptable."""
    result = classify(path)
    if not result.accepted:
        raise PathRejected(path, result.reason)


def is_hidden_file(name: str) -> bool:
    return name.startswith(".") and name not in (".", "..")
