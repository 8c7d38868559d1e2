"""Exceptions raised while building or updating a bag."""

from pathlib import Path
from typing import Optional, Union


PathLike = Union[str, Path]


class BagError(Exception):
    """Base class for every failure reported by bagr."""


class PathRejected(BagError):
    """A file name is not allowed in a bag."""

    def __init__(self, path: PathLike, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Rejected path {str(path)!r}: {reason}")


class IoFailure(BagError):
    """Reading, writing, copying or moving a file failed."""

    def __init__(self, path: PathLike, action: str, error: Optional[OSError] = None):
        self.path = path
        message = f"{action} {path}"
        if error is not None:
            message += f": {error.strerror or error}"
        super().__init__(message)


class ManifestParseError(BagError):
    """A manifest or tag file line could not be parsed."""

    def __init__(self, path: PathLike, line_number: int, message: str):
        self.path = path
        self.line_number = line_number
        super().__init__(f"{path}, line {line_number}: {message}")


class UnrecognizedBag(BagError):
    def __init__(self, path: PathLike, message: str):
        self.path = path
        super().__init__(f"{path} is not a recognizable bag: {message}")


class EncodingError(BagError):
    """A tag file, or a name that must go into one, is not valid UTF-8."""

    def __init__(self, path: PathLike, detail: Optional[str] = None):
        self.path = path
        message = f"{path} is not valid UTF-8"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class AlgorithmUnsupported(BagError):
    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(message or f"Unsupported digest algorithm: {name}")


class OperationCancelled(BagError):
    """The caller asked for the operation to stop before it completed."""
