"""Tag files: `bagit.txt` and `bag-info.txt`.

Tag files hold `Label: value` lines. When reading, a line that starts with a
space or tab continues the value on the line before it, and CR, LF and CRLF
all end a line.
"""

import re
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from bagr.errors import EncodingError, IoFailure, ManifestParseError, UnrecognizedBag
from bagr.layout import BAGIT_VERSION, TAG_FILE_ENCODING


LINE_BREAK = re.compile(r"\r\n|\r|\n")

LABEL_BAGIT_VERSION = "BagIt-Version"
LABEL_FILE_ENCODING = "Tag-File-Character-Encoding"

LABEL_BAGGING_DATE = "Bagging-Date"
LABEL_PAYLOAD_OXUM = "Payload-Oxum"
LABEL_SOFTWARE_AGENT = "Bag-Software-Agent"

# reserved bag-info labels that may appear only once, lowercased
NON_REPEATABLE = {
    "bagging-date",
    "payload-oxum",
    "bag-software-agent",
    "bag-size",
    "bag-group-identifier",
    "bag-count",
}


class Tag:
    def __init__(self, label: str, value: str):
        if not label or ":" in label or LINE_BREAK.search(label):
            raise ValueError(f"Invalid tag label: {label!r}")
        if LINE_BREAK.search(value):
            raise ValueError(f"Tag {label} has a value containing a line break")
        self.label = label
        self.value = value

    def __eq__(self, other) -> bool:
        if not isinstance(other, Tag):
            return NotImplemented
        return (self.label, self.value) == (other.label, other.value)

    def __repr__(self) -> str:
        return f"Tag({self.label!r}, {self.value!r})"


class TagList:
    """An ordered list of tags in which labels may repeat."""

    def __init__(self, tags: Iterable[Tag] = ()):
        self.tags = list(tags)

    def add(self, label: str, value: str):
        """Append a tag; non-repeatable reserved labels replace the earlier value in place."""
        tag = Tag(label, value)
        if label.lower() in NON_REPEATABLE:
            existing = [i for i, t in enumerate(self.tags) if t.label.lower() == label.lower()]
            if existing:
                self.remove(label)
                self.tags.insert(existing[0], tag)
                return
        self.tags.append(tag)

    def remove(self, label: str):
        """Remove every tag with `label`, compared case-insensitively."""
        self.tags = [t for t in self.tags if t.label.lower() != label.lower()]

    def get(self, label: str) -> Optional[str]:
        """The first value for `label`, or None."""
        for tag in self.tags:
            if tag.label.lower() == label.lower():
                return tag.value
        return None

    def get_all(self, label: str) -> list[str]:
        return [t.value for t in self.tags if t.label.lower() == label.lower()]

    def update(self, other: Union["TagList", dict]):
        """Add tags from another list or a dict of label to value or list of values."""
        if isinstance(other, TagList):
            for tag in other:
                self.add(tag.label, tag.value)
            return
        for label, value in other.items():
            if isinstance(value, (list, tuple)):
                for v in value:
                    self.add(label, v)
            else:
                self.add(label, value)

    def render(self) -> str:
        return "".join(f"{t.label}: {t.value}\n" for t in self.tags)

    def __contains__(self, label: str) -> bool:
        return self.get(label) is not None

    def __iter__(self) -> Iterator[Tag]:
        return iter(self.tags)

    def __len__(self) -> int:
        return len(self.tags)

    def __eq__(self, other) -> bool:
        if not isinstance(other, TagList):
            return NotImplemented
        return self.tags == other.tags


class BagInfo(TagList):
    """The contents of `bag-info.txt`."""

    @property
    def bagging_date(self) -> Optional[str]:
        return self.get(LABEL_BAGGING_DATE)

    @property
    def software_agent(self) -> Optional[str]:
        return self.get(LABEL_SOFTWARE_AGENT)

    @property
    def payload_oxum(self) -> Optional[str]:
        return self.get(LABEL_PAYLOAD_OXUM)


class BagDeclaration:
    """The contents of `bagit.txt`."""

    def __init__(self, version: str = BAGIT_VERSION, encoding: str = TAG_FILE_ENCODING):
        self.version = version
        self.encoding = encoding

    def render(self) -> str:
        return f"{LABEL_BAGIT_VERSION}: {self.version}\n{LABEL_FILE_ENCODING}: {self.encoding}\n"

    def __eq__(self, other) -> bool:
        if not isinstance(other, BagDeclaration):
            return NotImplemented
        return (self.version, self.encoding) == (other.version, other.encoding)


def tag_lines(text: str) -> Iterator[tuple[int, str]]:
    """Yield (line number, logical line), joining continuation lines."""
    current = None
    start = 0
    lines = LINE_BREAK.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    for number, line in enumerate(lines, start=1):
        if current is not None and line[:1] in (" ", "\t"):
            current += " " + line.lstrip(" \t")
            continue
        if current is not None:
            yield start, current
        current, start = line, number
    if current is not None:
        yield start, current


def parse_tags(text: str, source: Union[str, Path] = "<tags>") -> TagList:
    tags = TagList()
    for number, line in tag_lines(text):
        if not line.strip():
            continue
        label, sep, value = line.partition(":")
        if not sep or not label.strip():
            raise ManifestParseError(source, number, f"expected 'Label: value', found {line!r}")
        tags.tags.append(Tag(label.strip(), value.strip(" \t")))
    return tags


def read_tag_file(path: Path) -> TagList:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise IoFailure(path, "Error reading tag file", e) from e
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise EncodingError(path, str(e)) from e
    if text.startswith("\ufeff"):
        text = text[1:]
    return parse_tags(text, source=path)


def read_bag_declaration(path: Path) -> BagDeclaration:
    """Read `bagit.txt`, accepting only BagIt 1.0 with UTF-8 tag files."""
    if not path.is_file():
        raise UnrecognizedBag(path.parent, f"{path.name} does not exist")
    tags = read_tag_file(path)
    version = tags.get(LABEL_BAGIT_VERSION)
    encoding = tags.get(LABEL_FILE_ENCODING)
    if version is None or encoding is None:
        missing = LABEL_BAGIT_VERSION if version is None else LABEL_FILE_ENCODING
        raise UnrecognizedBag(path.parent, f"{path.name} is missing required tag {missing}")
    if version != BAGIT_VERSION:
        raise UnrecognizedBag(path.parent, f"unsupported BagIt version {version}")
    if encoding.upper() not in ("UTF-8", "UTF8"):
        raise EncodingError(path, f"tag files declared as {encoding}")
    return BagDeclaration(version, encoding)


def read_bag_info(path: Path) -> BagInfo:
    """Read `bag-info.txt`; a missing file is an empty bag-info."""
    if not path.exists():
        return BagInfo()
    return BagInfo(read_tag_file(path))
