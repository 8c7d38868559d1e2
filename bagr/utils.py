"""Helpers too generic to be in other modules."""
import os

from datetime import date as Date
from typing import Iterable, Optional


DATE_FORMAT = "%Y-%m-%d"

VERSION = "0.1.0"
SRC_URL = "https://github.com/pwinckles/bagr"


def format_date(date: Optional[Date] = None) -> str:
    return (date or Date.today()).strftime(DATE_FORMAT)


def software_agent() -> str:
    return f"bagr v{VERSION} <{SRC_URL}>"


def payload_oxum(sizes: Iterable[int]) -> str:
    """`<total bytes>.<file count>` as used by the Payload-Oxum tag."""
    count = 0
    total = 0
    for size in sizes:
        count += 1
        total += size
    return f"{total}.{count}"


def default_workers() -> int:
    return min(32, (os.cpu_count() or 1) + 4)
