"""
Output parsers shared by the backends.

Parses ``KEY=VALUE`` lines as printed by ``--nameprefixes --unquoted
--noheadings`` style queries, and human readable sizes.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Callable, TypeVar

from blockdev.core.errors import ParseFailed

T = TypeVar("T")

_TOKEN_SEPARATORS = re.compile(r"[ \t\n]")

_SIZE_UNITS = {
    "": 1,
    "b": 1,
    "k": 1000,
    "kb": 1000,
    "m": 1000**2,
    "mb": 1000**2,
    "g": 1000**3,
    "gb": 1000**3,
    "t": 1000**4,
    "tb": 1000**4,
    "p": 1000**5,
    "pb": 1000**5,
    "e": 1000**6,
    "eb": 1000**6,
    "kib": 1024,
    "mib": 1024**2,
    "gib": 1024**3,
    "tib": 1024**4,
    "pib": 1024**5,
    "eib": 1024**6,
}

_SIZE_SPEC = re.compile(r"^\s*(?P<number>\d+(?:\.\d+)?)\s*(?P<unit>[a-zA-Z]*)\s*$")


def parse_key_value_line(line: str) -> tuple[dict[str, str], int]:
    """
    Parse one line of ``KEY=VALUE`` tokens.

    Tokens are separated by spaces, tabs or newlines and split on the first
    ``=``. Tokens without ``=`` are dropped. Returns the mapping (last value
    wins for repeated keys) and the number of key/value tokens seen.

    Example input:
    LVM2_PV_NAME=/dev/sda1 LVM2_PV_UUID=abc LVM2_PE_START=2048
    """
    table: dict[str, str] = {}
    num_items = 0

    for token in _TOKEN_SEPARATORS.split(line):
        key, sep, value = token.partition("=")
        if not sep:
            continue
        table[key] = value
        num_items += 1

    return table, num_items


def find_record(
    output: str,
    num_items: int,
    build: Callable[[dict[str, str]], T],
    what: str = "record",
) -> T:
    """Build a record from the first line that yields exactly ``num_items`` pairs."""
    for line in output.split("\n"):
        table, count = parse_key_value_line(line)
        if count == num_items:
            return build(table)

    raise ParseFailed(f"Failed to parse information about the {what}", raw=output)


def collect_records(
    output: str,
    num_items: int,
    build: Callable[[dict[str, str]], T],
    what: str = "records",
) -> list[T]:
    """Build a record from every line that yields exactly ``num_items`` pairs."""
    records = []
    for line in output.split("\n"):
        table, count = parse_key_value_line(line)
        if count == num_items:
            records.append(build(table))

    if not records:
        raise ParseFailed(f"Failed to parse information about {what}", raw=output)
    return records


def int_field(table: dict[str, str], key: str) -> int:
    """Integer value of ``key``; 0 when absent or not a number."""
    value = table.get(key)
    if not value:
        return 0
    try:
        return int(value, 0)
    except ValueError:
        try:
            return int(value)
        except ValueError:
            return 0


def size_from_spec(spec: str) -> int:
    """
    Convert a human readable size ("1.00GiB", "512 KiB", "4096") to bytes.

    Single letter units and two letter ``*B`` units are decimal, ``*iB``
    units are binary.
    """
    match = _SIZE_SPEC.match(spec or "")
    if not match:
        raise ParseFailed(f"Failed to parse size spec: {spec}", raw=spec)

    unit = match.group("unit").lower()
    if unit not in _SIZE_UNITS:
        raise ParseFailed(f"Failed to recognize unit from the spec: {spec}", raw=spec)

    return int(Decimal(match.group("number")) * _SIZE_UNITS[unit])
