"""Output formatting: JSON, LDIF-like and plain tables."""
from __future__ import annotations

import base64
import json
import re
import sys
from typing import Any, Iterable, List, Mapping, Sequence, TextIO

from .core.constants import LDIF_PREFERRED_FIELDS

__all__ = ["split_fields", "print_json", "print_ldif", "format_table", "print_table"]

_NEEDS_BASE64_RE = re.compile(r"[\r\n]|^\s|\s$")


def split_fields(text: str) -> List[str]:
    """``"a, b,c"`` -> ``["a", "b", "c"]``."""
    return [f for f in re.split(r"\s*,\s*", text.strip()) if f]


def print_json(data: Any, out: TextIO | None = None) -> None:
    print(json.dumps(data, indent=2, default=str), file=out or sys.stdout)


def _preferred_key(preferred: Sequence[str]):
    def key(name: str):
        if name in preferred:
            return (0, preferred.index(name), "")
        return (1, 0, name)
    return key


def _ldif_line(name: str, value: Any) -> str:
    # Note: intentionally no base64 wrapping for long lines.
    if isinstance(value, bool):
        value = "true" if value else "false"
    value = str(value)
    if _NEEDS_BASE64_RE.search(value):
        return f"{name}:: {base64.b64encode(value.encode('utf-8')).decode('ascii')}"
    return f"{name}: {value}"


def print_ldif(record: Mapping[str, Any], preferred: Sequence[str] | None = None,
               out: TextIO | None = None) -> None:
    """Print *record* one ``field: value`` line per value.

    Fields in *preferred* come first (in that order), then the rest sorted.
    """
    out = out or sys.stdout
    order = LDIF_PREFERRED_FIELDS if preferred is None else preferred
    for name in sorted(record, key=_preferred_key(order)):
        value = record[name]
        values = value if isinstance(value, list) else [value]
        for v in values:
            print(_ldif_line(name, v), file=out)


# Tables ---------------------------------------------------------------------


def _cell(value: Any) -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(str(v) for v in value)
    return str(value)


def _sorted_rows(rows: List[Mapping[str, Any]], sort: Sequence[str]) -> List[Mapping[str, Any]]:
    # Stable sorts applied from the least significant field
    result = list(rows)
    for field in reversed(list(sort)):
        reverse = field.startswith("-")
        name = field.lstrip("-")

        def key(row, name=name):
            value = row.get(name)
            if value is None:
                return (0, 0, "")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return (1, value, "")
            return (2, 0, _cell(value))
        result.sort(key=key, reverse=reverse)
    return result


def format_table(rows: Iterable[Mapping[str, Any]], columns: Sequence[str],
                 sort: Sequence[str] = (), skip_header: bool = False) -> List[str]:
    """Return the table lines for *rows* restricted to *columns*."""
    table = [[_cell(row.get(c)) for c in columns] for row in _sorted_rows(list(rows), sort)]
    if not skip_header:
        table.insert(0, [c.upper() for c in columns])
    if not table:
        return []
    widths = [max(len(r[i]) for r in table) for i in range(len(columns))]
    lines = []
    for r in table:
        cells = [r[i].ljust(widths[i]) for i in range(len(columns))]
        lines.append("  ".join(cells).rstrip())
    return lines


def print_table(rows: Iterable[Mapping[str, Any]], columns: Sequence[str],
                sort: Sequence[str] = (), skip_header: bool = False,
                out: TextIO | None = None) -> None:
    out = out or sys.stdout
    for line in format_table(rows, columns, sort, skip_header):
        print(line, file=out)
