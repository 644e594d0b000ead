"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import sys
from typing import Any


def print_table(headers: list[str], rows: list[list[Any]], *, json_mode: bool = False) -> None:
    """Print data as a table (text) or JSON array."""
    if json_mode:
        data = [dict(zip(headers, row)) for row in rows]
        print(json.dumps(data, indent=2, default=str))
        return

    if not rows:
        return

    widths = [len(h) for h in headers]
    str_rows = [["" if v is None else str(v) for v in row] for row in rows]
    for row in str_rows:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], len(val))

    print("  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
    print("  ".join("-" * w for w in widths))
    for row in str_rows:
        print("  ".join(val.ljust(widths[i]) for i, val in enumerate(row)))


def print_records(records: list[dict[str, Any]], *, json_mode: bool = False) -> None:
    """Print records as a table whose columns are the union of their keys, id first."""
    headers = ["id"]
    for record in records:
        for key in record:
            if key not in headers:
                headers.append(key)
    rows = [[record.get(h) for h in headers] for record in records]
    print_table(headers, rows, json_mode=json_mode)


def print_object(data: dict[str, Any] | list[Any], *, json_mode: bool = False) -> None:
    """Print a single object or list as JSON or key-value pairs."""
    if json_mode:
        print(json.dumps(data, indent=2, default=str))
        return

    if isinstance(data, list):
        for item in data:
            print(f"  {item}")
        return

    if not data:
        print("(empty)")
        return
    for k, v in data.items():
        print(f"{k}: {v}")


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
