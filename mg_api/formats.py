"""CSV and TSV renderings of keyed category data."""

import csv
import io
import json


def flatten(obj: dict, prefix: str = "") -> dict:
    """Flatten nested dicts into dot-separated keys; lists become JSON text."""
    out = {}
    for key, value in obj.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, list):
            out[full_key] = json.dumps(value, separators=(",", ":"))
        elif isinstance(value, dict):
            out.update(flatten(value, full_key))
        else:
            out[full_key] = value
    return out


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _render(columns: list[str], rows: list[dict], delimiter: str) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_cell(row.get(col)) for col in columns])
    return buffer.getvalue().rstrip("\n")


def _row(value) -> dict:
    return flatten(value) if isinstance(value, dict) else {"value": value}


def to_table(data: dict, delimiter: str = ",", id_column: str = "id") -> str:
    """One row per top-level key, with the key in the leading id column."""
    if not isinstance(data, dict) or not data:
        return ""
    rows = [{**_row(value), id_column: key} for key, value in data.items()]
    columns = list(dict.fromkeys(col for row in rows for col in row))
    columns.remove(id_column)
    return _render([id_column, *columns], rows, delimiter)


def combined_to_table(data: dict, delimiter: str = ",") -> str:
    """Rows of several categories, prefixed with category and id columns."""
    rows = []
    for category, items in (data or {}).items():
        if not isinstance(items, dict):
            continue
        for key, value in items.items():
            rows.append({**_row(value), "category": category, "id": key})
    if not rows:
        return ""
    columns = list(dict.fromkeys(["category", "id", *(col for row in rows for col in row)]))
    return _render(columns, rows, delimiter)


def to_csv(data: dict) -> str:
    return to_table(data, ",")


def to_tsv(data: dict) -> str:
    return to_table(data, "\t")
