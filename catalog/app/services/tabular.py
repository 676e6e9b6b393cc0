"""CSV import reader and template/export writers.

Rows come back as plain dicts keyed by field name. Cells that fail type
coercion are left out of the row and described in its ``_errors`` list;
``_row`` holds the spreadsheet row number (the header is row 1).
"""

from __future__ import annotations

import csv
import io
import math
from dataclasses import dataclass
from typing import Any, Iterable

from ..errors import ValidationError

TRUE_VALUES = {"true", "1", "yes", "y"}
FALSE_VALUES = {"false", "0", "no", "n"}


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    label: str
    required: bool = False
    type: str = "string"
    description: str = ""
    example: str = ""
    choices: tuple[str, ...] = ()

    def header(self) -> str:
        return f"{self.label}*" if self.required else self.label


def _header_key(value: str) -> str:
    value = (value or "").strip()
    if value.endswith("*"):
        value = value[:-1]
    return value.strip().lower()


def coerce(field: FieldDefinition, raw: str) -> Any:
    """Convert one non-empty cell; raises ``ValueError`` on bad input."""

    if field.type == "number":
        number = float(raw)
        if not math.isfinite(number):
            raise ValueError(raw)
        return int(number) if number.is_integer() and "." not in raw else number
    if field.type == "integer":
        number = float(raw)
        if not number.is_integer():
            raise ValueError(raw)
        return int(number)
    if field.type == "boolean":
        lowered = raw.lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        raise ValueError(raw)
    if field.type == "array":
        return [part.strip() for part in raw.split(",") if part.strip()]
    return raw


def parse(content: bytes | str, fields: Iterable[FieldDefinition]) -> list[dict]:
    """Parse CSV ``content`` into ordered rows for ``fields``.

    Headers match a field by label or name, case-insensitively, with or
    without the trailing ``*`` of required columns. Unknown columns are
    ignored and fully empty rows are skipped.
    """

    fields = list(fields)
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ValidationError("file is not valid UTF-8 text") from exc
    reader = csv.reader(io.StringIO(content))
    try:
        header = next(reader)
    except StopIteration:
        raise ValidationError("file is empty") from None

    positions = {_header_key(h): i for i, h in enumerate(header) if _header_key(h)}
    columns: list[tuple[FieldDefinition, int]] = []
    for field in fields:
        index = positions.get(field.label.lower(), positions.get(field.name.lower()))
        if index is not None:
            columns.append((field, index))
    missing = [f.label for f in fields if f.required and f not in dict(columns)]
    if missing:
        raise ValidationError(f"missing required columns: {', '.join(missing)}")

    rows: list[dict] = []
    for number, cells in enumerate(reader, start=2):
        if not any(cell.strip() for cell in cells):
            continue
        row: dict[str, Any] = {"_row": number, "_errors": []}
        for field, index in columns:
            raw = cells[index].strip() if index < len(cells) else ""
            if raw == "":
                continue
            try:
                row[field.name] = coerce(field, raw)
            except ValueError:
                row["_errors"].append(
                    f"{field.label}: '{raw}' is not a valid {field.type}"
                )
        rows.append(row)
    return rows


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def render_sample(fields: Iterable[FieldDefinition]) -> str:
    """CSV template: marked headers plus one example row."""
    fields = list(fields)
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow([f.header() for f in fields])
    sample = []
    for f in fields:
        if f.example:
            sample.append(f.example)
        elif f.type == "boolean":
            sample.append("false")
        elif f.type in ("number", "integer"):
            sample.append("0")
        elif f.type == "array":
            sample.append("Item1,Item2")
        else:
            sample.append(f"Sample {f.label}")
    writer.writerow(sample)
    return out.getvalue()


def render_export(fields: Iterable[FieldDefinition], rows: Iterable[dict]) -> str:
    """CSV of existing records laid out like the import sheet."""
    fields = list(fields)
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow([f.label for f in fields])
    for row in rows:
        writer.writerow([_cell(row.get(f.name)) for f in fields])
    return out.getvalue()
