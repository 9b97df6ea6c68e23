"""Row store helpers.

A row is a plain ``dict`` describing one contact or company. Once a row
enters a pipeline it carries two reserved fields:

- ``relevanceTag``: empty while the row is eligible for processing; any
  non-empty value excludes it from later steps (the row is kept).
- ``__row_key``: a stable key computed once at ingestion and never
  recomputed. Batch results are merged back by this key.

Fields whose names start with ``__`` are internal and are dropped on export.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Iterable, NewType, Optional, Union

import pandas as pd

from ..core.exceptions import ConfigurationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

Row = dict[str, Any]
RowKey = NewType("RowKey", str)

TAG_FIELD = "relevanceTag"
ROW_KEY_FIELD = "__row_key"
INTERNAL_PREFIX = "__"

_FIRST_NAME_FIELDS = ("first_name", "fname", "firstName")
_LAST_NAME_FIELDS = ("last_name", "lname", "lastName")
_POSITION_FIELDS = ("position", "title")

_MISSING = object()
_WHITESPACE = re.compile(r"\s+")


# -- keys --------------------------------------------------------------------


def _normalize(value: Any) -> str:
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip().lower()


def _first_present(row: Row, names: Iterable[str]) -> str:
    for name in names:
        value = _normalize(row.get(name))
        if value:
            return value
    return ""


def compute_row_key(row: Row) -> Optional[RowKey]:
    """Derive a row's stable key, or None if it has no identifying fields.

    ``id`` wins when present; otherwise the normalized first name, last
    name and position are combined. Name-based keys can collide, which
    ``prepare_rows`` detects.
    """
    row_id = row.get("id")
    if row_id is not None and _normalize(row_id):
        return RowKey(f"id:{str(row_id).strip()}")

    parts = (
        _first_present(row, _FIRST_NAME_FIELDS),
        _first_present(row, _LAST_NAME_FIELDS),
        _first_present(row, _POSITION_FIELDS),
    )
    if not any(parts):
        return None
    return RowKey("name:" + "|".join(parts))


def get_row_key(row: Row) -> Optional[RowKey]:
    """Return the key stamped on *row* at ingestion (None if unstamped)."""
    return row.get(ROW_KEY_FIELD)


def prepare_rows(rows: list[Row], strict: bool = False) -> list[Row]:
    """Stamp ``relevanceTag`` and ``__row_key`` on every row, in place.

    Rows without a derivable key get the positional key ``row:<index>``.
    Duplicate keys get an ordinal suffix (``#2``, ``#3``, ...). Both cases
    are logged; with ``strict=True`` they raise ``ConfigurationError``.

    Returns:
        The same list, for chaining.
    """
    seen: dict[str, int] = {}
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise ConfigurationError(
                f"Rows must be mappings, got {type(row).__name__}", row_key=f"row:{index}"
            )

        tag = row.get(TAG_FIELD)
        row[TAG_FIELD] = "" if tag is None else str(tag)

        key = row.get(ROW_KEY_FIELD) or compute_row_key(row)
        if key is None:
            if strict:
                raise ConfigurationError(
                    "Row has no id and no name/position fields to derive a key from",
                    row_key=f"row:{index}",
                )
            key = f"row:{index}"
            logger.warning("Row %d has no derivable key; using positional key %s", index, key)

        if key in seen:
            if strict:
                raise ConfigurationError("Duplicate row key", row_key=key)
            seen[key] += 1
            unique = f"{key}#{seen[key]}"
            while unique in seen:
                seen[key] += 1
                unique = f"{key}#{seen[key]}"
            logger.warning("Duplicate row key %s at row %d; using %s", key, index, unique)
            key = unique
        seen.setdefault(key, 1)

        row[ROW_KEY_FIELD] = RowKey(key)
    return rows


# -- field access ------------------------------------------------------------


def resolve_field(row: Row, path: str) -> Any:
    """Look up *path* in *row*, returning ``_MISSING`` when absent.

    A literal key (``"organization.name"`` as a flattened CSV column) wins
    over traversal; otherwise dots walk nested mappings.
    """
    if path in row:
        return row[path]
    current: Any = row
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING or value is None


def is_tagged(row: Row) -> bool:
    return bool(row.get(TAG_FIELD))


def eligible_rows(rows: list[Row]) -> list[Row]:
    """Rows with an empty ``relevanceTag``, in store order."""
    return [row for row in rows if not is_tagged(row)]


def count_tagged(rows: list[Row]) -> int:
    return sum(1 for row in rows if is_tagged(row))


def public_view(row: Row) -> Row:
    """Copy of *row* without internal ``__`` fields."""
    return {k: v for k, v in row.items() if not k.startswith(INTERNAL_PREFIX)}


# -- CSV ---------------------------------------------------------------------


def load_csv(path: Union[str, Path], strict: bool = False) -> list[Row]:
    """
    Load rows from a CSV file.

    Empty cells become ``""`` and every row gets ``relevanceTag`` and a
    stable key, so the result can go straight into ``initialize``.

    Args:
        path: CSV file to read
        strict: Reject rows whose key cannot be derived or collides

    Returns:
        List of row dicts in file order
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"CSV file not found at: {path}")

    df = pd.read_csv(path)
    df = df.astype(object).where(pd.notna(df), "")
    rows = df.to_dict(orient="records")
    logger.info("Loaded %d rows from %s", len(rows), path)
    return prepare_rows(rows, strict=strict)


def export_csv(rows: list[Row], path: Union[str, Path]) -> Path:
    """
    Write rows to CSV, flattening nested mappings into dotted columns.

    Internal ``__`` fields are dropped; tagged rows are kept.

    Returns:
        The path written
    """
    path = Path(path)
    if rows:
        df = pd.json_normalize([public_view(row) for row in rows])
    else:
        df = pd.DataFrame(columns=[TAG_FIELD])
    if TAG_FIELD not in df.columns:
        df[TAG_FIELD] = ""
    df.to_csv(path, index=False)
    logger.info("Exported %d rows to %s", len(df), path)
    return path
