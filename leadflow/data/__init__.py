"""Row store helpers and CSV ingestion/export."""

from .rows import (
    ROW_KEY_FIELD,
    TAG_FIELD,
    Row,
    RowKey,
    compute_row_key,
    count_tagged,
    eligible_rows,
    export_csv,
    get_row_key,
    load_csv,
    prepare_rows,
    resolve_field,
)

__all__ = [
    "ROW_KEY_FIELD",
    "TAG_FIELD",
    "Row",
    "RowKey",
    "compute_row_key",
    "count_tagged",
    "eligible_rows",
    "export_csv",
    "get_row_key",
    "load_csv",
    "prepare_rows",
    "resolve_field",
]
