"""SQL text utilities for pattern-based governance checks."""

from query_governance.sql.comments import (
    mask_string_literals,
    split_sql_comments,
    strip_sql_comments,
)
from query_governance.sql.structure import PreparedSql, parse_markers, prepare_sql

__all__ = [
    "PreparedSql",
    "mask_string_literals",
    "parse_markers",
    "prepare_sql",
    "split_sql_comments",
    "strip_sql_comments",
]
