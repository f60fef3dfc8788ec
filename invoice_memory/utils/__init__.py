"""
Utility modules for the invoice memory engine.

Provides common utility functions for dates, hashing and string handling.
"""

from invoice_memory.utils.date_utils import (
    days_between,
    get_current_timestamp,
    parse_date,
    parse_timestamp,
    to_iso_date,
    utc_now,
)
from invoice_memory.utils.hash_utils import compute_md5, generate_unique_id
from invoice_memory.utils.string_utils import (
    contains_either_way,
    normalize_whitespace,
    to_snake_case,
)


__all__ = [
    # Date utilities
    "parse_date",
    "to_iso_date",
    "days_between",
    "utc_now",
    "get_current_timestamp",
    "parse_timestamp",
    # Hash utilities
    "compute_md5",
    "generate_unique_id",
    # String utilities
    "normalize_whitespace",
    "to_snake_case",
    "contains_either_way",
]
