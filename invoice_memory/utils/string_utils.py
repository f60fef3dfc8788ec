"""
String utility functions for invoice processing.

Provides whitespace normalization, key-case conversion for intake payloads
and the loose containment match used for descriptions and patterns.
"""

import re


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_whitespace(text: str) -> str:
    """
    Normalize whitespace in text.

    Collapses multiple spaces, tabs, newlines into single spaces.

    Example:
        normalize_whitespace("Seefracht   /Shipping\\n") -> "Seefracht /Shipping"
    """
    if not text:
        return ""

    return " ".join(text.split())


def to_snake_case(name: str) -> str:
    """
    Convert a camelCase identifier to snake_case.

    Example:
        to_snake_case("serviceDate") -> "service_date"
        to_snake_case("poNumber") -> "po_number"
    """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def contains_either_way(first: str, second: str) -> bool:
    """
    Case-insensitive substring containment in either direction.

    Empty strings never match.
    """
    a = normalize_whitespace(first).lower()
    b = normalize_whitespace(second).lower()
    if not a or not b:
        return False
    return a in b or b in a
