"""Order-independent normalisation of export resource filters.

Filters are opaque to the lifecycle engine. They are only normalised for
equality (deduplication) and passed through unchanged to the exporter.
"""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from bulk_export.lib.export_lifecycle.errors import InvalidExportRequestError

MAX_FILTER_KEYS = 20
MAX_FILTER_KEY_LENGTH = 50
MAX_FILTER_LIST_ITEMS = 100


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _normalize_value(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, list | tuple):
        return [_normalize_value(v) for v in value]
    return value


def normalize_filters(filters: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a copy of ``filters`` with keys sorted at every nesting level.

    List order is preserved; only mapping key order is normalised.

    Args:
        filters: Raw filter mapping (may be None).

    Returns:
        The normalised filter dict.
    """
    if not filters:
        return {}
    return _normalize_value(filters)


def filters_fingerprint(filters: Mapping[str, Any] | None) -> str:
    """Compute a stable SHA-256 fingerprint of the normalised filters."""
    canonical = json.dumps(
        normalize_filters(filters),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def validate_filters(filters: Mapping[str, Any] | None) -> None:
    """Reject filter maps that exceed the structural limits.

    Raises:
        InvalidExportRequestError: On too many keys, overlong keys, or
            oversized list values.
    """
    if not filters:
        return
    if len(filters) > MAX_FILTER_KEYS:
        msg = f"Too many filters applied (maximum: {MAX_FILTER_KEYS})"
        raise InvalidExportRequestError(msg)
    for key, value in filters.items():
        if len(str(key)) > MAX_FILTER_KEY_LENGTH:
            msg = f"Filter key too long: {key}"
            raise InvalidExportRequestError(msg)
        if isinstance(value, list | tuple) and len(value) > MAX_FILTER_LIST_ITEMS:
            msg = f"Filter array too large for key: {key}"
            raise InvalidExportRequestError(msg)
