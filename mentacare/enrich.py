from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from mentacare.db import DOC_ID, IN_QUERY_LIMIT, Collection

Projection = Callable[[Dict[str, Any]], Dict[str, Any]]


def chunked(values: Sequence[Any], size: int = IN_QUERY_LIMIT) -> Iterator[List[Any]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(values), size):
        yield list(values[start : start + size])


def distinct_ids(records: Iterable[Dict[str, Any]], field_name: str) -> List[str]:
    seen: Dict[str, None] = {}
    for record in records:
        value = record.get(field_name)
        if value:
            seen.setdefault(str(value), None)
    return list(seen)


def fetch_projections(
    collection: Collection,
    ids: Sequence[str],
    project: Projection,
    *,
    filters: Optional[Dict[str, Any]] = None,
    columns: Optional[Sequence[str]] = None,
    batch_size: int = IN_QUERY_LIMIT,
) -> Dict[str, Dict[str, Any]]:
    """Look `ids` up in batches of `batch_size` and return id -> projection."""
    unique = list(dict.fromkeys(str(i) for i in ids if i))
    out: Dict[str, Dict[str, Any]] = {}
    for batch in chunked(unique, batch_size):
        batch_filters = dict(filters or {})
        batch_filters[DOC_ID] = ("in", batch)
        for row in collection.select(filters=batch_filters, columns=columns):
            out[str(row[DOC_ID])] = project(row)
    return out


def attach_projections(
    records: Iterable[Dict[str, Any]],
    field_name: str,
    projections: Dict[str, Dict[str, Any]],
    target: str,
) -> List[Dict[str, Any]]:
    """Join projections onto records; dangling references are left as they are."""
    out: List[Dict[str, Any]] = []
    for record in records:
        ref = record.get(field_name)
        if ref and str(ref) in projections:
            record = dict(record)
            record[target] = projections[str(ref)]
        out.append(record)
    return out


def enrich(
    records: List[Dict[str, Any]],
    field_name: str,
    collection: Collection,
    project: Projection,
    *,
    target: str,
    filters: Optional[Dict[str, Any]] = None,
    columns: Optional[Sequence[str]] = None,
) -> List[Dict[str, Any]]:
    ids = distinct_ids(records, field_name)
    if not ids:
        return list(records)
    projections = fetch_projections(collection, ids, project, filters=filters, columns=columns)
    return attach_projections(records, field_name, projections, target)


def count_references(
    collection: Collection,
    field_name: str,
    ids: Sequence[str],
    *,
    filters: Optional[Dict[str, Any]] = None,
    batch_size: int = IN_QUERY_LIMIT,
) -> Dict[str, int]:
    """Count rows in `collection` whose `field_name` holds each of `ids`."""
    unique = list(dict.fromkeys(str(i) for i in ids if i))
    counts: Dict[str, int] = {}
    for batch in chunked(unique, batch_size):
        batch_filters = dict(filters or {})
        batch_filters[field_name] = ("in", batch)
        for row in collection.select(filters=batch_filters, columns=[field_name]):
            ref = row.get(field_name)
            if ref:
                counts[str(ref)] = counts.get(str(ref), 0) + 1
    return counts
