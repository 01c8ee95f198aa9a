from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

EQUALS = "equals"
MEMBERSHIP = "membership"
BUCKET = "bucket"
SUBSTRING = "substring"

# Kinds the store evaluates natively; everything else runs after the fetch.
PUSHDOWN_KINDS = {EQUALS, MEMBERSHIP}


@dataclass(frozen=True)
class Bucket:
    label: str
    lower: Optional[float] = None
    upper: Optional[float] = None
    lower_open: bool = False
    upper_open: bool = False

    def contains(self, value: Any) -> bool:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if self.lower is not None:
            if value < self.lower or (self.lower_open and value == self.lower):
                return False
        if self.upper is not None:
            if value > self.upper or (self.upper_open and value == self.upper):
                return False
        return True


EXPERIENCE_BUCKETS: Tuple[Bucket, ...] = (
    Bucket("0-2", 0, 2),
    Bucket("3-5", 3, 5),
    Bucket("6-10", 6, 10),
    Bucket("10+", lower=10, lower_open=True),
)

AGE_BUCKETS: Tuple[Bucket, ...] = (
    Bucket("Under 18", upper=18, upper_open=True),
    Bucket("18-29", 18, 30, upper_open=True),
    Bucket("30-49", 30, 50, upper_open=True),
    Bucket("50-64", 50, 65, upper_open=True),
    Bucket("65+", lower=65),
)


def bucket_label(value: Any, buckets: Sequence[Bucket]) -> Optional[str]:
    for bucket in buckets:
        if bucket.contains(value):
            return bucket.label
    return None


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def parse_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        items = str(value).split(",")
    return [str(item).strip() for item in items if str(item).strip()]


def is_unset(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        raw = value.strip()
        return not raw or raw.lower() == "all"
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class FilterField:
    kind: str
    field: Optional[str] = None
    fields: Tuple[str, ...] = ()
    coerce: Callable[[Any], Any] = str
    buckets: Tuple[Bucket, ...] = ()


def equals(field_name: str, coerce: Callable[[Any], Any] = str) -> FilterField:
    return FilterField(kind=EQUALS, field=field_name, coerce=coerce)


def membership(field_name: str) -> FilterField:
    return FilterField(kind=MEMBERSHIP, field=field_name, coerce=parse_list)


def bucket(field_name: str, buckets: Sequence[Bucket]) -> FilterField:
    return FilterField(kind=BUCKET, field=field_name, buckets=tuple(buckets))


def substring(*field_names: str) -> FilterField:
    return FilterField(kind=SUBSTRING, fields=tuple(field_names))


ResidualPredicate = Callable[[Dict[str, Any]], bool]


@dataclass
class FilterSpec:
    store_filters: Dict[str, Any] = field(default_factory=dict)
    residual: List[Tuple[str, ResidualPredicate]] = field(default_factory=list)

    def matches(self, record: Dict[str, Any]) -> bool:
        return all(pred(record) for _, pred in self.residual)

    def apply(self, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not self.residual:
            return list(records)
        return [record for record in records if self.matches(record)]


def _bucket_predicate(field_name: str, chosen: Bucket) -> ResidualPredicate:
    def _pred(record: Dict[str, Any]) -> bool:
        return chosen.contains(record.get(field_name))

    return _pred


def _substring_predicate(field_names: Tuple[str, ...], term: str) -> ResidualPredicate:
    needle = term.lower()

    def _pred(record: Dict[str, Any]) -> bool:
        for name in field_names:
            value = record.get(name)
            if isinstance(value, str) and needle in value.lower():
                return True
        return False

    return _pred


def build_filter_spec(
    params: Mapping[str, Any],
    fields: Mapping[str, FilterField],
    *,
    base: Optional[Dict[str, Any]] = None,
) -> FilterSpec:
    """
    Turn raw request parameters into store predicates plus residual checks.

    Parameters are visited in the order `fields` declares them so the store
    filter mapping is deterministic. Unknown parameters are ignored.
    """
    spec = FilterSpec(store_filters=dict(base or {}))
    for name, definition in fields.items():
        raw = params.get(name)
        if is_unset(raw):
            continue

        if definition.kind == EQUALS:
            spec.store_filters[definition.field] = definition.coerce(raw)
        elif definition.kind == MEMBERSHIP:
            values = definition.coerce(raw)
            if values:
                spec.store_filters[definition.field] = ("in", values)
        elif definition.kind == BUCKET:
            label = str(raw).strip()
            chosen = next((b for b in definition.buckets if b.label == label), None)
            if chosen is None:
                logger.debug("ignoring unknown %s bucket %r", name, label)
                continue
            spec.residual.append((name, _bucket_predicate(definition.field, chosen)))
        elif definition.kind == SUBSTRING:
            spec.residual.append((name, _substring_predicate(definition.fields, str(raw).strip())))
        else:
            raise ValueError(f"Unknown filter kind: {definition.kind}")
    return spec
