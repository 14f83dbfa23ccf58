"""In-process evaluation of Parse-style ``where`` constraints against stored records.

The SQL store compiles what it can with ``filters.compile_where`` and hands
the residual constraints (``$regex``, ``$nearSphere``, array membership) to
``matches``.
"""
from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..errors import ValidationError
from ..types import parse_date

_EARTH_RADIUS_KM = 6371.0


def _normalize(v: Any) -> Any:
    if isinstance(v, dict):
        t = v.get('__type')
        if t == 'Date':
            return parse_date(v)
        if t == 'Pointer':
            return ('Pointer', v.get('className'), v.get('objectId'))
        if t == 'GeoPoint':
            return ('GeoPoint', v.get('latitude'), v.get('longitude'))
    return v


def _pair(a: Any, b: Any):
    a, b = _normalize(a), _normalize(b)
    if isinstance(a, datetime) and isinstance(b, str):
        b = parse_date(b)
    elif isinstance(b, datetime) and isinstance(a, str):
        a = parse_date(a)
    if isinstance(a, datetime) and isinstance(b, datetime):
        # stored timestamps are naive UTC
        if a.tzinfo is not None:
            a = a.astimezone(timezone.utc).replace(tzinfo=None)
        if b.tzinfo is not None:
            b = b.astimezone(timezone.utc).replace(tzinfo=None)
    return a, b


def _equals(value: Any, expected: Any) -> bool:
    if isinstance(value, list) and not isinstance(expected, list):
        return any(_equals(v, expected) for v in value)
    a, b = _pair(value, expected)
    return a == b


def _compare(fn: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def _op(value: Any, expected: Any) -> bool:
        if value is None or expected is None:
            return False
        a, b = _pair(value, expected)
        try:
            return bool(fn(a, b))
        except TypeError:
            return False
    return _op


def _regex(value: Any, pattern: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        return re.search(pattern, value) is not None
    except (re.error, TypeError) as exc:
        raise ValidationError(f"Invalid regex: {pattern!r}", code=102) from exc


def _haversine_km(a: Any, b: Any) -> float:
    lat1, lon1 = math.radians(a['latitude']), math.radians(a['longitude'])
    lat2, lon2 = math.radians(b['latitude']), math.radians(b['longitude'])
    h = math.sin((lat2 - lat1) / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin((lon2 - lon1) / 2) ** 2
    return 2 * _EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def _near(value: Any, point: Any, max_km: Optional[float]) -> bool:
    if not isinstance(value, dict) or not isinstance(point, dict):
        return False
    if max_km is None:
        return True
    return _haversine_km(value, point) <= float(max_km)


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    '$eq': _equals,
    '$ne': lambda v, x: not _equals(v, x),
    '$lt': _compare(lambda a, b: a < b),
    '$lte': _compare(lambda a, b: a <= b),
    '$gt': _compare(lambda a, b: a > b),
    '$gte': _compare(lambda a, b: a >= b),
    '$in': lambda v, xs: any(_equals(v, x) for x in (xs or [])),
    '$nin': lambda v, xs: not any(_equals(v, x) for x in (xs or [])),
    '$exists': lambda v, flag: (v is not None) == bool(flag),
    '$regex': _regex,
}


def _is_operator_map(constraint: Any) -> bool:
    return isinstance(constraint, dict) and bool(constraint) and all(str(k).startswith('$') for k in constraint)


def match_constraint(value: Any, constraint: Any) -> bool:
    if not _is_operator_map(constraint):
        return _equals(value, constraint)
    for op, arg in constraint.items():
        if op == '$maxDistanceInKilometers':
            continue
        if op == '$nearSphere':
            if not _near(value, arg, constraint.get('$maxDistanceInKilometers')):
                return False
            continue
        fn = OPERATORS.get(op)
        if fn is None:
            raise ValidationError(f"Unknown query operator: {op}", code=102)
        if not fn(value, arg):
            return False
    return True


def matches(record: Dict[str, Any], where: Optional[Dict[str, Any]]) -> bool:
    """True when ``record`` satisfies every constraint in ``where``.

    ``$relatedTo`` is resolved by the storage layer before records reach here.
    """
    for key, constraint in (where or {}).items():
        if key == '$relatedTo':
            continue
        if key == '$and':
            if not all(matches(record, w) for w in constraint):
                return False
            continue
        if key == '$or':
            if not any(matches(record, w) for w in constraint):
                return False
            continue
        if not match_constraint(record.get(key), constraint):
            return False
    return True
