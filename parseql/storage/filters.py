"""Translation of Parse-style ``where`` constraints into SQLAlchemy predicates.

Field values live in the JSON ``data`` column, so each filterable field kind
maps to a typed JSON accessor (``as_string`` / ``as_float`` / ``as_boolean``).
Constraints that cannot be expressed portably (``$regex``, ``$nearSphere``,
array membership, values of an unexpected type) are returned as a residual
``where`` for ``query.matches`` to evaluate on the fetched rows.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import and_, false, or_, true

from ..errors import ValidationError
from ..schema import ClassSchema, FieldKind
from ..types import format_date, parse_date
from .models import ObjectRow

# Stored query operator -> SQL predicate builder
OPERATOR_REGISTRY: Dict[str, Callable[[Any, Any], Any]] = {
    '$eq': lambda col, v: col == v,
    '$ne': lambda col, v: or_(col.is_(None), col != v),
    '$lt': lambda col, v: col < v,
    '$lte': lambda col, v: col <= v,
    '$gt': lambda col, v: col > v,
    '$gte': lambda col, v: col >= v,
    '$in': lambda col, v: col.in_(v),
    '$nin': lambda col, v: or_(col.is_(None), col.not_in(v)),
    '$exists': lambda col, flag: col.is_not(None) if flag else col.is_(None),
}

# evaluated in process by query.matches
PYTHON_OPERATORS = ('$regex', '$nearSphere', '$maxDistanceInKilometers')


class _NotComparable(Exception):
    """The value has no SQL form for this column; the constraint runs in process."""


@dataclass
class _Column:
    expr: Any
    convert: Callable[[Any], Any]


def _as_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    raise _NotComparable(value)


def _as_number(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise _NotComparable(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise _NotComparable(value)


def _as_datetime(value: Any) -> datetime:
    try:
        parsed = parse_date(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value!r}", code=102) from exc
    if parsed is None:
        raise _NotComparable(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _as_iso(value: Any) -> str:
    # stored dates share one ISO layout, so string order is time order
    return format_date(_as_datetime(value))


def _as_pointer(target_class: Optional[str]) -> Callable[[Any], str]:
    def _convert(value: Any) -> str:
        if (
            isinstance(value, dict)
            and value.get('__type') == 'Pointer'
            and value.get('className') == target_class
            and isinstance(value.get('objectId'), str)
        ):
            return value['objectId']
        raise _NotComparable(value)
    return _convert


def column_for(key: str, class_schema: Optional[ClassSchema]) -> Optional[_Column]:
    """SQL accessor for ``key``, or ``None`` when the field is matched in process."""
    if key == 'objectId':
        return _Column(ObjectRow.object_id, _as_str)
    if key == 'createdAt':
        return _Column(ObjectRow.created_at, _as_datetime)
    if key == 'updatedAt':
        return _Column(ObjectRow.updated_at, _as_datetime)
    field = class_schema.fields.get(key) if class_schema is not None else None
    if field is None:
        return None
    kind = field.kind
    if kind in (FieldKind.STRING, FieldKind.BYTES):
        return _Column(ObjectRow.data[key].as_string(), _as_str)
    if kind is FieldKind.NUMBER:
        return _Column(ObjectRow.data[key].as_float(), _as_number)
    if kind is FieldKind.BOOLEAN:
        return _Column(ObjectRow.data[key].as_boolean(), _as_bool)
    if kind is FieldKind.DATE:
        return _Column(ObjectRow.data[(key, 'iso')].as_string(), _as_iso)
    if kind is FieldKind.POINTER:
        return _Column(ObjectRow.data[(key, 'objectId')].as_string(), _as_pointer(field.target_class))
    return None


def _presence(key: str, column: Optional[_Column]) -> Any:
    if column is not None and key in ('objectId', 'createdAt', 'updatedAt'):
        return column.expr
    return ObjectRow.data[key].as_string()


def _is_operator_map(constraint: Any) -> bool:
    return isinstance(constraint, dict) and bool(constraint) and all(str(k).startswith('$') for k in constraint)


def compile_constraint(key: str, constraint: Any, class_schema: Optional[ClassSchema]) -> Tuple[List[Any], Dict[str, Any]]:
    """Split one field constraint into SQL predicates and a residual operator map."""
    ops = constraint if _is_operator_map(constraint) else {'$eq': constraint}
    column = column_for(key, class_schema)
    clauses: List[Any] = []
    rest: Dict[str, Any] = {}
    for op, arg in ops.items():
        if op == '$regex':
            try:
                re.compile(arg)
            except (re.error, TypeError) as exc:
                raise ValidationError(f"Invalid regex: {arg!r}", code=102) from exc
        if op in PYTHON_OPERATORS:
            rest[op] = arg
            continue
        builder = OPERATOR_REGISTRY.get(op)
        if builder is None:
            raise ValidationError(f"Unknown query operator: {op}", code=102)
        if op == '$exists':
            clauses.append(builder(_presence(key, column), arg))
            continue
        if column is None:
            rest[op] = arg
            continue
        try:
            if op in ('$in', '$nin'):
                value = [column.convert(v) for v in (arg or [])]
            else:
                value = column.convert(arg)
        except _NotComparable:
            rest[op] = arg
            continue
        clauses.append(builder(column.expr, value))
    return clauses, rest


def compile_where(where: Optional[Dict[str, Any]], class_schema: Optional[ClassSchema]) -> Tuple[List[Any], Dict[str, Any]]:
    """Return ``(clauses, residual)`` for ``where``.

    Rows must satisfy every clause and then ``query.matches(record, residual)``.
    ``$relatedTo`` is left to the caller. An ``$or`` with any branch that
    needs in-process matching is kept whole in the residual.
    """
    clauses: List[Any] = []
    residual: Dict[str, Any] = {}
    for key, constraint in (where or {}).items():
        if key == '$relatedTo':
            continue
        if key == '$and':
            pending = []
            for sub in constraint:
                sub_clauses, sub_rest = compile_where(sub, class_schema)
                clauses.extend(sub_clauses)
                if sub_rest:
                    pending.append(sub_rest)
            if pending:
                residual['$and'] = pending
            continue
        if key == '$or':
            branches = [compile_where(sub, class_schema) for sub in constraint]
            if any(rest for _, rest in branches):
                residual['$or'] = constraint
            elif not branches:
                clauses.append(false())
            else:
                clauses.append(or_(*(and_(*c) if c else true() for c, _ in branches)))
            continue
        field_clauses, rest = compile_constraint(key, constraint, class_schema)
        clauses.extend(field_clauses)
        if rest:
            residual[key] = rest
    return clauses, residual
