"""Execution helpers shared by the generated resolvers.

Global ids, storage reads with id tagging, conversion of Strawberry inputs to
plain dicts, filter translation and the array-connection windowing used by
every paginated field.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from strawberry import UNSET
from strawberry.relay.utils import from_base64, to_base64

from .context import RequestContext
from .errors import NotFound, ValidationError
from .schema import ClassSchema, FieldKind, ParseSchema
from .types import QUERY_OPERATORS, encode_value

_logger = logging.getLogger("parseql")

CONNECTION_PREFIX = "arrayconnection"


def global_id(class_name: str, object_id: str) -> str:
    return to_base64(class_name, object_id)


def parse_id(value: str) -> Tuple[str, str]:
    """Split a global id into ``(class_name, object_id)``."""
    try:
        class_name, object_id = from_base64(value)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid global id: {value!r}", code=102) from exc
    if not class_name or not object_id:
        raise ValidationError(f"Invalid global id: {value!r}", code=102)
    return class_name, object_id


def tag_global_id(record: Dict[str, Any]) -> Dict[str, Any]:
    record['id'] = global_id(record['className'], record['objectId'])
    return record


def input_to_dict(obj: Any) -> Any:
    """Convert a Strawberry input instance (or nested list/dict) to plain dicts keyed by GraphQL name.

    Omitted fields (``UNSET``) are dropped; explicit ``None`` is kept.
    """
    if obj is None or isinstance(obj, (str, int, float, bool, datetime)):
        return obj
    if isinstance(obj, (list, tuple)):
        return [input_to_dict(x) for x in obj]
    if isinstance(obj, dict):
        return {k: input_to_dict(v) for k, v in obj.items() if v is not UNSET}
    definition = getattr(obj, '__strawberry_definition__', None)
    if definition is not None:
        out: Dict[str, Any] = {}
        for f in definition.fields:
            value = getattr(obj, f.python_name, UNSET)
            if value is UNSET:
                continue
            out[f.graphql_name or f.python_name] = input_to_dict(value)
        return out
    return obj


def pointer_from_input(target_class: str, value: Any) -> Optional[Dict[str, Any]]:
    """Turn a ``PointerInput`` dict into a stored pointer to ``target_class``."""
    if value is None:
        return None
    object_id = value.get('objectId')
    if not object_id and value.get('id'):
        class_name, object_id = parse_id(value['id'])
        if class_name != target_class:
            raise ValidationError(f"Expected a {target_class} id, got a {class_name} id", code=111)
    if not object_id:
        raise ValidationError("Pointer requires objectId or id", code=111)
    return {'__type': 'Pointer', 'className': target_class, 'objectId': object_id}


def where_from_query_input(where: Optional[Dict[str, Any]], class_schema: Optional[ClassSchema]) -> Dict[str, Any]:
    """Translate a ``<Class>Query`` input dict into stored-query constraints."""
    out: Dict[str, Any] = {}
    if not where or class_schema is None:
        return out
    for key, constraint in where.items():
        if constraint is None:
            continue
        field = class_schema.fields.get(key)
        if field is None:
            continue
        if field.kind is FieldKind.POINTER:
            out[key] = pointer_from_input(field.target_class, constraint)
            continue
        ops: Dict[str, Any] = {}
        for op_name, value in constraint.items():
            if value is None:
                continue
            if op_name == 'startsWith':
                ops['$regex'] = '^' + re.escape(value)
            elif op_name == 'near':
                ops['$nearSphere'] = encode_value(FieldKind.GEOPOINT, value)
            elif op_name in ('in', 'nin'):
                ops[QUERY_OPERATORS[op_name]] = [encode_value(field.kind, v) for v in value]
            elif op_name in ('exists', 'regex', 'maxDistanceInKilometers'):
                ops[QUERY_OPERATORS[op_name]] = value
            elif op_name in QUERY_OPERATORS:
                ops[QUERY_OPERATORS[op_name]] = encode_value(field.kind, value)
            else:
                raise ValidationError(f"Unknown query operator: {op_name}", code=102)
        if ops:
            out[key] = ops
    return out


async def run_get(ctx: RequestContext, class_name: str, object_id: str, schema: Optional[ParseSchema] = None) -> Dict[str, Any]:
    record = await ctx.storage.get(ctx.auth, class_name, object_id, schema)
    return tag_global_id(record)


async def run_find(
    ctx: RequestContext,
    class_name: str,
    args: Dict[str, Any],
    schema: ParseSchema,
    query: Optional[Dict[str, Any]] = None,
    *,
    redirect_class_name_for_key: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Run a filtered find; ``query`` constraints override the caller's ``where``.

    With ``redirect_class_name_for_key`` the ``where`` argument describes the
    target class of that relation on ``class_name``.
    """
    filter_class = class_name
    if redirect_class_name_for_key:
        relation = schema[class_name].fields[redirect_class_name_for_key]
        filter_class = relation.target_class
    where = where_from_query_input(input_to_dict(args.get('where')), schema.get(filter_class))
    where.update(query or {})
    records = await ctx.storage.find(
        ctx.auth,
        class_name,
        where,
        schema,
        redirect_class_name_for_key=redirect_class_name_for_key,
    )
    return [tag_global_id(r) for r in records]


async def resolve_pointer(ctx: RequestContext, target_class: str, pointer: Any, schema: Optional[ParseSchema] = None) -> Optional[Dict[str, Any]]:
    """Dereference a stored pointer; a dangling pointer resolves to ``None``."""
    if not isinstance(pointer, dict) or not pointer.get('objectId'):
        return None
    try:
        return await run_get(ctx, target_class, pointer['objectId'], schema)
    except NotFound:
        _logger.debug("parseql.execute: dangling pointer %s/%s", target_class, pointer['objectId'])
        return None


def offset_to_cursor(offset: int) -> str:
    return to_base64(CONNECTION_PREFIX, offset)


def cursor_to_offset(cursor: Optional[str]) -> Optional[int]:
    if not cursor:
        return None
    try:
        prefix, offset = from_base64(cursor)
        if prefix != CONNECTION_PREFIX:
            raise ValueError(prefix)
        return int(offset)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid cursor: {cursor!r}", code=102) from exc


def connection_results_array(results: List[Any], args: Dict[str, Any], max_size: int) -> Dict[str, Any]:
    """Slice ``results`` by ``first/last/after/before`` into a connection dict.

    ``first`` and ``last`` are capped at ``max_size``; with neither given the
    window starts at the beginning and holds ``max_size`` items.
    """
    count = len(results)
    first = args.get('first')
    last = args.get('last')
    if first is not None and first < 0:
        raise ValidationError("first must be non-negative", code=102)
    if last is not None and last < 0:
        raise ValidationError("last must be non-negative", code=102)
    if first is None and last is None:
        first = max_size
    if first is not None:
        first = min(first, max_size)
    if last is not None:
        last = min(last, max_size)

    after = cursor_to_offset(args.get('after'))
    before = cursor_to_offset(args.get('before'))
    lower = max(after + 1, 0) if after is not None else 0
    upper = min(before, count) if before is not None else count
    start, end = lower, max(upper, lower)
    if first is not None:
        end = min(end, start + first)
    if last is not None:
        start = max(start, end - last)

    window = results[start:end]
    edges = [{'node': node, 'cursor': offset_to_cursor(start + i)} for i, node in enumerate(window)]
    return {
        'nodes': window,
        'edges': edges,
        'page_info': {
            'has_next_page': first is not None and end < upper,
            'has_previous_page': last is not None and start > lower,
            'start_cursor': edges[0]['cursor'] if edges else None,
            'end_cursor': edges[-1]['cursor'] if edges else None,
        },
    }


__all__ = [
    'global_id', 'parse_id', 'tag_global_id', 'input_to_dict', 'pointer_from_input',
    'where_from_query_input', 'run_get', 'run_find', 'resolve_pointer',
    'offset_to_cursor', 'cursor_to_offset', 'connection_results_array',
]
