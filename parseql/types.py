"""Shared GraphQL primitives and per-kind type mapping.

The class builder never constructs scalar shapes itself; it asks this module
which Strawberry type represents a field kind in output, input or filter
position, and how to convert values between GraphQL and stored form.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import strawberry
from strawberry import UNSET
from strawberry.scalars import JSON

from .schema import FieldDefinition, FieldKind


@strawberry.interface(name="Node", description="An object with a globally unique identifier.")
class Node:
    id: strawberry.ID


@strawberry.type(name="PageInfo", description="Pagination metadata following the Relay connection contract.")
class PageInfo:
    has_next_page: bool = strawberry.field(name="hasNextPage")
    has_previous_page: bool = strawberry.field(name="hasPreviousPage")
    start_cursor: Optional[str] = strawberry.field(default=None, name="startCursor")
    end_cursor: Optional[str] = strawberry.field(default=None, name="endCursor")


@strawberry.type(name="GeoPoint")
class GeoPoint:
    latitude: float
    longitude: float


@strawberry.type(name="File")
class File:
    name: str
    url: Optional[str] = None


@strawberry.input(name="GeoPointInput")
class GeoPointInput:
    latitude: float
    longitude: float


@strawberry.input(name="FileInput")
class FileInput:
    name: str
    url: Optional[str] = UNSET


@strawberry.input(name="PointerInput", description="Reference an object by objectId or by global id.")
class PointerInput:
    object_id: Optional[strawberry.ID] = strawberry.field(default=UNSET, name="objectId")
    id: Optional[strawberry.ID] = UNSET


# --- Filter inputs ------------------------------------------------------------

@strawberry.input(name="StringQuery", description="Constraints on a String field.")
class StringQuery:
    eq: Optional[str] = UNSET
    ne: Optional[str] = UNSET
    in_: Optional[List[str]] = strawberry.field(default=UNSET, name="in")
    nin: Optional[List[str]] = UNSET
    exists: Optional[bool] = UNSET
    regex: Optional[str] = UNSET
    starts_with: Optional[str] = strawberry.field(default=UNSET, name="startsWith")


@strawberry.input(name="NumberQuery", description="Constraints on a Number field.")
class NumberQuery:
    eq: Optional[float] = UNSET
    ne: Optional[float] = UNSET
    lt: Optional[float] = UNSET
    lte: Optional[float] = UNSET
    gt: Optional[float] = UNSET
    gte: Optional[float] = UNSET
    in_: Optional[List[float]] = strawberry.field(default=UNSET, name="in")
    nin: Optional[List[float]] = UNSET
    exists: Optional[bool] = UNSET


@strawberry.input(name="BooleanQuery", description="Constraints on a Boolean field.")
class BooleanQuery:
    eq: Optional[bool] = UNSET
    ne: Optional[bool] = UNSET
    exists: Optional[bool] = UNSET


@strawberry.input(name="DateQuery", description="Constraints on a Date field.")
class DateQuery:
    eq: Optional[datetime] = UNSET
    ne: Optional[datetime] = UNSET
    lt: Optional[datetime] = UNSET
    lte: Optional[datetime] = UNSET
    gt: Optional[datetime] = UNSET
    gte: Optional[datetime] = UNSET
    exists: Optional[bool] = UNSET


@strawberry.input(name="GeoPointQuery", description="Match points within a distance of a location.")
class GeoPointQuery:
    near: GeoPointInput
    max_distance_in_kilometers: Optional[float] = strawberry.field(default=UNSET, name="maxDistanceInKilometers")
    exists: Optional[bool] = UNSET


# Names of the shared types above plus the scalars every schema carries
SHARED_TYPE_NAMES = frozenset({
    'Node', 'PageInfo', 'GeoPoint', 'File', 'GeoPointInput', 'FileInput', 'PointerInput',
    'StringQuery', 'NumberQuery', 'BooleanQuery', 'DateQuery', 'GeoPointQuery',
    'ID', 'String', 'Int', 'Float', 'Boolean', 'DateTime', 'JSON',
})


# GraphQL operator name -> stored query operator
QUERY_OPERATORS: Dict[str, str] = {
    'eq': '$eq',
    'ne': '$ne',
    'lt': '$lt',
    'lte': '$lte',
    'gt': '$gt',
    'gte': '$gte',
    'in': '$in',
    'nin': '$nin',
    'exists': '$exists',
    'regex': '$regex',
    'near': '$nearSphere',
    'maxDistanceInKilometers': '$maxDistanceInKilometers',
}


_OUTPUT_TYPES: Dict[FieldKind, Any] = {
    FieldKind.STRING: str,
    FieldKind.NUMBER: float,
    FieldKind.BOOLEAN: bool,
    FieldKind.DATE: datetime,
    FieldKind.OBJECT: JSON,
    FieldKind.ARRAY: JSON,
    FieldKind.FILE: File,
    FieldKind.BYTES: str,
    FieldKind.POLYGON: JSON,
    FieldKind.ACL: JSON,
    FieldKind.GEOPOINT: GeoPoint,
}

_INPUT_TYPES: Dict[FieldKind, Any] = {
    FieldKind.STRING: str,
    FieldKind.NUMBER: float,
    FieldKind.BOOLEAN: bool,
    FieldKind.DATE: datetime,
    FieldKind.OBJECT: JSON,
    FieldKind.ARRAY: JSON,
    FieldKind.FILE: FileInput,
    FieldKind.BYTES: str,
    FieldKind.POLYGON: JSON,
    FieldKind.ACL: JSON,
    FieldKind.GEOPOINT: GeoPointInput,
    FieldKind.POINTER: PointerInput,
}

_QUERY_TYPES: Dict[FieldKind, Any] = {
    FieldKind.STRING: StringQuery,
    FieldKind.NUMBER: NumberQuery,
    FieldKind.BOOLEAN: BooleanQuery,
    FieldKind.DATE: DateQuery,
    FieldKind.BYTES: StringQuery,
    FieldKind.GEOPOINT: GeoPointQuery,
    FieldKind.POINTER: PointerInput,
}


def output_type(field: FieldDefinition) -> Optional[Any]:
    """Strawberry type for a non-reference field in an object type."""
    return _OUTPUT_TYPES.get(field.kind)


def input_type(field: FieldDefinition) -> Optional[Any]:
    """Strawberry type for a field in add/update inputs; ``None`` omits it."""
    return _INPUT_TYPES.get(field.kind)


def query_type(field: FieldDefinition) -> Optional[Any]:
    """Strawberry type for a field in a filter input; ``None`` omits it."""
    return _QUERY_TYPES.get(field.kind)


# --- Value codecs -------------------------------------------------------------

def format_date(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec='milliseconds') + 'Z'


def parse_date(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, dict):
        value = value.get('iso')
    if not isinstance(value, str):
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def encode_value(kind: FieldKind, value: Any) -> Any:
    """Convert a GraphQL input value into its stored, ``__type``-tagged form."""
    if value is None:
        return None
    if kind is FieldKind.DATE:
        if isinstance(value, datetime):
            return {'__type': 'Date', 'iso': format_date(value)}
        return value
    if kind is FieldKind.GEOPOINT and isinstance(value, dict):
        return {'__type': 'GeoPoint', 'latitude': value.get('latitude'), 'longitude': value.get('longitude')}
    if kind is FieldKind.FILE and isinstance(value, dict):
        out = {'__type': 'File', 'name': value.get('name')}
        if value.get('url') is not None:
            out['url'] = value.get('url')
        return out
    return value


def decode_value(kind: FieldKind, value: Any) -> Any:
    """Convert a stored value into what the output type expects."""
    if value is None:
        return None
    if kind is FieldKind.DATE:
        return parse_date(value)
    if kind is FieldKind.GEOPOINT and isinstance(value, dict):
        return GeoPoint(latitude=value['latitude'], longitude=value['longitude'])
    if kind is FieldKind.FILE and isinstance(value, dict):
        return File(name=value.get('name'), url=value.get('url'))
    return value


__all__ = [
    'Node', 'PageInfo', 'GeoPoint', 'File', 'GeoPointInput', 'FileInput', 'PointerInput',
    'StringQuery', 'NumberQuery', 'BooleanQuery', 'DateQuery', 'GeoPointQuery',
    'SHARED_TYPE_NAMES', 'QUERY_OPERATORS', 'output_type', 'input_type', 'query_type',
    'format_date', 'parse_date', 'encode_value', 'decode_value',
]
