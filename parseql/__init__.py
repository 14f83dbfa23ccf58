"""parseql public API with lazy exports.

Importing the package stays cheap; Strawberry and SQLAlchemy are only pulled
in when one of their dependent names is first accessed.

Exposes:
- ParseGraphQLSchema, query_fields, mutation_fields (schema assembly)
- ParseSchema, ClassSchema, FieldDefinition, FieldKind (data model)
- RequestContext, Auth, ParseQLConfig
- SQLStorage, Storage
- the error classes from parseql.errors
"""
from __future__ import annotations

from .errors import (
    ConflictError,
    InvalidSessionToken,
    MissingIdentifier,
    NotFound,
    ParseQLError,
    SchemaInconsistency,
    ValidationError,
)

_LAZY = {
    'ParseGraphQLSchema': 'registry',
    'query_fields': 'registry',
    'mutation_fields': 'registry',
    'ParseSchema': 'schema',
    'ClassSchema': 'schema',
    'FieldDefinition': 'schema',
    'FieldKind': 'schema',
    'RequestContext': 'context',
    'Auth': 'auth',
    'ParseQLConfig': 'config',
    'SQLStorage': 'storage.sql',
    'Storage': 'storage.base',
}


def __getattr__(name: str):  # PEP 562 lazy exports
    import importlib as _importlib
    module = _LAZY.get(name)
    if module is None:
        raise AttributeError(name)
    return getattr(_importlib.import_module(f"{__name__}.{module}"), name)


__all__ = [
    *_LAZY,
    'ParseQLError', 'SchemaInconsistency', 'MissingIdentifier', 'NotFound',
    'ValidationError', 'ConflictError', 'InvalidSessionToken',
]
