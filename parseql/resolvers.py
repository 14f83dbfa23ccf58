"""Resolver implementations attached to generated fields.

Every resolver is a free function ``(parent, args, info)`` built by a small
factory that closes over the class bundle and the schema it was compiled
against.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from strawberry.types import Info

from .auth import derive_context
from .context import request_context
from .errors import MissingIdentifier, NotFound
from .execute import (
    input_to_dict,
    parse_id,
    pointer_from_input,
    resolve_pointer,
    run_find,
    run_get,
)
from .schema import ClassSchema, FieldKind, ParseSchema
from .types import encode_value

if TYPE_CHECKING:  # pragma: no cover
    from .classes import TypeBundle
    from .registry import ParseGraphQLSchema

_logger = logging.getLogger("parseql")


def get_object_id(data: Dict[str, Any], class_name: str) -> str:
    """Pop ``objectId`` or ``id`` from ``data`` and return the local id.

    Raises ``MissingIdentifier`` when neither is present, and ``NotFound``
    when a global id belongs to another class.
    """
    object_id = data.pop('objectId', None)
    gid = data.pop('id', None)
    if object_id:
        return object_id
    if not gid:
        raise MissingIdentifier()
    id_class, object_id = parse_id(gid)
    if id_class != class_name:
        raise NotFound(class_name, object_id)
    return object_id


def transform_input(data: Dict[str, Any], class_schema: Optional[ClassSchema]) -> Dict[str, Any]:
    """Re-tag pointer, GeoPoint, Date and File values using the class schema."""
    if class_schema is None:
        return data
    out: Dict[str, Any] = {}
    for key, value in data.items():
        field = class_schema.fields.get(key)
        if field is None or value is None:
            out[key] = value
        elif field.kind is FieldKind.POINTER:
            out[key] = pointer_from_input(field.target_class, value)
        else:
            out[key] = encode_value(field.kind, value)
    return out


# ---------- field resolvers ----------

def pointer_resolver(field_name: str, target: 'TypeBundle', schema: ParseSchema):
    async def _resolve(parent: Any, args: Dict[str, Any], info: Info) -> Any:
        ctx = request_context(info)
        record = await resolve_pointer(ctx, target.class_name, parent._record.get(field_name), schema)
        return target.hydrate(record)
    return _resolve


def relation_resolver(field_name: str, target: 'TypeBundle', schema: ParseSchema):
    async def _resolve(parent: Any, args: Dict[str, Any], info: Info) -> Any:
        ctx = request_context(info)
        owner = parent._record
        query = {
            '$relatedTo': {
                'object': {'__type': 'Pointer', 'className': owner['className'], 'objectId': owner['objectId']},
                'key': field_name,
            },
        }
        records = await run_find(
            ctx,
            owner['className'],
            args,
            schema,
            query,
            redirect_class_name_for_key=field_name,
        )
        return target.connection(records, args, ctx.config.max_page_size)
    return _resolve


# ---------- root resolvers ----------

def get_resolver(bundle: 'TypeBundle', schema: ParseSchema):
    async def _resolve(root: Any, args: Dict[str, Any], info: Info) -> Any:
        ctx = request_context(info)
        object_id = get_object_id(dict(args), bundle.class_name)
        record = await run_get(ctx, bundle.class_name, object_id, schema)
        return bundle.hydrate(record)
    return _resolve


def find_resolver(bundle: 'TypeBundle', schema: ParseSchema):
    async def _resolve(root: Any, args: Dict[str, Any], info: Info) -> Any:
        ctx = request_context(info)
        records = await run_find(ctx, bundle.class_name, args, schema)
        return bundle.connection(records, args, ctx.config.max_page_size)
    return _resolve


def create_resolver(bundle: 'TypeBundle', schema: ParseSchema):
    async def _resolve(root: Any, args: Dict[str, Any], info: Info) -> Any:
        ctx = request_context(info)
        class_name = bundle.class_name
        data = input_to_dict(args['input']) or {}
        client_mutation_id = data.pop('clientMutationId', None)
        data = transform_input(data, bundle.class_schema)
        response = await ctx.storage.create(ctx.auth, class_name, data, schema)
        if class_name == ctx.config.user_class_name and response.get('sessionToken'):
            # sign-up: the rest of this response runs as the new user
            ctx.auth = await derive_context(
                ctx.storage,
                config=ctx.config,
                installation_id=ctx.installation_id,
                session_token=response['sessionToken'],
            )
            _logger.debug("parseql.resolvers: request now runs as new user %s", response['objectId'])
        record = await run_get(ctx, class_name, response['objectId'], schema)
        return bundle.payload(record, client_mutation_id)
    return _resolve


def update_resolver(bundle: 'TypeBundle', schema: ParseSchema):
    async def _resolve(root: Any, args: Dict[str, Any], info: Info) -> Any:
        ctx = request_context(info)
        class_name = bundle.class_name
        data = input_to_dict(args['input']) or {}
        object_id = get_object_id(data, class_name)
        client_mutation_id = data.pop('clientMutationId', None)
        data = transform_input(data, bundle.class_schema)
        await ctx.storage.update(ctx.auth, class_name, object_id, data, schema)
        record = await run_get(ctx, class_name, object_id, schema)
        return bundle.payload(record, client_mutation_id)
    return _resolve


def destroy_resolver(bundle: 'TypeBundle', schema: ParseSchema):
    async def _resolve(root: Any, args: Dict[str, Any], info: Info) -> Any:
        ctx = request_context(info)
        class_name = bundle.class_name
        data = input_to_dict(args['input']) or {}
        object_id = get_object_id(data, class_name)
        record = await run_get(ctx, class_name, object_id, schema)
        await ctx.storage.delete(ctx.auth, class_name, object_id, schema)
        return bundle.payload(record, data.get('clientMutationId'))
    return _resolve


def node_resolver(registry: 'ParseGraphQLSchema'):
    async def _resolve(root: Any, args: Dict[str, Any], info: Info) -> Any:
        ctx = request_context(info)
        class_name, object_id = parse_id(args['id'])
        bundle = registry.bundle(class_name)
        if bundle is None:
            raise NotFound(class_name, object_id)
        record = await run_get(ctx, class_name, object_id, registry.schema)
        return bundle.hydrate(record)
    return _resolve
