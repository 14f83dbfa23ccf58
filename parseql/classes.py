"""Per-class type generation.

``ParseClass`` knows how to build each field map of a class; ``TypeBundle``
owns the type handles for that class and installs the field maps when the
compilation pass materializes it. Handles exist from the moment a bundle is
created, so other classes can reference them (including cyclically) before
any field has been built.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import strawberry
from strawberry.types import Info

from .cache import Lazy
from .config import ParseQLConfig
from .errors import SchemaInconsistency
from .execute import connection_results_array, global_id
from .fields import (
    Argument,
    FieldDescriptor,
    Loader,
    connection_args,
    graphql_field,
    graphql_input_field,
    graphql_query_field,
    graphql_update_field,
    install_fields,
    record_accessor,
)
from .resolvers import (
    create_resolver,
    destroy_resolver,
    find_resolver,
    get_resolver,
    update_resolver,
)
from .schema import FieldKind, ParseSchema, display_name
from .types import Node, PageInfo

_logger = logging.getLogger("parseql")

RESERVED_FIELDS = ('objectId', 'createdAt', 'updatedAt')

_ID_DESCRIPTION = 'Use either the global id or objectId'


def _resolve_global_id(parent: Any, args: Dict[str, Any], info: Info) -> str:
    record = parent._record
    return record.get('id') or global_id(record['className'], record['objectId'])


def generated_type_names(display: str) -> Tuple[str, ...]:
    """GraphQL type names a class with display name ``display`` claims, object type first."""
    return (
        display,
        f"{display}Query",
        f"Add{display}Input",
        f"Update{display}Input",
        f"Destroy{display}Input",
        f"{display}Edge",
        f"{display}QueryConnection",
        f"{display}MutationCompletePayload",
    )


def _handle(name: str, bases: tuple = ()) -> type:
    cls = type(name, bases, {'__doc__': f'parseql runtime type {name}'})
    cls.__module__ = __name__
    return cls


class ParseClass:
    """Builds the field maps of one backend class.

    A class missing from the schema is logged once and yields degenerate
    field maps (the object type keeps only ``id``) so the rest of the
    compilation pass continues.
    """

    def __init__(self, class_name: str, schema: ParseSchema, loader: Loader, config: Optional[ParseQLConfig] = None):
        self.class_name = class_name
        self.schema = schema
        self.loader = loader
        self.config = config or ParseQLConfig()
        self.display_name = display_name(class_name, self.config.reserved_prefix)
        self.class_schema = schema.get(class_name)
        if self.class_schema is None:
            _logger.warning(
                "parseql.classes: %s",
                SchemaInconsistency(f"attempting to load a class ({class_name}) that doesn't exist"),
            )

    def build_fields(self, mapper: Callable[..., Optional[FieldDescriptor]], *, filter_reserved: bool = False) -> Dict[str, FieldDescriptor]:
        if self.class_schema is None:
            return {}
        out: Dict[str, FieldDescriptor] = {}
        for name, field in self.class_schema.fields.items():
            if filter_reserved and name in RESERVED_FIELDS:
                continue
            descriptor = mapper(name, field, self.schema, self.loader)
            if descriptor is not None:
                out[name] = descriptor
        return out

    def object_fields(self) -> Dict[str, FieldDescriptor]:
        fields: Dict[str, FieldDescriptor] = {
            'id': FieldDescriptor(strawberry.ID, 'A globaly unique identifier.', resolver=_resolve_global_id),
        }
        if self.class_name == self.config.user_class_name:
            fields['sessionToken'] = FieldDescriptor(
                Optional[str],
                'The session token for the user, set only when it makes sense.',
                resolver=record_accessor('sessionToken', FieldKind.STRING),
            )
        for name, descriptor in self.build_fields(graphql_field).items():
            fields.setdefault(name, descriptor)
        return fields

    def query_fields(self) -> Dict[str, FieldDescriptor]:
        fields = self.build_fields(graphql_query_field)
        fields.pop('objectId', None)
        fields.pop('id', None)
        return fields

    def input_fields(self) -> Dict[str, FieldDescriptor]:
        fields = self.build_fields(graphql_input_field, filter_reserved=True)
        fields['clientMutationId'] = FieldDescriptor(str)
        return fields

    def update_fields(self) -> Dict[str, FieldDescriptor]:
        fields = self.build_fields(graphql_update_field, filter_reserved=True)
        fields['id'] = FieldDescriptor(strawberry.ID, _ID_DESCRIPTION)
        fields['objectId'] = FieldDescriptor(strawberry.ID, _ID_DESCRIPTION)
        fields['clientMutationId'] = FieldDescriptor(str)
        return fields

    @staticmethod
    def destroy_fields() -> Dict[str, FieldDescriptor]:
        return {
            'id': FieldDescriptor(strawberry.ID, _ID_DESCRIPTION),
            'objectId': FieldDescriptor(strawberry.ID, _ID_DESCRIPTION),
            'clientMutationId': FieldDescriptor(str),
        }


class TypeBundle:
    """All generated types of one class plus its root field descriptors.

    Attributes:
        object_type: ``<Display>``, implements ``Node``.
        filter_type: ``<Display>Query`` filter input.
        input_type: ``Add<Display>Input``.
        update_type: ``Update<Display>Input``.
        destroy_type: ``Destroy<Display>Input``.
        edge_type: ``<Display>Edge``.
        connection_type: ``<Display>QueryConnection``.
        payload_type: ``<Display>MutationCompletePayload``.
        get, find, create, update, destroy: root ``FieldDescriptor`` objects.
    """

    def __init__(self, parse_class: ParseClass):
        self.parse_class = parse_class
        self.class_name = parse_class.class_name
        self.class_schema = parse_class.class_schema
        self.display_name = d = parse_class.display_name
        class_name = self.class_name

        (object_name, filter_name, input_name, update_name, destroy_name,
         edge_name, connection_name, payload_name) = generated_type_names(d)
        self.object_type = _handle(object_name, (Node,))
        self.filter_type = _handle(filter_name)
        self.input_type = _handle(input_name)
        self.update_type = _handle(update_name)
        self.destroy_type = _handle(destroy_name)
        self.edge_type = _handle(edge_name)
        self.connection_type = _handle(connection_name)
        self.payload_type = _handle(payload_name)

        # (handle, graphql name, description, is_input, field thunk)
        self._specs = [
            (self.object_type, object_name, f"Parse Class {class_name}", False, Lazy(parse_class.object_fields)),
            (self.filter_type, filter_name, f"Parse Class {class_name} Query", True, Lazy(parse_class.query_fields)),
            (self.input_type, input_name, f"Parse Class {class_name} Input", True, Lazy(parse_class.input_fields)),
            (self.update_type, update_name, f"Parse Class {class_name} Update", True, Lazy(parse_class.update_fields)),
            (self.destroy_type, destroy_name, None, True, Lazy(parse_class.destroy_fields)),
            (self.edge_type, edge_name, None, False, Lazy(self._edge_fields)),
            (self.connection_type, connection_name, None, False, Lazy(self._connection_fields)),
            (self.payload_type, payload_name, None, False, Lazy(self._payload_fields)),
        ]
        self.materialized = False

        schema = parse_class.schema
        self.get = FieldDescriptor(
            Optional[self.object_type],
            f"Use this endpoint to get or query {class_name} objects",
            args={
                'objectId': Argument(Optional[strawberry.ID], None, _ID_DESCRIPTION),
                'id': Argument(Optional[strawberry.ID], None, _ID_DESCRIPTION),
            },
            resolver=get_resolver(self, schema),
        )
        self.find = FieldDescriptor(
            Optional[self.connection_type],
            f"Use this endpoint to get or query {class_name} objects",
            args=connection_args(self),
            resolver=find_resolver(self, schema),
        )
        self.create = FieldDescriptor(
            Optional[self.payload_type],
            f"use this method to create a new {class_name}",
            args={'input': Argument(self.input_type)},
            resolver=create_resolver(self, schema),
        )
        self.update = FieldDescriptor(
            Optional[self.payload_type],
            f"use this method to update an existing {class_name}",
            args={'input': Argument(self.update_type)},
            resolver=update_resolver(self, schema),
        )
        self.destroy = FieldDescriptor(
            Optional[self.payload_type],
            f"use this method to delete an existing {class_name}",
            args={'input': Argument(self.destroy_type)},
            resolver=destroy_resolver(self, schema),
        )

    def _edge_fields(self) -> Dict[str, FieldDescriptor]:
        return {
            'node': FieldDescriptor(Optional[self.object_type]),
            'cursor': FieldDescriptor(str),
        }

    def _connection_fields(self) -> Dict[str, FieldDescriptor]:
        return {
            'nodes': FieldDescriptor(List[self.object_type]),
            'edges': FieldDescriptor(List[self.edge_type]),
            'pageInfo': FieldDescriptor(PageInfo),
        }

    def _payload_fields(self) -> Dict[str, FieldDescriptor]:
        return {
            'object': FieldDescriptor(Optional[self.object_type]),
            'clientMutationId': FieldDescriptor(Optional[str]),
        }

    def field_map(self, handle: type) -> Dict[str, FieldDescriptor]:
        """Evaluate (once) and return the field map for one of this bundle's handles."""
        for spec_handle, _name, _desc, _is_input, thunk in self._specs:
            if spec_handle is handle:
                return thunk()
        raise KeyError(handle)

    def materialize(self) -> None:
        """Install every field map and decorate the handles with Strawberry."""
        if self.materialized:
            return
        for handle, name, description, is_input, thunk in self._specs:
            install_fields(handle, thunk(), is_input=is_input)
        for handle, name, description, is_input, _thunk in self._specs:
            if is_input:
                strawberry.input(handle, name=name, description=description)
            else:
                strawberry.type(handle, name=name, description=description)
        self.materialized = True

    # ---------- result shaping ----------
    def hydrate(self, record: Optional[Dict[str, Any]]) -> Any:
        """Wrap a stored record in an instance of the object type."""
        if record is None:
            return None
        instance = self.object_type()
        instance._record = record
        return instance

    def connection(self, records: List[Dict[str, Any]], args: Dict[str, Any], max_size: int) -> Any:
        window = connection_results_array(records, args, max_size)
        nodes = [self.hydrate(r) for r in window['nodes']]
        edges = [
            self.edge_type(node=node, cursor=edge['cursor'])
            for node, edge in zip(nodes, window['edges'])
        ]
        return self.connection_type(nodes=nodes, edges=edges, pageInfo=PageInfo(**window['page_info']))

    def payload(self, record: Optional[Dict[str, Any]], client_mutation_id: Optional[str] = None) -> Any:
        return self.payload_type(object=self.hydrate(record), clientMutationId=client_mutation_id)

    def __repr__(self) -> str:
        return f"TypeBundle({self.class_name!r})"
