"""Schema assembly: one compilation pass over a ``ParseSchema``."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

import strawberry
from strawberry.schema.config import StrawberryConfig

from .cache import TypeCache
from .classes import ParseClass, TypeBundle, generated_type_names
from .config import ParseQLConfig
from .fields import Argument, FieldDescriptor, install_fields
from .resolvers import node_resolver
from .schema import ParseSchema, display_name
from .types import SHARED_TYPE_NAMES, Node

_logger = logging.getLogger("parseql")

ROOT_TYPE_NAMES = ('Query', 'Mutation')

RawSchema = Union[ParseSchema, Iterable[Mapping[str, Any]], Mapping[str, Any]]


def _query_field_names(display: str) -> Tuple[str, str]:
    return display, f"find{display}"


def _mutation_field_names(display: str) -> Tuple[str, str, str]:
    return f"add{display}", f"update{display}", f"destroy{display}"


class ParseGraphQLSchema:
    """Compile a ``ParseSchema`` into a Strawberry schema.

    Each instance owns its ``TypeCache``; two instances never share types.

    Example:
        registry = ParseGraphQLSchema([{'className': 'Post', 'fields': {'title': {'type': 'String'}}}])
        schema = registry.to_strawberry()
        await schema.execute('{ findPost { nodes { id title } } }', context_value=ctx)
    """

    def __init__(self, schema: RawSchema, *, config: Optional[ParseQLConfig] = None):
        self.config = config or ParseQLConfig()
        self.cache = TypeCache()
        self.schema = self._exposed(schema)

    def _exposed(self, schema: RawSchema) -> ParseSchema:
        """Drop classes whose generated GraphQL names are already taken.

        Shared types, the root types and every name generated for an earlier
        class are claimed first; a later class claiming any of them is skipped
        with an error log so the rest of the schema still compiles.
        """
        if not isinstance(schema, ParseSchema):
            schema = ParseSchema.from_dict(schema, user_class_name=self.config.user_class_name)
        type_owner: Dict[str, str] = dict.fromkeys(SHARED_TYPE_NAMES | set(ROOT_TYPE_NAMES), 'a built-in type')
        query_owner: Dict[str, str] = {'node': 'the node field'}
        mutation_owner: Dict[str, str] = {}
        kept = []
        for class_name, class_schema in schema.items():
            d = display_name(class_name, self.config.reserved_prefix)
            claims = (
                (type_owner, generated_type_names(d)),
                (query_owner, _query_field_names(d)),
                (mutation_owner, _mutation_field_names(d)),
            )
            clash = next(((owner, name) for owner, names in claims for name in names if name in owner), None)
            if clash is None and d.startswith('__'):
                clash = ({d: 'GraphQL introspection'}, d)
            if clash is not None:
                owner, name = clash
                _logger.error(
                    "parseql.registry: class %s collides with %s on name %s; skipped",
                    class_name, owner[name], name,
                )
                continue
            for owner, names in claims:
                owner.update(dict.fromkeys(names, class_name))
            kept.append(class_schema)
        return ParseSchema(kept)

    def load_class(self, class_name: str) -> TypeBundle:
        """Return the cached bundle for ``class_name``, creating its handles on first use."""
        return self.cache.get_or_create(
            class_name,
            lambda: TypeBundle(ParseClass(class_name, self.schema, self.load_class, self.config)),
        )

    def bundle(self, class_name: str) -> Optional[TypeBundle]:
        if class_name not in self.schema:
            return None
        return self.load_class(class_name)

    def query_fields(self) -> Dict[str, FieldDescriptor]:
        fields: Dict[str, FieldDescriptor] = {}
        for class_name in self.schema:
            b = self.load_class(class_name)
            get_name, find_name = _query_field_names(b.display_name)
            fields[get_name] = b.get
            fields[find_name] = b.find
        fields['node'] = FieldDescriptor(
            Optional[Node],
            'Fetches an object given its global id.',
            args={'id': Argument(strawberry.ID, description='The global id of the object')},
            resolver=node_resolver(self),
        )
        return fields

    def mutation_fields(self) -> Dict[str, FieldDescriptor]:
        fields: Dict[str, FieldDescriptor] = {}
        for class_name in self.schema:
            b = self.load_class(class_name)
            add_name, update_name, destroy_name = _mutation_field_names(b.display_name)
            fields[add_name] = b.create
            fields[update_name] = b.update
            fields[destroy_name] = b.destroy
        return fields

    @staticmethod
    def _root_type(name: str, descriptors: Dict[str, FieldDescriptor]) -> type:
        cls = type(name, (), {'__doc__': f'parseql root type {name}'})
        cls.__module__ = __name__
        install_fields(cls, descriptors)
        return strawberry.type(cls, name=name)

    def to_strawberry(self, *, strawberry_config: Optional[StrawberryConfig] = None) -> strawberry.Schema:
        """Build the executable schema.

        Root fields are assembled first; every cached bundle is then
        materialized (which may pull in further bundles) before Strawberry
        resolves any annotation.
        """
        query_descriptors = self.query_fields()
        mutation_descriptors = self.mutation_fields()
        bundles = self.cache.materialize()
        query = self._root_type('Query', query_descriptors)
        mutation = self._root_type('Mutation', mutation_descriptors) if mutation_descriptors else None
        types = [b.object_type for b in bundles if b.class_schema is not None]
        config = strawberry_config or StrawberryConfig(auto_camel_case=self.config.auto_camel_case)
        _logger.info(
            "parseql.registry: compiled %d classes (%d root query fields, %d mutations)",
            len(types), len(query_descriptors), len(mutation_descriptors),
        )
        return strawberry.Schema(query=query, mutation=mutation, types=types, config=config)

    def reload(self, schema: RawSchema) -> None:
        """Replace the schema wholesale; every cached type is dropped."""
        self.cache.clear()
        self.schema = self._exposed(schema)
        _logger.info("parseql.registry: schema reloaded (%d classes)", len(self.schema))


def query_fields(registry: ParseGraphQLSchema) -> Dict[str, FieldDescriptor]:
    return registry.query_fields()


def mutation_fields(registry: ParseGraphQLSchema) -> Dict[str, FieldDescriptor]:
    return registry.mutation_fields()
