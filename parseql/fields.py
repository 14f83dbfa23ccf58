"""Map one class field to one GraphQL field descriptor.

Four mapping contexts exist: output (object types), input (``Add*Input``),
update (``Update*Input``) and query (``*Query`` filter inputs). Each mapper
returns a :class:`FieldDescriptor` or ``None`` when the field kind is not
exposed in that context. ``install_fields`` turns descriptors into Strawberry
fields on a type handle before it is decorated.
"""
from __future__ import annotations

import inspect
import keyword
import logging
from dataclasses import dataclass, field as dc_field
from typing import TYPE_CHECKING, Annotated, Any, Callable, Dict, Optional

import strawberry
from strawberry import UNSET
from strawberry.types import Info

from .errors import SchemaInconsistency
from .schema import FieldDefinition, FieldKind, ParseSchema
from .types import PointerInput, decode_value, input_type, output_type, query_type

if TYPE_CHECKING:  # pragma: no cover
    from .classes import TypeBundle

_logger = logging.getLogger("parseql")

# Names that always surface as an opaque identifier, whatever the declared kind
ID_FIELDS = ('id', 'objectId')

Resolver = Callable[[Any, Dict[str, Any], Info], Any]
Loader = Callable[[str], 'TypeBundle']

_ARG_DESC_WHERE = "Constraints on the returned objects"
_ARG_DESC_FIRST = "Return at most this many objects from the start of the window"
_ARG_DESC_LAST = "Return at most this many objects from the end of the window"
_ARG_DESC_AFTER = "Only objects after this cursor"
_ARG_DESC_BEFORE = "Only objects before this cursor"


@dataclass
class Argument:
    """One resolver argument.

    Attributes:
        type: Strawberry annotation for the argument.
        default: Default value; ``inspect.Parameter.empty`` makes it required.
        description: Optional GraphQL argument description.
    """

    type: Any
    default: Any = inspect.Parameter.empty
    description: Optional[str] = None

    @property
    def required(self) -> bool:
        return self.default is inspect.Parameter.empty


@dataclass
class FieldDescriptor:
    """A GraphQL field ready to be installed on a type.

    ``resolver`` is a free function ``(parent, args, info)``; ``args`` is the
    dict of argument values keyed by GraphQL argument name. Fields without a
    resolver are plain data fields (input fields, or envelope fields filled in
    at construction).
    """

    type: Any
    description: Optional[str] = None
    args: Dict[str, Argument] = dc_field(default_factory=dict)
    resolver: Optional[Resolver] = None


def python_name(graphql_name: str) -> str:
    if keyword.iskeyword(graphql_name):
        return graphql_name + '_'
    return graphql_name


def _missing_target(field_name: str, field: FieldDefinition, schema: ParseSchema) -> bool:
    if field.target_class in schema:
        return False
    _logger.warning(
        "parseql.fields: %s",
        SchemaInconsistency(f"{field_name} references missing class {field.target_class}; field omitted"),
    )
    return True


def connection_args(target: 'TypeBundle') -> Dict[str, Argument]:
    """Arguments shared by ``find<Class>`` and relation fields."""
    return {
        'where': Argument(Optional[target.filter_type], None, _ARG_DESC_WHERE),
        'first': Argument(Optional[int], None, _ARG_DESC_FIRST),
        'last': Argument(Optional[int], None, _ARG_DESC_LAST),
        'after': Argument(Optional[str], None, _ARG_DESC_AFTER),
        'before': Argument(Optional[str], None, _ARG_DESC_BEFORE),
    }


def record_accessor(field_name: str, kind: FieldKind) -> Resolver:
    """Resolver reading ``field_name`` from the hydrated record."""
    def _resolve(parent: Any, args: Dict[str, Any], info: Info) -> Any:
        return decode_value(kind, parent._record.get(field_name))
    return _resolve


def graphql_field(field_name: str, field: FieldDefinition, schema: ParseSchema, loader: Loader) -> Optional[FieldDescriptor]:
    from .resolvers import pointer_resolver, relation_resolver

    description = f"Accessor for {field_name} ({field.type_label})"
    if field_name in ID_FIELDS:
        return FieldDescriptor(type=strawberry.ID, description=description, resolver=record_accessor(field_name, FieldKind.STRING))
    if field.kind is FieldKind.RELATION:
        if _missing_target(field_name, field, schema):
            return None
        target = loader(field.target_class)
        return FieldDescriptor(
            type=Optional[target.connection_type],
            description=description,
            args=connection_args(target),
            resolver=relation_resolver(field_name, target, schema),
        )
    if field.kind is FieldKind.POINTER:
        if _missing_target(field_name, field, schema):
            return None
        target = loader(field.target_class)
        return FieldDescriptor(
            type=Optional[target.object_type],
            description=description,
            resolver=pointer_resolver(field_name, target, schema),
        )
    gql_type = output_type(field)
    if gql_type is None:
        return None
    return FieldDescriptor(type=Optional[gql_type], description=description, resolver=record_accessor(field_name, field.kind))


def graphql_input_field(field_name: str, field: FieldDefinition, schema: ParseSchema, loader: Loader) -> Optional[FieldDescriptor]:
    if field_name in ID_FIELDS:
        gql_type = strawberry.ID
    elif field.kind is FieldKind.RELATION:
        return None
    elif field.kind is FieldKind.POINTER:
        if _missing_target(field_name, field, schema):
            return None
        gql_type = PointerInput
    else:
        gql_type = input_type(field)
    if gql_type is None:
        return None
    return FieldDescriptor(type=gql_type, description=f"Setter for {field_name} ({field.type_label})")


def graphql_update_field(field_name: str, field: FieldDefinition, schema: ParseSchema, loader: Loader) -> Optional[FieldDescriptor]:
    """Same shape as the input context; an explicit ``null`` in an update unsets the field."""
    return graphql_input_field(field_name, field, schema, loader)


def graphql_query_field(field_name: str, field: FieldDefinition, schema: ParseSchema, loader: Loader) -> Optional[FieldDescriptor]:
    if field_name in ID_FIELDS:
        gql_type = strawberry.ID
    elif field.kind is FieldKind.RELATION:
        return None
    elif field.kind is FieldKind.POINTER:
        if _missing_target(field_name, field, schema):
            return None
        gql_type = PointerInput
    else:
        gql_type = query_type(field)
    if gql_type is None:
        return None
    return FieldDescriptor(type=gql_type, description=f"Query for {field_name} ({field.kind.value})")


def make_resolver(attr: str, descriptor: FieldDescriptor) -> Callable[..., Any]:
    """Build a Strawberry resolver calling ``descriptor.resolver(parent, args, info)``.

    The wrapper is generated with explicit keyword parameters so Strawberry can
    read argument names, defaults and annotations from its signature.
    """
    impl = descriptor.resolver
    is_async = inspect.iscoroutinefunction(impl)
    for arg_name in descriptor.args:
        if not arg_name.isidentifier() or keyword.iskeyword(arg_name):
            raise ValueError(f"Invalid argument name {arg_name!r} on field {attr!r}")
    required = [a for a, spec in descriptor.args.items() if spec.required]
    optional = [a for a, spec in descriptor.args.items() if not spec.required]
    params = ['self', 'info'] + required + [f"{a}=_defaults[{a!r}]" for a in optional]
    collected = ', '.join(f"{a!r}: {a}" for a in descriptor.args)
    func_name = f"_resolve_{attr}"
    src = (
        f"{'async ' if is_async else ''}def {func_name}({', '.join(params)}):\n"
        f"    return {'await ' if is_async else ''}_impl(self, {{{collected}}}, info)\n"
    )
    env: Dict[str, Any] = {
        '_impl': impl,
        '_defaults': {a: spec.default for a, spec in descriptor.args.items()},
    }
    exec(src, env)
    fn = env[func_name]
    fn.__module__ = __name__
    anns: Dict[str, Any] = {'info': Info}
    for arg_name, spec in descriptor.args.items():
        if spec.description:
            anns[arg_name] = Annotated[spec.type, strawberry.argument(description=spec.description)]
        else:
            anns[arg_name] = spec.type
    anns['return'] = descriptor.type
    fn.__annotations__ = anns
    return fn


def install_fields(handle: type, descriptors: Dict[str, FieldDescriptor], *, is_input: bool = False) -> None:
    """Attach descriptors to an undecorated type handle.

    Input fields are all optional and default to ``UNSET`` so omitted keys can
    be told apart from explicit nulls. The GraphQL name is always passed
    explicitly; the Python attribute gets a trailing ``_`` when it would clash
    with a keyword.
    """
    annotations: Dict[str, Any] = dict(handle.__dict__.get('__annotations__', {}) or {})
    names: Dict[str, str] = dict(getattr(handle, '__parseql_names__', {}) or {})
    for gql_name, descriptor in descriptors.items():
        attr = python_name(gql_name)
        names[attr] = gql_name
        if is_input:
            annotations[attr] = Optional[descriptor.type]
            setattr(handle, attr, strawberry.field(name=gql_name, description=descriptor.description, default=UNSET))
        elif descriptor.resolver is None:
            annotations[attr] = descriptor.type
            setattr(handle, attr, strawberry.field(name=gql_name, description=descriptor.description))
        else:
            annotations[attr] = descriptor.type
            setattr(
                handle,
                attr,
                strawberry.field(name=gql_name, description=descriptor.description, resolver=make_resolver(attr, descriptor)),
            )
    handle.__annotations__ = annotations
    handle.__parseql_names__ = names


__all__ = [
    'ID_FIELDS', 'Argument', 'FieldDescriptor', 'connection_args', 'record_accessor',
    'graphql_field', 'graphql_input_field', 'graphql_update_field', 'graphql_query_field',
    'make_resolver', 'install_fields', 'python_name',
]
