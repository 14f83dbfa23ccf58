"""Backend data-model description consumed by the type generator.

A ``ParseSchema`` is an ordered, read-only mapping of class name to
``ClassSchema``. It is built once from Parse-style schema dicts and replaced
wholesale on reload.
"""
from __future__ import annotations

from dataclasses import dataclass, field as dc_field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union


class FieldKind(str, Enum):
    STRING = 'String'
    NUMBER = 'Number'
    BOOLEAN = 'Boolean'
    DATE = 'Date'
    OBJECT = 'Object'
    ARRAY = 'Array'
    FILE = 'File'
    BYTES = 'Bytes'
    POLYGON = 'Polygon'
    ACL = 'ACL'
    GEOPOINT = 'GeoPoint'
    POINTER = 'Pointer'
    RELATION = 'Relation'

    @property
    def is_reference(self) -> bool:
        return self in (FieldKind.POINTER, FieldKind.RELATION)


@dataclass(frozen=True)
class FieldDefinition:
    kind: FieldKind
    target_class: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.kind, FieldKind):
            object.__setattr__(self, 'kind', FieldKind(self.kind))
        if self.kind.is_reference and not self.target_class:
            raise ValueError(f"{self.kind.value} field requires a target class")
        if not self.kind.is_reference and self.target_class:
            raise ValueError(f"{self.kind.value} field cannot declare a target class")

    @classmethod
    def from_dict(cls, raw: Union[str, Mapping[str, Any], 'FieldDefinition']) -> 'FieldDefinition':
        if isinstance(raw, FieldDefinition):
            return raw
        if isinstance(raw, str):
            return cls(FieldKind(raw))
        return cls(FieldKind(raw['type']), raw.get('targetClass'))

    @property
    def type_label(self) -> str:
        if self.kind.is_reference:
            return f"{self.kind.value}<{self.target_class}>"
        return self.kind.value


DEFAULT_FIELDS: Dict[str, FieldDefinition] = {
    'objectId': FieldDefinition(FieldKind.STRING),
    'createdAt': FieldDefinition(FieldKind.DATE),
    'updatedAt': FieldDefinition(FieldKind.DATE),
    'ACL': FieldDefinition(FieldKind.ACL),
}

USER_FIELDS: Dict[str, FieldDefinition] = {
    'username': FieldDefinition(FieldKind.STRING),
    'password': FieldDefinition(FieldKind.STRING),
    'email': FieldDefinition(FieldKind.STRING),
    'emailVerified': FieldDefinition(FieldKind.BOOLEAN),
    'authData': FieldDefinition(FieldKind.OBJECT),
}


def display_name(class_name: str, reserved_prefix: str = '_') -> str:
    """Strip a single leading reserved character from a class name."""
    if reserved_prefix and class_name.startswith(reserved_prefix):
        return class_name[len(reserved_prefix):]
    return class_name


@dataclass
class ClassSchema:
    """Shape of one backend class. Default fields are always present."""

    class_name: str
    fields: Dict[str, FieldDefinition] = dc_field(default_factory=dict)
    user_class_name: str = '_User'

    def __post_init__(self):
        merged: Dict[str, FieldDefinition] = dict(DEFAULT_FIELDS)
        if self.class_name == self.user_class_name:
            merged.update(USER_FIELDS)
        for name, fdef in self.fields.items():
            merged[name] = FieldDefinition.from_dict(fdef)
        self.fields = merged

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], *, class_name: Optional[str] = None, user_class_name: str = '_User') -> 'ClassSchema':
        name = class_name or raw['className']
        return cls(name, dict(raw.get('fields') or {}), user_class_name=user_class_name)


class ParseSchema(Mapping[str, ClassSchema]):
    """Read-only, insertion-ordered mapping of class name to ``ClassSchema``."""

    def __init__(self, classes: Iterable[ClassSchema] = ()):
        self._classes: Dict[str, ClassSchema] = {}
        for c in classes:
            if c.class_name in self._classes:
                raise ValueError(f"Duplicate class {c.class_name!r}")
            self._classes[c.class_name] = c

    @classmethod
    def from_dict(cls, raw: Union[Iterable[Mapping[str, Any]], Mapping[str, Any]], *, user_class_name: str = '_User') -> 'ParseSchema':
        """Accept either Parse's ``[{className, fields}]`` list or ``{className: {fields}}``."""
        if isinstance(raw, Mapping):
            classes = [
                ClassSchema.from_dict(v, class_name=k, user_class_name=user_class_name)
                for k, v in raw.items()
            ]
        else:
            classes = [ClassSchema.from_dict(v, user_class_name=user_class_name) for v in raw]
        return cls(classes)

    @property
    def class_names(self) -> List[str]:
        return list(self._classes.keys())

    def __getitem__(self, class_name: str) -> ClassSchema:
        return self._classes[class_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._classes)

    def __len__(self) -> int:
        return len(self._classes)

    def __repr__(self) -> str:
        return f"ParseSchema({self.class_names!r})"
