"""Asynchronous SQLAlchemy document store.

Objects of every class share one table; class fields are kept as a JSON
document. Relation memberships and sessions get their own tables. ``where``
constraints compile to predicates on JSON paths of that document; the few
without a portable SQL form are matched in process on the fetched rows.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
import string
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import delete as sa_delete, or_, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ..auth import Auth
from ..config import ParseQLConfig
from ..errors import ConflictError, NotFound, ValidationError
from ..schema import ClassSchema, FieldDefinition, FieldKind, ParseSchema
from ..types import format_date
from .base import Storage
from .filters import compile_where
from .models import Base, ObjectRow, RelationRow, SessionRow
from .query import matches

_logger = logging.getLogger("parseql")

_ID_ALPHABET = string.ascii_letters + string.digits
_PASSWORD_ITERATIONS = 10_000
_READ_ONLY_KEYS = ('objectId', 'createdAt', 'updatedAt')


class _Delete:
    pass


_DELETE = _Delete()


@dataclass
class _Increment:
    amount: float


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_object_id() -> str:
    return ''.join(secrets.choice(_ID_ALPHABET) for _ in range(10))


def _hash_password(password: str) -> str:
    salt = secrets.token_hex(8)
    digest = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt.encode('ascii'), _PASSWORD_ITERATIONS)
    return f"pbkdf2_sha256${_PASSWORD_ITERATIONS}${salt}${digest.hex()}"


def _is_tagged(value: Any, type_name: str) -> bool:
    return isinstance(value, dict) and value.get('__type') == type_name


def _check_type(class_name: str, key: str, fdef: FieldDefinition, value: Any) -> None:
    kind = fdef.kind
    if kind in (FieldKind.STRING, FieldKind.BYTES):
        ok = isinstance(value, str)
    elif kind is FieldKind.NUMBER:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif kind is FieldKind.BOOLEAN:
        ok = isinstance(value, bool)
    elif kind is FieldKind.DATE:
        ok = _is_tagged(value, 'Date') and isinstance(value.get('iso'), str)
    elif kind in (FieldKind.OBJECT, FieldKind.ACL):
        ok = isinstance(value, dict)
    elif kind is FieldKind.ARRAY:
        ok = isinstance(value, list)
    elif kind is FieldKind.POLYGON:
        ok = isinstance(value, (list, dict))
    elif kind is FieldKind.FILE:
        ok = _is_tagged(value, 'File') and bool(value.get('name'))
    elif kind is FieldKind.GEOPOINT:
        ok = _is_tagged(value, 'GeoPoint')
        if ok:
            lat, lon = value.get('latitude'), value.get('longitude')
            if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
                ok = False
            elif not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
                raise ValidationError(f"GeoPoint {class_name}.{key} is out of range", code=111)
    elif kind is FieldKind.POINTER:
        ok = (
            _is_tagged(value, 'Pointer')
            and value.get('className') == fdef.target_class
            and isinstance(value.get('objectId'), str)
        )
    else:
        # Relation values only change through AddRelation / RemoveRelation
        ok = False
    if not ok:
        raise ValidationError(
            f"schema mismatch for {class_name}.{key}; expected {fdef.type_label} but got {type(value).__name__}",
            code=111,
        )


class SQLStorage(Storage):
    """``Storage`` over an ``async_sessionmaker``.

    Access is serialized with an ``asyncio.Lock`` so concurrently scheduled
    sibling resolvers never interleave transactions on a shared connection.
    """

    def __init__(self, sessionmaker: async_sessionmaker, *, user_class_name: str = '_User', engine: Optional[AsyncEngine] = None):
        self._sessionmaker = sessionmaker
        self.user_class_name = user_class_name
        self.engine = engine
        self._lock = asyncio.Lock()

    @classmethod
    def from_engine(cls, engine: AsyncEngine, *, user_class_name: str = '_User') -> 'SQLStorage':
        maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(maker, user_class_name=user_class_name, engine=engine)

    @classmethod
    def from_config(cls, config: ParseQLConfig) -> 'SQLStorage':
        kwargs: Dict[str, Any] = {}
        if ':memory:' in config.database_url:
            # one shared connection, otherwise every checkout sees an empty database
            kwargs['poolclass'] = StaticPool
        engine = create_async_engine(config.database_url, echo=config.sql_echo, future=True, **kwargs)
        return cls.from_engine(engine, user_class_name=config.user_class_name)

    async def create_tables(self) -> None:
        if self.engine is None:
            raise RuntimeError("SQLStorage was built without an engine")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._lock:
            async with self._sessionmaker() as session:
                async with session.begin():
                    yield session

    # ---------- helpers ----------
    @staticmethod
    def _can(auth: Auth, acl: Any, permission: str) -> bool:
        if auth.is_master or not isinstance(acl, dict):
            return True
        return any((acl.get(key) or {}).get(permission) for key in auth.acl_keys)

    def _to_record(self, row: ObjectRow, auth: Auth) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            'className': row.class_name,
            'objectId': row.object_id,
            'createdAt': format_date(row.created_at),
            'updatedAt': format_date(row.updated_at),
        }
        for key, value in (row.data or {}).items():
            if key.startswith('_') or key == 'password':
                continue
            record[key] = value
        if row.class_name == self.user_class_name and auth.session_token and auth.user_id == row.object_id:
            record['sessionToken'] = auth.session_token
        return record

    @staticmethod
    def _class_schema(schema: Optional[ParseSchema], class_name: str) -> ClassSchema:
        cls_schema = schema.get(class_name) if schema is not None else None
        if cls_schema is None:
            raise ValidationError(f"Invalid class name: {class_name}", code=103)
        return cls_schema

    def _prepare(self, cls_schema: ClassSchema, data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[Tuple[str, str, List[Dict[str, Any]]]]]:
        """Validate a write payload; split it into document changes and relation ops."""
        changes: Dict[str, Any] = {}
        relation_ops: List[Tuple[str, str, List[Dict[str, Any]]]] = []
        for key, value in data.items():
            if key in _READ_ONLY_KEYS or key.startswith('_'):
                raise ValidationError(f"{key} is an invalid field name.", code=105)
            fdef = cls_schema.fields.get(key)
            if fdef is None:
                raise ValidationError(f"Field {key} does not exist on {cls_schema.class_name}", code=105)
            if isinstance(value, dict) and '__op' in value:
                op = value['__op']
                if op == 'Delete':
                    changes[key] = _DELETE
                elif op == 'Increment' and fdef.kind is FieldKind.NUMBER:
                    amount = value.get('amount')
                    if not isinstance(amount, (int, float)) or isinstance(amount, bool):
                        raise ValidationError("Increment amount must be a number", code=111)
                    changes[key] = _Increment(amount)
                elif op in ('AddRelation', 'RemoveRelation') and fdef.kind is FieldKind.RELATION:
                    objects = list(value.get('objects') or [])
                    for obj in objects:
                        if not _is_tagged(obj, 'Pointer') or obj.get('className') != fdef.target_class:
                            raise ValidationError(
                                f"{op} on {cls_schema.class_name}.{key} expects pointers to {fdef.target_class}",
                                code=111,
                            )
                    relation_ops.append((op, key, objects))
                else:
                    raise ValidationError(f"Unsupported operation {op} on {cls_schema.class_name}.{key}", code=111)
                continue
            if value is None:
                changes[key] = _DELETE
                continue
            _check_type(cls_schema.class_name, key, fdef, value)
            changes[key] = value
        return changes, relation_ops

    @staticmethod
    def _apply(document: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(document)
        for key, value in changes.items():
            if value is _DELETE:
                out.pop(key, None)
            elif isinstance(value, _Increment):
                out[key] = (out.get(key) or 0) + value.amount
            else:
                out[key] = value
        return out

    async def _apply_relations(self, session: AsyncSession, class_name: str, object_id: str, relation_ops) -> None:
        for op, key, objects in relation_ops:
            for obj in objects:
                existing = await session.execute(
                    select(RelationRow).where(
                        RelationRow.owning_class == class_name,
                        RelationRow.owning_id == object_id,
                        RelationRow.key == key,
                        RelationRow.related_id == obj['objectId'],
                    )
                )
                row = existing.scalars().first()
                if op == 'AddRelation' and row is None:
                    session.add(RelationRow(
                        owning_class=class_name,
                        owning_id=object_id,
                        key=key,
                        related_class=obj['className'],
                        related_id=obj['objectId'],
                    ))
                elif op == 'RemoveRelation' and row is not None:
                    await session.delete(row)

    async def _load_row(self, session: AsyncSession, class_name: str, object_id: str) -> Optional[ObjectRow]:
        res = await session.execute(
            select(ObjectRow).where(ObjectRow.class_name == class_name, ObjectRow.object_id == object_id)
        )
        return res.scalars().first()

    async def _check_user_unique(self, session: AsyncSession, document: Dict[str, Any], object_id: Optional[str]) -> None:
        for key, code, message in (
            ('username', 202, "Account already exists for this username."),
            ('email', 203, "Account already exists for this email address."),
        ):
            value = document.get(key)
            if not value:
                continue
            stmt = select(ObjectRow.id).where(
                ObjectRow.class_name == self.user_class_name,
                ObjectRow.data[key].as_string() == value,
            )
            if object_id is not None:
                stmt = stmt.where(ObjectRow.object_id != object_id)
            if (await session.execute(stmt.limit(1))).first() is not None:
                raise ConflictError(message, code=code)

    # ---------- Storage API ----------
    async def get(self, auth: Auth, class_name: str, object_id: str, schema: Optional[ParseSchema] = None) -> Dict[str, Any]:
        async with self._session() as session:
            row = await self._load_row(session, class_name, object_id)
            if row is None or not self._can(auth, (row.data or {}).get('ACL'), 'read'):
                raise NotFound(class_name, object_id)
            return self._to_record(row, auth)

    async def find(
        self,
        auth: Auth,
        class_name: str,
        where: Optional[Dict[str, Any]],
        schema: ParseSchema,
        *,
        redirect_class_name_for_key: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        target = class_name
        if redirect_class_name_for_key:
            fdef = self._class_schema(schema, class_name).fields.get(redirect_class_name_for_key)
            if fdef is None or fdef.kind is not FieldKind.RELATION:
                raise ValidationError(f"{class_name}.{redirect_class_name_for_key} is not a relation", code=102)
            target = fdef.target_class
        clauses, residual = compile_where(where, schema.get(target) if schema is not None else None)
        stmt = (
            select(ObjectRow)
            .where(ObjectRow.class_name == target, *clauses)
            .order_by(ObjectRow.created_at, ObjectRow.id)
        )
        related = (where or {}).get('$relatedTo')
        if related:
            owner = related.get('object') or {}
            members = select(RelationRow.related_id).where(
                RelationRow.owning_class == owner.get('className'),
                RelationRow.owning_id == owner.get('objectId'),
                RelationRow.key == related.get('key'),
            )
            stmt = stmt.where(ObjectRow.object_id.in_(members))
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            records = [
                self._to_record(row, auth)
                for row in rows
                if self._can(auth, (row.data or {}).get('ACL'), 'read')
            ]
        if residual:
            records = [r for r in records if matches(r, residual)]
        return records

    async def create(self, auth: Auth, class_name: str, data: Dict[str, Any], schema: ParseSchema) -> Dict[str, Any]:
        cls_schema = self._class_schema(schema, class_name)
        is_user = class_name == self.user_class_name
        password = data.get('password') if is_user else None
        changes, relation_ops = self._prepare(cls_schema, {k: v for k, v in data.items() if not (is_user and k == 'password')})
        document = self._apply({}, changes)
        if is_user:
            if not document.get('username'):
                raise ValidationError("bad or missing username", code=200)
            if not password:
                raise ValidationError("password is required", code=201)
            document['_hashed_password'] = _hash_password(password)
        now = _utcnow()
        object_id = _new_object_id()
        response: Dict[str, Any] = {'objectId': object_id, 'createdAt': format_date(now)}
        async with self._session() as session:
            if is_user:
                await self._check_user_unique(session, document, None)
            session.add(ObjectRow(class_name=class_name, object_id=object_id, data=document, created_at=now, updated_at=now))
            await self._apply_relations(session, class_name, object_id, relation_ops)
            if is_user:
                token = f"r:{uuid.uuid4().hex}"
                session.add(SessionRow(
                    session_token=token,
                    user_id=object_id,
                    installation_id=auth.installation_id,
                    created_at=now,
                ))
                response['sessionToken'] = token
        _logger.debug("parseql.storage: created %s/%s", class_name, object_id)
        return response

    async def update(self, auth: Auth, class_name: str, object_id: str, data: Dict[str, Any], schema: ParseSchema) -> Dict[str, Any]:
        cls_schema = self._class_schema(schema, class_name)
        is_user = class_name == self.user_class_name
        data = dict(data)
        password = data.pop('password', None) if is_user else None
        changes, relation_ops = self._prepare(cls_schema, data)
        now = _utcnow()
        async with self._session() as session:
            row = await self._load_row(session, class_name, object_id)
            if row is None or not self._can(auth, (row.data or {}).get('ACL'), 'write'):
                raise NotFound(class_name, object_id)
            document = self._apply(row.data or {}, changes)
            if is_user:
                await self._check_user_unique(session, document, object_id)
                if password:
                    document['_hashed_password'] = _hash_password(password)
            row.data = document
            row.updated_at = now
            await self._apply_relations(session, class_name, object_id, relation_ops)
        return {'updatedAt': format_date(now)}

    async def delete(self, auth: Auth, class_name: str, object_id: str, schema: Optional[ParseSchema] = None) -> None:
        async with self._session() as session:
            row = await self._load_row(session, class_name, object_id)
            if row is None or not self._can(auth, (row.data or {}).get('ACL'), 'write'):
                raise NotFound(class_name, object_id)
            await session.delete(row)
            await session.execute(
                sa_delete(RelationRow).where(
                    or_(
                        (RelationRow.owning_class == class_name) & (RelationRow.owning_id == object_id),
                        (RelationRow.related_class == class_name) & (RelationRow.related_id == object_id),
                    )
                )
            )
            if class_name == self.user_class_name:
                await session.execute(sa_delete(SessionRow).where(SessionRow.user_id == object_id))
        _logger.debug("parseql.storage: deleted %s/%s", class_name, object_id)

    async def get_session(self, session_token: str) -> Optional[Dict[str, Any]]:
        async with self._session() as session:
            res = await session.execute(select(SessionRow).where(SessionRow.session_token == session_token))
            row = res.scalars().first()
            if row is None:
                return None
            return {
                'session_token': row.session_token,
                'user_id': row.user_id,
                'installation_id': row.installation_id,
            }
